"""REST endpoints the editor host uses to drive the coaching session."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    AuthError,
    CoachError,
    InvalidRequestError,
    SessionStateError,
    StructuredOutputError,
    WorkspaceError,
)
from .host import HostEvent
from .session_manager import SessionLifecycleManager, SessionStatus, create_session_manager
from .starter_installer import InstallResult

router = APIRouter(prefix="/api/session", tags=["session"])

logger = logging.getLogger(__name__)

_manager: Optional[SessionLifecycleManager] = None


def get_session_manager() -> SessionLifecycleManager:
    global _manager
    if _manager is None:
        _manager = create_session_manager()
    return _manager


async def shutdown_session_manager() -> None:
    global _manager
    if _manager is not None:
        await _manager.aclose()
        _manager = None


class ConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assignment_id: str = Field(..., alias="assignmentId")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    context_text: Optional[str] = Field(default=None, alias="contextText")


class CheckpointRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class InstallPayload(BaseModel):
    outcome: Literal["installed", "deferred", "cancelled"]
    destination: Optional[str] = None
    written: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    opened: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: Optional[InstallResult]) -> Optional["InstallPayload"]:
        if result is None:
            return None
        return cls(
            outcome=result.outcome,
            destination=str(result.destination) if result.destination else None,
            written=list(result.written),
            skipped=list(result.skipped),
            opened=list(result.opened),
        )


class OpenResponse(BaseModel):
    status: SessionStatus
    install: Optional[InstallPayload] = None


class ChatResponse(BaseModel):
    reply: str
    status: SessionStatus


class CheckpointResponse(BaseModel):
    recorded: bool
    status: SessionStatus


class ExportResponse(BaseModel):
    markdown: str


class EventsResponse(BaseModel):
    events: List[HostEvent]


def _raise_http(exc: CoachError) -> NoReturn:
    if isinstance(exc, AuthError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, SessionStateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, StructuredOutputError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, InvalidRequestError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, WorkspaceError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_502_BAD_GATEWAY
    logger.info("Session request failed (%s, retryable=%s): %s", exc.kind, exc.retryable, exc)
    raise HTTPException(status_code=code, detail=str(exc)) from exc


@router.get("/status", response_model=SessionStatus)
def session_status(manager: SessionLifecycleManager = Depends(get_session_manager)) -> SessionStatus:
    return manager.status()


@router.get("/events", response_model=EventsResponse)
def host_events(
    after: int = Query(0, ge=0),
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> EventsResponse:
    return EventsResponse(events=manager.bridge.events_after(after))


@router.post("/connect", response_model=SessionStatus)
async def connect_session(
    payload: ConnectRequest,
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> SessionStatus:
    try:
        await manager.connect(payload.assignment_id)
    except CoachError as exc:
        _raise_http(exc)
    return manager.status()


@router.post("/open", response_model=OpenResponse)
async def open_assignment(
    payload: ConnectRequest,
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> OpenResponse:
    try:
        _, result = await manager.open_assignment(payload.assignment_id)
    except CoachError as exc:
        _raise_http(exc)
    return OpenResponse(status=manager.status(), install=InstallPayload.from_result(result))


@router.post("/chat", response_model=ChatResponse)
async def send_chat(
    payload: ChatRequest,
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> ChatResponse:
    try:
        reply = await manager.send_message(payload.message, payload.context_text)
    except CoachError as exc:
        _raise_http(exc)
    return ChatResponse(reply=reply, status=manager.status())


@router.post("/checkpoint", response_model=CheckpointResponse)
def record_checkpoint(
    payload: CheckpointRequest,
    manager: SessionLifecycleManager = Depends(get_session_manager),
) -> CheckpointResponse:
    event = manager.record_checkpoint(payload.data)
    return CheckpointResponse(recorded=event is not None, status=manager.status())


@router.post("/submit", response_model=SessionStatus)
async def submit_session(manager: SessionLifecycleManager = Depends(get_session_manager)) -> SessionStatus:
    try:
        await manager.submit()
    except CoachError as exc:
        _raise_http(exc)
    return manager.status()


@router.post("/export", response_model=ExportResponse)
async def export_summary(manager: SessionLifecycleManager = Depends(get_session_manager)) -> ExportResponse:
    try:
        markdown = await manager.export_learning_summary()
    except CoachError as exc:
        _raise_http(exc)
    return ExportResponse(markdown=markdown)


@router.post("/clear", response_model=SessionStatus)
def clear_chat(manager: SessionLifecycleManager = Depends(get_session_manager)) -> SessionStatus:
    manager.clear_chat()
    return manager.status()


@router.post("/activate", response_model=OpenResponse)
async def activate(manager: SessionLifecycleManager = Depends(get_session_manager)) -> OpenResponse:
    result = await manager.activate()
    return OpenResponse(status=manager.status(), install=InstallPayload.from_result(result))


__all__ = ["get_session_manager", "router", "shutdown_session_manager"]
