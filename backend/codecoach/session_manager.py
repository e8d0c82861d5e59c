"""Session lifecycle orchestration for the coaching engine.

One :class:`SessionLifecycleManager` is built per process. It owns the single
current session, the prompt window, and the transcript, and it is the only
layer that turns component errors into user-facing host messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel

from .coaching import CoachingAdapter, PromptWindow
from .completion import CompletionClient, OpenAICompletionClient
from .client_state import build_state_store
from .config import Settings, get_settings
from .errors import CoachError, InvalidRequestError, SessionStateError
from .host import BridgeWorkspace, HostBridge, Workspace
from .learning_profile import DatabaseProfileStore, LearningProfile, ProfileStore, merge_profiles
from .models import Assignment, ChatTurn, SessionState, StarterBundleRef, TraceEvent
from .prompt_utils import render_learning_summary
from .starter_installer import InstallResult, StarterInstaller
from .store_clients import (
    ApiClient,
    ArchiveStoreClient,
    AssignmentStoreClient,
    HttpProfileStore,
    SessionStoreClient,
)
from .telemetry import emit_event
from .trace_buffer import TraceBuffer

logger = logging.getLogger(__name__)

_RECORDABLE_STATES = (SessionState.ACTIVE, SessionState.SUBMITTING)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CoachSession:
    session_id: str
    assignment: Assignment
    trace: TraceBuffer
    state: SessionState = SessionState.CONNECTING
    submitted: bool = False
    created_at: datetime = field(default_factory=_now)
    # Transcript length covered by the last profile merge.
    merged_turns: int = 0


class SessionStatus(BaseModel):
    state: SessionState
    session_id: Optional[str] = None
    assignment_id: Optional[str] = None
    assignment_title: Optional[str] = None
    buffered_events: int = 0
    submitted: bool = False
    transcript_turns: int = 0


class SessionLifecycleManager:
    def __init__(
        self,
        *,
        assignments: AssignmentStoreClient,
        sessions: SessionStoreClient,
        profiles: ProfileStore,
        coach: CoachingAdapter,
        bridge: HostBridge,
        installer: Optional[StarterInstaller] = None,
        learner_id: str = "local-learner",
        flush_threshold: int = 10,
        max_history_turns: int = 12,
        closers: Sequence[Any] = (),
    ) -> None:
        self._assignments = assignments
        self._sessions = sessions
        self._profiles = profiles
        self._coach = coach
        self._bridge = bridge
        self._installer = installer
        self._learner_id = learner_id
        self._flush_threshold = flush_threshold
        self._window = PromptWindow(max_history_turns)
        self._transcript: List[ChatTurn] = []
        self._session: Optional[CoachSession] = None
        self._generation = 0
        self._connecting = False
        self._closers = list(closers)

    # State -------------------------------------------------------------------

    @property
    def session(self) -> Optional[CoachSession]:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._connecting:
            return SessionState.CONNECTING
        if self._session is None:
            return SessionState.DISCONNECTED
        return self._session.state

    @property
    def assignment(self) -> Optional[Assignment]:
        return self._session.assignment if self._session else None

    @property
    def transcript(self) -> List[ChatTurn]:
        return list(self._transcript)

    @property
    def bridge(self) -> HostBridge:
        return self._bridge

    @property
    def prompt_window(self) -> PromptWindow:
        return self._window

    def status(self) -> SessionStatus:
        session = self._session
        return SessionStatus(
            state=self.state,
            session_id=session.session_id if session else None,
            assignment_id=session.assignment.id if session else None,
            assignment_title=session.assignment.title if session else None,
            buffered_events=len(session.trace) if session else 0,
            submitted=session.submitted if session else False,
            transcript_turns=len(self._transcript),
        )

    # Connect -----------------------------------------------------------------

    async def connect(self, assignment_ref: str) -> CoachSession:
        """Open a session for ``assignment_ref``, replacing any current session.

        A connect superseded by a newer one while in flight raises
        ``SessionStateError`` and leaves the newer session untouched.
        """
        ref = (assignment_ref or "").strip()
        if not ref:
            raise InvalidRequestError("Assignment id is required.")

        self._generation += 1
        generation = self._generation
        self._connecting = True
        await self._retire_current()
        self._bridge.status(f"Connecting to assignment {ref}…")

        try:
            assignment = await self._assignments.fetch(ref)
            self._ensure_current(generation, ref)
            session_id = await self._sessions.start(assignment.id)
            self._ensure_current(generation, ref)
        except CoachError as exc:
            if generation == self._generation:
                self._connecting = False
                logger.warning("Connect to assignment %s failed: %s", ref, exc)
                self._bridge.status(f"Could not open assignment {ref}: {exc}")
            raise

        session = CoachSession(
            session_id=session_id,
            assignment=assignment,
            trace=TraceBuffer(
                partial(self._sessions.append_events, session_id),
                threshold=self._flush_threshold,
                label=session_id,
            ),
            state=SessionState.ACTIVE,
        )
        self._session = session
        self._connecting = False
        self._transcript = []
        self._window.clear()

        emit_event("session_connected", session_id=session_id, assignment_id=assignment.id)
        self._bridge.status(f"Active assignment: {assignment.title}")
        return session

    def _ensure_current(self, generation: int, ref: str) -> None:
        if generation != self._generation:
            logger.info("Discarding stale connect result for assignment %s", ref)
            raise SessionStateError(f"Connect to assignment {ref} was superseded by a newer request.")

    async def _retire_current(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        if len(session.trace):
            try:
                await session.trace.flush()
            except CoachError as exc:
                logger.warning(
                    "Dropping %s unflushed trace events from session %s: %s",
                    len(session.trace),
                    session.session_id,
                    exc,
                )
        logger.info("Retired session %s (state=%s)", session.session_id, session.state.value)

    # Trace -------------------------------------------------------------------

    def _record(self, event: TraceEvent, turn: Optional[ChatTurn] = None) -> Optional[TraceEvent]:
        session = self._session
        if session is None:
            logger.info("Ignoring %s: no session (state=%s)", event.kind, self.state.value)
            return None
        # Chat after submission still belongs to the session transcript.
        if turn is not None:
            self._transcript.append(turn)
        if session.state not in _RECORDABLE_STATES:
            logger.info("Ignoring %s trace event: no active session (state=%s)", event.kind, self.state.value)
            return None
        session.trace.append(event)
        return event

    def record_user_turn(self, text: str) -> Optional[TraceEvent]:
        return self._record(TraceEvent.user_message(text), ChatTurn(role="user", text=text))

    def record_coach_turn(self, text: str) -> Optional[TraceEvent]:
        return self._record(TraceEvent.coach_message(text), ChatTurn(role="model", text=text))

    def record_checkpoint(self, data: Mapping[str, Any]) -> Optional[TraceEvent]:
        return self._record(TraceEvent.checkpoint(data))

    # Chat --------------------------------------------------------------------

    async def send_message(self, text: str, context_text: Optional[str] = None) -> str:
        message = (text or "").strip()
        if not message:
            raise InvalidRequestError("Message text is required.")

        session = self._session
        history = self._window.turns()
        self._bridge.message("user", message)
        self._bridge.busy(True)
        try:
            self.record_user_turn(message)
            self._window.add("user", message)
            reply = await self._coach.reply(
                message,
                history=history,
                assignment=session.assignment if session else None,
                context_text=context_text,
            )
            self._window.add("model", reply)
            if session is not None and session is not self._session:
                # The assignment changed while the reply was in flight.
                logger.info("Reply for retired session %s not traced", session.session_id)
                self._bridge.message("assistant", reply)
                return reply
            self.record_coach_turn(reply)
            self._bridge.message("assistant", reply)
            if session is not None:
                await session.trace.auto_flush()
            return reply
        except CoachError as exc:
            self._bridge.message("assistant", f"Error: {exc}")
            raise
        finally:
            self._bridge.busy(False)

    def clear_chat(self) -> None:
        """Forget the prompt window; the trace and transcript are kept for storage."""
        self._window.clear()
        self._bridge.status("Chat cleared for this session.")

    # Profile -----------------------------------------------------------------

    async def _merge_profile(self, course_id: str) -> Tuple[LearningProfile, str]:
        transcript = list(self._transcript)
        existing = await self._profiles.get(self._learner_id)
        update, summary = await self._coach.summarize(transcript, existing or LearningProfile())

        merged = merge_profiles(existing, update)
        await self._profiles.put(self._learner_id, merged)
        if course_id:
            course_existing = await self._profiles.get(self._learner_id, course_id)
            await self._profiles.put(self._learner_id, merge_profiles(course_existing, update), course_id)

        if self._session is not None:
            self._session.merged_turns = len(transcript)
        emit_event(
            "profile_merged",
            learner_id=self._learner_id,
            course_id=course_id or None,
            mastered=len(merged.mastered),
            developing=len(merged.developing),
        )
        return merged, render_learning_summary(summary, merged)

    async def export_learning_summary(self) -> str:
        """Summarize the transcript, merge it into the stored profiles, and return a Markdown report."""
        if not self._transcript:
            raise InvalidRequestError("No chat history yet in this session.")
        course_id = self._session.assignment.course_id if self._session else ""
        try:
            _, report = await self._merge_profile(course_id)
        except CoachError as exc:
            self._bridge.status(f"Failed to export summary: {exc}")
            raise
        self._bridge.status("Learning summary exported.")
        return report

    # Submit ------------------------------------------------------------------

    async def submit(self) -> CoachSession:
        """Flush, merge the transcript into the profile, and mark the remote session submitted.

        A failure leaves the session in ``submitting``; calling again is safe.
        """
        session = self._session
        if session is None:
            raise SessionStateError('No active assignment. Open an assignment first.')
        if session.state not in _RECORDABLE_STATES:
            raise SessionStateError(f"Cannot submit while the session is {session.state.value}.")

        session.state = SessionState.SUBMITTING
        self._bridge.status(f"Submitting: {session.assignment.title}")
        try:
            await session.trace.flush()
            if len(self._transcript) > session.merged_turns:
                await self._merge_profile(session.assignment.course_id)
            else:
                logger.info("Skipping profile merge for %s: transcript already merged", session.session_id)
            await self._sessions.submit(session.session_id)
        except CoachError as exc:
            logger.warning("Submit of session %s failed: %s", session.session_id, exc)
            self._bridge.status(f"Submit failed: {exc}")
            raise

        session.submitted = True
        session.state = SessionState.SUBMITTED
        emit_event(
            "session_submitted",
            session_id=session.session_id,
            assignment_id=session.assignment.id,
            flushed=session.trace.flushed_total,
        )
        self._bridge.status(f"Submitted: {session.assignment.title}")
        return session

    # Starter bundles ---------------------------------------------------------

    async def install_starter(self, bundle: StarterBundleRef) -> Optional[InstallResult]:
        if self._installer is None:
            logger.info("No starter installer configured; skipping %s", bundle.archive_ref)
            return None
        try:
            result = await self._installer.install(bundle.archive_ref, bundle.open)
        except CoachError as exc:
            logger.warning("Starter installation failed for %s: %s", bundle.archive_ref, exc)
            self._bridge.status(f"Starter files could not be installed: {exc}")
            return None
        if result.outcome == "deferred":
            self._bridge.status("Choose a folder for the starter files; installation resumes after reload.")
        elif result.outcome == "installed":
            self._bridge.status(f"Starter files installed ({len(result.written)} files).")
        return result

    async def open_assignment(self, assignment_ref: str) -> Tuple[CoachSession, Optional[InstallResult]]:
        session = await self.connect(assignment_ref)
        result = None
        if session.assignment.starter_bundle is not None:
            result = await self.install_starter(session.assignment.starter_bundle)
        return session, result

    async def activate(self) -> Optional[InstallResult]:
        """Process-start hook: resume a starter installation deferred before a reload."""
        if self._installer is None:
            return None
        try:
            result = await self._installer.resume_pending()
        except CoachError as exc:
            logger.warning("Pending starter installation failed: %s", exc)
            self._bridge.status(f"Starter files could not be installed: {exc}")
            return None
        if result is not None:
            self._bridge.status(f"Starter files installed ({len(result.written)} files).")
        return result

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer.aclose()


def create_session_manager(
    settings: Settings | None = None,
    *,
    bridge: Optional[HostBridge] = None,
    workspace: Optional[Workspace] = None,
    completion: Optional[CompletionClient] = None,
    starter_http_client: Optional[httpx.AsyncClient] = None,
) -> SessionLifecycleManager:
    settings = settings or get_settings()
    bridge = bridge or HostBridge()
    if workspace is None:
        # No folder is open unless one is configured; installs then defer to the default folder.
        workspace = BridgeWorkspace(
            bridge,
            folders=[settings.workspace_dir] if settings.workspace_dir else [],
            default_folder=settings.default_starter_dir,
        )

    def _api(base_url: str) -> ApiClient:
        return ApiClient(base_url, token=settings.auth_token, timeout=settings.http_timeout)

    assignments_api = _api(settings.assignments_api_url)
    sessions_api = _api(settings.sessions_api_url)
    starter_api = _api(settings.starter_api_url)
    closers: List[Any] = [assignments_api, sessions_api, starter_api]

    profiles: ProfileStore
    if settings.profile_backend == "remote":
        profiles_api = _api(settings.profiles_api_url)
        closers.append(profiles_api)
        profiles = HttpProfileStore(profiles_api)
    else:
        profiles = DatabaseProfileStore()

    installer = StarterInstaller(
        workspace,
        ArchiveStoreClient(starter_api),
        build_state_store(settings),
        http_client=starter_http_client,
        max_bytes=settings.starter_max_bytes,
        max_extracted_bytes=settings.starter_max_extracted_bytes,
        max_open=settings.starter_max_open,
        timeout=settings.http_timeout * 2,
    )
    closers.append(installer)

    coach = CoachingAdapter(
        completion or OpenAICompletionClient.from_settings(settings),
        max_context_chars=settings.max_context_chars,
    )
    return SessionLifecycleManager(
        assignments=AssignmentStoreClient(assignments_api),
        sessions=SessionStoreClient(sessions_api),
        profiles=profiles,
        coach=coach,
        bridge=bridge,
        installer=installer,
        learner_id=settings.learner_id,
        flush_threshold=settings.trace_flush_threshold,
        max_history_turns=settings.max_history_turns,
        closers=closers,
    )


__all__ = [
    "CoachSession",
    "SessionLifecycleManager",
    "SessionStatus",
    "create_session_manager",
]
