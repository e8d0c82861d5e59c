"""Error taxonomy shared by the CodeCoach session engine."""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal["network", "validation", "auth", "filesystem", "state", "completion"]


class CoachError(RuntimeError):
    """Base error raised at component boundaries.

    ``kind`` places the failure in the taxonomy and ``retryable`` tells the
    caller whether re-invoking the same action can succeed without changes.
    """

    kind: ErrorKind = "validation"
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable

    @property
    def message(self) -> str:
        return str(self)


class NetworkError(CoachError):
    """A collaborator could not be reached or answered with a failure status."""

    kind: ErrorKind = "network"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class AuthError(CoachError):
    """Missing or rejected credential. Surfaced verbatim."""

    kind: ErrorKind = "auth"


class InvalidRequestError(CoachError):
    """Input or payload failed validation; the operation is not applied."""

    kind: ErrorKind = "validation"


class SizeLimitError(InvalidRequestError):
    """Archive exceeded the configured byte cap."""


class ArchiveError(InvalidRequestError):
    """Archive could not be read as a ZIP file."""


class StructuredOutputError(InvalidRequestError):
    """The model did not return the structured document that was requested."""


class WorkspaceError(CoachError):
    """Filesystem problem in the learner workspace."""

    kind: ErrorKind = "filesystem"


class SessionStateError(CoachError):
    """Operation is not valid in the current session state."""

    kind: ErrorKind = "state"


class CompletionError(CoachError):
    """Text-generation request failed or returned an unusable body."""

    kind: ErrorKind = "completion"
    retryable = True


__all__ = [
    "ArchiveError",
    "AuthError",
    "CoachError",
    "CompletionError",
    "ErrorKind",
    "InvalidRequestError",
    "NetworkError",
    "SessionStateError",
    "SizeLimitError",
    "StructuredOutputError",
    "WorkspaceError",
]
