"""Error taxonomy shared by the backends and the request coordinator."""

from typing import Optional

from .utils import StatusKind


class AssistError(Exception):
    """Base class for every failure reported by chess-assist."""

    status_kind = StatusKind.ERROR


class BackendUnavailable(AssistError):
    """Backend not started, terminated, or health probe failed."""

    status_kind = StatusKind.UNAVAILABLE


class TransientBackendError(AssistError):
    status_kind = StatusKind.TRANSIENT


class BackendBusy(TransientBackendError):
    """Explicit over-capacity signal (HTTP 429 or a "busy" error string)."""


class BackendTimeout(TransientBackendError):
    """The request timed out or was aborted before a response arrived."""


class BackendRequestError(AssistError):
    """Any other backend failure; never retried."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolParseAnomaly(AssistError):
    """A response or line could not be decoded."""

    status_kind = StatusKind.PARSE_ANOMALY
