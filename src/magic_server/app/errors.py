from __future__ import annotations

"""
Error taxonomy for the workspace layer.

Engine-level failures (docker SDK and transport exceptions) are translated into
these types by the runtime client, so callers above it only ever deal with
WorkspaceError subclasses. The HTTP layer maps ``status_code`` and ``kind`` into
a structured failure body.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    not_found = "not_found"
    engine_unavailable = "engine_unavailable"
    timeout = "timeout"
    output_limit = "output_limit"
    invalid = "invalid"
    already_in_state = "already_in_state"
    conflict = "conflict"
    engine_error = "engine_error"


class WorkspaceError(Exception):
    """
    Base class for all workspace-layer failures.
    """

    kind: ErrorKind = ErrorKind.engine_error
    status_code: int = 500

    def __init__(self, message: str, *, workspace_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.workspace_id = workspace_id

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind.value, "detail": self.message}


class WorkspaceNotFound(WorkspaceError):
    """Unknown workspace or container id, including ids of removed workspaces."""

    kind = ErrorKind.not_found
    status_code = 404


class EngineUnavailable(WorkspaceError):
    """The engine control channel could not be reached."""

    kind = ErrorKind.engine_unavailable
    status_code = 503


class OperationTimeout(WorkspaceError):
    kind = ErrorKind.timeout
    status_code = 504


class InvalidSpec(WorkspaceError):
    """Malformed creation request (missing image or name, bad ports)."""

    kind = ErrorKind.invalid
    status_code = 400


class TemplateNotFound(WorkspaceError):
    kind = ErrorKind.not_found
    status_code = 404


class AlreadyInState(WorkspaceError):
    # Raised by the runtime client; the manager swallows it for start/stop.
    kind = ErrorKind.already_in_state
    status_code = 409


class WorkspaceConflict(WorkspaceError):
    """Name collision on create, or an operation the current state forbids."""

    kind = ErrorKind.conflict
    status_code = 409


class EngineError(WorkspaceError):
    kind = ErrorKind.engine_error
    status_code = 502


__all__ = [
    "ErrorKind",
    "WorkspaceError",
    "WorkspaceNotFound",
    "EngineUnavailable",
    "OperationTimeout",
    "InvalidSpec",
    "TemplateNotFound",
    "AlreadyInState",
    "WorkspaceConflict",
    "EngineError",
]
