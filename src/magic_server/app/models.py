from __future__ import annotations

"""
Pydantic models for the workspace service.

These models define:
- The workspace view reconstructed from engine labels
- Command execution results
- HTTP request/response contracts for lifecycle, exec, logs and templates
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from magic_server.app.errors import ErrorKind


# -----------------------
# Enums and core views
# -----------------------

class WorkspaceState(str, enum.Enum):
    creating = "creating"
    running = "running"
    stopped = "stopped"
    removed = "removed"


class Workspace(BaseModel):
    """
    Workspace view. Status and ports are read back from the engine on every
    query; nothing here is persisted by the service.
    """
    id: str
    name: str
    template_id: str = Field(..., description="Template id, or 'custom'")
    status: WorkspaceState
    created_at: datetime
    ports: Dict[str, str] = Field(default_factory=dict, description="container port -> host binding")
    labels: Dict[str, str] = Field(default_factory=dict)
    features: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    container_id: Optional[str] = None


class ExecResult(BaseModel):
    """
    Captured output of one command. stdout and stderr are concatenated in
    arrival order with no interleaving guarantee between them.
    """
    output: str = ""
    exit_code: Optional[int] = None
    error: Optional[ErrorKind] = Field(
        default=None,
        description="Set when a bound was hit (timeout or output_limit); output is then partial.",
    )
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and self.exit_code == 0


# -----------------------
# HTTP contracts
# -----------------------

class WorkspaceCreatePayload(BaseModel):
    name: Optional[str] = Field(default=None, description="Workspace name; defaults to the template id or 'custom'")
    template_id: Optional[str] = Field(default=None, description="Template to deploy; omit for a custom workspace")

    @field_validator("name", "template_id")
    def v_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class WorkspaceCreateResponse(BaseModel):
    id: str
    success: bool = True


class ActionResponse(BaseModel):
    success: bool = True


class WorkspaceListResponse(BaseModel):
    workspaces: List[Workspace] = Field(default_factory=list)


class LogsResponse(BaseModel):
    logs: str


class ExecPayload(BaseModel):
    """
    Command to run inside a workspace. ``argv`` is used verbatim; ``command`` is
    split into an argument vector shell-style but never run through a shell.
    """
    argv: Optional[List[str]] = None
    command: Optional[str] = None

    @model_validator(mode="after")
    def v_one_of(self) -> "ExecPayload":
        if not self.argv and not (self.command and self.command.strip()):
            raise ValueError("Either argv or command is required")
        return self


class ExecResponse(BaseModel):
    output: str
    exit_code: Optional[int] = None
    error: Optional[ErrorKind] = None
    truncated: bool = False
    success: bool


class TemplateInfo(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    category: str
    features: List[str]
    image: str
    env: List[str] = Field(default_factory=list)
    ports: Dict[str, str] = Field(default_factory=dict)


class CategoryInfo(BaseModel):
    id: str
    name: str
    icon: str


class TemplateListResponse(BaseModel):
    templates: List[TemplateInfo] = Field(default_factory=list)
    categories: List[CategoryInfo] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Any = None


__all__ = [
    "WorkspaceState",
    "Workspace",
    "ExecResult",
    "WorkspaceCreatePayload",
    "WorkspaceCreateResponse",
    "ActionResponse",
    "WorkspaceListResponse",
    "LogsResponse",
    "ExecPayload",
    "ExecResponse",
    "TemplateInfo",
    "CategoryInfo",
    "TemplateListResponse",
    "ErrorResponse",
]
