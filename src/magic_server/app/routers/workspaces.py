from __future__ import annotations

"""
Workspace router: lifecycle, exec and logs.

Design:
- Thin adapter over WorkspaceManager; no container access happens here.
- API key auth enforced via dependency.
- WorkspaceError subclasses propagate to the app-level exception handler,
  which renders ``{"success": false, "error": <kind>, "detail": <message>}``.
"""

import shlex
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from magic_server.app.deps import enforce_api_key, get_workspace_manager
from magic_server.app.models import (
    ActionResponse,
    ExecPayload,
    ExecResponse,
    LogsResponse,
    Workspace,
    WorkspaceCreatePayload,
    WorkspaceCreateResponse,
    WorkspaceListResponse,
)
from magic_server.app.workspaces.core import CUSTOM_TYPE
from magic_server.app.workspaces.manager import WorkspaceManager
from magic_server.app.workspaces.sessions import MAX_LOG_TAIL

router = APIRouter(dependencies=[Depends(enforce_api_key)])


# --------------------------
# Routes: Lifecycle
# --------------------------

@router.get(
    "",
    response_model=WorkspaceListResponse,
)
async def list_workspaces(
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> WorkspaceListResponse:
    return WorkspaceListResponse(workspaces=await manager.list_workspaces())


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=WorkspaceCreateResponse,
)
async def create_workspace(
    payload: Optional[WorkspaceCreatePayload] = Body(None),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> WorkspaceCreateResponse:
    """
    Create a workspace and start it.
    """
    payload = payload or WorkspaceCreatePayload()
    name = payload.name or payload.template_id or CUSTOM_TYPE
    ws = await manager.deploy_workspace(name, payload.template_id)
    return WorkspaceCreateResponse(id=ws.id, success=True)


@router.get(
    "/{workspace_id}",
    response_model=Workspace,
)
async def get_workspace(
    workspace_id: str = Path(...),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> Workspace:
    return await manager.get_workspace(workspace_id)


@router.post(
    "/{workspace_id}/start",
    response_model=ActionResponse,
)
async def start_workspace(
    workspace_id: str = Path(...),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> ActionResponse:
    await manager.start_workspace(workspace_id)
    return ActionResponse(success=True)


@router.post(
    "/{workspace_id}/stop",
    response_model=ActionResponse,
)
async def stop_workspace(
    workspace_id: str = Path(...),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> ActionResponse:
    await manager.stop_workspace(workspace_id)
    return ActionResponse(success=True)


@router.delete(
    "/{workspace_id}",
    response_model=ActionResponse,
)
async def delete_workspace(
    workspace_id: str = Path(...),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> ActionResponse:
    await manager.remove_workspace(workspace_id)
    return ActionResponse(success=True)


# --------------------------
# Routes: Logs & Exec
# --------------------------

@router.get(
    "/{workspace_id}/logs",
    response_model=LogsResponse,
)
async def get_logs(
    workspace_id: str = Path(...),
    tail: Optional[int] = Query(None, ge=1, le=MAX_LOG_TAIL, description="Number of trailing lines"),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> LogsResponse:
    return LogsResponse(logs=await manager.get_workspace_logs(workspace_id, tail))


def _argv_from_payload(payload: ExecPayload) -> List[str]:
    if payload.argv:
        return list(payload.argv)
    try:
        return shlex.split(payload.command or "")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid command: {exc}")


@router.post(
    "/{workspace_id}/exec",
    response_model=ExecResponse,
)
async def exec_command(
    workspace_id: str = Path(...),
    payload: ExecPayload = Body(...),
    manager: WorkspaceManager = Depends(get_workspace_manager),
) -> ExecResponse:
    """
    Run a command in a running workspace. Hitting the time or output bound is
    reported in the body (``error``), not as an HTTP failure.
    """
    result = await manager.exec_in_workspace(workspace_id, _argv_from_payload(payload))
    return ExecResponse(
        output=result.output,
        exit_code=result.exit_code,
        error=result.error,
        truncated=result.truncated,
        success=result.success,
    )
