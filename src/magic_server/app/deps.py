from __future__ import annotations

"""
Shared FastAPI dependencies for the workspace service.

Contents:
- get_settings(): cached accessor for ServerConfig.
- enforce_api_key(): API key authentication dependency for routes.
- get_runtime_client(): process-wide ContainerRuntimeClient.
- get_template_registry() / get_workspace_manager(): workspace layer accessors.

Tests replace get_workspace_manager through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security.api_key import APIKeyHeader

from magic_server.app.config import ServerConfig, get_settings as _config_get_settings
from magic_server.app.workspaces.manager import WorkspaceManager
from magic_server.app.workspaces.runtime import ContainerRuntimeClient
from magic_server.app.workspaces.templates import TemplateRegistry, default_registry


def get_settings() -> ServerConfig:
    return _config_get_settings()


# -------------------
# API Key Auth
# -------------------

api_key_header = APIKeyHeader(name=get_settings().api_key_header_name, auto_error=False)


async def enforce_api_key(
    provided_key: Optional[str] = Security(api_key_header),
    settings: ServerConfig = Depends(get_settings),
) -> None:
    """
    Require one of the configured API keys; authentication is disabled when none are configured.
    """
    allowed = {k for k in settings.api_keys if k}
    if settings.api_key:
        allowed.add(settings.api_key)
    if not allowed:
        return
    if not provided_key or provided_key not in allowed:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )


# --------------------------
# Workspace layer
# --------------------------

@lru_cache(maxsize=1)
def get_runtime_client() -> ContainerRuntimeClient:
    """
    Process-wide runtime client. The engine connection is opened lazily on first use.
    """
    return ContainerRuntimeClient(settings=get_settings())


def get_template_registry() -> TemplateRegistry:
    return default_registry()


def get_workspace_manager(
    runtime: ContainerRuntimeClient = Depends(get_runtime_client),
    registry: TemplateRegistry = Depends(get_template_registry),
    settings: ServerConfig = Depends(get_settings),
) -> WorkspaceManager:
    return WorkspaceManager(runtime, registry=registry, settings=settings)


__all__ = [
    "ServerConfig",
    "get_settings",
    "enforce_api_key",
    "get_runtime_client",
    "get_template_registry",
    "get_workspace_manager",
]
