"""
Unified server configuration for Magic Workspaces (magic_server).

This module centralizes:
- Defaults for all server settings
- Loading from environment variables
- Optional .env file hydration (only for allowed keys)

Usage:
    from magic_server.app.config import get_settings

    settings = get_settings()
    print(settings.docker_socket_path)

Notes:
- Environment variables always take precedence over .env values.
- Numeric settings that fail to parse fall back to their defaults.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import dotenv_values, find_dotenv

from magic_server.app import __version__


_ALLOWED_DOTENV_KEYS = {
    # Auth
    "WORKSPACE_API_KEY",
    "WORKSPACE_API_KEY_HEADER",
    "WORKSPACE_API_KEYS",
    # Engine
    "DOCKER_SOCKET",
    "DOCKER_CLIENT_TIMEOUT",
    # Workspace defaults
    "WORKSPACE_CONTAINER_PREFIX",
    "WORKSPACE_DEFAULT_IMAGE",
    "WORKSPACE_DEFAULT_COMMAND",
    "WORKSPACE_STOP_TIMEOUT_SECONDS",
    # Bounds
    "WORKSPACE_EXEC_TIMEOUT_SECONDS",
    "WORKSPACE_EXEC_MAX_OUTPUT_BYTES",
    "WORKSPACE_LOGS_DEFAULT_TAIL",
    "WORKSPACE_LOGS_TIMEOUT_SECONDS",
    # Service
    "WORKSPACE_MANAGER_VERSION",
    "CORS_ALLOW_ORIGINS",
    "LOG_LEVEL",
}


def _split_csv(s: str | None) -> List[str]:
    if not s:
        return []
    return [part.strip() for part in s.split(",") if part.strip()]


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _load_dotenv_into_env(dotenv_path: Optional[Path] = None) -> None:
    """
    Populate os.environ from a .env file for allowed keys that are not already set.
    """
    path = str(dotenv_path) if dotenv_path else find_dotenv(usecwd=True)
    if not path or not Path(path).is_file():
        return
    for key, val in dotenv_values(path).items():
        if key in _ALLOWED_DOTENV_KEYS and val is not None and key not in os.environ:
            os.environ[key] = val


@dataclass(frozen=True)
class ServerConfig:
    """
    Unified configuration for the workspace service.

    All fields are immutable once created. Use from_env() to construct an instance.
    """

    # Security / auth
    api_key: Optional[str]
    api_key_header_name: str
    api_keys: List[str]

    # Engine control channel
    docker_socket_path: str
    docker_client_timeout: int

    # Workspace/container creation
    container_name_prefix: str
    default_image: str
    default_command: List[str]
    stop_timeout_seconds: int

    # Exec and log bounds
    exec_timeout_seconds: float
    exec_max_output_bytes: int
    logs_default_tail: int
    logs_timeout_seconds: float

    # Service metadata
    cors_allow_origins: List[str]
    service_version: str
    log_level: str

    @staticmethod
    def from_env(dotenv: bool = True, dotenv_path: Optional[str | Path] = None) -> "ServerConfig":
        """
        Construct ServerConfig from the current environment, optionally hydrated
        by a .env file when dotenv=True.
        """
        if dotenv:
            _load_dotenv_into_env(Path(dotenv_path) if dotenv_path else None)

        api_key = os.getenv("WORKSPACE_API_KEY") or None
        api_keys = _split_csv(os.getenv("WORKSPACE_API_KEYS"))
        if api_key and api_key not in api_keys:
            api_keys.insert(0, api_key)

        default_command = shlex.split(os.getenv("WORKSPACE_DEFAULT_COMMAND", "sleep infinity"))

        return ServerConfig(
            api_key=api_key,
            api_key_header_name=os.getenv("WORKSPACE_API_KEY_HEADER", "X-API-Key"),
            api_keys=api_keys,
            docker_socket_path=os.getenv("DOCKER_SOCKET") or "/var/run/docker.sock",
            docker_client_timeout=_env_int("DOCKER_CLIENT_TIMEOUT", 60, minimum=1),
            container_name_prefix=os.getenv("WORKSPACE_CONTAINER_PREFIX", "magic-"),
            default_image=os.getenv("WORKSPACE_DEFAULT_IMAGE", "alpine:3.20"),
            default_command=default_command,
            stop_timeout_seconds=_env_int("WORKSPACE_STOP_TIMEOUT_SECONDS", 10),
            exec_timeout_seconds=_env_float("WORKSPACE_EXEC_TIMEOUT_SECONDS", 10.0, minimum=0.1),
            exec_max_output_bytes=_env_int("WORKSPACE_EXEC_MAX_OUTPUT_BYTES", 1024 * 1024, minimum=1),
            logs_default_tail=_env_int("WORKSPACE_LOGS_DEFAULT_TAIL", 100, minimum=1),
            logs_timeout_seconds=_env_float("WORKSPACE_LOGS_TIMEOUT_SECONDS", 15.0, minimum=0.1),
            cors_allow_origins=_split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*")) or ["*"],
            service_version=os.getenv("WORKSPACE_MANAGER_VERSION", __version__),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    # ----------------------------
    # Derived helpers
    # ----------------------------

    @property
    def docker_base_url(self) -> str:
        """
        Engine base URL for the configured local socket path.
        """
        return f"unix://{self.docker_socket_path}"

    def workspace_container_name(self, workspace_name: str) -> str:
        """
        Deterministic container name for a workspace name.
        """
        return f"{self.container_name_prefix}{workspace_name}"


@lru_cache(maxsize=1)
def get_settings() -> ServerConfig:
    """
    Cached settings accessor. Safe to import and call across the app.
    """
    return ServerConfig.from_env(dotenv=True)


__all__ = [
    "ServerConfig",
    "get_settings",
]
