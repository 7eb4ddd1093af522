from __future__ import annotations

"""
Container engine adapter for the workspace layer.

ContainerRuntimeClient wraps the docker SDK's low-level API client behind an
asynchronous surface. Blocking SDK calls run in worker threads, and every
engine-side failure is translated into the workspace error taxonomy before it
leaves this module.

Contents:
- RuntimeDescriptor: engine view of one container (id, name, state, ports, labels)
- ContainerSpec: validated creation request
- ExecStream / DockerExecStream: one-shot handle over a hijacked exec socket
- ContainerRuntimeClient: list/create/start/stop/remove/logs/exec
"""

import asyncio
import logging
import socket
import threading
import time
from abc import ABC, abstractmethod
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import docker
import requests
from docker import DockerClient
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils.socket import SocketError, frames_iter

from magic_server.app.config import ServerConfig, get_settings
from magic_server.app.errors import (
    AlreadyInState,
    EngineError,
    EngineUnavailable,
    InvalidSpec,
    OperationTimeout,
    WorkspaceConflict,
    WorkspaceError,
    WorkspaceNotFound,
)
from magic_server.app.models import ExecResult
from magic_server.app.workspaces.sessions import ExecSession

logger = logging.getLogger("magic_workspaces")

RESTART_POLICY = {"Name": "unless-stopped"}
# A paused container still holds its resources; stop and remove treat it as running.
RUNNING_STATES = frozenset({"running", "restarting", "paused"})

_EXIT_CODE_POLLS = 20
_EXIT_CODE_POLL_INTERVAL = 0.05

__all__ = [
    "RESTART_POLICY",
    "RuntimeDescriptor",
    "ContainerSpec",
    "ExecStream",
    "DockerExecStream",
    "ContainerRuntimeClient",
    "build_port_maps",
    "translate_engine_error",
]


# --------------------------
# Engine data
# --------------------------

@dataclass(frozen=True)
class RuntimeDescriptor:
    """
    Engine-side view of one container, as returned by a label-filtered listing.
    """

    id: str
    name: str
    state: str
    image: str
    created: float
    ports: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    @classmethod
    def from_summary(cls, summary: Mapping[str, Any]) -> "RuntimeDescriptor":
        """
        Build a descriptor from one entry of the engine's container list response.
        """
        names = summary.get("Names") or []
        name = names[0].lstrip("/") if names else "unknown"
        ports: Dict[str, str] = {}
        for p in summary.get("Ports") or []:
            key = f"{p.get('PrivatePort')}/{p.get('Type') or 'tcp'}"
            public = p.get("PublicPort")
            if public:
                # The engine reports one entry per address family; keep the first binding.
                if ports.get(key, "not exposed") == "not exposed":
                    ports[key] = f"{p.get('IP') or '0.0.0.0'}:{public}"
            else:
                ports.setdefault(key, "not exposed")
        return cls(
            id=str(summary.get("Id") or "")[:12],
            name=name,
            state=str(summary.get("State") or "unknown"),
            image=str(summary.get("Image") or ""),
            created=float(summary.get("Created") or 0),
            ports=ports,
            labels=dict(summary.get("Labels") or {}),
        )


def build_port_maps(ports: Mapping[str, Any]) -> Tuple[Dict[str, dict], Dict[str, List[Dict[str, str]]]]:
    """
    Turn ``{container_port: host_port}`` into the engine's ExposedPorts and
    PortBindings maps. Container ports without a protocol default to tcp; an
    empty host port lets the engine pick one.

    Raises:
        InvalidSpec on malformed port numbers or protocols.
    """
    exposed: Dict[str, dict] = {}
    bindings: Dict[str, List[Dict[str, str]]] = {}
    for raw_key, raw_host in (ports or {}).items():
        key = str(raw_key).strip()
        port_s, _, proto = key.partition("/")
        proto = (proto or "tcp").lower()
        if proto not in ("tcp", "udp", "sctp"):
            raise InvalidSpec(f"Unsupported port protocol: {key}")
        if not _is_port(port_s):
            raise InvalidSpec(f"Invalid container port: {key}")
        host = "" if raw_host is None else str(raw_host).strip()
        if host and not _is_port(host):
            raise InvalidSpec(f"Invalid host port for {key}: {raw_host}")
        canonical = f"{int(port_s)}/{proto}"
        exposed[canonical] = {}
        bindings[canonical] = [{"HostPort": host}]
    return exposed, bindings


def _is_port(value: str) -> bool:
    return value.isdigit() and 0 < int(value) < 65536


@dataclass(frozen=True)
class ContainerSpec:
    """
    Creation request for one workspace container.
    """

    name: str
    image: str
    env: Tuple[str, ...] = ()
    ports: Mapping[str, Any] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    command: Optional[Tuple[str, ...]] = None

    def validate(self) -> None:
        """
        Raises:
            InvalidSpec when the name or image is missing or an env entry is malformed.
        """
        if not self.name or not self.name.strip():
            raise InvalidSpec("Container name is required")
        if not self.image or not self.image.strip():
            raise InvalidSpec("Container image is required")
        if any(ch.isspace() for ch in self.image):
            raise InvalidSpec("image must not contain whitespace")
        for entry in self.env:
            if "=" not in entry or not entry.split("=", 1)[0]:
                raise InvalidSpec(f"Environment entries must look like KEY=VALUE: {entry!r}")
        build_port_maps(self.ports)

    def to_engine_config(self) -> Dict[str, Any]:
        """
        Engine create-container body, including exposure, bindings and restart policy.
        """
        exposed, bindings = build_port_maps(self.ports)
        config: Dict[str, Any] = {
            "Image": self.image,
            "Env": list(self.env),
            "Labels": dict(self.labels),
            "ExposedPorts": exposed,
            "HostConfig": {
                "PortBindings": bindings,
                "RestartPolicy": dict(RESTART_POLICY),
            },
        }
        if self.command:
            config["Cmd"] = list(self.command)
        return config


# --------------------------
# Error translation
# --------------------------

def translate_engine_error(exc: BaseException, action: str, resource_id: Optional[str] = None) -> WorkspaceError:
    """
    Map a docker SDK or transport exception into the workspace error taxonomy.
    """
    target = f" {resource_id}" if resource_id else ""
    if isinstance(exc, WorkspaceError):
        return exc
    if isinstance(exc, ImageNotFound):
        return InvalidSpec(f"{action} failed: image not available ({_explain(exc)})")
    if isinstance(exc, NotFound):
        return WorkspaceNotFound(f"Container not found{target}", workspace_id=resource_id)
    if isinstance(exc, APIError):
        code = exc.status_code
        detail = _explain(exc)
        if code == 304:
            return AlreadyInState(f"{action}{target}: already in requested state")
        if code == 409:
            return WorkspaceConflict(f"{action}{target} rejected: {detail}", workspace_id=resource_id)
        if code in (502, 503):
            return EngineUnavailable(f"{action}{target}: engine unavailable ({detail})")
        return EngineError(f"{action}{target} failed: {detail}", workspace_id=resource_id)
    if isinstance(exc, (requests.exceptions.Timeout, socket.timeout)):
        return OperationTimeout(f"{action}{target} timed out", workspace_id=resource_id)
    if isinstance(exc, (requests.exceptions.ConnectionError, DockerException, ConnectionError, FileNotFoundError)):
        return EngineUnavailable(f"{action}{target}: engine unreachable ({exc})")
    return EngineError(f"{action}{target} failed: {exc}", workspace_id=resource_id)


def _explain(exc: APIError) -> str:
    explanation = getattr(exc, "explanation", None)
    if isinstance(explanation, bytes):
        explanation = explanation.decode("utf-8", errors="replace")
    return str(explanation or exc)


# --------------------------
# Exec streams
# --------------------------

class ExecStream(ABC):
    """
    One-shot output stream of a command running inside a container.

    read_chunk() blocks and returns the next payload from either output channel,
    or None at end of stream. close() may be called from another thread to
    release the stream and unblock a pending read.
    """

    @abstractmethod
    def read_chunk(self) -> Optional[bytes]:
        raise NotImplementedError

    @abstractmethod
    def exit_code(self) -> Optional[int]:
        """
        Exit code of the finished command, or None while it is still running.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError


class DockerExecStream(ExecStream):
    """
    ExecStream over the raw socket returned by ``exec_start(socket=True)``.

    The socket carries the engine's multiplexed framing (8-byte header per
    stdout/stderr frame); frames are yielded in arrival order regardless of the
    channel they belong to.
    """

    def __init__(self, sock: Any, exec_id: str, inspect: Callable[[], Mapping[str, Any]]) -> None:
        self._sock = sock
        self._exec_id = exec_id
        self._inspect = inspect
        self._frames = frames_iter(sock, tty=False)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def exec_id(self) -> str:
        return self._exec_id

    @property
    def closed(self) -> bool:
        return self._closed

    def read_chunk(self) -> Optional[bytes]:
        while not self._closed:
            try:
                _channel, data = next(self._frames)
            except StopIteration:
                return None
            except (OSError, ValueError, SocketError):
                if self._closed:
                    return None
                raise
            if data:
                return bytes(data)
        return None

    def exit_code(self) -> Optional[int]:
        # The engine can report Running briefly after the output socket hits EOF.
        for _ in range(_EXIT_CODE_POLLS):
            info = self._inspect() or {}
            if not info.get("Running"):
                code = info.get("ExitCode")
                return int(code) if code is not None else None
            time.sleep(_EXIT_CODE_POLL_INTERVAL)
        return None

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # Shutting down the underlying socket wakes a reader blocked in poll().
        raw = getattr(self._sock, "_sock", self._sock)
        if hasattr(raw, "shutdown"):
            with suppress(OSError):
                raw.shutdown(socket.SHUT_RDWR)
        with suppress(OSError):
            self._sock.close()


# --------------------------
# Runtime client
# --------------------------

class ContainerRuntimeClient:
    """
    Asynchronous adapter over the engine control channel.

    The docker client is created lazily on first use from the configured socket
    path, so an unreachable engine fails individual calls with EngineUnavailable
    instead of failing construction. A pre-built client can be injected, which
    is how tests substitute a simulated engine.
    """

    def __init__(
        self,
        settings: Optional[ServerConfig] = None,
        docker_client: Optional[DockerClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = docker_client
        self._client_lock = threading.Lock()

    @property
    def settings(self) -> ServerConfig:
        return self._settings

    def _docker(self) -> DockerClient:
        with self._client_lock:
            if self._client is None:
                self._client = docker.DockerClient(
                    base_url=self._settings.docker_base_url,
                    timeout=self._settings.docker_client_timeout,
                )
            return self._client

    async def _run(self, action: str, fn: Callable[..., Any], *args: Any, resource_id: Optional[str] = None) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except WorkspaceError:
            raise
        except Exception as exc:
            raise translate_engine_error(exc, action, resource_id) from exc

    # ---- health ----

    async def ping(self) -> bool:
        await self._run("ping", lambda: self._docker().api.ping())
        return True

    # ---- inventory ----

    async def list_by_label(self, selector: Mapping[str, str]) -> List[RuntimeDescriptor]:
        """
        List containers (any state) carrying every ``key=value`` label in selector.

        Entries that do not carry the full selector are dropped even if the
        engine returned them.
        """
        wanted = {str(k): str(v) for k, v in selector.items()}
        filters = {"label": [f"{k}={v}" for k, v in wanted.items()]}

        def _list() -> List[Dict[str, Any]]:
            return self._docker().api.containers(all=True, filters=filters)

        summaries = await self._run("list containers", _list)
        out: List[RuntimeDescriptor] = []
        for summary in summaries or []:
            labels = summary.get("Labels") or {}
            if all(labels.get(k) == v for k, v in wanted.items()):
                out.append(RuntimeDescriptor.from_summary(summary))
        return out

    # ---- lifecycle ----

    async def create(self, spec: ContainerSpec) -> str:
        """
        Create (but do not start) a container; returns the short container id.

        Pulls the image once when the engine does not have it locally.
        """
        spec.validate()
        config = spec.to_engine_config()

        def _create() -> str:
            api = self._docker().api
            try:
                res = api.create_container_from_config(config, name=spec.name)
            except ImageNotFound:
                logger.info("Pulling image %s for %s", spec.image, spec.name)
                try:
                    api.pull(spec.image)
                except NotFound as exc:
                    raise InvalidSpec(f"Image not available: {spec.image} ({_explain(exc)})") from exc
                res = api.create_container_from_config(config, name=spec.name)
            return str(res.get("Id") or "")[:12]

        container_id = await self._run("create container", _create, resource_id=spec.name)
        logger.info("Created container %s (%s) from image %s", spec.name, container_id, spec.image)
        return container_id

    async def start(self, container_id: str) -> None:
        await self._run("start", lambda: self._docker().api.start(container_id), resource_id=container_id)

    async def stop(self, container_id: str) -> None:
        timeout = self._settings.stop_timeout_seconds
        await self._run(
            "stop",
            lambda: self._docker().api.stop(container_id, timeout=timeout),
            resource_id=container_id,
        )

    async def remove(self, container_id: str) -> None:
        await self._run("remove", lambda: self._docker().api.remove_container(container_id), resource_id=container_id)

    # ---- logs ----

    async def logs(self, container_id: str, tail: int) -> str:
        """
        Most recent ``tail`` lines of combined stdout/stderr; no follow.
        """

        def _logs() -> bytes:
            return self._docker().api.logs(
                container_id,
                stdout=True,
                stderr=True,
                stream=False,
                follow=False,
                tail=tail,
            )

        raw = await self._run("logs", _logs, resource_id=container_id)
        if isinstance(raw, (bytes, bytearray)):
            return bytes(raw).decode("utf-8", errors="replace")
        return str(raw or "")

    # ---- exec ----

    def open_exec(self, container_id: str, argv: Sequence[str]) -> ExecStream:
        """
        Create an exec instance for argv and attach to its output socket.

        Blocking; callers run it in a worker thread so it can share the exec
        deadline with the output pump. The command is passed as an argument
        vector; nothing is interpreted by a shell.
        """
        try:
            api = self._docker().api
            created = api.exec_create(
                container_id,
                list(argv),
                stdout=True,
                stderr=True,
                stdin=False,
                tty=False,
            )
            exec_id = created["Id"]
            sock = api.exec_start(exec_id, tty=False, socket=True)
        except WorkspaceError:
            raise
        except Exception as exc:
            raise translate_engine_error(exc, "exec", container_id) from exc
        return DockerExecStream(sock, exec_id, lambda: api.exec_inspect(exec_id))

    async def exec_exit_code(self, stream: ExecStream) -> Optional[int]:
        return await self._run("exec inspect", stream.exit_code)

    async def exec(
        self,
        container_id: str,
        argv: Sequence[str],
        *,
        timeout_seconds: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ) -> ExecResult:
        """
        Run argv to completion under the configured duration and output bounds.
        """
        session = ExecSession(
            self,
            timeout_seconds=timeout_seconds or self._settings.exec_timeout_seconds,
            max_output_bytes=max_output_bytes or self._settings.exec_max_output_bytes,
        )
        return await session.run(container_id, argv)

    def close(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            with suppress(Exception):
                client.close()
