"""
Simulated container engine for tests.

FakeDockerClient exposes the part of docker's low-level APIClient that
ContainerRuntimeClient uses (``client.api``) and keeps containers in memory.
Exec output is written with the engine's multiplexed framing onto one end of a
socketpair, so the real frame parser and socket release paths are exercised.

Commands understood by exec:
- echo ARGS...     ARGS on stdout, exit 0
- false            exit 1
- warn MESSAGE     MESSAGE on stderr, exit 2
- sleep SECONDS    waits (or until the reader hangs up), exit 0
- yes              floods stdout until the reader hangs up
- anything else    "exec: NAME: not found" on stderr, exit 127
"""

from __future__ import annotations

import select
import socket
import struct
import threading
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests
from docker.errors import APIError, ImageNotFound, NotFound

STDOUT = 1
STDERR = 2

KNOWN_IMAGES = (
    "alpine:3.20",
    "python:3.12-slim",
    "codercom/code-server:latest",
    "filebrowser/filebrowser:latest",
)


def frame(stream: int, payload: bytes) -> bytes:
    return struct.pack(">BxxxL", stream, len(payload)) + payload


def api_error(status_code: int, message: str, cls: type = APIError) -> APIError:
    resp = requests.Response()
    resp.status_code = status_code
    return cls(message, response=resp, explanation=message)


@dataclass
class FakeContainer:
    id: str
    name: str
    image: str
    labels: Dict[str, str]
    config: Dict[str, Any]
    state: str = "created"
    created: float = field(default_factory=time.time)
    log_lines: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        bindings = (self.config.get("HostConfig") or {}).get("PortBindings") or {}
        ports: List[Dict[str, Any]] = []
        for key in self.config.get("ExposedPorts") or {}:
            port, _, proto = key.partition("/")
            entry: Dict[str, Any] = {"PrivatePort": int(port), "Type": proto}
            if self.state == "running":
                host = ((bindings.get(key) or [{}])[0]).get("HostPort")
                entry.update({"IP": "0.0.0.0", "PublicPort": int(host) if host else 49153})
            ports.append(entry)
        return {
            "Id": self.id,
            "Names": [f"/{self.name}"],
            "Image": self.image,
            "State": self.state,
            "Created": int(self.created),
            "Labels": dict(self.labels),
            "Ports": ports,
        }


class FakeAPIClient:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.containers_by_id: Dict[str, FakeContainer] = {}
        self.images = set(KNOWN_IMAGES)
        self.pullable: set = set()
        self.calls: List[Tuple[str, Any]] = []
        self.reachable = True
        self.ignore_label_filters = False
        self.logs_delay = 0.0
        self.exec_create_delay = 0.0
        self._failures: Dict[str, BaseException] = {}
        self._execs: Dict[str, Dict[str, Any]] = {}
        self._threads: List[threading.Thread] = []
        self.exec_sockets: List[socket.socket] = []

    # ---- test controls ----

    def fail_next(self, op: str, exc: BaseException) -> None:
        self._failures[op] = exc

    def add_container(
        self,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        state: str = "running",
        image: str = "busybox:latest",
    ) -> FakeContainer:
        with self._lock:
            c = FakeContainer(
                id=uuid.uuid4().hex + uuid.uuid4().hex,
                name=name,
                image=image,
                labels=dict(labels or {}),
                config={"Image": image, "Labels": dict(labels or {})},
                state=state,
            )
            self.containers_by_id[c.id] = c
            return c

    def find(self, ref: str) -> FakeContainer:
        with self._lock:
            for c in self.containers_by_id.values():
                if c.name == ref or (len(ref) >= 12 and c.id.startswith(ref)):
                    return c
        raise api_error(404, f"No such container: {ref}", NotFound)

    def op_count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def _record(self, op: str, *args: Any) -> None:
        self.calls.append((op, args))
        if not self.reachable:
            raise requests.exceptions.ConnectionError("Connection refused: engine socket")
        exc = self._failures.pop(op, None)
        if exc is not None:
            raise exc

    # ---- low-level API surface ----

    def ping(self) -> bool:
        self._record("ping")
        return True

    def containers(self, quiet=False, all=False, filters=None, **kwargs) -> List[Dict[str, Any]]:
        self._record("containers", filters)
        wanted = [] if self.ignore_label_filters else list((filters or {}).get("label") or [])
        out: List[Dict[str, Any]] = []
        with self._lock:
            for c in self.containers_by_id.values():
                if not all and c.state != "running":
                    continue
                if any(not self._label_match(c.labels, sel) for sel in wanted):
                    continue
                out.append(c.summary())
        return out

    @staticmethod
    def _label_match(labels: Dict[str, str], selector: str) -> bool:
        key, sep, value = selector.partition("=")
        if not sep:
            return key in labels
        return labels.get(key) == value

    def create_container_from_config(self, config: Dict[str, Any], name: Optional[str] = None) -> Dict[str, Any]:
        self._record("create", name)
        image = config.get("Image")
        if image not in self.images:
            raise api_error(404, f"No such image: {image}", ImageNotFound)
        with self._lock:
            if any(c.name == name for c in self.containers_by_id.values()):
                raise api_error(409, f'Conflict. The container name "/{name}" is already in use')
            c = FakeContainer(
                id=uuid.uuid4().hex + uuid.uuid4().hex,
                name=name or uuid.uuid4().hex[:8],
                image=image,
                labels=dict(config.get("Labels") or {}),
                config=config,
            )
            self.containers_by_id[c.id] = c
        return {"Id": c.id, "Warnings": []}

    def pull(self, repository: str, tag: Optional[str] = None, **kwargs) -> str:
        self._record("pull", repository)
        if repository not in self.pullable:
            raise api_error(404, f"pull access denied for {repository}", NotFound)
        self.images.add(repository)
        return ""

    def start(self, container: str, *args, **kwargs) -> None:
        self._record("start", container)
        c = self.find(container)
        if c.state == "running":
            raise api_error(304, "container already started")
        c.state = "running"
        c.log_lines.append(f"{c.name} started")

    def stop(self, container: str, timeout: Optional[int] = None) -> None:
        self._record("stop", container)
        c = self.find(container)
        if c.state not in ("running", "paused"):
            raise api_error(304, "container already stopped")
        c.state = "exited"
        c.log_lines.append(f"{c.name} stopped")

    def remove_container(self, container: str, v: bool = False, link: bool = False, force: bool = False) -> None:
        self._record("remove", container)
        c = self.find(container)
        if c.state in ("running", "paused") and not force:
            raise api_error(409, f"cannot remove container {c.name}: container is running")
        with self._lock:
            self.containers_by_id.pop(c.id, None)

    def logs(self, container: str, stdout=True, stderr=True, stream=False, timestamps=False, tail="all", **kwargs) -> bytes:
        self._record("logs", container, tail)
        c = self.find(container)
        if self.logs_delay:
            time.sleep(self.logs_delay)
        lines = c.log_lines if tail == "all" else c.log_lines[-int(tail):]
        return "".join(f"{line}\n" for line in lines).encode("utf-8")

    # ---- exec ----

    def exec_create(self, container: str, cmd, stdout=True, stderr=True, stdin=False, tty=False, **kwargs) -> Dict[str, str]:
        self._record("exec_create", container, cmd)
        c = self.find(container)
        if self.exec_create_delay:
            time.sleep(self.exec_create_delay)
        if c.state != "running":
            raise api_error(409, f"Container {c.id} is not running")
        exec_id = uuid.uuid4().hex
        self._execs[exec_id] = {"cmd": list(cmd), "container": c.id, "running": False, "exit_code": None}
        return {"Id": exec_id}

    def exec_start(self, exec_id: str, detach=False, tty=False, stream=False, socket=False, demux=False):
        self._record("exec_start", exec_id)
        record = self._execs[exec_id]
        if not socket:
            raise AssertionError("exec_start is expected to be called with socket=True")
        near, far = _socketpair()
        record["running"] = True
        self.exec_sockets.append(near)
        t = threading.Thread(target=self._run_exec, args=(record, far), daemon=True)
        self._threads.append(t)
        t.start()
        return near

    def exec_inspect(self, exec_id: str) -> Dict[str, Any]:
        record = self._execs[exec_id]
        return {"ID": exec_id, "Running": record["running"], "ExitCode": record["exit_code"]}

    def _run_exec(self, record: Dict[str, Any], sock: "socket.socket") -> None:
        name, args = record["cmd"][0], record["cmd"][1:]
        code = 0
        try:
            if name == "echo":
                sock.sendall(frame(STDOUT, (" ".join(args) + "\n").encode("utf-8")))
            elif name == "false":
                code = 1
            elif name == "warn":
                sock.sendall(frame(STDERR, (" ".join(args) + "\n").encode("utf-8")))
                code = 2
            elif name == "sleep":
                # Readable here means the reader hung up.
                readable, _, _ = select.select([sock], [], [], float(args[0]) if args else 1.0)
                code = 137 if readable else 0
            elif name == "yes":
                chunk = frame(STDOUT, b"y\n" * 2048)
                while True:
                    sock.sendall(chunk)
            else:
                sock.sendall(frame(STDERR, f"exec: {name}: not found\n".encode("utf-8")))
                code = 127
        except OSError:
            code = 137
        finally:
            record["exit_code"] = code
            record["running"] = False
            with suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
            sock.close()

    def close(self) -> None:
        for s in self.exec_sockets:
            with suppress(OSError):
                s.close()
        for t in self._threads:
            t.join(timeout=2)


def _socketpair() -> Tuple[socket.socket, socket.socket]:
    return socket.socketpair()


class FakeDockerClient:
    """
    Stand-in for docker.DockerClient; only ``api`` and ``close`` are used.
    """

    def __init__(self) -> None:
        self.api = FakeAPIClient()
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self.api.close()
