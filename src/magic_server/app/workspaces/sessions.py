from __future__ import annotations

"""
Bounded one-shot helpers on top of the runtime client.

- ExecSession: run one command, capture combined output under a wall-clock
  timeout and an output-size cap, and always release the exec stream.
- LogReader: fetch the most recent log lines under a timeout.

Hitting a bound is a terminal outcome for that call: ExecSession returns the
partial output with an error indicator, LogReader raises OperationTimeout.
"""

import asyncio
import enum
import logging
import threading
from typing import TYPE_CHECKING, List, Optional, Sequence

from magic_server.app.errors import EngineError, ErrorKind, InvalidSpec, OperationTimeout, WorkspaceError
from magic_server.app.models import ExecResult

if TYPE_CHECKING:
    from magic_server.app.workspaces.runtime import ContainerRuntimeClient, ExecStream

logger = logging.getLogger("magic_workspaces")

MAX_LOG_TAIL = 10000

__all__ = [
    "ExecSession",
    "LogReader",
    "normalize_argv",
    "MAX_LOG_TAIL",
]


class _PumpOutcome(enum.Enum):
    eof = "eof"
    output_limit = "output_limit"
    abandoned = "abandoned"


class _StreamSlot:
    """
    Hand-off for an exec stream opened in a worker thread.

    The caller may give up before the worker finishes opening; whichever side
    comes second closes the stream.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._released = False
        self.stream: Optional["ExecStream"] = None

    def attach(self, stream: "ExecStream") -> bool:
        with self._lock:
            if self._released:
                return False
            self.stream = stream
            return True

    def release(self) -> None:
        with self._lock:
            self._released = True
            stream = self.stream
        if stream is not None:
            stream.close()


def normalize_argv(argv: Sequence[str]) -> List[str]:
    """
    Validate an argument vector.

    Raises:
        InvalidSpec when argv is a bare string, empty, or contains non-strings.
    """
    if isinstance(argv, (str, bytes)):
        raise InvalidSpec("Command must be an argument vector, not a string")
    out = list(argv or [])
    if not out or not all(isinstance(a, str) for a in out):
        raise InvalidSpec("Command must be a non-empty list of strings")
    if not out[0].strip():
        raise InvalidSpec("Command executable must not be empty")
    return out


class ExecSession:
    """
    Run a single command inside a container with bounded duration and output.
    """

    def __init__(self, runtime: "ContainerRuntimeClient", *, timeout_seconds: float, max_output_bytes: int) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        self._runtime = runtime
        self.timeout_seconds = float(timeout_seconds)
        self.max_output_bytes = int(max_output_bytes)

    async def run(self, container_id: str, argv: Sequence[str]) -> ExecResult:
        cmd = normalize_argv(argv)
        slot = _StreamSlot()
        buf = bytearray()
        error = None
        try:
            # Opening the exec counts against the same deadline as reading its output.
            try:
                outcome = await asyncio.wait_for(
                    asyncio.to_thread(self._open_and_pump, container_id, cmd, buf, slot),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = ErrorKind.timeout
                logger.warning(
                    "Exec timed out after %.1fs in container %s: %s",
                    self.timeout_seconds,
                    container_id,
                    cmd[0],
                )
            else:
                if outcome is _PumpOutcome.output_limit:
                    error = ErrorKind.output_limit
                    logger.warning(
                        "Exec output exceeded %d bytes in container %s: %s",
                        self.max_output_bytes,
                        container_id,
                        cmd[0],
                    )
        except WorkspaceError:
            raise
        except Exception as exc:
            raise EngineError(f"Exec stream failed in container {container_id}: {exc}") from exc
        finally:
            slot.release()

        data = bytes(buf)[: self.max_output_bytes]
        exit_code = None
        if error is None and slot.stream is not None:
            exit_code = await self._runtime.exec_exit_code(slot.stream)
        return ExecResult(
            output=data.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            error=error,
            truncated=error is ErrorKind.output_limit,
        )

    def _open_and_pump(self, container_id: str, cmd: List[str], buf: bytearray, slot: _StreamSlot) -> _PumpOutcome:
        stream = self._runtime.open_exec(container_id, cmd)
        if not slot.attach(stream):
            stream.close()
            return _PumpOutcome.abandoned
        return self._pump(stream, buf)

    def _pump(self, stream: "ExecStream", buf: bytearray) -> _PumpOutcome:
        # Runs in a worker thread; returns once the stream ends or the cap is reached.
        while True:
            chunk = stream.read_chunk()
            if chunk is None:
                return _PumpOutcome.eof
            room = self.max_output_bytes - len(buf)
            if len(chunk) > room:
                buf += chunk[:room]
                return _PumpOutcome.output_limit
            buf += chunk


class LogReader:
    """
    Fetch recent container logs; not a stream.
    """

    def __init__(self, runtime: "ContainerRuntimeClient", *, timeout_seconds: float, max_tail: int = MAX_LOG_TAIL) -> None:
        self._runtime = runtime
        self.timeout_seconds = float(timeout_seconds)
        self.max_tail = int(max_tail)

    async def read(self, container_id: str, tail: int) -> str:
        lines = min(max(1, int(tail)), self.max_tail)
        try:
            return await asyncio.wait_for(self._runtime.logs(container_id, lines), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise OperationTimeout(
                f"Log retrieval for {container_id} exceeded {self.timeout_seconds:.1f}s",
                workspace_id=container_id,
            )
