"""
File logging for the workspace service.

Every process writes to a rotating log file. The location is the first usable
entry of, in order:

1. MAGIC_LOG_FILE (a full file path)
2. the ``log_dir`` argument of setup_logging
3. MAGIC_LOG_DIR
4. ~/.magic_workspaces/logs
5. <system temp dir>/magic_workspaces/logs

Usage (once, at app startup):

    from magic_server.app.logging_setup import initialize_from_env

    log_path = initialize_from_env()

Other environment variables:
- MAGIC_LOG_NAME: file name inside a log directory (default "<service>.log")
- MAGIC_LOG_MAX_BYTES / MAGIC_LOG_BACKUP_COUNT: rotation (10MB, 5 files)
- MAGIC_LOG_LEVEL, falling back to LOG_LEVEL: level of service logs (INFO)
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from magic_server.app.config import _env_int

__all__ = [
    "APP_LOGGER_NAME",
    "LoggingOptions",
    "iter_log_candidates",
    "resolve_log_path",
    "setup_logging",
    "initialize_from_env",
    "configure_third_party_loggers",
]

APP_LOGGER_NAME = "magic_workspaces"

_LIBRARY_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx", "docker", "urllib3")
_NOISY_LOGGERS = ("urllib3.connectionpool", "asyncio", "concurrent.futures")

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s pid=%(process)d %(filename)s:%(lineno)d - %(message)s"
_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _level_number(name: Union[int, str, None], default: int = logging.INFO) -> int:
    if isinstance(name, int):
        return name
    value = getattr(logging, str(name or "").strip().upper(), None)
    return value if isinstance(value, int) else default


@dataclass(frozen=True)
class LoggingOptions:
    """
    Where and how the service logs. Build with from_env().
    """

    service_name: str = APP_LOGGER_NAME
    level: int = logging.INFO
    log_file: Optional[Path] = None
    log_dir: Optional[Path] = None
    file_name: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @staticmethod
    def from_env(service_name: str = APP_LOGGER_NAME) -> "LoggingOptions":
        log_file = os.getenv("MAGIC_LOG_FILE")
        log_dir = os.getenv("MAGIC_LOG_DIR")
        return LoggingOptions(
            service_name=service_name,
            level=_level_number(os.getenv("MAGIC_LOG_LEVEL") or os.getenv("LOG_LEVEL")),
            log_file=Path(log_file).expanduser() if log_file else None,
            log_dir=Path(log_dir).expanduser() if log_dir else None,
            file_name=(os.getenv("MAGIC_LOG_NAME") or "").strip() or None,
            max_bytes=_env_int("MAGIC_LOG_MAX_BYTES", 10 * 1024 * 1024, minimum=1),
            backup_count=_env_int("MAGIC_LOG_BACKUP_COUNT", 5, minimum=1),
        )

    @property
    def log_file_name(self) -> str:
        return self.file_name or f"{self.service_name}.log"


def iter_log_candidates(options: LoggingOptions, log_dir: Optional[Union[str, Path]] = None) -> Iterator[Path]:
    """
    Yield log file locations from most to least preferred.
    """
    name = options.log_file_name
    if options.log_file:
        yield options.log_file
    if log_dir:
        yield Path(log_dir).expanduser() / name
    if options.log_dir:
        yield options.log_dir / name
    yield Path.home() / ".magic_workspaces" / "logs" / name
    yield Path(tempfile.gettempdir()) / "magic_workspaces" / "logs" / name


def _touch(path: Path) -> Optional[str]:
    # Returns why the path is unusable, or None.
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode="a", encoding="utf-8"):
            pass
    except OSError as e:
        return f"{e.__class__.__name__}: {e}"
    return None


def resolve_log_path(options: LoggingOptions, log_dir: Optional[Union[str, Path]] = None) -> Path:
    """
    First candidate that can be created and appended to.

    Raises:
        RuntimeError when no candidate is usable.
    """
    failures: List[Tuple[Path, str]] = []
    for candidate in iter_log_candidates(options, log_dir):
        reason = _touch(candidate)
        if reason is None:
            return candidate
        failures.append((candidate, reason))
    attempts = "; ".join(f"{path} -> {reason}" for path, reason in failures)
    raise RuntimeError(f"No writable log location. Attempts: {attempts}")


def configure_third_party_loggers(base_level: int) -> None:
    """
    Keep library loggers at WARNING unless the service itself runs at DEBUG.
    """
    lib_level = logging.INFO if base_level <= logging.DEBUG else logging.WARNING
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(lib_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _has_file_handler(root: logging.Logger, path: Path) -> bool:
    target = str(path.resolve())
    return any(
        getattr(h, "baseFilename", None) and str(Path(h.baseFilename).resolve()) == target
        for h in root.handlers
    )


def _has_console_handler(root: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) in (sys.stdout, sys.stderr)
        for h in root.handlers
    )


def setup_logging(
    options: Optional[LoggingOptions] = None,
    *,
    level: Optional[Union[int, str]] = None,
    log_dir: Optional[Union[str, Path]] = None,
    add_console: bool = False,
) -> Path:
    """
    Attach a rotating file handler (and optionally a stdout handler) to the root logger.

    The file receives DEBUG and above; the service logger and the console use
    the configured level. Repeated calls do not attach duplicate handlers.

    Returns:
        Path to the active log file.
    """
    options = options or LoggingOptions.from_env()
    if level is not None:
        options = replace(options, level=_level_number(level))

    log_path = resolve_log_path(options, log_dir)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    if not _has_file_handler(root, log_path):
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=options.max_bytes,
            backupCount=options.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATEFMT))
        root.addHandler(file_handler)

    if add_console and not _has_console_handler(root):
        console = logging.StreamHandler(stream=sys.stdout)
        console.setLevel(options.level)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATEFMT))
        root.addHandler(console)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(options.level)
    configure_third_party_loggers(options.level)
    app_logger.info(
        "Logging to %s at %s (rotate at %d bytes, keep %d)",
        log_path,
        logging.getLevelName(options.level),
        options.max_bytes,
        options.backup_count,
    )
    return log_path


def initialize_from_env(service_name: str = APP_LOGGER_NAME) -> Path:
    """
    App startup initializer: file handler plus a console handler.
    """
    return setup_logging(LoggingOptions.from_env(service_name), add_console=True)
