"""Logging bootstrap for heapcensus.

// [LAW:single-enforcer] Handlers are attached to the heapcensus logger here and nowhere else.
// [LAW:one-source-of-truth] The resolved level and log file are returned as LoggingRuntime.

Two modes:

* standalone (the CLI owns the process): stderr + rotating file, records stop
  at the ``heapcensus`` logger, warnings are captured, and third-party
  loggers are held at WARNING.
* embedded (the census runs inside a host application): rotating file only,
  records still propagate so the host's own handlers see census alerts, and
  the host's root logger is left alone.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "heapcensus"

LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_STREAM_FORMAT = "[%(name)s] %(levelname)s %(message)s"
# Monitor threads are named heapcensus-<task>; keep the thread in file records.
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"


@dataclass(frozen=True)
class LoggingRuntime:
    """Resolved runtime logging configuration."""

    level_name: str
    level: int
    file_path: str
    standalone: bool = True


_RUNTIME: LoggingRuntime | None = None


def _level_from_env() -> tuple[str, int]:
    raw = os.environ.get("HEAPCENSUS_LOG_LEVEL") or "INFO"
    level = logging.getLevelName(raw.strip().upper())
    # getLevelName maps unknown names to the string "Level <name>".
    if not isinstance(level, int):
        level = logging.INFO
    return logging.getLevelName(level), level


def _log_file_for(session_name: str) -> Path:
    explicit = os.environ.get("HEAPCENSUS_LOG_FILE")
    if explicit:
        return Path(explicit)
    log_dir = Path(os.environ.get("HEAPCENSUS_LOG_DIR") or os.path.expanduser("~/.local/share/heapcensus/logs"))
    stem = "".join(ch if (ch.isalnum() or ch in "-_") else "-" for ch in session_name).strip("-_") or "census"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return log_dir / f"{stem}-{stamp}-{os.getpid()}.log"


def _handlers(level: int, file_path: Path, standalone: bool) -> list[logging.Handler]:
    file_handler = RotatingFileHandler(
        file_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    handlers: list[logging.Handler] = [file_handler]
    if standalone:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(_STREAM_FORMAT))
        handlers.insert(0, stream_handler)
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure(session_name: str = "heapcensus", *, standalone: bool = True) -> LoggingRuntime:
    """Attach census handlers to the ``heapcensus`` logger.

    Idempotent: the first call wins and later calls return its runtime,
    whatever mode they ask for.
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level_name, level = _level_from_env()
    file_path = _log_file_for(session_name)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = not standalone
    logger.handlers.clear()
    for handler in _handlers(level, file_path, standalone):
        logger.addHandler(handler)

    if standalone:
        root = logging.getLogger()
        if root.level > logging.WARNING:
            root.setLevel(logging.WARNING)
        logging.captureWarnings(True)

    _RUNTIME = LoggingRuntime(
        level_name=level_name,
        level=level,
        file_path=str(file_path),
        standalone=standalone,
    )
    logger.debug("logging configured: %s (%s)", _RUNTIME.file_path, "standalone" if standalone else "embedded")
    return _RUNTIME


def get_runtime() -> LoggingRuntime | None:
    """Return configured logging runtime, if configure() has run."""
    return _RUNTIME


def reset() -> None:
    """Close census handlers and forget the runtime so configure() can run again."""
    global _RUNTIME
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    if _RUNTIME is not None and _RUNTIME.standalone:
        logging.captureWarnings(False)
    _RUNTIME = None
