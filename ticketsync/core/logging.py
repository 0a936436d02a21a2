from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"


def configure_logging() -> None:
    """Route loguru to stdout and, when ``LOG_FILE_PATH`` is set, to that file."""

    from ticketsync.core.config import get_settings

    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT)

    log_path = get_settings().log_file_path
    if not log_path:
        return
    log_path = log_path.expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_path), format=LOG_FORMAT, level="INFO", encoding="utf-8", enqueue=True)
    except OSError as exc:
        logger.warning(f"LOG FILE DISABLED - unable to use path={log_path} error={exc}")


def _emit(level: str, message: str, meta: dict[str, Any]) -> None:
    if not meta:
        logger.opt(depth=2).log(level, message)
        return
    rendered = " ".join(f"{key}={meta[key]}" for key in sorted(meta))
    # depth=2 attributes the record to the caller of log_*.
    logger.bind(**meta).opt(depth=2).log(level, f"{message} | {rendered}")


def log_debug(message: str, **meta) -> None:
    _emit("DEBUG", message, meta)


def log_info(message: str, **meta) -> None:
    _emit("INFO", message, meta)


def log_warning(message: str, **meta) -> None:
    _emit("WARNING", message, meta)


def log_error(message: str, **meta) -> None:
    _emit("ERROR", message, meta)


def log_audit_event(
    event_type: str,
    action: str,
    *,
    user_id: int | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    **extra_meta,
) -> None:
    """Write one lifecycle audit line.

    Format: ``{event_type} {action} | entity_id=... entity_type=... user_id=... [extra]``
    with keys sorted, so lines stay stable for grepping.
    """
    meta: dict[str, Any] = {
        key: value
        for key, value in (
            ("user_id", user_id),
            ("entity_type", entity_type),
            ("entity_id", entity_id),
        )
        if value is not None
    }
    meta.update(extra_meta)
    _emit("INFO", f"{event_type} {action}", meta)


__all__ = [
    "configure_logging",
    "log_audit_event",
    "log_debug",
    "log_error",
    "log_info",
    "log_warning",
]
