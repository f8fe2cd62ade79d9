"""Logging setup using Loguru.

Every record carries the page-session context (``session_id``, ``user_id``
and the running mutation's ``operation``) in ``record["extra"]``:

- development: one colored line per record, with the context in brackets
- production/staging: compact JSON on stderr
- optional rotating file output

Example:
    >>> from petshare.logging import logger, operation_context
    >>> with operation_context("add-comment"):
    ...     logger.info("Submitting comment")
    12:00:01.200 | INFO     | 3f9c2a1b7d4e/user-a/add-comment | Submitting comment
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from loguru import logger as loguru_logger

from petshare.config import settings

# =============================================================================
# Context Variables
# =============================================================================

# Values follow the asyncio task (and tasks it spawns after they are set)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

_CONTEXT_VARS = {"session_id": session_id_var, "user_id": user_id_var, "operation": operation_var}


# =============================================================================
# Record Patching
# =============================================================================


def bind_context(record: dict[str, Any]) -> None:
    """Copy the page-session context into the record and pre-render JSON."""
    extra = record["extra"]
    for name, var in _CONTEXT_VARS.items():
        extra.setdefault(name, var.get())
    extra["scope"] = "/".join(extra[name] or "-" for name in _CONTEXT_VARS)
    record["serialized"] = to_json(record)


def to_json(record: dict[str, Any]) -> str:
    """Render a record as one JSON line, dropping unset context fields."""
    payload: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": f"{record['name']}:{record['function']}:{record['line']}",
    }
    payload.update({k: v for k, v in record["extra"].items() if v is not None and k != "scope"})

    if exc := record["exception"]:
        payload["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": traceback.format_exception(exc.type, exc.value, exc.traceback),
        }

    return json.dumps(payload, default=str)


def _json_format(record: dict[str, Any]) -> str:
    return "{serialized}\n"


HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[scope]}</cyan> | "
    "<level>{message}</level>"
)


# =============================================================================
# Logger Configuration
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
) -> Any:
    """Configure Loguru handlers for the page session.

    Args:
        level: Minimum log level
        json_logs: Emit JSON lines instead of colored text
        log_file: Optional rotating log file

    Returns:
        Logger patched to carry the page-session context
    """
    loguru_logger.remove()
    patched = loguru_logger.patch(bind_context)

    if json_logs:
        patched.add(sys.stderr, level=level, format=_json_format)
    else:
        patched.add(sys.stderr, level=level, format=HUMAN_FORMAT, colorize=True)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=level,
            format=_json_format,
            rotation="10 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,
        )

    return patched


logger = setup_logging(level=settings.log_level, json_logs=settings.log_json, log_file=settings.log_file)


# =============================================================================
# Context Helpers
# =============================================================================


def set_log_context(session_id: str | None = None, user_id: str | None = None) -> None:
    """Set the page-session context for the current task (None leaves a value as is)."""
    if session_id is not None:
        session_id_var.set(session_id)
    if user_id is not None:
        user_id_var.set(user_id)


@contextmanager
def operation_context(name: str) -> Iterator[None]:
    """Tag records emitted inside the block with ``operation=name``."""
    token = operation_var.set(name)
    try:
        yield
    finally:
        operation_var.reset(token)


def clear_log_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


def get_log_context() -> dict[str, str | None]:
    return {name: var.get() for name, var in _CONTEXT_VARS.items()}


__all__ = [
    "logger",
    "session_id_var",
    "user_id_var",
    "operation_var",
    "set_log_context",
    "operation_context",
    "clear_log_context",
    "get_log_context",
    "setup_logging",
]
