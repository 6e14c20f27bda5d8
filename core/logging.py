# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Structured logging with run context
# PURPOSE: Consistent, queryable logging across resolver, awaiter and driver
# ============================================================================
"""
Structured Logging

Human-readable lines by default, one JSON object per line with
LOG_FORMAT=json.

Context (execution_id, command, alveolus, descriptor) lives in a
ContextVar: each asyncio task sees the context it was created with, so
concurrent traversals never mix their fields. Code running through
run_in_executor starts from an empty context and pushes its own.

Usage:
    from core.logging import ComponentType, get_logger, log_context

    logger = get_logger(__name__, ComponentType.RESOLVER)

    with log_context(execution_id="run-123", command="apply"):
        logger.info("Deploying 'app'")
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional, TextIO, Union


class ComponentType(str, Enum):
    """Engine parts, used to filter logs."""
    RESOLVER = "resolver"
    PATCH = "patch"
    AWAITER = "awaiter"
    DRIVER = "driver"
    ARCHIVE = "archive"
    KUBE = "kube"


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """Fields attached to every record logged inside a log_context block."""
    execution_id: Optional[str] = None
    command: Optional[str] = None
    alveolus: Optional[str] = None
    descriptor: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only, extra entries flattened in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


_KNOWN_FIELDS = {f.name for f in fields(LogContext)} - {"extra"}
_current: ContextVar[LogContext] = ContextVar("kubehive_log_context", default=LogContext())


def get_current_context() -> LogContext:
    return _current.get()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[LogContext]:
    """
    Overlay fields on the current context for the duration of the block.

    Unknown keyword arguments are kept as extra fields.

    Example:
        with log_context(descriptor="svc", attempt=2):
            logger.debug("Patching")
    """
    parent = _current.get()
    known = {k: v for k, v in kwargs.items() if k in _KNOWN_FIELDS}
    extra = {k: v for k, v in kwargs.items() if k not in _KNOWN_FIELDS}
    context = replace(parent, **known, extra={**parent.extra, **extra})
    token = _current.set(context)
    try:
        yield context
    finally:
        _current.reset(token)


# ============================================================================
# FORMATTERS
# ============================================================================

def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "context", None) or get_current_context().to_dict()


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregators."""

    def __init__(self, include_source: bool = True):
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        component = getattr(record, "component", None)
        if component:
            data["component"] = component

        context = _record_context(record)
        if context:
            data["context"] = context
        payload = getattr(record, "data", None)
        if payload:
            data["data"] = payload
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        if self.include_source:
            data["source"] = {"file": record.filename, "line": record.lineno, "function": record.funcName}

        return json.dumps(data, default=str)


class HumanFormatter(logging.Formatter):
    """`time LEVEL logger [run=.., descriptor=..]: message`"""

    _LABELS = (("execution_id", "run"), ("command", "cmd"), ("alveolus", "alveolus"), ("descriptor", "descriptor"))

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        context = _record_context(record)
        parts = [f"{label}={context[key]}" for key, label in self._LABELS if context.get(key)]
        context_str = f" [{', '.join(parts)}]" if parts else ""

        line = f"{timestamp} {record.levelname.ljust(8)} {record.name}{context_str}: {record.getMessage()}"
        payload = getattr(record, "data", None)
        if payload:
            line += f" {payload}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


# ============================================================================
# LOGGERS
# ============================================================================

class ContextLogger(logging.LoggerAdapter):
    """
    Snapshots the current context into each record.

    The snapshot is taken when the record is created, so formatting later
    (another thread, a queue handler) still shows the right run.
    """

    def process(self, msg, kwargs):
        extra = kwargs.get("extra") or {}
        kwargs["extra"] = {
            "component": self.extra.get("component"),
            "context": get_current_context().to_dict(),
            "data": extra.get("data", extra or None),
        }
        return msg, kwargs


def get_logger(name: str, component: Optional[ComponentType] = None) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name, usually __name__
        component: Engine part the logger belongs to
    """
    return ContextLogger(logging.getLogger(name), {"component": component.value if component else None})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name or number
        json_output: JSON lines (also enabled by LOG_FORMAT=json)
        stream: Output stream, stderr by default so stdout stays for results
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # one INFO line per HTTP request otherwise
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named milestone (alveolus_visited, apply_completed...).

    Args:
        name: Checkpoint name
        data: Checkpoint payload
        logger: Logger to use, `checkpoint` by default
    """
    payload: Dict[str, Any] = {"checkpoint": name, **get_current_context().to_dict()}
    if data:
        payload["data"] = data
    (logger or logging.getLogger("checkpoint")).debug(f"CHECKPOINT: {name}", extra={"data": payload})


__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "get_current_context",
    "log_context",
    "configure_logging",
    "log_checkpoint",
]
