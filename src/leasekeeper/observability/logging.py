"""Structured logging for leasekeeper.

Every record carries the holder identity and the lease it concerns, so the
logs of a fleet of replicas can still be told apart once aggregated. JSON
output is meant for log collectors; the console format is for local runs.

Usage:
    from leasekeeper.observability.logging import LogContext, configure_logging

    configure_logging(json_format=False, level="DEBUG")

    with LogContext(holder_id="replica-a", lease="default/my-lease"):
        logger.info("Started leading")  # tagged with holder_id and lease
"""

from __future__ import annotations

import contextvars
import logging
import sys
from datetime import datetime, timezone
from typing import Any

import orjson

holder_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("holder_id", default="")
lease_var: contextvars.ContextVar[str] = contextvars.ContextVar("lease", default="")

# Attributes every LogRecord has; anything else arrived through extra=
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "color_message",
}

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "kubernetes": logging.WARNING,
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _election_context() -> dict[str, str]:
    context = {"holder_id": holder_id_var.get(), "lease": lease_var.get()}
    return {key: value for key, value in context.items() if value}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    {"timestamp": "2026-01-10T12:34:56.789000+00:00", "level": "INFO",
     "logger": "leasekeeper.distributed.coordinator",
     "message": "Started leading prod/my-app", "holder_id": "replica-a",
     "lease": "prod/my-app", "source": "coordinator.py:388"}

    Values passed through ``extra=`` are added as top-level keys; values
    orjson cannot encode are written as their str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_election_context(),
            "source": f"{record.filename}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        )

        exc_type, exc_value, _ = record.exc_info or (None, None, None)
        if exc_type is not None and record.exc_info is not None:
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        return orjson.dumps(entry, default=str).decode()


class ConsoleFormatter(logging.Formatter):
    """Single-line records for a terminal.

    12:34:56.789 INFO    leasekeeper.runtime: Shutting down server [replica-]
    """

    _LEVEL_COLORS = {
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
        logging.CRITICAL: "35",
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created)
        clock = created.strftime("%H:%M:%S.") + f"{created.microsecond // 1000:03d}"

        level = f"{record.levelname:<7}"
        color = self._LEVEL_COLORS.get(record.levelno)
        if self.use_colors and color:
            level = f"\033[{color}m{level}\033[0m"

        line = f"{clock} {level} {record.name}: {record.getMessage()}"
        holder_id = holder_id_var.get()
        if holder_id:
            line += f" [{holder_id[:8]}]"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Route all logging to stderr through a single handler.

    Args:
        json_format: JSON lines instead of console output
        level: Root log level name, case-insensitive
        use_colors: Color level names when stderr is a terminal
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter(use_colors))
    root.addHandler(handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


class LogContext:
    """Bind holder_id and/or lease to log records inside a with block.

    Usage:
        with LogContext(holder_id="replica-a", lease="default/my-lease"):
            logger.info("Running election")
    """

    _VARS = {"holder_id": holder_id_var, "lease": lease_var}

    def __init__(self, **values: str) -> None:
        unknown = set(values) - set(self._VARS)
        if unknown:
            raise TypeError(f"unknown log context keys: {sorted(unknown)}")
        self.values = values
        self._tokens: list[tuple[contextvars.ContextVar[str], contextvars.Token[str]]] = []

    def __enter__(self) -> LogContext:
        self._tokens = [
            (self._VARS[key], self._VARS[key].set(value)) for key, value in self.values.items()
        ]
        return self

    def __exit__(self, *exc_info: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
