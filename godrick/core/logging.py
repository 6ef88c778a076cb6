"""
Logging setup.

Records are enriched with the request id and the resolved user id from
context variables, so lines written deep inside a chat stream can still be
tied back to the request that opened it. Call sites attach structured fields
through ``data=``::

    logger.info("Conversation created", data={"conversation_id": cid})
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Dict, Optional

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _context_fields() -> Dict[str, str]:
    fields = {}
    request_id = request_id_ctx.get()
    if request_id:
        fields["request_id"] = request_id
    user_id = user_id_ctx.get()
    if user_id:
        fields["user_id"] = user_id
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%H:%M:%S")
        request_id = (request_id_ctx.get() or "-")[:8]
        line = (
            f"{timestamp} {color}{record.levelname:<8}{self.RESET} "
            f"[{request_id}] {record.name}: {record.getMessage()}"
        )
        data = getattr(record, "data", None)
        if data:
            line += " " + " ".join(f"{k}={v}" for k, v in data.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """Adapter that moves a ``data`` keyword into the record's extras."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        if "data" in kwargs:
            kwargs.setdefault("extra", {})["data"] = kwargs.pop("data")
        return msg, kwargs


_loggers: Dict[str, ContextLogger] = {}


def get_logger(name: str) -> ContextLogger:
    if name not in _loggers:
        _loggers[name] = ContextLogger(logging.getLogger(name), {})
    return _loggers[name]


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Root level name.
        json_output: JSON lines on stdout instead of the console format.
        log_file: Optional path that always receives JSON lines.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(StructuredFormatter() if json_output else ConsoleFormatter())
    root.addHandler(stdout)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
