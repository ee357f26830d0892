"""
Logging setup shared by the sync engine and the web app.

One correlation id is active per HTTP request (X-Request-ID) and per sync
run, so every line a run writes across batches can be grepped together.

Usage:
    setup_logging(level="INFO", json_format=True)
    logger = get_logger(__name__)

    with correlation_context() as run_id:
        logger.info("Batch 1/8: report requested", extra={"report_id": "R1"})
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are not caller-supplied ``extra=`` fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Loggers that report every provider request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Short random id, same shape as the X-Request-ID the middleware issues."""
    return uuid.uuid4().hex[:8]


class correlation_context:
    """Bind a correlation id for the duration of a block, restoring the previous one."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *exc):
        _correlation_id.reset(self._token)


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, correlation_id and extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        entry.update(_extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE | extras"""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        line = "{} - {:8} - {}{} - {}".format(
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
            record.name,
            f" [{correlation_id}]" if correlation_id else "",
            record.getMessage(),
        )
        extras = _extras(record)
        if extras:
            line += f" | {extras}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stderr handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class Timer:
    """
    Time a provider call or query.

    With a logger, the result is logged at DEBUG, or at WARNING once it
    exceeds ``warn_ms`` (document downloads pass a larger threshold).

    Usage:
        with Timer("spapi_get", logger) as t:
            response = await client.get(...)
        t.elapsed_ms
    """

    def __init__(self, operation: str, logger: Optional[logging.Logger] = None, warn_ms: float = 5000):
        self.operation = operation
        self.logger = logger
        self.warn_ms = warn_ms
        self.elapsed_ms: float = 0
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc):
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        if self.logger:
            slow = self.elapsed_ms > self.warn_ms
            self.logger.log(
                logging.WARNING if slow else logging.DEBUG,
                f"{self.operation} {'slow' if slow else 'completed'}",
                extra={"operation": self.operation, "duration_ms": round(self.elapsed_ms, 2)},
            )
