"""
Structured Logging Infrastructure

One JSON object per line in production, a readable line format under DEBUG.
Every record carries the request's correlation ID, and any logger call accepts
``extra_data={...}`` for structured fields:

    logger.info("Credit posted", extra_data={"account_id": 3, "amount": -450})

Recharge codes and tokens are bearer secrets; fields named in
``REDACTED_FIELDS`` are masked before a record is written.
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from functools import wraps
from typing import Any

from orderflow.core.exceptions import AppException

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

REDACTED_FIELDS = frozenset({"code", "recharge_code", "token", "access_token", "authorization", "password"})

# Libraries that log every request or statement at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")


def redact(data: Any) -> Any:
    """Copy of ``data`` with secret-looking fields masked, recursing into dicts and lists"""
    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in REDACTED_FIELDS and value else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data


class JSONFormatter(logging.Formatter):

    def __init__(self, service: str = "orderflow") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = redact(extra_data)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept an ``extra_data`` mapping"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1, extra_data=None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        super()._log(level, msg, args, exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=stacklevel)


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Expose the correlation ID to plain-text format strings"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(level: str = "INFO", json_format: bool = True, app_name: str = "orderflow") -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        json_format: JSON lines (production) or the human format (DEBUG)
        app_name: Service name stamped on JSON records
    """
    numeric_level = logging.getLevelName(level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter(service=app_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
            datefmt="%H:%M:%S",
        ))
        handler.addFilter(CorrelationIdFilter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current context, generating one if missing"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation ID; generated and stored on first use"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """
    Time an async service operation.

    Domain errors (AppException) are expected outcomes and log at WARNING;
    anything else logs at ERROR with the traceback. The exception always
    propagates.
    """
    def decorator(func):
        op_logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            op_logger.debug(f"Starting {operation_name}", extra_data={"operation": operation_name})
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                expected = isinstance(e, AppException)
                (op_logger.warning if expected else op_logger.error)(
                    f"Failed {operation_name}: {e}",
                    extra_data={
                        "operation": operation_name,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                        "error_code": e.error_code.value if expected else None,
                    },
                    exc_info=not expected,
                )
                raise
            op_logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return result

        return wrapper
    return decorator
