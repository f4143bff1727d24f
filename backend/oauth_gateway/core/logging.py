"""Structured logging for the gateway.

Log calls take keyword fields:

    from oauth_gateway.core.logging import get_logger, set_flow_context

    logger = get_logger(__name__)

    set_flow_context(tenant_id="app-1", provider="wechat")
    logger.info("Login initiated", redirect="/home")

Fields whose names look like credentials are masked before output.
Request id, correlation id, tenant and provider are kept in context
variables and attached to every record emitted while they are bound.
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
tenant_id_var: ContextVar[str | None] = ContextVar("tenant_id", default=None)
provider_var: ContextVar[str | None] = ContextVar("provider", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "correlation_id": correlation_id_var,
    "tenant_id": tenant_id_var,
    "provider": provider_var,
}

# Substrings of field names whose values never reach the output
SENSITIVE_FIELDS = frozenset({
    "password", "secret", "token", "key", "credential", "authorization",
    "private_key", "service_role", "sign", "auth_code", "cookie",
})
REDACTED = "[REDACTED]"

# Third-party loggers that are only interesting when something is wrong
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def _mask_value(value: Any) -> str:
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return REDACTED


def mask_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of data with credential-like values masked, nested dicts included."""
    masked = {}
    for key, value in data.items():
        if _is_sensitive(key):
            masked[key] = _mask_value(value)
        elif isinstance(value, dict):
            masked[key] = mask_sensitive(value)
        else:
            masked[key] = value
    return masked


def current_context() -> dict[str, str]:
    """Context bound to the running request, unset entries omitted."""
    return {name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())}


def _fields(record: logging.LogRecord) -> dict[str, Any]:
    return mask_sensitive(getattr(record, "extra_fields", {}))


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
            **_fields(record),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Colored single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    PREFIX_LABELS = (("request_id", "req"), ("tenant_id", "app"), ("provider", "provider"))

    def _prefix(self) -> str:
        context = current_context()
        if "request_id" in context:
            context["request_id"] = context["request_id"][:8]
        parts = [f"{label}={context[name]}" for name, label in self.PREFIX_LABELS if name in context]
        return f"[{' '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        fields = _fields(record)
        suffix = " | " + " ".join(f"{k}={v}" for k, v in fields.items()) if fields else ""
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        message = (
            f"{color}{clock} {record.levelname[:4]}{self.RESET} "
            f"[{record.name}] {self._prefix()}{record.getMessage()}{suffix}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class StructuredLogger(logging.Logger):
    """Logger whose methods accept keyword fields.

    The fields travel on the record as ``extra_fields``.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        if fields:
            extra = {**(extra or {}), "extra_fields": fields}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module."""
    logging.setLoggerClass(StructuredLogger)
    logger = logging.getLogger(name)
    logging.setLoggerClass(logging.Logger)
    return logger


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """Route all logging to stdout.

    Args:
        json_output: Emit JSON lines instead of colored text
        level: Root logging level (DEBUG, INFO, WARNING, ERROR)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_output else HumanFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_flow_context(tenant_id: str | None = None, provider: str | None = None):
    """Attach tenant and provider to the records of the current request."""
    if tenant_id:
        tenant_id_var.set(tenant_id)
    if provider:
        provider_var.set(provider)


@contextmanager
def bound_context(**values: str | None) -> Iterator[None]:
    """Bind context variables by name for the duration of the block."""
    tokens = [(_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value)) for name, value in values.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns request ids, logs each request and echoes the ids back.

    Only the path is logged; query strings carry OAuth codes and states.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID")
        request_id = request.headers.get("X-Request-ID") or correlation_id or str(uuid.uuid4())
        correlation_id = correlation_id or request_id

        logger = get_logger("http")
        started = time.monotonic()

        with bound_context(
            request_id=request_id,
            correlation_id=correlation_id,
            tenant_id=None,
            provider=None,
        ):
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                client_ip=request.client.host if request.client else None,
            )
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    duration_ms=_elapsed_ms(started),
                    exc_info=True,
                )
                raise

            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        return response
