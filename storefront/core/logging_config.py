"""
Structured JSON logging for the storefront order service.

Every record is emitted as one JSON object with the service identity, the
request trace context and any ``extra={'extra_fields': {...}}`` payload.
Customer contact numbers and credentials are masked before output.
"""

import logging
import logging.handlers
import re
import sys
import json
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from storefront.core_settings import get_settings

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
actor_var: ContextVar[Optional[str]] = ContextVar('actor', default=None)

class StructuredFormatter(logging.Formatter):
    """JSON formatter; one line per record."""

    def __init__(self, service_name: str, environment: str, version: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "version": self.version,
        }

        trace_context = _trace_context()
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "module": record.module
        }

        if record.exc_info:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        return json.dumps(log_obj, default=str)

def _trace_context() -> Optional[Dict[str, Any]]:
    context = {
        "request_id": request_id_var.get(),
        "correlation_id": correlation_id_var.get(),
        "actor": actor_var.get(),
    }
    context = {key: value for key, value in context.items() if value}
    return context or None

class RedactionFilter(logging.Filter):
    """Mask credentials and customer phone numbers in messages and structured fields."""

    SENSITIVE_KEYS = {
        'password', 'token', 'api_key', 'secret', 'authorization',
        'cookie', 'contact_number', 'reference_number',
    }
    PHONE_PATTERN = re.compile(r"(?<![\w-])\+?\d{10,13}(?![\w-])")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.PHONE_PATTERN.sub(self._mask, record.msg)
        fields = getattr(record, 'extra_fields', None)
        if isinstance(fields, dict):
            record.extra_fields = {
                key: ("***REDACTED***" if key.lower() in self.SENSITIVE_KEYS else value)
                for key, value in fields.items()
            }
        return True

    @staticmethod
    def _mask(match: re.Match) -> str:
        digits = match.group(0)
        return "*" * (len(digits) - 4) + digits[-4:]

def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger with the JSON formatter.

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Write records to stdout
        log_file: Optional path for a rotating file handler
    """
    settings = get_settings()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    formatter = StructuredFormatter(service_name, settings.ENVIRONMENT, settings.SERVICE_VERSION)
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactionFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={
            'extra_fields': {
                'service': service_name,
                'level': level,
                'file': log_file,
            }
        }
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Pass-through adapter that keeps caller ``extra`` intact."""

    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    actor: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if actor:
        actor_var.set(actor)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration and echo the request id back."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(
            request_id=request_id,
            correlation_id=request.headers.get('X-Correlation-ID')
        )
        logger = get_logger(__name__)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    'extra_fields': {
                        'method': request.method,
                        'path': request.url.path,
                        'duration_ms': (time.perf_counter() - start_time) * 1000
                    }
                }
            )
            raise

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'status_code': response.status_code,
                    'duration_ms': (time.perf_counter() - start_time) * 1000
                }
            }
        )
        response.headers['X-Request-ID'] = request_id
        return response
