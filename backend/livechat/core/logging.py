"""
Structured logging for the livechat backend.

Every line carries the current request id (set by RequestContextMiddleware)
and, inside a request, the time elapsed since it started. Production emits one
JSON object per line; other environments get a compact text line.
"""
import asyncio
import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

from livechat.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def _elapsed_ms() -> Optional[float]:
    start = request_start_var.get()
    if start is None:
        return None
    return round((time.perf_counter() - start) * 1000, 2)


class StructuredLogger:
    """Thin wrapper over a stdlib logger that attaches request context and keyword fields."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.as_json = settings.APP_ENV == 'production'

    def _payload(self, level: int, message: str, fields: Dict[str, Any], error: Optional[BaseException]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'ts': datetime.now(timezone.utc).isoformat(timespec='milliseconds'),
            'level': logging.getLevelName(level),
            'logger': self.name,
            'msg': message,
            'request_id': get_request_id(),
        }
        elapsed = _elapsed_ms()
        if elapsed is not None:
            payload['elapsed_ms'] = elapsed
        if fields:
            payload['fields'] = fields
        if error is not None:
            payload['error'] = f"{type(error).__name__}: {error}"
        return payload

    def _render(self, payload: Dict[str, Any]) -> str:
        if self.as_json:
            return json.dumps(payload, default=str)

        line = f"[{payload['request_id'] or '-'}] {payload['msg']}"
        fields = payload.get('fields')
        if fields:
            line += ' ' + ' '.join(f"{k}={v}" for k, v in fields.items())
        if 'error' in payload:
            line += f" error=({payload['error']})"
        if 'elapsed_ms' in payload:
            line += f" +{payload['elapsed_ms']}ms"
        return line

    def _log(self, level: int, message: str, error: Optional[BaseException] = None, **fields):
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, self._render(self._payload(level, message, fields, error)))

    def debug(self, message: str, **fields):
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, error: Optional[BaseException] = None, **fields):
        self._log(logging.WARNING, message, error, **fields)

    def error(self, message: str, error: Optional[BaseException] = None, **fields):
        self._log(logging.ERROR, message, error, **fields)


def get_logger(name: str = 'livechat') -> StructuredLogger:
    return StructuredLogger(name)


api_logger = get_logger('livechat.api')
actions_logger = get_logger('livechat.actions')
realtime_logger = get_logger('livechat.realtime')
db_logger = get_logger('livechat.database')


def log_operation(operation: str, logger: Optional[StructuredLogger] = None):
    """
    Time an engine coroutine and log how it ended.

    Failures are logged at warning level and re-raised untouched; most of them
    are expected outcomes (403, 404, 409) rather than faults.

        @log_operation("send_form_request", actions_logger)
        async def send_form_request(...):
            ...
    """
    def decorator(func):
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"log_operation expects a coroutine function, got {func!r}")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            log = logger or api_logger
            started = time.perf_counter()
            log.debug(f"{operation} started")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.warning(
                    f"{operation} failed",
                    error=e,
                    took_ms=round((time.perf_counter() - started) * 1000, 2),
                )
                raise
            log.info(f"{operation} completed", took_ms=round((time.perf_counter() - started) * 1000, 2))
            return result

        return wrapper

    return decorator
