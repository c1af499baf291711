"""
Request context and error rendering.

RequestContextMiddleware tags every request with an X-Request-ID (taken from
the caller or generated), times it, and turns anything unhandled into a JSON
500. The two exception handlers make sure 4xx bodies carry the same request id.
"""
import time
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from livechat.core.logging import (
    api_logger,
    generate_request_id,
    get_request_id,
    request_id_var,
    request_start_var,
)

REQUEST_ID_HEADER = 'X-Request-ID'

# Probes are polled constantly; logging them drowns everything else
QUIET_PATHS = frozenset({'/health', '/ready'})


def _current_request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'


def _json_error(request: Request, status_code: int, body: dict, headers: Optional[dict] = None) -> JSONResponse:
    request_id = _current_request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={**body, 'request_id': request_id},
        headers={**(headers or {}), REQUEST_ID_HEADER: request_id},
    )


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        request.state.request_id = request_id
        id_token = request_id_var.set(request_id)
        start_token = request_start_var.set(time.perf_counter())

        route = f"{request.method} {request.url.path}"
        quiet = request.url.path in QUIET_PATHS
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                api_logger.error(f"{route} -> 500 (unhandled)", error=e)
                return _json_error(request, 500, {'detail': 'Internal server error'})

            response.headers[REQUEST_ID_HEADER] = request_id
            if not quiet:
                log = api_logger.info if response.status_code < 400 else api_logger.warning
                log(f"{route} -> {response.status_code}", status=response.status_code)
            return response
        finally:
            request_id_var.reset(id_token)
            request_start_var.reset(start_token)


async def http_exception_handler(request: Request, exc) -> JSONResponse:
    """Render HTTPException (engine errors included) as {"detail", "request_id"}."""
    status_code = getattr(exc, 'status_code', 500)
    detail = getattr(exc, 'detail', 'Unknown error')

    if status_code >= 500:
        api_logger.error(f"HTTP {status_code}: {detail}", path=request.url.path)
    else:
        api_logger.debug(f"HTTP {status_code}: {detail}", path=request.url.path)

    return _json_error(request, status_code, {'detail': detail}, getattr(exc, 'headers', None))


async def validation_exception_handler(request: Request, exc) -> JSONResponse:
    """422 with one entry per invalid input location."""
    errors = [
        {
            'field': '.'.join(str(part) for part in error.get('loc', ())),
            'message': error.get('msg', 'Validation error'),
            'type': error.get('type', 'value_error'),
        }
        for error in exc.errors()
    ]
    api_logger.warning(f"Validation error in {request.method} {request.url.path}", errors=errors)
    return _json_error(request, 422, {'detail': 'Validation error', 'errors': errors})
