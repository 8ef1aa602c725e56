"""
Request-logging middleware for producer web applications.

Every request gets a request id and is logged on arrival; the response is
logged with its status and duration at a level chosen from the status code
(5xx error, 4xx warn, otherwise info), followed by a performance event.
Sensitive body fields are redacted before they reach the log.
"""

import json
import time
import uuid
from typing import Any, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .client import TransportClient

SENSITIVE_FIELDS = ('password', 'token', 'secret', 'api_key', 'apiKey', 'credit_card', 'creditCard')
REDACTED = '***REDACTED***'


def sanitize_body(body: Any) -> Any:
    """Replace the values of sensitive top-level fields."""
    if not isinstance(body, dict):
        return body
    return {k: (REDACTED if k in SENSITIVE_FIELDS else v) for k, v in body.items()}


def level_for_status(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warn"
    return "info"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and response through a TransportClient."""

    def __init__(self, app, client: TransportClient):
        super().__init__(app)
        self.client = client

    async def _read_body(self, request: Request) -> Optional[Any]:
        if request.method == "GET":
            return None
        raw = await request.body()
        if not raw:
            return None
        try:
            return sanitize_body(json.loads(raw))
        except ValueError:
            return None

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = uuid.uuid4().hex[:13]

        request_info: Dict[str, Any] = {
            'requestId': request_id,
            'method': request.method,
            'url': str(request.url.path),
            'ip': request.client.host if request.client else None,
            'userAgent': request.headers.get('user-agent'),
        }
        body = await self._read_body(request)
        if body is not None:
            request_info['body'] = body
        if request.query_params:
            request_info['query'] = dict(request.query_params)

        self.client.info("Request received", {**request_info, 'action': 'request_received'})

        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 3)

        level = level_for_status(response.status_code)
        action = {
            'error': 'server_error_response',
            'warn': 'client_error_response',
            'info': 'success_response',
        }[level]
        self.client.log(level, f"Response {response.status_code}", {
            'requestId': request_id,
            'method': request.method,
            'url': str(request.url.path),
            'statusCode': response.status_code,
            'durationMs': duration_ms,
            'action': action,
        })
        self.client.performance(f"{request.method} {request.url.path}", duration_ms)

        response.headers['X-Request-ID'] = request_id
        return response
