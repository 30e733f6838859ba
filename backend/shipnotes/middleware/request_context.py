"""Request context middleware: request id, per-client throttling, timing and the request log.

Throttling is a sliding one-minute window per client address. The window
logic is the pure function ``check_rate_limit`` so it can be tested
without HTTP. Health probes, inbound provider webhooks and scheduled-run
callbacks are never throttled.
"""

import logging
import re
import threading
import time
import uuid
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.config import settings
from ..core.logging_config import request_id_var
from ..exceptions import ErrorCode

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0

# client key -> timestamps of accepted requests inside the window, oldest first
_request_windows: Dict[str, Deque[float]] = {}
_windows_lock = threading.Lock()
_SWEEP_EVERY = 100
_calls_since_sweep = 0


def _sweep(windows: Dict[str, Deque[float]], now: float) -> None:
    for client_key in [k for k, w in windows.items() if not w or w[-1] <= now - WINDOW_SECONDS]:
        del windows[client_key]


def check_rate_limit(
    windows: Dict[str, Deque[float]],
    key: str,
    max_per_minute: int,
    now: Optional[float] = None,
) -> Tuple[bool, float]:
    """Record one request for *key* if the last minute has room for it.

    Args:
        windows: Per-key request timestamps, modified in place.
        key: Client identifier.
        max_per_minute: Requests allowed in any 60 second span; 0 or less
            disables throttling.
        now: Injectable clock. Defaults to ``time.monotonic()``.

    Returns:
        ``(allowed, retry_after)``. *retry_after* is the number of seconds
        until the oldest request leaves the window, 0.0 when allowed.
    """
    global _calls_since_sweep

    if max_per_minute <= 0:
        return True, 0.0
    if now is None:
        now = time.monotonic()

    _calls_since_sweep += 1
    if _calls_since_sweep >= _SWEEP_EVERY:
        _calls_since_sweep = 0
        _sweep(windows, now)

    window = windows.setdefault(key, deque())
    while window and window[0] <= now - WINDOW_SECONDS:
        window.popleft()

    if len(window) >= max_per_minute:
        return False, window[0] + WINDOW_SECONDS - now

    window.append(now)
    return True, 0.0


_EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})
_EXEMPT_PATTERNS = (
    re.compile(r"^/api/webhooks/"),
    re.compile(r"^/api/triggers/[^/]+/scheduled-run$"),
)


def is_rate_limit_exempt(path: str) -> bool:
    return path in _EXEMPT_PATHS or any(p.match(path) for p in _EXEMPT_PATTERNS)


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _too_many_requests(request_id: str, retry_after: float) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "code": ErrorCode.RATE_LIMITED.value,
            "details": {"retry_after": round(retry_after, 1)},
        },
        headers={"Retry-After": str(int(retry_after) + 1), "X-Request-ID": request_id},
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, throttles clients and logs the outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request_id_var.set(request_id)
        path = request.url.path

        if not is_rate_limit_exempt(path):
            client_key = _client_key(request)
            with _windows_lock:
                allowed, retry_after = check_rate_limit(
                    _request_windows, client_key, settings.rate_limit_per_minute
                )
            if not allowed:
                logger.warning(
                    "Throttled %s %s", request.method, path,
                    extra={"client": client_key, "retry_after": round(retry_after, 1)},
                )
                return _too_many_requests(request_id, retry_after)

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = round((time.monotonic() - started) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        logger.info(
            "%s %s %s", request.method, path, response.status_code,
            extra={"status_code": response.status_code, "duration_ms": elapsed_ms},
        )
        return response
