from __future__ import annotations

from time import perf_counter
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ticketsync.core.config import get_settings
from ticketsync.core.logging import log_debug, log_error, log_info

TRACKER_SYNC_HEADER = "x-tracker-sync"


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with caller, outcome and tracker sync state."""

    def __init__(self, app, *, exempt_paths: Iterable[str] | None = None) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())
        self.identity_header = get_settings().identity_header

    def _elapsed_ms(self, started: float) -> float:
        return round((perf_counter() - started) * 1000, 2)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self.exempt_paths):
            return await call_next(request)

        meta = {
            "method": request.method,
            "path": path,
            "client_ip": _client_ip(request),
            "caller": request.headers.get(self.identity_header) or "anonymous",
        }
        started = perf_counter()
        log_debug("Incoming request", **meta)

        try:
            response = await call_next(request)
        except Exception as exc:
            log_error(
                "Request raised unhandled exception",
                duration_ms=self._elapsed_ms(started),
                error=str(exc),
                **meta,
            )
            raise

        meta["status_code"] = response.status_code
        meta["duration_ms"] = self._elapsed_ms(started)
        tracker_sync = response.headers.get(TRACKER_SYNC_HEADER)
        if tracker_sync:
            meta["tracker_sync"] = tracker_sync
        if response.status_code >= 500:
            log_error("Request completed with server error", **meta)
        else:
            log_info("Request completed", **meta)
        return response
