from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from partner_ledger.core.constants import REQUEST_ID_HEADER, REQUEST_ID_MAX_LENGTH
from partner_ledger.core.logging import bind_request_context, clear_request_context


def _incoming_request_id(request: Request, header_name: str) -> str:
    candidate = request.headers.get(header_name, "").strip()
    if candidate and len(candidate) <= REQUEST_ID_MAX_LENGTH:
        return candidate
    return uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag every request and its log events with a request id, echoed back in the response."""

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _incoming_request_id(request, self._header_name)
        request.state.request_id = request_id
        bind_request_context(request_id, method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[self._header_name] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access event per request; server errors are logged as warnings."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._logger = structlog.get_logger("partner_ledger.access")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "request_crashed", duration_ms=_elapsed_ms(started)
            )
            raise

        log = self._logger.warning if response.status_code >= 500 else self._logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
        )
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
