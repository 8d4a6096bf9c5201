"""HTTP middleware for the search API.

Starlette runs middleware last-added-first.  ``create_app`` adds
:class:`ErrorHandlingMiddleware` before :class:`RequestContextMiddleware`,
so a request passes context -> error handling -> route, and the access
log line records the final status, including mapped errors.

Every request gets a request id: the caller's ``X-Request-ID`` when it
sends one, a fresh id otherwise.  The id is bound into the structlog
context for the whole request, echoed in the response header and put in
error bodies so a chat front end can quote it.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from chatapp.api.schemas import ErrorResponse
from chatapp.utils.errors import ChatAppError, QueryValidationError
from chatapp.utils.logging import get_logger, request_context

_logger: structlog.BoundLogger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 64


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Allow a browser chat front end to call the API.

    Only GET and POST are routed.  Credentials are allowed for explicit
    origins only, since browsers reject them with a wildcard origin.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )


def _incoming_request_id(request: Request) -> str | None:
    value = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if value and len(value) <= _MAX_REQUEST_ID_LENGTH and value.isprintable():
        return value
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the request and write one access log line."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        with request_context(_incoming_request_id(request)) as request_id:
            request.state.request_id = request_id
            start = time.perf_counter()
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers[REQUEST_ID_HEADER] = request_id
                return response
            finally:
                _logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status_code,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn ``ChatAppError`` into an :class:`ErrorResponse`.

    ``QueryValidationError`` is the caller's fault (422).  Every other
    application error, store and embedding faults included, is 500.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except ChatAppError as exc:
            status_code = 422 if isinstance(exc, QueryValidationError) else 500
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status_code,
            )
            body = ErrorResponse(
                error=type(exc).__name__,
                detail=exc.message,
                request_id=getattr(request.state, "request_id", None),
            )
            return JSONResponse(status_code=status_code, content=body.model_dump())
