"""Route every failure that reaches the request boundary through the FailureReporter.

- `HTTPException` / `RequestValidationError` arrive via Starlette's exception
  middleware (registered handlers).
- Anything else escapes the routes and is caught by `FailureBoundaryMiddleware`,
  which answers with the reporter's response instead of Starlette's bare 500.
"""

from __future__ import annotations

from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from log_decoder.reporter import FailureReporter, RequestContext


def _request_context(request: Request) -> RequestContext:
    return RequestContext(
        method=request.method,
        path=request.url.path,
        trace_id=getattr(request.state, "request_id", None),
    )


def _render(
    reporter: FailureReporter,
    exc: BaseException,
    request: Request,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    status_code, payload = reporter.report(exc, _request_context(request))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, by_alias=True, exclude_none=True),
        headers=headers,
    )


def _get_reporter(request: Request) -> FailureReporter:
    return cast(FailureReporter, request.app.state.failure_reporter)


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    # Keep protocol headers such as `Allow` on 405.
    headers = getattr(http_exc, "headers", None)
    return _render(_get_reporter(request), http_exc, request, headers=headers)


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    return _render(_get_reporter(request), validation_exc, request)


class FailureBoundaryMiddleware:
    def __init__(self, app: ASGIApp, reporter: FailureReporter) -> None:
        self.app: ASGIApp = app
        self.reporter: FailureReporter = reporter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            request = Request(scope)
            if response_started:
                # Too late for an error body; log it and let the server close the connection.
                _ = self.reporter.report(exc, _request_context(request))
                raise
            response = _render(self.reporter, exc, request)
            await response(scope, receive, send)


def register_error_handlers(app: FastAPI, reporter: FailureReporter) -> None:
    """Make `reporter` the single translation point from failure to response."""

    app.state.failure_reporter = reporter
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_middleware(FailureBoundaryMiddleware, reporter=reporter)
