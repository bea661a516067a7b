"""Application entry point.

Composition root: settings -> DiagnosticPolicy -> FailureReporter, the shared
Decoder, error handlers, middleware and routers.
"""

from __future__ import annotations

import logging
import uuid
from typing import cast

from fastapi import FastAPI
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from log_decoder import __version__
from log_decoder.config import Settings, settings as default_settings
from log_decoder.decoder import Decoder
from log_decoder.error_handlers import register_error_handlers
from log_decoder.reporter import FailureReporter
from log_decoder.routers import logs
from log_decoder.schemas import HealthResponse

logger = logging.getLogger(__name__)


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        inbound_headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
        for key, value in inbound_headers:
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = request_id_header.decode("latin-1")

        # The correlation id travels explicitly via request.state, never a thread-local.
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the ASGI app.

    Settings are read once here; the resulting policy and decoder are
    immutable for the lifetime of the app.
    """

    cfg = app_settings or default_settings

    logging.basicConfig(level=getattr(logging, cfg.log_level.upper(), logging.INFO))
    for msg in cfg.security_warnings():
        logger.warning("SECURITY WARNING: %s", msg)

    app = FastAPI(title=cfg.app_name, version=__version__)

    app.state.settings = cfg
    app.state.decoder = Decoder(errors=cfg.decode_errors)

    # Boundary middleware goes in first so RequestIdMiddleware wraps it and
    # the request id is already on the scope when a failure is reported.
    register_error_handlers(app, FailureReporter(cfg.diagnostic_policy()))
    app.add_middleware(RequestIdMiddleware)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse()

    app.include_router(logs.router)
    return app


app = create_app()
