from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from secure_chat.api.routes import router
from secure_chat.config.settings import Settings, get_settings
from secure_chat.core.errors import (
    app_error_response,
    proxy_error_response,
    request_id_from_request,
)
from secure_chat.core.logging import configure_logging
from secure_chat.metrics import metrics_router
from secure_chat.middleware.request_id import RequestIDMiddleware
from secure_chat.providers.base import ProxyError
from secure_chat.services.chat_service import PreferencesLoader, SecureChatProxy
from secure_chat.services.relay import UpstreamRelay


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    preferences_loader: PreferencesLoader | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    chat_proxy = SecureChatProxy.from_settings(
        settings, preferences_loader=preferences_loader, transport=transport
    )
    relay = UpstreamRelay.from_settings(settings, transport=transport)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await chat_proxy.aclose()
        await relay.aclose()

    app = FastAPI(title="Secure Chat Proxy", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    app.state.settings = settings
    app.state.chat_proxy = chat_proxy
    app.state.relay = relay

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
        return proxy_error_response(exc, request_id_from_request(request))

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            422, "request_validation_failed", "validation", str(exc), request_id
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, _: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            500, "internal_error", "internal", "Internal server error", request_id
        )

    app.include_router(router)
    if settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app()
