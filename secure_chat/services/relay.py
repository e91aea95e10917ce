"""Server side of the internal proxy endpoint.

Browser callers never see the provider credential: they post the already
sanitized, provider-shaped body here and the relay forwards it upstream with
the bearer token from configuration.
"""

import logging
from typing import Any

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from secure_chat.config.settings import Settings
from secure_chat.models.openai import RelayChatRequest

logger = logging.getLogger("scp.relay")


class UpstreamRelay:
    def __init__(
        self,
        upstream_url: str,
        api_key: str | None,
        default_model: str = "llama-3.3-70b-versatile",
        default_temperature: float = 0.7,
        default_max_tokens: int = 1000,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._upstream_url = upstream_url
        self._api_key = api_key or None
        self._default_model = default_model
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "UpstreamRelay":
        return cls(
            upstream_url=settings.upstream_url,
            api_key=settings.groq_api_key,
            default_model=settings.default_model,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
            timeout_s=settings.request_timeout_s,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_body(self, payload: RelayChatRequest) -> dict[str, Any]:
        return {
            "model": payload.model or self._default_model,
            "messages": payload.messages,
            "temperature": (
                payload.temperature
                if payload.temperature is not None
                else self._default_temperature
            ),
            "max_tokens": payload.max_tokens or self._default_max_tokens,
            "stream": payload.stream,
        }

    async def handle(self, payload: RelayChatRequest) -> Response:
        if not isinstance(payload.messages, list):
            return JSONResponse(status_code=400, content={"error": "Messages array is required"})
        if not self.configured:
            logger.error("relay_missing_api_key")
            return JSONResponse(status_code=500, content={"error": "API configuration error"})

        request = self._client.build_request(
            "POST",
            self._upstream_url,
            json=self.build_body(payload),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            upstream = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("relay_upstream_unreachable", extra={"error_code": type(exc).__name__})
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "details": str(exc)},
            )

        if not upstream.is_success:
            try:
                details = (await upstream.aread()).decode("utf-8", errors="replace")
            finally:
                await upstream.aclose()
            logger.warning("relay_upstream_error", extra={"status_code": upstream.status_code})
            return JSONResponse(
                status_code=upstream.status_code,
                content={"error": "Failed to generate response", "details": details},
            )

        if payload.stream:
            return StreamingResponse(
                upstream.aiter_raw(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
                background=BackgroundTask(upstream.aclose),
            )

        try:
            body = await upstream.aread()
        finally:
            await upstream.aclose()
        return Response(content=body, media_type="application/json")
