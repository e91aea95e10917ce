"""The secure chat proxy: sanitize, transcode, throttle, send, decode."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

import httpx

from secure_chat.config.settings import Settings
from secure_chat.metrics import record_redactions, record_request
from secure_chat.models.chat import (
    Message,
    PrivacyPreferences,
    ProxyRequest,
    ProxyResponse,
    StreamChunk,
    Usage,
    UserRole,
)
from secure_chat.providers.base import CancelPredicate, ProxyError
from secure_chat.providers.groq import GroqExecutor
from secure_chat.providers.stream import StreamDecoder
from secure_chat.redaction.engine import (
    PIISanitizer,
    pii_warning,
    sanitizer_settings_from_preferences,
)
from secure_chat.services.prompts import generate_system_prompt
from secure_chat.services.transcoder import encode, select_model

logger = logging.getLogger("scp.chat")

PreferencesLoader = Callable[[], PrivacyPreferences]


def default_preferences() -> PrivacyPreferences:
    return PrivacyPreferences()


@dataclass
class PreparedCall:
    body: dict[str, Any]
    model: str
    warnings: list[str] = field(default_factory=list)


class SecureChatProxy:
    """Caller-facing chat completion with a privacy boundary.

    Parameters
    ----------
    settings : ``Settings``
        Model defaults, allow-list and language.
    executor : ``GroqExecutor``
        Shared transport; its rate governor spaces every outbound call.
    preferences_loader : callable, optional
        Returns the user's current ``PrivacyPreferences``. Called once per
        request.
    """

    def __init__(
        self,
        settings: Settings,
        executor: GroqExecutor,
        preferences_loader: PreferencesLoader | None = None,
    ) -> None:
        self._settings = settings
        self._executor = executor
        self._preferences_loader = preferences_loader or default_preferences

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        preferences_loader: PreferencesLoader | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SecureChatProxy":
        return cls(
            settings=settings,
            executor=GroqExecutor.from_settings(settings, transport=transport),
            preferences_loader=preferences_loader,
        )

    @property
    def executor(self) -> GroqExecutor:
        return self._executor

    async def aclose(self) -> None:
        await self._executor.aclose()

    def generate_system_prompt(
        self, role: UserRole, context: str | None = None, language: str | None = None
    ) -> str:
        preferences = self._preferences_loader()
        return generate_system_prompt(
            role,
            context=context,
            language=language or self._settings.language_normalized,
            share_context=preferences.share_context,
        )

    async def chat_completion(self, request: ProxyRequest) -> ProxyResponse:
        started = perf_counter()
        prepared = self._prepare(request, stream=False)
        try:
            response = await self._executor.execute(prepared.body, stream=False)
            result = self._compose_response(response, prepared.warnings)
        except ProxyError as exc:
            record_request("chat", prepared.model, exc.status_code, perf_counter() - started)
            raise

        latency_s = perf_counter() - started
        record_request("chat", prepared.model, 200, latency_s)
        logger.info(
            "chat_completion_completed",
            extra={"model": prepared.model, "latency_ms": round(latency_s * 1000, 3)},
        )
        return result

    async def chat_completion_stream(
        self,
        request: ProxyRequest,
        should_cancel: CancelPredicate | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Yield content deltas as they arrive, ending with a ``done`` chunk.

        Ends early and without a ``done`` chunk once ``should_cancel``
        reports true.
        """
        started = perf_counter()
        prepared = self._prepare(request, stream=True)
        if should_cancel is not None and should_cancel():
            return

        try:
            response = await self._executor.execute(prepared.body, stream=True)
        except ProxyError as exc:
            record_request(
                "chat", prepared.model, exc.status_code, perf_counter() - started, streaming=True
            )
            raise

        decoder = StreamDecoder(response, should_cancel=should_cancel, warnings=prepared.warnings)
        async with aclosing(aiter(decoder)) as chunks:
            async for chunk in chunks:
                yield chunk

        latency_s = perf_counter() - started
        record_request("chat", prepared.model, 200, latency_s, streaming=True)
        logger.info(
            "chat_stream_completed",
            extra={
                "model": prepared.model,
                "chunk_count": decoder.emitted,
                "state": decoder.state.value,
                "latency_ms": round(latency_s * 1000, 3),
            },
        )

    def _prepare(self, request: ProxyRequest, stream: bool) -> PreparedCall:
        preferences = self._preferences_loader()
        sanitizer = PIISanitizer(
            sanitizer_settings_from_preferences(
                preferences,
                allowed_domains=self._settings.allowed_email_domain_set,
                mask_names=self._settings.pii_mask_names,
            )
        )
        language = self._settings.language_normalized

        messages = list(request.messages)
        if self._settings.system_prompt_enabled and not any(
            message.role == "system" for message in messages
        ):
            prompt = generate_system_prompt(
                request.role,
                context=request.context,
                language=language,
                share_context=preferences.share_context,
            )
            messages.insert(0, Message(role="system", content=prompt))

        sanitized, warnings = self._sanitize_messages(messages, sanitizer, language)
        model = request.model or select_model(
            request.messages,
            default_model=self._settings.default_model,
            vision_model=self._settings.vision_model,
        )
        body: dict[str, Any] = {
            "messages": encode(sanitized, language),
            "model": model,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self._settings.default_temperature
            ),
            "max_tokens": request.max_tokens or self._settings.default_max_tokens,
            "stream": stream,
        }
        return PreparedCall(body=body, model=model, warnings=warnings)

    @staticmethod
    def _sanitize_messages(
        messages: list[Message], sanitizer: PIISanitizer, language: str
    ) -> tuple[list[Message], list[str]]:
        sanitized: list[Message] = []
        warnings: list[str] = []
        for message in messages:
            result = sanitizer.sanitize(message.content)
            if not result.has_pii:
                sanitized.append(message)
                continue
            sanitized.append(message.model_copy(update={"content": result.masked_content}))
            categories = [category.value for category in result.detected_categories]
            record_redactions(categories, result.redaction_count)
            logger.info(
                "message_sanitized",
                extra={"categories": categories},
            )
            warning = pii_warning(result.detected_categories, language)
            if warning and warning not in warnings:
                warnings.append(warning)
        return sanitized, warnings

    @staticmethod
    def _compose_response(response: httpx.Response, warnings: list[str]) -> ProxyResponse:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProxyError(
                status_code=502,
                code="provider_invalid_response",
                message="Ungültige Antwort vom Server erhalten",
            ) from exc
        if not isinstance(data, dict):
            raise ProxyError(
                status_code=502,
                code="provider_invalid_response",
                message="Ungültige Antwort vom Server erhalten",
            )

        content = ""
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                content = message["content"]

        usage_raw = data.get("usage")
        usage = Usage.model_validate(usage_raw) if isinstance(usage_raw, dict) else None
        return ProxyResponse(content=content, usage=usage, warnings=warnings or None)
