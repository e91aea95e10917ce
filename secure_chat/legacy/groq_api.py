"""Shape adapter for callers still using the older Groq client envelope.

All sanitization, transcoding, throttling and retries happen in
``SecureChatProxy``; this module only renames fields and wraps errors.
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from time import time
from typing import Any
from uuid import uuid4

from secure_chat.models.chat import Message, ProxyRequest, Usage, UserRole
from secure_chat.models.openai import (
    Choice,
    ChoiceMessage,
    LegacyChatOptions,
    LegacyChatResponse,
    LegacyMessage,
)
from secure_chat.providers.base import CancelPredicate, ProxyError
from secure_chat.services.chat_service import SecureChatProxy


class GroqAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @classmethod
    def from_proxy_error(cls, exc: ProxyError) -> "GroqAPIError":
        return cls(exc.message, status_code=exc.status_code, code=exc.code)


class LegacyGroqAPI:
    def __init__(
        self,
        proxy: SecureChatProxy,
        default_model: str = "llama-3.3-70b-versatile",
    ) -> None:
        self._proxy = proxy
        self._default_model = default_model

    async def aclose(self) -> None:
        await self._proxy.aclose()

    async def make_request(self, endpoint: str, options: dict[str, Any] | None = None) -> None:
        """Disabled: direct calls would bypass sanitization."""
        raise GroqAPIError(
            "Direct API calls are deprecated. Use chat_completion or "
            "chat_completion_stream instead.",
            status_code=400,
            code="DEPRECATED_METHOD",
        )

    async def chat_completion(
        self,
        messages: Sequence[LegacyMessage | dict[str, Any]],
        options: LegacyChatOptions | None = None,
        role: UserRole = "student",
        context: str | None = None,
    ) -> LegacyChatResponse:
        request = self._to_proxy_request(messages, options, role, context, stream=False)
        try:
            response = await self._proxy.chat_completion(request)
        except ProxyError as exc:
            raise GroqAPIError.from_proxy_error(exc) from exc

        return LegacyChatResponse(
            id=f"groq-{uuid4().hex}",
            created=int(time()),
            model=request.model or self._default_model,
            choices=[Choice(message=ChoiceMessage(content=response.content))],
            usage=response.usage or Usage(),
        )

    async def chat_completion_stream(
        self,
        messages: Sequence[LegacyMessage | dict[str, Any]],
        options: LegacyChatOptions | None = None,
        role: UserRole = "student",
        context: str | None = None,
        should_cancel: CancelPredicate | None = None,
    ) -> AsyncIterator[str]:
        request = self._to_proxy_request(messages, options, role, context, stream=True)
        try:
            stream = self._proxy.chat_completion_stream(request, should_cancel)
            async with aclosing(stream) as chunks:
                async for chunk in chunks:
                    if should_cancel is not None and should_cancel():
                        break
                    if chunk.content:
                        yield chunk.content
        except ProxyError as exc:
            raise GroqAPIError.from_proxy_error(exc) from exc

    def generate_system_prompt(
        self, role: UserRole, context: str | None = None, language: str | None = None
    ) -> str:
        return self._proxy.generate_system_prompt(role, context=context, language=language)

    def _to_proxy_request(
        self,
        messages: Sequence[LegacyMessage | dict[str, Any]],
        options: LegacyChatOptions | None,
        role: UserRole,
        context: str | None,
        stream: bool,
    ) -> ProxyRequest:
        opts = options or LegacyChatOptions()
        legacy_messages = [LegacyMessage.model_validate(message) for message in messages]
        return ProxyRequest(
            messages=[Message(role=m.role, content=m.content) for m in legacy_messages],
            role=role,
            context=context,
            stream=stream,
            model=opts.model or self._default_model,
            temperature=opts.temperature,
            max_tokens=opts.max_tokens,
        )
