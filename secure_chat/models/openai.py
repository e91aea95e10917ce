"""OpenAI-compatible wire shapes: the relay body and the legacy envelope."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from secure_chat.models.chat import Usage


class RelayChatRequest(BaseModel):
    """Body accepted by the internal proxy endpoint.

    ``messages`` is checked by the relay itself so malformed bodies get the
    relay's own 400 answer, and multimodal content passes through untouched.
    """

    messages: Any = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False


class LegacyMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class LegacyChatOptions(BaseModel):
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)


class ChoiceMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class Choice(BaseModel):
    index: int = 0
    message: ChoiceMessage
    finish_reason: Literal["stop"] = "stop"


class LegacyChatResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: Usage
