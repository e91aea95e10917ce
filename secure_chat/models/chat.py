from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["system", "user", "assistant"]
UserRole = Literal["student", "parent", "teacher"]


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mime_type: str
    size_bytes: int = Field(default=0, ge=0)
    inline_data: str | None = Field(default=None, description="base64 payload")

    @property
    def is_inline_image(self) -> bool:
        return self.mime_type.startswith("image/") and bool(self.inline_data)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    attachments: tuple[Attachment, ...] = ()


class ProxyRequest(BaseModel):
    messages: list[Message] = Field(min_length=1)
    role: UserRole = "student"
    context: str | None = None
    stream: bool = False
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1, le=32768)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ProxyResponse(BaseModel):
    content: str
    usage: Usage | None = None
    warnings: list[str] | None = None


class StreamChunk(BaseModel):
    content: str
    done: bool
    warnings: list[str] | None = None


class PrivacyPreferences(BaseModel):
    """User-owned privacy switches, read at call time."""

    share_context: bool = True
    share_grades: bool = False
    share_personal_info: bool = False
    allow_analytics: bool = False
