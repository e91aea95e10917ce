"""Conversion of role-tagged messages into the provider's multimodal shape."""

from collections.abc import Sequence
from typing import Any

from secure_chat.models.chat import Attachment, Message

_ATTACHMENT_LABEL = {"de-DE": "Anhang", "en-US": "Attachment"}


def describe_attachment(attachment: Attachment, language: str = "de-DE") -> str:
    label = _ATTACHMENT_LABEL.get(language, _ATTACHMENT_LABEL["de-DE"])
    size_kb = round(attachment.size_bytes / 1024)
    return f"[{label}: {attachment.name} ({attachment.mime_type}, {size_kb}KB)]"


def encode_message(message: Message, language: str = "de-DE") -> dict[str, Any]:
    if not message.attachments:
        return {"role": message.role, "content": message.content}

    blocks: list[dict[str, Any]] = []
    if message.content.strip():
        blocks.append({"type": "text", "text": message.content})
    for attachment in message.attachments:
        if attachment.is_inline_image:
            blocks.append(
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{attachment.mime_type};base64,{attachment.inline_data}"
                    },
                }
            )
        else:
            blocks.append(
                {"type": "text", "text": describe_attachment(attachment, language)}
            )
    return {"role": message.role, "content": blocks}


def encode(messages: Sequence[Message], language: str = "de-DE") -> list[dict[str, Any]]:
    return [encode_message(message, language) for message in messages]


def has_inline_images(messages: Sequence[Message]) -> bool:
    return any(
        attachment.is_inline_image
        for message in messages
        for attachment in message.attachments
    )


def select_model(messages: Sequence[Message], default_model: str, vision_model: str) -> str:
    """Pick the vision model once for the whole conversation if any image is inline."""
    return vision_model if has_inline_images(messages) else default_model
