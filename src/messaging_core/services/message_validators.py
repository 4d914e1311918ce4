from dataclasses import dataclass
from typing import Callable

from messaging_core.core.enums import MessageType
from messaging_core.core.exceptions import ValidationError


@dataclass(frozen=True)
class MessageContent:
    content: str
    media_url: str | None = None


Validator = Callable[[str | None, str | None], MessageContent]


def is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_text(content: str | None, media_url: str | None) -> MessageContent:
    if is_blank(content):
        raise ValidationError("Text content cannot be empty")
    return MessageContent(content=content)


def media_validator(label: str, default_caption: str) -> Validator:
    """Builds a validator for a media type that needs a URL and may carry a caption."""

    def validate(content: str | None, media_url: str | None) -> MessageContent:
        if is_blank(media_url):
            raise ValidationError(f"{label} URL is required")
        return MessageContent(
            content=default_caption if is_blank(content) else content,
            media_url=media_url
        )

    return validate


class MessageValidatorRegistry:
    """
    Maps each message type to the validator for its payload.

    Supporting a new type means registering one more validator; the existing
    ones are never touched.
    """

    def __init__(self):
        self._validators: dict[MessageType, Validator] = {}

    def register(self, message_type: MessageType, validator: Validator) -> None:
        if message_type in self._validators:
            raise ValueError(f"Validator for {message_type.value} already registered")
        self._validators[message_type] = validator

    def supports(self, message_type: MessageType) -> bool:
        return message_type in self._validators

    def validate(self, message_type: MessageType, content: str | None, media_url: str | None) -> MessageContent:
        validator = self._validators.get(message_type)
        if validator is None:
            raise ValidationError(f"Unsupported message type: {message_type.value}")
        return validator(content, media_url)


def default_registry() -> MessageValidatorRegistry:
    registry = MessageValidatorRegistry()
    registry.register(MessageType.TEXT, validate_text)
    registry.register(MessageType.IMAGE, media_validator("Image", "📷 Photo"))
    registry.register(MessageType.VIDEO, media_validator("Video", "📹 Video"))
    registry.register(MessageType.VOICE, media_validator("Voice", "🎤 Voice message"))
    registry.register(MessageType.AUDIO, media_validator("Audio", "🎵 Audio"))
    return registry
