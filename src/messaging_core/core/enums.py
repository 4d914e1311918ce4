import enum

from .exceptions import ValidationError


class ChatType(str, enum.Enum):
    P2P = "P2P"  # direct chat between exactly two users
    GROUP = "GROUP"


class MemberRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    VOICE = "VOICE"
    AUDIO = "AUDIO"


def parse_enum(enum_cls: type[enum.Enum], value, error: str):
    """Case-insensitive lookup by value; raises ValidationError(error) when unknown."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            pass
    raise ValidationError(error)
