from pydantic import BaseModel
from datetime import datetime
import uuid

from .enums import ChatType, MemberRole, MessageType

class UserDTO(BaseModel):
    # password_hash never leaves the gateway layer
    id: uuid.UUID
    username: str
    phone_number: str | None = None
    name: str | None = None

class ChatDTO(BaseModel):
    id: uuid.UUID
    chat_type: ChatType
    group_name: str | None = None
    group_image: str | None = None
    is_deleted: bool = False
    created_at: datetime

class MemberDTO(BaseModel):
    id: uuid.UUID
    chat_id: uuid.UUID
    user_id: uuid.UUID
    role: MemberRole
    joined_at: datetime
    user: UserDTO | None = None
    chat: ChatDTO | None = None

class MessageDTO(BaseModel):
    id: uuid.UUID
    seq: int
    chat_id: uuid.UUID
    sender_id: uuid.UUID
    sender_username: str
    message_type: MessageType
    content: str
    media_url: str | None = None
    sent_at: datetime
    is_edited: bool
    is_deleted: bool

class ContactDTO(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    contact_user_id: uuid.UUID
    display_name: str | None = None
    contact_user: UserDTO | None = None
