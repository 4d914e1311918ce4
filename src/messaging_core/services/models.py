from pydantic import BaseModel
from datetime import datetime
from typing import Generic, TypeVar
import uuid

from messaging_core.core.enums import ChatType, MemberRole, MessageType

T = TypeVar("T")

TOMBSTONE_CONTENT = "Message has been deleted"

class Principal(BaseModel):
    """Authenticated caller, supplied by the identity layer."""
    user_id: uuid.UUID
    username: str

class MemberDisplay(BaseModel):
    user_id: uuid.UUID
    username: str
    role: MemberRole

class ChatDisplay(BaseModel):
    chat_id: uuid.UUID
    chat_type: ChatType
    group_name: str | None = None
    group_image: str | None = None
    members: list[MemberDisplay] = []

class MemberUpdate(BaseModel):
    chat_id: uuid.UUID
    updated_members: list[MemberDisplay] = []
    update_type: str  # MEMBER_ADDED, MEMBER_REMOVED, ROLE_UPDATED

class SenderDisplay(BaseModel):
    user_id: uuid.UUID
    username: str

class MessageDisplay(BaseModel):
    message_id: uuid.UUID
    chat_id: uuid.UUID
    sender: SenderDisplay
    message_type: MessageType
    content: str
    media_url: str | None = None
    timestamp: datetime
    is_edited: bool
    is_deleted: bool

class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    size: int
    total_elements: int
    total_pages: int

class ContactDisplay(BaseModel):
    id: uuid.UUID
    contact_user_id: uuid.UUID
    display_name: str | None = None
    contact_username: str
    contact_phone_number: str | None = None

class ContactMatch(BaseModel):
    user_id: uuid.UUID
    username: str
    name: str | None = None
    phone_number: str | None = None

class ContactNotification(BaseModel):
    user_id: uuid.UUID
    username: str
    update_type: str  # CONTACT_ADDED, CONTACT_DETAILS_UPDATED, CONTACT_REMOVED
