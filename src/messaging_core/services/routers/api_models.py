from pydantic import BaseModel, Field
import uuid

class CreateChatRequest(BaseModel):
    chat_type: str
    member_ids: list[uuid.UUID]
    group_name: str | None = None
    group_image: str | None = None

class UpdateGroupPropertiesRequest(BaseModel):
    chat_id: uuid.UUID
    new_group_name: str | None = None
    new_group_image: str | None = None

class UpdateMembershipRequest(BaseModel):
    chat_id: uuid.UUID
    member_user_ids: list[uuid.UUID] = Field(min_length=1)

class UpdateMemberRoleRequest(BaseModel):
    chat_id: uuid.UUID
    target_user_id: uuid.UUID
    new_role: str

class SendMessageRequest(BaseModel):
    chat_id: uuid.UUID
    message_type: str = Field(min_length=1)
    content: str | None = None
    media_url: str | None = None

class UpdateMessageRequest(BaseModel):
    message_id: uuid.UUID
    new_content: str | None = None

class SyncContactsRequest(BaseModel):
    phone_numbers: list[str]

class AddContactRequest(BaseModel):
    target_phone_number: str = Field(min_length=1)
    display_name: str | None = None

class UpdateContactRequest(BaseModel):
    target_user_id: uuid.UUID
    new_display_name: str | None = None
    new_phone_number: str | None = None
