import logging
import math
import uuid

from messaging_core.core.database import utc_now
from messaging_core.core.dto import MessageDTO
from messaging_core.core.enums import MemberRole, MessageType, parse_enum
from messaging_core.core.exceptions import ValidationError, NotFoundError, ForbiddenError
from messaging_core.core.gateways import Store
from .events import EventBus, MessageSentEvent
from .message_validators import MessageValidatorRegistry, default_registry, is_blank
from .models import Principal, MessageDisplay, SenderDisplay, Page, TOMBSTONE_CONTENT


class MessageService:
    """
    Message lifecycle inside a chat.

    Send, edit and delete all publish a ``MessageSentEvent`` carrying the
    message as clients should now display it.
    """

    def __init__(
            self,
            store: Store,
            event_bus: EventBus,
            validators: MessageValidatorRegistry | None = None,
            logger: logging.Logger | None = None,
            max_page_size: int | None = None
    ):
        self.store = store
        self.event_bus = event_bus
        self.validators = validators or default_registry()
        self.logger = logger or logging.getLogger(__name__)
        self.max_page_size = max_page_size

    @staticmethod
    def _display(message: MessageDTO) -> MessageDisplay:
        return MessageDisplay(
            message_id=message.id,
            chat_id=message.chat_id,
            sender=SenderDisplay(user_id=message.sender_id, username=message.sender_username),
            message_type=message.message_type,
            content=TOMBSTONE_CONTENT if message.is_deleted else message.content,
            media_url=None if message.is_deleted else message.media_url,
            timestamp=message.sent_at,
            is_edited=message.is_edited,
            is_deleted=message.is_deleted
        )

    async def send_message(
            self,
            sender: Principal,
            chat_id: uuid.UUID,
            message_type: MessageType | str,
            content: str | None = None,
            media_url: str | None = None
    ) -> MessageDisplay:
        message_type = parse_enum(MessageType, message_type, "Invalid message type")

        async with self.store.transaction() as repo:
            if await repo.chats.get_chat(chat_id) is None:
                raise NotFoundError("Chat not found.")

            if await repo.members.find_membership(chat_id, sender.user_id) is None:
                raise ForbiddenError("User is not a member of this chat.")

            validated = self.validators.validate(message_type, content, media_url)

            message = await repo.messages.create_message(
                chat_id=chat_id,
                sender_id=sender.user_id,
                message_type=message_type,
                content=validated.content,
                media_url=validated.media_url,
                sent_at=utc_now()
            )

        display = self._display(message)
        await self.event_bus.publish(MessageSentEvent(chat_id=chat_id, message=display))
        return display

    async def get_messages(
            self,
            chat_id: uuid.UUID,
            requester: Principal,
            page: int = 0,
            size: int = 20
    ) -> Page[MessageDisplay]:
        """
        Newest first; messages sharing a timestamp keep their insert order.
        """
        if page < 0:
            raise ValidationError("Page index must not be negative")
        if size < 1:
            raise ValidationError("Page size must be at least 1")
        if self.max_page_size is not None and size > self.max_page_size:
            raise ValidationError(f"Page size must not exceed {self.max_page_size}")

        async with self.store.transaction() as repo:
            if await repo.members.find_membership(chat_id, requester.user_id) is None:
                raise ForbiddenError("User is not a member of this chat and cannot view messages.")

            messages, total = await repo.messages.get_messages_page(chat_id, page, size)

        return Page[MessageDisplay](
            items=[self._display(m) for m in messages],
            page=page,
            size=size,
            total_elements=total,
            total_pages=math.ceil(total / size)
        )

    async def edit_message(self, editor: Principal, message_id: uuid.UUID, new_content: str | None) -> MessageDisplay:
        async with self.store.transaction() as repo:
            message = await repo.messages.get_message_by_id(message_id)
            if message is None:
                raise NotFoundError("Message not found.")

            if message.sender_id != editor.user_id:
                raise ForbiddenError("User is not authorized to edit this message.")

            if message.message_type != MessageType.TEXT:
                raise ValidationError("Only text messages can be edited.")

            if message.is_deleted:
                raise ValidationError("Deleted messages cannot be edited.")

            if is_blank(new_content):
                raise ValidationError("New message content cannot be empty.")

            message = await repo.messages.update_message(message_id, content=new_content, is_edited=True)

        display = self._display(message)
        await self.event_bus.publish(MessageSentEvent(chat_id=message.chat_id, message=display))
        return display

    async def delete_message(self, deleter: Principal, message_id: uuid.UUID) -> MessageDisplay:
        """
        Soft delete: the content stays stored, readers get the tombstone.

        Allowed for the sender and for any ADMIN of the chat.
        """
        async with self.store.transaction() as repo:
            message = await repo.messages.get_message_by_id(message_id)
            if message is None:
                raise NotFoundError("Message not found.")

            is_sender = message.sender_id == deleter.user_id
            membership = await repo.members.find_membership(message.chat_id, deleter.user_id)
            is_admin = membership is not None and membership.role == MemberRole.ADMIN

            if not is_sender and not is_admin:
                raise ForbiddenError("User is not authorized to delete this message.")

            message = await repo.messages.update_message(message_id, is_deleted=True)

        self.logger.info("Message %s in chat %s deleted by %s", message_id, message.chat_id, deleter.username)
        display = self._display(message)
        await self.event_bus.publish(MessageSentEvent(chat_id=message.chat_id, message=display))
        return display
