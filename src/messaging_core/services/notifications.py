import logging

from messaging_core.core.interfaces import NotificationTransport
from .events import (
    EventBus,
    MessageSentEvent,
    ChatCreatedEvent,
    MemberUpdatedEvent,
    ChatRemovedEvent,
    ChatUpdatedEvent,
    ContactUpdatedEvent,
)

NEW_CHAT_QUEUE = "/queue/new-chat"
CHAT_REMOVED_QUEUE = "/queue/chat-removed"
CONTACT_UPDATES_QUEUE = "/queue/contact-updates"


def chat_topic(chat_id) -> str:
    return f"/topic/chat/{chat_id}"

def members_topic(chat_id) -> str:
    return f"/topic/chat/{chat_id}/members"

def updates_topic(chat_id) -> str:
    return f"/topic/chat/{chat_id}/updates"


class NotificationListener:
    """
    Turns domain events into transport sends.

    Message, member and property changes are broadcast on the chat's topics;
    chat creation, removal and contact changes go to the affected users'
    private queues. Broadcasts are not checked against current membership.
    """

    def __init__(self, transport: NotificationTransport, logger: logging.Logger | None = None):
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)

    def register(self, event_bus: EventBus) -> None:
        event_bus.subscribe(MessageSentEvent, self.on_message_sent)
        event_bus.subscribe(ChatCreatedEvent, self.on_chat_created)
        event_bus.subscribe(MemberUpdatedEvent, self.on_member_updated)
        event_bus.subscribe(ChatRemovedEvent, self.on_chat_removed)
        event_bus.subscribe(ChatUpdatedEvent, self.on_chat_updated)
        event_bus.subscribe(ContactUpdatedEvent, self.on_contact_updated)

    async def on_message_sent(self, event: MessageSentEvent) -> None:
        await self._transport.send_to_topic(chat_topic(event.chat_id), event.message)

    async def on_chat_created(self, event: ChatCreatedEvent) -> None:
        failed = []
        for username in event.recipient_usernames:
            if username in event.delivered:
                continue
            # one recipient's failure must not starve the others
            try:
                await self._transport.send_to_user(username, NEW_CHAT_QUEUE, event.chat)
            except Exception as e:
                self._logger.warning("New chat notification to %s failed: %s", username, e)
                failed.append(username)
            else:
                event.delivered.add(username)
        if failed:
            raise RuntimeError(f"New chat notification failed for {', '.join(failed)}")

    async def on_member_updated(self, event: MemberUpdatedEvent) -> None:
        await self._transport.send_to_topic(members_topic(event.chat_id), event.update)

    async def on_chat_removed(self, event: ChatRemovedEvent) -> None:
        await self._transport.send_to_user(event.username, CHAT_REMOVED_QUEUE, {"chat_id": str(event.chat_id)})

    async def on_chat_updated(self, event: ChatUpdatedEvent) -> None:
        await self._transport.send_to_topic(updates_topic(event.chat_id), event.chat)

    async def on_contact_updated(self, event: ContactUpdatedEvent) -> None:
        await self._transport.send_to_user(event.target_username, CONTACT_UPDATES_QUEUE, event.notification)
