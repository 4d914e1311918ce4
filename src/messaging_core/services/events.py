from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
import logging
import uuid

from .models import ChatDisplay, MemberUpdate, MessageDisplay, ContactNotification


@dataclass(frozen=True)
class MessageSentEvent:
    """A message was sent, edited or deleted in a chat."""
    chat_id: uuid.UUID
    message: MessageDisplay


@dataclass(frozen=True)
class ChatCreatedEvent:
    """
    A chat was created. ``delivered`` records recipients already notified so a
    retried delivery only resends to the ones that failed.
    """
    chat: ChatDisplay
    recipient_usernames: tuple[str, ...]
    delivered: set[str] = field(default_factory=set, compare=False, repr=False)


@dataclass(frozen=True)
class MemberUpdatedEvent:
    chat_id: uuid.UUID
    update: MemberUpdate


@dataclass(frozen=True)
class ChatRemovedEvent:
    """A user was removed from a chat."""
    chat_id: uuid.UUID
    username: str


@dataclass(frozen=True)
class ChatUpdatedEvent:
    chat_id: uuid.UUID
    chat: ChatDisplay


@dataclass(frozen=True)
class ContactUpdatedEvent:
    target_username: str
    notification: ContactNotification


Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """
    In-process publish/subscribe.

    ``publish`` awaits every handler registered for the event's type. A handler
    that raises is retried up to ``max_attempts`` times within the same call and
    then logged; failures never propagate to the publisher, whose transaction
    has already committed.
    """

    def __init__(self, logger: logging.Logger | None = None, max_attempts: int = 3):
        self._handlers: dict[type, list[Handler]] = {}
        self._logger = logger or logging.getLogger(__name__)
        self._max_attempts = max(1, max_attempts)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> int:
        """
        Delivers an event to its subscribers.
        :param event:
        :return: number of handlers that completed successfully
        """
        handlers = self.handlers_for(type(event))
        if not handlers:
            self._logger.debug("No subscribers for %s", type(event).__name__)
            return 0

        delivered = 0
        for handler in handlers:
            if await self._deliver(handler, event):
                delivered += 1
        return delivered

    async def _deliver(self, handler: Handler, event: Any) -> bool:
        name = getattr(handler, "__qualname__", repr(handler))
        for attempt in range(1, self._max_attempts + 1):
            try:
                await handler(event)
                return True
            except Exception as e:
                if attempt < self._max_attempts:
                    self._logger.warning(
                        "Handler %s failed for %s (attempt %s/%s): %s",
                        name, type(event).__name__, attempt, self._max_attempts, e
                    )
                else:
                    self._logger.error(
                        "Handler %s gave up on %s after %s attempts",
                        name, type(event).__name__, self._max_attempts, exc_info=True
                    )
        return False
