import logging
import uuid

from pydantic import TypeAdapter
from sqlalchemy.exc import IntegrityError

from messaging_core.core.dto import ContactDTO, UserDTO
from messaging_core.core.exceptions import ValidationError, NotFoundError, ForbiddenError, ConflictError
from messaging_core.core.gateways import Store
from messaging_core.core.interfaces import CacheInterface
from .cache_policy import CacheKeys, CacheInvalidationPolicy
from .events import EventBus, ContactUpdatedEvent
from .message_validators import is_blank
from .models import Principal, ContactDisplay, ContactMatch, ContactNotification

_CONTACT_LIST = TypeAdapter(list[ContactDisplay])


class ContactService:
    """
    Directional address book: a contact row belongs to its owner only.

    Notifications go to the other party of the relationship, never to the
    owner who made the change.
    """

    def __init__(
            self,
            store: Store,
            cache: CacheInterface,
            invalidation: CacheInvalidationPolicy,
            event_bus: EventBus,
            logger: logging.Logger | None = None,
            cache_ttl: int = 600
    ):
        self.store = store
        self.cache = cache
        self.invalidation = invalidation
        self.event_bus = event_bus
        self.logger = logger or logging.getLogger(__name__)
        self.cache_ttl = cache_ttl

    @staticmethod
    def _display(contact: ContactDTO) -> ContactDisplay:
        return ContactDisplay(
            id=contact.id,
            contact_user_id=contact.contact_user_id,
            display_name=contact.display_name,
            contact_username=contact.contact_user.username,
            contact_phone_number=contact.contact_user.phone_number
        )

    @staticmethod
    def _match(user: UserDTO) -> ContactMatch:
        return ContactMatch(
            user_id=user.id,
            username=user.username,
            name=user.name,
            phone_number=user.phone_number
        )

    async def sync_contacts(self, phone_numbers: list[str]) -> list[ContactMatch]:
        """
        Returns the registered users among the given phone numbers.
        """
        numbers = list(dict.fromkeys(n.strip() for n in phone_numbers if not is_blank(n)))
        async with self.store.transaction() as repo:
            users = await repo.users.find_users_by_phones(numbers)
        return [self._match(user) for user in users]

    async def get_contact_by_phone(self, phone_number: str) -> ContactMatch | None:
        async with self.store.transaction() as repo:
            user = await repo.users.get_user_by_phone(phone_number)
        return self._match(user) if user else None

    async def get_all_contacts(self, owner: Principal) -> list[ContactDisplay]:
        key = CacheKeys.contacts(owner.user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return _CONTACT_LIST.validate_json(cached)

        generation = self.invalidation.generation
        async with self.store.transaction() as repo:
            contacts = await repo.contacts.find_contacts_by_owner(owner.user_id)

        result = [self._display(c) for c in contacts]
        await self.invalidation.fill(key, _CONTACT_LIST.dump_json(result).decode(), self.cache_ttl, generation)
        return result

    async def add_contact(
            self,
            owner: Principal,
            target_phone_number: str,
            display_name: str | None = None
    ) -> ContactDisplay:
        try:
            async with self.store.transaction() as repo:
                target = await repo.users.get_user_by_phone(target_phone_number)
                if target is None:
                    raise NotFoundError("Target user not found")

                if target.id == owner.user_id:
                    raise ValidationError("Cannot add yourself as a contact")

                if await repo.contacts.find_contact(owner.user_id, target.id) is not None:
                    raise ValidationError("Contact already added")

                contact = await repo.contacts.create_contact(owner.user_id, target.id, display_name)
        except IntegrityError as e:
            raise ConflictError("Contact already added") from e

        await self.invalidation.contacts_changed([owner.user_id])
        await self.event_bus.publish(ContactUpdatedEvent(
            target_username=target.username,
            notification=ContactNotification(
                user_id=owner.user_id,
                username=owner.username,
                update_type="CONTACT_ADDED"
            )
        ))
        return self._display(contact)

    async def update_contact(
            self,
            owner: Principal,
            target_user_id: uuid.UUID,
            new_display_name: str | None = None,
            new_phone_number: str | None = None
    ) -> ContactDisplay:
        """
        Updates a contact.

        The display name belongs to the owner's relationship row. The phone
        number belongs to the target user, so changing it is visible to every
        owner that has this user as a contact.
        """
        try:
            async with self.store.transaction() as repo:
                target = await repo.users.get_user_by_id(target_user_id)
                if target is None:
                    raise NotFoundError("Target user not found")

                relationship = await repo.contacts.find_contact(owner.user_id, target_user_id)
                if relationship is None:
                    raise ForbiddenError("Contact relationship not found or unauthorized")

                phone_changed = (
                    not is_blank(new_phone_number)
                    and new_phone_number.strip() != target.phone_number
                )
                if phone_changed:
                    await repo.users.update_phone_number(target_user_id, new_phone_number.strip())

                if not is_blank(new_display_name):
                    await repo.contacts.update_display_name(relationship.id, new_display_name)

                contact = await repo.contacts.find_contact(owner.user_id, target_user_id)
                observers = [owner.user_id]
                if phone_changed:
                    observers.extend(await repo.contacts.find_owner_ids_by_contact_user(target_user_id))
        except IntegrityError as e:
            raise ConflictError("Phone number is already in use") from e

        await self.invalidation.contacts_changed(observers)
        if phone_changed:
            self.logger.info("Phone number of user %s changed by %s", target_user_id, owner.username)
            await self.event_bus.publish(ContactUpdatedEvent(
                target_username=target.username,
                notification=ContactNotification(
                    user_id=owner.user_id,
                    username=owner.username,
                    update_type="CONTACT_DETAILS_UPDATED"
                )
            ))
        return self._display(contact)

    async def delete_contact(self, owner: Principal, target_user_id: uuid.UUID) -> None:
        async with self.store.transaction() as repo:
            relationship = await repo.contacts.find_contact(owner.user_id, target_user_id)
            if relationship is None:
                raise ForbiddenError("Contact not found or unauthorized")

            await repo.contacts.delete_contact(relationship.id)

        await self.invalidation.contacts_changed([owner.user_id])
        await self.event_bus.publish(ContactUpdatedEvent(
            target_username=relationship.contact_user.username,
            notification=ContactNotification(
                user_id=owner.user_id,
                username=owner.username,
                update_type="CONTACT_REMOVED"
            )
        ))
