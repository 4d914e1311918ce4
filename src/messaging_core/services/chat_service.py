from collections import defaultdict
from typing import Iterable
import logging
import uuid

from pydantic import TypeAdapter

from messaging_core.core.dto import ChatDTO, MemberDTO
from messaging_core.core.enums import ChatType, MemberRole, parse_enum
from messaging_core.core.exceptions import ValidationError, NotFoundError, ForbiddenError
from messaging_core.core.gateways import Store, Repositories
from messaging_core.core.interfaces import CacheInterface
from .cache_policy import CacheKeys, CacheInvalidationPolicy
from .events import EventBus, ChatCreatedEvent, MemberUpdatedEvent, ChatRemovedEvent, ChatUpdatedEvent
from .message_validators import is_blank
from .models import Principal, ChatDisplay, MemberDisplay, MemberUpdate

_CHAT_LIST = TypeAdapter(list[ChatDisplay])
_MEMBER_LIST = TypeAdapter(list[MemberDisplay])


def _unique(ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    return list(dict.fromkeys(ids))


class ChatService:
    """
    Chat lifecycle and membership.

    Every mutating method runs one transaction and, only after it commits,
    evicts the affected cache entries and publishes its event(s).

    Attributes:
        store: transactional access to the gateways
        cache: read-through cache for chat lists and member lists
        invalidation: eviction rules applied after each commit
        event_bus: receives one event per mutation
        cache_ttl: seconds a cached projection lives
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
    def _member_display(member: MemberDTO) -> MemberDisplay:
        return MemberDisplay(
            user_id=member.user_id,
            username=member.user.username,
            role=member.role
        )

    def _chat_display(self, chat: ChatDTO, members: list[MemberDTO]) -> ChatDisplay:
        return ChatDisplay(
            chat_id=chat.id,
            chat_type=chat.chat_type,
            group_name=chat.group_name,
            group_image=chat.group_image,
            members=[self._member_display(m) for m in members]
        )

    @staticmethod
    async def _authorize_group_admin(repo: Repositories, chat_id: uuid.UUID, user_id: uuid.UUID) -> MemberDTO:
        member = await repo.members.find_membership(chat_id, user_id)
        if member is None:
            raise ForbiddenError("User is not a member of the chat")
        if member.role != MemberRole.ADMIN:
            raise ForbiddenError("User does not have administrative privileges for this group.")
        return member

    @staticmethod
    async def _ensure_admin_remains(repo: Repositories, chat_id: uuid.UUID) -> None:
        # recounted after the write, so a concurrent commit in between is seen
        if await repo.members.count_admins(chat_id) == 0:
            raise ValidationError("A chat must keep at least one ADMIN.")

    @staticmethod
    def _check_composition(chat_type: ChatType, group_name: str | None, member_count: int) -> None:
        if chat_type == ChatType.P2P:
            if member_count != 2:
                raise ValidationError("P2P chat must have exactly 2 users")
        else:
            if is_blank(group_name):
                raise ValidationError("Group name is required")
            if member_count < 3:
                raise ValidationError("Group chat must have at least 3 users")

    async def create_chat(
            self,
            owner: Principal,
            chat_type: ChatType | str,
            member_ids: list[uuid.UUID],
            group_name: str | None = None,
            group_image: str | None = None
    ) -> ChatDisplay:
        """
        Creates a chat with its initial members; the owner becomes its ADMIN.

        The owner is added when missing from member_ids. Nothing is persisted
        when any id is unknown or the member count does not fit the chat type.
        """
        chat_type = parse_enum(ChatType, chat_type, "Invalid chat type")
        requested = _unique(member_ids)

        async with self.store.transaction() as repo:
            users = await repo.users.find_users_by_ids(requested)
            if len(users) != len(requested):
                raise ValidationError("Some users were not found")

            if all(user.id != owner.user_id for user in users):
                owner_user = await repo.users.get_user_by_id(owner.user_id)
                if owner_user is None:
                    raise NotFoundError("Owner not found")
                users.append(owner_user)

            self._check_composition(chat_type, group_name, len(users))

            chat = await repo.chats.create_chat(chat_type, group_name, group_image)
            await repo.members.add_members(chat.id, {
                user.id: MemberRole.ADMIN if user.id == owner.user_id else MemberRole.MEMBER
                for user in users
            })
            members = await repo.members.find_members_by_chat_ids([chat.id])

        display = self._chat_display(chat, members)
        self.logger.info("Chat %s (%s) created by %s with %s members",
                         chat.id, chat_type.value, owner.username, len(members))

        await self.invalidation.chat_created(user.id for user in users)
        await self.event_bus.publish(ChatCreatedEvent(
            chat=display,
            recipient_usernames=tuple(user.username for user in users)
        ))
        return display

    async def get_user_chats(self, owner: Principal) -> list[ChatDisplay]:
        key = CacheKeys.user_chats(owner.user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return _CHAT_LIST.validate_json(cached)

        generation = self.invalidation.generation
        async with self.store.transaction() as repo:
            memberships = await repo.members.find_memberships_by_user(owner.user_id)
            all_members = await repo.members.find_members_by_chat_ids(
                [membership.chat_id for membership in memberships]
            )

        members_by_chat: dict[uuid.UUID, list[MemberDTO]] = defaultdict(list)
        for member in all_members:
            members_by_chat[member.chat_id].append(member)

        chats = [
            self._chat_display(membership.chat, members_by_chat.get(membership.chat_id, []))
            for membership in memberships
        ]
        await self.invalidation.fill(key, _CHAT_LIST.dump_json(chats).decode(), self.cache_ttl, generation)
        return chats

    async def get_chat_members(self, chat_id: uuid.UUID, requester: Principal) -> list[MemberDisplay]:
        # membership is checked on every call, cached or not
        async with self.store.transaction() as repo:
            if await repo.members.find_membership(chat_id, requester.user_id) is None:
                raise ForbiddenError("User is not authorized to view the members of this chat.")

            key = CacheKeys.chat_members(chat_id)
            cached = await self.cache.get(key)
            if cached is not None:
                return _MEMBER_LIST.validate_json(cached)

            generation = self.invalidation.generation
            members = await repo.members.find_members_by_chat_ids([chat_id])

        result = [self._member_display(m) for m in members]
        await self.invalidation.fill(key, _MEMBER_LIST.dump_json(result).decode(), self.cache_ttl, generation)
        return result

    async def add_member(self, owner: Principal, chat_id: uuid.UUID, user_ids: list[uuid.UUID]) -> ChatDisplay:
        """
        Adds users to a chat. Users that already belong to it are skipped.

        Only an ADMIN of the chat may add members.
        """
        requested = _unique(user_ids)

        async with self.store.transaction() as repo:
            await self._authorize_group_admin(repo, chat_id, owner.user_id)

            chat = await repo.chats.get_chat(chat_id)
            if chat is None:
                raise NotFoundError("Chat not found")

            users = await repo.users.find_users_by_ids(requested)
            if len(users) != len(requested):
                raise ValidationError("One or more user IDs to add are invalid.")

            existing = {m.user_id for m in await repo.members.find_members_by_chat_ids([chat_id])}
            inserted = await repo.members.add_members(chat_id, {
                user.id: MemberRole.MEMBER for user in users if user.id not in existing
            })
            all_members = await repo.members.find_members_by_chat_ids([chat_id])

        inserted_ids = {m.user_id for m in inserted}
        added = [self._member_display(m) for m in all_members if m.user_id in inserted_ids]
        self.logger.info("%s added %s member(s) to chat %s", owner.username, len(added), chat_id)

        await self.invalidation.membership_changed(chat_id, [m.user_id for m in all_members])
        await self.event_bus.publish(MemberUpdatedEvent(
            chat_id=chat_id,
            update=MemberUpdate(chat_id=chat_id, updated_members=added, update_type="MEMBER_ADDED")
        ))
        return self._chat_display(chat, all_members)

    async def update_group_properties(
            self,
            owner: Principal,
            chat_id: uuid.UUID,
            new_group_name: str | None = None,
            new_group_image: str | None = None
    ) -> ChatDisplay:
        async with self.store.transaction() as repo:
            await self._authorize_group_admin(repo, chat_id, owner.user_id)

            if await repo.chats.get_chat(chat_id) is None:
                raise NotFoundError("Chat not found")

            chat = await repo.chats.update_chat(
                chat_id,
                group_name=None if is_blank(new_group_name) else new_group_name,
                group_image=None if is_blank(new_group_image) else new_group_image
            )
            members = await repo.members.find_members_by_chat_ids([chat_id])

        display = self._chat_display(chat, members)

        await self.invalidation.chat_updated(m.user_id for m in members)
        await self.event_bus.publish(ChatUpdatedEvent(chat_id=chat_id, chat=display))
        return display

    async def update_member_role(
            self,
            owner: Principal,
            chat_id: uuid.UUID,
            target_user_id: uuid.UUID,
            new_role: MemberRole | str
    ) -> MemberDisplay:
        """
        Changes a member's role.

        An ADMIN's role can only be changed by that ADMIN, and the last ADMIN
        of a chat cannot step down.
        """
        async with self.store.transaction() as repo:
            # locks the ADMIN rows before any role is read
            admin_count = await repo.members.count_admins(chat_id)
            await self._authorize_group_admin(repo, chat_id, owner.user_id)

            targets = await repo.members.find_members_by_user_ids(chat_id, [target_user_id])
            if not targets:
                raise ForbiddenError("Target user is not a member of this chat.")
            target = targets[0]

            if target.role == MemberRole.ADMIN and target.user_id != owner.user_id:
                raise ForbiddenError("Cannot modify the role of an existing group ADMIN.")

            role = parse_enum(MemberRole, new_role, "Invalid role provided. Role must be ADMIN or MEMBER.")

            demoting = target.role == MemberRole.ADMIN and role != MemberRole.ADMIN
            if demoting and admin_count <= 1:
                raise ValidationError("A chat must keep at least one ADMIN.")

            await repo.members.update_role(target.id, role)
            if demoting:
                await self._ensure_admin_remains(repo, chat_id)
            members = await repo.members.find_members_by_chat_ids([chat_id])

        updated = MemberDisplay(user_id=target.user_id, username=target.user.username, role=role)

        await self.invalidation.membership_changed(chat_id, [m.user_id for m in members])
        await self.event_bus.publish(MemberUpdatedEvent(
            chat_id=chat_id,
            update=MemberUpdate(chat_id=chat_id, updated_members=[updated], update_type="ROLE_UPDATED")
        ))
        return updated

    async def delete_member(
            self,
            owner: Principal,
            chat_id: uuid.UUID,
            target_user_ids: list[uuid.UUID]
    ) -> list[MemberDisplay]:
        """
        Removes members from a chat as one batch.

        An ADMIN may remove anyone but themself; any other member may only
        remove themself. Every target is checked before any row is deleted.
        """
        requested = _unique(target_user_ids)

        async with self.store.transaction() as repo:
            # locks the ADMIN rows before the requester's role is read
            await repo.members.count_admins(chat_id)
            targets = await repo.members.find_members_by_user_ids(chat_id, requested)
            if not targets:
                raise NotFoundError("No matching members found to remove from the chat.")

            owner_membership = await repo.members.find_membership(chat_id, owner.user_id)
            is_admin = owner_membership is not None and owner_membership.role == MemberRole.ADMIN

            for target in targets:
                is_removing_self = target.user_id == owner.user_id
                if is_removing_self and target.role == MemberRole.ADMIN:
                    raise ForbiddenError("Group ADMIN cannot remove themselves using this function.")
                if not is_admin and not is_removing_self:
                    raise ForbiddenError("User does not have permission to remove one of the specified members.")

            await repo.members.delete_members([target.id for target in targets])
            if any(target.role == MemberRole.ADMIN for target in targets):
                await self._ensure_admin_remains(repo, chat_id)
            remaining = await repo.members.find_members_by_chat_ids([chat_id])

        removed = [self._member_display(target) for target in targets]
        self.logger.info("%s removed %s member(s) from chat %s", owner.username, len(removed), chat_id)

        await self.invalidation.membership_changed(
            chat_id,
            [m.user_id for m in remaining] + [target.user_id for target in targets]
        )
        for target in targets:
            await self.event_bus.publish(ChatRemovedEvent(chat_id=chat_id, username=target.user.username))
        await self.event_bus.publish(MemberUpdatedEvent(
            chat_id=chat_id,
            update=MemberUpdate(chat_id=chat_id, updated_members=removed, update_type="MEMBER_REMOVED")
        ))
        return removed
