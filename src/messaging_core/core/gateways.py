from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator
import logging
import uuid

from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, contains_eager

from .database import User, Chat, Member, Message, Contact, utc_now
from .interfaces import UserInterface, ChatInterface, MemberInterface, MessageInterface, ContactInterface
from .dto import UserDTO, ChatDTO, MemberDTO, MessageDTO, ContactDTO
from .enums import ChatType, MemberRole, MessageType
from .db_manager import DatabaseManager


def _user_dto(user: User) -> UserDTO:
    return UserDTO(
        id=user.id,
        username=user.username,
        phone_number=user.phone_number,
        name=user.name
    )

def _chat_dto(chat: Chat) -> ChatDTO:
    return ChatDTO(
        id=chat.id,
        chat_type=chat.chat_type,
        group_name=chat.group_name,
        group_image=chat.group_image,
        is_deleted=chat.is_deleted,
        created_at=chat.created_at
    )

def _member_dto(member: Member, with_user: bool = False, with_chat: bool = False) -> MemberDTO:
    return MemberDTO(
        id=member.id,
        chat_id=member.chat_id,
        user_id=member.user_id,
        role=member.role,
        joined_at=member.joined_at,
        user=_user_dto(member.user) if with_user else None,
        chat=_chat_dto(member.chat) if with_chat else None
    )

def _message_dto(msg: Message) -> MessageDTO:
    return MessageDTO(
        id=msg.id,
        seq=msg.seq,
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        sender_username=msg.sender.username,
        message_type=msg.message_type,
        content=msg.content,
        media_url=msg.media_url,
        sent_at=msg.sent_at,
        is_edited=msg.is_edited,
        is_deleted=msg.is_deleted
    )

def _contact_dto(contact: Contact) -> ContactDTO:
    return ContactDTO(
        id=contact.id,
        owner_id=contact.owner_id,
        contact_user_id=contact.contact_user_id,
        display_name=contact.display_name,
        contact_user=_user_dto(contact.contact_user)
    )


class UserGateway(UserInterface):
    __slots__ = ("_session", "_logger")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    async def create_user(
            self,
            username: str,
            password_hash: str,
            phone_number: str | None = None,
            name: str | None = None
    ) -> UserDTO:
        try:
            stmt = insert(User).values(
                username=username,
                password_hash=password_hash,
                phone_number=phone_number,
                name=name
            ).returning(User)
            result = await self._session.execute(stmt)
            return _user_dto(result.scalars().first())
        except Exception as e:
            self._logger.error("Error creating user in database: %s", e)
            raise

    async def get_user_by_id(self, user_id: uuid.UUID) -> UserDTO | None:
        stmt = select(User).where(User.id == user_id)
        result = await self._session.execute(stmt)
        user = result.scalars().first()
        return _user_dto(user) if user else None

    async def find_users_by_ids(self, user_ids: list[uuid.UUID]) -> list[UserDTO]:
        if not user_ids:
            return []

        stmt = select(User).where(User.id.in_(user_ids))
        result = await self._session.execute(stmt)
        return [_user_dto(user) for user in result.scalars().all()]

    async def get_user_by_phone(self, phone_number: str) -> UserDTO | None:
        stmt = select(User).where(User.phone_number == phone_number)
        result = await self._session.execute(stmt)
        user = result.scalars().first()
        return _user_dto(user) if user else None

    async def find_users_by_phones(self, phone_numbers: list[str]) -> list[UserDTO]:
        if not phone_numbers:
            return []

        stmt = select(User).where(User.phone_number.in_(phone_numbers))
        result = await self._session.execute(stmt)
        return [_user_dto(user) for user in result.scalars().all()]

    async def update_phone_number(self, user_id: uuid.UUID, phone_number: str) -> None:
        try:
            stmt = update(User).where(
                User.id == user_id
            ).values(phone_number=phone_number)
            await self._session.execute(stmt)
        except Exception as e:
            self._logger.error("Error updating phone number in database: %s", e)
            raise


class ChatGateway(ChatInterface):
    __slots__ = ("_session", "_logger")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    async def create_chat(
            self,
            chat_type: ChatType,
            group_name: str | None,
            group_image: str | None
    ) -> ChatDTO:
        try:
            stmt = insert(Chat).values(
                chat_type=chat_type,
                group_name=group_name,
                group_image=group_image
            ).returning(Chat)
            result = await self._session.execute(stmt)
            return _chat_dto(result.scalars().first())
        except Exception as e:
            self._logger.error("Error creating chat in database: %s", e)
            raise

    async def get_chat(self, chat_id: uuid.UUID) -> ChatDTO | None:
        stmt = select(Chat).where(
            Chat.id == chat_id,
            Chat.is_deleted == False
        )
        result = await self._session.execute(stmt)
        chat = result.scalars().first()
        return _chat_dto(chat) if chat else None

    async def update_chat(
            self,
            chat_id: uuid.UUID,
            group_name: str | None = None,
            group_image: str | None = None
    ) -> ChatDTO:
        values = {}
        if group_name is not None:
            values["group_name"] = group_name
        if group_image is not None:
            values["group_image"] = group_image

        if values:
            stmt = update(Chat).where(Chat.id == chat_id).values(**values)
            await self._session.execute(stmt)

        return await self.get_chat(chat_id)


class MemberGateway(MemberInterface):
    __slots__ = ("_session", "_logger")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    def _insert(self):
        if self._session.bind.dialect.name == "postgresql":
            return postgresql.insert(Member)
        return sqlite.insert(Member)

    async def add_members(
            self,
            chat_id: uuid.UUID,
            roles: dict[uuid.UUID, MemberRole]
    ) -> list[MemberDTO]:
        if not roles:
            return []

        joined_at = utc_now()
        rows = [
            {
                "id": uuid.uuid4(),
                "chat_id": chat_id,
                "user_id": user_id,
                "role": role,
                "joined_at": joined_at
            } for user_id, role in roles.items()
        ]

        try:
            # A concurrent insert of the same (chat_id, user_id) is skipped, not failed
            stmt = self._insert().values(rows).on_conflict_do_nothing(
                index_elements=["chat_id", "user_id"]
            ).returning(Member)
            result = await self._session.execute(stmt)
            return [_member_dto(m) for m in result.scalars().all()]
        except Exception as e:
            self._logger.error("Error adding members in database: %s", e)
            raise

    async def find_membership(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> MemberDTO | None:
        stmt = select(Member).where(
            Member.chat_id == chat_id,
            Member.user_id == user_id
        )
        result = await self._session.execute(stmt)
        member = result.scalars().first()
        return _member_dto(member) if member else None

    async def find_members_by_chat_ids(self, chat_ids: list[uuid.UUID]) -> list[MemberDTO]:
        if not chat_ids:
            return []

        stmt = select(Member).options(
            joinedload(Member.user)
        ).where(
            Member.chat_id.in_(chat_ids)
        ).order_by(Member.joined_at)
        result = await self._session.execute(stmt)
        return [_member_dto(m, with_user=True) for m in result.scalars().all()]

    async def find_memberships_by_user(self, user_id: uuid.UUID) -> list[MemberDTO]:
        stmt = select(Member).join(
            Member.chat
        ).options(
            contains_eager(Member.chat)
        ).where(
            Member.user_id == user_id,
            Chat.is_deleted == False
        ).order_by(Chat.created_at.desc())
        result = await self._session.execute(stmt)
        return [_member_dto(m, with_chat=True) for m in result.scalars().all()]

    async def find_members_by_user_ids(
            self,
            chat_id: uuid.UUID,
            user_ids: list[uuid.UUID]
    ) -> list[MemberDTO]:
        if not user_ids:
            return []

        stmt = select(Member).options(
            joinedload(Member.user)
        ).where(
            Member.chat_id == chat_id,
            Member.user_id.in_(user_ids)
        )
        result = await self._session.execute(stmt)
        return [_member_dto(m, with_user=True) for m in result.scalars().all()]

    async def count_admins(self, chat_id: uuid.UUID) -> int:
        # Row locks serialise concurrent demotions where the backend supports it
        stmt = select(Member.id).where(
            Member.chat_id == chat_id,
            Member.role == MemberRole.ADMIN
        ).with_for_update()
        result = await self._session.execute(stmt)
        return len(result.scalars().all())

    async def update_role(self, member_id: uuid.UUID, role: MemberRole) -> None:
        stmt = update(Member).where(Member.id == member_id).values(role=role)
        await self._session.execute(stmt)

    async def delete_members(self, member_ids: list[uuid.UUID]) -> None:
        if not member_ids:
            return
        try:
            stmt = delete(Member).where(Member.id.in_(member_ids))
            await self._session.execute(stmt)
        except Exception as e:
            self._logger.error("Error deleting members in database: %s", e)
            raise


class MessageGateway(MessageInterface):
    __slots__ = ("_session", "_logger")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    async def create_message(
            self,
            chat_id: uuid.UUID,
            sender_id: uuid.UUID,
            message_type: MessageType,
            content: str,
            media_url: str | None,
            sent_at: datetime
    ) -> MessageDTO:
        try:
            stmt = insert(Message).values(
                chat_id=chat_id,
                sender_id=sender_id,
                message_type=message_type,
                content=content,
                media_url=media_url,
                sent_at=sent_at
            ).returning(Message.id)
            result = await self._session.execute(stmt)
            message_id = result.scalar_one()
        except Exception as e:
            self._logger.error("Error creating message in database: %s", e)
            raise

        return await self.get_message_by_id(message_id)

    async def get_message_by_id(self, message_id: uuid.UUID) -> MessageDTO | None:
        stmt = select(Message).options(
            joinedload(Message.sender)
        ).where(Message.id == message_id)
        result = await self._session.execute(stmt)
        msg = result.scalars().first()
        return _message_dto(msg) if msg else None

    async def get_messages_page(
            self,
            chat_id: uuid.UUID,
            page: int,
            size: int
    ) -> tuple[list[MessageDTO], int]:
        count_stmt = select(func.count()).select_from(Message).where(Message.chat_id == chat_id)
        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = select(Message).options(
            joinedload(Message.sender)
        ).where(
            Message.chat_id == chat_id
        ).order_by(
            Message.sent_at.desc(),
            Message.seq.desc()
        ).offset(page * size).limit(size)
        result = await self._session.execute(stmt)
        return [_message_dto(m) for m in result.scalars().all()], total

    async def update_message(self, message_id: uuid.UUID, **values: Any) -> MessageDTO:
        try:
            stmt = update(Message).where(Message.id == message_id).values(**values)
            await self._session.execute(stmt)
        except Exception as e:
            self._logger.error("Error updating message in database: %s", e)
            raise

        return await self.get_message_by_id(message_id)


class ContactGateway(ContactInterface):
    __slots__ = ("_session", "_logger")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self._session = session
        self._logger = logger or logging.getLogger(__name__)

    async def create_contact(
            self,
            owner_id: uuid.UUID,
            contact_user_id: uuid.UUID,
            display_name: str | None
    ) -> ContactDTO:
        try:
            stmt = insert(Contact).values(
                owner_id=owner_id,
                contact_user_id=contact_user_id,
                display_name=display_name
            )
            await self._session.execute(stmt)
        except Exception as e:
            self._logger.error("Error adding contact in database: %s", e)
            raise

        return await self.find_contact(owner_id, contact_user_id)

    async def find_contact(self, owner_id: uuid.UUID, contact_user_id: uuid.UUID) -> ContactDTO | None:
        stmt = select(Contact).options(
            joinedload(Contact.contact_user)
        ).where(
            Contact.owner_id == owner_id,
            Contact.contact_user_id == contact_user_id
        )
        result = await self._session.execute(stmt)
        contact = result.scalars().first()
        return _contact_dto(contact) if contact else None

    async def find_contacts_by_owner(self, owner_id: uuid.UUID) -> list[ContactDTO]:
        stmt = select(Contact).options(
            joinedload(Contact.contact_user)
        ).where(Contact.owner_id == owner_id)
        result = await self._session.execute(stmt)
        return [_contact_dto(c) for c in result.scalars().all()]

    async def find_owner_ids_by_contact_user(self, contact_user_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(Contact.owner_id).where(Contact.contact_user_id == contact_user_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_display_name(self, contact_id: uuid.UUID, display_name: str) -> None:
        stmt = update(Contact).where(Contact.id == contact_id).values(display_name=display_name)
        await self._session.execute(stmt)

    async def delete_contact(self, contact_id: uuid.UUID) -> None:
        try:
            stmt = delete(Contact).where(Contact.id == contact_id)
            await self._session.execute(stmt)
        except Exception as e:
            self._logger.error("Error deleting contact in database: %s", e)
            raise


class Repositories:
    """
    Gateways sharing one session, so everything done through them commits or
    rolls back together.
    """
    __slots__ = ("users", "chats", "members", "messages", "contacts")

    def __init__(self, session: AsyncSession, logger: logging.Logger | None = None):
        self.users = UserGateway(session, logger)
        self.chats = ChatGateway(session, logger)
        self.members = MemberGateway(session, logger)
        self.messages = MessageGateway(session, logger)
        self.contacts = ContactGateway(session, logger)


class Store:
    __slots__ = ("_db_manager", "_logger")

    def __init__(self, db_manager: DatabaseManager, logger: logging.Logger | None = None):
        self._db_manager = db_manager
        self._logger = logger or logging.getLogger(__name__)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Repositories, None]:
        async with self._db_manager.session() as session:
            yield Repositories(session, self._logger)
