from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
import uuid

from .dto import *
from .enums import ChatType, MemberRole, MessageType

class UserInterface(ABC):
    @abstractmethod
    async def create_user(
            self,
            username: str,
            password_hash: str,
            phone_number: str | None = None,
            name: str | None = None
    ) -> UserDTO:
        """
        Creates a new user in the database.
        :param username:
        :param password_hash:
        :param phone_number:
        :param name:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_user_by_id(
            self,
            user_id: uuid.UUID
    ) -> UserDTO | None:
        """
        Get user by User.id
        :param user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_users_by_ids(
            self,
            user_ids: list[uuid.UUID]
    ) -> list[UserDTO]:
        """
        Resolves a batch of ids. A result shorter than the request means
        at least one id is unknown.
        :param user_ids:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_user_by_phone(
            self,
            phone_number: str
    ) -> UserDTO | None:
        """
        Get user by User.phone_number
        :param phone_number:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_users_by_phones(
            self,
            phone_numbers: list[str]
    ) -> list[UserDTO]:
        """
        Gets every registered user whose phone number is in the batch.
        :param phone_numbers:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def update_phone_number(
            self,
            user_id: uuid.UUID,
            phone_number: str
    ) -> None:
        """
        Changes the phone number on the shared user row.
        :param user_id:
        :param phone_number:
        :return:
        """
        raise NotImplementedError()


class ChatInterface(ABC):
    @abstractmethod
    async def create_chat(
            self,
            chat_type: ChatType,
            group_name: str | None,
            group_image: str | None
    ) -> ChatDTO:
        """
        Creates a new chat row.
        :param chat_type:
        :param group_name:
        :param group_image:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_chat(
            self,
            chat_id: uuid.UUID
    ) -> ChatDTO | None:
        """
        Gets a chat that has not been deleted.
        :param chat_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def update_chat(
            self,
            chat_id: uuid.UUID,
            group_name: str | None = None,
            group_image: str | None = None
    ) -> ChatDTO:
        """
        Updates the supplied group properties, leaving None fields untouched.
        :param chat_id:
        :param group_name:
        :param group_image:
        :return:
        """
        raise NotImplementedError()


class MemberInterface(ABC):
    @abstractmethod
    async def add_members(
            self,
            chat_id: uuid.UUID,
            roles: dict[uuid.UUID, MemberRole]
    ) -> list[MemberDTO]:
        """
        Inserts membership rows. Rows that already exist for (chat_id, user_id)
        are skipped, and only the rows actually inserted are returned.
        :param chat_id:
        :param roles: user id -> role
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_membership(
            self,
            chat_id: uuid.UUID,
            user_id: uuid.UUID
    ) -> MemberDTO | None:
        """
        Gets one membership row.
        :param chat_id:
        :param user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_members_by_chat_ids(
            self,
            chat_ids: list[uuid.UUID]
    ) -> list[MemberDTO]:
        """
        Gets all members across a batch of chats, with user data, in one query.
        :param chat_ids:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_memberships_by_user(
            self,
            user_id: uuid.UUID
    ) -> list[MemberDTO]:
        """
        Gets all memberships of a user in chats that are not deleted, with chat
        data, in one query.
        :param user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_members_by_user_ids(
            self,
            chat_id: uuid.UUID,
            user_ids: list[uuid.UUID]
    ) -> list[MemberDTO]:
        """
        Gets the membership rows of the given users in one chat, with user data.
        :param chat_id:
        :param user_ids:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def count_admins(
            self,
            chat_id: uuid.UUID
    ) -> int:
        """
        Counts ADMIN rows in a chat, locking them until the transaction ends.
        :param chat_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def update_role(
            self,
            member_id: uuid.UUID,
            role: MemberRole
    ) -> None:
        """
        Changes the role of a membership row.
        :param member_id:
        :param role:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete_members(
            self,
            member_ids: list[uuid.UUID]
    ) -> None:
        """
        Deletes membership rows.
        :param member_ids:
        :return:
        """
        raise NotImplementedError()


class MessageInterface(ABC):
    @abstractmethod
    async def create_message(
            self,
            chat_id: uuid.UUID,
            sender_id: uuid.UUID,
            message_type: MessageType,
            content: str,
            media_url: str | None,
            sent_at: datetime
    ) -> MessageDTO:
        """
        Creates a new message in the database.
        :param chat_id:
        :param sender_id:
        :param message_type:
        :param content:
        :param media_url:
        :param sent_at:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_message_by_id(
            self,
            message_id: uuid.UUID
    ) -> MessageDTO | None:
        """
        Gets a message by ID.
        :param message_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_messages_page(
            self,
            chat_id: uuid.UUID,
            page: int,
            size: int
    ) -> tuple[list[MessageDTO], int]:
        """
        Gets one page of a chat, newest first, and the total message count.
        :param chat_id:
        :param page: zero based
        :param size:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def update_message(
            self,
            message_id: uuid.UUID,
            **values: Any
    ) -> MessageDTO:
        """
        Updates columns of a message (content, is_edited, is_deleted).
        :param message_id:
        :param values:
        :return:
        """
        raise NotImplementedError()


class ContactInterface(ABC):
    @abstractmethod
    async def create_contact(
            self,
            owner_id: uuid.UUID,
            contact_user_id: uuid.UUID,
            display_name: str | None
    ) -> ContactDTO:
        """
        Creates a new contact in the database.
        :param owner_id:
        :param contact_user_id:
        :param display_name:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_contact(
            self,
            owner_id: uuid.UUID,
            contact_user_id: uuid.UUID
    ) -> ContactDTO | None:
        """
        Gets the relationship row owned by owner_id, with contact user data.
        :param owner_id:
        :param contact_user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_contacts_by_owner(
            self,
            owner_id: uuid.UUID
    ) -> list[ContactDTO]:
        """
        Gets all contacts of an owner, with contact user data, in one query.
        :param owner_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def find_owner_ids_by_contact_user(
            self,
            contact_user_id: uuid.UUID
    ) -> list[uuid.UUID]:
        """
        Gets the owners that hold a contact record for this user.
        :param contact_user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def update_display_name(
            self,
            contact_id: uuid.UUID,
            display_name: str
    ) -> None:
        """
        Updates the display name of a relationship row.
        :param contact_id:
        :param display_name:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete_contact(
            self,
            contact_id: uuid.UUID
    ) -> None:
        """
        Deletes a contact from the database.
        :param contact_id:
        :return:
        """
        raise NotImplementedError()


class CacheInterface(ABC):
    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Gets a cached value, None on miss or expiry.
        :param key:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def put(self, key: str, value: str, ttl: int) -> None:
        """
        Stores a value for ttl seconds.
        :param key:
        :param value:
        :param ttl:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def evict(self, *keys: str) -> None:
        """
        Removes keys. Missing keys are ignored.
        :param keys:
        :return:
        """
        raise NotImplementedError()


class NotificationTransport(ABC):
    @abstractmethod
    async def send_to_topic(self, destination: str, payload: Any) -> None:
        """
        Broadcasts to every subscriber of a topic.
        :param destination:
        :param payload: JSON serialisable value or pydantic model
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def send_to_user(self, username: str, destination: str, payload: Any) -> None:
        """
        Sends to one user's private queue.
        :param username:
        :param destination:
        :param payload: JSON serialisable value or pydantic model
        :return:
        """
        raise NotImplementedError()
