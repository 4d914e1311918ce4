from sqlalchemy import ForeignKey, String, Text, DateTime, Index, Integer, Uuid, Enum, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from datetime import datetime, timezone
from typing import List, Optional
import uuid

from .enums import ChatType, MemberRole, MessageType


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass

class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True, index=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    memberships: Mapped[List["Member"]] = relationship(
        "Member",
        back_populates="user"
    )
    sent_messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="sender"
    )

class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_type: Mapped[ChatType] = mapped_column(Enum(ChatType, native_enum=False, length=16))
    group_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    group_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    members: Mapped[List["Member"]] = relationship(
        "Member",
        back_populates="chat"
    )

class Member(Base):
    __tablename__ = "members"

    __table_args__ = (
        UniqueConstraint('chat_id', 'user_id', name='uq_members_chat_user'),
        Index('ix_members_chat', 'chat_id'),
        Index('ix_members_user', 'user_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("chats.id", ondelete="CASCADE"))
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    role: Mapped[MemberRole] = mapped_column(Enum(MemberRole, native_enum=False, length=16))
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    chat: Mapped["Chat"] = relationship(
        "Chat",
        back_populates="members"
    )
    user: Mapped["User"] = relationship(
        "User",
        back_populates="memberships"
    )

class Message(Base):
    __tablename__ = "messages"

    __table_args__ = (
        Index('ix_messages_chat_sent', 'chat_id', 'sent_at', 'seq'),
        Index('ix_messages_sender', 'sender_id'),
    )

    # Monotonic insert order, tie-break for messages sharing a sent_at value
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, default=uuid.uuid4)
    chat_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("chats.id", ondelete="CASCADE"))
    sender_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    message_type: Mapped[MessageType] = mapped_column(Enum(MessageType, native_enum=False, length=16))
    content: Mapped[str] = mapped_column(Text)
    media_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    is_edited: Mapped[bool] = mapped_column(default=False)
    is_deleted: Mapped[bool] = mapped_column(default=False)

    sender: Mapped["User"] = relationship(
        "User",
        back_populates="sent_messages"
    )

class Contact(Base):
    __tablename__ = "contacts"

    __table_args__ = (
        UniqueConstraint('owner_id', 'contact_user_id', name='uq_contacts_owner_contact'),
        Index('ix_contacts_owner', 'owner_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    contact_user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    contact_user: Mapped["User"] = relationship(
        "User",
        foreign_keys=[contact_user_id]
    )
