"""Tests for chat lifecycle and membership."""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from messaging_core.core.database import Chat, Member
from messaging_core.core.enums import ChatType, MemberRole
from messaging_core.core.exceptions import ValidationError, NotFoundError, ForbiddenError
from messaging_core.core.gateways import MemberGateway
from messaging_core.services.cache_policy import CacheKeys
from messaging_core.services.notifications import (
    NEW_CHAT_QUEUE,
    CHAT_REMOVED_QUEUE,
    members_topic,
    updates_topic,
)


async def count_rows(db_manager, model) -> int:
    async with db_manager.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def roles_by_name(members) -> dict[str, MemberRole]:
    return {m.username: m.role for m in members}


def hold_first_call(monkeypatch, owner, name) -> tuple[asyncio.Event, asyncio.Event]:
    """Parks the first call to owner.name until released; later calls run straight through."""
    original = getattr(owner, name)
    reached, release = asyncio.Event(), asyncio.Event()

    async def held(self, *args, **kwargs):
        if not reached.is_set():
            reached.set()
            await release.wait()
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(owner, name, held)
    return reached, release


async def current_roles(store, chat_id) -> dict[str, MemberRole]:
    async with store.transaction() as repo:
        return {m.user.username: m.role for m in await repo.members.find_members_by_chat_ids([chat_id])}


class TestCreateChat:
    """Chat creation rules and side effects."""

    @pytest.mark.asyncio
    async def test_p2p_chat_has_owner_and_one_peer(self, chat_service, trio):
        alice, bob, _ = trio

        chat = await chat_service.create_chat(alice, "P2P", [bob.user_id])

        assert chat.chat_type == ChatType.P2P
        assert roles_by_name(chat.members) == {"alice": MemberRole.ADMIN, "bob": MemberRole.MEMBER}

    @pytest.mark.asyncio
    async def test_group_owner_is_admin(self, chat_service, trio):
        alice, bob, carol = trio

        chat = await chat_service.create_chat(
            alice, ChatType.GROUP, [bob.user_id, carol.user_id], group_name="Team", group_image="team.png"
        )

        assert chat.group_name == "Team"
        assert chat.group_image == "team.png"
        assert roles_by_name(chat.members) == {
            "alice": MemberRole.ADMIN,
            "bob": MemberRole.MEMBER,
            "carol": MemberRole.MEMBER,
        }

    @pytest.mark.asyncio
    async def test_owner_listed_in_member_ids_is_not_duplicated(self, chat_service, trio, db_manager):
        alice, bob, _ = trio

        chat = await chat_service.create_chat(alice, "p2p", [alice.user_id, bob.user_id, bob.user_id])

        assert len(chat.members) == 2
        assert await count_rows(db_manager, Member) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chat_type, extra, group_name, message", [
        ("P2P", 2, None, "P2P chat must have exactly 2 users"),
        ("P2P", 0, None, "P2P chat must have exactly 2 users"),
        ("GROUP", 1, "Team", "Group chat must have at least 3 users"),
        ("GROUP", 2, "   ", "Group name is required"),
        ("GROUP", 2, None, "Group name is required"),
    ])
    async def test_invalid_composition_persists_nothing(
            self, chat_service, trio, db_manager, transport, chat_type, extra, group_name, message
    ):
        alice, bob, carol = trio
        member_ids = [bob.user_id, carol.user_id][:extra]

        with pytest.raises(ValidationError) as exc_info:
            await chat_service.create_chat(alice, chat_type, member_ids, group_name=group_name)

        assert exc_info.value.detail == message
        assert await count_rows(db_manager, Chat) == 0
        assert await count_rows(db_manager, Member) == 0
        assert transport.user_sends == []

    @pytest.mark.asyncio
    async def test_unknown_member_id_is_rejected(self, chat_service, trio, db_manager):
        alice, bob, _ = trio

        with pytest.raises(ValidationError, match="Some users were not found"):
            await chat_service.create_chat(alice, "P2P", [bob.user_id, uuid.uuid4()])

        assert await count_rows(db_manager, Chat) == 0

    @pytest.mark.asyncio
    async def test_invalid_chat_type_is_rejected(self, chat_service, trio):
        alice, bob, _ = trio

        with pytest.raises(ValidationError, match="Invalid chat type"):
            await chat_service.create_chat(alice, "CHANNEL", [bob.user_id])

    @pytest.mark.asyncio
    async def test_every_member_is_notified_of_new_chat(self, chat_service, trio, transport):
        alice, bob, carol = trio

        chat = await chat_service.create_chat(alice, "GROUP", [bob.user_id, carol.user_id], group_name="Team")

        for user in trio:
            assert transport.user_payloads(user.username, NEW_CHAT_QUEUE) == [chat]

    @pytest.mark.asyncio
    async def test_chat_lists_of_members_are_evicted(self, chat_service, trio, cache):
        alice, bob, carol = trio
        await chat_service.get_user_chats(alice)
        await chat_service.get_user_chats(bob)
        assert CacheKeys.user_chats(alice.user_id) in cache

        await chat_service.create_chat(alice, "P2P", [bob.user_id])

        assert CacheKeys.user_chats(alice.user_id) not in cache
        assert CacheKeys.user_chats(bob.user_id) not in cache


class TestGetUserChats:
    """Chat list projection and its cache."""

    @pytest.mark.asyncio
    async def test_projection_matches_persisted_members(self, chat_service, trio, store):
        alice, bob, carol = trio
        created = await chat_service.create_chat(alice, "GROUP", [bob.user_id, carol.user_id], group_name="Team")

        chats = await chat_service.get_user_chats(alice)

        async with store.transaction() as repo:
            rows = await repo.members.find_members_by_chat_ids([created.chat_id])
        assert [c.chat_id for c in chats] == [created.chat_id]
        assert {(m.user_id, m.role) for m in chats[0].members} == {(r.user_id, r.role) for r in rows}

    @pytest.mark.asyncio
    async def test_lists_only_chats_of_the_user(self, chat_service, trio):
        alice, bob, carol = trio
        p2p = await chat_service.create_chat(alice, "P2P", [bob.user_id])
        await chat_service.create_chat(bob, "P2P", [carol.user_id])

        chats = await chat_service.get_user_chats(alice)

        assert [c.chat_id for c in chats] == [p2p.chat_id]

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, chat_service, trio, cache, store):
        alice, bob, _ = trio
        await chat_service.create_chat(alice, "P2P", [bob.user_id])
        first = await chat_service.get_user_chats(alice)
        assert CacheKeys.user_chats(alice.user_id) in cache

        # served from cache even though the store is unreachable now
        chat_service.store = None
        second = await chat_service.get_user_chats(alice)

        assert second == first

    @pytest.mark.asyncio
    async def test_user_without_chats_gets_empty_list(self, chat_service, trio):
        alice, _, _ = trio

        assert await chat_service.get_user_chats(alice) == []


class TestGetChatMembers:

    @pytest.mark.asyncio
    async def test_member_can_list_members(self, chat_service, trio, team):
        _, bob, _ = trio

        members = await chat_service.get_chat_members(team.chat_id, bob)

        assert {m.username for m in members} == {"alice", "bob", "carol"}

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(self, chat_service, team, make_user):
        dave = await make_user("dave")

        with pytest.raises(ForbiddenError):
            await chat_service.get_chat_members(team.chat_id, dave)

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden_even_when_cached(self, chat_service, trio, team, make_user, cache):
        alice, _, _ = trio
        dave = await make_user("dave")
        await chat_service.get_chat_members(team.chat_id, alice)
        assert CacheKeys.chat_members(team.chat_id) in cache

        with pytest.raises(ForbiddenError):
            await chat_service.get_chat_members(team.chat_id, dave)

    @pytest.mark.asyncio
    async def test_read_overlapping_a_commit_is_not_cached(
            self, chat_service, trio, team, make_user, cache, monkeypatch
    ):
        alice, bob, _ = trio
        dave = await make_user("dave")
        reached, release = hold_first_call(monkeypatch, MemberGateway, "find_members_by_chat_ids")

        read = asyncio.create_task(chat_service.get_chat_members(team.chat_id, bob))
        await reached.wait()
        await chat_service.add_member(alice, team.chat_id, [dave.user_id])
        release.set()
        await read

        assert CacheKeys.chat_members(team.chat_id) not in cache
        members = await chat_service.get_chat_members(team.chat_id, bob)
        assert {m.username for m in members} == {"alice", "bob", "carol", "dave"}

    @pytest.mark.asyncio
    async def test_unknown_chat_is_forbidden(self, chat_service, trio):
        alice, _, _ = trio

        with pytest.raises(ForbiddenError):
            await chat_service.get_chat_members(uuid.uuid4(), alice)


class TestAddMember:

    @pytest.mark.asyncio
    async def test_team_scenario(self, chat_service, trio, team, make_user, transport):
        """Only the ADMIN may add, and the event lists only the newcomer."""
        alice, bob, _ = trio
        dave = await make_user("dave")

        with pytest.raises(ForbiddenError):
            await chat_service.add_member(bob, team.chat_id, [dave.user_id])
        assert transport.topic_sends == []

        chat = await chat_service.add_member(alice, team.chat_id, [dave.user_id])

        assert len(chat.members) == 4
        updates = transport.topic_payloads(members_topic(team.chat_id))
        assert len(updates) == 1
        assert updates[0].update_type == "MEMBER_ADDED"
        assert [m.username for m in updates[0].updated_members] == ["dave"]
        assert updates[0].updated_members[0].role == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_overlapping_add_yields_union(self, chat_service, trio, team, make_user, store):
        alice, bob, _ = trio
        dave = await make_user("dave")
        erin = await make_user("erin")
        await chat_service.add_member(alice, team.chat_id, [dave.user_id])

        await chat_service.add_member(alice, team.chat_id, [bob.user_id, dave.user_id, erin.user_id, erin.user_id])

        async with store.transaction() as repo:
            rows = await repo.members.find_members_by_chat_ids([team.chat_id])
        assert sorted(r.user.username for r in rows) == ["alice", "bob", "carol", "dave", "erin"]
        # existing members keep their role
        assert {r.user.username: r.role for r in rows}["alice"] == MemberRole.ADMIN

    @pytest.mark.asyncio
    async def test_adding_existing_members_only_emits_empty_update(self, chat_service, trio, team, transport):
        alice, bob, _ = trio

        chat = await chat_service.add_member(alice, team.chat_id, [bob.user_id])

        assert len(chat.members) == 3
        updates = transport.topic_payloads(members_topic(team.chat_id))
        assert updates[0].updated_members == []

    @pytest.mark.asyncio
    async def test_unknown_user_id_is_rejected(self, chat_service, trio, team, store):
        alice, _, _ = trio

        with pytest.raises(ValidationError, match="One or more user IDs to add are invalid."):
            await chat_service.add_member(alice, team.chat_id, [uuid.uuid4()])

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(self, chat_service, team, make_user):
        dave = await make_user("dave")

        with pytest.raises(ForbiddenError, match="not a member"):
            await chat_service.add_member(dave, team.chat_id, [dave.user_id])

    @pytest.mark.asyncio
    async def test_evicts_member_list_and_chat_lists(self, chat_service, trio, team, make_user, cache):
        alice, bob, _ = trio
        dave = await make_user("dave")
        await chat_service.get_chat_members(team.chat_id, alice)
        await chat_service.get_user_chats(bob)

        await chat_service.add_member(alice, team.chat_id, [dave.user_id])

        assert CacheKeys.chat_members(team.chat_id) not in cache
        assert CacheKeys.user_chats(bob.user_id) not in cache
        assert len(await chat_service.get_chat_members(team.chat_id, alice)) == 4


class TestUpdateGroupProperties:

    @pytest.mark.asyncio
    async def test_admin_renames_group(self, chat_service, trio, team, transport):
        alice, _, _ = trio

        chat = await chat_service.update_group_properties(alice, team.chat_id, new_group_name="Crew")

        assert chat.group_name == "Crew"
        assert transport.topic_payloads(updates_topic(team.chat_id)) == [chat]

    @pytest.mark.asyncio
    async def test_blank_fields_are_ignored(self, chat_service, trio, team):
        alice, _, _ = trio

        chat = await chat_service.update_group_properties(
            alice, team.chat_id, new_group_name="  ", new_group_image="crew.png"
        )

        assert chat.group_name == "Team"
        assert chat.group_image == "crew.png"

    @pytest.mark.asyncio
    async def test_member_cannot_update(self, chat_service, trio, team):
        _, bob, _ = trio

        with pytest.raises(ForbiddenError, match="administrative privileges"):
            await chat_service.update_group_properties(bob, team.chat_id, new_group_name="Mine")

    @pytest.mark.asyncio
    async def test_members_chat_lists_are_evicted(self, chat_service, trio, team, cache):
        alice, _, carol = trio
        await chat_service.get_user_chats(carol)

        await chat_service.update_group_properties(alice, team.chat_id, new_group_name="Crew")

        assert CacheKeys.user_chats(carol.user_id) not in cache
        chats = await chat_service.get_user_chats(carol)
        assert chats[0].group_name == "Crew"


class TestUpdateMemberRole:

    @pytest.mark.asyncio
    async def test_admin_promotes_member(self, chat_service, trio, team, transport):
        alice, bob, _ = trio

        updated = await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "admin")

        assert updated.role == MemberRole.ADMIN
        updates = transport.topic_payloads(members_topic(team.chat_id))
        assert updates[0].update_type == "ROLE_UPDATED"
        assert updates[0].updated_members == [updated]

    @pytest.mark.asyncio
    async def test_cannot_change_another_admin(self, chat_service, trio, team):
        alice, bob, _ = trio
        await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "ADMIN")

        with pytest.raises(ForbiddenError):
            await chat_service.update_member_role(bob, team.chat_id, alice.user_id, "MEMBER")

    @pytest.mark.asyncio
    async def test_admin_may_step_down_when_another_admin_remains(self, chat_service, trio, team):
        alice, bob, _ = trio
        await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "ADMIN")

        updated = await chat_service.update_member_role(alice, team.chat_id, alice.user_id, "MEMBER")

        assert updated.role == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_last_admin_cannot_step_down(self, chat_service, trio, team, store):
        alice, _, _ = trio

        with pytest.raises(ValidationError, match="at least one ADMIN"):
            await chat_service.update_member_role(alice, team.chat_id, alice.user_id, "MEMBER")

        async with store.transaction() as repo:
            assert await repo.members.count_admins(team.chat_id) == 1

    @pytest.mark.asyncio
    async def test_no_role_sequence_leaves_chat_without_admin(self, chat_service, trio, team, store):
        alice, bob, carol = trio
        steps = [
            (alice, bob, "ADMIN"),
            (bob, bob, "MEMBER"),
            (alice, alice, "MEMBER"),
            (alice, carol, "ADMIN"),
            (carol, alice, "MEMBER"),
            (alice, alice, "MEMBER"),
            (carol, carol, "MEMBER"),
            (bob, carol, "MEMBER"),
        ]

        for actor, target, role in steps:
            try:
                await chat_service.update_member_role(actor, team.chat_id, target.user_id, role)
            except (ValidationError, ForbiddenError):
                pass
            async with store.transaction() as repo:
                assert await repo.members.count_admins(team.chat_id) >= 1

    @pytest.mark.asyncio
    async def test_concurrent_step_downs_keep_one_admin(self, chat_service, trio, team, store, monkeypatch):
        alice, bob, _ = trio
        await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "ADMIN")
        reached, release = hold_first_call(monkeypatch, MemberGateway, "update_role")

        alice_steps_down = asyncio.create_task(
            chat_service.update_member_role(alice, team.chat_id, alice.user_id, "MEMBER")
        )
        await reached.wait()
        await chat_service.update_member_role(bob, team.chat_id, bob.user_id, "MEMBER")
        release.set()

        with pytest.raises(ValidationError, match="at least one ADMIN"):
            await alice_steps_down
        assert await current_roles(store, team.chat_id) == {
            "alice": MemberRole.ADMIN,
            "bob": MemberRole.MEMBER,
            "carol": MemberRole.MEMBER,
        }

    @pytest.mark.asyncio
    async def test_invalid_role_is_rejected(self, chat_service, trio, team):
        alice, bob, _ = trio

        with pytest.raises(ValidationError, match="Role must be ADMIN or MEMBER"):
            await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "OWNER")

    @pytest.mark.asyncio
    async def test_target_must_be_member(self, chat_service, trio, team, make_user):
        alice, _, _ = trio
        dave = await make_user("dave")

        with pytest.raises(ForbiddenError, match="Target user is not a member"):
            await chat_service.update_member_role(alice, team.chat_id, dave.user_id, "ADMIN")

    @pytest.mark.asyncio
    async def test_member_cannot_change_roles(self, chat_service, trio, team):
        _, bob, carol = trio

        with pytest.raises(ForbiddenError):
            await chat_service.update_member_role(bob, team.chat_id, carol.user_id, "ADMIN")


class TestDeleteMember:

    @pytest.mark.asyncio
    async def test_admin_removes_members_in_one_batch(self, chat_service, trio, team, transport, store):
        alice, bob, carol = trio

        removed = await chat_service.delete_member(alice, team.chat_id, [bob.user_id, carol.user_id])

        assert {m.username for m in removed} == {"bob", "carol"}
        async with store.transaction() as repo:
            rows = await repo.members.find_members_by_chat_ids([team.chat_id])
        assert [r.user_id for r in rows] == [alice.user_id]

        assert transport.user_payloads("bob", CHAT_REMOVED_QUEUE) == [{"chat_id": str(team.chat_id)}]
        assert transport.user_payloads("carol", CHAT_REMOVED_QUEUE) == [{"chat_id": str(team.chat_id)}]
        updates = transport.topic_payloads(members_topic(team.chat_id))
        assert len(updates) == 1
        assert updates[0].update_type == "MEMBER_REMOVED"
        assert {m.username for m in updates[0].updated_members} == {"bob", "carol"}

    @pytest.mark.asyncio
    async def test_member_may_leave(self, chat_service, trio, team):
        _, bob, _ = trio

        removed = await chat_service.delete_member(bob, team.chat_id, [bob.user_id])

        assert [m.username for m in removed] == ["bob"]

    @pytest.mark.asyncio
    async def test_member_cannot_remove_others(self, chat_service, trio, team, store, transport):
        _, bob, carol = trio

        with pytest.raises(ForbiddenError):
            await chat_service.delete_member(bob, team.chat_id, [bob.user_id, carol.user_id])

        # validation precedes any delete
        async with store.transaction() as repo:
            assert len(await repo.members.find_members_by_chat_ids([team.chat_id])) == 3
        assert transport.user_sends == []

    @pytest.mark.asyncio
    async def test_admin_cannot_remove_themself(self, chat_service, trio, team):
        alice, bob, _ = trio

        with pytest.raises(ForbiddenError, match="cannot remove themselves"):
            await chat_service.delete_member(alice, team.chat_id, [alice.user_id, bob.user_id])

    @pytest.mark.asyncio
    async def test_no_matching_members(self, chat_service, trio, team, make_user):
        alice, _, _ = trio
        dave = await make_user("dave")

        with pytest.raises(NotFoundError):
            await chat_service.delete_member(alice, team.chat_id, [dave.user_id])

    @pytest.mark.asyncio
    async def test_removed_user_loses_chat_from_list(self, chat_service, trio, team, cache):
        alice, bob, _ = trio
        assert len(await chat_service.get_user_chats(bob)) == 1

        await chat_service.delete_member(alice, team.chat_id, [bob.user_id])

        assert CacheKeys.user_chats(bob.user_id) not in cache
        assert await chat_service.get_user_chats(bob) == []

    @pytest.mark.asyncio
    async def test_admins_removing_each_other_keep_one_admin(
            self, chat_service, trio, team, store, transport, monkeypatch
    ):
        alice, bob, _ = trio
        await chat_service.update_member_role(alice, team.chat_id, bob.user_id, "ADMIN")
        transport.clear()
        reached, release = hold_first_call(monkeypatch, MemberGateway, "delete_members")

        bob_removes_alice = asyncio.create_task(chat_service.delete_member(bob, team.chat_id, [alice.user_id]))
        await reached.wait()
        await chat_service.delete_member(alice, team.chat_id, [bob.user_id])
        release.set()

        with pytest.raises(ValidationError, match="at least one ADMIN"):
            await bob_removes_alice
        assert await current_roles(store, team.chat_id) == {"alice": MemberRole.ADMIN, "carol": MemberRole.MEMBER}
        assert transport.user_payloads("alice", CHAT_REMOVED_QUEUE) == []
