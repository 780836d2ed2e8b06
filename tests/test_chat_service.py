"""
Tests for chat creation, membership and the sidebar summaries.
"""

import pytest
from fastapi import HTTPException

from devconnect.database import AsyncSessionLocal
from devconnect.models.chat import ChatType, make_direct_key
from devconnect.schemas.message import MessageCreate
from devconnect.services.chat_service import FOLLOW_REQUIRED_DETAIL, ChatService

from .conftest import create_follow

pytestmark = pytest.mark.anyio


class TestDirectChats:
    async def test_follow_in_either_direction_allows_messaging(self, backend, alice, bob, carol, alice_follows_bob):
        assert await backend.can_message(alice.id, bob.id)
        assert await backend.can_message(bob.id, alice.id)
        assert not await backend.can_message(alice.id, carol.id)

    async def test_create_direct_chat(self, backend, alice, bob, alice_follows_bob):
        chat = await backend.create_direct_chat(alice.id, bob.id)

        assert chat.type == ChatType.DIRECT
        assert chat.creator_id == alice.id
        assert {member.id for member in chat.members} == {alice.id, bob.id}
        assert await backend.find_direct_chat(bob.id, alice.id) == chat.id

    async def test_existing_direct_chat_is_reused(self, backend, alice, bob, direct_chat):
        again = await backend.create_direct_chat(bob.id, alice.id)

        assert again.id == direct_chat.id

    async def test_direct_chat_requires_a_follow(self, backend, alice, carol):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_direct_chat(alice.id, carol.id)

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == FOLLOW_REQUIRED_DETAIL

    async def test_chat_with_yourself_is_rejected(self, backend, alice):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_direct_chat(alice.id, alice.id)

        assert exc_info.value.status_code == 400

    async def test_unknown_user_is_not_found(self, backend, alice):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_direct_chat(alice.id, "missing")

        assert exc_info.value.status_code == 404

    async def test_concurrent_creation_resolves_to_one_chat(self, hub, alice, bob, direct_chat, monkeypatch):
        """The loser of a creation race gets the winner's chat instead of a duplicate."""
        async def not_found(self, user1_id, user2_id):
            return None

        monkeypatch.setattr(ChatService, "find_direct_chat", not_found)

        async with AsyncSessionLocal() as db:
            chat = await ChatService(db, hub).create_direct_chat(bob.id, alice.id)

        assert chat.id == direct_chat.id
        async with AsyncSessionLocal() as db:
            summaries = await ChatService(db, hub).get_chat_summaries(alice.id)
        assert [summary.id for summary in summaries] == [direct_chat.id]

    async def test_direct_key_is_order_independent(self):
        assert make_direct_key("b", "a") == make_direct_key("a", "b") == "a:b"

    async def test_creation_is_published(self, backend, hub, alice, bob, alice_follows_bob):
        received = []
        hub.channel("watch").on("INSERT", "*", None, received.append).subscribe()

        chat = await backend.create_direct_chat(alice.id, bob.id)

        assert [change.table for change in received] == ["chats", "chat_members", "chat_members"]
        assert received[0].new["id"] == chat.id


class TestGroupChats:
    async def test_creator_is_added_to_the_members(self, group_chat, alice, bob, carol):
        assert group_chat.type == ChatType.GROUP
        assert group_chat.name == "Core Team"
        assert {member.id for member in group_chat.members} == {alice.id, bob.id, carol.id}

    async def test_group_needs_a_member_besides_the_creator(self, backend, alice):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_group_chat(alice.id, "Solo", [alice.id])

        assert exc_info.value.status_code == 400

    async def test_group_needs_a_name(self, backend, alice, bob):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_group_chat(alice.id, "   ", [bob.id])

        assert exc_info.value.detail == "Please enter a group name"

    async def test_unknown_members_are_rejected(self, backend, alice, bob):
        with pytest.raises(HTTPException) as exc_info:
            await backend.create_group_chat(alice.id, "Team", [bob.id, "ghost"])

        assert exc_info.value.status_code == 400

    async def test_groups_do_not_need_follows(self, backend, bob, carol):
        chat = await backend.create_group_chat(bob.id, "Strangers", [carol.id])

        assert len(chat.members) == 2


class TestMembership:
    async def test_non_member_cannot_read_the_chat(self, backend, carol, direct_chat):
        with pytest.raises(HTTPException) as exc_info:
            await backend.fetch_chat(direct_chat.id, carol.id)

        assert exc_info.value.status_code == 403

    async def test_missing_chat_is_not_found(self, backend, alice):
        with pytest.raises(HTTPException) as exc_info:
            await backend.fetch_chat("missing", alice.id)

        assert exc_info.value.status_code == 404

    async def test_only_the_creator_can_delete(self, backend, alice, bob, direct_chat):
        with pytest.raises(HTTPException) as exc_info:
            await backend.delete_chat(direct_chat.id, bob.id)
        assert exc_info.value.status_code == 403

        await backend.insert_message(alice.id, MessageCreate(chat_id=direct_chat.id, content="hello"))
        await backend.delete_chat(direct_chat.id, alice.id)

        assert await backend.fetch_chat_summaries(bob.id) == []


class TestChatSummaries:
    async def test_last_message_and_unread_count(self, backend, alice, bob, direct_chat):
        await backend.insert_message(alice.id, MessageCreate(chat_id=direct_chat.id, content="one"))
        await backend.insert_message(alice.id, MessageCreate(chat_id=direct_chat.id, content="two"))

        [summary] = await backend.fetch_chat_summaries(bob.id)

        assert summary.last_message.content == "two"
        assert summary.unread_count == 2

        [own] = await backend.fetch_chat_summaries(alice.id)
        assert own.unread_count == 0

    async def test_reading_resets_the_unread_count(self, backend, alice, bob, direct_chat):
        await backend.insert_message(alice.id, MessageCreate(chat_id=direct_chat.id, content="one"))
        await backend.mark_chat_read(direct_chat.id, bob.id)

        [summary] = await backend.fetch_chat_summaries(bob.id)

        assert summary.unread_count == 0

    async def test_recalled_last_message_is_still_reported(self, backend, alice, bob, direct_chat):
        message = await backend.insert_message(alice.id, MessageCreate(chat_id=direct_chat.id, content="oops"))
        await backend.recall_message(alice.id, message.id)

        [summary] = await backend.fetch_chat_summaries(bob.id)

        assert summary.last_message.id == message.id
        assert summary.last_message.is_deleted

    async def test_chats_are_ordered_by_latest_activity(self, backend, alice, bob, carol, direct_chat):
        await create_follow(carol, alice)
        other = await backend.create_direct_chat(alice.id, carol.id)
        await backend.insert_message(bob.id, MessageCreate(chat_id=direct_chat.id, content="bump"))

        summaries = await backend.fetch_chat_summaries(alice.id)

        assert [summary.id for summary in summaries] == [direct_chat.id, other.id]

    async def test_contacts_cover_both_follow_directions(self, backend, alice, bob, carol, alice_follows_bob):
        await create_follow(carol, alice)

        contacts = await backend.fetch_contacts(alice.id)

        by_name = {contact.username: contact for contact in contacts}
        assert set(by_name) == {"bob", "carol"}
        assert by_name["bob"].is_following and not by_name["bob"].is_follower
        assert by_name["carol"].is_follower and not by_name["carol"].is_following
