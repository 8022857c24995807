"""Tests for the block store: ordering, exclusion, ownership and change events."""

import asyncio

import pytest

from conftest import OTHER_USER_ID, USER_ID
from Folio.services.block_events import BLOCK_CREATED, BLOCK_DELETED, BLOCK_UPDATED
from Folio.services.errors import AuthorizationError, NotFoundError
from Folio.services.markdown.parser import markdown_to_document


def _doc(text):
    return markdown_to_document(text).to_json()


class TestConversations:
    def test_new_conversation_defaults(self, store):
        conv = store.create_conversation(USER_ID, "gpt-4o")
        assert conv.title == "New Conversation"
        assert conv.status == "idle"
        assert conv.model == "gpt-4o"
        assert conv.user_id == USER_ID

    def test_listing_is_scoped_to_owner(self, store):
        mine = store.create_conversation(USER_ID, "gpt-4o")
        store.create_conversation(OTHER_USER_ID, "gpt-4o")
        assert [c.id for c in store.list_conversations(USER_ID)] == [mine.id]

    def test_set_title_requires_owner(self, store, conversation):
        assert store.set_title(USER_ID, conversation.id, "Renamed").title == "Renamed"
        with pytest.raises(AuthorizationError):
            store.set_title(OTHER_USER_ID, conversation.id, "Hijacked")

    def test_delete_cascades_to_blocks(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        store.delete_conversation(USER_ID, conversation.id)
        with pytest.raises(NotFoundError):
            store.get_conversation(USER_ID, conversation.id)
        with pytest.raises(NotFoundError):
            store.get_block(USER_ID, block.id)

    def test_status_transitions(self, store, conversation):
        store.set_conversation_status(conversation.id, "streaming")
        assert store.get_conversation(USER_ID, conversation.id).status == "streaming"
        store.set_conversation_error(conversation.id)
        assert store.get_conversation(USER_ID, conversation.id).status == "error"
        with pytest.raises(ValueError):
            store.set_conversation_status(conversation.id, "paused")


class TestOrdering:
    def test_end_to_end_insert_between(self, store, conversation):
        """1, then after 1 -> 2, then after 1 again lands between them."""
        first = store.create_user_block(USER_ID, conversation.id)
        assert first.order == 1

        second = store.create_user_block(USER_ID, conversation.id, after_order=1)
        assert second.order == 2

        middle = store.create_user_block(USER_ID, conversation.id, after_order=1)
        assert 1 < middle.order < 2
        assert middle.order == 1.5

        ordered = store.list_ordered(USER_ID, conversation.id)
        assert [b.id for b in ordered] == [first.id, middle.id, second.id]

    def test_append_goes_after_last(self, store, conversation):
        store.create_user_block(USER_ID, conversation.id)
        store.create_user_block(USER_ID, conversation.id)
        third = store.create_user_block(USER_ID, conversation.id)
        assert third.order == 3

    def test_after_last_block_adds_one(self, store, conversation):
        store.create_user_block(USER_ID, conversation.id)
        block = store.create_user_block(USER_ID, conversation.id, after_order=1)
        assert block.order == 2

    def test_assistant_placeholder(self, store, conversation):
        store.create_user_block(USER_ID, conversation.id)
        placeholder = store.create_assistant_placeholder(USER_ID, conversation.id, "gpt-4o-mini")
        assert placeholder.author == "assistant"
        assert placeholder.order == 2
        assert placeholder.is_streaming is False
        assert placeholder.stream_id
        assert placeholder.content is None
        assert placeholder.block_metadata == {"model": "gpt-4o-mini"}

        other = store.create_assistant_placeholder(USER_ID, conversation.id, "gpt-4o-mini")
        assert other.stream_id != placeholder.stream_id


class TestContent:
    def test_user_block_defaults_to_empty_paragraph(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        assert block.author == "user"
        assert block.content == {"type": "doc", "content": [{"type": "paragraph"}]}

    def test_update_replaces_whole_document(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id, content=_doc("first\n\nsecond"))
        updated = store.update_content(USER_ID, block.id, _doc("only"))
        assert updated.content == _doc("only")
        assert updated.updated_at >= block.updated_at

    def test_update_rejects_invalid_document(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        with pytest.raises(ValueError):
            store.update_content(USER_ID, block.id, {"type": "doc", "content": [{"type": "table"}]})

    def test_delete_block(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        assert store.delete_block(USER_ID, block.id) == block.id
        assert store.list_ordered(USER_ID, conversation.id) == []


class TestExclusion:
    def test_included_listing_never_returns_excluded_blocks(self, store, conversation):
        blocks = [store.create_user_block(USER_ID, conversation.id, content=_doc(f"b{i}")) for i in range(5)]
        store.toggle_exclusion(USER_ID, blocks[1].id, True)
        store.toggle_exclusion(USER_ID, blocks[3].id)

        included = store.list_included_ordered(USER_ID, conversation.id)
        assert [b.id for b in included] == [blocks[0].id, blocks[2].id, blocks[4].id]
        assert all(not b.is_excluded for b in included)
        assert len(store.list_ordered(USER_ID, conversation.id)) == 5

    def test_toggle_without_value_flips(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        assert store.toggle_exclusion(USER_ID, block.id).is_excluded is True
        assert store.toggle_exclusion(USER_ID, block.id).is_excluded is False
        assert store.toggle_exclusion(USER_ID, block.id, False).is_excluded is False


class TestAccessControl:
    def test_other_user_is_rejected_everywhere(self, store, conversation):
        block = store.create_user_block(USER_ID, conversation.id)
        calls = [
            lambda: store.list_ordered(OTHER_USER_ID, conversation.id),
            lambda: store.list_included_ordered(OTHER_USER_ID, conversation.id),
            lambda: store.create_user_block(OTHER_USER_ID, conversation.id),
            lambda: store.create_assistant_placeholder(OTHER_USER_ID, conversation.id, "gpt-4o"),
            lambda: store.update_content(OTHER_USER_ID, block.id, _doc("x")),
            lambda: store.toggle_exclusion(OTHER_USER_ID, block.id),
            lambda: store.delete_block(OTHER_USER_ID, block.id),
            lambda: store.delete_conversation(OTHER_USER_ID, conversation.id),
        ]
        for call in calls:
            with pytest.raises(AuthorizationError):
                call()
        assert store.get_block(USER_ID, block.id).content == {"type": "doc", "content": [{"type": "paragraph"}]}

    def test_missing_ids_are_not_found(self, store, conversation):
        with pytest.raises(NotFoundError):
            store.list_ordered(USER_ID, "missing")
        with pytest.raises(NotFoundError):
            store.update_content(USER_ID, "missing", _doc("x"))
        with pytest.raises(NotFoundError):
            store.delete_block(USER_ID, "missing")

    def test_custom_authorizer_is_used(self, session_factory):
        from Folio.services.block_store import BlockStore

        seen = []

        def deny(session, actor_id, conversation_id):
            seen.append((actor_id, conversation_id))
            raise AuthorizationError("nope")

        store = BlockStore(session_factory, authorize=deny)
        conv = store.create_conversation(USER_ID, "gpt-4o")
        with pytest.raises(AuthorizationError):
            store.list_ordered(USER_ID, conv.id)
        assert seen == [(USER_ID, conv.id)]


class TestChangeEvents:
    @pytest.mark.asyncio
    async def test_mutations_publish_changes(self, store, events, conversation):
        queue = events.subscribe(conversation.id)
        block = store.create_user_block(USER_ID, conversation.id)
        store.update_content(USER_ID, block.id, _doc("x"))
        store.delete_block(USER_ID, block.id)

        received = [await asyncio.wait_for(queue.get(), timeout=1) for _ in range(3)]
        assert [(c.block_id, c.kind) for c in received] == [
            (block.id, BLOCK_CREATED),
            (block.id, BLOCK_UPDATED),
            (block.id, BLOCK_DELETED),
        ]
        events.unsubscribe(conversation.id, queue)
        assert events.subscriber_count(conversation.id) == 0
