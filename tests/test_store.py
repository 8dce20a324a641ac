"""Tests for SQLiteMessageStore."""

from __future__ import annotations

import pytest

from threadline.models.config import StoreConfig
from threadline.models.message import ResponseVariant, TextPart, ThinkPart
from threadline.store.messages import (
    MessageNotFoundError,
    SQLiteMessageStore,
    ThreadlineStoreError,
)
from tests.conftest import make_chain, make_message


class TestSQLiteMessageStore:
    async def test_save_and_get(self, store):
        msg = make_message(
            "m1",
            content=[TextPart(text="hi"), ThinkPart(think="hmm")],
            responses=[ResponseVariant(text="a", model="x")],
            feedback={"rating": "thumbsUp"},
        )
        await store.save_message(msg)
        loaded = await store.get_message("user_1", "m1")
        assert loaded is not None
        assert loaded.content == msg.content
        assert loaded.responses == msg.responses
        assert loaded.feedback == {"rating": "thumbsUp"}
        assert loaded.is_user_authored is False
        assert loaded.created_at == msg.created_at

    async def test_get_missing_returns_none(self, store):
        assert await store.get_message("user_1", "nope") is None

    async def test_save_is_upsert(self, store):
        """Saving the same id twice updates in place."""
        msg = make_message("m1", text="first")
        await store.save_message(msg)
        await store.save_message(msg.model_copy(update={"text": "second"}))
        messages = await store.get_messages("convo_TEST01")
        assert [m.text for m in messages] == ["second"]
        assert messages[0].updated_at is not None

    async def test_messages_keyed_by_owner(self, store):
        """The same message id may exist for two owners."""
        await store.save_message(make_message("m1", user="alice"))
        await store.save_message(make_message("m1", user="bob", text="bob's"))
        assert (await store.get_message("bob", "m1")).text == "bob's"
        assert len(await store.get_messages("convo_TEST01")) == 2
        assert len(await store.get_messages("convo_TEST01", user="alice")) == 1

    async def test_get_messages_ordered_by_creation(self, store):
        chain = make_chain(4)
        await store.bulk_save(reversed(chain))
        messages = await store.get_messages("convo_TEST01")
        assert [m.id for m in messages] == ["m0", "m1", "m2", "m3"]

    async def test_invalid_token_count_reset(self, store):
        """A NaN token count is stored as 0 rather than rejected."""
        await store.save_message(make_message("m1"))
        updated = await store.upsert("user_1", "m1", {"token_count": float("nan")})
        assert updated.token_count == 0

    async def test_update_message(self, store):
        await store.save_message(make_message("m1"))
        updated = await store.update_message("user_1", "m1", {"summary": "s", "token_count": 9})
        assert updated.summary == "s"
        assert updated.token_count == 9
        assert updated.text == "text of m1"

    async def test_update_missing_raises(self, store):
        with pytest.raises(MessageNotFoundError):
            await store.update_message("user_1", "nope", {"text": "x"})

    async def test_query_filters(self, store):
        chain = make_chain(3)
        await store.bulk_save(chain)
        by_id = await store.query({"message_id": "m1"})
        assert [m.id for m in by_id] == ["m1"]
        after = await store.query({"created_after": chain[0].created_at})
        assert [m.id for m in after] == ["m1", "m2"]
        assert len(await store.query({}, limit=2)) == 2

    async def test_unknown_filter_key(self, store):
        with pytest.raises(ValueError):
            await store.query({"sender": "x"})  # type: ignore[typeddict-unknown-key]

    async def test_delete_many_requires_filter(self, store):
        with pytest.raises(ValueError):
            await store.delete_many({})

    async def test_delete_messages_since(self, store):
        chain = make_chain(5)
        await store.bulk_save(chain)
        deleted = await store.delete_messages_since("user_1", "convo_TEST01", "m2")
        assert deleted == 2
        remaining = await store.get_messages("convo_TEST01")
        assert [m.id for m in remaining] == ["m0", "m1", "m2"]

    async def test_delete_messages_since_unknown(self, store):
        assert await store.delete_messages_since("user_1", "convo_TEST01", "nope") == 0

    async def test_delete_conversation(self, store):
        await store.bulk_save(make_chain(3))
        await store.save_message(make_message("other", conversation_id="c2"))
        assert await store.delete_conversation("user_1", "convo_TEST01") == 3
        assert len(await store.get_messages("c2")) == 1

    async def test_find_by_shared_keys(self, store):
        await store.bulk_save(
            [
                make_message("a", conversation_id="c1", shared_user_message_id="k1"),
                make_message("b", conversation_id="c2", shared_user_message_id="k1"),
                make_message("c", conversation_id="c3", shared_user_message_id="k2"),
                make_message("d", conversation_id="c4", shared_user_message_id="k1"),
            ]
        )
        found = await store.find_by_shared_keys(
            "user_1", ["k1"], exclude_conversation_id="c1", limit=1
        )
        assert [m.id for m in found] == ["b"]
        assert await store.find_by_shared_keys("user_1", []) == []

    async def test_siblings_not_persisted(self, store):
        msg = make_message("m1", siblings=[make_message("s1")])
        await store.save_message(msg)
        assert (await store.get_message("user_1", "m1")).siblings == []

    async def test_uninitialized_raises(self, tmp_path):
        s = SQLiteMessageStore(StoreConfig(db_path=str(tmp_path / "x.db")))
        with pytest.raises(ThreadlineStoreError):
            await s.get_message("user_1", "m1")

    async def test_close_twice_is_safe(self, store):
        await store.close()
        await store.close()
