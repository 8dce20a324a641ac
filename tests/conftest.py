"""Shared fixtures for threadline tests."""

from __future__ import annotations

import itertools
from typing import Any

import pytest
import pytest_asyncio

from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.models.config import StoreConfig, ThreadlineConfig
from threadline.models.message import ROOT_PARENT_ID, Message
from threadline.store.messages import SQLiteMessageStore
from threadline.tokens.estimator import TokenEstimator

_clock = itertools.count(1_700_000_000_000, 1_000)


@pytest.fixture
def config(tmp_path):
    """ThreadlineConfig with a temp database path."""
    return ThreadlineConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def store(config):
    """Initialized SQLiteMessageStore backed by a temp SQLite database."""
    s = SQLiteMessageStore(config.store)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    e = TokenEstimator()
    e._force_heuristic = True
    return e


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ThreadlineEvent, dict[str, Any]]] = []

    def _collect(event: ThreadlineEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


def make_message(
    msg_id: str,
    parent_id: str | None = ROOT_PARENT_ID,
    *,
    conversation_id: str = "convo_TEST01",
    user_authored: bool = False,
    text: str | None = None,
    token_count: int | None = 10,
    created_at: int | None = None,
    user: str | None = "user_1",
    **fields: Any,
) -> Message:
    """Helper to create a test Message with increasing timestamps."""
    return Message(
        id=msg_id,
        conversation_id=conversation_id,
        parent_id=parent_id,
        is_user_authored=user_authored,
        text=text if text is not None else f"text of {msg_id}",
        token_count=token_count,
        created_at=created_at if created_at is not None else next(_clock),
        user=user,
        **fields,
    )


def make_chain(count: int, token_count: int | None = 10, prefix: str = "m") -> list[Message]:
    """Helper to create a linear thread alternating user and assistant messages."""
    messages: list[Message] = []
    parent = ROOT_PARENT_ID
    for i in range(count):
        msg = make_message(
            f"{prefix}{i}", parent, user_authored=i % 2 == 0, token_count=token_count
        )
        messages.append(msg)
        parent = msg.id
    return messages
