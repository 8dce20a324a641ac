"""Typed payload definitions for each ThreadlineEvent.

Usage example::

    from threadline.events.bus import EventBus, ThreadlineEvent
    from threadline.events.payloads import ThreadTruncatedPayload

    def on_truncated(event: ThreadlineEvent, payload: ThreadTruncatedPayload) -> None:
        print(f"{payload['start_id']}: stopped at {payload['stopped_at']} ({payload['reason']})")

    bus.subscribe(ThreadlineEvent.THREAD_TRUNCATED, on_truncated)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Literal, TypedDict

# ── Thread reconstruction ─────────────────────────────────────────────────────


class ThreadTruncatedPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.THREAD_TRUNCATED`."""

    start_id: str
    """The leaf the walk started from."""
    stopped_at: str
    """The id that could not be followed (revisited or missing)."""
    reason: Literal["cycle", "missing_parent"]
    length: int
    """Number of messages in the truncated thread."""


# ── Context assembly ──────────────────────────────────────────────────────────


class ContextAssembledPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.CONTEXT_ASSEMBLED`."""

    prompt_tokens: int
    remaining_tokens: int
    payload_size: int
    summarized: bool


class ContextOversizedPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.CONTEXT_OVERSIZED`."""

    kind: str
    """One of the :class:`~threadline.context.assembler.OversizeKind` values."""
    token_count: int
    max_tokens: int


# ── Summarization ─────────────────────────────────────────────────────────────


class SummaryPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.SUMMARY_CREATED` and ``SUMMARY_REUSED``."""

    message_id: str
    """The message the summary is (or was) stored on."""
    token_count: int


class SummaryFailedPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.SUMMARY_FAILED`."""

    error: str
    refine_count: int
    """Number of messages that were left unsummarized."""


# ── Storage and display ───────────────────────────────────────────────────────


class MessageSavedPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.MESSAGE_SAVED`."""

    message_id: str
    conversation_id: str


class SiblingsGroupedPayload(TypedDict):
    """Payload for :attr:`ThreadlineEvent.SIBLINGS_GROUPED`."""

    conversation_id: str
    grouped_count: int
    """Messages that received modern ``responses[]`` siblings."""
    legacy_count: int
    """Messages that received legacy cross-conversation siblings."""
