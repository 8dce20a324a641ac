"""In-process pub/sub event bus for threadline assembly and grouping events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ThreadlineEvent", dict[str, Any]], None | Awaitable[None]]


class ThreadlineEvent(StrEnum):
    """All event types published by threadline components.

    Typed payload definitions for each event live in
    :mod:`threadline.events.payloads`.

    **Payload schemas by event:**

    ``THREAD_TRUNCATED``
        :class:`~threadline.events.payloads.ThreadTruncatedPayload`:
        ``start_id: str``, ``stopped_at: str``, ``reason: str``
        (``"cycle"`` or ``"missing_parent"``), ``length: int``

    ``CONTEXT_ASSEMBLED``
        :class:`~threadline.events.payloads.ContextAssembledPayload`:
        ``prompt_tokens: int``, ``remaining_tokens: int``,
        ``payload_size: int``, ``summarized: bool``

    ``CONTEXT_OVERSIZED``
        :class:`~threadline.events.payloads.ContextOversizedPayload`:
        ``kind: str``, ``token_count: int``, ``max_tokens: int``

    ``SUMMARY_CREATED``, ``SUMMARY_REUSED``
        :class:`~threadline.events.payloads.SummaryPayload`:
        ``message_id: str``, ``token_count: int``

    ``SUMMARY_FAILED``
        :class:`~threadline.events.payloads.SummaryFailedPayload`:
        ``error: str``, ``refine_count: int``

    ``MESSAGE_SAVED``
        :class:`~threadline.events.payloads.MessageSavedPayload`:
        ``message_id: str``, ``conversation_id: str``

    ``SIBLINGS_GROUPED``
        :class:`~threadline.events.payloads.SiblingsGroupedPayload`:
        ``conversation_id: str``, ``grouped_count: int``, ``legacy_count: int``
    """

    # Thread reconstruction
    THREAD_TRUNCATED = "thread.truncated"

    # Context assembly
    CONTEXT_ASSEMBLED = "context.assembled"
    CONTEXT_OVERSIZED = "context.oversized"

    # Summarization
    SUMMARY_CREATED = "summary.created"
    SUMMARY_REUSED = "summary.reused"
    SUMMARY_FAILED = "summary.failed"

    # Storage and display
    MESSAGE_SAVED = "message.saved"
    SIBLINGS_GROUPED = "siblings.grouped"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    Design decisions:
    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_truncated(event, payload):
            print(f"Thread cut short: {payload['reason']}")

        bus.subscribe(ThreadlineEvent.THREAD_TRUNCATED, on_truncated)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ThreadlineEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("threadline.events")

    def subscribe(self, event: ThreadlineEvent, handler: Handler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event: The event type to listen for.
            handler: Callable accepting ``(event, payload)``. May be sync or async.
        """
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ThreadlineEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: ThreadlineEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking).
        Exceptions from any handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                        _task = loop.create_task(result)  # noqa: RUF006
                    except RuntimeError:
                        # No running event loop, drop the coroutine
                        result.close()
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
