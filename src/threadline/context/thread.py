"""Thread reconstruction from the parent-pointer message graph."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.models.message import ROOT_PARENT_ID, Message

logger = structlog.get_logger("threadline.context.thread")


def _as_checkpoint(message: Message) -> Message:
    """Return a copy of *message* standing in for all of its ancestors."""
    update: dict[str, object] = {"role": "system", "text": message.summary or ""}
    if message.summary_token_count is not None:
        update["token_count"] = message.summary_token_count
    return message.model_copy(update=update)


def reconstruct(
    messages: Iterable[Message],
    start_id: str | None,
    *,
    stop_at_summary: bool = False,
    map_message: Callable[[Message], Message] | None = None,
    event_bus: EventBus | None = None,
) -> list[Message]:
    """
    Walk ``parent_id`` links from *start_id* up to the root and return the thread.

    The walk carries a visited set, so a cyclic graph ends the thread at the
    first repeated id instead of looping. A parent that is not present in
    *messages* also ends the thread; both cases are reported through a warning
    log and a ``THREAD_TRUNCATED`` event, never an exception.

    Args:
        messages: Every candidate message (typically one conversation).
        start_id: Id of the leaf to start from.
        stop_at_summary: When True, the first message carrying a ``summary``
            is rewritten as a ``system`` message whose text is the summary, and
            becomes the root of the returned thread.
        map_message: Optional transform applied to each collected message.
        event_bus: Receives a ``THREAD_TRUNCATED`` event on a cycle or gap.

    Returns:
        The thread oldest-first, ending with *start_id*. Empty when *start_id*
        is missing or unknown.
    """
    by_id = {m.id: m for m in messages}
    if not by_id or not start_id:
        return []

    thread: list[Message] = []
    visited: set[str] = set()
    cursor: str | None = start_id

    while cursor is not None:
        if cursor in visited:
            _report_truncation(start_id, cursor, "cycle", len(thread), event_bus)
            break
        message = by_id.get(cursor)
        if message is None:
            if thread:
                _report_truncation(start_id, cursor, "missing_parent", len(thread), event_bus)
            break
        visited.add(cursor)

        if stop_at_summary and message.summary:
            checkpoint = _as_checkpoint(message)
            thread.append(map_message(checkpoint) if map_message else checkpoint)
            break

        thread.append(map_message(message) if map_message else message)
        cursor = None if message.parent_id in (None, ROOT_PARENT_ID) else message.parent_id

    thread.reverse()
    return thread


def _report_truncation(
    start_id: str,
    stopped_at: str,
    reason: str,
    length: int,
    event_bus: EventBus | None,
) -> None:
    logger.warning(
        "thread_cycle_detected" if reason == "cycle" else "thread_parent_missing",
        start_id=start_id,
        stopped_at=stopped_at,
        length=length,
    )
    if event_bus is not None:
        event_bus.publish(
            ThreadlineEvent.THREAD_TRUNCATED,
            {"start_id": start_id, "stopped_at": stopped_at, "reason": reason, "length": length},
        )
