"""Display-side grouping of a thread into user turns."""

from __future__ import annotations

from threadline.models.message import Message, ResponseGroupTurn, StandaloneTurn, Turn


def group_turns(thread: list[Message]) -> list[Turn]:
    """
    Partition *thread* into display turns.

    A user message answered by several assistant messages becomes one
    :class:`ResponseGroupTurn`. Everything else is emitted as
    :class:`StandaloneTurn`, with a single answer placed right after its
    question. Every message appears in exactly one turn.
    """
    ordered = sorted(thread, key=lambda m: m.created_at)
    claimed: set[str] = set()
    turns: list[Turn] = []

    for message in ordered:
        if message.id in claimed:
            continue
        claimed.add(message.id)

        if not message.is_user_authored:
            # Orphan or unparented assistant message.
            turns.append(StandaloneTurn(message))
            continue

        responses = [
            m
            for m in ordered
            if m.id not in claimed and not m.is_user_authored and m.parent_id == message.id
        ]
        claimed.update(r.id for r in responses)

        if len(responses) > 1:
            turns.append(ResponseGroupTurn(user_message=message, responses=responses))
        else:
            turns.append(StandaloneTurn(message))
            turns.extend(StandaloneTurn(r) for r in responses)
    return turns
