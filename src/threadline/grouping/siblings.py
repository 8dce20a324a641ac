"""Multi-model sibling grouping for display."""

from __future__ import annotations

from collections import defaultdict

import structlog

from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.models.config import SiblingConfig
from threadline.models.message import Message, ResponseVariant
from threadline.store.messages import MessageStore

logger = structlog.get_logger("threadline.grouping.siblings")


def sibling_id(message_id: str, index: int) -> str:
    """Derived id of the *index*-th extra response of *message_id* (0-based)."""
    return f"{message_id}_sibling_{index}"


def _sibling_from_variant(primary: Message, variant: ResponseVariant, index: int) -> Message:
    return Message(
        id=sibling_id(primary.id, index),
        conversation_id=primary.conversation_id,
        parent_id=primary.parent_id,
        text=variant.text,
        content=variant.content,
        model=variant.model,
        endpoint=variant.endpoint,
        is_user_authored=False,
        created_at=primary.created_at,
        updated_at=primary.updated_at,
        user=primary.user,
    )


def _sibling_from_legacy(record: Message) -> Message:
    """Normalize a legacy cross-conversation record into the modern sibling shape."""
    return Message(
        id=record.id,
        conversation_id=record.conversation_id,
        parent_id=record.parent_id,
        text=record.text,
        content=record.content,
        model=record.model,
        endpoint=record.endpoint,
        is_user_authored=False,
        created_at=record.created_at,
        updated_at=record.updated_at,
        user=record.user,
        token_count=record.token_count,
        finish_reason=record.finish_reason,
        error=record.error,
    )


def expand_responses(message: Message) -> Message:
    """
    Fold a message's ``responses[]`` entries into display siblings.

    With more than one entry, entry 0 becomes the message's own text, model
    and endpoint, and entries 1..n become derived siblings. Any other message
    is returned as is. The input is never modified.
    """
    if not message.has_multiple_responses:
        return message
    primary, *extra = message.responses or []
    return message.model_copy(
        update={
            "text": primary.text,
            "model": primary.model,
            "endpoint": primary.endpoint,
            "siblings": [
                _sibling_from_variant(message, variant, index)
                for index, variant in enumerate(extra)
            ],
        }
    )


class SiblingGrouper:
    """
    Attaches alternate model responses to the messages they belong to.

    Two storage formats are read:

    - Modern: a message carries every model's output in ``responses[]``.
    - Legacy: each model's answer was stored as its own message, in its own
      conversation, and the answers share a ``shared_user_message_id``.

    Both end up as the same ``Message.siblings`` list, so callers never need
    to know which format a conversation was written in.

    Example::

        grouper = SiblingGrouper(store, SiblingConfig())
        messages = await grouper.group(history, user="u1", conversation_id="c1")
    """

    def __init__(
        self,
        store: MessageStore,
        config: SiblingConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._config = config or SiblingConfig()
        self._event_bus = event_bus

    async def group(
        self,
        messages: list[Message],
        *,
        user: str | None,
        conversation_id: str | None,
    ) -> list[Message]:
        """
        Return *messages* with ``siblings`` filled in, in the same order.

        Args:
            messages: Messages of one conversation.
            user: Owner of the conversation. Legacy lookups are scoped to it.
            conversation_id: The conversation being displayed. Legacy siblings
                are only taken from other conversations.
        """
        grouped = [expand_responses(m) for m in messages]
        modern_count = sum(1 for m in grouped if m.siblings)

        legacy_count = 0
        if self._config.resolve_legacy:
            grouped, legacy_count = await self._attach_legacy(grouped, user, conversation_id)

        if modern_count or legacy_count:
            logger.debug(
                "siblings_grouped",
                conversation_id=conversation_id,
                grouped_count=modern_count,
                legacy_count=legacy_count,
            )
            if self._event_bus is not None:
                self._event_bus.publish(
                    ThreadlineEvent.SIBLINGS_GROUPED,
                    {
                        "conversation_id": conversation_id or "",
                        "grouped_count": modern_count,
                        "legacy_count": legacy_count,
                    },
                )
        return grouped

    async def _attach_legacy(
        self,
        messages: list[Message],
        user: str | None,
        conversation_id: str | None,
    ) -> tuple[list[Message], int]:
        keys = {
            m.shared_user_message_id
            for m in messages
            if m.shared_user_message_id and not m.has_multiple_responses
        }
        if not keys:
            return messages, 0

        limit = self._config.legacy_scan_limit
        records = await self._store.find_by_shared_keys(
            user, keys, exclude_conversation_id=conversation_id, limit=limit
        )
        if len(records) >= limit:
            logger.warning(
                "legacy_sibling_scan_capped",
                conversation_id=conversation_id,
                key_count=len(keys),
                limit=limit,
            )

        by_key: dict[str, list[Message]] = defaultdict(list)
        for record in records:
            if record.shared_user_message_id and not record.is_user_authored and record.parent_id:
                by_key[record.shared_user_message_id].append(_sibling_from_legacy(record))

        result: list[Message] = []
        attached = 0
        for message in messages:
            found = by_key.get(message.shared_user_message_id or "")
            if found and not message.has_multiple_responses:
                message = message.model_copy(update={"siblings": list(found)})
                attached += 1
            result.append(message)
        return result, attached
