"""Threadline session: the entry point of the generation pipeline for one conversation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from ulid import ULID

from threadline.context.assembler import ContextAssembler
from threadline.context.summarizer import LLMSummarizer, Summarizer
from threadline.context.thread import reconstruct
from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.grouping.siblings import SiblingGrouper
from threadline.grouping.turns import group_turns
from threadline.models.config import ModelInfo, StoreConfig, ThreadlineConfig
from threadline.models.message import (
    ContextPayload,
    Instructions,
    LLMMessage,
    Message,
    TextPart,
    ThinkPart,
    TokenCountMap,
    Turn,
)
from threadline.store.messages import MessageNotFoundError, SQLiteMessageStore
from threadline.tokens.estimator import TokenCounter, TokenEstimator, resolve_count


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"msg"``, ``"convo"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


class ConversationSession:
    """
    One user's view of one conversation.

    Wires the message store, thread reconstruction, context assembly and
    display grouping together. Model invocation stays with the caller: the
    session produces the payload to send and persists what comes back.

    Usage::

        async with ConversationSession.open(model="openai/gpt-4o", user="u1") as session:
            await session.save_message(user_message)
            result = await session.build_context(user_message.id, instructions=instructions)
            reply = await call_model(result.payload)
            await session.apply_token_count_map(session.history, result.token_count_map)
    """

    def __init__(
        self,
        conversation_id: str,
        user: str | None,
        model: str,
        model_info: ModelInfo,
        config: ThreadlineConfig,
        store: SQLiteMessageStore,
        assembler: ContextAssembler,
        grouper: SiblingGrouper,
        count_tokens: TokenCounter,
        event_bus: EventBus,
    ) -> None:
        self._conversation_id = conversation_id
        self._user = user
        self._model = model
        self._model_info = model_info
        self._config = config
        self._store = store
        self._assembler = assembler
        self._grouper = grouper
        self._count_tokens = count_tokens
        self._event_bus = event_bus
        self._previous_summary: Message | None = None
        self._history: list[Message] = []
        self._logger = structlog.get_logger("threadline.session").bind(
            conversation_id=conversation_id
        )

    @classmethod
    async def create(
        cls,
        *,
        model: str,
        conversation_id: str | None = None,
        user: str | None = None,
        config: ThreadlineConfig | None = None,
        db_path: str | None = None,
        summarizer: Summarizer | None = None,
        count_tokens: TokenCounter | None = None,
    ) -> ConversationSession:
        """
        Open the store and return a session for one conversation.

        Args:
            model: Model string in litellm format (e.g. ``"openai/gpt-4o"``).
            conversation_id: Existing conversation to attach to. A new id is
                generated when omitted.
            user: Owner id. Every store operation is scoped to it.
            config: Threadline configuration. Defaults to ``ThreadlineConfig()``.
            db_path: Override database path (useful for testing). Raises
                ``ValueError`` if ``config.store.db_path`` is also customised.
            summarizer: Summarizer used when ``config.context.summarize`` is
                on. Defaults to :class:`LLMSummarizer` on the session model.
            count_tokens: Token counter. Defaults to
                :meth:`TokenEstimator.count_tokens`.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or ThreadlineConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        store = SQLiteMessageStore(cfg.store)
        await store.initialize()

        conversation_id = conversation_id or make_id("convo")
        estimator = TokenEstimator()
        counter = count_tokens or estimator.count_tokens
        if summarizer is None and cfg.context.summarize:
            summarizer = LLMSummarizer(cfg.summary, model, token_estimator=estimator)

        event_bus = EventBus()
        assembler = ContextAssembler(
            cfg.context, count_tokens=counter, summarizer=summarizer, event_bus=event_bus
        )
        grouper = SiblingGrouper(store, cfg.siblings, event_bus)

        structlog.get_logger("threadline.session").info(
            "session_created", conversation_id=conversation_id, model=model, user=user
        )
        return cls(
            conversation_id=conversation_id,
            user=user,
            model=model,
            model_info=ModelInfo.from_model_string(model),
            config=cfg,
            store=store,
            assembler=assembler,
            grouper=grouper,
            count_tokens=counter,
            event_bus=event_bus,
        )

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        *,
        model: str,
        conversation_id: str | None = None,
        user: str | None = None,
        config: ThreadlineConfig | None = None,
        db_path: str | None = None,
        summarizer: Summarizer | None = None,
        count_tokens: TokenCounter | None = None,
    ) -> AsyncGenerator[ConversationSession, None]:
        """
        Create a session and use it as an async context manager.

        All parameters are identical to :meth:`create`. The store connection is
        released when the ``async with`` block exits, even on exception.
        """
        session = await cls.create(
            model=model,
            conversation_id=conversation_id,
            user=user,
            config=config,
            db_path=db_path,
            summarizer=summarizer,
            count_tokens=count_tokens,
        )
        try:
            yield session
        finally:
            await session.close()

    # ── Context ────────────────────────────────────────────────────────────────

    async def load_history(self, parent_message_id: str) -> list[Message]:
        """
        Return the thread ending at *parent_message_id*, oldest first.

        With summarization enabled the walk stops at the newest summary
        checkpoint, and that message is remembered for summary reuse.
        """
        messages = await self._store.get_messages(self._conversation_id, self._user)
        thread = reconstruct(
            messages,
            parent_message_id,
            stop_at_summary=self._config.context.summarize,
            event_bus=self._event_bus,
        )
        self._history = thread
        self._previous_summary = next((m for m in reversed(thread) if m.summary), None)
        if self._previous_summary is not None:
            self._logger.debug(
                "previous_summary_found",
                message_id=self._previous_summary.id,
                summary_token_count=self._previous_summary.summary_token_count,
            )
        return thread

    async def build_context(
        self,
        parent_message_id: str,
        *,
        instructions: Instructions | None = None,
        format_message: Callable[[Message], LLMMessage] | None = None,
        abort: asyncio.Event | None = None,
    ) -> ContextPayload:
        """
        Load the thread ending at *parent_message_id* and fit it into the budget.

        The budget is ``config.context.max_context_tokens``, or the model's
        context limit when that is unset.

        Raises:
            OversizedInputError: If the instructions or newest message cannot fit.
            AssemblyAbortedError: If *abort* is set while summarizing.
        """
        thread = await self.load_history(parent_message_id)
        formatted = [format_message(m) for m in thread] if format_message else None
        return await self._assembler.assemble(
            thread,
            max_tokens=self.max_context_tokens,
            instructions=instructions,
            formatted=formatted,
            previous_summary=self._previous_summary,
            model=self._model,
            abort=abort,
        )

    async def apply_token_count_map(
        self, messages: list[Message], token_count_map: TokenCountMap
    ) -> int:
        """
        Persist token counts (and a new summary) computed during assembly.

        *messages* is the thread as loaded from the store, usually
        :attr:`history`, so that counts filled in during assembly are saved.

        The newest message, the one being answered, is skipped. Messages that
        already had a count are left alone unless they receive the summary.

        Returns:
            Number of messages updated.
        """
        summary = token_count_map.summary_message
        updated = 0
        for message in messages[:-1]:
            patch: dict[str, Any] = {}
            if summary is not None and message.id == summary.message_id:
                self._logger.debug("summary_attached", message_id=message.id)
                patch["summary"] = summary.content
                patch["summary_token_count"] = summary.token_count

            if message.token_count and "summary" not in patch:
                continue

            token_count = token_count_map.get(message.id)
            if token_count:
                patch["token_count"] = token_count
                try:
                    await self._store.update_message(self._user, message.id, patch)
                except MessageNotFoundError:
                    # Instructions and other unsaved records.
                    continue
                updated += 1
        return updated

    # ── Persistence ────────────────────────────────────────────────────────────

    async def save_message(self, message: Message) -> Message:
        """Save *message* into this conversation, updating it if it already exists."""
        message = message.model_copy(
            update={"conversation_id": self._conversation_id, "user": self._user}
        )
        saved = await self._store.save_message(message)
        self._event_bus.publish(
            ThreadlineEvent.MESSAGE_SAVED,
            {"message_id": saved.id, "conversation_id": self._conversation_id},
        )
        return saved

    async def edit_message_text(self, message_id: str, text: str) -> Message:
        """Replace a message's text and recount its tokens."""
        token_count = await resolve_count(self._count_tokens, text, self._model)
        return await self._store.update_message(
            self._user, message_id, {"text": text, "token_count": token_count}
        )

    async def edit_content_part(self, message_id: str, index: int, text: str) -> Message:
        """
        Replace the text of one ``text`` or ``think`` content part.

        The stored token count is adjusted by the difference between the old
        and new part, never dropping below the new part's own count.

        Raises:
            MessageNotFoundError: If the message does not exist.
            ValueError: If *index* is out of range or the part is not text.
        """
        message = await self._store.get_message(self._user, message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        content = list(message.content or [])
        if index < 0 or index >= len(content):
            raise ValueError(f"Invalid content index {index} for message {message_id!r}")

        part = content[index]
        if isinstance(part, TextPart):
            old_text = part.text
            content[index] = TextPart(text=text)
        elif isinstance(part, ThinkPart):
            old_text = part.think
            content[index] = ThinkPart(think=text)
        else:
            raise ValueError(f"Cannot update non-text content part of type {part.type!r}")

        token_count = message.token_count
        if token_count is not None:
            old_tokens = await resolve_count(self._count_tokens, old_text, self._model)
            new_tokens = await resolve_count(self._count_tokens, text, self._model)
            token_count = max(0, token_count - old_tokens) + new_tokens

        return await self._store.update_message(
            self._user,
            message_id,
            {
                "content": [p.model_dump() for p in content],
                "token_count": token_count,
            },
        )

    async def set_feedback(self, message_id: str, feedback: dict[str, Any] | None) -> Message:
        """Store (or clear, with ``None``) the user's rating of a message."""
        return await self._store.update_message(self._user, message_id, {"feedback": feedback})

    async def delete_messages_since(self, message_id: str) -> int:
        """Delete every message in this conversation created after *message_id*."""
        deleted = await self._store.delete_messages_since(
            self._user, self._conversation_id, message_id
        )
        self._logger.info("messages_deleted", since=message_id, count=deleted)
        return deleted

    # ── Display ────────────────────────────────────────────────────────────────

    async def display_messages(self) -> list[Message]:
        """Return the conversation with multi-model siblings attached."""
        messages = await self._store.get_messages(self._conversation_id, self._user)
        return await self._grouper.group(
            messages, user=self._user, conversation_id=self._conversation_id
        )

    async def display_turns(self, parent_message_id: str) -> list[Turn]:
        """Return the thread ending at *parent_message_id* grouped into turns."""
        messages = await self._store.get_messages(self._conversation_id, self._user)
        return group_turns(reconstruct(messages, parent_message_id, event_bus=self._event_bus))

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Release the store connection."""
        await self._store.close()
        self._logger.info("session_closed")

    async def __aenter__(self) -> ConversationSession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def user(self) -> str | None:
        return self._user

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_context_tokens(self) -> int:
        """Prompt token budget for this session."""
        return self._config.context.max_context_tokens or self._model_info.context_limit

    @property
    def history(self) -> list[Message]:
        """The thread returned by the last :meth:`load_history`, as stored."""
        return list(self._history)

    @property
    def previous_summary(self) -> Message | None:
        """The newest summarized message seen by the last :meth:`load_history`."""
        return self._previous_summary

    @property
    def store(self) -> SQLiteMessageStore:
        return self._store

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this session. Subscribe to monitor events."""
        return self._event_bus

    def subscribe(self, event: ThreadlineEvent, handler: Any) -> None:
        """Register an event handler on this session's event bus."""
        self._event_bus.subscribe(event, handler)
