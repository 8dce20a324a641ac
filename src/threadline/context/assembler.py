"""Context window assembly: instructions, budgeting, summary fallback and token maps."""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TypeVar

import structlog

from threadline.context.budget import REPLY_PRIMING_TOKENS, fit
from threadline.context.summarizer import Summarizer
from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.models.config import ContextConfig
from threadline.models.message import (
    ContextPayload,
    Instructions,
    LLMMessage,
    Message,
    SummaryEntry,
    SummaryResult,
    TokenCountMap,
)
from threadline.tokens.estimator import (
    TokenCounter,
    TokenEstimator,
    count_instructions_tokens,
    count_message_tokens,
)

T = TypeVar("T")

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ContextAssemblyError(Exception):
    """Base class for context assembly errors."""


class OversizeKind(StrEnum):
    """Which part of the prompt could not fit in the budget."""

    INSTRUCTIONS = "instructions"
    """The instructions alone exceed the budget. Shorten the instructions."""
    LATEST_MESSAGE = "latest_message"
    """The newest message alone exceeds the budget. Start a new branch."""
    INSTRUCTIONS_WITH_LATEST = "instructions_with_latest"
    """The instructions fit, but not together with the newest message."""


class OversizedInputError(ContextAssemblyError):
    """Raised when the prompt cannot be made to fit in the context budget."""

    _DESCRIPTIONS = {
        OversizeKind.INSTRUCTIONS: "Instructions token count exceeds max token count",
        OversizeKind.LATEST_MESSAGE: "Prompt token count exceeds max token count",
        OversizeKind.INSTRUCTIONS_WITH_LATEST: (
            "Including instructions, the prompt token count exceeds remaining max token count"
        ),
    }

    def __init__(self, kind: OversizeKind, token_count: int, max_tokens: int) -> None:
        self.kind = kind
        self.token_count = token_count
        self.max_tokens = max_tokens
        super().__init__(f"{self._DESCRIPTIONS[kind]} ({self.info}).")

    @property
    def info(self) -> str:
        return f"{self.token_count} / {self.max_tokens}"


class AssemblyAbortedError(ContextAssemblyError):
    """Raised when the caller aborts assembly while the summarizer is running."""


# ── Assembler ──────────────────────────────────────────────────────────────────


class ContextAssembler:
    """
    Assembles the exact message list sent to the model for one generation request.

    Invariants:
    1. Instructions larger than the budget fail before the thread is touched.
    2. The newest messages are kept; older ones are dropped (or summarized).
    3. The formatted payload is selected through the fitted raw messages, so
       each payload entry is the formatted form of a message in ``context``,
       in the same order.
    4. A previous summary stored on the exact truncation boundary is reused
       instead of calling the summarizer again.
    5. A summarizer failure never fails assembly.

    Example::

        assembler = ContextAssembler(ContextConfig(summarize=True), summarizer=summarizer)
        result = await assembler.assemble(thread, max_tokens=8_000, instructions=instructions)
        send(result.payload)
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        *,
        count_tokens: TokenCounter | None = None,
        summarizer: Summarizer | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or ContextConfig()
        self._count_tokens = count_tokens or TokenEstimator().count_tokens
        self._summarizer = summarizer
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("threadline.context.assembler")

    def add_instructions(
        self,
        messages: list[T],
        instructions: T | None,
        before_last: bool | None = None,
    ) -> list[T]:
        """
        Return a new list with *instructions* inserted.

        Instructions go first by default. With *before_last* (default taken
        from ``ContextConfig.instructions_before_last``) they are inserted just
        before the final message, which stays the tail.
        """
        if instructions is None:
            return list(messages)
        if before_last is None:
            before_last = self._config.instructions_before_last
        if not before_last:
            return [instructions, *messages]
        return [*messages[:-1], instructions, *messages[-1:]]

    async def assemble(
        self,
        thread: list[Message],
        *,
        max_tokens: int,
        instructions: Instructions | None = None,
        formatted: list[LLMMessage] | None = None,
        summarizer: Summarizer | None = None,
        previous_summary: Message | None = None,
        model: str = "",
        abort: asyncio.Event | None = None,
    ) -> ContextPayload:
        """
        Build the prompt payload for the next generation request.

        Args:
            thread: The reconstructed thread, oldest first.
            max_tokens: Prompt token budget.
            instructions: Optional system instructions.
            formatted: Provider-formatted messages, one per *thread* entry.
                Defaults to a plain-text rendering of *thread*.
            summarizer: Overrides the summarizer given at construction.
            previous_summary: The newest message in the thread carrying a
                stored summary, if any.
            model: Model string passed to the token counter.
            abort: When set while the summarizer runs, the summarizer is
                cancelled and :class:`AssemblyAbortedError` is raised.

        Returns:
            ContextPayload with the payload, token count map and prompt tokens.

        Raises:
            OversizedInputError: If the instructions, or the newest message,
                cannot fit in *max_tokens*.
            ValueError: If *formatted* is not index-aligned with *thread*.
        """
        if instructions is not None and instructions.token_count is None:
            instructions = instructions.model_copy(
                update={
                    "token_count": await count_instructions_tokens(
                        self._count_tokens, instructions, model
                    )
                }
            )
        instructions_tokens = (instructions.token_count or 0) if instructions else 0
        self._logger.debug("instructions_token_count", token_count=instructions_tokens)
        if instructions_tokens > max_tokens:
            raise self._oversized(OversizeKind.INSTRUCTIONS, instructions_tokens, max_tokens)

        if formatted is not None and len(formatted) != len(thread):
            raise ValueError(
                f"formatted messages ({len(formatted)}) must align with the thread ({len(thread)})"
            )
        thread = await self._backfill_token_counts(thread, model)
        if formatted is None:
            formatted = [LLMMessage.from_message(m) for m in thread]

        instructions_message = instructions.to_message() if instructions else None
        ordered = self.add_instructions(thread, instructions_message)
        fitted = fit(ordered, max_tokens, instructions)
        remaining = fitted.remaining_tokens
        self._logger.debug(
            "context_count_fitted", remaining_tokens=remaining, max_tokens=max_tokens
        )

        summarizer = summarizer or self._summarizer
        should_summarize = self._config.summarize and summarizer is not None

        length = len(formatted) + (1 if instructions else 0)
        diff = length - len(fitted.context)
        first = thread[0] if thread else None
        use_prev_summary = (
            should_summarize
            and diff == 1
            and first is not None
            and bool(first.summary)
            and previous_summary is not None
            and previous_summary.id == first.id
        )

        if diff > 0:
            self._logger.debug("context_truncated", requested=length, fitted=len(fitted.context))
        position = {m.id: i for i, m in enumerate(thread)}
        payload = [
            formatted[position[m.id]]
            for m in fitted.context
            if instructions is None or m.id != instructions.id
        ]
        payload = self.add_instructions(
            payload, instructions.to_llm_message() if instructions else None
        )

        latest = thread[-1] if thread else None
        if not payload and not should_summarize and latest is not None:
            raise self._oversized(
                OversizeKind.LATEST_MESSAGE, latest.token_count or 0, max_tokens
            )
        if instructions is not None and thread and len(payload) == 1:
            raise self._oversized(
                OversizeKind.INSTRUCTIONS_WITH_LATEST,
                instructions_tokens + REPLY_PRIMING_TOKENS,
                max_tokens,
            )
        # Legacy placement anchors the oldest message, so the newest can be
        # dropped while the payload is still non-empty.
        if (
            not should_summarize
            and latest is not None
            and all(m.id != latest.id for m in fitted.context)
        ):
            raise self._oversized(
                OversizeKind.LATEST_MESSAGE, latest.token_count or 0, max_tokens
            )

        summary = SummaryResult(summary_message=None)
        if use_prev_summary and first is not None:
            summary = SummaryResult(
                summary_message=LLMMessage(role="system", content=first.summary or ""),
                summary_token_count=first.effective_summary_tokens,
            )
            self._event_bus.publish(
                ThreadlineEvent.SUMMARY_REUSED,
                {"message_id": first.id, "token_count": summary.summary_token_count},
            )
        elif should_summarize and fitted.messages_to_refine and summarizer is not None:
            summary = await self._summarize(summarizer, fitted.messages_to_refine, remaining, abort)

        summarized = should_summarize and summary.summary_message is not None
        if summary.summary_message is not None:
            payload.insert(0, summary.summary_message)
            remaining -= summary.summary_token_count

        token_count_map = self._build_token_count_map(
            ordered if summarized else fitted.context,
            instructions,
            summary if summarized and not use_prev_summary else None,
            fitted.messages_to_refine,
        )
        if token_count_map.summary_message is not None:
            self._event_bus.publish(
                ThreadlineEvent.SUMMARY_CREATED,
                {
                    "message_id": token_count_map.summary_message.message_id,
                    "token_count": token_count_map.summary_message.token_count,
                },
            )

        prompt_tokens = max_tokens - remaining
        self._logger.debug(
            "context_assembled",
            prompt_tokens=prompt_tokens,
            remaining_tokens=remaining,
            payload_size=len(payload),
            max_tokens=max_tokens,
        )
        self._event_bus.publish(
            ThreadlineEvent.CONTEXT_ASSEMBLED,
            {
                "prompt_tokens": prompt_tokens,
                "remaining_tokens": remaining,
                "payload_size": len(payload),
                "summarized": summarized,
            },
        )
        return ContextPayload(
            payload=payload,
            token_count_map=token_count_map,
            prompt_tokens=prompt_tokens,
            remaining_tokens=remaining,
            messages=ordered,
            context=fitted.context,
            messages_to_refine=fitted.messages_to_refine,
            summarized=summarized,
        )

    async def _backfill_token_counts(self, thread: list[Message], model: str) -> list[Message]:
        """Return *thread* with every missing ``token_count`` filled in by the counter."""
        result: list[Message] = []
        for message in thread:
            if message.token_count is None:
                count = await count_message_tokens(self._count_tokens, message, model)
                message = message.model_copy(update={"token_count": count})
            result.append(message)
        return result

    async def _summarize(
        self,
        summarizer: Summarizer,
        messages_to_refine: list[Message],
        remaining_tokens: int,
        abort: asyncio.Event | None,
    ) -> SummaryResult:
        """Run the summarizer. Failures yield an empty result; an abort raises."""
        try:
            if abort is None:
                return await summarizer(list(messages_to_refine), remaining_tokens)
            return await self._run_abortable(
                summarizer(list(messages_to_refine), remaining_tokens), abort
            )
        except AssemblyAbortedError:
            raise
        except Exception as exc:
            self._logger.warning(
                "summarization_failed", error=str(exc), refine_count=len(messages_to_refine)
            )
            self._event_bus.publish(
                ThreadlineEvent.SUMMARY_FAILED,
                {"error": str(exc), "refine_count": len(messages_to_refine)},
            )
            return SummaryResult(summary_message=None)

    @staticmethod
    async def _run_abortable(coro, abort: asyncio.Event) -> SummaryResult:
        if abort.is_set():
            coro.close()
            raise AssemblyAbortedError("Assembly aborted before summarization")
        task = asyncio.ensure_future(coro)
        abort_wait = asyncio.ensure_future(abort.wait())
        try:
            await asyncio.wait({task, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_wait.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        if abort.is_set():
            raise AssemblyAbortedError("Assembly aborted during summarization")
        return task.result()

    @staticmethod
    def _build_token_count_map(
        messages: list[Message],
        instructions: Instructions | None,
        summary: SummaryResult | None,
        messages_to_refine: list[Message],
    ) -> TokenCountMap:
        """
        Map message id to token count for every message in *messages*.

        A freshly written summary is keyed onto the newest refined message,
        the boundary the next reconstruction will stop at.
        """
        token_map = TokenCountMap()
        for message in messages:
            if instructions is not None and message.id == instructions.id:
                continue
            token_map.counts[message.id] = message.token_count or 0

        if summary is not None and summary.summary_message is not None and messages_to_refine:
            boundary = next(
                (
                    m
                    for m in reversed(messages_to_refine)
                    if instructions is None or m.id != instructions.id
                ),
                None,
            )
            if boundary is not None:
                content = summary.summary_message.content
                token_map.summary_message = SummaryEntry(
                    message_id=boundary.id,
                    content=content if isinstance(content, str) else str(content),
                    token_count=summary.summary_token_count,
                )
        return token_map

    def _oversized(self, kind: OversizeKind, token_count: int, max_tokens: int) -> OversizedInputError:
        error = OversizedInputError(kind, token_count, max_tokens)
        self._logger.warning("context_oversized", kind=str(kind), info=error.info)
        self._event_bus.publish(
            ThreadlineEvent.CONTEXT_OVERSIZED,
            {"kind": str(kind), "token_count": token_count, "max_tokens": max_tokens},
        )
        return error
