"""Greedy newest-first fitting of a thread into a token budget."""

from __future__ import annotations

from threadline.models.message import FitResult, Instructions, Message

REPLY_PRIMING_TOKENS = 3
"""Every reply is primed with ``<|start|>assistant<|message|>``."""


def fit(
    thread: list[Message],
    max_tokens: int,
    instructions: Instructions | None = None,
) -> FitResult:
    """
    Select the longest suffix of *thread* that fits in *max_tokens*.

    Messages are taken newest-first; the first message that would overflow
    the budget stops the walk, and it and everything older become
    ``messages_to_refine``. When *instructions* are given their cost is
    reserved up front and ``thread[0]`` is always kept: it is the injected
    instructions record (or, with legacy placement, the oldest message) and
    anchors any summary written for the refined messages.

    The input list is never modified.

    Args:
        thread: Messages oldest-first, each with a ``token_count``
            (``None`` counts as 0).
        max_tokens: Total prompt budget.
        instructions: Instructions already placed in *thread*, if any.

    Returns:
        FitResult with ``context`` oldest-first.
    """
    current = REPLY_PRIMING_TOKENS
    instructions_tokens = (instructions.token_count or 0) if instructions else 0
    remaining = max_tokens - instructions_tokens
    pending = list(thread)

    anchor: Message | None = None
    if instructions is not None and pending:
        anchor = pending.pop(0)
        if anchor.id != instructions.id:
            remaining -= anchor.token_count or 0

    context: list[Message] = []
    while pending and current < remaining:
        message = pending.pop()
        if instructions is not None and message.id == instructions.id:
            tokens = 0
        else:
            tokens = message.token_count or 0
        if current + tokens > remaining:
            pending.append(message)
            break
        context.append(message)
        current += tokens

    if anchor is not None:
        context.append(anchor)

    return FitResult(
        context=list(reversed(context)),
        remaining_tokens=remaining - current,
        messages_to_refine=pending,
    )
