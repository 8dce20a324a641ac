"""Default LLM summarizer for messages that fall outside the context budget."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable

import structlog
from jinja2 import Template

from threadline.models.config import SummaryConfig
from threadline.models.message import LLMMessage, Message, SummaryResult
from threadline.tokens.estimator import TOKENS_PER_MESSAGE, TokenEstimator

logger = structlog.get_logger("threadline.context.summarizer")

Summarizer = Callable[[list[Message], int], Awaitable[SummaryResult]]
"""``summarize(messages_to_refine, remaining_tokens) -> SummaryResult``."""

LLMCall = Callable[..., Awaitable[str]]

SUMMARY_PROMPT = """\
Summarize the earlier part of this conversation so it can continue without
the original messages. Keep every instruction, decision, fact and open
question the participants relied on. Write in plain prose, third person,
no preamble.
"""

TRANSCRIPT_TEMPLATE = Template(
    """\
{{ prompt }}
{% if previous_summary %}
<previous_summary>
{{ previous_summary }}
</previous_summary>
{% endif %}
<conversation>
{% for message in messages -%}
[{{ message.label }}]:
{{ message.text }}

{% endfor -%}
</conversation>
"""
)


def _make_llm_call() -> LLMCall:
    """Return an async function that asks an LLM for a summary."""

    async def _call(*, model: str, messages: list[dict[str, str]], max_tokens: int) -> str:
        if os.environ.get("THREADLINE_MOCK_LLM") == "1":
            content = messages[0]["content"] if messages else ""
            conv_text = ""
            if "<conversation>" in content:
                conv_text = content.split("<conversation>")[1].split("</conversation>")[0].strip()
            lines = [ln.strip() for ln in conv_text.splitlines() if ln.strip()]
            return " ".join(ln[:80] for ln in lines[:6]) or "(conversation in progress)"

        import litellm

        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=0.2,
        )
        return response.choices[0].message.content or ""

    return _call


class LLMSummarizer:
    """
    Summarizes refined-out messages with an LLM.

    Satisfies the ``Summarizer`` collaborator signature when called. The
    summary is returned as a ``system`` message; a summary that does not fit
    in the remaining budget yields an empty result rather than an error.

    Example::

        summarizer = LLMSummarizer(config.summary, model="openai/gpt-4o-mini")
        result = await summarizer(messages_to_refine, remaining_tokens=1_200)
    """

    def __init__(
        self,
        config: SummaryConfig,
        model: str,
        token_estimator: TokenEstimator | None = None,
        llm_call: LLMCall | None = None,
    ) -> None:
        self._config = config
        self._model = config.summary_model or model
        self._estimator = token_estimator or TokenEstimator()
        self._llm_call = llm_call or _make_llm_call()
        self._logger = logger.bind(model=self._model)

    def render_prompt(self, messages: list[Message]) -> str:
        """Render the summarization prompt for *messages*."""
        previous_summary = next((m.summary for m in messages if m.summary), None)
        cap = self._config.max_transcript_chars
        rendered = [
            {"label": _label(m), "text": m.text_content()[:cap]}
            for m in messages
            if m.text_content()
        ]
        return TRANSCRIPT_TEMPLATE.render(
            prompt=self._config.summary_prompt or SUMMARY_PROMPT,
            previous_summary=previous_summary,
            messages=rendered,
        )

    async def __call__(self, messages: list[Message], remaining_tokens: int) -> SummaryResult:
        if not messages or remaining_tokens <= TOKENS_PER_MESSAGE:
            return SummaryResult(summary_message=None)

        max_tokens = min(remaining_tokens, self._config.max_summary_tokens)
        prompt_messages = [{"role": "user", "content": self.render_prompt(messages)}]
        reply = await asyncio.wait_for(
            self._llm_call(model=self._model, messages=prompt_messages, max_tokens=max_tokens),
            timeout=self._config.timeout_seconds,
        )
        text = (reply or "").strip()
        if not text:
            return SummaryResult(summary_message=None)

        token_count = TOKENS_PER_MESSAGE + self._estimator.count_tokens(text, self._model)
        if token_count > remaining_tokens:
            self._logger.info(
                "summary_too_large", token_count=token_count, remaining_tokens=remaining_tokens
            )
            return SummaryResult(summary_message=None)

        self._logger.debug(
            "summary_written", summarized_count=len(messages), token_count=token_count
        )
        return SummaryResult(
            summary_message=LLMMessage(role="system", content=text),
            summary_token_count=token_count,
        )


def _label(message: Message) -> str:
    if message.kind == "summary":
        return "SUMMARY"
    return "USER" if message.is_user_authored else "ASSISTANT"
