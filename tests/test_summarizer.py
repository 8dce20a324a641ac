"""Tests for the default LLM summarizer."""

from __future__ import annotations

import asyncio

import pytest

from threadline.context.summarizer import SUMMARY_PROMPT, LLMSummarizer
from threadline.models.config import SummaryConfig
from tests.conftest import make_chain, make_message


class FakeLLM:
    def __init__(self, reply: str = "They agreed on a plan.") -> None:
        self.reply = reply
        self.calls: list[dict] = []

    async def __call__(self, *, model, messages, max_tokens):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        return self.reply


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def summarizer(estimator, llm):
    return LLMSummarizer(SummaryConfig(), "openai/gpt-4o-mini", estimator, llm_call=llm)


class TestLLMSummarizer:
    async def test_returns_system_summary(self, summarizer, llm):
        """The LLM reply becomes a system message with its token count."""
        result = await summarizer(make_chain(3), remaining_tokens=500)
        assert result.summary_message is not None
        assert result.summary_message.role == "system"
        assert result.summary_message.content == "They agreed on a plan."
        assert result.summary_token_count == 3 + len("They agreed on a plan.") // 4
        assert llm.calls[0]["model"] == "openai/gpt-4o-mini"

    async def test_output_capped_by_remaining_budget(self, summarizer, llm):
        """max_tokens is the smaller of the remaining budget and the configured cap."""
        await summarizer(make_chain(2), remaining_tokens=100)
        await summarizer(make_chain(2), remaining_tokens=10_000)
        assert [c["max_tokens"] for c in llm.calls] == [100, 2_048]

    async def test_summary_model_overrides_session_model(self, estimator, llm):
        """summary_model in config wins over the session model."""
        summarizer = LLMSummarizer(
            SummaryConfig(summary_model="anthropic/claude-haiku"), "openai/gpt-4o", estimator, llm
        )
        await summarizer(make_chain(2), remaining_tokens=100)
        assert llm.calls[0]["model"] == "anthropic/claude-haiku"

    async def test_too_large_summary_dropped(self, estimator):
        """A summary that does not fit the remaining budget yields an empty result."""
        llm = FakeLLM(reply="x" * 400)
        summarizer = LLMSummarizer(SummaryConfig(), "m", estimator, llm_call=llm)
        result = await summarizer(make_chain(2), remaining_tokens=50)
        assert result.summary_message is None
        assert result.summary_token_count == 0

    async def test_blank_reply_dropped(self, estimator):
        """An empty LLM reply yields an empty result."""
        summarizer = LLMSummarizer(SummaryConfig(), "m", estimator, llm_call=FakeLLM(reply="  "))
        result = await summarizer(make_chain(2), remaining_tokens=500)
        assert result.summary_message is None

    async def test_nothing_to_summarize(self, summarizer, llm):
        """No messages, or no budget left, skips the LLM call."""
        assert (await summarizer([], remaining_tokens=500)).summary_message is None
        assert (await summarizer(make_chain(2), remaining_tokens=3)).summary_message is None
        assert llm.calls == []

    async def test_timeout_propagates(self, estimator):
        """A slow LLM call times out."""

        async def slow(*, model, messages, max_tokens):
            await asyncio.sleep(10)
            return "late"

        summarizer = LLMSummarizer(
            SummaryConfig(timeout_seconds=0.01), "m", estimator, llm_call=slow
        )
        with pytest.raises(asyncio.TimeoutError):
            await summarizer(make_chain(2), remaining_tokens=500)

    async def test_mock_llm_env(self, estimator, monkeypatch):
        """THREADLINE_MOCK_LLM=1 returns a deterministic summary without a provider."""
        monkeypatch.setenv("THREADLINE_MOCK_LLM", "1")
        summarizer = LLMSummarizer(SummaryConfig(), "m", estimator)
        result = await summarizer(make_chain(2), remaining_tokens=500)
        assert result.summary_message is not None
        assert "text of m0" in result.summary_message.content


class TestRenderPrompt:
    def test_labels_and_order(self, summarizer):
        """Messages are rendered oldest first with role labels."""
        prompt = summarizer.render_prompt(make_chain(2))
        assert prompt.startswith(SUMMARY_PROMPT.strip())
        assert prompt.index("[USER]:\ntext of m0") < prompt.index("[ASSISTANT]:\ntext of m1")
        assert "<previous_summary>" not in prompt

    def test_previous_summary_included(self, summarizer):
        """A summarized message carries its summary into the prompt."""
        checkpoint = make_message("s", role="system", summary="earlier", text="earlier")
        prompt = summarizer.render_prompt([checkpoint, *make_chain(1)])
        assert "<previous_summary>\nearlier\n</previous_summary>" in prompt
        assert "[SUMMARY]:" in prompt

    def test_long_messages_capped(self, estimator, llm):
        """Each message is truncated to max_transcript_chars."""
        summarizer = LLMSummarizer(
            SummaryConfig(max_transcript_chars=200), "m", estimator, llm_call=llm
        )
        prompt = summarizer.render_prompt([make_message("long", text="y" * 1_000)])
        assert "y" * 200 in prompt
        assert "y" * 201 not in prompt

    def test_custom_prompt(self, estimator, llm):
        """summary_prompt replaces the built-in instructions."""
        summarizer = LLMSummarizer(
            SummaryConfig(summary_prompt="Summarize tersely."), "m", estimator, llm_call=llm
        )
        assert summarizer.render_prompt(make_chain(1)).startswith("Summarize tersely.")
