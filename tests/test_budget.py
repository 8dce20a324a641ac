"""Tests for newest-first budget fitting."""

from __future__ import annotations

import pytest

from threadline.context.budget import REPLY_PRIMING_TOKENS, fit
from threadline.models.message import Instructions
from tests.conftest import make_chain, make_message


class TestFit:
    def test_five_by_ten_in_twenty_five(self):
        """Two newest messages fit in 25 tokens; the three oldest are refined."""
        thread = make_chain(5, token_count=10)
        result = fit(thread, 25)
        assert [m.id for m in result.context] == ["m3", "m4"]
        assert [m.id for m in result.messages_to_refine] == ["m0", "m1", "m2"]
        assert result.remaining_tokens == 25 - REPLY_PRIMING_TOKENS - 20

    def test_everything_fits(self):
        """A small thread is returned whole."""
        thread = make_chain(3, token_count=5)
        result = fit(thread, 1_000)
        assert result.context == thread
        assert result.messages_to_refine == []
        assert result.remaining_tokens == 1_000 - REPLY_PRIMING_TOKENS - 15

    def test_input_not_mutated(self):
        """The caller's list is left intact."""
        thread = make_chain(4)
        snapshot = list(thread)
        fit(thread, 15)
        assert thread == snapshot

    def test_oversized_newest_message(self):
        """A newest message larger than the budget leaves the context empty."""
        thread = [make_message("big", token_count=100)]
        result = fit(thread, 50)
        assert result.context == []
        assert [m.id for m in result.messages_to_refine] == ["big"]

    def test_none_token_count_is_free(self):
        """Messages without a count cost nothing."""
        thread = make_chain(3, token_count=None)
        assert len(fit(thread, 10).context) == 3

    def test_stops_at_first_overflow(self):
        """An older message that would fit is not taken after an overflow."""
        thread = [
            make_message("small_old", token_count=1),
            make_message("huge", "small_old", token_count=50),
            make_message("new", "huge", token_count=5),
        ]
        result = fit(thread, 20)
        assert [m.id for m in result.context] == ["new"]
        assert [m.id for m in result.messages_to_refine] == ["small_old", "huge"]

    @pytest.mark.parametrize("max_tokens", [10, 25, 40, 57, 100])
    def test_never_exceeds_budget(self, max_tokens):
        """The fitted context never exceeds the budget minus instructions."""
        instructions = Instructions(content="be nice", token_count=6)
        thread = [instructions.to_message(), *make_chain(8, token_count=7)]
        result = fit(thread, max_tokens, instructions)
        spent = sum(m.token_count or 0 for m in result.context if m.id != instructions.id)
        assert spent <= max_tokens - instructions.token_count


class TestFitWithInstructions:
    def test_instructions_anchor_always_kept(self):
        """The first element is in the context even when nothing else fits."""
        instructions = Instructions(content="sys", token_count=20)
        thread = [instructions.to_message(), *make_chain(3, token_count=10)]
        result = fit(thread, 25, instructions)
        assert [m.id for m in result.context] == ["instructions"]
        assert [m.id for m in result.messages_to_refine] == ["m0", "m1", "m2"]

    def test_instructions_cost_reserved(self):
        """Instructions are paid for once, up front."""
        instructions = Instructions(content="sys", token_count=10)
        thread = [instructions.to_message(), *make_chain(5, token_count=10)]
        result = fit(thread, 35, instructions)
        assert [m.id for m in result.context] == ["instructions", "m3", "m4"]
        assert result.remaining_tokens == 35 - 10 - REPLY_PRIMING_TOKENS - 20

    def test_legacy_placement_anchors_oldest_message(self):
        """With instructions before the last message, the oldest message is kept."""
        instructions = Instructions(content="sys", token_count=5)
        chain = make_chain(6, token_count=10)
        thread = [*chain[:-1], instructions.to_message(), chain[-1]]
        result = fit(thread, 40, instructions)
        ids = [m.id for m in result.context]
        assert ids[0] == "m0"
        assert ids[-1] == "m5"
        spent = sum(m.token_count or 0 for m in result.context if m.id != "instructions")
        assert spent <= 40 - 5

    def test_single_message_thread(self):
        """A thread holding only the instructions returns them."""
        instructions = Instructions(content="sys", token_count=5)
        result = fit([instructions.to_message()], 10, instructions)
        assert [m.id for m in result.context] == ["instructions"]
        assert result.messages_to_refine == []
