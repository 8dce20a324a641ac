"""Tests for configuration models."""

from __future__ import annotations

from importlib.metadata import version
from pathlib import Path

import pytest

import threadline
from threadline import ConversationSession
from threadline.models.config import (
    ContextConfig,
    ModelInfo,
    SiblingConfig,
    StoreConfig,
    SummaryConfig,
    ThreadlineConfig,
)


class TestContextConfig:
    def test_defaults(self) -> None:
        cfg = ContextConfig()
        assert cfg.max_context_tokens is None
        assert cfg.instructions_before_last is False
        assert cfg.summarize is False

    def test_budget_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ContextConfig(max_context_tokens=0)


class TestSummaryConfig:
    def test_bounds_enforced(self) -> None:
        with pytest.raises(ValueError):
            SummaryConfig(max_summary_tokens=10)  # below ge=64
        with pytest.raises(ValueError):
            SummaryConfig(max_summary_tokens=100_000)  # above le=32_000

    def test_blank_prompt_rejected(self) -> None:
        with pytest.raises(ValueError, match="summary_prompt"):
            SummaryConfig(summary_prompt="   ")

    def test_custom_prompt_accepted(self) -> None:
        assert SummaryConfig(summary_prompt="Be brief.").summary_prompt == "Be brief."


class TestSiblingConfig:
    def test_scan_limit_bounds(self) -> None:
        assert SiblingConfig().legacy_scan_limit == 500
        with pytest.raises(ValueError):
            SiblingConfig(legacy_scan_limit=0)
        with pytest.raises(ValueError):
            SiblingConfig(legacy_scan_limit=50_000)


class TestThreadlineConfig:
    def test_default_sub_configs(self) -> None:
        cfg = ThreadlineConfig.default()
        assert isinstance(cfg.context, ContextConfig)
        assert isinstance(cfg.summary, SummaryConfig)
        assert isinstance(cfg.siblings, SiblingConfig)
        assert isinstance(cfg.store, StoreConfig)
        assert cfg == ThreadlineConfig()


class TestModelInfo:
    def test_claude(self) -> None:
        info = ModelInfo.from_model_string("anthropic/claude-3-5-sonnet")
        assert info.provider_id == "anthropic"
        assert info.context_limit == 200_000
        assert info.encoding == "claude_heuristic"

    def test_gpt4o(self) -> None:
        info = ModelInfo.from_model_string("openai/gpt-4o-mini")
        assert info.encoding == "o200k_base"
        assert info.context_limit == 128_000

    def test_gpt4_base(self) -> None:
        info = ModelInfo.from_model_string("gpt-4")
        assert info.encoding == "cl100k_base"
        assert info.context_limit == 8_192
        assert info.provider_id == "openai"

    def test_gemini(self) -> None:
        assert ModelInfo.from_model_string("gemini/gemini-1.5-pro").context_limit == 1_000_000

    def test_unknown(self) -> None:
        info = ModelInfo.from_model_string("local/my-model")
        assert info.encoding == "unknown"
        assert info.provider_id == "local"


class TestDualDbPathRaisesValueError:
    async def test_create_raises_on_dual_db_path(self, tmp_path: Path) -> None:
        cfg = ThreadlineConfig(store=StoreConfig(db_path=str(tmp_path / "a.db")))
        with pytest.raises(ValueError, match="db_path"):
            await ConversationSession.create(
                model="gpt-4o", config=cfg, db_path=str(tmp_path / "b.db")
            )


class TestVersion:
    def test_version_matches_package_metadata(self) -> None:
        assert threadline.__version__ == version("threadline")

    def test_version_is_nonempty_string(self) -> None:
        assert isinstance(threadline.__version__, str)
        assert threadline.__version__
