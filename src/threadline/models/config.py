"""Configuration models for threadline sessions and components."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class ContextConfig(BaseModel):
    """Configuration for context assembly."""

    max_context_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Prompt token budget. None = derive from the model's context limit.",
    )

    instructions_before_last: bool = False
    """Legacy placement: insert instructions just before the final message instead of first."""

    summarize: bool = False
    """Whether to summarize messages that fall outside the budget."""


class SummaryConfig(BaseModel):
    """Configuration for the default LLM summarizer."""

    summary_model: str | None = Field(
        default=None,
        description="Model used to write summaries. None = use the session model.",
    )

    max_summary_tokens: int = Field(
        default=2_048,
        ge=64,
        le=32_000,
        description="Upper bound on the summary's output tokens.",
    )

    max_transcript_chars: int = Field(
        default=4_000,
        ge=200,
        description="Per-message character cap when rendering the transcript to summarize.",
    )

    summary_prompt: str | None = Field(
        default=None,
        description="Custom summarization instructions. None = use the built-in prompt.",
    )

    timeout_seconds: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def validate_summary_prompt(self) -> SummaryConfig:
        if self.summary_prompt is not None and not self.summary_prompt.strip():
            raise ValueError("summary_prompt must not be blank; use None for the built-in prompt")
        return self


class SiblingConfig(BaseModel):
    """Configuration for multi-model sibling grouping."""

    resolve_legacy: bool = True
    """Whether to look up legacy siblings stored in other conversations."""

    legacy_scan_limit: int = Field(
        default=500,
        ge=1,
        le=10_000,
        description="Maximum number of legacy sibling records fetched per grouping call.",
    )


class StoreConfig(BaseModel):
    """Configuration for the SQLite message store."""

    db_path: str = Field(
        default="~/.threadline/messages.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class ThreadlineConfig(BaseModel):
    """
    Top-level configuration for a threadline session.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = ThreadlineConfig(
            context=ContextConfig(max_context_tokens=8_000, summarize=True),
            summary=SummaryConfig(summary_model="openai/gpt-4o-mini"),
        )
    """

    context: ContextConfig = Field(default_factory=ContextConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    siblings: SiblingConfig = Field(default_factory=SiblingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @classmethod
    def default(cls) -> ThreadlineConfig:
        """Return a config instance with all defaults."""
        return cls()


class ModelInfo(BaseModel):
    """Resolved model metadata used for budget calculations and tokenisation."""

    model_id: str
    provider_id: str = ""
    context_limit: int = Field(
        default=128_000,
        description="Total input token limit for this model.",
    )
    encoding: Literal["cl100k_base", "o200k_base", "claude_heuristic", "unknown"] = "cl100k_base"

    @classmethod
    def from_model_string(cls, model: str) -> ModelInfo:
        """
        Create a ModelInfo by heuristically parsing a model string.

        Supports litellm-style strings like ``anthropic/claude-3-5-sonnet``,
        ``gpt-4o``, ``openai/gpt-4-turbo``, etc.
        """
        lower = model.lower()
        provider = ""
        model_name = lower

        if "/" in lower:
            provider, model_name = lower.split("/", 1)

        if "claude" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "anthropic",
                context_limit=200_000,
                encoding="claude_heuristic",
            )
        if "gpt-4o" in model_name or "o1" in model_name or "o3" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "openai",
                context_limit=128_000,
                encoding="o200k_base",
            )
        if "gpt-4" in model_name or "gpt-3" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "openai",
                context_limit=8_192 if model_name in ("gpt-4", "gpt-4-0613") else 128_000,
                encoding="cl100k_base",
            )
        if "gemini" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "google",
                context_limit=1_000_000,
                encoding="cl100k_base",
            )
        return cls(
            model_id=model,
            provider_id=provider,
            context_limit=128_000,
            encoding="unknown",
        )
