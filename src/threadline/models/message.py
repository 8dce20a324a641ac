"""Core message, payload and turn data models for threadline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

ROOT_PARENT_ID = "root"
"""Sentinel ``parent_id`` marking a message that starts a conversation tree."""

# ── Content Parts ──────────────────────────────────────────────────────────────


class TextPart(BaseModel):
    """A plain text segment of a message."""

    type: Literal["text"] = "text"
    text: str


class ThinkPart(BaseModel):
    """Model reasoning text. Never counted against the prompt budget."""

    type: Literal["think"] = "think"
    think: str


class ToolCallPart(BaseModel):
    """A tool invocation and its output, embedded in an assistant message."""

    type: Literal["tool_call"] = "tool_call"
    name: str = ""
    args: str = ""
    output: str | None = None


class ImageUrlPart(BaseModel):
    """An image reference. Image token cost is accounted for elsewhere."""

    type: Literal["image_url"] = "image_url"
    image_url: str


class ErrorPart(BaseModel):
    """An error surfaced inline while a response was generated."""

    type: Literal["error"] = "error"
    error: str


# Discriminated union on the ``type`` field.
ContentPart = Annotated[
    TextPart | ThinkPart | ToolCallPart | ImageUrlPart | ErrorPart,
    Field(discriminator="type"),
]


# ── Message ────────────────────────────────────────────────────────────────────


class ResponseVariant(BaseModel):
    """One model's output for a turn that was answered by several models at once."""

    text: str = ""
    model: str | None = None
    endpoint: str | None = None
    content: list[ContentPart] | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class Message(BaseModel):
    """
    A single stored chat message.

    Messages form a tree through ``parent_id``; a conversation is never a flat
    log. Records are updated in place after creation (token count back-fill,
    feedback, summary annotation, edits) but never reordered.
    """

    id: str
    conversation_id: str
    parent_id: str | None = ROOT_PARENT_ID
    """Id of the message this one replies to, or :data:`ROOT_PARENT_ID`."""
    role: Literal["user", "assistant", "system"] | None = None
    sender: str | None = None
    text: str = ""
    content: list[ContentPart] | None = None
    token_count: int | None = Field(default=None, ge=0)
    is_user_authored: bool = False
    summary: str | None = None
    """Condensed text replacing this message and all of its ancestors."""
    summary_token_count: int | None = Field(default=None, ge=0)
    created_at: int = Field(default_factory=_now_ms)
    """Unix millisecond timestamp."""
    updated_at: int | None = None
    model: str | None = None
    endpoint: str | None = None
    user: str | None = None
    """Owner id. Messages are keyed by ``(user, id)`` in the store."""
    responses: list[ResponseVariant] | None = None
    shared_user_message_id: str | None = None
    """Legacy multi-model key shared by responses stored in separate conversations."""
    siblings: list[Message] = Field(default_factory=list)
    """Alternate responses folded onto this message for display. Never persisted."""
    feedback: dict[str, Any] | None = None
    finish_reason: str | None = None
    error: bool = False

    @model_validator(mode="after")
    def _default_role(self) -> Message:
        if self.role is None:
            self.role = "user" if self.is_user_authored else "assistant"
        return self

    @property
    def kind(self) -> Literal["user", "assistant", "summary"]:
        """Tagged variant of this message: a user turn, an assistant turn, or a summary."""
        if self.role == "system":
            return "summary"
        return "user" if self.is_user_authored else "assistant"

    @property
    def is_root_child(self) -> bool:
        return self.parent_id is None or self.parent_id == ROOT_PARENT_ID

    @property
    def effective_summary_tokens(self) -> int:
        """Summary token count, treated as 0 when a summary was stored without one."""
        return self.summary_token_count or 0

    @property
    def has_multiple_responses(self) -> bool:
        return bool(self.responses) and len(self.responses) > 1

    def text_content(self) -> str:
        """Return ``text``, falling back to the concatenated text parts of ``content``."""
        if self.text or not self.content:
            return self.text
        return "".join(part.text for part in self.content if isinstance(part, TextPart))


class Instructions(BaseModel):
    """System instructions injected into the prompt ahead of (or inside) the thread."""

    id: str = "instructions"
    content: str
    token_count: int | None = Field(default=None, ge=0)
    role: Literal["system"] = "system"

    def to_message(self, conversation_id: str = "") -> Message:
        """Return a :class:`Message` view used for token accounting."""
        return Message(
            id=self.id,
            conversation_id=conversation_id,
            role="system",
            text=self.content,
            token_count=self.token_count,
        )

    def to_llm_message(self) -> LLMMessage:
        return LLMMessage(role=self.role, content=self.content)


# ── Formatted / assembled views ────────────────────────────────────────────────


@dataclass
class LLMMessage:
    """A single message formatted for the provider API."""

    role: str
    content: str | list[dict[str, Any]]
    message_id: str | None = None
    """Id of the stored message this entry was formatted from, if any."""

    @classmethod
    def from_message(cls, message: Message) -> LLMMessage:
        """Format a stored message as a plain-text provider message."""
        return cls(role=message.role or "user", content=message.text_content(), message_id=message.id)


@dataclass
class FitResult:
    """Output of :func:`threadline.context.budget.fit`."""

    context: list[Message]
    remaining_tokens: int
    messages_to_refine: list[Message]


@dataclass
class SummaryResult:
    """Output of a summarizer collaborator."""

    summary_message: LLMMessage | None
    summary_token_count: int = 0


@dataclass
class SummaryEntry:
    """A freshly generated summary, keyed onto the message it should be stored on."""

    message_id: str
    content: str
    token_count: int


@dataclass
class TokenCountMap:
    """Token counts to persist after a generation request."""

    counts: dict[str, int] = field(default_factory=dict)
    summary_message: SummaryEntry | None = None

    def get(self, message_id: str) -> int | None:
        return self.counts.get(message_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self.counts

    def __len__(self) -> int:
        return len(self.counts)


@dataclass
class ContextPayload:
    """The assembled prompt for a single generation request."""

    payload: list[LLMMessage]
    token_count_map: TokenCountMap
    prompt_tokens: int
    remaining_tokens: int
    messages: list[Message]
    """The full thread with instructions inserted (before budgeting)."""
    context: list[Message] = field(default_factory=list)
    """The budget-fitted subset of ``messages``, oldest first."""
    messages_to_refine: list[Message] = field(default_factory=list)
    summarized: bool = False


# ── Display turns ──────────────────────────────────────────────────────────────


@dataclass
class StandaloneTurn:
    """A single message rendered on its own."""

    message: Message

    @property
    def message_ids(self) -> list[str]:
        return [self.message.id]


@dataclass
class ResponseGroupTurn:
    """A user message answered by more than one assistant response, shown side by side."""

    user_message: Message
    responses: list[Message]

    @property
    def message_ids(self) -> list[str]:
        return [self.user_message.id, *(r.id for r in self.responses)]


Turn = StandaloneTurn | ResponseGroupTurn
