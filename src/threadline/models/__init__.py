"""threadline data models."""

from threadline.models.config import (
    ContextConfig,
    ModelInfo,
    SiblingConfig,
    StoreConfig,
    SummaryConfig,
    ThreadlineConfig,
)
from threadline.models.message import (
    ROOT_PARENT_ID,
    ContentPart,
    ContextPayload,
    ErrorPart,
    FitResult,
    ImageUrlPart,
    Instructions,
    LLMMessage,
    Message,
    ResponseGroupTurn,
    ResponseVariant,
    StandaloneTurn,
    SummaryEntry,
    SummaryResult,
    TextPart,
    ThinkPart,
    TokenCountMap,
    ToolCallPart,
    Turn,
)

__all__ = [
    # Config
    "ContextConfig",
    "ModelInfo",
    "SiblingConfig",
    "StoreConfig",
    "SummaryConfig",
    "ThreadlineConfig",
    # Content parts
    "TextPart",
    "ThinkPart",
    "ToolCallPart",
    "ImageUrlPart",
    "ErrorPart",
    "ContentPart",
    # Message
    "ROOT_PARENT_ID",
    "Message",
    "ResponseVariant",
    "Instructions",
    "LLMMessage",
    # Assembly results
    "FitResult",
    "SummaryResult",
    "SummaryEntry",
    "TokenCountMap",
    "ContextPayload",
    # Turns
    "StandaloneTurn",
    "ResponseGroupTurn",
    "Turn",
]
