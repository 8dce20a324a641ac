"""
Threadline: conversation threads, context windows and display grouping for chat LLMs.

Primary entry point::

    from threadline import ConversationSession, Instructions

    async with ConversationSession.open(model="openai/gpt-4o", user="u1") as session:
        result = await session.build_context(parent_id, instructions=Instructions(content="Be brief."))
        print(result.prompt_tokens, result.payload)
"""

from threadline.session import ConversationSession, make_id
from threadline.models import (
    ThreadlineConfig,
    ContextConfig,
    SummaryConfig,
    SiblingConfig,
    StoreConfig,
    ModelInfo,
    TextPart,
    ThinkPart,
    ToolCallPart,
    ImageUrlPart,
    ErrorPart,
    ContentPart,
    ROOT_PARENT_ID,
    Message,
    ResponseVariant,
    Instructions,
    LLMMessage,
    FitResult,
    SummaryResult,
    TokenCountMap,
    ContextPayload,
    StandaloneTurn,
    ResponseGroupTurn,
    Turn,
)
from threadline.context import (
    ContextAssembler,
    LLMSummarizer,
    OversizedInputError,
    OversizeKind,
    AssemblyAbortedError,
    fit,
    reconstruct,
)
from threadline.grouping import SiblingGrouper, group_turns
from threadline.events.bus import EventBus, ThreadlineEvent
from threadline.store import MessageStore, SQLiteMessageStore
from threadline.tokens.estimator import TokenEstimator

__version__ = "0.1.0"

__all__ = [
    # Core
    "ConversationSession",
    "make_id",
    # Config
    "ThreadlineConfig",
    "ContextConfig",
    "SummaryConfig",
    "SiblingConfig",
    "StoreConfig",
    "ModelInfo",
    # Models
    "TextPart",
    "ThinkPart",
    "ToolCallPart",
    "ImageUrlPart",
    "ErrorPart",
    "ContentPart",
    "ROOT_PARENT_ID",
    "Message",
    "ResponseVariant",
    "Instructions",
    "LLMMessage",
    "FitResult",
    "SummaryResult",
    "TokenCountMap",
    "ContextPayload",
    "StandaloneTurn",
    "ResponseGroupTurn",
    "Turn",
    # Context
    "ContextAssembler",
    "LLMSummarizer",
    "OversizedInputError",
    "OversizeKind",
    "AssemblyAbortedError",
    "fit",
    "reconstruct",
    # Grouping
    "SiblingGrouper",
    "group_turns",
    # Events
    "EventBus",
    "ThreadlineEvent",
    # Store
    "MessageStore",
    "SQLiteMessageStore",
    # Tokens
    "TokenEstimator",
]
