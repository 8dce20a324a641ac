"""threadline event bus."""

from threadline.events.bus import EventBus, Handler, ThreadlineEvent
from threadline.events.payloads import (
    ContextAssembledPayload,
    ContextOversizedPayload,
    MessageSavedPayload,
    SiblingsGroupedPayload,
    SummaryFailedPayload,
    SummaryPayload,
    ThreadTruncatedPayload,
)

__all__ = [
    "ContextAssembledPayload",
    "ContextOversizedPayload",
    "EventBus",
    "Handler",
    "MessageSavedPayload",
    "SiblingsGroupedPayload",
    "SummaryFailedPayload",
    "SummaryPayload",
    "ThreadTruncatedPayload",
    "ThreadlineEvent",
]
