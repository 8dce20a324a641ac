"""threadline context assembly."""

from threadline.context.assembler import (
    AssemblyAbortedError,
    ContextAssembler,
    ContextAssemblyError,
    OversizedInputError,
    OversizeKind,
)
from threadline.context.budget import REPLY_PRIMING_TOKENS, fit
from threadline.context.summarizer import LLMSummarizer, Summarizer
from threadline.context.thread import reconstruct

__all__ = [
    "REPLY_PRIMING_TOKENS",
    "AssemblyAbortedError",
    "ContextAssembler",
    "ContextAssemblyError",
    "LLMSummarizer",
    "OversizeKind",
    "OversizedInputError",
    "Summarizer",
    "fit",
    "reconstruct",
]
