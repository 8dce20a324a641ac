"""Multi-model token counting with caching and graceful fallback."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from threadline.models.config import ModelInfo
from threadline.models.message import (
    ErrorPart,
    ImageUrlPart,
    Instructions,
    Message,
    TextPart,
    ThinkPart,
    ToolCallPart,
)

TokenCounter = Callable[[str, str], "int | Awaitable[int]"]
"""``count_tokens(text, model) -> int``. May be sync or async."""

TOKENS_PER_MESSAGE = 3
"""Fixed per-message overhead for chat-formatted prompts."""


def message_token_texts(message: Message) -> list[str]:
    """
    Return every string of *message* that counts against the prompt budget.

    Think, error and image parts are skipped; tool calls contribute their
    name, arguments and output.
    """
    texts: list[str] = []
    if message.content:
        for part in message.content:
            if isinstance(part, ThinkPart | ErrorPart | ImageUrlPart):
                continue
            if isinstance(part, ToolCallPart):
                texts.extend(t for t in (part.name, part.args, part.output) if t)
            elif isinstance(part, TextPart) and part.text:
                texts.append(part.text)
    elif message.text:
        texts.append(message.text)
    if message.role:
        texts.append(message.role)
    if message.sender:
        texts.append(message.sender)
    return texts


async def resolve_count(counter: TokenCounter, text: str, model: str) -> int:
    """Call *counter* and await the result when it is a coroutine."""
    result = counter(text, model)
    if inspect.isawaitable(result):
        result = await result
    return int(result)


async def count_message_tokens(counter: TokenCounter, message: Message, model: str) -> int:
    """Count a whole message through *counter*, including per-message overhead."""
    total = TOKENS_PER_MESSAGE
    for text in message_token_texts(message):
        total += await resolve_count(counter, text, model)
    return total


async def count_instructions_tokens(
    counter: TokenCounter, instructions: Instructions, model: str
) -> int:
    return TOKENS_PER_MESSAGE + await resolve_count(counter, instructions.content, model)


class TokenEstimator:
    """
    Multi-model token counting with caching and graceful fallback.

    Priority order:
    1. tiktoken for OpenAI encodings (cl100k_base, o200k_base)
    2. Character-based heuristic (``len // 3``) for Claude models
    3. Character-based heuristic (``len // 4``) for all other models

    Encoder objects are cached by encoding name (one load per process).
    ``count_tokens`` satisfies the ``TokenCounter`` collaborator signature.
    """

    def __init__(self) -> None:
        self._encoder_cache: dict[str, Any] = {}
        self._model_cache: dict[str, ModelInfo] = {}
        self._force_heuristic: bool = False
        """Set to True in tests to skip tiktoken import."""

    def estimate(self, text: str, model: ModelInfo | None = None) -> int:
        """
        Estimate the token count for a string.

        Args:
            text: The text to estimate.
            model: Optional model info for accurate tokenisation. Uses heuristic
                when None or model encoding is unknown.

        Returns:
            Estimated token count, always >= 1 for non-empty text.
        """
        if not text:
            return 0
        if self._force_heuristic or model is None:
            return self._heuristic(text)

        encoding = model.encoding
        if encoding == "claude_heuristic":
            return max(1, len(text) // 3)
        if encoding in ("cl100k_base", "o200k_base"):
            try:
                return self._tiktoken_estimate(text, encoding)
            except Exception:
                pass
        return self._heuristic(text)

    def count_tokens(self, text: str, model: str = "") -> int:
        """Count *text* for a litellm-style model string."""
        if not model:
            return self.estimate(text)
        info = self._model_cache.get(model)
        if info is None:
            info = ModelInfo.from_model_string(model)
            self._model_cache[model] = info
        return self.estimate(text, info)

    def _heuristic(self, text: str) -> int:
        """Conservative heuristic: 4 characters per token, minimum 1."""
        return max(1, len(text) // 4)

    def _tiktoken_estimate(self, text: str, encoding_name: str) -> int:
        """Encode with tiktoken, caching the encoder object."""
        if encoding_name not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[encoding_name] = tiktoken.get_encoding(encoding_name)
        encoder = self._encoder_cache[encoding_name]
        return len(encoder.encode(text))

