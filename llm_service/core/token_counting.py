"""Token counting for prompts and streamed output.

OpenAI models are counted exactly with tiktoken. Every other vendor uses a
character heuristic: ``ceil(len / 4)`` where non-ASCII characters count
double, which tracks BPE tokenizers closely enough for usage estimates.
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

import tiktoken

from ..logging import get_logger

logger = get_logger(__name__)

_O200K_MODELS = re.compile(r"(^o\d|o\d|gpt-4o|gpt-4\.1)", re.IGNORECASE)
_NON_ASCII = re.compile(r"[^\x00-\x7f]")


def estimate_tokens_heuristic(text: Optional[str]) -> int:
    """Approximate token count for *text* without a tokenizer."""
    if not text:
        return 0
    weighted = len(text) + len(_NON_ASCII.findall(text))
    return math.ceil(weighted / 4)


def _load_encoding(model: str) -> Any:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        name = "o200k_base" if _O200K_MODELS.search(model) else "cl100k_base"
        logger.debug("tiktoken has no mapping for model; using base encoding", model=model, encoding=name)
        return tiktoken.get_encoding(name)


class TokenCounter:
    """Counts tokens for one provider/model for the lifetime of one request.

    Use as a context manager, or call :meth:`dispose` in a ``finally`` block.

    Example:
        >>> with TokenCounter("openai", "gpt-4o") as counter:
        ...     counter.count("hello world")
        2
    """

    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model
        self._encoding: Any = None
        self._disposed = False
        if str(provider).lower() == "openai":
            try:
                self._encoding = _load_encoding(model)
            except Exception:
                # tiktoken downloads BPE files on first use; offline hosts fall back to the heuristic
                logger.warning("tiktoken unavailable; using heuristic token counts", model=model, exc_info=True)
                self._encoding = None

    @property
    def precise(self) -> bool:
        return self._encoding is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def count(self, text: Optional[str]) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text, disallowed_special=()))
        return estimate_tokens_heuristic(text)

    def dispose(self) -> None:
        """Release the encoder. Safe to call more than once."""
        self._encoding = None
        self._disposed = True

    def __enter__(self) -> "TokenCounter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()
