"""Token counting abstractions for context assembly.

The approximate counter is deliberately coarse and deterministic: no
tokenizer dependency, same answer on every machine.
"""

import math
from abc import ABC, abstractmethod


class TokenCounter(ABC):
    """Interface for counting tokens in text."""

    @abstractmethod
    def count(self, text: str) -> int:
        """Return the estimated token count for the given text."""
        ...


class ApproximateTokenCounter(TokenCounter):
    """ceil(len(text) / 4): roughly four characters per token of English."""

    def count(self, text: str) -> int:
        return math.ceil(len(text) / 4)
