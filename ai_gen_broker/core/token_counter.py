"""
Token counting and usage tracking.

Uses a fixed character-based approximation instead of a real tokenizer so
that admission and accounting agree regardless of which strategy answered.
"""

import math
from dataclasses import dataclass
from typing import Dict

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count as ceil(len(text) / 4).

    Args:
        text: Any prompt or response text

    Returns:
        Estimated number of tokens (0 for empty text)
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TokenUsage:
    """Estimated token accounting for a single interaction."""
    input_tokens: int
    output_tokens: int

    def __post_init__(self):
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "input": self.input_tokens,
            "output": self.output_tokens,
            "total": self.total_tokens,
        }
