"""
Token counting and usage tracking.

Estimates token counts for prompts and completions without a
model-specific tokenizer.
"""

import math
from dataclasses import dataclass

# Conservative approximation for English prose
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text.

    Args:
        text: Text to measure (None is treated as empty)

    Returns:
        Estimated token count, never less than 1
    """
    content = text or ""
    return max(1, math.ceil(len(content) / CHARS_PER_TOKEN))
