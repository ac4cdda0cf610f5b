"""
Token counting and usage tracking.

Estimates token counts for simulated completions.
"""

import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4
OUTPUT_SIZE_RATIO = 2


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_input_tokens(text: str) -> int:
    """Estimate prompt tokens at four characters per token, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_output_tokens(text: str) -> int:
    """Estimate completion tokens as twice the prompt estimate, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN * OUTPUT_SIZE_RATIO)


def estimate_usage(prompt: str) -> TokenUsage:
    return TokenUsage(
        prompt_tokens=estimate_input_tokens(prompt),
        completion_tokens=estimate_output_tokens(prompt),
    )
