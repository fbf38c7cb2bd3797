"""
Token usage reported by a model provider.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Exact token counts for one model call."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        """Validate counts are non-negative."""
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens
