"""
Token counting and usage tracking.

Holds the four token buckets every provider reports in some form.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for one provider result or one aggregated row.

    Contains exact token counts as reported; no estimation.
    """
    input_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        for name in ("input_tokens", "cache_write_tokens", "cache_read_tokens", "output_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def total_tokens(self) -> int:
        """All tokens including cache reads (used to detect empty results)."""
        return self.input_tokens + self.cache_write_tokens + self.cache_read_tokens + self.output_tokens

    @property
    def billable_tokens(self) -> int:
        """Tokens counted on dashboards: input + cache writes + output."""
        return self.input_tokens + self.cache_write_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )
