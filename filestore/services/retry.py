"""
Retry budget and backoff for storage operations.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Delay after failed attempt ``n`` (0-based) is ``2**n * base_delay``
    seconds: 1s, then 2s with the default base.
    """

    max_attempts: int = MAX_ATTEMPTS
    base_delay: float = 1.0

    def attempts_for(self, provider_count: int) -> int:
        """At most one attempt per provider, capped at ``max_attempts``."""
        return max(0, min(provider_count, self.max_attempts))

    def delay_for(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay

    async def backoff(self, attempt: int) -> None:
        delay = self.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
