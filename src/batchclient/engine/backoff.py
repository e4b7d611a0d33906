"""
Exponential backoff with cap and jitter.
"""

import math
import random
from typing import Callable, Optional


class Backoff:
    """
    Maps a 1-based retry attempt to a delay in milliseconds.

    The delay doubles per attempt from ``initial_backoff_ms``, is capped at
    ``max_backoff_ms`` and then sampled uniformly from
    ``[capped * (1 - jitter), capped * (1 + jitter)]``. Inject ``rng`` to
    make the sample deterministic.
    """

    def __init__(
        self,
        initial_backoff_ms: float,
        max_backoff_ms: float,
        jitter_ratio: float = 0.0,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.jitter_ratio = jitter_ratio
        self._random = rng or random.random

    def compute_delay_ms(self, attempt: int) -> float:
        unclamped = self.initial_backoff_ms * 2 ** max(0, attempt - 1)
        clamped = min(self.max_backoff_ms, unclamped)

        jitter = max(0.0, self.jitter_ratio)
        if jitter == 0 or clamped == 0:
            return clamped

        low = clamped * (1 - jitter)
        high = clamped * (1 + jitter)
        return math.floor(low + (high - low) * self._random())

    @classmethod
    def from_config(cls, config, rng: Optional[Callable[[], float]] = None) -> "Backoff":
        """Build a calculator from BatchClientConfig settings."""
        return cls(
            initial_backoff_ms=config.initial_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
            jitter_ratio=config.jitter_ratio,
            rng=rng,
        )
