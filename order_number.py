"""
Order Number Generator
======================
Human-readable, roughly time-sortable order identifiers:

    ORD-<epoch milliseconds>-<random 0..999>

Uniqueness here is best effort. The unique constraint on
orders.order_number is the real guarantee; the engine regenerates on
collision.
"""

import logging
import random
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


DEFAULT_PREFIX = "ORD"
RANDOM_SUFFIX_MAX = 999


class OrderNumberGenerator:
    """Produces order numbers from a clock and a random source."""

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None
    ):
        self.prefix = prefix
        self._clock = clock or time.time
        self._rng = rng or random.SystemRandom()
        self.generated_count = 0

    def generate(self) -> str:
        """Return a fresh candidate order number."""
        millis = int(self._clock() * 1000)
        suffix = self._rng.randint(0, RANDOM_SUFFIX_MAX)
        self.generated_count += 1
        return f"{self.prefix}-{millis}-{suffix}"

    def __call__(self) -> str:
        return self.generate()
