"""
FlightSurety Oracles Status Code Generator

Each oracle answers a request with one status code drawn uniformly
from the canonical set {0, 10, 20, 30, 40, 50}.
"""

from __future__ import annotations

import random
from typing import Optional, Tuple

from .models import StatusCode


STATUS_CODES: Tuple[StatusCode, ...] = tuple(StatusCode)


class StatusCodeGenerator:
    """
    Uniform selection over the canonical status codes.

    Holds no state of its own beyond the random source, so one instance
    can be shared by every oracle in the pool.

    Example:
        generator = StatusCodeGenerator()
        code = generator.next()  # e.g. StatusCode.LATE_AIRLINE
    """

    def __init__(self, rng: Optional[random.Random] = None):
        """
        Args:
            rng: Random source (defaults to the module-level generator);
                 pass a seeded Random for reproducible runs
        """
        self._rng = rng or random

    def next(self) -> StatusCode:
        """Return a uniformly selected status code."""
        return self._rng.choice(STATUS_CODES)
