"""
FlightSurety Oracles Test - Status Code Generator

Validates:
- Every generated code belongs to {0, 10, 20, 30, 40, 50}
- Selection is uniform: no value (including 0) is systematically excluded
- A seeded random source gives reproducible sequences
"""

import random
from collections import Counter

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flightsurety_oracles.models import StatusCode
from flightsurety_oracles.status import StatusCodeGenerator, STATUS_CODES


CANONICAL_CODES = {0, 10, 20, 30, 40, 50}

SAMPLES = 10_000

# 1/6 over 10,000 draws has a standard deviation of ~0.0037
FREQUENCY_TOLERANCE = 0.025


class TestStatusCodeSet:
    """Tests for the canonical code set."""

    def test_canonical_values(self):
        assert {int(code) for code in STATUS_CODES} == CANONICAL_CODES

    def test_names_match_contract_constants(self):
        assert StatusCode.UNKNOWN == 0
        assert StatusCode.ON_TIME == 10
        assert StatusCode.LATE_AIRLINE == 20
        assert StatusCode.LATE_WEATHER == 30
        assert StatusCode.LATE_TECHNICAL == 40
        assert StatusCode.LATE_OTHER == 50


class TestStatusCodeGenerator:
    """Tests for uniform status code selection."""

    def test_codes_are_canonical(self):
        generator = StatusCodeGenerator()
        for _ in range(1000):
            code = generator.next()
            assert isinstance(code, StatusCode)
            assert int(code) in CANONICAL_CODES

    @pytest.mark.parametrize("seed", [None, 7, 2024])
    def test_uniform_distribution(self, seed):
        """Each value appears with frequency 1/6 within tolerance."""
        rng = random.Random(seed) if seed is not None else None
        generator = StatusCodeGenerator(rng=rng)

        counts = Counter(int(generator.next()) for _ in range(SAMPLES))

        assert set(counts) == CANONICAL_CODES
        for code in CANONICAL_CODES:
            frequency = counts[code] / SAMPLES
            assert abs(frequency - 1 / 6) < FREQUENCY_TOLERANCE, (
                f"code {code} frequency {frequency:.4f}"
            )

    def test_unknown_is_not_excluded(self):
        """0 must be reachable (the first element of the set)."""
        generator = StatusCodeGenerator(rng=random.Random(1))
        assert any(generator.next() == StatusCode.UNKNOWN for _ in range(500))

    def test_never_out_of_range(self):
        """No selection past the end of the set (no None, no IndexError)."""
        generator = StatusCodeGenerator(rng=random.Random(99))
        drawn = [generator.next() for _ in range(SAMPLES)]
        assert None not in drawn
        assert max(drawn) == StatusCode.LATE_OTHER

    def test_seeded_generators_repeat(self):
        first = StatusCodeGenerator(rng=random.Random(42))
        second = StatusCodeGenerator(rng=random.Random(42))
        assert [first.next() for _ in range(50)] == [second.next() for _ in range(50)]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
