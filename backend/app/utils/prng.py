# backend/app/utils/prng.py
"""
Seeded linear congruential generator used for reproducible customer profiles.

Parameters are the classic (9301, 49297, 233280) triple:

    state = (state * 9301 + 49297) mod 233280
    value = state / 233280          -> [0, 1)

The seed for a customer is the sum of the character codes of its identifier,
so the same identifier always yields the same draw sequence.
"""
from __future__ import annotations

from typing import Sequence, TypeVar

T = TypeVar("T")


def seed_from_identifier(identifier: str) -> int:
    """Sum of the character codes of the identifier."""
    return sum(ord(ch) for ch in identifier)


class SeededLCG:
    MULTIPLIER = 9301
    INCREMENT = 49297
    MODULUS = 233280

    def __init__(self, seed: int):
        self.state = seed % self.MODULUS

    @classmethod
    def for_identifier(cls, identifier: str) -> "SeededLCG":
        return cls(seed_from_identifier(identifier))

    def random(self) -> float:
        """Advance the state and return a float in [0, 1)."""
        self.state = (self.state * self.MULTIPLIER + self.INCREMENT) % self.MODULUS
        return self.state / self.MODULUS

    def randint(self, low: int, high: int) -> int:
        """Integer in [low, high], both ends inclusive."""
        return low + int(self.random() * (high - low + 1))

    def uniform(self, low: float, high: float) -> float:
        return low + self.random() * (high - low)

    def choice(self, items: Sequence[T]) -> T:
        return items[int(self.random() * len(items))]
