"""
Shared test doubles.

StubRng replaces the numpy Generator inside PriceEngine so price paths are
exact: uniform() returns the midpoint of its range (market factor 1.0) and
standard_normal() returns whatever `noise` is set to.
"""
from datetime import datetime

# Local wall-clock times, so business-hour checks are timezone independent
NOON = datetime(2024, 1, 15, 12, 0, 0).timestamp()
NIGHT = datetime(2024, 1, 15, 3, 0, 0).timestamp()


class StubRng:
    def __init__(self, noise: float = 0.0):
        self.noise = noise

    def uniform(self, low, high):
        return (low + high) / 2.0

    def standard_normal(self):
        return self.noise


class FixedClock:
    def __init__(self, now: float = NOON):
        self.now = now

    def __call__(self) -> float:
        return self.now

