"""Exponential retry backoff shared by every device connection."""
from __future__ import annotations
import random
from dataclasses import dataclass, field
from typing import Iterator, List

DEFAULT_BASE_DELAY_MS = 1000.0
DEFAULT_MULTIPLIER    = 2.0
DEFAULT_MAX_DELAY_MS  = 60000.0


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Stateless retry-delay calculator.

    ``delay = min(base * multiplier ** (attempt - 1), max)``, optionally
    perturbed by ``± jitter_fraction`` drawn uniformly. The caller owns the
    attempt counter; attempt 0 means no failure has happened yet.
    """
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    multiplier: float = DEFAULT_MULTIPLIER
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    jitter_fraction: float = 0.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self):
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be positive")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if not 0 <= self.jitter_fraction < 1:
            raise ValueError("jitter_fraction must be within [0, 1)")

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        return cls(
            base_delay_ms   = float(settings.BACKOFF_BASE_MS),
            multiplier      = float(settings.BACKOFF_MULTIPLIER),
            max_delay_ms    = float(settings.BACKOFF_MAX_MS),
            jitter_fraction = float(settings.BACKOFF_JITTER),
        )

    @property
    def initial_delay_ms(self) -> float:
        return self.base_delay_ms

    def nominal_delay(self, attempt: int) -> float:
        """Capped exponential delay for the given 1-based attempt, without jitter."""
        if attempt <= 0:
            return 0.0
        # multiplier ** n overflows to inf long before it matters; min() still caps it
        try:
            raw = self.base_delay_ms * (self.multiplier ** (attempt - 1))
        except OverflowError:
            raw = self.max_delay_ms
        return min(raw, self.max_delay_ms)

    def delay(self, attempt: int) -> float:
        """Delay actually waited before the next attempt (jitter applied)."""
        nominal = self.nominal_delay(attempt)
        if nominal == 0.0 or self.jitter_fraction == 0.0:
            return nominal
        return nominal * (1 + self.rng.uniform(-self.jitter_fraction, self.jitter_fraction))

    def sequence(self, attempts: int) -> List[float]:
        return list(self._iter_nominal(attempts))

    def _iter_nominal(self, attempts: int) -> Iterator[float]:
        for attempt in range(1, attempts + 1):
            yield self.nominal_delay(attempt)
