"""Short-code generation with an explicit strong/degraded random source split.

Flow Diagram — generate_unique()
================================
::
    ┌─────────────┐
    │ attempt < N │◄─────────────┐
    └──────┬──────┘              │
           ▼                     │
    ┌─────────────┐              │
    │ generate()   │             │
    │ strong src   │             │
    └──────┬──────┘              │
    FAILED?│                     │
    ┌─────┴─────┐                │
    │ YES        │ NO            │
    ▼            ▼               │
┌─────────┐  ┌─────────┐         │
│degraded │  │ exists? │── YES ──┘
│ + WARN  │  │ (oracle)│
│ + metric│  └────┬────┘
└────┬────┘       │ NO
     └──────►─────┤
                  ▼
            ┌─────────┐
            │ return  │
            │  code   │
            └─────────┘

Key Behaviours
===============
- The strong source is nanoid, which draws from os.urandom.
- The degraded source is only used when the strong one raises, and every use is
  logged at WARNING and counted in ``shortlink_codegen_degraded_total``.
- After ``max_attempts`` taken candidates, CodeExhausted is raised instead of
  looping; repeated collisions at 62^6 mean something is wrong operationally.
"""

import logging
import random
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from nanoid import generate
from prometheus_client import Counter

from shortlink.enums import RandomSourceKind
from shortlink.errors import CodeExhausted

__all__ = [
    "ALPHABET",
    "RandomSource",
    "StrongRandomSource",
    "DegradedRandomSource",
    "CodeGenerator",
]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

logger = logging.getLogger(__name__)

CODEGEN_DEGRADED_TOTAL = Counter(
    "shortlink_codegen_degraded_total",
    "Short codes produced by the degraded (non-cryptographic) random source",
)
CODEGEN_COLLISIONS_TOTAL = Counter(
    "shortlink_codegen_collisions_total",
    "Generated short codes rejected because they were already taken",
)


class RandomSource(Protocol):
    kind: RandomSourceKind

    def draw(self, alphabet: str, length: int) -> str: ...


class StrongRandomSource:
    kind = RandomSourceKind.STRONG

    def draw(self, alphabet: str, length: int) -> str:
        return generate(alphabet, length)


class DegradedRandomSource:
    """Time-seeded PRNG. Predictable; only acceptable as a logged last resort."""

    kind = RandomSourceKind.DEGRADED

    def __init__(self) -> None:
        self._rng = random.Random(time.time_ns())

    def draw(self, alphabet: str, length: int) -> str:
        return "".join(self._rng.choice(alphabet) for _ in range(length))


class CodeGenerator:
    def __init__(
        self,
        length: int = 6,
        max_attempts: int = 5,
        strong: RandomSource | None = None,
        degraded: RandomSource | None = None,
        alphabet: str = ALPHABET,
    ) -> None:
        assert length > 0, f"length must be positive, got {length!r}"
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        self.length = length
        self.max_attempts = max_attempts
        self.alphabet = alphabet
        self._strong = strong or StrongRandomSource()
        self._degraded = degraded or DegradedRandomSource()

    def generate(self) -> str:
        try:
            return self._strong.draw(self.alphabet, self.length)
        except (NotImplementedError, OSError) as exc:
            CODEGEN_DEGRADED_TOTAL.inc()
            logger.warning(
                f"Strong random source unavailable ({exc}); short code drawn from degraded source",
                extra={"random_source": RandomSourceKind.DEGRADED.value},
            )
            return self._degraded.draw(self.alphabet, self.length)

    async def generate_unique(self, exists: Callable[[str], Awaitable[bool]]) -> str:
        """Return a code that ``exists`` reports as free.

        Raises:
            CodeExhausted: every one of ``max_attempts`` candidates was taken.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generate()
            if not await exists(candidate):
                return candidate
            CODEGEN_COLLISIONS_TOTAL.inc()
            logger.info(f"Short code collision on attempt {attempt}: {candidate}")

        logger.error(f"Short code space exhausted after {self.max_attempts} attempts")
        raise CodeExhausted(self.max_attempts)
