"""Deterministic random streams keyed by run seed and step count.

Every output step draws from its own ``numpy.random.Generator`` derived from
``SeedSequence(seed, spawn_key=(STEP_KEY, step_count))``. Restarting a run
from any recorded step therefore reproduces the same continuation, and the
stream position can be checkpointed with ``get_state``/``set_state``.
"""

from __future__ import annotations

import hashlib
import math
from typing import Any

import numpy as np

INIT_KEY = 0
STEP_KEY = 1


def seed_to_entropy(seed: int | str) -> int:
    """Normalise an int or string seed to non-negative SeedSequence entropy."""
    if isinstance(seed, (int, np.integer)) and not isinstance(seed, bool):
        value = int(seed)
        if value >= 0:
            return value
        seed = str(value)
    digest = hashlib.sha256(str(seed).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "little")


class RandomStream:
    """Seeded sampling helpers used by the simulation engine."""

    def __init__(self, seed: int | str, key: tuple[int, ...] = (INIT_KEY,)) -> None:
        self.seed = seed
        self.key = tuple(int(k) for k in key)
        sequence = np.random.SeedSequence(seed_to_entropy(seed), spawn_key=self.key)
        self.generator = np.random.default_rng(sequence)

    @classmethod
    def for_init(cls, seed: int | str) -> "RandomStream":
        return cls(seed, (INIT_KEY,))

    @classmethod
    def for_step(cls, seed: int | str, step_count: int) -> "RandomStream":
        return cls(seed, (STEP_KEY, int(step_count)))

    def random(self) -> float:
        return float(self.generator.random())

    def uniform(self, low: float, high: float) -> float:
        """Uniform draw on [low, high); an infinite bound means "never"."""
        value = self.random()
        if not (math.isfinite(low) and math.isfinite(high)):
            return math.inf
        return low + value * (high - low)

    def gaussian(self, size: int | tuple[int, ...] | None = None) -> Any:
        if size is None:
            return float(self.generator.standard_normal())
        return self.generator.standard_normal(size)

    def get_state(self) -> dict:
        return {
            "seed": self.seed,
            "key": list(self.key),
            "bit_generator": self.generator.bit_generator.state,
        }

    def set_state(self, state: dict) -> None:
        if tuple(state["key"]) != self.key or state["seed"] != self.seed:
            raise ValueError("Random state belongs to a different stream")
        self.generator.bit_generator.state = state["bit_generator"]
