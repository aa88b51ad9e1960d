from __future__ import annotations

import math
import random


def derive_stream_seed(seed: int, salt: int) -> int:
    return (int(seed) ^ int(salt)) & 0xFFFFFFFFFFFFFFFF


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)

    @property
    def seed(self) -> int:
        return self._seed

    def reset(self) -> None:
        self._random.seed(self._seed)

    def next_float(self) -> float:
        return self._random.random()

    def next_range(self, low: float, high: float) -> float:
        return self._random.uniform(low, high)

    def next_gauss(self, mu: float, sigma: float) -> float:
        return self._random.gauss(mu, sigma)

    def next_angle(self) -> float:
        return self._random.uniform(0.0, 2.0 * math.pi)

    def chance(self, probability: float) -> bool:
        if probability <= 0.0:
            return False
        return self._random.random() < probability
