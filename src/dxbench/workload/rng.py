"""
Seeded samplers for workload synthesis
======================================

Every sampler draws from a :class:`random.Random` seeded by the caller, so a
fixed seed, fixed parameters and a fixed call sequence always produce the same
integers.

The bounded Zipf sampler uses rejection-inversion (W. Hörmann and
G. Derflinger, "Rejection-inversion to generate variates from monotone
discrete distributions", 1996). ``P(k)`` is proportional to ``(v + k) ** -s``
for ``k`` in ``[0, imax]``; the result is shifted into ``[minimum, maximum]``.
"""

from __future__ import annotations

import math
import random

MAX_SEED = 2**64 - 1


def check_seed(seed: int) -> int:
    if isinstance(seed, bool) or not isinstance(seed, int):
        raise TypeError("seed must be an integer")
    if seed < 0 or seed > MAX_SEED:
        raise ValueError(f"seed must be between 0 and {MAX_SEED}, got {seed}")
    return seed


def make_rng(seed: int) -> random.Random:
    return random.Random(check_seed(seed))


def derive_seed(seed: int, salt: int) -> int:
    """Independent-but-reproducible child seed, e.g. one per (index, field) workload."""
    return (seed * 1_000_003 + salt * 7919 + 1) % (MAX_SEED + 1)


class UniformSampler:
    def __init__(self, rng: random.Random, minimum: int, maximum: int):
        if maximum < minimum:
            raise ValueError(f"maximum ({maximum}) must be >= minimum ({minimum})")
        self._rng = rng
        self.minimum = int(minimum)
        self.maximum = int(maximum)

    def sample(self) -> int:
        return self._rng.randint(self.minimum, self.maximum)


class ZipfSampler:
    def __init__(self, rng: random.Random, exponent: float, v: float, minimum: int, maximum: int):
        if not exponent > 1.0:
            raise ValueError(f"zipf exponent must be > 1, got {exponent}")
        if not v >= 1.0:
            raise ValueError(f"zipf v must be >= 1, got {v}")
        if maximum < minimum:
            raise ValueError(f"maximum ({maximum}) must be >= minimum ({minimum})")
        self._rng = rng
        self.minimum = int(minimum)
        self.maximum = int(maximum)
        self.exponent = float(exponent)
        self.v = float(v)

        self._imax = float(self.maximum - self.minimum)
        self._one_minus_q = 1.0 - self.exponent
        self._one_minus_q_inv = 1.0 / self._one_minus_q
        self._hxm = self._h(self._imax + 0.5)
        self._hx0_minus_hxm = self._h(0.5) - math.exp(math.log(self.v) * -self.exponent) - self._hxm
        self._s = 1.0 - self._hinv(self._h(1.5) - math.exp(-self.exponent * math.log(self.v + 1.0)))

    def _h(self, x: float) -> float:
        return math.exp(self._one_minus_q * math.log(self.v + x)) * self._one_minus_q_inv

    def _hinv(self, x: float) -> float:
        return math.exp(self._one_minus_q_inv * math.log(self._one_minus_q * x)) - self.v

    def sample(self) -> int:
        while True:
            r = self._rng.random()
            ur = self._hxm + r * self._hx0_minus_hxm
            x = self._hinv(ur)
            k = math.floor(x + 0.5)
            if k - x <= self._s:
                break
            if ur >= self._h(k + 0.5) - math.exp(-math.log(k + self.v) * self.exponent):
                break
        return self.minimum + min(int(k), int(self._imax))


def zipf_v_from_ratio(exponent: float, ratio: float, span: int) -> float:
    """Pick ``v`` so that ``P(max) / P(min) == ratio`` over ``span`` values.

    Returns ``math.inf`` for ``ratio == 1`` (every value equally likely).
    """
    if not 0.0 < ratio <= 1.0:
        raise ValueError(f"zipf ratio must be in (0, 1], got {ratio}")
    if not exponent > 1.0:
        raise ValueError(f"zipf exponent must be > 1, got {exponent}")
    root = ratio ** (1.0 / exponent)
    if root >= 1.0:
        return math.inf
    return max(1.0, span * root / (1.0 - root))


def zipf_from_ratio(rng: random.Random, exponent: float, ratio: float, minimum: int, maximum: int):
    v = zipf_v_from_ratio(exponent, ratio, maximum - minimum)
    if math.isinf(v):
        return UniformSampler(rng, minimum, maximum)
    return ZipfSampler(rng, exponent, v, minimum, maximum)
