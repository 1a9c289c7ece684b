"""
Seeded normal variates for dataset generation.

All draws go through a ``numpy.random.Generator`` built from a
``SeedSequence``, so the same seed gives bit-identical output and parallel
tasks can each be handed an independent, deterministically derived seed.
"""

from typing import Optional, Sequence, Union

import numpy as np

from ..exceptions import InvalidParameter

SeedLike = Union[None, int, np.random.SeedSequence]

FLOAT_NEAR_ZERO = 1e-15

__all__ = ["RandomVariateSource", "random_normal", "correlated_normal", "truncate"]


def _as_seed_sequence(seed: SeedLike) -> np.random.SeedSequence:
    if isinstance(seed, np.random.SeedSequence):
        return seed
    if seed is not None and (not isinstance(seed, (int, np.integer)) or seed < 0):
        raise InvalidParameter(f"seed must be a non-negative integer or SeedSequence, got {seed!r}")
    return np.random.SeedSequence(seed)


def _check_normal_args(n: int, sd: float):
    if not isinstance(n, (int, np.integer)) or n <= 0:
        raise InvalidParameter(f"n must be a positive integer, got {n!r}")
    if not np.isfinite(sd) or sd < 0:
        raise InvalidParameter(f"sd must be non-negative, got {sd}")


class RandomVariateSource:
    """Seeded source of (optionally correlated) normal variates.

    Args:
        seed: Integer seed, ``SeedSequence``, or ``None`` for fresh entropy.
    """

    def __init__(self, seed: SeedLike = None):
        self.seed_sequence = _as_seed_sequence(seed)
        self._rng = np.random.default_rng(self.seed_sequence)

    def normal(self, n: int, mean: float = 0.0, sd: float = 1.0) -> np.ndarray:
        """Draw *n* independent values from ``N(mean, sd)``."""
        _check_normal_args(n, sd)
        return self._rng.normal(mean, sd, size=n)

    def correlated_normal(
        self,
        x: Sequence[float],
        target_mean: float,
        target_sd: float,
        r: float,
        x_mean: Optional[float] = None,
        x_sd: Optional[float] = None,
    ) -> np.ndarray:
        """Draw a variate correlated with *x* at population correlation *r*.

        *x* is standardized with ``x_mean``/``x_sd`` when given (the known
        population moments), otherwise with its sample moments. A constant
        *x* standardizes to zeros, leaving only the independent part.

        Returns:
            Array of ``len(x)`` values scaled to ``target_mean``/``target_sd``.
        """
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 1 or x.size == 0:
            raise InvalidParameter("x must be a non-empty 1-D sequence")
        if not np.isfinite(r) or abs(r) > 1:
            raise InvalidParameter(f"Correlation must be between -1 and 1, got {r}")
        if not np.isfinite(target_sd) or target_sd < 0:
            raise InvalidParameter(f"target_sd must be non-negative, got {target_sd}")

        center = float(np.mean(x)) if x_mean is None else x_mean
        scale = float(np.std(x)) if x_sd is None else x_sd
        if scale > FLOAT_NEAR_ZERO:
            z = (x - center) / scale
        else:
            z = np.zeros_like(x)

        noise = self._rng.standard_normal(x.size)
        y = r * z + np.sqrt(1.0 - r * r) * noise
        return target_mean + target_sd * y

    @staticmethod
    def truncate(
        values: Sequence[float],
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> np.ndarray:
        """Clamp *values* into ``[minimum, maximum]``; ``None`` leaves a side open.

        Clamping piles out-of-range draws onto the bounds instead of
        redrawing them, so the tails become point masses at the bounds.
        """
        if minimum is not None and maximum is not None and minimum > maximum:
            raise InvalidParameter(f"minimum ({minimum}) must not exceed maximum ({maximum})")
        values = np.asarray(values, dtype=np.float64)
        if minimum is None and maximum is None:
            return values.copy()
        return np.clip(values, minimum, maximum)


def random_normal(n: int, mean: float, sd: float, seed: SeedLike) -> np.ndarray:
    """Draw *n* values from ``N(mean, sd)`` with a fresh generator for *seed*."""
    return RandomVariateSource(seed).normal(n, mean, sd)


def correlated_normal(
    x: Sequence[float],
    target_mean: float,
    target_sd: float,
    r: float,
    seed: SeedLike,
) -> np.ndarray:
    """Functional form of :meth:`RandomVariateSource.correlated_normal`."""
    return RandomVariateSource(seed).correlated_normal(x, target_mean, target_sd, r)


truncate = RandomVariateSource.truncate
