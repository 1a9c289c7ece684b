"""
Power-curve interpolation and required sample size search.

The empirical curve is not guaranteed to be monotonic, so the search scans
sizes in increasing order and stops at the first one reaching the threshold.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

import numpy as np

from ..exceptions import OutOfRange, SampleSizeNotFound
from .results import PowerCurve


@dataclass(frozen=True)
class InterpolatedCurve:
    """Power for every integer sample size in ``[min_n, max_n]``."""

    min_n: int
    max_n: int
    powers: Dict[int, float]

    @property
    def sample_sizes(self) -> List[int]:
        return list(range(self.min_n, self.max_n + 1))

    def __getitem__(self, sample_size: int) -> float:
        if sample_size not in self.powers:
            raise OutOfRange(f"Sample size {sample_size} outside [{self.min_n}, {self.max_n}]")
        return self.powers[sample_size]

    def __len__(self) -> int:
        return len(self.powers)


def interpolate(curve: PowerCurve, min_n: Optional[int] = None, max_n: Optional[int] = None) -> InterpolatedCurve:
    """Linearly interpolate *curve* at every integer in ``[min_n, max_n]``.

    Known points are returned unchanged. Sizes with undefined (NaN) power
    are skipped when choosing the neighbours to interpolate between.

    Args:
        curve: Empirical power curve.
        min_n: Smallest size; defaults to the smallest known size.
        max_n: Largest size; defaults to the largest known size.

    Raises:
        OutOfRange: No known points, ``min_n > max_n``, or the range reaches
            beyond the known points (no extrapolation).
    """
    points = curve.known_points()
    if not points:
        raise OutOfRange("Power curve has no sample size with a defined power")

    xs = np.array([p[0] for p in points], dtype=np.float64)
    ys = np.array([p[1] for p in points], dtype=np.float64)
    lo, hi = int(xs[0]), int(xs[-1])

    min_n = lo if min_n is None else int(min_n)
    max_n = hi if max_n is None else int(max_n)
    if min_n > max_n:
        raise OutOfRange(f"min_n ({min_n}) exceeds max_n ({max_n})")
    if min_n < lo or max_n > hi:
        raise OutOfRange(f"Requested range [{min_n}, {max_n}] exceeds computed range [{lo}, {hi}]")

    grid = np.arange(min_n, max_n + 1)
    values = np.interp(grid, xs, ys)
    powers = {int(n): float(v) for n, v in zip(grid, values)}
    # Known points exactly as estimated
    for n, p in points:
        if min_n <= n <= max_n:
            powers[n] = p
    return InterpolatedCurve(min_n=min_n, max_n=max_n, powers=powers)


def required_sample_size(curve: Union[InterpolatedCurve, PowerCurve], threshold: float) -> int:
    """Smallest sample size whose power is at least *threshold*.

    A ``PowerCurve`` is interpolated over its full known range first.

    Raises:
        SampleSizeNotFound: No size in range reaches *threshold*.
    """
    if isinstance(curve, PowerCurve):
        curve = interpolate(curve)
    for n in curve.sample_sizes:
        power = curve.powers[n]
        if not math.isnan(power) and power >= threshold:
            return n
    raise SampleSizeNotFound(threshold, curve.max_n)


def find_required_sample_sizes(
    curve: Union[InterpolatedCurve, PowerCurve],
    thresholds: Iterable[float],
) -> Dict[float, Optional[int]]:
    """Map each threshold to its required sample size, ``None`` when not reached."""
    if isinstance(curve, PowerCurve):
        curve = interpolate(curve)
    required: Dict[float, Optional[int]] = {}
    for threshold in thresholds:
        try:
            required[threshold] = required_sample_size(curve, threshold)
        except SampleSizeNotFound:
            required[threshold] = None
    return required
