"""
Results processing for SimPower.

Turns replication outcomes into a power curve and assembles the result
dictionaries returned by ``SimPower.find_power`` / ``find_sample_size``.
"""

import math
import warnings
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class PowerCurve:
    """Empirical power by sample size.

    Attributes:
        powers: Sample size → power in [0, 1], NaN when no fit succeeded.
        n_used: Sample size → successful replications.
        n_failed: Sample size → failed replications.
    """

    powers: Dict[int, float]
    n_used: Dict[int, int] = field(default_factory=dict)
    n_failed: Dict[int, int] = field(default_factory=dict)

    @property
    def sample_sizes(self) -> List[int]:
        return sorted(self.powers)

    def __getitem__(self, sample_size: int) -> float:
        return self.powers[sample_size]

    def __len__(self) -> int:
        return len(self.powers)

    def known_points(self) -> List[Tuple[int, float]]:
        """``(sample_size, power)`` pairs with a defined power, ascending."""
        return [(n, self.powers[n]) for n in self.sample_sizes if not math.isnan(self.powers[n])]

    def failure_share(self, sample_size: int) -> float:
        total = self.n_used.get(sample_size, 0) + self.n_failed.get(sample_size, 0)
        return self.n_failed.get(sample_size, 0) / total if total else 0.0


class PowerAggregator:
    """Groups replication outcomes by sample size and computes power.

    Failed replications are left out of the denominator and counted
    separately; a size without any successful fit gets NaN power.
    """

    def __init__(self, min_successful: int = 10, max_failed_share: float = 0.03):
        """Initialise the aggregator.

        Args:
            min_successful: Sizes with fewer successful fits are flagged as
                low confidence.
            max_failed_share: Sizes whose failure share exceeds this are
                flagged as low confidence.
        """
        self.min_successful = min_successful
        self.max_failed_share = max_failed_share

    def aggregate(self, outcomes: Iterable) -> PowerCurve:
        significant: Counter = Counter()
        used: Counter = Counter()
        failed: Counter = Counter()

        for outcome in outcomes:
            n = outcome.sample_size
            if outcome.failed:
                failed[n] += 1
                continue
            used[n] += 1
            if outcome.significant:
                significant[n] += 1

        sizes = sorted(set(used) | set(failed))
        powers = {n: (significant[n] / used[n] if used[n] else math.nan) for n in sizes}
        return PowerCurve(
            powers=powers,
            n_used={n: used[n] for n in sizes},
            n_failed={n: failed[n] for n in sizes},
        )

    def low_confidence(self, curve: PowerCurve) -> List[int]:
        """Sample sizes whose power estimate rests on too few successful fits."""
        return [
            n
            for n in curve.sample_sizes
            if curve.n_used.get(n, 0) < self.min_successful or curve.failure_share(n) > self.max_failed_share
        ]

    def warn_failures(self, curve: PowerCurve):
        """Issue a warning for each size whose failure share exceeds the tolerance."""
        for n in curve.sample_sizes:
            share = curve.failure_share(n)
            if share > self.max_failed_share:
                warnings.warn(
                    f"{curve.n_failed[n]} of {curve.n_used[n] + curve.n_failed[n]} fits failed at "
                    f"sample size {n} ({share:.1%}); power at this size is less reliable",
                    stacklevel=2,
                )


def failure_reasons(outcomes: Iterable) -> Dict[str, int]:
    """Count failed replications by reason, most frequent first."""
    counts = Counter(o.failure_reason or "Unknown" for o in outcomes if o.failed)
    return dict(counts.most_common())


def build_power_result(
    design_summary: Dict[str, Any],
    formula: str,
    term: str,
    sample_size: int,
    alpha: float,
    n_replications: int,
    curve: PowerCurve,
    reasons: Dict[str, int],
    low_confidence: List[int],
) -> Dict[str, Any]:
    """Build the result dictionary for a single-size power analysis."""
    return {
        "model": {
            "design": design_summary,
            "formula": formula,
            "term": term,
            "sample_size": sample_size,
            "alpha": alpha,
            "n_replications": n_replications,
        },
        "results": {
            "power": curve.powers.get(sample_size, math.nan),
            "n_used": curve.n_used.get(sample_size, 0),
            "n_failed": curve.n_failed.get(sample_size, 0),
            "failure_reasons": reasons,
            "low_confidence": sample_size in low_confidence,
        },
    }


def build_sample_size_result(
    design_summary: Dict[str, Any],
    formula: str,
    term: str,
    sample_sizes: List[int],
    alpha: float,
    n_replications: int,
    target_powers: Tuple[float, ...],
    curve: PowerCurve,
    interpolated: Optional[Dict[int, float]],
    required: Dict[float, Optional[int]],
    reasons: Dict[str, int],
    low_confidence: List[int],
) -> Dict[str, Any]:
    """Build the result dictionary for a sample-size search."""
    return {
        "model": {
            "design": design_summary,
            "formula": formula,
            "term": term,
            "alpha": alpha,
            "n_replications": n_replications,
            "target_powers": list(target_powers),
            "sample_size_range": {
                "from_size": sample_sizes[0],
                "to_size": sample_sizes[-1],
                "by": sample_sizes[1] - sample_sizes[0] if len(sample_sizes) > 1 else 1,
            },
        },
        "results": {
            "sample_sizes_tested": list(sample_sizes),
            "powers": dict(curve.powers),
            "n_used": dict(curve.n_used),
            "n_failed": dict(curve.n_failed),
            "interpolated": interpolated,
            "required_sample_sizes": dict(required),
            "failure_reasons": reasons,
            "low_confidence": list(low_confidence),
        },
    }
