"""
Study design and run configuration.

``DesignSpec`` describes the hypothesized data-generating model,
``SampleSizeGrid`` the sample sizes and replication count to simulate, and
``StudyConfig`` bundles both with the analysis settings. All three are frozen
and validated on construction, so a malformed design fails before any
simulation starts.
"""

from dataclasses import dataclass
from itertools import product
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Union

from ..utils.validators import (
    _validate_alpha,
    _validate_design,
    _validate_max_failed,
    _validate_replications,
    _validate_sample_size_range,
    _validate_seed,
    _validate_timeout,
    _ValidationResult,
)

if TYPE_CHECKING:
    from .selectors import TermSelector

Cell = Tuple[str, Optional[str]]


@dataclass(frozen=True)
class Factor:
    """A categorical design factor.

    Args:
        name: Column name of the factor in generated datasets.
        levels: Ordered level names.
        reference: Baseline level for treatment coding; defaults to the first
            level.
    """

    name: str
    levels: Tuple[str, ...]
    reference: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "levels", tuple(self.levels))
        if self.reference is None and self.levels:
            object.__setattr__(self, "reference", self.levels[0])

    @property
    def non_reference_levels(self) -> Tuple[str, ...]:
        return tuple(level for level in self.levels if level != self.reference)

    def term(self, level: str) -> str:
        """Coefficient name of *level* against the reference, e.g. ``group:Alcohol``."""
        return f"{self.name}:{level}"


@dataclass(frozen=True)
class ConfounderSpec:
    """A per-subject covariate correlated with an existing measurement.

    Args:
        name: Column name of the covariate.
        r: Target population correlation.
        mean: Mean of the covariate.
        sd: Standard deviation of the covariate.
        correlated_with: Within-level whose value the covariate correlates
            with, or ``None`` for the outcome of a between-only design.
        minimum: Lower clamp bound (``None`` for open).
        maximum: Upper clamp bound (``None`` for open).
        round_to_int: Round the truncated values to whole numbers.
    """

    name: str
    r: float
    mean: float
    sd: float
    correlated_with: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    round_to_int: bool = False


@dataclass(frozen=True)
class DesignSpec:
    """Hypothesized data-generating model.

    ``means`` (and ``sd`` when given per cell) are in between-major order:
    for each between level, one value per within level.

    Example:
        >>> DesignSpec(
        ...     between=Factor("group", ("Control", "Alcohol")),
        ...     within=Factor("measurement", ("Pre", "Post")),
        ...     means=(400, 400, 400, 425),
        ...     sd=100,
        ...     within_r=0.5,
        ... )
    """

    between: Factor
    means: Tuple[float, ...]
    sd: Union[float, Tuple[float, ...]] = 1.0
    within: Optional[Factor] = None
    within_r: float = 0.5
    confounder: Optional[ConfounderSpec] = None
    dv: str = "dv"
    id_column: str = "id"

    def __post_init__(self):
        object.__setattr__(self, "means", tuple(float(m) for m in self.means))
        if isinstance(self.sd, (list, tuple)):
            object.__setattr__(self, "sd", tuple(float(s) for s in self.sd))
        else:
            object.__setattr__(self, "sd", float(self.sd))
        object.__setattr__(self, "within_r", float(self.within_r))
        _validate_design(self).raise_if_invalid()

    @property
    def within_levels(self) -> Tuple[Optional[str], ...]:
        return self.within.levels if self.within is not None else (None,)

    @property
    def n_cells(self) -> int:
        n_within = len(self.within.levels) if self.within is not None else 1
        return len(self.between.levels) * n_within

    @property
    def cells(self) -> List[Cell]:
        """All (between level, within level) pairs in mean-vector order."""
        return list(product(self.between.levels, self.within_levels))

    def cell_parameters(self) -> Dict[Cell, Tuple[float, float]]:
        """Map each cell to its ``(mean, sd)``."""
        sds = self.sd if isinstance(self.sd, tuple) else (self.sd,) * self.n_cells
        return {cell: (mean, sd) for cell, mean, sd in zip(self.cells, self.means, sds)}

    @property
    def factors(self) -> Tuple[Factor, ...]:
        return (self.between,) if self.within is None else (self.between, self.within)

    def default_formula(self) -> str:
        """Full-factorial formula over the design factors plus the confounder.

        Within-subject designs get a ``(1|id)`` random intercept.
        """
        rhs = " * ".join(f.name for f in self.factors)
        if self.confounder is not None:
            rhs += f" + {self.confounder.name}"
        if self.within is not None:
            rhs += f" + (1|{self.id_column})"
        return f"{self.dv} ~ {rhs}"

    def term_names(self) -> List[str]:
        """Coefficient names a full-factorial fit of this design produces."""
        names = ["Intercept"]
        names += [self.between.term(level) for level in self.between.non_reference_levels]
        if self.within is not None:
            names += [self.within.term(level) for level in self.within.non_reference_levels]
            names += [
                f"{self.between.term(b)} × {self.within.term(w)}"
                for b in self.between.non_reference_levels
                for w in self.within.non_reference_levels
            ]
        if self.confounder is not None:
            names.append(self.confounder.name)
        return names


@dataclass(frozen=True)
class SampleSizeGrid:
    """Per-cell sample sizes to simulate and replications per size."""

    from_size: int
    to_size: int
    by: int = 1
    n_replications: int = 200

    def __post_init__(self):
        result = _validate_sample_size_range(self.from_size, self.to_size, self.by)
        result = result.merge(_validate_replications(self.n_replications))
        result.raise_if_invalid()

    @classmethod
    def single(cls, sample_size: int, n_replications: int = 200) -> "SampleSizeGrid":
        return cls(sample_size, sample_size, 1, n_replications)

    @property
    def sample_sizes(self) -> List[int]:
        return list(range(self.from_size, self.to_size + 1, self.by))

    @property
    def n_cells(self) -> int:
        return len(self.sample_sizes) * self.n_replications

    def __iter__(self):
        """Yield every ``(sample_size, replication_index)`` grid cell."""
        return iter(product(self.sample_sizes, range(self.n_replications)))


@dataclass(frozen=True)
class StudyConfig:
    """Everything a run needs; built once and passed to every component.

    Args:
        design: The data-generating model.
        grid: Sample sizes and replication count.
        selector: ``TermSelector`` naming the coefficient under test.
        formula: R-style model formula; defaults to the design's
            full-factorial formula.
        alpha: Significance level.
        target_powers: Power thresholds (fractions) to locate sample sizes for.
        seed: Base seed for per-replication seed derivation.
        parallel: Run the grid on a joblib worker pool.
        n_jobs: Worker count for the pool.
        timeout: Per-fit wall-clock limit in seconds (``None`` for none).
        max_failed_share: Failure share above which a size is flagged.
    """

    design: DesignSpec
    grid: SampleSizeGrid
    selector: "TermSelector"
    formula: Optional[str] = None
    alpha: float = 0.05
    target_powers: Tuple[float, ...] = (0.80, 0.90)
    seed: Optional[int] = 2137
    parallel: bool = False
    n_jobs: int = 1
    timeout: Optional[float] = None
    max_failed_share: float = 0.03

    def __post_init__(self):
        if self.formula is None:
            object.__setattr__(self, "formula", self.design.default_formula())
        object.__setattr__(self, "target_powers", tuple(float(p) for p in self.target_powers))

        result = _validate_alpha(self.alpha)
        result = result.merge(_validate_seed(self.seed))
        result = result.merge(_validate_timeout(self.timeout))
        result = result.merge(_validate_max_failed(self.max_failed_share))
        bad_powers = [p for p in self.target_powers if not 0 < p <= 1]
        if bad_powers:
            result = result.merge(_ValidationResult(False, [f"Target powers must be in (0, 1], got {bad_powers}"], []))
        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs < 1:
            result = result.merge(_ValidationResult(False, [f"n_jobs must be a positive integer, got {self.n_jobs}"], []))
        result.raise_if_invalid()

    @property
    def resolved_term(self) -> str:
        return self.selector.resolve(self.design)


def design_from_levels(
    between: Tuple[str, Sequence[str]],
    means: Sequence[float],
    sd: Union[float, Sequence[float]] = 1.0,
    within: Optional[Tuple[str, Sequence[str]]] = None,
    **kwargs,
) -> DesignSpec:
    """Shorthand: ``design_from_levels(("group", ["Control", "Alcohol"]), [400, 425], 100)``."""
    between_factor = Factor(between[0], tuple(between[1]), kwargs.pop("between_reference", None))
    within_factor = None
    if within is not None:
        within_factor = Factor(within[0], tuple(within[1]), kwargs.pop("within_reference", None))
    sd_value = tuple(sd) if isinstance(sd, (list, tuple)) else sd
    return DesignSpec(between=between_factor, within=within_factor, means=tuple(means), sd=sd_value, **kwargs)
