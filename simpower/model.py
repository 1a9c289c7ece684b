"""
SimPower - Monte Carlo power estimation for factorial designs.

This module provides the main SimPower class for estimating power and
required sample size using Monte Carlo simulations.
"""

import multiprocessing as mp
import warnings
from itertools import product
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .core import (
    ConfounderSpec,
    DesignSpec,
    Factor,
    PowerAggregator,
    ReplicationDriver,
    SampleSizeGrid,
    StudyConfig,
    TermSelector,
    build_power_result,
    build_sample_size_result,
    failure_reasons,
    find_required_sample_sizes,
    interpolate,
)
from .exceptions import InvalidParameter, OutOfRange
from .utils.formatters import _format_results
from .utils.parsers import _parse_cell_values, _parse_equation
from .utils.validators import (
    _validate_alpha,
    _validate_confounder,
    _validate_correlation,
    _validate_factor,
    _validate_max_failed,
    _validate_parallel_settings,
    _validate_power,
    _validate_replications,
    _validate_sample_size,
    _validate_sample_size_range,
    _validate_seed,
    _validate_timeout,
)
from .utils.visualization import _create_power_plot


class SimPower:
    """Monte Carlo power estimation for between/within factorial designs.

    Describes the hypothesized population (cell means, sd, within-subject
    correlation, optional confounder), simulates datasets of increasing size,
    fits the analysis model to each, and reports how often the term under
    test is significant.

    Configuration methods (``set_*``) return ``self`` for method chaining.
    The design is frozen into a ``StudyConfig`` at the start of every run,
    so changing settings between runs never affects a run in progress.

    Attributes:
        seed: Base seed for per-replication seeds (default: 2137).
        power: Target power levels in percent (default: ``[80.0, 90.0]``).
        alpha: Significance level (default: 0.05).
        n_simulations: Replications per sample size (default: 200).
        parallel: Run replications on a joblib worker pool (default: False).
        n_cores: Worker count when parallel.
        timeout: Per-fit wall-clock limit in seconds (default: None).
        max_failed_simulations: Tolerated share of failed fits per size.

    Example:
        >>> study = SimPower(between=("group", ["Control", "Alcohol"]),
        ...                  within=("measurement", ["Pre", "Post"]))
        >>> study.set_means("Control:Pre=400, Control:Post=400, Alcohol:Pre=400, Alcohol:Post=425")
        >>> study.set_sd(100).set_within_correlation(0.5)
        >>> study.find_sample_size(from_size=20, to_size=200, by=20)
    """

    def __init__(
        self,
        between: Tuple[str, Sequence[str]],
        within: Optional[Tuple[str, Sequence[str]]] = None,
        between_reference: Optional[str] = None,
        within_reference: Optional[str] = None,
        dv: str = "dv",
        id_column: str = "id",
    ):
        """Declare the design factors.

        Args:
            between: ``(name, levels)`` of the between-subject factor.
            within: ``(name, levels)`` of the optional within-subject factor.
            between_reference: Baseline level of *between*; defaults to its
                first level.
            within_reference: Baseline level of *within*; defaults to its
                first level.
            dv: Outcome column name.
            id_column: Subject id column name.
        """
        self._between = Factor(between[0], tuple(between[1]), between_reference)
        _validate_factor(self._between, "between").raise_if_invalid()
        self._within: Optional[Factor] = None
        if within is not None:
            self._within = Factor(within[0], tuple(within[1]), within_reference)
            _validate_factor(self._within, "within").raise_if_invalid()
        self._dv = dv
        self._id_column = id_column

        # Run configuration
        self.seed: Optional[int] = 2137
        self.power: List[float] = [80.0, 90.0]
        self.alpha = 0.05
        self.n_simulations = 200
        self.parallel = False
        self.n_cores = max(1, (mp.cpu_count() or 1) // 2)
        self.timeout: Optional[float] = None
        self.max_failed_simulations = 0.03

        # Population parameters
        self._means: Optional[Tuple[float, ...]] = None
        self._sd: Union[float, Tuple[float, ...]] = 1.0
        self._within_r = 0.5
        self._confounder: Optional[ConfounderSpec] = None
        self._formula: Optional[str] = None

        factors = " × ".join(f"{f.name} ({', '.join(f.levels)})" for f in self._factors)
        print(f"Design: {factors}, {len(self.cells)} cells")

    @classmethod
    def from_design(cls, design: DesignSpec) -> "SimPower":
        """Build a facade around an existing ``DesignSpec``."""
        within = None if design.within is None else (design.within.name, design.within.levels)
        study = cls(
            between=(design.between.name, design.between.levels),
            within=within,
            between_reference=design.between.reference,
            within_reference=None if design.within is None else design.within.reference,
            dv=design.dv,
            id_column=design.id_column,
        )
        study._means = design.means
        study._sd = design.sd
        study._within_r = design.within_r
        study._confounder = design.confounder
        return study

    # =========================================================================
    # Design properties
    # =========================================================================

    @property
    def _factors(self) -> Tuple[Factor, ...]:
        return (self._between,) if self._within is None else (self._between, self._within)

    @property
    def cells(self) -> List[Tuple[str, Optional[str]]]:
        """Design cells in mean-vector order."""
        within_levels = self._within.levels if self._within is not None else (None,)
        return list(product(self._between.levels, within_levels))

    @property
    def formula(self) -> str:
        """Analysis formula; the design's full-factorial formula unless set."""
        return self._formula if self._formula is not None else self.design.default_formula()

    @property
    def design(self) -> DesignSpec:
        """The current ``DesignSpec``, validated on access.

        Raises:
            InvalidParameter: Means not set, or the parameters are
                inconsistent.
        """
        if self._means is None:
            raise InvalidParameter("Cell means are not set. Call set_means() first.")
        return DesignSpec(
            between=self._between,
            within=self._within,
            means=self._means,
            sd=self._sd,
            within_r=self._within_r,
            confounder=self._confounder,
            dv=self._dv,
            id_column=self._id_column,
        )

    # =========================================================================
    # Population parameters
    # =========================================================================

    def _cell_vector(self, values, what: str) -> Tuple[float, ...]:
        if isinstance(values, str):
            return tuple(_parse_cell_values(values, self.cells))
        values = tuple(float(v) for v in values)
        if len(values) != len(self.cells):
            raise InvalidParameter(f"{what} needs {len(self.cells)} values (one per cell), got {len(values)}")
        return values

    def set_means(self, means: Union[str, Sequence[float]]):
        """Set the population mean of every design cell.

        Args:
            means: One value per cell in between-major order, or an
                assignment string: ``"Control=400, Alcohol=425"`` for
                between-only designs, ``"Control:Pre=400, ..."`` otherwise.

        Returns:
            self: For method chaining.

        Raises:
            InvalidParameter: Wrong number of values or unknown cell names.
        """
        self._means = self._cell_vector(means, "means")
        return self

    def set_sd(self, sd: Union[float, str, Sequence[float]]):
        """Set the population sd, shared (scalar) or per cell.

        Returns:
            self: For method chaining.
        """
        if isinstance(sd, (int, float)) and not isinstance(sd, bool):
            if sd < 0:
                raise InvalidParameter(f"sd must be non-negative, got {sd}")
            self._sd = float(sd)
        else:
            values = self._cell_vector(sd, "sd")
            if any(v < 0 for v in values):
                raise InvalidParameter(f"sd values must be non-negative, got {list(values)}")
            self._sd = values
        return self

    def set_within_correlation(self, r: float):
        """Set the correlation between a subject's repeated measurements.

        Returns:
            self: For method chaining.
        """
        _validate_correlation(r, "within_correlation").raise_if_invalid()
        if self._within is None:
            print("Warning: design has no within-subject factor; within correlation is ignored")
        self._within_r = float(r)
        return self

    def set_confounder(
        self,
        name: str,
        r: float,
        mean: float,
        sd: float,
        correlated_with: Optional[str] = None,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        round_to_int: bool = False,
    ):
        """Add a per-subject covariate correlated with one measurement.

        Args:
            name: Column name (e.g. ``"age"``).
            r: Correlation with the anchor measurement.
            mean: Covariate mean.
            sd: Covariate sd.
            correlated_with: Within level to correlate with; leave ``None``
                in between-only designs (correlates with the outcome).
            minimum: Values below are clamped to this bound.
            maximum: Values above are clamped to this bound.
            round_to_int: Round to whole numbers after clamping.

        Returns:
            self: For method chaining.
        """
        if correlated_with is None and self._within is not None:
            correlated_with = self._within.levels[0]
        confounder = ConfounderSpec(
            name=name,
            r=r,
            mean=mean,
            sd=sd,
            correlated_with=correlated_with,
            minimum=minimum,
            maximum=maximum,
            round_to_int=round_to_int,
        )
        taken = {f.name for f in self._factors} | {self._dv, self._id_column}
        _validate_confounder(confounder, self._within, taken).raise_if_invalid()
        self._confounder = confounder
        return self

    def set_formula(self, formula: str):
        """Set the analysis formula, e.g. ``"dv ~ group * measurement + (1|id)"``.

        Returns:
            self: For method chaining.
        """
        _parse_equation(formula)
        self._formula = formula
        return self

    # =========================================================================
    # Run configuration
    # =========================================================================

    def set_parallel(self, enable: bool = True, n_cores: Optional[int] = None):
        """Enable or disable parallel replication on a joblib worker pool.

        Args:
            enable: ``True`` for parallel, ``False`` for sequential.
            n_cores: Worker count. Defaults to ``cpu_count // 2``.

        Returns:
            self: For method chaining.
        """
        if enable is False:
            self.parallel, self.n_cores = False, 1
            return self

        settings, result = _validate_parallel_settings(enable, n_cores)
        result.raise_if_invalid()
        self.parallel, self.n_cores = settings
        return self

    def set_seed(self, seed: Optional[int] = None):
        """Set the base seed; ``None`` draws a fresh one for every run.

        Returns:
            self: For method chaining.
        """
        _validate_seed(seed).raise_if_invalid()
        self.seed = seed
        if seed is not None:
            print(f"Seed set to: {seed}")
        else:
            print("Random seeding enabled")
        return self

    def set_power(self, power: Union[float, Sequence[float]]):
        """Set one or more target power levels in percent (0-100).

        Returns:
            self: For method chaining.
        """
        levels = [power] if isinstance(power, (int, float)) else list(power)
        if not levels:
            raise InvalidParameter("At least one target power is required")
        for level in levels:
            _validate_power(level).raise_if_invalid()
            if level == 0:
                raise InvalidParameter("Target power must be above 0")
        self.power = sorted(float(level) for level in levels)
        return self

    def set_alpha(self, alpha: float):
        """Set the significance level (0-0.25). Default is 0.05.

        Returns:
            self: For method chaining.
        """
        _validate_alpha(alpha).raise_if_invalid()
        self.alpha = float(alpha)
        return self

    def set_simulations(self, n_simulations: int):
        """Set the number of replications per sample size.

        Returns:
            self: For method chaining.
        """
        result = _validate_replications(n_simulations)
        result.raise_if_invalid()
        for warning in result.warnings:
            warnings.warn(warning, stacklevel=2)
        self.n_simulations = int(n_simulations)
        return self

    def set_timeout(self, seconds: Optional[float]):
        """Set a per-fit wall-clock limit; a slower fit counts as failed.

        The timed-out fit cannot be interrupted: it keeps running on its
        helper thread until statsmodels returns, and its result is dropped.
        Many timeouts in a row therefore still cost CPU in each worker; pick
        a limit well above the typical fit time.

        Returns:
            self: For method chaining.
        """
        _validate_timeout(seconds).raise_if_invalid()
        self.timeout = None if seconds is None else float(seconds)
        return self

    def set_max_failed_simulations(self, percentage: float):
        """Set the tolerated share (0-1) of failed fits per sample size.

        Sizes above the tolerance are reported as low confidence and raise
        a warning. Default is 0.03 (3%).

        Returns:
            self: For method chaining.
        """
        _validate_max_failed(percentage).raise_if_invalid()
        self.max_failed_simulations = float(percentage)
        return self

    # =========================================================================
    # Analyses
    # =========================================================================

    def find_power(
        self,
        sample_size: int,
        target_test: Union[None, str, TermSelector] = None,
        print_results: bool = True,
        summary: str = "short",
        return_results: bool = False,
        progress_callback=None,
        cancel_check=None,
    ):
        """
        Estimate power at one per-cell sample size.

        Args:
            sample_size: Subjects per between-subject cell.
            target_test: Term under test - a ``TermSelector``, a factor name
                (its main effect), ``"interaction"``, or an exact coefficient
                name. Defaults to the interaction for within designs and the
                between-factor effect otherwise.
            print_results: Whether to print results
            summary: Output detail level ("short" or "long")
            return_results: Return results dict
            progress_callback: Progress reporting control:
                - ``None`` (default): auto-use ``PrintReporter`` when
                  *print_results* is ``True``.
                - ``False``: explicitly disable progress.
                - callable ``(current, total)``: custom callback.
            cancel_check: Optional callable returning ``True`` to abort.

        Returns:
            dict or None: If *return_results* is ``True``, returns a
            results dictionary with keys ``"model"`` (metadata) and
            ``"results"`` (power estimate). Returns ``None`` otherwise.
        """
        _validate_sample_size(sample_size).raise_if_invalid()
        config = self._build_config(SampleSizeGrid.single(sample_size, self.n_simulations), target_test)
        term = config.resolved_term

        outcomes = self._run(config, print_results, progress_callback, cancel_check)

        aggregator = PowerAggregator(max_failed_share=config.max_failed_share)
        curve = aggregator.aggregate(outcomes)
        aggregator.warn_failures(curve)

        result = build_power_result(
            design_summary=_design_summary(config.design),
            formula=config.formula,
            term=term,
            sample_size=sample_size,
            alpha=config.alpha,
            n_replications=config.grid.n_replications,
            curve=curve,
            reasons=failure_reasons(outcomes),
            low_confidence=aggregator.low_confidence(curve),
        )

        if print_results:
            print(f"\n{'=' * 80}")
            print("MONTE CARLO POWER ANALYSIS RESULTS")
            print(f"{'=' * 80}")
            print(_format_results("power", result, summary))

        return result if return_results else None

    def find_sample_size(
        self,
        target_test: Union[None, str, TermSelector] = None,
        from_size: int = 20,
        to_size: int = 200,
        by: int = 10,
        print_results: bool = True,
        summary: str = "short",
        return_results: bool = False,
        progress_callback=None,
        cancel_check=None,
    ):
        """
        Find the smallest per-cell sample size reaching each target power.

        Power is simulated on the grid ``from_size..to_size`` step *by*, then
        linearly interpolated to every integer size in that range.

        Args:
            target_test: Term under test (see ``find_power``).
            from_size: Minimum sample size to test
            to_size: Maximum sample size to test
            by: Step size between sample sizes
            print_results: Whether to print results
            summary: Output detail level; ``"long"`` also draws the power
                curve.
            return_results: Return results dict
            progress_callback: See ``find_power``.
            cancel_check: Optional callable returning ``True`` to abort.

        Returns:
            dict or None: If *return_results* is ``True``, returns a
            results dictionary with keys ``"model"`` (metadata) and
            ``"results"`` (per-size power, interpolated curve, required
            sizes per target). Returns ``None`` otherwise.
        """
        validation_result = _validate_sample_size_range(from_size, to_size, by)
        for warning in validation_result.warnings:
            print(f"Warning: {warning}")
        validation_result.raise_if_invalid()

        config = self._build_config(SampleSizeGrid(from_size, to_size, by, self.n_simulations), target_test)
        term = config.resolved_term

        outcomes = self._run(config, print_results, progress_callback, cancel_check)

        aggregator = PowerAggregator(max_failed_share=config.max_failed_share)
        curve = aggregator.aggregate(outcomes)
        aggregator.warn_failures(curve)

        try:
            interpolated = interpolate(curve)
        except OutOfRange as e:
            print(f"Warning: cannot interpolate power curve ({e})")
            interpolated = None
            required: Dict[float, Optional[int]] = {threshold: None for threshold in config.target_powers}
        else:
            required = find_required_sample_sizes(interpolated, config.target_powers)

        result = build_sample_size_result(
            design_summary=_design_summary(config.design),
            formula=config.formula,
            term=term,
            sample_sizes=config.grid.sample_sizes,
            alpha=config.alpha,
            n_replications=config.grid.n_replications,
            target_powers=config.target_powers,
            curve=curve,
            interpolated=None if interpolated is None else dict(interpolated.powers),
            required=required,
            reasons=failure_reasons(outcomes),
            low_confidence=aggregator.low_confidence(curve),
        )

        if print_results:
            print(f"\n{'=' * 80}")
            print("SAMPLE SIZE ANALYSIS RESULTS")
            print(f"{'=' * 80}")
            print(_format_results("sample_size", result, summary))

            if summary == "long":
                _create_power_plot(
                    sample_sizes=result["results"]["sample_sizes_tested"],
                    powers=result["results"]["powers"],
                    interpolated=result["results"]["interpolated"],
                    required=result["results"]["required_sample_sizes"],
                    title=f"Power for {term}",
                )

        return result if return_results else None

    # =========================================================================
    # Internals
    # =========================================================================

    def _build_config(self, grid: SampleSizeGrid, target_test) -> StudyConfig:
        """Freeze the current settings into a ``StudyConfig``."""
        return StudyConfig(
            design=self.design,
            grid=grid,
            selector=self._parse_target_test(target_test),
            formula=self._formula,
            alpha=self.alpha,
            target_powers=tuple(p / 100 for p in self.power),
            seed=self.seed,
            parallel=self.parallel,
            n_jobs=self.n_cores,
            timeout=self.timeout,
            max_failed_share=self.max_failed_simulations,
        )

    def _parse_target_test(self, target_test) -> TermSelector:
        if isinstance(target_test, TermSelector):
            return target_test
        if target_test is None:
            if self._within is not None:
                return TermSelector.interaction()
            return TermSelector.main_effect(self._between.name)
        if not isinstance(target_test, str) or not target_test.strip():
            raise InvalidParameter(f"target_test must be a TermSelector or a non-empty string, got {target_test!r}")

        target_test = target_test.strip()
        if target_test == "interaction":
            return TermSelector.interaction()
        if target_test in (f.name for f in self._factors):
            return TermSelector.main_effect(target_test)
        return TermSelector.named(target_test)

    def _run(self, config: StudyConfig, print_results: bool, progress_callback, cancel_check):
        """Run the replication grid with the resolved progress reporter."""
        from .progress import PrintReporter, ProgressReporter, compute_total_replications

        if progress_callback is None:
            effective_cb = PrintReporter() if print_results else None
        elif progress_callback is False:
            effective_cb = None
        else:
            effective_cb = progress_callback

        reporter = None
        if effective_cb is not None:
            total = compute_total_replications(config.grid.n_replications, len(config.grid.sample_sizes))
            reporter = ProgressReporter(total, effective_cb)
            reporter.start()

        outcomes = ReplicationDriver(config).run(progress=reporter, cancel_check=cancel_check)

        if reporter is not None:
            reporter.finish()
        return outcomes

    def __repr__(self):
        factors = ", ".join(f"{f.name}={list(f.levels)}" for f in self._factors)
        return f"SimPower({factors})"


def _design_summary(design: DesignSpec) -> Dict[str, Any]:
    """Plain-dict description of *design* for result metadata."""
    labels = [b if w is None else f"{b}:{w}" for b, w in design.cells]
    summary: Dict[str, Any] = {
        "between": {"name": design.between.name, "levels": list(design.between.levels), "reference": design.between.reference},
        "within": None,
        "means": dict(zip(labels, design.means)),
        "sd": design.sd if isinstance(design.sd, float) else dict(zip(labels, design.sd)),
        "confounder": None,
    }
    if design.within is not None:
        summary["within"] = {"name": design.within.name, "levels": list(design.within.levels), "reference": design.within.reference}
        summary["within_r"] = design.within_r
    if design.confounder is not None:
        summary["confounder"] = {
            "name": design.confounder.name,
            "r": design.confounder.r,
            "correlated_with": design.confounder.correlated_with,
        }
    return summary
