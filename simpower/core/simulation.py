"""
Replication execution for SimPower.

For every ``(sample_size, replication_index)`` cell of the grid the driver
generates a dataset, fits the model, and records whether the term under test
is significant. Cells are independent: each gets its own seed derived from
its grid coordinates, so runs are reproducible whatever order the worker
pool executes them in.
"""

import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from ..exceptions import FitDidNotConverge, TermNotFound
from ..progress import SimulationCancelled
from ..stats import data_generation, models
from .design import StudyConfig


@dataclass(frozen=True)
class ReplicationOutcome:
    """Result of one grid cell.

    Failed fits have ``failed=True``, ``significant=False``, a NaN p-value
    and the failure reason; they are excluded from the power denominator.
    """

    sample_size: int
    replication_index: int
    p_value: float
    significant: bool
    failed: bool = False
    failure_reason: Optional[str] = None

    @property
    def coordinates(self) -> Tuple[int, int]:
        return (self.sample_size, self.replication_index)


def derive_seed(base_seed: int, sample_size: int, replication_index: int) -> np.random.SeedSequence:
    """Independent seed for one grid cell, derived from its coordinates."""
    return np.random.SeedSequence(base_seed, spawn_key=(int(sample_size), int(replication_index)))


def _dry_run_seed(base_seed: int, sample_size: int) -> np.random.SeedSequence:
    # Shorter spawn key, so never equal to a grid cell seed
    return np.random.SeedSequence(base_seed, spawn_key=(int(sample_size),))


def run_replication(config: StudyConfig, term: str, base_seed: int, sample_size: int, replication_index: int) -> ReplicationOutcome:
    """Generate, fit, and test one grid cell.

    ``FitDidNotConverge`` is turned into a failed outcome; any other error
    propagates.
    """
    seed = derive_seed(base_seed, sample_size, replication_index)
    dataset = data_generation.generate(config.design, sample_size, seed)
    try:
        table = models.fit(dataset, config.formula, timeout=config.timeout)
    except FitDidNotConverge as e:
        return ReplicationOutcome(sample_size, replication_index, math.nan, False, failed=True, failure_reason=str(e))

    p_value = table.p_value(term)
    return ReplicationOutcome(sample_size, replication_index, p_value, bool(p_value <= config.alpha))


def _run_batch(config: StudyConfig, term: str, base_seed: int, cells: List[Tuple[int, int]]) -> List[ReplicationOutcome]:
    return [run_replication(config, term, base_seed, n, rep) for n, rep in cells]


class ReplicationDriver:
    """Runs the full (sample size x replication) grid for one ``StudyConfig``.

    A dry-run fit at the largest grid size resolves the term under test
    before the grid starts, so a selector that matches nothing fails fast
    with ``TermNotFound``. Parallel runs use a joblib ``loky`` pool and fall
    back to sequential execution if the pool breaks.
    """

    def __init__(self, config: StudyConfig, batch_size: Optional[int] = None):
        """Initialise the driver.

        Args:
            config: Frozen study configuration.
            batch_size: Grid cells per pool task; defaults to one pool task
                per ``4 * n_jobs`` share of the grid.
        """
        self.config = config
        self.batch_size = batch_size

    def resolve_term(self, base_seed: int) -> str:
        """Resolve the selector and confirm the fitted model has that term.

        Raises:
            TermNotFound: The selector's term is absent from the dry-run fit.
        """
        term = self.config.resolved_term
        sizes = self.config.grid.sample_sizes
        # Largest sizes first; a failed fit says nothing about the term
        last_error: Optional[FitDidNotConverge] = None
        for sample_size in sorted(set(sizes), reverse=True)[:3]:
            dataset = data_generation.generate(self.config.design, sample_size, _dry_run_seed(base_seed, sample_size))
            try:
                table = models.fit(dataset, self.config.formula, timeout=self.config.timeout)
            except FitDidNotConverge as e:
                last_error = e
                continue
            if term not in table:
                raise TermNotFound(term, table.terms, description=self.config.selector.describe())
            return term
        raise FitDidNotConverge(f"Dry-run fit failed at every tried sample size: {last_error}")

    def run(
        self,
        progress=None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> Tuple[ReplicationOutcome, ...]:
        """Run every grid cell and return outcomes ordered by grid coordinate.

        Args:
            progress: Optional ``ProgressReporter`` advanced once per cell.
            cancel_check: Optional callable returning ``True`` to abort.

        Raises:
            SimulationCancelled: On ``cancel_check()`` or ``KeyboardInterrupt``;
                ``exc.outcomes`` holds the cells finished so far.
        """
        base_seed = self.config.seed if self.config.seed is not None else int(np.random.SeedSequence().entropy % 2**63)
        term = self.resolve_term(base_seed)
        cells = list(self.config.grid)

        collected: List[ReplicationOutcome] = []
        try:
            if self.config.parallel and self.config.n_jobs > 1:
                self._run_parallel(term, base_seed, cells, collected, progress, cancel_check)
            else:
                self._run_sequential(term, base_seed, cells, collected, progress, cancel_check)
        except KeyboardInterrupt:
            raise SimulationCancelled("Simulation interrupted", outcomes=_ordered(collected)) from None

        return _ordered(collected)

    def _run_sequential(self, term, base_seed, cells, collected, progress, cancel_check):
        for sample_size, replication_index in cells:
            if cancel_check is not None and cancel_check():
                raise SimulationCancelled(outcomes=_ordered(collected))
            collected.append(run_replication(self.config, term, base_seed, sample_size, replication_index))
            if progress is not None:
                progress.advance(1)

    def _run_parallel(self, term, base_seed, cells, collected, progress, cancel_check):
        from joblib import Parallel, delayed

        batch_size = self.batch_size or max(1, math.ceil(len(cells) / (4 * self.config.n_jobs)))
        batches = [cells[i : i + batch_size] for i in range(0, len(cells), batch_size)]

        try:
            results = Parallel(
                n_jobs=self.config.n_jobs,
                backend="loky",
                verbose=0,
                return_as="generator",
            )(delayed(_run_batch)(self.config, term, base_seed, batch) for batch in batches)
            for batch_outcomes in results:
                if cancel_check is not None and cancel_check():
                    raise SimulationCancelled(outcomes=_ordered(collected))
                collected.extend(batch_outcomes)
                if progress is not None:
                    progress.advance(len(batch_outcomes))
        except (SimulationCancelled, KeyboardInterrupt):
            raise
        except Exception as e:
            print(f"Warning: Parallel execution failed ({e}). Falling back to sequential.")
            done = {o.coordinates for o in collected}
            remaining = [cell for cell in cells if cell not in done]
            self._run_sequential(term, base_seed, remaining, collected, progress, cancel_check)


def _ordered(outcomes: Iterable[ReplicationOutcome]) -> Tuple[ReplicationOutcome, ...]:
    return tuple(sorted(outcomes, key=lambda o: o.coordinates))
