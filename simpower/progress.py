"""
Progress and cancellation for replication grids.

The driver advances a ``ProgressReporter`` once per finished grid cell (or
once per finished batch in parallel runs). The reporter forwards
``(done, total)`` pairs to any callable: ``PrintReporter`` for the console,
``TqdmReporter`` for a tqdm bar, or a user function.
"""

import sys
from typing import Callable, Optional, Sequence


class SimulationCancelled(Exception):
    """The run was stopped by ``cancel_check`` or Ctrl-C.

    ``outcomes`` holds every replication finished before the stop, ordered
    by grid coordinate; ``PowerAggregator`` accepts it unchanged.
    """

    def __init__(self, message: str = "Simulation cancelled by user", outcomes: Sequence = ()):
        super().__init__(message)
        self.outcomes = tuple(outcomes)


class ProgressReporter:
    """Counts finished replications and calls *callback* every few of them.

    Args:
        total: Grid cells in the run (see ``compute_total_replications``).
        callback: Called as ``callback(done, total)``.
        update_every: Cells between callbacks; ``max(1, total // 200)`` by
            default, about 200 updates per run. The last cell always fires.
    """

    def __init__(
        self,
        total: int,
        callback: Callable[[int, int], None],
        update_every: Optional[int] = None,
    ):
        self.total = total
        self._callback = callback
        self._current = 0
        self.update_every = update_every if update_every is not None else max(1, total // 200)

    @property
    def current(self) -> int:
        return self._current

    @property
    def fraction(self) -> float:
        return self._current / self.total if self.total else 1.0

    def start(self):
        self._current = 0
        self._callback(0, self.total)

    def advance(self, n: int = 1):
        # Batches may cross an update boundary without landing on it
        before = self._current // self.update_every
        self._current = min(self._current + n, self.total)
        if self._current >= self.total or self._current // self.update_every > before:
            self._callback(self._current, self.total)

    def finish(self):
        """Report completion, unless the last ``advance`` already did."""
        if self._current < self.total:
            self._current = self.total
            self._callback(self.total, self.total)


class PrintReporter:
    """Writes ``Progress:  45.2% (723/1600 replications)`` to stderr, in place."""

    def __call__(self, current: int, total: int):
        if total <= 0:
            return
        sys.stderr.write(f"\rProgress: {100.0 * current / total:5.1f}% ({current}/{total} replications)")
        if current >= total:
            sys.stderr.write("\n")
        sys.stderr.flush()


class TqdmReporter:
    """Drives a tqdm bar; keyword arguments go to ``tqdm``.

    ``study.find_sample_size(progress_callback=TqdmReporter(desc="age model"))``
    """

    def __init__(self, **tqdm_kwargs):
        self._tqdm_kwargs = tqdm_kwargs
        self._bar = None

    def __call__(self, current: int, total: int):
        from tqdm import tqdm

        if self._bar is None:
            self._bar = tqdm(total=total, unit="rep", **self._tqdm_kwargs)
        if current > self._bar.n:
            self._bar.update(current - self._bar.n)
        if current >= total:
            self._bar.close()
            self._bar = None


def compute_total_replications(n_replications: int, n_sample_sizes: int = 1) -> int:
    """Grid cells in a run: replications per size times number of sizes."""
    return n_replications * n_sample_sizes
