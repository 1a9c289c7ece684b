"""Unit tests for simpower.core.simulation: replication driver."""

import math
from unittest.mock import MagicMock

import numpy as np
import pytest

from simpower.core import simulation
from simpower.core.design import SampleSizeGrid, StudyConfig
from simpower.core.selectors import TermSelector
from simpower.core.simulation import ReplicationDriver, derive_seed, run_replication
from simpower.exceptions import FitDidNotConverge, TermNotFound
from simpower.progress import SimulationCancelled
from simpower.stats import models


def _config(design, from_size=20, to_size=40, by=20, n_reps=5, **kwargs):
    kwargs.setdefault("selector", TermSelector.main_effect("group"))
    return StudyConfig(
        design=design,
        grid=SampleSizeGrid(from_size, to_size, by, n_reps),
        **kwargs,
    )


class TestSeeds:
    def test_derived_from_coordinates(self):
        a = derive_seed(2137, 20, 3).generate_state(4)
        b = derive_seed(2137, 20, 3).generate_state(4)
        np.testing.assert_array_equal(a, b)

    def test_distinct_per_cell(self):
        states = {tuple(derive_seed(2137, n, rep).generate_state(2)) for n in (20, 40) for rep in range(10)}
        assert len(states) == 20


class TestRunReplication:
    def test_reproducible(self, two_group_design):
        config = _config(two_group_design)
        a = run_replication(config, "group:Alcohol", 7, 20, 0)
        b = run_replication(config, "group:Alcohol", 7, 20, 0)
        assert a == b

    def test_significance_uses_alpha(self, two_group_design):
        outcome = run_replication(_config(two_group_design, alpha=0.05), "group:Alcohol", 7, 20, 0)
        assert outcome.significant == (outcome.p_value <= 0.05)
        assert not outcome.failed

    def test_failed_fit_is_recorded(self, monkeypatch, two_group_design):
        def failing_fit(*args, **kwargs):
            raise FitDidNotConverge("singular")

        monkeypatch.setattr(models, "fit", failing_fit)
        outcome = run_replication(_config(two_group_design), "group:Alcohol", 7, 20, 3)
        assert outcome.failed
        assert not outcome.significant
        assert math.isnan(outcome.p_value)
        assert outcome.failure_reason == "singular"
        assert outcome.coordinates == (20, 3)


class TestDriver:
    def test_one_outcome_per_cell_in_order(self, two_group_design):
        outcomes = ReplicationDriver(_config(two_group_design)).run()
        assert [o.coordinates for o in outcomes] == list(SampleSizeGrid(20, 40, 20, 5))

    def test_same_seed_same_outcomes(self, two_group_design):
        a = ReplicationDriver(_config(two_group_design, seed=11)).run()
        b = ReplicationDriver(_config(two_group_design, seed=11)).run()
        assert a == b

    def test_different_seed_different_outcomes(self, two_group_design):
        a = ReplicationDriver(_config(two_group_design, seed=11)).run()
        b = ReplicationDriver(_config(two_group_design, seed=12)).run()
        assert [o.p_value for o in a] != [o.p_value for o in b]

    def test_unseeded_run_works(self, two_group_design):
        outcomes = ReplicationDriver(_config(two_group_design, seed=None, n_reps=2)).run()
        assert len(outcomes) == 4

    def test_progress_advanced_per_cell(self, two_group_design):
        progress = MagicMock()
        ReplicationDriver(_config(two_group_design)).run(progress=progress)
        assert sum(call.args[0] for call in progress.advance.call_args_list) == 10

    def test_term_not_found_before_grid(self, monkeypatch, two_group_design):
        calls = []
        real_fit = models.fit

        def counting_fit(*args, **kwargs):
            calls.append(1)
            return real_fit(*args, **kwargs)

        monkeypatch.setattr(models, "fit", counting_fit)
        config = _config(two_group_design, selector=TermSelector.named("age"))
        with pytest.raises(TermNotFound) as exc_info:
            ReplicationDriver(config).run()
        assert "selected as term 'age'" in str(exc_info.value)
        assert "group:Alcohol" in exc_info.value.available
        # Only the dry run was fitted
        assert len(calls) == 1

    def test_dry_run_all_failed(self, monkeypatch, two_group_design):
        monkeypatch.setattr(models, "fit", MagicMock(side_effect=FitDidNotConverge("boom")))
        with pytest.raises(FitDidNotConverge, match="Dry-run"):
            ReplicationDriver(_config(two_group_design)).run()

    def test_failures_do_not_abort_grid(self, monkeypatch, two_group_design):
        real_fit = models.fit
        state = {"calls": 0}

        def flaky_fit(*args, **kwargs):
            state["calls"] += 1
            if state["calls"] > 1 and state["calls"] % 3 == 0:
                raise FitDidNotConverge("flaky")
            return real_fit(*args, **kwargs)

        monkeypatch.setattr(models, "fit", flaky_fit)
        outcomes = ReplicationDriver(_config(two_group_design)).run()
        assert len(outcomes) == 10
        assert any(o.failed for o in outcomes)
        assert not all(o.failed for o in outcomes)


class TestCancellation:
    def test_cancel_check_keeps_partial_outcomes(self, two_group_design):
        calls = {"n": 0}

        def cancel_after_four():
            calls["n"] += 1
            return calls["n"] > 4

        with pytest.raises(SimulationCancelled) as exc_info:
            ReplicationDriver(_config(two_group_design)).run(cancel_check=cancel_after_four)

        partial = exc_info.value.outcomes
        assert len(partial) == 4
        assert [o.coordinates for o in partial] == [(20, 0), (20, 1), (20, 2), (20, 3)]

    def test_keyboard_interrupt_becomes_cancelled(self, monkeypatch, two_group_design):
        real_run = simulation.run_replication
        state = {"calls": 0}

        def interrupting_run(*args, **kwargs):
            state["calls"] += 1
            if state["calls"] == 3:
                raise KeyboardInterrupt
            return real_run(*args, **kwargs)

        monkeypatch.setattr(simulation, "run_replication", interrupting_run)
        with pytest.raises(SimulationCancelled) as exc_info:
            ReplicationDriver(_config(two_group_design)).run()
        assert len(exc_info.value.outcomes) == 2

    def test_partial_outcomes_aggregate(self, two_group_design):
        from simpower.core.results import PowerAggregator

        calls = {"n": 0}

        def cancel_after_seven():
            calls["n"] += 1
            return calls["n"] > 7

        with pytest.raises(SimulationCancelled) as exc_info:
            ReplicationDriver(_config(two_group_design)).run(cancel_check=cancel_after_seven)

        curve = PowerAggregator().aggregate(exc_info.value.outcomes)
        assert curve.n_used == {20: 5, 40: 2}


class TestParallel:
    def test_matches_sequential(self, two_group_design):
        sequential = ReplicationDriver(_config(two_group_design, n_reps=4)).run()
        parallel = ReplicationDriver(_config(two_group_design, n_reps=4, parallel=True, n_jobs=2)).run()
        assert parallel == sequential

    def test_pool_failure_falls_back(self, monkeypatch, capsys, two_group_design):
        import joblib

        def broken_parallel(*args, **kwargs):
            raise OSError("no workers")

        monkeypatch.setattr(joblib, "Parallel", broken_parallel)
        config = _config(two_group_design, n_reps=3, parallel=True, n_jobs=2)
        outcomes = ReplicationDriver(config).run()
        assert len(outcomes) == 6
        assert "Falling back to sequential" in capsys.readouterr().out
