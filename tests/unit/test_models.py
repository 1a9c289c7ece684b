"""Unit tests for simpower.stats.models: fitting and term naming."""

import time

import numpy as np
import pytest
from scipy import stats

from simpower.core.design import DesignSpec, Factor
from simpower.exceptions import FitDidNotConverge, InvalidParameter, TermNotFound
from simpower.stats import models
from simpower.stats.data_generation import generate
from simpower.stats.models import CoefficientRow, CoefficientTable, _normalize_term, fit


class TestTermNames:
    def test_between_only(self, two_group_design):
        table = fit(generate(two_group_design, 30, seed=1), "dv ~ group")
        assert table.terms == ["Intercept", "group:Alcohol"]
        assert table.model_type == "ols"

    def test_full_factorial_ols(self, pre_post_design):
        table = fit(generate(pre_post_design, 30, seed=1), "dv ~ group * measurement")
        assert set(table.terms) == {
            "Intercept",
            "group:Alcohol",
            "measurement:Post",
            "group:Alcohol × measurement:Post",
        }

    def test_names_match_design_scheme(self, pre_post_age_design):
        dataset = generate(pre_post_age_design, 40, seed=1)
        table = fit(dataset, pre_post_age_design.default_formula())
        assert set(table.terms) == set(pre_post_age_design.term_names())

    def test_reference_level_respected(self):
        design = DesignSpec(
            between=Factor("group", ("Control", "Alcohol"), reference="Alcohol"),
            means=(400, 425),
            sd=100,
        )
        table = fit(generate(design, 30, seed=1), "dv ~ group")
        assert "group:Control" in table
        assert "group:Alcohol" not in table

    def test_equals_separator(self, two_group_design):
        table = fit(generate(two_group_design, 30, seed=1), "dv = group")
        assert "group:Alcohol" in table

    def test_normalize_plain_names(self):
        assert _normalize_term("Intercept") == "Intercept"
        assert _normalize_term("age") == "age"
        assert (
            _normalize_term("C(group, Treatment(reference='Control'))[T.Alcohol]:C(measurement, Treatment(reference='Pre'))[T.Post]")
            == "group:Alcohol × measurement:Post"
        )

    def test_normalize_orders_interaction_by_factor_order(self):
        raw = "C(measurement, Treatment(reference='Pre'))[T.Post]:C(group, Treatment(reference='Control'))[T.Alcohol]"
        assert _normalize_term(raw, ["group", "measurement"]) == "group:Alcohol × measurement:Post"
        assert _normalize_term("C(group, Treatment(reference='Control'))[T.Alcohol]:age", ["group"]) == "group:Alcohol × age"


class TestOls:
    def test_matches_two_sample_t_test(self, two_group_design):
        data = generate(two_group_design, 40, seed=3).data
        table = fit(generate(two_group_design, 40, seed=3), "dv ~ group")
        control = data.loc[data["group"] == "Control", "dv"]
        alcohol = data.loc[data["group"] == "Alcohol", "dv"]
        t_result = stats.ttest_ind(alcohol, control)
        assert table.p_value("group:Alcohol") == pytest.approx(t_result.pvalue, rel=1e-8)
        assert table.estimate("group:Alcohol") == pytest.approx(alcohol.mean() - control.mean())

    def test_large_sample_recovers_effect(self):
        design = DesignSpec(between=Factor("group", ("Control", "Alcohol")), means=(400, 425), sd=100)
        table = fit(generate(design, 1000, seed=123), "dv ~ group")
        assert abs(table.estimate("group:Alcohol") - 25) < 5
        assert table.p_value("group:Alcohol") < 0.001

    def test_no_residual_df(self, two_group_design):
        with pytest.raises(FitDidNotConverge):
            fit(generate(two_group_design, 1, seed=1), "dv ~ group")


class TestMixed:
    def test_random_intercept_from_formula(self, pre_post_design):
        table = fit(generate(pre_post_design, 40, seed=2), "dv ~ group * measurement + (1|id)")
        assert table.model_type == "mixed"
        assert "group:Alcohol × measurement:Post" in table
        # Variance component is not a fixed-effect row
        assert not any("Var" in term for term in table)

    def test_interaction_name_ignores_formula_order(self, pre_post_design):
        dataset = generate(pre_post_design, 40, seed=2)
        table = fit(dataset, "dv ~ measurement * group + (1|id)")
        assert "group:Alcohol × measurement:Post" in table
        assert "measurement:Post × group:Alcohol" not in table
        reference = fit(dataset, "dv ~ group * measurement + (1|id)")
        assert table.estimate("group:Alcohol × measurement:Post") == pytest.approx(
            reference.estimate("group:Alcohol × measurement:Post"), rel=1e-6
        )

    def test_grouping_argument(self, pre_post_design):
        table = fit(generate(pre_post_design, 40, seed=2), "dv ~ group * measurement", random_effect_grouping="id")
        assert table.model_type == "mixed"

    def test_conflicting_grouping(self, pre_post_design):
        with pytest.raises(InvalidParameter, match="conflicts"):
            fit(generate(pre_post_design, 10, seed=2), "dv ~ group + (1|id)", random_effect_grouping="group")

    def test_interaction_p_value_small_for_large_effect(self):
        design = DesignSpec(
            between=Factor("group", ("Control", "Alcohol")),
            within=Factor("measurement", ("Pre", "Post")),
            means=(400, 400, 400, 500),
            sd=100,
            within_r=0.5,
        )
        table = fit(generate(design, 200, seed=4), design.default_formula())
        assert table.p_value("group:Alcohol × measurement:Post") < 0.001

    def test_mixed_fit_failure_is_fit_did_not_converge(self, monkeypatch, pre_post_design):
        def broken_fit(self, *args, **kwargs):
            raise np.linalg.LinAlgError("Singular matrix")

        import statsmodels.regression.mixed_linear_model as mlm

        monkeypatch.setattr(mlm.MixedLM, "fit", broken_fit)
        with pytest.raises(FitDidNotConverge, match="Singular matrix"):
            fit(generate(pre_post_design, 10, seed=2), "dv ~ group * measurement + (1|id)")


class TestValidation:
    def test_unknown_column(self, two_group_design):
        with pytest.raises(InvalidParameter, match="unknown columns"):
            fit(generate(two_group_design, 10, seed=1), "dv ~ group + age")

    def test_random_slopes_rejected(self, pre_post_design):
        with pytest.raises(InvalidParameter, match="random intercepts"):
            fit(generate(pre_post_design, 10, seed=1), "dv ~ group + (1 + measurement|id)")

    def test_missing_tilde(self, two_group_design):
        with pytest.raises(InvalidParameter):
            fit(generate(two_group_design, 10, seed=1), "dv group")


class TestTimeout:
    def test_slow_fit_times_out(self, monkeypatch, two_group_design):
        def slow_fit(model_formula, data, factor_order=()):
            time.sleep(2)
            return CoefficientTable({})

        monkeypatch.setattr(models, "_fit_ols", slow_fit)
        start = time.perf_counter()
        with pytest.raises(FitDidNotConverge, match="timeout"):
            fit(generate(two_group_design, 10, seed=1), "dv ~ group", timeout=0.1)
        assert time.perf_counter() - start < 1.5

    def test_timed_out_fit_does_not_block_next_fit(self, monkeypatch, two_group_design):
        real_fit_ols = models._fit_ols
        calls = []

        def slow_once(model_formula, data, factor_order=()):
            calls.append(1)
            if len(calls) == 1:
                time.sleep(1)
            return real_fit_ols(model_formula, data, factor_order=factor_order)

        monkeypatch.setattr(models, "_fit_ols", slow_once)
        dataset = generate(two_group_design, 10, seed=1)
        with pytest.raises(FitDidNotConverge, match="timeout"):
            fit(dataset, "dv ~ group", timeout=0.1)
        table = fit(dataset, "dv ~ group", timeout=30)
        assert "group:Alcohol" in table

    def test_fast_fit_within_timeout(self, two_group_design):
        table = fit(generate(two_group_design, 10, seed=1), "dv ~ group", timeout=30)
        assert "group:Alcohol" in table


class TestCoefficientTable:
    def _table(self):
        return CoefficientTable(
            {
                "Intercept": CoefficientRow(400.0, 10.0, 40.0, 0.0),
                "group:Alcohol": CoefficientRow(25.0, 14.0, 1.8, 0.08),
            }
        )

    def test_missing_term_raises_term_not_found(self):
        with pytest.raises(TermNotFound) as exc_info:
            self._table()["group:Placebo"]
        assert "group:Alcohol" in str(exc_info.value)

    def test_term_not_found_is_key_error(self):
        assert "group:Placebo" not in self._table()

    def test_match(self):
        assert self._table().match("^group") == ["group:Alcohol"]

    def test_to_frame(self):
        frame = self._table().to_frame()
        assert list(frame.columns) == ["term", "estimate", "std.error", "statistic", "p.value"]
        assert frame["term"].tolist() == ["Intercept", "group:Alcohol"]

    def test_immutable(self):
        table = self._table()
        with pytest.raises(TypeError):
            table._rows["x"] = None
