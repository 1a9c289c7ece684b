"""Unit tests for simpower.stats.data_generation."""

import numpy as np
import pandas as pd
import pytest

from simpower.core.design import DesignSpec, Factor
from simpower.exceptions import InvalidParameter
from simpower.stats.data_generation import generate


class TestShape:
    def test_between_only_rows(self, two_group_design):
        ds = generate(two_group_design, 30, seed=1)
        assert len(ds) == 30 * 2
        assert list(ds.data.columns) == ["id", "group", "dv"]

    def test_within_rows(self, pre_post_design):
        ds = generate(pre_post_design, 25, seed=1)
        assert len(ds) == 25 * 2 * 2
        assert list(ds.data.columns) == ["id", "group", "measurement", "dv"]

    def test_three_groups_three_times(self):
        design = DesignSpec(
            between=Factor("group", ("A", "B", "C")),
            within=Factor("time", ("T1", "T2", "T3")),
            means=tuple(range(9)),
            sd=1,
        )
        assert len(generate(design, 4, seed=1)) == 4 * 3 * 3

    def test_n_one_allowed(self, pre_post_design):
        assert len(generate(pre_post_design, 1, seed=1)) == 4

    @pytest.mark.parametrize("n", [0, -5, 2.0, True])
    def test_invalid_n(self, two_group_design, n):
        with pytest.raises(InvalidParameter):
            generate(two_group_design, n, seed=1)


class TestLayout:
    def test_ids_unique_per_subject(self, pre_post_design):
        data = generate(pre_post_design, 10, seed=1).data
        assert data["id"].nunique() == 20
        assert (data.groupby("id", observed=True).size() == 2).all()
        # One subject never spans two groups
        assert (data.groupby("id", observed=True)["group"].nunique() == 1).all()

    def test_row_order(self, pre_post_design):
        data = generate(pre_post_design, 3, seed=1).data
        assert list(data["group"][:6]) == ["Control"] * 6
        assert list(data["measurement"][:4]) == ["Pre", "Post", "Pre", "Post"]
        assert list(data["id"][:4]) == [1, 1, 2, 2]

    def test_factor_columns_are_categorical(self, pre_post_design):
        data = generate(pre_post_design, 3, seed=1).data
        assert isinstance(data["group"].dtype, pd.CategoricalDtype)
        assert list(data["group"].cat.categories) == ["Control", "Alcohol"]
        assert list(data["measurement"].cat.categories) == ["Pre", "Post"]

    def test_references_recorded(self):
        design = DesignSpec(between=Factor("group", ("Control", "Alcohol"), reference="Alcohol"), means=(1, 2))
        assert generate(design, 3, seed=1).references == {"group": "Alcohol"}


class TestDeterminism:
    def test_same_seed_identical(self, pre_post_age_design):
        a = generate(pre_post_age_design, 20, seed=99).data
        b = generate(pre_post_age_design, 20, seed=99).data
        pd.testing.assert_frame_equal(a, b)

    def test_different_seed_differs(self, pre_post_design):
        a = generate(pre_post_design, 20, seed=1).data["dv"]
        b = generate(pre_post_design, 20, seed=2).data["dv"]
        assert not np.array_equal(a, b)

    def test_seed_sequence(self, two_group_design):
        a = generate(two_group_design, 5, seed=np.random.SeedSequence(3, spawn_key=(5, 0))).data
        b = generate(two_group_design, 5, seed=np.random.SeedSequence(3, spawn_key=(5, 0))).data
        pd.testing.assert_frame_equal(a, b)


class TestDistribution:
    def test_cell_means(self, pre_post_design):
        data = generate(pre_post_design, 20_000, seed=5).data
        means = data.groupby(["group", "measurement"], observed=True)["dv"].mean()
        assert means[("Control", "Pre")] == pytest.approx(400, abs=3)
        assert means[("Alcohol", "Post")] == pytest.approx(425, abs=3)

    def test_within_correlation(self, pre_post_design):
        data = generate(pre_post_design, 20_000, seed=5).data
        wide = data.pivot(index="id", columns="measurement", values="dv")
        assert np.corrcoef(wide["Pre"], wide["Post"])[0, 1] == pytest.approx(0.5, abs=0.03)

    def test_per_cell_sd(self):
        design = DesignSpec(between=Factor("group", ("A", "B")), means=(0, 0), sd=(1, 5))
        data = generate(design, 20_000, seed=5).data
        sds = data.groupby("group", observed=True)["dv"].std()
        assert sds["A"] == pytest.approx(1, abs=0.05)
        assert sds["B"] == pytest.approx(5, abs=0.2)


class TestConfounder:
    def test_broadcast_to_subject_rows(self, pre_post_age_design):
        data = generate(pre_post_age_design, 50, seed=1).data
        assert (data.groupby("id", observed=True)["age"].nunique() == 1).all()

    def test_bounds_and_rounding(self, pre_post_age_design):
        age = generate(pre_post_age_design, 2000, seed=1).data["age"]
        assert age.min() >= 18
        assert age.max() <= 65
        np.testing.assert_array_equal(age, np.round(age))

    def test_correlated_with_anchor_level(self, pre_post_age_design):
        data = generate(pre_post_age_design, 20_000, seed=3).data
        pre = data[data["measurement"] == "Pre"]
        assert np.corrcoef(pre["dv"], pre["age"])[0, 1] == pytest.approx(0.2, abs=0.03)

    def test_between_only_confounder(self):
        from simpower.core.design import ConfounderSpec

        design = DesignSpec(
            between=Factor("group", ("Control", "Alcohol")),
            means=(400, 400),
            sd=100,
            confounder=ConfounderSpec("age", r=0.4, mean=30, sd=8),
        )
        data = generate(design, 20_000, seed=3).data
        assert np.corrcoef(data["dv"], data["age"])[0, 1] == pytest.approx(0.4, abs=0.03)
