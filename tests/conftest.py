"""
Shared pytest fixtures for SimPower tests.
"""

import contextlib
import io

import pytest

from tests.config import RT_EFFECT, RT_MEAN, RT_SD


@pytest.fixture
def two_group_design():
    """Control vs Alcohol, between-only, 25 ms shift."""
    from simpower.core.design import DesignSpec, Factor

    return DesignSpec(
        between=Factor("group", ("Control", "Alcohol")),
        means=(RT_MEAN, RT_MEAN + RT_EFFECT),
        sd=RT_SD,
    )


@pytest.fixture
def pre_post_design():
    """Control/Alcohol × Pre/Post with an interaction in Alcohol:Post."""
    from simpower.core.design import DesignSpec, Factor

    return DesignSpec(
        between=Factor("group", ("Control", "Alcohol")),
        within=Factor("measurement", ("Pre", "Post")),
        means=(RT_MEAN, RT_MEAN, RT_MEAN, RT_MEAN + RT_EFFECT),
        sd=RT_SD,
        within_r=0.5,
    )


@pytest.fixture
def pre_post_age_design():
    """Pre/Post design with an age confounder tied to the Pre measurement."""
    from simpower.core.design import ConfounderSpec, DesignSpec, Factor

    return DesignSpec(
        between=Factor("group", ("Control", "Alcohol")),
        within=Factor("measurement", ("Pre", "Post")),
        means=(RT_MEAN, RT_MEAN, RT_MEAN, RT_MEAN + RT_EFFECT),
        sd=RT_SD,
        within_r=0.5,
        confounder=ConfounderSpec(
            name="age",
            r=0.2,
            mean=30,
            sd=8,
            correlated_with="Pre",
            minimum=18,
            maximum=65,
            round_to_int=True,
        ),
    )


@pytest.fixture
def suppress_output():
    """Suppress stdout (design summaries, reports)."""
    with contextlib.redirect_stdout(io.StringIO()):
        yield
