"""SimPower - Monte Carlo power estimation for factorial designs.

Estimates the power of a between/within factorial analysis by simulating
datasets from hypothesized cell means, fitting the analysis model to each,
and counting significant results; then interpolates the power curve to find
the sample size reaching a target power.

Example:
    >>> from simpower import SimPower
    >>>
    >>> study = SimPower(between=("group", ["Control", "Alcohol"]))
    >>> study.set_means("Control=400, Alcohol=425").set_sd(100)
    >>> study.find_power(sample_size=100)
    >>>
    >>> study.find_sample_size(from_size=50, to_size=400, by=50)
"""

from importlib.metadata import version as _get_version

from .core import (
    ConfounderSpec,
    DesignSpec,
    Factor,
    SampleSizeGrid,
    StudyConfig,
    TermSelector,
    interpolate,
    required_sample_size,
)
from .exceptions import (
    FitDidNotConverge,
    InvalidParameter,
    OutOfRange,
    SampleSizeNotFound,
    TermNotFound,
)
from .model import SimPower
from .progress import PrintReporter, ProgressReporter, SimulationCancelled, TqdmReporter

__version__ = _get_version("SimPower")

__all__ = [
    "SimPower",
    # Design
    "Factor",
    "ConfounderSpec",
    "DesignSpec",
    "SampleSizeGrid",
    "StudyConfig",
    "TermSelector",
    "interpolate",
    "required_sample_size",
    # Errors
    "InvalidParameter",
    "FitDidNotConverge",
    "TermNotFound",
    "OutOfRange",
    "SampleSizeNotFound",
    "SimulationCancelled",
    # Progress
    "ProgressReporter",
    "PrintReporter",
    "TqdmReporter",
]
