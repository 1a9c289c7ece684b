"""Core components for the SimPower framework.

Re-exports the foundational building blocks:

- ``Factor``, ``ConfounderSpec``, ``DesignSpec``, ``SampleSizeGrid``,
  ``StudyConfig``: design and run configuration.
- ``TermSelector``, ``TermKind``: typed selection of the tested coefficient.
- ``ReplicationDriver``, ``ReplicationOutcome``, ``run_replication``: Monte
  Carlo replication over the sample-size grid.
- ``PowerAggregator``, ``PowerCurve``, ``build_power_result``,
  ``build_sample_size_result``: power calculation and result assembly.
- ``interpolate``, ``required_sample_size``: power-curve interpolation and
  sample-size search.
"""

from .design import ConfounderSpec, DesignSpec, Factor, SampleSizeGrid, StudyConfig, design_from_levels
from .interpolation import InterpolatedCurve, find_required_sample_sizes, interpolate, required_sample_size
from .results import PowerAggregator, PowerCurve, build_power_result, build_sample_size_result, failure_reasons
from .selectors import TermKind, TermSelector
from .simulation import ReplicationDriver, ReplicationOutcome, derive_seed, run_replication

__all__ = [
    # Design
    "Factor",
    "ConfounderSpec",
    "DesignSpec",
    "SampleSizeGrid",
    "StudyConfig",
    "design_from_levels",
    # Selection
    "TermKind",
    "TermSelector",
    # Simulation
    "ReplicationDriver",
    "ReplicationOutcome",
    "derive_seed",
    "run_replication",
    # Results
    "PowerAggregator",
    "PowerCurve",
    "failure_reasons",
    "build_power_result",
    "build_sample_size_result",
    # Interpolation
    "InterpolatedCurve",
    "interpolate",
    "required_sample_size",
    "find_required_sample_sizes",
]
