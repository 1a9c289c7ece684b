"""
Synthetic dataset generation for SimPower.

Builds one long-format dataset per replication from a ``DesignSpec``:

- between-subject groups, ``n_per_cell`` subjects each;
- within-subject repeated measures drawn with the design's correlation
  relative to the first within level;
- an optional confounder drawn once per subject, clamped, optionally
  rounded, and repeated on each of that subject's rows.
"""

from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

from ..exceptions import InvalidParameter
from .random_variates import RandomVariateSource, SeedLike

__all__ = ["SimulatedDataset", "generate"]


@dataclass(frozen=True)
class SimulatedDataset:
    """One synthetic dataset.

    Attributes:
        data: Long-format frame; factor columns are categoricals whose
            categories follow design level order.
        n_per_cell: Subjects per between level.
        references: Reference level of each factor column.
    """

    data: pd.DataFrame
    n_per_cell: int
    references: Dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.data)


def generate(design, n_per_cell: int, seed: SeedLike = None) -> SimulatedDataset:
    """Generate one dataset for *design* with *n_per_cell* subjects per group.

    Args:
        design: ``DesignSpec`` to draw from.
        n_per_cell: Subjects per between level (each contributes one row per
            within level).
        seed: Integer or ``SeedSequence``; identical seeds give identical
            datasets.

    Returns:
        ``SimulatedDataset`` with ``n_per_cell * n_between * n_within`` rows.

    Raises:
        InvalidParameter: If *n_per_cell* is not a positive integer.
    """
    if isinstance(n_per_cell, bool) or not isinstance(n_per_cell, (int, np.integer)) or n_per_cell < 1:
        raise InvalidParameter(f"n_per_cell must be a positive integer, got {n_per_cell!r}")
    n_per_cell = int(n_per_cell)

    source = RandomVariateSource(seed)
    params = design.cell_parameters()
    within_levels = design.within_levels
    n_within = len(within_levels)
    n_between = len(design.between.levels)
    n_subjects = n_per_cell * n_between

    # One array per within level, one value per subject, subjects ordered by group
    values: Dict[object, np.ndarray] = {}
    first_level = within_levels[0]
    first_parts: List[np.ndarray] = []
    for b in design.between.levels:
        mean, sd = params[(b, first_level)]
        first_parts.append(source.normal(n_per_cell, mean, sd))
    values[first_level] = np.concatenate(first_parts)

    for w in within_levels[1:]:
        parts = []
        for i, b in enumerate(design.between.levels):
            base_mean, base_sd = params[(b, first_level)]
            mean, sd = params[(b, w)]
            base = values[first_level][i * n_per_cell : (i + 1) * n_per_cell]
            parts.append(
                source.correlated_normal(base, mean, sd, design.within_r, x_mean=base_mean, x_sd=base_sd)
            )
        values[w] = np.concatenate(parts)

    confounder = None
    if design.confounder is not None:
        confounder = _generate_confounder(source, design.confounder, values[design.confounder.correlated_with])

    subject_ids = np.arange(1, n_subjects + 1)
    groups = np.repeat(np.array(design.between.levels, dtype=object), n_per_cell)

    # Long format: by group, then subject, then within level
    columns = {
        design.id_column: np.repeat(subject_ids, n_within),
        design.between.name: pd.Categorical(np.repeat(groups, n_within), categories=list(design.between.levels)),
    }
    if design.within is not None:
        columns[design.within.name] = pd.Categorical(
            np.tile(np.array(within_levels, dtype=object), n_subjects),
            categories=list(within_levels),
        )
    columns[design.dv] = np.column_stack([values[w] for w in within_levels]).ravel()
    if confounder is not None:
        columns[design.confounder.name] = np.repeat(confounder, n_within)

    references = {f.name: f.reference for f in design.factors}
    return SimulatedDataset(data=pd.DataFrame(columns), n_per_cell=n_per_cell, references=references)


def _generate_confounder(source: RandomVariateSource, confounder, anchor: np.ndarray) -> np.ndarray:
    """Per-subject covariate correlated with *anchor*, clamped and optionally rounded."""
    values = source.correlated_normal(anchor, confounder.mean, confounder.sd, confounder.r)
    values = source.truncate(values, confounder.minimum, confounder.maximum)
    if confounder.round_to_int:
        values = np.round(values)
    return values
