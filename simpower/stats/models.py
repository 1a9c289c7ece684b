"""Regression fitting for SimPower.

The only seam to the external statistics library. Fits ordinary least
squares (statsmodels OLS) or, when a grouping variable is given, a linear
mixed-effects model with a random intercept (statsmodels MixedLM, REML).

Factor columns are treatment-coded against the dataset's reference levels
and coefficient names are normalized:

- ``C(group, Treatment(reference='Control'))[T.Alcohol]`` → ``group:Alcohol``
- interactions join their parts with ``" × "``:
  ``group:Alcohol × measurement:Post``
- continuous covariates and ``Intercept`` keep their names.

Interaction parts follow the dataset's factor order (between, then within)
whatever order the formula lists them in.

Any failure to produce finite estimates surfaces as ``FitDidNotConverge``.
"""

import re
import warnings
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import FitDidNotConverge, InvalidParameter, TermNotFound
from ..utils.parsers import _formula_variables, _parse_equation

__all__ = ["CoefficientRow", "CoefficientTable", "fit"]

# (maxiter, method) attempts for MixedLM: more iterations, then a different optimizer
_LME_ATTEMPTS = [
    (100, "lbfgs"),
    (200, "lbfgs"),
    (500, "powell"),
]

_CODED_PART = re.compile(r"^C\((?P<name>[^,()]+),.*\)\[T\.(?P<level>.*)\]$")


@dataclass(frozen=True)
class CoefficientRow:
    """One fitted term."""

    estimate: float
    std_error: float
    statistic: float
    p_value: float


class CoefficientTable(Mapping):
    """Immutable mapping of normalized term name to ``CoefficientRow``."""

    def __init__(self, rows: Dict[str, CoefficientRow], model_type: str = "ols"):
        self._rows = MappingProxyType(dict(rows))
        self.model_type = model_type

    def __getitem__(self, term: str) -> CoefficientRow:
        try:
            return self._rows[term]
        except KeyError:
            raise TermNotFound(term, list(self._rows)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self):
        return f"CoefficientTable({list(self._rows)}, model_type={self.model_type!r})"

    @property
    def terms(self) -> List[str]:
        return list(self._rows)

    def p_value(self, term: str) -> float:
        return self[term].p_value

    def estimate(self, term: str) -> float:
        return self[term].estimate

    def match(self, pattern: str) -> List[str]:
        """Terms whose name matches the regular expression *pattern*."""
        regex = re.compile(pattern)
        return [term for term in self._rows if regex.search(term)]

    def to_frame(self) -> pd.DataFrame:
        """Tidy frame with columns ``term, estimate, std.error, statistic, p.value``."""
        return pd.DataFrame(
            [
                {
                    "term": term,
                    "estimate": row.estimate,
                    "std.error": row.std_error,
                    "statistic": row.statistic,
                    "p.value": row.p_value,
                }
                for term, row in self._rows.items()
            ],
            columns=["term", "estimate", "std.error", "statistic", "p.value"],
        )


def fit(
    dataset,
    formula: str,
    random_effect_grouping: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CoefficientTable:
    """Fit *formula* to *dataset* and return its coefficient table.

    Args:
        dataset: ``SimulatedDataset`` (or anything with ``data`` and
            ``references`` attributes).
        formula: R-style formula, e.g. ``"dv ~ group * measurement + age"``.
            A ``(1|id)`` term selects a mixed model grouped by ``id``.
        random_effect_grouping: Grouping column for a random intercept;
            ``None`` fits OLS unless the formula has a ``(1|...)`` term.
        timeout: Wall-clock limit in seconds for the fit. A fit that runs
            past it keeps its helper thread until it returns.

    Returns:
        ``CoefficientTable`` with one row per fixed-effect term.

    Raises:
        InvalidParameter: Malformed formula or unknown columns.
        FitDidNotConverge: The fit failed, did not converge, produced
            non-finite estimates, or exceeded *timeout*.
    """
    dep_var, fixed_formula, grouping_vars = _parse_equation(formula)
    if len(grouping_vars) > 1:
        raise InvalidParameter(f"Only one random intercept is supported, got {grouping_vars}")
    if grouping_vars:
        if random_effect_grouping is not None and random_effect_grouping != grouping_vars[0]:
            raise InvalidParameter(
                f"Grouping '{random_effect_grouping}' conflicts with formula term (1|{grouping_vars[0]})"
            )
        random_effect_grouping = grouping_vars[0]

    data = dataset.data
    needed = _formula_variables(fixed_formula) | {dep_var}
    if random_effect_grouping is not None:
        needed.add(random_effect_grouping)
    missing = sorted(needed - set(data.columns))
    if missing:
        raise InvalidParameter(f"Formula references unknown columns: {', '.join(missing)}")

    references = dict(getattr(dataset, "references", {}) or {})
    for column in data.columns:
        if isinstance(data[column].dtype, pd.CategoricalDtype) and column not in references:
            references[column] = str(data[column].cat.categories[0])

    model_formula = f"{dep_var} ~ {_code_factors(fixed_formula, references)}"

    if random_effect_grouping is None:
        runner = partial(_fit_ols, model_formula, data, factor_order=list(references))
    else:
        runner = partial(_fit_mixed, model_formula, data, random_effect_grouping, factor_order=list(references))

    if timeout is None:
        return runner()
    return _call_with_timeout(runner, timeout)


def _code_factors(fixed_formula: str, references: Dict[str, str]) -> str:
    """Wrap factor names in ``C(name, Treatment(reference=...))``."""
    if not references:
        return fixed_formula
    names = sorted(references, key=len, reverse=True)
    pattern = re.compile(r"(?<![\w.])(" + "|".join(re.escape(n) for n in names) + r")(?!\w)")
    return pattern.sub(lambda m: f"C({m.group(1)}, Treatment(reference={references[m.group(1)]!r}))", fixed_formula)


def _normalize_term(raw: str, factor_order: Sequence[str] = ()) -> str:
    """Turn a patsy column name into the normalized term name.

    Interaction parts follow *factor_order* (between before within), then
    any other parts in formula order, so the name does not depend on how
    the formula lists the factors.
    """
    parts = []
    for part in raw.split(":"):
        match = _CODED_PART.match(part)
        if match:
            name = match.group("name").strip()
            parts.append((name, f"{name}:{match.group('level')}"))
        else:
            parts.append((part, part))

    rank = {name: i for i, name in enumerate(factor_order)}
    parts.sort(key=lambda p: rank.get(p[0], len(rank)))
    return " × ".join(label for _, label in parts)


def _build_table(names, estimates, std_errors, statistics, p_values, model_type: str, factor_order=()) -> CoefficientTable:
    rows = {}
    for name, est, se, stat, p in zip(names, estimates, std_errors, statistics, p_values):
        term = _normalize_term(name, factor_order)
        if not (np.isfinite(est) and np.isfinite(se) and np.isfinite(p)):
            raise FitDidNotConverge(f"Non-finite estimate for term '{term}'")
        rows[term] = CoefficientRow(float(est), float(se), float(stat), float(p))
    return CoefficientTable(rows, model_type=model_type)


def _fit_ols(model_formula: str, data: pd.DataFrame, factor_order: Sequence[str] = ()) -> CoefficientTable:
    import statsmodels.formula.api as smf

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = smf.ols(model_formula, data=data).fit()
    except Exception as e:
        raise FitDidNotConverge(f"OLS fit failed: {type(e).__name__}: {e}") from e

    if result.df_resid <= 0:
        raise FitDidNotConverge(f"No residual degrees of freedom (n={int(result.nobs)}, parameters={len(result.params)})")

    return _build_table(
        result.params.index,
        result.params.values,
        result.bse.values,
        result.tvalues.values,
        result.pvalues.values,
        model_type="ols",
        factor_order=factor_order,
    )


def _fit_mixed(model_formula: str, data: pd.DataFrame, grouping: str, factor_order: Sequence[str] = ()) -> CoefficientTable:
    """Random-intercept MixedLM with REML, retried before giving up.

    Retry strategy: more iterations first, then a derivative-free optimizer
    for fits where lbfgs stalls on the variance boundary.
    """
    import statsmodels.formula.api as smf

    try:
        model = smf.mixedlm(model_formula, data=data, groups=data[grouping])
    except Exception as e:
        raise FitDidNotConverge(f"Mixed model setup failed: {type(e).__name__}: {e}") from e

    result = None
    failure_reason = "Unknown convergence failure"
    for max_iter, method in _LME_ATTEMPTS:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                candidate = model.fit(reml=True, method=method, maxiter=max_iter)
        except Exception as e:
            failure_reason = f"{type(e).__name__}: {e}"
            continue

        if not getattr(candidate, "converged", True):
            failure_reason = "Model did not converge"
            continue
        result = candidate
        break

    if result is None:
        raise FitDidNotConverge(failure_reason)

    names = list(result.fe_params.index)
    return _build_table(
        names,
        result.fe_params.values,
        result.bse.loc[names].values,
        result.tvalues.loc[names].values,
        result.pvalues.loc[names].values,
        model_type="mixed",
        factor_order=factor_order,
    )


def _call_with_timeout(func: Callable[[], CoefficientTable], timeout: float) -> CoefficientTable:
    """Run *func* in a helper thread and give up after *timeout* seconds.

    The helper thread cannot be interrupted; it finishes in the background
    and its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        raise FitDidNotConverge(f"Fit exceeded timeout of {timeout:g}s") from None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
