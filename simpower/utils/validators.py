"""
Validation utilities for SimPower.

This module provides validation functions for design specifications,
sample-size grids, and analysis settings. Every check runs before any
simulation starts.
"""

import multiprocessing as mp
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

import numpy as np

from ..exceptions import InvalidParameter

__all__ = []

_FORBIDDEN_LEVEL_CHARS = re.compile(r"[:\[\]]")
_IDENT = re.compile(r"^[^\W\d]\w*$")


@dataclass
class _ValidationResult:
    """Outcome of a validation check, carrying errors and warnings.

    Attributes:
        is_valid: ``True`` if no errors were found.
        errors: List of error messages (empty when valid).
        warnings: List of non-fatal warning messages.
    """

    is_valid: bool
    errors: List[str]
    warnings: List[str]

    def raise_if_invalid(self):
        """Raise ``InvalidParameter`` if the validation failed."""
        if not self.is_valid:
            error_msg = "Validation failed:\n" + "\n".join(f"• {err}" for err in self.errors)
            raise InvalidParameter(error_msg)

    def merge(self, other: "_ValidationResult") -> "_ValidationResult":
        errors = self.errors + other.errors
        return _ValidationResult(len(errors) == 0, errors, self.warnings + other.warnings)


class _Validator:
    """Static helpers for type and range checks used by all validators."""

    @staticmethod
    def _check_type(value: Any, expected_types: tuple, name: str) -> Optional[str]:
        """Check if value has expected type."""
        if isinstance(value, bool) or not isinstance(value, expected_types):
            actual_type = type(value).__name__
            expected = expected_types[0].__name__ if len(expected_types) == 1 else f"one of {[t.__name__ for t in expected_types]}"
            return f"{name} must be {expected}, got {actual_type}"
        return None

    @staticmethod
    def _check_range(
        value: Union[int, float],
        min_val: Optional[float],
        max_val: Optional[float],
        name: str,
    ) -> Optional[str]:
        """Check if value is within range."""
        if min_val is not None and value < min_val:
            return f"{name} must be >= {min_val}, got {value}"
        if max_val is not None and value > max_val:
            return f"{name} must be <= {max_val}, got {value}"
        return None


_validator = _Validator()


def _validate_numeric_parameter(
    value: Any,
    name: str,
    expected_types: tuple = (int, float),
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> _ValidationResult:
    """Generic validation for numeric parameters."""
    errors: List[str] = []

    type_error = _validator._check_type(value, expected_types, name)
    if type_error:
        return _ValidationResult(False, [type_error], [])

    if not np.isfinite(value):
        return _ValidationResult(False, [f"{name} must be finite, got {value}"], [])

    range_error = _validator._check_range(value, min_val, max_val, name)
    if range_error:
        errors.append(range_error)

    return _ValidationResult(len(errors) == 0, errors, [])


def _validate_power(power: Any) -> _ValidationResult:
    """Validate a target power given in percent (0-100)."""
    return _validate_numeric_parameter(power, "Power", min_val=0, max_val=100)


def _validate_alpha(alpha: Any) -> _ValidationResult:
    """Validate alpha level parameter (0-0.25)."""
    result = _validate_numeric_parameter(alpha, "Alpha", min_val=0, max_val=0.25)
    if result.is_valid and alpha == 0:
        return _ValidationResult(False, ["Alpha must be greater than 0"], [])
    return result


def _validate_replications(n_replications: Any) -> _ValidationResult:
    """Validate the number of replications per sample size."""
    errors: List[str] = []
    warnings: List[str] = []
    if isinstance(n_replications, bool) or not isinstance(n_replications, (int, np.integer)):
        errors.append(f"Number of replications must be an integer, got {type(n_replications).__name__}")
    elif n_replications < 1:
        errors.append(f"Number of replications must be >= 1, got {n_replications}")
    elif n_replications < 100:
        warnings.append(f"Low replication count ({n_replications}). Consider using at least 100 for reliable results.")
    return _ValidationResult(len(errors) == 0, errors, warnings)


def _validate_sample_size(sample_size: Any) -> _ValidationResult:
    """Validate a single per-cell sample size (positive integer)."""
    if isinstance(sample_size, bool) or not isinstance(sample_size, (int, np.integer)):
        return _ValidationResult(False, [f"sample_size must be an integer, got {type(sample_size).__name__}"], [])
    if sample_size <= 0:
        return _ValidationResult(False, [f"sample_size must be positive, got {sample_size}"], [])
    return _ValidationResult(True, [], [])


def _validate_sample_size_range(from_size: Any, to_size: Any, by: Any) -> _ValidationResult:
    """Validate sample size range parameters."""
    errors: List[str] = []
    warnings: List[str] = []

    for param, name in [(from_size, "from_size"), (to_size, "to_size"), (by, "by")]:
        if isinstance(param, bool) or not isinstance(param, (int, np.integer)) or param <= 0:
            errors.append(f"{name} must be a positive integer, got {param}")

    if errors:
        return _ValidationResult(False, errors, warnings)

    if from_size > to_size:
        errors.append(f"from_size ({from_size}) must not exceed to_size ({to_size})")
    elif from_size < to_size and by > (to_size - from_size):
        errors.append(f"Step size 'by' ({by}) is larger than range ({to_size - from_size}). This will only test one sample size.")

    if not errors:
        n_tests = len(range(from_size, to_size + 1, by))
        if n_tests > 100:
            warnings.append(f"Large number of sample sizes to test ({n_tests}). This may take significant time.")

    return _ValidationResult(len(errors) == 0, errors, warnings)


def _validate_correlation(r: Any, name: str) -> _ValidationResult:
    """Validate a correlation coefficient in [-1, 1]."""
    return _validate_numeric_parameter(r, name, min_val=-1, max_val=1)


def _validate_factor(factor, role: str) -> _ValidationResult:
    """Validate a factor's name, levels, and reference level."""
    errors: List[str] = []

    if not isinstance(factor.name, str) or not _IDENT.match(factor.name):
        errors.append(f"{role} factor name must be an identifier, got {factor.name!r}")

    levels = factor.levels
    if len(levels) < 1:
        errors.append(f"{role} factor '{factor.name}' needs at least one level")
    if len(set(levels)) != len(levels):
        errors.append(f"{role} factor '{factor.name}' has duplicate levels: {list(levels)}")
    for level in levels:
        if not isinstance(level, str) or not level:
            errors.append(f"Levels of '{factor.name}' must be non-empty strings, got {level!r}")
        elif _FORBIDDEN_LEVEL_CHARS.search(level):
            errors.append(f"Level '{level}' of '{factor.name}' must not contain ':', '[' or ']'")

    if factor.reference not in levels:
        errors.append(f"Reference level '{factor.reference}' is not a level of '{factor.name}'")

    return _ValidationResult(len(errors) == 0, errors, [])


def _validate_design(design) -> _ValidationResult:
    """Validate a ``DesignSpec``: factors, cell parameters, and confounder."""
    result = _validate_factor(design.between, "Between-subject")
    if design.within is not None:
        result = result.merge(_validate_factor(design.within, "Within-subject"))
        if design.within.name == design.between.name:
            result = result.merge(_ValidationResult(False, ["Between and within factors must have different names"], []))

    errors: List[str] = []
    n_cells = design.n_cells

    if len(design.means) != n_cells:
        errors.append(
            f"Expected {n_cells} means ({len(design.between.levels)} between x "
            f"{len(design.within.levels) if design.within else 1} within levels), got {len(design.means)}"
        )
    if not all(np.isfinite(m) for m in design.means):
        errors.append("All means must be finite numbers")

    sds = design.sd if isinstance(design.sd, tuple) else (design.sd,)
    if isinstance(design.sd, tuple) and len(sds) != n_cells:
        errors.append(f"Expected 1 or {n_cells} standard deviations, got {len(sds)}")
    if any((not np.isfinite(s)) or s < 0 for s in sds):
        errors.append(f"Standard deviations must be non-negative, got {list(sds)}")

    if design.within is not None:
        r_result = _validate_correlation(design.within_r, "Within-subject correlation")
        errors.extend(r_result.errors)

    taken = {design.between.name, design.dv, design.id_column}
    if design.within is not None:
        taken.add(design.within.name)
    if len(taken) != (4 if design.within is not None else 3):
        errors.append("Factor, outcome, and id column names must all differ")

    if design.confounder is not None:
        errors.extend(_validate_confounder(design.confounder, design.within, taken).errors)

    result = result.merge(_ValidationResult(len(errors) == 0, errors, []))
    return result


def _validate_confounder(confounder, within, taken: set) -> _ValidationResult:
    """Validate a confounder against the within factor (or its absence) and taken column names."""
    errors: List[str] = []

    if not isinstance(confounder.name, str) or not _IDENT.match(confounder.name):
        errors.append(f"Confounder name must be an identifier, got {confounder.name!r}")
    elif confounder.name in taken:
        errors.append(f"Confounder name '{confounder.name}' clashes with another column")

    errors.extend(_validate_correlation(confounder.r, "Confounder correlation").errors)

    if not np.isfinite(confounder.mean):
        errors.append("Confounder mean must be finite")
    if not np.isfinite(confounder.sd) or confounder.sd < 0:
        errors.append(f"Confounder sd must be non-negative, got {confounder.sd}")
    if confounder.minimum is not None and confounder.maximum is not None and confounder.minimum > confounder.maximum:
        errors.append(f"Confounder minimum ({confounder.minimum}) exceeds maximum ({confounder.maximum})")

    if within is None:
        if confounder.correlated_with is not None:
            errors.append("A between-only design has no within level to correlate the confounder with; use correlated_with=None")
    elif confounder.correlated_with is None:
        errors.append(f"correlated_with must name a level of '{within.name}': {list(within.levels)}")
    elif confounder.correlated_with not in within.levels:
        errors.append(f"'{confounder.correlated_with}' is not a level of '{within.name}'")

    return _ValidationResult(len(errors) == 0, errors, [])


def _validate_parallel_settings(enable: Any, n_jobs: Optional[int]) -> Tuple[Tuple[bool, int], _ValidationResult]:
    """Validate parallel processing settings.

    Returns:
        ``((enable, n_jobs), ValidationResult)``
    """
    errors = []

    if enable not in (True, False):
        errors.append(f"enable must be True or False, got {enable!r}")
        return (False, 1), _ValidationResult(False, errors, [])

    max_cores = mp.cpu_count() or 1
    validated_n_jobs = max(1, max_cores // 2)

    if n_jobs is not None:
        if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs <= 0:
            errors.append(f"n_jobs must be a positive integer, got {n_jobs}")
        else:
            validated_n_jobs = min(n_jobs, max_cores)

    return (enable, validated_n_jobs), _ValidationResult(len(errors) == 0, errors, [])


def _validate_timeout(timeout: Any) -> _ValidationResult:
    """Validate a per-fit timeout in seconds (``None`` disables it)."""
    if timeout is None:
        return _ValidationResult(True, [], [])
    result = _validate_numeric_parameter(timeout, "timeout")
    if result.is_valid and timeout <= 0:
        return _ValidationResult(False, [f"timeout must be positive, got {timeout}"], [])
    return result


def _validate_seed(seed: Any) -> _ValidationResult:
    if seed is None:
        return _ValidationResult(True, [], [])
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)):
        return _ValidationResult(False, ["seed must be an integer or None"], [])
    if seed < 0:
        return _ValidationResult(False, ["seed must be non-negative"], [])
    return _ValidationResult(True, [], [])


def _validate_max_failed(share: Any) -> _ValidationResult:
    """Validate the tolerated share of failed fits per sample size (0-1)."""
    return _validate_numeric_parameter(share, "max_failed_simulations", min_val=0, max_val=1)
