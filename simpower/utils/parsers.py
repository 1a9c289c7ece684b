"""
Parsing utilities for SimPower.

This module parses R-style model formulas and comma-separated
``name=value`` assignment strings used by the ``SimPower`` setters.
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from ..exceptions import InvalidParameter

__all__ = []

# Unicode-aware identifier pattern: letter or underscore, then word characters
_IDENT = r"[^\W\d]\w*"


class _AssignmentParser:
    """Parses comma-separated ``name=value`` assignment strings.

    Values are plain floats such as cell means or sds. Names are matched
    against a list of available items, e.g. ``Control`` or ``Control:Pre``.

    A module-level singleton ``_parser`` is used throughout the codebase.
    """

    def __init__(self):
        self.handlers = {
            "number": self._parse_number_value,
        }

    def _parse(self, input_string: str, parse_type: str, available_items: List[str]) -> Tuple[Dict, List[str]]:
        """Parse a comma-separated assignment string.

        Args:
            input_string: Raw user input (e.g. ``"Control=400, Alcohol=425"``).
            parse_type: ``"number"``.
            available_items: Valid names for the left-hand side.

        Returns:
            Tuple of ``(parsed_dict, error_list)``.
        """
        if parse_type not in self.handlers:
            return {}, [f"Unknown parse type: {parse_type}"]

        parsed_items = {}
        errors = []

        for assignment in self._split_assignments(input_string):
            try:
                name, value = self._parse_assignment(assignment)
            except ValueError as e:
                errors.append(str(e))
                continue

            if name not in available_items:
                errors.append(f"'{name}' not found. Available: {', '.join(available_items)}")
                continue
            if name in parsed_items:
                errors.append(f"'{name}' assigned more than once")
                continue

            parsed_value, error = self.handlers[parse_type](value)
            if error:
                errors.append(f"{name}: {error}")
                continue
            parsed_items[name] = parsed_value

        return parsed_items, errors

    def _split_assignments(self, input_string: str) -> List[str]:
        """Split assignments on commas, respecting parentheses."""
        assignments = []
        current: List[str] = []
        paren_count = 0

        for char in input_string:
            if char == "," and paren_count == 0:
                if current:
                    assignments.append("".join(current).strip())
                    current = []
            else:
                if char == "(":
                    paren_count += 1
                elif char == ")":
                    paren_count -= 1
                current.append(char)

        if current:
            assignments.append("".join(current).strip())

        return [a for a in assignments if a]

    def _parse_assignment(self, assignment: str) -> Tuple[str, str]:
        if "=" not in assignment:
            raise ValueError(f"Invalid format: '{assignment}'. Expected 'name=value'")
        name, value = assignment.split("=", 1)
        name = re.sub(r"\s*:\s*", ":", name.strip())
        return name, value.strip()

    def _parse_number_value(self, value: str) -> Tuple[float, Optional[str]]:
        try:
            return float(value), None
        except ValueError:
            return 0.0, f"Invalid number '{value}'"


_parser = _AssignmentParser()


def _parse_cell_values(input_string: str, design_cells: List[Tuple[str, Optional[str]]]) -> List[float]:
    """Parse ``"Control=400, Alcohol=425"`` or ``"Control:Pre=400, ..."`` into a cell vector.

    Every cell must be assigned exactly once; the result follows
    *design_cells* order.
    """
    labels = [b if w is None else f"{b}:{w}" for b, w in design_cells]
    parsed, errors = _parser._parse(input_string, "number", labels)
    missing = [label for label in labels if label not in parsed]
    if missing and not errors:
        errors.append(f"Missing values for: {', '.join(missing)}")
    if errors:
        raise InvalidParameter("Error parsing cell values:\n" + "\n".join(f"- {e}" for e in errors))
    return [parsed[label] for label in labels]


def _parse_equation(equation: str) -> Tuple[str, str, List[str]]:
    """Parse an R-style formula into its components.

    Splits the equation at ``~`` or ``=`` and extracts random-intercept
    terms ``(1|group)``.

    Args:
        equation: Formula string (e.g. ``"dv ~ group * time + (1|id)"``).

    Returns:
        Tuple of ``(dependent_var, fixed_formula, grouping_vars)``.

    Raises:
        InvalidParameter: Missing outcome or fixed part, duplicate grouping
            variables, or random slopes (only random intercepts are fitted).
    """
    equation = equation.replace(" ", "")

    if "~" in equation:
        dep_var, formula_part = equation.split("~", 1)
    elif "=" in equation:
        dep_var, formula_part = equation.split("=", 1)
    else:
        raise InvalidParameter(f"Formula must contain '~' or '=': {equation!r}")

    if not re.fullmatch(_IDENT, dep_var):
        raise InvalidParameter(f"Invalid outcome variable in formula: {dep_var!r}")

    slope_pattern = rf"\(\s*1\s*\+\s*([^|]+?)\s*\|\s*({_IDENT})\s*\)"
    if re.search(slope_pattern, formula_part) or re.search(r"\(\s*1\s*\|[^)]*/", formula_part):
        raise InvalidParameter("Only random intercepts '(1|group)' are supported")

    grouping_vars: List[str] = []
    intercept_pattern = rf"\(\s*1\s*\|\s*({_IDENT})\s*\)"
    for match in re.finditer(intercept_pattern, formula_part):
        grouping_var = match.group(1)
        if grouping_var in grouping_vars:
            raise InvalidParameter(f"Duplicate random effect grouping variable: '{grouping_var}'")
        grouping_vars.append(grouping_var)

    formula_part = re.sub(intercept_pattern, "", formula_part)

    # Clean up extra + signs
    formula_part = re.sub(r"\+\s*\+", "+", formula_part)
    formula_part = re.sub(r"^\+", "", formula_part)
    formula_part = re.sub(r"\+$", "", formula_part)
    formula_part = formula_part.strip()

    if not formula_part:
        raise InvalidParameter(f"Formula has no fixed effects: {equation!r}")
    if "|" in formula_part:
        raise InvalidParameter(f"Unsupported random effect term in formula: {equation!r}")

    return dep_var, formula_part, grouping_vars


def _formula_variables(fixed_formula: str) -> Set[str]:
    """All variable names referenced by a fixed-effect formula."""
    return set(re.findall(_IDENT, fixed_formula))
