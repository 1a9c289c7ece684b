"""
Typed selection of the coefficient under test.

A ``TermSelector`` is resolved once against the design's term-name scheme,
so renaming a factor level fails loudly at configuration time instead of
silently matching nothing in the fitted tables.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import InvalidParameter, TermNotFound
from .design import DesignSpec


class TermKind(str, Enum):
    MAIN_EFFECT = "main_effect"
    INTERACTION = "interaction"
    NAMED = "named"


@dataclass(frozen=True)
class TermSelector:
    """Names one coefficient of the fitted model.

    Use the constructors rather than building instances directly:

    - ``TermSelector.main_effect("group", "Alcohol")`` → ``group:Alcohol``
    - ``TermSelector.interaction("Alcohol", "Post")`` →
      ``group:Alcohol × measurement:Post``
    - ``TermSelector.named("age")`` → ``age``
    """

    kind: TermKind
    factor: Optional[str] = None
    level: Optional[str] = None
    within_level: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def main_effect(cls, factor: str, level: Optional[str] = None) -> "TermSelector":
        """Main effect of *level* of *factor* against its reference level.

        *level* may be omitted when the factor has a single non-reference
        level.
        """
        return cls(TermKind.MAIN_EFFECT, factor=factor, level=level)

    @classmethod
    def interaction(cls, between_level: Optional[str] = None, within_level: Optional[str] = None) -> "TermSelector":
        """Between × within interaction; levels may be omitted when unique."""
        return cls(TermKind.INTERACTION, level=between_level, within_level=within_level)

    @classmethod
    def named(cls, name: str) -> "TermSelector":
        """An exact coefficient name, e.g. a continuous covariate."""
        return cls(TermKind.NAMED, name=name)

    def resolve(self, design: DesignSpec) -> str:
        """Return the exact coefficient name this selector denotes in *design*.

        Raises:
            TermNotFound: The factor or level does not exist in the design,
                or names the reference level.
            InvalidParameter: An omitted level is ambiguous.
        """
        if self.kind is TermKind.NAMED:
            if not self.name:
                raise InvalidParameter("A named term selector needs a non-empty name")
            return self.name

        if self.kind is TermKind.MAIN_EFFECT:
            factor = next((f for f in design.factors if f.name == self.factor), None)
            if factor is None:
                raise TermNotFound(str(self.factor), [f.name for f in design.factors])
            return factor.term(_pick_level(factor, self.level))

        if design.within is None:
            raise TermNotFound("interaction", design.term_names())
        between = design.between.term(_pick_level(design.between, self.level))
        within = design.within.term(_pick_level(design.within, self.within_level))
        return f"{between} × {within}"

    def describe(self) -> str:
        if self.kind is TermKind.NAMED:
            return f"term '{self.name}'"
        if self.kind is TermKind.MAIN_EFFECT:
            return f"main effect of {self.factor}" + (f" ({self.level})" if self.level else "")
        return "interaction" + (f" ({self.level} × {self.within_level})" if self.level or self.within_level else "")


def _pick_level(factor, level: Optional[str]) -> str:
    candidates = factor.non_reference_levels
    if level is None:
        if len(candidates) != 1:
            raise InvalidParameter(
                f"Factor '{factor.name}' has {len(candidates)} non-reference levels; name one of {list(candidates)}"
            )
        return candidates[0]
    if level not in candidates:
        raise TermNotFound(factor.term(level), [factor.term(c) for c in candidates])
    return level
