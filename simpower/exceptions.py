"""
Error kinds raised by SimPower.

Configuration errors (``InvalidParameter``, ``TermNotFound``) are raised
before any simulation work starts. ``FitDidNotConverge`` is raised per
replication and recorded in its outcome instead of aborting the grid.
"""

__all__ = [
    "InvalidParameter",
    "FitDidNotConverge",
    "TermNotFound",
    "OutOfRange",
    "SampleSizeNotFound",
]


class InvalidParameter(ValueError):
    """Malformed design, grid, or analysis setting."""


class FitDidNotConverge(RuntimeError):
    """The model fitter failed, did not converge, or timed out."""


class TermNotFound(KeyError):
    """A term selector matched none of the fitted coefficient names."""

    def __init__(self, term: str, available=(), description: str = None):
        self.term = term
        self.available = tuple(available)
        self.description = description
        super().__init__(term)

    def __str__(self):
        message = f"Term '{self.term}' not found"
        if self.description:
            message += f" (selected as {self.description})"
        if self.available:
            message += f". Available: {', '.join(self.available)}"
        return message


class OutOfRange(ValueError):
    """Interpolation requested outside the computed sample-size range."""


class SampleSizeNotFound(LookupError):
    """No sample size in the searched range reaches the power threshold."""

    def __init__(self, threshold: float, max_n: int):
        self.threshold = threshold
        self.max_n = max_n
        super().__init__(f"No sample size up to {max_n} reaches power {threshold:.2f}")
