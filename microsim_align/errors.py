"""Exception taxonomy for microsim alignment."""

from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - only for typing
    from .models import AlignmentResult


class AlignmentError(Exception):
    """Base class for every error raised by an alignment entry point."""


class InvalidInputError(AlignmentError, ValueError):
    """Input rejected before any iteration begins."""


class EmptyPopulationError(InvalidInputError):
    pass


class InvalidTargetError(InvalidInputError):
    pass


class InvalidWeightError(InvalidInputError):
    pass


class InvalidProbabilityError(InvalidInputError):
    pass


class InvalidParameterError(InvalidInputError):
    pass


class DegenerateInputError(InvalidInputError):
    """Inputs for which iterative scaling is a fixed point and cannot move."""


class NumericError(AlignmentError, ArithmeticError):
    """NaN or infinity appeared while aligning; the closures broke their contract."""


class ConvergenceError(AlignmentError, RuntimeError):
    """Raised by strict variants that exhaust their iteration budget.

    The best-effort diagnostic is attached as ``result`` so callers can still
    inspect how far the procedure got.
    """

    def __init__(self, message: str, result: Optional["AlignmentResult"] = None) -> None:
        super().__init__(message)
        self.result = result


class AlignmentWarning(UserWarning):
    """Alignment returned without meeting its target."""


__all__ = [
    "AlignmentError",
    "InvalidInputError",
    "EmptyPopulationError",
    "InvalidTargetError",
    "InvalidWeightError",
    "InvalidProbabilityError",
    "InvalidParameterError",
    "DegenerateInputError",
    "NumericError",
    "ConvergenceError",
    "AlignmentWarning",
]
