"""Random-source and numeric helpers shared by the alignment algorithms."""

from __future__ import annotations

import math
import warnings
from typing import Any, List, Optional, Sequence, Type, TypeVar, Union

import numpy as np
from scipy.special import rel_entr

from .errors import AlignmentWarning, InvalidInputError, InvalidParameterError, NumericError

T = TypeVar("T")

SeedLike = Union[None, int, np.random.Generator]

# Guard for floor() on accumulated float sums (ten 0.1's must count as 1.0)
FLOOR_EPSILON = 1e-9


def make_rng(seed: SeedLike = None) -> np.random.Generator:
    """Return a ``numpy.random.Generator``, reusing one if it is passed in."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def require_rng(rng: Any) -> np.random.Generator:
    if not isinstance(rng, np.random.Generator):
        raise InvalidParameterError(
            f"rng must be a numpy.random.Generator owned by the caller, got {type(rng).__name__}"
        )
    return rng


def shuffled(items: Sequence[T], rng: np.random.Generator) -> List[T]:
    """Return a new list with ``items`` in a Fisher-Yates order drawn from ``rng``."""
    order = rng.permutation(len(items))
    return [items[int(i)] for i in order]


def weighted_index(weights: np.ndarray, rng: np.random.Generator) -> int:
    """Pick an index with probability proportional to its (non-negative) weight."""
    cumulative = np.cumsum(weights)
    total = float(cumulative[-1])
    if total <= 0.0:
        raise NumericError("cannot sample from a partition with zero total weight")
    u = rng.random() * total
    idx = int(np.searchsorted(cumulative, u, side="right"))
    # u can land on the last boundary through rounding; step back to a live entry
    idx = min(idx, len(weights) - 1)
    while weights[idx] <= 0.0 and idx > 0:
        idx -= 1
    return idx


def floor_count(value: float) -> int:
    return int(math.floor(value + FLOOR_EPSILON))


def whole_number(value: Any, name: str, error: Type[InvalidInputError] = InvalidParameterError) -> int:
    """Return ``value`` as an int, rejecting fractions, NaN, infinity and bools."""
    if isinstance(value, bool):
        raise error(f"{name} must be an integer, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise error(f"{name} must be an integer, got {value!r}") from exc
    if not math.isfinite(number) or not number.is_integer():
        raise error(f"{name} must be an integer, got {value!r}")
    return int(number)


def resolve_iterations(value: Optional[int], default: int) -> int:
    iterations = whole_number(default if value is None else value, "max_iterations")
    if iterations < 1:
        raise InvalidParameterError(f"max_iterations must be an integer >= 1, got {iterations}")
    return iterations


def resolve_precision(value: Optional[float], default: float) -> float:
    precision = float(default if value is None else value)
    if not math.isfinite(precision) or precision <= 0.0:
        raise InvalidParameterError(f"precision must be finite and > 0, got {precision}")
    return precision


def ensure_finite(values: Any, where: str) -> None:
    arr = np.asarray(values, dtype=float)
    if not np.all(np.isfinite(arr)):
        raise NumericError(f"non-finite value encountered in {where}")


def scaling_factor(target: float, current: float, where: str) -> float:
    """Factor moving ``current`` aggregate mass onto ``target``.

    Zero mass can only be scaled onto a zero target; anything else means the
    target is unreachable and the computation would produce NaN or infinity.
    """
    if current == 0.0:
        if target == 0.0:
            return 1.0
        raise NumericError(f"{where}: cannot scale zero probability mass to a target of {target}")
    factor = target / current
    if not math.isfinite(factor):
        raise NumericError(f"{where}: non-finite scaling factor ({target} / {current})")
    return factor


def kl_divergence(target: Sequence[float], realized: Sequence[float]) -> float:
    """Kullback-Leibler divergence KL(target || realized) in nats."""
    p = np.asarray(target, dtype=float)
    q = np.asarray(realized, dtype=float)
    return float(np.sum(rel_entr(p, q)))


def warn_alignment(message: str, enabled: bool) -> None:
    if enabled:
        warnings.warn(message, AlignmentWarning, stacklevel=3)


def trace(enabled: bool, message: str) -> None:
    if enabled:
        print(f"[Align] {message}")
