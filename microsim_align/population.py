"""Selection of the working sub-population handed to an alignment algorithm."""

from __future__ import annotations

import math
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from .closures import Weighted
from .errors import EmptyPopulationError, InvalidWeightError

T = TypeVar("T")

Predicate = Callable[[T], bool]


def extract_population(
    population: Iterable[T],
    predicate: Optional[Predicate] = None,
    minimum: int = 1,
    label: str = "alignment",
) -> List[T]:
    """Return the agents selected by ``predicate`` in source iteration order.

    ``None`` selects every agent. Duplicates are kept. Raises
    ``EmptyPopulationError`` when fewer than ``minimum`` agents survive the
    filter.
    """
    if predicate is None:
        selected = list(population)
    else:
        selected = [agent for agent in population if predicate(agent)]
    if len(selected) < minimum:
        if minimum <= 1:
            raise EmptyPopulationError(f"{label}: the selected population is empty")
        raise EmptyPopulationError(
            f"{label}: requires at least {minimum} agents, {len(selected)} selected"
        )
    return selected


def default_weight(agent) -> float:
    """Read the ``Weighted`` capability of an agent."""
    if not isinstance(agent, Weighted):
        raise InvalidWeightError(
            f"{type(agent).__name__} has no get_weight(); pass weight= or implement the Weighted capability"
        )
    return agent.get_weight()


def collect_weights(
    agents: Sequence[T],
    weight_of: Optional[Callable[[T], float]] = None,
    label: str = "alignment",
) -> np.ndarray:
    """Return validated agent weights as a float array.

    Every weight must be finite and strictly positive; nothing is clamped.
    """
    reader = weight_of or default_weight
    weights = np.empty(len(agents), dtype=float)
    for i, agent in enumerate(agents):
        raw = reader(agent)
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise InvalidWeightError(f"{label}: weight of agent {i} is not a number") from exc
        if math.isnan(value) or math.isinf(value) or value <= 0.0:
            raise InvalidWeightError(
                f"{label}: weight of agent {i} must be finite and > 0, got {value}"
            )
        weights[i] = value
    return weights
