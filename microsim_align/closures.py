"""
Caller-supplied contracts through which alignment reads and writes agents.

The algorithms never touch agent fields. They call the closures below, so an
agent can store its probability, outcome or weight however it likes. Any
object with the right methods satisfies a protocol; the ``Function*``
adapters build one from plain callables.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Protocol, Sequence, TypeVar, runtime_checkable

import numpy as np

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)


@runtime_checkable
class Weighted(Protocol):
    """Capability of agents that stand for more (or fewer) than one unit."""

    def get_weight(self) -> float: ...


class OutcomeClosure(Protocol[T_contra]):
    def get_outcome(self, agent: T_contra) -> bool: ...

    def resample(self, agent: T_contra) -> None: ...


class ProbabilityClosure(Protocol[T_contra]):
    def get_probability(self, agent: T_contra) -> float: ...

    def align(self, agent: T_contra, probability: float) -> None: ...


class MultiProbabilityClosure(Protocol[T_contra]):
    def get_probabilities(self, agent: T_contra) -> Sequence[float]: ...

    def align(self, agent: T_contra, probabilities: np.ndarray) -> None: ...


@dataclass(frozen=True)
class FunctionOutcomeClosure(Generic[T]):
    get_outcome_fn: Callable[[T], bool]
    resample_fn: Callable[[T], None]

    def get_outcome(self, agent: T) -> bool:
        return bool(self.get_outcome_fn(agent))

    def resample(self, agent: T) -> None:
        self.resample_fn(agent)


@dataclass(frozen=True)
class FunctionProbabilityClosure(Generic[T]):
    get_probability_fn: Callable[[T], float]
    align_fn: Callable[[T, float], None]

    def get_probability(self, agent: T) -> float:
        return float(self.get_probability_fn(agent))

    def align(self, agent: T, probability: float) -> None:
        self.align_fn(agent, probability)


@dataclass(frozen=True)
class FunctionMultiProbabilityClosure(Generic[T]):
    get_probabilities_fn: Callable[[T], Sequence[float]]
    align_fn: Callable[[T, np.ndarray], None]

    def get_probabilities(self, agent: T) -> Sequence[float]:
        return self.get_probabilities_fn(agent)

    def align(self, agent: T, probabilities: np.ndarray) -> None:
        self.align_fn(agent, probabilities)
