"""Synthetic agent populations for demos, benchmarks and tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .closures import (
    FunctionMultiProbabilityClosure,
    FunctionOutcomeClosure,
    FunctionProbabilityClosure,
)

# Beta(2, 5) centres individual probabilities near 0.29 with a long right tail
PROBABILITY_DISTRIBUTION: Dict[str, float] = {"a": 2.0, "b": 5.0}
WEIGHT_DISTRIBUTION: Dict[str, float] = {"mean": 0.0, "sigma": 0.5}


@dataclass
class SyntheticAgent:
    """Minimal agent with a binary event, a K-choice event and a weight."""

    agent_id: int
    probability: float
    draw: float
    weight: float = 1.0
    choice_probabilities: np.ndarray = field(default_factory=lambda: np.array([0.5, 0.5]))
    base_probability: Optional[float] = None

    def __post_init__(self) -> None:
        if self.base_probability is None:
            self.base_probability = self.probability

    @property
    def outcome(self) -> bool:
        return self.draw < self.probability

    def get_weight(self) -> float:
        return self.weight

    def resample(self, rng: np.random.Generator) -> None:
        self.draw = float(rng.random())


def build_synthetic_population(
    n_agents: int,
    rng: np.random.Generator,
    n_choices: int = 3,
    weighted: bool = False,
) -> List[SyntheticAgent]:
    """Draw ``n_agents`` heterogeneous agents from ``rng``."""
    if n_agents < 1:
        raise ValueError("n_agents must be at least 1")
    if n_choices < 2:
        raise ValueError("n_choices must be at least 2")
    probabilities = rng.beta(PROBABILITY_DISTRIBUTION["a"], PROBABILITY_DISTRIBUTION["b"], size=n_agents)
    draws = rng.random(n_agents)
    if weighted:
        weights = rng.lognormal(WEIGHT_DISTRIBUTION["mean"], WEIGHT_DISTRIBUTION["sigma"], size=n_agents)
    else:
        weights = np.ones(n_agents)
    choices = rng.dirichlet(np.ones(n_choices), size=n_agents)
    return [
        SyntheticAgent(
            agent_id=i,
            probability=float(probabilities[i]),
            draw=float(draws[i]),
            weight=float(weights[i]),
            choice_probabilities=choices[i].copy(),
        )
        for i in range(n_agents)
    ]


def outcome_closure(rng: np.random.Generator) -> FunctionOutcomeClosure[SyntheticAgent]:
    """Outcome is ``draw < probability``; resampling re-draws from ``rng``."""
    return FunctionOutcomeClosure(lambda agent: agent.outcome, lambda agent: agent.resample(rng))


def probability_closure() -> FunctionProbabilityClosure[SyntheticAgent]:
    def _align(agent: SyntheticAgent, value: float) -> None:
        agent.probability = value

    return FunctionProbabilityClosure(lambda agent: agent.probability, _align)


def multi_probability_closure() -> FunctionMultiProbabilityClosure[SyntheticAgent]:
    def _align(agent: SyntheticAgent, values: np.ndarray) -> None:
        agent.choice_probabilities = np.asarray(values, dtype=float)

    return FunctionMultiProbabilityClosure(lambda agent: agent.choice_probabilities, _align)
