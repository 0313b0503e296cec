"""K-choice logit scaling, generalized and strict."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]
PARENT = ROOT.parent
for candidate in (PARENT, ROOT):
    path_str = str(candidate)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

import numpy as np
import pytest

from microsim_align.errors import (
    AlignmentWarning,
    ConvergenceError,
    DegenerateInputError,
    EmptyPopulationError,
    InvalidProbabilityError,
    InvalidTargetError,
    NumericError,
)
from microsim_align.multi import LogitScalingAlignment, LogitScalingWeightedAlignment
from microsim_align.synthetic import SyntheticAgent, build_synthetic_population, multi_probability_closure

TARGETS = [0.5, 0.3, 0.2]


def population(n: int = 60, seed: int = 21, weighted: bool = False) -> List[SyntheticAgent]:
    return build_synthetic_population(n, np.random.default_rng(seed), n_choices=3, weighted=weighted)


def from_rows(rows, weights=None) -> List[SyntheticAgent]:
    weights = weights or [1.0] * len(rows)
    return [
        SyntheticAgent(
            agent_id=i, probability=0.5, draw=0.5, weight=w, choice_probabilities=np.asarray(row, dtype=float)
        )
        for i, (row, w) in enumerate(zip(rows, weights))
    ]


def matrix(agents: List[SyntheticAgent]) -> np.ndarray:
    return np.vstack([agent.choice_probabilities for agent in agents])


@pytest.mark.parametrize("strict", [False, True])
def test_columns_meet_targets_and_rows_stay_distributions(strict: bool) -> None:
    agents = population()
    result = LogitScalingAlignment(strict=strict).align(agents, multi_probability_closure(), TARGETS)
    rows = matrix(agents)
    assert result.converged
    assert np.all((rows >= 0.0) & (rows <= 1.0))
    np.testing.assert_allclose(rows.sum(axis=1), 1.0, atol=1e-5)
    # KL below 1e-5 still allows share gaps of a few 1e-3
    np.testing.assert_allclose(rows.mean(axis=0), TARGETS, atol=5e-3 if strict else 1e-3)
    assert len(result.achieved) == 3
    assert result.method == ("logit_strict" if strict else "logit")


def test_weighted_rows_are_divided_back_by_weight() -> None:
    agents = population(weighted=True)
    weights = np.array([agent.weight for agent in agents])
    result = LogitScalingWeightedAlignment().align(agents, multi_probability_closure(), TARGETS)
    rows = matrix(agents)
    assert result.converged
    assert result.total_weight == pytest.approx(weights.sum())
    np.testing.assert_allclose(rows.sum(axis=1), 1.0, atol=1e-5)
    shares = (rows * weights[:, None]).sum(axis=0) / weights.sum()
    np.testing.assert_allclose(shares, TARGETS, atol=1e-3)


def test_realigning_is_idempotent() -> None:
    agents = population()
    aligner = LogitScalingAlignment()
    aligner.align(agents, multi_probability_closure(), TARGETS, max_iterations=1000, precision=1e-10)
    first = matrix(agents)
    aligner.align(agents, multi_probability_closure(), TARGETS, max_iterations=1000, precision=1e-10)
    np.testing.assert_allclose(matrix(agents), first, atol=1e-5)


def test_generalized_variant_warns_on_exhaustion() -> None:
    agents = population()
    with pytest.warns(AlignmentWarning):
        result = LogitScalingAlignment().align(agents, multi_probability_closure(), TARGETS, max_iterations=1)
    assert not result.converged
    assert result.iterations == 1


def test_strict_variant_raises_and_leaves_rows_untouched() -> None:
    agents = population()
    before = matrix(agents)
    with pytest.raises(ConvergenceError) as excinfo:
        LogitScalingAlignment(strict=True).align(
            agents, multi_probability_closure(), TARGETS, max_iterations=1, precision=1e-12
        )
    assert excinfo.value.result is not None
    assert not excinfo.value.result.converged
    np.testing.assert_array_equal(matrix(agents), before)


def test_rejects_targets_summing_above_one() -> None:
    with pytest.raises(InvalidTargetError):
        LogitScalingAlignment().align(population(), multi_probability_closure(), [0.6, 0.3, 0.2])


def test_rejects_all_one_hot_population() -> None:
    agents = from_rows([[1, 0, 0], [0, 1, 0], [0, 0, 1], [1, 0, 0]])
    with pytest.raises(DegenerateInputError):
        LogitScalingAlignment().align(agents, multi_probability_closure(), TARGETS)


def test_rejects_single_choice_and_single_agent() -> None:
    with pytest.raises(InvalidTargetError):
        LogitScalingAlignment().align(population(), multi_probability_closure(), [1.0])
    with pytest.raises(EmptyPopulationError):
        LogitScalingAlignment().align(population(n=1), multi_probability_closure(), TARGETS)


def test_rejects_rows_of_the_wrong_width_or_range() -> None:
    with pytest.raises(InvalidProbabilityError):
        LogitScalingAlignment().align(from_rows([[0.5, 0.5], [0.5, 0.5]]), multi_probability_closure(), TARGETS)
    with pytest.raises(InvalidProbabilityError):
        LogitScalingAlignment().align(
            from_rows([[1.2, -0.1, -0.1], [0.3, 0.3, 0.4]]), multi_probability_closure(), TARGETS
        )


def test_strict_validation() -> None:
    strict = LogitScalingAlignment(strict=True)
    with pytest.raises(InvalidTargetError):
        strict.align(population(), multi_probability_closure(), [0.5, 0.3])
    with pytest.raises(InvalidProbabilityError):
        strict.align(from_rows([[0.2, 0.2, 0.2], [0.3, 0.3, 0.4]]), multi_probability_closure(), TARGETS)
    with pytest.raises(DegenerateInputError, match="impossible"):
        strict.align(from_rows([[0.5, 0.5, 0.0], [0.3, 0.7, 0.0]]), multi_probability_closure(), [0.5, 0.5, 0.0])


def test_strict_weighted_variant() -> None:
    agents = population(weighted=True)
    weights = np.array([agent.weight for agent in agents])
    result = LogitScalingWeightedAlignment(strict=True).align(agents, multi_probability_closure(), TARGETS)
    rows = matrix(agents)
    assert result.converged
    assert result.method == "logit_weighted_strict"
    np.testing.assert_allclose(rows.sum(axis=1), 1.0, atol=1e-5)
    shares = (rows * weights[:, None]).sum(axis=0) / weights.sum()
    np.testing.assert_allclose(shares, TARGETS, atol=5e-3)


def test_strict_weighted_checks_raw_row_sums() -> None:
    agents = from_rows([[0.2, 0.2, 0.2], [0.3, 0.3, 0.4]], weights=[2.0, 3.0])
    with pytest.raises(InvalidProbabilityError, match="sum to"):
        LogitScalingWeightedAlignment(strict=True).align(agents, multi_probability_closure(), TARGETS)


def test_all_zero_row_is_rejected_up_front() -> None:
    agents = from_rows([[0.0, 0.0, 0.0], [0.3, 0.3, 0.4]])
    with pytest.raises(InvalidProbabilityError, match="all zero"):
        LogitScalingAlignment().align(agents, multi_probability_closure(), TARGETS)


def test_agent_losing_all_mass_is_numeric_error() -> None:
    # agent 0 only carries the choice whose target is zero
    agents = from_rows([[1.0, 0.0], [0.5, 0.5]])
    with pytest.raises(NumericError, match="lost all probability mass"):
        LogitScalingAlignment().align(agents, multi_probability_closure(), [0.0, 1.0])
