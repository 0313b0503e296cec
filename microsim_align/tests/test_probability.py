"""Binary probability alignment: multiplicative, SBD, sidewalk and logit scaling."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

ROOT = Path(__file__).resolve().parents[1]
PARENT = ROOT.parent
for candidate in (PARENT, ROOT):
    path_str = str(candidate)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

import numpy as np
import pytest

from microsim_align.closures import FunctionProbabilityClosure
from microsim_align.errors import (
    AlignmentWarning,
    InvalidParameterError,
    InvalidProbabilityError,
    InvalidTargetError,
    NumericError,
)
from microsim_align.probability import (
    LogitScalingBinaryAlignment,
    LogitScalingBinaryWeightedAlignment,
    MultiplicativeScalingAlignment,
    SBDAlignment,
    SidewalkAlignment,
)


@dataclass
class Person:
    probability: float
    weight: float = 1.0

    def get_weight(self) -> float:
        return self.weight


def people(probabilities: Sequence[float], weights: Sequence[float] = ()) -> List[Person]:
    if not weights:
        weights = [1.0] * len(probabilities)
    return [Person(p, w) for p, w in zip(probabilities, weights)]


def _set(person: Person, value: float) -> None:
    person.probability = value


CLOSURE = FunctionProbabilityClosure(lambda person: person.probability, _set)


def probs(population: List[Person]) -> np.ndarray:
    return np.array([person.probability for person in population])


class TestMultiplicativeScaling:
    def test_mean_target_is_a_no_op(self) -> None:
        population = people([0.1, 0.2, 0.3, 0.4])
        result = MultiplicativeScalingAlignment().align(population, CLOSURE, 0.25)
        np.testing.assert_allclose(probs(population), [0.1, 0.2, 0.3, 0.4])
        assert result.message.startswith("factor=1")

    def test_scales_mass_onto_target(self) -> None:
        population = people([0.1, 0.2, 0.3, 0.4])
        result = MultiplicativeScalingAlignment().align(population, CLOSURE, 0.5)
        np.testing.assert_allclose(probs(population), [0.2, 0.4, 0.6, 0.8])
        assert result.achieved == pytest.approx(2.0)
        assert result.converged

    def test_out_of_range_results_are_kept_and_reported(self) -> None:
        population = people([0.9, 0.1])
        with pytest.warns(AlignmentWarning, match="outside"):
            result = MultiplicativeScalingAlignment().align(population, CLOSURE, 0.9)
        assert probs(population)[0] == pytest.approx(1.62)
        assert "outside [0, 1]" in result.message

    def test_zero_mass(self) -> None:
        population = people([0.0, 0.0])
        MultiplicativeScalingAlignment().align(population, CLOSURE, 0.0)
        np.testing.assert_allclose(probs(population), [0.0, 0.0])
        with pytest.raises(NumericError):
            MultiplicativeScalingAlignment().align(population, CLOSURE, 0.5)

    def test_non_finite_probability_is_fatal(self) -> None:
        with pytest.raises(NumericError):
            MultiplicativeScalingAlignment().align(people([0.2, float("nan")]), CLOSURE, 0.5)


class TestSBD:
    def test_allocates_the_two_highest_scores(self) -> None:
        base = [0.9, 0.8, 0.3, 0.2]
        population = people(base)
        SBDAlignment().align(population, CLOSURE, 0.5, np.random.default_rng(123))

        draws = np.random.default_rng(123).random(4)
        scores = np.array(base) - draws
        expected = np.zeros(4)
        expected[np.argsort(-scores, kind="stable")[:2]] = 1.0
        np.testing.assert_array_equal(probs(population), expected)
        assert probs(population).sum() == 2.0

    @pytest.mark.parametrize("share, positives", [(0.0, 0), (0.55, 2), (0.75, 3), (1.0, 4)])
    def test_allocates_floor_of_target(self, share: float, positives: int) -> None:
        population = people([0.5, 0.5, 0.5, 0.5])
        result = SBDAlignment().align(population, CLOSURE, share, np.random.default_rng(1))
        assert probs(population).sum() == positives
        assert set(probs(population)) <= {0.0, 1.0}
        assert result.achieved == positives

    def test_predicate_limits_allocation(self) -> None:
        population = people([0.9, 0.9, 0.1, 0.1])
        SBDAlignment().align(
            population, CLOSURE, 1.0, np.random.default_rng(2), predicate=lambda p: p.probability > 0.5
        )
        np.testing.assert_array_equal(probs(population), [1.0, 1.0, 0.1, 0.1])

    def test_rejects_invalid_target(self) -> None:
        with pytest.raises(InvalidTargetError):
            SBDAlignment().align(people([0.5]), CLOSURE, 1.2, np.random.default_rng(0))


class TestSidewalk:
    def test_accumulated_float_mass_counts_whole_units(self) -> None:
        population = people([0.1] * 10)
        result = SidewalkAlignment().align(population, CLOSURE, 0.1, np.random.default_rng(3))
        assert probs(population).sum() == 1.0
        assert result.converged

    def test_scale_to_target(self) -> None:
        population = people([0.1] * 10)
        result = SidewalkAlignment().align(
            population, CLOSURE, 0.5, np.random.default_rng(4), scale_to_target=True
        )
        assert probs(population).sum() == 5.0
        assert set(probs(population)) <= {0.0, 1.0}
        assert result.error == pytest.approx(0.0)

    def test_unscaled_mass_far_from_target_warns(self) -> None:
        population = people([0.1] * 10)
        with pytest.warns(AlignmentWarning):
            result = SidewalkAlignment().align(population, CLOSURE, 0.9, np.random.default_rng(5))
        assert not result.converged
        assert "scale_to_target" in result.message


class TestLogitScalingBinary:
    def test_ten_low_probabilities_move_to_half(self) -> None:
        population = people([0.1] * 10)
        result = LogitScalingBinaryAlignment().align(population, CLOSURE, 0.5)
        assert result.converged
        assert result.iterations <= 100
        np.testing.assert_allclose(probs(population), [0.5] * 10, atol=1e-5)

    def test_heterogeneous_population_meets_target(self) -> None:
        rng = np.random.default_rng(6)
        population = people(rng.beta(2.0, 5.0, size=200))
        result = LogitScalingBinaryAlignment().align(population, CLOSURE, 0.45)
        aligned = probs(population)
        assert result.converged
        assert np.all((aligned >= 0.0) & (aligned <= 1.0))
        assert aligned.mean() == pytest.approx(0.45, abs=1e-3)

    def test_realigning_is_idempotent(self) -> None:
        population = people([0.2, 0.4, 0.6, 0.8])
        aligner = LogitScalingBinaryAlignment()
        aligner.align(population, CLOSURE, 0.3, max_iterations=1000, precision=1e-9)
        first = probs(population)
        aligner.align(population, CLOSURE, 0.3, max_iterations=1000, precision=1e-9)
        np.testing.assert_allclose(probs(population), first, atol=1e-5)

    def test_iteration_budget_exhaustion_warns_and_keeps_values(self) -> None:
        population = people([0.1] * 10)
        with pytest.warns(AlignmentWarning, match="terminated"):
            result = LogitScalingBinaryAlignment().align(population, CLOSURE, 0.5, max_iterations=1)
        assert not result.converged
        assert result.iterations == 1
        np.testing.assert_allclose(probs(population), [0.5] * 10)

    def test_rejects_probability_outside_unit_interval(self) -> None:
        with pytest.raises(InvalidProbabilityError):
            LogitScalingBinaryAlignment().align(people([0.5, 1.2]), CLOSURE, 0.5)

    def test_unreachable_target_is_numeric_error(self) -> None:
        with pytest.raises(NumericError):
            LogitScalingBinaryAlignment().align(people([0.0, 0.0]), CLOSURE, 0.5)

    def test_weighted_meets_weighted_share(self) -> None:
        weights = [1.0, 2.0, 3.0, 4.0]
        population = people([0.2, 0.4, 0.1, 0.5], weights)
        result = LogitScalingBinaryWeightedAlignment().align(population, CLOSURE, 0.3)
        aligned = probs(population)
        assert result.converged
        assert result.total_weight == pytest.approx(10.0)
        assert np.all((aligned >= 0.0) & (aligned <= 1.0))
        assert float(np.dot(aligned, weights)) / 10.0 == pytest.approx(0.3, abs=1e-3)

    def test_weighted_accepts_weight_callable(self) -> None:
        population = people([0.2, 0.4, 0.1, 0.5])
        result = LogitScalingBinaryWeightedAlignment().align(
            population, CLOSURE, 0.3, weight=lambda person: 2.0
        )
        assert result.total_weight == pytest.approx(8.0)
        assert probs(population).mean() == pytest.approx(0.3, abs=1e-3)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), 1.5, 0])
def test_logit_rejects_invalid_iteration_budget(bad) -> None:
    with pytest.raises(InvalidParameterError):
        LogitScalingBinaryAlignment().align(people([0.1] * 10), CLOSURE, 0.5, max_iterations=bad)
