"""
Binary probability alignment for microsim-align.

Probability alignment runs before outcomes are drawn: each agent exposes the
probability of a positive outcome through a ``ProbabilityClosure`` and
receives an aligned value back through ``closure.align``. Methods here:

- ``MultiplicativeScalingAlignment``: one closed-form factor for everybody.
- ``SBDAlignment``: sort by ``p - u`` and allocate 0/1 outcomes.
- ``SidewalkAlignment``: cumulative allocation over a shuffled population.
- ``LogitScalingBinaryAlignment`` and ``LogitScalingBinaryWeightedAlignment``:
  iterative proportional fitting of the (p, 1 - p) pairs.

Logit scaling is the legacy binary member of the logit scaling family. When
it runs out of iterations it keeps the best-effort probabilities, returns
``converged=False`` and optionally warns; it never raises for
non-convergence. Compare ``multi.LogitScalingAlignment(strict=True)``.

References
----------
Li, J., & O'Donoghue, C. (2014). Evaluating binary alignment methods in
    microsimulation models. Journal of Artificial Societies and Social
    Simulation, 17(1), 15.

Stephensen, P. (2016). Logit scaling: A general method for alignment in
    microsimulation models. International Journal of Microsimulation, 9(3), 89-102.
"""

from __future__ import annotations

import math
from typing import Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from .closures import ProbabilityClosure
from .config import AlignmentConfig
from .errors import InvalidProbabilityError, InvalidTargetError, NumericError
from .models import AlignmentResult
from .population import Predicate, collect_weights, extract_population
from .utils import (
    ensure_finite,
    floor_count,
    require_rng,
    resolve_iterations,
    resolve_precision,
    scaling_factor,
    shuffled,
    trace,
    warn_alignment,
)

T = TypeVar("T")


def _validate_share(target_share: float, label: str) -> float:
    share = float(target_share)
    if not 0.0 <= share <= 1.0:
        raise InvalidTargetError(f"{label}: target probability must lie in [0, 1], got {target_share}")
    return share


def _read_probabilities(agents: Sequence[T], closure: ProbabilityClosure[T], label: str) -> np.ndarray:
    probs = np.array([closure.get_probability(agent) for agent in agents], dtype=float)
    ensure_finite(probs, f"{label} input probabilities")
    return probs


class _ProbabilityAlignment(Generic[T]):
    method = "probability"

    def __init__(self, config: Optional[AlignmentConfig] = None) -> None:
        self.config = config or AlignmentConfig()

    def _warnings(self, override: Optional[bool]) -> bool:
        return self.config.WARNINGS_ENABLED if override is None else bool(override)

    def _allocation_result(
        self, n: int, target: float, achieved: float, message: str = "", converged: Optional[bool] = None
    ) -> AlignmentResult:
        error = achieved - target
        return AlignmentResult(
            method=self.method,
            n_agents=n,
            total_weight=float(n),
            target=target,
            achieved=achieved,
            error=error,
            relative_error=error / n,
            iterations=1,
            converged=abs(error) <= 1.0 if converged is None else converged,
            message=message,
        )


class MultiplicativeScalingAlignment(_ProbabilityAlignment[T]):
    """Multiply every probability by ``target_share * n / sum(p)``.

    Aligned probabilities are not clamped and can leave [0, 1] when the
    target is far from the simulated mean. The result message counts such
    agents and an ``AlignmentWarning`` is emitted for them when enabled.
    """

    method = "multiplicative"

    def align(
        self,
        agents: Iterable[T],
        closure: ProbabilityClosure[T],
        target_share: float,
        predicate: Optional[Predicate] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        label = "MultiplicativeScalingAlignment"
        share = _validate_share(target_share, label)
        selected = extract_population(agents, predicate, label=label)
        n = len(selected)
        probs = _read_probabilities(selected, closure, label)
        target = share * n
        factor = scaling_factor(target, float(probs.sum()), label)
        aligned = probs * factor
        for agent, value in zip(selected, aligned):
            closure.align(agent, float(value))

        outside = int(np.count_nonzero((aligned < 0.0) | (aligned > 1.0)))
        message = f"factor={factor:.6g}"
        if outside:
            message += f"; {outside} aligned probabilities lie outside [0, 1]"
            warn_alignment(
                f"{label}: {outside} of {n} aligned probabilities lie outside [0, 1] (factor {factor:.6g}).",
                self._warnings(warnings_enabled),
            )
        return self._allocation_result(n, target, float(aligned.sum()), message, converged=True)


class SBDAlignment(_ProbabilityAlignment[T]):
    """Sort-by-difference alignment.

    Every agent gets a score ``p - u`` with ``u`` uniform on [0, 1). The
    ``floor(target_share * n)`` highest scores are aligned to 1, the rest to
    0. Draws are taken in selection order, one per agent.
    """

    method = "sbd"

    def align(
        self,
        agents: Iterable[T],
        closure: ProbabilityClosure[T],
        target_share: float,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
    ) -> AlignmentResult:
        label = "SBDAlignment"
        share = _validate_share(target_share, label)
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        n = len(selected)
        probs = _read_probabilities(selected, closure, label)
        draws = rng.random(n)
        scores = probs - draws
        order = np.argsort(-scores, kind="stable")
        positives = floor_count(share * n)
        allocation = np.zeros(n, dtype=float)
        allocation[order[:positives]] = 1.0
        for agent, value in zip(selected, allocation):
            closure.align(agent, float(value))
        return self._allocation_result(n, share * n, float(positives))


class SidewalkAlignment(_ProbabilityAlignment[T]):
    """Cumulative ("sidewalk") allocation over a shuffled population.

    Walking the shuffled agents, a running sum of probabilities is kept; the
    agent whose probability pushes the integer part of the sum up is aligned
    to 1, every other agent to 0. The positive count equals the integer part
    of the total probability mass. With ``scale_to_target`` the probabilities
    are first scaled multiplicatively so that mass equals ``target_share * n``.
    """

    method = "sidewalk"

    def align(
        self,
        agents: Iterable[T],
        closure: ProbabilityClosure[T],
        target_share: float,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
        scale_to_target: bool = False,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        label = "SidewalkAlignment"
        share = _validate_share(target_share, label)
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        working = shuffled(selected, rng)
        n = len(working)
        probs = _read_probabilities(working, closure, label)
        target = share * n
        if scale_to_target:
            probs = probs * scaling_factor(target, float(probs.sum()), label)

        running = 0.0
        positives = 0
        for agent, p in zip(working, probs):
            previous = floor_count(running)
            running += float(p)
            if floor_count(running) != previous:
                closure.align(agent, 1.0)
                positives += 1
            else:
                closure.align(agent, 0.0)

        result = self._allocation_result(n, target, float(positives), f"probability_mass={running:.6g}")
        if not result.converged:
            result.message += "; mass differs from the target, consider scale_to_target=True"
            warn_alignment(
                f"{label}: allocated {positives} positives against a target of {target:.3f}.",
                self._warnings(warnings_enabled),
            )
        return result


def _binary_logit_scaling(
    prob: np.ndarray,
    not_prob: np.ndarray,
    weights: np.ndarray,
    target: float,
    allowed_error: float,
    max_iterations: int,
    label: str,
    verbose: bool,
) -> Tuple[float, int]:
    """Iterate gamma/alpha transforms in place; return (error, iterations)."""
    total = float(weights.sum())
    count = 0
    error = math.inf
    sum_prob = 0.0
    sum_not_prob = 0.0
    while error >= allowed_error and count < max_iterations:
        previous_sum_prob = sum_prob
        previous_sum_not_prob = sum_not_prob

        # Gamma transform: column sums onto target and its complement
        gamma = scaling_factor(target, float(prob.sum()), label)
        not_gamma = scaling_factor(total - target, float(not_prob.sum()), label)
        prob *= gamma
        not_prob *= not_gamma

        # Alpha transform: each pair back onto the agent's weight
        row = prob + not_prob
        if np.any(row <= 0.0):
            empty = int(np.flatnonzero(row <= 0.0)[0])
            raise NumericError(f"{label}: agent {empty} lost all probability mass; the target is unreachable")
        alpha = weights / row
        prob *= alpha
        not_prob *= alpha
        ensure_finite(prob, f"{label} iteration {count}")
        ensure_finite(not_prob, f"{label} iteration {count}")

        sum_prob = float(prob.sum())
        sum_not_prob = float(not_prob.sum())
        # Two options, so halve to match the multiple choice metric
        error = (abs(sum_prob - previous_sum_prob) + abs(sum_not_prob - previous_sum_not_prob)) / 2.0
        count += 1
        trace(verbose, f"{label}: iteration={count} error={error / total:.3e} gamma={gamma:.6g}")
    return error, count


class _LogitScalingBinaryBase(_ProbabilityAlignment[T]):
    label = "LogitScalingBinaryAlignment"

    def _align(
        self,
        selected: List[T],
        weights: np.ndarray,
        closure: ProbabilityClosure[T],
        share: float,
        max_iterations: Optional[int],
        precision: Optional[float],
        warnings_enabled: Optional[bool],
    ) -> AlignmentResult:
        label = self.label
        iterations_cap = resolve_iterations(max_iterations, self.config.MAX_ITERATIONS)
        tolerance = resolve_precision(precision, self.config.PRECISION)

        raw = _read_probabilities(selected, closure, label)
        if np.any((raw < 0.0) | (raw > 1.0)):
            bad = int(np.flatnonzero((raw < 0.0) | (raw > 1.0))[0])
            raise InvalidProbabilityError(f"{label}: probability of agent {bad} is {raw[bad]}, outside [0, 1]")

        total = float(weights.sum())
        prob = raw * weights
        not_prob = weights - prob
        target = share * total
        allowed_error = tolerance * total

        error, count = _binary_logit_scaling(
            prob, not_prob, weights, target, allowed_error, iterations_cap, label, self.config.VERBOSE
        )
        converged = error < allowed_error
        message = ""
        if not converged:
            message = (
                f"WARNING: {label} terminated with an error of {error / total:.3e}, which is larger than "
                f"the precision bound of +/-{tolerance}. The number of iterations was {count}. Check that the "
                f"alignment is good enough, or increase the maximum number of iterations or the precision."
            )
            warn_alignment(message, self._warnings(warnings_enabled))

        aligned = prob / weights
        for agent, value in zip(selected, aligned):
            closure.align(agent, float(value))
        return AlignmentResult(
            method=self.method,
            n_agents=len(selected),
            total_weight=total,
            target=target,
            achieved=float(prob.sum()),
            error=error,
            relative_error=error / total,
            iterations=count,
            converged=converged,
            message=message,
        )


class LogitScalingBinaryAlignment(_LogitScalingBinaryBase[T]):
    """Logit scaling of binary probabilities for unweighted agents.

    Defaults (100 iterations, precision 1e-5) come from the config; the
    tolerance is ``precision * n``.
    """

    method = "logit_binary"
    label = "LogitScalingBinaryAlignment"

    def align(
        self,
        agents: Iterable[T],
        closure: ProbabilityClosure[T],
        target_share: float,
        predicate: Optional[Predicate] = None,
        max_iterations: Optional[int] = None,
        precision: Optional[float] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        share = _validate_share(target_share, self.label)
        selected = extract_population(agents, predicate, label=self.label)
        weights = np.ones(len(selected), dtype=float)
        return self._align(selected, weights, closure, share, max_iterations, precision, warnings_enabled)


class LogitScalingBinaryWeightedAlignment(_LogitScalingBinaryBase[T]):
    """Logit scaling of binary probabilities where each agent carries a weight.

    Probabilities are scaled up by weight while iterating, so each pair sums
    to the agent's weight, and scaled back down before ``closure.align``.
    The tolerance is ``precision * total_weight``.
    """

    method = "logit_binary_weighted"
    label = "LogitScalingBinaryWeightedAlignment"

    def align(
        self,
        agents: Iterable[T],
        closure: ProbabilityClosure[T],
        target_share: float,
        predicate: Optional[Predicate] = None,
        max_iterations: Optional[int] = None,
        precision: Optional[float] = None,
        warnings_enabled: Optional[bool] = None,
        weight: Optional[Callable[[T], float]] = None,
    ) -> AlignmentResult:
        share = _validate_share(target_share, self.label)
        selected = extract_population(agents, predicate, label=self.label)
        weights = collect_weights(selected, weight, label=self.label)
        return self._align(selected, weights, closure, share, max_iterations, precision, warnings_enabled)
