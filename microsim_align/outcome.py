"""
Outcome alignment by resampling for microsim-align.

Outcome alignment works on outcomes that have already been drawn. Agents
whose realized outcome points the wrong way are asked to re-draw it
(``closure.resample``) until the number, or the total weight, of positive
outcomes in the sub-population matches the target.

Both algorithms are stochastic and bounded by an explicit attempt budget. The
attempt counter only counts *unproductive* re-draws: every successful flip
resets it to zero. Exhausting the budget is not an error. The partially
aligned population is kept, a diagnostic with ``converged=False`` is returned
and, when enabled, an ``AlignmentWarning`` reports the remaining delta.

Key behaviours:

1. **Share targets pick at random**: ``align_share`` draws a uniformly random
   agent for every attempt and stops once the remaining delta is within one
   agent of the target.

2. **Count targets scan cyclically**: ``align_count`` walks the shuffled
   population in order, wrapping around, and stops only on an exact match.
   The two selection policies are separate code paths and consume the
   random source differently.

3. **Weighted resampling**: picks agents with probability proportional to
   their weight and never flips an agent heavier than the remaining delta,
   except for one final bounded set of attempts on the lightest such agent
   when that flip would bring the aggregate closer to the target.

References
----------
Li, J., & O'Donoghue, C. (2014). Evaluating binary alignment methods in
    microsimulation models. Journal of Artificial Societies and Social
    Simulation, 17(1), 15.
"""

from __future__ import annotations

from typing import Callable, Generic, Iterable, List, Optional, TypeVar

import numpy as np

from .closures import OutcomeClosure
from .config import AlignmentConfig
from .errors import InvalidTargetError
from .models import AlignmentResult
from .population import Predicate, collect_weights, extract_population
from .utils import require_rng, shuffled, trace, warn_alignment, weighted_index, whole_number

T = TypeVar("T")


def _attempt_budget(max_attempts: Optional[int], eligible: int, per_agent: int) -> int:
    """Resampling budget for ``eligible`` agents that could change outcome.

    A caller budget below ``eligible`` (or none at all) is raised to the
    default of ``per_agent`` attempts per eligible agent.
    """
    if max_attempts is not None:
        max_attempts = whole_number(max_attempts, "max_attempts")
    if max_attempts is None or max_attempts < eligible:
        return per_agent * eligible
    return max_attempts


def _validate_share(target_share: float, label: str) -> float:
    share = float(target_share)
    if not 0.0 <= share <= 1.0:
        raise InvalidTargetError(f"{label}: target share must lie in [0, 1], got {target_share}")
    return share


class ResamplingAlignment(Generic[T]):
    """Resampling alignment for unweighted agents."""

    method = "resampling"

    def __init__(self, config: Optional[AlignmentConfig] = None) -> None:
        self.config = config or AlignmentConfig()

    def align_share(
        self,
        agents: Iterable[T],
        closure: OutcomeClosure[T],
        target_share: float,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
        max_attempts: Optional[int] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        """Resample until the positive count is within one agent of ``target_share * n``.

        Parameters
        ----------
        agents : iterable
            Full agent collection; ``predicate`` selects the sub-population.
        closure : OutcomeClosure
            Reads the realized outcome and re-draws it.
        target_share : float
            Target share of positive outcomes, in [0, 1].
        rng : numpy.random.Generator
            Caller-owned random source; used for the shuffle and agent picks.
        max_attempts : int, optional
            Budget of consecutive unproductive re-draws. Values below the
            number of agents that must change are raised to the default.

        Returns
        -------
        AlignmentResult
            ``converged`` is False when the budget ran out first.
        """
        label = "ResamplingAlignment"
        share = _validate_share(target_share, label)
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        working = shuffled(selected, rng)
        n = len(working)

        positives = sum(1 for agent in working if closure.get_outcome(agent))
        target = share * n
        delta = positives - target
        flip_from = delta > 0  # outcome held by the agents that must change
        eligible = positives if flip_from else n - positives
        budget = _attempt_budget(max_attempts, eligible, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)

        count = 0
        calls = 0
        step = -1.0 if flip_from else 1.0
        while abs(delta) > 1.0 and count < budget:
            agent = working[int(rng.integers(n))]
            if closure.get_outcome(agent) != flip_from:
                continue
            count += 1
            calls += 1
            closure.resample(agent)
            if closure.get_outcome(agent) != flip_from:
                delta += step
                count = 0

        achieved = float(sum(1 for agent in working if closure.get_outcome(agent)))
        converged = abs(achieved - target) <= 1.0
        message = ""
        if not converged:
            message = _exhausted_message(label, achieved - target, n, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)
            warn_alignment(message, self._warnings(warnings_enabled))
        trace(self.config.VERBOSE, f"{label}: target={target:.3f} achieved={achieved:.0f} resample_calls={calls}")
        return AlignmentResult(
            method=self.method,
            n_agents=n,
            total_weight=float(n),
            target=target,
            achieved=achieved,
            error=achieved - target,
            relative_error=(achieved - target) / n,
            iterations=calls,
            converged=converged,
            resample_calls=calls,
            message=message,
        )

    def align_count(
        self,
        agents: Iterable[T],
        closure: OutcomeClosure[T],
        target_count: int,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
        max_attempts: Optional[int] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        """Resample by cyclic scan until exactly ``target_count`` outcomes are positive."""
        label = "ResamplingAlignment"
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        n = len(selected)
        target_count = whole_number(target_count, f"{label}: target count", InvalidTargetError)
        if target_count < 0:
            raise InvalidTargetError(f"{label}: target count is negative ({target_count})")
        if target_count > n:
            raise InvalidTargetError(
                f"{label}: target count {target_count} is larger than the selected population ({n})"
            )
        working = shuffled(selected, rng)

        positives = sum(1 for agent in working if closure.get_outcome(agent))
        delta = positives - target_count
        flip_from = delta > 0
        eligible = positives if flip_from else n - positives
        budget = _attempt_budget(max_attempts, eligible, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)

        count = 0
        calls = 0
        idx = 0
        step = -1 if flip_from else 1
        while delta != 0 and count < budget:
            agent = working[idx]
            if closure.get_outcome(agent) == flip_from:
                calls += 1
                closure.resample(agent)
                if closure.get_outcome(agent) != flip_from:
                    delta += step
                    count = 0
                else:
                    count += 1
            idx = idx + 1 if idx < n - 1 else 0

        achieved = sum(1 for agent in working if closure.get_outcome(agent))
        error = float(achieved - target_count)
        converged = error == 0.0
        message = ""
        if not converged:
            message = _exhausted_message(label, error, n, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)
            warn_alignment(message, self._warnings(warnings_enabled))
        return AlignmentResult(
            method=self.method,
            n_agents=n,
            total_weight=float(n),
            target=float(target_count),
            achieved=float(achieved),
            error=error,
            relative_error=error / n,
            iterations=calls,
            converged=converged,
            resample_calls=calls,
            message=message,
        )

    def _warnings(self, override: Optional[bool]) -> bool:
        return self.config.WARNINGS_ENABLED if override is None else bool(override)


class ResamplingWeightedAlignment(Generic[T]):
    """Resampling alignment where each agent stands for ``weight`` units.

    Agents must either implement ``get_weight()`` or a ``weight`` callable
    must be supplied. Every weight must be finite and strictly positive.
    """

    method = "resampling_weighted"

    def __init__(self, config: Optional[AlignmentConfig] = None) -> None:
        self.config = config or AlignmentConfig()

    def align_share(
        self,
        agents: Iterable[T],
        closure: OutcomeClosure[T],
        target_share: float,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
        max_attempts: Optional[int] = None,
        weight: Optional[Callable[[T], float]] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        """Align the weighted positive total onto ``target_share * total_weight``."""
        label = "ResamplingWeightedAlignment"
        share = _validate_share(target_share, label)
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        weights = collect_weights(selected, weight, label=label)
        target = share * float(weights.sum())
        return self._align(selected, weights, closure, target, rng, max_attempts, warnings_enabled)

    def align_count(
        self,
        agents: Iterable[T],
        closure: OutcomeClosure[T],
        target_count: float,
        rng: np.random.Generator,
        predicate: Optional[Predicate] = None,
        max_attempts: Optional[int] = None,
        weight: Optional[Callable[[T], float]] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        """Align the weighted positive total onto an absolute weighted count."""
        label = "ResamplingWeightedAlignment"
        target = float(target_count)
        if not np.isfinite(target) or target < 0.0:
            raise InvalidTargetError(f"{label}: target count must be finite and non-negative, got {target_count}")
        rng = require_rng(rng)
        selected = extract_population(agents, predicate, label=label)
        weights = collect_weights(selected, weight, label=label)
        if target > float(weights.sum()):
            raise InvalidTargetError(
                f"{label}: target {target} exceeds the total weight of the population ({weights.sum()})"
            )
        return self._align(selected, weights, closure, target, rng, max_attempts, warnings_enabled)

    def _align(
        self,
        selected: List[T],
        weights: np.ndarray,
        closure: OutcomeClosure[T],
        target: float,
        rng: np.random.Generator,
        max_attempts: Optional[int],
        warnings_enabled: Optional[bool],
    ) -> AlignmentResult:
        label = "ResamplingWeightedAlignment"
        order = rng.permutation(len(selected))
        working = [selected[int(i)] for i in order]
        w = weights[order]
        n = len(working)
        total = float(w.sum())

        outcomes = np.array([bool(closure.get_outcome(agent)) for agent in working], dtype=bool)
        delta = float(w[outcomes].sum()) - target
        if delta == 0.0:
            return self._result(working, w, closure, target, 0, False)

        flip_from = delta > 0.0
        # Sampling weights of the partition whose agents must change outcome
        live = np.where(outcomes == flip_from, w, 0.0)
        eligible = int(np.count_nonzero(live))
        budget = _attempt_budget(max_attempts, eligible, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)

        magnitude = abs(delta)
        count = 0
        calls = 0
        smallest_too_large: Optional[int] = None
        while magnitude > 0.0 and count < budget and live.any():
            count += 1
            i = weighted_index(live, rng)
            agent_weight = w[i]
            if magnitude >= agent_weight:
                calls += 1
                closure.resample(working[i])
                if closure.get_outcome(working[i]) != flip_from:
                    magnitude -= agent_weight
                    count = 0
                    live[i] = 0.0
            else:
                # Too heavy to flip safely; keep the lightest such agent for the end
                if smallest_too_large is None or w[smallest_too_large] > agent_weight:
                    smallest_too_large = i
                live[i] = 0.0
        exhausted = count >= budget

        if smallest_too_large is not None and magnitude > 0.0:
            candidate = working[smallest_too_large]
            candidate_weight = w[smallest_too_large]
            if abs(magnitude - candidate_weight) < magnitude:
                for _ in range(self.config.FINAL_RESAMPLE_ATTEMPTS):
                    calls += 1
                    closure.resample(candidate)
                    if closure.get_outcome(candidate) != flip_from:
                        magnitude -= candidate_weight
                        break

        result = self._result(working, w, closure, target, calls, exhausted)
        if exhausted:
            enabled = self.config.WARNINGS_ENABLED if warnings_enabled is None else bool(warnings_enabled)
            warn_alignment(result.message, enabled)
        trace(
            self.config.VERBOSE,
            f"{label}: target={target:.3f} achieved={result.achieved:.3f} total_weight={total:.3f} resample_calls={calls}",
        )
        return result

    def _result(
        self,
        working: List[T],
        w: np.ndarray,
        closure: OutcomeClosure[T],
        target: float,
        calls: int,
        exhausted: bool,
    ) -> AlignmentResult:
        total = float(w.sum())
        achieved = float(sum(wi for agent, wi in zip(working, w) if closure.get_outcome(agent)))
        error = achieved - target
        message = ""
        if exhausted:
            message = _exhausted_message("ResamplingWeightedAlignment", error, total, self.config.RESAMPLE_ATTEMPTS_PER_AGENT)
        return AlignmentResult(
            method=self.method,
            n_agents=len(working),
            total_weight=total,
            target=target,
            achieved=achieved,
            error=error,
            relative_error=error / total,
            iterations=calls,
            converged=not exhausted,
            resample_calls=calls,
            message=message,
        )


def _exhausted_message(label: str, delta: float, size: float, per_agent: int) -> str:
    return (
        f"{label} reached the maximum number of resample attempts (on average {per_agent} per agent "
        f"to be aligned) and terminated. Alignment may have failed: the difference between the "
        f"population with the desired outcome and the target is {delta:+.3f} "
        f"({100.0 * delta / size:.3f} percent). If this is too large, check the resampling method "
        f"and the sub-population to see why not enough agents can change their outcome."
    )
