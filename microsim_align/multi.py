"""
Multiple choice (K-choice) logit scaling alignment for microsim-align.

Each agent exposes a row of ``K`` probabilities, one per mutually exclusive
choice, through a ``MultiProbabilityClosure``. The procedure rescales the
n x K matrix until the aggregate of every column matches its target share
while every row still sums to the agent's weight (1 for unweighted agents).

Algorithm
---------
Each iteration applies

1. a **gamma transform** per choice: column ``c`` is multiplied by
   ``target[c] * total / column_sum[c]``;
2. an **alpha transform** per agent: row ``i`` is multiplied by
   ``weight[i] / row_sum[i]``.

Two failure policies live side by side:

- ``strict=False`` (generalized): stops when the mean absolute change of the
  column sums between iterations falls below ``precision * total``. Running
  out of iterations returns best-effort rows with ``converged=False`` and an
  optional ``AlignmentWarning``.
- ``strict=True``: the target must sum to one, every row must sum to one and
  no choice may carry zero probability mass. Convergence is measured by the
  Kullback-Leibler divergence between target and realized distributions and
  running out of iterations raises ``ConvergenceError`` without writing any
  probabilities back.

References
----------
Stephensen, P. (2016). Logit scaling: A general method for alignment in
    microsimulation models. International Journal of Microsimulation, 9(3), 89-102.
"""

from __future__ import annotations

import math
from typing import Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from .closures import MultiProbabilityClosure
from .config import AlignmentConfig
from .errors import (
    ConvergenceError,
    DegenerateInputError,
    InvalidProbabilityError,
    InvalidTargetError,
    NumericError,
)
from .models import AlignmentResult
from .population import Predicate, collect_weights, extract_population
from .utils import (
    ensure_finite,
    kl_divergence,
    resolve_iterations,
    resolve_precision,
    scaling_factor,
    trace,
    warn_alignment,
)

T = TypeVar("T")

MIN_CHOICES = 2
MIN_AGENTS = 2
# Slack for float round-off when checking that target shares sum to at most one
_TARGET_SUM_SLACK = 1e-12


class _LogitScalingBase(Generic[T]):
    label = "LogitScalingAlignment"
    method = "logit"

    def __init__(self, config: Optional[AlignmentConfig] = None, strict: bool = False) -> None:
        self.config = config or AlignmentConfig()
        self.strict = bool(strict)
        if self.strict:
            self.method = f"{self.method}_strict"

    def _validate_targets(self, target_shares: Sequence[float]) -> np.ndarray:
        label = self.label
        targets = np.asarray(target_shares, dtype=float)
        if targets.ndim != 1:
            raise InvalidTargetError(f"{label}: target shares must be a flat sequence")
        if targets.size < MIN_CHOICES:
            raise InvalidTargetError(
                f"{label}: at least {MIN_CHOICES} choices are required, got {targets.size}"
            )
        if not np.all(np.isfinite(targets)) or np.any((targets < 0.0) | (targets > 1.0)):
            raise InvalidTargetError(f"{label}: every target share must lie in [0, 1], got {targets.tolist()}")
        target_sum = float(targets.sum())
        if target_sum > 1.0 + _TARGET_SUM_SLACK:
            raise InvalidTargetError(f"{label}: target shares sum to {target_sum}, more than 1")
        if self.strict and abs(target_sum - 1.0) > self.config.ROW_SUM_TOLERANCE:
            raise InvalidTargetError(f"{label}: strict alignment needs target shares summing to 1, got {target_sum}")
        return targets

    def _read_rows(
        self, selected: Sequence[T], closure: MultiProbabilityClosure[T], n_choices: int
    ) -> np.ndarray:
        label = self.label
        rows = np.empty((len(selected), n_choices), dtype=float)
        for i, agent in enumerate(selected):
            row = np.asarray(closure.get_probabilities(agent), dtype=float)
            if row.shape != (n_choices,):
                raise InvalidProbabilityError(
                    f"{label}: agent {i} returned {row.size} probabilities, expected {n_choices}"
                )
            rows[i] = row
        ensure_finite(rows, f"{label} input probabilities")
        if np.any((rows < 0.0) | (rows > 1.0)):
            bad = int(np.flatnonzero(np.any((rows < 0.0) | (rows > 1.0), axis=1))[0])
            raise InvalidProbabilityError(f"{label}: probabilities of agent {bad} lie outside [0, 1]")
        empty_rows = np.flatnonzero(rows.sum(axis=1) == 0.0)
        if empty_rows.size:
            raise InvalidProbabilityError(
                f"{label}: probabilities of agent {int(empty_rows[0])} are all zero; every agent needs some choice"
            )
        if self.strict:
            row_sums = rows.sum(axis=1)
            off = np.abs(row_sums - 1.0) > self.config.ROW_SUM_TOLERANCE
            if np.any(off):
                bad = int(np.flatnonzero(off)[0])
                raise InvalidProbabilityError(
                    f"{label}: probabilities of agent {bad} sum to {row_sums[bad]}, not 1"
                )
            empty = np.flatnonzero(rows.sum(axis=0) == 0.0)
            if empty.size:
                raise DegenerateInputError(
                    f"{label}: choice {int(empty[0])} has zero probability for every agent (impossible event)"
                )
        if np.all((rows == 0.0) | (rows == 1.0)):
            raise DegenerateInputError(
                f"{label}: every probability row is one-hot; logit scaling cannot move such inputs"
            )
        return rows

    def _align(
        self,
        selected: List[T],
        weights: np.ndarray,
        closure: MultiProbabilityClosure[T],
        targets: np.ndarray,
        max_iterations: Optional[int],
        precision: Optional[float],
        warnings_enabled: Optional[bool],
    ) -> AlignmentResult:
        label = self.label
        iterations_cap = resolve_iterations(max_iterations, self.config.MAX_ITERATIONS)
        tolerance = resolve_precision(precision, self.config.PRECISION)
        n_choices = targets.size
        rows = self._read_rows(selected, closure, n_choices)

        total = float(weights.sum())
        prob = rows * weights[:, None]
        target = targets * total
        allowed_error = tolerance if self.strict else tolerance * total

        count = 0
        error = math.inf
        column_sums = np.zeros(n_choices, dtype=float)
        while error >= allowed_error and count < iterations_cap:
            previous = column_sums
            current = prob.sum(axis=0)
            gamma = np.array(
                [scaling_factor(target[c], float(current[c]), f"{label} choice {c}") for c in range(n_choices)]
            )
            prob *= gamma

            row_sums = prob.sum(axis=1)
            if np.any(row_sums <= 0.0):
                empty = int(np.flatnonzero(row_sums <= 0.0)[0])
                raise NumericError(f"{label}: agent {empty} lost all probability mass; the targets are unreachable")
            prob *= (weights / row_sums)[:, None]
            ensure_finite(prob, f"{label} iteration {count}")

            column_sums = prob.sum(axis=0)
            if self.strict:
                error = kl_divergence(targets, column_sums / total)
            else:
                error = float(np.abs(column_sums - previous).sum()) / n_choices
            count += 1
            trace(self.config.VERBOSE, f"{label}: iteration={count} error={error:.3e} shares={np.round(column_sums / total, 6).tolist()}")

        converged = error < allowed_error
        result = AlignmentResult(
            method=self.method,
            n_agents=len(selected),
            total_weight=total,
            target=tuple(float(t) for t in target),
            achieved=tuple(float(s) for s in column_sums),
            error=error,
            relative_error=error if self.strict else error / total,
            iterations=count,
            converged=converged,
        )
        if not converged:
            metric = "KL divergence" if self.strict else "error"
            shown = error if self.strict else error / total
            result.message = (
                f"{label} terminated with an {metric} of {shown:.3e}, which is larger than the precision "
                f"bound of {tolerance}. The number of iterations was {count}. Increase the maximum number "
                f"of iterations or the precision."
            )
            if self.strict:
                raise ConvergenceError(result.message, result)
            warn_alignment(result.message, self.config.WARNINGS_ENABLED if warnings_enabled is None else bool(warnings_enabled))

        aligned = prob / weights[:, None]
        for agent, row in zip(selected, aligned):
            closure.align(agent, row.copy())
        return result


class LogitScalingAlignment(_LogitScalingBase[T]):
    """Logit scaling over ``K`` choices for unweighted agents (weight 1 each)."""

    label = "LogitScalingAlignment"
    method = "logit"

    def align(
        self,
        agents: Iterable[T],
        closure: MultiProbabilityClosure[T],
        target_shares: Sequence[float],
        predicate: Optional[Predicate] = None,
        max_iterations: Optional[int] = None,
        precision: Optional[float] = None,
        warnings_enabled: Optional[bool] = None,
    ) -> AlignmentResult:
        """Align every agent's choice probabilities onto ``target_shares``.

        Parameters
        ----------
        target_shares : sequence of float
            One share per choice, each in [0, 1], summing to at most 1
            (exactly 1 when ``strict``).
        max_iterations, precision, warnings_enabled
            Per-call overrides of the config values.

        Returns
        -------
        AlignmentResult
            ``target`` and ``achieved`` are per-choice tuples in agent units.

        Raises
        ------
        InvalidInputError
            For out-of-range targets or probabilities, fewer than two agents or
            choices, or all one-hot rows.
        ConvergenceError
            Strict variant only, when the iteration budget runs out.
        """
        targets = self._validate_targets(target_shares)
        selected = extract_population(agents, predicate, minimum=MIN_AGENTS, label=self.label)
        weights = np.ones(len(selected), dtype=float)
        return self._align(selected, weights, closure, targets, max_iterations, precision, warnings_enabled)


class LogitScalingWeightedAlignment(_LogitScalingBase[T]):
    """Logit scaling over ``K`` choices where each agent carries a weight.

    Rows are scaled by the agent weight while iterating, so each row sums to
    that weight and each column aggregates weighted counts; results are
    divided back by weight before ``closure.align``.
    """

    label = "LogitScalingWeightedAlignment"
    method = "logit_weighted"

    def align(
        self,
        agents: Iterable[T],
        closure: MultiProbabilityClosure[T],
        target_shares: Sequence[float],
        predicate: Optional[Predicate] = None,
        max_iterations: Optional[int] = None,
        precision: Optional[float] = None,
        warnings_enabled: Optional[bool] = None,
        weight: Optional[Callable[[T], float]] = None,
    ) -> AlignmentResult:
        targets = self._validate_targets(target_shares)
        selected = extract_population(agents, predicate, minimum=MIN_AGENTS, label=self.label)
        weights = collect_weights(selected, weight, label=self.label)
        return self._align(selected, weights, closure, targets, max_iterations, precision, warnings_enabled)
