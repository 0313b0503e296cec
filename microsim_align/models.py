"""Diagnostic dataclasses returned by the alignment entry points."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple, Union

Target = Union[float, Tuple[float, ...]]


@dataclass
class AlignmentResult:
    """Outcome of one alignment call.

    ``error`` is expressed in the units of the population (agent counts or
    total weight): the signed remaining delta for resampling and allocation
    methods, the last convergence metric for logit scaling. ``relative_error``
    divides it by the population size or total weight. A successful return
    does not imply the target was met; check ``converged``.
    """

    method: str
    n_agents: int
    total_weight: float
    target: Target
    achieved: Target
    error: float
    relative_error: float
    iterations: int
    converged: bool
    resample_calls: int = 0
    message: str = ""

    @property
    def percent_error(self) -> float:
        return 100.0 * self.relative_error

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["percent_error"] = self.percent_error
        return payload
