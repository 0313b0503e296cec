"""Public API for the microsim-align package.

Alignment of simulated outcomes and probabilities in dynamic
microsimulation models onto exogenous aggregate targets. Based on
Li & O'Donoghue (2014) and Stephensen (2016).
"""

__version__ = "1.0.0"

from .closures import (
    FunctionMultiProbabilityClosure,
    FunctionOutcomeClosure,
    FunctionProbabilityClosure,
    MultiProbabilityClosure,
    OutcomeClosure,
    ProbabilityClosure,
    Weighted,
)
from .config import (
    AlignmentConfig,
    AlignmentProfile,
    apply_alignment_profile,
    get_alignment_profile,
    list_alignment_profiles,
    load_alignment_profile,
)
from .errors import (
    AlignmentError,
    AlignmentWarning,
    ConvergenceError,
    DegenerateInputError,
    EmptyPopulationError,
    InvalidInputError,
    InvalidParameterError,
    InvalidProbabilityError,
    InvalidTargetError,
    InvalidWeightError,
    NumericError,
)
from .models import AlignmentResult
from .multi import LogitScalingAlignment, LogitScalingWeightedAlignment
from .outcome import ResamplingAlignment, ResamplingWeightedAlignment
from .population import collect_weights, extract_population
from .probability import (
    LogitScalingBinaryAlignment,
    LogitScalingBinaryWeightedAlignment,
    MultiplicativeScalingAlignment,
    SBDAlignment,
    SidewalkAlignment,
)
from .analysis import population_frame, results_to_frame, summarize_results
from .cli import run_cli
from .utils import make_rng

__all__ = [
    "__version__",
    "AlignmentConfig",
    "AlignmentProfile",
    "apply_alignment_profile",
    "get_alignment_profile",
    "list_alignment_profiles",
    "load_alignment_profile",
    "AlignmentError",
    "AlignmentWarning",
    "ConvergenceError",
    "DegenerateInputError",
    "EmptyPopulationError",
    "InvalidInputError",
    "InvalidParameterError",
    "InvalidProbabilityError",
    "InvalidTargetError",
    "InvalidWeightError",
    "NumericError",
    "AlignmentResult",
    "Weighted",
    "OutcomeClosure",
    "ProbabilityClosure",
    "MultiProbabilityClosure",
    "FunctionOutcomeClosure",
    "FunctionProbabilityClosure",
    "FunctionMultiProbabilityClosure",
    "extract_population",
    "collect_weights",
    "ResamplingAlignment",
    "ResamplingWeightedAlignment",
    "MultiplicativeScalingAlignment",
    "SBDAlignment",
    "SidewalkAlignment",
    "LogitScalingBinaryAlignment",
    "LogitScalingBinaryWeightedAlignment",
    "LogitScalingAlignment",
    "LogitScalingWeightedAlignment",
    "results_to_frame",
    "summarize_results",
    "population_frame",
    "run_cli",
    "make_rng",
]
