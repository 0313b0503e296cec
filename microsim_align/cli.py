"""Command-line launcher for running alignment methods on synthetic populations."""

from __future__ import annotations

import argparse
import copy
import warnings
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .analysis import results_to_frame, summarize_results
from .config import (
    AlignmentConfig,
    apply_alignment_profile,
    get_alignment_profile,
    list_alignment_profiles,
    load_alignment_profile,
)
from .errors import AlignmentError, AlignmentWarning
from .models import AlignmentResult
from .multi import LogitScalingAlignment, LogitScalingWeightedAlignment
from .outcome import ResamplingAlignment, ResamplingWeightedAlignment
from .probability import (
    LogitScalingBinaryAlignment,
    LogitScalingBinaryWeightedAlignment,
    MultiplicativeScalingAlignment,
    SBDAlignment,
    SidewalkAlignment,
)
from .synthetic import (
    SyntheticAgent,
    build_synthetic_population,
    multi_probability_closure,
    outcome_closure,
    probability_closure,
)

Runner = Callable[[List[SyntheticAgent], AlignmentConfig, np.random.Generator, argparse.Namespace], AlignmentResult]


def _run_resampling(agents, config, rng, args) -> AlignmentResult:
    return ResamplingAlignment(config).align_share(agents, outcome_closure(rng), args.target, rng)


def _run_resampling_weighted(agents, config, rng, args) -> AlignmentResult:
    return ResamplingWeightedAlignment(config).align_share(agents, outcome_closure(rng), args.target, rng)


def _run_multiplicative(agents, config, rng, args) -> AlignmentResult:
    return MultiplicativeScalingAlignment(config).align(agents, probability_closure(), args.target)


def _run_sbd(agents, config, rng, args) -> AlignmentResult:
    return SBDAlignment(config).align(agents, probability_closure(), args.target, rng)


def _run_sidewalk(agents, config, rng, args) -> AlignmentResult:
    return SidewalkAlignment(config).align(
        agents, probability_closure(), args.target, rng, scale_to_target=args.scale_to_target
    )


def _run_logit_binary(agents, config, rng, args) -> AlignmentResult:
    return LogitScalingBinaryAlignment(config).align(agents, probability_closure(), args.target)


def _run_logit_binary_weighted(agents, config, rng, args) -> AlignmentResult:
    return LogitScalingBinaryWeightedAlignment(config).align(agents, probability_closure(), args.target)


def _run_logit(agents, config, rng, args) -> AlignmentResult:
    return LogitScalingAlignment(config, strict=args.strict).align(
        agents, multi_probability_closure(), _choice_targets(args)
    )


def _run_logit_weighted(agents, config, rng, args) -> AlignmentResult:
    return LogitScalingWeightedAlignment(config, strict=args.strict).align(
        agents, multi_probability_closure(), _choice_targets(args)
    )


METHOD_RUNNERS: Dict[str, Runner] = {
    "resampling": _run_resampling,
    "resampling-weighted": _run_resampling_weighted,
    "multiplicative": _run_multiplicative,
    "sbd": _run_sbd,
    "sidewalk": _run_sidewalk,
    "logit-binary": _run_logit_binary,
    "logit-binary-weighted": _run_logit_binary_weighted,
    "logit": _run_logit,
    "logit-weighted": _run_logit_weighted,
}

WEIGHTED_METHODS = {"resampling-weighted", "logit-binary-weighted", "logit-weighted"}


def _choice_targets(args: argparse.Namespace) -> List[float]:
    if args.targets:
        return list(args.targets)
    return [1.0 / args.choices] * args.choices


def _print_profile_catalog() -> None:
    print("[CLI] Available alignment profiles:")
    for profile in list_alignment_profiles():
        print(f"  - {profile.name}: {profile.description}")


def _parse_cli_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run microsim alignment methods on synthetic populations")
    parser.add_argument(
        "--method",
        choices=sorted(METHOD_RUNNERS),
        help="Alignment method to run.",
    )
    parser.add_argument(
        "--agents",
        type=int,
        default=1000,
        help="Number of synthetic agents per run.",
    )
    parser.add_argument(
        "--target",
        type=float,
        default=0.3,
        help="Target share of positive outcomes for binary methods.",
    )
    parser.add_argument(
        "--targets",
        type=float,
        nargs="+",
        help="Per-choice target shares for K-choice logit scaling (overrides --choices).",
    )
    parser.add_argument(
        "--choices",
        type=int,
        default=3,
        help="Number of choices for K-choice logit scaling when --targets is not given (uniform targets).",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=1,
        help="Number of independent populations to align.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Random seed (defaults to the config RANDOM_SEED).",
    )
    parser.add_argument(
        "--profile",
        help="Apply a built-in alignment profile (see --list-profiles).",
    )
    parser.add_argument(
        "--profile-file",
        help="Path to a JSON alignment profile with an 'overrides' dictionary.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Use the strict K-choice variant (KL convergence, raises on non-convergence).",
    )
    parser.add_argument(
        "--scale-to-target",
        action="store_true",
        help="Sidewalk only: scale probabilities onto the target before allocating.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print a per-iteration trace.",
    )
    parser.add_argument(
        "--output",
        help="Write per-run diagnostics to this CSV file.",
    )
    parser.add_argument(
        "--list-profiles",
        action="store_true",
        help="List the built-in alignment profiles and exit.",
    )
    return parser.parse_args(args=list(argv) if argv is not None else None)


def run_cli(
    base_config: Optional[AlignmentConfig] = None,
    argv: Optional[Iterable[str]] = None,
) -> Optional[pd.DataFrame]:
    """
    Parse CLI arguments and run the requested alignment method.
    Returns the per-run diagnostics frame, or None when nothing ran.
    """
    args = _parse_cli_args(argv)
    if args.list_profiles:
        _print_profile_catalog()
        if not args.method:
            return None
    if not args.method:
        print("No method selected. Use --method with one of: " + ", ".join(sorted(METHOD_RUNNERS)))
        print("Run with --help for details.")
        return None

    config = copy.deepcopy(base_config or AlignmentConfig())
    try:
        if args.profile:
            config = apply_alignment_profile(config, get_alignment_profile(args.profile))
        if args.profile_file:
            config = apply_alignment_profile(config, load_alignment_profile(args.profile_file))
    except (FileNotFoundError, ValueError, KeyError) as exc:
        print(f"[CLI] Profile error: {exc}")
        return None
    if args.verbose:
        config.VERBOSE = True
    seed = args.seed if args.seed is not None else config.RANDOM_SEED
    rng = np.random.default_rng(seed)
    n_choices = len(args.targets) if args.targets else args.choices
    weighted = args.method in WEIGHTED_METHODS

    print("[CLI] microsim-align launcher starting")
    print(f"[CLI] Method: {args.method} | agents={args.agents} | runs={args.runs} | seed={seed}")
    if config.active_profile:
        print(f"[CLI] Profile applied: {config.active_profile}")

    runner = METHOD_RUNNERS[args.method]
    results: List[AlignmentResult] = []
    for run in range(max(1, args.runs)):
        agents = build_synthetic_population(args.agents, rng, n_choices=n_choices, weighted=weighted)
        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always", AlignmentWarning)
                result = runner(agents, config, rng, args)
        except AlignmentError as exc:
            print(f"[CLI] Run {run} failed: {exc}")
            failed = getattr(exc, "result", None)
            if failed is not None:
                results.append(failed)
            continue
        for warning in caught:
            print(f"[CLI] Run {run} warning: {warning.message}")
        results.append(result)
        status = "converged" if result.converged else "NOT converged"
        print(
            f"[CLI] Run {run}: {status}, iterations={result.iterations}, "
            f"relative_error={result.relative_error:+.3e}"
        )

    frame = results_to_frame(results)
    summary = summarize_results(frame)
    if not summary.empty:
        print(summary.to_string(index=False))
    if args.output:
        output_path = Path(args.output).expanduser()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(output_path, index=False)
        print(f"[CLI] Diagnostics written to {output_path}")
    print("[CLI] Done.")
    return frame


def main(argv: Optional[Iterable[str]] = None) -> None:  # pragma: no cover - thin wrapper
    run_cli(argv=argv)


if __name__ == "__main__":  # pragma: no cover
    main()


__all__ = [
    "METHOD_RUNNERS",
    "run_cli",
    "main",
]
