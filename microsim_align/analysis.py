"""Tabular summaries of alignment diagnostics."""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .models import AlignmentResult
from .synthetic import SyntheticAgent


def _flatten(value):
    if isinstance(value, tuple):
        return float(np.sum(value))
    return float(value)


def results_to_frame(results: Iterable[AlignmentResult]) -> pd.DataFrame:
    """One row per alignment call.

    K-choice targets and aggregates are per-choice tuples; they are kept as
    they are and summed into ``target_total`` / ``achieved_total``.
    """
    records = []
    for run, result in enumerate(results):
        record = result.to_dict()
        record["run"] = run
        record["target_total"] = _flatten(result.target)
        record["achieved_total"] = _flatten(result.achieved)
        records.append(record)
    columns = [
        "run", "method", "n_agents", "total_weight", "target", "achieved",
        "target_total", "achieved_total", "error", "relative_error", "percent_error",
        "iterations", "resample_calls", "converged", "message",
    ]
    if not records:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame.from_records(records)[columns]


def summarize_results(frame: pd.DataFrame) -> pd.DataFrame:
    """Per-method convergence rate, mean iterations and mean absolute relative error."""
    if frame.empty:
        return pd.DataFrame(
            columns=["method", "runs", "convergence_rate", "mean_iterations", "mean_abs_relative_error"]
        )
    working = frame.assign(abs_relative_error=frame["relative_error"].abs())
    summary = (
        working.groupby("method", sort=True)
        .agg(
            runs=("run", "count"),
            convergence_rate=("converged", "mean"),
            mean_iterations=("iterations", "mean"),
            mean_abs_relative_error=("abs_relative_error", "mean"),
        )
        .reset_index()
    )
    return summary


def population_frame(agents: Sequence[SyntheticAgent]) -> pd.DataFrame:
    """Per-agent snapshot of a synthetic population."""
    rows = []
    for agent in agents:
        row = {
            "agent_id": agent.agent_id,
            "weight": agent.weight,
            "base_probability": agent.base_probability,
            "probability": agent.probability,
            "draw": agent.draw,
            "outcome": agent.outcome,
        }
        for c, value in enumerate(agent.choice_probabilities):
            row[f"choice_{c}"] = float(value)
        rows.append(row)
    return pd.DataFrame.from_records(rows)
