"""Configuration defaults, overrides and profiles."""

from __future__ import annotations

import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
PARENT = ROOT.parent
for candidate in (PARENT, ROOT):
    path_str = str(candidate)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

import pytest

from microsim_align.config import (
    AlignmentConfig,
    apply_alignment_profile,
    get_alignment_profile,
    list_alignment_profiles,
    load_alignment_profile,
)
from microsim_align.errors import InvalidParameterError


def test_defaults() -> None:
    cfg = AlignmentConfig()
    assert cfg.MAX_ITERATIONS == 100
    assert cfg.PRECISION == 1e-5
    assert cfg.RESAMPLE_ATTEMPTS_PER_AGENT == 20
    assert cfg.WARNINGS_ENABLED is True
    assert cfg.active_profile is None


@pytest.mark.parametrize(
    "field, value",
    [
        ("MAX_ITERATIONS", 0),
        ("MAX_ITERATIONS", 1.5),
        ("MAX_ITERATIONS", float("inf")),
        ("PRECISION", 0.0),
        ("PRECISION", float("nan")),
        ("RESAMPLE_ATTEMPTS_PER_AGENT", 0),
        ("RESAMPLE_ATTEMPTS_PER_AGENT", 2.5),
        ("FINAL_RESAMPLE_ATTEMPTS", float("nan")),
    ],
)
def test_invalid_values_rejected(field: str, value) -> None:
    with pytest.raises(InvalidParameterError):
        AlignmentConfig(**{field: value})


def test_copy_with_overrides_leaves_original() -> None:
    cfg = AlignmentConfig()
    updated = cfg.copy_with_overrides({"PRECISION": 1e-8, "MAX_ITERATIONS": 500.0})
    assert updated.PRECISION == 1e-8
    assert updated.MAX_ITERATIONS == 500
    assert isinstance(updated.MAX_ITERATIONS, int)
    assert cfg.PRECISION == 1e-5
    with pytest.raises(KeyError):
        cfg.copy_with_overrides({"NOT_A_FIELD": 1})


def test_builtin_profiles() -> None:
    names = {profile.name for profile in list_alignment_profiles()}
    assert {"legacy_default", "high_precision", "quiet"} <= names
    cfg = apply_alignment_profile(AlignmentConfig(), get_alignment_profile("HIGH_PRECISION"))
    assert cfg.MAX_ITERATIONS == 10_000
    assert cfg.PRECISION == 1e-10
    assert cfg.active_profile == "high_precision"
    assert cfg.profile_metadata["source"] == "built-in"
    with pytest.raises(KeyError):
        get_alignment_profile("missing")


def test_load_profile_from_json(tmp_path: Path) -> None:
    path = tmp_path / "tight.json"
    path.write_text(json.dumps({"description": "tight", "overrides": {"PRECISION": 1e-9, "WARNINGS_ENABLED": 0}}))
    profile = load_alignment_profile(path)
    assert profile.name == "tight"
    cfg = apply_alignment_profile(AlignmentConfig(), profile)
    assert cfg.PRECISION == 1e-9
    assert cfg.WARNINGS_ENABLED is False
    assert cfg.snapshot()["active_profile"] == "tight"


def test_load_profile_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_alignment_profile(tmp_path / "absent.json")
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"overrides": [1, 2]}))
    with pytest.raises(ValueError):
        load_alignment_profile(bad)
