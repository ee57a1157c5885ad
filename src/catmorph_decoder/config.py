"""
Configuration Schema and Loader
===============================

Pydantic-based configuration schema for the nested ridge decoding sweep.
Every constant that was hard-coded in ``build_model.m`` (subject list, ROI
count, lambda range, holdout schemes, trial count) now lives in a single,
validated YAML file.

Configuration Hierarchy::

    PipelineConfig
    ├── PathsConfig          Feature/mask/target files and output directory
    ├── ConditionConfig[]    Target conditions (vowel, speaker)
    ├── LambdaGridConfig     log10 penalty exponents
    ├── CVConfig             Holdout schemes, outer folds, trial count
    ├── RidgeConfig          Standardisation and centering conventions
    ├── ComputeConfig        Subject-level parallelism
    └── LoggingConfig        Console/file logging

MATLAB Correspondence:
    - ``SUBS_normal = [3 4 5 6 7 8 9 10 13]`` → ``subjects``
    - ``for roi=1:10`` → ``rois``
    - ``l_all = -12:1:12`` → ``lambda_grid``
    - ``holdouts = [2 4]`` → ``cv.holdouts``
    - ``for cv=1:3`` → ``cv.n_folds``
    - ``Y{1} = stimuli_pool(:,1)`` / ``Y{2} = stimuli_pool(:,2)`` → ``conditions``
"""

from __future__ import annotations

import datetime
import hashlib
import json
import subprocess
from pathlib import Path
from typing import Any, Literal, Optional

import numpy as np
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from catmorph_decoder import __version__


# ---------------------------------------------------------------------------
# Schema sections
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Filesystem paths."""

    features_dir: Path = Field(
        ..., description="Directory holding per-subject, per-ROI feature files"
    )
    masks_dir: Path = Field(
        ..., description="Directory holding per-subject ROI masks (.npy / .mat)"
    )
    targets: Path = Field(
        ..., description="Stimulus pool (.mat 'stimuli_pool', .npy or .csv)"
    )
    output_dir: Path = Field(default=Path("output"), description="Root output directory")
    feature_pattern: str = Field(
        default="S{subject:02d}_FEATURES_mask_{roi:02d}.mat",
        description="Feature filename, formatted with subject and roi",
    )
    mask_pattern: str = Field(
        default="S{subject:02d}_mask_{roi:02d}.npy",
        description="Mask filename, formatted with subject and roi",
    )


class ConditionConfig(BaseModel):
    """One decoding target: a named column of the stimulus pool."""

    name: str
    column: int = Field(..., ge=0, description="0-based column in the stimulus pool")


class LambdaGridConfig(BaseModel):
    """Ridge penalties as log10 exponents: ``10 ** exponent``."""

    start: float = -12.0
    stop: float = 12.0
    step: float = Field(default=1.0, gt=0)

    @model_validator(mode="after")
    def _check_range(self) -> "LambdaGridConfig":
        if self.stop < self.start:
            raise ValueError(f"lambda_grid.stop ({self.stop}) < start ({self.start})")
        return self

    @property
    def exponents(self) -> np.ndarray:
        """Inclusive grid, like MATLAB ``start:step:stop``."""
        n = int(np.floor((self.stop - self.start) / self.step + 1e-9)) + 1
        return self.start + self.step * np.arange(n, dtype=np.float64)


class CVConfig(BaseModel):
    """Cross-validation settings."""

    holdouts: list[int] = Field(
        default=[2, 4],
        description="Inner interleaved partition counts, one scheme each",
    )
    n_folds: int = Field(default=3, ge=1, description="Outer folds stored per feature file")
    n_trials: Optional[int] = Field(
        default=137,
        description="Expected trial count; None disables the check",
    )

    @field_validator("holdouts")
    @classmethod
    def _check_holdouts(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("cv.holdouts must not be empty")
        if any(h < 2 for h in v):
            raise ValueError(f"holdout partition counts must be >= 2, got {v}")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate holdout partition counts: {v}")
        return v


class RidgeConfig(BaseModel):
    """Ridge conventions (see DESIGN.md for the lambda-scale decision)."""

    standardize: bool = Field(
        default=True,
        description="Scale predictors to unit SD before the penalty, as MATLAB ridge()",
    )
    centering: Literal["voxel", "trial"] = Field(
        default="voxel",
        description=(
            "'voxel': subtract each voxel's mean across trials. "
            "'trial': subtract each trial's mean across voxels "
            "(literal bsxfun(@minus, X, mean(X,1)) in build_model.m)."
        ),
    )


class ComputeConfig(BaseModel):
    """Subject-level parallelism."""

    n_jobs: int = Field(default=1, description="joblib workers; 1 runs sequentially")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Optional[Path] = None


class PipelineConfig(BaseModel):
    """Top-level pipeline configuration."""

    paths: PathsConfig
    subjects: list[int] = Field(default=[3, 4, 5, 6, 7, 8, 9, 10, 13])
    rois: list[int] = Field(default=list(range(1, 11)))
    conditions: list[ConditionConfig] = Field(
        default_factory=lambda: [
            ConditionConfig(name="vowel", column=0),
            ConditionConfig(name="speaker", column=1),
        ]
    )
    lambda_grid: LambdaGridConfig = Field(default_factory=LambdaGridConfig)
    cv: CVConfig = Field(default_factory=CVConfig)
    ridge: RidgeConfig = Field(default_factory=RidgeConfig)
    compute: ComputeConfig = Field(default_factory=ComputeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("subjects", mode="before")
    @classmethod
    def _coerce_subjects(cls, v: Any) -> Any:
        # YAML lists of "03" style strings are common in subject tables
        if isinstance(v, list):
            return [int(s) for s in v]
        return v

    @field_validator("rois")
    @classmethod
    def _check_rois(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("rois must not be empty")
        if min(v) < 1:
            raise ValueError(f"ROI ids are 1-based, got {v}")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicate ROI ids: {v}")
        return v

    @field_validator("conditions")
    @classmethod
    def _unique_conditions(cls, v: list[ConditionConfig]) -> list[ConditionConfig]:
        names = [c.name for c in v]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate condition names: {names}")
        return v


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> PipelineConfig:
    """Load and validate a YAML config file.

    Parameters
    ----------
    path : str | Path
        Path to YAML config file.

    Returns
    -------
    PipelineConfig
        Validated configuration object.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    return PipelineConfig(**raw)


def save_config_snapshot(cfg: PipelineConfig, dest: Path) -> None:
    """Save a YAML snapshot of the config for provenance."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    data = json.loads(cfg.model_dump_json())
    with open(dest, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def build_provenance(cfg: PipelineConfig) -> dict:
    """Build a provenance dictionary for artifact tracking.

    Returns
    -------
    dict
        Timestamp, package version, config hash and git commit.
    """
    prov: dict[str, Any] = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "catmorph_decoder_version": __version__,
        "config_hash": hashlib.sha256(cfg.model_dump_json().encode()).hexdigest(),
    }
    try:
        git_hash = subprocess.check_output(
            ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL
        ).decode().strip()
        prov["git_commit"] = git_hash
    except (OSError, subprocess.CalledProcessError):
        prov["git_commit"] = "unavailable"
    return prov
