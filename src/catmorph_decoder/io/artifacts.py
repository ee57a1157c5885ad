"""
Result Persistence
==================

Saves and loads the per-subject result tensor with its provenance.

Design Principles:
    - NumPy ``.npz`` with axis labels for native Python I/O
    - MATLAB-layout ``S{sub}_results.mat`` (variable ``results``) for the
      existing MATLAB figure scripts
    - JSON for metrics and provenance (human-readable, git-diffable)
    - YAML snapshot of the config used for each run

Output Layout::

    results/S03/
        results.npz              values (C, R, 2, S, F) + axis labels
        S03_results.mat          results (C, max_roi, 2, 3, F)
        metrics.json
        provenance.json
        config.yaml

MATLAB Correspondence:
    - build_model.m:
        save(sprintf('S%02d_results.mat', sub), 'results', '-v7.3');
      scipy writes MATLAB v5 files; ``load`` reads them unchanged.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Protocol

import numpy as np
import yaml
from scipy.io import savemat

from catmorph_decoder.eval.results import ResultTensor
from catmorph_decoder.eval.splits import HoldoutScheme
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


class ResultSink(Protocol):
    """Durable store for one subject's result tensor."""

    def save(self, tensor: ResultTensor) -> Path:
        ...


def get_subject_dir(output_dir: Path, subject: int) -> Path:
    """``output_dir/results/S{subject:02d}``, created if needed."""
    subject_dir = Path(output_dir) / "results" / f"S{subject:02d}"
    subject_dir.mkdir(parents=True, exist_ok=True)
    return subject_dir


def summarize_tensor(tensor: ResultTensor) -> dict:
    """Per-condition/scheme means over ROIs and folds, for ``metrics.json``."""
    metrics: dict[str, Any] = {"subject": tensor.subject, "cells": {}}
    frame = tensor.to_frame()
    for (condition, scheme), group in frame.groupby(["condition", "scheme"], sort=False):
        ran = group["selected_lambda"].notna()
        metrics["cells"][f"{condition}/{scheme}"] = {
            "mean_correlation": _nan_to_none(group["correlation"].mean()),
            "mean_selected_lambda": _nan_to_none(group["selected_lambda"].mean()),
            "n_units": int(ran.sum()),
            "n_nan_correlations": int((ran & group["correlation"].isna()).sum()),
        }
    return metrics


class ArtifactResultSink:
    """Writes subject results under ``output_dir/results``.

    Parameters
    ----------
    output_dir : Path
        Root output directory.
    provenance : dict or None
        Provenance metadata written next to every subject's results.
    config_snapshot : dict or None
        Config written as YAML next to every subject's results.
    """

    def __init__(
        self,
        output_dir: Path,
        provenance: Optional[dict] = None,
        config_snapshot: Optional[dict] = None,
    ):
        self.output_dir = Path(output_dir)
        self.provenance = provenance
        self.config_snapshot = config_snapshot

    def save(self, tensor: ResultTensor) -> Path:
        subject_dir = get_subject_dir(self.output_dir, tensor.subject)

        np.savez(
            subject_dir / "results.npz",
            values=tensor.values,
            subject=np.array(tensor.subject),
            conditions=np.array(tensor.conditions),
            rois=np.array(tensor.rois),
            scheme_partitions=np.array([s.n_partitions for s in tensor.schemes]),
            n_folds=np.array(tensor.n_folds),
        )
        savemat(
            str(subject_dir / f"S{tensor.subject:02d}_results.mat"),
            {"results": tensor.to_legacy_array()},
        )
        _save_json(subject_dir / "metrics.json", summarize_tensor(tensor))
        if self.provenance is not None:
            _save_json(subject_dir / "provenance.json", self.provenance)
        if self.config_snapshot is not None:
            with open(subject_dir / "config.yaml", "w") as f:
                yaml.dump(self.config_snapshot, f, default_flow_style=False, sort_keys=False)

        logger.info("Saved results for S%02d: %s", tensor.subject, subject_dir)
        return subject_dir


def load_subject_results(subject_dir: Path) -> ResultTensor:
    """Rebuild a ``ResultTensor`` from ``results.npz``."""
    subject_dir = Path(subject_dir)
    path = subject_dir / "results.npz"
    if not path.exists():
        raise FileNotFoundError(f"Results not found: {path}")
    with np.load(path) as data:
        tensor = ResultTensor(
            subject=int(data["subject"]),
            conditions=[str(c) for c in data["conditions"]],
            rois=[int(r) for r in data["rois"]],
            schemes=[HoldoutScheme.from_partitions(int(k)) for k in data["scheme_partitions"]],
            n_folds=int(data["n_folds"]),
            values=data["values"].copy(),
        )
    logger.info("Loaded results from: %s", subject_dir)
    return tensor


def _nan_to_none(value: float) -> Optional[float]:
    value = float(value)
    return None if np.isnan(value) else value


def _save_json(path: Path, data: dict) -> None:
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)
