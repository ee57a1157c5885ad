"""Shared pytest fixtures for catmorph_decoder tests."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from scipy.io import savemat

from catmorph_decoder.config import PathsConfig, PipelineConfig


@pytest.fixture()
def rng():
    """Deterministic random generator."""
    return np.random.default_rng(42)


@pytest.fixture()
def write_features():
    """Write a MATLAB ``FEATURES`` struct array (1 × n_folds) to ``path``.

    Each fold is ``(training, testing)`` or
    ``(training, testing, train_trials, test_trials)`` with 1-based trials.
    """

    def _write(path: Path, folds):
        with_trials = any(len(f) == 4 for f in folds)
        fields = [("training", "O"), ("testing", "O")]
        if with_trials:
            fields += [("train_trials", "O"), ("test_trials", "O")]
        features = np.zeros((1, len(folds)), dtype=fields)
        for k, fold in enumerate(folds):
            features["training"][0, k] = fold[0]
            features["testing"][0, k] = fold[1]
            if with_trials:
                features["train_trials"][0, k] = np.asarray(fold[2], dtype=np.float64)
                features["test_trials"][0, k] = np.asarray(fold[3], dtype=np.float64)
        path.parent.mkdir(parents=True, exist_ok=True)
        savemat(str(path), {"FEATURES": features})
        return path

    return _write


@pytest.fixture()
def sweep_config(tmp_path, rng, write_features) -> PipelineConfig:
    """Config plus on-disk inputs for subject 3, ROIs 1-2, 24 trials.

    Voxel (0,0,0) tracks the vowel target and voxel (1,1,1) the speaker
    target, so both conditions are decodable from ROI 1 (whole volume).
    """
    n_trials = 24
    vowel = rng.standard_normal(n_trials)
    speaker = rng.standard_normal(n_trials)
    pd.DataFrame({"vowel": vowel, "speaker": speaker}).to_csv(
        tmp_path / "stimuli_pool.csv", index=False
    )

    folds = []
    for _ in range(3):
        volume = rng.standard_normal((2, 2, 2, n_trials))
        volume[0, 0, 0] = vowel + 0.1 * rng.standard_normal(n_trials)
        volume[1, 1, 1] = speaker + 0.1 * rng.standard_normal(n_trials)
        folds.append((volume, volume + 0.05 * rng.standard_normal(volume.shape)))
    for roi in (1, 2):
        write_features(tmp_path / "features" / f"S03_FEATURES_mask_{roi:02d}.mat", folds)

    masks_dir = tmp_path / "masks"
    masks_dir.mkdir()
    np.save(masks_dir / "S03_mask_01.npy", np.ones((2, 2, 2), dtype=bool))
    half = np.zeros((2, 2, 2), dtype=bool)
    half[:, :, 0] = True
    np.save(masks_dir / "S03_mask_02.npy", half)

    return PipelineConfig(
        paths=PathsConfig(
            features_dir=tmp_path / "features",
            masks_dir=masks_dir,
            targets=tmp_path / "stimuli_pool.csv",
            output_dir=tmp_path / "output",
        ),
        subjects=[3],
        rois=[1, 2],
        lambda_grid={"start": -2, "stop": 2, "step": 1},
        cv={"holdouts": [2, 4], "n_folds": 3, "n_trials": n_trials},
    )
