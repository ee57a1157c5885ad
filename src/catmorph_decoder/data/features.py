"""
Feature Store
=============

Loads the precomputed per-fold voxel activations for one subject and one
ROI file and flattens them to ``(voxels, trials)`` matrices.

Design Principles:
    - Each feature file holds the 3 predefined outer folds; every fold has a
      ``training`` and a ``testing`` 4-D volume ``(x, y, z, trials)``
    - Flattening is column-major so voxel indices agree with MATLAB
      ``find(mask)`` linear indexing
    - ``.mat`` (v5/v7, scipy.io) is the native format; ``.npz`` with
      ``training_<k>`` / ``testing_<k>`` keys is accepted for Python exports
    - Optional ``train_trials_<k>`` / ``test_trials_<k>`` arrays give the
      target indices of each partition; absent means "all trials"

MATLAB Correspondence:
    - build_model.m:
        FEATURES = load(sprintf('S%02d_FEATURES_mask_%02d.mat', sub, roi), 'FEATURES');
        SIZE = size(FEATURES(1).training);
        training_temp = reshape(FEATURES(cv).training, SIZE(1)*SIZE(2)*SIZE(3), SIZE(4));
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
from scipy.io import loadmat

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger, log_matlab_note

logger = get_logger(__name__)


@dataclass(frozen=True)
class FoldFeatures:
    """Voxel activations for one outer fold.

    Attributes
    ----------
    training : np.ndarray
        Shape (V, T_train), all voxels of the volume.
    testing : np.ndarray
        Shape (V, T_test), same voxel rows as ``training``.
    volume_shape : tuple[int, ...]
        Spatial shape the voxel axis was flattened from.
    train_trials : np.ndarray or None
        Target indices of the training columns; None = ``arange(T_train)``.
    test_trials : np.ndarray or None
        Target indices of the testing columns; None = ``arange(T_test)``.
    """

    training: np.ndarray
    testing: np.ndarray
    volume_shape: tuple[int, ...]
    train_trials: Optional[np.ndarray] = None
    test_trials: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.training.ndim != 2 or self.testing.ndim != 2:
            raise InputDataError(
                f"Fold matrices must be 2D, got {self.training.shape} and {self.testing.shape}"
            )
        if self.training.shape[0] != self.testing.shape[0]:
            raise InputDataError(
                f"Training has {self.training.shape[0]} voxels but testing has "
                f"{self.testing.shape[0]}"
            )
        if self.training.shape[1] == 0 or self.testing.shape[1] == 0:
            raise InputDataError("Fold has no trial columns")
        for name, trials, n_cols in (
            ("train_trials", self.train_trials, self.training.shape[1]),
            ("test_trials", self.test_trials, self.testing.shape[1]),
        ):
            if trials is not None and len(trials) != n_cols:
                raise InputDataError(
                    f"{name} has {len(trials)} entries for {n_cols} trial columns"
                )

    @property
    def n_voxels(self) -> int:
        return self.training.shape[0]

    def restrict(self, voxel_indices: np.ndarray) -> "FoldFeatures":
        """Keep only the given voxel rows (an ROI)."""
        voxel_indices = np.asarray(voxel_indices, dtype=np.int64)
        if voxel_indices.size == 0:
            raise InputDataError("ROI selects no voxels")
        if voxel_indices.min() < 0 or voxel_indices.max() >= self.n_voxels:
            raise InputDataError(
                f"ROI voxel indices out of range for a volume of {self.n_voxels} voxels "
                f"(max index {int(voxel_indices.max())})"
            )
        return FoldFeatures(
            training=self.training[voxel_indices, :],
            testing=self.testing[voxel_indices, :],
            volume_shape=self.volume_shape,
            train_trials=self.train_trials,
            test_trials=self.test_trials,
        )


class FeatureStore(Protocol):
    """Source of per-fold feature matrices for a (subject, ROI) pair."""

    def load(self, subject: int, roi: int) -> list[FoldFeatures]:
        ...


def flatten_volume(volume: np.ndarray) -> tuple[np.ndarray, tuple[int, ...]]:
    """Reshape ``(..., trials)`` to ``(voxels, trials)`` in column-major order.

    Returns
    -------
    matrix : np.ndarray, shape (V, T)
    spatial_shape : tuple[int, ...]
    """
    volume = np.asarray(volume, dtype=np.float64)
    if volume.ndim < 2:
        raise InputDataError(f"Feature volume needs a trial axis, got shape {volume.shape}")
    spatial = volume.shape[:-1]
    matrix = volume.reshape(int(np.prod(spatial)), volume.shape[-1], order="F")
    return matrix, tuple(int(s) for s in spatial)


class MatFeatureStore:
    """File-backed feature store.

    Parameters
    ----------
    features_dir : Path
        Directory holding the feature files.
    pattern : str
        Filename pattern formatted with ``subject`` and ``roi``.
    """

    def __init__(
        self,
        features_dir: Path,
        pattern: str = "S{subject:02d}_FEATURES_mask_{roi:02d}.mat",
    ):
        self.features_dir = Path(features_dir)
        self.pattern = pattern

    def path_for(self, subject: int, roi: int) -> Path:
        return self.features_dir / self.pattern.format(subject=subject, roi=roi)

    def load(self, subject: int, roi: int) -> list[FoldFeatures]:
        """Load all outer folds for one subject/ROI file.

        Raises
        ------
        FileNotFoundError
            If the feature file does not exist.
        KeyError
            If the file has no ``FEATURES`` variable / fold arrays.
        InputDataError
            If training and testing volumes disagree in spatial shape.
        """
        path = self.path_for(subject, roi)
        if not path.exists():
            raise FileNotFoundError(f"Feature file not found: {path}")

        log_matlab_note(logger, "build_model.m", f"load('{path.name}', 'FEATURES')")
        if path.suffix == ".npz":
            raw_folds = _read_npz_folds(path)
        else:
            raw_folds = _read_mat_folds(path)

        folds = []
        for k, (training, testing, train_trials, test_trials) in enumerate(raw_folds):
            train_mat, train_shape = flatten_volume(training)
            test_mat, test_shape = flatten_volume(testing)
            if train_shape != test_shape:
                raise InputDataError(
                    f"{path.name} fold {k + 1}: training volume {train_shape} differs "
                    f"from testing volume {test_shape}"
                )
            folds.append(
                FoldFeatures(
                    training=train_mat,
                    testing=test_mat,
                    volume_shape=train_shape,
                    train_trials=train_trials,
                    test_trials=test_trials,
                )
            )

        logger.info(
            "features | subject=%d roi=%d folds=%d volume=%s trials=%d",
            subject,
            roi,
            len(folds),
            folds[0].volume_shape if folds else None,
            folds[0].training.shape[1] if folds else 0,
        )
        return folds


def _trial_vector(value) -> Optional[np.ndarray]:
    if value is None:
        return None
    arr = np.asarray(value).ravel()
    if arr.size == 0:
        return None
    return arr.astype(np.int64)


def _read_mat_folds(path: Path) -> list[tuple]:
    """Read the ``FEATURES`` struct array from a v5/v7 .mat file."""
    try:
        mat = loadmat(str(path))
    except NotImplementedError as e:
        # scipy raises this for v7.3 (HDF5) files
        raise InputDataError(
            f"{path.name} is a MATLAB v7.3 file; re-save FEATURES with -v7"
        ) from e

    if "FEATURES" not in mat:
        available = [k for k in mat.keys() if not k.startswith("__")]
        raise KeyError(f"Variable 'FEATURES' not found in {path.name}. Available: {available}")

    entries = mat["FEATURES"].ravel()
    fields = entries.dtype.names or ()
    if "training" not in fields or "testing" not in fields:
        raise KeyError(f"FEATURES in {path.name} lacks 'training'/'testing' fields: {fields}")

    folds = []
    for entry in entries:
        # MATLAB stores 1-based trial indices
        train_trials = _trial_vector(entry["train_trials"]) if "train_trials" in fields else None
        test_trials = _trial_vector(entry["test_trials"]) if "test_trials" in fields else None
        folds.append(
            (
                np.asarray(entry["training"]),
                np.asarray(entry["testing"]),
                None if train_trials is None else train_trials - 1,
                None if test_trials is None else test_trials - 1,
            )
        )
    return folds


def _read_npz_folds(path: Path) -> list[tuple]:
    """Read ``training_<k>`` / ``testing_<k>`` arrays (0-based k) from an .npz file."""
    with np.load(path) as data:
        keys = set(data.files)
        folds = []
        k = 0
        while f"training_{k}" in keys:
            if f"testing_{k}" not in keys:
                raise KeyError(f"{path.name}: 'training_{k}' has no matching 'testing_{k}'")
            folds.append(
                (
                    data[f"training_{k}"],
                    data[f"testing_{k}"],
                    _trial_vector(data[f"train_trials_{k}"]) if f"train_trials_{k}" in keys else None,
                    _trial_vector(data[f"test_trials_{k}"]) if f"test_trials_{k}" in keys else None,
                )
            )
            k += 1
    if not folds:
        raise KeyError(f"No 'training_0' array found in {path.name}")
    return folds
