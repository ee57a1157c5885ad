"""
Evaluation metrics and feature normalisation.

This module corresponds to MATLAB script(s):
  - build_model.m:
      X_mean_train = bsxfun(@minus, X_train, mean(X_train,1));
      r = corr(y(test), yhat, type='Spearman');
Key matched choices:
  - Primary metric: Spearman rank correlation between predicted and
    observed targets (scipy.stats.spearmanr, average ranks for ties)
  - Training and testing matrices are centred independently
  - Fisher's Z (arctanh) applied before group-level statistics
Assumptions / deviations:
  - MATLAB corr() on a constant vector returns NaN; we return NaN
    explicitly before calling scipy so no ConstantInputWarning leaks
  - Default centering removes each voxel's mean across trials; the literal
    MATLAB expression (each trial's mean across voxels) is available as
    ``axis="trial"``
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from scipy import stats

from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


def center_features(
    X: np.ndarray,
    axis: Literal["voxel", "trial"] = "voxel",
) -> np.ndarray:
    """Mean-centre a (voxels, trials) feature matrix.

    Parameters
    ----------
    X : np.ndarray, shape (V, T)
        Voxel activations, one column per trial.
    axis : str
        'voxel': subtract each voxel's mean across trials, so every
        predictor has zero mean.
        'trial': subtract each trial's mean across voxels.

    Returns
    -------
    np.ndarray, shape (V, T)
        Centred copy, float64.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"Expected (voxels, trials) matrix, got shape {X.shape}")
    if axis == "voxel":
        return X - X.mean(axis=1, keepdims=True)
    if axis == "trial":
        return X - X.mean(axis=0, keepdims=True)
    raise ValueError(f"Unknown centering axis: {axis}")


def spearman_correlation(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Spearman rank correlation, NaN when undefined.

    Parameters
    ----------
    y_true : np.ndarray, shape (N,)
        Observed target values.
    y_pred : np.ndarray, shape (N,)
        Predicted target values.

    Returns
    -------
    float
        Rank correlation in [-1, 1], or NaN when either input is constant
        or contains non-finite values. NaN is the explicit "undefined"
        marker and is never replaced by 0.
    """
    y_true = np.asarray(y_true, dtype=np.float64).ravel()
    y_pred = np.asarray(y_pred, dtype=np.float64).ravel()
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: true={y_true.shape}, pred={y_pred.shape}")

    if not (np.all(np.isfinite(y_true)) and np.all(np.isfinite(y_pred))):
        logger.debug("Spearman undefined: non-finite values")
        return float("nan")
    if np.ptp(y_true) == 0 or np.ptp(y_pred) == 0:
        logger.debug("Spearman undefined: constant input (N=%d)", y_true.size)
        return float("nan")

    rho, _ = stats.spearmanr(y_true, y_pred)
    return float(rho)


def fishers_z(r: np.ndarray) -> np.ndarray:
    """Fisher's Z (arctanh) with values clipped to ±0.9999; NaN preserved."""
    r = np.asarray(r, dtype=np.float64)
    n_clipped = int(np.sum(np.abs(r) >= 0.9999))
    if n_clipped > 0:
        logger.warning("Fisher's Z: %d values clipped to ±0.9999 before arctanh", n_clipped)
    return np.arctanh(np.clip(r, -0.9999, 0.9999))
