"""
Ridge Regression
================

Closed-form ridge regression of a behavioural target on voxel predictors,
solved through a thin SVD so that ``p >> n`` designs and vanishing
penalties (``10^-12``) stay numerically stable.

Core Algorithm::

    Z    = (X - mean(X)) / sd(X)          # sd with ddof=1, as MATLAB std()
    Z    = U S V'                         # thin SVD, computed once
    b_z  = V diag(s / (s^2 + alpha)) U' (y - mean(y))
    coef = b_z / sd(X)
    b0   = mean(y) - mean(X) @ coef

Design Principles:
    - Penalty is applied in the standardised space, so ``alpha`` has the
      same meaning as ``k`` in MATLAB ``ridge(y, X, k)``
    - One factorisation serves every penalty on the lambda grid
      (``RidgePath.coef_for``)
    - Singular values below the ``lstsq`` cutoff are discarded, so
      ``alpha -> 0`` converges to the minimum-norm least-squares fit
    - Betas follow the ``[intercept; coef]`` convention, shape ``(D+1,)``

MATLAB Correspondence:
    - build_model.m: ``B = ridge(y(train), X_mean_train(:,train)', 10^l_all(lamda))``
    - MATLAB returns standardised-scale coefficients without an intercept
      and multiplies them by the centred (unscaled) features; we return
      original-scale coefficients instead (see DESIGN.md)
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


class RidgePath:
    """SVD factorisation of a ridge problem, reusable across penalties.

    Parameters
    ----------
    X : np.ndarray, shape (N, D)
        Design matrix, trials × voxels.
    y : np.ndarray, shape (N,)
        Target vector.
    standardize : bool
        Scale predictors to unit standard deviation before penalising.
        Zero-variance predictors keep a scale of 1 (MATLAB ridge behaviour).
    """

    def __init__(self, X: np.ndarray, y: np.ndarray, standardize: bool = True):
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64).ravel()
        if X.ndim != 2:
            raise ValueError(f"Expected 2D design matrix, got shape {X.shape}")
        if X.shape[0] != y.shape[0]:
            raise InputDataError(
                f"Design has {X.shape[0]} rows but target has {y.shape[0]} values"
            )
        if X.shape[0] < 2:
            raise InputDataError("Ridge needs at least 2 samples")

        n, d = X.shape
        self.x_mean = X.mean(axis=0)
        self.y_mean = float(y.mean())
        Z = X - self.x_mean

        if standardize:
            scale = Z.std(axis=0, ddof=1)
            scale[scale < np.sqrt(np.finfo(np.float64).eps)] = 1.0
        else:
            scale = np.ones(d)
        self.scale = scale

        U, s, Vt = np.linalg.svd(Z / scale, full_matrices=False)
        cutoff = np.finfo(np.float64).eps * max(n, d) * (s[0] if s.size else 0.0)
        keep = s > cutoff
        self._s = s[keep]
        self._Vt = Vt[keep]
        self._Uty = U[:, keep].T @ (y - self.y_mean)

    @property
    def rank(self) -> int:
        """Numerical rank of the (standardised) design."""
        return int(self._s.size)

    def coef_for(self, alpha: float) -> np.ndarray:
        """Original-scale coefficients for penalty ``alpha``, shape (D,)."""
        if alpha < 0:
            raise ValueError(f"Ridge penalty must be non-negative, got {alpha}")
        d = self._s / (self._s**2 + alpha)
        coef_std = self._Vt.T @ (d * self._Uty)
        return coef_std / self.scale

    def intercept_for(self, coef: np.ndarray) -> float:
        return self.y_mean - float(self.x_mean @ coef)


class RidgeModel:
    """Single-target ridge regression.

    Parameters
    ----------
    alpha : float
        Regularisation strength (``10 ** exponent`` on the lambda grid).
    standardize : bool
        Whether to standardise predictors before fitting.

    Attributes
    ----------
    _betas : np.ndarray or None
        ``[intercept, coef...]`` after fitting, shape (D+1,).
    """

    def __init__(self, alpha: float = 1.0, standardize: bool = True):
        self.alpha = alpha
        self.standardize = standardize
        self._betas: Optional[np.ndarray] = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> "RidgeModel":
        """Fit on trials × voxels ``X`` and target ``y``."""
        path = RidgePath(X, y, standardize=self.standardize)
        return self.fit_from_path(path)

    def fit_from_path(self, path: RidgePath) -> "RidgeModel":
        """Fit from an existing factorisation (no new SVD)."""
        coef = path.coef_for(self.alpha)
        self._betas = np.concatenate([[path.intercept_for(coef)], coef])
        logger.debug(
            "Ridge fit: D=%d, rank=%d, alpha=%.3g", coef.size, path.rank, self.alpha
        )
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict targets, ``[ones(N,1) X] * betas``."""
        X = np.asarray(X, dtype=np.float64)
        return X @ self.coef + self.intercept

    @property
    def betas(self) -> np.ndarray:
        if self._betas is None:
            raise RuntimeError("Model not fitted.")
        return self._betas

    @property
    def coef(self) -> np.ndarray:
        return self.betas[1:]

    @property
    def intercept(self) -> float:
        return float(self.betas[0])
