"""
Nested Cross-Validated Ridge Sweep
==================================

Selects a ridge penalty on interleaved inner partitions of the outer
training set, refits on the whole outer training set and scores the
outer test set with a Spearman correlation.

Core Algorithm (one unit = subject × condition × ROI × fold × scheme)::

    X_train, X_test = centre(X_train), centre(X_test)
    for each inner partition i of k:               # test = i:k:n
        for each exponent e on the grid:
            r_all[e, i] = spearman(y[test], ridge(X[train], y[train], 10^e)(X[test]))
    best_i   = nanargmax(r_all[:, i])              # per partition, not joint
    exponent = mean(grid[best_i])                  # mean of grid values
    r        = spearman(y_test, ridge(X_train, y_train, 10^exponent)(X_test))

Design Principles:
    - ``select_lambda`` and ``evaluate_outer`` are pure functions over arrays
    - One SVD per inner partition serves the whole lambda grid
    - Numerical degeneracy yields NaN cells; malformed inputs raise
      ``InputDataError`` / ``FileNotFoundError`` / ``KeyError``
    - ``sweep_subject`` returns a fresh ``ResultTensor``; persisting it is
      the caller's job

MATLAB Correspondence:
    - build_model.m, inner ridge:
        [~,l_star] = max(r_all,[],1);
        l_best(holdout-1,cv) = mean(l_all(l_star));
    - build_model.m, outer ridge:
        B = ridge(y, X_mean_train', 10^l_best(holdout-1,cv));
        r = corr(y, X_mean_test'*B, type='Spearman');
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np

from catmorph_decoder.data.features import FeatureStore, FoldFeatures
from catmorph_decoder.data.roi import ROISelector
from catmorph_decoder.data.targets import TargetProvider
from catmorph_decoder.eval.metrics import center_features, spearman_correlation
from catmorph_decoder.eval.results import ResultTensor
from catmorph_decoder.eval.splits import HoldoutScheme, build_schemes, interleaved_partitions
from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.models.ridge import RidgeModel, RidgePath
from catmorph_decoder.utils.logging import get_logger, log_matlab_note

logger = get_logger(__name__)


@dataclass(frozen=True)
class LambdaSelection:
    """Outcome of the inner parameter search.

    Attributes
    ----------
    exponent : float
        Selected log10 penalty: mean of the per-partition best grid values.
    best_indices : np.ndarray, shape (n_partitions,)
        Grid index of the best lambda in each partition.
    r_all : np.ndarray, shape (n_lambdas, n_partitions)
        Inner Spearman correlations.
    """

    exponent: float
    best_indices: np.ndarray
    r_all: np.ndarray

    @property
    def alpha(self) -> float:
        return 10.0**self.exponent


@dataclass(frozen=True)
class UnitResult:
    selected_lambda: float
    correlation: float
    selection: LambdaSelection


@dataclass(frozen=True)
class SweepSettings:
    """Everything a unit needs besides the data."""

    lambda_grid: np.ndarray
    schemes: tuple[HoldoutScheme, ...]
    n_folds: int = 3
    centering: Literal["voxel", "trial"] = "voxel"
    standardize: bool = True

    @classmethod
    def from_config(cls, cfg) -> "SweepSettings":
        return cls(
            lambda_grid=cfg.lambda_grid.exponents,
            schemes=tuple(build_schemes(cfg.cv.holdouts)),
            n_folds=cfg.cv.n_folds,
            centering=cfg.ridge.centering,
            standardize=cfg.ridge.standardize,
        )


def _nan_argmax(column: np.ndarray) -> int:
    """Index of the largest non-NaN value; 0 when all are NaN (MATLAB ``max``)."""
    if np.all(np.isnan(column)):
        return 0
    return int(np.nanargmax(column))


def select_lambda(
    X_train: np.ndarray,
    y_train: np.ndarray,
    lambda_grid: Sequence[float],
    n_partitions: int,
    standardize: bool = True,
) -> LambdaSelection:
    """Inner cross-validated choice of the ridge penalty.

    Parameters
    ----------
    X_train : np.ndarray, shape (V, T)
        Centred outer-training features, voxels × trials.
    y_train : np.ndarray, shape (T,)
        Targets of the outer-training trials.
    lambda_grid : sequence of float
        log10 penalty exponents.
    n_partitions : int
        Interleaved inner partitions (holdout).
    standardize : bool
        Ridge predictor standardisation.

    Returns
    -------
    LambdaSelection
    """
    grid = np.asarray(lambda_grid, dtype=np.float64)
    design = np.asarray(X_train, dtype=np.float64).T
    y_train = np.asarray(y_train, dtype=np.float64).ravel()
    if design.shape[0] != y_train.size:
        raise InputDataError(
            f"{design.shape[0]} training trials but {y_train.size} target values"
        )
    if grid.size == 0:
        raise ValueError("Lambda grid is empty")
    if y_train.size < 2 * n_partitions:
        raise InputDataError(
            f"{y_train.size} training trials are too few for {n_partitions} inner partitions"
        )

    r_all = np.full((grid.size, n_partitions), np.nan)
    for i, (train, test) in enumerate(interleaved_partitions(y_train.size, n_partitions)):
        try:
            path = RidgePath(design[train], y_train[train], standardize=standardize)
        except np.linalg.LinAlgError as e:
            logger.warning("Inner partition %d: factorisation failed (%s); column left NaN", i + 1, e)
            continue
        for j, exponent in enumerate(grid):
            model = RidgeModel(alpha=10.0**exponent, standardize=standardize).fit_from_path(path)
            r_all[j, i] = spearman_correlation(y_train[test], model.predict(design[test]))

    best = np.array([_nan_argmax(r_all[:, i]) for i in range(n_partitions)], dtype=np.int64)
    exponent = float(np.mean(grid[best]))

    log_matlab_note(
        logger,
        "build_model.m",
        f"l_best = mean(l_all(l_star)) with l_star={(best + 1).tolist()} → {exponent:g}",
    )
    return LambdaSelection(exponent=exponent, best_indices=best, r_all=r_all)


def evaluate_outer(
    X_train: np.ndarray,
    y_train: np.ndarray,
    X_test: np.ndarray,
    y_test: np.ndarray,
    exponent: float,
    standardize: bool = True,
) -> float:
    """Refit on the full outer-training set and score the outer-test set.

    Parameters
    ----------
    X_train, X_test : np.ndarray, shape (V, T_train) / (V, T_test)
        Centred features, voxels × trials, same voxel rows.
    y_train, y_test : np.ndarray
        Targets aligned with the trial columns.
    exponent : float
        Selected log10 penalty.

    Returns
    -------
    float
        Spearman correlation between predicted and observed test targets
        (NaN when undefined).
    """
    if X_train.shape[0] != X_test.shape[0]:
        raise InputDataError(
            f"Training has {X_train.shape[0]} voxels but testing has {X_test.shape[0]}"
        )
    if not np.isfinite(exponent):
        return float("nan")
    try:
        model = RidgeModel(alpha=10.0**exponent, standardize=standardize).fit(X_train.T, y_train)
    except np.linalg.LinAlgError as e:
        logger.warning("Outer ridge factorisation failed (%s); correlation is NaN", e)
        return float("nan")
    return spearman_correlation(y_test, model.predict(np.asarray(X_test, dtype=np.float64).T))


def prepare_fold(
    fold: FoldFeatures,
    y: np.ndarray,
    centering: Literal["voxel", "trial"] = "voxel",
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Centre a fold's matrices and align the targets to their trial columns.

    Returns
    -------
    X_train, y_train, X_test, y_test
    """
    y = np.asarray(y, dtype=np.float64).ravel()

    def _targets(trials, n_cols: int, name: str) -> np.ndarray:
        if trials is None:
            if n_cols != y.size:
                raise InputDataError(
                    f"{name} matrix has {n_cols} trials but the target has {y.size} values"
                )
            return y
        if trials.min() < 0 or trials.max() >= y.size:
            raise InputDataError(f"{name} trial indices out of range for {y.size} targets")
        return y[trials]

    y_train = _targets(fold.train_trials, fold.training.shape[1], "training")
    y_test = _targets(fold.test_trials, fold.testing.shape[1], "testing")
    return (
        center_features(fold.training, centering),
        y_train,
        center_features(fold.testing, centering),
        y_test,
    )


def run_unit(
    X_train: np.ndarray,
    y_train: np.ndarray,
    X_test: np.ndarray,
    y_test: np.ndarray,
    scheme: HoldoutScheme,
    lambda_grid: Sequence[float],
    standardize: bool = True,
) -> UnitResult:
    """Inner selection followed by outer evaluation for one holdout scheme."""
    selection = select_lambda(X_train, y_train, lambda_grid, scheme.n_partitions, standardize)
    r = evaluate_outer(X_train, y_train, X_test, y_test, selection.exponent, standardize)
    return UnitResult(selected_lambda=selection.exponent, correlation=r, selection=selection)


def sweep_subject(
    subject: int,
    conditions: Sequence[str],
    rois: Sequence[int],
    settings: SweepSettings,
    features: FeatureStore,
    masks: ROISelector,
    targets: TargetProvider,
) -> ResultTensor:
    """Run every (condition, ROI, fold, scheme) unit of one subject.

    Raises
    ------
    FileNotFoundError, KeyError, InputDataError
        Missing or malformed inputs; the subject's pass is aborted.
    """
    result = ResultTensor(subject, conditions, rois, settings.schemes, settings.n_folds)
    y_by_condition = {c: targets.target(c) for c in conditions}

    for roi in rois:
        voxel_indices = masks.voxel_indices(subject, roi)
        folds = features.load(subject, roi)
        if len(folds) > settings.n_folds:
            raise InputDataError(
                f"Subject {subject} ROI {roi}: {len(folds)} folds on disk, "
                f"{settings.n_folds} configured"
            )

        for k, fold in enumerate(folds):
            fold = fold.restrict(voxel_indices)
            for condition in conditions:
                X_train, y_train, X_test, y_test = prepare_fold(
                    fold, y_by_condition[condition], settings.centering
                )
                for scheme in settings.schemes:
                    unit = run_unit(
                        X_train, y_train, X_test, y_test,
                        scheme, settings.lambda_grid, settings.standardize,
                    )
                    result.record(condition, roi, scheme, k, unit.selected_lambda, unit.correlation)
                    logger.info(
                        "unit | sub=%02d cond=%s roi=%d fold=%d %s lambda=%g r=%.4f",
                        subject, condition, roi, k + 1, scheme.name,
                        unit.selected_lambda, unit.correlation,
                    )
    return result
