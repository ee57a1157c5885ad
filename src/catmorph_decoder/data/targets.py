"""
Target Provider
===============

Per-condition target vectors (one scalar per trial) from the stimulus pool.

Design Principles:
    - ``stimuli_pool`` is a (trials × conditions) table; a condition is a
      named column (vowel = 0, speaker = 1 by default)
    - Accepts ``.mat`` (variable ``stimuli_pool``), ``.npy`` and ``.csv``;
      CSV columns are matched by condition name first, then by position
    - The same vector is shared by every ROI and fold of a condition

MATLAB Correspondence:
    - build_model.m:
        load('stimuli_pool.mat', 'stimuli_pool');
        Y{1} = stimuli_pool(:,1);  % vowel
        Y{2} = stimuli_pool(:,2);  % speaker
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Protocol

import numpy as np
import pandas as pd
from scipy.io import loadmat

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


def read_matrix(path: Path, mat_variable: str = "stimuli_pool") -> np.ndarray:
    """Read a numeric 2D table from ``.csv``, ``.npy`` or ``.mat``.

    A CSV whose first row is entirely non-numeric is treated as having a
    header line.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        frame = pd.read_csv(path, header=None).apply(pd.to_numeric, errors="coerce")
        if frame.shape[0] and frame.iloc[0].isna().all():
            frame = frame.iloc[1:]
        arr = frame.to_numpy(dtype=np.float64)
    elif suffix == ".npy":
        arr = np.asarray(np.load(path), dtype=np.float64)
    elif suffix == ".mat":
        mat = loadmat(str(path))
        if mat_variable not in mat:
            raise KeyError(f"Variable {mat_variable!r} not found in {path.name}")
        arr = np.asarray(mat[mat_variable], dtype=np.float64)
    else:
        raise InputDataError(f"Unsupported table format: {path.suffix}")
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if np.isnan(arr).any():
        raise InputDataError(f"{path.name} contains missing or non-numeric values")
    return arr


class TargetProvider(Protocol):
    """Source of the target vector for a condition."""

    def target(self, condition: str) -> np.ndarray:
        ...


class StimulusPoolTargets:
    """Targets read from a stimulus-pool file.

    Parameters
    ----------
    path : Path
        Stimulus pool file.
    columns : Mapping[str, int]
        Condition name → 0-based column.
    n_trials : int or None
        Expected vector length; a mismatch raises ``InputDataError``.
    """

    def __init__(
        self,
        path: Path,
        columns: Mapping[str, int],
        n_trials: Optional[int] = None,
    ):
        self.path = Path(path)
        self.columns = dict(columns)
        self.n_trials = n_trials
        self._frame: Optional[pd.DataFrame] = None

    def _load(self) -> pd.DataFrame:
        if self._frame is not None:
            return self._frame
        if not self.path.exists():
            raise FileNotFoundError(f"Stimulus pool not found: {self.path}")

        if self.path.suffix.lower() == ".csv":
            frame = pd.read_csv(self.path, header=None)
            if len(frame) and frame.iloc[0].apply(pd.to_numeric, errors="coerce").isna().all():
                # header row: keep it so columns can be addressed by condition name
                header = [str(c).strip() for c in frame.iloc[0]]
                frame = frame.iloc[1:].reset_index(drop=True)
                frame.columns = header
        else:
            frame = pd.DataFrame(read_matrix(self.path, mat_variable="stimuli_pool"))

        if frame.shape[0] == 0:
            raise InputDataError(f"Stimulus pool {self.path.name} is empty")
        logger.info("targets | file=%s trials=%d columns=%d", self.path.name, *frame.shape)
        self._frame = frame
        return frame

    def target(self, condition: str) -> np.ndarray:
        """Target vector for ``condition``, shape (n_trials,).

        Raises
        ------
        KeyError
            Unknown condition.
        InputDataError
            Column out of range, non-numeric values or length mismatch.
        """
        if condition not in self.columns:
            raise KeyError(f"Unknown condition {condition!r}; known: {sorted(self.columns)}")
        frame = self._load()

        if condition in frame.columns:
            series = frame[condition]
        else:
            col = self.columns[condition]
            if col >= frame.shape[1]:
                raise InputDataError(
                    f"Condition {condition!r} uses column {col} but "
                    f"{self.path.name} has {frame.shape[1]} columns"
                )
            series = frame.iloc[:, col]

        y = pd.to_numeric(series, errors="coerce").to_numpy(dtype=np.float64)
        if np.isnan(y).any():
            raise InputDataError(
                f"Condition {condition!r} has {int(np.isnan(y).sum())} missing/non-numeric values"
            )
        if self.n_trials is not None and y.size != self.n_trials:
            raise InputDataError(
                f"Target for {condition!r} has {y.size} trials, expected {self.n_trials}"
            )
        return y
