"""
Result Tensor
=============

Per-subject accumulator for the nested ridge sweep.

Core Layout::

    values[condition, roi, metric, scheme, fold]
        metric 0 = selected lambda (log10 exponent)
        metric 1 = outer Spearman correlation

Design Principles:
    - Cells start as NaN ("not computed"); each unit writes exactly one
      (condition, roi, scheme, fold) cell pair
    - Axes are labelled (condition names, ROI ids, scheme descriptors) so
      lookups never rely on positional arithmetic
    - ``merge`` combines tensors computed for disjoint cells (e.g. by
      parallel workers) and refuses conflicting writes
    - ``to_legacy_array`` reproduces the MATLAB ``results`` layout

MATLAB Correspondence:
    - build_model.m:
        results = zeros(2,10,2,3,3);
        results(c,roi,1,:,:) = l_best;   % l_best(holdout-1, cv)
        results(c,roi,2,:,:) = r_best;
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from catmorph_decoder.eval.splits import HoldoutScheme
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)

METRICS = ("selected_lambda", "correlation")
LEGACY_SCHEME_SLOTS = 3


class ResultTensor:
    """Selected lambdas and outer correlations for one subject.

    Parameters
    ----------
    subject : int
        Subject identifier.
    conditions : sequence of str
        Condition names (axis 0).
    rois : sequence of int
        ROI ids (axis 1).
    schemes : sequence of HoldoutScheme
        Holdout schemes (axis 3).
    n_folds : int
        Number of outer folds (axis 4).
    values : np.ndarray or None
        Existing values of shape (C, R, 2, S, F); NaN-filled when None.
    """

    def __init__(
        self,
        subject: int,
        conditions: Sequence[str],
        rois: Sequence[int],
        schemes: Sequence[HoldoutScheme],
        n_folds: int,
        values: np.ndarray | None = None,
    ):
        self.subject = int(subject)
        self.conditions = list(conditions)
        self.rois = [int(r) for r in rois]
        self.schemes = list(schemes)
        self.n_folds = int(n_folds)

        shape = (len(self.conditions), len(self.rois), len(METRICS), len(self.schemes), self.n_folds)
        if values is None:
            values = np.full(shape, np.nan, dtype=np.float64)
        elif values.shape != shape:
            raise ValueError(f"values shape {values.shape} does not match axes {shape}")
        self.values = values

    @property
    def shape(self) -> tuple[int, ...]:
        return self.values.shape

    def _scheme_index(self, scheme: HoldoutScheme | str) -> int:
        name = scheme if isinstance(scheme, str) else scheme.name
        for i, s in enumerate(self.schemes):
            if s.name == name:
                return i
        raise KeyError(f"Unknown holdout scheme {name!r}")

    def _index(self, condition: str, roi: int, scheme: HoldoutScheme | str, fold: int) -> tuple[int, int, int, int]:
        if not 0 <= fold < self.n_folds:
            raise IndexError(f"fold {fold} out of range for {self.n_folds} folds")
        return (
            self.conditions.index(condition),
            self.rois.index(int(roi)),
            self._scheme_index(scheme),
            fold,
        )

    def record(
        self,
        condition: str,
        roi: int,
        scheme: HoldoutScheme | str,
        fold: int,
        selected_lambda: float,
        correlation: float,
    ) -> None:
        """Store one unit's output. ``fold`` is 0-based."""
        c, r, s, f = self._index(condition, roi, scheme, fold)
        self.values[c, r, 0, s, f] = selected_lambda
        self.values[c, r, 1, s, f] = correlation

    def get(self, condition: str, roi: int, scheme: HoldoutScheme | str, fold: int) -> tuple[float, float]:
        """``(selected_lambda, correlation)`` for one cell."""
        c, r, s, f = self._index(condition, roi, scheme, fold)
        return float(self.values[c, r, 0, s, f]), float(self.values[c, r, 1, s, f])

    def _same_axes(self, other: "ResultTensor") -> bool:
        return (
            self.subject == other.subject
            and self.conditions == other.conditions
            and self.rois == other.rois
            and [s.name for s in self.schemes] == [s.name for s in other.schemes]
            and self.n_folds == other.n_folds
        )

    def merge(self, other: "ResultTensor") -> "ResultTensor":
        """Copy the computed cells of ``other`` into this tensor.

        Raises
        ------
        ValueError
            If the axes differ or a cell was computed by both with different values.
        """
        if not self._same_axes(other):
            raise ValueError("Cannot merge result tensors with different axes")
        theirs = ~np.isnan(other.values)
        ours = ~np.isnan(self.values)
        clash = theirs & ours & (self.values != other.values)
        if clash.any():
            raise ValueError(f"{int(clash.sum())} result cells written by both tensors")
        self.values[theirs] = other.values[theirs]
        return self

    def to_frame(self) -> pd.DataFrame:
        """Tidy table, one row per (condition, roi, scheme, fold); fold is 1-based."""
        rows = []
        for ci, condition in enumerate(self.conditions):
            for ri, roi in enumerate(self.rois):
                for si, scheme in enumerate(self.schemes):
                    for f in range(self.n_folds):
                        rows.append(
                            {
                                "subject": self.subject,
                                "condition": condition,
                                "roi": roi,
                                "scheme": scheme.name,
                                "n_partitions": scheme.n_partitions,
                                "fold": f + 1,
                                "selected_lambda": self.values[ci, ri, 0, si, f],
                                "correlation": self.values[ci, ri, 1, si, f],
                            }
                        )
        return pd.DataFrame(rows)

    def to_legacy_array(self) -> np.ndarray:
        """MATLAB ``results`` layout ``(C, max_roi, 2, 3, F)``.

        ROI ids become 1-based positions and each scheme goes to its
        ``slot``. A cell counts as computed when its selected lambda is
        set; cells without a result are 0 as in the original
        ``zeros(2,10,2,3,3)``.
        """
        n_roi = max(self.rois) if self.rois else 0
        legacy = np.zeros(
            (len(self.conditions), n_roi, len(METRICS), LEGACY_SCHEME_SLOTS, self.n_folds)
        )
        for si, scheme in enumerate(self.schemes):
            if not 0 <= scheme.slot < LEGACY_SCHEME_SLOTS:
                raise ValueError(
                    f"Scheme {scheme.name} has slot {scheme.slot}; the MATLAB layout "
                    f"holds {LEGACY_SCHEME_SLOTS} slots"
                )
            for ri, roi in enumerate(self.rois):
                block = self.values[:, ri, :, si, :]
                ran = ~np.isnan(block[:, :1, :])
                legacy[:, roi - 1, :, scheme.slot, :] = np.where(ran, block, 0.0)
        return legacy
