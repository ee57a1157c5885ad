"""
Group-level statistics on decoding correlations.

Key matched choices:
  - Outer correlations are Fisher-z transformed, then averaged over folds
    per subject (one value per subject × condition × ROI × scheme)
  - One-sample t-test across subjects (H0: mean z = 0), as MATLAB ttest()
    via scipy.stats.ttest_1samp
  - Benjamini–Hochberg FDR across ROIs within each condition × scheme,
    via statsmodels fdrcorrection
Assumptions / deviations:
  - NaN correlations (undefined Spearman) are omitted, not replaced by 0;
    a subject whose folds are all NaN drops out of that test
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import fdrcorrection

from catmorph_decoder.eval.metrics import fishers_z
from catmorph_decoder.eval.results import ResultTensor
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


def collect_results(tensors: Iterable[ResultTensor]) -> pd.DataFrame:
    """Concatenate the tidy tables of several subjects."""
    frames = [t.to_frame() for t in tensors]
    if not frames:
        return pd.DataFrame(
            columns=[
                "subject", "condition", "roi", "scheme", "n_partitions",
                "fold", "selected_lambda", "correlation",
            ]
        )
    return pd.concat(frames, ignore_index=True)


def subject_means(frame: pd.DataFrame) -> pd.DataFrame:
    """Fold-averaged Fisher z and selected lambda per subject × condition × ROI × scheme."""
    work = frame.assign(z=fishers_z(frame["correlation"].to_numpy(dtype=np.float64)))
    return (
        work.groupby(["condition", "scheme", "roi", "subject"], sort=False)
        .agg(
            mean_z=("z", "mean"),
            mean_selected_lambda=("selected_lambda", "mean"),
            n_folds=("correlation", "count"),
        )
        .reset_index()
    )


def group_statistics(frame: pd.DataFrame, q: float = 0.05) -> pd.DataFrame:
    """One-sample t-tests of fold-averaged Fisher z across subjects.

    Parameters
    ----------
    frame : pd.DataFrame
        Output of :func:`collect_results`.
    q : float
        FDR level across ROIs.

    Returns
    -------
    pd.DataFrame
        One row per condition × scheme × ROI with columns ``n_subjects``,
        ``mean_z``, ``mean_r``, ``t_stat``, ``p``, ``p_fdr``,
        ``significant_fdr``.
    """
    per_subject = subject_means(frame)
    rows = []
    for (condition, scheme), block in per_subject.groupby(["condition", "scheme"], sort=False):
        block_rows = []
        for roi, roi_block in block.groupby("roi", sort=True):
            z = roi_block["mean_z"].dropna().to_numpy()
            if z.size >= 2:
                t_stat, p = stats.ttest_1samp(z, 0.0)
            else:
                t_stat, p = np.nan, np.nan
            mean_z = float(np.mean(z)) if z.size else np.nan
            block_rows.append(
                {
                    "condition": condition,
                    "scheme": scheme,
                    "roi": int(roi),
                    "n_subjects": int(z.size),
                    "mean_z": mean_z,
                    "mean_r": float(np.tanh(mean_z)),
                    "t_stat": float(t_stat),
                    "p": float(p),
                }
            )

        p_values = np.array([r["p"] for r in block_rows])
        p_fdr = np.full(p_values.shape, np.nan)
        significant = np.zeros(p_values.shape, dtype=bool)
        valid = ~np.isnan(p_values)
        if valid.any():
            significant[valid], p_fdr[valid] = fdrcorrection(p_values[valid], alpha=q)
        for row, pf, sig in zip(block_rows, p_fdr, significant):
            row["p_fdr"] = float(pf)
            row["significant_fdr"] = bool(sig)
        rows.extend(block_rows)

        logger.info(
            "stats | cond=%s %s rois=%d fdr_sig=%d",
            condition, scheme, len(block_rows), int(significant.sum()),
        )

    return pd.DataFrame(rows)
