"""
Behavioural labels from vowel–speaker morph coordinates.

This module corresponds to MATLAB script(s):
  - get_taskbehavior.m:
      BMAT(tr) = behav(find(vals == MAT(tr,1)), find(vals == MAT(tr,2)));
      BMAT = BMAT - mean(BMAT);
      BMAT = BMAT ./ max(abs(BMAT));
Key matched choices:
  - Vowel morph indexes the first axis of the behaviour matrix, speaker the second
  - Labels are mean-centred, then scaled to [-1, 1] by the max absolute value
  - Scaling is skipped when all labels are equal (max |label| = 0)
Assumptions / deviations:
  - Morph values are matched to the grid with an absolute tolerance of 1e-9
    instead of exact equality, so values read back from CSV still match
"""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger, log_matlab_note

logger = get_logger(__name__)


def parse_grid(text: str) -> np.ndarray:
    """Parse a MATLAB-style ``start:step:stop`` range (e.g. ``'4:8:96'``)."""
    parts = [float(p) for p in text.split(":")]
    if len(parts) == 2:
        start, stop = parts
        step = 1.0
    elif len(parts) == 3:
        start, step, stop = parts
    else:
        raise ValueError(f"Grid must be 'start:stop' or 'start:step:stop', got {text!r}")
    if step <= 0 or stop < start:
        raise ValueError(f"Empty grid: {text!r}")
    n = int(np.floor((stop - start) / step + 1e-9)) + 1
    return start + step * np.arange(n)


def _grid_index(grid: np.ndarray, value: float) -> int:
    hits = np.flatnonzero(np.isclose(grid, value, rtol=0.0, atol=1e-9))
    return int(hits[0]) if hits.size else -1


def map_morphs_to_behavior(
    morphs: np.ndarray,
    behavior: np.ndarray,
    grid: Sequence[float],
) -> np.ndarray:
    """Convert per-trial (vowel, speaker) morph coordinates to behavioural labels.

    Parameters
    ----------
    morphs : np.ndarray, shape (N, 2)
        Column 0 = vowel morph value, column 1 = speaker morph value.
    behavior : np.ndarray, shape (G, G)
        Behavioural value per (vowel, speaker) grid cell, e.g. proportion of
        "female" responses.
    grid : sequence of float, length G
        Morph values on which ``behavior`` is defined (e.g. 4:8:96).

    Returns
    -------
    np.ndarray, shape (N,)
        Mean-centred labels scaled to [-1, 1].

    Raises
    ------
    InputDataError
        If a morph value is not on the grid or shapes disagree.
    """
    morphs = np.asarray(morphs, dtype=np.float64)
    behavior = np.asarray(behavior, dtype=np.float64)
    grid = np.asarray(grid, dtype=np.float64)

    if morphs.ndim != 2 or morphs.shape[1] < 2:
        raise InputDataError(f"Morph matrix must be (N, 2), got {morphs.shape}")
    if behavior.shape != (grid.size, grid.size):
        raise InputDataError(
            f"Behaviour matrix shape {behavior.shape} does not match grid of {grid.size}"
        )

    log_matlab_note(
        logger,
        "get_taskbehavior.m",
        f"lookup behav(vowel, speaker) for {morphs.shape[0]} trials",
    )

    labels = np.empty(morphs.shape[0], dtype=np.float64)
    for tr, (vowel, speaker) in enumerate(morphs[:, :2]):
        hv = _grid_index(grid, vowel)
        hs = _grid_index(grid, speaker)
        if hv < 0 or hs < 0:
            raise InputDataError(
                f"Morph value not found in grid for trial {tr + 1} "
                f"(vowel={vowel:g}, speaker={speaker:g})"
            )
        labels[tr] = behavior[hv, hs]

    labels -= labels.mean()
    max_abs = np.max(np.abs(labels)) if labels.size else 0.0
    if max_abs > 0:
        labels /= max_abs
    return labels


def behavior_targets_frame(
    morphs: np.ndarray,
    behaviors: Mapping[str, np.ndarray],
    grid: Sequence[float],
) -> pd.DataFrame:
    """One behavioural label column per condition, one row per trial."""
    frame = pd.DataFrame(
        {name: map_morphs_to_behavior(morphs, behav, grid) for name, behav in behaviors.items()}
    )
    frame.index.name = "trial"
    logger.info(
        "behavior | trials=%d conditions=%s", len(frame), ",".join(frame.columns)
    )
    return frame
