"""
ROI selection from exported binary masks.

This module corresponds to MATLAB script(s):
  - build_model.m:
      masks{sub,roi} = xff('*.msk');
      roi = find(msk.Mask);
      X_train = training_temp(roi,:);
Key matched choices:
  - A mask is a boolean / 0-1 volume in the same space as the features
  - Voxel indices are column-major linear indices (MATLAB ``find``)
Assumptions / deviations:
  - BrainVoyager .msk parsing is not reimplemented; masks are expected as
    ``.npy`` arrays or ``.mat`` files holding a ``Mask`` variable
  - MATLAB reuses the loop variable ``roi`` for the voxel indices; here the
    ROI id and its voxel indices are kept apart
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import numpy as np
from scipy.io import loadmat

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


class ROISelector(Protocol):
    """Lookup of ROI voxel indices per (subject, ROI)."""

    def voxel_indices(self, subject: int, roi: int) -> np.ndarray:
        ...


def mask_to_indices(mask: np.ndarray) -> np.ndarray:
    """Column-major linear indices of the non-zero voxels of ``mask``."""
    mask = np.asarray(mask)
    if mask.ndim == 4:
        mask = mask[..., 0]
    return np.flatnonzero(mask.ravel(order="F") != 0)


class ArrayMaskSelector:
    """Masks stored one file per (subject, ROI).

    Parameters
    ----------
    masks_dir : Path
        Directory holding the mask files.
    pattern : str
        Filename pattern formatted with ``subject`` and ``roi``.
    """

    def __init__(self, masks_dir: Path, pattern: str = "S{subject:02d}_mask_{roi:02d}.npy"):
        self.masks_dir = Path(masks_dir)
        self.pattern = pattern

    def path_for(self, subject: int, roi: int) -> Path:
        return self.masks_dir / self.pattern.format(subject=subject, roi=roi)

    def load_mask(self, subject: int, roi: int) -> np.ndarray:
        path = self.path_for(subject, roi)
        if not path.exists():
            raise FileNotFoundError(f"ROI mask not found: {path}")
        if path.suffix == ".mat":
            mat = loadmat(str(path))
            if "Mask" not in mat:
                raise KeyError(f"Variable 'Mask' not found in {path.name}")
            return np.asarray(mat["Mask"])
        return np.load(path)

    def voxel_indices(self, subject: int, roi: int) -> np.ndarray:
        mask = self.load_mask(subject, roi)
        indices = mask_to_indices(mask)
        if indices.size == 0:
            raise InputDataError(f"Mask for subject {subject} ROI {roi} is empty")
        logger.debug("roi | subject=%d roi=%d voxels=%d", subject, roi, indices.size)
        return indices
