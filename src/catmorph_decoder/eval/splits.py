"""
Cross-Validation Splits
=======================

Inner (parameter-selection) partitions and holdout-scheme descriptors.

Design Principles:
    - Inner partitions are *interleaved*: partition ``i`` tests every
      ``k``-th trial starting at ``i``. This is ``PredefinedSplit`` with
      ``test_fold = arange(n) % k``
    - A holdout scheme is an explicit descriptor carrying its partition
      count; where it is stored (``slot``) is a separate concern used only
      by the MATLAB-layout export
    - Outer folds are *not* generated here: they are fixed ahead of time and
      ship with the feature files

MATLAB Correspondence:
    - build_model.m: ``test = i:holdout:137; train = setdiff(1:137, test);``
    - ``holdouts = [2 4]`` with storage ``l_best(holdout-1, cv)``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Sequence

import numpy as np
from sklearn.model_selection import PredefinedSplit

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.utils.logging import get_logger, log_matlab_note

logger = get_logger(__name__)


@dataclass(frozen=True)
class HoldoutScheme:
    """Inner cross-validation scheme.

    Attributes
    ----------
    n_partitions : int
        Number of interleaved inner partitions (``holdout`` in MATLAB).
    name : str
        Label used in tables and artifacts, e.g. ``'holdout-2'``.
    slot : int
        0-based index of the scheme in the MATLAB ``results`` array
        (``holdout - 1`` in 1-based MATLAB indexing).
    """

    n_partitions: int
    name: str
    slot: int

    @classmethod
    def from_partitions(cls, n_partitions: int) -> "HoldoutScheme":
        if n_partitions < 2:
            raise ValueError(f"A holdout scheme needs >= 2 partitions, got {n_partitions}")
        return cls(
            n_partitions=n_partitions,
            name=f"holdout-{n_partitions}",
            slot=n_partitions - 2,
        )


def build_schemes(holdouts: Sequence[int]) -> list[HoldoutScheme]:
    """Scheme descriptors for a list of partition counts (config ``cv.holdouts``)."""
    return [HoldoutScheme.from_partitions(int(h)) for h in holdouts]


def interleaved_partitions(
    n_trials: int,
    n_partitions: int,
) -> Generator[tuple[np.ndarray, np.ndarray], None, None]:
    """Yield ``(train_idx, test_idx)`` for each interleaved inner partition.

    Parameters
    ----------
    n_trials : int
        Number of trials in the outer-training set.
    n_partitions : int
        Number of partitions (``holdout``).

    Yields
    ------
    train_idx : np.ndarray
        Sorted indices not in the partition.
    test_idx : np.ndarray
        ``arange(i, n_trials, n_partitions)`` for partition ``i``.
    """
    if n_partitions < 2:
        raise ValueError(f"n_partitions must be >= 2, got {n_partitions}")
    if n_trials < 2 * n_partitions:
        raise InputDataError(
            f"{n_trials} trials are too few for {n_partitions} interleaved partitions"
        )

    log_matlab_note(
        logger,
        "build_model.m",
        f"test = i:{n_partitions}:{n_trials} for i = 1..{n_partitions}",
    )
    splitter = PredefinedSplit(test_fold=np.arange(n_trials) % n_partitions)
    for train_idx, test_idx in splitter.split():
        yield train_idx, test_idx
