"""
Sweep orchestration: config → collaborators → per-subject sweeps → sink.

Subjects are independent, so they are dispatched with joblib when
``compute.n_jobs != 1``. A subject whose inputs are missing or malformed
is reported as failed without stopping the other subjects; nothing is
written for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from joblib import Parallel, delayed

from catmorph_decoder.config import PipelineConfig
from catmorph_decoder.data.features import MatFeatureStore
from catmorph_decoder.data.roi import ArrayMaskSelector
from catmorph_decoder.data.targets import StimulusPoolTargets
from catmorph_decoder.eval.nested_cv import SweepSettings, sweep_subject
from catmorph_decoder.eval.results import ResultTensor
from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.io.artifacts import ResultSink
from catmorph_decoder.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SubjectOutcome:
    subject: int
    tensor: Optional[ResultTensor] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_collaborators(
    cfg: PipelineConfig,
) -> tuple[MatFeatureStore, ArrayMaskSelector, StimulusPoolTargets]:
    """File-backed feature store, ROI selector and target provider for ``cfg``."""
    features = MatFeatureStore(cfg.paths.features_dir, cfg.paths.feature_pattern)
    masks = ArrayMaskSelector(cfg.paths.masks_dir, cfg.paths.mask_pattern)
    targets = StimulusPoolTargets(
        cfg.paths.targets,
        {c.name: c.column for c in cfg.conditions},
        n_trials=cfg.cv.n_trials,
    )
    return features, masks, targets


def sweep_one_subject(subject: int, cfg: PipelineConfig) -> SubjectOutcome:
    """Sweep one subject; input errors become a failed outcome."""
    features, masks, targets = build_collaborators(cfg)
    logger.info("subject | S%02d start", subject)
    try:
        tensor = sweep_subject(
            subject,
            conditions=[c.name for c in cfg.conditions],
            rois=cfg.rois,
            settings=SweepSettings.from_config(cfg),
            features=features,
            masks=masks,
            targets=targets,
        )
    except (FileNotFoundError, KeyError, InputDataError) as e:
        logger.error("subject | S%02d aborted: %s", subject, e)
        return SubjectOutcome(subject=subject, error=f"{type(e).__name__}: {e}")
    return SubjectOutcome(subject=subject, tensor=tensor)


def run_sweep(
    cfg: PipelineConfig,
    subjects: Optional[Sequence[int]] = None,
    sink: Optional[ResultSink] = None,
) -> list[SubjectOutcome]:
    """Sweep every subject and hand each finished tensor to ``sink``.

    Parameters
    ----------
    cfg : PipelineConfig
        Validated configuration.
    subjects : sequence of int or None
        Overrides ``cfg.subjects``.
    sink : ResultSink or None
        Receives each successful subject's tensor as soon as it is done.

    Returns
    -------
    list[SubjectOutcome]
        One outcome per subject, in input order.
    """
    subjects = list(cfg.subjects if subjects is None else subjects)
    n_jobs = cfg.compute.n_jobs

    if n_jobs == 1:
        outcomes_iter = (sweep_one_subject(s, cfg) for s in subjects)
    else:
        logger.info("Dispatching %d subjects with joblib (n_jobs=%d)", len(subjects), n_jobs)
        outcomes_iter = Parallel(n_jobs=n_jobs, return_as="generator")(
            delayed(sweep_one_subject)(s, cfg) for s in subjects
        )

    outcomes = []
    for outcome in outcomes_iter:
        if outcome.ok and sink is not None:
            sink.save(outcome.tensor)
        outcomes.append(outcome)

    n_failed = sum(not o.ok for o in outcomes)
    logger.info("Sweep finished: %d subjects ok, %d failed", len(outcomes) - n_failed, n_failed)
    return outcomes
