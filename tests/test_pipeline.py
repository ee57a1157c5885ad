"""Tests for sweep orchestration and result persistence (pipeline.py, artifacts.py)."""

from __future__ import annotations

import json

import numpy as np
import pytest
from scipy.io import loadmat

from catmorph_decoder.eval.results import ResultTensor
from catmorph_decoder.eval.stats import collect_results, group_statistics, subject_means
from catmorph_decoder.io.artifacts import ArtifactResultSink, load_subject_results
from catmorph_decoder.pipeline import run_sweep


class _MemorySink:
    def __init__(self):
        self.saved = []

    def save(self, tensor):
        self.saved.append(tensor)


class TestRunSweep:
    def test_sweeps_subject(self, sweep_config):
        sink = _MemorySink()
        (outcome,) = run_sweep(sweep_config, sink=sink)
        assert outcome.ok
        assert sink.saved == [outcome.tensor]
        tensor = outcome.tensor
        assert tensor.shape == (2, 2, 2, 2, 3)
        assert not np.isnan(tensor.values[:, :, 0]).any()
        # ROI 1 holds the informative voxels for both conditions
        assert np.all(tensor.values[:, 0, 1] > 0.5)

    def test_failed_subject_does_not_stop_others(self, sweep_config):
        sink = _MemorySink()
        outcomes = run_sweep(sweep_config, subjects=[99, 3], sink=sink)
        assert [o.subject for o in outcomes] == [99, 3]
        assert not outcomes[0].ok
        assert "FileNotFoundError" in outcomes[0].error
        assert outcomes[1].ok
        assert [t.subject for t in sink.saved] == [3]

    def test_undersized_fold_fails_only_that_subject(self, sweep_config, rng, write_features):
        # S05 trains on 6 trials, too few for 4 interleaved inner partitions
        paths = sweep_config.paths
        volume = rng.standard_normal((2, 2, 2, 24))
        fold = (volume[..., :6], volume, np.arange(1, 7), np.arange(1, 25))
        for roi in (1, 2):
            write_features(paths.features_dir / f"S05_FEATURES_mask_{roi:02d}.mat", [fold] * 3)
            mask = np.load(paths.masks_dir / f"S03_mask_{roi:02d}.npy")
            np.save(paths.masks_dir / f"S05_mask_{roi:02d}.npy", mask)

        sink = _MemorySink()
        outcomes = run_sweep(sweep_config, subjects=[5, 3], sink=sink)
        assert [o.ok for o in outcomes] == [False, True]
        assert "InputDataError" in outcomes[0].error
        assert [t.subject for t in sink.saved] == [3]

    def test_target_length_mismatch_fails_subject(self, sweep_config):
        sweep_config.cv.n_trials = 137
        (outcome,) = run_sweep(sweep_config)
        assert not outcome.ok
        assert "InputDataError" in outcome.error

    def test_parallel_matches_sequential(self, sweep_config):
        sequential = run_sweep(sweep_config, subjects=[3])
        sweep_config.compute.n_jobs = 2
        parallel = run_sweep(sweep_config, subjects=[3, 3])
        for outcome in parallel:
            np.testing.assert_array_equal(outcome.tensor.values, sequential[0].tensor.values)


class TestArtifacts:
    def test_writes_and_reloads(self, sweep_config, tmp_path):
        sink = ArtifactResultSink(
            tmp_path / "out", provenance={"git_commit": "abc"}, config_snapshot={"rois": [1, 2]}
        )
        (outcome,) = run_sweep(sweep_config, sink=sink)
        subject_dir = tmp_path / "out" / "results" / "S03"
        for name in ("results.npz", "S03_results.mat", "metrics.json", "provenance.json", "config.yaml"):
            assert (subject_dir / name).exists()

        reloaded = load_subject_results(subject_dir)
        np.testing.assert_array_equal(reloaded.values, outcome.tensor.values)
        assert reloaded.conditions == ["vowel", "speaker"]
        assert [s.name for s in reloaded.schemes] == ["holdout-2", "holdout-4"]

        legacy = loadmat(str(subject_dir / "S03_results.mat"))["results"]
        assert legacy.shape == (2, 2, 2, 3, 3)
        np.testing.assert_array_equal(legacy[:, :, :, 0], outcome.tensor.values[:, :, :, 0])
        np.testing.assert_array_equal(legacy[:, :, :, 2], outcome.tensor.values[:, :, :, 1])

        metrics = json.loads((subject_dir / "metrics.json").read_text())
        assert metrics["subject"] == 3
        assert metrics["cells"]["vowel/holdout-2"]["n_units"] == 6

    def test_missing_results_raise(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_subject_results(tmp_path)


class TestGroupStats:
    def test_tables_from_two_subjects(self, sweep_config):
        (outcome,) = run_sweep(sweep_config)
        other = outcome.tensor
        second = ResultTensor(
            subject=4,
            conditions=other.conditions,
            rois=other.rois,
            schemes=other.schemes,
            n_folds=other.n_folds,
            values=other.values * 0.9,
        )
        frame = collect_results([outcome.tensor, second])
        assert len(frame) == 2 * 2 * 2 * 2 * 3

        means = subject_means(frame)
        assert len(means) == 2 * 2 * 2 * 2
        assert (means["n_folds"] == 3).all()

        stats_frame = group_statistics(frame)
        assert len(stats_frame) == 2 * 2 * 2
        assert (stats_frame["n_subjects"] == 2).all()
        assert {"t_stat", "p", "p_fdr", "significant_fdr"} <= set(stats_frame.columns)

    def test_empty_collection(self):
        assert collect_results([]).empty
