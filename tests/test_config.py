"""Tests for config loading and validation (config.py)."""

from __future__ import annotations

import pytest
import yaml
from pydantic import ValidationError

from catmorph_decoder.config import PipelineConfig, build_provenance, load_config, save_config_snapshot

MINIMAL = {
    "paths": {
        "features_dir": "features",
        "masks_dir": "masks",
        "targets": "stimuli_pool.mat",
    }
}


def _with(**overrides):
    return PipelineConfig(**{**MINIMAL, **overrides})


class TestDefaults:
    def test_matlab_defaults(self):
        cfg = _with()
        assert cfg.subjects == [3, 4, 5, 6, 7, 8, 9, 10, 13]
        assert cfg.rois == list(range(1, 11))
        assert [(c.name, c.column) for c in cfg.conditions] == [("vowel", 0), ("speaker", 1)]
        assert cfg.cv.holdouts == [2, 4]
        assert cfg.cv.n_folds == 3
        assert cfg.cv.n_trials == 137

    def test_default_lambda_grid(self):
        grid = _with().lambda_grid.exponents
        assert grid.size == 25
        assert grid[0] == -12.0
        assert grid[-1] == 12.0

    def test_fractional_grid_inclusive(self):
        grid = _with(lambda_grid={"start": 0, "stop": 1, "step": 0.25}).lambda_grid.exponents
        assert grid.tolist() == [0.0, 0.25, 0.5, 0.75, 1.0]


class TestValidation:
    def test_subject_strings_coerced(self):
        assert _with(subjects=["03", "13"]).subjects == [3, 13]

    @pytest.mark.parametrize("holdouts", [[], [1, 2], [2, 2]])
    def test_bad_holdouts(self, holdouts):
        with pytest.raises(ValidationError):
            _with(cv={"holdouts": holdouts})

    @pytest.mark.parametrize("rois", [[], [0, 1], [1, 1]])
    def test_bad_rois(self, rois):
        with pytest.raises(ValidationError):
            _with(rois=rois)

    def test_duplicate_conditions(self):
        with pytest.raises(ValidationError):
            _with(conditions=[{"name": "vowel", "column": 0}, {"name": "vowel", "column": 1}])

    def test_reversed_grid(self):
        with pytest.raises(ValidationError):
            _with(lambda_grid={"start": 2, "stop": -2})

    def test_unknown_centering(self):
        with pytest.raises(ValidationError):
            _with(ridge={"centering": "subject"})


class TestLoading:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({**MINIMAL, "subjects": [3], "cv": {"holdouts": [2]}}))
        cfg = load_config(path)
        assert cfg.subjects == [3]
        assert cfg.cv.holdouts == [2]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_snapshot_round_trip(self, tmp_path):
        cfg = _with(rois=[2, 5])
        dest = tmp_path / "snap" / "config.yaml"
        save_config_snapshot(cfg, dest)
        assert load_config(dest) == cfg

    def test_provenance_keys(self):
        prov = build_provenance(_with())
        assert {"timestamp", "catmorph_decoder_version", "config_hash", "git_commit"} <= set(prov)
        assert prov["config_hash"] == build_provenance(_with())["config_hash"]
