"""Tests for behavioural target construction (behavior.py).

MATLAB reference: get_taskbehavior.m
  BMAT(tr) = behav(find(vals == MAT(tr,1)), find(vals == MAT(tr,2)));
  BMAT = BMAT - mean(BMAT);
  BMAT = BMAT ./ max(abs(BMAT));
"""

from __future__ import annotations

import numpy as np
import pytest

from catmorph_decoder.data.behavior import behavior_targets_frame, map_morphs_to_behavior, parse_grid
from catmorph_decoder.exceptions import InputDataError


class TestParseGrid:
    def test_matlab_range(self):
        grid = parse_grid("4:8:96")
        assert grid[0] == 4.0
        assert np.all(np.diff(grid) == 8.0)
        assert grid[-1] <= 96.0

    def test_inclusive_stop(self):
        np.testing.assert_array_equal(parse_grid("0:0.5:2"), [0.0, 0.5, 1.0, 1.5, 2.0])
        np.testing.assert_array_equal(parse_grid("1:3"), [1.0, 2.0, 3.0])

    @pytest.mark.parametrize("text", ["5", "1:2:3:4", "3:1", "0:-1:2"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_grid(text)


class TestMapMorphs:
    grid = np.array([0.0, 1.0])
    behavior = np.array([[0.0, 1.0], [2.0, 3.0]])

    def test_lookup_centre_and_scale(self):
        morphs = np.array([[0.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
        labels = map_morphs_to_behavior(morphs, self.behavior, self.grid)
        # raw [0, 3, 1] → centred [-4/3, 5/3, -1/3] → scaled by 5/3
        np.testing.assert_allclose(labels, [-0.8, 1.0, -0.2])
        assert labels.mean() == pytest.approx(0.0)
        assert np.max(np.abs(labels)) == pytest.approx(1.0)

    def test_vowel_indexes_rows(self):
        morphs = np.array([[1.0, 0.0], [0.0, 1.0]])
        labels = map_morphs_to_behavior(morphs, self.behavior, self.grid)
        # behav[1, 0] = 2 > behav[0, 1] = 1
        assert labels[0] > labels[1]

    def test_constant_labels_not_scaled(self):
        morphs = np.array([[0.0, 0.0], [0.0, 0.0]])
        labels = map_morphs_to_behavior(morphs, self.behavior, self.grid)
        np.testing.assert_array_equal(labels, [0.0, 0.0])

    def test_off_grid_morph_raises(self):
        with pytest.raises(InputDataError, match="trial 2"):
            map_morphs_to_behavior(np.array([[0.0, 0.0], [0.5, 1.0]]), self.behavior, self.grid)

    def test_shape_checks(self):
        with pytest.raises(InputDataError):
            map_morphs_to_behavior(np.array([0.0, 1.0]), self.behavior, self.grid)
        with pytest.raises(InputDataError):
            map_morphs_to_behavior(np.zeros((2, 2)), np.zeros((3, 3)), self.grid)


def test_targets_frame_one_column_per_condition():
    grid = np.array([0.0, 1.0])
    morphs = np.array([[0.0, 0.0], [1.0, 1.0], [1.0, 0.0]])
    frame = behavior_targets_frame(
        morphs,
        {"vowel": np.array([[0.0, 0.0], [1.0, 1.0]]), "speaker": np.array([[0.0, 1.0], [0.0, 1.0]])},
        grid,
    )
    assert list(frame.columns) == ["vowel", "speaker"]
    assert len(frame) == 3
    np.testing.assert_allclose(frame["vowel"], map_morphs_to_behavior(morphs, np.array([[0.0, 0.0], [1.0, 1.0]]), grid))
