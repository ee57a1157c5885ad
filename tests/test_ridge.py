"""Tests for the ridge model (ridge.py).

MATLAB reference: build_model.m
  B = ridge(y(train), X_mean_train(:,train)', 10^l_all(lamda));

Key properties:
  - betas shape: (n_voxels + 1,), intercept first
  - penalty acts on standardised predictors (MATLAB ``k`` scale)
  - alpha -> 0 recovers ordinary least squares
  - one factorisation serves every penalty on the grid
"""

from __future__ import annotations

import numpy as np
import pytest

from catmorph_decoder.exceptions import InputDataError
from catmorph_decoder.models.ridge import RidgeModel, RidgePath


@pytest.fixture()
def design(rng):
    N, D = 40, 6
    X = rng.standard_normal((N, D)) * rng.uniform(0.5, 5.0, size=D) + 3.0
    y = X @ rng.standard_normal(D) + 0.3 * rng.standard_normal(N)
    return X, y


class TestRidgeShapes:
    def test_betas_shape(self, design):
        X, y = design
        model = RidgeModel(alpha=1.0).fit(X, y)
        assert model.betas.shape == (X.shape[1] + 1,)
        assert model.coef.shape == (X.shape[1],)

    def test_predict_matches_betas(self, design):
        X, y = design
        model = RidgeModel(alpha=0.5).fit(X, y)
        manual = np.column_stack([np.ones(len(X)), X]) @ model.betas
        np.testing.assert_allclose(model.predict(X), manual, atol=1e-10)

    def test_unfitted_model_raises(self):
        with pytest.raises(RuntimeError):
            RidgeModel().coef

    def test_sample_mismatch_raises(self, design):
        X, y = design
        with pytest.raises(ValueError):
            RidgeModel().fit(X, y[:-1])


class TestRidgeSolution:
    def test_vanishing_penalty_is_least_squares(self, design):
        X, y = design
        A = np.column_stack([np.ones(len(X)), X])
        expected, *_ = np.linalg.lstsq(A, y, rcond=None)
        for standardize in (True, False):
            model = RidgeModel(alpha=1e-12, standardize=standardize).fit(X, y)
            np.testing.assert_allclose(model.betas, expected, atol=1e-8)

    def test_penalty_on_standardised_scale(self, design):
        """coef = D^-1 (Z'Z + kI)^-1 Z'(y - mean y), Z with ddof=1 scaling."""
        X, y = design
        alpha = 7.0
        scale = X.std(axis=0, ddof=1)
        Z = (X - X.mean(axis=0)) / scale
        b_z = np.linalg.solve(Z.T @ Z + alpha * np.eye(X.shape[1]), Z.T @ (y - y.mean()))
        model = RidgeModel(alpha=alpha, standardize=True).fit(X, y)
        np.testing.assert_allclose(model.coef, b_z / scale, rtol=1e-8)
        assert model.intercept == pytest.approx(y.mean() - X.mean(axis=0) @ model.coef)

    def test_predictions_invariant_to_predictor_scale(self, design):
        X, y = design
        rescaled = X * np.array([1.0, 10.0, 0.01, 3.0, 1.0, 100.0])
        a = RidgeModel(alpha=5.0).fit(X, y).predict(X)
        b = RidgeModel(alpha=5.0).fit(rescaled, y).predict(rescaled)
        np.testing.assert_allclose(a, b, rtol=1e-8, atol=1e-10)

    def test_large_penalty_shrinks_to_mean(self, design):
        X, y = design
        model = RidgeModel(alpha=1e12).fit(X, y)
        assert np.linalg.norm(model.coef) < 1e-6
        np.testing.assert_allclose(model.predict(X), y.mean(), atol=1e-5)

    def test_zero_variance_predictor_gets_zero_weight(self, design):
        X, y = design
        X = X.copy()
        X[:, 2] = 4.2
        model = RidgeModel(alpha=1.0).fit(X, y)
        assert model.coef[2] == pytest.approx(0.0, abs=1e-10)
        assert np.all(np.isfinite(model.betas))

    def test_more_voxels_than_trials(self, rng):
        X = rng.standard_normal((12, 300))
        y = rng.standard_normal(12)
        path = RidgePath(X, y)
        assert path.rank <= 11
        model = RidgeModel(alpha=1e-12).fit_from_path(path)
        # minimum-norm interpolation of the training targets
        np.testing.assert_allclose(model.predict(X), y, atol=1e-6)

    def test_negative_penalty_raises(self, design):
        with pytest.raises(ValueError):
            RidgePath(*design).coef_for(-1.0)


class TestRidgePath:
    def test_path_reuse_matches_fresh_fit(self, design):
        X, y = design
        path = RidgePath(X, y)
        for exponent in (-3, 0, 2):
            alpha = 10.0**exponent
            reused = RidgeModel(alpha=alpha).fit_from_path(path)
            fresh = RidgeModel(alpha=alpha).fit(X, y)
            np.testing.assert_allclose(reused.betas, fresh.betas, rtol=1e-12)

    def test_path_rejects_single_sample(self):
        with pytest.raises(InputDataError):
            RidgePath(np.ones((1, 3)), np.ones(1))
