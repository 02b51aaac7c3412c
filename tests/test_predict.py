"""Tests for the predict path: decision rules, probabilities and buffers."""

from __future__ import annotations

import numpy as np
import pytest
from scipy import special

from qnglm import qn_decision_function, qn_predict, qn_predict_proba


@pytest.fixture
def X():
    return np.array([[1.0, 2.0], [-1.0, 0.5], [0.0, 0.0], [3.0, -2.0]])


class TestDecisionRules:
    def test_logistic_threshold_at_zero(self, X):
        params = np.array([1.0, -1.0, 0.5])
        logits = X @ params[:2] + params[2]
        preds = qn_predict(X, params, loss_type=0, backend="numpy")
        np.testing.assert_array_equal(preds, (logits > 0).astype(np.float64))

    def test_logistic_zero_logit_is_negative_class(self):
        preds = qn_predict(np.zeros((2, 1)), np.zeros(2), backend="numpy")
        np.testing.assert_array_equal(preds, [0.0, 0.0])

    def test_squared_is_identity(self, X):
        params = np.array([0.5, 2.0, -1.0])
        preds = qn_predict(X, params, loss_type="squared", backend="numpy")
        np.testing.assert_allclose(preds, X @ params[:2] + params[2])

    def test_softmax_argmax(self, X):
        params = np.array([1.0, 0.0, 0.0, 0.0, 1.0, 0.0, -1.0, -1.0, 0.5])
        W = params.reshape(3, 3)
        Z = W[:, :2] @ X.T + W[:, 2][:, None]
        preds = qn_predict(X, params, C=3, loss_type="softmax", backend="numpy")
        np.testing.assert_array_equal(preds, np.argmax(Z, axis=0))

    def test_without_intercept(self, X):
        params = np.array([1.0, -1.0])
        preds = qn_predict(X, params, fit_intercept=False, loss_type=1, backend="numpy")
        np.testing.assert_allclose(preds, X @ params)

    def test_output_dtype_follows_params(self, X):
        params = np.array([1.0, -1.0, 0.5], dtype=np.float32)
        preds = qn_predict(X, params, backend="numpy")
        assert preds.dtype == np.float32

    def test_col_major_flat_buffer(self, X):
        params = np.array([0.5, 2.0, -1.0])
        flat = qn_predict(
            X.ravel(order="F"), params, loss_type=1, X_col_major=True, N=4, D=2,
            backend="numpy",
        )
        np.testing.assert_allclose(flat, X @ params[:2] + params[2])


class TestPredsBuffer:
    def test_filled_in_place(self, X):
        params = np.array([0.5, 2.0, -1.0])
        preds = np.full(4, np.nan)
        out = qn_predict(X, params, loss_type=1, preds=preds, backend="numpy")
        assert out is preds
        np.testing.assert_allclose(preds, X @ params[:2] + params[2])

    def test_wrong_shape_rejected(self, X):
        with pytest.raises(ValueError, match="'preds' must be"):
            qn_predict(X, np.zeros(3), preds=np.zeros(5), backend="numpy")

    def test_result_independent_of_scratch(self, X):
        params = np.array([0.5, 2.0, -1.0])
        first = qn_predict(X, params, loss_type=1, backend="numpy")
        second = qn_predict(X, 2.0 * params, loss_type=1, backend="numpy")
        np.testing.assert_allclose(second, 2.0 * first)


class TestDecisionFunction:
    def test_shape_and_values(self, X):
        params = np.arange(6.0)
        Z = qn_decision_function(X, params, C=2, backend="numpy")
        assert Z.shape == (2, 4)
        W = params.reshape(2, 3)
        np.testing.assert_allclose(Z, W[:, :2] @ X.T + W[:, 2][:, None])


class TestPredictProba:
    def test_logistic_two_columns(self, X):
        params = np.array([1.0, -1.0, 0.5])
        proba = qn_predict_proba(X, params, backend="numpy")
        p = special.expit(X @ params[:2] + params[2])
        assert proba.shape == (4, 2)
        np.testing.assert_allclose(proba[:, 1], p)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    def test_softmax_rows_sum_to_one(self, X):
        params = np.linspace(-1.0, 1.0, 9)
        proba = qn_predict_proba(X, params, C=3, loss_type="softmax", backend="numpy")
        assert proba.shape == (4, 3)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        preds = qn_predict(X, params, C=3, loss_type="softmax", backend="numpy")
        np.testing.assert_array_equal(np.argmax(proba, axis=1), preds)

    def test_squared_has_no_probabilities(self, X):
        with pytest.raises(ValueError, match="no probabilistic interpretation"):
            qn_predict_proba(X, np.zeros(3), loss_type="squared", backend="numpy")


class TestPredictPreconditions:
    def test_params_wrong_length(self, X):
        with pytest.raises(ValueError, match=r"'params' must have shape \(3,\)"):
            qn_predict(X, np.zeros(4), backend="numpy")

    def test_params_integer_dtype(self, X):
        with pytest.raises(TypeError, match="float32 or float64"):
            qn_predict(X, np.zeros(3, dtype=int), backend="numpy")

    def test_class_count_mismatch(self, X):
        with pytest.raises(ValueError, match="requires C == 1"):
            qn_predict(X, np.zeros(6), C=2, loss_type=0, backend="numpy")

    def test_read_only_params_accepted(self, X):
        params = np.array([1.0, -1.0, 0.5])
        params.flags.writeable = False
        qn_predict(X, params, backend="numpy")

    @pytest.mark.parametrize("shape", [(0, 2), (4, 0)])
    def test_empty_design_matrix(self, shape):
        with pytest.raises(ValueError, match="at least one sample and one feature"):
            qn_predict(np.zeros(shape), np.zeros(3), backend="numpy")

    def test_empty_design_matrix_decision_function(self):
        with pytest.raises(ValueError, match="got N=0"):
            qn_decision_function(np.zeros((0, 2)), np.zeros(3), backend="numpy")
