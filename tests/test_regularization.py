"""Tests for the L2 penalty wrapper and the data-bound objective."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from qnglm._backends import resolve_backend
from qnglm._compat import StorageOrder
from qnglm.losses import LogisticLoss, LossFunction, SoftmaxLoss, SquaredLoss
from qnglm.objective import GLMWithData, bind_objective
from qnglm.regularization import RegularizedGLM, Tikhonov, maybe_regularize


@pytest.fixture
def backend():
    return resolve_backend("numpy")


@pytest.fixture
def data():
    rng = np.random.default_rng(7)
    X = rng.standard_normal((30, 2))
    y = (rng.random(30) < 0.5).astype(np.float64)
    return X, y


class TestTikhonov:
    def test_value_and_gradient(self, backend):
        w = np.array([1.0, -2.0, 3.0])
        value, grad = Tikhonov(0.5).reg_grad(backend, w)
        assert value == pytest.approx(0.5 * 14.0)
        np.testing.assert_allclose(grad, [1.0, -2.0, 3.0])

    def test_negative_rejected(self):
        with pytest.raises(ValueError, match="l2 must be non-negative"):
            Tikhonov(-1.0)


class TestRegularizedGLM:
    def test_adds_penalty(self, backend, data):
        X, y = data
        loss = LogisticLoss(backend, D=2)
        reg = RegularizedGLM(loss, Tikhonov(0.3), backend)
        w = np.array([0.4, -0.7, 0.2])
        base_value, base_grad, _ = loss.loss_grad(w, X, y, np.empty((1, 30)))
        value, grad, _ = reg.loss_grad(w, X, y, np.empty((1, 30)))
        assert value == pytest.approx(base_value + 0.3 * np.dot(w, w))
        np.testing.assert_allclose(grad, base_grad + 0.6 * w)

    def test_penalty_covers_intercept(self, backend, data):
        X, y = data
        loss = SquaredLoss(backend, D=2)
        reg = RegularizedGLM(loss, Tikhonov(1.0), backend)
        w = np.array([0.0, 0.0, 1.0])
        base_value, _, _ = loss.loss_grad(w, X, y, np.empty((1, 30)))
        value, _, _ = reg.loss_grad(w, X, y, np.empty((1, 30)))
        assert value - base_value == pytest.approx(1.0)

    def test_gradient_matches_finite_differences(self, backend, data):
        X, y = data
        reg = RegularizedGLM(LogisticLoss(backend, D=2), Tikhonov(0.25), backend)
        w = np.array([0.3, 0.1, -0.5])
        _, grad, _ = reg.loss_grad(w, X, y, np.empty((1, 30)))
        h = 1e-6
        num = np.empty(3)
        for i in range(3):
            e = np.zeros(3)
            e[i] = h
            fp, _, _ = reg.loss_grad(w + e, X, y, np.empty((1, 30)))
            fm, _, _ = reg.loss_grad(w - e, X, y, np.empty((1, 30)))
            num[i] = (fp - fm) / (2 * h)
        np.testing.assert_allclose(grad, num, rtol=1e-5, atol=1e-8)

    def test_satisfies_protocol(self, backend):
        reg = RegularizedGLM(LogisticLoss(backend, D=2), Tikhonov(0.1), backend)
        assert isinstance(reg, LossFunction)
        assert reg.n_param == 3


class TestMaybeRegularize:
    def test_zero_passthrough(self, backend):
        loss = LogisticLoss(backend, D=2)
        assert maybe_regularize(loss, 0.0, backend) is loss

    def test_positive_wraps(self, backend):
        loss = LogisticLoss(backend, D=2)
        wrapped = maybe_regularize(loss, 0.1, backend)
        assert isinstance(wrapped, RegularizedGLM)
        assert wrapped.loss is loss
        assert wrapped.reg.l2 == 0.1

    def test_negative_rejected(self, backend):
        with pytest.raises(ValueError, match="l2 must be non-negative"):
            maybe_regularize(LogisticLoss(backend, D=2), -0.1, backend)


class TestBindObjective:
    """The data-bound objective and its scoped scratch buffer."""

    def test_counts_evaluations(self, backend, data):
        X, y = data
        loss = LogisticLoss(backend, D=2)
        with bind_objective(
            loss, X, y, 1, 30, StorageOrder.ROW_MAJOR, backend, np.float64
        ) as objective:
            assert isinstance(objective, GLMWithData)
            assert objective.n_param == 3
            objective(np.zeros(3))
            objective(np.ones(3))
            assert objective.n_evals == 2

    def test_scratch_sized_C_by_N(self, backend):
        rng = np.random.default_rng(0)
        X = rng.standard_normal((12, 2))
        y = rng.integers(0, 4, size=12).astype(np.float64)

        loss = SoftmaxLoss(backend, D=2, C=4)
        with bind_objective(
            loss, X, y, 4, 12, StorageOrder.ROW_MAJOR, backend, np.float64
        ) as objective:
            assert objective.z.shape == (4, 12)
            value, grad = objective(np.zeros(loss.n_param))
            assert value == pytest.approx(np.log(4.0))
            assert grad.shape == (12,)

    def test_scratch_released_on_exit(self, backend, data):
        X, y = data
        with bind_objective(
            LogisticLoss(backend, D=2),
            X,
            y,
            1,
            30,
            StorageOrder.ROW_MAJOR,
            backend,
            np.float64,
        ) as objective:
            pass
        assert objective.z is None

    def test_scratch_released_on_error(self, backend, data):
        X, y = data
        with pytest.raises(RuntimeError, match="boom"):
            with bind_objective(
                LogisticLoss(backend, D=2),
                X,
                y,
                1,
                30,
                StorageOrder.ROW_MAJOR,
                backend,
                np.float64,
            ) as objective:
                raise RuntimeError("boom")
        assert objective.z is None

    def test_sample_count_mismatch_rejected(self, backend, data):
        X, y = data
        with pytest.raises(ValueError, match=r"'y' does not match N=30: got shape \(29,\)"):
            with bind_objective(
                LogisticLoss(backend, D=2),
                X,
                y[:-1],
                1,
                30,
                StorageOrder.ROW_MAJOR,
                backend,
                np.float64,
            ):
                pass  # pragma: no cover

    def test_scratch_must_match_N(self, backend, data):
        X, y = data
        loss = LogisticLoss(backend, D=2)
        with pytest.raises(ValueError, match="'z' does not match N=30"):
            GLMWithData(loss, X, y, np.empty((1, 12)), 30)

    def test_zero_samples_rejected(self, backend):
        loss = LogisticLoss(backend, D=1)
        with pytest.raises(ValueError, match="N must be at least 1"):
            GLMWithData(loss, np.zeros((0, 1)), np.zeros(0), np.empty((1, 0)), 0)

    def test_order_recorded_and_logged(self, backend, data, caplog):
        X, y = data
        with caplog.at_level(logging.DEBUG, logger="qnglm.objective"):
            with bind_objective(
                LogisticLoss(backend, D=2),
                X,
                y,
                1,
                30,
                StorageOrder.COL_MAJOR,
                backend,
                np.float64,
            ) as objective:
                assert objective.order is StorageOrder.COL_MAJOR
        assert "order=COL_MAJOR" in caplog.text
