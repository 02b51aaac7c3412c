"""Fit and predict entry points for quasi-Newton GLM training.

Fit pipeline::

    qn_fit(X, y, w0, loss_type=…)
    ├─ backend   = resolve_backend(backend)
    ├─ loss      = resolve_loss(loss_type, C, D, fit_intercept)
    ├─ loss.validate_y(y)
    ├─ objective = maybe_regularize(loss, l2)          # wrap only if l2 > 0
    ├─ with bind_objective(objective, X, y, …) as f:  # scoped (C, N) scratch
    │     qn_minimize(backend, w0, f, l1, LBFGSParam(…))
    └─ w0[...] = fitted weights; return QNResult

Predict pipeline::

    qn_predict(X, params, loss_type=…)
    ├─ Z = W[:, :D] @ X.T (+ bias)                    # scoped (C, N) scratch
    └─ logistic → 1[Z > 0],  squared → Z,  softmax → argmax over classes

NumPy in, NumPy out
~~~~~~~~~~~~~~~~~~~
Public functions accept NumPy arrays (and pandas / Polars containers,
see :mod:`._compat`) and return NumPy arrays.  Inputs are moved onto the
backend once per call and results are brought back once.  ``w0`` and
``preds`` are caller-owned buffers and are written in place.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import numpy as np

from ._backends import BackendProtocol, resolve_backend
from ._compat import StorageOrder, _as_design_matrix, _as_vector
from ._results import QNResult
from ._typing import ArrayLike
from .losses import (
    GLMDims,
    LossFunction,
    LossType,
    check_class_count,
    coerce_loss_type,
    resolve_loss,
)
from .objective import bind_objective
from .regularization import maybe_regularize
from .solvers import LBFGSParam, MinimizeResult, qn_minimize

_FLOAT_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def _check_float_buffer(
    buf: Any,
    *,
    name: str,
    size: int,
    writable: bool,
) -> np.ndarray:
    """Validate a caller-owned 1-D float32/float64 NumPy buffer."""
    if not isinstance(buf, np.ndarray):
        raise TypeError(f"'{name}' must be a NumPy array, got {type(buf).__name__}.")
    if buf.dtype not in _FLOAT_DTYPES:
        raise TypeError(f"'{name}' must be float32 or float64, got {buf.dtype}.")
    if buf.ndim != 1 or buf.shape[0] != size:
        raise ValueError(f"'{name}' must have shape ({size},), got {buf.shape}.")
    if writable and not buf.flags.writeable:
        raise ValueError(f"'{name}' must be writable; it receives the result in place.")
    return buf


# ------------------------------------------------------------------ #
# Fit
# ------------------------------------------------------------------ #


def _qn_fit(
    backend: BackendProtocol,
    loss: LossFunction,
    X: Any,
    y: Any,
    w: Any,
    *,
    C: int,
    N: int,
    order: StorageOrder,
    l1: float,
    l2: float,
    param: LBFGSParam,
    dtype: np.dtype,
    verbosity: int,
    callback: Callable[[int, Any, float], None] | None,
) -> MinimizeResult:
    """Compose the objective for *loss* and run the minimizer on it."""
    objective_loss = maybe_regularize(loss, l2, backend)
    with bind_objective(objective_loss, X, y, C, N, order, backend, dtype) as objective:
        return qn_minimize(backend, w, objective, l1, param, verbosity, callback)


def qn_fit(
    X: ArrayLike,
    y: ArrayLike,
    w0: np.ndarray,
    *,
    C: int = 1,
    fit_intercept: bool = True,
    l1: float = 0.0,
    l2: float = 0.0,
    max_iter: int = 1000,
    grad_tol: float = 1e-4,
    linesearch_max_iter: int = 50,
    lbfgs_memory: int = 5,
    verbosity: int = 0,
    X_col_major: bool = False,
    loss_type: int | str | LossType = LossType.LOGISTIC,
    N: int | None = None,
    D: int | None = None,
    linesearch: str = "armijo",
    backend: str | BackendProtocol | None = None,
    callback: Callable[[int, Any, float], None] | None = None,
) -> QNResult:
    """Fit GLM weights by quasi-Newton minimization of the regularized loss.

    Minimizes ``mean loss(X, y; w) + l2 * ||w||² + l1 * ||w||₁`` starting
    from ``w0``.  ``l1 > 0`` switches the minimizer to its orthant-wise
    variant; ``l2 > 0`` wraps the loss in a Tikhonov penalty.

    Args:
        X: Design matrix ``(N, D)``, or a flat buffer of ``N * D``
            values laid out per *X_col_major* (then *N* and *D* are
            required).
        y: Targets ``(N,)``: ``{0, 1}`` for logistic, real values for
            squared error, integer labels in ``[0, C)`` for softmax.
        w0: Initial weights, float32 or float64, shape ``(n_param,)``
            with ``n_param = C * (D + fit_intercept)``.  Overwritten in
            place with the fitted weights.  Its dtype sets the
            precision of the whole fit.
        C: Number of outputs (1 for logistic / squared error).
        fit_intercept: Whether each output carries a bias term, stored
            after its ``D`` feature weights.
        l1: L1 coefficient (``>= 0``).
        l2: L2 coefficient (``>= 0``).
        max_iter: Maximum outer iterations.
        grad_tol: Convergence tolerance on the gradient norm.
        linesearch_max_iter: Maximum trial steps per line search.
        lbfgs_memory: Number of curvature pairs retained.
        verbosity: 0 silent, 1 logs the final state, 2 logs every
            iteration (logger ``qnglm.solvers``).
        X_col_major: Storage order of a flat *X* buffer.
        loss_type: ``0``/``"logistic"``, ``1``/``"squared"`` or
            ``2``/``"softmax"``.
        N: Number of samples; inferred from a 2-D *X*.
        D: Number of features; inferred from a 2-D *X*.
        linesearch: ``"armijo"``, ``"wolfe"`` or ``"strong_wolfe"``
            (smooth problems only).
        backend: ``"numpy"``, ``"jax"``, a backend instance, or
            ``None`` for the configured default.
        callback: Called as ``callback(k, w, f)`` after every accepted
            step; *w* is a backend array.

    Returns:
        A :class:`~qnglm.QNResult`.  Hitting ``max_iter`` or a failed
        line search is not an error; check ``result.status``.

    Raises:
        ValueError: On an unknown loss type, a class count that does
            not match the loss, mismatched shapes, an empty *X*, invalid
            targets, negative penalties or invalid optimizer settings.
        TypeError: If *w0* is not a float32/float64 NumPy array.
    """
    be = resolve_backend(backend)
    order = StorageOrder.from_flag(X_col_major)
    X_np = _as_design_matrix(X, N, D, order)
    n_samples, n_features = X_np.shape
    y_np = _as_vector(y, name="y")
    if y_np.shape[0] != n_samples:
        raise ValueError(
            f"'y' has {y_np.shape[0]} entries but 'X' has {n_samples} rows."
        )

    loss = resolve_loss(
        loss_type, C=C, D=n_features, fit_intercept=fit_intercept, backend=be
    )
    w0 = _check_float_buffer(w0, name="w0", size=loss.n_param, writable=True)
    loss.validate_y(y_np)
    if l1 < 0:
        raise ValueError(f"l1 must be non-negative, got {l1}.")
    param = LBFGSParam(
        epsilon=grad_tol,
        max_iterations=max_iter,
        m=lbfgs_memory,
        max_linesearch=linesearch_max_iter,
        linesearch=linesearch,
    )

    dtype = w0.dtype
    res = _qn_fit(
        be,
        loss,
        be.asarray(X_np, dtype),
        be.asarray(y_np, dtype),
        be.asarray(w0, dtype),
        C=C,
        N=n_samples,
        order=order,
        l1=l1,
        l2=l2,
        param=param,
        dtype=dtype,
        verbosity=verbosity,
        callback=callback,
    )

    coef = np.array(be.to_numpy(res.w), dtype=dtype, copy=True)
    w0[...] = coef
    return QNResult(
        coef=coef,
        objective=res.fx,
        num_iters=res.num_iters,
        status=res.status,
        grad_norm=res.grad_norm,
        n_evals=res.n_evals,
    )


# ------------------------------------------------------------------ #
# Predict
# ------------------------------------------------------------------ #


def _forward(
    X: ArrayLike,
    params: np.ndarray,
    C: int,
    fit_intercept: bool,
    X_col_major: bool,
    N: int | None,
    D: int | None,
    backend: str | BackendProtocol | None,
    decide: Callable[[BackendProtocol, Any], Any],
) -> np.ndarray:
    """Compute ``Z = W X^T`` in a scoped buffer and apply *decide* to it.

    *decide* maps ``(backend, Z)`` to a backend array; the result is
    copied to the host before the scratch buffer is released.
    """
    be = resolve_backend(backend)
    X_np = _as_design_matrix(X, N, D, StorageOrder.from_flag(X_col_major))
    n_samples, n_features = X_np.shape
    glm_dims = GLMDims(C, n_features, fit_intercept)
    params = _check_float_buffer(
        params, name="params", size=glm_dims.n_param, writable=False
    )
    dtype = params.dtype
    W = be.asarray(params, dtype).reshape(C, glm_dims.dims)
    X_dev = be.asarray(X_np, dtype)
    with be.workspace((C, n_samples), dtype) as z:
        Z = be.linear_fwd(z, X_dev, W, fit_intercept)
        return np.array(be.to_numpy(decide(be, Z)), dtype=dtype, copy=True)


def qn_decision_function(
    X: ArrayLike,
    params: np.ndarray,
    *,
    C: int = 1,
    fit_intercept: bool = True,
    X_col_major: bool = False,
    N: int | None = None,
    D: int | None = None,
    backend: str | BackendProtocol | None = None,
) -> np.ndarray:
    """Return the raw linear predictor ``(C, N)`` for fitted *params*."""
    return _forward(
        X, params, C, fit_intercept, X_col_major, N, D, backend,
        lambda be, Z: Z,
    )


def _threshold(be: BackendProtocol, Z: Any) -> Any:
    xp = be.xp
    return xp.where(Z[0] > 0, 1, 0)


def _identity(be: BackendProtocol, Z: Any) -> Any:  # noqa: ARG001
    return Z[0]


def _class_argmax(be: BackendProtocol, Z: Any) -> Any:
    return be.argmax(Z)


_DECISION_RULES: dict[LossType, Callable[[BackendProtocol, Any], Any]] = {
    LossType.LOGISTIC: _threshold,
    LossType.SQUARED: _identity,
    LossType.SOFTMAX: _class_argmax,
}


def qn_predict(
    X: ArrayLike,
    params: np.ndarray,
    *,
    C: int = 1,
    fit_intercept: bool = True,
    X_col_major: bool = False,
    loss_type: int | str | LossType = LossType.LOGISTIC,
    N: int | None = None,
    D: int | None = None,
    preds: np.ndarray | None = None,
    backend: str | BackendProtocol | None = None,
) -> np.ndarray:
    """Predict from fitted weights with the loss-specific decision rule.

    * logistic → ``1`` where the logit is positive, else ``0``;
    * squared error → the linear predictor itself;
    * softmax → index of the largest logit per sample.

    Args:
        X: Design matrix ``(N, D)`` or a flat buffer (see :func:`qn_fit`).
        params: Fitted weights ``(n_param,)``, float32 or float64.
        C: Number of outputs.
        fit_intercept: Whether *params* carries a bias per output.
        X_col_major: Storage order of a flat *X* buffer.
        loss_type: The loss the weights were fitted with.
        N: Number of samples; inferred from a 2-D *X*.
        D: Number of features; inferred from a 2-D *X*.
        preds: Optional output buffer ``(N,)``, filled in place.
        backend: Backend name or instance; ``None`` for the default.

    Returns:
        Predictions ``(N,)`` in the dtype of *params* (*preds* itself
        when given).

    Raises:
        ValueError: On an unknown loss type, a class count that does
            not match the loss, or mismatched shapes.
    """
    lt = coerce_loss_type(loss_type)
    check_class_count(lt, C)
    out = _forward(
        X, params, C, fit_intercept, X_col_major, N, D, backend, _DECISION_RULES[lt]
    )
    if preds is None:
        return out
    if not isinstance(preds, np.ndarray) or preds.shape != out.shape:
        raise ValueError(f"'preds' must be a NumPy array of shape {out.shape}.")
    preds[...] = out
    return preds


def qn_predict_proba(
    X: ArrayLike,
    params: np.ndarray,
    *,
    C: int = 1,
    fit_intercept: bool = True,
    X_col_major: bool = False,
    loss_type: int | str | LossType = LossType.LOGISTIC,
    N: int | None = None,
    D: int | None = None,
    backend: str | BackendProtocol | None = None,
) -> np.ndarray:
    """Class probabilities from fitted weights.

    Returns:
        ``(N, 2)`` with columns ``P(y=0)``, ``P(y=1)`` for logistic
        weights; ``(N, C)`` for softmax weights.

    Raises:
        ValueError: For squared-error weights, which define no
            probabilities, or on a loss / class-count mismatch.
    """
    lt = coerce_loss_type(loss_type)
    check_class_count(lt, C)
    if lt is LossType.SQUARED:
        raise ValueError("squared loss has no probabilistic interpretation.")
    if lt is LossType.LOGISTIC:
        p = _forward(
            X, params, C, fit_intercept, X_col_major, N, D, backend,
            lambda be, Z: be.sigmoid(Z[0]),
        )
        return np.column_stack([1.0 - p, p])
    probs = _forward(
        X, params, C, fit_intercept, X_col_major, N, D, backend,
        lambda be, Z: be.softmax(Z),
    )
    return probs.T
