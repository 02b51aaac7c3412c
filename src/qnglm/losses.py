"""Loss capability protocol and the built-in GLM losses.

A *loss capability* is anything that can report its parameter count and
evaluate ``(value, gradient)`` for a weight vector against bound data.
The optimizer core programs against the :class:`LossFunction`
protocol only; it never branches on which concrete loss it was given.

Weight layout
~~~~~~~~~~~~~
The flat weight vector ``w`` of length ``n_param = C * dims`` is viewed
(C-order) as a matrix ``W`` of shape ``(C, dims)``: one row per output
class, ``D`` feature weights followed by the bias when
``fit_intercept`` is set (``dims = D + 1``).

Every loss evaluation follows the same three steps, shared through
:func:`_glm_loss_grad`:

1. ``Z = W[:, :D] @ X.T + b`` — linear predictor, written into the
   ``(C, N)`` scratch buffer.
2. ``(mean loss, dL/dZ)`` — the per-loss kernel from the backend.
3. ``grad = dL/dZ @ X / N`` (plus the bias column) — the adjoint.

Only step 2 differs between losses, so each concrete class is a thin
frozen dataclass naming its kernel and its target validation.

Averaging over ``N`` keeps the loss scale independent of the sample
count, so the same ``l1`` / ``l2`` / ``grad_tol`` settings behave alike
on small and large data.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol, runtime_checkable

import numpy as np

from ._backends import BackendProtocol

# ------------------------------------------------------------------ #
# Loss type enumeration
# ------------------------------------------------------------------ #


class LossType(IntEnum):
    """Integer codes accepted by the fit and predict entry points."""

    LOGISTIC = 0
    SQUARED = 1
    SOFTMAX = 2


def coerce_loss_type(loss_type: int | str | LossType) -> LossType:
    """Map an integer code or a name (``"logistic"`` …) to :class:`LossType`.

    Raises:
        ValueError: If *loss_type* names no known loss.
    """
    if isinstance(loss_type, str):
        key = loss_type.strip().upper()
        if key in LossType.__members__:
            return LossType[key]
    else:
        try:
            return LossType(loss_type)
        except (TypeError, ValueError):
            pass
    known = ", ".join(f"{m.value}={m.name.lower()}" for m in LossType)
    msg = f"Unknown loss type {loss_type!r}.  Known loss types: {known}."
    raise ValueError(msg)


# ------------------------------------------------------------------ #
# Dimensions
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class GLMDims:
    """Shape bookkeeping for a GLM with ``C`` outputs and ``D`` features."""

    C: int
    D: int
    fit_intercept: bool

    @property
    def dims(self) -> int:
        """Columns of ``W``: ``D`` plus one for the bias if present."""
        return self.D + int(self.fit_intercept)

    @property
    def n_param(self) -> int:
        return self.C * self.dims


# ------------------------------------------------------------------ #
# LossFunction protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class LossFunction(Protocol):
    """Interface every loss capability must implement.

    Regularized wrappers (:class:`~qnglm.regularization.RegularizedGLM`)
    implement the same protocol, so anything that accepts a
    ``LossFunction`` accepts a regularized one unchanged.
    """

    @property
    def n_param(self) -> int: ...

    def loss_grad(
        self,
        w: Any,
        X: Any,
        y: Any,
        z: Any,
    ) -> tuple[float, Any, Any]:
        """Evaluate the loss at *w*.

        Args:
            w: Flat weight vector ``(n_param,)`` on the backend.
            X: Design matrix ``(N, D)`` on the backend.
            y: Targets ``(N,)`` on the backend.
            z: ``(C, N)`` scratch buffer for the linear predictor.

        Returns:
            ``(value, gradient, z)`` — the scalar loss, the gradient
            ``(n_param,)`` and the (possibly rebound) scratch buffer
            now holding the linear predictor at *w*.
        """
        ...


def _glm_loss_grad(
    backend: BackendProtocol,
    kernel: Any,
    glm_dims: GLMDims,
    w: Any,
    X: Any,
    y: Any,
    z: Any,
) -> tuple[float, Any, Any]:
    """Shared forward / kernel / adjoint pass for all built-in losses."""
    W = w.reshape(glm_dims.C, glm_dims.dims)
    z = backend.linear_fwd(z, X, W, glm_dims.fit_intercept)
    loss, dZ = kernel(z, y)
    grad = backend.linear_bwd(dZ, X, glm_dims.fit_intercept)
    return backend.scalar(loss), grad, z


def _check_finite(y: np.ndarray, loss_name: str) -> None:
    if not np.issubdtype(y.dtype, np.number):
        raise ValueError(
            f"{loss_name} loss requires numeric targets, got dtype {y.dtype}."
        )
    if not np.all(np.isfinite(y)):
        raise ValueError(f"{loss_name} loss requires finite targets (no NaN / inf).")


# ------------------------------------------------------------------ #
# Concrete losses
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LogisticLoss:
    """Binary cross-entropy on a single logit: ``log(1 + e^z) - y z``."""

    backend: BackendProtocol
    D: int
    fit_intercept: bool = True

    @property
    def name(self) -> str:
        return "logistic"

    @property
    def loss_type(self) -> LossType:
        return LossType.LOGISTIC

    @property
    def glm_dims(self) -> GLMDims:
        return GLMDims(1, self.D, self.fit_intercept)

    @property
    def n_param(self) -> int:
        return self.glm_dims.n_param

    def validate_y(self, y: np.ndarray) -> None:
        """Require targets in ``{0, 1}``."""
        _check_finite(y, self.name)
        if not np.all(np.isin(y, (0, 1))):
            bad = np.setdiff1d(np.unique(y), (0, 1))[:5]
            raise ValueError(
                f"logistic loss requires binary targets in {{0, 1}}; "
                f"found {bad.tolist()}."
            )

    def loss_grad(self, w: Any, X: Any, y: Any, z: Any) -> tuple[float, Any, Any]:
        return _glm_loss_grad(
            self.backend, self.backend.logistic_kernel, self.glm_dims, w, X, y, z
        )


@dataclass(frozen=True)
class SquaredLoss:
    """Half squared error on a single output: ``0.5 (z - y)^2``."""

    backend: BackendProtocol
    D: int
    fit_intercept: bool = True

    @property
    def name(self) -> str:
        return "squared"

    @property
    def loss_type(self) -> LossType:
        return LossType.SQUARED

    @property
    def glm_dims(self) -> GLMDims:
        return GLMDims(1, self.D, self.fit_intercept)

    @property
    def n_param(self) -> int:
        return self.glm_dims.n_param

    def validate_y(self, y: np.ndarray) -> None:
        _check_finite(y, self.name)

    def loss_grad(self, w: Any, X: Any, y: Any, z: Any) -> tuple[float, Any, Any]:
        return _glm_loss_grad(
            self.backend, self.backend.squared_kernel, self.glm_dims, w, X, y, z
        )


@dataclass(frozen=True)
class SoftmaxLoss:
    """Multinomial cross-entropy over ``C`` full logits (no reference class).

    Targets are integer class labels in ``[0, C)``, stored in the same
    floating dtype as ``X``.
    """

    backend: BackendProtocol
    D: int
    C: int
    fit_intercept: bool = True

    @property
    def name(self) -> str:
        return "softmax"

    @property
    def loss_type(self) -> LossType:
        return LossType.SOFTMAX

    @property
    def glm_dims(self) -> GLMDims:
        return GLMDims(self.C, self.D, self.fit_intercept)

    @property
    def n_param(self) -> int:
        return self.glm_dims.n_param

    def validate_y(self, y: np.ndarray) -> None:
        """Require integer labels in ``[0, C)``."""
        _check_finite(y, self.name)
        if not np.all(np.equal(np.mod(y, 1), 0)):
            raise ValueError("softmax loss requires integer class labels.")
        if y.size and (y.min() < 0 or y.max() >= self.C):
            raise ValueError(
                f"softmax loss requires labels in [0, {self.C}); "
                f"found range [{y.min():g}, {y.max():g}]."
            )

    def loss_grad(self, w: Any, X: Any, y: Any, z: Any) -> tuple[float, Any, Any]:
        return _glm_loss_grad(
            self.backend, self.backend.softmax_kernel, self.glm_dims, w, X, y, z
        )


# ------------------------------------------------------------------ #
# Resolution
# ------------------------------------------------------------------ #


def check_class_count(loss_type: LossType, C: int) -> None:
    """Raise ``ValueError`` when *C* is incompatible with *loss_type*.

    Logistic and squared-error losses have exactly one output; softmax
    needs at least two classes.
    """
    if loss_type is LossType.SOFTMAX:
        if C <= 1:
            raise ValueError(f"softmax loss requires C > 1, got C={C}.")
    elif C != 1:
        raise ValueError(
            f"{loss_type.name.lower()} loss requires C == 1, got C={C}."
        )


def resolve_loss(
    loss_type: int | str | LossType,
    *,
    C: int,
    D: int,
    fit_intercept: bool,
    backend: BackendProtocol,
) -> LogisticLoss | SquaredLoss | SoftmaxLoss:
    """Construct the loss capability for *loss_type*.

    Args:
        loss_type: Integer code, :class:`LossType`, or name.
        C: Number of outputs.
        D: Number of features.
        fit_intercept: Whether each output carries a bias term.
        backend: Compute backend the loss evaluates on.

    Returns:
        A loss instance satisfying :class:`LossFunction`.

    Raises:
        ValueError: For an unknown loss type or an incompatible *C*.
    """
    lt = coerce_loss_type(loss_type)
    check_class_count(lt, C)
    if D < 1:
        raise ValueError(f"D must be at least 1, got D={D}.")
    if lt is LossType.LOGISTIC:
        return LogisticLoss(backend, D, fit_intercept)
    if lt is LossType.SQUARED:
        return SquaredLoss(backend, D, fit_intercept)
    return SoftmaxLoss(backend, D, C, fit_intercept)
