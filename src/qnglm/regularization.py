"""Smooth penalties and the wrapper that composes them with a loss.

L2 (Tikhonov) regularization is modelled as *decoration*: a
:class:`RegularizedGLM` holds a loss capability and a penalty and
satisfies the same :class:`~qnglm.losses.LossFunction` protocol, so
new losses never re-implement the penalty math and the optimizer
cannot tell the two apart.

L1 is deliberately absent here.  It is not differentiable at zero and
is handled by the orthant-wise step inside
:func:`~qnglm.solvers.qn_minimize`.

The penalty covers every entry of ``w``, bias terms included:

    value(w)    = loss(w) + l2 * ||w||²
    gradient(w) = ∇loss(w) + 2 * l2 * w
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._backends import BackendProtocol
from .losses import LossFunction


@dataclass(frozen=True)
class Tikhonov:
    """L2 penalty ``l2 * ||w||²``."""

    l2: float

    def __post_init__(self) -> None:
        if self.l2 < 0:
            raise ValueError(f"l2 must be non-negative, got {self.l2}.")

    def reg_grad(self, backend: BackendProtocol, w: Any) -> tuple[float, Any]:
        """Return the penalty value and its gradient at *w*."""
        return self.l2 * backend.dot(w, w), (2.0 * self.l2) * w


@dataclass(frozen=True)
class RegularizedGLM:
    """A loss capability with a smooth penalty added to value and gradient.

    ``n_param`` passes through from the wrapped loss.
    """

    loss: LossFunction
    reg: Tikhonov
    backend: BackendProtocol

    @property
    def n_param(self) -> int:
        return self.loss.n_param

    def loss_grad(self, w: Any, X: Any, y: Any, z: Any) -> tuple[float, Any, Any]:
        value, grad, z = self.loss.loss_grad(w, X, y, z)
        reg_value, reg_grad = self.reg.reg_grad(self.backend, w)
        return value + reg_value, grad + reg_grad, z


def maybe_regularize(
    loss: LossFunction,
    l2: float,
    backend: BackendProtocol,
) -> LossFunction:
    """Wrap *loss* in a :class:`RegularizedGLM` only when ``l2 > 0``.

    With ``l2 == 0`` the loss is returned untouched, which saves a
    vector add and a dot product per objective evaluation.
    """
    if l2 < 0:
        raise ValueError(f"l2 must be non-negative, got {l2}.")
    if l2 == 0:
        return loss
    return RegularizedGLM(loss, Tikhonov(l2), backend)
