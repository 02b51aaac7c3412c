"""Data-bound objective: a loss capability bound to ``(X, y, z)``.

:class:`GLMWithData` turns a (possibly regularized) loss into the one
thing the minimizer needs, a callable ``f(w) -> (value, gradient)``.
The minimizer never sees ``X``, ``y`` or the scratch buffer.

Scratch buffer lifecycle::

    with bind_objective(loss, X, y, C, N, order, backend, dtype) as objective:
        qn_minimize(..., objective, ...)
    # scratch released here, on success or on any exception

The buffer is sized exactly ``C * N`` and acquired once per fit or
predict call through :meth:`BackendProtocol.workspace`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from ._backends import BackendProtocol
from ._compat import StorageOrder
from .losses import LossFunction

logger = logging.getLogger(__name__)


@dataclass
class GLMWithData:
    """A loss capability bound to data and a scratch buffer.

    Attributes:
        loss: The loss capability (plain or regularized).
        X: Design matrix ``(N, D)`` on the backend.
        y: Targets ``(N,)`` on the backend.
        z: ``(C, N)`` scratch buffer; after each call it holds the
            linear predictor at the last evaluated ``w``.
        N: Number of samples.  ``X``, ``y`` and ``z`` are checked
            against it when the objective is built.
        order: Storage order the caller supplied the design matrix in.
            Informational only: ``X`` is always an ``(N, D)`` view by
            the time it gets here.  It appears in the repr and the
            bind log.
        n_evals: Number of objective evaluations so far.
    """

    loss: LossFunction
    X: Any
    y: Any
    z: Any
    N: int
    order: StorageOrder = StorageOrder.ROW_MAJOR
    n_evals: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.N < 1:
            raise ValueError(f"N must be at least 1, got N={self.N}.")
        shapes = {
            "X": (tuple(self.X.shape)[:1], (self.N,)),
            "y": (tuple(self.y.shape), (self.N,)),
            "z": (tuple(self.z.shape)[-1:], (self.N,)),
        }
        for name, (got, want) in shapes.items():
            if got != want:
                raise ValueError(
                    f"'{name}' does not match N={self.N}: got shape "
                    f"{tuple(getattr(self, name).shape)}."
                )

    @property
    def n_param(self) -> int:
        return self.loss.n_param

    def __call__(self, w: Any) -> tuple[float, Any]:
        value, grad, self.z = self.loss.loss_grad(w, self.X, self.y, self.z)
        self.n_evals += 1
        return value, grad


@contextmanager
def bind_objective(
    loss: LossFunction,
    X: Any,
    y: Any,
    C: int,
    N: int,
    order: StorageOrder,
    backend: BackendProtocol,
    dtype: Any,
) -> Iterator[GLMWithData]:
    """Bind *loss* to data with a freshly acquired ``(C, N)`` scratch buffer.

    The buffer is released when the ``with`` block exits, whether the
    minimizer converged, stopped early, or raised.
    """
    with backend.workspace((C, N), dtype) as z:
        objective = GLMWithData(loss, X, y, z, N, order)
        logger.debug(
            "Bound objective: N=%d, C=%d, n_param=%d, order=%s, backend=%s",
            objective.N,
            C,
            objective.n_param,
            objective.order.name,
            backend.name,
        )
        try:
            yield objective
        finally:
            objective.z = None
