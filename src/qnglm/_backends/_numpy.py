"""NumPy / SciPy backend (always available).

This is the host backend that requires no optional dependencies
beyond NumPy and SciPy, both of which are hard requirements of the
package.

Arrays are mutable here, so :meth:`NumpyBackend.linear_fwd` writes the
linear predictor straight into the caller's scratch buffer with
``np.matmul(..., out=z)`` and the per-iteration allocation is limited
to the gradient and the kernel outputs.

The loss kernels lean on :mod:`scipy.special` for the numerically
stable pieces:

* ``expit`` — sigmoid without overflow for large ``|z|``.
* ``logsumexp`` / ``softmax`` — log-sum-exp trick over the class axis.

``np.logaddexp(0, z)`` gives ``log(1 + e^z)`` without overflow.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import special


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy / SciPy compute backend.

    The class is a frozen dataclass with no instance state.  It exists
    solely to namespace the primitives behind the
    :class:`~qnglm._backends.BackendProtocol` interface, which also
    makes it safe to cache as a module-level singleton.
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return True

    @property
    def xp(self) -> Any:  # noqa: PLR6301
        return np

    # ---- Transfers -------------------------------------------------

    def asarray(self, a: Any, dtype: Any = None) -> np.ndarray:  # noqa: PLR6301
        return np.asarray(a, dtype=dtype)

    def to_numpy(self, a: Any) -> np.ndarray:  # noqa: PLR6301
        return np.asarray(a)

    @contextmanager
    def workspace(  # noqa: PLR6301
        self, shape: tuple[int, ...], dtype: Any
    ) -> Iterator[np.ndarray]:
        buf = np.empty(shape, dtype=dtype)
        try:
            yield buf
        finally:
            del buf

    # ---- Host synchronisation points -------------------------------

    def scalar(self, a: Any) -> float:  # noqa: PLR6301
        return float(a)

    def dot(self, a: Any, b: Any) -> float:  # noqa: PLR6301
        return float(np.dot(a, b))

    def norm(self, a: Any) -> float:  # noqa: PLR6301
        return float(np.linalg.norm(a))

    def abs_sum(self, a: Any) -> float:  # noqa: PLR6301
        return float(np.sum(np.abs(a)))

    # ---- Linear predictor ------------------------------------------

    def linear_fwd(  # noqa: PLR6301
        self,
        z: np.ndarray,
        X: np.ndarray,
        W: np.ndarray,
        fit_intercept: bool,
    ) -> np.ndarray:
        D = X.shape[1]
        if z.dtype == np.result_type(W.dtype, X.dtype):
            np.matmul(W[:, :D], X.T, out=z)
        else:
            z[...] = W[:, :D] @ X.T
        if fit_intercept:
            z += W[:, D][:, None]
        return z

    def linear_bwd(  # noqa: PLR6301
        self,
        dZ: np.ndarray,
        X: np.ndarray,
        fit_intercept: bool,
    ) -> np.ndarray:
        N = X.shape[0]
        G = dZ @ X  # (C, D)
        if fit_intercept:
            G = np.column_stack([G, dZ.sum(axis=1)])
        G /= N
        return G.ravel()

    # ---- Loss kernels ----------------------------------------------

    def logistic_kernel(  # noqa: PLR6301
        self, z: np.ndarray, y: np.ndarray
    ) -> tuple[float, np.ndarray]:
        loss = np.mean(np.logaddexp(0.0, z) - y * z)
        dz = special.expit(z) - y
        return loss, dz

    def squared_kernel(  # noqa: PLR6301
        self, z: np.ndarray, y: np.ndarray
    ) -> tuple[float, np.ndarray]:
        diff = z - y
        loss = 0.5 * np.mean(diff * diff)
        return loss, diff

    def softmax_kernel(  # noqa: PLR6301
        self, Z: np.ndarray, y: np.ndarray
    ) -> tuple[float, np.ndarray]:
        labels = y.astype(np.intp)
        cols = np.arange(Z.shape[1])
        lse = special.logsumexp(Z, axis=0)
        loss = np.mean(lse - Z[labels, cols])
        dZ = special.softmax(Z, axis=0)
        dZ[labels, cols] -= 1.0
        return loss, dZ

    # ---- Decision-rule primitives ----------------------------------

    def sigmoid(self, z: np.ndarray) -> np.ndarray:  # noqa: PLR6301
        return special.expit(z)

    def softmax(self, Z: np.ndarray) -> np.ndarray:  # noqa: PLR6301
        return special.softmax(Z, axis=0)

    def argmax(self, Z: np.ndarray) -> np.ndarray:  # noqa: PLR6301
        return np.argmax(Z, axis=0)
