"""JAX-accelerated backend for the matrix and loss-kernel primitives.

Architecture
~~~~~~~~~~~~
The module is structured in two layers:

1. **Kernel functions** (module-level, inside ``if _CAN_IMPORT_JAX``):
   pure-JAX ``jit``-compiled functions for the linear predictor, its
   adjoint, and the three loss kernels.  These are the hot path: the
   minimizer calls them once per objective evaluation.

2. **JaxBackend class** (``BackendProtocol`` implementation):
   thin wrapper that moves NumPy inputs onto the device once per
   fit/predict call and dispatches to the kernels.

Device residency
~~~~~~~~~~~~~~~~
``X``, ``y``, the weights and every intermediate vector stay on the
device for the whole fit.  JAX dispatch is asynchronous, so the host
only blocks in :meth:`JaxBackend.scalar`, :meth:`~JaxBackend.dot`,
:meth:`~JaxBackend.norm` and :meth:`~JaxBackend.abs_sum`, which is
where the minimizer needs a value to branch on.

JAX arrays are immutable.  :meth:`JaxBackend.linear_fwd` therefore
ignores the scratch buffer it is handed and returns a fresh array;
:class:`~qnglm.objective.GLMWithData` rebinds its buffer to whatever
the backend returns, so both backends share the same call pattern.

Float64
~~~~~~~
``jax_enable_x64`` is switched on at import so that float64 fits are
not silently truncated to float32 (JAX's default).  Float32 inputs
stay float32.

Graceful degradation
~~~~~~~~~~~~~~~~~~~~
If JAX is not installed, :class:`JaxBackend` can still be instantiated
but ``is_available`` returns ``False`` and
:func:`~qnglm._backends.resolve_backend` raises ``ImportError`` when
this backend is explicitly requested.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any

import numpy as np

try:
    import jax

    jax.config.update("jax_enable_x64", True)

    import jax.numpy as jnp
    from jax import jit
    from jax.scipy.special import logsumexp

    _CAN_IMPORT_JAX = True
except ImportError:
    _CAN_IMPORT_JAX = False


# ------------------------------------------------------------------ #
# JAX kernels (defined only when JAX is importable)
# ------------------------------------------------------------------ #

if _CAN_IMPORT_JAX:

    @partial(jit, static_argnames=("fit_intercept",))
    def _linear_fwd(X: jnp.ndarray, W: jnp.ndarray, fit_intercept: bool) -> jnp.ndarray:
        D = X.shape[1]
        Z = W[:, :D] @ X.T
        if fit_intercept:
            Z = Z + W[:, D][:, None]
        return Z

    @partial(jit, static_argnames=("fit_intercept",))
    def _linear_bwd(dZ: jnp.ndarray, X: jnp.ndarray, fit_intercept: bool) -> jnp.ndarray:
        G = dZ @ X
        if fit_intercept:
            G = jnp.concatenate([G, dZ.sum(axis=1, keepdims=True)], axis=1)
        return (G / X.shape[0]).ravel()

    @jit
    def _logistic_kernel(z: jnp.ndarray, y: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
        loss = jnp.mean(jnp.logaddexp(0.0, z) - y * z)
        return loss, jax.nn.sigmoid(z) - y

    @jit
    def _squared_kernel(z: jnp.ndarray, y: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
        diff = z - y
        return 0.5 * jnp.mean(diff * diff), diff

    @jit
    def _softmax_kernel(Z: jnp.ndarray, y: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
        labels = y.astype(jnp.int32)
        cols = jnp.arange(Z.shape[1])
        loss = jnp.mean(logsumexp(Z, axis=0) - Z[labels, cols])
        onehot = jax.nn.one_hot(labels, Z.shape[0], dtype=Z.dtype).T
        return loss, jax.nn.softmax(Z, axis=0) - onehot


# ------------------------------------------------------------------ #
# JaxBackend
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class JaxBackend:
    """JAX-accelerated compute backend.

    Implements :class:`~qnglm._backends.BackendProtocol` with
    ``jit``-compiled kernels.  The frozen dataclass has no mutable
    state, so instances are trivially thread-safe.
    """

    @property
    def name(self) -> str:
        return "jax"

    @property
    def is_available(self) -> bool:  # noqa: PLR6301
        return _CAN_IMPORT_JAX

    @property
    def xp(self) -> Any:  # noqa: PLR6301
        return jnp

    # ---- Transfers -------------------------------------------------

    def asarray(self, a: Any, dtype: Any = None) -> jnp.ndarray:  # noqa: PLR6301
        return jnp.asarray(a, dtype=dtype)

    def to_numpy(self, a: Any) -> np.ndarray:  # noqa: PLR6301
        return np.asarray(a)

    @contextmanager
    def workspace(  # noqa: PLR6301
        self, shape: tuple[int, ...], dtype: Any
    ) -> Iterator[jnp.ndarray]:
        buf = jnp.zeros(shape, dtype=dtype)
        try:
            yield buf
        finally:
            del buf

    # ---- Host synchronisation points -------------------------------

    def scalar(self, a: Any) -> float:  # noqa: PLR6301
        return float(a)

    def dot(self, a: Any, b: Any) -> float:  # noqa: PLR6301
        return float(jnp.vdot(a, b))

    def norm(self, a: Any) -> float:  # noqa: PLR6301
        return float(jnp.linalg.norm(a))

    def abs_sum(self, a: Any) -> float:  # noqa: PLR6301
        return float(jnp.sum(jnp.abs(a)))

    # ---- Linear predictor ------------------------------------------

    def linear_fwd(  # noqa: PLR6301
        self,
        z: Any,  # noqa: ARG002
        X: jnp.ndarray,
        W: jnp.ndarray,
        fit_intercept: bool,
    ) -> jnp.ndarray:
        return _linear_fwd(X, W, fit_intercept)

    def linear_bwd(  # noqa: PLR6301
        self, dZ: jnp.ndarray, X: jnp.ndarray, fit_intercept: bool
    ) -> jnp.ndarray:
        return _linear_bwd(dZ, X, fit_intercept)

    # ---- Loss kernels ----------------------------------------------

    def logistic_kernel(self, z: Any, y: Any) -> tuple[Any, Any]:  # noqa: PLR6301
        return _logistic_kernel(z, y)

    def squared_kernel(self, z: Any, y: Any) -> tuple[Any, Any]:  # noqa: PLR6301
        return _squared_kernel(z, y)

    def softmax_kernel(self, Z: Any, y: Any) -> tuple[Any, Any]:  # noqa: PLR6301
        return _softmax_kernel(Z, y)

    # ---- Decision-rule primitives ----------------------------------

    def sigmoid(self, z: Any) -> Any:  # noqa: PLR6301
        return jax.nn.sigmoid(z)

    def softmax(self, Z: Any) -> Any:  # noqa: PLR6301
        return jax.nn.softmax(Z, axis=0)

    def argmax(self, Z: Any) -> Any:  # noqa: PLR6301
        return jnp.argmax(Z, axis=0)
