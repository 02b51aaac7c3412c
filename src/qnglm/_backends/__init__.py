"""Backend abstraction layer for the matrix and kernel primitives.

Each backend implements the :class:`BackendProtocol` interface, which
defines the contract between the optimizer core and the array library
that actually holds the data.  The losses, the data-bound objective and
the quasi-Newton minimizer program against this interface and never
import NumPy or JAX array routines for the heavy math directly.

A call without an explicit backend uses the default held by
:mod:`._config` (a pinned instance, a pinned name, ``QNGLM_BACKEND``,
then auto-detection).  :func:`resolve_backend` turns a backend name
into a cached backend instance.  When ``"jax"`` is explicitly
requested but JAX is not installed, an :class:`ImportError` is raised.
Explicit requests are never silently degraded; only auto-detection
falls back from JAX to NumPy.

Host / device boundary
~~~~~~~~~~~~~~~~~~~~~~
Vector and matrix results stay as backend arrays (device arrays under
JAX).  The only methods that hand a value back to the Python control
flow are :meth:`BackendProtocol.scalar`, :meth:`~BackendProtocol.dot`,
:meth:`~BackendProtocol.norm` and :meth:`~BackendProtocol.abs_sum`.
The minimizer calls them when it has to branch (convergence test,
line-search acceptance, curvature screening) and nowhere else.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

import numpy as np

from .._config import default_choice

# ------------------------------------------------------------------ #
# BackendProtocol
# ------------------------------------------------------------------ #


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every compute backend must implement.

    Attributes:
        name: Short identifier (e.g. ``"numpy"``, ``"jax"``).
        xp: The array namespace (``numpy`` or ``jax.numpy``) used for
            element-wise work such as ``where`` and ``sign``.
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    @property
    def xp(self) -> Any: ...

    # ---- Transfers -------------------------------------------------

    def asarray(self, a: Any, dtype: Any = None) -> Any:
        """Move *a* onto the backend (host → device for JAX)."""
        ...

    def to_numpy(self, a: Any) -> np.ndarray:
        """Return *a* as a NumPy array (device → host for JAX)."""
        ...

    def workspace(
        self, shape: tuple[int, ...], dtype: Any
    ) -> AbstractContextManager[Any]:
        """Scoped scratch buffer of *shape*, released on exit."""
        ...

    # ---- Host synchronisation points -------------------------------

    def scalar(self, a: Any) -> float: ...

    def dot(self, a: Any, b: Any) -> float: ...

    def norm(self, a: Any) -> float: ...

    def abs_sum(self, a: Any) -> float: ...

    # ---- Linear predictor ------------------------------------------

    def linear_fwd(self, z: Any, X: Any, W: Any, fit_intercept: bool) -> Any:
        """Linear predictor ``Z = W[:, :D] @ X.T (+ bias)``.

        Args:
            z: Scratch buffer ``(C, N)``.  Backends with mutable arrays
                write into it; immutable backends ignore it.
            X: Design matrix ``(N, D)``.
            W: Weight matrix ``(C, dims)``, bias in the last column
                when *fit_intercept* is ``True``.
            fit_intercept: Whether ``W`` carries a bias column.

        Returns:
            ``(C, N)`` linear predictor.
        """
        ...

    def linear_bwd(self, dZ: Any, X: Any, fit_intercept: bool) -> Any:
        """Mean gradient ``dZ @ X / N`` (plus bias column), flattened.

        Returns:
            ``(C * dims,)`` gradient in the weight layout.
        """
        ...

    # ---- Loss kernels ----------------------------------------------

    def logistic_kernel(self, z: Any, y: Any) -> tuple[Any, Any]:
        """Mean logistic loss and ``dl/dz`` for ``z`` of shape ``(1, N)``."""
        ...

    def squared_kernel(self, z: Any, y: Any) -> tuple[Any, Any]:
        """Mean half squared error and ``dl/dz`` for ``z`` ``(1, N)``."""
        ...

    def softmax_kernel(self, Z: Any, y: Any) -> tuple[Any, Any]:
        """Mean softmax cross-entropy and ``dl/dZ`` for ``Z`` ``(C, N)``."""
        ...

    # ---- Decision-rule primitives ----------------------------------

    def sigmoid(self, z: Any) -> Any: ...

    def softmax(self, Z: Any) -> Any:
        """Column-wise softmax over the class axis of ``(C, N)``."""
        ...

    def argmax(self, Z: Any) -> Any:
        """Column-wise argmax over the class axis of ``(C, N)``."""
        ...


# ------------------------------------------------------------------ #
# Backend resolution
# ------------------------------------------------------------------ #

# One instance per backend name.
_BACKEND_CACHE: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | BackendProtocol | None = None) -> BackendProtocol:
    """Return a :class:`BackendProtocol` instance for *name*.

    When *name* is ``None`` (the default), the choice from
    :func:`~qnglm._config.default_choice` is used, which may itself be
    a pinned instance.  Backend instances are passed through unchanged.

    Args:
        name: ``"numpy"``, ``"jax"``, a backend instance, or ``None``
            for the policy default.

    Returns:
        A backend instance.

    Raises:
        ImportError: If ``"jax"`` is explicitly requested but JAX
            is not installed.
        ValueError: If *name* is not a recognised backend.
    """
    if isinstance(name, BackendProtocol):
        return name

    if name is None:
        name = default_choice()
        if isinstance(name, BackendProtocol):
            return name
    name = name.strip().lower()

    if name in _BACKEND_CACHE:
        return _BACKEND_CACHE[name]

    if name == "numpy":
        from ._numpy import NumpyBackend

        backend: BackendProtocol = NumpyBackend()

    elif name == "jax":
        from ._jax import JaxBackend

        jax_backend = JaxBackend()
        if not jax_backend.is_available:
            msg = (
                "Backend 'jax' was explicitly requested but JAX is "
                "not installed.  Install JAX (`pip install jax`) or "
                "use set_backend('numpy')."
            )
            raise ImportError(msg)
        backend = jax_backend

    else:
        msg = f"Unknown backend {name!r}.  Choose 'numpy' or 'jax'."
        raise ValueError(msg)

    _BACKEND_CACHE[name] = backend
    return backend
