"""Typed result object for quasi-Newton fits.

:class:`QNResult` is a frozen dataclass that provides:

* **Attribute access** — ``result.objective``, ``result.num_iters``.
* **Dict-like access** — ``result["objective"]``, ``result.get("key")``,
  ``"key" in result``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

It is a snapshot of a completed fit and is not mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, ClassVar

import numpy as np

from .solvers import OptimStatus

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Subclasses may override ``_SERIALIZERS`` to register conversion
    functions for non-primitive fields (e.g. ``OptimStatus`` → ``str``).
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {}

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# QNResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class QNResult(_DictAccessMixin):
    """Result of :func:`~qnglm.qn_fit`.

    The caller's ``w0`` buffer holds the same weights as ``coef``; the
    result keeps its own copy so later writes to ``w0`` do not change it.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "status": lambda s: s.value,
    }

    coef: np.ndarray
    """Fitted weights ``(n_param,)``, bias last within each class row."""

    objective: float
    """Final objective value (loss + penalties, L1 included)."""

    num_iters: int
    """Number of accepted outer iterations."""

    status: OptimStatus
    """Terminal state of the minimizer."""

    grad_norm: float
    """Norm of the (pseudo-)gradient at ``coef``."""

    n_evals: int
    """Number of objective evaluations, line-search trials included."""

    @property
    def converged(self) -> bool:
        """``True`` when the gradient tolerance was met."""
        return self.status is OptimStatus.CONVERGED_GRADIENT
