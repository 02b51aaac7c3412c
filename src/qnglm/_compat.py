"""Input compatibility layer for the public entry points.

The fit and predict entry points operate on NumPy arrays.  This module
converts the containers users actually hand over (NumPy arrays, pandas
DataFrames / Series and, when installed, Polars DataFrames / Series /
LazyFrames) into NumPy at the boundary, and builds the ``(N, D)``
design-matrix view from a flat buffer plus a storage-order flag.

Polars is **not** a required dependency.  If it is not installed, only
NumPy and pandas inputs are recognised.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
import pandas as pd

from ._typing import ArrayLike

# Polars is optional; detect it at import time.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


class StorageOrder(Enum):
    """Memory layout of a flat design-matrix buffer."""

    ROW_MAJOR = "C"
    COL_MAJOR = "F"

    @classmethod
    def from_flag(cls, col_major: bool) -> StorageOrder:
        return cls.COL_MAJOR if col_major else cls.ROW_MAJOR


def _ensure_numpy(obj: ArrayLike, *, name: str = "input") -> np.ndarray:
    """Convert *obj* to a :class:`numpy.ndarray` if necessary.

    Accepted types:
        * ``numpy.ndarray`` — returned as-is (no copy).
        * ``pandas.DataFrame`` / ``pandas.Series`` — ``.to_numpy()``.
        * ``polars.DataFrame`` / ``polars.Series`` — ``.to_numpy()``.
        * ``polars.LazyFrame`` — collected then converted.
        * lists and tuples of numbers.

    Args:
        obj: The input container.
        name: Label used in error messages (e.g. ``"X"`` or ``"y"``).

    Returns:
        A NumPy array.

    Raises:
        TypeError: If *obj* is not a recognised container type.
    """
    if isinstance(obj, np.ndarray):
        return obj
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        return obj.to_numpy()

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_numpy()
        if isinstance(obj, (pl.DataFrame, pl.Series)):
            return obj.to_numpy()

    if isinstance(obj, (list, tuple)):
        return np.asarray(obj)

    raise TypeError(
        f"'{name}' must be a NumPy array or pandas DataFrame/Series"
        + (" or Polars DataFrame/Series/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _as_design_matrix(
    X: ArrayLike,
    N: int | None,
    D: int | None,
    order: StorageOrder,
) -> np.ndarray:
    """Return an ``(N, D)`` view of the design matrix.

    Two-dimensional inputs already carry their layout and are returned
    unchanged (after a shape check against *N* / *D* when given).
    One-dimensional inputs are treated as a flat buffer and reshaped
    with *order*, which requires both *N* and *D*.

    Raises:
        ValueError: On missing dimensions, a shape mismatch, or an
            empty design matrix (no samples or no features).
    """
    X = _ensure_numpy(X, name="X")
    if X.ndim == 1:
        if N is None or D is None:
            raise ValueError(
                "A flat 'X' buffer requires both N and D to be given."
            )
        if X.size != N * D:
            raise ValueError(
                f"Flat 'X' has {X.size} elements; expected N * D = {N * D}."
            )
        X = X.reshape((N, D), order=order.value)
    elif X.ndim != 2:
        raise ValueError(f"'X' must be 1-D or 2-D, got {X.ndim}-D.")
    elif (N is not None and X.shape[0] != N) or (D is not None and X.shape[1] != D):
        raise ValueError(
            f"'X' has shape {X.shape}; expected ({N}, {D})."
        )

    n_samples, n_features = X.shape
    if n_samples < 1 or n_features < 1:
        raise ValueError(
            "'X' must have at least one sample and one feature, "
            f"got N={n_samples}, D={n_features}."
        )
    return X


def _as_vector(obj: ArrayLike, *, name: str) -> np.ndarray:
    """Flatten a column-like input (Series, one-column frame) to 1-D."""
    arr = _ensure_numpy(obj, name=name)
    if arr.ndim == 2 and 1 in arr.shape:
        return arr.ravel()
    if arr.ndim != 1:
        raise ValueError(f"'{name}' must be one-dimensional, got shape {arr.shape}.")
    return arr
