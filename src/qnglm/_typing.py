"""Shared type aliases for the qnglm package."""

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

# Containers the public entry points accept for X, y and the flat
# design-matrix buffer.  Polars is optional at runtime.
if TYPE_CHECKING:
    import polars as pl

    ArrayLike: TypeAlias = (
        np.ndarray
        | pd.DataFrame
        | pd.Series
        | pl.DataFrame
        | pl.Series
        | pl.LazyFrame
        | list
        | tuple
    )
else:
    ArrayLike: TypeAlias = np.ndarray | pd.DataFrame | pd.Series | list | tuple
