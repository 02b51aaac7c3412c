"""Tests for Polars DataFrame input compatibility."""

import numpy as np
import pytest

from qnglm import qn_fit, qn_predict
from qnglm._compat import _as_vector, _ensure_numpy

# Import polars; skip all tests in this module if not installed.
pl = pytest.importorskip("polars")


class TestEnsureNumpyPolars:
    """Polars containers are converted at the boundary."""

    def test_polars_dataframe(self):
        df = pl.DataFrame({"a": [1.0, 2.0], "b": [3.0, 4.0]})
        np.testing.assert_array_equal(_ensure_numpy(df), [[1.0, 3.0], [2.0, 4.0]])

    def test_polars_lazyframe_collected(self):
        lf = pl.DataFrame({"a": [1.0, 2.0]}).lazy()
        np.testing.assert_array_equal(_ensure_numpy(lf), [[1.0], [2.0]])

    def test_polars_series(self):
        np.testing.assert_array_equal(_as_vector(pl.Series([0, 1]), name="y"), [0, 1])


class TestPolarsEndToEnd:
    """The public entry points accept Polars frames."""

    def test_fit_and_predict(self):
        rng = np.random.default_rng(42)
        x1 = rng.standard_normal(200)
        x2 = rng.standard_normal(200)
        X_pl = pl.DataFrame({"x1": x1, "x2": x2})
        y_pl = pl.Series("y", 2.0 * x1 - x2 + 0.5)

        w0 = np.zeros(3)
        result = qn_fit(
            X_pl, y_pl, w0, loss_type="squared", grad_tol=1e-8, backend="numpy"
        )
        assert result.converged
        np.testing.assert_allclose(w0, [2.0, -1.0, 0.5], atol=1e-5)

        preds = qn_predict(X_pl, w0, loss_type="squared", backend="numpy")
        np.testing.assert_allclose(preds, y_pl.to_numpy(), atol=1e-5)
