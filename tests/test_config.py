"""Tests for the default-backend configuration."""

import logging

import pytest

import qnglm._config as _cfg
from qnglm._backends import BackendProtocol, resolve_backend
from qnglm._backends._numpy import NumpyBackend
from qnglm._config import get_backend, set_backend, use_backend


@pytest.fixture(autouse=True)
def _clean_default(monkeypatch):
    """Start every test with no pinned default and no env override."""
    monkeypatch.setattr(_cfg, "_default", None)
    monkeypatch.delenv("QNGLM_BACKEND", raising=False)


def _installed(*names):
    return lambda name: name in names


class TestGetBackend:
    """Tests for get_backend() resolution order."""

    def test_auto_detects_jax_when_installed(self, monkeypatch):
        monkeypatch.setattr(_cfg, "backend_installed", _installed("jax", "numpy"))
        assert get_backend() == "jax"

    def test_auto_falls_back_to_numpy(self, monkeypatch):
        monkeypatch.setattr(_cfg, "backend_installed", _installed("numpy"))
        assert get_backend() == "numpy"

    def test_numpy_always_installed(self):
        assert _cfg.backend_installed("numpy")

    def test_env_var_overrides_auto(self, monkeypatch):
        monkeypatch.setenv("QNGLM_BACKEND", "numpy")
        assert get_backend() == "numpy"

    def test_env_var_jax(self, monkeypatch):
        monkeypatch.setenv("QNGLM_BACKEND", "jax")
        assert get_backend() == "jax"

    def test_env_var_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("QNGLM_BACKEND", " NumPy ")
        assert get_backend() == "numpy"

    def test_unknown_env_var_ignored_with_warning(self, monkeypatch, caplog):
        monkeypatch.setattr(_cfg, "backend_installed", _installed("numpy"))
        monkeypatch.setenv("QNGLM_BACKEND", "cupy")
        with caplog.at_level(logging.WARNING, logger="qnglm._config"):
            assert get_backend() == "numpy"
        assert "Ignoring QNGLM_BACKEND='cupy'" in caplog.text

    def test_programmatic_choice_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("QNGLM_BACKEND", "numpy")
        set_backend("jax")
        assert get_backend() == "jax"

    def test_auto_restores_default(self, monkeypatch):
        monkeypatch.setattr(_cfg, "backend_installed", _installed("numpy"))
        set_backend("jax")
        assert get_backend() == "jax"
        set_backend("auto")
        assert get_backend() == "numpy"

    def test_pinned_instance_reports_its_name(self):
        set_backend(NumpyBackend())
        assert get_backend() == "numpy"


class TestSetBackend:
    """Tests for set_backend() validation."""

    def test_accepts_valid_names(self):
        for name in ("jax", "numpy", "auto"):
            set_backend(name)  # should not raise

    def test_case_insensitive(self):
        set_backend(" NUMPY ")
        assert get_backend() == "numpy"

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown backend 'tensorflow'"):
            set_backend("tensorflow")

    def test_rejects_non_backend_object(self):
        with pytest.raises(TypeError, match="BackendProtocol instance, got int"):
            set_backend(3)

    def test_invalid_name_keeps_previous_choice(self):
        set_backend("numpy")
        with pytest.raises(ValueError):
            set_backend("cupy")
        assert get_backend() == "numpy"


class TestUseBackend:
    """use_backend() pins a default for the duration of a block."""

    def test_restores_previous_choice(self):
        set_backend("jax")
        with use_backend("numpy"):
            assert get_backend() == "numpy"
        assert get_backend() == "jax"

    def test_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with use_backend("numpy"):
                raise RuntimeError("boom")
        assert _cfg._default is None

    def test_nested_blocks(self):
        with use_backend("numpy"):
            with use_backend("jax"):
                assert get_backend() == "jax"
            assert get_backend() == "numpy"

    def test_unknown_name_rejected_before_block(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            with use_backend("cupy"):
                pass  # pragma: no cover
        assert _cfg._default is None

    def test_pinned_instance_reaches_resolution(self):
        pinned = NumpyBackend()
        with use_backend(pinned):
            assert resolve_backend(None) is pinned
        assert _cfg._default is None


class TestResolveBackend:
    """resolve_backend() turns the default choice into a backend instance."""

    def test_numpy_by_name(self):
        backend = resolve_backend("numpy")
        assert backend.name == "numpy"
        assert isinstance(backend, BackendProtocol)

    def test_cached_singleton(self):
        assert resolve_backend("numpy") is resolve_backend("NumPy")

    def test_instance_passthrough(self):
        backend = resolve_backend("numpy")
        assert resolve_backend(backend) is backend

    def test_none_follows_default(self):
        set_backend("numpy")
        assert resolve_backend(None).name == "numpy"

    def test_unknown_name_raises(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            resolve_backend("cupy")

    def test_explicit_jax_without_jax_raises(self, monkeypatch):
        import qnglm._backends as _backends
        import qnglm._backends._jax as _jax_mod

        monkeypatch.setattr(_jax_mod, "_CAN_IMPORT_JAX", False)
        monkeypatch.setattr(_backends, "_BACKEND_CACHE", {})
        with pytest.raises(ImportError, match="JAX is not installed"):
            resolve_backend("jax")

    def test_public_api_exports(self):
        """The backend controls should be importable from the package."""
        import qnglm

        assert hasattr(qnglm, "get_backend")
        assert hasattr(qnglm, "set_backend")
        assert hasattr(qnglm, "use_backend")
        assert hasattr(qnglm, "resolve_backend")
