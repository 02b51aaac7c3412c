"""Process-wide default for the compute backend.

The fit and predict entry points take a per-call ``backend=`` argument.
When that argument is ``None`` they fall back to the *default choice*
held here, which is one of:

* a backend instance pinned with :func:`set_backend` (any object
  satisfying :class:`~qnglm._backends.BackendProtocol`, e.g. a custom
  backend that owns its own workspaces);
* a backend name pinned with :func:`set_backend` or, for the duration
  of a ``with`` block, :func:`use_backend`;
* the ``QNGLM_BACKEND`` environment variable;
* auto-detection: the first installed backend in ``_PREFERENCE``.

Only the name-to-instance step lives in
:func:`~qnglm._backends.resolve_backend`; this module never imports a
backend implementation, so checking the default does not pull in JAX.

Examples:
    Force the host backend from the shell::

        export QNGLM_BACKEND=numpy

    Force it for a block of code::

        with qnglm.use_backend("numpy"):
            qnglm.qn_fit(X, y, w0)

    Re-enable auto-detection::

        qnglm.set_backend("auto")
"""

from __future__ import annotations

import importlib.util
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from ._backends import BackendProtocol

logger = logging.getLogger(__name__)

ENV_VAR = "QNGLM_BACKEND"

# Auto-detection order; the last entry needs nothing beyond the hard
# dependencies and always matches.
_PREFERENCE = ("jax", "numpy")

# Module each backend needs on top of numpy / scipy.
_EXTRA_MODULE: dict[str, str | None] = {"jax": "jax", "numpy": None}

BackendChoice = Union[str, "BackendProtocol"]

_default: BackendChoice | None = None


def backend_installed(name: str) -> bool:
    """Return ``True`` if the modules backend *name* needs can be found.

    Uses :func:`importlib.util.find_spec`, so nothing is imported.
    """
    module = _EXTRA_MODULE[name]
    return module is None or importlib.util.find_spec(module) is not None


def _parse_name(name: str, *, source: str) -> str:
    key = name.strip().lower()
    if key != "auto" and key not in _EXTRA_MODULE:
        choices = sorted([*_EXTRA_MODULE, "auto"])
        raise ValueError(
            f"Unknown backend {name!r} from {source}. Choose from: {choices}"
        )
    return key


def default_choice() -> BackendChoice:
    """Return the pinned backend instance, or the name of the default backend."""
    if _default is not None and _default != "auto":
        return _default

    env = os.environ.get(ENV_VAR, "").strip()
    if env:
        try:
            key = _parse_name(env, source=f"${ENV_VAR}")
        except ValueError:
            logger.warning("Ignoring %s=%r: not a known backend.", ENV_VAR, env)
        else:
            if key != "auto":
                return key

    return next(name for name in _PREFERENCE if backend_installed(name))


def get_backend() -> str:
    """Return the name of the default backend (``"jax"`` or ``"numpy"``).

    A pinned backend instance reports its ``name`` attribute.
    """
    choice = default_choice()
    return choice if isinstance(choice, str) else choice.name


def set_backend(backend: BackendChoice) -> None:
    """Pin the default backend.

    Args:
        backend: ``"jax"``, ``"numpy"`` or ``"auto"`` (case-insensitive),
            or a :class:`~qnglm._backends.BackendProtocol` instance.
            ``"auto"`` restores the environment variable and
            auto-detection.

    Raises:
        ValueError: If *backend* is an unknown name.
        TypeError: If *backend* is neither a name nor a backend instance.
    """
    global _default
    if isinstance(backend, str):
        _default = _parse_name(backend, source="set_backend()")
        return

    from ._backends import BackendProtocol

    if not isinstance(backend, BackendProtocol):
        raise TypeError(
            "set_backend() expects a backend name or a BackendProtocol "
            f"instance, got {type(backend).__name__}."
        )
    _default = backend


@contextmanager
def use_backend(backend: BackendChoice) -> Iterator[None]:
    """Pin *backend* as the default inside a ``with`` block.

    The previous default is restored on exit, including when the block
    raises.
    """
    global _default
    previous = _default
    set_backend(backend)
    try:
        yield
    finally:
        _default = previous
