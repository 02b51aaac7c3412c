"""Limited-memory quasi-Newton minimizer (L-BFGS with an OWL-QN step).

Architecture
~~~~~~~~~~~~
:func:`qn_minimize` is a small state machine over outer iterations.
Each iteration:

1. **Gradient check** — stop with ``CONVERGED_GRADIENT`` when the
   gradient norm (the pseudo-gradient norm when ``l1 > 0``) is at or
   below ``epsilon``.
2. **Iteration cap** — stop with ``MAX_ITERATIONS_REACHED`` once
   ``max_iterations`` steps have been accepted.
3. **Direction** — two-loop recursion over the stored curvature pairs;
   steepest descent when the history is empty.
4. **Orthant-wise adjustment** (``l1 > 0``) — components of the
   direction that do not oppose the pseudo-gradient are zeroed.
5. **Line search** — backtracking along the direction; when no step
   is accepted within ``max_linesearch`` trials the minimizer stops
   with ``LINE_SEARCH_FAILED`` and keeps the last accepted weights.
6. **Curvature update** — push ``(Δw, Δgrad)`` into the bounded
   history unless it fails the positive-curvature screen.

Every terminal state is a normal return.  The caller inspects
``status``, ``num_iters`` and ``grad_norm`` to judge the fit.

Line search
~~~~~~~~~~~
Smooth problems (``l1 == 0``) use backtracking with a choice of
acceptance rule (``LBFGSParam.linesearch``):

* ``"armijo"`` — sufficient decrease
  ``f(w + a d) <= f(w) + ftol * a * g·d``; step shrinks by ``dec``.
* ``"wolfe"`` — Armijo plus ``g(w + a d)·d >= wolfe * g·d``; too
  short a step grows by ``inc``.
* ``"strong_wolfe"`` — Armijo plus ``|g(w + a d)·d| <= wolfe * |g·d|``.

With ``l1 > 0`` the OWL-QN projected backtracking of Andrew & Gao
(2007) is used: each trial point is projected back onto the orthant
of the current iterate and accepted on
``F(w') <= F(w) + ftol * pg·(w' - w)``, where ``F`` includes the L1
term and ``pg`` is the pseudo-gradient.

Pseudo-gradient
~~~~~~~~~~~~~~~
For ``F(w) = f(w) + l1 * ||w||₁``::

    w_i > 0:  pg_i = g_i + l1
    w_i < 0:  pg_i = g_i - l1
    w_i = 0:  pg_i = g_i + l1  if g_i + l1 < 0
              pg_i = g_i - l1  if g_i - l1 > 0
              pg_i = 0         otherwise

The curvature pairs always use the *smooth* gradient difference, so
the inverse-Hessian model describes ``f`` and not the kinked ``F``.

Host / device boundary
~~~~~~~~~~~~~~~~~~~~~~
All vectors are backend arrays.  The two-loop recursion keeps its
inner products on the backend (``xp.vdot``); the host pulls only the
scalars it branches on: the objective value, the gradient norm, the
directional derivatives in the line search, and ``s·y`` / ``y·y``
when screening a curvature pair.

References:
    Nocedal, J. & Wright, S. (2006). *Numerical Optimization*,
    2nd ed., Algorithm 7.4 (two-loop recursion).

    Andrew, G. & Gao, J. (2007). "Scalable training of
    L1-regularized log-linear models." ICML.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from ._backends import BackendProtocol

logger = logging.getLogger(__name__)

_LINESEARCH_RULES = frozenset({"armijo", "wolfe", "strong_wolfe"})

Objective = Callable[[Any], tuple[float, Any]]

# ------------------------------------------------------------------ #
# Parameters and status
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LBFGSParam:
    """Immutable optimizer configuration for one fit call.

    Attributes:
        epsilon: Convergence tolerance on the (pseudo-)gradient norm.
        max_iterations: Maximum number of accepted outer iterations.
        m: Number of curvature pairs retained.
        max_linesearch: Maximum trial steps per line search.
        linesearch: ``"armijo"``, ``"wolfe"`` or ``"strong_wolfe"``.
            Ignored when ``l1 > 0`` (projected Armijo is used).
        ftol: Sufficient-decrease constant, in ``(0, 0.5)``.
        wolfe: Curvature constant, in ``(ftol, 1)``.
        min_step: Smallest step length tried before giving up.
        max_step: Largest step length tried before giving up.
        dec: Step shrink factor, in ``(0, 1)``.
        inc: Step growth factor for the Wolfe rule, ``> 1``.
    """

    epsilon: float = 1e-5
    max_iterations: int = 1000
    m: int = 5
    max_linesearch: int = 50
    linesearch: str = "armijo"
    ftol: float = 1e-4
    wolfe: float = 0.9
    min_step: float = 1e-20
    max_step: float = 1e20
    dec: float = 0.5
    inc: float = 2.1

    def __post_init__(self) -> None:
        if not self.epsilon >= 0:
            raise ValueError(f"epsilon must be non-negative, got {self.epsilon}.")
        if self.max_iterations < 0:
            raise ValueError(
                f"max_iterations must be non-negative, got {self.max_iterations}."
            )
        if self.m < 1:
            raise ValueError(f"m (history size) must be positive, got {self.m}.")
        if self.max_linesearch < 1:
            raise ValueError(
                f"max_linesearch must be positive, got {self.max_linesearch}."
            )
        if self.linesearch not in _LINESEARCH_RULES:
            raise ValueError(
                f"Unknown linesearch {self.linesearch!r}. "
                f"Choose from: {sorted(_LINESEARCH_RULES)}"
            )
        if not 0 < self.ftol < 0.5:
            raise ValueError(f"ftol must lie in (0, 0.5), got {self.ftol}.")
        if not self.ftol < self.wolfe < 1:
            raise ValueError(f"wolfe must lie in (ftol, 1), got {self.wolfe}.")
        if not 0 < self.min_step < self.max_step:
            raise ValueError(
                "Require 0 < min_step < max_step, got "
                f"min_step={self.min_step}, max_step={self.max_step}."
            )
        if not 0 < self.dec < 1:
            raise ValueError(f"dec must lie in (0, 1), got {self.dec}.")
        if not self.inc > 1:
            raise ValueError(f"inc must be greater than 1, got {self.inc}.")


class OptimStatus(Enum):
    """States of the minimizer.  All but ``RUNNING`` are terminal."""

    RUNNING = "running"
    CONVERGED_GRADIENT = "converged_gradient"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    LINE_SEARCH_FAILED = "line_search_failed"


@dataclass(frozen=True)
class MinimizeResult:
    """Outcome of :func:`qn_minimize`.

    ``w`` is the last accepted iterate (a backend array) and ``fx`` its
    objective value, L1 term included.
    """

    w: Any
    fx: float
    num_iters: int
    status: OptimStatus
    grad_norm: float
    n_evals: int


# ------------------------------------------------------------------ #
# Curvature history
# ------------------------------------------------------------------ #


class CurvatureHistory:
    """Bounded buffer of the last ``m`` curvature pairs ``(s, y)``.

    Pairs with ``s·y <= eps * y·y`` are rejected, which keeps every
    stored ``rho = 1 / s·y`` positive and the implied inverse-Hessian
    approximation positive definite.  When full, pushing evicts the
    oldest pair.
    """

    def __init__(self, m: int, backend: BackendProtocol, eps: float = 0.0) -> None:
        self.m = m
        self.eps = eps
        self._backend = backend
        self._pairs: deque[tuple[Any, Any, float]] = deque(maxlen=m)
        self._gamma = 1.0

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self) -> Iterator[tuple[Any, Any]]:
        for s, y, _rho in self._pairs:
            yield s, y

    def clear(self) -> None:
        self._pairs.clear()
        self._gamma = 1.0

    def push(self, s: Any, y: Any) -> bool:
        """Store ``(s, y)`` if it passes the curvature screen.

        Returns:
            ``True`` if the pair was stored.
        """
        sy = self._backend.dot(s, y)
        yy = self._backend.dot(y, y)
        if not (math.isfinite(sy) and math.isfinite(yy)) or sy <= self.eps * yy:
            logger.debug("Skipped curvature pair: s.y=%.3e, y.y=%.3e", sy, yy)
            return False
        self._pairs.append((s, y, 1.0 / sy))
        self._gamma = sy / yy
        return True

    def apply_inverse_hessian(self, g: Any) -> Any:
        """Two-loop recursion: return ``H g`` for the current model.

        The initial matrix is ``gamma * I`` with ``gamma = s·y / y·y``
        from the newest pair.  With no pairs stored ``H = I``.
        """
        if not self._pairs:
            return g
        xp = self._backend.xp
        q = g
        alphas = []
        for s, y, rho in reversed(self._pairs):
            a = rho * xp.vdot(s, q)
            alphas.append(a)
            q = q - a * y
        r = self._gamma * q
        for (s, y, rho), a in zip(self._pairs, reversed(alphas)):
            b = rho * xp.vdot(y, r)
            r = r + (a - b) * s
        return r


# ------------------------------------------------------------------ #
# Orthant-wise helpers
# ------------------------------------------------------------------ #


def pseudo_gradient(xp: Any, w: Any, grad: Any, l1: float) -> Any:
    """Minimum-norm subgradient of ``f(w) + l1 * ||w||₁``."""
    zero = xp.zeros_like(grad)
    gp = grad + l1
    gm = grad - l1
    at_zero = xp.where(gp < 0, gp, xp.where(gm > 0, gm, zero))
    return xp.where(w > 0, gp, xp.where(w < 0, gm, at_zero))


def _orthant(xp: Any, w: Any, pg: Any) -> Any:
    # Sign pattern the line search must stay in.
    return xp.where(w == 0, -xp.sign(pg), xp.sign(w))


def _project_orthant(xp: Any, w: Any, orthant: Any) -> Any:
    return xp.where(xp.sign(w) == orthant, w, xp.zeros_like(w))


# ------------------------------------------------------------------ #
# Line searches
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LineSearchResult:
    success: bool
    step: float
    fx: float
    w: Any
    grad: Any
    n_evals: int
    reason: str = ""


def _line_search_backtracking(
    objective: Objective,
    backend: BackendProtocol,
    param: LBFGSParam,
    fx: float,
    w: Any,
    grad: Any,
    drt: Any,
    step: float,
) -> LineSearchResult:
    dg_init = backend.dot(grad, drt)
    if dg_init >= 0:
        return LineSearchResult(False, 0.0, fx, w, grad, 0, "non-descent direction")
    test_decr = param.ftol * dg_init
    n_evals = 0
    for _ in range(param.max_linesearch):
        w_new = w + step * drt
        fx_new, g_new = objective(w_new)
        n_evals += 1
        if not math.isfinite(fx_new) or fx_new > fx + step * test_decr:
            width = param.dec
        elif param.linesearch == "armijo":
            return LineSearchResult(True, step, fx_new, w_new, g_new, n_evals)
        else:
            dg = backend.dot(g_new, drt)
            if dg < param.wolfe * dg_init:
                width = param.inc
            elif param.linesearch == "strong_wolfe" and dg > -param.wolfe * dg_init:
                width = param.dec
            else:
                return LineSearchResult(True, step, fx_new, w_new, g_new, n_evals)
        step *= width
        if step < param.min_step:
            return LineSearchResult(False, step, fx, w, grad, n_evals, "step below min_step")
        if step > param.max_step:
            return LineSearchResult(False, step, fx, w, grad, n_evals, "step above max_step")
    return LineSearchResult(False, step, fx, w, grad, n_evals, "max_linesearch reached")


def _line_search_owl(
    objective: Objective,
    backend: BackendProtocol,
    param: LBFGSParam,
    l1: float,
    fx: float,
    w: Any,
    grad: Any,
    pg: Any,
    drt: Any,
    step: float,
) -> LineSearchResult:
    xp = backend.xp
    orthant = _orthant(xp, w, pg)
    n_evals = 0
    for _ in range(param.max_linesearch):
        w_new = _project_orthant(xp, w + step * drt, orthant)
        fx_new, g_new = objective(w_new)
        fx_new += l1 * backend.abs_sum(w_new)
        n_evals += 1
        dg = backend.dot(pg, w_new - w)
        if dg < 0 and math.isfinite(fx_new) and fx_new <= fx + param.ftol * dg:
            return LineSearchResult(True, step, fx_new, w_new, g_new, n_evals)
        step *= param.dec
        if step < param.min_step:
            return LineSearchResult(False, step, fx, w, grad, n_evals, "step below min_step")
    return LineSearchResult(False, step, fx, w, grad, n_evals, "max_linesearch reached")


# ------------------------------------------------------------------ #
# Minimizer
# ------------------------------------------------------------------ #


def _search_direction(
    backend: BackendProtocol,
    history: CurvatureHistory,
    pg: Any,
    orthant_wise: bool,
) -> Any:
    """Quasi-Newton direction, falling back to ``-pg`` if not descent."""
    xp = backend.xp
    drt = -history.apply_inverse_hessian(pg)
    if orthant_wise:
        drt = xp.where(drt * pg < 0, drt, xp.zeros_like(drt))
    if len(history) and backend.dot(drt, pg) >= 0:
        logger.debug("Quasi-Newton direction is not a descent direction; resetting history.")
        history.clear()
        drt = -pg
    return drt


def qn_minimize(
    backend: BackendProtocol,
    w: Any,
    objective: Objective,
    l1: float,
    param: LBFGSParam,
    verbosity: int = 0,
    callback: Callable[[int, Any, float], None] | None = None,
) -> MinimizeResult:
    """Minimize ``objective(w) + l1 * ||w||₁`` from the initial point *w*.

    Args:
        backend: Compute backend holding *w* and the objective's data.
        w: Initial weights ``(n_param,)`` on the backend.
        objective: ``w -> (value, gradient)`` of the smooth part.
        l1: L1 coefficient; ``0`` selects plain L-BFGS.
        param: Optimizer configuration.
        verbosity: ``>= 1`` logs the terminal state at INFO, ``>= 2``
            also logs every iteration at INFO (DEBUG otherwise).
        callback: Called as ``callback(k, w, fx)`` after each accepted
            step, with *k* the number of accepted steps so far.

    Returns:
        A :class:`MinimizeResult`.  Never raises for numerical
        non-convergence.

    Raises:
        ValueError: If *l1* is negative.
    """
    if l1 < 0:
        raise ValueError(f"l1 must be non-negative, got {l1}.")
    orthant_wise = l1 > 0
    xp = backend.xp
    iter_level = logging.INFO if verbosity >= 2 else logging.DEBUG

    eps = float(np.finfo(w.dtype).eps)
    history = CurvatureHistory(param.m, backend, eps)

    fx, grad = objective(w)
    if orthant_wise:
        fx += l1 * backend.abs_sum(w)
    n_evals = 1
    k = 0
    gnorm = math.nan
    step = math.nan
    status = OptimStatus.RUNNING

    while status is OptimStatus.RUNNING:
        pg = pseudo_gradient(xp, w, grad, l1) if orthant_wise else grad
        gnorm = backend.norm(pg)
        logger.log(
            iter_level,
            "QN iter %4d: f=%.8e |g|=%.4e step=%.3e history=%d",
            k,
            fx,
            gnorm,
            step,
            len(history),
        )
        if gnorm <= param.epsilon:
            status = OptimStatus.CONVERGED_GRADIENT
            break
        if k >= param.max_iterations:
            status = OptimStatus.MAX_ITERATIONS_REACHED
            break

        drt = _search_direction(backend, history, pg, orthant_wise)
        step0 = 1.0 if len(history) else 1.0 / backend.norm(drt)
        step0 = min(step0, param.max_step)

        if orthant_wise:
            ls = _line_search_owl(objective, backend, param, l1, fx, w, grad, pg, drt, step0)
        else:
            ls = _line_search_backtracking(objective, backend, param, fx, w, grad, drt, step0)
        n_evals += ls.n_evals

        if not ls.success:
            status = OptimStatus.LINE_SEARCH_FAILED
            logger.log(
                logging.WARNING if verbosity >= 1 else logging.DEBUG,
                "Line search failed at iteration %d (%s); keeping last accepted weights.",
                k,
                ls.reason,
            )
            break

        history.push(ls.w - w, ls.grad - grad)
        w, fx, grad, step = ls.w, ls.fx, ls.grad, ls.step
        k += 1
        if callback is not None:
            callback(k, w, fx)

    if verbosity >= 1:
        logger.info(
            "QN finished: %s after %d iterations, f=%.8e |g|=%.4e, %d evaluations",
            status.value,
            k,
            fx,
            gnorm,
            n_evals,
        )
    return MinimizeResult(w, fx, k, status, gnorm, n_evals)
