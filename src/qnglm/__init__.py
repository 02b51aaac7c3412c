"""qnglm — Quasi-Newton training of generalized linear models.

Fits logistic, squared-error and softmax GLMs by limited-memory BFGS
(L-BFGS), switching to the orthant-wise variant (OWL-QN) when an L1
penalty is requested, with an optional L2 penalty.  The matrix and
loss-kernel primitives run on a pluggable backend: NumPy / SciPy on
the host, or JAX on CPU / GPU / TPU.

Public API:
    .. autosummary::
        qn_fit
        qn_predict
        qn_decision_function
        qn_predict_proba
        QNResult
        qn_minimize
        LBFGSParam
        OptimStatus
        CurvatureHistory
        LossType
        LogisticLoss
        SquaredLoss
        SoftmaxLoss
        GLMDims
        resolve_loss
        Tikhonov
        RegularizedGLM
        GLMWithData
        get_backend
        set_backend
        use_backend
        resolve_backend
"""

from ._backends import resolve_backend
from ._config import get_backend, set_backend, use_backend
from ._results import QNResult
from .losses import GLMDims, LogisticLoss, LossType, SoftmaxLoss, SquaredLoss, resolve_loss
from .objective import GLMWithData
from .qn import qn_decision_function, qn_fit, qn_predict, qn_predict_proba
from .regularization import RegularizedGLM, Tikhonov
from .solvers import CurvatureHistory, LBFGSParam, OptimStatus, qn_minimize

__all__ = [
    "QNResult",
    "qn_fit",
    "qn_predict",
    "qn_decision_function",
    "qn_predict_proba",
    "qn_minimize",
    "LBFGSParam",
    "OptimStatus",
    "CurvatureHistory",
    "LossType",
    "LogisticLoss",
    "SquaredLoss",
    "SoftmaxLoss",
    "GLMDims",
    "resolve_loss",
    "Tikhonov",
    "RegularizedGLM",
    "GLMWithData",
    "get_backend",
    "set_backend",
    "use_backend",
    "resolve_backend",
]

__version__ = "0.1.0"
