from misclassmodels._exceptions import (
    InferenceUnavailableWarning,
    InvalidInputError,
    OptimizationFailureError,
    SingularDesignError,
    SingularHessianError,
)
from misclassmodels._solvers import minimize
from misclassmodels._utils import MinimizeResult, MisclassFitResult
from misclassmodels.logistic import fit_naive
from misclassmodels.misclassified import (
    MisclassifiedLogisticRegression,
    fit_adjusted,
    negative_loglik,
)
from misclassmodels.simulation import (
    SweepConfig,
    SweepRecord,
    run_sweep,
    simulate_misclassified,
    summarize_sweep,
)

__version__ = "0.1.0"

__all__ = [
    "InferenceUnavailableWarning",
    "InvalidInputError",
    "MinimizeResult",
    "MisclassFitResult",
    "MisclassifiedLogisticRegression",
    "OptimizationFailureError",
    "SingularDesignError",
    "SingularHessianError",
    "SweepConfig",
    "SweepRecord",
    "fit_adjusted",
    "fit_naive",
    "minimize",
    "negative_loglik",
    "run_sweep",
    "simulate_misclassified",
    "summarize_sweep",
]
