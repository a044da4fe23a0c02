import numpy as np

from dataclasses import dataclass
from numpy.typing import ArrayLike, NDArray
from sklearn.utils.validation import check_array

from misclassmodels._exceptions import InvalidInputError

EPS = np.finfo(np.float64).eps


@dataclass
class SolverResult:
    """Output from Newton-Raphson optimization"""

    beta: NDArray[np.float64]  # (n_features,) fitted coefficients
    loglik: float  # fitted log-likelihood
    fisher_info: NDArray[
        np.float64
    ]  # (n_features, n_features) Fisher information matrix
    n_iter: int  # number of iterations
    converged: bool  # whether optimization converged


@dataclass
class MinimizeResult:
    """Output from `misclassmodels._solvers.minimize`"""

    x: NDArray[np.float64]  # (n_params,) minimizer (or last iterate)
    fun: float  # objective at x
    hessian: NDArray[np.float64]  # (n_params, n_params) Hessian of objective at x
    n_iter: int
    converged: bool
    message: str = ""


@dataclass(frozen=True)
class MisclassFitResult:
    """
    Misclassification-adjusted logistic regression fit.

    Inference fields (`bse`, `zvalues`, `pvalues`, `ci_lower`, `ci_upper`,
    `cov_params`) are None when `inference_available` is False.
    `naive_converged` is False when the starting naive fit did not converge,
    usually because the observed outcome is (quasi-)separated; the adjusted
    likelihood then has no finite maximizer either.
    """

    coef: NDArray[np.float64]
    naive_coef: NDArray[np.float64]
    loglik: float
    n_iter: int
    converged: bool
    naive_converged: bool
    sensitivity: float
    specificity: float
    inference_available: bool
    bse: NDArray[np.float64] | None = None
    zvalues: NDArray[np.float64] | None = None
    pvalues: NDArray[np.float64] | None = None
    ci_lower: NDArray[np.float64] | None = None
    ci_upper: NDArray[np.float64] | None = None
    cov_params: NDArray[np.float64] | None = None


def clamp_probability(p: NDArray[np.float64]) -> NDArray[np.float64]:
    """Keep probabilities away from exact 0 and 1 before taking logs."""
    return np.clip(p, EPS, 1.0 - EPS)


def validate_rates(sensitivity: float, specificity: float) -> tuple[float, float]:
    """Check sensitivity and specificity are each in (0, 1]."""
    rates = []
    for name, value in (("sensitivity", sensitivity), ("specificity", specificity)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise InvalidInputError(
                f"{name} must be a real number, got {value!r}"
            ) from None
        if not (0.0 < value <= 1.0):
            raise InvalidInputError(f"{name} must be in (0, 1], got {value}")
        rates.append(value)
    return rates[0], rates[1]


def validate_design(
    X: ArrayLike, y: ArrayLike
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Validate a design matrix and a 0/1 outcome, returning float64 arrays."""
    try:
        X = check_array(X, dtype=np.float64, ensure_min_samples=2)
        y = check_array(y, dtype=np.float64, ensure_2d=False, ensure_min_samples=2)
    except ValueError as e:
        raise InvalidInputError(str(e)) from e

    if y.ndim != 1:
        raise InvalidInputError(f"y must be 1-dimensional, got shape {y.shape}")
    if X.shape[0] != y.shape[0]:
        raise InvalidInputError(
            f"X has {X.shape[0]} rows but y has {y.shape[0]} values"
        )
    if not np.all((y == 0.0) | (y == 1.0)):
        bad = np.unique(y[(y != 0.0) & (y != 1.0)])
        raise InvalidInputError(f"y must contain only 0/1 values, got {bad[:5]}")
    return X, y
