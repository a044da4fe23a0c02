import numpy as np
import warnings

from dataclasses import dataclass
from numpy.typing import ArrayLike, NDArray
from scipy.special import expit, log_expit
from sklearn.exceptions import ConvergenceWarning

from misclassmodels._exceptions import SingularDesignError
from misclassmodels._solvers import newton_raphson
from misclassmodels._utils import SolverResult, validate_design


def fit_naive(
    X: ArrayLike,
    y: ArrayLike,
    max_iter: int = 25,
    max_step: float = 5.0,
    max_halfstep: int = 25,
    gtol: float = 1e-6,
    xtol: float = 1e-6,
) -> NDArray[np.float64]:
    """
    Ordinary maximum-likelihood logistic regression of the observed outcome.

    Misclassification is ignored. The design is used as given, so include a
    column of ones for an intercept.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Design matrix.
    y : array-like of shape (n_samples,)
        Observed 0/1 outcome.
    max_iter, max_step, max_halfstep, gtol, xtol
        Passed to `newton_raphson`.

    Returns
    -------
    ndarray of shape (n_features,)
        Fitted coefficients.

    Raises
    ------
    InvalidInputError
        If shapes disagree or y is not 0/1.
    SingularDesignError
        If X is not of full column rank.
    """
    X, y = validate_design(X, y)
    return _fit_naive(
        X,
        y,
        max_iter=max_iter,
        max_step=max_step,
        max_halfstep=max_halfstep,
        gtol=gtol,
        xtol=xtol,
    ).beta


def _fit_naive(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    max_iter: int = 25,
    max_step: float = 5.0,
    max_halfstep: int = 25,
    gtol: float = 1e-6,
    xtol: float = 1e-6,
    warn: bool = True,
) -> SolverResult:
    """
    Naive fit on already-validated arrays.

    Non-convergence is reported with a ConvergenceWarning unless `warn` is False;
    `converged` on the result records it either way.
    """
    check_full_rank(X)

    result = newton_raphson(
        compute_quantities=lambda beta: compute_logistic_quantities(X, y, beta),
        n_features=X.shape[1],
        max_iter=max_iter,
        max_step=max_step,
        max_halfstep=max_halfstep,
        gtol=gtol,
        xtol=xtol,
    )
    if warn and not result.converged:
        warnings.warn(
            f"Naive logistic fit did not converge after {result.n_iter} iterations; "
            "the outcome may be (quasi-)separated.",
            ConvergenceWarning,
            stacklevel=3,
        )
    return result


def check_full_rank(X: NDArray[np.float64]) -> None:
    """Raise SingularDesignError unless X has full column rank."""
    n_samples, n_features = X.shape
    if n_samples < n_features:
        raise SingularDesignError(
            f"Design has {n_features} columns but only {n_samples} rows."
        )
    rank = np.linalg.matrix_rank(X)
    if rank < n_features:
        raise SingularDesignError(
            f"Design matrix has rank {rank} < {n_features} columns."
        )


@dataclass
class LogisticQuantities:
    """Quantities needed for one Newton-Raphson iteration"""

    loglik: float
    score: NDArray[np.float64]  # (n_features,) U = X'(y - p)
    fisher_info: NDArray[np.float64]  # (n_features, n_features) X'WX


def compute_logistic_quantities(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    beta: NDArray[np.float64],
) -> LogisticQuantities:
    """Compute all quantities needed for one Newton-Raphson iteration."""
    eta = X @ beta
    p = expit(eta)

    # W = diag(p * (1-p))
    sqrt_w = np.sqrt(p * (1 - p))
    XtW = X.T * sqrt_w  # (k, n) broadcast so we don't materialize (n, n) diag matrix
    fisher_info = XtW @ XtW.T

    # L(β) = Σ y_i*log(p_i) + (1-y_i)*log(1-p_i), on the log scale for stability
    loglik = float(np.sum(y * log_expit(eta) + (1 - y) * log_expit(-eta)))

    score = X.T @ (y - p)

    return LogisticQuantities(loglik=loglik, score=score, fisher_info=fisher_info)
