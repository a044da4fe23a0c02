import numpy as np
import scipy.linalg
import scipy.stats
import warnings

from dataclasses import dataclass
from numpy.typing import ArrayLike, NDArray
from scipy.special import expit
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.utils._tags import ClassifierTags, Tags
from sklearn.utils.multiclass import type_of_target
from sklearn.utils.validation import check_is_fitted, validate_data
from typing import Literal, Self, cast

from misclassmodels._exceptions import (
    InferenceUnavailableWarning,
    InvalidInputError,
    OptimizationFailureError,
    SingularHessianError,
)
from misclassmodels._solvers import minimize
from misclassmodels._utils import (
    MisclassFitResult,
    clamp_probability,
    validate_design,
    validate_rates,
)
from misclassmodels.logistic import _fit_naive

_METHODS = ("bfgs", "newton-raphson")


def fit_adjusted(
    X: ArrayLike,
    y: ArrayLike,
    sensitivity: float,
    specificity: float,
    method: Literal["bfgs", "newton-raphson"] = "bfgs",
    start: ArrayLike | None = None,
    max_iter: int = 200,
    gtol: float = 1e-6,
    alpha: float = 0.05,
    on_singular_hessian: Literal["warn", "raise", "ignore"] = "warn",
    warn_convergence: bool = True,
) -> MisclassFitResult:
    """
    Logistic regression corrected for nondifferential outcome misclassification.

    Maximizes the likelihood of the observed outcome y* under

        P(y* = 1 | x) = sens * p + (1 - spec) * (1 - p),   p = expit(x @ beta)

    so that `beta` describes the true (unobserved) outcome. Sensitivity and
    specificity are treated as known.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Design matrix, used as given (include a column of ones for an intercept).
    y : array-like of shape (n_samples,)
        Observed 0/1 outcome.
    sensitivity : float
        P(y* = 1 | y = 1), in (0, 1].
    specificity : float
        P(y* = 0 | y = 0), in (0, 1].
    method : {'bfgs', 'newton-raphson'}, default='bfgs'
        'bfgs' is quasi-Newton on the analytic gradient. 'newton-raphson' is
        Fisher scoring on the expected information with step-halving.
    start : array-like of shape (n_features,), default=None
        Starting coefficients. Defaults to the naive logistic fit.
    max_iter : int, default=200
        Maximum number of optimizer iterations.
    gtol : float, default=1e-6
        Tolerance on the gradient of the per-observation negative log-likelihood.
        With the default, BFGS coefficients agree with the exact maximizer to
        about 1e-5; Newton-Raphson converges quadratically and gets much closer.
    alpha : float, default=0.05
        Significance level for the Wald confidence intervals.
    on_singular_hessian : {'warn', 'raise', 'ignore'}, default='warn'
        If the Hessian at the optimum is not positive definite, return the point
        estimate with inference fields set to None (warning unless 'ignore'), or
        raise `SingularHessianError`.
    warn_convergence : bool, default=True
        Issue a ConvergenceWarning when the naive starting fit does not converge.
        `naive_converged` on the result records it either way.

    Returns
    -------
    MisclassFitResult

    Raises
    ------
    InvalidInputError
        Malformed shapes, non 0/1 outcome, or rates outside (0, 1].
    SingularDesignError
        X is not of full column rank.
    OptimizationFailureError
        The optimizer did not converge. The last iterate is on `.result`.
    SingularHessianError
        Only with `on_singular_hessian='raise'`.
    """
    X, y = validate_design(X, y)
    sensitivity, specificity = validate_rates(sensitivity, specificity)
    if method not in _METHODS:
        raise ValueError(f"method must be 'bfgs' or 'newton-raphson', got '{method}'")
    if on_singular_hessian not in ("warn", "raise", "ignore"):
        raise ValueError(
            "on_singular_hessian must be 'warn', 'raise' or 'ignore', "
            f"got '{on_singular_hessian}'"
        )
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")

    n_samples, n_features = X.shape

    # === Step 1: naive fit ===
    naive = _fit_naive(X, y, warn=warn_convergence)
    naive_coef = naive.beta
    if start is None:
        beta0 = naive_coef
    else:
        beta0 = np.asarray(start, dtype=np.float64)
        if beta0.shape != (n_features,):
            raise InvalidInputError(
                f"start must have shape ({n_features},), got {beta0.shape}"
            )

    # === Step 2: corrected likelihood, scaled per observation ===
    def quantities(beta):
        return compute_misclass_quantities(X, y, beta, sensitivity, specificity)

    def objective(beta):
        return -quantities(beta).loglik / n_samples

    def gradient(beta):
        return -quantities(beta).score / n_samples

    if method == "bfgs":

        def curvature(beta):
            return quantities(beta).hessian / n_samples

    else:

        def curvature(beta):
            return quantities(beta).fisher_info / n_samples

    # === Step 3: optimize ===
    result = minimize(
        objective,
        beta0,
        gradient=gradient,
        hessian=curvature,
        method=method,
        max_iter=max_iter,
        gtol=gtol,
    )
    if not result.converged:
        raise OptimizationFailureError(
            f"Optimizer did not converge after {result.n_iter} iterations: "
            f"{result.message}",
            result=result,
        )

    beta = result.x
    q = quantities(beta)

    # === Step 4: Wald inference from the observed information ===
    inference = wald_inference(beta, q.hessian, alpha=alpha)
    if inference is None:
        msg = (
            "Hessian of the negative log-likelihood is not positive definite at the "
            "optimum; standard errors are unavailable. "
            f"sensitivity + specificity = {sensitivity + specificity:.3g}."
        )
        if on_singular_hessian == "raise":
            raise SingularHessianError(msg, coef=beta)
        if on_singular_hessian == "warn":
            warnings.warn(msg, InferenceUnavailableWarning, stacklevel=2)
        inference = {}

    return MisclassFitResult(
        coef=beta,
        naive_coef=naive_coef,
        loglik=q.loglik,
        n_iter=result.n_iter,
        converged=result.converged,
        naive_converged=naive.converged,
        sensitivity=sensitivity,
        specificity=specificity,
        inference_available=bool(inference),
        **inference,
    )


def wald_inference(
    beta: NDArray[np.float64],
    hessian: NDArray[np.float64],
    alpha: float = 0.05,
) -> dict[str, NDArray[np.float64]] | None:
    """
    Wald standard errors, z, p-values, and CIs from the Hessian of the NLL.

    Returns None if the Hessian is not positive definite. Negative eigenvalues
    are not clamped.
    """
    k = beta.shape[0]
    try:
        cho = scipy.linalg.cho_factor(hessian, lower=True, check_finite=True)
        cov = scipy.linalg.cho_solve(cho, np.eye(k), check_finite=False)
    except (scipy.linalg.LinAlgError, ValueError):
        return None

    var = np.diag(cov)
    if not np.all(np.isfinite(var)) or np.any(var <= 0):
        return None

    bse = np.sqrt(var)
    z = beta / bse
    crit = scipy.stats.norm.ppf(1 - alpha / 2)
    return {
        "bse": bse,
        "zvalues": z,
        "pvalues": 2 * scipy.stats.norm.sf(np.abs(z)),
        "ci_lower": beta - crit * bse,
        "ci_upper": beta + crit * bse,
        "cov_params": cov,
    }


class MisclassifiedLogisticRegression(ClassifierMixin, BaseEstimator):
    """
    Logistic regression for a binary outcome measured with known error.

    The observed label y* is assumed to be a nondifferentially misclassified
    version of the true label y, with known sensitivity P(y*=1 | y=1) and
    specificity P(y*=0 | y=0). Ordinary logistic regression of y* on X is biased
    toward zero in that setting; this estimator maximizes the likelihood of y*
    implied by the true-outcome logistic model instead, so the fitted
    coefficients describe y. With `sensitivity=specificity=1` it is ordinary
    maximum-likelihood logistic regression.

    Labels may be any two values. `classes_[1]` is the label the measurement
    reports as positive, so sensitivity and specificity refer to that class.

    Parameters
    ----------
    sensitivity : float, default=1.0
        Probability the measurement reports `classes_[1]` when that is the true
        class, in (0, 1].
    specificity : float, default=1.0
        Probability the measurement reports `classes_[0]` when that is the true
        class, in (0, 1].
    solver : {'bfgs', 'newton-raphson'}, default='bfgs'
        Optimization algorithm.
    max_iter : int, default=200
        Maximum number of iterations
    gtol : float, default=1e-6
        Gradient tolerance for stopping criteria
    fit_intercept : bool, default=True
        Whether to fit intercept

    Attributes
    ----------
    classes_ : ndarray of shape (2,)
        Sorted class labels. `classes_[1]` is the positive class.
    coef_ : ndarray of shape (n_features,)
        Bias-corrected coefficients of the features.
    intercept_ : float
        Bias-corrected intercept. Set to 0.0 if `fit_intercept=False`.
    naive_coef_ : ndarray of shape (n_features,)
        Coefficients from ordinary logistic regression of the observed outcome.
    naive_intercept_ : float
        Intercept from ordinary logistic regression of the observed outcome.
    loglik_ : float
        Corrected log-likelihood at the optimum.
    n_iter_ : int
        Number of iterations the solver ran.
    converged_ : bool
        Whether the solver converged within `max_iter`.
    naive_converged_ : bool
        Whether the naive starting fit converged. False usually means the
        observed labels are (quasi-)separated.
    inference_available_ : bool
        False if the Hessian at the optimum was not positive definite, in which
        case the standard error and p-value attributes are None.
    bse_ : ndarray of shape (n_features,) or None
        Wald standard errors for the coefficient estimates.
    intercept_bse_ : float or None
        Wald standard error for the intercept.
    pvalues_ : ndarray of shape (n_features,) or None
        Wald p-values for the coefficients.
    intercept_pvalue_ : float or None
        Wald p-value for the intercept.
    n_features_in_ : int
        Number of features seen during `fit`.
    feature_names_in_ : ndarray of shape (n_features_in_,)
        Names of features seen during `fit`. Defined only when X has feature names that are all strings.

    References
    ----------
    Magder LS, Hughes JP (1997). Logistic regression when the outcome is measured
    with uncertainty. American Journal of Epidemiology 146(2), 195-203.

    Neuhaus JM (1999). Bias and efficiency loss due to misclassified responses in
    binary regression. Biometrika 86(4), 843-855.

    Examples
    --------
    >>> import numpy as np
    >>> from misclassmodels import MisclassifiedLogisticRegression, simulate_misclassified
    >>> rng = np.random.default_rng(0)
    >>> X, _, y_obs = simulate_misclassified([-0.3, 1.5], 2000, 0.9, 0.9, rng)
    >>> model = MisclassifiedLogisticRegression(sensitivity=0.9, specificity=0.9)
    >>> model = model.fit(X[:, 1:], y_obs)
    >>> # model.coef_ is close to 1.5; model.naive_coef_ is attenuated toward 0
    """

    def __init__(
        self,
        sensitivity: float = 1.0,
        specificity: float = 1.0,
        solver: Literal["bfgs", "newton-raphson"] = "bfgs",
        max_iter: int = 200,
        gtol: float = 1e-6,
        fit_intercept: bool = True,
    ) -> None:
        self.sensitivity = sensitivity
        self.specificity = specificity
        self.solver = solver
        self.max_iter = max_iter
        self.gtol = gtol
        self.fit_intercept = fit_intercept

    def __sklearn_tags__(self) -> Tags:
        tags = super().__sklearn_tags__()
        tags.classifier_tags = ClassifierTags()
        tags.classifier_tags.multi_class = False
        return tags

    def fit(self, X: ArrayLike, y: ArrayLike) -> Self:
        """
        Fit the misclassification-adjusted logistic regression model.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Feature matrix.
        y : array-like of shape (n_samples,)
            Observed labels, two classes.

        Returns
        -------
        self : MisclassifiedLogisticRegression
            Fitted estimator.
        """
        # === Validate and prep inputs ===
        X, y = self._validate_input(X, y)

        if self.fit_intercept:
            X = np.column_stack([X, np.ones(X.shape[0])])

        # === run solver ===
        result = fit_adjusted(
            X,
            y,
            self.sensitivity,
            self.specificity,
            method=self.solver,
            max_iter=self.max_iter,
            gtol=self.gtol,
        )

        # === Extract coefficients ===
        if self.fit_intercept:
            self.coef_ = result.coef[:-1]
            self.intercept_ = float(result.coef[-1])
            self.naive_coef_ = result.naive_coef[:-1]
            self.naive_intercept_ = float(result.naive_coef[-1])
        else:
            self.coef_ = result.coef
            self.intercept_ = 0.0
            self.naive_coef_ = result.naive_coef
            self.naive_intercept_ = 0.0

        self.loglik_ = result.loglik
        self.n_iter_ = result.n_iter
        self.converged_ = result.converged
        self.naive_converged_ = result.naive_converged
        self.inference_available_ = result.inference_available

        # === Wald ===
        self._bse_full = result.bse
        if not result.inference_available:
            self.bse_ = self.pvalues_ = None
            self.intercept_bse_ = self.intercept_pvalue_ = None
        elif self.fit_intercept:
            self.bse_ = result.bse[:-1]
            self.pvalues_ = result.pvalues[:-1]
            self.intercept_bse_ = float(result.bse[-1])
            self.intercept_pvalue_ = float(result.pvalues[-1])
        else:
            self.bse_ = result.bse
            self.pvalues_ = result.pvalues
            self.intercept_bse_ = self.intercept_pvalue_ = None
        return self

    def conf_int(self, alpha: float = 0.05) -> NDArray[np.float64]:
        """
        Wald confidence intervals for the coefficients.

        Parameters
        ----------
        alpha : float, default=0.05
            Significance level (default 0.05 for 95% CI)

        Returns
        -------
        ndarray, shape(n_features, 2)
            Column 0: lower bounds, Column 1: upper bounds
            Includes intercept as last row if `fit_intercept=True`.
        """
        check_is_fitted(self)
        if not self.inference_available_:
            raise SingularHessianError(
                "Confidence intervals are unavailable: the Hessian at the optimum "
                "is not positive definite.",
                coef=self.coef_,
            )
        z = scipy.stats.norm.ppf(1 - alpha / 2)
        if self.fit_intercept:
            beta = np.concatenate([self.coef_, [self.intercept_]])
        else:
            beta = self.coef_
        lower = beta - z * self._bse_full
        upper = beta + z * self._bse_full
        return np.column_stack([lower, upper])

    def decision_function(self, X: ArrayLike) -> NDArray[np.float64]:
        """Return linear predictor of the true outcome."""
        check_is_fitted(self)
        X = validate_data(self, X, dtype=np.float64, reset=False)
        X = cast(NDArray[np.float64], X)  # for mypy
        return X @ self.coef_ + self.intercept_

    def predict_proba(self, X: ArrayLike) -> NDArray[np.float64]:
        """Return class probabilities of the true outcome."""
        p1 = expit(self.decision_function(X))
        return np.column_stack([1 - p1, p1])

    def predict_observed_proba(self, X: ArrayLike) -> NDArray[np.float64]:
        """Return class probabilities of the outcome as the imperfect process reports it."""
        p = expit(self.decision_function(X))
        q1 = self.sensitivity * p + (1 - self.specificity) * (1 - p)
        return np.column_stack([1 - q1, q1])

    def predict(self, X: ArrayLike) -> NDArray[np.int_]:
        """Return predicted true class labels."""
        proba = self.predict_proba(X)
        return self.classes_[np.argmax(proba, axis=1)]

    def predict_log_proba(self, X: ArrayLike) -> NDArray[np.float64]:
        """Return log class probabilities of the true outcome."""
        return np.log(self.predict_proba(X))

    def _validate_input(
        self, X: ArrayLike, y: ArrayLike
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Validate parameters and inputs, encode y to 0/1"""
        if self.solver not in _METHODS:
            raise ValueError(
                f"solver='{self.solver}' is not supported. "
                "Use 'bfgs' or 'newton-raphson'."
            )
        if self.max_iter <= 0:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")
        if self.gtol < 0:
            raise ValueError(f"gtol must be non-negative, got {self.gtol}")
        validate_rates(self.sensitivity, self.specificity)

        try:
            X, y = validate_data(
                self, X, y, dtype=np.float64, y_numeric=False, ensure_min_samples=2
            )
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        y_type = type_of_target(y)
        if y_type == "continuous":
            raise InvalidInputError(
                "Unknown label type: continuous. Only binary classification is supported."
            )
        if y_type != "binary":
            raise InvalidInputError(
                "Only binary classification is supported. "
                f"The type of the target is {y_type}."
            )

        self.classes_ = np.unique(y)
        if len(self.classes_) != 2:
            raise InvalidInputError(
                f"Got {len(self.classes_)} classes. Only binary classification is supported."
            )

        # encode y to 0/1, classes_[1] is the reported positive
        y = (y == self.classes_[1]).astype(np.float64)

        X = cast(NDArray[np.float64], X)  # for mypy
        y = cast(NDArray[np.float64], y)
        return X, y


@dataclass
class MisclassQuantities:
    """Quantities needed for one optimizer iteration"""

    loglik: float
    score: NDArray[np.float64]  # (n_features,) dℓ/dβ
    fisher_info: NDArray[np.float64]  # (n_features, n_features) expected information
    hessian: NDArray[np.float64]  # (n_features, n_features) observed information, -d²ℓ/dβ²


def compute_misclass_quantities(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    beta: NDArray[np.float64],
    sensitivity: float,
    specificity: float,
) -> MisclassQuantities:
    """Log-likelihood, score, and information of the misclassified-outcome model."""
    eta = X @ beta
    p = expit(eta)
    w = p * (1 - p)

    # q = P(y*=1) = sens*p + (1-spec)*(1-p) = (1-spec) + c*p
    c = sensitivity + specificity - 1.0
    q = clamp_probability((1.0 - specificity) + c * p)
    q_comp = 1.0 - q

    # ℓ(β) = Σ y*_i log(q_i) + (1-y*_i) log(1-q_i)
    loglik = float(np.sum(y * np.log(q) + (1 - y) * np.log(q_comp)))

    # dℓ/dη = c*w*(y-q)/(q(1-q))
    r = (y - q) / (q * q_comp)
    score = X.T @ (c * w * r)

    # E[-d²ℓ/dη²] = c²w²/(q(1-q))
    info_w = c * c * w * w / (q * q_comp)
    fisher_info = (X.T * info_w) @ X

    # -d²ℓ/dη² = c²w²(y/q² + (1-y)/(1-q)²) - c*w*(1-2p)*r
    obs_w = c * c * w * w * (y / (q * q) + (1 - y) / (q_comp * q_comp)) - (
        c * w * (1 - 2 * p) * r
    )
    hessian = (X.T * obs_w) @ X

    return MisclassQuantities(
        loglik=loglik,
        score=score,
        fisher_info=fisher_info,
        hessian=hessian,
    )


def negative_loglik(
    X: ArrayLike,
    y: ArrayLike,
    beta: ArrayLike,
    sensitivity: float,
    specificity: float,
) -> float:
    """Corrected negative log-likelihood at `beta`."""
    X, y = validate_design(X, y)
    sensitivity, specificity = validate_rates(sensitivity, specificity)
    beta = np.asarray(beta, dtype=np.float64)
    return -compute_misclass_quantities(X, y, beta, sensitivity, specificity).loglik
