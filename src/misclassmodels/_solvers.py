import numpy as np
import scipy.linalg
import scipy.optimize

from dataclasses import dataclass
from numpy.typing import NDArray
from typing import Callable, Literal, Protocol

from misclassmodels._utils import MinimizeResult, SolverResult


class Quantities(Protocol):
    loglik: float
    score: NDArray[np.float64]
    fisher_info: NDArray[np.float64]


def newton_raphson(
    compute_quantities: Callable[[NDArray[np.float64]], Quantities],
    n_features: int,
    beta0: NDArray[np.float64] | None = None,
    max_iter: int = 25,
    max_step: float = 5.0,
    max_halfstep: int = 25,
    gtol: float = 1e-6,
    xtol: float = 1e-6,
) -> SolverResult:
    """
    Newton-Raphson (Fisher scoring) solver with step capping and step-halving.

    Parameters
    ----------
    compute_quantities : Callable[[NDArray], Quantities]
        Function `callable(beta)` that returns loglik, score, and fisher_info
    n_features : int
        Number of features
    beta0 : ndarray of shape (n_features,), default=None
        Starting point. Zeros if None.
    max_iter : int, default=25
        Maximum number of iterations
    max_step : float, default=5.0
        Maximum step size per coefficient
    max_halfstep : int, default=25
        Maximum number of step-halvings per iteration
    gtol : float, default=1e-6
        Convergence tolerance on max|score|
    xtol : float, default=1e-6
        Convergence tolerance on max|step|

    Returns
    -------
    SolverResult
        Result of optimization. `converged` is False if `max_iter` was reached
        or step-halving could not improve the log-likelihood.
    """
    if beta0 is None:
        beta = np.zeros(n_features, dtype=np.float64)
    else:
        beta = np.array(beta0, dtype=np.float64)

    q = compute_quantities(beta)

    for iteration in range(1, max_iter + 1):
        try:
            cho = scipy.linalg.cho_factor(q.fisher_info, check_finite=False)
            delta = scipy.linalg.cho_solve(cho, q.score, check_finite=False)
        except scipy.linalg.LinAlgError:
            delta, *_ = np.linalg.lstsq(q.fisher_info, q.score, rcond=None)

        # check convergence: max|U| < gtol and max|delta| < xtol
        if np.max(np.abs(q.score)) < gtol and np.max(np.abs(delta)) < xtol:
            return SolverResult(
                beta=beta,
                loglik=q.loglik,
                fisher_info=q.fisher_info,
                n_iter=iteration,
                converged=True,
            )

        max_delta = np.max(np.abs(delta))
        if max_delta > max_step:
            delta = delta * (max_step / max_delta)

        # try full step first, then halve until loglik improves
        step_factor = 1.0
        for _ in range(max_halfstep + 1):
            beta_new = beta + step_factor * delta
            q_new = compute_quantities(beta_new)
            if q_new.loglik >= q.loglik or max_halfstep == 0:
                break
            step_factor *= 0.5
        else:
            return SolverResult(
                beta=beta,
                loglik=q.loglik,
                fisher_info=q.fisher_info,
                n_iter=iteration,
                converged=False,
            )

        beta = beta_new
        q = q_new

    return SolverResult(
        beta=beta,
        loglik=q.loglik,
        fisher_info=q.fisher_info,
        n_iter=max_iter,
        converged=False,
    )


def numerical_hessian(
    func: Callable[[NDArray[np.float64]], float | NDArray[np.float64]],
    x: NDArray[np.float64],
    is_gradient: bool = True,
    eps: float = 1e-5,
) -> NDArray[np.float64]:
    """
    Central-difference Hessian at `x`.

    If `is_gradient` is True, `func` is the gradient and each column is
    (g(x + h e_j) - g(x - h e_j)) / 2h. Otherwise `func` is the scalar objective
    and second differences are taken directly. The result is symmetrized.
    """
    x = np.asarray(x, dtype=np.float64)
    k = x.shape[0]
    H = np.empty((k, k), dtype=np.float64)
    h = eps * np.maximum(np.abs(x), 1.0)

    if is_gradient:
        for j in range(k):
            e = np.zeros(k)
            e[j] = h[j]
            H[:, j] = (np.asarray(func(x + e)) - np.asarray(func(x - e))) / (2 * h[j])
    else:
        f0 = func(x)
        for i in range(k):
            ei = np.zeros(k)
            ei[i] = h[i]
            H[i, i] = (func(x + ei) - 2 * f0 + func(x - ei)) / (h[i] * h[i])
            for j in range(i + 1, k):
                ej = np.zeros(k)
                ej[j] = h[j]
                H[i, j] = (
                    func(x + ei + ej)
                    - func(x + ei - ej)
                    - func(x - ei + ej)
                    + func(x - ei - ej)
                ) / (4 * h[i] * h[j])
                H[j, i] = H[i, j]
    return 0.5 * (H + H.T)


def minimize(
    objective: Callable[[NDArray[np.float64]], float],
    initial_point: NDArray[np.float64],
    gradient: Callable[[NDArray[np.float64]], NDArray[np.float64]] | None = None,
    hessian: Callable[[NDArray[np.float64]], NDArray[np.float64]] | None = None,
    method: Literal["bfgs", "newton-raphson"] = "bfgs",
    max_iter: int = 200,
    gtol: float = 1e-6,
) -> MinimizeResult:
    """
    Unconstrained minimization of a scalar function.

    Parameters
    ----------
    objective : Callable[[NDArray], float]
        Function to minimize.
    initial_point : ndarray of shape (n_params,)
        Starting point.
    gradient : Callable[[NDArray], NDArray], default=None
        Gradient of `objective`. Finite differences are used if None
        (`method='bfgs'` only).
    hessian : Callable[[NDArray], NDArray], default=None
        Curvature matrix of `objective`. For `method='newton-raphson'` it sets the
        step direction and must be positive definite (an expected information
        matrix is a good choice). If None, the Hessian reported at the minimizer
        is computed by `numerical_hessian`.
    method : {'bfgs', 'newton-raphson'}, default='bfgs'
        'bfgs' uses scipy's quasi-Newton BFGS; 'newton-raphson' uses the
        package's step-halving Newton solver and requires `gradient` and `hessian`.
    max_iter : int, default=200
        Maximum number of iterations.
    gtol : float, default=1e-6
        Gradient tolerance for convergence.

    Returns
    -------
    MinimizeResult
        `hessian` is the Hessian of `objective` at `x`. `converged` is False if
        the iteration budget was exhausted or the line search failed; `x` is then
        the last iterate.
        `n_iter` is at least 1.
    """
    x0 = np.asarray(initial_point, dtype=np.float64)

    if method == "bfgs":
        res = scipy.optimize.minimize(
            objective,
            x0,
            jac=gradient,
            method="BFGS",
            options={"maxiter": max_iter, "gtol": gtol},
        )
        x = res.x
        fun = float(res.fun)
        # a start that already meets gtol counts as one iteration, as in newton_raphson
        n_iter = max(int(res.nit), 1)
        converged = bool(res.success)
        message = str(res.message)

    elif method == "newton-raphson":
        if gradient is None or hessian is None:
            raise ValueError("method='newton-raphson' requires gradient and hessian")

        def compute_quantities(beta):
            return _MinimizeQuantities(
                loglik=-objective(beta),
                score=-gradient(beta),
                fisher_info=hessian(beta),
            )

        result = newton_raphson(
            compute_quantities=compute_quantities,
            n_features=x0.shape[0],
            beta0=x0,
            max_iter=max_iter,
            gtol=gtol,
            xtol=gtol,
        )
        x = result.beta
        fun = -result.loglik
        n_iter = result.n_iter
        converged = result.converged
        message = (
            "Optimization terminated successfully."
            if converged
            else "Newton-Raphson did not converge."
        )

    else:
        raise ValueError(
            f"method must be 'bfgs' or 'newton-raphson', got '{method}'"
        )

    if hessian is not None and method == "bfgs":
        H = hessian(x)
    elif gradient is not None:
        H = numerical_hessian(gradient, x, is_gradient=True)
    else:
        H = numerical_hessian(objective, x, is_gradient=False)

    return MinimizeResult(
        x=x,
        fun=fun,
        hessian=H,
        n_iter=n_iter,
        converged=converged,
        message=message,
    )


@dataclass
class _MinimizeQuantities:
    loglik: float
    score: NDArray[np.float64]
    fisher_info: NDArray[np.float64]
