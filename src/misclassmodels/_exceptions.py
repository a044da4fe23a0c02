import numpy as np


class InvalidInputError(ValueError):
    """Malformed design, outcome, or measurement-process parameters."""


class SingularDesignError(np.linalg.LinAlgError):
    """Design matrix is not of full column rank."""


class SingularHessianError(np.linalg.LinAlgError):
    """Hessian at the optimum is not positive definite; Wald inference is undefined.

    The point estimate is still available as `coef`.
    """

    def __init__(self, message: str, coef: np.ndarray | None = None) -> None:
        super().__init__(message)
        self.coef = coef


class OptimizationFailureError(RuntimeError):
    """Optimizer did not converge.

    The best iterate found is kept on `result` (a `MinimizeResult` with
    `converged=False`) so callers can inspect it or restart from it.
    """

    def __init__(self, message: str, result=None) -> None:
        super().__init__(message)
        self.result = result


class InferenceUnavailableWarning(UserWarning):
    """Standard errors, p-values, and confidence intervals could not be computed."""
