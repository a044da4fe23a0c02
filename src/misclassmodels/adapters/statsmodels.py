from typing import Literal

import numpy as np
import scipy.stats
from numpy.typing import ArrayLike, NDArray
from scipy.special import expit

from misclassmodels._exceptions import SingularHessianError
from misclassmodels._utils import MisclassFitResult
from misclassmodels.misclassified import fit_adjusted


class MisclassLogit:
    """
    statsmodels-style interface to the misclassification-adjusted logit.

    As in statsmodels, `exog` is used as given: add a constant column yourself
    (e.g. with `statsmodels.api.add_constant`).
    """

    def __init__(
        self,
        endog: ArrayLike,
        exog: ArrayLike,
        *,
        sensitivity: float,
        specificity: float,
        **kwargs,
    ):
        self.endog = np.asarray(endog)
        self.exog = np.asarray(exog)
        self.sensitivity = sensitivity
        self.specificity = specificity

        missing = kwargs.pop("missing", "none")

        if kwargs:
            raise TypeError(
                f"__init__() got unexpected keyword arguments: {list(kwargs.keys())}"
            )

        if missing == "drop":
            raise NotImplementedError("missing='drop' is not supported")
        elif missing == "raise":
            if np.isnan(self.endog).any() or np.isnan(self.exog).any():
                raise ValueError("Input contains NaN values")

        if hasattr(exog, "columns"):
            self.exog_names = list(exog.columns)
        else:
            self.exog_names = [f"x{i + 1}" for i in range(self.exog.shape[1])]

    @property
    def nobs(self) -> int:
        return self.exog.shape[0]

    def __repr__(self) -> str:
        return (
            f"<MisclassLogit: nobs={self.nobs}, k={self.exog.shape[1]}, "
            f"sensitivity={self.sensitivity}, specificity={self.specificity}>"
        )

    def fit(
        self,
        start_params: ArrayLike | None = None,
        method: Literal["bfgs", "newton"] = "bfgs",
        maxiter: int = 200,
        **kwargs,  # gtol
    ) -> "MisclassLogitResults":
        if method not in ("bfgs", "newton"):
            raise ValueError("method must be 'bfgs' or 'newton'.")

        gtol = kwargs.pop("gtol", 1e-6)
        if kwargs:
            raise TypeError(
                f"fit() got unexpected keyword arguments: {list(kwargs.keys())}"
            )

        result = fit_adjusted(
            self.exog,
            self.endog,
            self.sensitivity,
            self.specificity,
            method="newton-raphson" if method == "newton" else "bfgs",
            start=start_params,
            max_iter=maxiter,
            gtol=gtol,
        )
        return MisclassLogitResults(self, result, method=method)


class MisclassLogitResults:
    def __init__(
        self,
        model: MisclassLogit,
        result: MisclassFitResult,
        method: str = "bfgs",
    ):
        self.model = model
        self.result = result
        self.method = method

    @property
    def params(self) -> NDArray[np.float64]:
        return self.result.coef

    @property
    def naive_params(self) -> NDArray[np.float64]:
        return self.result.naive_coef

    @property
    def bse(self) -> NDArray[np.float64]:
        self._require_inference()
        return self.result.bse

    @property
    def tvalues(self) -> NDArray[np.float64]:
        return self.params / self.bse

    @property
    def pvalues(self) -> NDArray[np.float64]:
        self._require_inference()
        return self.result.pvalues

    @property
    def llf(self) -> float:
        return self.result.loglik

    @property
    def converged(self) -> bool:
        return self.result.converged

    @property
    def nobs(self) -> int:
        return self.model.exog.shape[0]

    @property
    def df_model(self) -> int:
        return len(self.params) - 1

    @property
    def df_resid(self) -> int:
        return self.nobs - len(self.params)

    @property
    def mle_retvals(self) -> dict:
        return {
            "converged": self.converged,
            "iterations": self.result.n_iter,
            "naive_converged": self.result.naive_converged,
        }

    @property
    def fittedvalues(self) -> NDArray[np.float64]:
        return self.predict()

    def __repr__(self) -> str:
        return f"<MisclassLogitResults: nobs={self.nobs}, converged={self.converged}>"

    def _require_inference(self) -> None:
        if not self.result.inference_available:
            raise SingularHessianError(
                "Inference is unavailable: the Hessian at the optimum is not "
                "positive definite.",
                coef=self.params,
            )

    def predict(
        self,
        exog: ArrayLike | None = None,
        **kwargs,
    ) -> NDArray[np.float64]:
        """Predicted probability of the true outcome (or linear predictor with linear=True)."""
        exog = self.model.exog if exog is None else np.asarray(exog)
        linear_pred = exog @ self.params

        if kwargs.get("linear", False):
            return linear_pred

        return expit(linear_pred)

    def conf_int(self, alpha=0.05) -> NDArray[np.float64]:
        z = scipy.stats.norm.ppf(1 - alpha / 2)
        lower = self.params - z * self.bse
        upper = self.params + z * self.bse
        return np.column_stack([lower, upper])

    def cov_params(self) -> NDArray[np.float64]:
        self._require_inference()
        return self.result.cov_params

    def summary(self, alpha: float = 0.05) -> "MisclassSummary":
        """Generate a summary of the regression results."""
        ci = self.conf_int(alpha=alpha)
        ci_lower = alpha / 2
        ci_upper = 1 - alpha / 2

        # Width and formatting
        width = 78

        def fmtval(x: float, width: int = 9) -> str:
            """Format a number: scientific notation for extreme values."""
            if np.isnan(x):
                return f"{'NaN':>{width}}"
            if x == 0:
                return f"{0.0:{width}.4f}"
            if abs(x) < 0.0001 or abs(x) >= 1e6:
                return f"{x:{width}.3e}"
            return f"{x:{width}.4f}"

        lines: list[str] = []

        title = "Misclassification-Adjusted Logistic Regression Results"
        lines.append(title.center(width))
        lines.append("=" * width)

        # Left: optimization/fitting, Right: data/model structure
        n_reported = int(np.sum(self.model.endog))

        info_left = [
            ("Method:", self.method.upper() if self.method == "bfgs" else "Newton"),
            ("Converged:", str(self.converged)),
            ("No. Iterations:", str(self.mle_retvals["iterations"])),
            ("Log-Likelihood:", f"{self.llf:.3f}"),
        ]
        info_right = [
            ("No. Observations:", str(self.nobs)),
            ("Reported Events:", str(n_reported)),
            ("Sensitivity:", f"{self.result.sensitivity:.4g}"),
            ("Specificity:", f"{self.result.specificity:.4g}"),
        ]

        for (l_lbl, l_val), (r_lbl, r_val) in zip(info_left, info_right):
            left = f"{l_lbl:<18} {l_val:<20}"
            right = f"{r_lbl:<18} {r_val:>10}"
            lines.append(left + right)

        lines.append("=" * width)

        ci_lo_hdr = f"[{ci_lower:.3g}"
        ci_hi_hdr = f"{ci_upper:.3g}]"
        hdr = f"{'':>12} {'coef':>9} {'std err':>9} {'z':>9} {'P>|z|':>9} {ci_lo_hdr:>9} {ci_hi_hdr:>9}"
        lines.append(hdr)
        lines.append("-" * width)

        for i, name in enumerate(self.model.exog_names):
            name_trunc = name[:12] if len(name) > 12 else name
            row = (
                f"{name_trunc:>12} "
                f"{fmtval(self.params[i])} "
                f"{fmtval(self.bse[i])} "
                f"{fmtval(self.tvalues[i])} "
                f"{fmtval(self.pvalues[i])} "
                f"{fmtval(ci[i, 0])} "
                f"{fmtval(ci[i, 1])}"
            )
            lines.append(row)

        lines.append("=" * width)
        lines.append("P-values: Wald test | CIs: Wald | SEs: observed information")

        return MisclassSummary("\n".join(lines))

    def summary_frame(self, alpha: float = 0.05):
        """Return summary as a pandas DataFrame."""
        try:
            import pandas as pd
        except ImportError as e:
            raise ImportError("pandas is required for summary_frame()") from e

        ci = self.conf_int(alpha=alpha)
        ci_lower = alpha / 2
        ci_upper = 1 - alpha / 2

        return pd.DataFrame(
            {
                "coef": self.params,
                "naive coef": self.naive_params,
                "std err": self.bse,
                "z": self.tvalues,
                "P>|z|": self.pvalues,
                f"[{ci_lower:.3g}": ci[:, 0],
                f"{ci_upper:.3g}]": ci[:, 1],
            },
            index=self.model.exog_names,
        )


class MisclassSummary:
    def __init__(self, text: str):
        self._text = text

    def __str__(self) -> str:
        return self._text

    def as_text(self) -> str:
        return self._text

    def as_html(self) -> str:
        raise NotImplementedError("HTML summary is not supported.")

    def as_latex(self) -> str:
        raise NotImplementedError("LaTeX summary is not supported.")
