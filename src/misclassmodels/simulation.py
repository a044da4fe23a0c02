"""
Simulation of misclassified binary outcomes and sensitivity-analysis sweeps.

A sweep fits the naive and the misclassification-adjusted estimator on
repeated synthetic datasets over a grid of (sensitivity, specificity) values.
Every (grid cell, repetition) pair is an independent task with its own random
stream, so results are identical whatever the number of workers.
"""

import logging
import numpy as np

from dataclasses import dataclass
from itertools import product
from numpy.typing import ArrayLike, NDArray
from scipy.special import expit
from sklearn.utils.parallel import Parallel, delayed
from typing import Literal, Sequence

from misclassmodels._exceptions import (
    InvalidInputError,
    OptimizationFailureError,
    SingularDesignError,
)
from misclassmodels._utils import validate_rates
from misclassmodels.misclassified import fit_adjusted

logger = logging.getLogger(__name__)


def simulate_misclassified(
    betas: ArrayLike,
    n_samples: int,
    sensitivity: float,
    specificity: float,
    rng: np.random.Generator | int | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """
    Draw a dataset from a logistic model and relabel the outcome with error.

    Parameters
    ----------
    betas : array-like of shape (n_features,)
        True coefficients. `betas[0]` is the intercept.
    n_samples : int
        Number of records.
    sensitivity, specificity : float
        Measurement-process rates, each in (0, 1].
    rng : Generator, int, or None
        Random generator or seed.

    Returns
    -------
    X : ndarray of shape (n_samples, n_features)
        Design with a leading column of ones and standard normal covariates.
    y_true : ndarray of shape (n_samples,)
        True 0/1 outcome.
    y_observed : ndarray of shape (n_samples,)
        Outcome after misclassification: a true 1 is reported as 1 with
        probability `sensitivity`, a true 0 as 0 with probability `specificity`.
    """
    betas = np.asarray(betas, dtype=np.float64)
    if betas.ndim != 1 or betas.shape[0] < 1:
        raise InvalidInputError(f"betas must be a non-empty 1-d array, got {betas.shape}")
    if n_samples < 2:
        raise InvalidInputError(f"n_samples must be at least 2, got {n_samples}")
    sensitivity, specificity = validate_rates(sensitivity, specificity)
    rng = np.random.default_rng(rng)

    X = np.column_stack(
        [np.ones(n_samples), rng.standard_normal((n_samples, betas.shape[0] - 1))]
    )
    p = expit(X @ betas)
    y_true = (rng.random(n_samples) < p).astype(np.float64)

    u = rng.random(n_samples)
    y_observed = np.where(y_true == 1.0, u < sensitivity, u >= specificity)
    return X, y_true, y_observed.astype(np.float64)


@dataclass(frozen=True)
class SweepConfig:
    """
    Grid and repetition settings for `run_sweep`.

    Attributes
    ----------
    betas : sequence of float
        True coefficients, intercept first.
    sensitivities, specificities : sequence of float
        Grid values; every combination is a cell.
    n_reps : int
        Repetitions per cell.
    n_samples : int
        Records per simulated dataset.
    seed : int
        Root seed. Each task gets an independent child stream.
    n_jobs : int or None
        joblib workers. None runs sequentially unless a joblib backend is active.
    method : {'bfgs', 'newton-raphson'}
        Optimizer for the adjusted fit.
    """

    betas: Sequence[float]
    sensitivities: Sequence[float] = (0.9,)
    specificities: Sequence[float] = (0.9,)
    n_reps: int = 100
    n_samples: int = 1000
    seed: int = 0
    n_jobs: int | None = None
    method: Literal["bfgs", "newton-raphson"] = "bfgs"

    def __post_init__(self) -> None:
        for name in ("betas", "sensitivities", "specificities"):
            value = tuple(float(v) for v in getattr(self, name))
            if not value:
                raise InvalidInputError(f"{name} must not be empty")
            object.__setattr__(self, name, value)
        for se, sp in product(self.sensitivities, self.specificities):
            validate_rates(se, sp)
        if self.n_reps < 1:
            raise InvalidInputError(f"n_reps must be positive, got {self.n_reps}")
        if self.n_samples < 2:
            raise InvalidInputError(
                f"n_samples must be at least 2, got {self.n_samples}"
            )

    def grid(self) -> list[tuple[float, float, int]]:
        """All (sensitivity, specificity, rep) tasks in run order."""
        return [
            (se, sp, rep)
            for se, sp in product(self.sensitivities, self.specificities)
            for rep in range(self.n_reps)
        ]


@dataclass(frozen=True)
class SweepRecord:
    """Naive and adjusted fits on one simulated dataset."""

    sensitivity: float
    specificity: float
    rep: int
    true_coef: NDArray[np.float64]
    naive_coef: NDArray[np.float64] | None = None
    coef: NDArray[np.float64] | None = None
    bse: NDArray[np.float64] | None = None
    ci_lower: NDArray[np.float64] | None = None
    ci_upper: NDArray[np.float64] | None = None
    converged: bool = False
    naive_converged: bool = False
    inference_available: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.converged


def run_sweep(config: SweepConfig) -> list[SweepRecord]:
    """
    Fit naive and adjusted estimators over the configured grid.

    Returns one `SweepRecord` per task, in the order of `config.grid()`.
    Fits that fail are recorded with `error` set instead of aborting the sweep.
    """
    tasks = config.grid()
    seeds = np.random.SeedSequence(config.seed).spawn(len(tasks))
    logger.debug(
        "running sweep: %d cells x %d reps, n_samples=%d, n_jobs=%s",
        len(tasks) // config.n_reps,
        config.n_reps,
        config.n_samples,
        config.n_jobs,
    )
    return Parallel(n_jobs=config.n_jobs)(
        delayed(_run_task)(
            config.betas, config.n_samples, se, sp, rep, seed, config.method
        )
        for (se, sp, rep), seed in zip(tasks, seeds)
    )


def _run_task(
    betas: Sequence[float],
    n_samples: int,
    sensitivity: float,
    specificity: float,
    rep: int,
    seed: np.random.SeedSequence,
    method: str,
) -> SweepRecord:
    """Simulate one dataset and fit both estimators."""
    true_coef = np.asarray(betas, dtype=np.float64)
    rng = np.random.default_rng(seed)
    X, _, y_observed = simulate_misclassified(
        true_coef, n_samples, sensitivity, specificity, rng
    )

    try:
        # naive non-convergence and missing inference are recorded on the SweepRecord
        result = fit_adjusted(
            X,
            y_observed,
            sensitivity,
            specificity,
            method=method,
            on_singular_hessian="ignore",
            warn_convergence=False,
        )
    except (OptimizationFailureError, SingularDesignError) as e:
        logger.debug(
            "fit failed (sensitivity=%.3g, specificity=%.3g, rep=%d): %s",
            sensitivity,
            specificity,
            rep,
            e,
        )
        return SweepRecord(
            sensitivity=sensitivity,
            specificity=specificity,
            rep=rep,
            true_coef=true_coef,
            error=f"{type(e).__name__}: {e}",
        )

    return SweepRecord(
        sensitivity=sensitivity,
        specificity=specificity,
        rep=rep,
        true_coef=true_coef,
        naive_coef=result.naive_coef,
        coef=result.coef,
        bse=result.bse,
        ci_lower=result.ci_lower,
        ci_upper=result.ci_upper,
        converged=result.converged,
        naive_converged=result.naive_converged,
        inference_available=result.inference_available,
    )


def mean_bias(
    records: Sequence[SweepRecord],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Average naive and adjusted bias over successful fits.

    Returns
    -------
    naive_bias, adjusted_bias : ndarray of shape (n_features,)
        Mean of (estimate - true coefficient) per coefficient.
    """
    ok = [r for r in records if r.ok]
    if not ok:
        raise ValueError("No successful fits to summarize.")
    truth = np.stack([r.true_coef for r in ok])
    naive = np.stack([r.naive_coef for r in ok])
    adjusted = np.stack([r.coef for r in ok])
    return (naive - truth).mean(axis=0), (adjusted - truth).mean(axis=0)


def coverage(records: Sequence[SweepRecord]) -> NDArray[np.float64]:
    """Share of Wald intervals containing the true coefficient, per coefficient."""
    ok = [r for r in records if r.ok and r.inference_available]
    if not ok:
        raise ValueError("No fits with confidence intervals to summarize.")
    truth = np.stack([r.true_coef for r in ok])
    lower = np.stack([r.ci_lower for r in ok])
    upper = np.stack([r.ci_upper for r in ok])
    return ((lower <= truth) & (truth <= upper)).mean(axis=0)


def summarize_sweep(records: Sequence[SweepRecord]):
    """
    Per-cell bias and coverage table as a pandas DataFrame.

    One row per (sensitivity, specificity, coefficient index) with columns
    `true`, `naive_bias`, `adjusted_bias`, `coverage`, `n_ok`, `n_failed`,
    `n_naive_nonconverged` (successful fits whose naive start did not converge).
    """
    try:
        import pandas as pd
    except ImportError as e:
        raise ImportError("pandas is required for summarize_sweep()") from e

    cells: dict[tuple[float, float], list[SweepRecord]] = {}
    for r in records:
        cells.setdefault((r.sensitivity, r.specificity), []).append(r)

    rows = []
    for (se, sp), cell in cells.items():
        truth = cell[0].true_coef
        n_ok = sum(r.ok for r in cell)
        n_naive_nonconverged = sum(r.ok and not r.naive_converged for r in cell)
        if n_ok:
            naive_bias, adjusted_bias = mean_bias(cell)
        else:
            naive_bias = adjusted_bias = np.full_like(truth, np.nan)
        try:
            cov = coverage(cell)
        except ValueError:
            cov = np.full_like(truth, np.nan)
        for j in range(truth.shape[0]):
            rows.append(
                {
                    "sensitivity": se,
                    "specificity": sp,
                    "coef": j,
                    "true": truth[j],
                    "naive_bias": naive_bias[j],
                    "adjusted_bias": adjusted_bias[j],
                    "coverage": cov[j],
                    "n_ok": n_ok,
                    "n_failed": len(cell) - n_ok,
                    "n_naive_nonconverged": n_naive_nonconverged,
                }
            )
    return pd.DataFrame(rows)
