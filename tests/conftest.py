import numpy as np
import pytest

from misclassmodels import simulate_misclassified

BETAS = np.array([-0.3, 1.5, 0.1, 0.2, 0.1, -0.7])


@pytest.fixture
def misclass_data():
    """1000 records from BETAS, outcome relabeled with sensitivity=specificity=0.9."""
    X, y_true, y_obs = simulate_misclassified(BETAS, 1000, 0.9, 0.9, rng=0)
    return X, y_true, y_obs


@pytest.fixture
def logistic_data():
    """Small well-conditioned logistic dataset with an intercept column."""
    rng = np.random.default_rng(1)
    n = 300
    X = np.column_stack([np.ones(n), rng.standard_normal((n, 2))])
    p = 1 / (1 + np.exp(-(X @ np.array([0.5, -1.0, 0.75]))))
    y = (rng.random(n) < p).astype(np.float64)
    return X, y


@pytest.fixture
def separation_data():
    """x=1 perfectly predicts y=1."""
    X = np.array([[1.0, 0.0], [1.0, 0.0], [1.0, 0.0], [1.0, 1.0], [1.0, 1.0], [1.0, 1.0]])
    y = np.array([0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    return X, y
