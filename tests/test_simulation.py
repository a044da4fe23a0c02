import numpy as np
import pytest
import warnings
from dataclasses import replace
from sklearn.exceptions import ConvergenceWarning

from misclassmodels import simulation
from misclassmodels import (
    InferenceUnavailableWarning,
    InvalidInputError,
    SweepConfig,
    SweepRecord,
    run_sweep,
    simulate_misclassified,
    summarize_sweep,
)
from misclassmodels.simulation import coverage, mean_bias


class TestSimulateMisclassified:
    def test_shapes_and_intercept(self):
        X, y_true, y_obs = simulate_misclassified([0.1, 1.0, -1.0], 50, 0.9, 0.8, rng=0)
        assert X.shape == (50, 3)
        assert y_true.shape == y_obs.shape == (50,)
        np.testing.assert_array_equal(X[:, 0], 1.0)
        assert set(np.unique(y_obs)) <= {0.0, 1.0}

    def test_reproducible(self):
        a = simulate_misclassified([0.1, 1.0], 100, 0.9, 0.9, rng=42)
        b = simulate_misclassified([0.1, 1.0], 100, 0.9, 0.9, rng=np.random.default_rng(42))
        for left, right in zip(a, b):
            np.testing.assert_array_equal(left, right)

    def test_relabeling_rates(self):
        _, y_true, y_obs = simulate_misclassified([0.0, 0.5], 40000, 0.85, 0.95, rng=1)
        sens = y_obs[y_true == 1].mean()
        spec = 1 - y_obs[y_true == 0].mean()
        assert sens == pytest.approx(0.85, abs=0.01)
        assert spec == pytest.approx(0.95, abs=0.01)

    def test_perfect_measurement(self):
        _, y_true, y_obs = simulate_misclassified([0.0, 1.0], 500, 1.0, 1.0, rng=3)
        np.testing.assert_array_equal(y_true, y_obs)

    def test_rejects_bad_arguments(self):
        with pytest.raises(InvalidInputError):
            simulate_misclassified([], 10, 0.9, 0.9)
        with pytest.raises(InvalidInputError):
            simulate_misclassified([0.0, 1.0], 1, 0.9, 0.9)
        with pytest.raises(InvalidInputError):
            simulate_misclassified([0.0, 1.0], 10, 1.1, 0.9)


class TestSweepConfig:
    def test_grid_order(self):
        config = SweepConfig(
            betas=[0.0, 1.0], sensitivities=[0.8, 0.9], specificities=[0.95], n_reps=2
        )
        assert config.grid() == [
            (0.8, 0.95, 0),
            (0.8, 0.95, 1),
            (0.9, 0.95, 0),
            (0.9, 0.95, 1),
        ]

    def test_sequences_become_tuples(self):
        config = SweepConfig(betas=np.array([0.0, 1.0]), sensitivities=[0.9])
        assert config.betas == (0.0, 1.0)
        assert config.sensitivities == (0.9,)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"betas": []},
            {"betas": [0.0], "sensitivities": []},
            {"betas": [0.0], "sensitivities": [0.0]},
            {"betas": [0.0], "specificities": [1.5]},
            {"betas": [0.0], "n_reps": 0},
            {"betas": [0.0], "n_samples": 1},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(InvalidInputError):
            SweepConfig(**kwargs)


class TestRunSweep:
    @pytest.fixture
    def config(self):
        return SweepConfig(
            betas=[-0.5, 1.0],
            sensitivities=[0.9, 1.0],
            specificities=[0.9, 1.0],
            n_reps=3,
            n_samples=400,
            seed=123,
        )

    def test_one_record_per_task(self, config):
        records = run_sweep(config)
        assert len(records) == len(config.grid())
        for record, (se, sp, rep) in zip(records, config.grid()):
            assert isinstance(record, SweepRecord)
            assert (record.sensitivity, record.specificity, record.rep) == (se, sp, rep)
            assert record.ok
            assert record.naive_converged
            np.testing.assert_array_equal(record.true_coef, config.betas)

    def test_deterministic(self, config):
        first = run_sweep(config)
        second = run_sweep(config)
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.coef, b.coef)

    def test_independent_of_n_jobs(self, config):
        sequential = run_sweep(config)
        parallel = run_sweep(replace(config, n_jobs=2))
        for a, b in zip(sequential, parallel):
            np.testing.assert_allclose(a.coef, b.coef)
            np.testing.assert_allclose(a.naive_coef, b.naive_coef)

    def test_repetitions_differ(self, config):
        records = run_sweep(config)
        assert not np.allclose(records[0].coef, records[1].coef)

    def test_perfect_measurement_cell_matches_naive(self, config):
        records = run_sweep(config)
        for record in records:
            if record.sensitivity == record.specificity == 1.0:
                np.testing.assert_allclose(record.coef, record.naive_coef, atol=1e-6)

    def test_naive_nonconvergence_is_recorded_without_warning(self):
        # two records with two coefficients are always (quasi-)separated
        config = SweepConfig(
            betas=[0.0, 1.0], sensitivities=[1.0], specificities=[1.0], n_reps=3,
            n_samples=2, seed=0,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            records = run_sweep(config)
        assert len(records) == 3
        assert all(not r.naive_converged for r in records)

    def test_missing_inference_is_recorded_without_warning(self):
        config = SweepConfig(
            betas=[0.0, 1.0], sensitivities=[0.5], specificities=[0.5], n_reps=2,
            n_samples=200, seed=0,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("error", InferenceUnavailableWarning)
            records = run_sweep(config)
        assert all(r.ok and not r.inference_available for r in records)
        assert all(r.bse is None for r in records)

    def test_failures_are_recorded(self, monkeypatch):
        config = SweepConfig(
            betas=[0.0, 1.0], sensitivities=[0.9], specificities=[0.9], n_reps=2,
            n_samples=200, seed=0,
        )

        def always_fail(*args, **kwargs):
            raise simulation.OptimizationFailureError("did not converge")

        monkeypatch.setattr(simulation, "fit_adjusted", always_fail)
        records = run_sweep(config)
        assert all(not r.ok for r in records)
        assert all(r.error.startswith("OptimizationFailureError") for r in records)
        with pytest.raises(ValueError, match="No successful fits"):
            mean_bias(records)


def _record(coef, naive, lower, upper, truth=(0.0, 1.0)):
    return SweepRecord(
        sensitivity=0.9,
        specificity=0.9,
        rep=0,
        true_coef=np.array(truth),
        naive_coef=np.array(naive),
        coef=np.array(coef),
        bse=np.ones(2),
        ci_lower=np.array(lower),
        ci_upper=np.array(upper),
        converged=True,
        inference_available=True,
    )


def test_mean_bias_and_coverage():
    records = [
        _record([0.1, 1.2], [0.0, 0.6], [-0.5, 1.1], [0.5, 1.3]),
        _record([-0.1, 0.9], [0.2, 0.7], [-0.4, 0.5], [0.3, 0.95]),
    ]
    naive_bias, adjusted_bias = mean_bias(records)
    np.testing.assert_allclose(naive_bias, [0.1, -0.35])
    np.testing.assert_allclose(adjusted_bias, [0.0, 0.05])
    np.testing.assert_allclose(coverage(records), [1.0, 0.0])


def test_summarize_sweep():
    pytest.importorskip("pandas")
    config = SweepConfig(
        betas=[-0.5, 1.0],
        sensitivities=[0.9],
        specificities=[0.85, 1.0],
        n_reps=3,
        n_samples=300,
        seed=9,
    )
    table = summarize_sweep(run_sweep(config))
    assert len(table) == 2 * 2
    assert list(table.columns) == [
        "sensitivity",
        "specificity",
        "coef",
        "true",
        "naive_bias",
        "adjusted_bias",
        "coverage",
        "n_ok",
        "n_failed",
        "n_naive_nonconverged",
    ]
    assert (table["n_ok"] + table["n_failed"] == 3).all()
    assert table["coverage"].between(0, 1).all()
    assert (table["n_naive_nonconverged"] == 0).all()
