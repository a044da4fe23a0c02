import numpy as np
import pytest

from misclassmodels import SingularHessianError, fit_adjusted
from misclassmodels.adapters.statsmodels import (
    MisclassLogit,
    MisclassLogitResults,
    MisclassSummary,
)


@pytest.fixture
def toy_data(misclass_data):
    X, _, y = misclass_data
    return X[:, :3], y


class TestMisclassLogit:
    def test_stores_endog_exog(self, toy_data):
        X, y = toy_data
        model = MisclassLogit(y, X, sensitivity=0.9, specificity=0.9)
        assert isinstance(model.endog, np.ndarray)
        assert isinstance(model.exog, np.ndarray)
        np.testing.assert_array_equal(model.endog, y)
        np.testing.assert_array_equal(model.exog, X)
        assert model.nobs == len(y)

    def test_exog_names_from_array(self, toy_data):
        X, y = toy_data
        model = MisclassLogit(y, X, sensitivity=0.9, specificity=0.9)
        assert model.exog_names == ["x1", "x2", "x3"]

    def test_exog_names_from_dataframe(self):
        pd = pytest.importorskip("pandas")
        data = pd.DataFrame({"A": [0, 1, 0], "B": [4, 5, 6], "C": [7, 8, 9]})
        model = MisclassLogit(data["A"], data[["B", "C"]], sensitivity=0.9, specificity=0.9)
        assert model.exog_names == ["B", "C"]

    def test_rates_are_required(self, toy_data):
        X, y = toy_data
        with pytest.raises(TypeError):
            MisclassLogit(y, X)

    def test_unknown_kwargs_raise_typeerror(self, toy_data):
        X, y = toy_data
        with pytest.raises(TypeError, match="offset"):
            MisclassLogit(y, X, sensitivity=0.9, specificity=0.9, offset=np.zeros(len(y)))

    def test_missing_raise_with_nan(self, toy_data):
        X, y = toy_data
        y = y.copy()
        y[2] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            MisclassLogit(y, X, sensitivity=0.9, specificity=0.9, missing="raise")

    def test_missing_drop_not_implemented(self, toy_data):
        X, y = toy_data
        with pytest.raises(NotImplementedError):
            MisclassLogit(y, X, sensitivity=0.9, specificity=0.9, missing="drop")

    def test_fit_returns_results(self, toy_data):
        X, y = toy_data
        results = MisclassLogit(y, X, sensitivity=0.9, specificity=0.9).fit()
        assert isinstance(results, MisclassLogitResults)

    def test_fit_options(self, toy_data):
        X, y = toy_data
        model = MisclassLogit(y, X, sensitivity=0.9, specificity=0.9)
        with pytest.raises(ValueError, match="method"):
            model.fit(method="lbfgs")
        with pytest.raises(TypeError, match="xtol"):
            model.fit(xtol=1e-4)
        newton = model.fit(method="newton")
        bfgs = model.fit(start_params=newton.params)
        np.testing.assert_allclose(newton.params, bfgs.params, atol=1e-4)


class TestMisclassLogitResults:
    @pytest.fixture
    def fitted_results(self, toy_data):
        X, y = toy_data
        return MisclassLogit(y, X, sensitivity=0.9, specificity=0.9).fit()

    def test_matches_fit_adjusted(self, toy_data, fitted_results):
        X, y = toy_data
        res = fit_adjusted(X, y, 0.9, 0.9)
        np.testing.assert_allclose(fitted_results.params, res.coef)
        np.testing.assert_allclose(fitted_results.bse, res.bse)
        np.testing.assert_allclose(fitted_results.pvalues, res.pvalues)
        np.testing.assert_allclose(fitted_results.naive_params, res.naive_coef)
        np.testing.assert_allclose(fitted_results.llf, res.loglik)
        assert fitted_results.converged
        assert fitted_results.df_model == 2
        assert fitted_results.df_resid == len(y) - 3
        assert fitted_results.mle_retvals == {
            "converged": True,
            "iterations": res.n_iter,
            "naive_converged": True,
        }

    def test_predict_default_uses_training_data(self, fitted_results):
        pred = fitted_results.predict()
        assert pred.shape == (fitted_results.nobs,)
        assert np.all((pred >= 0) & (pred <= 1))

    def test_predict_new_data(self, fitted_results):
        X_new = np.array([[1.0, 0.3, -1.0], [1.0, -2.0, 0.5]])
        pred = fitted_results.predict(X_new)
        assert pred.shape == (2,)
        assert np.all((pred >= 0) & (pred <= 1))
        linear = fitted_results.predict(X_new, linear=True)
        np.testing.assert_allclose(linear, X_new @ fitted_results.params)

    def test_conf_int_shape(self, fitted_results):
        ci = fitted_results.conf_int()
        assert ci.shape == (3, 2)
        assert np.all(ci[:, 0] < fitted_results.params)
        assert np.all(fitted_results.params < ci[:, 1])

    def test_cov_params(self, fitted_results):
        cov = fitted_results.cov_params()
        np.testing.assert_allclose(np.sqrt(np.diag(cov)), fitted_results.bse)
        np.testing.assert_allclose(cov, cov.T)

    def test_summary(self, fitted_results):
        summary = fitted_results.summary()
        assert isinstance(summary, MisclassSummary)
        text = summary.as_text()
        assert "Misclassification-Adjusted Logistic Regression Results" in text
        assert "Sensitivity:" in text and "0.9" in text
        for name in ("x1", "x2", "x3"):
            assert name in text
        assert str(summary) == text
        with pytest.raises(NotImplementedError):
            summary.as_html()

    def test_summary_frame(self, fitted_results):
        pytest.importorskip("pandas")
        frame = fitted_results.summary_frame()
        assert list(frame.index) == ["x1", "x2", "x3"]
        np.testing.assert_allclose(frame["coef"].to_numpy(), fitted_results.params)
        assert "naive coef" in frame.columns

    def test_inference_unavailable(self, toy_data):
        X, y = toy_data
        with pytest.warns(UserWarning):
            results = MisclassLogit(y, X, sensitivity=0.5, specificity=0.5).fit()
        assert results.params.shape == (3,)
        with pytest.raises(SingularHessianError):
            results.bse
        with pytest.raises(SingularHessianError):
            results.summary()
