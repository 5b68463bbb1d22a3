"""
Test Suite for Model Fitting Module
=====================================

Tests for the design matrix, the three fitting strategies and fit_models.
"""

from types import SimpleNamespace

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from famsize.evaluation import comparison_table
from famsize.exceptions import ConvergenceError
from famsize.model import (
    ModelFamily, FittedModel, build_design_matrix, information_criteria,
    PoissonStrategy, GammaStrategy, WeibullStrategy, get_strategy, fit_model, fit_models,
    LOG_SCALE
)
from famsize.prediction import predict_all
from famsize.preprocessing import derive_features


class TestDesignMatrix:
    """Tests for build_design_matrix."""

    def test_columns(self, families):
        """Test intercept, literacy indicator and months columns."""
        design = build_design_matrix(families, ['literacy', 'monthsSinceM'])

        assert list(design.columns) == ['Intercept', 'literacyyes', 'monthsSinceM']
        assert (design['Intercept'] == 1.0).all()
        expected = (families['literacy'] == 'yes').astype(float)
        pd.testing.assert_series_equal(design['literacyyes'], expected, check_names=False)

    def test_text_predictor_rejected(self, families):
        """Test that an uncoerced text column is rejected."""
        df = families.copy()
        df['literacy'] = df['literacy'].astype(str)

        with pytest.raises(TypeError, match="literacy"):
            build_design_matrix(df, ['literacy'])

    def test_missing_predictor(self, families):
        """Test that a missing predictor raises KeyError."""
        with pytest.raises(KeyError):
            build_design_matrix(families.drop(columns=['monthsSinceM']), ['monthsSinceM'])

    def test_column_mismatch(self, families):
        """Test that a design not matching the fitted columns is rejected."""
        with pytest.raises(ValueError):
            build_design_matrix(families, ['monthsSinceM'], columns=['Intercept', 'literacyyes'])


class TestModelFamily:
    """Tests for ModelFamily parsing."""

    def test_parse(self):
        assert ModelFamily.parse("Poisson") is ModelFamily.POISSON
        assert ModelFamily.parse(" weibull ") is ModelFamily.WEIBULL
        assert ModelFamily.parse(ModelFamily.GAMMA) is ModelFamily.GAMMA
        assert str(ModelFamily.GAMMA) == "Gamma"

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown model family"):
            ModelFamily.parse("negbin")


class TestFitModel:
    """Tests for fitting each family on the derived dataset."""

    @pytest.mark.parametrize("family, n_params", [
        (ModelFamily.POISSON, 3),
        (ModelFamily.GAMMA, 4),
        (ModelFamily.WEIBULL, 4),
    ])
    def test_converges(self, families, family, n_params):
        """Test convergence, parameter count and information criteria."""
        fitted = fit_model(families, family)

        assert isinstance(fitted, FittedModel)
        assert fitted.converged
        assert fitted.n_params == n_params
        assert fitted.n_obs == len(families)
        assert np.isfinite(fitted.log_likelihood)
        assert fitted.aic == pytest.approx(-2 * fitted.log_likelihood + 2 * n_params)
        assert fitted.bic == pytest.approx(
            -2 * fitted.log_likelihood + np.log(len(families)) * n_params
        )
        assert list(fitted.coefficients.columns) == ['estimate', 'std_error', 'statistic', 'p_value']

    def test_weibull_terms(self, families):
        """Test that the Weibull coefficient table includes the log scale."""
        fitted = fit_model(families, 'weibull')

        assert fitted.coefficients.index[-1] == LOG_SCALE
        assert fitted.dispersion == pytest.approx(np.exp(fitted.params[LOG_SCALE]))

    def test_gamma_dispersion(self, families):
        """Test that the Gamma dispersion comes from the fit's scale."""
        fitted = fit_model(families, 'gamma')

        assert fitted.dispersion == pytest.approx(float(fitted.results.scale))
        assert fitted.dispersion > 0

    def test_fit_is_deterministic(self, families):
        """Test that refitting the same data gives the same estimates."""
        first = fit_model(families, 'poisson')
        second = fit_model(families, 'poisson')

        np.testing.assert_allclose(first.params.to_numpy(), second.params.to_numpy())
        assert first.log_likelihood == second.log_likelihood

    def test_poisson_matches_statsmodels_aic(self, families):
        """Test that the Poisson AIC agrees with the library's own."""
        fitted = fit_model(families, 'poisson')

        assert fitted.aic == pytest.approx(fitted.results.aic)

    def test_gamma_rejects_zero_response(self):
        """Test that non-positive responses are rejected for Gamma."""
        df = pd.DataFrame({'x': [1.0, 2.0, 3.0], 'y': [0.0, 1.0, 2.0]})

        with pytest.raises(ValueError, match="strictly positive"):
            get_strategy('gamma').fit(df, predictors=('x',), response='y')

    def test_not_converged(self, families):
        """Test that an exhausted iteration limit raises ConvergenceError."""
        config = {'model': {'maxiter': 1}}

        with pytest.raises(ConvergenceError) as excinfo:
            fit_model(families, 'poisson', config)

        assert excinfo.value.family is ModelFamily.POISSON


class TestDegenerateFits:
    """Tests that unidentified or degenerate fits are failures, not results."""

    @pytest.fixture
    def two_families(self):
        raw = pd.DataFrame({
            'children': [1, 3],
            'ageMarried': ['20to22', '22to25'],
            'literacy': ['yes', 'no'],
            'monthsSinceM': [12, 48],
        })
        return derive_features(raw)

    @pytest.mark.parametrize("family", ['gamma', 'weibull'])
    def test_too_few_rows_for_scale(self, two_families, family):
        """Test that a dispersion or scale needs more rows than parameters."""
        with pytest.raises(ConvergenceError, match="cannot identify 4 parameters"):
            fit_model(two_families, family)

    def test_saturated_poisson_still_fits(self, two_families):
        fitted = fit_model(two_families, 'poisson')

        assert fitted.n_obs == 2
        assert np.isfinite(fitted.coefficients['std_error']).all()

    @pytest.mark.parametrize("family", ['poisson', 'gamma', 'weibull'])
    def test_single_literacy_level(self, families, family):
        """Test that an indicator equal to the intercept is rejected."""
        df = families.copy()
        df['literacy'] = pd.Categorical(['yes'] * len(df), categories=['no', 'yes'], ordered=True)

        with pytest.raises(ConvergenceError, match="rank 2"):
            fit_model(df, family)

    def test_non_finite_dispersion(self, families, monkeypatch):
        """Test that an infinite dispersion estimate is a failure."""
        monkeypatch.setattr(GammaStrategy, '_dispersion', lambda self, results: np.inf)

        with pytest.raises(ConvergenceError, match="dispersion"):
            fit_model(families, 'gamma')

    def test_non_finite_log_likelihood(self, families, monkeypatch):
        real_run = GammaStrategy._run

        def run_with_nan_llf(self, y, design):
            results, converged, iterations = real_run(self, y, design)
            broken = SimpleNamespace(
                params=results.params, bse=results.bse, tvalues=results.tvalues,
                pvalues=results.pvalues, scale=results.scale, llf=np.nan
            )
            return broken, converged, iterations

        monkeypatch.setattr(GammaStrategy, '_run', run_with_nan_llf)

        with pytest.raises(ConvergenceError, match="log-likelihood"):
            fit_model(families, 'gamma')


class TestParameterRecovery:
    """Tests that known coefficients are recovered from simulated data."""

    @staticmethod
    def _poisson_error(n, seed):
        rng = np.random.default_rng(seed)
        x = rng.uniform(0, 2, size=n)
        y = rng.poisson(np.exp(0.5 + 0.3 * x))
        df = pd.DataFrame({'x': x, 'y': y})
        fitted = PoissonStrategy().fit(df, predictors=('x',), response='y')
        return np.abs(fitted.params[['Intercept', 'x']].to_numpy() - np.array([0.5, 0.3]))

    def test_poisson(self):
        errors = self._poisson_error(5000, seed=0)

        assert (errors < 0.08).all()

    def test_poisson_consistency(self):
        """Test that the estimation error shrinks as the sample grows."""
        small = np.mean([self._poisson_error(250, seed).sum() for seed in range(10)])
        large = np.mean([self._poisson_error(10000, seed).sum() for seed in range(10)])

        assert large < small / 2

    def test_weibull(self):
        rng = np.random.default_rng(1)
        x = rng.uniform(0, 2, size=3000)
        log_t = 1.0 + 0.5 * x + 0.3 * np.log(rng.exponential(size=3000))
        df = pd.DataFrame({'x': x, 't': np.exp(log_t)})

        fitted = WeibullStrategy().fit(df, predictors=('x',), response='t')

        assert fitted.params['Intercept'] == pytest.approx(1.0, abs=0.05)
        assert fitted.params['x'] == pytest.approx(0.5, abs=0.05)
        assert fitted.dispersion == pytest.approx(0.3, abs=0.03)


class TestFitModels:
    """Tests for fitting all families together."""

    def test_fits_all_families(self, families):
        fitted, failures = fit_models(families)

        assert list(fitted) == [ModelFamily.POISSON, ModelFamily.GAMMA, ModelFamily.WEIBULL]
        assert failures == {}

    def test_report_policy_collects_failures(self, families, monkeypatch):
        """Test that one family's failure is collected and the others still fit."""
        def singular(self, y, design):
            raise np.linalg.LinAlgError("Singular matrix")

        monkeypatch.setattr(WeibullStrategy, '_run', singular)
        config = {'model': {'on_convergence_failure': 'report'}}

        fitted, failures = fit_models(families, config=config)
        predictions = predict_all(fitted, families)
        table = comparison_table(
            families['family_size'], fitted, predictions, families=list(ModelFamily)
        )

        assert list(fitted) == [ModelFamily.POISSON, ModelFamily.GAMMA]
        assert list(failures) == [ModelFamily.WEIBULL]
        assert "LinAlgError" in failures[ModelFamily.WEIBULL].detail
        assert table.isna().all(axis=1).tolist() == [False, False, True]

    def test_abort_policy_raises(self, families):
        config = {'model': {'maxiter': 1, 'on_convergence_failure': 'abort'}}

        with pytest.raises(ConvergenceError):
            fit_models(families, ['poisson'], config)

    def test_unknown_policy(self, families):
        with pytest.raises(ValueError):
            fit_models(families, config={'model': {'on_convergence_failure': 'retry'}})


def test_information_criteria():
    """Test AIC and BIC arithmetic."""
    aic, bic = information_criteria(-100.0, 3, 50)

    assert aic == pytest.approx(206.0)
    assert bic == pytest.approx(200.0 + 3 * np.log(50))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
