"""
Model Fitting Module - Phase 3
===============================

Fits competing regressions of family size on literacy and time since
marriage.

Features:
    - Poisson GLM with log link (IRLS)
    - Gamma GLM with log link (IRLS)
    - Weibull accelerated-failure-time model (maximum likelihood, Newton)
    - Shared design matrix so the three fits are directly comparable
    - Per-family convergence reporting
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.base.model import GenericLikelihoodModel
from statsmodels.tools.sm_exceptions import ConvergenceWarning as SmConvergenceWarning

from .exceptions import ConvergenceError

logger = logging.getLogger(__name__)

DEFAULT_PREDICTORS = ("literacy", "monthsSinceM")
DEFAULT_RESPONSE = "family_size"
INTERCEPT = "Intercept"
LOG_SCALE = "Log(scale)"


class ModelFamily(Enum):
    """Regression families compared by the pipeline."""

    POISSON = "poisson"
    GAMMA = "gamma"
    WEIBULL = "weibull"

    def __str__(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: Any) -> 'ModelFamily':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown model family: {value!r}. Choose from: {[f.value for f in cls]}"
            ) from None


ALL_FAMILIES = (ModelFamily.POISSON, ModelFamily.GAMMA, ModelFamily.WEIBULL)


def build_design_matrix(
    df: pd.DataFrame,
    predictors: Sequence[str],
    columns: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Build the regression design matrix.

    Categorical predictors contribute one indicator per non-baseline level,
    named ``<predictor><level>`` (e.g. ``literacyyes``). Numeric and boolean
    predictors are used as floats.

    Args:
        df: Derived dataset
        predictors: Predictor column names
        columns: Expected design columns (checked when given)

    Returns:
        DataFrame with an Intercept column followed by predictor columns

    Raises:
        KeyError: If a predictor column is missing
        TypeError: If a predictor is neither numeric nor categorical
        ValueError: If the design columns differ from ``columns``
    """
    design = pd.DataFrame({INTERCEPT: 1.0}, index=df.index)

    for name in predictors:
        if name not in df.columns:
            raise KeyError(f"Predictor column missing: {name}")
        col = df[name]

        if isinstance(col.dtype, pd.CategoricalDtype):
            for level in col.cat.categories[1:]:
                design[f"{name}{level}"] = (col == level).astype(float)
        elif pd.api.types.is_bool_dtype(col) or pd.api.types.is_numeric_dtype(col):
            design[name] = col.astype(float)
        else:
            raise TypeError(
                f"Predictor '{name}' has dtype {col.dtype}; expected numeric or categorical"
            )

    if columns is not None and list(design.columns) != list(columns):
        raise ValueError(
            f"Design columns {list(design.columns)} do not match fitted columns {list(columns)}"
        )

    return design


def information_criteria(log_likelihood: float, n_params: int, n_obs: int) -> Tuple[float, float]:
    """Return (AIC, BIC) counting every estimated parameter."""
    aic = -2.0 * log_likelihood + 2.0 * n_params
    bic = -2.0 * log_likelihood + np.log(n_obs) * n_params
    return float(aic), float(bic)


def _coefficient_frame(
    names: Sequence[str],
    results: Any
) -> pd.DataFrame:
    return pd.DataFrame(
        {
            'estimate': np.asarray(results.params, dtype=float),
            'std_error': np.asarray(results.bse, dtype=float),
            'statistic': np.asarray(results.tvalues, dtype=float),
            'p_value': np.asarray(results.pvalues, dtype=float),
        },
        index=pd.Index(list(names), name='term')
    )


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Result of fitting one model family.

    ``coefficients`` is indexed by term and holds estimate, std_error,
    statistic (Wald z) and p_value. ``dispersion`` is the Gamma scale,
    the Weibull scale sigma, or 1.0 for Poisson.
    """

    family: ModelFamily
    predictors: Tuple[str, ...]
    response: str
    design_columns: Tuple[str, ...]
    coefficients: pd.DataFrame
    log_likelihood: float
    aic: float
    bic: float
    dispersion: float
    n_obs: int
    n_params: int
    converged: bool
    iterations: Optional[int]
    data: pd.DataFrame = field(repr=False)
    results: Any = field(repr=False)

    @property
    def params(self) -> pd.Series:
        return self.coefficients['estimate']

    def linear_predictor(self, design: pd.DataFrame) -> pd.Series:
        """Return X @ beta for a design matrix built on this model's columns."""
        beta = self.coefficients.loc[list(self.design_columns), 'estimate'].to_numpy()
        return pd.Series(design.to_numpy() @ beta, index=design.index)


class WeibullAFT(GenericLikelihoodModel):
    """
    Weibull accelerated-failure-time regression for uncensored durations.

    ``log T = X beta + sigma * W`` with W standard minimum extreme value.
    The last parameter is log(sigma). Score and Hessian are analytic.
    """

    def __init__(self, endog, exog, **kwds):
        super().__init__(endog, exog, extra_params_names=[LOG_SCALE], **kwds)

    def _standardized(self, params):
        params = np.asarray(params)
        sigma = np.exp(params[-1])
        z = (np.log(self.endog) - self.exog @ params[:-1]) / sigma
        return z, sigma

    def loglikeobs(self, params):
        z, sigma = self._standardized(params)
        return z - np.exp(z) - np.log(sigma) - np.log(self.endog)

    def score_obs(self, params):
        z, sigma = self._standardized(params)
        ez = np.exp(z)
        d_beta = ((ez - 1.0) / sigma)[:, None] * self.exog
        d_log_sigma = z * (ez - 1.0) - 1.0
        return np.column_stack([d_beta, d_log_sigma])

    def score(self, params):
        return self.score_obs(params).sum(axis=0)

    def hessian(self, params):
        z, sigma = self._standardized(params)
        ez = np.exp(z)
        x = self.exog
        k = x.shape[1]
        hess = np.empty((k + 1, k + 1))
        hess[:k, :k] = -(x * (ez / sigma ** 2)[:, None]).T @ x
        cross = -(x * ((z * ez + ez - 1.0) / sigma)[:, None]).sum(axis=0)
        hess[:k, k] = cross
        hess[k, :k] = cross
        hess[k, k] = -np.sum(z * (ez + z * ez - 1.0))
        return hess

    def start_params_from_ols(self) -> np.ndarray:
        """Least squares on log(T), shifted for the extreme-value mean."""
        log_t = np.log(self.endog)
        beta, *_ = np.linalg.lstsq(self.exog, log_t, rcond=None)
        resid_sd = float(np.std(log_t - self.exog @ beta))
        sigma = resid_sd * np.sqrt(6.0) / np.pi if resid_sd > 0 else 0.1
        # E[W] = -euler_gamma; assumes the first design column is the intercept
        beta[0] += np.euler_gamma * sigma
        return np.append(beta, np.log(sigma))

    def fit(self, start_params=None, method='newton', maxiter=100, **kwds):
        if start_params is None:
            start_params = self.start_params_from_ols()
        return super().fit(start_params=start_params, method=method, maxiter=maxiter, **kwds)


class FittingStrategy(ABC):
    """Fits one model family against a response and predictors."""

    family: ModelFamily
    # Parameters estimated beyond the regression coefficients
    extra_params: int = 0

    def __init__(self, maxiter: int = 100, tol: float = 1e-8):
        self.maxiter = maxiter
        self.tol = tol

    def _prepare(
        self,
        data: pd.DataFrame,
        predictors: Sequence[str],
        response: str
    ) -> Tuple[pd.Series, pd.DataFrame]:
        if response not in data.columns:
            raise KeyError(f"Response column missing: {response}")
        design = build_design_matrix(data, predictors)
        y = data[response].astype(float)

        if y.isna().any() or design.isna().any().any():
            raise ValueError("Response and predictors must not contain missing values")
        if self.family is ModelFamily.POISSON and (y < 0).any():
            raise ValueError("Poisson response must be non-negative")
        if self.family is not ModelFamily.POISSON and (y <= 0).any():
            raise ValueError(f"{self.family} response must be strictly positive")

        rank = int(np.linalg.matrix_rank(design.to_numpy()))
        if rank < min(design.shape):
            raise ConvergenceError(
                self.family,
                f"design matrix has rank {rank} for columns {list(design.columns)}; "
                f"coefficients are not identified"
            )

        n_params = design.shape[1] + self.extra_params
        if len(y) <= n_params:
            if self.extra_params:
                raise ConvergenceError(
                    self.family,
                    f"{len(y)} observations cannot identify {n_params} parameters"
                )
            logger.warning(
                f"{self.family}: {len(y)} observations for {n_params} parameters; "
                f"the fit is saturated and its standard errors are not meaningful"
            )

        return y, design

    @abstractmethod
    def _run(self, y: pd.Series, design: pd.DataFrame) -> Tuple[Any, bool, Optional[int]]:
        """Return (results, converged, iterations)."""

    @abstractmethod
    def _dispersion(self, results: Any) -> float:
        ...

    def _term_names(self, design: pd.DataFrame) -> List[str]:
        return list(design.columns)

    def fit(
        self,
        data: pd.DataFrame,
        predictors: Sequence[str] = DEFAULT_PREDICTORS,
        response: str = DEFAULT_RESPONSE
    ) -> FittedModel:
        """
        Fit the model family.

        Args:
            data: Derived dataset
            predictors: Predictor column names
            response: Response column name

        Returns:
            FittedModel for this family

        Raises:
            ConvergenceError: If the coefficients are not identified, the optimizer
                fails, or the estimates, likelihood or standard errors are not finite
        """
        y, design = self._prepare(data, predictors, response)
        logger.info(f"Fitting {self.family} model on {len(y)} observations...")

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", SmConvergenceWarning)
                results, converged, iterations = self._run(y, design)
        except (np.linalg.LinAlgError, FloatingPointError, OverflowError, ZeroDivisionError) as e:
            raise ConvergenceError(self.family, f"{type(e).__name__}: {e}") from e

        if not converged:
            raise ConvergenceError(
                self.family, f"no convergence within {self.maxiter} iterations"
            )
        if not np.all(np.isfinite(np.asarray(results.params, dtype=float))):
            raise ConvergenceError(self.family, "non-finite parameter estimates")

        coefficients = _coefficient_frame(self._term_names(design), results)
        log_likelihood = float(results.llf)
        dispersion = float(self._dispersion(results))

        if not np.isfinite(log_likelihood):
            raise ConvergenceError(self.family, "log-likelihood is not finite")
        if not np.isfinite(dispersion) or dispersion <= 0:
            raise ConvergenceError(self.family, f"invalid dispersion estimate {dispersion}")
        bad_se = coefficients.index[~np.isfinite(coefficients['std_error'])].tolist()
        if bad_se:
            raise ConvergenceError(self.family, f"standard errors undefined for {bad_se}")

        n_obs = int(len(y))
        n_params = int(design.shape[1] + self.extra_params)
        aic, bic = information_criteria(log_likelihood, n_params, n_obs)

        fitted = FittedModel(
            family=self.family,
            predictors=tuple(predictors),
            response=response,
            design_columns=tuple(design.columns),
            coefficients=coefficients,
            log_likelihood=log_likelihood,
            aic=aic,
            bic=bic,
            dispersion=dispersion,
            n_obs=n_obs,
            n_params=n_params,
            converged=True,
            iterations=iterations,
            data=data,
            results=results
        )

        logger.info(
            f"{self.family} fit converged in {iterations} iterations: "
            f"logLik={log_likelihood:.3f}, AIC={aic:.3f}, BIC={bic:.3f}"
        )
        return fitted


class GLMStrategy(FittingStrategy):
    """Generalized linear model fitted by iteratively reweighted least squares."""

    def _glm_family(self) -> sm.families.Family:
        raise NotImplementedError

    def _run(self, y, design):
        model = sm.GLM(y, design, family=self._glm_family())
        results = model.fit(maxiter=self.maxiter, tol=self.tol)
        converged = bool(getattr(results, 'converged', True))
        iterations = results.fit_history.get('iteration')
        return results, converged, iterations


class PoissonStrategy(GLMStrategy):
    family = ModelFamily.POISSON

    def _glm_family(self):
        return sm.families.Poisson(link=sm.families.links.Log())

    def _dispersion(self, results):
        return 1.0


class GammaStrategy(GLMStrategy):
    family = ModelFamily.GAMMA
    extra_params = 1

    def _glm_family(self):
        return sm.families.Gamma(link=sm.families.links.Log())

    def _dispersion(self, results):
        return results.scale


class WeibullStrategy(FittingStrategy):
    family = ModelFamily.WEIBULL
    extra_params = 1

    def __init__(self, maxiter: int = 100, tol: float = 1e-8, method: str = 'newton'):
        super().__init__(maxiter=maxiter, tol=tol)
        self.method = method

    def _run(self, y, design):
        model = WeibullAFT(y.to_numpy(), design.to_numpy())
        fit_kwds = {'tol': self.tol} if self.method == 'newton' else {}
        results = model.fit(method=self.method, maxiter=self.maxiter, disp=False, **fit_kwds)
        retvals = results.mle_retvals or {}
        converged = bool(retvals.get('converged', False))
        iterations = retvals.get('iterations')
        return results, converged, iterations

    def _term_names(self, design):
        return list(design.columns) + [LOG_SCALE]

    def _dispersion(self, results):
        return float(np.exp(np.asarray(results.params)[-1]))


STRATEGIES = {
    ModelFamily.POISSON: PoissonStrategy,
    ModelFamily.GAMMA: GammaStrategy,
    ModelFamily.WEIBULL: WeibullStrategy,
}


def get_strategy(family: Any, model_config: Optional[Dict[str, Any]] = None) -> FittingStrategy:
    """Return the fitting strategy for a family, configured from the model section."""
    family = ModelFamily.parse(family)
    model_config = model_config or {}
    kwargs = {
        'maxiter': model_config.get('maxiter', 100),
        'tol': model_config.get('tol', 1e-8),
    }
    if family is ModelFamily.WEIBULL:
        kwargs['method'] = model_config.get('weibull_method', 'newton')
    return STRATEGIES[family](**kwargs)


def fit_model(
    data: pd.DataFrame,
    family: Any,
    config: Optional[Dict[str, Any]] = None
) -> FittedModel:
    """
    Fit a single model family using configuration parameters.

    Args:
        data: Derived dataset
        family: ModelFamily or its name
        config: Full configuration dictionary (optional)

    Returns:
        FittedModel
    """
    model_config = (config or {}).get('model', {})
    strategy = get_strategy(family, model_config)
    return strategy.fit(
        data,
        predictors=tuple(model_config.get('predictors', DEFAULT_PREDICTORS)),
        response=model_config.get('response', DEFAULT_RESPONSE)
    )


def fit_models(
    data: pd.DataFrame,
    families: Optional[Sequence[Any]] = None,
    config: Optional[Dict[str, Any]] = None
) -> Tuple[Dict[ModelFamily, FittedModel], Dict[ModelFamily, ConvergenceError]]:
    """
    Fit every requested family on the same dataset.

    Each fit is independent. A ConvergenceError is either collected
    (``on_convergence_failure: report``) or re-raised
    (``on_convergence_failure: abort``).

    Args:
        data: Derived dataset
        families: Families to fit (default: from config, else all three)
        config: Full configuration dictionary (optional)

    Returns:
        Tuple of (fitted models by family, convergence failures by family)
    """
    config = config or {}
    model_config = config.get('model', {})
    policy = model_config.get('on_convergence_failure', 'report')
    if policy not in ('report', 'abort'):
        raise ValueError(f"Unknown on_convergence_failure policy: {policy!r}")

    if families is None:
        families = model_config.get('families', ALL_FAMILIES)
    families = [ModelFamily.parse(f) for f in families]

    logger.info("=" * 60)
    logger.info("STARTING MODEL FITTING (Phase 3)")
    logger.info("=" * 60)
    logger.info(f"Families: {[str(f) for f in families]}")
    logger.info(f"Predictors: {model_config.get('predictors', list(DEFAULT_PREDICTORS))}")

    fitted: Dict[ModelFamily, FittedModel] = {}
    failures: Dict[ModelFamily, ConvergenceError] = {}

    for family in families:
        try:
            fitted[family] = fit_model(data, family, config)
        except ConvergenceError as e:
            if policy == 'abort':
                raise
            logger.error(str(e))
            failures[family] = e

    logger.info("=" * 60)
    logger.info(f"MODEL FITTING COMPLETE: {len(fitted)} fitted, {len(failures)} failed")
    logger.info("=" * 60)

    return fitted, failures


def print_model_summary(fitted: FittedModel) -> None:
    """
    Print a summary of a fitted model.

    Args:
        fitted: FittedModel instance
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY - {str(fitted.family).upper()}")
    print("=" * 50)
    print(f"Response: {fitted.response}")
    print(f"Predictors: {', '.join(fitted.predictors)}")
    print(f"Observations: {fitted.n_obs}")
    print(f"Estimated parameters: {fitted.n_params}")
    print(f"Iterations: {fitted.iterations}")
    print(f"\nLog-likelihood: {fitted.log_likelihood:.4f}")
    print(f"AIC: {fitted.aic:.4f}")
    print(f"BIC: {fitted.bic:.4f}")
    if fitted.family is ModelFamily.GAMMA:
        print(f"Dispersion: {fitted.dispersion:.4f}")
    elif fitted.family is ModelFamily.WEIBULL:
        print(f"Scale: {fitted.dispersion:.4f}")
    print("\nCoefficients:")
    print(fitted.coefficients.round(6).to_string())
    print("=" * 50 + "\n")
