"""
Model Evaluation Module - Phase 5
==================================

Compares the fitted models and produces residual diagnostics.

Features:
    - AIC, BIC and log-likelihood from each fit's native likelihood
    - RMSE on the response scale
    - Pearson residuals with family-specific variance functions
    - Comparison and coefficient tables (3 significant digits for display)
    - Density overlay and residual diagnostic plots
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import special
from sklearn.metrics import mean_absolute_error, mean_squared_error
from statsmodels.nonparametric.smoothers_lowess import lowess

from .exceptions import ConvergenceError
from .model import ALL_FAMILIES, FittedModel, ModelFamily, build_design_matrix
from .prediction import PredictionSet

logger = logging.getLogger(__name__)

COMPARISON_COLUMNS = ["AIC", "BIC", "Log-Likelihood", "RMSE"]
COEFFICIENT_COLUMNS = ["Estimate", "Std.Error", "z value", "p-value"]
P_VALUE_FLOOR = 2.2e-16


def signif(value: float, digits: int = 3) -> float:
    """Round to a number of significant digits; NaN, inf and 0 pass through."""
    if value is None or not np.isfinite(value) or value == 0:
        return value
    return round(float(value), digits - 1 - int(np.floor(np.log10(abs(value)))))


def format_p_value(p: float) -> str:
    """Format a p-value for display, flooring tiny values at 2.2e-16."""
    if p is None or not np.isfinite(p):
        return "NA"
    if p < P_VALUE_FLOOR:
        return f"< {P_VALUE_FLOOR:.1e}"
    return f"{p:.3g}"


def calculate_rmse(observed: pd.Series, predicted: pd.Series) -> float:
    """Root mean squared error on the response scale."""
    predicted = predicted.reindex(observed.index)
    return float(np.sqrt(mean_squared_error(observed.to_numpy(float), predicted.to_numpy(float))))


def calculate_metrics(
    observed: pd.Series,
    predictions: Dict[ModelFamily, PredictionSet]
) -> Dict[str, Any]:
    """
    Calculate error metrics for each model's predictions.

    Args:
        observed: Observed response values
        predictions: PredictionSet by family

    Returns:
        Dictionary with per-model metrics
    """
    metrics = {'per_model': {}, 'n_samples': int(len(observed))}

    for family, prediction in predictions.items():
        predicted = prediction.values.reindex(observed.index)
        errors = observed.to_numpy(float) - predicted.to_numpy(float)
        metrics['per_model'][str(family)] = {
            'rmse': calculate_rmse(observed, predicted),
            'mae': float(mean_absolute_error(observed.to_numpy(float), predicted.to_numpy(float))),
            'mean_error': float(np.mean(errors)),
            'max_error': float(np.max(np.abs(errors))),
            'prediction_kind': prediction.kind
        }

    return metrics


def pearson_residuals(
    fitted: FittedModel,
    data: Optional[pd.DataFrame] = None
) -> pd.Series:
    """
    Pearson residuals (y - mu) / sqrt(V(mu)).

    GLMs use their family variance function (Poisson mu, Gamma mu^2).
    The Weibull model uses its distribution mean and variance:
    mu = lambda * Gamma(1 + sigma) and
    V = lambda^2 * (Gamma(1 + 2 sigma) - Gamma(1 + sigma)^2), lambda = exp(X beta).

    Args:
        fitted: FittedModel
        data: Dataset with the response and predictors (default: training data)

    Returns:
        Series of residuals indexed like ``data``
    """
    if data is None:
        data = fitted.data

    observed = data[fitted.response].astype(float)
    design = build_design_matrix(data, fitted.predictors, columns=fitted.design_columns)
    location = np.exp(fitted.linear_predictor(design))

    if fitted.family is ModelFamily.WEIBULL:
        sigma = fitted.dispersion
        g1 = special.gamma(1.0 + sigma)
        g2 = special.gamma(1.0 + 2.0 * sigma)
        mu = location * g1
        variance = location ** 2 * (g2 - g1 ** 2)
    else:
        mu = location
        variance = pd.Series(
            fitted.results.model.family.variance(mu.to_numpy()), index=mu.index
        )

    residuals = (observed - mu) / np.sqrt(variance)
    residuals.name = f"{fitted.family.value}_pearson"
    return residuals


def _ordered(families: Sequence[ModelFamily]) -> List[ModelFamily]:
    return [f for f in ALL_FAMILIES if f in families]


def comparison_table(
    observed: pd.Series,
    fitted_models: Dict[ModelFamily, FittedModel],
    predictions: Dict[ModelFamily, PredictionSet],
    families: Optional[Sequence[Any]] = None
) -> pd.DataFrame:
    """
    Build the model comparison table.

    Rows are the requested families; a family without a fitted model
    (e.g. failed to converge) is a row of NaN.

    Args:
        observed: Observed response values
        fitted_models: Fitted models by family
        predictions: PredictionSet by family
        families: Families to report (default: fitted families)

    Returns:
        DataFrame indexed by model name with AIC, BIC, Log-Likelihood and RMSE
    """
    if families is None:
        families = _ordered(list(fitted_models))
    families = [ModelFamily.parse(f) for f in families]

    rows = {}
    for family in families:
        fitted = fitted_models.get(family)
        if fitted is None:
            rows[str(family)] = [np.nan] * len(COMPARISON_COLUMNS)
            continue
        rmse = calculate_rmse(observed, predictions[family].values) if family in predictions else np.nan
        rows[str(family)] = [fitted.aic, fitted.bic, fitted.log_likelihood, rmse]

    table = pd.DataFrame.from_dict(rows, orient='index', columns=COMPARISON_COLUMNS)
    table.index.name = 'Model'
    return table


def coefficient_table(fitted: FittedModel) -> pd.DataFrame:
    """Coefficient table with Estimate, Std.Error, z value and p-value columns."""
    table = fitted.coefficients.rename(columns={
        'estimate': 'Estimate',
        'std_error': 'Std.Error',
        'statistic': 'z value',
        'p_value': 'p-value'
    })[COEFFICIENT_COLUMNS]
    table.index.name = 'Term'
    return table


def format_comparison_table(table: pd.DataFrame, digits: int = 3) -> pd.DataFrame:
    """Round every value to ``digits`` significant digits for display."""
    return table.apply(lambda col: col.map(lambda v: signif(v, digits)))


def format_coefficient_table(table: pd.DataFrame, digits: int = 3) -> pd.DataFrame:
    """Display version of a coefficient table with formatted p-values."""
    display = table[COEFFICIENT_COLUMNS[:3]].apply(lambda col: col.map(lambda v: signif(v, digits)))
    display['p-value'] = table['p-value'].map(format_p_value)
    return display


def _model_axes(n_models: int, figsize: Tuple[int, int]):
    fig, axes = plt.subplots(1, n_models, figsize=figsize, squeeze=False)
    return fig, axes.flatten()


def plot_density_overlay(
    observed: pd.Series,
    predictions: Dict[ModelFamily, PredictionSet],
    figsize: Tuple[int, int] = (15, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Overlay the density of observed and predicted family size per model.

    Args:
        observed: Observed response values
        predictions: PredictionSet by family
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    families = _ordered(list(predictions))
    fig, axes = _model_axes(len(families), figsize)

    for ax, family in zip(axes, families):
        sns.kdeplot(observed.to_numpy(float), ax=ax, label='Observed', fill=True, alpha=0.3)
        sns.kdeplot(predictions[family].to_numpy(), ax=ax, label='Predicted', fill=True, alpha=0.3)
        ax.set_xlabel('Family size')
        ax.set_title(f'{family}', fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    plt.suptitle('Observed vs Predicted Family Size', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Density overlay plot saved to {save_path}")

    return fig


def _scatter_with_trend(ax, x: np.ndarray, y: np.ndarray) -> None:
    ax.scatter(x, y, alpha=0.4, s=15)
    if len(np.unique(x)) > 2:
        trend = lowess(y, x, frac=2.0 / 3.0)
        ax.plot(trend[:, 0], trend[:, 1], 'r-', linewidth=2, label='LOWESS')
        ax.legend(fontsize=8)
    ax.axhline(0, color='gray', linestyle='--', linewidth=1)


def plot_residuals_vs_predictor(
    residuals: Dict[ModelFamily, pd.Series],
    data: pd.DataFrame,
    predictor: str,
    figsize: Tuple[int, int] = (15, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot Pearson residuals against one predictor for each model.

    Numeric predictors get a scatter plot with a LOWESS trend line,
    categorical predictors a box plot per level.

    Args:
        residuals: Pearson residuals by family
        data: Dataset holding the predictor
        predictor: Predictor column name
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    families = _ordered(list(residuals))
    fig, axes = _model_axes(len(families), figsize)
    column = data[predictor]
    categorical = isinstance(column.dtype, pd.CategoricalDtype)

    for ax, family in zip(axes, families):
        resid = residuals[family].reindex(data.index)
        if categorical:
            sns.boxplot(x=column.astype(str), y=resid, ax=ax)
            ax.axhline(0, color='gray', linestyle='--', linewidth=1)
        else:
            _scatter_with_trend(ax, column.to_numpy(float), resid.to_numpy(float))
        ax.set_xlabel(predictor)
        ax.set_ylabel('Pearson residual')
        ax.set_title(f'{family}', fontsize=10, fontweight='bold')

    plt.suptitle(f'Pearson Residuals vs {predictor}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals vs {predictor} plot saved to {save_path}")

    return fig


def plot_residuals_vs_fitted(
    residuals: Dict[ModelFamily, pd.Series],
    predictions: Dict[ModelFamily, PredictionSet],
    figsize: Tuple[int, int] = (15, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot Pearson residuals against fitted values with a LOWESS trend.

    Args:
        residuals: Pearson residuals by family
        predictions: PredictionSet by family
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    families = _ordered([f for f in residuals if f in predictions])
    fig, axes = _model_axes(len(families), figsize)

    for ax, family in zip(axes, families):
        fitted_values = predictions[family].values
        resid = residuals[family].reindex(fitted_values.index)
        _scatter_with_trend(ax, fitted_values.to_numpy(float), resid.to_numpy(float))
        ax.set_xlabel('Fitted family size')
        ax.set_ylabel('Pearson residual')
        ax.set_title(f'{family}', fontsize=10, fontweight='bold')

    plt.suptitle('Pearson Residuals vs Fitted Values', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals vs fitted plot saved to {save_path}")

    return fig


def evaluate_models(
    data: pd.DataFrame,
    fitted_models: Dict[ModelFamily, FittedModel],
    predictions: Dict[ModelFamily, PredictionSet],
    failures: Optional[Dict[ModelFamily, ConvergenceError]] = None,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Run the full model comparison and write tables and figures.

    Args:
        data: Dataset the models were fitted on
        fitted_models: Fitted models by family
        predictions: PredictionSet by family
        failures: Convergence failures by family (reported as NaN rows)
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing the comparison table, coefficient tables,
        residuals, metrics and file paths
    """
    failures = failures or {}
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION (Phase 5)")
    logger.info("=" * 60)

    families = _ordered(list(fitted_models) + list(failures))
    response = next(iter(fitted_models.values())).response if fitted_models else 'family_size'
    observed = data[response].astype(float)

    comparison = comparison_table(observed, fitted_models, predictions, families)
    comparison_file = metrics_dir / "model_comparison.csv"
    comparison.to_csv(comparison_file)
    logger.info(f"Comparison table saved to {comparison_file}")

    coefficients = {}
    for family, fitted in fitted_models.items():
        coefficients[family] = coefficient_table(fitted)
        coefficients[family].to_csv(metrics_dir / f"coefficients_{family.value}.csv")

    residuals = {family: pearson_residuals(fitted, data) for family, fitted in fitted_models.items()}

    metrics = calculate_metrics(observed, predictions)
    metrics['failures'] = {str(family): str(error) for family, error in failures.items()}
    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []
    if predictions:
        logger.info("Generating density overlay...")
        plot_density_overlay(
            observed, predictions,
            save_path=str(figures_dir / "eval_density_overlay.png")
        )
        figures.append("eval_density_overlay.png")

    if residuals:
        predictors = next(iter(fitted_models.values())).predictors
        for predictor in predictors:
            logger.info(f"Generating residuals vs {predictor}...")
            filename = f"eval_residuals_vs_{predictor}.png"
            plot_residuals_vs_predictor(
                residuals, data, predictor,
                save_path=str(figures_dir / filename)
            )
            figures.append(filename)

        logger.info("Generating residuals vs fitted...")
        plot_residuals_vs_fitted(
            residuals, predictions,
            save_path=str(figures_dir / "eval_residuals_vs_fitted.png")
        )
        figures.append("eval_residuals_vs_fitted.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    result = {
        'comparison': comparison,
        'coefficients': coefficients,
        'residuals': residuals,
        'metrics': metrics,
        'failures': failures,
        'figures': figures,
        'comparison_file': str(comparison_file),
        'metrics_file': str(metrics_file)
    }

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for name, row in comparison.iterrows():
        logger.info(f"  {name}: AIC={row['AIC']:.3f}, RMSE={row['RMSE']:.4f}")
    logger.info("=" * 60)

    return result


def print_evaluation_report(result: Dict[str, Any]) -> None:
    """
    Print the comparison and coefficient tables to console.

    Args:
        result: Dictionary from evaluate_models
    """
    comparison = result['comparison']

    print("\n" + "=" * 70)
    print("MODEL COMPARISON")
    print("=" * 70)
    print(format_comparison_table(comparison).to_string())

    for family, table in result['coefficients'].items():
        print("\n" + "-" * 70)
        print(f"{family} coefficients")
        print("-" * 70)
        print(format_coefficient_table(table).to_string())

    failures = result.get('failures') or {}
    if failures:
        print("\nModels that failed to converge:")
        for family, error in failures.items():
            print(f"  ✗ {family}: {error.detail}")

    fitted_rows = comparison.dropna(subset=['AIC'])
    if not fitted_rows.empty:
        print("\nInterpretation:")
        print(f"  • Lowest AIC: {fitted_rows['AIC'].idxmin()}")
        print(f"  • Lowest BIC: {fitted_rows['BIC'].idxmin()}")
        print(f"  • Lowest RMSE: {fitted_rows['RMSE'].idxmin()}")
        print("  Note: the Weibull likelihood is a survival-model density on a")
        print("        continuous scale; compare its AIC/BIC with the GLMs with care.")

    print("=" * 70 + "\n")
