"""
Exploratory Data Analysis (EDA) Module - Phase 2
=================================================

Describes the family-size response before any model is fitted.

Functions:
    - summarize_by_group: Mean, variance and count of family size per level
    - dispersion_check: Variance-to-mean ratio and Poisson dispersion test
    - plot_family_size_distribution: Histogram of the response
    - plot_family_size_by_group: Box plots by literacy and marriage age
    - plot_family_size_vs_months: Scatter against months since marriage
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from statsmodels.nonparametric.smoothers_lowess import lowess

logger = logging.getLogger(__name__)

RESPONSE = "family_size"


def summarize_by_group(
    df: pd.DataFrame,
    group: str,
    response: str = RESPONSE
) -> pd.DataFrame:
    """
    Summarize the response within each level of a grouping column.

    Args:
        df: Derived dataset
        group: Grouping column (e.g. literacy, ageMarried)
        response: Response column

    Returns:
        DataFrame indexed by level with count, mean, var and var/mean ratio
    """
    grouped = df.groupby(group, observed=True)[response]
    summary = grouped.agg(['count', 'mean', 'var'])
    summary['var_mean_ratio'] = summary['var'] / summary['mean']
    return summary


def dispersion_check(values: Sequence[float]) -> Dict[str, float]:
    """
    Compare variance with mean as a Poisson model would require.

    The dispersion statistic sum((y - mean)^2) / mean follows a chi-square
    distribution with n - 1 degrees of freedom under a Poisson model.

    Args:
        values: Response values

    Returns:
        Dictionary with mean, variance, ratio, statistic and p-values
    """
    y = np.asarray(values, dtype=float)
    n = len(y)
    mean = float(np.mean(y))
    variance = float(np.var(y, ddof=1)) if n > 1 else float('nan')
    statistic = float(np.sum((y - mean) ** 2) / mean)
    df = n - 1

    return {
        'n': n,
        'mean': mean,
        'variance': variance,
        'var_mean_ratio': variance / mean,
        'statistic': statistic,
        'df': df,
        'p_overdispersed': float(stats.chi2.sf(statistic, df)),
        'p_underdispersed': float(stats.chi2.cdf(statistic, df))
    }


def plot_family_size_distribution(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram of family size split by literacy.

    Args:
        df: Derived dataset
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.histplot(data=df, x=RESPONSE, hue='literacy', discrete=True,
                 multiple='dodge', shrink=0.8, ax=ax)

    mean_val = df[RESPONSE].mean()
    ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
    ax.set_xlabel('Family size (children + 2)')
    ax.set_ylabel('Families')
    ax.set_title('Family Size Distribution', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plot saved to {save_path}")

    return fig


def plot_family_size_by_group(
    df: pd.DataFrame,
    groups: Sequence[str] = ('literacy', 'ageMarried'),
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Box plots of family size for each level of the grouping columns.

    Args:
        df: Derived dataset
        groups: Grouping columns
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, len(groups), figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for ax, group in zip(axes, groups):
        sns.boxplot(data=df, x=group, y=RESPONSE, ax=ax)
        ax.set_title(f'By {group}', fontsize=10, fontweight='bold')
        ax.tick_params(axis='x', rotation=45)

    plt.suptitle('Family Size by Group', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Group box plots saved to {save_path}")

    return fig


def plot_family_size_vs_months(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of family size against months since marriage with LOWESS trends
    per literacy level.

    Args:
        df: Derived dataset
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    for level, group in df.groupby('literacy', observed=True):
        ax.scatter(group['monthsSinceM'], group[RESPONSE], alpha=0.4, s=15,
                   label=f'literacy={level}')
        if group['monthsSinceM'].nunique() > 2:
            trend = lowess(group[RESPONSE].to_numpy(float),
                           group['monthsSinceM'].to_numpy(float), frac=2.0 / 3.0)
            ax.plot(trend[:, 0], trend[:, 1], linewidth=2)

    ax.set_xlabel('Months since marriage')
    ax.set_ylabel('Family size')
    ax.set_title('Family Size vs Time Since Marriage', fontsize=14, fontweight='bold')
    ax.legend(fontsize=8)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Months scatter plot saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: Derived dataset
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "figures": [],
        "by_literacy": None,
        "by_age_married": None,
        "dispersion": None
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS (Phase 2)")
    logger.info("=" * 60)

    report["by_literacy"] = summarize_by_group(df, 'literacy').to_dict(orient='index')
    report["by_age_married"] = summarize_by_group(df, 'ageMarried').to_dict(orient='index')

    logger.info("Checking dispersion of family size...")
    report["dispersion"] = dispersion_check(df[RESPONSE])

    logger.info("Plotting family size distribution...")
    plot_family_size_distribution(df, save_path=str(output_dir / "01_family_size_distribution.png"))
    report["figures"].append("01_family_size_distribution.png")

    logger.info("Creating box plots by group...")
    plot_family_size_by_group(df, save_path=str(output_dir / "02_family_size_by_group.png"))
    report["figures"].append("02_family_size_by_group.png")

    logger.info("Plotting family size against months since marriage...")
    plot_family_size_vs_months(df, save_path=str(output_dir / "03_family_size_vs_months.png"))
    report["figures"].append("03_family_size_vs_months.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_dispersion_insights(dispersion: Dict[str, float], alpha: float = 0.05) -> None:
    """
    Print whether family size looks over- or under-dispersed for a Poisson model.

    Args:
        dispersion: Dictionary from dispersion_check
        alpha: Significance level
    """
    print("\n" + "=" * 50)
    print("DISPERSION INSIGHTS")
    print("=" * 50)
    print(f"Mean family size: {dispersion['mean']:.3f}")
    print(f"Variance: {dispersion['variance']:.3f}")
    print(f"Variance / mean: {dispersion['var_mean_ratio']:.3f}")
    print(f"Dispersion statistic: {dispersion['statistic']:.2f} on {dispersion['df']} df")

    print("\nInterpretation:")
    if dispersion['p_overdispersed'] < alpha:
        print(f"  ⚠ Over-dispersed relative to Poisson (p={dispersion['p_overdispersed']:.3g})")
        print("  - A Gamma model with free dispersion may fit better")
    elif dispersion['p_underdispersed'] < alpha:
        print(f"  ⚠ Under-dispersed relative to Poisson (p={dispersion['p_underdispersed']:.3g})")
        print("  - Poisson standard errors will be conservative")
    else:
        print("  ✓ Variance is consistent with the Poisson mean-variance assumption")

    print("=" * 50 + "\n")
