#!/usr/bin/env python3
"""
Family Size Regression Comparison - Main Pipeline
==================================================

Orchestrates the comparison of Poisson, Gamma and Weibull regressions of
family size on literacy and months since marriage.

Phases:
    1. Preprocessing - Coercion and family_size derivation
    2. EDA - Group summaries and dispersion check
    3. Training - Fit the three model families
    4. Prediction - Response-scale predictions per model
    5. Evaluation - AIC/BIC/log-likelihood/RMSE and residual diagnostics

Usage:
    # Run complete pipeline
    python main.py --data data/raw/portugal.csv

    # Run specific phase
    python main.py --data data/raw/portugal.csv --phase eda

    # Run with custom config
    python main.py --data data/raw/portugal.csv --config config/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from famsize.data_loader import (
    load_config, load_data, validate_data, get_data_summary, print_data_summary
)
from famsize.eda import generate_eda_report, print_dispersion_insights
from famsize.exceptions import ConvergenceError
from famsize.preprocessing import derive_features, print_preprocessing_summary
from famsize.model import FittedModel, ModelFamily, fit_models, print_model_summary
from famsize.prediction import PredictionSet, predict_all, export_predictions, print_prediction_results
from famsize.evaluation import evaluate_models, print_evaluation_report

PHASES = ['preprocess', 'eda', 'train', 'predict', 'evaluate']


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def run_preprocessing(raw: pd.DataFrame, config: Dict[str, Any]) -> pd.DataFrame:
    """
    Execute Phase 1: Feature derivation.

    Args:
        raw: Raw records
        config: Configuration dictionary

    Returns:
        Derived dataset
    """
    print("\n" + "=" * 70)
    print("PHASE 1: FEATURE DERIVATION")
    print("=" * 70)

    df = derive_features(raw, config)
    print_preprocessing_summary(df)

    return df


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: Exploratory Data Analysis.

    Args:
        df: Derived dataset
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(df, output_dir=output_dir, show_plots=False)
    print_dispersion_insights(report["dispersion"])

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_training(
    df: pd.DataFrame,
    config: Dict[str, Any]
) -> Tuple[Dict[ModelFamily, FittedModel], Dict[ModelFamily, ConvergenceError]]:
    """
    Execute Phase 3: Model fitting.

    Args:
        df: Derived dataset
        config: Configuration dictionary

    Returns:
        Tuple of (fitted models, convergence failures)
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL FITTING")
    print("=" * 70)

    fitted, failures = fit_models(df, config=config)

    for model in fitted.values():
        print_model_summary(model)
    for family, error in failures.items():
        print(f"✗ {family} not fitted: {error.detail}")

    return fitted, failures


def run_prediction(
    df: pd.DataFrame,
    fitted: Dict[ModelFamily, FittedModel],
    config: Dict[str, Any]
) -> Dict[ModelFamily, PredictionSet]:
    """
    Execute Phase 4: Prediction.

    Args:
        df: Derived dataset
        fitted: Fitted models by family
        config: Configuration dictionary

    Returns:
        PredictionSet by family
    """
    print("\n" + "=" * 70)
    print("PHASE 4: PREDICTION")
    print("=" * 70)

    predictions = predict_all(fitted, df, config)
    response = config.get('model', {}).get('response', 'family_size')

    output_dir = config.get('data', {}).get('predictions_path', 'data/predictions/')
    csv_path = export_predictions(df[response], predictions, output_dir)

    print_prediction_results(df[response], predictions)
    print(f"Predictions exported to: {csv_path}")

    return predictions


def run_evaluation(
    df: pd.DataFrame,
    fitted: Dict[ModelFamily, FittedModel],
    predictions: Dict[ModelFamily, PredictionSet],
    failures: Dict[ModelFamily, ConvergenceError],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 5: Model evaluation.

    Args:
        df: Derived dataset
        fitted: Fitted models by family
        predictions: PredictionSet by family
        failures: Convergence failures by family
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')

    result = evaluate_models(
        df, fitted, predictions, failures,
        output_dir=output_dir,
        show_plots=False
    )

    print_evaluation_report(result)

    return result


def run_pipeline(data_path: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute all phases with an already-loaded configuration.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary

    Returns:
        Dictionary containing all phase results
    """
    print("\n📊 Loading data...")
    raw = load_data(data_path)
    print_data_summary(raw)

    is_valid, validation_report = validate_data(raw, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Coercion policy decides what happens next.")

    results = {
        'config': config,
        'data_shape': raw.shape,
        'validation': validation_report
    }

    results['data'] = run_preprocessing(raw, config)
    results['summary'] = get_data_summary(results['data'])
    results['eda'] = run_eda(results['data'], config)
    results['models'], results['failures'] = run_training(results['data'], config)
    results['predictions'] = run_prediction(results['data'], results['models'], config)
    results['evaluation'] = run_evaluation(
        results['data'],
        results['models'],
        results['predictions'],
        results['failures'],
        config
    )

    return results


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete 5-phase pipeline.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("FAMILY SIZE REGRESSION COMPARISON")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    results = run_pipeline(data_path, config)

    comparison = results['evaluation']['comparison']

    # Summary
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {results['data_shape'][0]} rows")
    print(f"  • Rows modeled: {len(results['data'])}")
    print(f"  • Models fitted: {len(results['models'])} of {len(comparison)}")
    if comparison['AIC'].notna().any():
        print(f"  • Lowest AIC: {comparison['AIC'].idxmin()}")
    print(f"  • Comparison table: {results['evaluation']['comparison_file']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline, running the phases it depends on.

    Args:
        phase: Phase to run ('preprocess', 'eda', 'train', 'predict', 'evaluate')
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Phase result dictionary
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    df = run_preprocessing(load_data(data_path), config)

    if phase == 'preprocess':
        return {'data': df}

    elif phase == 'eda':
        return run_eda(df, config)

    fitted, failures = run_training(df, config)
    if phase == 'train':
        return {'models': fitted, 'failures': failures}

    predictions = run_prediction(df, fitted, config)
    if phase == 'predict':
        return {'models': fitted, 'failures': failures, 'predictions': predictions}

    return run_evaluation(df, fitted, predictions, failures, config)


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Compare Poisson, Gamma and Weibull regressions of family size",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/portugal.csv
  python main.py --data data/raw/portugal.csv --phase eda
  python main.py --data data/raw/portugal.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES + ['all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    # Check if data file exists
    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected format: CSV with children, ageMarried, literacy, monthsSinceM columns")
        sys.exit(1)

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.data, args.config, log_level)
        else:
            run_single_phase(args.phase, args.data, args.config, log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
