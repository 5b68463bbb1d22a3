"""
Prediction Module - Phase 4
============================

Produces response-scale predictions from fitted models.

Features:
    - Link back-transformed predictions aligned with the input rows
    - Weibull mean and median predictions alongside exp(X beta)
    - Export of observed vs predicted values to CSV
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd
from scipy import special

from .exceptions import PredictionError
from .model import FittedModel, ModelFamily, build_design_matrix

logger = logging.getLogger(__name__)

PREDICTION_KINDS = ("response", "mean", "median")


@dataclass(frozen=True, eq=False)
class PredictionSet:
    """Predictions of one fitted model, indexed like the dataset they came from."""

    family: ModelFamily
    kind: str
    values: pd.Series

    def __len__(self) -> int:
        return len(self.values)

    def to_numpy(self) -> np.ndarray:
        return self.values.to_numpy(dtype=float)


def _design_for(fitted: FittedModel, data: pd.DataFrame) -> pd.DataFrame:
    missing = [name for name in fitted.predictors if name not in data.columns]
    if missing:
        raise PredictionError(
            f"{fitted.family} model needs predictor columns {missing} "
            f"which are absent from the dataset"
        )
    try:
        return build_design_matrix(data, fitted.predictors, columns=fitted.design_columns)
    except (TypeError, ValueError) as e:
        raise PredictionError(f"Cannot encode predictors for {fitted.family} model: {e}") from e


def predict(
    fitted: FittedModel,
    data: Optional[pd.DataFrame] = None,
    kind: str = "response"
) -> PredictionSet:
    """
    Predict the response for every row of a dataset.

    ``kind="response"`` back-transforms the linear predictor through the
    log link, i.e. exp(X beta), for every family. Weibull models also
    support ``"mean"`` (exp(X beta) * Gamma(1 + sigma)) and ``"median"``
    (exp(X beta) * log(2) ** sigma).

    Args:
        fitted: FittedModel to predict with
        data: Dataset with the model's predictor columns (default: training data)
        kind: Prediction type

    Returns:
        PredictionSet with the same index and length as ``data``

    Raises:
        PredictionError: If a predictor is missing or the kind is unsupported
    """
    if kind not in PREDICTION_KINDS:
        raise PredictionError(f"Unknown prediction kind: {kind!r}. Choose from: {PREDICTION_KINDS}")
    if kind != "response" and fitted.family is not ModelFamily.WEIBULL:
        raise PredictionError(
            f"Prediction kind {kind!r} is only defined for the Weibull model; "
            f"{fitted.family} response predictions are already the mean"
        )

    if data is None:
        data = fitted.data

    design = _design_for(fitted, data)
    values = np.exp(fitted.linear_predictor(design))

    if kind == "mean":
        values = values * special.gamma(1.0 + fitted.dispersion)
    elif kind == "median":
        values = values * np.log(2.0) ** fitted.dispersion

    values.name = f"{fitted.family.value}_predicted"
    return PredictionSet(family=fitted.family, kind=kind, values=values)


def predict_all(
    fitted_models: Dict[ModelFamily, FittedModel],
    data: Optional[pd.DataFrame] = None,
    config: Optional[Dict] = None
) -> Dict[ModelFamily, PredictionSet]:
    """
    Predict with every fitted model.

    Args:
        fitted_models: Fitted models by family
        data: Dataset to predict on (default: each model's training data)
        config: Full configuration dictionary (optional)

    Returns:
        PredictionSet by family
    """
    prediction_config = (config or {}).get('prediction', {})
    weibull_kind = prediction_config.get('weibull_kind', 'response')

    logger.info("=" * 60)
    logger.info("STARTING PREDICTION (Phase 4)")
    logger.info("=" * 60)

    predictions = {}
    for family, fitted in fitted_models.items():
        kind = weibull_kind if family is ModelFamily.WEIBULL else "response"
        predictions[family] = predict(fitted, data, kind=kind)
        logger.info(
            f"{family}: {len(predictions[family])} {kind} predictions, "
            f"mean={predictions[family].values.mean():.4f}"
        )

    logger.info("=" * 60)
    logger.info("PREDICTION COMPLETE")
    logger.info("=" * 60)

    return predictions


def predictions_frame(
    observed: pd.Series,
    predictions: Dict[ModelFamily, PredictionSet]
) -> pd.DataFrame:
    """Combine observed values and every model's predictions column-wise."""
    frame = pd.DataFrame({'observed': observed})
    for family, prediction in predictions.items():
        frame[str(family)] = prediction.values.reindex(observed.index)
    return frame


def export_predictions(
    observed: pd.Series,
    predictions: Dict[ModelFamily, PredictionSet],
    output_path: str,
    include_timestamp: bool = False
) -> str:
    """
    Export observed and predicted values to CSV.

    Args:
        observed: Observed response values
        predictions: PredictionSet by family
        output_path: Directory to save the file
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    df = predictions_frame(observed, predictions)
    df.index.name = 'row'

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"predictions_{timestamp}.csv"
    else:
        filename = "predictions.csv"

    filepath = output_path / filename
    df.to_csv(filepath)

    logger.info(f"Predictions exported to {filepath}")
    return str(filepath)


def print_prediction_results(
    observed: pd.Series,
    predictions: Dict[ModelFamily, PredictionSet],
    n_rows: int = 10
) -> None:
    """
    Print the first rows of observed vs predicted values.

    Args:
        observed: Observed response values
        predictions: PredictionSet by family
        n_rows: Number of rows to display
    """
    frame = predictions_frame(observed, predictions)

    print("\n" + "=" * 70)
    print("PREDICTIONS (first rows)")
    print("=" * 70)
    print(frame.head(n_rows).round(4).to_string())
    print("-" * 70)
    print("Mean prediction per model:")
    for family, prediction in predictions.items():
        print(f"  • {family} ({prediction.kind}): {prediction.values.mean():.4f}")
    print(f"  • Observed: {observed.mean():.4f}")
    print("=" * 70 + "\n")
