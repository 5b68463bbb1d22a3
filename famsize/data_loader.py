"""
Data Loader Module
==================

Handles CSV ingestion, configuration loading and basic data quality checks
for the family-level observations.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV data and check required columns
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Sequence, Tuple

import pandas as pd
import numpy as np
import yaml

from .exceptions import LoadError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("children", "ageMarried", "literacy", "monthsSinceM")


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def check_required_columns(
    df: pd.DataFrame,
    required: Sequence[str] = REQUIRED_COLUMNS
) -> None:
    """Raise LoadError if any required column is absent."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise LoadError(
            f"Missing required columns: {missing}. "
            f"Columns found: {list(df.columns)}"
        )


def load_data(
    file_path: str,
    required_columns: Sequence[str] = REQUIRED_COLUMNS,
    index_col: Optional[int] = None
) -> pd.DataFrame:
    """
    Load the family observations from a CSV file.

    Every column is read as text; type coercion is the job of the
    feature deriver so that bad tokens can be reported per row.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present
        index_col: Column to use as index (optional)

    Returns:
        DataFrame containing the raw records

    Raises:
        LoadError: If the file is missing, unreadable or lacks a required column
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise LoadError(f"Data file not found: {file_path}")

    try:
        df = pd.read_csv(file_path, index_col=index_col, dtype=str, keep_default_na=False)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise LoadError(f"Cannot read data file {file_path}: {e}") from e

    df.columns = [str(col).strip() for col in df.columns]
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    check_required_columns(df, required_columns)

    return df


def validate_data(df: pd.DataFrame, strict: bool = False) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints on the raw records.

    Checks:
        - Required columns are present
        - No missing or blank values in required columns
        - No duplicate rows
        - Child counts are non-negative numbers

    Args:
        df: DataFrame to validate
        strict: If True, raise LoadError on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Required columns
    missing_cols = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_cols:
        issue = f"Missing required columns: {missing_cols}"
        report["issues"].append(issue)
        logger.warning(issue)

    present = [col for col in REQUIRED_COLUMNS if col in df.columns]

    # Check 2: Missing values (blank strings count as missing)
    blank = df[present].apply(lambda s: s.isna() | (s.astype(str).str.strip() == ""))
    missing_counts = blank.sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        issue = f"Missing values: {total_missing}"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Duplicate rows
    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 4: Child counts
    if "children" in df.columns:
        children = pd.to_numeric(df["children"], errors="coerce")
        negative = int((children < 0).sum())
        unparsable = int(children.isna().sum() - blank["children"].sum())
        if negative > 0:
            issue = f"Negative child counts: {negative}"
            report["issues"].append(issue)
            logger.warning(issue)
        if unparsable > 0:
            issue = f"Non-numeric child counts: {unparsable}"
            report["issues"].append(issue)
            logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise LoadError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "statistics": {},
        "levels": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    for col in df.select_dtypes(exclude=[np.number]).columns:
        summary["levels"][col] = df[col].astype(str).value_counts().to_dict()

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")
