"""
Feature Derivation Module - Phase 1
====================================

Turns raw family records into a model-ready dataset.

Functions:
    - FeatureDeriver: Coerces raw columns and adds the family_size response
    - derive_features: Convenience wrapper driven by the config dictionary
    - print_preprocessing_summary: Console summary of the derived dataset

The input DataFrame is never modified; every call returns a new frame.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .exceptions import CoercionError

logger = logging.getLogger(__name__)

# Both parents are counted on top of the children.
PARENTS_PER_FAMILY = 2

AGE_MARRIED_LEVELS = ("0to15", "15to18", "18to20", "20to22", "22to25", "25to30", "30toInf")
LITERACY_LEVELS = ("no", "yes")

_LITERACY_TOKENS = {
    "yes": "yes", "y": "yes", "true": "yes", "1": "yes", "literate": "yes",
    "no": "no", "n": "no", "false": "no", "0": "no", "illiterate": "no",
}

VALID_POLICIES = ("abort", "drop")


def _is_missing(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() in ("", "NA", "NaN", "nan")
    return value is None or bool(pd.isna(value))


def _parse_number(value: Any) -> float:
    if isinstance(value, (bool, np.bool_)):
        raise ValueError("boolean is not a number")
    number = float(str(value).strip()) if isinstance(value, str) else float(value)
    if not math.isfinite(number):
        raise ValueError("not a finite number")
    return number


def parse_children(value: Any) -> int:
    number = _parse_number(value)
    if number < 0:
        raise ValueError("child count cannot be negative")
    if not number.is_integer():
        raise ValueError("child count must be a whole number")
    return int(number)


def parse_months(value: Any) -> float:
    number = _parse_number(value)
    if number < 0:
        raise ValueError("months since marriage cannot be negative")
    return number


def parse_literacy(value: Any) -> str:
    if isinstance(value, (bool, np.bool_)):
        return "yes" if value else "no"
    if isinstance(value, (int, float, np.integer, np.floating)):
        token = str(int(value)) if float(value).is_integer() else str(value)
    else:
        token = str(value).strip().lower()
    if token not in _LITERACY_TOKENS:
        raise ValueError("expected a yes/no literacy flag")
    return _LITERACY_TOKENS[token]


class FeatureDeriver:
    """
    Coerces raw observation columns and derives the family_size response.

    Invalid values are handled according to ``on_invalid``:
        - "abort": raise CoercionError on the first offending row
        - "drop": log each offending row and exclude it from the result
    """

    def __init__(
        self,
        on_invalid: str = "abort",
        age_married_levels: Sequence[str] = AGE_MARRIED_LEVELS
    ):
        if on_invalid not in VALID_POLICIES:
            raise ValueError(
                f"Unknown on_invalid policy: {on_invalid!r}. Choose from: {VALID_POLICIES}"
            )
        self.on_invalid = on_invalid
        self.age_married_levels = tuple(age_married_levels)
        self.dropped_rows: List[CoercionError] = []

    def _parse_age_married(self, value: Any) -> str:
        token = str(value).strip()
        if token not in self.age_married_levels:
            raise ValueError(f"expected one of {list(self.age_married_levels)}")
        return token

    def _parsers(self) -> Dict[str, Callable[[Any], Any]]:
        return {
            "children": parse_children,
            "monthsSinceM": parse_months,
            "literacy": parse_literacy,
            "ageMarried": self._parse_age_married,
        }

    def _coerce_column(
        self,
        series: pd.Series,
        parser: Callable[[Any], Any]
    ) -> Tuple[Dict[Any, Any], List[CoercionError]]:
        values = {}
        errors = []
        for row, raw in series.items():
            if _is_missing(raw):
                error = CoercionError(row, series.name, raw, "missing value")
            else:
                try:
                    values[row] = parser(raw)
                    continue
                except (TypeError, ValueError) as e:
                    error = CoercionError(row, series.name, raw, str(e))
            if self.on_invalid == "abort":
                raise error
            errors.append(error)
        return values, errors

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Derive the model-ready dataset.

        Args:
            df: Raw records with children, ageMarried, literacy, monthsSinceM

        Returns:
            New DataFrame with coerced columns and family_size appended

        Raises:
            CoercionError: If a value is invalid and the policy is "abort"
        """
        if not df.index.is_unique:
            raise ValueError("Row index must be unique so invalid rows can be identified")

        coerced = {}
        errors: List[CoercionError] = []

        for column, parser in self._parsers().items():
            if column not in df.columns:
                raise KeyError(f"Required column missing: {column}")
            values, column_errors = self._coerce_column(df[column], parser)
            coerced[column] = values
            errors.extend(column_errors)

        bad_rows = []
        for error in errors:
            logger.warning(f"Dropping row: {error}")
            if error.row not in bad_rows:
                bad_rows.append(error.row)
        self.dropped_rows = errors

        out = df.drop(index=bad_rows).copy()
        keep = out.index

        out["children"] = pd.Series(
            [coerced["children"][row] for row in keep], index=keep, dtype="int64"
        )
        out["monthsSinceM"] = pd.Series(
            [coerced["monthsSinceM"][row] for row in keep], index=keep, dtype="float64"
        )
        out["literacy"] = pd.Categorical(
            [coerced["literacy"][row] for row in keep],
            categories=list(LITERACY_LEVELS),
            ordered=True
        )
        out["ageMarried"] = pd.Categorical(
            [coerced["ageMarried"][row] for row in keep],
            categories=list(self.age_married_levels),
            ordered=True
        )
        out["family_size"] = out["children"] + PARENTS_PER_FAMILY

        if bad_rows:
            logger.warning(f"Dropped {len(bad_rows)} of {len(df)} rows with invalid values")

        return out


def derive_features(
    df: pd.DataFrame,
    config: Optional[Dict[str, Any]] = None
) -> pd.DataFrame:
    """
    Run feature derivation using configuration parameters.

    Args:
        df: Raw DataFrame
        config: Full configuration dictionary (optional)

    Returns:
        Derived DataFrame including family_size
    """
    config = config or {}
    prep_config = config.get('preprocessing', {})
    schema_config = config.get('schema', {})

    logger.info("=" * 60)
    logger.info("STARTING FEATURE DERIVATION (Phase 1)")
    logger.info("=" * 60)

    deriver = FeatureDeriver(
        on_invalid=prep_config.get('on_invalid', 'abort'),
        age_married_levels=schema_config.get('age_married_levels', AGE_MARRIED_LEVELS)
    )
    logger.info(f"Invalid value policy: {deriver.on_invalid}")

    result = deriver.transform(df)

    logger.info("=" * 60)
    logger.info("FEATURE DERIVATION COMPLETE")
    logger.info(f"  Rows kept: {len(result)} of {len(df)}")
    logger.info(f"  Mean family size: {result['family_size'].mean():.3f}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(df: pd.DataFrame) -> None:
    """
    Print a summary of the derived dataset.

    Args:
        df: DataFrame returned by derive_features
    """
    print("\n" + "=" * 50)
    print("FEATURE DERIVATION SUMMARY")
    print("=" * 50)
    print(f"Observations: {len(df)}")
    print(f"Family size: mean={df['family_size'].mean():.3f}, "
          f"var={df['family_size'].var():.3f}, "
          f"range=[{df['family_size'].min()}, {df['family_size'].max()}]")
    print(f"Months since marriage: mean={df['monthsSinceM'].mean():.1f}, "
          f"range=[{df['monthsSinceM'].min():.0f}, {df['monthsSinceM'].max():.0f}]")
    print("\nLiteracy:")
    for level, count in df['literacy'].value_counts(sort=False).items():
        print(f"  {level}: {count}")
    print("=" * 50 + "\n")
