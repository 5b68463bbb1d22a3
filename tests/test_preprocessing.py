"""
Test Suite for Preprocessing Module
=====================================

Tests for the FeatureDeriver class and derive_features.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from famsize.exceptions import CoercionError
from famsize.preprocessing import (
    FeatureDeriver, derive_features, parse_literacy, PARENTS_PER_FAMILY
)


class TestFeatureDeriver:
    """Tests for FeatureDeriver class."""

    @pytest.fixture
    def deriver(self):
        """Create a deriver with the default abort policy."""
        return FeatureDeriver()

    @pytest.fixture
    def scenario(self):
        """Two-family example dataset."""
        return pd.DataFrame({
            'children': [1, 3],
            'ageMarried': ['20to22', '22to25'],
            'literacy': ['yes', 'no'],
            'monthsSinceM': [12, 48],
        })

    def test_init(self, deriver):
        """Test deriver initialization."""
        assert deriver.on_invalid == "abort"
        assert deriver.dropped_rows == []

    def test_invalid_policy(self):
        """Test that an unknown policy is rejected."""
        with pytest.raises(ValueError, match="on_invalid"):
            FeatureDeriver(on_invalid="ignore")

    def test_scenario_family_size(self, deriver, scenario):
        """Test family_size for the two-family example."""
        df = deriver.transform(scenario)

        assert df['family_size'].tolist() == [3, 5]

    def test_family_size_invariant(self, deriver, raw_families):
        """Test family_size = children + 2 and >= 2 on every row."""
        df = deriver.transform(raw_families)

        assert (df['family_size'] == df['children'] + PARENTS_PER_FAMILY).all()
        assert (df['family_size'] >= 2).all()
        assert len(df) == len(raw_families)

    def test_types_are_coerced(self, deriver, raw_families):
        """Test that text columns become numeric and categorical."""
        df = deriver.transform(raw_families)

        assert df['monthsSinceM'].dtype == np.float64
        assert df['children'].dtype == np.int64
        assert isinstance(df['literacy'].dtype, pd.CategoricalDtype)
        assert list(df['literacy'].cat.categories) == ['no', 'yes']
        assert df['ageMarried'].cat.ordered

    def test_input_not_mutated(self, deriver, raw_families):
        """Test that transform returns a new frame and leaves the input alone."""
        before = raw_families.copy()

        df = deriver.transform(raw_families)

        pd.testing.assert_frame_equal(raw_families, before)
        assert 'family_size' not in raw_families.columns
        assert df is not raw_families

    def test_unknown_months_raises(self, deriver, scenario):
        """Test that a non-numeric month value names its row."""
        scenario['monthsSinceM'] = scenario['monthsSinceM'].astype(object)
        scenario.loc[1, 'monthsSinceM'] = "unknown"

        with pytest.raises(CoercionError) as excinfo:
            deriver.transform(scenario)

        assert excinfo.value.row == 1
        assert excinfo.value.column == 'monthsSinceM'
        assert excinfo.value.value == "unknown"
        assert "Row 1" in str(excinfo.value)

    def test_missing_value_raises(self, deriver, scenario):
        """Test that a missing value is not silently propagated."""
        scenario['monthsSinceM'] = scenario['monthsSinceM'].astype(float)
        scenario.loc[0, 'monthsSinceM'] = np.nan

        with pytest.raises(CoercionError, match="missing value"):
            deriver.transform(scenario)

    def test_negative_children_raises(self, deriver, scenario):
        """Test that negative child counts are rejected."""
        scenario.loc[0, 'children'] = -1

        with pytest.raises(CoercionError, match="negative"):
            deriver.transform(scenario)

    def test_unknown_age_bucket_raises(self, deriver, scenario):
        """Test that marriage-age buckets outside the fixed set are rejected."""
        scenario.loc[0, 'ageMarried'] = "40to50"

        with pytest.raises(CoercionError, match="ageMarried"):
            deriver.transform(scenario)

    def test_drop_policy(self, scenario):
        """Test that the drop policy excludes and records invalid rows."""
        scenario['monthsSinceM'] = scenario['monthsSinceM'].astype(object)
        scenario.loc[0, 'monthsSinceM'] = "unknown"
        deriver = FeatureDeriver(on_invalid="drop")

        df = deriver.transform(scenario)

        assert df.index.tolist() == [1]
        assert df['family_size'].tolist() == [5]
        assert len(deriver.dropped_rows) == 1
        assert deriver.dropped_rows[0].row == 0


@pytest.mark.parametrize("token, expected", [
    ("yes", "yes"), ("No", "no"), (" literate ", "yes"), ("illiterate", "no"),
    (True, "yes"), (0, "no"), (1.0, "yes"),
])
def test_parse_literacy(token, expected):
    """Test accepted literacy tokens."""
    assert parse_literacy(token) == expected


def test_parse_literacy_rejects_unknown():
    """Test that unknown literacy tokens raise."""
    with pytest.raises(ValueError):
        parse_literacy("sometimes")


class TestDeriveFeatures:
    """Tests for the derive_features function."""

    def test_uses_config_policy(self, raw_families):
        """Test that the config drop policy is applied."""
        raw = raw_families.copy()
        raw.loc[3, 'literacy'] = "?"
        config = {'preprocessing': {'on_invalid': 'drop'}}

        df = derive_features(raw, config)

        assert len(df) == len(raw) - 1
        assert 3 not in df.index

    def test_default_policy_aborts(self, raw_families):
        """Test that the default policy aborts on bad input."""
        raw = raw_families.copy()
        raw.loc[3, 'literacy'] = "?"

        with pytest.raises(CoercionError):
            derive_features(raw)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
