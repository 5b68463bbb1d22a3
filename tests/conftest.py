"""
Shared fixtures: synthetic family records shaped like the survey data.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from famsize.preprocessing import AGE_MARRIED_LEVELS, derive_features


def make_raw_families(n: int = 400, seed: int = 42) -> pd.DataFrame:
    """Raw records as they arrive from CSV: every value is text."""
    rng = np.random.default_rng(seed)
    months = rng.integers(6, 360, size=n)
    literate = rng.random(n) < 0.6
    eta = 0.3 + 0.002 * months - 0.3 * literate
    children = rng.poisson(np.exp(eta))
    return pd.DataFrame({
        'children': children.astype(str),
        'ageMarried': rng.choice(AGE_MARRIED_LEVELS, size=n),
        'literacy': np.where(literate, 'yes', 'no'),
        'monthsSinceM': months.astype(str),
    })


@pytest.fixture
def raw_families():
    return make_raw_families()


@pytest.fixture
def families(raw_families):
    return derive_features(raw_families)


@pytest.fixture
def family_factory():
    """Build raw records with a chosen size and seed."""
    return make_raw_families
