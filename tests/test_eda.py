"""
Test Suite for EDA Module
==========================
"""

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from famsize.eda import summarize_by_group, dispersion_check, generate_eda_report


class TestSummaries:
    """Tests for group summaries and the dispersion check."""

    def test_summarize_by_literacy(self, families):
        summary = summarize_by_group(families, 'literacy')

        assert list(summary.index) == ['no', 'yes']
        assert summary['count'].sum() == len(families)
        literate = families.loc[families['literacy'] == 'yes', 'family_size']
        assert summary.loc['yes', 'mean'] == pytest.approx(literate.mean())

    def test_dispersion_check_poisson_like(self):
        y = np.array([2, 3, 4, 3, 2, 4])

        result = dispersion_check(y)

        assert result['mean'] == pytest.approx(3.0)
        assert result['variance'] == pytest.approx(0.8)
        assert result['statistic'] == pytest.approx(4.0 / 3.0)
        assert result['df'] == 5
        assert result['p_overdispersed'] + result['p_underdispersed'] == pytest.approx(1.0)


def test_generate_eda_report(tmp_path, families):
    """Test that the report holds summaries and writes every figure."""
    report = generate_eda_report(families, output_dir=str(tmp_path))

    assert len(report['figures']) == 3
    for name in report['figures']:
        assert (tmp_path / name).exists()
    assert set(report['by_literacy']) == {'no', 'yes'}
    assert report['dispersion']['n'] == len(families)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
