import numpy as np
import pandas as pd
import pytest

from regime_rotation.labels import (
    GOLDILOCKS, OVERHEATING, SLOWDOWN, STAGFLATION,
    FEATURE_COLS, FEATURE_GROUPS, LABEL_COL,
    label_regime, label_regimes, matching_rule, regime_distribution,
)
from tests.conftest import make_feature_row


class TestPrimaryRules:
    def test_stagflation(self):
        """growth <= 0, inflation >= 0.75, volatility >= 0"""
        row = make_feature_row(pmi_z=0.0, breakeven10_z=0.75, vix_z=0.0)
        assert label_regime(row) == STAGFLATION

    def test_stagflation_negation_falls_through(self):
        """Inflation just below 0.75 is not stagflation by the primary rule"""
        row = make_feature_row(pmi_z=0.0, breakeven10_z=0.74, vix_z=0.0)
        assert matching_rule(row).name != "stagflation"

    def test_overheating(self):
        row = make_feature_row(spx_ret_3w_z=0.5, vix_z=-0.5, vvix_z=-0.2, rv_3w_z=-0.2)
        assert label_regime(row) == OVERHEATING
        assert matching_rule(row).name == "overheating"

    def test_overheating_requires_strict_vol_stress(self):
        """vvix + rv == -0.3 is not below -0.3"""
        row = make_feature_row(spx_ret_3w_z=0.5, vix_z=-0.5, vvix_z=-0.3, rv_3w_z=0.0,
                               pmi_z=0.1, breakeven10_z=0.0)
        assert matching_rule(row).name == "goldilocks"

    def test_slowdown(self):
        row = make_feature_row(spx_ret_3w_z=-0.5, pmi_z=0.0, vix_z=0.0)
        assert label_regime(row) == SLOWDOWN

    def test_goldilocks(self):
        row = make_feature_row(spx_ret_3w_z=0.5, vix_z=0.0, pmi_z=0.0, breakeven10_z=-0.5)
        assert label_regime(row) == GOLDILOCKS
        assert matching_rule(row).name == "goldilocks"

    def test_stagflation_precedes_slowdown(self):
        """A row matching both rules gets the earlier one"""
        row = make_feature_row(spx_ret_3w_z=-1.0, pmi_z=-1.0, vix_z=1.0, breakeven10_z=1.0)
        assert label_regime(row) == STAGFLATION

    def test_overheating_precedes_goldilocks(self):
        row = make_feature_row(spx_ret_3w_z=1.0, vix_z=-1.0, pmi_z=1.0,
                               breakeven10_z=0.0, vvix_z=-1.0)
        assert label_regime(row) == OVERHEATING


class TestFallbackRules:
    def test_fallback_goldilocks(self):
        row = make_feature_row(spx_ret_3w_z=0.1, vix_z=-0.1, ip_yoy_z=0.5, unemp_z=0.1)
        assert matching_rule(row).name == "fallback_goldilocks"
        assert label_regime(row) == GOLDILOCKS

    def test_fallback_slowdown(self):
        row = make_feature_row(spx_ret_3w_z=-0.1, vix_z=0.1, pmi_z=1.0)
        assert matching_rule(row).name == "fallback_slowdown"
        assert label_regime(row) == SLOWDOWN

    def test_fallback_stagflation_from_cpi(self):
        row = make_feature_row(cpi_yoy_z=0.8)
        assert matching_rule(row).name == "fallback_stagflation"
        assert label_regime(row) == STAGFLATION

    def test_all_zero_row_is_overheating(self):
        """All-zero input matches no rule and lands on the default"""
        assert matching_rule(make_feature_row()) is None
        assert label_regime(make_feature_row()) == OVERHEATING

    def test_empty_row_reads_as_zero(self):
        assert label_regime({}) == OVERHEATING


class TestMissingValues:
    def test_none_and_nan_count_as_zero(self):
        row = make_feature_row(pmi_z=None, breakeven10_z=1.0, vix_z=np.nan)
        assert label_regime(row) == STAGFLATION

    def test_series_input(self):
        row = pd.Series(make_feature_row(spx_ret_3w_z=-0.5, pmi_z=0.0, vix_z=0.0))
        assert label_regime(row) == SLOWDOWN

    def test_total_over_random_rows(self):
        rng = np.random.default_rng(0)
        for _ in range(200):
            values = rng.normal(scale=1.5, size=len(FEATURE_COLS))
            values[rng.random(len(FEATURE_COLS)) < 0.2] = np.nan
            assert label_regime(dict(zip(FEATURE_COLS, values))) in {0, 1, 2, 3}


class TestLabelFrame:
    def test_scenario_all_goldilocks(self, goldilocks_rows):
        """20 rows with R=1, V=-1, G=1, I=0 are all Goldilocks"""
        labeled = label_regimes(goldilocks_rows)
        assert len(labeled) == 20
        assert (labeled[LABEL_COL] == GOLDILOCKS).all()

    def test_input_not_mutated(self, goldilocks_rows):
        before = goldilocks_rows.copy()
        label_regimes(goldilocks_rows)
        pd.testing.assert_frame_equal(goldilocks_rows, before)

    def test_distribution_indexed_by_all_regimes(self, goldilocks_rows):
        dist = regime_distribution(label_regimes(goldilocks_rows)[LABEL_COL])
        assert list(dist.index) == [0, 1, 2, 3]
        assert dist[GOLDILOCKS] == pytest.approx(1.0)
        assert dist.sum() == pytest.approx(1.0)

    def test_feature_groups_cover_features(self):
        grouped = [f for cols in FEATURE_GROUPS.values() for f in cols]
        assert sorted(grouped) == sorted(FEATURE_COLS)
        assert len(FEATURE_COLS) == 21
