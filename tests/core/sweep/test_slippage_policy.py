"""
Tests for the slippage policy.
"""

import pytest

from sweeper.core.sweep.models import impact_pct_to_bps
from sweeper.core.sweep.slippage import MAX_BPS, SlippagePolicy, slippage_bound


IMPACTS = [0, 1, 10, 29, 30, 100, 250, 313, 314, 500, 999, 1000, 2500, 5000, 8900, 9000, 9500, 9970, 9971, 10000]


# =============================================================================
# Normal bound
# =============================================================================

class TestNormalBound:
    def test_zero_impact_gets_minimum_buffer(self):
        assert slippage_bound(0) == 30

    def test_grows_with_impact(self):
        # 30 + ceil(1.5 * 100)
        assert slippage_bound(100) == 180

    def test_capped_low(self):
        assert slippage_bound(300) == 480
        assert slippage_bound(314) == 500

    def test_never_tighter_than_impact_plus_buffer(self):
        # Above the cap the bound tracks the impact itself
        assert slippage_bound(600) == 630

    def test_negative_impact_treated_as_zero(self):
        assert slippage_bound(-50) == slippage_bound(0)


# =============================================================================
# Forced bound
# =============================================================================

class TestForcedBound:
    def test_floor(self):
        assert slippage_bound(0, force=True) == 1000
        assert slippage_bound(100, force=True) == 1100

    def test_low_floor_applies_with_small_buffer(self):
        policy = SlippagePolicy(force_buffer_bps=100)
        assert policy.bound(0, force=True) == 500

    def test_capped_near_total_loss(self):
        assert slippage_bound(8900, force=True) == 9900
        assert slippage_bound(9500, force=True) == 9900

    def test_ceiling_is_total_loss(self):
        assert slippage_bound(9990, force=True) == MAX_BPS
        assert slippage_bound(20_000, force=True) == MAX_BPS

    def test_forced_is_at_least_normal(self):
        for impact in IMPACTS:
            assert slippage_bound(impact, force=True) >= slippage_bound(impact)


# =============================================================================
# Properties
# =============================================================================

class TestProperties:
    @pytest.mark.parametrize("force", [False, True])
    def test_monotonic(self, force):
        bounds = [slippage_bound(i, force) for i in range(0, MAX_BPS + 1, 7)]
        assert bounds == sorted(bounds)

    @pytest.mark.parametrize("force", [False, True])
    def test_safety(self, force):
        for impact in range(0, MAX_BPS + 1, 13):
            assert slippage_bound(impact, force) >= min(MAX_BPS, impact + 30)

    def test_policy_from_settings(self, monkeypatch):
        from sweeper.config import settings

        monkeypatch.setattr(settings, "slippage_normal_cap_bps", 200)
        policy = SlippagePolicy.from_settings()
        assert policy.normal_cap_bps == 200
        assert policy.bound(150) == 200


class TestImpactConversion:
    def test_rounds_up(self):
        assert impact_pct_to_bps(0.101) == 11
        assert impact_pct_to_bps(12.0) == 1200

    def test_float_noise_does_not_add_a_bps(self):
        assert impact_pct_to_bps(0.1 + 0.2) == 30

    def test_non_positive(self):
        assert impact_pct_to_bps(0) == 0
        assert impact_pct_to_bps(-3.5) == 0
