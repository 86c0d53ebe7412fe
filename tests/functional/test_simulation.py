"""
test_simulation.py - Randomized raw-NAV paths replayed through the accountant

Tests verify:
- Same seed gives the same path and the same final ledger
- Conservation holds at every step of long volatile paths
- PathSummary aggregates match the snapshots
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from accountant import (
    generate_raw_nav_path, run_raw_nav_path, summarize_path, PathSummary,
    AdaptiveCurveYDM,
)

from tests.fake_ydm import FixedShareYDM
from tests.helpers import T0, make_accountant, fund, assert_invariants


D = Decimal


def replay(path, ydm=None, **config_overrides):
    acct = make_accountant(ydm=ydm or FixedShareYDM(), **config_overrides)
    fund(acct, 100, 50)
    return acct, run_raw_nav_path(acct, path, T0)


class TestGeneratePath:

    def test_length_and_type(self):
        path = generate_raw_nav_path(D("100"), D("50"), steps=20)
        assert len(path) == 20
        assert all(isinstance(st, Decimal) and isinstance(jt, Decimal) for st, jt in path)

    def test_quantized(self):
        path = generate_raw_nav_path(D("100"), D("50"), steps=5, places=4)
        for st, jt in path:
            assert st == st.quantize(D("0.0001"))
            assert jt == jt.quantize(D("0.0001"))

    def test_deterministic_per_seed(self):
        a = generate_raw_nav_path(D("100"), D("50"), steps=30, seed=7)
        b = generate_raw_nav_path(D("100"), D("50"), steps=30, seed=7)
        c = generate_raw_nav_path(D("100"), D("50"), steps=30, seed=8)
        assert a == b
        assert a != c

    def test_zero_volatility_is_flat(self):
        path = generate_raw_nav_path(
            D("100"), D("50"), steps=3, st_volatility=0.0, jt_volatility=0.0,
        )
        assert path == [(D("100"), D("50"))] * 3

    def test_empty(self):
        assert generate_raw_nav_path(D("100"), D("50"), steps=0) == []

    @pytest.mark.parametrize("kwargs", [dict(steps=-1), dict(steps=5, correlation=1.5)])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            generate_raw_nav_path(D("100"), D("50"), **kwargs)


class TestReplay:

    def test_conservation_on_volatile_path(self):
        path = generate_raw_nav_path(
            D("100"), D("50"), steps=250, st_volatility=0.05, jt_volatility=0.15, seed=3,
        )
        acct, snapshots = replay(path, st_protocol_fee_rate=D("0.1"), jt_protocol_fee_rate=D("0.1"))
        for snap in snapshots:
            assert_invariants(snap)
        assert acct.verify_conservation()['valid']
        assert summarize_path(snapshots).max_conservation_error == 0

    def test_one_sync_per_step(self):
        path = generate_raw_nav_path(D("100"), D("50"), steps=10)
        acct, snapshots = replay(path)
        assert len(snapshots) == 10
        assert acct.current_time == T0 + timedelta(days=10)
        assert [r.operation for r in acct.history[2:]] == ["SYNC"] * 10

    def test_same_seed_same_ledger(self):
        path = generate_raw_nav_path(D("100"), D("50"), steps=100, st_volatility=0.03, seed=11)
        a, _ = replay(path)
        b, _ = replay(path)
        assert a.state == b.state

    def test_adaptive_curve_survives_long_path(self):
        curve = AdaptiveCurveYDM(
            target_utilization=D("0.8"),
            steepness=D("4"),
            adjustment_speed=D("0.0001"),
            initial_share_at_target=D("0.1"),
            max_share_at_target=D("0.25"),
        )
        path = generate_raw_nav_path(D("100"), D("50"), steps=120, st_drift=0.002, seed=5)
        _, snapshots = replay(path, ydm=curve)
        assert curve.min_share_at_target <= curve.share_at_target <= curve.max_share_at_target
        for snap in snapshots:
            assert D("0") <= snap.junior_yield_share <= D("1")


class TestSummary:

    def test_empty(self):
        summary = summarize_path([])
        assert summary.steps == 0
        assert summary.fixed_term_steps == 0

    def test_aggregates(self):
        path = [(D("80"), D("50")), (D("90"), D("50")), (D("120"), D("50"))]
        _, snapshots = replay(path, st_protocol_fee_rate=D("0.1"))
        summary = summarize_path(snapshots)
        assert isinstance(summary, PathSummary)
        assert summary.steps == 3
        assert summary.fixed_term_steps == 2
        assert summary.max_jt_coverage_impermanent_loss == D("20")
        assert summary.min_jt_effective_nav == D("30")
        assert summary.max_st_impermanent_loss == 0
        # 120 - 90 repays 10 of coverage; the fee is 10% of the remaining 20
        assert summary.total_st_protocol_fees == D("2")
        assert summary.total_jt_protocol_fees == 0
