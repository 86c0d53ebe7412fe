"""
Atomicity Conformance Tests

INVARIANT: Operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ exactly one audit record is appended and the state is
                     the snapshot O returned
        O fails    ⟹ state, history and clock are unchanged

Previews and coverage quotes are reads: they never change the ledger.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from accountant import (
    Accountant, AccountantConfig, CapitalFlowKind, AccountingError,
)

from tests.fake_ydm import FixedShareYDM
from tests.helpers import KERNEL, T0, assert_invariants


D = Decimal


def reference_accountant():
    config = AccountantConfig(
        coverage_ratio=D("0.2"),
        beta_sensitivity=D("0.5"),
        loan_to_value_threshold=D("0.9"),
        fixed_term_duration=timedelta(days=30),
    )
    acct = Accountant("atomic", kernel=KERNEL, config=config, ydm=FixedShareYDM(), verbose=False)
    acct.apply_capital_flow(KERNEL, 100, 0, CapitalFlowKind.ST_DEPOSIT, T0)
    acct.apply_capital_flow(KERNEL, 100, 50, CapitalFlowKind.JT_DEPOSIT, T0)
    acct.sync_accounting(KERNEL, 80, 50, T0 + timedelta(days=1))
    return acct


raw_navs = st.decimals(min_value=D("-10"), max_value=D("200"), places=2)
callers = st.sampled_from([KERNEL, KERNEL, KERNEL, "mallory"])
day_offsets = st.integers(min_value=-2, max_value=40)


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(callers, st.sampled_from(list(CapitalFlowKind)), raw_navs, raw_navs, day_offsets, st.booleans())
    @settings(max_examples=300, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_capital_flow_all_or_nothing(self, caller, kind, st_raw, jt_raw, offset, checked):
        """
        PROPERTY: A capital flow either commits one record or changes nothing.
        """
        acct = reference_accountant()
        before, history_len, clock = acct.state, len(acct.history), acct.current_time
        timestamp = T0 + timedelta(days=offset)
        apply = acct.apply_capital_flow_with_coverage_check if checked else acct.apply_capital_flow

        try:
            snap = apply(caller, st_raw, jt_raw, kind, timestamp)
        except (AccountingError, ValueError):
            assert acct.state == before
            assert len(acct.history) == history_len
            assert acct.current_time == clock
            return

        assert len(acct.history) == history_len + 1
        assert acct.state == snap.state
        assert acct.history[-1].before == before
        assert acct.current_time == timestamp
        assert_invariants(acct.state)

    @given(callers, raw_navs, raw_navs, day_offsets)
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_sync_all_or_nothing(self, caller, st_raw, jt_raw, offset):
        """
        PROPERTY: A sync either commits one record or changes nothing.
        """
        acct = reference_accountant()
        before, history_len = acct.state, len(acct.history)
        timestamp = T0 + timedelta(days=offset)

        try:
            snap = acct.sync_accounting(caller, st_raw, jt_raw, timestamp)
        except (AccountingError, ValueError):
            assert acct.state == before
            assert len(acct.history) == history_len
            return

        assert caller == KERNEL
        assert st_raw >= 0 and jt_raw >= 0
        assert acct.state == snap.state
        assert len(acct.history) == history_len + 1

    @given(raw_navs, raw_navs, st.integers(min_value=1, max_value=40))
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_reads_never_mutate(self, st_raw, jt_raw, offset):
        """
        PROPERTY: preview_sync and the coverage quotes leave the ledger and
        the yield model untouched, whatever they return or raise.
        """
        acct = reference_accountant()
        before, history_len = acct.state, len(acct.history)
        timestamp = T0 + timedelta(days=offset)

        for read in (
            lambda: acct.preview_sync(st_raw, jt_raw, timestamp),
            lambda: acct.max_senior_deposit_given_coverage(st_raw, jt_raw, timestamp),
            lambda: acct.max_junior_withdrawal_given_coverage(st_raw, jt_raw, 1, 1, timestamp),
        ):
            try:
                read()
            except (AccountingError, ValueError):
                pass
            assert acct.state == before
            assert len(acct.history) == history_len
            assert acct.ydm.accrue_calls == []


class TestAtomicityEdgeCases:
    """Specific rejection paths."""

    @pytest.mark.parametrize("kind,st_raw,jt_raw", [
        (CapitalFlowKind.ST_DEPOSIT, 70, 50),      # wrong direction
        (CapitalFlowKind.JT_WITHDRAW, 80, 60),     # wrong direction
        (CapitalFlowKind.JT_WITHDRAW, 80, 10),     # beyond junior's 30
        (CapitalFlowKind.ST_WITHDRAW, 0, 0),       # beyond senior's 100
    ])
    def test_rejected_flows(self, kind, st_raw, jt_raw):
        acct = reference_accountant()
        before = acct.state
        with pytest.raises(AccountingError):
            acct.apply_capital_flow(KERNEL, st_raw, jt_raw, kind, T0 + timedelta(days=1))
        assert acct.state == before
        assert len(acct.history) == 3

    def test_coverage_rejection_after_valid_flow_computation(self):
        """The flow itself is valid; only the coverage check fails."""
        acct = reference_accountant()
        before = acct.state
        with pytest.raises(AccountingError):
            acct.apply_capital_flow_with_coverage_check(
                KERNEL, 80, 25, CapitalFlowKind.JT_WITHDRAW, T0 + timedelta(days=1)
            )
        assert acct.state == before
        assert len(acct.history) == 3
