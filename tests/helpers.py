"""
helpers.py - Shared builders and assertions for accountant tests

- make_config / make_accountant: reference market (coverage 20%, beta 0.5,
  LLTV 90%, no fees, 30-day fixed term) with selected overrides
- fund: senior then junior deposits through the capital-flow path
- assert_invariants: NAV conservation, IL ordering, non-negativity
"""

from datetime import datetime, timedelta
from decimal import Decimal

from accountant import (
    Accountant, AccountantConfig, CapitalFlowKind, SyncedSnapshot,
)

from tests.fake_ydm import FixedShareYDM


KERNEL = "kernel"
T0 = datetime(2025, 1, 1)


def day(n: int) -> datetime:
    return T0 + timedelta(days=n)


def make_config(**overrides) -> AccountantConfig:
    """Reference configuration with selected fields overridden."""
    params = dict(
        coverage_ratio=Decimal("0.2"),
        beta_sensitivity=Decimal("0.5"),
        loan_to_value_threshold=Decimal("0.9"),
        st_protocol_fee_rate=Decimal("0"),
        jt_protocol_fee_rate=Decimal("0"),
        fixed_term_duration=timedelta(days=30),
    )
    params.update(overrides)
    return AccountantConfig(**params)


def make_accountant(config=None, ydm=None, **config_overrides) -> Accountant:
    return Accountant(
        "test",
        kernel=KERNEL,
        config=config or make_config(**config_overrides),
        ydm=ydm if ydm is not None else FixedShareYDM(),
        verbose=False,
    )


def fund(accountant: Accountant, st_amount, jt_amount, timestamp: datetime = T0) -> None:
    """Deposit senior then junior capital on top of the current raw NAVs."""
    s = accountant.state
    st_raw = s.st_raw_nav + Decimal(str(st_amount))
    accountant.apply_capital_flow(KERNEL, st_raw, s.jt_raw_nav, CapitalFlowKind.ST_DEPOSIT, timestamp)
    jt_raw = s.jt_raw_nav + Decimal(str(jt_amount))
    accountant.apply_capital_flow(KERNEL, st_raw, jt_raw, CapitalFlowKind.JT_DEPOSIT, timestamp)


def assert_invariants(state) -> None:
    """NAV conservation, IL ordering and non-negativity."""
    if isinstance(state, SyncedSnapshot):
        state = state.state
    assert state.st_raw_nav + state.jt_raw_nav == state.st_effective_nav + state.jt_effective_nav
    if state.st_impermanent_loss > 0:
        assert state.jt_effective_nav == 0
    for value in (
        state.st_raw_nav, state.jt_raw_nav, state.st_effective_nav, state.jt_effective_nav,
        state.st_impermanent_loss, state.jt_coverage_impermanent_loss, state.jt_self_impermanent_loss,
    ):
        assert value >= 0
