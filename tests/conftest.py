"""
conftest.py - Shared pytest fixtures for accountant tests

Provides common fixtures used across unit, functional and conformance tests:
- Reference configuration
- Fake yield distribution model with a fixed 25% junior share
- Empty and funded (100 senior / 50 junior) accountants
- A balanced LedgerState for the pure-function tests
"""

import pytest
from decimal import Decimal

from accountant import Accountant, AccountantConfig, LedgerState

from tests.fake_ydm import FixedShareYDM
from tests.helpers import T0, make_config, make_accountant, fund


@pytest.fixture
def config() -> AccountantConfig:
    return make_config()


@pytest.fixture
def ydm() -> FixedShareYDM:
    return FixedShareYDM(Decimal("0.25"))


@pytest.fixture
def accountant(ydm) -> Accountant:
    """Empty market with the reference configuration."""
    return make_accountant(ydm=ydm)


@pytest.fixture
def funded_accountant(ydm) -> Accountant:
    """Market with 100 senior and 50 junior, nothing synced yet."""
    acct = make_accountant(ydm=ydm)
    fund(acct, 100, 50)
    return acct


@pytest.fixture
def balanced_state() -> LedgerState:
    """100 senior / 50 junior, no impairments, last synced at T0."""
    return LedgerState(
        st_raw_nav=Decimal("100"),
        jt_raw_nav=Decimal("50"),
        st_effective_nav=Decimal("100"),
        jt_effective_nav=Decimal("50"),
        last_sync_timestamp=T0,
    )
