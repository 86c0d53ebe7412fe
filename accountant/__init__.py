"""
accountant - Senior/Junior Tranche Accountant

Splits the profit and loss of one pooled investment between a loss-protected
senior side (ST) and a junior side (JT) that absorbs losses first and earns a
share of senior gains, while keeping

    st_raw_nav + jt_raw_nav == st_effective_nav + jt_effective_nav

after every operation.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from accountant import (
        Accountant, AccountantConfig, StaticCurveYDM, CapitalFlowKind,
    )

    accountant = Accountant(
        "market",
        kernel="kernel",
        config=AccountantConfig(
            coverage_ratio=Decimal("0.2"),
            beta_sensitivity=Decimal("0.5"),
            loan_to_value_threshold=Decimal("0.9"),
            fixed_term_duration=timedelta(days=30),
        ),
        ydm=StaticCurveYDM(Decimal("0.9"), Decimal("0"), Decimal("0.2"), Decimal("0.8")),
    )
    t0 = datetime(2025, 1, 1)
    accountant.apply_capital_flow("kernel", 100, 0, CapitalFlowKind.ST_DEPOSIT, t0)
    accountant.apply_capital_flow("kernel", 100, 50, CapitalFlowKind.JT_DEPOSIT, t0)

    # Strategy reports a senior loss of 20: junior covers it
    snapshot = accountant.sync_accounting("kernel", 80, 50, t0 + timedelta(days=1))
    snapshot.jt_coverage_impermanent_loss   # Decimal('20')
"""

# Core types
from .core import (
    MarketState,
    CapitalFlowKind,
    AccountantConfig,
    LedgerState,
    SyncedSnapshot,
    AccountingRecord,
    AccountingError,
    Unauthorized,
    InvalidNAV,
    InvalidCapitalFlowDirection,
    WithdrawalExceedsEffectiveNAV,
    SeniorImpairmentOutstanding,
    CoverageRequirementUnsatisfied,
    InvariantViolation,
    ConfigurationError,
    InvalidCoverageRatio,
    InvalidBetaSensitivity,
    InvalidLoanToValueThreshold,
    InvalidProtocolFeeRate,
    InvalidFixedTermDuration,
    InvalidYieldDistributionModel,
    MAX_PROTOCOL_FEE_RATE,
    MIN_COVERAGE_RATIO,
    NAV_DECIMAL_PLACES,
    WAD_DECIMAL_PLACES,
)

# Fixed-point arithmetic
from .fixed_point import (
    to_decimal,
    quantize,
    mul_div,
    mul_div_down,
    mul_div_up,
    clamp_fraction,
)

# Yield distribution models
from .ydm import (
    YieldDistributionModel,
    StaticCurveYDM,
    AdaptiveCurveYDM,
    compute_utilization,
)

# Sync engine
from .sync import (
    compute_sync,
    compute_protocol_fee,
    compute_loan_to_value,
    compute_market_state,
    check_invariants,
)

# Post-operation adjuster
from .capital_flow import (
    compute_capital_flow,
    validate_capital_flow_direction,
    rescale_impermanent_loss,
)

# Coverage calculator
from .coverage import (
    is_coverage_satisfied,
    required_junior_nav,
    max_senior_deposit,
    max_junior_withdrawal,
    max_withdrawal_for_claims,
    split_claimable,
)

# Accountant
from .accountant import Accountant

# Simulation
from .simulation import (
    generate_raw_nav_path,
    run_raw_nav_path,
    summarize_path,
    PathSummary,
)
