"""
Core types and constants for the tranche accountant.

This module provides the foundational data structures for the accountant:
1. Enums: MarketState, CapitalFlowKind
2. Exceptions: AccountingError and the domain-specific error types
3. Immutable data structures: AccountantConfig, LedgerState, SyncedSnapshot,
   AccountingRecord

Everything here is immutable. The only object that changes over a market's
lifetime is the Accountant, which swaps whole LedgerState values in and out.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Optional


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Accounting must be deterministic, so the global context is fixed at module
# load time. Multiply-divide helpers in fixed_point.py always pass an explicit
# rounding mode; the context rounding only applies to intermediate products.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_ACCOUNTANT_DECIMAL_CONTEXT = getcontext()
_ACCOUNTANT_DECIMAL_CONTEXT.prec = 50
_ACCOUNTANT_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

ZERO = Decimal("0")
ONE = Decimal("1")

# Fractions (yield share, utilization) are carried with 18 decimal places.
WAD_DECIMAL_PLACES = 18

# Default precision for NAV amounts.
NAV_DECIMAL_PLACES = 18

# Protocol fee rates may never exceed this, whatever the configuration says.
MAX_PROTOCOL_FEE_RATE = Decimal("0.25")

# Smallest coverage ratio a market may be configured with.
MIN_COVERAGE_RATIO = Decimal("0.01")


# ============================================================================
# ENUMS
# ============================================================================

class MarketState(Enum):
    """
    Recoverability state of a market.

    PERPETUAL: normal operation, or a solvency event with no grace period.
    FIXED_TERM: junior has covered a senior loss and has until
        fixed_term_end_timestamp to be repaid out of senior gains.
    """
    PERPETUAL = "PERPETUAL"
    FIXED_TERM = "FIXED_TERM"


class CapitalFlowKind(Enum):
    """Pure capital movements applied by the post-operation adjuster."""
    ST_DEPOSIT = "ST_DEPOSIT"
    ST_WITHDRAW = "ST_WITHDRAW"
    JT_DEPOSIT = "JT_DEPOSIT"
    JT_WITHDRAW = "JT_WITHDRAW"

    @property
    def is_deposit(self) -> bool:
        return self in (CapitalFlowKind.ST_DEPOSIT, CapitalFlowKind.JT_DEPOSIT)

    @property
    def is_senior(self) -> bool:
        return self in (CapitalFlowKind.ST_DEPOSIT, CapitalFlowKind.ST_WITHDRAW)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class AccountingError(Exception):
    """Base exception for all accountant errors."""
    pass


class Unauthorized(AccountingError):
    """Raised when a mutating operation is called by anyone but the registered kernel."""
    pass


class InvalidNAV(AccountingError):
    """Raised when a reported raw NAV is negative or not a number."""
    pass


class InvalidCapitalFlowDirection(AccountingError):
    """Raised when the sign of a capital flow does not match its declared kind."""

    def __init__(self, kind: CapitalFlowKind, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or f"Raw NAV deltas do not match capital flow {kind.value}")


class WithdrawalExceedsEffectiveNAV(AccountingError):
    """Raised when a withdrawal is larger than the withdrawing side's effective NAV."""
    pass


class SeniorImpairmentOutstanding(AccountingError):
    """Raised when a junior deposit is attempted while senior carries impermanent loss."""
    pass


class CoverageRequirementUnsatisfied(AccountingError):
    """Raised when an operation would leave junior capital below the coverage requirement."""
    pass


class InvariantViolation(AccountingError):
    """Raised when a computed snapshot breaks NAV conservation or IL ordering. Always a bug."""
    pass


class ConfigurationError(AccountingError):
    """Base class for invalid market configuration."""
    pass


class InvalidCoverageRatio(ConfigurationError):
    pass


class InvalidBetaSensitivity(ConfigurationError):
    pass


class InvalidLoanToValueThreshold(ConfigurationError):
    pass


class InvalidProtocolFeeRate(ConfigurationError):
    pass


class InvalidFixedTermDuration(ConfigurationError):
    pass


class InvalidYieldDistributionModel(ConfigurationError):
    pass


# ============================================================================
# HELPERS
# ============================================================================

def _coerce_decimals(obj, names) -> None:
    """Convert float/int fields of a frozen dataclass to Decimal in place."""
    for name in names:
        value = getattr(obj, name)
        if value is not None and not isinstance(value, Decimal):
            object.__setattr__(obj, name, Decimal(str(value)))


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountantConfig:
    """
    Immutable market configuration.

    Set once when the market is created; replaced wholesale (never mutated)
    by the Accountant's admin setters after validate() passes.
    """
    coverage_ratio: Decimal           # Min junior share of the pooled effective NAV
    beta_sensitivity: Decimal         # Weight of junior raw NAV in utilization
    loan_to_value_threshold: Decimal  # LLTV, forces PERPETUAL when reached
    st_protocol_fee_rate: Decimal = ZERO
    jt_protocol_fee_rate: Decimal = ZERO
    fixed_term_duration: timedelta = timedelta(0)
    nav_decimal_places: int = NAV_DECIMAL_PLACES

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        _coerce_decimals(self, (
            'coverage_ratio', 'beta_sensitivity', 'loan_to_value_threshold',
            'st_protocol_fee_rate', 'jt_protocol_fee_rate',
        ))

    @property
    def max_loan_to_value(self) -> Decimal:
        """Highest LTV reachable with zero impairments while coverage is satisfied."""
        return ONE - self.coverage_ratio

    @property
    def fixed_term_enabled(self) -> bool:
        return self.fixed_term_duration > timedelta(0)

    def validate(self) -> None:
        """
        Check every parameter, raising the matching ConfigurationError.

        Raises:
            InvalidCoverageRatio: coverage outside [MIN_COVERAGE_RATIO, 1)
            InvalidBetaSensitivity: beta outside [0, 1) or coverage * beta >= 1
            InvalidLoanToValueThreshold: LLTV not in (1 - coverage, 1)
            InvalidProtocolFeeRate: a fee rate outside [0, MAX_PROTOCOL_FEE_RATE]
            InvalidFixedTermDuration: negative duration
            ConfigurationError: nav_decimal_places out of range

        NaN, infinite or missing values raise the error of the field they are in.
        """
        for name, error in (
            ('coverage_ratio', InvalidCoverageRatio),
            ('beta_sensitivity', InvalidBetaSensitivity),
            ('loan_to_value_threshold', InvalidLoanToValueThreshold),
            ('st_protocol_fee_rate', InvalidProtocolFeeRate),
            ('jt_protocol_fee_rate', InvalidProtocolFeeRate),
        ):
            value = getattr(self, name)
            if not isinstance(value, Decimal) or not value.is_finite():
                raise error(f"{name} must be a finite number, got {value!r}")
        if not (MIN_COVERAGE_RATIO <= self.coverage_ratio < ONE):
            raise InvalidCoverageRatio(
                f"coverage_ratio must be in [{MIN_COVERAGE_RATIO}, 1), got {self.coverage_ratio}"
            )
        if not (ZERO <= self.beta_sensitivity < ONE):
            raise InvalidBetaSensitivity(
                f"beta_sensitivity must be in [0, 1), got {self.beta_sensitivity}"
            )
        if self.coverage_ratio * self.beta_sensitivity >= ONE:
            raise InvalidBetaSensitivity(
                f"coverage_ratio * beta_sensitivity must be < 1, got "
                f"{self.coverage_ratio * self.beta_sensitivity}"
            )
        if not (self.max_loan_to_value < self.loan_to_value_threshold < ONE):
            raise InvalidLoanToValueThreshold(
                f"loan_to_value_threshold must be in ({self.max_loan_to_value}, 1), "
                f"got {self.loan_to_value_threshold}"
            )
        for name in ('st_protocol_fee_rate', 'jt_protocol_fee_rate'):
            rate = getattr(self, name)
            if not (ZERO <= rate <= MAX_PROTOCOL_FEE_RATE):
                raise InvalidProtocolFeeRate(
                    f"{name} must be in [0, {MAX_PROTOCOL_FEE_RATE}], got {rate}"
                )
        if not isinstance(self.fixed_term_duration, timedelta) or self.fixed_term_duration < timedelta(0):
            raise InvalidFixedTermDuration(
                f"fixed_term_duration must be a non-negative timedelta, got {self.fixed_term_duration!r}"
            )
        if not (0 <= self.nav_decimal_places <= 30):
            raise ConfigurationError(
                f"nav_decimal_places must be in [0, 30], got {self.nav_decimal_places}"
            )


# ============================================================================
# LEDGER STATE
# ============================================================================

_NAV_FIELDS = (
    'st_raw_nav', 'jt_raw_nav', 'st_effective_nav', 'jt_effective_nav',
    'st_impermanent_loss', 'jt_coverage_impermanent_loss', 'jt_self_impermanent_loss',
)


@dataclass(frozen=True, slots=True)
class LedgerState:
    """
    Immutable snapshot of one market's NAV bookkeeping.

    Raw NAVs are what the strategy reports; effective NAVs are what each side
    can claim after loss sharing. A successful operation always leaves
        st_raw_nav + jt_raw_nav == st_effective_nav + jt_effective_nav
    and never leaves senior impermanent loss while junior still has capital.
    """
    st_raw_nav: Decimal = ZERO
    jt_raw_nav: Decimal = ZERO
    st_effective_nav: Decimal = ZERO
    jt_effective_nav: Decimal = ZERO
    st_impermanent_loss: Decimal = ZERO           # Senior loss junior could not absorb
    jt_coverage_impermanent_loss: Decimal = ZERO  # Junior capital spent covering senior
    jt_self_impermanent_loss: Decimal = ZERO      # Junior capital lost to its own PnL
    market_state: MarketState = MarketState.PERPETUAL
    fixed_term_end_timestamp: Optional[datetime] = None  # Kept until coverage loss is cleared
    last_sync_timestamp: Optional[datetime] = None

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        _coerce_decimals(self, _NAV_FIELDS)

    @property
    def total_raw_nav(self) -> Decimal:
        return self.st_raw_nav + self.jt_raw_nav

    @property
    def total_effective_nav(self) -> Decimal:
        return self.st_effective_nav + self.jt_effective_nav


@dataclass(frozen=True, slots=True)
class SyncedSnapshot:
    """
    Result of a sync or capital flow: the new ledger state plus what was
    computed on the way there.

    Protocol fees are reported, never minted; the tranche wrapper reads
    st_protocol_fee_accrued / jt_protocol_fee_accrued and mints shares for them.
    loan_to_value is Decimal('Infinity') for an empty pool.
    """
    state: LedgerState
    timestamp: datetime
    st_protocol_fee_accrued: Decimal = ZERO
    jt_protocol_fee_accrued: Decimal = ZERO
    junior_yield_share: Decimal = ZERO        # Clamped curve output used for the split
    junior_yield_from_senior: Decimal = ZERO  # Amount of the senior gain credited to junior
    utilization: Decimal = ZERO
    loan_to_value: Decimal = ZERO

    def __post_init__(self):
        """Convert float values to Decimal to ensure type consistency."""
        _coerce_decimals(self, (
            'st_protocol_fee_accrued', 'jt_protocol_fee_accrued', 'junior_yield_share',
            'junior_yield_from_senior', 'utilization', 'loan_to_value',
        ))

    # Flat read access to the committed state.

    @property
    def st_raw_nav(self) -> Decimal:
        return self.state.st_raw_nav

    @property
    def jt_raw_nav(self) -> Decimal:
        return self.state.jt_raw_nav

    @property
    def st_effective_nav(self) -> Decimal:
        return self.state.st_effective_nav

    @property
    def jt_effective_nav(self) -> Decimal:
        return self.state.jt_effective_nav

    @property
    def st_impermanent_loss(self) -> Decimal:
        return self.state.st_impermanent_loss

    @property
    def jt_coverage_impermanent_loss(self) -> Decimal:
        return self.state.jt_coverage_impermanent_loss

    @property
    def jt_self_impermanent_loss(self) -> Decimal:
        return self.state.jt_self_impermanent_loss

    @property
    def market_state(self) -> MarketState:
        return self.state.market_state

    @property
    def fixed_term_end_timestamp(self) -> Optional[datetime]:
        return self.state.fixed_term_end_timestamp

    def as_dict(self) -> dict:
        """Flatten into a plain dict (enum as its value), for reporting."""
        out = {f.name: getattr(self.state, f.name) for f in fields(self.state)}
        out['market_state'] = self.state.market_state.value
        for f in fields(self):
            if f.name != 'state':
                out[f.name] = getattr(self, f.name)
        return out


@dataclass(frozen=True, slots=True)
class AccountingRecord:
    """
    Audit-trail entry for one committed operation.

    Attributes:
        sequence: Position in the accountant's history (0-based, gapless)
        record_id: Unique id, acct:{name}:{sequence:012d}:{timestamp_micros}
        operation: "SYNC" or a CapitalFlowKind value
        timestamp: Caller-supplied time of the operation
        before: LedgerState before the operation
        after: Snapshot the operation returned
    """
    sequence: int
    record_id: str
    operation: str
    timestamp: datetime
    before: LedgerState
    after: SyncedSnapshot

    def __repr__(self) -> str:
        s = self.after.state
        return (
            f"AccountingRecord({self.record_id}, {self.operation}, "
            f"st={s.st_effective_nav}/{s.st_raw_nav}, jt={s.jt_effective_nav}/{s.jt_raw_nav}, "
            f"{s.market_state.value})"
        )
