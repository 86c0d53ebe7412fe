"""
accountant.py - Stateful Tranche Accountant

The Accountant is the single writer of a market's LedgerState. It wires the
pure sync engine, capital-flow adjuster and coverage calculator to one owned
state value and one configuration.

Key responsibilities:
    - Authorizes mutating calls (only the registered kernel may sync or flow)
    - Computes the full result first, commits only if every check passes
    - Keeps an append-only audit trail of committed operations
    - Exposes read-only previews and coverage quotes for external callers
    - Validates configuration changes before swapping them in
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, NoReturn, Optional, Tuple, Any

from .core import (
    ZERO,
    CapitalFlowKind,
    AccountantConfig, LedgerState, SyncedSnapshot, AccountingRecord,
    AccountingError, Unauthorized, InvalidNAV, CoverageRequirementUnsatisfied,
    InvalidCoverageRatio, InvalidBetaSensitivity, InvalidLoanToValueThreshold,
    InvalidProtocolFeeRate, InvalidYieldDistributionModel,
)
from .fixed_point import to_decimal, Number
from .ydm import YieldDistributionModel, compute_utilization
from .sync import compute_sync, compute_loan_to_value, check_invariants
from .capital_flow import compute_capital_flow
from .coverage import is_coverage_satisfied, max_senior_deposit, max_withdrawal_for_claims


SYNC_OPERATION = "SYNC"


class Accountant:
    """
    NAV accountant for one senior/junior market.

    Not thread-safe. Calls are expected to be serialized by the caller; each
    operation is all-or-nothing within a single call.

    Example:
        accountant = Accountant(
            "ETH-market",
            kernel="kernel",
            config=AccountantConfig(
                coverage_ratio=Decimal("0.2"),
                beta_sensitivity=Decimal("0.5"),
                loan_to_value_threshold=Decimal("0.9"),
                fixed_term_duration=timedelta(days=30),
            ),
            ydm=StaticCurveYDM(Decimal("0.9"), Decimal("0"), Decimal("0.2"), Decimal("0.8")),
        )
        accountant.apply_capital_flow("kernel", 100, 0, CapitalFlowKind.ST_DEPOSIT, t0)
        accountant.apply_capital_flow("kernel", 100, 50, CapitalFlowKind.JT_DEPOSIT, t0)
        snapshot = accountant.sync_accounting("kernel", 80, 50, t1)
    """

    def __init__(
        self,
        name: str,
        kernel: str,
        config: AccountantConfig,
        ydm: YieldDistributionModel,
        initial_state: Optional[LedgerState] = None,
        verbose: bool = True,
    ):
        """
        Create an accountant for a new market.

        Args:
            name: Market identifier, used in audit record ids
            kernel: Identity of the only caller allowed to mutate state
            config: Market configuration (validated here)
            ydm: Yield distribution model
            initial_state: Starting state (default: everything zero, PERPETUAL)
            verbose: Print a line for every applied or rejected operation

        Raises:
            ConfigurationError: If config or ydm is invalid
        """
        config.validate()
        _check_ydm(ydm)
        self.name = name
        self.kernel = kernel
        self.verbose = verbose
        self._config = config
        self._ydm = ydm
        self._state = initial_state or LedgerState()
        check_invariants(self._state)
        self.history: List[AccountingRecord] = []
        self._current_time: Optional[datetime] = None

    # ========================================================================
    # READ ACCESS
    # ========================================================================

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def config(self) -> AccountantConfig:
        return self._config

    @property
    def ydm(self) -> YieldDistributionModel:
        return self._ydm

    @property
    def current_time(self) -> Optional[datetime]:
        """Time of the last committed operation (None before the first one)."""
        return self._current_time

    def utilization(self) -> Decimal:
        s = self._state
        return compute_utilization(
            s.st_raw_nav, s.jt_raw_nav,
            self._config.beta_sensitivity, self._config.coverage_ratio, s.jt_effective_nav,
        )

    def loan_to_value(self) -> Decimal:
        s = self._state
        return compute_loan_to_value(s.st_effective_nav, s.jt_effective_nav, s.st_impermanent_loss)

    def is_coverage_satisfied(self) -> bool:
        return is_coverage_satisfied(
            self._state.st_effective_nav, self._state.jt_effective_nav, self._config.coverage_ratio
        )

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check NAV conservation on the current state.

        Returns:
            Dict with keys:
            - 'valid': bool - True if raw and effective totals match
            - 'raw_total': Decimal
            - 'effective_total': Decimal
            - 'discrepancies': List[Dict] - one entry per violated condition
        """
        s = self._state
        discrepancies = []
        if s.total_raw_nav != s.total_effective_nav:
            discrepancies.append({
                'check': 'nav_conservation',
                'expected': s.total_raw_nav,
                'actual': s.total_effective_nav,
                'difference': abs(s.total_raw_nav - s.total_effective_nav),
            })
        if s.st_impermanent_loss > ZERO and s.jt_effective_nav != ZERO:
            discrepancies.append({
                'check': 'impermanent_loss_ordering',
                'expected': ZERO,
                'actual': s.jt_effective_nav,
                'difference': s.jt_effective_nav,
            })
        return {
            'valid': len(discrepancies) == 0,
            'raw_total': s.total_raw_nav,
            'effective_total': s.total_effective_nav,
            'discrepancies': discrepancies,
        }

    def state_at(self, timestamp: datetime) -> LedgerState:
        """
        Ledger state in force at `timestamp`, from the audit trail.

        Returns the state after the last operation at or before `timestamp`,
        or the state before the first operation if none qualifies.
        """
        result = self.history[0].before if self.history else self._state
        for record in self.history:
            if record.timestamp > timestamp:
                break
            result = record.after.state
        return result

    # ========================================================================
    # SYNC ENGINE
    # ========================================================================

    def preview_sync(self, st_raw_nav: Number, jt_raw_nav: Number, timestamp: datetime) -> SyncedSnapshot:
        """
        Result sync_accounting would produce, without committing anything.

        No authorization: quotes are for any caller. The YDM is only asked
        for a preview, so adaptive curves are not advanced.
        """
        st_raw, jt_raw = self._check_navs(st_raw_nav, jt_raw_nav)
        return compute_sync(self._state, self._config, self._ydm, st_raw, jt_raw, timestamp)

    def sync_accounting(
        self,
        caller: str,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        timestamp: datetime,
    ) -> SyncedSnapshot:
        """
        Recognize PnL since the last observation and commit the new state.

        Args:
            caller: Identity of the caller, must be the registered kernel
            st_raw_nav / jt_raw_nav: Raw NAVs just measured by the strategy
            timestamp: Current time

        Returns:
            Snapshot of the committed state with accrued protocol fees

        Raises:
            Unauthorized: Caller is not the kernel
            InvalidNAV: Negative raw NAV
            ValueError: Timestamp earlier than the last operation
        """
        self._authorize(caller, SYNC_OPERATION)
        st_raw, jt_raw = self._check_navs(st_raw_nav, jt_raw_nav, SYNC_OPERATION)
        self._check_time(timestamp, SYNC_OPERATION)
        snapshot = compute_sync(
            self._state, self._config, self._ydm, st_raw, jt_raw, timestamp, accrue=True
        )
        self._commit(SYNC_OPERATION, timestamp, snapshot)
        return snapshot

    # ========================================================================
    # POST-OPERATION ADJUSTER
    # ========================================================================

    def apply_capital_flow(
        self,
        caller: str,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        kind: CapitalFlowKind,
        timestamp: datetime,
    ) -> SyncedSnapshot:
        """
        Apply a deposit or withdrawal the kernel has just executed.

        Raises:
            Unauthorized: Caller is not the kernel
            InvalidNAV: Negative raw NAV
            InvalidCapitalFlowDirection: Raw deltas do not match `kind`
            WithdrawalExceedsEffectiveNAV: Withdrawal larger than the side's claim
            SeniorImpairmentOutstanding: Junior deposit while senior carries IL
        """
        snapshot = self._prepare_capital_flow(caller, st_raw_nav, jt_raw_nav, kind, timestamp)
        self._commit(kind.value, timestamp, snapshot)
        return snapshot

    def apply_capital_flow_with_coverage_check(
        self,
        caller: str,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        kind: CapitalFlowKind,
        timestamp: datetime,
    ) -> SyncedSnapshot:
        """
        apply_capital_flow, committed only if coverage still holds afterwards.

        Raises:
            CoverageRequirementUnsatisfied: The resulting state breaks coverage
            (plus everything apply_capital_flow raises)
        """
        snapshot = self._prepare_capital_flow(caller, st_raw_nav, jt_raw_nav, kind, timestamp)
        s = snapshot.state
        if not is_coverage_satisfied(s.st_effective_nav, s.jt_effective_nav, self._config.coverage_ratio):
            self._reject(
                kind.value,
                CoverageRequirementUnsatisfied(
                    f"{kind.value} leaves junior effective NAV {s.jt_effective_nav} below "
                    f"{self._config.coverage_ratio} of pool {s.total_effective_nav}"
                ),
            )
        self._commit(kind.value, timestamp, snapshot)
        return snapshot

    def _prepare_capital_flow(
        self,
        caller: str,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        kind: CapitalFlowKind,
        timestamp: datetime,
    ) -> SyncedSnapshot:
        self._authorize(caller, kind.value)
        st_raw, jt_raw = self._check_navs(st_raw_nav, jt_raw_nav, kind.value)
        self._check_time(timestamp, kind.value)
        try:
            new_state = compute_capital_flow(
                self._state, st_raw, jt_raw, kind, self._config.nav_decimal_places
            )
        except AccountingError as e:
            self._reject(kind.value, e)
        check_invariants(new_state)
        return SyncedSnapshot(
            state=new_state,
            timestamp=timestamp,
            utilization=compute_utilization(
                new_state.st_raw_nav, new_state.jt_raw_nav,
                self._config.beta_sensitivity, self._config.coverage_ratio,
                new_state.jt_effective_nav,
            ),
            loan_to_value=compute_loan_to_value(
                new_state.st_effective_nav, new_state.jt_effective_nav,
                new_state.st_impermanent_loss,
            ),
        )

    # ========================================================================
    # COVERAGE CALCULATOR
    # ========================================================================

    def max_senior_deposit_given_coverage(
        self,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        timestamp: datetime,
    ) -> Decimal:
        """
        Largest senior deposit that keeps coverage satisfied, evaluated on the
        state a sync to the given raw NAVs would produce.
        """
        preview = self.preview_sync(st_raw_nav, jt_raw_nav, timestamp)
        return max_senior_deposit(
            preview.st_effective_nav, preview.jt_effective_nav,
            self._config.coverage_ratio, self._config.nav_decimal_places,
        )

    def max_junior_withdrawal_given_coverage(
        self,
        st_raw_nav: Number,
        jt_raw_nav: Number,
        senior_claim: Number,
        junior_claim: Number,
        timestamp: datetime,
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Junior capital a holder can take out without breaking coverage.

        Args:
            senior_claim: Part of the holder's claim sitting in senior raw NAV
            junior_claim: Part of the holder's claim sitting in junior raw NAV

        Returns:
            (total_claimable, senior_portion, junior_portion), portions floor-rounded
        """
        preview = self.preview_sync(st_raw_nav, jt_raw_nav, timestamp)
        return max_withdrawal_for_claims(
            preview.st_effective_nav, preview.jt_effective_nav,
            self._config.coverage_ratio,
            to_decimal(senior_claim), to_decimal(junior_claim),
            self._config.nav_decimal_places,
        )

    # ========================================================================
    # CONFIGURATION (admin setters)
    # ========================================================================

    def set_coverage_ratio(self, coverage_ratio: Number) -> None:
        self._reconfigure(coverage_ratio=_config_decimal('coverage_ratio', coverage_ratio, InvalidCoverageRatio))

    def set_beta_sensitivity(self, beta_sensitivity: Number) -> None:
        self._reconfigure(beta_sensitivity=_config_decimal('beta_sensitivity', beta_sensitivity, InvalidBetaSensitivity))

    def set_loan_to_value_threshold(self, loan_to_value_threshold: Number) -> None:
        self._reconfigure(loan_to_value_threshold=_config_decimal(
            'loan_to_value_threshold', loan_to_value_threshold, InvalidLoanToValueThreshold
        ))

    def set_protocol_fee_rates(self, st_protocol_fee_rate: Number, jt_protocol_fee_rate: Number) -> None:
        self._reconfigure(
            st_protocol_fee_rate=_config_decimal('st_protocol_fee_rate', st_protocol_fee_rate, InvalidProtocolFeeRate),
            jt_protocol_fee_rate=_config_decimal('jt_protocol_fee_rate', jt_protocol_fee_rate, InvalidProtocolFeeRate),
        )

    def set_fixed_term_duration(self, fixed_term_duration: timedelta) -> None:
        """Takes effect at the next sync; a running term keeps its end timestamp."""
        self._reconfigure(fixed_term_duration=fixed_term_duration)

    def set_yield_distribution_model(self, ydm: YieldDistributionModel) -> None:
        _check_ydm(ydm)
        self._ydm = ydm

    def _reconfigure(self, **changes) -> None:
        candidate = replace(self._config, **changes)
        candidate.validate()
        self._config = candidate

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _authorize(self, caller: str, operation: str) -> None:
        if caller != self.kernel:
            self._reject(operation, Unauthorized(f"{caller!r} may not call {operation}"))

    def _check_navs(self, st_raw_nav: Number, jt_raw_nav: Number, operation: str = "PREVIEW") -> Tuple[Decimal, Decimal]:
        try:
            st_raw = to_decimal(st_raw_nav)
            jt_raw = to_decimal(jt_raw_nav)
        except ValueError as e:
            self._reject(operation, InvalidNAV(str(e)))
        for label, value in (("senior", st_raw), ("junior", jt_raw)):
            if not value.is_finite() or value < ZERO:
                self._reject(operation, InvalidNAV(f"{label} raw NAV must be a non-negative number, got {value}"))
        return st_raw, jt_raw

    def _check_time(self, timestamp: datetime, operation: str) -> None:
        if self._current_time is not None and timestamp < self._current_time:
            self._reject(
                operation,
                ValueError(f"Cannot move time backwards: {timestamp} < {self._current_time}"),
            )

    def _reject(self, operation: str, error: Exception) -> NoReturn:
        if self.verbose:
            print(f"✗ REJECTED {operation}: {error}")
        raise error

    def _generate_record_id(self, sequence: int, timestamp: datetime) -> str:
        micros = int(timestamp.timestamp() * 1_000_000)
        return f"acct:{self.name}:{sequence:012d}:{micros}"

    def _commit(self, operation: str, timestamp: datetime, snapshot: SyncedSnapshot) -> None:
        sequence = len(self.history)
        record = AccountingRecord(
            sequence=sequence,
            record_id=self._generate_record_id(sequence, timestamp),
            operation=operation,
            timestamp=timestamp,
            before=self._state,
            after=snapshot,
        )
        self._state = snapshot.state
        self._current_time = timestamp
        self.history.append(record)
        if self.verbose:
            self._print_applied(operation, snapshot)

    def _print_applied(self, operation: str, snapshot: SyncedSnapshot) -> None:
        s = snapshot.state
        line = (
            f"✓ APPLIED {operation}: ST {s.st_effective_nav} (raw {s.st_raw_nav}) | "
            f"JT {s.jt_effective_nav} (raw {s.jt_raw_nav}) | {s.market_state.value}"
        )
        if s.st_impermanent_loss or s.jt_coverage_impermanent_loss or s.jt_self_impermanent_loss:
            line += (
                f" | IL st={s.st_impermanent_loss} jt_cov={s.jt_coverage_impermanent_loss} "
                f"jt_self={s.jt_self_impermanent_loss}"
            )
        if snapshot.st_protocol_fee_accrued or snapshot.jt_protocol_fee_accrued:
            line += f" | fees st={snapshot.st_protocol_fee_accrued} jt={snapshot.jt_protocol_fee_accrued}"
        print(line)


def _check_ydm(ydm: Any) -> None:
    if not isinstance(ydm, YieldDistributionModel):
        raise InvalidYieldDistributionModel(
            f"{type(ydm).__name__} does not implement the YieldDistributionModel protocol"
        )


def _config_decimal(name: str, value: Number, error: type) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise error(f"{name} must be a number, got {value!r}") from None
