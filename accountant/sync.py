"""
sync.py - Sync Engine (pure functions)

Turns freshly reported raw NAVs into a new LedgerState. The difference
between the reported raw NAVs and the last recorded ones is external profit
or loss; capital flows never go through here (see capital_flow.py).

Processing order is fixed and encodes the product's risk priority:

1. Junior PnL.
   loss: junior effective NAV absorbs it (jt_self_impermanent_loss); any part
         junior cannot absorb is charged to senior as st_impermanent_loss.
   gain: recovers st_impermanent_loss, then jt_self_impermanent_loss; the
         rest is junior's gain, on which the junior protocol fee accrues.

2. Senior PnL, against junior capacity as left by step 1.
   loss: junior effective NAV covers it (jt_coverage_impermanent_loss); the
         uncovered rest becomes st_impermanent_loss with junior at zero.
   gain: recovers st_impermanent_loss, then repays
         jt_coverage_impermanent_loss to junior; the senior protocol fee is
         taken from the rest and the YDM share of what remains goes to junior.

3. Market state.
   An expired fixed term forgives coverage loss. Then LTV >= LLTV or any
   senior impairment forces PERPETUAL; outstanding coverage loss means
   FIXED_TERM (clock set once per loss episode and kept through a breach);
   otherwise PERPETUAL.

4. Invariant check on the result.

Nothing in this module mutates its inputs. The YDM is the only collaborator
that may change: with accrue=True it is advanced over the elapsed interval,
after the new state has passed the invariant check. The share used for the
split is the preview for that interval, which an accruing model reports
identically.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    ZERO, ONE, WAD_DECIMAL_PLACES, MAX_PROTOCOL_FEE_RATE,
    MarketState, AccountantConfig, LedgerState, SyncedSnapshot,
    InvariantViolation,
)
from .fixed_point import mul_div_down, mul_div_up, clamp_fraction
from .ydm import YieldDistributionModel, compute_utilization, INFINITY


# ============================================================================
# BUILDING BLOCKS
# ============================================================================

def elapsed_seconds(last_sync: Optional[datetime], timestamp: datetime) -> int:
    """
    Whole seconds since the last sync (0 for the first sync).

    Raises:
        ValueError: If timestamp is before last_sync
    """
    if last_sync is None:
        return 0
    if timestamp < last_sync:
        raise ValueError(f"Cannot move time backwards: {timestamp} < {last_sync}")
    return int((timestamp - last_sync).total_seconds())


def compute_protocol_fee(gain: Decimal, rate: Decimal, places: int) -> Decimal:
    """
    Protocol fee on a gain, floor-rounded.

    The rate is capped at MAX_PROTOCOL_FEE_RATE regardless of configuration.
    """
    if gain <= ZERO:
        return ZERO
    return mul_div_down(gain, min(rate, MAX_PROTOCOL_FEE_RATE), ONE, places)


def compute_loan_to_value(
    st_effective_nav: Decimal,
    jt_effective_nav: Decimal,
    st_impermanent_loss: Decimal,
) -> Decimal:
    """
    (st_effective + st_il) / (st_effective + jt_effective), rounded up.

    Returns Decimal('Infinity') for an empty pool.
    """
    denominator = st_effective_nav + jt_effective_nav
    if denominator <= ZERO:
        return INFINITY
    return mul_div_up(st_effective_nav + st_impermanent_loss, ONE, denominator, WAD_DECIMAL_PLACES)


def compute_market_state(
    prior_state: MarketState,
    prior_end: Optional[datetime],
    st_effective_nav: Decimal,
    jt_effective_nav: Decimal,
    st_impermanent_loss: Decimal,
    jt_coverage_impermanent_loss: Decimal,
    config: AccountantConfig,
    timestamp: datetime,
) -> Tuple[MarketState, Optional[datetime], Decimal]:
    """
    Decide the market state after a sync.

    A loss episode lasts while coverage loss is outstanding. Its term end is
    set on the first entry into FIXED_TERM and carried through an LTV breach
    or senior impairment (state PERPETUAL, end kept), so returning to
    FIXED_TERM resumes the same clock. Only once coverage loss is gone does
    the next episode get a fresh clock.

    Returns:
        (market_state, fixed_term_end_timestamp, jt_coverage_impermanent_loss)
        The coverage loss is returned because expiry and a disabled fixed
        term both write it off.
    """
    if not config.fixed_term_enabled:
        return MarketState.PERPETUAL, None, ZERO

    if (
        prior_state == MarketState.FIXED_TERM
        and prior_end is not None
        and timestamp >= prior_end
    ):
        # Term over: junior's unrecovered coverage is forgiven
        return MarketState.PERPETUAL, None, ZERO

    if jt_coverage_impermanent_loss <= ZERO:
        return MarketState.PERPETUAL, None, jt_coverage_impermanent_loss

    ltv = compute_loan_to_value(st_effective_nav, jt_effective_nav, st_impermanent_loss)
    if ltv >= config.loan_to_value_threshold or st_impermanent_loss > ZERO:
        return MarketState.PERPETUAL, prior_end, jt_coverage_impermanent_loss

    if prior_end is None:
        return MarketState.FIXED_TERM, timestamp + config.fixed_term_duration, jt_coverage_impermanent_loss
    if timestamp >= prior_end:
        # The episode's term ran out while the breach held
        return MarketState.PERPETUAL, None, ZERO
    return MarketState.FIXED_TERM, prior_end, jt_coverage_impermanent_loss


def check_invariants(state: LedgerState) -> None:
    """
    Fatal consistency check on a computed state.

    Raises:
        InvariantViolation: On broken NAV conservation, a negative NAV/IL field,
            or senior impermanent loss alongside junior effective capital
    """
    if state.total_raw_nav != state.total_effective_nav:
        raise InvariantViolation(
            f"NAV conservation broken: raw {state.total_raw_nav} != "
            f"effective {state.total_effective_nav}"
        )
    for name in (
        'st_raw_nav', 'jt_raw_nav', 'st_effective_nav', 'jt_effective_nav',
        'st_impermanent_loss', 'jt_coverage_impermanent_loss', 'jt_self_impermanent_loss',
    ):
        if getattr(state, name) < ZERO:
            raise InvariantViolation(f"{name} is negative: {getattr(state, name)}")
    if state.st_impermanent_loss > ZERO and state.jt_effective_nav != ZERO:
        raise InvariantViolation(
            f"senior impermanent loss {state.st_impermanent_loss} with junior "
            f"effective NAV {state.jt_effective_nav}"
        )


# ============================================================================
# SYNC
# ============================================================================

def compute_sync(
    state: LedgerState,
    config: AccountantConfig,
    ydm: YieldDistributionModel,
    new_st_raw_nav: Decimal,
    new_jt_raw_nav: Decimal,
    timestamp: datetime,
    accrue: bool = False,
) -> SyncedSnapshot:
    """
    Run the PnL waterfall from `state` to the reported raw NAVs.

    Args:
        state: Ledger state as of the last operation
        config: Market configuration
        ydm: Yield distribution model
        new_st_raw_nav / new_jt_raw_nav: Raw NAVs reported by the strategy
        timestamp: Current time
        accrue: If True and time has passed since the last sync, advance the
            YDM over the interval once the result is consistent (committing
            syncs only)

    Returns:
        SyncedSnapshot with last_sync_timestamp set to `timestamp`

    Raises:
        ValueError: If timestamp is before the last sync
        InvariantViolation: If the result breaks conservation (a bug)
    """
    places = config.nav_decimal_places
    elapsed = elapsed_seconds(state.last_sync_timestamp, timestamp)

    delta_st = new_st_raw_nav - state.st_raw_nav
    delta_jt = new_jt_raw_nav - state.jt_raw_nav

    st_eff = state.st_effective_nav
    jt_eff = state.jt_effective_nav
    st_il = state.st_impermanent_loss
    jt_cov_il = state.jt_coverage_impermanent_loss
    jt_self_il = state.jt_self_impermanent_loss

    # 1. Junior PnL
    jt_fee = ZERO
    if delta_jt < ZERO:
        loss = -delta_jt
        absorbed = min(loss, jt_eff)
        jt_eff -= absorbed
        jt_self_il += absorbed
        overflow = loss - absorbed
        if overflow > ZERO:
            st_eff -= overflow
            st_il += overflow
    elif delta_jt > ZERO:
        remaining = delta_jt
        recovered = min(remaining, st_il)
        st_il -= recovered
        st_eff += recovered
        remaining -= recovered

        recovered = min(remaining, jt_self_il)
        jt_self_il -= recovered
        jt_eff += recovered
        remaining -= recovered

        if remaining > ZERO:
            jt_fee = compute_protocol_fee(remaining, config.jt_protocol_fee_rate, places)
            jt_eff += remaining

    # Junior's share of any senior gain, priced on the post-step-1 junior capacity
    ydm_args = (
        state.market_state, new_st_raw_nav, new_jt_raw_nav,
        config.beta_sensitivity, config.coverage_ratio, jt_eff,
    )
    share = clamp_fraction(ydm.preview_junior_yield_share(*ydm_args, elapsed_seconds=elapsed))

    # 2. Senior PnL
    st_fee = ZERO
    jt_yield = ZERO
    if delta_st < ZERO:
        loss = -delta_st
        covered = min(loss, jt_eff)
        jt_eff -= covered
        jt_cov_il += covered
        uncovered = loss - covered
        if uncovered > ZERO:
            st_eff -= uncovered
            st_il += uncovered
    elif delta_st > ZERO:
        remaining = delta_st
        recovered = min(remaining, st_il)
        st_il -= recovered
        st_eff += recovered
        remaining -= recovered

        repaid = min(remaining, jt_cov_il)
        jt_cov_il -= repaid
        jt_eff += repaid
        remaining -= repaid

        if remaining > ZERO:
            st_fee = compute_protocol_fee(remaining, config.st_protocol_fee_rate, places)
            jt_yield = mul_div_down(remaining - st_fee, share, ONE, places)
            jt_eff += jt_yield
            st_eff += remaining - jt_yield

    # 3. Market state
    market_state, fixed_term_end, jt_cov_il = compute_market_state(
        state.market_state, state.fixed_term_end_timestamp,
        st_eff, jt_eff, st_il, jt_cov_il, config, timestamp,
    )

    # 4. Commit-ready snapshot
    new_state = LedgerState(
        st_raw_nav=new_st_raw_nav,
        jt_raw_nav=new_jt_raw_nav,
        st_effective_nav=st_eff,
        jt_effective_nav=jt_eff,
        st_impermanent_loss=st_il,
        jt_coverage_impermanent_loss=jt_cov_il,
        jt_self_impermanent_loss=jt_self_il,
        market_state=market_state,
        fixed_term_end_timestamp=fixed_term_end,
        last_sync_timestamp=timestamp,
    )
    check_invariants(new_state)

    # Advance the model only once the new state is known to be consistent
    if accrue and elapsed > 0:
        ydm.accrue_junior_yield_share(*ydm_args, elapsed)

    return SyncedSnapshot(
        state=new_state,
        timestamp=timestamp,
        st_protocol_fee_accrued=st_fee,
        jt_protocol_fee_accrued=jt_fee,
        junior_yield_share=share,
        junior_yield_from_senior=jt_yield,
        utilization=compute_utilization(
            new_st_raw_nav, new_jt_raw_nav,
            config.beta_sensitivity, config.coverage_ratio, jt_eff,
        ),
        loan_to_value=compute_loan_to_value(st_eff, jt_eff, st_il),
    )
