"""
capital_flow.py - Post-operation adjuster (pure functions)

Applies deposits and withdrawals that the tranche wrapper has already
executed against the strategy. No PnL is recognized here: raw and effective
NAV move by the same amount, on the effective side named by the flow.

Directions:
    ST_DEPOSIT / JT_DEPOSIT     both raw deltas >= 0
    ST_WITHDRAW / JT_WITHDRAW   both raw deltas <= 0

A withdrawing side may draw on the other side's raw NAV (a senior claim that
includes junior-covered capital, or a junior claim that includes yield paid
out of senior gains), but never more than its own effective NAV.

Withdrawals shrink the capital base, so the withdrawing side's impairments
are rescaled by new_raw / old_raw (floor) and stay the same fraction of what
is left.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal

from .core import (
    ZERO,
    CapitalFlowKind, LedgerState,
    InvalidCapitalFlowDirection, WithdrawalExceedsEffectiveNAV, SeniorImpairmentOutstanding,
)
from .fixed_point import mul_div_down


def validate_capital_flow_direction(kind: CapitalFlowKind, delta_st: Decimal, delta_jt: Decimal) -> None:
    """
    Raises:
        InvalidCapitalFlowDirection: If either delta has the wrong sign for `kind`
    """
    if kind.is_deposit:
        if delta_st < ZERO or delta_jt < ZERO:
            raise InvalidCapitalFlowDirection(
                kind, f"{kind.value} cannot decrease raw NAV (st {delta_st}, jt {delta_jt})"
            )
    else:
        if delta_st > ZERO or delta_jt > ZERO:
            raise InvalidCapitalFlowDirection(
                kind, f"{kind.value} cannot increase raw NAV (st {delta_st}, jt {delta_jt})"
            )


def rescale_impermanent_loss(loss: Decimal, new_raw: Decimal, old_raw: Decimal, places: int) -> Decimal:
    """
    Scale an impairment by new_raw / old_raw, floor-rounded.

    A side with no prior raw NAV has nothing to scale against and keeps its loss.
    """
    if loss == ZERO or old_raw <= ZERO:
        return loss
    return mul_div_down(loss, new_raw, old_raw, places)


def compute_capital_flow(
    state: LedgerState,
    new_st_raw_nav: Decimal,
    new_jt_raw_nav: Decimal,
    kind: CapitalFlowKind,
    places: int,
) -> LedgerState:
    """
    Apply a pure capital movement to a ledger state.

    Market state and timestamps are left as they are; only a sync moves them.

    Returns:
        New LedgerState

    Raises:
        InvalidCapitalFlowDirection: Raw deltas do not match `kind`
        WithdrawalExceedsEffectiveNAV: Withdrawal larger than the side's claim
        SeniorImpairmentOutstanding: Junior deposit while senior carries IL
    """
    delta_st = new_st_raw_nav - state.st_raw_nav
    delta_jt = new_jt_raw_nav - state.jt_raw_nav
    validate_capital_flow_direction(kind, delta_st, delta_jt)
    amount = delta_st + delta_jt

    if kind == CapitalFlowKind.ST_DEPOSIT:
        return replace(
            state,
            st_raw_nav=new_st_raw_nav,
            jt_raw_nav=new_jt_raw_nav,
            st_effective_nav=state.st_effective_nav + amount,
        )

    if kind == CapitalFlowKind.JT_DEPOSIT:
        if amount > ZERO and state.st_impermanent_loss > ZERO:
            raise SeniorImpairmentOutstanding(
                f"Junior cannot deposit while senior impermanent loss "
                f"{state.st_impermanent_loss} is outstanding"
            )
        return replace(
            state,
            st_raw_nav=new_st_raw_nav,
            jt_raw_nav=new_jt_raw_nav,
            jt_effective_nav=state.jt_effective_nav + amount,
        )

    withdrawn = -amount
    if kind == CapitalFlowKind.ST_WITHDRAW:
        if withdrawn > state.st_effective_nav:
            raise WithdrawalExceedsEffectiveNAV(
                f"Senior withdrawal {withdrawn} exceeds effective NAV {state.st_effective_nav}"
            )
        return replace(
            state,
            st_raw_nav=new_st_raw_nav,
            jt_raw_nav=new_jt_raw_nav,
            st_effective_nav=state.st_effective_nav - withdrawn,
            st_impermanent_loss=rescale_impermanent_loss(
                state.st_impermanent_loss, new_st_raw_nav, state.st_raw_nav, places
            ),
        )

    if withdrawn > state.jt_effective_nav:
        raise WithdrawalExceedsEffectiveNAV(
            f"Junior withdrawal {withdrawn} exceeds effective NAV {state.jt_effective_nav}"
        )
    return replace(
        state,
        st_raw_nav=new_st_raw_nav,
        jt_raw_nav=new_jt_raw_nav,
        jt_effective_nav=state.jt_effective_nav - withdrawn,
        jt_self_impermanent_loss=rescale_impermanent_loss(
            state.jt_self_impermanent_loss, new_jt_raw_nav, state.jt_raw_nav, places
        ),
        jt_coverage_impermanent_loss=rescale_impermanent_loss(
            state.jt_coverage_impermanent_loss, new_jt_raw_nav, state.jt_raw_nav, places
        ),
    )
