"""
coverage.py - Coverage Calculator (pure functions)

The coverage requirement keeps enough junior capital in the pool to absorb
senior losses:

    jt_effective >= coverage_ratio * (st_effective + jt_effective)

These functions answer how far a deposit or withdrawal can go before the
requirement breaks. Every answer is floor-rounded: the claimant may get a
little less than the exact bound, the pool never gets less than it needs.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Tuple

from .core import ZERO, ONE
from .fixed_point import mul_div_down


def required_junior_nav(st_effective_nav: Decimal, jt_effective_nav: Decimal, coverage_ratio: Decimal) -> Decimal:
    """Junior effective NAV the requirement asks for at the current pool size."""
    return coverage_ratio * (st_effective_nav + jt_effective_nav)


def is_coverage_satisfied(st_effective_nav: Decimal, jt_effective_nav: Decimal, coverage_ratio: Decimal) -> bool:
    return jt_effective_nav >= required_junior_nav(st_effective_nav, jt_effective_nav, coverage_ratio)


def max_senior_deposit(
    st_effective_nav: Decimal,
    jt_effective_nav: Decimal,
    coverage_ratio: Decimal,
    places: int,
) -> Decimal:
    """
    Largest senior deposit d with
        jt_effective >= coverage * (st_effective + d + jt_effective)
    i.e. d <= jt_effective / coverage - st_effective - jt_effective.

    Returns 0 when coverage is already at (or past) its limit.
    """
    if coverage_ratio <= ZERO:
        raise ValueError("coverage_ratio must be positive")
    headroom = mul_div_down(jt_effective_nav, ONE, coverage_ratio, places) - st_effective_nav - jt_effective_nav
    return max(headroom, ZERO)


def max_junior_withdrawal(
    st_effective_nav: Decimal,
    jt_effective_nav: Decimal,
    coverage_ratio: Decimal,
    places: int,
) -> Decimal:
    """
    Largest junior withdrawal w with
        jt_effective - w >= coverage * (st_effective + jt_effective - w)
    i.e. w <= (jt_effective - coverage * (st_effective + jt_effective)) / (1 - coverage).
    """
    surplus = jt_effective_nav - required_junior_nav(st_effective_nav, jt_effective_nav, coverage_ratio)
    if surplus <= ZERO:
        return ZERO
    return min(mul_div_down(surplus, ONE, ONE - coverage_ratio, places), jt_effective_nav)


def split_claimable(
    total_claimable: Decimal,
    senior_claim: Decimal,
    junior_claim: Decimal,
    places: int,
) -> Tuple[Decimal, Decimal]:
    """
    Split a claimable total between two claim weights, floor on each part.

    senior_portion + junior_portion never exceeds total_claimable.

    Returns:
        (senior_portion, junior_portion)
    """
    weight = senior_claim + junior_claim
    if weight <= ZERO or total_claimable <= ZERO:
        return ZERO, ZERO
    senior_portion = mul_div_down(total_claimable, senior_claim, weight, places)
    junior_portion = mul_div_down(total_claimable, junior_claim, weight, places)
    return senior_portion, junior_portion


def max_withdrawal_for_claims(
    st_effective_nav: Decimal,
    jt_effective_nav: Decimal,
    coverage_ratio: Decimal,
    senior_claim: Decimal,
    junior_claim: Decimal,
    places: int,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Junior capital claimable by a holder whose claim is split across the
    senior and junior raw NAVs, without breaking coverage.

    Returns:
        (total_claimable, senior_portion, junior_portion)
    """
    if senior_claim < ZERO or junior_claim < ZERO:
        raise ValueError("claims must be non-negative")
    total = min(
        max_junior_withdrawal(st_effective_nav, jt_effective_nav, coverage_ratio, places),
        senior_claim + junior_claim,
    )
    senior_portion, junior_portion = split_claimable(total, senior_claim, junior_claim, places)
    return total, senior_portion, junior_portion
