"""
ydm.py - Yield Distribution Models

A yield distribution model (YDM) turns the market's utilization into the
fraction of a senior gain that is paid to junior. The accountant depends only
on the YieldDistributionModel protocol; two implementations are provided:

    StaticCurveYDM    stateless kinked curve, same answer for any elapsed time
    AdaptiveCurveYDM  stateful curve whose level drifts toward target
                      utilization over time and reports a time-weighted share

Utilization:
    utilization = coverage * (st_raw + beta * jt_raw) / jt_effective

It is 0 for an empty exposure and +Infinity when junior has no effective
capital left. Curves clamp it to [0, 1] before evaluating.

The accountant clamps whatever a model returns into [0, 1], so a misbehaving
curve can never pay junior more than the gain.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from .core import (
    ZERO, ONE, WAD_DECIMAL_PLACES,
    MarketState, InvalidYieldDistributionModel,
)
from .fixed_point import mul_div_up, quantize, to_decimal, Number


INFINITY = Decimal("Infinity")


# ============================================================================
# PROTOCOL
# ============================================================================

@runtime_checkable
class YieldDistributionModel(Protocol):
    """
    Interface the sync engine uses to price the junior side's share of a
    senior gain.

    preview_junior_yield_share must not change the model. elapsed_seconds > 0
    lets a time-aware model report the share it would use over that interval.

    accrue_junior_yield_share may update internal state and must return what
    preview_junior_yield_share reports for the same arguments beforehand. The
    sync prices with the preview and calls accrue once per committed sync with
    elapsed time, after the new state has passed its invariant check.
    """

    def preview_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int = 0,
    ) -> Decimal:
        ...

    def accrue_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int,
    ) -> Decimal:
        ...


def compute_utilization(
    st_raw_nav: Decimal,
    jt_raw_nav: Decimal,
    beta_sensitivity: Decimal,
    coverage_ratio: Decimal,
    jt_effective_nav: Decimal,
) -> Decimal:
    """
    Junior capital utilization, rounded up to WAD precision.

    Returns:
        0 if there is no exposure, Decimal('Infinity') if junior has no
        effective NAV left to cover a non-zero exposure
    """
    exposure = coverage_ratio * (st_raw_nav + beta_sensitivity * jt_raw_nav)
    if exposure <= ZERO:
        return ZERO
    if jt_effective_nav <= ZERO:
        return INFINITY
    return mul_div_up(exposure, ONE, jt_effective_nav, WAD_DECIMAL_PLACES)


def _check_fraction(name: str, value: Decimal) -> None:
    if not (ZERO <= value <= ONE):
        raise InvalidYieldDistributionModel(f"{name} must be in [0, 1], got {value}")


# ============================================================================
# STATIC CURVE
# ============================================================================

@dataclass(frozen=True, slots=True)
class StaticCurveYDM:
    """
    Two-segment linear curve through (0, share_at_zero),
    (target_utilization, share_at_target) and (1, share_at_full).

    Stateless: accrual returns the instantaneous share.

    Example:
        ydm = StaticCurveYDM(
            target_utilization=Decimal("0.9"),
            share_at_zero=Decimal("0"),
            share_at_target=Decimal("0.2"),
            share_at_full=Decimal("0.8"),
        )
    """
    target_utilization: Decimal
    share_at_zero: Decimal
    share_at_target: Decimal
    share_at_full: Decimal

    def __post_init__(self):
        for name in ('target_utilization', 'share_at_zero', 'share_at_target', 'share_at_full'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        if not (ZERO < self.target_utilization < ONE):
            raise InvalidYieldDistributionModel(
                f"target_utilization must be in (0, 1), got {self.target_utilization}"
            )
        _check_fraction("share_at_zero", self.share_at_zero)
        _check_fraction("share_at_target", self.share_at_target)
        _check_fraction("share_at_full", self.share_at_full)
        if not (self.share_at_zero <= self.share_at_target <= self.share_at_full):
            raise InvalidYieldDistributionModel("curve shares must be non-decreasing in utilization")

    def share_at(self, utilization: Decimal) -> Decimal:
        """Evaluate the curve at a utilization (clamped to [0, 1])."""
        u = min(max(utilization, ZERO), ONE)
        if u <= self.target_utilization:
            share = self.share_at_zero + (
                (self.share_at_target - self.share_at_zero) * u / self.target_utilization
            )
        else:
            share = self.share_at_target + (
                (self.share_at_full - self.share_at_target)
                * (u - self.target_utilization) / (ONE - self.target_utilization)
            )
        return quantize(share, WAD_DECIMAL_PLACES)

    def preview_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int = 0,
    ) -> Decimal:
        utilization = compute_utilization(
            st_raw_nav, jt_raw_nav, beta_sensitivity, coverage_ratio, jt_effective_nav
        )
        return self.share_at(utilization)

    def accrue_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int,
    ) -> Decimal:
        return self.preview_junior_yield_share(
            market_state, st_raw_nav, jt_raw_nav, beta_sensitivity, coverage_ratio, jt_effective_nav
        )


# ============================================================================
# ADAPTIVE CURVE
# ============================================================================

class AdaptiveCurveYDM:
    """
    Curve whose level (the share paid at target utilization) adapts over time.

    For a utilization u the normalized error is
        err = (u - target) / (1 - target)   if u > target
        err = (u - target) / target         otherwise
    so err is in [-1, 1]. The share is
        share_at_target * (1 + (steepness - 1) * err)        if err >= 0
        share_at_target * (1 + (1 - 1 / steepness) * err)    if err <  0

    While the market is PERPETUAL, share_at_target moves exponentially with
        share_at_target(t) = share_at_target(0) * exp(adjustment_speed * err * t)
    bounded to [min_share_at_target, max_share_at_target]. Over an interval the
    curve is evaluated at the trapezoidal average (start + end + 2 * mid) / 4,
    so a single noisy observation moves the share less than a sustained one.

    The level is frozen during FIXED_TERM: utilization is elevated by an
    outstanding coverage loss, which is not a signal about demand.

    Args:
        target_utilization: Kink of the curve, in (0, 1)
        steepness: Ratio of share at full utilization to share at target, >= 1
        adjustment_speed: Adaptation rate per second per unit of error, >= 0
        initial_share_at_target: Starting level
        min_share_at_target / max_share_at_target: Bounds on the level
    """

    def __init__(
        self,
        target_utilization: Number,
        steepness: Number,
        adjustment_speed: Number,
        initial_share_at_target: Number,
        min_share_at_target: Number = "0.001",
        max_share_at_target: Number = "0.5",
    ):
        self.target_utilization = to_decimal(target_utilization)
        self.steepness = to_decimal(steepness)
        self.adjustment_speed = to_decimal(adjustment_speed)
        self.min_share_at_target = to_decimal(min_share_at_target)
        self.max_share_at_target = to_decimal(max_share_at_target)
        self.share_at_target = to_decimal(initial_share_at_target)

        if not (ZERO < self.target_utilization < ONE):
            raise InvalidYieldDistributionModel(
                f"target_utilization must be in (0, 1), got {self.target_utilization}"
            )
        if self.steepness < ONE:
            raise InvalidYieldDistributionModel(f"steepness must be >= 1, got {self.steepness}")
        if self.adjustment_speed < ZERO:
            raise InvalidYieldDistributionModel(
                f"adjustment_speed must be >= 0, got {self.adjustment_speed}"
            )
        _check_fraction("min_share_at_target", self.min_share_at_target)
        _check_fraction("max_share_at_target", self.max_share_at_target)
        if self.min_share_at_target > self.max_share_at_target:
            raise InvalidYieldDistributionModel("min_share_at_target exceeds max_share_at_target")
        if self.max_share_at_target * self.steepness > ONE:
            raise InvalidYieldDistributionModel(
                "max_share_at_target * steepness must be <= 1 so the curve stays a fraction"
            )
        if not (self.min_share_at_target <= self.share_at_target <= self.max_share_at_target):
            raise InvalidYieldDistributionModel(
                f"initial_share_at_target must be in [{self.min_share_at_target}, "
                f"{self.max_share_at_target}], got {self.share_at_target}"
            )

    def __repr__(self) -> str:
        return (
            f"AdaptiveCurveYDM(target={self.target_utilization}, steepness={self.steepness}, "
            f"share_at_target={self.share_at_target})"
        )

    def _error(self, utilization: Decimal) -> Decimal:
        u = min(max(utilization, ZERO), ONE)
        if u > self.target_utilization:
            return (u - self.target_utilization) / (ONE - self.target_utilization)
        return (u - self.target_utilization) / self.target_utilization

    def _curve(self, share_at_target: Decimal, err: Decimal) -> Decimal:
        if err < ZERO:
            coeff = ONE - ONE / self.steepness
        else:
            coeff = self.steepness - ONE
        return quantize(share_at_target * (coeff * err + ONE), WAD_DECIMAL_PLACES)

    def _bounded(self, level: Decimal) -> Decimal:
        return min(max(level, self.min_share_at_target), self.max_share_at_target)

    def _grow(self, start: Decimal, exponent: Decimal) -> Decimal:
        """
        start * exp(exponent), bounded to the level range.

        Exponents that would leave the range return the bound without calling
        exp(), so long intervals cannot overflow.
        """
        if start <= ZERO:
            return start
        if exponent >= (self.max_share_at_target / start).ln():
            return self.max_share_at_target
        if exponent <= (self.min_share_at_target / start).ln():
            return self.min_share_at_target
        return self._bounded(start * exponent.exp())

    def _adapt(self, market_state: MarketState, err: Decimal, elapsed_seconds: int):
        """Return (time-weighted level, end level) over the elapsed interval."""
        start = self.share_at_target
        if elapsed_seconds <= 0 or market_state == MarketState.FIXED_TERM:
            return start, start
        linear = self.adjustment_speed * err * Decimal(elapsed_seconds)
        end = self._grow(start, linear)
        mid = self._grow(start, linear / 2)
        average = (start + end + 2 * mid) / 4
        return quantize(average, WAD_DECIMAL_PLACES), quantize(end, WAD_DECIMAL_PLACES)

    def preview_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int = 0,
    ) -> Decimal:
        utilization = compute_utilization(
            st_raw_nav, jt_raw_nav, beta_sensitivity, coverage_ratio, jt_effective_nav
        )
        err = self._error(utilization)
        average, _ = self._adapt(market_state, err, elapsed_seconds)
        return self._curve(average, err)

    def accrue_junior_yield_share(
        self,
        market_state: MarketState,
        st_raw_nav: Decimal,
        jt_raw_nav: Decimal,
        beta_sensitivity: Decimal,
        coverage_ratio: Decimal,
        jt_effective_nav: Decimal,
        elapsed_seconds: int,
    ) -> Decimal:
        utilization = compute_utilization(
            st_raw_nav, jt_raw_nav, beta_sensitivity, coverage_ratio, jt_effective_nav
        )
        err = self._error(utilization)
        average, end = self._adapt(market_state, err, elapsed_seconds)
        self.share_at_target = end
        return self._curve(average, err)
