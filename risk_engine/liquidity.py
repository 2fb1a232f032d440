"""
Liquidity Risk Module

Days-to-liquidate, liquidity scores and stressed liquidation cost per
position, aggregated into a portfolio liquidity profile.
"""

from __future__ import annotations

import numpy as np
import structlog

from risk_engine.config import RiskSettings, get_settings
from risk_engine.models import (
    AssetLiquidity,
    LiquidityBuckets,
    LiquidityProfile,
    PortfolioSnapshot,
    Position,
)
from risk_engine.returns import history_frame, validate_snapshot

logger = structlog.get_logger(__name__)

# Bucket edges in trading days; a week is 5 trading days, matching the 1W horizon.
IMMEDIATE_DAYS = 0.1
ONE_DAY = 1.0
ONE_WEEK = 5.0


def liquidity_score(days_to_liquidate: float, settings: RiskSettings | None = None) -> float:
    """100 for instant exits, losing LIQUIDITY_SCORE_DECAY points per day."""
    s = settings or get_settings()
    return float(np.clip(100.0 - days_to_liquidate * s.LIQUIDITY_SCORE_DECAY, 0.0, 100.0))


def _daily_volatility(position: Position, default: float) -> float:
    frame = history_frame(position.price_history)
    if len(frame) < 3:
        return default
    closes = frame.sort_values("date")["close"]
    if (closes <= 0).any():
        return default
    vol = float(closes.pct_change().dropna().std(ddof=1))
    return vol if np.isfinite(vol) and vol > 0 else default


def analyze_position(position: Position, settings: RiskSettings | None = None) -> AssetLiquidity:
    """Liquidity metrics for one position.

    days = |quantity| / (ADV * participation rate)

    The stressed cost assumes volume drops by LIQUIDITY_STRESS_FACTOR and the
    position must be exited within FORCED_LIQUIDATION_DAYS: a widened
    half-spread plus square-root market impact at the participation rate that
    exit requires.
    """
    s = settings or get_settings()

    adv = position.average_daily_volume or s.DEFAULT_AVERAGE_DAILY_VOLUME
    if not position.average_daily_volume:
        logger.debug("analyze_position: using default ADV", symbol=position.symbol, adv=adv)

    quantity = abs(position.quantity)
    value = abs(position.market_value)
    days = quantity / (adv * s.PARTICIPATION_RATE)
    stressed_days = days * s.LIQUIDITY_STRESS_FACTOR

    sigma = _daily_volatility(position, s.DEFAULT_DAILY_VOLATILITY)
    market_impact = s.IMPACT_COEFFICIENT * sigma * np.sqrt(min(quantity / adv, 1.0))

    spread_bps = position.bid_ask_spread_bps if position.bid_ask_spread_bps is not None else s.DEFAULT_SPREAD_BPS
    spread_cost = value * spread_bps / 10_000 / 2 * s.STRESS_SPREAD_MULTIPLIER
    required_participation = quantity / (adv / s.LIQUIDITY_STRESS_FACTOR * s.FORCED_LIQUIDATION_DAYS)
    impact_cost = value * s.IMPACT_COEFFICIENT * sigma * np.sqrt(required_participation)

    return AssetLiquidity(
        symbol=position.symbol,
        value=value,
        average_daily_volume=adv,
        participation_rate=s.PARTICIPATION_RATE,
        days_to_liquidate=float(days),
        stressed_days_to_liquidate=float(stressed_days),
        market_impact=float(market_impact),
        liquidity_score=liquidity_score(days, s),
        stressed_cost=float(spread_cost + impact_cost),
    )


def analyze_liquidity(snapshot: PortfolioSnapshot, settings: RiskSettings | None = None) -> LiquidityProfile:
    """Portfolio liquidity profile.

    Aggregates are weighted by absolute position value. Buckets are
    cumulative: value liquid within one day includes the immediately
    liquid value.
    """
    s = settings or get_settings()
    validate_snapshot(snapshot)

    by_asset = [analyze_position(p, s) for p in snapshot.positions]
    total = sum(a.value for a in by_asset)

    if total > 0:
        weights = np.array([a.value / total for a in by_asset])
    else:
        weights = np.full(len(by_asset), 1.0 / len(by_asset))

    days = np.array([a.days_to_liquidate for a in by_asset])
    scores = np.array([a.liquidity_score for a in by_asset])
    stressed_cost = float(sum(a.stressed_cost for a in by_asset))

    def _within(limit: float) -> float:
        return float(sum(a.value for a in by_asset if a.days_to_liquidate < limit))

    within_week = _within(ONE_WEEK)
    profile = LiquidityProfile(
        portfolio_id=snapshot.portfolio_id,
        liquidity_score=float(weights @ scores),
        days_to_liquidate=float(weights @ days),
        max_days_to_liquidate=float(days.max()),
        stressed_days_to_liquidate=float(weights @ days) * s.LIQUIDITY_STRESS_FACTOR,
        stressed_liquidation_cost=stressed_cost,
        stressed_cost_pct=(stressed_cost / total * 100) if total > 0 else 0.0,
        buckets=LiquidityBuckets(
            immediately_liquid=_within(IMMEDIATE_DAYS),
            liquid_within_1_day=_within(ONE_DAY),
            liquid_within_1_week=within_week,
            illiquid=total - within_week,
        ),
        by_asset=by_asset,
    )

    logger.info(
        "analyze_liquidity: complete",
        portfolio_id=snapshot.portfolio_id,
        liquidity_score=profile.liquidity_score,
        days_to_liquidate=profile.days_to_liquidate,
        stressed_cost=stressed_cost,
    )
    return profile
