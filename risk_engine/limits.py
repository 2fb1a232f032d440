"""
Risk Limit Monitoring Module

Pure comparison of observed risk figures against a portfolio's limit set.
"""

from __future__ import annotations

from typing import List

import structlog

from risk_engine.errors import ValidationError
from risk_engine.models import (
    LimitBreach,
    LimitObservation,
    LimitStatus,
    RiskLimitCheck,
    RiskLimitSet,
)

logger = structlog.get_logger(__name__)

# limit field -> (observed field, kind)
LIMIT_DEFINITIONS = {
    "max_drawdown_pct": ("drawdown_pct", "max"),
    "max_var": ("var", "max"),
    "max_leverage": ("leverage", "max"),
    "max_concentration_pct": ("concentration_pct", "max"),
    "max_volatility_pct": ("volatility_pct", "max"),
    "min_sharpe_ratio": ("sharpe_ratio", "min"),
}

_PERCENT_LIMITS = ("max_drawdown_pct", "max_concentration_pct")


def validate_limit_set(limit_set: RiskLimitSet) -> RiskLimitSet:
    """Reject non-positive max-type bounds and percentages above 100."""
    for name, (_, kind) in LIMIT_DEFINITIONS.items():
        value = getattr(limit_set, name)
        if value is None or kind == "min":
            continue
        if value <= 0:
            raise ValidationError(name, "must be positive", value)
        if name in _PERCENT_LIMITS and value > 100:
            raise ValidationError(name, "must not exceed 100", value)
    return limit_set


def check_limits(observed: LimitObservation, limit_set: RiskLimitSet) -> RiskLimitCheck:
    """Compare observed values with each configured limit.

    Max-type limits are breached when observed > limit and min-type limits
    when observed < limit. Unset limits and unobserved values are skipped.
    """
    if not limit_set.active:
        return RiskLimitCheck(
            portfolio_id=limit_set.portfolio_id,
            breaches=[],
            all_within_limits=True,
            status=LimitStatus.INACTIVE,
        )

    breaches: List[LimitBreach] = []
    for name, (observed_field, kind) in LIMIT_DEFINITIONS.items():
        limit = getattr(limit_set, name)
        value = getattr(observed, observed_field)
        if limit is None or value is None:
            continue

        breached = value > limit if kind == "max" else value < limit
        if not breached:
            continue

        amount = abs(value - limit)
        breaches.append(LimitBreach(
            limit_name=name,
            limit_value=limit,
            observed_value=value,
            breach_amount=amount,
            breach_percentage=(amount / abs(limit) * 100) if limit else 0.0,
        ))

    result = RiskLimitCheck(
        portfolio_id=limit_set.portfolio_id,
        breaches=breaches,
        all_within_limits=not breaches,
        status=LimitStatus.BREACH_DETECTED if breaches else LimitStatus.WITHIN_LIMITS,
    )

    if breaches:
        logger.warning(
            "check_limits: breaches detected",
            portfolio_id=limit_set.portfolio_id,
            breaches=[b.limit_name for b in breaches],
        )
    return result
