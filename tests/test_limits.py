"""
Unit tests for limits.py - Risk Limit Monitoring Module
"""

import pytest

from risk_engine.errors import ValidationError
from risk_engine.limits import check_limits, validate_limit_set
from risk_engine.models import LimitObservation, LimitStatus, RiskLimitSet


class TestCheckLimits:

    def test_single_drawdown_breach(self):
        limits = RiskLimitSet(portfolio_id='p', max_drawdown_pct=5, max_var=100)
        observed = LimitObservation(drawdown_pct=8, var=50)

        result = check_limits(observed, limits)

        assert len(result.breaches) == 1
        breach = result.breaches[0]
        assert breach.limit_name == 'max_drawdown_pct'
        assert breach.breach_amount == pytest.approx(3.0)
        assert breach.breach_percentage == pytest.approx(60.0)
        assert result.all_within_limits is False
        assert result.status is LimitStatus.BREACH_DETECTED

    def test_within_limits(self):
        limits = RiskLimitSet(portfolio_id='p', max_var=100, max_leverage=2)
        observed = LimitObservation(var=100, leverage=1.5)

        result = check_limits(observed, limits)

        assert result.all_within_limits
        assert result.status is LimitStatus.WITHIN_LIMITS

    def test_min_sharpe_breach(self):
        limits = RiskLimitSet(portfolio_id='p', min_sharpe_ratio=1.0)

        result = check_limits(LimitObservation(sharpe_ratio=0.4), limits)

        assert [b.limit_name for b in result.breaches] == ['min_sharpe_ratio']
        assert result.breaches[0].breach_amount == pytest.approx(0.6)

    def test_unobserved_metric_skipped(self):
        limits = RiskLimitSet(portfolio_id='p', max_leverage=1.0, max_var=10)

        result = check_limits(LimitObservation(var=5), limits)

        assert result.all_within_limits

    def test_inactive_set(self):
        limits = RiskLimitSet(portfolio_id='p', max_var=1, active=False)

        result = check_limits(LimitObservation(var=1_000), limits)

        assert result.status is LimitStatus.INACTIVE
        assert result.breaches == []


class TestValidateLimitSet:

    @pytest.mark.parametrize('field, value', [
        ('max_var', 0),
        ('max_leverage', -1),
        ('max_drawdown_pct', 150),
        ('max_concentration_pct', 101),
    ])
    def test_rejects_bad_bounds(self, field, value):
        with pytest.raises(ValidationError, match=field):
            validate_limit_set(RiskLimitSet(portfolio_id='p', **{field: value}))

    def test_negative_min_sharpe_allowed(self):
        limits = RiskLimitSet(portfolio_id='p', min_sharpe_ratio=-0.5)

        assert validate_limit_set(limits) is limits
