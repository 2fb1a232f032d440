"""
Unit tests for metrics.py - Risk Metrics Module

Tests cover:
- Historical and parametric VaR / expected shortfall
- Volatility, Sharpe, Sortino and drawdowns
- Risk level classification and score
- compute_metrics aggregation and its low-confidence policy
- Position risk decomposition and concentration
"""

import pytest
import numpy as np
import pandas as pd
from numpy.testing import assert_allclose
from scipy import stats

from risk_engine.covariance import estimate_covariance
from risk_engine.errors import InsufficientDataError, ValidationError
from risk_engine.metrics import (
    annualized_volatility,
    beta,
    build_position_risks,
    classify_risk_level,
    compute_metrics,
    concentration_metrics,
    drawdown_profile,
    historical_expected_shortfall,
    historical_var,
    max_drawdown,
    parametric_expected_shortfall,
    parametric_var,
    portfolio_volatility,
    resolve_horizon,
    risk_score,
    sharpe_ratio,
    validate_confidence,
)
from risk_engine.models import RiskLevel, VaRMethod
from risk_engine.returns import build_portfolio_returns, build_position_returns

CONFIDENCE_GRID = [0.5, 0.8, 0.9, 0.95, 0.975, 0.99, 0.999]


class TestPortfolioVolatility:

    def test_single_asset(self):
        vol = portfolio_volatility(np.array([1.0]), np.array([[0.0004]]))

        assert_allclose(vol, 0.02, rtol=1e-10)

    def test_horizon_scaling(self, sample_weights, sample_cov):
        vol_1d = portfolio_volatility(sample_weights, sample_cov, horizon_days=1)
        vol_5d = portfolio_volatility(sample_weights, sample_cov, horizon_days=5)

        assert_allclose(vol_5d, vol_1d * np.sqrt(5), rtol=1e-10)

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError, match="doesn't match covariance"):
            portfolio_volatility(np.array([0.5, 0.5]), np.eye(3))

    def test_zero_horizon_raises(self, sample_weights, sample_cov):
        with pytest.raises(ValidationError, match="horizon_days"):
            portfolio_volatility(sample_weights, sample_cov, horizon_days=0)


class TestHistoricalVar:

    def test_known_quantile(self):
        returns = np.linspace(-0.05, 0.05, 101)

        assert historical_var(returns, 0.95, 1, 1000.0) == pytest.approx(45.0)

    def test_sqrt_time_scaling(self):
        returns = np.linspace(-0.05, 0.05, 101)

        assert historical_var(returns, 0.95, 4, 1000.0) == pytest.approx(90.0)

    def test_monotonic_in_confidence(self, sample_returns):
        returns = sample_returns['AAPL'].values
        vars_ = [historical_var(returns, c, 21, 1e6) for c in CONFIDENCE_GRID]

        assert all(a <= b for a, b in zip(vars_, vars_[1:]))

    def test_all_gains_gives_zero(self):
        assert historical_var(np.array([0.01, 0.02, 0.03]), 0.95) == 0.0

    def test_expected_shortfall_exceeds_var(self, sample_returns):
        returns = sample_returns['TSLA'].values

        assert historical_expected_shortfall(returns, 0.95) >= historical_var(returns, 0.95)


class TestParametricVar:

    def test_known_value(self):
        var = parametric_var(0.01, 0.95, 1, 1_000_000)

        assert var == pytest.approx(stats.norm.ppf(0.95) * 0.01 * 1_000_000)

    def test_drift_reduces_var(self):
        assert parametric_var(0.01, 0.95, 21, 1e6, mean_return=0.001) < parametric_var(0.01, 0.95, 21, 1e6)

    def test_monotonic_in_confidence(self):
        vars_ = [parametric_var(0.015, c, 21, 1e6, mean_return=0.0005) for c in CONFIDENCE_GRID]

        assert all(a <= b for a, b in zip(vars_, vars_[1:]))

    def test_expected_shortfall_exceeds_var(self):
        assert parametric_expected_shortfall(0.01, 0.99) > parametric_var(0.01, 0.99)

    @pytest.mark.parametrize('confidence', [0.0, 1.0, 1.5, -0.1])
    def test_invalid_confidence(self, confidence):
        with pytest.raises(ValidationError, match="confidence_level"):
            parametric_var(0.01, confidence)


class TestDrawdown:

    def test_known_drawdown(self):
        returns = np.array([0.1, -0.5, 0.2])

        assert max_drawdown(returns) == pytest.approx(-0.5)

    def test_profile(self):
        profile = drawdown_profile(np.array([0.1, -0.5, 0.2]))

        assert profile['current_drawdown'] == pytest.approx(0.66 / 1.1 - 1)
        assert profile['max_drawdown_duration'] == 2

    def test_non_decreasing_curve_is_zero(self):
        assert max_drawdown(np.array([0.0, 0.01, 0.0, 0.02])) == 0.0

    def test_never_positive(self, sample_returns):
        for col in sample_returns.columns:
            assert max_drawdown(sample_returns[col].values) <= 0

    def test_any_loss_is_negative(self):
        assert max_drawdown(np.array([0.01, -0.001, 0.01])) < 0


class TestRatios:

    def test_annualized_volatility(self, sample_returns):
        returns = sample_returns['AAPL']

        assert annualized_volatility(returns) == pytest.approx(returns.std(ddof=1) * np.sqrt(252))

    def test_sharpe_zero_volatility(self):
        assert sharpe_ratio(np.zeros(5)) == 0.0

    def test_sharpe_formula(self, sample_returns):
        returns = sample_returns['AMZN'].values
        expected = (returns.mean() * 252 - 0.02) / (returns.std(ddof=1) * np.sqrt(252))

        assert sharpe_ratio(returns, 0.02) == pytest.approx(expected)

    def test_beta_of_levered_series(self, sample_returns):
        bench = sample_returns['AAPL']

        assert beta(bench * 2, bench) == pytest.approx(2.0)


class TestClassification:

    def test_levels(self, settings):
        assert classify_risk_level(0.01, 0.10, settings) is RiskLevel.LOW
        assert classify_risk_level(0.03, 0.10, settings) is RiskLevel.MEDIUM
        assert classify_risk_level(0.01, 0.30, settings) is RiskLevel.HIGH
        assert classify_risk_level(0.01, 0.50, settings) is RiskLevel.EXTREME

    def test_score_bounds(self, settings):
        assert risk_score(0.0, 0.0, 0.0, settings) == 0.0
        assert risk_score(1.0, 2.0, -0.9, settings) == 100.0

    def test_resolve_horizon(self, settings):
        assert resolve_horizon('1M', settings) == 21
        assert resolve_horizon('1y', settings) == 252

    def test_unsupported_horizon(self, settings):
        with pytest.raises(ValidationError, match="time_horizon"):
            resolve_horizon('2Y', settings)

    def test_validate_confidence(self):
        assert validate_confidence(0.99) == 0.99


class TestComputeMetrics:

    def test_full_result(self, two_asset_snapshot, settings):
        returns = build_portfolio_returns(two_asset_snapshot)

        result = compute_metrics(
            returns, 0.95, '1M', two_asset_snapshot.total_value,
            portfolio_id='pf-two', settings=settings,
        )

        assert result.value_at_risk > 0
        assert result.conditional_var >= result.value_at_risk
        assert result.max_drawdown <= 0
        assert result.horizon_days == 21
        assert result.observations == 299
        assert not result.low_confidence
        assert 0 <= result.risk_score <= 100

    def test_low_confidence_flagged(self, settings):
        np.random.seed(1)
        returns = pd.Series(np.random.normal(0, 0.01, 20))

        result = compute_metrics(returns, 0.95, '1D', 1000.0, settings=settings)

        assert result.low_confidence
        assert result.warnings

    def test_low_confidence_refused(self, settings):
        np.random.seed(1)
        returns = pd.Series(np.random.normal(0, 0.01, 20))

        with pytest.raises(InsufficientDataError) as exc_info:
            compute_metrics(returns, 0.95, '1D', 1000.0, allow_low_confidence=False, settings=settings)

        assert exc_info.value.required == settings.MIN_VAR_OBSERVATIONS
        assert exc_info.value.available == 20

    def test_parametric_uses_covariance(self, two_asset_snapshot, settings):
        asset_returns = build_position_returns(two_asset_snapshot)
        weights = np.array(list(two_asset_snapshot.weights().values()))
        cov = asset_returns.cov().values
        returns = build_portfolio_returns(two_asset_snapshot)

        result = compute_metrics(
            returns, 0.95, '1D', 1000.0, var_method='parametric',
            weights=weights, cov=cov, settings=settings,
        )

        expected = stats.norm.ppf(0.95) * np.sqrt(weights @ cov @ weights) - returns.mean()
        assert result.value_at_risk == pytest.approx(expected * 1000.0, rel=1e-6)

    def test_monte_carlo_requires_simulated_var(self, sample_returns, settings):
        with pytest.raises(ValidationError, match="simulated_var"):
            compute_metrics(sample_returns['AAPL'], 0.95, '1D', 1000.0, var_method=VaRMethod.MONTE_CARLO,
                            settings=settings)

    def test_invalid_method(self, sample_returns, settings):
        with pytest.raises(ValidationError, match="var_method"):
            compute_metrics(sample_returns['AAPL'], 0.95, '1D', 1000.0, var_method='garch', settings=settings)

    def test_serializes_with_camel_case(self, sample_returns, settings):
        result = compute_metrics(sample_returns['AAPL'], 0.95, '1D', 1000.0, settings=settings)

        payload = result.model_dump(by_alias=True)
        assert {'valueAtRisk', 'sharpeRatio', 'volatility', 'maxDrawdown', 'riskLevel'} <= set(payload)


class TestPositionRisks:

    def test_component_var_sums_to_portfolio_var(self, multi_asset_snapshot, settings):
        asset_returns = build_position_returns(multi_asset_snapshot)
        cov = asset_returns.cov().values
        weights = np.array([multi_asset_snapshot.weights()[s] for s in asset_returns.columns])

        risks = build_position_risks(multi_asset_snapshot, asset_returns, 0.95, settings=settings)

        portfolio_var = stats.norm.ppf(0.95) * np.sqrt(weights @ cov @ weights) * multi_asset_snapshot.total_value
        assert sum(r.component_var for r in risks) == pytest.approx(portfolio_var, rel=1e-8)

    def test_concentration_is_weight_squared(self, two_asset_snapshot, settings):
        asset_returns = build_position_returns(two_asset_snapshot)

        risks = build_position_risks(two_asset_snapshot, asset_returns, settings=settings)

        weights = two_asset_snapshot.weights()
        for r in risks:
            assert r.concentration_risk == pytest.approx(weights[r.symbol] ** 2 * 100)
            assert r.individual_var > 0

    def test_concentration_metrics_equal_weights(self):
        result = concentration_metrics(np.full(4, 0.25), ['A', 'B', 'C', 'D'])

        assert result['hhi'] == pytest.approx(2500.0)
        assert result['top_5_pct'] == pytest.approx(100.0)

    def test_component_var_follows_covariance_method(self, multi_asset_snapshot, settings):
        asset_returns = build_position_returns(multi_asset_snapshot)
        cov = estimate_covariance(asset_returns, method='lw')
        weights = np.array([multi_asset_snapshot.weights()[s] for s in asset_returns.columns])

        shrunk = build_position_risks(multi_asset_snapshot, asset_returns, 0.95, settings=settings, covariance_method='lw')
        sample = build_position_risks(multi_asset_snapshot, asset_returns, 0.95, settings=settings)

        portfolio_var = stats.norm.ppf(0.95) * np.sqrt(weights @ cov @ weights) * multi_asset_snapshot.total_value
        assert sum(r.component_var for r in shrunk) == pytest.approx(portfolio_var, rel=1e-8)
        assert [r.component_var for r in shrunk] != pytest.approx([r.component_var for r in sample])

    def test_unknown_covariance_method(self, two_asset_snapshot, settings):
        asset_returns = build_position_returns(two_asset_snapshot)

        with pytest.raises(ValidationError, match="covariance_method"):
            build_position_risks(two_asset_snapshot, asset_returns, settings=settings, covariance_method='garch')
