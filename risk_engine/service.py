"""Risk analytics service.

Entry points used by the request/response layer. Each method loads a fresh
snapshot from the repository, validates its inputs before computing anything
and returns a frozen result model. The service holds no per-request state.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd
import structlog

from risk_engine import limits as limit_monitor
from risk_engine.config import RiskSettings, get_settings
from risk_engine.correlation import correlation_matrix
from risk_engine.covariance import estimate_covariance, validate_covariance_method
from risk_engine.errors import NotFoundError, ValidationError
from risk_engine.liquidity import analyze_liquidity
from risk_engine.metrics import build_position_risks, compute_metrics, resolve_horizon, validate_confidence
from risk_engine.models import (
    HistoricalRiskPoint,
    LimitObservation,
    LiquidityProfile,
    PortfolioComparison,
    PortfolioSnapshot,
    PositionRisk,
    ReportType,
    RiskLimitCheck,
    RiskLimitSet,
    RiskMetricsResult,
    RiskReport,
    SimulationResult,
    StressScenario,
    StressTestResult,
    VaRMethod,
)
from risk_engine.monte_carlo import monte_carlo_var, simulate, validate_path_count
from risk_engine.reports import compose
from risk_engine.repository import PortfolioRepository
from risk_engine.returns import (
    benchmark_returns,
    build_portfolio_returns,
    build_position_returns,
    portfolio_value_history,
)
from risk_engine.stress import run_stress_tests, validate_scenarios

logger = structlog.get_logger(__name__)


def _validate_window(window: int | None) -> None:
    if window is None:
        return
    if isinstance(window, bool) or not isinstance(window, int) or window < 2:
        raise ValidationError("window", "must be an integer of at least 2", window)


class RiskAnalyticsService:
    def __init__(self, repository: PortfolioRepository, settings: RiskSettings | None = None):
        self.repository = repository
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _metrics_from_returns(
        self,
        snapshot: PortfolioSnapshot,
        asset_returns: pd.DataFrame,
        portfolio_value: float,
        time_horizon: str,
        confidence_level: float,
        include_correlations: bool,
        var_method: VaRMethod,
        allow_low_confidence: bool,
        simulated_var: float | None = None,
        covariance_method: str = "sample",
    ) -> RiskMetricsResult:
        weights_map = snapshot.weights()
        weights = np.array([weights_map[sym] for sym in asset_returns.columns])
        portfolio_returns = build_portfolio_returns(snapshot, asset_returns=asset_returns)

        corr = cov = None
        if include_correlations:
            corr = correlation_matrix(asset_returns)
            cov = estimate_covariance(asset_returns, method=covariance_method)

        return compute_metrics(
            portfolio_returns,
            confidence_level,
            time_horizon,
            portfolio_value,
            portfolio_id=snapshot.portfolio_id,
            var_method=var_method,
            weights=weights if include_correlations else None,
            cov=cov,
            corr=corr,
            benchmark=benchmark_returns(snapshot),
            simulated_var=simulated_var,
            allow_low_confidence=allow_low_confidence,
            settings=self.settings,
        )

    def calculate_risk_metrics(
        self,
        portfolio_id: str,
        time_horizon: str = "1M",
        confidence_level: float = 0.95,
        include_correlations: bool = True,
        var_method: VaRMethod | str = VaRMethod.HISTORICAL,
        allow_low_confidence: bool = True,
        seed: int | None = None,
        covariance_method: str = "sample",
        window: int | None = None,
    ) -> RiskMetricsResult:
        """Headline risk metrics for a portfolio.

        With ``include_correlations`` the parametric volatility uses the full
        asset covariance matrix ('sample', 'lw' or 'ewma' estimate) and the
        correlation matrix is returned with the result. ``window`` limits the
        history to the most recent returns for the historical and parametric
        methods; Monte Carlo calibrates on the full history.
        """
        validate_confidence(confidence_level)
        resolve_horizon(time_horizon, self.settings)
        try:
            method = VaRMethod(var_method)
        except ValueError:
            raise ValidationError("var_method", f"must be one of {[m.value for m in VaRMethod]}", var_method) from None
        covariance_method = validate_covariance_method(covariance_method)
        _validate_window(window)

        snapshot = self.repository.get_snapshot(portfolio_id)
        asset_returns = build_position_returns(snapshot, window=window)

        simulated_var = None
        if method is VaRMethod.MONTE_CARLO:
            simulated_var = monte_carlo_var(
                snapshot, confidence_level, time_horizon, seed=seed, settings=self.settings
            )

        return self._metrics_from_returns(
            snapshot,
            asset_returns,
            snapshot.total_value,
            time_horizon,
            confidence_level,
            include_correlations,
            method,
            allow_low_confidence,
            simulated_var,
            covariance_method,
        )

    def get_position_risks(
        self,
        portfolio_id: str,
        confidence_level: float = 0.95,
        covariance_method: str = "sample",
        window: int | None = None,
    ) -> List[PositionRisk]:
        validate_confidence(confidence_level)
        covariance_method = validate_covariance_method(covariance_method)
        _validate_window(window)

        snapshot = self.repository.get_snapshot(portfolio_id)
        asset_returns = build_position_returns(snapshot, window=window)
        return build_position_risks(
            snapshot,
            asset_returns,
            confidence_level,
            settings=self.settings,
            covariance_method=covariance_method,
        )

    def get_historical_risk_metrics(
        self,
        portfolio_id: str,
        days: int = 30,
        time_horizon: str = "1D",
        confidence_level: float = 0.95,
    ) -> List[HistoricalRiskPoint]:
        """Metrics as they would have been reported on each of the last ``days`` dates.

        Each point uses the trailing BACKTEST_WINDOW returns ending on that
        date and the portfolio's value on that date.
        """
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError("days", "must be a positive integer", days)
        validate_confidence(confidence_level)
        resolve_horizon(time_horizon, self.settings)

        snapshot = self.repository.get_snapshot(portfolio_id)
        asset_returns = build_position_returns(snapshot)
        values = portfolio_value_history(snapshot)
        window = self.settings.BACKTEST_WINDOW

        first = max(len(asset_returns) - days, 1)
        points = []
        for end in range(first, len(asset_returns)):
            trailing = asset_returns.iloc[max(0, end + 1 - window):end + 1]
            if len(trailing) < 2:
                continue
            as_of = asset_returns.index[end]
            metrics = self._metrics_from_returns(
                snapshot,
                trailing,
                float(values.loc[as_of]),
                time_horizon,
                confidence_level,
                include_correlations=False,
                var_method=VaRMethod.HISTORICAL,
                allow_low_confidence=True,
            )
            points.append(HistoricalRiskPoint(as_of=as_of.date(), metrics=metrics))

        logger.info("get_historical_risk_metrics: complete", portfolio_id=portfolio_id, points=len(points))
        return points

    def compare_risk_across_portfolios(
        self,
        portfolio_ids: Sequence[str],
        time_horizon: str = "1M",
        confidence_level: float = 0.95,
    ) -> PortfolioComparison:
        if not portfolio_ids:
            raise ValidationError("portfolio_ids", "at least one portfolio is required")
        if len(set(portfolio_ids)) != len(portfolio_ids):
            raise ValidationError("portfolio_ids", "must be unique", list(portfolio_ids))

        metrics: Dict[str, RiskMetricsResult] = {
            pid: self.calculate_risk_metrics(pid, time_horizon, confidence_level)
            for pid in portfolio_ids
        }

        by_var_ratio = sorted(metrics, key=lambda pid: metrics[pid].value_at_risk / metrics[pid].portfolio_value)
        return PortfolioComparison(
            metrics=metrics,
            lowest_risk_portfolio=min(metrics, key=lambda pid: metrics[pid].risk_score),
            highest_risk_portfolio=max(metrics, key=lambda pid: metrics[pid].risk_score),
            best_sharpe_portfolio=max(metrics, key=lambda pid: metrics[pid].sharpe_ratio),
            ranking_by_var_ratio=by_var_ratio,
            average_annualized_volatility=float(np.mean([m.annualized_volatility for m in metrics.values()])),
        )

    # ------------------------------------------------------------------
    # Stress, simulation, liquidity
    # ------------------------------------------------------------------

    def run_stress_test(
        self,
        portfolio_id: str,
        scenarios: Iterable[str | StressScenario | dict],
    ) -> List[StressTestResult]:
        """Run scenario models, tagged dicts or preset names against a portfolio."""
        parsed = validate_scenarios(scenarios, self.settings)
        snapshot = self.repository.get_snapshot(portfolio_id)
        return run_stress_tests(snapshot, parsed, self.settings)

    def run_monte_carlo_simulation(
        self,
        portfolio_id: str,
        number_of_simulations: int = 1000,
        time_horizon: str = "1M",
        seed: int | None = None,
        n_workers: int = 1,
    ) -> SimulationResult:
        validate_path_count(number_of_simulations, self.settings)
        resolve_horizon(time_horizon, self.settings)

        snapshot = self.repository.get_snapshot(portfolio_id)
        return simulate(
            snapshot,
            number_of_simulations,
            time_horizon,
            seed=seed,
            n_workers=n_workers,
            settings=self.settings,
        )

    def get_liquidity_risk(self, portfolio_id: str) -> LiquidityProfile:
        return analyze_liquidity(self.repository.get_snapshot(portfolio_id), self.settings)

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def set_risk_limits(self, portfolio_id: str, limits: RiskLimitSet | dict) -> RiskLimitSet:
        if isinstance(limits, dict):
            limits = RiskLimitSet(**{"portfolio_id": portfolio_id, **limits})
        if limits.portfolio_id != portfolio_id:
            raise ValidationError("portfolio_id", "does not match the limit set", limits.portfolio_id)

        limit_monitor.validate_limit_set(limits)
        saved = self.repository.save_risk_limits(limits)
        logger.info("set_risk_limits: saved", portfolio_id=portfolio_id, active=saved.active)
        return saved

    def check_risk_limits(self, portfolio_id: str) -> RiskLimitCheck:
        """Check current one-day metrics against the stored limit set."""
        limit_set = self.repository.get_risk_limits(portfolio_id)
        if limit_set is None:
            raise NotFoundError("RiskLimitSet", portfolio_id)
        if not limit_set.active:
            return limit_monitor.check_limits(LimitObservation(), limit_set)

        snapshot = self.repository.get_snapshot(portfolio_id)
        metrics = self.calculate_risk_metrics(portfolio_id, "1D", self.settings.DEFAULT_CONFIDENCE)
        return limit_monitor.check_limits(LimitObservation.from_metrics(metrics, snapshot), limit_set)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def generate_risk_report(
        self,
        portfolio_id: str,
        report_type: ReportType | str,
        start_date: dt.date,
        end_date: dt.date,
        include_charts: bool = False,
    ) -> RiskReport:
        try:
            report_type = ReportType(report_type)
        except ValueError:
            raise ValidationError("report_type", f"must be one of {[t.value for t in ReportType]}", report_type) from None
        if start_date >= end_date:
            raise ValidationError("date_range", "start_date must be before end_date", (start_date, end_date))

        snapshot = self.repository.get_snapshot(portfolio_id)
        return compose(report_type, snapshot, start_date, end_date, include_charts, settings=self.settings)
