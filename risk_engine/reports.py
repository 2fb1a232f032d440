"""
Risk Report Composer

Builds SUMMARY, DETAILED and REGULATORY reports for a date range. Each report
type extends the previous one:

    SUMMARY     headline metrics and an executive summary
    DETAILED    + position risk decomposition, preset stress results,
                  correlation analysis, historical analysis, risk attribution,
                  concentration
    REGULATORY  + rolling one-day VaR backtest over the range
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from typing import Dict, List

import numpy as np
import pandas as pd
import structlog

from risk_engine.backtest import rolling_var_backtest
from risk_engine.config import RiskSettings, get_settings
from risk_engine.correlation import (
    correlation_matrix,
    hierarchical_clusters,
    significant_correlations,
    top_correlated_pairs,
)
from risk_engine.errors import InsufficientDataError, ValidationError
from risk_engine.metrics import build_position_risks, compute_metrics, concentration_metrics, drawdown_series
from risk_engine.models import (
    ConcentrationSummary,
    CorrelationAnalysis,
    DayMove,
    DetailedReport,
    ExecutiveSummary,
    HistoricalAnalysis,
    PortfolioSnapshot,
    PositionRisk,
    RegulatoryReport,
    ReportPeriod,
    ReportType,
    RiskAttribution,
    RiskMetricsResult,
    RiskReport,
    SummaryReport,
)
from risk_engine.returns import (
    benchmark_returns,
    build_portfolio_returns,
    build_position_returns,
    portfolio_value_history,
    validate_snapshot,
)
from risk_engine.stress import PRESET_SCENARIOS, run_stress_tests

logger = structlog.get_logger(__name__)

CONCENTRATION_WARNING = 0.25
ROLLING_VOLATILITY_WINDOW = 21
TOP_CORRELATED_PAIRS = 10


def _in_range(index: pd.DatetimeIndex, start: dt.date, end: dt.date) -> np.ndarray:
    return (index >= pd.Timestamp(start)) & (index <= pd.Timestamp(end))


def executive_summary(
    metrics: RiskMetricsResult,
    snapshot: PortfolioSnapshot,
    settings: RiskSettings | None = None,
) -> ExecutiveSummary:
    s = settings or get_settings()
    key_risks: List[str] = []
    recommendations: List[str] = []

    if metrics.annualized_volatility > s.VOLATILITY_HIGH:
        key_risks.append(f"High volatility ({metrics.annualized_volatility:.1%} annualized)")
        recommendations.append("Consider diversifying into lower-volatility assets")
    if metrics.sharpe_ratio < 0.5:
        key_risks.append(f"Low risk-adjusted returns (Sharpe {metrics.sharpe_ratio:.2f})")
        recommendations.append("Review positions with poor return per unit of risk")
    if metrics.max_drawdown < -0.20:
        key_risks.append(f"Significant drawdown ({metrics.max_drawdown:.1%})")
        recommendations.append("Consider stop-loss or hedging strategies")

    weights = snapshot.weights()
    if weights:
        symbol, weight = max(weights.items(), key=lambda kv: abs(kv[1]))
        if abs(weight) > CONCENTRATION_WARNING and len(weights) > 1:
            key_risks.append(f"Concentration in {symbol} ({weight:.1%} of portfolio)")
            recommendations.append(f"Reduce exposure to {symbol}")

    if metrics.low_confidence:
        key_risks.append("Short price history; statistical estimates are low-confidence")

    return ExecutiveSummary(
        overall_risk_level=metrics.risk_level,
        risk_score=metrics.risk_score,
        key_risks=key_risks,
        recommendations=recommendations,
    )


def correlation_analysis(asset_returns: pd.DataFrame) -> CorrelationAnalysis | None:
    if len(asset_returns.columns) < 2:
        return None

    corr = correlation_matrix(asset_returns)
    return CorrelationAnalysis(
        assets=list(corr.columns),
        matrix=corr.values.tolist(),
        top_pairs=top_correlated_pairs(corr, n=TOP_CORRELATED_PAIRS),
        significant_correlations=significant_correlations(asset_returns),
        clusters=hierarchical_clusters(corr),
    )


def concentration_summary(snapshot: PortfolioSnapshot) -> ConcentrationSummary:
    """Herfindahl index and top-5 share of gross exposure."""
    weights = snapshot.weights()
    summary = concentration_metrics([weights[sym] for sym in snapshot.symbols], snapshot.symbols)
    return ConcentrationSummary(**summary)


def historical_analysis(values: pd.Series) -> HistoricalAnalysis:
    """Largest one-day value drop and gain, and the return over the period."""
    if len(values) < 2:
        return HistoricalAnalysis()

    changes = values.diff().dropna()
    worst, best = changes.idxmin(), changes.idxmax()
    return HistoricalAnalysis(
        worst_day=DayMove(date=worst.date(), change=float(changes[worst])),
        best_day=DayMove(date=best.date(), change=float(changes[best])),
        period_return=float(values.iloc[-1] / values.iloc[0] - 1.0),
    )


def risk_attribution(position_risks: List[PositionRisk], snapshot: PortfolioSnapshot) -> RiskAttribution:
    """Share of component VaR (percent) by asset, asset class, sector and region."""
    total = sum(r.component_var for r in position_risks)
    by_asset = {
        r.symbol: (r.component_var / total * 100) if total else 0.0
        for r in position_risks
    }

    groups: Dict[str, Dict[str, float]] = {
        "asset_class": defaultdict(float),
        "sector": defaultdict(float),
        "region": defaultdict(float),
    }
    for symbol, share in by_asset.items():
        position = snapshot.position(symbol)
        for attr, bucket in groups.items():
            bucket[getattr(position, attr)] += share

    return RiskAttribution(
        by_asset=by_asset,
        by_asset_class=dict(groups["asset_class"]),
        by_sector=dict(groups["sector"]),
        by_region=dict(groups["region"]),
    )


def chart_data(values: pd.Series, returns: pd.Series, periods_per_year: int = 252) -> Dict[str, List[Dict]]:
    """Chart-ready drawdown curve and rolling annualized volatility."""
    drawdowns = drawdown_series(returns.values)[1:]
    rolling_vol = returns.rolling(ROLLING_VOLATILITY_WINDOW).std(ddof=1) * np.sqrt(periods_per_year)

    return {
        "value": [{"date": d.date().isoformat(), "value": float(v)} for d, v in values.items()],
        "drawdown": [
            {"date": d.date().isoformat(), "drawdown": float(dd)}
            for d, dd in zip(returns.index, drawdowns)
        ],
        "rolling_volatility": [
            {"date": d.date().isoformat(), "volatility": float(v)}
            for d, v in rolling_vol.dropna().items()
        ],
    }


def compose(
    report_type: ReportType | str,
    snapshot: PortfolioSnapshot,
    start_date: dt.date,
    end_date: dt.date,
    include_charts: bool = False,
    confidence: float | None = None,
    time_horizon: str = "1M",
    settings: RiskSettings | None = None,
) -> RiskReport:
    """Compose a risk report over [start_date, end_date].

    Raises:
        ValidationError: For an unknown report type or start_date >= end_date
        InsufficientDataError: If fewer than two returns fall inside the range
    """
    s = settings or get_settings()
    try:
        report_type = ReportType(report_type)
    except ValueError:
        raise ValidationError("report_type", f"must be one of {[t.value for t in ReportType]}", report_type) from None

    if start_date >= end_date:
        raise ValidationError("date_range", "start_date must be before end_date", (start_date, end_date))
    validate_snapshot(snapshot)
    confidence = s.DEFAULT_CONFIDENCE if confidence is None else confidence

    asset_returns_all = build_position_returns(snapshot)
    asset_returns = asset_returns_all[_in_range(asset_returns_all.index, start_date, end_date)]
    if len(asset_returns) < 2:
        raise InsufficientDataError(
            f"Need at least 2 returns between {start_date} and {end_date}, got {len(asset_returns)}",
            required=2,
            available=len(asset_returns),
        )

    portfolio_returns = build_portfolio_returns(snapshot, asset_returns=asset_returns)

    metrics = compute_metrics(
        portfolio_returns,
        confidence,
        time_horizon,
        snapshot.total_value,
        portfolio_id=snapshot.portfolio_id,
        benchmark=benchmark_returns(snapshot),
        settings=s,
    )

    values_all = portfolio_value_history(snapshot)
    values = values_all[_in_range(values_all.index, start_date, end_date)]

    common = dict(
        portfolio_id=snapshot.portfolio_id,
        period=ReportPeriod(start=start_date, end=end_date),
        executive_summary=executive_summary(metrics, snapshot, s),
        metrics=metrics,
        charts=chart_data(values, portfolio_returns, s.TRADING_DAYS_PER_YEAR) if include_charts else None,
    )

    if report_type is ReportType.SUMMARY:
        report = SummaryReport(**common)
    else:
        position_risks = build_position_risks(snapshot, asset_returns, confidence, settings=s)
        detailed = dict(
            common,
            position_risks=position_risks,
            stress_tests=run_stress_tests(snapshot, PRESET_SCENARIOS.values(), s),
            correlations=correlation_analysis(asset_returns),
            historical_analysis=historical_analysis(values),
            risk_attribution=risk_attribution(position_risks, snapshot),
            concentration=concentration_summary(snapshot),
        )
        if report_type is ReportType.DETAILED:
            report = DetailedReport(**detailed)
        else:
            backtest_result = rolling_var_backtest(
                values_all, confidence, s.BACKTEST_WINDOW, start_date, end_date, settings=s
            )
            report = RegulatoryReport(**detailed, var_backtest=backtest_result)

    logger.info(
        "compose: report generated",
        portfolio_id=snapshot.portfolio_id,
        report_type=report_type.value,
        start=str(start_date),
        end=str(end_date),
        include_charts=include_charts,
    )
    return report
