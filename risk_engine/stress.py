"""
Stress Testing Module

Market shocks, per-asset shocks and historical replays applied to a portfolio
snapshot. Each scenario revalues the positions, attributes the loss per asset
and recomputes VaR and volatility under the scenario's volatility and
correlation stress.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

import numpy as np
import pandas as pd
import pydantic
import structlog
from pydantic import TypeAdapter

from risk_engine.config import RiskSettings, get_settings
from risk_engine.correlation import blend_correlation, correlation_matrix
from risk_engine.covariance import covariance_from_correlation
from risk_engine.errors import InsufficientDataError, ValidationError
from risk_engine.metrics import parametric_var, portfolio_volatility, resolve_horizon
from risk_engine.models import (
    AssetImpact,
    AssetShockScenario,
    HistoricalReplayScenario,
    MarketShockScenario,
    PortfolioSnapshot,
    StressedMetrics,
    StressScenario,
    StressSeverity,
    StressTestResult,
)
from risk_engine.returns import build_position_returns, position_price_frames, validate_snapshot

logger = structlog.get_logger(__name__)


PRESET_SCENARIOS = {
    "market_crash": MarketShockScenario(
        name="Market Crash",
        market_change_pct=-30.0,
        volatility_multiplier=2.0,
        correlation_shock=0.2,
        duration="1M",
    ),
    "volatility_spike": MarketShockScenario(
        name="Volatility Spike",
        market_change_pct=-10.0,
        volatility_multiplier=3.0,
        correlation_shock=0.1,
        duration="1W",
    ),
    "correlation_breakdown": MarketShockScenario(
        name="Correlation Breakdown",
        market_change_pct=-15.0,
        volatility_multiplier=1.5,
        correlation_shock=0.8,
        duration="1M",
    ),
    "mild_correction": MarketShockScenario(
        name="Mild Correction",
        market_change_pct=-10.0,
        volatility_multiplier=1.2,
        correlation_shock=0.0,
        duration="1M",
    ),
}

# Historical scenario windows (inclusive date ranges)
HISTORICAL_SCENARIOS = {
    "gfc_2008": {
        "name": "GFC (Oct 2007 - Mar 2009)",
        "start": "2007-10-09",
        "end": "2009-03-09",
    },
    "covid_crash_2020": {
        "name": "COVID Crash (Feb-Mar 2020)",
        "start": "2020-02-19",
        "end": "2020-03-23",
    },
    "rates_shock_2022": {
        "name": "2022 Rates Shock (Jan-Jun 2022)",
        "start": "2022-01-03",
        "end": "2022-06-16",
    },
    "q4_2018_selloff": {
        "name": "Q4 2018 Selloff (Oct-Dec 2018)",
        "start": "2018-10-03",
        "end": "2018-12-24",
    },
}

_scenario_adapter = TypeAdapter(StressScenario)


def historical_scenario(key: str) -> HistoricalReplayScenario:
    """Build a replay scenario from one of the HISTORICAL_SCENARIOS windows."""
    if key not in HISTORICAL_SCENARIOS:
        raise ValidationError("scenario", f"unknown historical scenario, expected one of {sorted(HISTORICAL_SCENARIOS)}", key)

    window = HISTORICAL_SCENARIOS[key]
    return HistoricalReplayScenario(name=window["name"], start=window["start"], end=window["end"])


def parse_scenario(data: str | Dict | StressScenario) -> StressScenario:
    """Coerce a preset key, a HISTORICAL_SCENARIOS key or a plain dict (tagged
    with ``kind``) into a scenario model."""
    if isinstance(data, str):
        if data in PRESET_SCENARIOS:
            return PRESET_SCENARIOS[data]
        if data in HISTORICAL_SCENARIOS:
            return historical_scenario(data)
        names = sorted(PRESET_SCENARIOS) + sorted(HISTORICAL_SCENARIOS)
        raise ValidationError("scenario", f"unknown scenario name, expected one of {names}", data)
    if isinstance(data, (MarketShockScenario, AssetShockScenario, HistoricalReplayScenario)):
        return data
    try:
        return _scenario_adapter.validate_python(data)
    except pydantic.ValidationError as exc:
        raise ValidationError("scenario", exc.errors()[0]["msg"], data) from exc


def _check_pct(field: str, value: float) -> None:
    if not -100.0 <= value <= 100.0:
        raise ValidationError(field, "must be within [-100, 100]", value)


def validate_scenario(scenario: StressScenario, settings: RiskSettings | None = None) -> None:
    """Reject out-of-range scenario parameters before anything is computed."""
    s = settings or get_settings()
    resolve_horizon(scenario.duration, s)

    if isinstance(scenario, HistoricalReplayScenario):
        if scenario.start >= scenario.end:
            raise ValidationError("date_range", "start must be before end", (scenario.start, scenario.end))
        return

    if scenario.volatility_multiplier <= 0:
        raise ValidationError("volatility_multiplier", "must be positive", scenario.volatility_multiplier)
    if not 0.0 <= scenario.correlation_shock <= 1.0:
        raise ValidationError("correlation_shock", "must be within [0, 1]", scenario.correlation_shock)

    if isinstance(scenario, MarketShockScenario):
        _check_pct("market_change_pct", scenario.market_change_pct)
    else:
        for symbol, change in scenario.asset_changes_pct.items():
            _check_pct(f"asset_changes_pct[{symbol}]", change)
        _check_pct("default_change_pct", scenario.default_change_pct)


def classify_severity(loss_fraction: float, settings: RiskSettings | None = None) -> StressSeverity:
    s = settings or get_settings()
    if loss_fraction < s.SEVERITY_MEDIUM:
        return StressSeverity.LOW
    if loss_fraction < s.SEVERITY_HIGH:
        return StressSeverity.MEDIUM
    if loss_fraction < s.SEVERITY_SEVERE:
        return StressSeverity.HIGH
    return StressSeverity.SEVERE


def _replay_returns(
    snapshot: PortfolioSnapshot,
    scenario: HistoricalReplayScenario,
) -> Tuple[Dict[str, float], List[str]]:
    """Cumulative return of each position over the replay window.

    Positions without two prices inside the window take the value-weighted
    return of the covered positions.
    """
    start, end = pd.Timestamp(scenario.start), pd.Timestamp(scenario.end)
    covered: Dict[str, float] = {}

    for symbol, df in position_price_frames(snapshot).items():
        window = df[(df["date"] >= start) & (df["date"] <= end)].sort_values("date")
        if len(window) < 2:
            logger.warning(
                "replay: insufficient data in scenario period",
                symbol=symbol,
                scenario=scenario.name,
                data_points=len(window),
            )
            continue

        first_price, last_price = window["close"].iloc[0], window["close"].iloc[-1]
        if first_price <= 0:
            continue
        covered[symbol] = float(last_price / first_price - 1.0)

    if not covered:
        raise InsufficientDataError(
            f"No position has price history covering {scenario.start} to {scenario.end}",
            required=2,
            available=0,
        )

    values = {p.symbol: p.market_value for p in snapshot.positions}
    covered_value = sum(abs(values[s]) for s in covered)
    fallback = sum(values[s] * r for s, r in covered.items()) / covered_value if covered_value else 0.0

    uncovered = [s for s in snapshot.symbols if s not in covered]
    if uncovered:
        logger.info(
            "replay: partial position coverage, using covered return for the rest",
            scenario=scenario.name,
            uncovered=uncovered,
            fallback_return=fallback,
        )

    changes = {s: covered.get(s, fallback) for s in snapshot.symbols}
    return changes, uncovered


def _price_changes(snapshot: PortfolioSnapshot, scenario: StressScenario) -> Tuple[Dict[str, float], List[str]]:
    if isinstance(scenario, MarketShockScenario):
        return {s: scenario.market_change_pct / 100 for s in snapshot.symbols}, []

    if isinstance(scenario, AssetShockScenario):
        unknown = sorted(set(scenario.asset_changes_pct) - set(snapshot.symbols))
        if unknown:
            logger.warning("asset_shock: symbols not held in portfolio", scenario=scenario.name, symbols=unknown)
        changes = {
            s: scenario.asset_changes_pct.get(s, scenario.default_change_pct) / 100
            for s in snapshot.symbols
        }
        return changes, []

    return _replay_returns(snapshot, scenario)


def _stressed_metrics(
    snapshot: PortfolioSnapshot,
    scenario: StressScenario,
    stressed_values: Dict[str, float],
    settings: RiskSettings,
) -> StressedMetrics | None:
    """Parametric VaR and volatility with scaled vols and a blended correlation."""
    try:
        returns = build_position_returns(snapshot)
    except InsufficientDataError as exc:
        logger.info("stress: stressed metrics skipped", scenario=scenario.name, reason=str(exc))
        return None

    multiplier = getattr(scenario, "volatility_multiplier", 1.0)
    shock = getattr(scenario, "correlation_shock", 0.0)

    vols = returns.std(ddof=1).values * multiplier
    corr = blend_correlation(correlation_matrix(returns).values, shock)
    cov = covariance_from_correlation(vols, corr)

    stressed_total = sum(stressed_values[s] for s in returns.columns)
    if stressed_total > 0:
        weights = np.array([stressed_values[s] / stressed_total for s in returns.columns])
    else:
        weights = np.zeros(len(returns.columns))

    daily_vol = portfolio_volatility(weights, cov)
    horizon_days = resolve_horizon(scenario.duration, settings)
    var = parametric_var(
        daily_vol,
        settings.DEFAULT_CONFIDENCE,
        horizon_days,
        portfolio_value=max(stressed_total, 0.0),
    )

    return StressedMetrics(
        var=var,
        annualized_volatility=float(daily_vol * np.sqrt(settings.TRADING_DAYS_PER_YEAR)),
        confidence_level=settings.DEFAULT_CONFIDENCE,
    )


def apply_scenario(
    snapshot: PortfolioSnapshot,
    scenario: StressScenario | Dict,
    settings: RiskSettings | None = None,
) -> StressTestResult:
    """Revalue the snapshot under one scenario.

    Args:
        snapshot: Portfolio to stress
        scenario: Scenario model or tagged dict
        settings: Optional settings override

    Returns:
        StressTestResult with loss (positive = loss), per-asset impacts,
        stressed metrics (None when history is too short) and severity
    """
    s = settings or get_settings()
    validate_snapshot(snapshot)
    scenario = parse_scenario(scenario)
    validate_scenario(scenario, s)

    changes, uncovered = _price_changes(snapshot, scenario)

    impacts = []
    stressed_values = {}
    for p in snapshot.positions:
        current = p.market_value
        stressed = current * (1 + changes[p.symbol])
        stressed_values[p.symbol] = stressed
        loss = current - stressed
        impacts.append(AssetImpact(
            symbol=p.symbol,
            current_value=current,
            stressed_value=stressed,
            loss=loss,
            loss_percentage=(loss / abs(current) * 100) if current else 0.0,
        ))

    pre = snapshot.total_value
    post = float(sum(stressed_values.values()))
    loss = pre - post
    loss_fraction = loss / abs(pre) if pre else 0.0

    result = StressTestResult(
        scenario_name=scenario.name,
        scenario_kind=scenario.kind,
        portfolio_value=pre,
        stressed_portfolio_value=post,
        portfolio_loss=loss,
        loss_percentage=loss_fraction * 100,
        asset_impacts=sorted(impacts, key=lambda x: abs(x.loss), reverse=True),
        metrics_under_stress=_stressed_metrics(snapshot, scenario, stressed_values, s),
        severity=classify_severity(loss_fraction, s),
        uncovered_symbols=uncovered,
    )

    logger.info(
        "apply_scenario: complete",
        portfolio_id=snapshot.portfolio_id,
        scenario=scenario.name,
        kind=scenario.kind,
        portfolio_loss=loss,
        severity=result.severity.value,
    )
    return result


def validate_scenarios(
    scenarios: Iterable[str | StressScenario | Dict],
    settings: RiskSettings | None = None,
) -> List[StressScenario]:
    """Parse and validate a whole batch; nothing runs if any scenario is bad."""
    parsed = [parse_scenario(sc) for sc in scenarios]
    if not parsed:
        raise ValidationError("scenarios", "at least one scenario is required")

    for scenario in parsed:
        validate_scenario(scenario, settings)
    return parsed


def run_stress_tests(
    snapshot: PortfolioSnapshot,
    scenarios: Iterable[str | StressScenario | Dict],
    settings: RiskSettings | None = None,
) -> List[StressTestResult]:
    """Validate every scenario, then run them in order."""
    s = settings or get_settings()
    parsed = validate_scenarios(scenarios, s)
    return [apply_scenario(snapshot, scenario, s) for scenario in parsed]
