"""Pydantic models for portfolio snapshots and risk results.

Inputs (positions, snapshots, scenarios, limit sets) are plain validated
models; results are frozen. All models serialize with camelCase aliases for
the transport layer (``model_dump(by_alias=True)``) while accepting
snake_case names in Python.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class RiskModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenRiskModel(RiskModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class StressSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    SEVERE = "SEVERE"


class VaRMethod(str, Enum):
    HISTORICAL = "historical"
    PARAMETRIC = "parametric"
    MONTE_CARLO = "monte_carlo"


class ReportType(str, Enum):
    SUMMARY = "SUMMARY"
    DETAILED = "DETAILED"
    REGULATORY = "REGULATORY"


class LimitStatus(str, Enum):
    BREACH_DETECTED = "BREACH_DETECTED"
    WITHIN_LIMITS = "WITHIN_LIMITS"
    INACTIVE = "INACTIVE"


class BaselZone(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


# ---------------------------------------------------------------------------
# Portfolio snapshot
# ---------------------------------------------------------------------------


class PricePoint(RiskModel):
    """One closing price observation."""

    date: dt.date
    close: float


class Position(RiskModel):
    """A holding in the portfolio with its price history (ascending by date)."""

    symbol: str
    asset_class: str = "EQUITY"
    quantity: float
    average_cost: float
    current_price: float
    price_history: list[PricePoint] = Field(default_factory=list)
    average_daily_volume: float | None = None  # shares per day
    bid_ask_spread_bps: float | None = None
    sector: str = "Unknown"
    region: str = "Unknown"

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.average_cost

    @property
    def unrealized_pnl(self) -> float:
        return self.market_value - self.cost_basis


class PortfolioSnapshot(RiskModel):
    """Immutable-by-convention view of a portfolio supplied by the caller.

    ``total_value`` is derived on every read, so it always equals the sum of
    the constituent position values.
    """

    portfolio_id: str
    currency: str = "USD"
    positions: list[Position] = Field(default_factory=list)
    benchmark_history: list[PricePoint] | None = None
    equity: float | None = None  # net liquidation value, used for leverage
    as_of: dt.datetime = Field(default_factory=_utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_value(self) -> float:
        return float(sum(p.market_value for p in self.positions))

    @property
    def gross_exposure(self) -> float:
        return float(sum(abs(p.market_value) for p in self.positions))

    @property
    def symbols(self) -> list[str]:
        return [p.symbol for p in self.positions]

    def weights(self) -> dict[str, float]:
        """Value weights of each position (sum to 1 for long-only books)."""
        total = self.total_value
        if total == 0:
            return {p.symbol: 0.0 for p in self.positions}
        return {p.symbol: p.market_value / total for p in self.positions}

    def position(self, symbol: str) -> Position:
        for p in self.positions:
            if p.symbol == symbol:
                return p
        raise KeyError(symbol)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class RiskMetricsResult(FrozenRiskModel):
    portfolio_id: str
    time_horizon: str
    horizon_days: int
    confidence_level: float
    var_method: VaRMethod
    portfolio_value: float

    value_at_risk: float
    conditional_var: float
    volatility: float  # annualized
    daily_volatility: float
    annualized_volatility: float
    downside_volatility: float

    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    beta: float | None = None

    max_drawdown: float
    current_drawdown: float
    max_drawdown_duration: int

    correlation: dict[str, dict[str, float]] | None = None

    observations: int
    low_confidence: bool = False
    warnings: list[str] = Field(default_factory=list)

    risk_score: float
    risk_level: RiskLevel
    calculated_at: dt.datetime = Field(default_factory=_utcnow)


class PositionRisk(FrozenRiskModel):
    symbol: str
    exposure: float
    percentage_of_portfolio: float
    individual_var: float
    marginal_var: float
    component_var: float
    annualized_volatility: float
    concentration_risk: float


class HistoricalRiskPoint(FrozenRiskModel):
    as_of: dt.date
    metrics: RiskMetricsResult


class PortfolioComparison(FrozenRiskModel):
    metrics: dict[str, RiskMetricsResult]
    lowest_risk_portfolio: str
    highest_risk_portfolio: str
    best_sharpe_portfolio: str
    ranking_by_var_ratio: list[str]
    average_annualized_volatility: float


# ---------------------------------------------------------------------------
# Stress testing
# ---------------------------------------------------------------------------


class _ShockParameters(RiskModel):
    name: str
    volatility_multiplier: float = 1.0
    correlation_shock: float = 0.0
    duration: str = "1M"


class MarketShockScenario(_ShockParameters):
    """Uniform percentage move applied to every position."""

    kind: Literal["market_shock"] = "market_shock"
    market_change_pct: float


class AssetShockScenario(_ShockParameters):
    """Per-symbol percentage moves; unlisted symbols use ``default_change_pct``."""

    kind: Literal["asset_shock"] = "asset_shock"
    asset_changes_pct: dict[str, float]
    default_change_pct: float = 0.0


class HistoricalReplayScenario(RiskModel):
    """Replay of each position's own cumulative return over a past window."""

    kind: Literal["historical"] = "historical"
    name: str
    start: dt.date
    end: dt.date
    duration: str = "1M"


StressScenario = Annotated[
    Union[MarketShockScenario, AssetShockScenario, HistoricalReplayScenario],
    Field(discriminator="kind"),
]


class AssetImpact(FrozenRiskModel):
    symbol: str
    current_value: float
    stressed_value: float
    loss: float
    loss_percentage: float


class StressedMetrics(FrozenRiskModel):
    var: float
    annualized_volatility: float
    confidence_level: float


class StressTestResult(FrozenRiskModel):
    scenario_name: str
    scenario_kind: str
    portfolio_value: float
    stressed_portfolio_value: float
    portfolio_loss: float
    loss_percentage: float
    asset_impacts: list[AssetImpact]
    metrics_under_stress: StressedMetrics | None = None
    severity: StressSeverity
    uncovered_symbols: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Monte Carlo
# ---------------------------------------------------------------------------


class PathSummary(FrozenRiskModel):
    path_id: int
    final_value: float
    max_value: float
    min_value: float


class SimulationResult(FrozenRiskModel):
    portfolio_id: str
    number_of_paths: int
    time_horizon: str
    horizon_days: int
    initial_value: float
    expected_return: float
    expected_volatility: float
    probability_of_loss: float
    percentiles: dict[str, float]
    percentile_intervals: dict[str, tuple[float, float]]
    best_case_value: float
    worst_case_value: float
    median_value: float
    seed: int | None = None
    sample_paths: list[PathSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Backtesting
# ---------------------------------------------------------------------------


class BacktestResult(FrozenRiskModel):
    observations: int
    violations: int
    expected_violations: float
    violation_rate: float
    confidence_level: float
    kupiec_statistic: float
    p_value: float
    critical_value: float
    significance: float
    passed: bool
    zone: BaselZone


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------


class AssetLiquidity(FrozenRiskModel):
    symbol: str
    value: float
    average_daily_volume: float
    participation_rate: float
    days_to_liquidate: float
    stressed_days_to_liquidate: float
    market_impact: float
    liquidity_score: float
    stressed_cost: float


class LiquidityBuckets(FrozenRiskModel):
    immediately_liquid: float
    liquid_within_1_day: float
    liquid_within_1_week: float
    illiquid: float


class LiquidityProfile(FrozenRiskModel):
    portfolio_id: str
    liquidity_score: float
    days_to_liquidate: float
    max_days_to_liquidate: float
    stressed_days_to_liquidate: float
    stressed_liquidation_cost: float
    stressed_cost_pct: float
    buckets: LiquidityBuckets
    by_asset: list[AssetLiquidity]


# ---------------------------------------------------------------------------
# Risk limits
# ---------------------------------------------------------------------------


class RiskLimitSet(RiskModel):
    portfolio_id: str
    max_drawdown_pct: float | None = None
    max_var: float | None = None
    max_leverage: float | None = None
    max_concentration_pct: float | None = None
    max_volatility_pct: float | None = None
    min_sharpe_ratio: float | None = None
    active: bool = True


class LimitObservation(RiskModel):
    """Observed values compared against a limit set; None = not observed."""

    drawdown_pct: float | None = None
    var: float | None = None
    leverage: float | None = None
    concentration_pct: float | None = None
    volatility_pct: float | None = None
    sharpe_ratio: float | None = None

    @classmethod
    def from_metrics(cls, metrics: RiskMetricsResult, snapshot: PortfolioSnapshot) -> LimitObservation:
        equity = snapshot.equity if snapshot.equity is not None else snapshot.total_value
        gross = snapshot.gross_exposure
        largest = max((abs(p.market_value) for p in snapshot.positions), default=0.0)
        return cls(
            drawdown_pct=-metrics.max_drawdown * 100,
            var=metrics.value_at_risk,
            leverage=(gross / equity) if equity > 0 else None,
            concentration_pct=(largest / gross * 100) if gross > 0 else None,
            volatility_pct=metrics.annualized_volatility * 100,
            sharpe_ratio=metrics.sharpe_ratio,
        )


class LimitBreach(FrozenRiskModel):
    limit_name: str
    limit_value: float
    observed_value: float
    breach_amount: float
    breach_percentage: float


class RiskLimitCheck(FrozenRiskModel):
    portfolio_id: str
    breaches: list[LimitBreach]
    all_within_limits: bool
    status: LimitStatus
    checked_at: dt.datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ExecutiveSummary(FrozenRiskModel):
    overall_risk_level: RiskLevel
    risk_score: float
    key_risks: list[str]
    recommendations: list[str]


class CorrelationAnalysis(FrozenRiskModel):
    assets: list[str]
    matrix: list[list[float]]
    top_pairs: list[dict[str, float | str]]
    significant_correlations: list[dict[str, float | str]]
    clusters: list[dict[str, object]]


class DayMove(FrozenRiskModel):
    date: dt.date
    change: float


class HistoricalAnalysis(FrozenRiskModel):
    worst_day: DayMove | None = None
    best_day: DayMove | None = None
    period_return: float | None = None


class ConcentrationSummary(FrozenRiskModel):
    hhi: float  # Herfindahl index of gross weights, 0-10,000
    top_5_pct: float
    top_5_names: list[str]


class RiskAttribution(FrozenRiskModel):
    by_asset: dict[str, float]
    by_asset_class: dict[str, float]
    by_sector: dict[str, float]
    by_region: dict[str, float]


class ReportPeriod(FrozenRiskModel):
    start: dt.date
    end: dt.date


class _ReportBase(FrozenRiskModel):
    portfolio_id: str
    generated_at: dt.datetime = Field(default_factory=_utcnow)
    period: ReportPeriod
    executive_summary: ExecutiveSummary
    metrics: RiskMetricsResult
    charts: dict[str, list[dict[str, float | str]]] | None = None


class SummaryReport(_ReportBase):
    report_type: Literal[ReportType.SUMMARY] = ReportType.SUMMARY


class DetailedReport(_ReportBase):
    report_type: Literal[ReportType.DETAILED] = ReportType.DETAILED
    position_risks: list[PositionRisk]
    stress_tests: list[StressTestResult]
    correlations: CorrelationAnalysis | None = None
    historical_analysis: HistoricalAnalysis
    risk_attribution: RiskAttribution
    concentration: ConcentrationSummary


class RegulatoryReport(DetailedReport):
    report_type: Literal[ReportType.REGULATORY] = ReportType.REGULATORY  # type: ignore[assignment]
    var_backtest: BacktestResult


RiskReport = Annotated[
    Union[SummaryReport, DetailedReport, RegulatoryReport],
    Field(discriminator="report_type"),
]
