"""
Portfolio Risk Engine

Risk analytics for portfolio snapshots: VaR, volatility, drawdowns,
stress scenarios, Monte Carlo simulation, VaR backtesting, liquidity risk,
limit monitoring and risk reports.

Modules:
- returns: Price matrix construction and return calculations
- covariance: Covariance estimation (sample, Ledoit-Wolf, EWMA)
- correlation: Correlation estimation, shocks, factorization and clustering
- metrics: VaR, ES, volatility, ratios, drawdowns, position decomposition
- stress: Market, per-asset and historical replay stress testing
- monte_carlo: Correlated GBM path simulation
- backtest: Kupiec POF test and Basel traffic-light zones
- liquidity: Days-to-liquidate, liquidity scores and stressed cost
- limits: Risk limit checks
- reports: Summary, detailed and regulatory reports
- service: Facade over a portfolio repository
"""

from .config import RiskSettings, get_settings
from .errors import (
    ComputationError,
    InsufficientDataError,
    NotFoundError,
    RiskEngineError,
    ValidationError,
)
from .logging_config import configure_logging
from .models import (
    AssetShockScenario,
    HistoricalReplayScenario,
    MarketShockScenario,
    PortfolioSnapshot,
    Position,
    PricePoint,
    ReportType,
    RiskLevel,
    RiskLimitSet,
    VaRMethod,
)

# Calculators
from .covariance import estimate_covariance
from .correlation import estimate_correlation
from .metrics import compute_metrics, historical_var, parametric_var, max_drawdown
from .stress import apply_scenario, run_stress_tests, PRESET_SCENARIOS, HISTORICAL_SCENARIOS
from .monte_carlo import simulate, monte_carlo_var
from .backtest import backtest, kupiec_pof, rolling_var_backtest
from .liquidity import analyze_liquidity
from .limits import check_limits, validate_limit_set
from .reports import compose

# Service
from .repository import PortfolioRepository, InMemoryPortfolioRepository
from .service import RiskAnalyticsService

__all__ = [
    # Configuration and errors
    'RiskSettings',
    'get_settings',
    'configure_logging',
    'RiskEngineError',
    'ValidationError',
    'InsufficientDataError',
    'NotFoundError',
    'ComputationError',
    # Models
    'PricePoint',
    'Position',
    'PortfolioSnapshot',
    'MarketShockScenario',
    'AssetShockScenario',
    'HistoricalReplayScenario',
    'RiskLimitSet',
    'RiskLevel',
    'ReportType',
    'VaRMethod',
    # Calculators
    'estimate_covariance',
    'estimate_correlation',
    'compute_metrics',
    'historical_var',
    'parametric_var',
    'max_drawdown',
    'apply_scenario',
    'run_stress_tests',
    'PRESET_SCENARIOS',
    'HISTORICAL_SCENARIOS',
    'simulate',
    'monte_carlo_var',
    'backtest',
    'kupiec_pof',
    'rolling_var_backtest',
    'analyze_liquidity',
    'check_limits',
    'validate_limit_set',
    'compose',
    # Service
    'PortfolioRepository',
    'InMemoryPortfolioRepository',
    'RiskAnalyticsService',
]
