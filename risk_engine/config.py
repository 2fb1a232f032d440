"""Risk engine configuration loaded from environment variables.

Every threshold and convention the calculators use lives here so it can be
tuned per deployment (``RISK_*`` variables or a ``.env`` file) and overridden
per call by passing a ``RiskSettings`` instance explicitly.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class RiskSettings(BaseSettings):
    """Risk engine configuration.

    Annualization uses 252 trading days everywhere (VaR horizon scaling,
    volatility and Sharpe ratio). Horizons are expressed in trading days.
    """

    # Conventions
    TRADING_DAYS_PER_YEAR: int = 252
    RISK_FREE_RATE: float = 0.02  # annual
    HORIZON_DAYS: dict[str, int] = {
        "1D": 1,
        "1W": 5,
        "1M": 21,
        "3M": 63,
        "6M": 126,
        "1Y": 252,
    }
    DEFAULT_CONFIDENCE: float = 0.95
    MIN_VAR_OBSERVATIONS: int = 30  # below this historical VaR is low-confidence

    # Risk level classification (VaR / portfolio value, annualized volatility)
    VAR_RATIO_MEDIUM: float = 0.02
    VAR_RATIO_HIGH: float = 0.05
    VAR_RATIO_EXTREME: float = 0.10
    VOLATILITY_MEDIUM: float = 0.15
    VOLATILITY_HIGH: float = 0.25
    VOLATILITY_EXTREME: float = 0.40
    DRAWDOWN_EXTREME: float = 0.30  # drawdown at which the score's drawdown term saturates

    # Stress severity (loss / portfolio value)
    SEVERITY_MEDIUM: float = 0.05
    SEVERITY_HIGH: float = 0.15
    SEVERITY_SEVERE: float = 0.30

    # Monte Carlo
    MAX_SIMULATIONS: int = 10_000
    SIMULATION_BLOCK_SIZE: int = 1_000
    SIMULATION_PERCENTILES: tuple[int, ...] = (1, 5, 25, 50, 75, 95, 99)
    SIMULATION_SAMPLE_PATHS: int = 20
    PERCENTILE_INTERVAL_LEVEL: float = 0.95

    # Backtesting
    BACKTEST_WINDOW: int = 60
    BACKTEST_SIGNIFICANCE: float = 0.05

    # Liquidity
    PARTICIPATION_RATE: float = 0.10
    DEFAULT_AVERAGE_DAILY_VOLUME: float = 1_000_000.0
    LIQUIDITY_STRESS_FACTOR: float = 2.0
    LIQUIDITY_SCORE_DECAY: float = 10.0  # score points lost per day to liquidate
    FORCED_LIQUIDATION_DAYS: float = 1.0
    DEFAULT_SPREAD_BPS: float = 10.0
    STRESS_SPREAD_MULTIPLIER: float = 2.0
    IMPACT_COEFFICIENT: float = 1.0
    DEFAULT_DAILY_VOLATILITY: float = 0.02

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_prefix": "RISK_", "env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> RiskSettings:
    """Return a cached RiskSettings instance."""
    return RiskSettings()
