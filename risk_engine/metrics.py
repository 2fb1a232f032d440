"""
Risk Metrics Module

VaR (historical and parametric; Monte Carlo is delegated to monte_carlo),
expected shortfall, volatility, Sharpe / Sortino / Calmar ratios, drawdowns,
beta, risk-level classification and per-position risk decomposition.

Conventions: returns are daily simple returns, annualization uses
``TRADING_DAYS_PER_YEAR`` (252) and VaR is scaled to the horizon with the
square-root-of-time rule. VaR and expected shortfall are reported as positive
loss amounts in portfolio currency.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
import structlog
from scipy import stats

from risk_engine.config import RiskSettings, get_settings
from risk_engine.covariance import annualize_cov, estimate_covariance
from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError
from risk_engine.models import (
    PortfolioSnapshot,
    PositionRisk,
    RiskLevel,
    RiskMetricsResult,
    VaRMethod,
)

logger = structlog.get_logger(__name__)

_LEVEL_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.EXTREME]


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def validate_confidence(confidence_level: float) -> float:
    if not isinstance(confidence_level, (int, float)) or not 0 < confidence_level < 1:
        raise ValidationError("confidence_level", "must be between 0 and 1 (exclusive)", confidence_level)
    return float(confidence_level)


def resolve_horizon(time_horizon: str, settings: RiskSettings | None = None) -> int:
    """Trading days for a horizon label such as '1D' or '1M'."""
    settings = settings or get_settings()
    days = settings.HORIZON_DAYS.get(str(time_horizon).upper())
    if days is None:
        raise ValidationError(
            "time_horizon", f"must be one of {sorted(settings.HORIZON_DAYS, key=settings.HORIZON_DAYS.get)}", time_horizon
        )
    return days


def _as_array(returns: pd.Series | np.ndarray | Sequence[float], min_length: int = 1) -> np.ndarray:
    values = np.asarray(returns, dtype=float).flatten()
    if len(values) < min_length:
        raise InsufficientDataError(
            f"Need at least {min_length} return observations, got {len(values)}",
            required=min_length,
            available=len(values),
        )
    if not np.isfinite(values).all():
        raise ComputationError("Non-finite values detected in return series")
    return values


# ---------------------------------------------------------------------------
# Value at Risk
# ---------------------------------------------------------------------------


def historical_var(
    returns: pd.Series | np.ndarray,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
) -> float:
    """Historical-simulation VaR.

    The (1 - confidence) percentile of the observed daily returns, scaled by
    sqrt(horizon_days). A tail that is still a gain reports zero VaR.
    """
    validate_confidence(confidence)
    values = _as_array(returns)

    quantile = float(np.percentile(values, (1 - confidence) * 100))
    var = max(-quantile, 0.0) * np.sqrt(horizon_days) * portfolio_value
    return float(var)


def historical_expected_shortfall(
    returns: pd.Series | np.ndarray,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
) -> float:
    """Mean loss over the returns at or below the historical VaR quantile."""
    validate_confidence(confidence)
    values = _as_array(returns)

    quantile = np.percentile(values, (1 - confidence) * 100)
    tail = values[values <= quantile]
    es = max(-float(tail.mean()), 0.0) * np.sqrt(horizon_days) * portfolio_value
    return float(es)


def portfolio_volatility(
    weights: np.ndarray,
    cov: np.ndarray,
    horizon_days: int = 1,
) -> float:
    """Portfolio volatility sqrt(w' Sigma w), scaled by sqrt(horizon_days)."""
    weights = np.asarray(weights, dtype=float).flatten()
    cov = np.atleast_2d(np.asarray(cov, dtype=float))

    if weights.shape[0] != cov.shape[0]:
        raise ValidationError(
            "weights", f"dimension {weights.shape[0]} doesn't match covariance {cov.shape[0]}"
        )
    if horizon_days < 1:
        raise ValidationError("horizon_days", "must be at least 1", horizon_days)

    portfolio_var = float(weights @ cov @ weights)
    if portfolio_var < -1e-10:
        raise ComputationError(
            f"Negative portfolio variance ({portfolio_var:.6e}); covariance matrix is not positive semi-definite"
        )

    return float(np.sqrt(max(portfolio_var, 0.0)) * np.sqrt(horizon_days))


def parametric_var(
    daily_vol: float,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
    mean_return: float = 0.0,
) -> float:
    """Variance-covariance VaR under normally distributed returns.

    VaR = (z_c * sigma * sqrt(h) - mu * h) * value, with z_c = Phi^-1(c).
    """
    validate_confidence(confidence)
    if daily_vol < 0:
        raise ValidationError("daily_vol", "must be non-negative", daily_vol)

    z_score = stats.norm.ppf(confidence)
    var = z_score * daily_vol * np.sqrt(horizon_days) - mean_return * horizon_days
    return float(max(var, 0.0) * portfolio_value)


def parametric_expected_shortfall(
    daily_vol: float,
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
    mean_return: float = 0.0,
) -> float:
    """Normal expected shortfall: sigma * phi(z_c) / (1 - c) - mu, horizon-scaled."""
    validate_confidence(confidence)

    z_score = stats.norm.ppf(confidence)
    es = daily_vol * np.sqrt(horizon_days) * stats.norm.pdf(z_score) / (1 - confidence)
    es -= mean_return * horizon_days
    return float(max(es, 0.0) * portfolio_value)


# ---------------------------------------------------------------------------
# Volatility and performance ratios
# ---------------------------------------------------------------------------


def annualized_volatility(returns: pd.Series | np.ndarray, periods_per_year: int = 252) -> float:
    values = _as_array(returns, min_length=2)
    return float(np.std(values, ddof=1) * np.sqrt(periods_per_year))


def downside_volatility(
    returns: pd.Series | np.ndarray,
    periods_per_year: int = 252,
    target: float = 0.0,
) -> float:
    """Annualized downside deviation below ``target``."""
    values = _as_array(returns, min_length=2)
    shortfall = np.minimum(values - target, 0.0)
    return float(np.sqrt(np.mean(shortfall ** 2)) * np.sqrt(periods_per_year))


def sharpe_ratio(
    returns: pd.Series | np.ndarray,
    risk_free_rate: float = 0.02,
    periods_per_year: int = 252,
) -> float:
    """(annualized mean - risk-free rate) / annualized volatility."""
    values = _as_array(returns, min_length=2)
    vol = float(np.std(values, ddof=1) * np.sqrt(periods_per_year))
    if vol == 0:
        logger.warning("sharpe_ratio: zero volatility, returning 0")
        return 0.0
    return float((values.mean() * periods_per_year - risk_free_rate) / vol)


def sortino_ratio(
    returns: pd.Series | np.ndarray,
    risk_free_rate: float = 0.02,
    periods_per_year: int = 252,
) -> float:
    values = _as_array(returns, min_length=2)
    downside = downside_volatility(values, periods_per_year)
    if downside == 0:
        return 0.0
    return float((values.mean() * periods_per_year - risk_free_rate) / downside)


def drawdown_series(returns: pd.Series | np.ndarray) -> np.ndarray:
    """Drawdown at each point of the cumulative wealth curve.

    The curve starts at 1.0 before the first return; values are
    (current - running peak) / running peak, so they are never positive.
    """
    values = _as_array(returns)
    wealth = np.concatenate([[1.0], np.cumprod(1.0 + values)])
    peaks = np.maximum.accumulate(wealth)

    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (wealth - peaks) / peaks, -1.0)
    return drawdowns


def max_drawdown(returns: pd.Series | np.ndarray) -> float:
    """Most negative drawdown of the cumulative return curve (<= 0)."""
    return float(drawdown_series(returns).min())


def drawdown_profile(returns: pd.Series | np.ndarray) -> Dict[str, float | int]:
    """Max drawdown, current drawdown and the longest run spent below a peak."""
    drawdowns = drawdown_series(returns)

    longest = current_run = 0
    for dd in drawdowns:
        current_run = current_run + 1 if dd < 0 else 0
        longest = max(longest, current_run)

    return {
        "max_drawdown": float(drawdowns.min()),
        "current_drawdown": float(drawdowns[-1]),
        "max_drawdown_duration": int(longest),
    }


def beta(returns: pd.Series, benchmark: pd.Series) -> float | None:
    """Beta of the return series against a benchmark, aligned on dates."""
    aligned = pd.concat([returns, benchmark], axis=1, join="inner").dropna()
    if len(aligned) < 2:
        logger.warning("beta: insufficient overlap with benchmark", overlap=len(aligned))
        return None

    bench_var = float(np.var(aligned.iloc[:, 1].values, ddof=1))
    if bench_var == 0:
        return None
    covariance = float(np.cov(aligned.iloc[:, 0].values, aligned.iloc[:, 1].values, ddof=1)[0, 1])
    return covariance / bench_var


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _level_for(value: float, medium: float, high: float, extreme: float) -> RiskLevel:
    if value < medium:
        return RiskLevel.LOW
    if value < high:
        return RiskLevel.MEDIUM
    if value < extreme:
        return RiskLevel.HIGH
    return RiskLevel.EXTREME


def classify_risk_level(
    var_ratio: float,
    annual_volatility: float,
    settings: RiskSettings | None = None,
) -> RiskLevel:
    """Worse of the VaR-to-value and volatility classifications."""
    s = settings or get_settings()
    var_level = _level_for(abs(var_ratio), s.VAR_RATIO_MEDIUM, s.VAR_RATIO_HIGH, s.VAR_RATIO_EXTREME)
    vol_level = _level_for(annual_volatility, s.VOLATILITY_MEDIUM, s.VOLATILITY_HIGH, s.VOLATILITY_EXTREME)
    return max(var_level, vol_level, key=_LEVEL_ORDER.index)


def risk_score(
    var_ratio: float,
    annual_volatility: float,
    max_dd: float,
    settings: RiskSettings | None = None,
) -> float:
    """Composite 0-100 score: 40 points VaR, 40 volatility, 20 drawdown."""
    s = settings or get_settings()
    var_part = min(abs(var_ratio) / s.VAR_RATIO_EXTREME, 1.0) * 40
    vol_part = min(annual_volatility / s.VOLATILITY_EXTREME, 1.0) * 40
    dd_part = min(abs(max_dd) / s.DRAWDOWN_EXTREME, 1.0) * 20
    return float(round(var_part + vol_part + dd_part, 2))


# ---------------------------------------------------------------------------
# Aggregate metrics
# ---------------------------------------------------------------------------


def compute_metrics(
    returns: pd.Series,
    confidence_level: float,
    time_horizon: str,
    portfolio_value: float,
    *,
    portfolio_id: str = "",
    var_method: VaRMethod | str = VaRMethod.HISTORICAL,
    weights: np.ndarray | None = None,
    cov: np.ndarray | None = None,
    corr: pd.DataFrame | None = None,
    benchmark: pd.Series | None = None,
    simulated_var: float | None = None,
    allow_low_confidence: bool = True,
    settings: RiskSettings | None = None,
) -> RiskMetricsResult:
    """Compute the full metric set for a portfolio return series.

    Args:
        returns: Daily portfolio simple returns
        confidence_level: VaR confidence in (0, 1)
        time_horizon: Horizon label ('1D', '1W', '1M', ...)
        portfolio_value: Current portfolio value used to express VaR in currency
        var_method: 'historical', 'parametric' or 'monte_carlo'
        weights, cov: When both are given, parametric volatility comes from
            sqrt(w' Sigma w) instead of the series standard deviation
        corr: Optional correlation matrix echoed into the result
        benchmark: Optional benchmark returns for beta
        simulated_var: Monte Carlo VaR, required when var_method='monte_carlo'
        allow_low_confidence: When False, fewer than MIN_VAR_OBSERVATIONS
            returns raise InsufficientDataError instead of flagging the result

    Returns:
        RiskMetricsResult
    """
    s = settings or get_settings()
    confidence_level = validate_confidence(confidence_level)
    horizon_days = resolve_horizon(time_horizon, s)
    try:
        method = VaRMethod(var_method)
    except ValueError:
        raise ValidationError("var_method", f"must be one of {[m.value for m in VaRMethod]}", var_method) from None

    if method is VaRMethod.MONTE_CARLO and simulated_var is None:
        raise ValidationError("simulated_var", "is required for the monte_carlo VaR method")
    if portfolio_value <= 0:
        raise ValidationError("portfolio_value", "must be positive", portfolio_value)

    values = _as_array(returns, min_length=2)
    n_obs = len(values)
    warnings: List[str] = []
    low_confidence = n_obs < s.MIN_VAR_OBSERVATIONS

    if low_confidence:
        if not allow_low_confidence:
            raise InsufficientDataError(
                f"Need at least {s.MIN_VAR_OBSERVATIONS} return observations for a stable VaR estimate, got {n_obs}",
                required=s.MIN_VAR_OBSERVATIONS,
                available=n_obs,
            )
        warnings.append(
            f"Only {n_obs} return observations (< {s.MIN_VAR_OBSERVATIONS}); tail estimates are low-confidence"
        )
        logger.warning("compute_metrics: low-confidence estimate", portfolio_id=portfolio_id, observations=n_obs)

    mean = float(values.mean())
    daily_vol = float(np.std(values, ddof=1))
    if weights is not None and cov is not None:
        daily_vol = portfolio_volatility(weights, cov)

    if method is VaRMethod.HISTORICAL:
        var = historical_var(values, confidence_level, horizon_days, portfolio_value)
        cvar = historical_expected_shortfall(values, confidence_level, horizon_days, portfolio_value)
    elif method is VaRMethod.PARAMETRIC:
        var = parametric_var(daily_vol, confidence_level, horizon_days, portfolio_value, mean)
        cvar = parametric_expected_shortfall(daily_vol, confidence_level, horizon_days, portfolio_value, mean)
    else:
        var = float(simulated_var)
        cvar = max(var, historical_expected_shortfall(values, confidence_level, horizon_days, portfolio_value))

    periods = s.TRADING_DAYS_PER_YEAR
    annual_vol = daily_vol * np.sqrt(periods)
    drawdowns = drawdown_profile(values)
    annual_return = mean * periods
    calmar = annual_return / abs(drawdowns["max_drawdown"]) if drawdowns["max_drawdown"] < 0 else 0.0

    var_ratio = var / portfolio_value
    level = classify_risk_level(var_ratio, annual_vol, s)
    score = risk_score(var_ratio, annual_vol, drawdowns["max_drawdown"], s)

    result = RiskMetricsResult(
        portfolio_id=portfolio_id,
        time_horizon=str(time_horizon).upper(),
        horizon_days=horizon_days,
        confidence_level=confidence_level,
        var_method=method,
        portfolio_value=float(portfolio_value),
        value_at_risk=var,
        conditional_var=cvar,
        volatility=float(annual_vol),
        daily_volatility=daily_vol,
        annualized_volatility=float(annual_vol),
        downside_volatility=downside_volatility(values, periods),
        sharpe_ratio=sharpe_ratio(values, s.RISK_FREE_RATE, periods),
        sortino_ratio=sortino_ratio(values, s.RISK_FREE_RATE, periods),
        calmar_ratio=float(calmar),
        beta=beta(pd.Series(values, index=returns.index), benchmark) if benchmark is not None and isinstance(returns, pd.Series) else None,
        max_drawdown=drawdowns["max_drawdown"],
        current_drawdown=drawdowns["current_drawdown"],
        max_drawdown_duration=drawdowns["max_drawdown_duration"],
        correlation=corr.to_dict() if corr is not None else None,
        observations=n_obs,
        low_confidence=low_confidence,
        warnings=warnings,
        risk_score=score,
        risk_level=level,
    )

    logger.info(
        "compute_metrics: metrics computed",
        portfolio_id=portfolio_id,
        method=method.value,
        horizon=result.time_horizon,
        value_at_risk=var,
        annualized_volatility=result.annualized_volatility,
        risk_level=level.value,
    )
    return result


# ---------------------------------------------------------------------------
# Position decomposition
# ---------------------------------------------------------------------------


def marginal_contribution_to_risk(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """MCR_i = (Sigma w)_i / sigma_p."""
    weights = np.asarray(weights, dtype=float).flatten()
    port_vol = portfolio_volatility(weights, cov)
    if port_vol == 0:
        logger.warning("marginal_contribution_to_risk: zero portfolio volatility")
        return np.zeros_like(weights)
    return (np.atleast_2d(cov) @ weights) / port_vol


def component_contribution_to_risk(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """CCR_i = w_i * MCR_i; components sum to the portfolio volatility."""
    weights = np.asarray(weights, dtype=float).flatten()
    return weights * marginal_contribution_to_risk(weights, cov)


def concentration_metrics(weights: np.ndarray, symbols: List[str]) -> Dict:
    """Herfindahl index (0-10,000) and top-5 share of gross exposure."""
    weights = np.asarray(weights, dtype=float).flatten()
    if len(weights) != len(symbols):
        raise ValidationError("weights", f"length {len(weights)} doesn't match symbols length {len(symbols)}")

    abs_weights = np.abs(weights)
    gross = abs_weights.sum()
    if gross == 0:
        return {"top_5_pct": 0.0, "hhi": 0.0, "top_5_names": []}

    normalized = abs_weights / gross
    top = np.argsort(abs_weights)[::-1][:5]
    return {
        "top_5_pct": float(abs_weights[top].sum() / gross * 100),
        "hhi": float(np.sum(normalized ** 2) * 10000),
        "top_5_names": [symbols[i] for i in top],
    }


def build_position_risks(
    snapshot: PortfolioSnapshot,
    asset_returns: pd.DataFrame,
    confidence: float = 0.95,
    cov: np.ndarray | None = None,
    settings: RiskSettings | None = None,
    covariance_method: str = "sample",
) -> List[PositionRisk]:
    """Per-position VaR decomposition (one-day, parametric).

    individual VaR = z * sigma_i * |exposure_i|
    marginal VaR   = z * MCR_i  (VaR per unit of currency held)
    component VaR  = z * CCR_i * portfolio value  (sums to portfolio VaR)

    ``cov`` defaults to the ``covariance_method`` estimate of ``asset_returns``.
    """
    s = settings or get_settings()
    validate_confidence(confidence)

    symbols = list(asset_returns.columns)
    if cov is None:
        cov = estimate_covariance(asset_returns, method=covariance_method)

    total = snapshot.total_value
    weights_map = snapshot.weights()
    weights = np.array([weights_map[sym] for sym in symbols])
    mcr = marginal_contribution_to_risk(weights, cov)
    ccr = component_contribution_to_risk(weights, cov)
    z_score = stats.norm.ppf(confidence)
    daily_vols = np.sqrt(np.diag(np.atleast_2d(cov)))
    annual_vols = np.sqrt(np.diag(annualize_cov(np.atleast_2d(cov), s.TRADING_DAYS_PER_YEAR)))

    risks = []
    for i, sym in enumerate(symbols):
        exposure = snapshot.position(sym).market_value
        pct = (exposure / total * 100) if total else 0.0
        marginal = float(z_score * mcr[i])
        component = float(z_score * ccr[i] * total)
        risks.append(PositionRisk(
            symbol=sym,
            exposure=exposure,
            percentage_of_portfolio=pct,
            individual_var=float(z_score * daily_vols[i] * abs(exposure)),
            marginal_var=marginal,
            component_var=component,
            annualized_volatility=float(annual_vols[i]),
            concentration_risk=(pct / 100) ** 2 * 100,
        ))

    return risks
