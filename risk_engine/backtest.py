"""
VaR Backtesting Module

Counts VaR violations and evaluates them with the Kupiec proportion-of-failures
likelihood-ratio test and the Basel traffic-light zones.
"""

from __future__ import annotations

import datetime as dt

import numpy as np
import pandas as pd
import structlog
from scipy import stats
from scipy.special import xlogy

from risk_engine.config import RiskSettings, get_settings
from risk_engine.errors import InsufficientDataError, ValidationError
from risk_engine.metrics import historical_var, validate_confidence
from risk_engine.models import BacktestResult, BaselZone

logger = structlog.get_logger(__name__)


def kupiec_pof(
    observations: int,
    violations: int,
    confidence: float,
    significance: float = 0.05,
) -> dict:
    """Kupiec proportion-of-failures test.

    LR = -2 ln[ (1-p)^(n-x) p^x / ((1-x/n)^(n-x) (x/n)^x) ],  p = 1 - confidence

    LR is chi-squared with one degree of freedom under the null that the
    model's violation rate is p. At x = 0 and x = n the unrestricted
    likelihood uses 0 * ln(0) = 0.

    Returns:
        Dict with statistic, p_value, critical_value and passed
    """
    validate_confidence(confidence)
    if not 0 < significance < 1:
        raise ValidationError("significance", "must be between 0 and 1 (exclusive)", significance)
    if observations <= 0:
        raise ValidationError("observations", "must be positive", observations)
    if not 0 <= violations <= observations:
        raise ValidationError("violations", f"must be within [0, {observations}]", violations)

    n, x = observations, violations
    p = 1 - confidence
    observed_rate = x / n

    log_null = (n - x) * np.log(1 - p) + x * np.log(p)
    log_alt = xlogy(n - x, 1 - observed_rate) + xlogy(x, observed_rate)
    statistic = max(float(-2 * (log_null - log_alt)), 0.0)

    critical_value = float(stats.chi2.ppf(1 - significance, df=1))
    return {
        "statistic": statistic,
        "p_value": float(stats.chi2.sf(statistic, df=1)),
        "critical_value": critical_value,
        "passed": statistic < critical_value,
    }


def basel_zone(observations: int, violations: int, confidence: float) -> BaselZone:
    """Traffic-light zone from the binomial CDF of the violation count."""
    cumulative = float(stats.binom.cdf(violations, observations, 1 - confidence))
    if cumulative < 0.95:
        return BaselZone.GREEN
    if cumulative < 0.9999:
        return BaselZone.YELLOW
    return BaselZone.RED


def backtest(
    predicted_var,
    realized_loss,
    confidence: float,
    significance: float | None = None,
    settings: RiskSettings | None = None,
) -> BacktestResult:
    """Compare a predicted VaR series with realized losses.

    A violation is a day whose realized loss exceeds that day's predicted VaR.
    Both series must be expressed in the same units (currency or fraction).
    """
    s = settings or get_settings()
    significance = s.BACKTEST_SIGNIFICANCE if significance is None else significance

    predicted = np.asarray(predicted_var, dtype=float).flatten()
    realized = np.asarray(realized_loss, dtype=float).flatten()

    if len(predicted) != len(realized):
        raise ValidationError(
            "realized_loss", f"length {len(realized)} doesn't match predicted VaR length {len(predicted)}"
        )
    if len(predicted) == 0:
        raise InsufficientDataError("Cannot backtest an empty series", required=1, available=0)
    if not (np.isfinite(predicted).all() and np.isfinite(realized).all()):
        raise ValidationError("predicted_var", "series must be finite")

    n = len(predicted)
    x = int((realized > predicted).sum())
    test = kupiec_pof(n, x, confidence, significance)

    result = BacktestResult(
        observations=n,
        violations=x,
        expected_violations=n * (1 - confidence),
        violation_rate=x / n,
        confidence_level=confidence,
        kupiec_statistic=test["statistic"],
        p_value=test["p_value"],
        critical_value=test["critical_value"],
        significance=significance,
        passed=test["passed"],
        zone=basel_zone(n, x, confidence),
    )

    logger.info(
        "backtest: complete",
        observations=n,
        violations=x,
        expected=result.expected_violations,
        statistic=result.kupiec_statistic,
        passed=result.passed,
    )
    return result


def rolling_var_backtest(
    values: pd.Series,
    confidence: float,
    window: int | None = None,
    start: dt.date | None = None,
    end: dt.date | None = None,
    settings: RiskSettings | None = None,
) -> BacktestResult:
    """Backtest one-day historical VaR estimated on a trailing window.

    For each day t the VaR is estimated from the ``window`` returns before t
    and compared with the loss realized on t. Only days within [start, end]
    are scored.
    """
    s = settings or get_settings()
    window = window or s.BACKTEST_WINDOW
    returns = values.sort_index().pct_change().dropna()

    predicted, realized = [], []
    lower = pd.Timestamp(start) if start is not None else None
    upper = pd.Timestamp(end) if end is not None else None

    for t in range(window, len(returns)):
        day = returns.index[t]
        if (lower is not None and day < lower) or (upper is not None and day > upper):
            continue
        predicted.append(historical_var(returns.iloc[t - window:t].values, confidence))
        realized.append(-float(returns.iloc[t]))

    if not predicted:
        raise InsufficientDataError(
            f"Need more than {window} returns before the backtest range, have {len(returns)}",
            required=window + 1,
            available=len(returns),
        )

    return backtest(predicted, realized, confidence, settings=s)
