"""
Return Construction Module

Builds aligned price matrices and per-asset / portfolio return series from the
price histories carried by a portfolio snapshot. All functions are pure and
operate on pandas objects.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np
import pandas as pd
import structlog

from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError
from risk_engine.models import PortfolioSnapshot, PricePoint

logger = structlog.get_logger(__name__)


def validate_snapshot(snapshot: PortfolioSnapshot) -> None:
    """Reject snapshots that no calculator can work with."""
    if not snapshot.positions:
        raise ValidationError("positions", "at least one position is required")

    symbols = snapshot.symbols
    duplicates = sorted({s for s in symbols if symbols.count(s) > 1})
    if duplicates:
        raise ValidationError("positions", "symbols must be unique", duplicates)

    for p in snapshot.positions:
        if p.current_price <= 0:
            raise ValidationError(f"positions[{p.symbol}].current_price", "must be positive", p.current_price)


def history_frame(history: List[PricePoint]) -> pd.DataFrame:
    """Convert a list of price points into a frame with ``date`` and ``close``."""
    if not history:
        return pd.DataFrame(columns=["date", "close"])
    return pd.DataFrame(
        {
            "date": pd.to_datetime([pt.date for pt in history]),
            "close": [pt.close for pt in history],
        }
    )


def position_price_frames(snapshot: PortfolioSnapshot) -> Dict[str, pd.DataFrame]:
    """Map each position symbol to its price history frame."""
    return {p.symbol: history_frame(p.price_history) for p in snapshot.positions}


def build_price_matrix(
    prices: Dict[str, pd.DataFrame],
    price_col: str = "close",
    min_history: int = 2,
) -> pd.DataFrame:
    """Build aligned price matrix from dict of symbol -> DataFrame.

    Aligns all series on the intersection of their dates and drops symbols
    with fewer than ``min_history`` observations. Prices are never
    forward-filled, since that fabricates zero returns.

    Args:
        prices: Dictionary mapping symbol to DataFrame with ``date`` and price columns
        price_col: Column name to use for prices
        min_history: Minimum number of observations required per symbol

    Returns:
        DataFrame with DatetimeIndex and one column per surviving symbol
    """
    if not prices:
        logger.warning("build_price_matrix: empty prices dict provided")
        return pd.DataFrame()

    series_dict = {}
    dropped_symbols = []

    for symbol, df in prices.items():
        if df is None or df.empty:
            dropped_symbols.append((symbol, "empty_history"))
            continue

        if price_col not in df.columns or "date" not in df.columns:
            dropped_symbols.append((symbol, f"missing_{price_col}_or_date"))
            continue

        df = df.copy()
        if not pd.api.types.is_datetime64_any_dtype(df["date"]):
            df["date"] = pd.to_datetime(df["date"])

        series = df.set_index("date")[price_col].dropna().sort_index()
        series = series[~series.index.duplicated(keep="last")]

        if len(series) < min_history:
            dropped_symbols.append((symbol, f"insufficient_history_{len(series)}_lt_{min_history}"))
            continue

        series_dict[symbol] = series

    if dropped_symbols:
        logger.info(
            "build_price_matrix: dropped symbols",
            dropped_count=len(dropped_symbols),
            dropped=dropped_symbols[:10],
        )

    if not series_dict:
        logger.warning("build_price_matrix: no valid symbols remain after filtering")
        return pd.DataFrame()

    price_matrix = pd.DataFrame(series_dict).dropna()

    logger.debug(
        "build_price_matrix: matrix built",
        num_symbols=len(price_matrix.columns),
        num_dates=len(price_matrix),
    )

    return price_matrix


def _check_prices(price_matrix: pd.DataFrame) -> None:
    non_positive = (price_matrix <= 0).sum()
    if non_positive.any():
        affected = non_positive[non_positive > 0].to_dict()
        logger.error("returns: non-positive prices detected", affected_symbols=affected)
        raise ComputationError(f"Zero or negative prices detected for symbols: {sorted(affected)}")


def compute_log_returns(price_matrix: pd.DataFrame) -> pd.DataFrame:
    """Compute log returns ln(P_t / P_{t-1}); the first row is dropped."""
    if price_matrix.empty:
        return pd.DataFrame()

    _check_prices(price_matrix)
    log_returns = np.log(price_matrix / price_matrix.shift(1)).iloc[1:]

    if not np.isfinite(log_returns.values).all():
        raise ComputationError("Non-finite values detected in log returns")

    return log_returns


def compute_simple_returns(price_matrix: pd.DataFrame) -> pd.DataFrame:
    """Compute simple returns (P_t - P_{t-1}) / P_{t-1}; the first row is dropped."""
    if price_matrix.empty:
        return pd.DataFrame()

    _check_prices(price_matrix)
    return price_matrix.pct_change().iloc[1:]


def trim_to_window(returns: pd.DataFrame, window: int) -> pd.DataFrame:
    """Take the last ``window`` rows of returns.

    Raises:
        InsufficientDataError: If fewer than ``window`` rows are available
    """
    if len(returns) < window:
        raise InsufficientDataError(
            f"Insufficient data for window: have {len(returns)} periods, need {window}",
            required=window,
            available=len(returns),
        )
    return returns.iloc[-window:]


def build_position_returns(
    snapshot: PortfolioSnapshot,
    kind: str = "simple",
    window: int | None = None,
) -> pd.DataFrame:
    """Aligned per-asset return matrix (T x N) for every position in the snapshot.

    Every position must contribute: a position whose history cannot be
    aligned would silently drop out of the portfolio aggregate.

    Raises:
        InsufficientDataError: If any position has fewer than two prices or the
            aligned histories overlap on fewer than two dates
    """
    validate_snapshot(snapshot)

    if kind not in ("simple", "log"):
        raise ValidationError("kind", "must be 'simple' or 'log'", kind)

    frames = position_price_frames(snapshot)
    short = [s for s, df in frames.items() if len(df) < 2]
    if short:
        raise InsufficientDataError(
            f"Price history too short to compute returns for: {short}",
            required=2,
            available=min(len(frames[s]) for s in short),
        )

    price_matrix = build_price_matrix(frames, price_col="close", min_history=2)
    if len(price_matrix) < 2 or len(price_matrix.columns) != len(snapshot.positions):
        raise InsufficientDataError(
            "Position price histories do not overlap on at least two dates",
            required=2,
            available=len(price_matrix),
        )

    price_matrix = price_matrix[snapshot.symbols]
    returns = compute_log_returns(price_matrix) if kind == "log" else compute_simple_returns(price_matrix)

    if window is not None:
        returns = trim_to_window(returns, window)

    logger.debug(
        "build_position_returns: returns prepared",
        portfolio_id=snapshot.portfolio_id,
        kind=kind,
        num_symbols=len(returns.columns),
        num_periods=len(returns),
    )
    return returns


def build_portfolio_returns(
    snapshot: PortfolioSnapshot,
    window: int | None = None,
    asset_returns: pd.DataFrame | None = None,
) -> pd.Series:
    """Portfolio simple returns as the value-weighted sum of aligned asset returns.

    Pass ``asset_returns`` to weight an already built (or sliced) return
    matrix instead of rebuilding it from the snapshot.
    """
    if asset_returns is None:
        asset_returns = build_position_returns(snapshot, kind="simple", window=window)
    weights = snapshot.weights()
    w = np.array([weights[s] for s in asset_returns.columns])
    portfolio = pd.Series(asset_returns.values @ w, index=asset_returns.index, name=snapshot.portfolio_id)
    return portfolio


def portfolio_value_history(snapshot: PortfolioSnapshot) -> pd.Series:
    """Mark-to-market value of the current holdings on each aligned date."""
    validate_snapshot(snapshot)
    price_matrix = build_price_matrix(position_price_frames(snapshot), price_col="close", min_history=1)
    if price_matrix.empty or len(price_matrix.columns) != len(snapshot.positions):
        raise InsufficientDataError("Position price histories do not overlap", required=1, available=0)

    quantities = pd.Series({p.symbol: p.quantity for p in snapshot.positions})
    values = price_matrix[snapshot.symbols].mul(quantities[snapshot.symbols], axis=1).sum(axis=1)
    values.name = snapshot.portfolio_id
    return values


def benchmark_returns(snapshot: PortfolioSnapshot) -> pd.Series | None:
    """Simple returns of the snapshot benchmark, or None when none was supplied."""
    if not snapshot.benchmark_history or len(snapshot.benchmark_history) < 2:
        return None
    frame = history_frame(snapshot.benchmark_history).set_index("date").sort_index()
    matrix = frame[["close"]].rename(columns={"close": "benchmark"})
    return compute_simple_returns(matrix)["benchmark"]
