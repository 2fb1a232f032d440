"""
Monte Carlo Simulation Module

Correlated geometric Brownian motion over the snapshot's positions.

Each asset's price follows

    S_t = S_0 * exp((mu - sigma^2 / 2) t + sigma W_t)

with daily steps. Correlated shocks come from a factor L of the historical
correlation matrix (Z = L @ e, e ~ N(0, I)). Paths are generated in blocks
of ``SIMULATION_BLOCK_SIZE``; each block draws from its own child of one
``SeedSequence``, so the output depends only on the seed and the path count,
never on how many workers computed the blocks.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import structlog
from scipy import stats

from risk_engine.config import RiskSettings, get_settings
from risk_engine.correlation import correlation_factor, correlation_matrix
from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError
from risk_engine.metrics import resolve_horizon, validate_confidence
from risk_engine.models import PathSummary, PortfolioSnapshot, SimulationResult
from risk_engine.returns import build_position_returns

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _Calibration:
    drift: np.ndarray        # daily log drift per asset (mu - sigma^2 / 2)
    vol: np.ndarray          # daily log volatility per asset
    factor: np.ndarray       # correlation factor, L @ L.T == corr
    prices: np.ndarray       # current prices
    quantities: np.ndarray


@dataclass(frozen=True)
class _PathBlock:
    terminal: np.ndarray
    path_max: np.ndarray
    path_min: np.ndarray


def validate_path_count(number_of_paths: int, settings: RiskSettings | None = None) -> int:
    s = settings or get_settings()
    if isinstance(number_of_paths, bool) or not isinstance(number_of_paths, (int, np.integer)):
        raise ValidationError("number_of_paths", "must be an integer", number_of_paths)
    if number_of_paths <= 0:
        raise ValidationError("number_of_paths", "must be positive", number_of_paths)
    if number_of_paths > s.MAX_SIMULATIONS:
        raise ValidationError(
            "number_of_paths", f"Maximum {s.MAX_SIMULATIONS} simulations allowed", number_of_paths
        )
    return int(number_of_paths)


def calibrate(snapshot: PortfolioSnapshot) -> _Calibration:
    """Estimate per-asset GBM parameters from daily log returns."""
    log_returns = build_position_returns(snapshot, kind="log")
    if len(log_returns) < 2:
        raise InsufficientDataError(
            "Need at least 2 log returns per asset to calibrate the simulation",
            required=2,
            available=len(log_returns),
        )

    m = log_returns.mean().values
    sigma = log_returns.std(ddof=1).values
    # mu = m + sigma^2 / 2, so the log drift mu - sigma^2 / 2 is the sample mean
    corr = correlation_matrix(log_returns).values

    return _Calibration(
        drift=m,
        vol=sigma,
        factor=correlation_factor(corr),
        prices=np.array([p.current_price for p in snapshot.positions], dtype=float),
        quantities=np.array([p.quantity for p in snapshot.positions], dtype=float),
    )


def _simulate_block(
    seed_seq: np.random.SeedSequence,
    n_paths: int,
    horizon_days: int,
    cal: _Calibration,
) -> _PathBlock:
    rng = np.random.default_rng(seed_seq)
    n_assets = len(cal.prices)

    shocks = rng.standard_normal((n_paths, horizon_days, n_assets)) @ cal.factor.T
    log_paths = np.cumsum(cal.drift + cal.vol * shocks, axis=1)
    values = (cal.prices * np.exp(log_paths)) @ cal.quantities

    return _PathBlock(terminal=values[:, -1], path_max=values.max(axis=1), path_min=values.min(axis=1))


def _resolve_entropy(seed: int | None, rng: np.random.Generator | None) -> int:
    if seed is not None:
        return int(seed)
    if rng is not None:
        return int(rng.integers(0, 2**63 - 1))
    return int(np.random.SeedSequence().entropy)


def _run_paths(
    cal: _Calibration,
    number_of_paths: int,
    horizon_days: int,
    entropy: int,
    block_size: int,
    n_workers: int,
) -> _PathBlock:
    sizes = [block_size] * (number_of_paths // block_size)
    if number_of_paths % block_size:
        sizes.append(number_of_paths % block_size)
    children = np.random.SeedSequence(entropy).spawn(len(sizes))

    if n_workers > 1 and len(sizes) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            blocks = list(executor.map(
                lambda args: _simulate_block(args[0], args[1], horizon_days, cal),
                zip(children, sizes),
            ))
    else:
        blocks = [_simulate_block(child, size, horizon_days, cal) for child, size in zip(children, sizes)]

    merged = _PathBlock(
        terminal=np.concatenate([b.terminal for b in blocks]),
        path_max=np.concatenate([b.path_max for b in blocks]),
        path_min=np.concatenate([b.path_min for b in blocks]),
    )
    if not (np.isfinite(merged.terminal).all() and np.isfinite(merged.path_max).all()):
        raise ComputationError("Simulation produced non-finite portfolio values")
    return merged


def _initial_value(cal: _Calibration) -> float:
    initial_value = float(cal.prices @ cal.quantities)
    if initial_value <= 0:
        raise ValidationError("portfolio_value", "must be positive to simulate returns", initial_value)
    return initial_value


def percentile_interval(
    sorted_values: np.ndarray,
    q: float,
    level: float = 0.95,
) -> Tuple[float, float]:
    """Distribution-free confidence interval for the q-quantile.

    The ranks come from the Binomial(n, q) distribution of the number of
    observations below the true quantile.
    """
    n = len(sorted_values)
    alpha = 1 - level
    lo = int(stats.binom.ppf(alpha / 2, n, q))
    hi = int(stats.binom.ppf(1 - alpha / 2, n, q)) + 1
    lo = min(max(lo, 0), n - 1)
    hi = min(max(hi, 0), n - 1)
    return float(sorted_values[lo]), float(sorted_values[hi])


def simulate(
    snapshot: PortfolioSnapshot,
    number_of_paths: int,
    time_horizon: str = "1M",
    seed: int | None = None,
    rng: np.random.Generator | None = None,
    n_workers: int = 1,
    settings: RiskSettings | None = None,
) -> SimulationResult:
    """Simulate correlated price paths and summarize portfolio returns.

    Args:
        snapshot: Portfolio snapshot with price histories for calibration
        number_of_paths: Path count, 1 to MAX_SIMULATIONS
        time_horizon: Horizon label; the number of daily steps
        seed: Seed for reproducible results
        rng: Generator used to draw a seed when ``seed`` is not given
        n_workers: Threads used to compute path blocks

    Returns:
        SimulationResult; ``seed`` holds the entropy actually used
    """
    s = settings or get_settings()
    number_of_paths = validate_path_count(number_of_paths, s)
    horizon_days = resolve_horizon(time_horizon, s)
    if n_workers < 1:
        raise ValidationError("n_workers", "must be at least 1", n_workers)

    cal = calibrate(snapshot)
    entropy = _resolve_entropy(seed, rng)
    initial_value = _initial_value(cal)

    logger.info(
        "simulate: starting",
        portfolio_id=snapshot.portfolio_id,
        number_of_paths=number_of_paths,
        horizon_days=horizon_days,
        num_assets=len(cal.prices),
        n_workers=n_workers,
    )

    paths = _run_paths(cal, number_of_paths, horizon_days, entropy, s.SIMULATION_BLOCK_SIZE, n_workers)
    returns = paths.terminal / initial_value - 1.0
    sorted_returns = np.sort(returns)

    percentiles = {}
    intervals = {}
    for p in s.SIMULATION_PERCENTILES:
        key = f"p{p}"
        percentiles[key] = float(np.percentile(returns, p))
        intervals[key] = percentile_interval(sorted_returns, p / 100, s.PERCENTILE_INTERVAL_LEVEL)

    samples: List[PathSummary] = [
        PathSummary(
            path_id=i,
            final_value=float(paths.terminal[i]),
            max_value=float(paths.path_max[i]),
            min_value=float(paths.path_min[i]),
        )
        for i in range(min(s.SIMULATION_SAMPLE_PATHS, number_of_paths))
    ]

    result = SimulationResult(
        portfolio_id=snapshot.portfolio_id,
        number_of_paths=number_of_paths,
        time_horizon=str(time_horizon).upper(),
        horizon_days=horizon_days,
        initial_value=initial_value,
        expected_return=float(returns.mean()),
        expected_volatility=float(returns.std(ddof=1)) if number_of_paths > 1 else 0.0,
        probability_of_loss=float((returns < 0).mean()),
        percentiles=percentiles,
        percentile_intervals=intervals,
        best_case_value=float(paths.terminal.max()),
        worst_case_value=float(paths.terminal.min()),
        median_value=float(np.median(paths.terminal)),
        seed=entropy,
        sample_paths=samples,
    )

    logger.info(
        "simulate: complete",
        portfolio_id=snapshot.portfolio_id,
        expected_return=result.expected_return,
        probability_of_loss=result.probability_of_loss,
    )
    return result


def monte_carlo_var(
    snapshot: PortfolioSnapshot,
    confidence: float = 0.95,
    time_horizon: str = "1M",
    number_of_paths: int | None = None,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
    n_workers: int = 1,
    settings: RiskSettings | None = None,
) -> float:
    """VaR from the simulated horizon return distribution, in currency."""
    s = settings or get_settings()
    validate_confidence(confidence)
    number_of_paths = validate_path_count(number_of_paths or s.MAX_SIMULATIONS, s)
    horizon_days = resolve_horizon(time_horizon, s)

    cal = calibrate(snapshot)
    initial_value = _initial_value(cal)
    paths = _run_paths(
        cal, number_of_paths, horizon_days, _resolve_entropy(seed, rng), s.SIMULATION_BLOCK_SIZE, n_workers
    )
    returns = paths.terminal / initial_value - 1.0
    if not np.isfinite(returns).all():
        raise ComputationError("Simulation produced non-finite horizon returns")

    var = max(-float(np.percentile(returns, (1 - confidence) * 100)), 0.0) * initial_value
    logger.debug("monte_carlo_var: computed", portfolio_id=snapshot.portfolio_id, var=var)
    return var
