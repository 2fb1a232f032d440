"""
Covariance Estimation Module

Sample, Ledoit-Wolf shrinkage and EWMA (RiskMetrics) covariance estimators
used by parametric VaR, position risk decomposition and stressed metrics.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import structlog
from sklearn.covariance import LedoitWolf

from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError

logger = structlog.get_logger(__name__)

COVARIANCE_METHODS = ("sample", "lw", "ewma")


def validate_covariance_method(method: str) -> str:
    """Normalize a covariance method name, rejecting unknown ones."""
    normalized = str(method).lower()
    if normalized not in COVARIANCE_METHODS:
        raise ValidationError("covariance_method", f"must be one of {COVARIANCE_METHODS}", method)
    return normalized


def _check_returns(returns: pd.DataFrame, caller: str) -> np.ndarray:
    if returns.empty:
        raise InsufficientDataError("Cannot estimate covariance from empty returns", required=2, available=0)

    if len(returns) < 2:
        raise InsufficientDataError(
            f"Need at least 2 observations, got {len(returns)}", required=2, available=len(returns)
        )

    values = returns.values.astype(float)
    if not np.isfinite(values).all():
        bad = [returns.columns[i] for i, ok in enumerate(np.isfinite(values).all(axis=0)) if not ok]
        logger.error(f"{caller}: non-finite values in returns", affected_symbols=bad)
        raise ComputationError(f"Non-finite values detected in returns for symbols: {bad}")
    return values


def repair_psd(cov: np.ndarray, tolerance: float = 1e-8) -> np.ndarray:
    """Clamp small negative eigenvalues produced by numerical noise.

    Raises:
        ComputationError: If the matrix is materially indefinite
    """
    cov = (cov + cov.T) / 2
    eigenvalues, eigvecs = np.linalg.eigh(cov)
    min_eigenvalue = float(eigenvalues.min())

    if min_eigenvalue >= -tolerance:
        return cov

    scale = max(float(np.abs(eigenvalues).max()), 1.0)
    if min_eigenvalue < -1e-6 * scale:
        raise ComputationError(
            f"Covariance matrix is not positive semi-definite (min eigenvalue {min_eigenvalue:.3e})"
        )

    logger.warning("repair_psd: clamping negative eigenvalues", min_eigenvalue=min_eigenvalue)
    repaired = eigvecs @ np.diag(np.maximum(eigenvalues, 0)) @ eigvecs.T
    return (repaired + repaired.T) / 2


def sample_cov(returns: pd.DataFrame) -> np.ndarray:
    """Unbiased sample covariance (ddof=1)."""
    values = _check_returns(returns, "sample_cov")
    cov = np.atleast_2d(np.cov(values.T, ddof=1))
    return repair_psd(cov)


def ledoit_wolf_cov(returns: pd.DataFrame) -> np.ndarray:
    """Estimate covariance using Ledoit-Wolf shrinkage.

    sklearn's estimator picks the shrinkage intensity itself and stays well
    conditioned when there are more assets than observations.
    """
    values = _check_returns(returns, "ledoit_wolf_cov")

    lw = LedoitWolf()
    cov = lw.fit(values).covariance_
    cov = repair_psd(cov)

    logger.debug(
        "ledoit_wolf_cov: covariance estimated",
        num_assets=cov.shape[0],
        num_observations=len(returns),
        shrinkage=float(lw.shrinkage_),
    )
    return cov


def ewma_cov(returns: pd.DataFrame, lambd: float = 0.94) -> np.ndarray:
    """Exponentially weighted covariance (RiskMetrics).

    sigma_t = lambda * sigma_{t-1} + (1 - lambda) * r_t r_t'

    Seeded with the sample covariance of the first observations and updated
    from oldest to newest.
    """
    if not 0 < lambd < 1:
        raise ValidationError("ewma_lambda", "must be between 0 and 1 (exclusive)", lambd)

    values = _check_returns(returns, "ewma_cov")
    n_obs = len(values)

    init_window = min(10, n_obs)
    cov = np.atleast_2d(np.cov(values[:init_window].T, ddof=1))

    for t in range(init_window, n_obs):
        r_t = values[t].reshape(-1, 1)
        cov = lambd * cov + (1 - lambd) * (r_t @ r_t.T)

    return repair_psd(cov)


def estimate_covariance(
    returns: pd.DataFrame,
    method: str = "sample",
    ewma_lambda: float = 0.94,
) -> np.ndarray:
    """Unified interface for covariance estimation.

    Args:
        returns: DataFrame of returns (T x N)
        method: 'sample', 'lw' (Ledoit-Wolf) or 'ewma'
        ewma_lambda: Decay factor, only used by 'ewma'

    Returns:
        N x N daily covariance matrix
    """
    method = validate_covariance_method(method)

    if method == "lw":
        return ledoit_wolf_cov(returns)
    if method == "ewma":
        return ewma_cov(returns, lambd=ewma_lambda)
    return sample_cov(returns)


def covariance_from_correlation(vols: np.ndarray, corr: np.ndarray) -> np.ndarray:
    """Rebuild a covariance matrix as D(vols) @ corr @ D(vols)."""
    vols = np.asarray(vols, dtype=float).flatten()
    return np.outer(vols, vols) * np.asarray(corr, dtype=float)


def annualize_cov(cov: np.ndarray, trading_days: int = 252) -> np.ndarray:
    """Scale a daily covariance matrix to annual."""
    return cov * trading_days
