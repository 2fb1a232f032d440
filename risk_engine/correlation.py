"""
Correlation Analysis Module

Pearson correlation estimation over aligned return series, correlation
shocks for stress testing, factorization for correlated path generation,
and the significance / clustering views used in detailed reports.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np
import pandas as pd
import structlog
from scipy import stats
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform

from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError

logger = structlog.get_logger(__name__)


def correlation_matrix(returns: pd.DataFrame) -> pd.DataFrame:
    """Pearson correlation matrix of a returns DataFrame.

    The result is symmetric with a unit diagonal and entries clipped to
    [-1, 1]. A series with zero variance has no defined correlation; it is
    treated as uncorrelated with everything else.

    Args:
        returns: DataFrame of aligned returns (T x N)

    Returns:
        DataFrame with symbol labels on both axes (N x N)
    """
    if returns.empty or len(returns.columns) == 0:
        raise InsufficientDataError("Cannot compute correlation from empty returns", required=2, available=0)

    if len(returns) < 2:
        raise InsufficientDataError(
            f"Need at least 2 observations, got {len(returns)}", required=2, available=len(returns)
        )

    if not np.isfinite(returns.values.astype(float)).all():
        raise ComputationError("Non-finite values in returns passed to correlation_matrix")

    corr = returns.corr(method="pearson")

    flat = [c for c in returns.columns if returns[c].std(ddof=1) == 0]
    if flat:
        logger.warning("correlation_matrix: zero-variance series treated as uncorrelated", symbols=flat)

    values = np.nan_to_num(corr.values, nan=0.0)
    values = np.clip((values + values.T) / 2, -1.0, 1.0)
    np.fill_diagonal(values, 1.0)
    corr = pd.DataFrame(values, index=returns.columns, columns=returns.columns)

    logger.debug("correlation_matrix: correlation computed", num_assets=len(corr))
    return corr


def estimate_correlation(returns_by_symbol: Dict[str, pd.Series]) -> pd.DataFrame:
    """Align per-symbol return series on common dates and correlate them.

    A single symbol yields the 1x1 identity matrix.
    """
    if not returns_by_symbol:
        raise InsufficientDataError("No return series supplied", required=1, available=0)

    if len(returns_by_symbol) == 1:
        symbol = next(iter(returns_by_symbol))
        return pd.DataFrame([[1.0]], index=[symbol], columns=[symbol])

    aligned = pd.DataFrame(returns_by_symbol).dropna()
    return correlation_matrix(aligned)


def blend_correlation(corr: np.ndarray, shock: float) -> np.ndarray:
    """Blend a correlation matrix toward the all-ones matrix.

    rho' = (1 - shock) * rho + shock * 1

    shock = 0 leaves the matrix unchanged, shock = 1 makes every pair
    perfectly correlated. Convex combinations of PSD matrices stay PSD.
    """
    if not 0.0 <= shock <= 1.0:
        raise ValidationError("correlation_shock", "must be within [0, 1]", shock)

    corr = np.asarray(corr, dtype=float)
    blended = (1.0 - shock) * corr + shock * np.ones_like(corr)
    np.fill_diagonal(blended, 1.0)
    return blended


def correlation_factor(corr: np.ndarray, tolerance: float = 1e-8) -> np.ndarray:
    """Lower-triangular-like factor L with L @ L.T == corr.

    Uses Cholesky when the matrix is positive definite. Singular but positive
    semi-definite matrices (duplicate or fully correlated assets) fall back
    to an eigen-decomposition factor, which is equally valid for sampling.

    Raises:
        ComputationError: If the matrix is non-finite, asymmetric or indefinite
    """
    corr = np.asarray(corr, dtype=float)

    if corr.ndim != 2 or corr.shape[0] != corr.shape[1]:
        raise ComputationError(f"Correlation matrix must be square, got shape {corr.shape}")
    if not np.isfinite(corr).all():
        raise ComputationError("Correlation matrix contains non-finite values")
    if not np.allclose(corr, corr.T, atol=1e-10):
        raise ComputationError("Correlation matrix is not symmetric")

    try:
        return np.linalg.cholesky(corr)
    except np.linalg.LinAlgError:
        pass

    eigenvalues, eigvecs = np.linalg.eigh(corr)
    min_eigenvalue = float(eigenvalues.min())
    if min_eigenvalue < -tolerance * max(1.0, float(eigenvalues.max())):
        logger.error("correlation_factor: indefinite correlation matrix", min_eigenvalue=min_eigenvalue)
        raise ComputationError(
            f"Correlation matrix is not positive semi-definite (min eigenvalue {min_eigenvalue:.3e}); "
            "check for inconsistent or duplicated price series"
        )

    logger.warning("correlation_factor: singular matrix, using eigen factor", min_eigenvalue=min_eigenvalue)
    return eigvecs @ np.diag(np.sqrt(np.clip(eigenvalues, 0.0, None)))


def top_correlated_pairs(corr: pd.DataFrame, n: int = 20) -> List[Dict]:
    """Top N pairs by absolute correlation (self-pairs excluded)."""
    rows, cols = np.triu_indices_from(corr.values, k=1)

    pairs = [
        {
            "symbol_a": corr.index[i],
            "symbol_b": corr.columns[j],
            "correlation": float(corr.iloc[i, j]),
        }
        for i, j in zip(rows, cols)
    ]
    pairs.sort(key=lambda x: abs(x["correlation"]), reverse=True)
    return pairs[:n]


def significant_correlations(returns: pd.DataFrame, alpha: float = 0.05) -> List[Dict]:
    """Pairs whose Pearson correlation is significant at ``alpha``.

    Returns:
        List of {'symbol_a', 'symbol_b', 'correlation', 'p_value'} sorted by
        absolute correlation
    """
    if len(returns) < 3:
        return []

    significant = []
    columns = list(returns.columns)
    for a_idx in range(len(columns)):
        for b_idx in range(a_idx + 1, len(columns)):
            a, b = returns[columns[a_idx]], returns[columns[b_idx]]
            if a.std(ddof=1) == 0 or b.std(ddof=1) == 0:
                continue
            r, p_value = stats.pearsonr(a.values, b.values)
            if p_value < alpha:
                significant.append({
                    "symbol_a": columns[a_idx],
                    "symbol_b": columns[b_idx],
                    "correlation": float(r),
                    "p_value": float(p_value),
                })

    significant.sort(key=lambda x: abs(x["correlation"]), reverse=True)
    return significant


def hierarchical_clusters(
    corr: pd.DataFrame,
    max_clusters: int = 8,
    method: str = "average",
) -> List[Dict]:
    """Hierarchical clustering on correlation distance d = sqrt(2 * (1 - corr)).

    Returns:
        List of {'cluster_id', 'members', 'size', 'avg_intra_corr'} sorted by size
    """
    if len(corr) < 2:
        return [{
            "cluster_id": 1,
            "members": list(corr.index),
            "size": len(corr),
            "avg_intra_corr": 1.0,
        }]

    distance = np.sqrt(2 * (1 - np.clip(corr.values, -1.0, 1.0)))
    np.fill_diagonal(distance, 0)
    condensed = squareform(distance, checks=False)

    if not np.isfinite(condensed).all():
        raise ComputationError("Invalid distances (NaN or Inf) in correlation distance matrix")

    labels = fcluster(linkage(condensed, method=method), min(max_clusters, len(corr)), criterion="maxclust")

    clusters = []
    for cluster_id in np.unique(labels):
        members = [corr.index[i] for i in np.where(labels == cluster_id)[0]]
        if len(members) > 1:
            sub = corr.loc[members, members].values
            avg_intra_corr = float(sub[np.triu_indices_from(sub, k=1)].mean())
        else:
            avg_intra_corr = 1.0
        clusters.append({
            "cluster_id": int(cluster_id),
            "members": members,
            "size": len(members),
            "avg_intra_corr": avg_intra_corr,
        })

    clusters.sort(key=lambda x: x["size"], reverse=True)
    return clusters
