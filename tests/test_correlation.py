"""
Unit tests for correlation.py - Correlation Analysis Module

Tests cover:
- Correlation matrix properties
- Correlation shocks and factorization, including singular and
  indefinite matrices from duplicated or inconsistent series
- Significance filtering and hierarchical clustering
"""

import pytest
import numpy as np
import pandas as pd
from numpy.testing import assert_allclose

from risk_engine.correlation import (
    blend_correlation,
    correlation_factor,
    correlation_matrix,
    estimate_correlation,
    hierarchical_clusters,
    significant_correlations,
    top_correlated_pairs,
)
from risk_engine.errors import ComputationError, InsufficientDataError, ValidationError


class TestCorrelationMatrix:
    """Tests for correlation_matrix function."""

    def test_correlation_matrix_diagonal(self, sample_returns):
        corr = correlation_matrix(sample_returns)

        assert_allclose(np.diag(corr.values), np.ones(5))

    def test_correlation_bounds(self, sample_returns):
        corr = correlation_matrix(sample_returns)

        assert (corr.values >= -1).all() and (corr.values <= 1).all()

    def test_correlation_symmetric(self, sample_returns):
        corr = correlation_matrix(sample_returns)

        assert_allclose(corr.values, corr.values.T)

    def test_correlation_structure_recovered(self, sample_returns):
        """GOOGL was built from 70% AAPL, so the pair is strongly correlated."""
        corr = correlation_matrix(sample_returns)

        assert corr.loc['AAPL', 'GOOGL'] > 0.8

    def test_zero_variance_series_uncorrelated(self, sample_returns):
        returns = sample_returns.copy()
        returns['FLAT'] = 0.0

        corr = correlation_matrix(returns)

        assert corr.loc['FLAT', 'FLAT'] == 1.0
        assert_allclose(corr.loc['FLAT'].drop('FLAT').values, 0.0)

    def test_correlation_insufficient_data_raises(self):
        with pytest.raises(InsufficientDataError):
            correlation_matrix(pd.DataFrame({'A': [0.01], 'B': [0.02]}))

    def test_single_asset_identity(self, sample_returns):
        corr = estimate_correlation({'AAPL': sample_returns['AAPL']})

        assert corr.shape == (1, 1)
        assert corr.iloc[0, 0] == 1.0


class TestBlendCorrelation:

    def test_zero_shock_unchanged(self):
        corr = np.array([[1.0, 0.3], [0.3, 1.0]])

        assert_allclose(blend_correlation(corr, 0.0), corr)

    def test_blend_formula(self):
        corr = np.array([[1.0, 0.3], [0.3, 1.0]])

        blended = blend_correlation(corr, 0.2)

        assert blended[0, 1] == pytest.approx(0.8 * 0.3 + 0.2)
        assert_allclose(np.diag(blended), 1.0)

    def test_out_of_range_shock(self):
        with pytest.raises(ValidationError, match="correlation_shock"):
            blend_correlation(np.eye(2), 1.5)


class TestCorrelationFactor:

    def test_cholesky_reconstructs(self, sample_returns):
        corr = correlation_matrix(sample_returns).values

        factor = correlation_factor(corr)

        assert_allclose(factor @ factor.T, corr, atol=1e-10)

    def test_duplicate_assets_use_eigen_factor(self, sample_returns):
        """A duplicated series makes the matrix singular but still usable."""
        returns = sample_returns[['AAPL', 'MSFT']].copy()
        returns['AAPL_DUP'] = returns['AAPL']
        corr = correlation_matrix(returns).values

        factor = correlation_factor(corr)

        assert_allclose(factor @ factor.T, corr, atol=1e-8)

    def test_fully_correlated_blend(self):
        blended = blend_correlation(np.eye(3), 1.0)

        factor = correlation_factor(blended)

        assert_allclose(factor @ factor.T, np.ones((3, 3)), atol=1e-8)

    def test_indefinite_matrix_raises(self):
        corr = np.array([
            [1.0, 0.9, -0.9],
            [0.9, 1.0, 0.9],
            [-0.9, 0.9, 1.0],
        ])

        with pytest.raises(ComputationError, match="not positive semi-definite"):
            correlation_factor(corr)

    def test_non_finite_raises(self):
        with pytest.raises(ComputationError, match="non-finite"):
            correlation_factor(np.array([[1.0, np.nan], [np.nan, 1.0]]))


class TestPairsAndClusters:

    def test_top_pairs_sorted_without_self(self, sample_returns):
        pairs = top_correlated_pairs(correlation_matrix(sample_returns), n=5)

        assert len(pairs) == 5
        assert all(p['symbol_a'] != p['symbol_b'] for p in pairs)
        corrs = [abs(p['correlation']) for p in pairs]
        assert corrs == sorted(corrs, reverse=True)

    def test_significant_correlations_found(self, sample_returns):
        significant = significant_correlations(sample_returns, alpha=0.01)

        pairs = {(s['symbol_a'], s['symbol_b']) for s in significant}
        assert ('AAPL', 'GOOGL') in pairs
        assert all(s['p_value'] < 0.01 for s in significant)

    def test_clusters_assign_every_symbol(self, sample_returns):
        clusters = hierarchical_clusters(correlation_matrix(sample_returns), max_clusters=3)

        members = [m for c in clusters for m in c['members']]
        assert sorted(members) == sorted(sample_returns.columns)
        assert len(clusters) <= 3

    def test_correlated_assets_cluster_together(self, sample_returns):
        clusters = hierarchical_clusters(correlation_matrix(sample_returns), max_clusters=3)

        aapl_cluster = next(c for c in clusters if 'AAPL' in c['members'])
        assert 'GOOGL' in aapl_cluster['members']
