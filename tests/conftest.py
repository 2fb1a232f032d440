"""
Shared test fixtures for the risk engine test suite.

Provides consistent test data across all test modules:
- Sample price DataFrames and correlated returns
- Sample portfolio weights and covariance matrices
- Portfolio snapshots with seeded synthetic price histories
- An in-memory repository and service wired to those snapshots
"""

import pytest
import numpy as np
import pandas as pd

from risk_engine.config import RiskSettings
from risk_engine.models import PortfolioSnapshot, Position, PricePoint
from risk_engine.repository import InMemoryPortfolioRepository
from risk_engine.service import RiskAnalyticsService

HISTORY_START = '2023-01-02'
HISTORY_DAYS = 300


def make_history(closes, start=HISTORY_START):
    """Price points on consecutive business days."""
    dates = pd.bdate_range(start, periods=len(closes))
    return [PricePoint(date=d.date(), close=float(c)) for d, c in zip(dates, closes)]


def random_walk(end_price, n=HISTORY_DAYS, mu=0.0005, sigma=0.02):
    """Geometric random walk rescaled so the last close equals end_price."""
    path = np.exp(np.cumsum(np.random.normal(mu, sigma, n)))
    return path / path[-1] * end_price


@pytest.fixture
def settings():
    return RiskSettings()


@pytest.fixture
def sample_prices():
    """Create sample price DataFrames for 5 symbols over 300 trading days.

    Returns:
        Dict[str, pd.DataFrame]: symbol -> DataFrame with columns date, close
    """
    np.random.seed(42)
    dates = pd.bdate_range(HISTORY_START, periods=HISTORY_DAYS)
    symbols = ['AAPL', 'GOOGL', 'MSFT', 'TSLA', 'AMZN']
    prices = {}

    for i, sym in enumerate(symbols):
        base_price = 100 + i * 50
        returns = np.random.normal(0.0005, 0.02, len(dates))
        prices[sym] = pd.DataFrame({
            'date': dates,
            'close': base_price * np.exp(np.cumsum(returns)),
        })

    return prices


@pytest.fixture
def sample_returns():
    """Returns matrix (252 x 5) with GOOGL and MSFT correlated with AAPL."""
    np.random.seed(42)
    dates = pd.bdate_range(HISTORY_START, periods=252)
    symbols = ['AAPL', 'GOOGL', 'MSFT', 'TSLA', 'AMZN']

    data = np.random.normal(0, 0.02, (len(dates), len(symbols)))
    data[:, 1] = 0.7 * data[:, 0] + 0.3 * data[:, 1]
    data[:, 2] = 0.5 * data[:, 0] + 0.5 * data[:, 2]

    return pd.DataFrame(data, index=dates, columns=symbols)


@pytest.fixture
def sample_weights():
    return np.array([0.30, 0.25, 0.20, 0.15, 0.10])


@pytest.fixture
def sample_cov(sample_returns):
    return sample_returns.cov().values


@pytest.fixture
def two_asset_snapshot():
    """AAPL 10 @ 150 -> 180 and GOOGL 5 @ 2000 -> 2200 with 300 days of history."""
    np.random.seed(42)
    return PortfolioSnapshot(
        portfolio_id='pf-two',
        positions=[
            Position(
                symbol='AAPL',
                quantity=10,
                average_cost=150.0,
                current_price=180.0,
                price_history=make_history(random_walk(180.0)),
                average_daily_volume=50_000_000,
                sector='Technology',
                region='US',
            ),
            Position(
                symbol='GOOGL',
                quantity=5,
                average_cost=2000.0,
                current_price=2200.0,
                price_history=make_history(random_walk(2200.0)),
                average_daily_volume=1_500_000,
                sector='Communication Services',
                region='US',
            ),
        ],
    )


@pytest.fixture
def multi_asset_snapshot():
    """Five positions across asset classes, sectors and regions."""
    np.random.seed(7)
    specs = [
        ('AAPL', 'EQUITY', 200, 180.0, 50_000_000, 'Technology', 'US'),
        ('MSFT', 'EQUITY', 100, 400.0, 20_000_000, 'Technology', 'US'),
        ('SAP', 'EQUITY', 150, 190.0, 1_000_000, 'Technology', 'EU'),
        ('TLT', 'ETF', 300, 95.0, 30_000_000, 'Rates', 'US'),
        ('SMALL', 'EQUITY', 50_000, 4.0, 20_000, 'Industrials', 'EU'),
    ]
    positions = [
        Position(
            symbol=sym,
            asset_class=asset_class,
            quantity=qty,
            average_cost=price * 0.9,
            current_price=price,
            price_history=make_history(random_walk(price)),
            average_daily_volume=adv,
            sector=sector,
            region=region,
        )
        for sym, asset_class, qty, price, adv, sector, region in specs
    ]
    benchmark = make_history(random_walk(450.0, sigma=0.01))
    return PortfolioSnapshot(portfolio_id='pf-multi', positions=positions, benchmark_history=benchmark)


@pytest.fixture
def short_history_snapshot():
    """Two positions with only 12 days of history."""
    np.random.seed(3)
    return PortfolioSnapshot(
        portfolio_id='pf-short',
        positions=[
            Position(symbol='AAA', quantity=10, average_cost=10.0, current_price=11.0,
                     price_history=make_history(random_walk(11.0, n=12))),
            Position(symbol='BBB', quantity=20, average_cost=5.0, current_price=5.5,
                     price_history=make_history(random_walk(5.5, n=12))),
        ],
    )


@pytest.fixture
def repository(two_asset_snapshot, multi_asset_snapshot, short_history_snapshot):
    return InMemoryPortfolioRepository([two_asset_snapshot, multi_asset_snapshot, short_history_snapshot])


@pytest.fixture
def service(repository, settings):
    return RiskAnalyticsService(repository, settings)
