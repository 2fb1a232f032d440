"""Portfolio snapshot and risk limit storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable

from risk_engine.errors import NotFoundError
from risk_engine.models import PortfolioSnapshot, RiskLimitSet


class PortfolioRepository(ABC):
    """Source of portfolio snapshots and store for limit sets.

    The caller owns persistence; the engine only reads snapshots and hands
    validated limit sets back for storage. Implementations raise
    NotFoundError for unknown portfolios.
    """

    @abstractmethod
    def get_snapshot(self, portfolio_id: str) -> PortfolioSnapshot:
        ...

    @abstractmethod
    def get_risk_limits(self, portfolio_id: str) -> RiskLimitSet | None:
        ...

    @abstractmethod
    def save_risk_limits(self, limit_set: RiskLimitSet) -> RiskLimitSet:
        ...


class InMemoryPortfolioRepository(PortfolioRepository):
    """Dict-backed repository for tests and embedded use."""

    def __init__(self, snapshots: Iterable[PortfolioSnapshot] = ()):
        self._snapshots: Dict[str, PortfolioSnapshot] = {s.portfolio_id: s for s in snapshots}
        self._limits: Dict[str, RiskLimitSet] = {}

    def get_snapshot(self, portfolio_id: str) -> PortfolioSnapshot:
        try:
            return self._snapshots[portfolio_id]
        except KeyError:
            raise NotFoundError("Portfolio", portfolio_id) from None

    def get_risk_limits(self, portfolio_id: str) -> RiskLimitSet | None:
        self.get_snapshot(portfolio_id)
        return self._limits.get(portfolio_id)

    def save_risk_limits(self, limit_set: RiskLimitSet) -> RiskLimitSet:
        self.get_snapshot(limit_set.portfolio_id)
        self._limits[limit_set.portfolio_id] = limit_set
        return limit_set
