"""
Unit tests for reports.py - Risk Report Composer
"""

import datetime as dt

import pytest

from risk_engine.errors import InsufficientDataError, ValidationError
from risk_engine.models import (
    DetailedReport,
    PortfolioSnapshot,
    RegulatoryReport,
    ReportType,
    SummaryReport,
)
from risk_engine.reports import compose
from risk_engine.stress import PRESET_SCENARIOS

START = dt.date(2023, 6, 1)
END = dt.date(2024, 1, 31)


class TestCompose:

    def test_summary(self, two_asset_snapshot):
        report = compose(ReportType.SUMMARY, two_asset_snapshot, START, END)

        assert isinstance(report, SummaryReport)
        assert report.metrics.portfolio_id == 'pf-two'
        assert report.executive_summary.overall_risk_level == report.metrics.risk_level
        assert report.charts is None

    def test_detailed(self, multi_asset_snapshot):
        report = compose('DETAILED', multi_asset_snapshot, START, END)

        assert isinstance(report, DetailedReport)
        assert len(report.position_risks) == 5
        assert len(report.stress_tests) == len(PRESET_SCENARIOS)
        assert report.correlations is not None
        assert report.correlations.assets == multi_asset_snapshot.symbols
        assert report.historical_analysis.worst_day.change <= report.historical_analysis.best_day.change
        assert START <= report.historical_analysis.worst_day.date <= END

    def test_detailed_concentration_and_top_pairs(self, multi_asset_snapshot):
        report = compose(ReportType.DETAILED, multi_asset_snapshot, START, END)

        concentration = report.concentration
        assert 2000.0 <= concentration.hhi <= 10000.0
        assert concentration.top_5_pct == pytest.approx(100.0)
        assert sorted(concentration.top_5_names) == sorted(multi_asset_snapshot.symbols)

        pairs = report.correlations.top_pairs
        assert len(pairs) == 10
        magnitudes = [abs(p['correlation']) for p in pairs]
        assert magnitudes == sorted(magnitudes, reverse=True)

    def test_attribution_groups(self, multi_asset_snapshot):
        report = compose(ReportType.DETAILED, multi_asset_snapshot, START, END)

        attribution = report.risk_attribution
        assert sum(attribution.by_asset.values()) == pytest.approx(100.0)
        assert set(attribution.by_asset_class) == {'EQUITY', 'ETF'}
        assert set(attribution.by_region) == {'US', 'EU'}
        assert sum(attribution.by_sector.values()) == pytest.approx(100.0)

    def test_regulatory_includes_backtest(self, two_asset_snapshot):
        report = compose(ReportType.REGULATORY, two_asset_snapshot, START, END)

        assert isinstance(report, RegulatoryReport)
        assert report.var_backtest.observations > 0
        assert report.var_backtest.confidence_level == 0.95

    def test_charts(self, two_asset_snapshot):
        report = compose(ReportType.SUMMARY, two_asset_snapshot, START, END, include_charts=True)

        assert {'value', 'drawdown', 'rolling_volatility'} <= set(report.charts)
        assert all(point['drawdown'] <= 0 for point in report.charts['drawdown'])

    def test_single_asset_has_no_correlation_section(self, two_asset_snapshot):
        snapshot = PortfolioSnapshot(portfolio_id='one', positions=[two_asset_snapshot.position('GOOGL')])

        report = compose(ReportType.DETAILED, snapshot, START, END)

        assert report.correlations is None

    def test_serialized_report_type(self, two_asset_snapshot):
        report = compose(ReportType.SUMMARY, two_asset_snapshot, START, END)

        assert report.model_dump(by_alias=True)['reportType'] == ReportType.SUMMARY


class TestValidation:

    def test_start_after_end_rejected(self, two_asset_snapshot):
        with pytest.raises(ValidationError, match="date_range"):
            compose(ReportType.SUMMARY, two_asset_snapshot, END, START)

    def test_equal_dates_rejected(self, two_asset_snapshot):
        with pytest.raises(ValidationError, match="start_date must be before end_date"):
            compose(ReportType.SUMMARY, two_asset_snapshot, START, START)

    def test_unknown_report_type(self, two_asset_snapshot):
        with pytest.raises(ValidationError, match="report_type"):
            compose('QUARTERLY', two_asset_snapshot, START, END)

    def test_range_without_data(self, two_asset_snapshot):
        with pytest.raises(InsufficientDataError):
            compose(ReportType.SUMMARY, two_asset_snapshot, dt.date(2030, 1, 1), dt.date(2030, 6, 1))
