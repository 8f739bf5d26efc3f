from datetime import date
from decimal import Decimal

import pytest

from conftest import ORG_ID
from fin_analytics.analysis.constants import PeriodType, TrendDirection, TrendType
from fin_analytics.analysis.records import PlannedRole, RecordKind
from fin_analytics.analysis.schemas import TrendDataPoint
from fin_analytics.analysis.trends import TrendAnalyzer
from fin_analytics.core.errors import InvalidRangeError

FIRST_HALF_2025 = dict(start_date=date(2025, 1, 1), end_date=date(2025, 6, 30))


def add_monthly_revenue(ledger, values, year=2025, first_month=1):
    for offset, value in enumerate(values):
        ledger.revenue("sales", date(year, first_month + offset, 10), value)


class TestSeriesStatistics:
    def test_cmgr(self):
        assert TrendAnalyzer.calculate_cmgr(100, 200, 12) == pytest.approx(5.946, abs=0.001)
        assert TrendAnalyzer.calculate_cmgr(100, 100, 5) == 0.0
        assert TrendAnalyzer.calculate_cmgr(0, 100, 5) == 0.0
        assert TrendAnalyzer.calculate_cmgr(100, -5, 5) == 0.0

    def test_volatility_is_population_cv(self):
        assert TrendAnalyzer.calculate_volatility([10, 10, 10]) == 0.0
        assert TrendAnalyzer.calculate_volatility([0, 0]) == 0.0
        assert TrendAnalyzer.calculate_volatility([50, 150]) == pytest.approx(50.0)

    def test_percentage_change_guards_zero(self):
        assert TrendAnalyzer.calculate_percentage_change(110, 100) == pytest.approx(10.0)
        assert TrendAnalyzer.calculate_percentage_change(5, 0) == 0.0
        assert TrendAnalyzer.calculate_percentage_change(-50, -100) == pytest.approx(50.0)

    @pytest.mark.parametrize(
        "values, expected",
        [
            ([100, 110, 120, 90, 200, 210], TrendDirection.INCREASING),
            ([200, 190, 185, 150, 140, 130], TrendDirection.DECREASING),
            ([100, 101, 99, 100, 102, 100], TrendDirection.STABLE),
            ([10, 200, 5, 180, 20, 150], TrendDirection.VOLATILE),
            ([42], TrendDirection.STABLE),
        ],
    )
    def test_direction(self, values, expected):
        assert TrendAnalyzer.get_trend_direction(values) == expected

    @pytest.mark.parametrize(
        "values, expected",
        [
            # CV 81.8%, half-over-half +900%
            ([10, 10, 10, 100, 100, 100], TrendDirection.INCREASING),
            # CV 81.8%, half-over-half -90%
            ([100, 100, 100, 10, 10, 10], TrendDirection.DECREASING),
        ],
    )
    def test_step_change_larger_than_dispersion_keeps_direction(self, values, expected):
        assert TrendAnalyzer.calculate_volatility(values) > 30
        assert TrendAnalyzer.get_trend_direction(values) == expected

    def test_moving_average_uses_raw_values(self):
        points = [TrendDataPoint(period=date(2025, m, 1), value=v) for m, v in zip(range(1, 5), [3, 6, 9, 30])]

        result = TrendAnalyzer.add_moving_average(points, 3)

        assert result[0].moving_average is None
        assert result[1].moving_average is None
        assert result[2].moving_average == 6.0
        assert result[3].moving_average == 15.0

    def test_moving_average_skipped_for_short_series(self):
        points = [TrendDataPoint(period=date(2025, 1, 1), value=1.0)]
        assert TrendAnalyzer.add_moving_average(points, 3)[0].moving_average is None

    def test_correlation(self):
        x = [1.0, 2.0, 4.0, 8.0]

        assert TrendAnalyzer.pearson_correlation(x, x) == pytest.approx(1.0)
        assert TrendAnalyzer.pearson_correlation(x, [-v for v in x]) == pytest.approx(-1.0)
        assert TrendAnalyzer.pearson_correlation(x, [5.0, 5.0, 5.0, 5.0]) == 0.0
        assert TrendAnalyzer.pearson_correlation([], []) == 0.0

    @pytest.mark.parametrize(
        "r, label",
        [
            (0.9, "Strong positive correlation"),
            (0.5, "Moderate positive correlation"),
            (0.0, "Weak or no correlation"),
            (-0.5, "Moderate negative correlation"),
            (-0.95, "Strong negative correlation"),
        ],
    )
    def test_interpret_correlation(self, r, label):
        assert TrendAnalyzer.interpret_correlation(r) == label


async def test_revenue_trend_scenario(trend_analyzer, ledger):
    add_monthly_revenue(ledger, [100, 110, 120, 90, 200, 210])

    trend = await trend_analyzer.get_trend(ORG_ID, TrendType.REVENUE, **FIRST_HALF_2025)

    assert [p.value for p in trend.data_points] == [100, 110, 120, 90, 200, 210]
    assert [p.period for p in trend.data_points] == [date(2025, m, 1) for m in range(1, 7)]
    assert trend.direction == TrendDirection.INCREASING
    assert trend.total_change == 110.0
    assert trend.total_change_percent == 110.0
    assert trend.min_value == 90.0
    assert trend.max_value == 210.0
    assert trend.volatility > 30

    first, second = trend.data_points[:2]
    assert first.change_percent == 0.0
    assert first.previous_value is None
    assert second.previous_value == 100.0
    assert second.change_percent == 10.0
    assert trend.data_points[2].moving_average == 110.0


async def test_empty_periods_are_zero_points(trend_analyzer, ledger):
    ledger.expense("Rent", date(2025, 2, 3), 500)

    trend = await trend_analyzer.get_trend(
        ORG_ID, "expense", period_type="weekly",
        start_date=date(2025, 1, 6), end_date=date(2025, 3, 2),
    )

    assert len(trend.data_points) == 8
    assert sum(p.value for p in trend.data_points) == 500.0
    assert trend.data_points[4].value == 500.0


async def test_expense_trend_category_filter(trend_analyzer, ledger):
    ledger.expense("Marketing", date(2025, 1, 5), 300)
    ledger.expense("Rent", date(2025, 1, 5), 1000)

    trend = await trend_analyzer.get_trend(ORG_ID, TrendType.EXPENSE, category="marketing", **FIRST_HALF_2025)

    assert trend.data_points[0].value == 300.0


async def test_composite_series(trend_analyzer, ledger):
    ledger.expense("Rent", date(2025, 1, 5), 1000)
    ledger.expense("cogs", date(2025, 1, 5), 250)
    ledger.revenue("sales", date(2025, 1, 20), 1000)
    ledger.expense("Rent", date(2025, 2, 5), 400)

    burn = await trend_analyzer.get_trend(ORG_ID, TrendType.BURN_RATE, **FIRST_HALF_2025)
    net = await trend_analyzer.get_trend(ORG_ID, TrendType.NET_INCOME, **FIRST_HALF_2025)
    margin = await trend_analyzer.get_trend(ORG_ID, TrendType.GROSS_MARGIN, **FIRST_HALF_2025)

    assert burn.data_points[0].value == 250.0
    assert burn.data_points[1].value == 400.0
    assert net.data_points[0].value == -250.0
    assert margin.data_points[0].value == 75.0
    # No revenue: margin defined as zero
    assert margin.data_points[1].value == 0.0
    assert len(burn.data_points) == len(net.data_points) == len(margin.data_points) == 6


async def test_cash_balance_rolls_back_from_live_balance(trend_analyzer, ledger, bank):
    bank.balance = Decimal("5000")
    ledger.add(RecordKind.BANK_INFLOW, "deposit", date(2025, 6, 3), 1000)
    ledger.add(RecordKind.BANK_OUTFLOW, "payment", date(2025, 6, 20), 400)
    ledger.add(RecordKind.BANK_OUTFLOW, "payment", date(2025, 4, 20), 250)

    trend = await trend_analyzer.get_trend(
        ORG_ID, TrendType.CASH_BALANCE, start_date=date(2025, 4, 1), end_date=date(2025, 6, 30),
        include_moving_average=False,
    )

    assert [p.value for p in trend.data_points] == [4400.0, 4400.0, 5000.0]
    assert trend.data_points[-1].value == float(bank.balance)


async def test_headcount_counts_filled_roles_by_start(trend_analyzer, plans):
    plans.roles[2025] = [
        PlannedRole("Engineer", "Engineering", "Senior", "filled", date(2024, 11, 1)),
        PlannedRole("Designer", "Design", "Mid", "filled", date(2025, 3, 15)),
        PlannedRole("Analyst", "Finance", "Junior", "open", date(2025, 1, 1)),
    ]

    trend = await trend_analyzer.get_trend(ORG_ID, TrendType.HEADCOUNT, **FIRST_HALF_2025)

    assert [p.value for p in trend.data_points] == [1, 1, 1, 2, 2, 2]


async def test_default_window_is_capped(trend_analyzer):
    trend = await trend_analyzer.get_trend(ORG_ID, TrendType.REVENUE, months=120)

    assert trend.start_date == date(2022, 7, 1)
    assert trend.end_date == date(2025, 7, 15)
    assert len(trend.data_points) == 37


async def test_inverted_range_rejected(trend_analyzer):
    with pytest.raises(InvalidRangeError):
        await trend_analyzer.get_trend(
            ORG_ID, TrendType.REVENUE, start_date=date(2025, 6, 1), end_date=date(2025, 1, 1)
        )


async def test_unknown_trend_type_rejected(trend_analyzer):
    with pytest.raises(ValueError):
        await trend_analyzer.get_trend(ORG_ID, "custom")


async def test_multiple_trends_with_correlation(trend_analyzer, ledger):
    add_monthly_revenue(ledger, [100, 200, 300, 400, 500, 600, 700], first_month=1)
    for month in range(1, 8):
        ledger.expense("Rent", date(2025, month, 2), 50 * month)

    result = await trend_analyzer.get_multiple_trends(
        ORG_ID, [TrendType.REVENUE, TrendType.EXPENSE], PeriodType.MONTHLY, months=6
    )

    assert len(result.trends) == 2
    assert len(result.correlations) == 1
    correlation = result.correlations[0]
    assert correlation.type1 == TrendType.REVENUE
    assert correlation.type2 == TrendType.EXPENSE
    assert correlation.correlation_coefficient == pytest.approx(1.0)
    assert correlation.interpretation == "Strong positive correlation"


async def test_single_trend_has_no_correlations(trend_analyzer):
    result = await trend_analyzer.get_multiple_trends(ORG_ID, ["revenue"])
    assert result.correlations is None


async def test_trend_comparison(trend_analyzer, ledger):
    add_monthly_revenue(ledger, [100, 100, 100], first_month=2)
    add_monthly_revenue(ledger, [200, 200, 200], first_month=5)

    comparison = await trend_analyzer.get_trend_comparison(ORG_ID, TrendType.REVENUE, periods=3)

    assert comparison.current_period.start_date == date(2025, 5, 1)
    assert comparison.current_period.end_date == date(2025, 7, 15)
    assert comparison.previous_period.start_date == date(2025, 2, 1)
    assert comparison.previous_period.end_date == date(2025, 4, 30)
    assert comparison.period_over_period_change == 100.0
    assert comparison.period_over_period_percent == 100.0
