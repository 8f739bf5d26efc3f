"""
Trend analysis for financial time series.

Builds one value per generated period for a named metric, overlays a trailing
moving average and period-over-period change, classifies the overall
direction and correlates several series with each other.
"""

import asyncio
import logging
import math
import uuid
from datetime import date, timedelta
from decimal import Decimal
from statistics import mean, pstdev
from typing import Callable, Iterable, Optional, Union

from fin_analytics.analysis.constants import (
    COGS_CATEGORIES,
    CORRELATION_LABELS,
    DIRECTION_THRESHOLD,
    EXPENSE_ACTUAL_STATUSES,
    REVENUE_ACTUAL_STATUSES,
    STRONG_NEGATIVE_LABEL,
    VOLATILITY_THRESHOLD,
    PeriodType,
    TrendDirection,
    TrendType,
)
from fin_analytics.analysis.periods import (
    DateRange,
    add_months,
    advance,
    bucket_index,
    generate_periods,
    period_start_for,
    start_of_month,
)
from fin_analytics.analysis.records import RecordKind
from fin_analytics.analysis.schemas import (
    MultipleTrendAnalysis,
    TrendAnalysis,
    TrendComparison,
    TrendCorrelation,
    TrendDataPoint,
)
from fin_analytics.analysis.stores import BankStore, LedgerStore, PlanStore
from fin_analytics.analysis.utils import normalize_category, round_currency, round_to, safe_percent
from fin_analytics.config import Settings, get_settings
from fin_analytics.core.errors import InvalidRangeError

logger = logging.getLogger(__name__)


class TrendAnalyzer:
    """
    Analyzes trends in financial metrics over time.

    Composite metrics (burn rate, net income, gross margin) are joined from
    two base series fetched concurrently; a period missing from either side
    counts as zero.
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        bank_store: BankStore,
        plan_store: PlanStore,
        clock: Callable[[], date] = date.today,
        settings: Optional[Settings] = None,
    ):
        self.ledger_store = ledger_store
        self.bank_store = bank_store
        self.plan_store = plan_store
        self.clock = clock
        self.settings = settings or get_settings()

    # ============================================
    # Series statistics
    # ============================================

    @staticmethod
    def calculate_percentage_change(current: float, previous: float) -> float:
        """
        Percentage change between two values, relative to the previous magnitude.

        Returns:
            Percent change, or 0 when previous is zero
        """
        return safe_percent(current - previous, abs(previous))

    @staticmethod
    def calculate_cmgr(start_value: float, end_value: float, periods: int) -> float:
        """
        Compound growth rate per period, in percent.

        Args:
            start_value: First value
            end_value: Last value
            periods: Number of compounding steps

        Returns:
            ((end/start)^(1/periods) - 1) * 100, or 0 unless both values
            and periods are positive
        """
        if start_value <= 0 or end_value <= 0 or periods <= 0:
            return 0.0
        return (math.pow(end_value / start_value, 1 / periods) - 1) * 100

    @staticmethod
    def calculate_volatility(values: list[float]) -> float:
        """
        Coefficient of variation (population standard deviation / mean) in percent.

        Returns:
            0 for empty series or a zero mean
        """
        if not values:
            return 0.0
        mean_value = mean(values)
        if mean_value == 0:
            return 0.0
        return pstdev(values) / abs(mean_value) * 100

    @staticmethod
    def half_over_half_change(values: list[float]) -> float:
        """
        Change of the second half's mean over the first half's mean, in percent.

        The first half takes the middle element of odd-length series.
        """
        if len(values) < 2:
            return 0.0
        split = (len(values) + 1) // 2
        first_mean = mean(values[:split])
        second_mean = mean(values[split:])
        return TrendAnalyzer.calculate_percentage_change(second_mean, first_mean)

    @staticmethod
    def get_trend_direction(values: list[float]) -> TrendDirection:
        """
        Classify the overall direction of a series.

        A series whose coefficient of variation exceeds 30% is volatile unless
        its half-over-half change is larger than that dispersion; otherwise a
        change above +5% is increasing, below -5% decreasing, else stable.
        """
        if len(values) < 2:
            return TrendDirection.STABLE

        volatility = TrendAnalyzer.calculate_volatility(values)
        change = TrendAnalyzer.half_over_half_change(values)

        if volatility > VOLATILITY_THRESHOLD and abs(change) <= volatility:
            return TrendDirection.VOLATILE
        if change > DIRECTION_THRESHOLD:
            return TrendDirection.INCREASING
        if change < -DIRECTION_THRESHOLD:
            return TrendDirection.DECREASING
        return TrendDirection.STABLE

    @staticmethod
    def add_moving_average(points: list[TrendDataPoint], window: int) -> list[TrendDataPoint]:
        """
        Overlay a trailing simple moving average of raw values.

        Points before index window-1 get no average. Series shorter than the
        window are returned unchanged.
        """
        if window <= 0 or len(points) < window:
            return list(points)

        values = [point.value for point in points]
        result = []
        for index, point in enumerate(points):
            if index < window - 1:
                result.append(point)
                continue
            average = mean(values[index - window + 1:index + 1])
            result.append(point.model_copy(update={"moving_average": round_to(average)}))
        return result

    @staticmethod
    def add_period_changes(points: list[TrendDataPoint]) -> list[TrendDataPoint]:
        """Attach previous value and change percent; the first point's change is 0."""
        result = []
        for index, point in enumerate(points):
            if index == 0:
                result.append(point.model_copy(update={"change_percent": 0.0}))
                continue
            previous = points[index - 1].value
            change = TrendAnalyzer.calculate_percentage_change(point.value, previous)
            result.append(point.model_copy(update={
                "previous_value": previous,
                "change_percent": round_to(change),
            }))
        return result

    @staticmethod
    def build_trend_analysis(
        trend_type: TrendType,
        period_type: PeriodType,
        date_range: DateRange,
        points: list[TrendDataPoint],
    ) -> TrendAnalysis:
        """Summarize an annotated series into a TrendAnalysis."""
        values = [point.value for point in points]

        if values:
            average_value = mean(values)
            min_value = min(values)
            max_value = max(values)
            total_change = values[-1] - values[0]
        else:
            average_value = min_value = max_value = total_change = 0.0

        total_change_percent = safe_percent(total_change, abs(values[0])) if values else 0.0
        growth_rate = (
            TrendAnalyzer.calculate_cmgr(values[0], values[-1], len(values) - 1)
            if len(values) >= 2
            else 0.0
        )

        return TrendAnalysis(
            type=trend_type,
            period_type=period_type,
            start_date=date_range.start,
            end_date=date_range.end,
            data_points=points,
            direction=TrendAnalyzer.get_trend_direction(values),
            average_value=round_to(average_value),
            min_value=round_to(min_value),
            max_value=round_to(max_value),
            total_change=round_to(total_change),
            total_change_percent=round_to(total_change_percent),
            volatility=round_to(TrendAnalyzer.calculate_volatility(values)),
            growth_rate=round_to(growth_rate),
        )

    # ============================================
    # Correlation
    # ============================================

    @staticmethod
    def pearson_correlation(x: list[float], y: list[float]) -> float:
        """
        Pearson correlation coefficient of two equal-length series.

        Returns:
            r in [-1, 1], or 0 for empty or constant series
        """
        n = min(len(x), len(y))
        if n == 0:
            return 0.0
        x, y = x[:n], y[:n]

        sum_x = sum(x)
        sum_y = sum(y)
        sum_xy = sum(a * b for a, b in zip(x, y))
        sum_x2 = sum(a * a for a in x)
        sum_y2 = sum(b * b for b in y)

        spread_x = n * sum_x2 - sum_x * sum_x
        spread_y = n * sum_y2 - sum_y * sum_y
        if spread_x <= 0 or spread_y <= 0:
            return 0.0

        r = (n * sum_xy - sum_x * sum_y) / math.sqrt(spread_x * spread_y)
        return max(-1.0, min(1.0, r))

    @staticmethod
    def interpret_correlation(r: float) -> str:
        """Qualitative label for a correlation coefficient."""
        for threshold, label in CORRELATION_LABELS:
            if r >= threshold:
                return label
        return STRONG_NEGATIVE_LABEL

    @classmethod
    def calculate_correlations(cls, trends: list[TrendAnalysis]) -> list[TrendCorrelation]:
        """Pairwise correlations, each pair truncated to the shorter series."""
        correlations = []
        for i, first in enumerate(trends):
            for second in trends[i + 1:]:
                r = cls.pearson_correlation(first.values, second.values)
                correlations.append(TrendCorrelation(
                    type1=first.type,
                    type2=second.type,
                    correlation_coefficient=round_to(r, 3),
                    interpretation=cls.interpret_correlation(r),
                ))
        return correlations

    # ============================================
    # Trend queries
    # ============================================

    async def get_trend(
        self,
        organization_id: uuid.UUID,
        trend_type: Union[TrendType, str],
        period_type: Union[PeriodType, str] = PeriodType.MONTHLY,
        months: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_moving_average: bool = True,
        moving_average_periods: Optional[int] = None,
        category: Optional[str] = None,
    ) -> TrendAnalysis:
        """
        Trend analysis for one metric.

        Args:
            organization_id: Organization
            trend_type: Metric to analyse
            period_type: Series granularity
            months: Lookback when start_date is not given (capped)
            start_date: Explicit window start
            end_date: Window end (defaults to today)
            include_moving_average: Overlay a trailing moving average
            moving_average_periods: Moving average window
            category: Expense category restriction (expense trends only)

        Returns:
            TrendAnalysis with one point per period

        Raises:
            ValueError: unknown trend or period type
            InvalidRangeError: start after end
        """
        trend_type = TrendType(trend_type)
        period_type = PeriodType(period_type)
        months = min(months or self.settings.default_trend_months, self.settings.max_trend_months)

        end = end_date or self.clock()
        start = start_date or add_months(start_of_month(end), -months)
        if start > end:
            raise InvalidRangeError(
                f"Start date {start.isoformat()} is after end date {end.isoformat()}",
                start=start,
                end=end,
            )

        date_range = DateRange(start, end)
        periods = generate_periods(start, end, period_type)
        logger.debug(
            "Building %s trend for org %s: %s to %s, %d %s periods",
            trend_type.value, organization_id, start, end, len(periods), period_type.value,
        )

        values = await self._build_series(organization_id, trend_type, periods, date_range, period_type, category)
        points = [TrendDataPoint(period=period, value=value) for period, value in zip(periods, values)]

        if include_moving_average:
            window = moving_average_periods or self.settings.moving_average_periods
            points = self.add_moving_average(points, window)
        points = self.add_period_changes(points)

        return self.build_trend_analysis(trend_type, period_type, date_range, points)

    async def get_multiple_trends(
        self,
        organization_id: uuid.UUID,
        trend_types: Iterable[Union[TrendType, str]],
        period_type: Union[PeriodType, str] = PeriodType.MONTHLY,
        months: Optional[int] = None,
        include_correlations: bool = True,
    ) -> MultipleTrendAnalysis:
        """Several trends over the same window, with pairwise correlations."""
        trends = await asyncio.gather(*[
            self.get_trend(organization_id, trend_type, period_type=period_type, months=months)
            for trend_type in trend_types
        ])
        trends = list(trends)

        correlations = None
        if include_correlations and len(trends) >= 2:
            correlations = self.calculate_correlations(trends)

        return MultipleTrendAnalysis(trends=trends, correlations=correlations)

    async def get_trend_comparison(
        self,
        organization_id: uuid.UUID,
        trend_type: Union[TrendType, str],
        period_type: Union[PeriodType, str] = PeriodType.MONTHLY,
        periods: int = 6,
    ) -> TrendComparison:
        """
        Compare the most recent N periods with the N periods before them.

        The current window ends today and starts N-1 periods before the
        period containing today.
        """
        if periods <= 0:
            raise ValueError("periods must be positive")
        period_type = PeriodType(period_type)

        today = self.clock()
        current_start = advance(period_start_for(today, period_type), period_type, -(periods - 1))
        previous_start = advance(current_start, period_type, -periods)
        previous_end = current_start - timedelta(days=1)

        current, previous = await asyncio.gather(
            self.get_trend(
                organization_id, trend_type, period_type=period_type,
                start_date=current_start, end_date=today,
            ),
            self.get_trend(
                organization_id, trend_type, period_type=period_type,
                start_date=previous_start, end_date=previous_end,
            ),
        )

        change = current.average_value - previous.average_value
        return TrendComparison(
            current_period=current,
            previous_period=previous,
            period_over_period_change=round_to(change),
            period_over_period_percent=round_to(safe_percent(change, abs(previous.average_value))),
        )

    # ============================================
    # Series builders
    # ============================================

    async def _build_series(
        self,
        organization_id: uuid.UUID,
        trend_type: TrendType,
        periods: list[date],
        date_range: DateRange,
        period_type: PeriodType,
        category: Optional[str],
    ) -> list[float]:
        if trend_type == TrendType.EXPENSE:
            series = await self._expense_series(organization_id, periods, date_range, period_type, category)
            return [round_currency(v) for v in series]

        if trend_type == TrendType.REVENUE:
            series = await self._revenue_series(organization_id, periods, date_range, period_type)
            return [round_currency(v) for v in series]

        if trend_type in (TrendType.BURN_RATE, TrendType.NET_INCOME):
            expenses, revenue = await asyncio.gather(
                self._expense_series(organization_id, periods, date_range, period_type),
                self._revenue_series(organization_id, periods, date_range, period_type),
            )
            if trend_type == TrendType.BURN_RATE:
                return [round_currency(e - r) for e, r in self._join(expenses, revenue, len(periods))]
            return [round_currency(r - e) for e, r in self._join(expenses, revenue, len(periods))]

        if trend_type == TrendType.GROSS_MARGIN:
            revenue, cogs = await asyncio.gather(
                self._revenue_series(organization_id, periods, date_range, period_type),
                self._ledger_series(
                    organization_id, periods, date_range, RecordKind.EXPENSE,
                    EXPENSE_ACTUAL_STATUSES, period_type, categories=COGS_CATEGORIES,
                ),
            )
            return [
                round_to(safe_percent(r - c, r))
                for r, c in self._join(revenue, cogs, len(periods))
            ]

        if trend_type == TrendType.CASH_BALANCE:
            return await self._cash_balance_series(organization_id, periods, date_range, period_type)

        return await self._headcount_series(organization_id, periods, date_range)

    @staticmethod
    def _join(left: list[Decimal], right: list[Decimal], length: int) -> list[tuple[Decimal, Decimal]]:
        """Pair two series by period index; a missing entry is zero."""
        zero = Decimal("0")
        return [
            (left[i] if i < len(left) else zero, right[i] if i < len(right) else zero)
            for i in range(length)
        ]

    async def _ledger_series(
        self,
        organization_id: uuid.UUID,
        periods: list[date],
        date_range: DateRange,
        record_kind: RecordKind,
        statuses: Optional[Iterable[str]],
        period_type: PeriodType,
        categories: Optional[Iterable[str]] = None,
    ) -> list[Decimal]:
        """Sum ledger aggregates into the generated period buckets."""
        wanted = {normalize_category(c) for c in categories} if categories else None
        aggregates = await self.ledger_store.sum_by_category(
            organization_id,
            date_range,
            statuses,
            record_kind,
            categories=wanted,
            granularity=period_type,
        )

        buckets = [Decimal("0")] * len(periods)
        for aggregate in aggregates:
            if wanted is not None and normalize_category(aggregate.category) not in wanted:
                continue
            if not date_range.contains(aggregate.period_start):
                continue
            index = bucket_index(periods, aggregate.period_start)
            if index is not None:
                buckets[index] += aggregate.amount
        return buckets

    async def _expense_series(
        self,
        organization_id: uuid.UUID,
        periods: list[date],
        date_range: DateRange,
        period_type: PeriodType,
        category: Optional[str] = None,
    ) -> list[Decimal]:
        return await self._ledger_series(
            organization_id, periods, date_range, RecordKind.EXPENSE, EXPENSE_ACTUAL_STATUSES,
            period_type, categories=[category] if category else None,
        )

    async def _revenue_series(
        self,
        organization_id: uuid.UUID,
        periods: list[date],
        date_range: DateRange,
        period_type: PeriodType,
    ) -> list[Decimal]:
        return await self._ledger_series(
            organization_id, periods, date_range, RecordKind.REVENUE, REVENUE_ACTUAL_STATUSES, period_type,
        )

    async def _cash_balance_series(
        self,
        organization_id: uuid.UUID,
        periods: list[date],
        date_range: DateRange,
        period_type: PeriodType,
    ) -> list[float]:
        """
        Balance per period rolled backward from the live bank balance.

        The latest point equals the current balance; each earlier point removes
        the following period's net flow. Historical points therefore move when
        the live balance or any later transaction changes.
        """
        balance, inflows, outflows = await asyncio.gather(
            self.bank_store.current_balance(organization_id),
            self._ledger_series(
                organization_id, periods, date_range, RecordKind.BANK_INFLOW, None, period_type
            ),
            self._ledger_series(
                organization_id, periods, date_range, RecordKind.BANK_OUTFLOW, None, period_type
            ),
        )

        flows = self._join(inflows, outflows, len(periods))
        running = Decimal(str(balance))
        values = [0.0] * len(periods)
        for index in range(len(periods) - 1, -1, -1):
            values[index] = round_currency(running)
            inflow, outflow = flows[index]
            running -= inflow - outflow
        return values

    async def _headcount_series(
        self,
        organization_id: uuid.UUID,
        periods: list[date],
        date_range: DateRange,
    ) -> list[float]:
        """Filled roles whose planned start is on or before each period start."""
        roles = await self.plan_store.get_filled_roles(organization_id, date_range.end)
        return [
            float(sum(1 for role in roles if role.planned_start_date <= period))
            for period in periods
        ]
