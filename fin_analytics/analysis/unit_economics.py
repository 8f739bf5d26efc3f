"""
Unit economics: CAC, LTV, churn, MRR/ARR/ARPU, gross margin, payback and
cohort retention.

Benchmark comparisons report "above" when a metric is better than its
benchmark (higher LTV:CAC and margin, shorter payback, lower churn).
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from statistics import mean, median
from typing import Callable, Optional, Union

from fin_analytics.analysis.constants import (
    ACQUISITION_CATEGORIES,
    BENCHMARK_CHURN_RATE,
    BENCHMARK_GROSS_MARGIN,
    BENCHMARK_LTV_CAC_RATIO,
    BENCHMARK_PAYBACK_MONTHS,
    CAC_TREND_THRESHOLD,
    DAYS_PER_MONTH,
    DEFAULT_CAC_MONTHS,
    DEFAULT_LTV_MONTHS,
    EXPENSE_ACTUAL_STATUSES,
    MARKETING_CATEGORIES,
    METRIC_UNITS,
    PAYBACK_SENTINEL,
    REVENUE_ACTUAL_STATUSES,
    SALES_CATEGORIES,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CHURNED,
    SUBSCRIPTION_REVENUE_CATEGORY,
    UNIT_COGS_CATEGORIES,
    BenchmarkComparison,
    MetricType,
    PeriodType,
    TrendDirection,
    get_health_status,
)
from fin_analytics.analysis.periods import DateRange, add_months, advance, period_start_for, start_of_month
from fin_analytics.analysis.records import Customer, CustomerFilter, RecordKind
from fin_analytics.analysis.schemas import (
    CACBreakdown,
    CACComponents,
    ChurnResult,
    Cohort,
    CohortAnalysis,
    CohortHighlight,
    CohortRetention,
    LTVBreakdown,
    MRRResult,
    PaybackResult,
    RetentionByPeriod,
    UnitEconomicsMetric,
    UnitEconomicsSummary,
)
from fin_analytics.analysis.stores import CustomerStore, LedgerStore
from fin_analytics.analysis.utils import (
    clamp_score,
    normalize_category,
    round_currency,
    round_to,
    safe_divide,
    safe_percent,
    sum_decimals,
    to_decimal,
)
from fin_analytics.config import Settings, get_settings
from fin_analytics.core.errors import InvalidRangeError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UnitEconomicsEngine:
    """
    Computes customer-level unit economics from ledger and customer stores.
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        customer_store: CustomerStore,
        clock: Callable[[], date] = date.today,
        now: Callable[[], datetime] = _utc_now,
        settings: Optional[Settings] = None,
    ):
        self.ledger_store = ledger_store
        self.customer_store = customer_store
        self.clock = clock
        self.now = now
        self.settings = settings or get_settings()

    # ============================================
    # Pure calculations
    # ============================================

    @staticmethod
    def calculate_payback_period(cac: float, monthly_revenue: float, gross_margin: float) -> float:
        """
        Months to recover CAC from monthly gross profit per customer.

        Args:
            cac: Acquisition cost per customer
            monthly_revenue: Monthly revenue per customer
            gross_margin: Gross margin percent

        Returns:
            Payback months, or 999 when monthly gross profit is not positive
        """
        if monthly_revenue == 0 or gross_margin == 0:
            return PAYBACK_SENTINEL
        monthly_gross_profit = monthly_revenue * (gross_margin / 100)
        if monthly_gross_profit <= 0:
            return PAYBACK_SENTINEL
        return cac / monthly_gross_profit

    @staticmethod
    def compare_to_benchmark(value: float, benchmark: float, higher_is_better: bool) -> BenchmarkComparison:
        """Position of a value against its benchmark; above means better."""
        if value == benchmark:
            return BenchmarkComparison.AT
        better = value > benchmark if higher_is_better else value < benchmark
        return BenchmarkComparison.ABOVE if better else BenchmarkComparison.BELOW

    @staticmethod
    def classify_change(current: float, previous: float, threshold: float = CAC_TREND_THRESHOLD) -> TrendDirection:
        """Direction of a window-over-window change; stable when there is no baseline."""
        if previous == 0:
            return TrendDirection.STABLE
        change = (current - previous) / previous * 100
        if change > threshold:
            return TrendDirection.INCREASING
        if change < -threshold:
            return TrendDirection.DECREASING
        return TrendDirection.STABLE

    @staticmethod
    def calculate_overall_health(metrics: list[UnitEconomicsMetric]) -> float:
        """
        Banded unit economics score starting from 50.

        Only LTV:CAC, payback, churn and gross margin move the score.
        """
        score = 50.0
        for metric in metrics:
            value = metric.value
            if metric.metric == MetricType.LTV_CAC_RATIO:
                if value >= 3:
                    score += 15
                elif value >= 2:
                    score += 10
                elif value >= 1:
                    score += 5
                else:
                    score -= 10
            elif metric.metric == MetricType.PAYBACK_PERIOD:
                if value <= 6:
                    score += 10
                elif value <= 12:
                    score += 5
                elif value <= 18:
                    score -= 5
                else:
                    score -= 10
            elif metric.metric == MetricType.CHURN_RATE:
                if value <= 2:
                    score += 10
                elif value <= 5:
                    score += 5
                elif value <= 10:
                    score -= 5
                else:
                    score -= 10
            elif metric.metric == MetricType.GROSS_MARGIN:
                if value >= 80:
                    score += 10
                elif value >= 70:
                    score += 5
                elif value >= 50:
                    score -= 5
                else:
                    score -= 10
        return clamp_score(score)

    @staticmethod
    def is_active_in_period(customer: Customer, period_start: date, period_end: date) -> bool:
        """
        Whether a cohort member counts as retained for a period.

        Active means an active subscription or a purchase on/after the period
        start, and no subscription end before the period end.
        """
        engaged = customer.has_active_subscription or (
            customer.last_purchase_date is not None and customer.last_purchase_date >= period_start
        )
        not_churned = customer.subscription_end is None or customer.subscription_end >= period_end
        return engaged and not_churned

    @staticmethod
    def cohort_id_for(cohort_start: date, period_type: PeriodType) -> str:
        """Cohort label: YYYY-MM, YYYY-Www or YYYY-Qn."""
        if period_type == PeriodType.WEEKLY:
            iso = cohort_start.isocalendar()
            return f"{iso[0]}-W{iso[1]:02d}"
        if period_type == PeriodType.QUARTERLY:
            return f"{cohort_start.year}-Q{(cohort_start.month - 1) // 3 + 1}"
        return f"{cohort_start.year}-{cohort_start.month:02d}"

    # ============================================
    # Store reads
    # ============================================

    async def _sum_expenses(
        self,
        organization_id: uuid.UUID,
        date_range: DateRange,
        categories: frozenset,
    ) -> dict[str, Decimal]:
        aggregates = await self.ledger_store.sum_by_category(
            organization_id, date_range, EXPENSE_ACTUAL_STATUSES, RecordKind.EXPENSE, categories=categories
        )
        totals: dict[str, Decimal] = defaultdict(Decimal)
        for aggregate in aggregates:
            key = normalize_category(aggregate.category)
            if key in categories:
                totals[key] += aggregate.amount
        return totals

    async def _sum_revenue(
        self,
        organization_id: uuid.UUID,
        date_range: DateRange,
        category: Optional[str] = None,
    ) -> Decimal:
        aggregates = await self.ledger_store.sum_by_category(
            organization_id,
            date_range,
            REVENUE_ACTUAL_STATUSES,
            RecordKind.REVENUE,
            categories=[category] if category else None,
        )
        if category:
            aggregates = [a for a in aggregates if normalize_category(a.category) == category]
        return sum_decimals(a.amount for a in aggregates)

    async def _acquisition(
        self,
        organization_id: uuid.UUID,
        date_range: DateRange,
    ) -> tuple[dict[str, Decimal], int]:
        spend, customers = await asyncio.gather(
            self._sum_expenses(organization_id, date_range, ACQUISITION_CATEGORIES),
            self.customer_store.find(
                organization_id,
                CustomerFilter(created_from=date_range.start, created_to=date_range.end, active_only=True),
            ),
        )
        return spend, len(customers)

    # ============================================
    # Metrics
    # ============================================

    async def get_cac(self, organization_id: uuid.UUID, months: int = DEFAULT_CAC_MONTHS) -> CACBreakdown:
        """
        Customer acquisition cost over a trailing window of months.

        Trend compares against the immediately preceding window of equal length.
        """
        end = self.clock()
        start = add_months(start_of_month(end), -months)
        previous_end = start - timedelta(days=1)
        previous_start = add_months(previous_end, -months)

        (spend, new_customers), (previous_spend, previous_customers) = await asyncio.gather(
            self._acquisition(organization_id, DateRange(start, end)),
            self._acquisition(organization_id, DateRange(previous_start, previous_end)),
        )

        marketing = sum_decimals(v for k, v in spend.items() if k in MARKETING_CATEGORIES)
        sales = sum_decimals(v for k, v in spend.items() if k in SALES_CATEGORIES)
        other = sum_decimals(
            v for k, v in spend.items() if k not in MARKETING_CATEGORIES and k not in SALES_CATEGORIES
        )
        total = marketing + sales + other

        cac = safe_divide(total, new_customers)
        previous_cac = safe_divide(sum_decimals(previous_spend.values()), previous_customers)

        return CACBreakdown(
            total_cac=round_currency(total),
            components=CACComponents(
                marketing=round_currency(marketing),
                sales=round_currency(sales),
                other=round_currency(other),
            ),
            customer_count=new_customers,
            cac_per_customer=round_currency(cac),
            trend=self.classify_change(cac, previous_cac),
            start_date=start,
            end_date=end,
        )

    async def get_churn_rate(self, organization_id: uuid.UUID, start_date: date, end_date: date) -> ChurnResult:
        """
        Churned customers over customers active at the window start, in percent.

        Raises:
            InvalidRangeError: start after end
        """
        if start_date > end_date:
            raise InvalidRangeError(
                f"Start date {start_date.isoformat()} is after end date {end_date.isoformat()}",
                start=start_date,
                end=end_date,
            )

        churned_customers, existing_customers = await asyncio.gather(
            self.customer_store.find(organization_id, CustomerFilter(subscription_status=SUBSCRIPTION_CHURNED)),
            self.customer_store.find(organization_id, CustomerFilter(created_to=start_date)),
        )

        churned = [
            c for c in churned_customers
            if c.subscription_end is not None and start_date <= c.subscription_end <= end_date
        ]
        active_at_start = [
            c for c in existing_customers
            if c.subscription_status != SUBSCRIPTION_CHURNED
            or (c.subscription_end is not None and c.subscription_end > start_date)
        ]

        return ChurnResult(
            rate=safe_percent(len(churned), len(active_at_start)),
            churned_customers=len(churned),
            customers_at_start=len(active_at_start),
        )

    async def get_gross_margin(self, organization_id: uuid.UUID, start_date: date, end_date: date) -> float:
        """(revenue - COGS) / revenue * 100 over a window; 0 without revenue."""
        date_range = DateRange(start_date, end_date)
        revenue, cogs = await asyncio.gather(
            self._sum_revenue(organization_id, date_range),
            self._sum_expenses(organization_id, date_range, UNIT_COGS_CATEGORIES),
        )
        total_cogs = sum_decimals(cogs.values())
        return safe_percent(revenue - total_cogs, revenue)

    async def get_mrr(self, organization_id: uuid.UUID) -> MRRResult:
        """
        Recurring revenue from active subscribers.

        previous_mrr is subscription revenue received during the previous
        calendar month.
        """
        today = self.clock()
        current_month = start_of_month(today)
        previous_month = DateRange(add_months(current_month, -1), current_month - timedelta(days=1))

        subscribers, previous_mrr = await asyncio.gather(
            self.customer_store.find(
                organization_id,
                CustomerFilter(subscription_status=SUBSCRIPTION_ACTIVE, active_only=True),
            ),
            self._sum_revenue(organization_id, previous_month, SUBSCRIPTION_REVENUE_CATEGORY),
        )

        mrr = sum_decimals(c.monthly_value for c in subscribers)
        arpu = safe_divide(mrr, len(subscribers))
        growth = safe_percent(mrr - previous_mrr, previous_mrr) if previous_mrr > 0 else 0.0

        return MRRResult(
            mrr=round_currency(mrr),
            arr=round_currency(mrr * 12),
            arpu=round_currency(arpu),
            previous_mrr=round_currency(previous_mrr),
            mrr_growth=round_to(growth),
            active_customers=len(subscribers),
        )

    async def get_ltv(self, organization_id: uuid.UUID, cohort_months: int = DEFAULT_LTV_MONTHS) -> LTVBreakdown:
        """
        Average customer lifetime value.

        LTV = average monthly revenue * average lifespan * gross margin, where
        each active customer's lifespan is at least one month.
        """
        today = self.clock()
        start = add_months(start_of_month(today), -cohort_months)

        customers = await self.customer_store.find(organization_id, CustomerFilter(active_only=True))
        if not customers:
            return LTVBreakdown(
                average_ltv=0.0,
                average_lifespan_months=0.0,
                average_monthly_revenue=0.0,
                churn_rate=0.0,
                gross_margin=0.0,
            )

        total_revenue = Decimal("0")
        total_months = 0.0
        for customer in customers:
            total_revenue += to_decimal(customer.total_revenue)
            first_purchase = customer.first_purchase_date or customer.created_at
            last_activity = customer.last_purchase_date or today
            total_months += max(1.0, (last_activity - first_purchase).days / DAYS_PER_MONTH)

        average_monthly_revenue = safe_divide(total_revenue, total_months)
        average_lifespan = total_months / len(customers)

        churn, gross_margin = await asyncio.gather(
            self.get_churn_rate(organization_id, start, today),
            self.get_gross_margin(organization_id, start, today),
        )

        average_ltv = average_monthly_revenue * average_lifespan * (gross_margin / 100)

        return LTVBreakdown(
            average_ltv=round_currency(average_ltv),
            average_lifespan_months=round_to(average_lifespan, 1),
            average_monthly_revenue=round_currency(average_monthly_revenue),
            churn_rate=round_to(churn.rate),
            gross_margin=round_to(gross_margin),
        )

    async def get_payback_period(self, organization_id: uuid.UUID, months: int = DEFAULT_CAC_MONTHS) -> PaybackResult:
        """CAC payback using ARPU and trailing three-month gross margin."""
        today = self.clock()
        start = add_months(start_of_month(today), -3)

        cac, mrr, gross_margin = await asyncio.gather(
            self.get_cac(organization_id, months),
            self.get_mrr(organization_id),
            self.get_gross_margin(organization_id, start, today),
        )

        payback = self.calculate_payback_period(cac.cac_per_customer, mrr.arpu, gross_margin)
        return PaybackResult(
            payback_months=round_to(payback, 1),
            cac=cac.cac_per_customer,
            monthly_revenue_per_customer=mrr.arpu,
            gross_margin=round_to(gross_margin),
            is_healthy=payback <= BENCHMARK_PAYBACK_MONTHS,
            trend=cac.trend,
        )

    async def get_all_metrics(
        self,
        organization_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        include_benchmarks: bool = True,
    ) -> UnitEconomicsSummary:
        """
        All unit economics metrics with benchmark comparisons.

        The window defaults to the three months before the current month
        through today and drives churn and gross margin.
        """
        end = end_date or self.clock()
        start = start_date or add_months(start_of_month(end), -3)

        cac, ltv, churn, mrr, gross_margin = await asyncio.gather(
            self.get_cac(organization_id, DEFAULT_CAC_MONTHS),
            self.get_ltv(organization_id, DEFAULT_LTV_MONTHS),
            self.get_churn_rate(organization_id, start, end),
            self.get_mrr(organization_id),
            self.get_gross_margin(organization_id, start, end),
        )

        ltv_cac_ratio = safe_divide(ltv.average_ltv, cac.cac_per_customer)
        payback = self.calculate_payback_period(cac.cac_per_customer, mrr.arpu, gross_margin)
        mrr_trend = self.classify_change(mrr.mrr, mrr.previous_mrr, threshold=0.0)

        def benchmarked(metric, value, benchmark, higher_is_better, **extra):
            comparison = None
            if include_benchmarks:
                comparison = self.compare_to_benchmark(value, benchmark, higher_is_better)
            return UnitEconomicsMetric(
                metric=metric,
                value=value,
                unit=METRIC_UNITS[metric],
                benchmark=benchmark if include_benchmarks else None,
                benchmark_comparison=comparison,
                **extra,
            )

        metrics = [
            UnitEconomicsMetric(
                metric=MetricType.CAC, value=cac.cac_per_customer,
                unit=METRIC_UNITS[MetricType.CAC], trend=cac.trend,
            ),
            UnitEconomicsMetric(
                metric=MetricType.LTV, value=ltv.average_ltv, unit=METRIC_UNITS[MetricType.LTV],
            ),
            benchmarked(MetricType.LTV_CAC_RATIO, round_to(ltv_cac_ratio), BENCHMARK_LTV_CAC_RATIO, True),
            benchmarked(MetricType.PAYBACK_PERIOD, round_to(payback, 1), BENCHMARK_PAYBACK_MONTHS, False),
            benchmarked(
                MetricType.CHURN_RATE, round_to(churn.rate), BENCHMARK_CHURN_RATE, False, trend=churn.trend,
            ),
            UnitEconomicsMetric(
                metric=MetricType.MRR, value=mrr.mrr, unit=METRIC_UNITS[MetricType.MRR],
                previous_value=mrr.previous_mrr, change_percent=mrr.mrr_growth, trend=mrr_trend,
            ),
            UnitEconomicsMetric(
                metric=MetricType.ARR, value=mrr.arr, unit=METRIC_UNITS[MetricType.ARR], trend=mrr_trend,
            ),
            UnitEconomicsMetric(
                metric=MetricType.ARPU, value=mrr.arpu, unit=METRIC_UNITS[MetricType.ARPU],
            ),
            benchmarked(MetricType.GROSS_MARGIN, round_to(gross_margin), BENCHMARK_GROSS_MARGIN, True),
        ]

        health_score = self.calculate_overall_health(metrics)

        return UnitEconomicsSummary(
            calculated_at=self.now(),
            start_date=start,
            end_date=end,
            metrics=metrics,
            health_score=health_score,
            overall_health=get_health_status(health_score),
        )

    # ============================================
    # Cohorts
    # ============================================

    async def get_cohort_analysis(
        self,
        organization_id: uuid.UUID,
        period_type: Union[PeriodType, str] = PeriodType.MONTHLY,
        cohort_periods: Optional[int] = None,
        retention_periods: Optional[int] = None,
    ) -> CohortAnalysis:
        """
        Cohort retention matrix for the trailing cohort periods.

        Each cohort is tracked from its acquisition period (0) up to the
        retention limit or the current period, whichever comes first. Cohorts
        without customers are skipped.

        Args:
            organization_id: Organization
            period_type: weekly, monthly or quarterly cohorts
            cohort_periods: Number of trailing cohorts (capped)
            retention_periods: Periods tracked after acquisition

        Returns:
            CohortAnalysis with per-cohort retention and LTV summary
        """
        period_type = PeriodType(period_type)
        if period_type == PeriodType.DAILY:
            raise ValueError("Cohorts support weekly, monthly or quarterly periods")

        cohort_periods = min(
            cohort_periods or self.settings.default_cohort_periods,
            self.settings.max_cohort_periods,
        )
        retention_periods = retention_periods if retention_periods is not None else self.settings.default_cohort_periods

        today = self.clock()
        current_period = period_start_for(today, period_type)
        first_cohort = advance(current_period, period_type, -(cohort_periods - 1))
        window = DateRange(first_cohort, today)

        customers, revenue = await asyncio.gather(
            self.customer_store.find(
                organization_id, CustomerFilter(created_from=window.start, created_to=window.end)
            ),
            self.ledger_store.sum_by_category(
                organization_id, window, REVENUE_ACTUAL_STATUSES, RecordKind.REVENUE, granularity=period_type
            ),
        )

        cohorts = []
        for elapsed in range(cohort_periods - 1, -1, -1):
            cohort_start = advance(current_period, period_type, -elapsed)
            cohort_end = advance(cohort_start, period_type, 1) - timedelta(days=1)
            members = [c for c in customers if cohort_start <= c.created_at <= cohort_end]
            if not members:
                continue

            member_ids = {c.customer_id for c in members}
            member_revenue = [a for a in revenue if a.customer_ref in member_ids]
            size = len(members)

            retention = []
            initial_revenue = Decimal("0")
            cumulative_revenue = Decimal("0")
            for period_number in range(min(retention_periods, elapsed) + 1):
                period_start = advance(cohort_start, period_type, period_number)
                period_end = advance(cohort_start, period_type, period_number + 1) - timedelta(days=1)

                active = sum(1 for c in members if self.is_active_in_period(c, period_start, period_end))
                period_revenue = sum_decimals(
                    a.amount for a in member_revenue if period_start <= a.period_start <= period_end
                )
                if period_number == 0:
                    initial_revenue = period_revenue
                cumulative_revenue += period_revenue

                retention.append(CohortRetention(
                    period_number=period_number,
                    active_customers=active,
                    retention_rate=round_to(safe_percent(active, size)),
                    revenue=round_currency(period_revenue),
                    average_revenue_per_customer=round_currency(safe_divide(period_revenue, active)),
                ))

            cohorts.append(Cohort(
                cohort_id=self.cohort_id_for(cohort_start, period_type),
                cohort_period=cohort_start,
                period_type=period_type,
                customer_count=size,
                initial_revenue=round_currency(initial_revenue),
                retention=retention,
                cumulative_revenue=round_currency(cumulative_revenue),
                average_ltv=round_currency(safe_divide(cumulative_revenue, size)),
            ))

        logger.debug(
            "Cohort analysis for org %s: %d %s cohorts from %s",
            organization_id, len(cohorts), period_type.value, first_cohort,
        )

        rates_by_period: dict[int, list[float]] = defaultdict(list)
        for cohort in cohorts:
            for entry in cohort.retention:
                rates_by_period[entry.period_number].append(entry.retention_rate)

        ltv_values = [c.average_ltv for c in cohorts if c.average_ltv > 0]
        ranked = sorted((c for c in cohorts if c.average_ltv > 0), key=lambda c: c.average_ltv, reverse=True)

        return CohortAnalysis(
            period_type=period_type,
            cohorts=cohorts,
            average_retention_by_period=[
                RetentionByPeriod(period=period, rate=round_to(mean(rates)))
                for period, rates in sorted(rates_by_period.items())
            ],
            average_ltv=round_currency(mean(ltv_values)) if ltv_values else 0.0,
            median_ltv=round_currency(median(ltv_values)) if ltv_values else 0.0,
            best_cohort=CohortHighlight(period=ranked[0].cohort_period, ltv=ranked[0].average_ltv) if ranked else None,
            worst_cohort=CohortHighlight(period=ranked[-1].cohort_period, ltv=ranked[-1].average_ltv) if ranked else None,
        )
