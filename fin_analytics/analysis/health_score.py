"""
Financial Health Score

Combines seven category scores into a weighted 0-100 score:
- Runway (25)
- Burn rate (15)
- Revenue growth (20)
- Gross margin (15)
- Liquidity (10)
- Efficiency (10)
- Unit economics (5)

Every calculation is appended to the snapshot history; snapshots are never
updated in place.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from fin_analytics import __version__
from fin_analytics.analysis.constants import (
    BENCHMARK_CASH_RATIO,
    BENCHMARK_EFFICIENCY_RATIO,
    BENCHMARK_GROSS_MARGIN,
    BENCHMARK_REVENUE_GROWTH,
    BENCHMARK_RUNWAY_MONTHS,
    BREAKDOWN_PREVIOUS_MIN_AGE_DAYS,
    BURN_DIRECTION_SCORES,
    CASH_RATIO_SCORE_BANDS,
    CASH_RATIO_SCORE_FLOOR,
    DAYS_PER_MONTH,
    EFFICIENCY_SCORE_BANDS,
    EFFICIENCY_SCORE_FLOOR,
    EXPENSE_ACTUAL_STATUSES,
    GROSS_MARGIN_SCORE_BANDS,
    GROSS_MARGIN_SCORE_FLOOR,
    HEALTH_TREND_MONTHS,
    HEALTH_WEIGHTS,
    MAX_TOP_RECOMMENDATIONS,
    METRIC_UNITS,
    NEUTRAL_SCORE,
    PREVIOUS_SCORE_MIN_AGE_DAYS,
    PRIORITY_ORDER,
    REVENUE_ACTUAL_STATUSES,
    REVENUE_GROWTH_SCORE_BANDS,
    REVENUE_GROWTH_SCORE_FLOOR,
    RUNWAY_SCORE_BANDS,
    RUNWAY_SCORE_FLOOR,
    BenchmarkComparison,
    HealthCategory,
    HealthStatus,
    MetricType,
    RecommendationCategory,
    RecommendationPriority,
    TrendDirection,
    TrendType,
    get_health_status,
)
from fin_analytics.analysis.periods import DateRange, add_months, start_of_month
from fin_analytics.analysis.records import RecordKind
from fin_analytics.analysis.schemas import (
    BreakdownFactors,
    CategoryScoreEntry,
    HealthCategoryScore,
    HealthMetricDetail,
    HealthScoreBreakdown,
    HealthScoreHistory,
    HealthScoreResult,
    Recommendation,
)
from fin_analytics.analysis.stores import BankStore, LedgerStore, RunwayStore
from fin_analytics.analysis.trends import TrendAnalyzer
from fin_analytics.analysis.unit_economics import UnitEconomicsEngine
from fin_analytics.analysis.utils import clamp_score, round_to, safe_divide, sum_decimals
from fin_analytics.config import Settings, get_settings
from fin_analytics.models import HealthScoreSnapshot
from fin_analytics.services.health_score_repository import HealthScoreRepository

logger = logging.getLogger(__name__)

LOWER_IS_BETTER_METRICS = frozenset({MetricType.PAYBACK_PERIOD, MetricType.CHURN_RATE})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def score_from_bands(value: float, bands: tuple, floor: float) -> float:
    """First band score whose minimum the value reaches, else the floor."""
    for minimum, score in bands:
        if value >= minimum:
            return float(score)
    return float(floor)


class HealthScoreComposer:
    """
    Calculates the composite financial health score for an organization.

    Category scorers are independent and run concurrently. Only the unit
    economics scorer recovers from failures (neutral score); any other
    failure propagates.
    """

    def __init__(
        self,
        trend_analyzer: TrendAnalyzer,
        unit_economics: UnitEconomicsEngine,
        ledger_store: LedgerStore,
        bank_store: BankStore,
        repository: HealthScoreRepository,
        runway_store: Optional[RunwayStore] = None,
        clock: Callable[[], date] = date.today,
        now: Callable[[], datetime] = _utc_now,
        settings: Optional[Settings] = None,
    ):
        self.trend_analyzer = trend_analyzer
        self.unit_economics = unit_economics
        self.ledger_store = ledger_store
        self.bank_store = bank_store
        self.repository = repository
        self.runway_store = runway_store
        self.clock = clock
        self.now = now
        self.settings = settings or get_settings()

    # ============================================
    # Composition
    # ============================================

    @staticmethod
    def build_category(
        category: HealthCategory,
        score: float,
        metrics: Optional[list[HealthMetricDetail]] = None,
        recommendations: Optional[list[Recommendation]] = None,
    ) -> HealthCategoryScore:
        """Category score with its fixed weight and status."""
        score = clamp_score(score)
        weight = HEALTH_WEIGHTS[category]
        return HealthCategoryScore(
            category=category,
            score=round_to(score, 1),
            weight=weight,
            weighted_score=round_to(score * weight / 100),
            status=get_health_status(score),
            metrics=metrics or [],
            recommendations=recommendations or [],
        )

    @staticmethod
    def calculate_overall_score(categories: list[HealthCategoryScore]) -> float:
        """Sum of score * weight / 100 over categories."""
        return clamp_score(sum(c.score * c.weight / 100 for c in categories))

    @staticmethod
    def select_top_recommendations(
        categories: list[HealthCategoryScore],
        limit: int = MAX_TOP_RECOMMENDATIONS,
    ) -> list[Recommendation]:
        """Pool recommendations and keep the highest-priority ones, preserving category order within a priority."""
        pooled = [rec for category in categories for rec in category.recommendations]
        pooled.sort(key=lambda rec: PRIORITY_ORDER[rec.priority])
        return pooled[:limit]

    async def _score_all_categories(self, organization_id: uuid.UUID) -> list[HealthCategoryScore]:
        categories = await asyncio.gather(
            self._score_runway(organization_id),
            self._score_burn_rate(organization_id),
            self._score_revenue_growth(organization_id),
            self._score_gross_margin(organization_id),
            self._score_liquidity(organization_id),
            self._score_efficiency(organization_id),
            self._score_unit_economics(organization_id),
        )
        return list(categories)

    async def calculate_health_score(
        self,
        organization_id: uuid.UUID,
        include_history: bool = False,
        history_months: Optional[int] = None,
    ) -> HealthScoreResult:
        """
        Calculate, persist and return the health score.

        Args:
            organization_id: Organization
            include_history: Attach recent snapshots to the result
            history_months: History lookback in months

        Returns:
            HealthScoreResult including previous score from the latest
            snapshot at least a day old
        """
        calculated_at = self.now()
        categories = await self._score_all_categories(organization_id)

        overall_score = self.calculate_overall_score(categories)
        overall_status = get_health_status(overall_score)
        top_recommendations = self.select_top_recommendations(categories)

        previous = await self.repository.find_previous(
            organization_id, calculated_at - timedelta(days=PREVIOUS_SCORE_MIN_AGE_DAYS)
        )
        previous_score = previous.overall_score if previous is not None else None
        score_change = None
        if previous_score is not None:
            score_change = round_to(overall_score - previous_score, 1)

        await self.repository.add(HealthScoreSnapshot(
            organization_id=organization_id,
            calculated_at=calculated_at,
            overall_score=round_to(overall_score, 1),
            overall_status=overall_status.value,
            category_scores=[
                {
                    "category": c.category.value,
                    "score": c.score,
                    "weight": c.weight,
                    "weighted_score": c.weighted_score,
                    "status": c.status.value,
                }
                for c in categories
            ],
            recommendations=[rec.model_dump(mode="json") for rec in top_recommendations],
            calculation_metadata={
                "engine_version": __version__,
                "trend_months": HEALTH_TREND_MONTHS,
            },
        ))

        logger.info(
            "Health score for org %s: %.1f (%s), previous %s",
            organization_id, overall_score, overall_status.value, previous_score,
        )

        historical_scores = None
        if include_history:
            historical_scores = await self.get_history(
                organization_id, months=history_months or self.settings.health_history_months
            )

        return HealthScoreResult(
            calculated_at=calculated_at,
            overall_score=round_to(overall_score, 1),
            overall_status=overall_status,
            previous_score=previous_score,
            score_change=score_change,
            categories=categories,
            top_recommendations=top_recommendations,
            historical_scores=historical_scores,
        )

    async def get_history(
        self,
        organization_id: uuid.UUID,
        months: int = 12,
        limit: Optional[int] = None,
    ) -> list[HealthScoreHistory]:
        """Persisted scores from the last `months` months, newest first."""
        since = self.now() - timedelta(days=months * DAYS_PER_MONTH)
        snapshots = await self.repository.find_history(
            organization_id, since, limit or self.settings.health_history_limit
        )
        return [
            HealthScoreHistory(
                date=snapshot.calculated_at,
                overall_score=snapshot.overall_score,
                status=HealthStatus(snapshot.overall_status),
                category_scores=[
                    CategoryScoreEntry(category=entry["category"], score=entry["score"])
                    for entry in snapshot.category_scores or []
                ],
            )
            for snapshot in snapshots
        ]

    async def get_category_breakdown(
        self,
        organization_id: uuid.UUID,
        category: Optional[HealthCategory] = None,
    ) -> list[HealthScoreBreakdown]:
        """
        Current category scores against a snapshot at least a week old.

        Factors list metrics meeting or missing their benchmark and metrics
        trending in a favourable or unfavourable direction.
        """
        categories, previous = await asyncio.gather(
            self._score_all_categories(organization_id),
            self.repository.find_previous(
                organization_id, self.now() - timedelta(days=BREAKDOWN_PREVIOUS_MIN_AGE_DAYS)
            ),
        )
        if category is not None:
            category = HealthCategory(category)
            categories = [c for c in categories if c.category == category]

        breakdowns = []
        for current in categories:
            previous_score = previous.category_score(current.category.value) if previous is not None else None
            change = None
            if previous_score is not None:
                change = round_to(current.score - previous_score, 1)

            breakdowns.append(HealthScoreBreakdown(
                category=current.category,
                current_score=current.score,
                previous_score=previous_score,
                change=change,
                status=current.status,
                factors=self.describe_factors(current.metrics),
            ))
        return breakdowns

    @staticmethod
    def describe_factors(metrics: list[HealthMetricDetail]) -> BreakdownFactors:
        """Positive and negative drivers from benchmarks and trends."""
        factors = BreakdownFactors()
        for metric in metrics:
            if metric.benchmark is not None:
                if metric.higher_is_better:
                    meets = metric.value >= metric.benchmark
                else:
                    meets = metric.value <= metric.benchmark
                if meets:
                    factors.positive.append(f"{metric.name} is at or above benchmark")
                else:
                    factors.negative.append(f"{metric.name} is below benchmark")

            if metric.trend == TrendDirection.INCREASING:
                target = factors.positive if metric.higher_is_better else factors.negative
                target.append(f"{metric.name} is trending upward")
            elif metric.trend == TrendDirection.DECREASING:
                target = factors.negative if metric.higher_is_better else factors.positive
                target.append(f"{metric.name} is trending downward")
        return factors

    # ============================================
    # Shared reads
    # ============================================

    def _last_full_month(self) -> DateRange:
        current_month = start_of_month(self.clock())
        return DateRange(add_months(current_month, -1), current_month - timedelta(days=1))

    async def _last_month_total(self, organization_id: uuid.UUID, record_kind: RecordKind) -> Decimal:
        statuses = EXPENSE_ACTUAL_STATUSES if record_kind == RecordKind.EXPENSE else REVENUE_ACTUAL_STATUSES
        aggregates = await self.ledger_store.sum_by_category(
            organization_id, self._last_full_month(), statuses, record_kind
        )
        return sum_decimals(a.amount for a in aggregates)

    # ============================================
    # Category scorers
    # ============================================

    async def _score_runway(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        runway_months = None
        if self.runway_store is not None:
            runway_months = await self.runway_store.latest_runway_months(organization_id)

        if runway_months is None:
            logger.debug("No runway data for org %s, using neutral score", organization_id)
            return self.build_category(HealthCategory.RUNWAY, NEUTRAL_SCORE)

        score = score_from_bands(runway_months, RUNWAY_SCORE_BANDS, RUNWAY_SCORE_FLOOR)
        metrics = [HealthMetricDetail(
            name="Runway Months",
            value=round_to(runway_months, 1),
            unit="months",
            benchmark=BENCHMARK_RUNWAY_MONTHS,
            score=score,
            trend=TrendDirection.STABLE,
            description="Months of runway based on current burn rate",
        )]

        recommendations = []
        if runway_months < 12:
            recommendations.append(Recommendation(
                category=RecommendationCategory.CASH_MANAGEMENT,
                priority=RecommendationPriority.HIGH if runway_months < 6 else RecommendationPriority.MEDIUM,
                title="Extend Runway",
                description=(
                    f"Current runway of {round_to(runway_months, 1)} months is below the "
                    f"recommended 12-18 months."
                ),
                potential_impact="Reduce risk of running out of cash",
                action_items=[
                    "Review and reduce non-essential expenses",
                    "Accelerate revenue collection",
                    "Consider raising additional funding",
                ],
            ))

        return self.build_category(HealthCategory.RUNWAY, score, metrics, recommendations)

    async def _score_burn_rate(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        trend = await self.trend_analyzer.get_trend(
            organization_id, TrendType.BURN_RATE, months=HEALTH_TREND_MONTHS
        )
        score = float(BURN_DIRECTION_SCORES[trend.direction])

        metrics = [HealthMetricDetail(
            name="Monthly Burn Rate",
            value=trend.average_value,
            unit="currency",
            score=score,
            trend=trend.direction,
            description="Average monthly net cash outflow",
            higher_is_better=False,
        )]

        recommendations = []
        if trend.direction == TrendDirection.INCREASING:
            recommendations.append(Recommendation(
                category=RecommendationCategory.COST_REDUCTION,
                priority=RecommendationPriority.HIGH,
                title="Address Increasing Burn Rate",
                description="Burn rate is increasing. Review expense categories to identify areas for optimization.",
                potential_impact="Extend runway",
                action_items=[
                    "Audit vendor contracts for renegotiation opportunities",
                    "Review headcount growth vs revenue growth",
                    "Identify and eliminate redundant tools/services",
                ],
            ))

        return self.build_category(HealthCategory.BURN_RATE, score, metrics, recommendations)

    async def _score_revenue_growth(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        trend = await self.trend_analyzer.get_trend(
            organization_id, TrendType.REVENUE, months=HEALTH_TREND_MONTHS
        )
        growth = trend.growth_rate
        score = score_from_bands(growth, REVENUE_GROWTH_SCORE_BANDS, REVENUE_GROWTH_SCORE_FLOOR)

        metrics = [HealthMetricDetail(
            name="Monthly Revenue Growth",
            value=growth,
            unit="%",
            benchmark=BENCHMARK_REVENUE_GROWTH,
            score=score,
            trend=trend.direction,
            description="Compound monthly growth rate of revenue",
        )]

        recommendations = []
        if growth < 5:
            recommendations.append(Recommendation(
                category=RecommendationCategory.REVENUE_GROWTH,
                priority=RecommendationPriority.HIGH if growth < 0 else RecommendationPriority.MEDIUM,
                title="Accelerate Revenue Growth",
                description=f"Current growth rate of {growth:.1f}% is below healthy levels.",
                potential_impact="Improve growth trajectory",
                action_items=[
                    "Review and optimize sales funnel conversion",
                    "Identify upsell opportunities with existing customers",
                    "Evaluate pricing strategy",
                ],
            ))

        return self.build_category(HealthCategory.REVENUE_GROWTH, score, metrics, recommendations)

    async def _score_gross_margin(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        trend = await self.trend_analyzer.get_trend(
            organization_id, TrendType.GROSS_MARGIN, months=HEALTH_TREND_MONTHS
        )
        gross_margin = trend.average_value
        score = score_from_bands(gross_margin, GROSS_MARGIN_SCORE_BANDS, GROSS_MARGIN_SCORE_FLOOR)

        metrics = [HealthMetricDetail(
            name="Gross Margin",
            value=gross_margin,
            unit="%",
            benchmark=BENCHMARK_GROSS_MARGIN,
            score=score,
            trend=trend.direction,
            description="Revenue minus cost of goods sold as percentage of revenue",
        )]

        recommendations = []
        if gross_margin < 70:
            recommendations.append(Recommendation(
                category=RecommendationCategory.OPERATIONAL_EFFICIENCY,
                priority=RecommendationPriority.HIGH if gross_margin < 50 else RecommendationPriority.MEDIUM,
                title="Improve Gross Margin",
                description=f"Gross margin of {gross_margin:.1f}% is below industry benchmark of 70%.",
                potential_impact="Increase profitability per sale",
                action_items=[
                    "Review infrastructure costs for optimization",
                    "Evaluate pricing to improve margins",
                    "Automate manual processes to reduce COGS",
                ],
            ))

        return self.build_category(HealthCategory.GROSS_MARGIN, score, metrics, recommendations)

    async def _score_liquidity(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        balance, expenses = await asyncio.gather(
            self.bank_store.current_balance(organization_id),
            self._last_month_total(organization_id, RecordKind.EXPENSE),
        )
        # No spend last month: compare against a unit denominator
        cash_ratio = safe_divide(balance, expenses or 1)
        score = score_from_bands(cash_ratio, CASH_RATIO_SCORE_BANDS, CASH_RATIO_SCORE_FLOOR)

        metrics = [HealthMetricDetail(
            name="Cash Ratio",
            value=round_to(cash_ratio, 1),
            unit="months",
            benchmark=BENCHMARK_CASH_RATIO,
            score=score,
            description="Cash balance divided by monthly expenses",
        )]

        recommendations = []
        if cash_ratio < 3:
            recommendations.append(Recommendation(
                category=RecommendationCategory.CASH_MANAGEMENT,
                priority=RecommendationPriority.HIGH,
                title="Improve Liquidity",
                description=f"Cash reserves of {cash_ratio:.1f} months of expenses is critically low.",
                potential_impact="Reduce short-term cash risk",
                action_items=[
                    "Accelerate accounts receivable collection",
                    "Negotiate extended payment terms with vendors",
                    "Consider bridge financing options",
                ],
            ))

        return self.build_category(HealthCategory.LIQUIDITY, score, metrics, recommendations)

    async def _score_efficiency(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        revenue, expenses = await asyncio.gather(
            self._last_month_total(organization_id, RecordKind.REVENUE),
            self._last_month_total(organization_id, RecordKind.EXPENSE),
        )
        efficiency_ratio = safe_divide(revenue, expenses or 1)
        score = score_from_bands(efficiency_ratio, EFFICIENCY_SCORE_BANDS, EFFICIENCY_SCORE_FLOOR)

        metrics = [HealthMetricDetail(
            name="Efficiency Ratio",
            value=round_to(efficiency_ratio),
            unit="ratio",
            benchmark=BENCHMARK_EFFICIENCY_RATIO,
            score=score,
            description="Revenue divided by total expenses",
        )]

        recommendations = []
        if efficiency_ratio < 1:
            recommendations.append(Recommendation(
                category=RecommendationCategory.OPERATIONAL_EFFICIENCY,
                priority=RecommendationPriority.HIGH if efficiency_ratio < 0.5 else RecommendationPriority.MEDIUM,
                title="Improve Operational Efficiency",
                description=f"Spending more than earning. Revenue/expense ratio of {efficiency_ratio:.2f}.",
                potential_impact="Move toward profitability",
                action_items=[
                    "Review all expense categories for optimization",
                    "Identify and eliminate low-ROI activities",
                    "Automate repetitive processes",
                ],
            ))

        return self.build_category(HealthCategory.EFFICIENCY, score, metrics, recommendations)

    async def _score_unit_economics(self, organization_id: uuid.UUID) -> HealthCategoryScore:
        try:
            summary = await self.unit_economics.get_all_metrics(organization_id)
        except Exception as e:
            logger.error(
                "Unit economics scoring failed for org %s, using neutral score: %s",
                organization_id, e, exc_info=True,
            )
            return self.build_category(HealthCategory.UNIT_ECONOMICS, NEUTRAL_SCORE)

        compared = [m for m in summary.metrics if m.benchmark_comparison is not None]
        above = [m for m in compared if m.benchmark_comparison == BenchmarkComparison.ABOVE]
        below = [m for m in compared if m.benchmark_comparison == BenchmarkComparison.BELOW]
        score = NEUTRAL_SCORE + 10 * len(above) - 10 * len(below)

        metric_scores = {
            BenchmarkComparison.ABOVE: 80.0,
            BenchmarkComparison.AT: 70.0,
            BenchmarkComparison.BELOW: 50.0,
        }
        metrics = [
            HealthMetricDetail(
                name=m.metric.value.upper().replace("_", " "),
                value=m.value,
                unit=METRIC_UNITS[m.metric],
                benchmark=m.benchmark,
                score=metric_scores[m.benchmark_comparison],
                trend=m.trend,
                higher_is_better=m.metric not in LOWER_IS_BETTER_METRICS,
            )
            for m in compared
        ]

        recommendations = []
        if below:
            names = ", ".join(m.metric.value.upper().replace("_", " ") for m in below)
            recommendations.append(Recommendation(
                category=RecommendationCategory.REVENUE_GROWTH,
                priority=RecommendationPriority.HIGH if len(below) > 2 else RecommendationPriority.MEDIUM,
                title="Improve Unit Economics",
                description=f"The following metrics are below benchmark: {names}",
                potential_impact="Build a more sustainable growth engine",
                action_items=[
                    "Review customer acquisition channels for efficiency",
                    "Analyze churn causes and implement retention programs",
                    "Optimize pricing and packaging",
                ],
            ))

        return self.build_category(HealthCategory.UNIT_ECONOMICS, score, metrics, recommendations)
