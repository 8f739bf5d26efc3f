"""
Analysis Schemas
Pydantic models for analysis results returned to the HTTP layer.

Money fields are floats rounded to cents; percentages are rounded to two places.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fin_analytics.analysis.constants import (
    BenchmarkComparison,
    HealthCategory,
    HealthStatus,
    MetricType,
    PeriodType,
    RecommendationCategory,
    RecommendationPriority,
    TrendDirection,
    TrendType,
    VariancePeriod,
    VarianceStatus,
    VarianceType,
)


# ============================================
# Variance
# ============================================

class VarianceItem(BaseModel):
    """Planned vs actual for one plan line item."""

    category: str = Field(..., description="Plan category")
    subcategory: Optional[str] = Field(None, description="Plan subcategory or department")
    account_ref: Optional[str] = Field(None, description="Ledger account reference")
    name: str = Field(..., description="Line item name")
    planned: float = Field(..., description="Planned amount for the window")
    actual: float = Field(..., description="Actual amount for the window")
    variance: float = Field(..., description="actual - planned")
    variance_percent: float = Field(..., description="variance / planned * 100 (0 when planned is 0)")
    status: VarianceStatus = Field(..., description="favorable, unfavorable or on_target")


class CategoryVariance(BaseModel):
    """Variance rolled up by category from summed amounts."""

    category: str = Field(..., description="Plan category")
    planned: float = Field(..., description="Summed planned amount")
    actual: float = Field(..., description="Summed actual amount")
    variance: float = Field(..., description="actual - planned")
    variance_percent: float = Field(..., description="variance / planned * 100")
    status: VarianceStatus = Field(..., description="Directional status of the category")
    item_count: int = Field(..., description="Number of plan items in the category")


class VarianceReport(BaseModel):
    """Budget or revenue variance report."""

    type: VarianceType = Field(..., description="Plan kind compared")
    period: VariancePeriod = Field(..., description="Named reporting period")
    start_date: date = Field(..., description="Window start")
    end_date: date = Field(..., description="Window end")
    fiscal_year: int = Field(..., description="Plan fiscal year")
    total_planned: float = Field(..., description="Total planned")
    total_actual: float = Field(..., description="Total actual")
    total_variance: float = Field(..., description="Total actual - total planned")
    total_variance_percent: float = Field(..., description="Total variance as percent of plan")
    overall_status: VarianceStatus = Field(..., description="Status of the totals")
    items: list[VarianceItem] = Field(default_factory=list, description="Per-item variance")
    by_category: list[CategoryVariance] = Field(default_factory=list, description="Per-category variance")


class MonthlyVariance(BaseModel):
    """One month of a fiscal-year variance breakdown with running totals."""

    month: date = Field(..., description="First day of the month")
    planned: float = Field(..., description="Planned for the month")
    actual: float = Field(..., description="Actual for the month")
    variance: float = Field(..., description="actual - planned")
    variance_percent: float = Field(..., description="variance / planned * 100")
    status: VarianceStatus = Field(..., description="Status for the month")
    cumulative_planned: float = Field(..., description="Fiscal-year-to-date planned")
    cumulative_actual: float = Field(..., description="Fiscal-year-to-date actual")
    cumulative_variance: float = Field(..., description="Fiscal-year-to-date variance")


class DepartmentHeadcountVariance(BaseModel):
    """Headcount and cost variance for a department."""

    department: str
    planned_headcount: int
    actual_headcount: int
    headcount_variance: int
    planned_cost: float
    actual_cost: float
    cost_variance: float
    cost_variance_percent: float
    status: VarianceStatus


class LevelHeadcountVariance(BaseModel):
    """Headcount variance for a job level."""

    level: str
    planned_headcount: int
    actual_headcount: int
    headcount_variance: int


class HeadcountVarianceReport(BaseModel):
    """Headcount plan vs filled roles and payroll spend."""

    type: VarianceType = Field(VarianceType.HEADCOUNT, description="Always headcount")
    period: VariancePeriod
    start_date: date
    end_date: date
    fiscal_year: int
    planned_headcount: int
    actual_headcount: int
    headcount_variance: int
    planned_cost: float
    actual_cost: float
    cost_variance: float
    cost_variance_percent: float
    overall_status: VarianceStatus
    by_department: list[DepartmentHeadcountVariance] = Field(default_factory=list)
    by_level: list[LevelHeadcountVariance] = Field(default_factory=list)


# ============================================
# Trends
# ============================================

class TrendDataPoint(BaseModel):
    """Value of a metric for one period."""

    period: date = Field(..., description="Period start")
    value: float = Field(..., description="Raw metric value")
    previous_value: Optional[float] = Field(None, description="Value of the preceding period")
    change_percent: Optional[float] = Field(None, description="Change vs preceding period, percent")
    moving_average: Optional[float] = Field(None, description="Trailing simple moving average")


class TrendAnalysis(BaseModel):
    """Per-period series with summary statistics and direction."""

    type: TrendType = Field(..., description="Metric analysed")
    period_type: PeriodType = Field(..., description="Series granularity")
    start_date: date = Field(..., description="Window start")
    end_date: date = Field(..., description="Window end")
    data_points: list[TrendDataPoint] = Field(default_factory=list, description="One point per period")
    direction: TrendDirection = Field(..., description="increasing, decreasing, stable or volatile")
    average_value: float = Field(..., description="Mean of raw values")
    min_value: float = Field(..., description="Minimum raw value")
    max_value: float = Field(..., description="Maximum raw value")
    total_change: float = Field(..., description="last - first")
    total_change_percent: float = Field(..., description="total_change / first * 100")
    volatility: float = Field(..., description="Coefficient of variation, percent")
    growth_rate: float = Field(..., description="Compound per-period growth, percent")

    @property
    def values(self) -> list[float]:
        return [point.value for point in self.data_points]


class TrendCorrelation(BaseModel):
    """Pearson correlation between two trend series."""

    type1: TrendType
    type2: TrendType
    correlation_coefficient: float = Field(..., description="Pearson r rounded to 3 places")
    interpretation: str = Field(..., description="Qualitative label")


class MultipleTrendAnalysis(BaseModel):
    """Several trends over the same window."""

    trends: list[TrendAnalysis] = Field(default_factory=list)
    correlations: Optional[list[TrendCorrelation]] = Field(None, description="Pairwise correlations")


class TrendComparison(BaseModel):
    """Most recent N periods vs the N periods before them."""

    current_period: TrendAnalysis
    previous_period: TrendAnalysis
    period_over_period_change: float = Field(..., description="Difference of average values")
    period_over_period_percent: float = Field(..., description="Change as percent of previous average")


# ============================================
# Unit Economics
# ============================================

class UnitEconomicsMetric(BaseModel):
    """One unit economics metric with optional benchmark comparison."""

    metric: MetricType
    value: float
    unit: str = ""
    benchmark: Optional[float] = None
    benchmark_comparison: Optional[BenchmarkComparison] = None
    previous_value: Optional[float] = None
    change_percent: Optional[float] = None
    trend: TrendDirection = TrendDirection.STABLE


class UnitEconomicsSummary(BaseModel):
    """All unit economics metrics for a window."""

    calculated_at: datetime
    start_date: date
    end_date: date
    metrics: list[UnitEconomicsMetric] = Field(default_factory=list)
    health_score: float = Field(..., description="Banded unit economics score (0-100)")
    overall_health: HealthStatus

    def get(self, metric: MetricType) -> Optional[UnitEconomicsMetric]:
        """Metric entry by type, or None."""
        for entry in self.metrics:
            if entry.metric == metric:
                return entry
        return None


class CACComponents(BaseModel):
    """Acquisition spend split."""

    marketing: float
    sales: float
    other: float


class CACBreakdown(BaseModel):
    """Customer acquisition cost over a trailing window."""

    total_cac: float = Field(..., description="Acquisition spend in the window")
    components: CACComponents
    customer_count: int = Field(..., description="New active customers in the window")
    cac_per_customer: float
    trend: TrendDirection
    start_date: date
    end_date: date


class LTVBreakdown(BaseModel):
    """Customer lifetime value."""

    average_ltv: float
    average_lifespan_months: float
    average_monthly_revenue: float
    churn_rate: float
    gross_margin: float


class ChurnResult(BaseModel):
    """Churn over a window."""

    rate: float = Field(..., description="Churned / active at start * 100")
    churned_customers: int
    customers_at_start: int
    trend: TrendDirection = TrendDirection.STABLE


class MRRResult(BaseModel):
    """Recurring revenue snapshot."""

    mrr: float
    arr: float
    arpu: float
    previous_mrr: float = Field(..., description="Subscription revenue received last month")
    mrr_growth: float = Field(..., description="Percent change vs previous_mrr")
    active_customers: int


class PaybackResult(BaseModel):
    """CAC payback period."""

    payback_months: float = Field(..., description="Months to recover CAC; 999 when never")
    cac: float
    monthly_revenue_per_customer: float
    gross_margin: float
    is_healthy: bool
    trend: TrendDirection


class CohortRetention(BaseModel):
    """Retention of a cohort in one period after acquisition."""

    period_number: int = Field(..., description="0 = acquisition period")
    active_customers: int
    retention_rate: float = Field(..., description="active / cohort size * 100")
    revenue: float
    average_revenue_per_customer: float


class Cohort(BaseModel):
    """Customers acquired in the same period."""

    cohort_id: str
    cohort_period: date
    period_type: PeriodType
    customer_count: int
    initial_revenue: float
    retention: list[CohortRetention] = Field(default_factory=list)
    cumulative_revenue: float
    average_ltv: float


class RetentionByPeriod(BaseModel):
    """Average retention rate across cohorts for a period number."""

    period: int
    rate: float


class CohortHighlight(BaseModel):
    """Best or worst cohort by average LTV."""

    period: date
    ltv: float


class CohortAnalysis(BaseModel):
    """Cohort retention matrix and LTV summary."""

    period_type: PeriodType
    cohorts: list[Cohort] = Field(default_factory=list)
    average_retention_by_period: list[RetentionByPeriod] = Field(default_factory=list)
    average_ltv: float = 0.0
    median_ltv: float = 0.0
    best_cohort: Optional[CohortHighlight] = None
    worst_cohort: Optional[CohortHighlight] = None


# ============================================
# Health Score
# ============================================

class HealthMetricDetail(BaseModel):
    """A metric feeding a health category."""

    model_config = ConfigDict(extra="allow")

    name: str
    value: float
    unit: str
    benchmark: Optional[float] = None
    score: float
    trend: TrendDirection = TrendDirection.STABLE
    description: Optional[str] = None
    higher_is_better: bool = True


class Recommendation(BaseModel):
    """Actionable recommendation."""

    category: RecommendationCategory
    priority: RecommendationPriority
    title: str
    description: str
    potential_impact: Optional[str] = None
    action_items: list[str] = Field(default_factory=list)


class HealthCategoryScore(BaseModel):
    """Score of one health category."""

    category: HealthCategory
    score: float = Field(..., description="0-100")
    weight: int = Field(..., description="Fixed weight, percent")
    weighted_score: float = Field(..., description="score * weight / 100")
    status: HealthStatus
    metrics: list[HealthMetricDetail] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class CategoryScoreEntry(BaseModel):
    """Category score recorded in history."""

    category: HealthCategory
    score: float


class HealthScoreHistory(BaseModel):
    """A persisted health score."""

    date: datetime
    overall_score: float
    status: HealthStatus
    category_scores: list[CategoryScoreEntry] = Field(default_factory=list)


class HealthScoreResult(BaseModel):
    """Composite financial health score."""

    calculated_at: datetime
    overall_score: float = Field(..., description="Weighted sum of category scores, 0-100")
    overall_status: HealthStatus
    previous_score: Optional[float] = Field(None, description="Score of the latest snapshot at least a day old")
    score_change: Optional[float] = None
    categories: list[HealthCategoryScore] = Field(default_factory=list)
    top_recommendations: list[Recommendation] = Field(default_factory=list)
    historical_scores: Optional[list[HealthScoreHistory]] = None


class BreakdownFactors(BaseModel):
    """Positive and negative drivers of a category."""

    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)


class HealthScoreBreakdown(BaseModel):
    """Category score compared with a week-old snapshot."""

    category: HealthCategory
    current_score: float
    previous_score: Optional[float] = None
    change: Optional[float] = None
    status: HealthStatus
    factors: BreakdownFactors
