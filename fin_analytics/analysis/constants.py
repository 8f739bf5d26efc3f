"""
Analysis Constants
Enums and named business thresholds shared by the analyzers.

The thresholds here are load-bearing business rules; changing any of them
changes reported statuses and scores.
"""

from enum import Enum


# ============================================
# Variance
# ============================================

class VarianceType(str, Enum):
    """Kind of plan a variance report compares against."""
    BUDGET = "budget"
    REVENUE = "revenue"
    HEADCOUNT = "headcount"
    EXPENSE = "expense"


class VarianceStatus(str, Enum):
    """Directional classification of a variance."""
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    ON_TARGET = "on_target"


class PlanKind(str, Enum):
    """Plan kinds served by the plan store."""
    BUDGET = "budget"
    REVENUE = "revenue"
    HEADCOUNT = "headcount"


ON_TARGET_THRESHOLD = 0.05  # |variance| <= 5% of plan is on target

EXPENSE_ACTUAL_STATUSES = frozenset({"approved", "paid"})
REVENUE_ACTUAL_STATUSES = frozenset({"received"})
PAYROLL_CATEGORIES = frozenset({"payroll", "salaries", "wages", "compensation"})
FILLED_ROLE_STATUS = "filled"


# ============================================
# Periods and Trends
# ============================================

class PeriodType(str, Enum):
    """Granularity of generated period boundaries."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class VariancePeriod(str, Enum):
    """Named reporting windows."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    YTD = "ytd"
    CUSTOM = "custom"


class TrendType(str, Enum):
    """Metrics a trend series can be built for."""
    EXPENSE = "expense"
    REVENUE = "revenue"
    BURN_RATE = "burn_rate"
    HEADCOUNT = "headcount"
    CASH_BALANCE = "cash_balance"
    NET_INCOME = "net_income"
    GROSS_MARGIN = "gross_margin"


class TrendDirection(str, Enum):
    """Overall direction of a series."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"


VOLATILITY_THRESHOLD = 30.0  # coefficient of variation, percent
DIRECTION_THRESHOLD = 5.0  # half-over-half change, percent
CAC_TREND_THRESHOLD = 10.0  # window-over-window change, percent

COGS_CATEGORIES = frozenset({"cogs", "cost_of_goods", "cost_of_sales", "direct_costs"})

# Correlation labels, checked top to bottom against the coefficient
CORRELATION_LABELS = (
    (0.7, "Strong positive correlation"),
    (0.3, "Moderate positive correlation"),
    (-0.3, "Weak or no correlation"),
    (-0.7, "Moderate negative correlation"),
)
STRONG_NEGATIVE_LABEL = "Strong negative correlation"


# ============================================
# Unit Economics
# ============================================

class MetricType(str, Enum):
    """Unit economics metrics."""
    CAC = "cac"
    LTV = "ltv"
    LTV_CAC_RATIO = "ltv_cac_ratio"
    PAYBACK_PERIOD = "payback_period"
    ARPU = "arpu"
    CHURN_RATE = "churn_rate"
    RETENTION_RATE = "retention_rate"
    MRR = "mrr"
    ARR = "arr"
    NET_REVENUE_RETENTION = "net_revenue_retention"
    GROSS_MARGIN = "gross_margin"
    BURN_MULTIPLE = "burn_multiple"


class BenchmarkComparison(str, Enum):
    """Position of a metric relative to its benchmark."""
    ABOVE = "above"
    BELOW = "below"
    AT = "at"


ACQUISITION_CATEGORIES = frozenset({"marketing", "advertising", "sales", "customer_acquisition", "growth"})
MARKETING_CATEGORIES = frozenset({"marketing", "advertising", "growth"})
SALES_CATEGORIES = frozenset({"sales"})
UNIT_COGS_CATEGORIES = COGS_CATEGORIES | {"hosting", "infrastructure"}

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CHURNED = "churned"
SUBSCRIPTION_REVENUE_CATEGORY = "subscription"

BENCHMARK_LTV_CAC_RATIO = 3.0
BENCHMARK_PAYBACK_MONTHS = 12.0
BENCHMARK_CHURN_RATE = 5.0  # percent per month
BENCHMARK_GROSS_MARGIN = 70.0  # percent

PAYBACK_SENTINEL = 999.0  # effectively infinite payback
DAYS_PER_MONTH = 30

DEFAULT_CAC_MONTHS = 3
DEFAULT_LTV_MONTHS = 12

# Display units per metric
METRIC_UNITS = {
    MetricType.CAC: "currency",
    MetricType.LTV: "currency",
    MetricType.MRR: "currency",
    MetricType.ARR: "currency",
    MetricType.ARPU: "currency",
    MetricType.LTV_CAC_RATIO: "ratio",
    MetricType.PAYBACK_PERIOD: "months",
    MetricType.CHURN_RATE: "%",
    MetricType.RETENTION_RATE: "%",
    MetricType.GROSS_MARGIN: "%",
    MetricType.NET_REVENUE_RETENTION: "%",
    MetricType.BURN_MULTIPLE: "x",
}


# ============================================
# Health Score
# ============================================

class HealthCategory(str, Enum):
    """Health score categories."""
    RUNWAY = "runway"
    BURN_RATE = "burn_rate"
    REVENUE_GROWTH = "revenue_growth"
    GROSS_MARGIN = "gross_margin"
    LIQUIDITY = "liquidity"
    EFFICIENCY = "efficiency"
    UNIT_ECONOMICS = "unit_economics"


class HealthStatus(str, Enum):
    """Health status bands."""
    EXCELLENT = "excellent"  # 90-100
    GOOD = "good"            # 70-89
    FAIR = "fair"            # 50-69
    POOR = "poor"            # 30-49
    CRITICAL = "critical"    # 0-29


class RecommendationPriority(str, Enum):
    """Recommendation priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RecommendationCategory(str, Enum):
    """Area a recommendation targets."""
    COST_REDUCTION = "cost_reduction"
    REVENUE_GROWTH = "revenue_growth"
    CASH_MANAGEMENT = "cash_management"
    OPERATIONAL_EFFICIENCY = "operational_efficiency"
    FUNDRAISING = "fundraising"


# Must sum to 100
HEALTH_WEIGHTS = {
    HealthCategory.RUNWAY: 25,
    HealthCategory.BURN_RATE: 15,
    HealthCategory.REVENUE_GROWTH: 20,
    HealthCategory.GROSS_MARGIN: 15,
    HealthCategory.LIQUIDITY: 10,
    HealthCategory.EFFICIENCY: 10,
    HealthCategory.UNIT_ECONOMICS: 5,
}

HEALTH_THRESHOLDS = {
    HealthStatus.EXCELLENT: 90,
    HealthStatus.GOOD: 70,
    HealthStatus.FAIR: 50,
    HealthStatus.POOR: 30,
}

PRIORITY_ORDER = {
    RecommendationPriority.HIGH: 0,
    RecommendationPriority.MEDIUM: 1,
    RecommendationPriority.LOW: 2,
}

NEUTRAL_SCORE = 50.0
MAX_TOP_RECOMMENDATIONS = 5
HEALTH_TREND_MONTHS = 6

# Score bands: (minimum value, score), checked top to bottom; below all bands scores the floor
RUNWAY_SCORE_BANDS = ((24, 100), (18, 90), (12, 75), (6, 50), (3, 25))
RUNWAY_SCORE_FLOOR = 10
REVENUE_GROWTH_SCORE_BANDS = ((20, 100), (10, 85), (5, 70), (0, 50), (-5, 30))
REVENUE_GROWTH_SCORE_FLOOR = 10
GROSS_MARGIN_SCORE_BANDS = ((80, 100), (70, 85), (60, 70), (50, 50), (40, 30))
GROSS_MARGIN_SCORE_FLOOR = 10
CASH_RATIO_SCORE_BANDS = ((12, 100), (6, 80), (3, 60), (1, 30))
CASH_RATIO_SCORE_FLOOR = 10
EFFICIENCY_SCORE_BANDS = ((1.5, 100), (1.0, 80), (0.75, 60), (0.5, 40))
EFFICIENCY_SCORE_FLOOR = 20

BURN_DIRECTION_SCORES = {
    TrendDirection.DECREASING: 85,
    TrendDirection.STABLE: 70,
    TrendDirection.INCREASING: 40,
    TrendDirection.VOLATILE: 30,
}

BENCHMARK_RUNWAY_MONTHS = 18.0
BENCHMARK_REVENUE_GROWTH = 10.0
BENCHMARK_CASH_RATIO = 6.0
BENCHMARK_EFFICIENCY_RATIO = 1.0

PREVIOUS_SCORE_MIN_AGE_DAYS = 1
BREAKDOWN_PREVIOUS_MIN_AGE_DAYS = 7


def get_health_status(score: float) -> HealthStatus:
    """Map a 0-100 score to its health status band."""
    if score >= HEALTH_THRESHOLDS[HealthStatus.EXCELLENT]:
        return HealthStatus.EXCELLENT
    if score >= HEALTH_THRESHOLDS[HealthStatus.GOOD]:
        return HealthStatus.GOOD
    if score >= HEALTH_THRESHOLDS[HealthStatus.FAIR]:
        return HealthStatus.FAIR
    if score >= HEALTH_THRESHOLDS[HealthStatus.POOR]:
        return HealthStatus.POOR
    return HealthStatus.CRITICAL
