"""
Variance analysis: planned line items vs actual aggregates.

Produces item-, category- and total-level variance with a directional
favorable / unfavorable / on-target classification. Category and total rows
are recomputed from summed amounts, never averaged from item percentages.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional, Union

from fin_analytics.analysis.constants import (
    EXPENSE_ACTUAL_STATUSES,
    ON_TARGET_THRESHOLD,
    PAYROLL_CATEGORIES,
    REVENUE_ACTUAL_STATUSES,
    PeriodType,
    PlanKind,
    VariancePeriod,
    VarianceStatus,
    VarianceType,
)
from fin_analytics.analysis.periods import (
    DateRange,
    date_range_for_period_type,
    months_in_range,
)
from fin_analytics.analysis.records import ActualAggregate, PlannedLineItem, PlannedRole, RecordKind
from fin_analytics.analysis.schemas import (
    CategoryVariance,
    DepartmentHeadcountVariance,
    HeadcountVarianceReport,
    LevelHeadcountVariance,
    MonthlyVariance,
    VarianceItem,
    VarianceReport,
)
from fin_analytics.analysis.stores import LedgerStore, PlanStore
from fin_analytics.analysis.utils import (
    normalize_category,
    round_currency,
    round_to,
    safe_percent,
    sum_decimals,
)
from fin_analytics.core.errors import NotFoundError

logger = logging.getLogger(__name__)

UNASSIGNED_DEPARTMENT = "Unassigned"


class VarianceAnalyzer:
    """
    Compares plans against actuals for a reporting window.

    Budget plans are expense-like (spending less than plan is favorable);
    revenue plans are the reverse. The direction is passed explicitly and
    never inferred from category names.
    """

    def __init__(
        self,
        plan_store: PlanStore,
        ledger_store: LedgerStore,
        clock: Callable[[], date] = date.today,
    ):
        self.plan_store = plan_store
        self.ledger_store = ledger_store
        self.clock = clock

    # ============================================
    # Pure calculations
    # ============================================

    @staticmethod
    def get_variance_status(variance_fraction: float, is_expense: bool) -> VarianceStatus:
        """
        Classify a variance.

        Args:
            variance_fraction: variance / planned (0.20 means 20% over plan)
            is_expense: True for expense-like plans

        Returns:
            on_target within +/-5%, otherwise favorable or unfavorable
        """
        if abs(variance_fraction) <= ON_TARGET_THRESHOLD:
            return VarianceStatus.ON_TARGET
        over_plan = variance_fraction > 0
        if is_expense:
            return VarianceStatus.UNFAVORABLE if over_plan else VarianceStatus.FAVORABLE
        return VarianceStatus.FAVORABLE if over_plan else VarianceStatus.UNFAVORABLE

    @staticmethod
    def match_actual(item: PlannedLineItem, actuals: Iterable[ActualAggregate]) -> Decimal:
        """
        Sum the actuals belonging to a plan item.

        Aggregates carrying the item's account reference win; when the item has
        no reference or nothing carries it, fall back to category-name equality.
        """
        actuals = list(actuals)
        if item.account_ref:
            by_account = [a.amount for a in actuals if a.account_ref == item.account_ref]
            if by_account:
                return sum_decimals(by_account)

        key = normalize_category(item.category)
        return sum_decimals(a.amount for a in actuals if normalize_category(a.category) == key)

    @classmethod
    def build_variance_report(
        cls,
        items: list[PlannedLineItem],
        actuals: list[ActualAggregate],
        *,
        variance_type: VarianceType,
        period: VariancePeriod,
        date_range: DateRange,
        fiscal_year: int,
        is_expense: bool,
    ) -> VarianceReport:
        """
        Build a variance report from plan items and actual aggregates.

        Args:
            items: Plan line items for the fiscal year
            actuals: Actual aggregates dated within the window
            variance_type: Plan kind label for the report
            period: Named period the window came from
            date_range: Reporting window
            fiscal_year: Plan fiscal year
            is_expense: Directional flag for status classification

        Returns:
            VarianceReport with items, by_category and totals
        """
        months = months_in_range(fiscal_year, date_range.start, date_range.end)

        variance_items = []
        category_totals: dict[str, dict] = {}
        total_planned = Decimal("0")
        total_actual = Decimal("0")

        for item in items:
            planned = item.planned_for_months(months)
            actual = cls.match_actual(item, actuals)
            variance_items.append(cls._variance_row(item, planned, actual, is_expense))

            totals = category_totals.setdefault(
                item.category, {"planned": Decimal("0"), "actual": Decimal("0"), "count": 0}
            )
            totals["planned"] += planned
            totals["actual"] += actual
            totals["count"] += 1

            total_planned += planned
            total_actual += actual

        by_category = []
        for category, totals in category_totals.items():
            variance = totals["actual"] - totals["planned"]
            variance_percent = safe_percent(variance, totals["planned"])
            by_category.append(CategoryVariance(
                category=category,
                planned=round_currency(totals["planned"]),
                actual=round_currency(totals["actual"]),
                variance=round_currency(variance),
                variance_percent=round_to(variance_percent),
                status=cls.get_variance_status(variance_percent / 100, is_expense),
                item_count=totals["count"],
            ))

        total_variance = total_actual - total_planned
        total_variance_percent = safe_percent(total_variance, total_planned)

        return VarianceReport(
            type=variance_type,
            period=period,
            start_date=date_range.start,
            end_date=date_range.end,
            fiscal_year=fiscal_year,
            total_planned=round_currency(total_planned),
            total_actual=round_currency(total_actual),
            total_variance=round_currency(total_variance),
            total_variance_percent=round_to(total_variance_percent),
            overall_status=cls.get_variance_status(total_variance_percent / 100, is_expense),
            items=variance_items,
            by_category=by_category,
        )

    @classmethod
    def _variance_row(
        cls,
        item: PlannedLineItem,
        planned: Decimal,
        actual: Decimal,
        is_expense: bool,
    ) -> VarianceItem:
        variance = actual - planned
        variance_percent = safe_percent(variance, planned)
        return VarianceItem(
            category=item.category,
            subcategory=item.subcategory,
            account_ref=item.account_ref,
            name=item.name,
            planned=round_currency(planned),
            actual=round_currency(actual),
            variance=round_currency(variance),
            variance_percent=round_to(variance_percent),
            status=cls.get_variance_status(variance_percent / 100, is_expense),
        )

    @staticmethod
    def role_cost_for_months(role: PlannedRole, months: list[int]) -> Decimal:
        """
        Planned cost of a role over the given months.

        Uses the role's monthly cost schedule; when that yields nothing and a
        base salary is known, estimates salary/12 plus benefits percentage per month.
        """
        total = sum_decimals(role.monthly_costs.get(m, 0) for m in months)
        if total == 0 and role.base_salary:
            monthly_salary = Decimal(str(role.base_salary)) / 12
            monthly_benefits = monthly_salary * Decimal(str(role.benefits_percentage or 0)) / 100
            total = (monthly_salary + monthly_benefits) * len(months)
        return total

    # ============================================
    # Reports
    # ============================================

    async def get_budget_variance(
        self,
        organization_id: uuid.UUID,
        fiscal_year: Optional[int] = None,
        period: Union[VariancePeriod, str] = VariancePeriod.YEARLY,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        plan_id: Optional[str] = None,
    ) -> VarianceReport:
        """Budget vs approved/paid expenses (expense direction)."""
        return await self._plan_variance(
            organization_id,
            plan_kind=PlanKind.BUDGET,
            variance_type=VarianceType.BUDGET,
            record_kind=RecordKind.EXPENSE,
            statuses=EXPENSE_ACTUAL_STATUSES,
            is_expense=True,
            fiscal_year=fiscal_year,
            period=period,
            start_date=start_date,
            end_date=end_date,
            plan_id=plan_id,
        )

    async def get_revenue_variance(
        self,
        organization_id: uuid.UUID,
        fiscal_year: Optional[int] = None,
        period: Union[VariancePeriod, str] = VariancePeriod.YEARLY,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        plan_id: Optional[str] = None,
    ) -> VarianceReport:
        """Revenue plan vs received revenue (revenue direction)."""
        return await self._plan_variance(
            organization_id,
            plan_kind=PlanKind.REVENUE,
            variance_type=VarianceType.REVENUE,
            record_kind=RecordKind.REVENUE,
            statuses=REVENUE_ACTUAL_STATUSES,
            is_expense=False,
            fiscal_year=fiscal_year,
            period=period,
            start_date=start_date,
            end_date=end_date,
            plan_id=plan_id,
        )

    async def _plan_variance(
        self,
        organization_id: uuid.UUID,
        *,
        plan_kind: PlanKind,
        variance_type: VarianceType,
        record_kind: RecordKind,
        statuses: frozenset,
        is_expense: bool,
        fiscal_year: Optional[int],
        period: Union[VariancePeriod, str],
        start_date: Optional[date],
        end_date: Optional[date],
        plan_id: Optional[str],
    ) -> VarianceReport:
        fiscal_year = fiscal_year or self.clock().year
        period = VariancePeriod(period)
        date_range = date_range_for_period_type(
            fiscal_year, period, start_date, end_date, today=self.clock()
        )

        items = await self._load_plan(organization_id, fiscal_year, plan_kind, plan_id)

        logger.debug(
            "%s variance for org %s: %s to %s (%d plan items)",
            variance_type.value, organization_id, date_range.start, date_range.end, len(items),
        )

        actuals = await self.ledger_store.sum_by_category(
            organization_id, date_range, statuses, record_kind
        )

        return self.build_variance_report(
            items,
            actuals,
            variance_type=variance_type,
            period=period,
            date_range=date_range,
            fiscal_year=fiscal_year,
            is_expense=is_expense,
        )

    async def get_monthly_budget_variance(
        self,
        organization_id: uuid.UUID,
        fiscal_year: int,
        category: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> list[MonthlyVariance]:
        """
        Month-by-month budget variance for a fiscal year.

        Each row carries fiscal-year-to-date cumulative planned, actual and
        variance; the accumulator starts at month 1.

        Args:
            organization_id: Organization
            fiscal_year: Budget fiscal year
            category: Optional category restriction (plan and actuals)
            plan_id: Explicit budget id

        Returns:
            Twelve MonthlyVariance rows, January first
        """
        items = await self._load_plan(organization_id, fiscal_year, PlanKind.BUDGET, plan_id)
        category_key = normalize_category(category) if category else None
        if category_key:
            items = [i for i in items if normalize_category(i.category) == category_key]

        year_range = DateRange(date(fiscal_year, 1, 1), date(fiscal_year, 12, 31))
        actuals = await self.ledger_store.sum_by_category(
            organization_id,
            year_range,
            EXPENSE_ACTUAL_STATUSES,
            RecordKind.EXPENSE,
            categories=[category] if category else None,
            granularity=PeriodType.MONTHLY,
        )

        actual_by_month: dict[int, Decimal] = defaultdict(Decimal)
        for aggregate in actuals:
            if category_key and normalize_category(aggregate.category) != category_key:
                continue
            actual_by_month[aggregate.period_start.month] += aggregate.amount

        rows = []
        cumulative_planned = Decimal("0")
        cumulative_actual = Decimal("0")

        for month in range(1, 13):
            planned = sum_decimals(item.monthly_amounts.get(month, 0) for item in items)
            actual = actual_by_month.get(month, Decimal("0"))
            variance = actual - planned
            variance_percent = safe_percent(variance, planned)

            cumulative_planned += planned
            cumulative_actual += actual

            rows.append(MonthlyVariance(
                month=date(fiscal_year, month, 1),
                planned=round_currency(planned),
                actual=round_currency(actual),
                variance=round_currency(variance),
                variance_percent=round_to(variance_percent),
                status=self.get_variance_status(variance_percent / 100, True),
                cumulative_planned=round_currency(cumulative_planned),
                cumulative_actual=round_currency(cumulative_actual),
                cumulative_variance=round_currency(cumulative_actual - cumulative_planned),
            ))

        return rows

    async def get_headcount_variance(
        self,
        organization_id: uuid.UUID,
        fiscal_year: Optional[int] = None,
        period: Union[VariancePeriod, str] = VariancePeriod.YEARLY,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        plan_id: Optional[str] = None,
    ) -> HeadcountVarianceReport:
        """
        Headcount plan vs filled roles and payroll spend.

        Planned roles count when their planned start is on or before the window
        end. Actual headcount is the plan's filled roles; actual cost is payroll
        category spend grouped by department.
        """
        fiscal_year = fiscal_year or self.clock().year
        period = VariancePeriod(period)
        date_range = date_range_for_period_type(
            fiscal_year, period, start_date, end_date, today=self.clock()
        )

        roles = await self.plan_store.get_planned_roles(organization_id, fiscal_year, plan_id)
        if roles is None:
            logger.warning("No active headcount plan for org %s fiscal year %s", organization_id, fiscal_year)
            raise NotFoundError(
                "No active headcount plan found for the specified period",
                plan_kind=PlanKind.HEADCOUNT.value,
                fiscal_year=fiscal_year,
            )

        months = months_in_range(fiscal_year, date_range.start, date_range.end)

        planned_by_department: dict[str, dict] = defaultdict(lambda: {"headcount": 0, "cost": Decimal("0")})
        planned_by_level: dict[str, int] = defaultdict(int)
        planned_headcount = 0
        planned_cost = Decimal("0")

        for role in roles:
            if role.planned_start_date > date_range.end:
                continue
            cost = self.role_cost_for_months(role, months)
            planned_headcount += 1
            planned_cost += cost
            planned_by_department[role.department]["headcount"] += 1
            planned_by_department[role.department]["cost"] += cost
            planned_by_level[role.level] += 1

        actual_by_department: dict[str, dict] = defaultdict(lambda: {"headcount": 0, "cost": Decimal("0")})
        actual_by_level: dict[str, int] = defaultdict(int)
        filled_roles = [role for role in roles if role.is_filled]
        for role in filled_roles:
            actual_by_department[role.department]["headcount"] += 1
            actual_by_level[role.level] += 1

        payroll = await self.ledger_store.sum_by_category(
            organization_id,
            date_range,
            EXPENSE_ACTUAL_STATUSES,
            RecordKind.EXPENSE,
            categories=PAYROLL_CATEGORIES,
        )
        actual_cost = Decimal("0")
        for aggregate in payroll:
            if normalize_category(aggregate.category) not in PAYROLL_CATEGORIES:
                continue
            department = aggregate.department or UNASSIGNED_DEPARTMENT
            actual_by_department[department]["cost"] += aggregate.amount
            actual_cost += aggregate.amount

        by_department = []
        for department in list(dict.fromkeys([*planned_by_department, *actual_by_department])):
            planned = planned_by_department.get(department, {"headcount": 0, "cost": Decimal("0")})
            actual = actual_by_department.get(department, {"headcount": 0, "cost": Decimal("0")})
            cost_variance = actual["cost"] - planned["cost"]
            cost_variance_percent = safe_percent(cost_variance, planned["cost"])
            by_department.append(DepartmentHeadcountVariance(
                department=department,
                planned_headcount=planned["headcount"],
                actual_headcount=actual["headcount"],
                headcount_variance=actual["headcount"] - planned["headcount"],
                planned_cost=round_currency(planned["cost"]),
                actual_cost=round_currency(actual["cost"]),
                cost_variance=round_currency(cost_variance),
                cost_variance_percent=round_to(cost_variance_percent),
                status=self.get_variance_status(cost_variance_percent / 100, True),
            ))

        by_level = []
        for level in list(dict.fromkeys([*planned_by_level, *actual_by_level])):
            planned_count = planned_by_level.get(level, 0)
            actual_count = actual_by_level.get(level, 0)
            by_level.append(LevelHeadcountVariance(
                level=level,
                planned_headcount=planned_count,
                actual_headcount=actual_count,
                headcount_variance=actual_count - planned_count,
            ))

        actual_headcount = len(filled_roles)
        cost_variance = actual_cost - planned_cost
        cost_variance_percent = safe_percent(cost_variance, planned_cost)

        return HeadcountVarianceReport(
            period=period,
            start_date=date_range.start,
            end_date=date_range.end,
            fiscal_year=fiscal_year,
            planned_headcount=planned_headcount,
            actual_headcount=actual_headcount,
            headcount_variance=actual_headcount - planned_headcount,
            planned_cost=round_currency(planned_cost),
            actual_cost=round_currency(actual_cost),
            cost_variance=round_currency(cost_variance),
            cost_variance_percent=round_to(cost_variance_percent),
            overall_status=self.get_variance_status(cost_variance_percent / 100, True),
            by_department=by_department,
            by_level=by_level,
        )

    async def get_category_variance(
        self,
        organization_id: uuid.UUID,
        fiscal_year: Optional[int] = None,
        variance_type: Union[VarianceType, str] = VarianceType.BUDGET,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[CategoryVariance]:
        """
        Annual planned totals vs actuals, grouped by category.

        Budget and expense types compare the budget with expenses; the revenue
        type compares revenue plan streams with received revenue by type.
        Results are sorted by absolute variance percent, largest first.

        Raises:
            NotFoundError: no active plan for the fiscal year
            ValueError: headcount type (no category split exists)
        """
        fiscal_year = fiscal_year or self.clock().year
        variance_type = VarianceType(variance_type)
        if variance_type == VarianceType.HEADCOUNT:
            raise ValueError("Category variance is not available for headcount plans")

        is_expense = variance_type != VarianceType.REVENUE
        plan_kind = PlanKind.BUDGET if is_expense else PlanKind.REVENUE
        record_kind = RecordKind.EXPENSE if is_expense else RecordKind.REVENUE
        statuses = EXPENSE_ACTUAL_STATUSES if is_expense else REVENUE_ACTUAL_STATUSES

        period = VariancePeriod.CUSTOM if start_date and end_date else VariancePeriod.YEARLY
        date_range = date_range_for_period_type(
            fiscal_year, period, start_date, end_date, today=self.clock()
        )

        items = await self._load_plan(organization_id, fiscal_year, plan_kind, None)
        actuals = await self.ledger_store.sum_by_category(
            organization_id, date_range, statuses, record_kind
        )

        planned: dict[str, dict] = {}
        labels: dict[str, str] = {}
        for item in items:
            key = normalize_category(item.category)
            labels.setdefault(key, item.category)
            entry = planned.setdefault(key, {"total": Decimal("0"), "count": 0})
            entry["total"] += Decimal(str(item.annual_amount))
            entry["count"] += 1

        actual: dict[str, Decimal] = defaultdict(Decimal)
        for aggregate in actuals:
            key = normalize_category(aggregate.category)
            labels.setdefault(key, aggregate.category)
            actual[key] += aggregate.amount

        results = []
        for key in dict.fromkeys([*planned, *actual]):
            planned_total = planned.get(key, {"total": Decimal("0")})["total"]
            actual_total = actual.get(key, Decimal("0"))
            variance = actual_total - planned_total
            variance_percent = safe_percent(variance, planned_total)
            results.append(CategoryVariance(
                category=labels[key],
                planned=round_currency(planned_total),
                actual=round_currency(actual_total),
                variance=round_currency(variance),
                variance_percent=round_to(variance_percent),
                status=self.get_variance_status(variance_percent / 100, is_expense),
                item_count=planned.get(key, {"count": 0})["count"],
            ))

        return sorted(results, key=lambda row: abs(row.variance_percent), reverse=True)

    async def _load_plan(
        self,
        organization_id: uuid.UUID,
        fiscal_year: int,
        plan_kind: PlanKind,
        plan_id: Optional[str],
    ) -> list[PlannedLineItem]:
        items = await self.plan_store.get_active_plan(organization_id, fiscal_year, plan_kind, plan_id)
        if items is None:
            logger.warning(
                "No active %s plan for org %s fiscal year %s", plan_kind.value, organization_id, fiscal_year
            )
            raise NotFoundError(
                f"No active {plan_kind.value} plan found for the specified period",
                plan_kind=plan_kind.value,
                fiscal_year=fiscal_year,
            )
        return items
