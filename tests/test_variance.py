from datetime import date
from decimal import Decimal

import pytest

from conftest import ORG_ID
from fin_analytics.analysis.constants import PlanKind, VariancePeriod, VarianceStatus, VarianceType
from fin_analytics.analysis.records import PlannedLineItem, PlannedRole
from fin_analytics.analysis.variance import VarianceAnalyzer
from fin_analytics.core.errors import NotFoundError


def monthly(amount, months=range(1, 13)):
    return {m: Decimal(str(amount)) for m in months}


def budget_item(category, amount, name=None, account_ref=None):
    amounts = monthly(amount)
    return PlannedLineItem(
        category=category,
        name=name or category,
        monthly_amounts=amounts,
        annual_amount=sum(amounts.values()),
        account_ref=account_ref,
    )


@pytest.mark.parametrize(
    "fraction, is_expense, expected",
    [
        (0.20, True, VarianceStatus.UNFAVORABLE),
        (-0.20, True, VarianceStatus.FAVORABLE),
        (0.20, False, VarianceStatus.FAVORABLE),
        (-0.20, False, VarianceStatus.UNFAVORABLE),
        (0.05, True, VarianceStatus.ON_TARGET),
        (-0.03, False, VarianceStatus.ON_TARGET),
        (0.0, True, VarianceStatus.ON_TARGET),
    ],
)
def test_variance_status_is_directional(fraction, is_expense, expected):
    assert VarianceAnalyzer.get_variance_status(fraction, is_expense) == expected


async def test_marketing_underspend_is_favorable(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [budget_item("Marketing", 2500)]
    ledger.expense("Marketing", date(2025, 3, 10), 7000)
    ledger.expense("Marketing", date(2025, 5, 2), 5000, status="approved")
    ledger.expense("Marketing", date(2025, 6, 1), 9999, status="draft")

    report = await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    item = report.items[0]
    assert item.planned == 30000.0
    assert item.actual == 12000.0
    assert item.variance == -18000.0
    assert item.variance_percent == -60.0
    assert item.status == VarianceStatus.FAVORABLE
    assert report.type == VarianceType.BUDGET
    assert report.period == VariancePeriod.YEARLY
    assert report.start_date == date(2025, 1, 1)
    assert report.end_date == date(2025, 12, 31)


async def test_revenue_direction_is_inverted(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.REVENUE)] = [budget_item("Subscription", 1000)]
    ledger.revenue("subscription", date(2025, 4, 1), 15000)
    ledger.revenue("subscription", date(2025, 4, 2), 500, status="pending")

    report = await variance_analyzer.get_revenue_variance(ORG_ID, fiscal_year=2025)

    assert report.total_planned == 12000.0
    assert report.total_actual == 15000.0
    assert report.total_variance_percent == 25.0
    assert report.overall_status == VarianceStatus.FAVORABLE


async def test_category_totals_are_recomputed_from_sums(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [
        budget_item("Software", 100, name="CRM", account_ref="6100"),
        budget_item("Software", 900, name="Cloud", account_ref="6200"),
    ]
    # CRM doubles its plan, Cloud is on plan
    ledger.expense("Tools", date(2025, 2, 1), 2400, account_ref="6100")
    ledger.expense("Infra", date(2025, 2, 1), 10800, account_ref="6200")

    report = await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    crm, cloud = report.items
    assert crm.variance_percent == 100.0
    assert cloud.variance_percent == 0.0

    software = report.by_category[0]
    assert software.item_count == 2
    assert software.planned == pytest.approx(crm.planned + cloud.planned)
    assert software.actual == pytest.approx(crm.actual + cloud.actual)
    # 1200 over on 12000 planned, not the 50% average of item percents
    assert software.variance_percent == 10.0
    assert software.status == VarianceStatus.UNFAVORABLE
    assert report.total_planned == pytest.approx(sum(i.planned for i in report.items))
    assert report.total_actual == pytest.approx(sum(i.actual for i in report.items))


async def test_variance_totals_agree_across_categories(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [
        budget_item("Software", 100, name="CRM", account_ref="6100"),
        budget_item("Software", 900, name="Cloud", account_ref="6200"),
        budget_item("Rent", 1000),
        budget_item("Marketing", 250),
    ]
    ledger.expense("Tools", date(2025, 2, 1), 2400, account_ref="6100")
    ledger.expense("Infra", date(2025, 2, 1), 10800, account_ref="6200")
    ledger.expense("Rent", date(2025, 4, 1), 11000)
    ledger.expense("Marketing", date(2025, 6, 1), 3500)

    report = await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    assert len(report.by_category) == 3
    assert [item.variance for item in report.items] == [1200.0, 0.0, -1000.0, 500.0]
    by_category = {row.category: row.variance for row in report.by_category}
    assert by_category == {"Software": 1200.0, "Rent": -1000.0, "Marketing": 500.0}
    assert report.total_variance == 700.0
    assert report.total_variance == pytest.approx(sum(row.variance for row in report.by_category))
    assert report.total_variance == pytest.approx(sum(item.variance for item in report.items))


async def test_category_fallback_ignores_case_and_whitespace(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [budget_item("Travel", 100, account_ref="7000")]
    ledger.expense("  travel ", date(2025, 8, 1), 1200)

    report = await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    assert report.items[0].actual == 1200.0
    assert report.items[0].status == VarianceStatus.ON_TARGET


async def test_custom_window_prorates_plan_months(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [budget_item("Rent", 1000)]
    ledger.expense("Rent", date(2025, 2, 1), 1000)
    ledger.expense("Rent", date(2025, 3, 1), 1000)
    ledger.expense("Rent", date(2025, 5, 1), 1000)

    report = await variance_analyzer.get_budget_variance(
        ORG_ID, fiscal_year=2025, period="custom",
        start_date=date(2025, 2, 1), end_date=date(2025, 3, 31),
    )

    assert report.total_planned == 2000.0
    assert report.total_actual == 2000.0
    assert report.overall_status == VarianceStatus.ON_TARGET


async def test_zero_plan_gives_zero_percent(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [
        PlannedLineItem(category="Legal", name="Legal", monthly_amounts={}, annual_amount=Decimal("0"))
    ]
    ledger.expense("Legal", date(2025, 1, 5), 500)

    report = await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    assert report.items[0].variance == 500.0
    assert report.items[0].variance_percent == 0.0


async def test_missing_plan_raises_not_found(variance_analyzer):
    with pytest.raises(NotFoundError) as exc_info:
        await variance_analyzer.get_budget_variance(ORG_ID, fiscal_year=2025)

    assert exc_info.value.fiscal_year == 2025
    assert exc_info.value.plan_kind == "budget"

    with pytest.raises(NotFoundError):
        await variance_analyzer.get_category_variance(ORG_ID, fiscal_year=2025)
    with pytest.raises(NotFoundError):
        await variance_analyzer.get_headcount_variance(ORG_ID, fiscal_year=2025)


async def test_monthly_breakdown_accumulates_year_to_date(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [budget_item("Ops", 1000), budget_item("Marketing", 500)]
    ledger.expense("Ops", date(2025, 1, 15), 900)
    ledger.expense("Ops", date(2025, 2, 3), 1200)
    ledger.expense("Marketing", date(2025, 2, 3), 400)

    rows = await variance_analyzer.get_monthly_budget_variance(ORG_ID, 2025, category="ops")

    assert len(rows) == 12
    january, february, march = rows[:3]
    assert january.month == date(2025, 1, 1)
    assert january.planned == 1000.0
    assert january.variance == -100.0
    assert february.cumulative_planned == 2000.0
    assert february.cumulative_actual == 2100.0
    assert february.cumulative_variance == 100.0
    assert march.actual == 0.0
    assert rows[-1].cumulative_planned == 12000.0


async def test_headcount_variance_with_salary_fallback(variance_analyzer, plans, ledger):
    plans.roles[2025] = [
        PlannedRole(
            title="Engineer", department="Engineering", level="Senior", status="filled",
            planned_start_date=date(2025, 1, 1), base_salary=Decimal("120000"),
            benefits_percentage=Decimal("20"),
        ),
        PlannedRole(
            title="Designer", department="Design", level="Mid", status="open",
            planned_start_date=date(2025, 3, 1), monthly_costs=monthly(5000, range(3, 13)),
        ),
        PlannedRole(
            title="Analyst", department="Finance", level="Junior", status="open",
            planned_start_date=date(2026, 2, 1), base_salary=Decimal("60000"),
        ),
    ]
    ledger.expense("Payroll", date(2025, 2, 1), 10000, department="Engineering")
    ledger.expense("salaries", date(2025, 3, 1), 2000)
    ledger.expense("Software", date(2025, 3, 1), 999, department="Engineering")

    report = await variance_analyzer.get_headcount_variance(ORG_ID, fiscal_year=2025)

    assert report.type == VarianceType.HEADCOUNT
    assert report.planned_headcount == 2
    assert report.actual_headcount == 1
    assert report.headcount_variance == -1
    # 120000 / 12 * 1.2 * 12 months + 5000 * 10 months
    assert report.planned_cost == 194000.0
    assert report.actual_cost == 12000.0

    departments = {row.department: row for row in report.by_department}
    assert departments["Engineering"].planned_cost == 144000.0
    assert departments["Engineering"].actual_cost == 10000.0
    assert departments["Engineering"].actual_headcount == 1
    assert departments["Unassigned"].actual_cost == 2000.0
    levels = {row.level: row for row in report.by_level}
    assert levels["Mid"].headcount_variance == -1
    assert levels["Senior"].headcount_variance == 0


async def test_category_variance_sorted_by_magnitude(variance_analyzer, plans, ledger):
    plans.plans[(2025, PlanKind.BUDGET)] = [budget_item("Rent", 1000), budget_item("Marketing", 1000)]
    ledger.expense("Rent", date(2025, 3, 1), 12000)
    ledger.expense("marketing", date(2025, 3, 1), 6000)
    ledger.expense("Misc", date(2025, 3, 1), 300)

    rows = await variance_analyzer.get_category_variance(ORG_ID, fiscal_year=2025)

    assert [row.category for row in rows][0] == "Marketing"
    marketing = rows[0]
    assert marketing.variance_percent == -50.0
    assert marketing.status == VarianceStatus.FAVORABLE
    misc = next(row for row in rows if row.category == "Misc")
    assert misc.planned == 0.0
    assert misc.item_count == 0


async def test_category_variance_rejects_headcount(variance_analyzer):
    with pytest.raises(ValueError):
        await variance_analyzer.get_category_variance(ORG_ID, 2025, variance_type="headcount")
