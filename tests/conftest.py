"""
Pytest configuration and fixtures for the analytics engine test suite.

Collaborator stores are in-memory fakes; the snapshot repository runs against
an in-memory SQLite database.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.pool import StaticPool

from fin_analytics.analysis.constants import PlanKind
from fin_analytics.analysis.health_score import HealthScoreComposer
from fin_analytics.analysis.records import ActualAggregate, CustomerFilter, RecordKind
from fin_analytics.analysis.trends import TrendAnalyzer
from fin_analytics.analysis.unit_economics import UnitEconomicsEngine
from fin_analytics.analysis.utils import normalize_category
from fin_analytics.analysis.variance import VarianceAnalyzer
from fin_analytics.config import Settings
from fin_analytics.database import build_engine, build_session_factory, init_db
from fin_analytics.services import HealthScoreRepository

ORG_ID = uuid.UUID("6f1c2d3e-4a5b-4c6d-8e7f-901a2b3c4d5e")
TODAY = date(2025, 7, 15)
NOW = datetime(2025, 7, 15, 12, 0, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# FAKE STORES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class LedgerEntry:
    """A single expense, revenue or bank transaction."""
    kind: RecordKind
    category: str
    on: date
    amount: Decimal
    status: Optional[str] = None
    account_ref: Optional[str] = None
    department: Optional[str] = None
    customer_ref: Optional[str] = None


class FakeLedgerStore:
    """Returns one aggregate per matching entry."""

    def __init__(self):
        self.entries: list[LedgerEntry] = []
        self.calls = 0

    def add(self, kind, category, on, amount, status=None, **kwargs) -> None:
        if status is None and kind == RecordKind.EXPENSE:
            status = "paid"
        if status is None and kind == RecordKind.REVENUE:
            status = "received"
        self.entries.append(LedgerEntry(kind, category, on, Decimal(str(amount)), status, **kwargs))

    def expense(self, category, on, amount, **kwargs) -> None:
        self.add(RecordKind.EXPENSE, category, on, amount, **kwargs)

    def revenue(self, category, on, amount, **kwargs) -> None:
        self.add(RecordKind.REVENUE, category, on, amount, **kwargs)

    async def sum_by_category(
        self,
        organization_id,
        date_range,
        status_filter,
        record_kind,
        categories=None,
        granularity=None,
    ):
        self.calls += 1
        statuses = set(status_filter) if status_filter is not None else None
        wanted = {normalize_category(c) for c in categories} if categories else None
        return [
            ActualAggregate(
                category=entry.category,
                period_start=entry.on,
                period_end=entry.on,
                amount=entry.amount,
                account_ref=entry.account_ref,
                department=entry.department,
                customer_ref=entry.customer_ref,
            )
            for entry in self.entries
            if entry.kind == record_kind
            and date_range.contains(entry.on)
            and (statuses is None or entry.status in statuses)
            and (wanted is None or normalize_category(entry.category) in wanted)
        ]


class FakePlanStore:
    """Plans keyed by (fiscal year, plan kind); roles keyed by fiscal year."""

    def __init__(self):
        self.plans: dict = {}
        self.roles: dict = {}

    async def get_active_plan(self, organization_id, fiscal_year, plan_kind, plan_id=None):
        return self.plans.get((fiscal_year, PlanKind(plan_kind)))

    async def get_planned_roles(self, organization_id, fiscal_year, plan_id=None):
        return self.roles.get(fiscal_year)

    async def get_filled_roles(self, organization_id, started_on_or_before=None):
        return [
            role
            for roles in self.roles.values()
            for role in roles
            if role.is_filled
            and (started_on_or_before is None or role.planned_start_date <= started_on_or_before)
        ]


class FakeCustomerStore:
    def __init__(self):
        self.customers = []

    async def find(self, organization_id, customer_filter: CustomerFilter):
        return [c for c in self.customers if customer_filter.matches(c)]


class FakeBankStore:
    def __init__(self, balance: Decimal = Decimal("0")):
        self.balance = balance

    async def current_balance(self, organization_id):
        return self.balance


class FakeRunwayStore:
    def __init__(self, months: Optional[float] = None):
        self.months = months

    async def latest_runway_months(self, organization_id):
        return self.months


@dataclass
class FixedClock:
    """Callable returning a fixed value."""
    value: object = field(default=TODAY)

    def __call__(self):
        return self.value


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def ledger():
    return FakeLedgerStore()


@pytest.fixture
def plans():
    return FakePlanStore()


@pytest.fixture
def customers():
    return FakeCustomerStore()


@pytest.fixture
def bank():
    return FakeBankStore()


@pytest.fixture
def runway():
    return FakeRunwayStore()


@pytest.fixture
def variance_analyzer(plans, ledger):
    return VarianceAnalyzer(plans, ledger, clock=FixedClock(TODAY))


@pytest.fixture
def trend_analyzer(ledger, bank, plans, settings):
    return TrendAnalyzer(ledger, bank, plans, clock=FixedClock(TODAY), settings=settings)


@pytest.fixture
def unit_economics(ledger, customers, settings):
    return UnitEconomicsEngine(
        ledger, customers, clock=FixedClock(TODAY), now=FixedClock(NOW), settings=settings
    )


@pytest.fixture
async def db_session():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def repository(db_session):
    return HealthScoreRepository(db_session)


@pytest.fixture
def composer(trend_analyzer, unit_economics, ledger, bank, repository, runway, settings):
    return HealthScoreComposer(
        trend_analyzer,
        unit_economics,
        ledger,
        bank,
        repository,
        runway_store=runway,
        clock=FixedClock(TODAY),
        now=FixedClock(NOW),
        settings=settings,
    )
