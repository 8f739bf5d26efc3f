"""
Collaborator store interfaces.

The analyzers read organization-scoped data only through these protocols.
Implementations live outside the engine (database repositories, API clients,
in-memory fakes in tests).
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from fin_analytics.analysis.constants import PeriodType, PlanKind
from fin_analytics.analysis.periods import DateRange
from fin_analytics.analysis.records import (
    ActualAggregate,
    Customer,
    CustomerFilter,
    PlannedLineItem,
    PlannedRole,
    RecordKind,
)


class PlanStore(Protocol):
    """Read access to budgets, revenue plans and headcount plans."""

    async def get_active_plan(
        self,
        organization_id: uuid.UUID,
        fiscal_year: int,
        plan_kind: PlanKind,
        plan_id: Optional[str] = None,
    ) -> Optional[list[PlannedLineItem]]:
        """Line items of the active plan, or None when no plan exists."""
        ...

    async def get_planned_roles(
        self,
        organization_id: uuid.UUID,
        fiscal_year: int,
        plan_id: Optional[str] = None,
    ) -> Optional[list[PlannedRole]]:
        """Roles of the active headcount plan, or None when no plan exists."""
        ...

    async def get_filled_roles(
        self,
        organization_id: uuid.UUID,
        started_on_or_before: Optional[date] = None,
    ) -> list[PlannedRole]:
        """Filled roles whose planned start is on or before the given date."""
        ...


class LedgerStore(Protocol):
    """Summed ledger records (expenses, revenue entries, bank transactions)."""

    async def sum_by_category(
        self,
        organization_id: uuid.UUID,
        date_range: DateRange,
        status_filter: Optional[Iterable[str]],
        record_kind: RecordKind,
        categories: Optional[Iterable[str]] = None,
        granularity: Optional[PeriodType] = None,
    ) -> list[ActualAggregate]:
        """
        Aggregates of matching records dated within date_range.

        status_filter None means any status. When granularity is given, no
        aggregate may span more than one period of that granularity.
        """
        ...


class CustomerStore(Protocol):
    """Customer records."""

    async def find(
        self,
        organization_id: uuid.UUID,
        customer_filter: CustomerFilter,
    ) -> list[Customer]:
        ...


class BankStore(Protocol):
    """Live bank balances."""

    async def current_balance(self, organization_id: uuid.UUID) -> Decimal:
        """Sum of balances over active bank accounts."""
        ...


class RunwayStore(Protocol):
    """Latest runway projection."""

    async def latest_runway_months(self, organization_id: uuid.UUID) -> Optional[float]:
        """Months of runway from the latest projection, or None if none exists."""
        ...
