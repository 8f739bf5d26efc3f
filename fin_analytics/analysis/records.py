"""
Input records read from collaborator stores.

All records are organization-scoped snapshots; the analyzers never mutate them.
Money is Decimal, dates are naive calendar dates.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from fin_analytics.analysis.constants import FILLED_ROLE_STATUS, SUBSCRIPTION_ACTIVE


class RecordKind(str, Enum):
    """Kind of ledger record summed by the ledger store."""
    EXPENSE = "expense"
    REVENUE = "revenue"
    BANK_INFLOW = "bank_inflow"
    BANK_OUTFLOW = "bank_outflow"


@dataclass(frozen=True)
class PlannedLineItem:
    """
    One line of a budget or revenue plan for a fiscal year.

    monthly_amounts maps month number (1-12) to the planned amount.
    """
    category: str
    name: str
    monthly_amounts: dict[int, Decimal] = field(default_factory=dict)
    annual_amount: Decimal = Decimal("0")
    subcategory: Optional[str] = None
    account_ref: Optional[str] = None

    def planned_for_months(self, months: list[int]) -> Decimal:
        """Sum of planned amounts for the given month numbers."""
        return sum((Decimal(str(self.monthly_amounts.get(m, 0))) for m in months), Decimal("0"))


@dataclass(frozen=True)
class PlannedRole:
    """A role on a headcount plan."""
    title: str
    department: str
    level: str
    status: str
    planned_start_date: date
    base_salary: Optional[Decimal] = None
    benefits_percentage: Decimal = Decimal("0")
    monthly_costs: dict[int, Decimal] = field(default_factory=dict)

    @property
    def is_filled(self) -> bool:
        return self.status == FILLED_ROLE_STATUS


@dataclass(frozen=True)
class ActualAggregate:
    """
    Sum of ledger records sharing a category (and optional keys) over a window.

    Stores may return one aggregate per record; the analyzers do all grouping.
    """
    category: str
    period_start: date
    period_end: date
    amount: Decimal
    account_ref: Optional[str] = None
    department: Optional[str] = None
    customer_ref: Optional[str] = None


@dataclass(frozen=True)
class Customer:
    """Customer record used for unit economics and cohorts."""
    customer_id: str
    created_at: date
    is_active: bool = True
    subscription_status: Optional[str] = None
    monthly_value: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")
    subscription_start: Optional[date] = None
    subscription_end: Optional[date] = None
    first_purchase_date: Optional[date] = None
    last_purchase_date: Optional[date] = None

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status == SUBSCRIPTION_ACTIVE


@dataclass(frozen=True)
class CustomerFilter:
    """Filter passed to CustomerStore.find. None means no constraint."""
    created_from: Optional[date] = None
    created_to: Optional[date] = None
    active_only: bool = False
    subscription_status: Optional[str] = None

    def matches(self, customer: Customer) -> bool:
        """Whether a customer satisfies this filter."""
        if self.created_from is not None and customer.created_at < self.created_from:
            return False
        if self.created_to is not None and customer.created_at > self.created_to:
            return False
        if self.active_only and not customer.is_active:
            return False
        if self.subscription_status is not None and customer.subscription_status != self.subscription_status:
            return False
        return True
