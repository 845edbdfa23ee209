"""
Derived Metric Models

Everything here is computed by the budget aggregator and never stored.
Currency figures are whole units; percentages are clamped to [0, 100]
except where a field says otherwise.
"""

import math
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from vaultledger.models.ledger import Category


# burn_days when nothing is being spent
INFINITE_RUNWAY = math.inf


class CategoryBreakdown(BaseModel):
    """Spend against cap for one budgeted category."""

    category: Category
    total: int = Field(..., description="Spend this month, transfers excluded")
    cap: int = Field(..., ge=1, description="Income share for the category, floored at 1")
    utilization: float = Field(..., ge=0, le=100, description="Clamped for display")
    utilization_raw: float = Field(..., ge=0, description="Unclamped; > 100 means over budget")

    @property
    def is_over_budget(self) -> bool:
        return self.utilization_raw > 100


class MerchantSpend(BaseModel):
    merchant: str
    total: int


class TrendPoint(BaseModel):
    """One month of the rolling trend."""

    month: date = Field(..., description="First day of the month")
    needs: int
    wants: int
    income: int


class BudgetMetrics(BaseModel):
    """Live figures for one viewed month."""

    month: date = Field(..., description="First day of the viewed month")
    monthly_income: int = Field(..., description="Month income, or the baseline it fell back to")
    income_is_baseline: bool = False

    categories: dict[Category, CategoryBreakdown]
    uncategorized_total: int = 0
    spent: int
    remaining_percentage: float = Field(..., ge=0, le=100)
    savings_rate: int = Field(..., ge=0, le=100)

    elapsed_days: int = Field(..., ge=1)
    days_in_month: int = Field(..., ge=28, le=31)
    daily_average: int
    projected_month_end: int
    liquid_assets: int
    burn_days: float = Field(..., description="Unbounded; INFINITE_RUNWAY when nothing is spent")

    pending_count: int = Field(default=0, description="Unconfirmed expenses this month")
    top_merchants: list[MerchantSpend] = Field(default_factory=list)

    @property
    def category_totals(self) -> dict[Category, int]:
        return {c: b.total for c, b in self.categories.items()}

    @property
    def category_caps(self) -> dict[Category, int]:
        return {c: b.cap for c, b in self.categories.items()}

    @property
    def category_utilization(self) -> dict[Category, float]:
        return {c: b.utilization for c, b in self.categories.items()}

    @property
    def category_utilization_raw(self) -> dict[Category, float]:
        return {c: b.utilization_raw for c, b in self.categories.items()}

    @property
    def has_infinite_runway(self) -> bool:
        return math.isinf(self.burn_days)


class CreditUtilization(BaseModel):
    account_id: str
    name: str
    owed: int
    limit: int
    utilization: float = Field(..., ge=0, le=100)


class WealthStats(BaseModel):
    """Balance-sheet view over all accounts."""

    assets: int
    liabilities: int
    net_worth: int
    liquid_assets: int
    credit: list[CreditUtilization] = Field(default_factory=list)


class BudgetItemUsage(BaseModel):
    """Planned versus realized spend for one budget item."""

    item_id: str
    name: str
    category: Category
    sub_category: str
    planned: int
    realized: int
    utilization: float = Field(..., ge=0, le=100)
    utilization_raw: Optional[float] = Field(
        default=None,
        description="None when nothing was planned"
    )


class CategoryPlan(BaseModel):
    """Planned (sum of budget items) versus realized spend for a category."""

    category: Category
    planned: int
    realized: int
    cap: int


class BudgetPlan(BaseModel):
    month: date
    categories: list[CategoryPlan]
    items: list[BudgetItemUsage]

    @property
    def total_planned(self) -> int:
        return sum(c.planned for c in self.categories)
