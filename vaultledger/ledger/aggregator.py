"""
Budget Aggregator

Read-only: computes every derived figure from the store's current
contents and never writes back.

Conventions:
- A month is identified by any date inside it.
- "Spent" is every in-month expense except transfers (moving money
  between your own accounts isn't spending).
- Monthly income is the month's recorded income, else the user's
  baseline, else the configured default. Divisions use max(income, 1).
- Currency outputs are rounded half-up to whole units; percentages are
  clamped to [0, 100] except burn days and the projection.
"""

import calendar
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from vaultledger.config import AppSettings, get_settings
from vaultledger.ledger.store import LedgerStore
from vaultledger.models.ledger import (
    Account,
    Category,
    EntityKind,
    Expense,
    Income,
    Polarity,
    round_amount,
)
from vaultledger.models.metrics import (
    INFINITE_RUNWAY,
    BudgetItemUsage,
    BudgetMetrics,
    BudgetPlan,
    CategoryBreakdown,
    CategoryPlan,
    CreditUtilization,
    MerchantSpend,
    TrendPoint,
    WealthStats,
)


DEFAULT_MERCHANT_LABEL = "General"


def month_start(day: date) -> date:
    return day.replace(day=1)


def shift_month(day: date, months: int) -> date:
    """First day of the month `months` away from day's month."""
    index = day.year * 12 + day.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]


def in_month(day: date, month: date) -> bool:
    return day.year == month.year and day.month == month.month


def clamp_percentage(value: float) -> float:
    return max(0.0, min(100.0, value))


class BudgetAggregator:
    """Pure metrics over a LedgerStore."""

    def __init__(
        self,
        store: LedgerStore,
        app_settings: Optional[AppSettings] = None,
    ):
        self._store = store
        self._settings = app_settings or get_settings().app

    # -------------------------------------------------------------------------
    # Building blocks
    # -------------------------------------------------------------------------

    def _month_expenses(self, month: date) -> list[Expense]:
        return [
            e for e in self._store.list(EntityKind.EXPENSES)
            if in_month(e.date, month) and not e.is_transfer
        ]

    def _month_incomes(self, month: date) -> list[Income]:
        return [i for i in self._store.list(EntityKind.INCOMES) if in_month(i.date, month)]

    def monthly_income(self, month: date) -> tuple[int, bool]:
        """
        Income for the month and whether it came from a baseline.

        Falls back to the user's baseline, then the configured default.
        """
        recorded = sum(i.amount for i in self._month_incomes(month))
        if recorded > 0:
            return recorded, False
        baseline = self._store.settings.monthly_income or self._settings.default_monthly_income
        return baseline, True

    @staticmethod
    def category_totals(expenses: Iterable[Expense]) -> dict[Category, int]:
        totals = {c: 0 for c in Category}
        for expense in expenses:
            if not expense.is_transfer:
                totals[expense.category] += expense.amount
        return totals

    def category_cap(self, income: int, category: Category) -> int:
        share = income * self._store.settings.split_for(category) / 100
        return max(1, round_amount(share))

    def liquid_assets(self) -> int:
        return sum(
            a.value for a in self._store.list(EntityKind.ACCOUNTS)
            if a.category.is_liquid
        )

    # -------------------------------------------------------------------------
    # Month metrics
    # -------------------------------------------------------------------------

    def month_metrics(self, month: date, today: Optional[date] = None) -> BudgetMetrics:
        """All live figures for the month containing `month`."""
        today = today or date.today()
        month = month_start(month)
        expenses = self._month_expenses(month)
        income, is_baseline = self.monthly_income(month)
        divisor = max(income, 1)

        totals = self.category_totals(expenses)
        categories = {}
        for category in Category.budgeted():
            cap = self.category_cap(income, category)
            raw = totals[category] / cap * 100
            categories[category] = CategoryBreakdown(
                category=category,
                total=totals[category],
                cap=cap,
                utilization=clamp_percentage(raw),
                utilization_raw=raw,
            )

        budgeted_total = sum(totals[c] for c in Category.budgeted())
        spent = sum(totals.values())

        month_days = days_in_month(month)
        elapsed = today.day if in_month(today, month) else month_days
        daily = spent / elapsed
        liquid = self.liquid_assets()
        burn = INFINITE_RUNWAY if daily == 0 else float(round_amount(liquid / daily))

        return BudgetMetrics(
            month=month,
            monthly_income=income,
            income_is_baseline=is_baseline,
            categories=categories,
            uncategorized_total=totals[Category.UNCATEGORIZED],
            spent=spent,
            remaining_percentage=clamp_percentage((income - budgeted_total) / divisor * 100),
            savings_rate=round_amount(clamp_percentage((income - spent) / divisor * 100)),
            elapsed_days=elapsed,
            days_in_month=month_days,
            daily_average=round_amount(daily),
            projected_month_end=round_amount(daily * month_days),
            liquid_assets=liquid,
            burn_days=burn,
            pending_count=sum(1 for e in expenses if not e.is_confirmed),
            top_merchants=self.top_merchants(month),
        )

    def top_merchants(self, month: date, limit: int = 3) -> list[MerchantSpend]:
        totals: dict[str, int] = defaultdict(int)
        for expense in self._month_expenses(month):
            totals[expense.merchant or DEFAULT_MERCHANT_LABEL] += expense.amount
        ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        return [MerchantSpend(merchant=m, total=t) for m, t in ranked[:limit]]

    def trend(self, anchor: date, months: int = 6) -> list[TrendPoint]:
        """Needs, Wants and income for `months` months ending at anchor's month."""
        points = []
        for offset in range(months - 1, -1, -1):
            month = shift_month(anchor, -offset)
            totals = self.category_totals(self._month_expenses(month))
            income, _ = self.monthly_income(month)
            points.append(TrendPoint(
                month=month,
                needs=totals[Category.NEEDS],
                wants=totals[Category.WANTS],
                income=income,
            ))
        return points

    # -------------------------------------------------------------------------
    # Balance sheet
    # -------------------------------------------------------------------------

    @staticmethod
    def net_worth(accounts: Iterable[Account]) -> int:
        """Σ asset values − Σ liability values."""
        total = 0
        for account in accounts:
            total += -account.value if account.polarity == Polarity.LIABILITY else account.value
        return total

    def wealth_stats(self) -> WealthStats:
        accounts: list[Account] = self._store.list(EntityKind.ACCOUNTS)
        assets = sum(a.value for a in accounts if not a.is_liability)
        liabilities = sum(a.value for a in accounts if a.is_liability)

        credit = [
            CreditUtilization(
                account_id=a.id,
                name=a.display_name,
                owed=a.value,
                limit=a.credit_limit,
                utilization=clamp_percentage(a.value / a.credit_limit * 100),
            )
            for a in accounts
            if a.is_liability and a.credit_limit
        ]

        return WealthStats(
            assets=assets,
            liabilities=liabilities,
            net_worth=assets - liabilities,
            liquid_assets=self.liquid_assets(),
            credit=credit,
        )

    # -------------------------------------------------------------------------
    # Budget planner
    # -------------------------------------------------------------------------

    def budget_plan(self, month: date) -> BudgetPlan:
        """Planned (budget items) versus realized spend for the month."""
        month = month_start(month)
        expenses = self._month_expenses(month)
        income, _ = self.monthly_income(month)
        totals = self.category_totals(expenses)

        realized_by_pair: dict[tuple[Category, str], int] = defaultdict(int)
        for expense in expenses:
            realized_by_pair[(expense.category, expense.sub_category)] += expense.amount

        items = []
        planned_by_category: dict[Category, int] = defaultdict(int)
        for item in self._store.list(EntityKind.BUDGET_ITEMS):
            realized = realized_by_pair[(item.category, item.sub_category)]
            raw = realized / item.amount * 100 if item.amount > 0 else None
            items.append(BudgetItemUsage(
                item_id=item.id,
                name=item.name or item.sub_category,
                category=item.category,
                sub_category=item.sub_category,
                planned=item.amount,
                realized=realized,
                utilization=clamp_percentage(raw) if raw is not None else 0.0,
                utilization_raw=raw,
            ))
            planned_by_category[item.category] += item.amount

        categories = [
            CategoryPlan(
                category=category,
                planned=planned_by_category[category],
                realized=totals[category],
                cap=self.category_cap(income, category),
            )
            for category in Category.budgeted()
        ]
        return BudgetPlan(month=month, categories=categories, items=items)
