"""
Recurring Scheduler

Owns the obligation lifecycle: Scheduled → Due → Settled.

- next_due_date() steps a date forward by one period. Month and year
  steps overflow into the following month when the day doesn't exist
  (Jan 31 + 1 month = Mar 3, or Mar 2 in a leap year; Feb 29 + 1 year =
  Mar 1).
- A recurring-flagged expense yields exactly one RecurringItem whose first
  due date is one period after the expense. Past occurrences are never
  backfilled.
- roll_forward(today) materializes a Bill for each elapsed occurrence of
  every RecurringItem and moves the item's next_due_date past today.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, Field

from vaultledger.config import AppSettings, get_settings
from vaultledger.ledger.store import LedgerStore
from vaultledger.models.ledger import (
    Bill,
    EntityKind,
    Expense,
    Frequency,
    ObligationState,
    RecurringItem,
)


def _add_months(base: date, months: int) -> date:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    if base.day <= last_day:
        return date(year, month, base.day)
    # Day doesn't exist in the target month: spill over into the next
    return date(year, month, last_day) + timedelta(days=base.day - last_day)


def next_due_date(base: date, frequency: Frequency) -> Optional[date]:
    """
    The date one period after base, or None for Frequency.NONE.
    """
    if frequency == Frequency.WEEKLY:
        return base + timedelta(days=7)
    if frequency == Frequency.MONTHLY:
        return _add_months(base, 1)
    if frequency == Frequency.YEARLY:
        return _add_months(base, 12)
    return None


class RollForwardResult(BaseModel):
    """What one roll-forward tick did."""

    today: date
    created_bill_ids: list[str] = Field(default_factory=list)
    advanced_item_ids: list[str] = Field(default_factory=list)
    due_bills: list[Bill] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created_bill_ids or self.advanced_item_ids)


class RecurringScheduler:
    def __init__(
        self,
        store: LedgerStore,
        app_settings: Optional[AppSettings] = None,
    ):
        self._store = store
        self._settings = app_settings or get_settings().app

    @staticmethod
    def recurring_from_expense(expense: Expense) -> Optional[RecurringItem]:
        """The RecurringItem a recurring-flagged expense creates, if any."""
        due = next_due_date(expense.date, expense.frequency)
        if due is None:
            return None
        return RecurringItem(
            amount=expense.amount,
            category=expense.category,
            sub_category=expense.sub_category,
            merchant=expense.merchant,
            note=expense.note,
            frequency=expense.frequency,
            next_due_date=due,
            is_mock=expense.is_mock,
        )

    @staticmethod
    def next_bill_after_settlement(bill: Bill) -> Optional[Bill]:
        """
        The next occurrence of a standalone repeating bill.

        Bills materialized from a RecurringItem return None: the item's
        own roll-forward produces their successors.
        """
        if bill.recurring_id is not None:
            return None
        due = next_due_date(bill.due_date, bill.frequency)
        if due is None:
            return None
        return Bill(
            merchant=bill.merchant,
            amount=bill.amount,
            category=bill.category,
            note=bill.note,
            frequency=bill.frequency,
            due_date=due,
            is_mock=bill.is_mock,
        )

    def roll_forward(self, today: date) -> RollForwardResult:
        """
        Advance every recurring item to its first due date after today.

        Each occurrence that elapsed on or before today becomes an unpaid
        Bill, at most max_catch_up_occurrences per item (the most recent
        ones are kept). Running it twice on the same day creates nothing
        the second time.
        """
        result = RollForwardResult(today=today)
        existing = {
            (b.recurring_id, b.due_date)
            for b in self._store.list(EntityKind.BILLS)
            if b.recurring_id
        }

        item: RecurringItem
        for item in self._store.list(EntityKind.RECURRING_ITEMS):
            elapsed = []
            due = item.next_due_date
            while due <= today:
                elapsed.append(due)
                due = next_due_date(due, item.frequency)
            if not elapsed:
                continue

            for occurrence in elapsed[-self._settings.max_catch_up_occurrences:]:
                if (item.id, occurrence) in existing:
                    continue
                bill = Bill(
                    merchant=item.merchant,
                    amount=item.amount,
                    category=item.category,
                    note=item.note,
                    frequency=item.frequency,
                    due_date=occurrence,
                    recurring_id=item.id,
                    is_mock=item.is_mock,
                )
                self._store.upsert(EntityKind.BILLS, bill)
                result.created_bill_ids.append(bill.id)

            self._store.upsert(
                EntityKind.RECURRING_ITEMS,
                item.model_copy(update={"next_due_date": due}),
            )
            result.advanced_item_ids.append(item.id)

        result.due_bills = [
            b for b in self._store.list(EntityKind.BILLS)
            if b.state_on(today) == ObligationState.DUE
        ]
        return result
