"""Tests for the recurring scheduler and roll-forward."""

from datetime import date

import pytest

from vaultledger.ledger import RecurringScheduler, next_due_date
from vaultledger.ledger.commands import AddBill, CommandStatus, RollForward
from vaultledger.models.ledger import (
    Bill,
    EntityKind,
    Expense,
    Frequency,
    NotificationSeverity,
    RecurringItem,
)


class TestNextDueDate:
    @pytest.mark.parametrize("base,frequency,expected", [
        (date(2024, 1, 31), Frequency.MONTHLY, date(2024, 3, 2)),
        (date(2023, 1, 31), Frequency.MONTHLY, date(2023, 3, 3)),
        (date(2024, 2, 29), Frequency.YEARLY, date(2025, 3, 1)),
        (date(2024, 12, 15), Frequency.MONTHLY, date(2025, 1, 15)),
        (date(2024, 5, 28), Frequency.WEEKLY, date(2024, 6, 4)),
    ])
    def test_steps(self, base, frequency, expected):
        """Test month and year steps overflow into the next month."""
        assert next_due_date(base, frequency) == expected

    def test_none_frequency(self):
        assert next_due_date(date(2024, 5, 1), Frequency.NONE) is None


class TestRecurringFromExpense:
    def test_one_period_ahead(self):
        """Test the first due date is one period after the expense."""
        expense = Expense(amount=499, date=date(2024, 4, 10), merchant="Netflix", frequency=Frequency.MONTHLY)
        item = RecurringScheduler.recurring_from_expense(expense)
        assert item.next_due_date == date(2024, 5, 10)
        assert item.merchant == "Netflix"

    def test_one_off_expense(self):
        """Test a non-repeating expense schedules nothing."""
        expense = Expense(amount=499, date=date(2024, 4, 10))
        assert RecurringScheduler.recurring_from_expense(expense) is None


class TestRollForward:
    def _item(self, store, due: date, frequency: Frequency = Frequency.MONTHLY) -> RecurringItem:
        return store.upsert(EntityKind.RECURRING_ITEMS, RecurringItem(
            amount=1_199, merchant="Airtel", frequency=frequency, next_due_date=due,
        ))

    def test_materializes_elapsed_occurrences(self, store, app_settings):
        """Test each elapsed occurrence becomes a bill and the item moves past today."""
        item = self._item(store, date(2024, 3, 10))
        result = RecurringScheduler(store, app_settings).roll_forward(date(2024, 5, 15))

        bills = store.list(EntityKind.BILLS)
        assert [b.due_date for b in bills] == [date(2024, 3, 10), date(2024, 4, 10), date(2024, 5, 10)]
        assert all(b.recurring_id == item.id and not b.is_paid for b in bills)
        assert store.get(EntityKind.RECURRING_ITEMS, item.id).next_due_date == date(2024, 6, 10)
        assert len(result.due_bills) == 3

    def test_idempotent(self, store, app_settings):
        """Test a second tick on the same day creates nothing."""
        self._item(store, date(2024, 5, 1))
        scheduler = RecurringScheduler(store, app_settings)
        scheduler.roll_forward(date(2024, 5, 15))
        second = scheduler.roll_forward(date(2024, 5, 15))
        assert not second.changed
        assert len(store.list(EntityKind.BILLS)) == 1

    def test_future_item_untouched(self, store, app_settings):
        """Test an item not yet due stays scheduled."""
        self._item(store, date(2024, 6, 1))
        result = RecurringScheduler(store, app_settings).roll_forward(date(2024, 5, 15))
        assert not result.changed
        assert store.list(EntityKind.BILLS) == []

    def test_catch_up_capped(self, store, app_settings):
        """Test a long-dormant weekly item keeps only the most recent occurrences."""
        self._item(store, date(2023, 1, 2), Frequency.WEEKLY)
        RecurringScheduler(store, app_settings).roll_forward(date(2024, 5, 15))
        bills = store.list(EntityKind.BILLS)
        assert len(bills) == app_settings.max_catch_up_occurrences
        assert max(b.due_date for b in bills) <= date(2024, 5, 15)
        assert max(b.due_date for b in bills) > date(2024, 5, 8)


class TestRollForwardCommand:
    def test_due_notices_once(self, dispatcher, store):
        """Test due and overdue bills raise one notice each, even on repeated ticks."""
        dispatcher.dispatch(AddBill(merchant="Rent", amount=20_000, due_date=date(2024, 5, 1)))
        dispatcher.dispatch(AddBill(merchant="Gym", amount=1_500, due_date=date(2024, 5, 15)))
        dispatcher.dispatch(AddBill(merchant="Later", amount=10, due_date=date(2024, 6, 1)))

        dispatcher.dispatch(RollForward())
        dispatcher.dispatch(RollForward())

        notices = {n.title: n for n in store.list(EntityKind.NOTIFICATIONS)}
        assert set(notices) == {"Bill Overdue", "Bill Due"}
        assert notices["Bill Overdue"].severity == NotificationSeverity.ERROR
        assert notices["Bill Due"].severity == NotificationSeverity.WARNING

    def test_nothing_due_is_noop(self, dispatcher):
        """Test a tick with no recurring items is a no-op."""
        assert dispatcher.dispatch(RollForward()).status == CommandStatus.NOOP

    def test_settled_bill_not_due(self, store, app_settings):
        """Test a paid bill is never reported as due."""
        bill = Bill(merchant="x", amount=1, due_date=date(2024, 5, 1), is_paid=True)
        store.upsert(EntityKind.BILLS, bill)
        assert RecurringScheduler(store, app_settings).roll_forward(date(2024, 5, 15)).due_bills == []
