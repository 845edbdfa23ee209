"""Tests for the account balance mutator and the money-moving commands."""

from datetime import date

import pytest

from vaultledger.ledger import BalanceMutator, BudgetAggregator, Flow
from vaultledger.ledger.balances import ExpenseCreated, IncomeCreated, TransferCreated
from vaultledger.ledger.commands import (
    AddExpense,
    AddIncome,
    CommandStatus,
    DeleteExpense,
    DeleteIncome,
    SetBalance,
    Transfer,
)
from vaultledger.models.ledger import EntityKind, Polarity


TODAY = date(2024, 5, 15)


def _value(store, account_id: str) -> int:
    return store.get(EntityKind.ACCOUNTS, account_id).value


class TestSignedDelta:
    """Asset and liability sign conventions."""

    @pytest.mark.parametrize("polarity,flow,expected", [
        (Polarity.ASSET, Flow.INFLOW, 100),
        (Polarity.ASSET, Flow.OUTFLOW, -100),
        (Polarity.LIABILITY, Flow.INFLOW, -100),
        (Polarity.LIABILITY, Flow.OUTFLOW, 100),
    ])
    def test_signed_delta(self, polarity, flow, expected):
        """Test each polarity/flow pair moves the value the right way."""
        assert BalanceMutator.signed_delta(polarity, flow, 100) == expected

    def test_inverse_round_trip(self):
        """Test an event's inverse of its inverse is itself."""
        event = TransferCreated(amount=10, from_account_id="a", to_account_id="b")
        assert event.inverse().inverse() == event


class TestScenarios:
    """End-to-end balance scenarios through the dispatcher."""

    def test_scenario_a_asset_expense_round_trip(self, dispatcher, store, add_account):
        """Test an expense debits an asset and its deletion restores it."""
        account = add_account("Savings", 10_000)
        result = dispatcher.dispatch(AddExpense(amount=1_500, date=TODAY, source_account_id=account))
        assert _value(store, account) == 8_500

        dispatcher.dispatch(DeleteExpense(expense_id=result.entity_id))
        assert _value(store, account) == 10_000

    def test_scenario_b_liability(self, dispatcher, store, add_account):
        """Test expenses raise and income lowers the amount owed."""
        card = add_account("Card", 0, Polarity.LIABILITY)
        dispatcher.dispatch(AddExpense(amount=2_000, date=TODAY, source_account_id=card))
        assert _value(store, card) == 2_000
        dispatcher.dispatch(AddIncome(amount=2_000, date=TODAY, target_account_id=card))
        assert _value(store, card) == 0

    def test_scenario_c_transfer(self, dispatcher, store, add_account):
        """Test a transfer moves both legs and records one Transfer expense."""
        a = add_account("A", 20_000)
        b = add_account("B", 1_000)
        result = dispatcher.dispatch(Transfer(amount=5_000, from_account_id=a, to_account_id=b))

        assert result.ok
        assert _value(store, a) == 15_000
        assert _value(store, b) == 6_000
        transfers = [e for e in store.list(EntityKind.EXPENSES) if e.sub_category == "Transfer"]
        assert len(transfers) == 1
        assert transfers[0].source_account_id == a
        assert transfers[0].transfer_target_id == b
        assert transfers[0].note == "Internal"

    def test_transfer_deletion_reverses_both_legs(self, dispatcher, store, add_account):
        """Test deleting a transfer puts both accounts back."""
        a = add_account("A", 20_000)
        b = add_account("B", 1_000)
        result = dispatcher.dispatch(Transfer(amount=5_000, from_account_id=a, to_account_id=b))
        dispatcher.dispatch(DeleteExpense(expense_id=result.entity_id))
        assert _value(store, a) == 20_000
        assert _value(store, b) == 1_000

    def test_transfer_to_same_account_rejected(self, dispatcher, store, add_account):
        """Test a transfer needs two different accounts."""
        a = add_account("A", 20_000)
        result = dispatcher.dispatch(Transfer(amount=5_000, from_account_id=a, to_account_id=a))
        assert result.status == CommandStatus.REJECTED
        assert _value(store, a) == 20_000
        assert store.list(EntityKind.EXPENSES) == []

    def test_transfer_to_missing_account_moves_nothing(self, dispatcher, store, add_account):
        """Test a transfer with an unknown destination is rejected as a whole."""
        a = add_account("A", 20_000)
        result = dispatcher.dispatch(Transfer(amount=5_000, from_account_id=a, to_account_id="gone"))
        assert result.status == CommandStatus.REJECTED
        assert _value(store, a) == 20_000


class TestNetWorthRoundTrip:
    """Offsetting create/delete pairs leave net worth unchanged."""

    def test_round_trip(self, dispatcher, store, add_account):
        """Test net worth returns to its starting value."""
        bank = add_account("Bank", 50_000)
        card = add_account("Card", 3_000, Polarity.LIABILITY)
        before = BudgetAggregator.net_worth(store.list(EntityKind.ACCOUNTS))

        created = [
            dispatcher.dispatch(AddExpense(amount=700, date=TODAY, source_account_id=card)),
            dispatcher.dispatch(AddExpense(amount=1_250, date=TODAY, source_account_id=bank)),
            dispatcher.dispatch(Transfer(amount=3_000, from_account_id=bank, to_account_id=card)),
        ]
        income = dispatcher.dispatch(AddIncome(amount=90_000, date=TODAY, target_account_id=bank))
        assert BudgetAggregator.net_worth(store.list(EntityKind.ACCOUNTS)) != before

        for result in created:
            dispatcher.dispatch(DeleteExpense(expense_id=result.entity_id))
        dispatcher.dispatch(DeleteIncome(income_id=income.entity_id))

        assert BudgetAggregator.net_worth(store.list(EntityKind.ACCOUNTS)) == before


class TestUnboundAndReconcile:
    """Unbound legs and balance reconciliation."""

    def test_unbound_leg_is_noop(self, store):
        """Test an event naming a missing account changes nothing."""
        mutator = BalanceMutator(store)
        assert mutator.apply(ExpenseCreated(amount=100, source_account_id="missing")) == []
        assert mutator.apply(IncomeCreated(amount=100)) == []

    def test_expense_with_deleted_account_is_recorded(self, dispatcher, store):
        """Test an expense bound to an unknown account is kept with a warning."""
        result = dispatcher.dispatch(AddExpense(amount=100, date=TODAY, source_account_id="gone"))
        assert result.ok
        assert store.get(EntityKind.EXPENSES, result.entity_id).source_account_id == "gone"

    def test_set_balance(self, dispatcher, store, add_account):
        """Test reconciliation sets the value directly."""
        account = add_account("Wallet", 900)
        result = dispatcher.dispatch(SetBalance(account_id=account, value=1_234))
        assert result.ok
        assert _value(store, account) == 1_234

    def test_set_balance_same_value_is_noop(self, dispatcher, add_account):
        """Test reconciling to the current value does nothing."""
        account = add_account("Wallet", 900)
        assert dispatcher.dispatch(SetBalance(account_id=account, value=900)).status == CommandStatus.NOOP

    def test_set_balance_missing_account_is_noop(self, dispatcher):
        """Test reconciling a deleted account is a soft no-op."""
        result = dispatcher.dispatch(SetBalance(account_id="gone", value=1))
        assert result.status == CommandStatus.NOOP
