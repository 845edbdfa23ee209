"""Tests for duplicate detection, staging and import commit."""

from datetime import date

import pytest

from vaultledger.ledger import ImportReconciler, ValidationError
from vaultledger.ledger.commands import AddRule, CommandStatus, CommitImport
from vaultledger.models.ledger import (
    Account,
    BudgetRule,
    Category,
    EntityKind,
    Expense,
    Income,
    IssueType,
    Polarity,
)


TODAY = date(2024, 5, 15)


@pytest.fixture
def reconciler() -> ImportReconciler:
    return ImportReconciler()


class TestStage:
    def test_starbucks_duplicates(self, reconciler):
        """Test two identical candidates are both flagged and a near-miss is not."""
        staged = reconciler.stage([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01", "entryType": "Expense"},
            {"amount": 500, "merchant": " starbucks ", "date": "2024-05-01", "entryType": "Expense"},
            {"amount": 501, "merchant": "Starbucks", "date": "2024-05-01", "entryType": "Expense"},
        ])
        assert [s.is_duplicate for s in staged] == [True, True, False]
        assert staged[0].signature == (500, "starbucks", "2024-05-01")

    def test_duplicate_against_ledger(self, reconciler):
        """Test a candidate matching an existing entry is flagged."""
        existing = [Expense(amount=250, date=date(2024, 5, 2), merchant="Uber")]
        staged = reconciler.stage(
            [{"amount": 249.5, "merchant": "UBER", "date": "2024-05-02"}], existing=existing,
        )
        assert staged[0].is_duplicate

    def test_income_signature_uses_note(self, reconciler):
        """Test income duplicates are matched on the note."""
        existing = [Income(amount=90_000, date=date(2024, 5, 1), note="Salary May")]
        staged = reconciler.stage(
            [{"amount": 90_000, "note": "salary may", "date": "2024-05-01", "entryType": "Income"}],
            existing=existing,
        )
        assert staged[0].is_duplicate

    def test_rule_match_annotates(self, reconciler):
        """Test a matching rule sets category and rule id; others stay uncategorized."""
        rule = BudgetRule(keyword="swiggy", category=Category.WANTS, sub_category="Dining")
        staged = reconciler.stage([
            {"amount": 300, "merchant": "SWIGGY*ORDER", "date": "2024-05-01"},
            {"amount": 90, "merchant": "Chai Point", "date": "2024-05-01"},
        ], rules=[rule])
        assert staged[0].matched_rule_id == rule.id
        assert staged[0].category == Category.WANTS
        assert staged[1].matched_rule_id is None
        assert staged[1].category == Category.UNCATEGORIZED

    def test_malformed_flagged_not_dropped(self, reconciler):
        """Test malformed rows stay in the batch with typed issues."""
        staged = reconciler.stage([
            {"merchant": "No amount", "date": "2024-05-01"},
            {"amount": "abc", "date": "someday"},
            {"amount": 10, "date": "2024-05-01", "entryType": "Loan"},
        ])
        assert len(staged) == 3
        assert all(s.is_malformed for s in staged)
        assert all(s.signature is None for s in staged)
        assert {i.field for i in staged[1].issues} == {"amount", "date"}
        assert staged[2].issues[0].issue_type == IssueType.INVALID_VALUE

    def test_wrong_typed_candidate_does_not_abort_batch(self, reconciler):
        """Test a record with wrong field types is flagged while its neighbours stage."""
        staged = reconciler.stage([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
            {"amount": 300, "date": "2024-05-02", "merchant": 12345, "entryType": "Expense"},
            {"amount": 90, "date": "2024-05-02", "entryType": 5},
            "not a record",
        ])

        assert len(staged) == 4
        assert not staged[0].is_malformed
        assert staged[0].signature == (500, "starbucks", "2024-05-01")
        assert [s.is_malformed for s in staged[1:]] == [True, True, True]
        assert staged[1].issues[0].field == "merchant"
        assert staged[1].issues[0].issue_type == IssueType.INVALID_VALUE
        assert staged[2].issues[0].field == "entryType"
        assert "12345" in staged[1].candidate.raw_content


class TestBuildEntity:
    def test_builds_each_type(self, reconciler):
        """Test expenses, incomes and accounts are typed with fresh ids."""
        staged = reconciler.stage([
            {"amount": "1,200", "merchant": "DMart", "date": "2024-05-03T10:00:00Z"},
            {"amount": 5000, "date": "2024-05-01", "entryType": "income", "incomeType": "Salary"},
            {"entryType": "Account", "name": "HDFC Card", "value": 12000,
             "wealthType": "Liability", "wealthCategory": "CreditCard"},
        ])
        expense, income, account = (reconciler.build_entity(s) for s in staged)

        assert isinstance(expense, Expense)
        assert expense.amount == 1_200
        assert expense.date == date(2024, 5, 3)
        assert not expense.is_confirmed
        assert isinstance(income, Income)
        assert income.income_type.value == "Salary"
        assert isinstance(account, Account)
        assert account.polarity == Polarity.LIABILITY
        assert account.value == 12_000

    def test_rule_matched_entry_is_confirmed(self, reconciler):
        """Test an expense categorized by rule is committed as confirmed."""
        rule = BudgetRule(keyword="ola", category=Category.NEEDS)
        staged = reconciler.stage([{"amount": 120, "merchant": "Ola Cabs", "date": "2024-05-01"}], rules=[rule])
        expense = reconciler.build_entity(staged[0])
        assert expense.is_confirmed
        assert expense.rule_id == rule.id

    def test_malformed_raises(self, reconciler):
        """Test building a malformed entry raises ValidationError."""
        staged = reconciler.stage([{"merchant": "x", "date": "2024-05-01"}])
        with pytest.raises(ValidationError):
            reconciler.build_entity(staged[0])


class TestCommitImport:
    def test_partial_commit(self, dispatcher, store, add_account):
        """Test one malformed row is skipped while the rest commit and move balances."""
        bank = add_account("Bank", 10_000)
        staged = dispatcher.reconciler.stage([
            {"amount": 400, "merchant": "Zara", "date": "2024-05-04", "targetAccountId": bank},
            {"merchant": "Broken", "date": "2024-05-04"},
            {"amount": 2_000, "date": "2024-05-05", "entryType": "Income", "targetAccountId": bank},
        ])

        result = dispatcher.dispatch(CommitImport(entries=staged))

        assert result.ok
        assert result.report.expenses_added == 1
        assert result.report.incomes_added == 1
        assert result.report.skipped == 1
        assert 1 in result.report.skipped_issues
        assert store.get(EntityKind.ACCOUNTS, bank).value == 11_600
        assert store.list(EntityKind.NOTIFICATIONS)[0].title == "Ledger Batch Ingested"

    def test_wrong_typed_row_skipped_on_commit(self, dispatcher, store):
        """Test a row that failed typing is skipped and the valid row commits."""
        staged = dispatcher.reconciler.stage([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
            {"amount": 300, "date": "2024-05-02", "merchant": 12345},
        ])
        result = dispatcher.dispatch(CommitImport(entries=staged))

        assert result.report.expenses_added == 1
        assert result.report.skipped == 1
        assert [e.merchant for e in store.list(EntityKind.EXPENSES)] == ["Starbucks"]

    def test_all_malformed_is_noop(self, dispatcher, store):
        """Test a batch where nothing commits reports every skip."""
        staged = dispatcher.reconciler.stage([{"merchant": "Broken"}])
        result = dispatcher.dispatch(CommitImport(entries=staged))
        assert result.status == CommandStatus.NOOP
        assert result.report.skipped == 1
        assert store.list(EntityKind.EXPENSES) == []

    def test_rules_from_store(self, dispatcher, store):
        """Test staging against the store's rules and committing."""
        dispatcher.dispatch(AddRule(keyword="netflix", category=Category.WANTS, sub_category="Streaming"))
        staged = dispatcher.reconciler.stage(
            [{"amount": 649, "merchant": "NETFLIX.COM", "date": "2024-05-02"}],
            rules=store.list(EntityKind.RULES),
        )
        dispatcher.dispatch(CommitImport(entries=staged))
        expense = store.list(EntityKind.EXPENSES)[0]
        assert expense.sub_category == "Streaming"
        assert expense.is_confirmed
