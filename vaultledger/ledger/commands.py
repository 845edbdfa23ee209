"""
Ledger Commands

Every change to the ledger is one of these objects handed to
LedgerDispatcher.dispatch(). A command says WHAT the user (or an import,
or a resolved collaborator call) wants; the dispatcher decides how the
store, the balance mutator and the propagator carry it out.

Fields left unset on the *Changes models are not touched by an update.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from vaultledger.models.imports import ImportReport, StagedEntry
from vaultledger.models.ledger import (
    DEFAULT_SUBCATEGORY,
    Amount,
    Category,
    EntryDate,
    Frequency,
    IncomeType,
    Polarity,
    ValidationIssue,
    WealthCategory,
)


class Command(BaseModel):
    """Base class for all commands."""

    model_config = ConfigDict(str_strip_whitespace=True)

    correlation_id: UUID = Field(default_factory=uuid4)

    @property
    def name(self) -> str:
        return type(self).__name__


# =============================================================================
# EXPENSES
# =============================================================================

class AddExpense(Command):
    """Record an expense; a repeating frequency also schedules it."""

    amount: Optional[Amount] = None
    date: Optional[EntryDate] = None
    category: Category = Category.UNCATEGORIZED
    sub_category: str = DEFAULT_SUBCATEGORY
    merchant: str = ""
    note: str = ""
    source_account_id: Optional[str] = None
    payment_method: Optional[str] = None
    frequency: Frequency = Frequency.NONE
    is_confirmed: bool = True
    is_mock: bool = False


class ExpenseChanges(BaseModel):
    amount: Optional[Amount] = None
    date: Optional[EntryDate] = None
    category: Optional[Category] = None
    sub_category: Optional[str] = None
    merchant: Optional[str] = None
    note: Optional[str] = None
    source_account_id: Optional[str] = None
    payment_method: Optional[str] = None
    is_confirmed: Optional[bool] = None


class UpdateExpense(Command):
    """
    Edit an expense.

    Amount or account changes reverse the old balance effect and apply
    the new one. A category change propagates to same-merchant entries
    unless propagate is False.
    """

    expense_id: str
    changes: ExpenseChanges
    propagate: bool = True


class DeleteExpense(Command):
    expense_id: str


class RecategorizeExpense(Command):
    """Manual category correction; confirms the entry and propagates."""

    expense_id: str
    category: Category
    sub_category: Optional[str] = None
    propagate: bool = True


class ApplySuggestion(Command):
    """Apply an AI category suggestion if the expense still exists."""

    expense_id: str
    category: Category
    sub_category: Optional[str] = None
    propagate: bool = True


# =============================================================================
# INCOME
# =============================================================================

class AddIncome(Command):
    amount: Optional[Amount] = None
    date: Optional[EntryDate] = None
    income_type: IncomeType = IncomeType.OTHER
    note: str = ""
    target_account_id: Optional[str] = None
    payment_method: Optional[str] = None
    is_mock: bool = False


class IncomeChanges(BaseModel):
    amount: Optional[Amount] = None
    date: Optional[EntryDate] = None
    income_type: Optional[IncomeType] = None
    note: Optional[str] = None
    target_account_id: Optional[str] = None
    payment_method: Optional[str] = None


class UpdateIncome(Command):
    income_id: str
    changes: IncomeChanges


class DeleteIncome(Command):
    income_id: str


# =============================================================================
# ACCOUNTS
# =============================================================================

class AddAccount(Command):
    name: str
    polarity: Polarity = Polarity.ASSET
    category: WealthCategory = WealthCategory.OTHER
    group: str = ""
    alias: str = ""
    value: Amount = 0
    credit_limit: Optional[Amount] = None
    date: Optional[EntryDate] = None
    is_mock: bool = False


class AccountChanges(BaseModel):
    """Descriptive fields only; the balance moves through SetBalance."""

    name: Optional[str] = None
    polarity: Optional[Polarity] = None
    category: Optional[WealthCategory] = None
    group: Optional[str] = None
    alias: Optional[str] = None
    credit_limit: Optional[Amount] = None


class UpdateAccount(Command):
    account_id: str
    changes: AccountChanges


class SetBalance(Command):
    """Reconcile an account to its real-world balance."""

    account_id: str
    value: Amount


class DeleteAccount(Command):
    """Delete an account and every expense/income bound to it."""

    account_id: str


class Transfer(Command):
    amount: Optional[Amount] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    date: Optional[EntryDate] = None
    note: str = ""


# =============================================================================
# OBLIGATIONS
# =============================================================================

class AddBill(Command):
    merchant: str = ""
    amount: Optional[Amount] = None
    due_date: Optional[EntryDate] = None
    category: Category = Category.NEEDS
    frequency: Frequency = Frequency.NONE
    note: str = ""
    is_mock: bool = False


class PayBill(Command):
    """Settle a bill, recording a Bill Payment expense."""

    bill_id: str
    source_account_id: Optional[str] = None
    paid_on: Optional[date] = None


class DeleteBill(Command):
    bill_id: str


class DeleteRecurringItem(Command):
    item_id: str


class RollForward(Command):
    """Materialize elapsed recurring occurrences and flag due bills."""

    today: Optional[date] = None


# =============================================================================
# BUDGETS & RULES
# =============================================================================

class AddBudgetItem(Command):
    name: str = ""
    amount: Amount = 0
    category: Category = Category.NEEDS
    sub_category: str = DEFAULT_SUBCATEGORY
    is_mock: bool = False


class DeleteBudgetItem(Command):
    item_id: str


class AddRule(Command):
    keyword: str = ""
    category: Category
    sub_category: str = DEFAULT_SUBCATEGORY


class DeleteRule(Command):
    rule_id: str


class ApplyRules(Command):
    """Batch refine: run rules over uncategorized or unconfirmed expenses."""
    pass


class UpdateSettings(Command):
    monthly_income: Optional[Amount] = None
    split: Optional[dict[str, int]] = None
    currency: Optional[str] = None
    is_cloud_sync_enabled: Optional[bool] = None


# =============================================================================
# BULK & MAINTENANCE
# =============================================================================

class CommitImport(Command):
    """Commit staged entries; malformed ones are skipped and counted."""

    entries: list[StagedEntry]


class RestoreSnapshot(Command):
    """Replace the whole ledger with a snapshot document."""

    payload: Any
    source: str = "file"


class PurgeMockData(Command):
    pass


class PurgeAll(Command):
    pass


class MarkNotificationsRead(Command):
    notification_ids: Optional[list[str]] = None


class ClearNotifications(Command):
    pass


# =============================================================================
# RESULTS
# =============================================================================

class CommandStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    NOOP = "noop"
    QUEUED = "queued"


class CommandResult(BaseModel):
    """What happened to one dispatched command."""

    command: str
    status: CommandStatus
    correlation_id: UUID
    entity_ids: list[str] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)
    message: str = ""
    report: Optional[ImportReport] = None

    @property
    def ok(self) -> bool:
        return self.status == CommandStatus.APPLIED

    @property
    def entity_id(self) -> Optional[str]:
        return self.entity_ids[0] if self.entity_ids else None
