"""
Ledger Dispatcher

The single writer. Every mutation arrives as a Command and is processed to
completion before the next one starts:

    dispatch(cmd) → validate → [store transaction: entries + balances
                  + propagation + notifications] → audit → on_commit hook

Guarantees:
- A command either commits entirely or leaves the store untouched
  (store.transaction() rolls back on any exception).
- ValidationError → REJECTED result carrying typed issues.
- UnboundReferenceError → NOOP result (the target is already gone).
- RestoreParseError → REJECTED result; the previous ledger is kept.
- A command dispatched while another is running (e.g. from an on_commit
  hook) is queued and runs right after, in order.
"""

from collections import deque
from datetime import date
from typing import Callable, Optional

import structlog
from pydantic import ValidationError as SchemaError

from vaultledger.audit import AuditLogger
from vaultledger.config import AppSettings, get_settings
from vaultledger.ledger.balances import BalanceMutator, expense_event, income_event
from vaultledger.ledger.commands import (
    AddAccount,
    AddBill,
    AddBudgetItem,
    AddExpense,
    AddIncome,
    AddRule,
    ApplyRules,
    ApplySuggestion,
    ClearNotifications,
    Command,
    CommandResult,
    CommandStatus,
    CommitImport,
    DeleteAccount,
    DeleteBill,
    DeleteBudgetItem,
    DeleteExpense,
    DeleteIncome,
    DeleteRecurringItem,
    DeleteRule,
    MarkNotificationsRead,
    PayBill,
    PurgeAll,
    PurgeMockData,
    RecategorizeExpense,
    RestoreSnapshot,
    RollForward,
    SetBalance,
    Transfer,
    UpdateAccount,
    UpdateExpense,
    UpdateIncome,
    UpdateSettings,
)
from vaultledger.ledger.errors import RestoreParseError, UnboundReferenceError, ValidationError
from vaultledger.ledger.propagation import CategorizationPropagator
from vaultledger.ledger.reconciler import ImportReconciler
from vaultledger.ledger.rules import RuleEngine
from vaultledger.ledger.scheduler import RecurringScheduler
from vaultledger.ledger.store import LedgerStore
from vaultledger.models.audit import AuditEventBuilder
from vaultledger.models.imports import ImportReport
from vaultledger.models.ledger import (
    BILL_PAYMENT_SUBCATEGORY,
    TRANSFER_SUBCATEGORY,
    Account,
    Bill,
    BudgetItem,
    BudgetRule,
    Category,
    EntityKind,
    Expense,
    Income,
    IssueType,
    Notification,
    NotificationKind,
    NotificationSeverity,
    ValidationIssue,
    ValidationResult,
    new_id,
)
from vaultledger.validation import EntryValidator


logger = structlog.get_logger(__name__)


_MOCK_KINDS = (
    EntityKind.EXPENSES,
    EntityKind.INCOMES,
    EntityKind.ACCOUNTS,
    EntityKind.BILLS,
    EntityKind.BUDGET_ITEMS,
    EntityKind.RECURRING_ITEMS,
)


def _ensure_valid(result: ValidationResult) -> None:
    if result.has_errors:
        raise ValidationError(result.issues)


_RESERVED_SUBCATEGORIES = frozenset({TRANSFER_SUBCATEGORY, BILL_PAYMENT_SUBCATEGORY})


def _check_reserved(existing: Expense, sub_category: Optional[str]) -> None:
    """Transfers and bill payments keep their sub-category; no other entry may take one."""
    if sub_category is None or sub_category == existing.sub_category:
        return
    if existing.sub_category in _RESERVED_SUBCATEGORIES or sub_category in _RESERVED_SUBCATEGORIES:
        raise ValidationError([ValidationIssue(
            field="sub_category",
            issue_type=IssueType.RESERVED_VALUE,
            message=f"'{existing.sub_category}' cannot be changed to '{sub_category}'",
            suggested_fix="Delete the entry and record it again",
        )])


class LedgerDispatcher:
    """Processes commands one at a time against a LedgerStore."""

    def __init__(
        self,
        store: LedgerStore,
        validator: Optional[EntryValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        clock: Callable[[], date] = date.today,
        on_commit: Optional[Callable[[LedgerStore], None]] = None,
    ):
        """
        Args:
            store: The ledger to mutate
            validator: Entry validator (built from app settings if omitted)
            audit_logger: Audit sink; None disables auditing
            clock: Source of "today" for payments and roll-forward
            on_commit: Called after every APPLIED command (autosave)
        """
        self._store = store
        self._settings = app_settings or get_settings().app
        self._validator = validator or EntryValidator(self._settings, clock=clock)
        self._audit_logger = audit_logger
        self._clock = clock
        self._on_commit = on_commit

        self._mutator = BalanceMutator(store, audit_logger)
        self._propagator = CategorizationPropagator(store)
        self._rules = RuleEngine()
        self._scheduler = RecurringScheduler(store, self._settings)
        self._reconciler = ImportReconciler(self._rules)

        self._queue: deque[Command] = deque()
        self._busy = False

        self._handlers: dict[type, Callable[[Command], CommandResult]] = {
            AddExpense: self._add_expense,
            UpdateExpense: self._update_expense,
            DeleteExpense: self._delete_expense,
            RecategorizeExpense: self._recategorize,
            ApplySuggestion: self._apply_suggestion,
            AddIncome: self._add_income,
            UpdateIncome: self._update_income,
            DeleteIncome: self._delete_income,
            AddAccount: self._add_account,
            UpdateAccount: self._update_account,
            SetBalance: self._set_balance,
            DeleteAccount: self._delete_account,
            Transfer: self._transfer,
            AddBill: self._add_bill,
            PayBill: self._pay_bill,
            DeleteBill: self._delete_bill,
            DeleteRecurringItem: self._delete_recurring_item,
            RollForward: self._roll_forward,
            AddBudgetItem: self._add_budget_item,
            DeleteBudgetItem: self._delete_budget_item,
            AddRule: self._add_rule,
            DeleteRule: self._delete_rule,
            ApplyRules: self._apply_rules,
            UpdateSettings: self._update_settings,
            CommitImport: self._commit_import,
            RestoreSnapshot: self._restore_snapshot,
            PurgeMockData: self._purge_mock_data,
            PurgeAll: self._purge_all,
            MarkNotificationsRead: self._mark_notifications_read,
            ClearNotifications: self._clear_notifications,
        }

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def reconciler(self) -> ImportReconciler:
        return self._reconciler

    @property
    def on_commit(self) -> Optional[Callable[[LedgerStore], None]]:
        return self._on_commit

    @on_commit.setter
    def on_commit(self, hook: Optional[Callable[[LedgerStore], None]]) -> None:
        self._on_commit = hook

    # -------------------------------------------------------------------------
    # Dispatch loop
    # -------------------------------------------------------------------------

    def dispatch(self, command: Command) -> CommandResult:
        """
        Run a command to completion.

        Returns the command's result. If another command is already
        running, the command is queued and a QUEUED result is returned;
        it runs as soon as the current one finishes.
        """
        if type(command) not in self._handlers:
            raise TypeError(f"No handler for {type(command).__name__}")

        if self._busy:
            self._queue.append(command)
            return CommandResult(
                command=command.name,
                status=CommandStatus.QUEUED,
                correlation_id=command.correlation_id,
            )

        self._busy = True
        try:
            result = self._run(command)
            while self._queue:
                self._run(self._queue.popleft())
        finally:
            self._busy = False
        return result

    def _run(self, command: Command) -> CommandResult:
        handler = self._handlers[type(command)]
        try:
            with self._store.transaction():
                result = handler(command)
        except ValidationError as e:
            self._audit(AuditEventBuilder.command_rejected(
                command=command.name,
                issues=[i.model_dump(mode="json") for i in e.issues],
                correlation_id=command.correlation_id,
            ))
            return CommandResult(
                command=command.name,
                status=CommandStatus.REJECTED,
                correlation_id=command.correlation_id,
                issues=e.issues,
                message=str(e),
            )
        except SchemaError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(p) for p in err["loc"]) or command.name,
                    issue_type=IssueType.INVALID_VALUE,
                    message=err["msg"],
                )
                for err in e.errors()
            ]
            self._audit(AuditEventBuilder.command_rejected(
                command=command.name,
                issues=[i.model_dump(mode="json") for i in issues],
                correlation_id=command.correlation_id,
            ))
            return CommandResult(
                command=command.name,
                status=CommandStatus.REJECTED,
                correlation_id=command.correlation_id,
                issues=issues,
                message="; ".join(i.message for i in issues),
            )
        except UnboundReferenceError as e:
            self._audit(AuditEventBuilder.command_noop(
                command=command.name,
                reason=str(e),
                correlation_id=command.correlation_id,
            ))
            return CommandResult(
                command=command.name,
                status=CommandStatus.NOOP,
                correlation_id=command.correlation_id,
                message=str(e),
            )
        except RestoreParseError as e:
            self._audit(AuditEventBuilder.snapshot_restore_failed(
                source=getattr(command, "source", "unknown"),
                error_message=str(e),
                correlation_id=command.correlation_id,
            ))
            return CommandResult(
                command=command.name,
                status=CommandStatus.REJECTED,
                correlation_id=command.correlation_id,
                issues=[ValidationIssue(
                    field="snapshot",
                    issue_type=IssueType.INVALID_VALUE,
                    message=str(e),
                )],
                message=str(e),
            )

        logger.debug("command_applied", command=command.name, status=result.status.value)
        if result.status == CommandStatus.APPLIED and self._on_commit:
            self._on_commit(self._store)
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    def _applied(self, command: Command, *entity_ids: str, message: str = "", **extra) -> CommandResult:
        return CommandResult(
            command=command.name,
            status=CommandStatus.APPLIED,
            correlation_id=command.correlation_id,
            entity_ids=[i for i in entity_ids if i],
            message=message,
            **extra,
        )

    def _noop(self, command: Command, message: str) -> CommandResult:
        return CommandResult(
            command=command.name,
            status=CommandStatus.NOOP,
            correlation_id=command.correlation_id,
            message=message,
        )

    def _notify(
        self,
        title: str,
        message: str,
        kind: NotificationKind = NotificationKind.ACTIVITY,
        severity: NotificationSeverity = NotificationSeverity.INFO,
        notification_id: Optional[str] = None,
    ) -> Notification:
        return self._store.add_notification(Notification(
            id=notification_id or new_id(),
            kind=kind,
            title=title,
            message=message,
            severity=severity,
        ))

    def _account_ids(self) -> list[str]:
        return [a.id for a in self._store.list(EntityKind.ACCOUNTS)]

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def _add_expense(self, cmd: AddExpense) -> CommandResult:
        _ensure_valid(self._validator.validate_entry(
            "expense", cmd.amount, cmd.date, cmd.source_account_id, self._account_ids(),
        ))
        expense = Expense(
            amount=cmd.amount,
            date=cmd.date,
            category=cmd.category,
            sub_category=cmd.sub_category,
            merchant=cmd.merchant,
            note=cmd.note,
            source_account_id=cmd.source_account_id,
            payment_method=cmd.payment_method,
            frequency=cmd.frequency,
            is_confirmed=cmd.is_confirmed,
            is_mock=cmd.is_mock,
        )
        self._store.upsert(EntityKind.EXPENSES, expense)
        self._mutator.apply(expense_event(expense), cmd.correlation_id)

        recurring = self._scheduler.recurring_from_expense(expense)
        if recurring is not None:
            self._store.upsert(EntityKind.RECURRING_ITEMS, recurring)

        self._audit(AuditEventBuilder.entry_created(
            EntityKind.EXPENSES.value, expense.id,
            f"expense {expense.amount} at {expense.label or 'unknown'}",
            cmd.correlation_id,
        ))
        return self._applied(cmd, expense.id, recurring.id if recurring else None)

    def _update_expense(self, cmd: UpdateExpense) -> CommandResult:
        existing: Expense = self._store.require(EntityKind.EXPENSES, cmd.expense_id)
        changes = cmd.changes.model_dump(exclude_unset=True)
        if not changes:
            return self._noop(cmd, "Nothing to change")
        _check_reserved(existing, changes.get("sub_category"))

        updated = Expense.model_validate({**existing.model_dump(), **changes})
        _ensure_valid(self._validator.validate_entry(
            "expense", updated.amount, updated.date, updated.source_account_id,
            self._account_ids(),
        ))

        self._store.upsert(EntityKind.EXPENSES, updated)
        old_event, new_event = expense_event(existing), expense_event(updated)
        if old_event != new_event:
            self._mutator.replace(old_event, new_event, cmd.correlation_id)

        propagated = []
        recategorized = (
            updated.category != existing.category
            or updated.sub_category != existing.sub_category
        )
        if cmd.propagate and recategorized:
            propagated = self._propagate(updated, cmd)

        self._audit(AuditEventBuilder.entry_updated(
            EntityKind.EXPENSES.value, updated.id, sorted(changes), cmd.correlation_id,
        ))
        return self._applied(cmd, updated.id, *propagated)

    def _delete_expense(self, cmd: DeleteExpense) -> CommandResult:
        existing: Expense = self._store.require(EntityKind.EXPENSES, cmd.expense_id)
        self._store.remove(EntityKind.EXPENSES, existing.id)
        self._mutator.apply(expense_event(existing, deleted=True), cmd.correlation_id)
        self._audit(AuditEventBuilder.entry_deleted(
            EntityKind.EXPENSES.value, existing.id, cmd.correlation_id,
        ))
        return self._applied(cmd, existing.id)

    def _propagate(self, expense: Expense, cmd: Command) -> list[str]:
        changed = self._propagator.propagate(
            expense.id, expense.category, expense.sub_category, expense.merchant,
        )
        if changed:
            self._audit(AuditEventBuilder.category_propagated(
                expense.id, expense.merchant, changed, cmd.correlation_id,
            ))
        return changed

    def _categorize(
        self,
        cmd,
        ai_upgraded: bool,
    ) -> tuple[Expense, list[str]]:
        existing: Expense = self._store.require(EntityKind.EXPENSES, cmd.expense_id)
        _check_reserved(existing, cmd.sub_category)
        update = {
            "category": cmd.category,
            "is_confirmed": True,
            "is_ai_upgraded": existing.is_ai_upgraded or ai_upgraded,
        }
        if cmd.sub_category is not None:
            update["sub_category"] = cmd.sub_category
        updated = existing.model_copy(update=update)
        self._store.upsert(EntityKind.EXPENSES, updated)
        propagated = self._propagate(updated, cmd) if cmd.propagate else []
        return updated, propagated

    def _recategorize(self, cmd: RecategorizeExpense) -> CommandResult:
        updated, propagated = self._categorize(cmd, ai_upgraded=False)
        self._audit(AuditEventBuilder.entry_updated(
            EntityKind.EXPENSES.value, updated.id, ["category", "sub_category"],
            cmd.correlation_id,
        ))
        return self._applied(cmd, updated.id, *propagated)

    def _apply_suggestion(self, cmd: ApplySuggestion) -> CommandResult:
        # require() raises UnboundReferenceError for a deleted expense → NOOP
        updated, propagated = self._categorize(cmd, ai_upgraded=True)
        self._audit(AuditEventBuilder.suggestion_applied(
            updated.id, updated.category.value, updated.sub_category, cmd.correlation_id,
        ))
        return self._applied(cmd, updated.id, *propagated)

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    def _add_income(self, cmd: AddIncome) -> CommandResult:
        _ensure_valid(self._validator.validate_entry(
            "income", cmd.amount, cmd.date, cmd.target_account_id, self._account_ids(),
            account_field="targetAccountId",
        ))
        income = Income(
            amount=cmd.amount,
            date=cmd.date,
            income_type=cmd.income_type,
            note=cmd.note,
            target_account_id=cmd.target_account_id,
            payment_method=cmd.payment_method,
            is_mock=cmd.is_mock,
        )
        self._store.upsert(EntityKind.INCOMES, income)
        self._mutator.apply(income_event(income), cmd.correlation_id)
        self._audit(AuditEventBuilder.entry_created(
            EntityKind.INCOMES.value, income.id,
            f"{income.income_type.value} income {income.amount}", cmd.correlation_id,
        ))
        return self._applied(cmd, income.id)

    def _update_income(self, cmd: UpdateIncome) -> CommandResult:
        existing: Income = self._store.require(EntityKind.INCOMES, cmd.income_id)
        changes = cmd.changes.model_dump(exclude_unset=True)
        if not changes:
            return self._noop(cmd, "Nothing to change")

        updated = Income.model_validate({**existing.model_dump(), **changes})
        _ensure_valid(self._validator.validate_entry(
            "income", updated.amount, updated.date, updated.target_account_id,
            self._account_ids(), account_field="targetAccountId",
        ))
        self._store.upsert(EntityKind.INCOMES, updated)
        old_event, new_event = income_event(existing), income_event(updated)
        if old_event != new_event:
            self._mutator.replace(old_event, new_event, cmd.correlation_id)

        self._audit(AuditEventBuilder.entry_updated(
            EntityKind.INCOMES.value, updated.id, sorted(changes), cmd.correlation_id,
        ))
        return self._applied(cmd, updated.id)

    def _delete_income(self, cmd: DeleteIncome) -> CommandResult:
        existing: Income = self._store.require(EntityKind.INCOMES, cmd.income_id)
        self._store.remove(EntityKind.INCOMES, existing.id)
        self._mutator.apply(income_event(existing, deleted=True), cmd.correlation_id)
        self._audit(AuditEventBuilder.entry_deleted(
            EntityKind.INCOMES.value, existing.id, cmd.correlation_id,
        ))
        return self._applied(cmd, existing.id)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def _add_account(self, cmd: AddAccount) -> CommandResult:
        _ensure_valid(self._validator.validate_name("account", "name", cmd.name))
        account = Account(
            name=cmd.name,
            alias=cmd.alias or cmd.name,
            polarity=cmd.polarity,
            category=cmd.category,
            group=cmd.group,
            value=cmd.value,
            credit_limit=cmd.credit_limit,
            date=cmd.date or self._clock(),
            is_mock=cmd.is_mock,
        )
        self._store.upsert(EntityKind.ACCOUNTS, account)
        self._audit(AuditEventBuilder.entry_created(
            EntityKind.ACCOUNTS.value, account.id,
            f"{account.polarity.value} account '{account.name}'", cmd.correlation_id,
        ))
        return self._applied(cmd, account.id)

    def _update_account(self, cmd: UpdateAccount) -> CommandResult:
        existing: Account = self._store.require(EntityKind.ACCOUNTS, cmd.account_id)
        changes = cmd.changes.model_dump(exclude_unset=True)
        if "name" in changes:
            _ensure_valid(self._validator.validate_name("account", "name", changes["name"]))
        updated = Account.model_validate({**existing.model_dump(), **changes})
        self._store.upsert(EntityKind.ACCOUNTS, updated)
        self._audit(AuditEventBuilder.entry_updated(
            EntityKind.ACCOUNTS.value, updated.id, sorted(changes), cmd.correlation_id,
        ))
        return self._applied(cmd, updated.id)

    def _set_balance(self, cmd: SetBalance) -> CommandResult:
        changes = self._mutator.set_balance(cmd.account_id, cmd.value, cmd.correlation_id)
        if not changes:
            return self._noop(cmd, "Balance already matches")
        return self._applied(cmd, cmd.account_id)

    def _delete_account(self, cmd: DeleteAccount) -> CommandResult:
        account: Account = self._store.require(EntityKind.ACCOUNTS, cmd.account_id)
        self._store.remove(EntityKind.ACCOUNTS, account.id)

        # Cascade: bound entries go with the account, no balance reversal
        expenses = self._store.remove_where(
            EntityKind.EXPENSES, lambda e: e.source_account_id == account.id,
        )
        incomes = self._store.remove_where(
            EntityKind.INCOMES, lambda i: i.target_account_id == account.id,
        )

        self._notify(
            "Account Deleted",
            f"{account.display_name} and {len(expenses) + len(incomes)} linked entries were removed.",
            severity=NotificationSeverity.ERROR,
        )
        self._audit(AuditEventBuilder.account_purged(
            account.id, account.name, len(expenses), len(incomes), cmd.correlation_id,
        ))
        return self._applied(
            cmd, account.id, *(e.id for e in expenses), *(i.id for i in incomes),
        )

    def _transfer(self, cmd: Transfer) -> CommandResult:
        entry_date = cmd.date or self._clock()
        _ensure_valid(self._validator.validate_transfer(
            cmd.amount, entry_date, cmd.from_account_id, cmd.to_account_id,
            self._account_ids(),
        ))
        expense = Expense(
            amount=cmd.amount,
            date=entry_date,
            category=Category.UNCATEGORIZED,
            sub_category=TRANSFER_SUBCATEGORY,
            merchant="Transfer",
            note=cmd.note or "Internal",
            source_account_id=cmd.from_account_id,
            transfer_target_id=cmd.to_account_id,
            is_confirmed=True,
        )
        self._store.upsert(EntityKind.EXPENSES, expense)
        self._mutator.apply(expense_event(expense), cmd.correlation_id)
        self._audit(AuditEventBuilder.transfer_recorded(
            expense.id, expense.amount, cmd.from_account_id, cmd.to_account_id,
            cmd.correlation_id,
        ))
        return self._applied(cmd, expense.id)

    # -------------------------------------------------------------------------
    # Obligations
    # -------------------------------------------------------------------------

    def _add_bill(self, cmd: AddBill) -> CommandResult:
        _ensure_valid(self._validator.validate_bill(cmd.merchant, cmd.amount, cmd.due_date))
        bill = Bill(
            merchant=cmd.merchant,
            amount=cmd.amount,
            due_date=cmd.due_date,
            category=cmd.category,
            frequency=cmd.frequency,
            note=cmd.note,
            is_mock=cmd.is_mock,
        )
        self._store.upsert(EntityKind.BILLS, bill)
        self._audit(AuditEventBuilder.entry_created(
            EntityKind.BILLS.value, bill.id, f"bill {bill.merchant} due {bill.due_date}",
            cmd.correlation_id,
        ))
        return self._applied(cmd, bill.id)

    def _pay_bill(self, cmd: PayBill) -> CommandResult:
        bill: Bill = self._store.require(EntityKind.BILLS, cmd.bill_id)
        if bill.is_paid:
            return self._noop(cmd, f"Bill {bill.merchant} is already settled")

        paid_on = cmd.paid_on or self._clock()
        _ensure_valid(self._validator.validate_entry(
            "bill payment", bill.amount, paid_on, cmd.source_account_id, self._account_ids(),
        ))

        self._store.upsert(EntityKind.BILLS, bill.model_copy(update={"is_paid": True}))
        expense = Expense(
            amount=bill.amount,
            date=paid_on,
            category=bill.category,
            sub_category=BILL_PAYMENT_SUBCATEGORY,
            merchant=bill.merchant,
            note=f"Settled bill: {bill.merchant}",
            source_account_id=cmd.source_account_id,
            bill_id=bill.id,
            is_confirmed=True,
        )
        self._store.upsert(EntityKind.EXPENSES, expense)
        self._mutator.apply(expense_event(expense), cmd.correlation_id)

        next_bill = self._scheduler.next_bill_after_settlement(bill)
        if next_bill is not None:
            self._store.upsert(EntityKind.BILLS, next_bill)

        self._notify(
            "Bill Settled",
            f"{bill.merchant} ({bill.amount:,}) marked as paid.",
            kind=NotificationKind.BILL,
            severity=NotificationSeverity.SUCCESS,
        )
        self._audit(AuditEventBuilder.bill_settled(
            bill.id, bill.merchant, bill.amount, expense.id, cmd.correlation_id,
        ))
        return self._applied(cmd, bill.id, expense.id, next_bill.id if next_bill else None)

    def _delete_bill(self, cmd: DeleteBill) -> CommandResult:
        bill = self._store.require(EntityKind.BILLS, cmd.bill_id)
        self._store.remove(EntityKind.BILLS, bill.id)
        self._audit(AuditEventBuilder.entry_deleted(
            EntityKind.BILLS.value, bill.id, cmd.correlation_id,
        ))
        return self._applied(cmd, bill.id)

    def _delete_recurring_item(self, cmd: DeleteRecurringItem) -> CommandResult:
        item = self._store.require(EntityKind.RECURRING_ITEMS, cmd.item_id)
        self._store.remove(EntityKind.RECURRING_ITEMS, item.id)
        self._audit(AuditEventBuilder.entry_deleted(
            EntityKind.RECURRING_ITEMS.value, item.id, cmd.correlation_id,
        ))
        return self._applied(cmd, item.id)

    def _roll_forward(self, cmd: RollForward) -> CommandResult:
        today = cmd.today or self._clock()
        result = self._scheduler.roll_forward(today)

        # One notice per due bill; stable ids so repeated ticks don't pile up
        existing = {n.id for n in self._store.list(EntityKind.NOTIFICATIONS)}
        for bill in result.due_bills:
            notification_id = f"bill-due-{bill.id}"
            if notification_id in existing:
                continue
            overdue = bill.due_date < today
            self._notify(
                "Bill Overdue" if overdue else "Bill Due",
                f"{bill.merchant} ({bill.amount:,}) due {bill.due_date.isoformat()}.",
                kind=NotificationKind.BILL,
                severity=NotificationSeverity.ERROR if overdue else NotificationSeverity.WARNING,
                notification_id=notification_id,
            )

        self._audit(AuditEventBuilder.obligations_rolled_forward(
            len(result.created_bill_ids), len(result.due_bills), cmd.correlation_id,
        ))
        if not result.changed:
            return self._noop(cmd, "No recurring items were due")
        return self._applied(cmd, *result.created_bill_ids)

    # -------------------------------------------------------------------------
    # Budgets, rules & settings
    # -------------------------------------------------------------------------

    def _add_budget_item(self, cmd: AddBudgetItem) -> CommandResult:
        item = BudgetItem(
            name=cmd.name or cmd.sub_category,
            amount=cmd.amount,
            category=cmd.category,
            sub_category=cmd.sub_category,
            is_mock=cmd.is_mock,
        )
        self._store.upsert(EntityKind.BUDGET_ITEMS, item)
        return self._applied(cmd, item.id)

    def _delete_budget_item(self, cmd: DeleteBudgetItem) -> CommandResult:
        item = self._store.require(EntityKind.BUDGET_ITEMS, cmd.item_id)
        self._store.remove(EntityKind.BUDGET_ITEMS, item.id)
        return self._applied(cmd, item.id)

    def _add_rule(self, cmd: AddRule) -> CommandResult:
        _ensure_valid(self._validator.validate_name("rule", "keyword", cmd.keyword))
        rule = BudgetRule(keyword=cmd.keyword, category=cmd.category, sub_category=cmd.sub_category)
        self._store.upsert(EntityKind.RULES, rule)
        self._audit(AuditEventBuilder.entry_created(
            EntityKind.RULES.value, rule.id,
            f"rule '{rule.keyword}' -> {rule.category.value}", cmd.correlation_id,
        ))
        return self._applied(cmd, rule.id)

    def _delete_rule(self, cmd: DeleteRule) -> CommandResult:
        rule = self._store.require(EntityKind.RULES, cmd.rule_id)
        self._store.remove(EntityKind.RULES, rule.id)
        return self._applied(cmd, rule.id)

    def _apply_rules(self, cmd: ApplyRules) -> CommandResult:
        expenses = self._store.list(EntityKind.EXPENSES)
        refined = self._rules.refine(expenses, self._store.list(EntityKind.RULES))
        for expense in refined:
            self._store.upsert(EntityKind.EXPENSES, expense)

        scanned = sum(1 for e in expenses if self._rules.needs_refinement(e))
        self._audit(AuditEventBuilder.rules_applied(len(refined), scanned, cmd.correlation_id))
        if not refined:
            return self._noop(cmd, "No rule matched")
        return self._applied(
            cmd, *(e.id for e in refined),
            message=f"{len(refined)} of {scanned} entries categorized by rules",
        )

    def _update_settings(self, cmd: UpdateSettings) -> CommandResult:
        changes = cmd.model_dump(
            exclude_unset=True, exclude_none=True, exclude={"correlation_id"},
        )
        if not changes:
            return self._noop(cmd, "Nothing to change")
        if "split" in changes:
            _ensure_valid(self._validator.validate_split(changes["split"]))
        self._store.update_settings(**changes)
        return self._applied(cmd)

    # -------------------------------------------------------------------------
    # Bulk & maintenance
    # -------------------------------------------------------------------------

    def _commit_import(self, cmd: CommitImport) -> CommandResult:
        report = ImportReport()
        for entry in cmd.entries:
            try:
                entity = self._reconciler.build_entity(entry)
            except ValidationError as e:
                report.skipped += 1
                report.skipped_issues[entry.index] = e.issues
                continue

            if isinstance(entity, Account):
                self._store.upsert(EntityKind.ACCOUNTS, entity)
                report.accounts_added += 1
            elif isinstance(entity, Income):
                self._store.upsert(EntityKind.INCOMES, entity)
                self._mutator.apply(income_event(entity), cmd.correlation_id)
                report.incomes_added += 1
            else:
                self._store.upsert(EntityKind.EXPENSES, entity)
                self._mutator.apply(expense_event(entity), cmd.correlation_id)
                report.expenses_added += 1
            report.created_ids.append(entity.id)

        self._notify(
            "Ledger Batch Ingested",
            f"Added {report.expenses_added} expenses, {report.incomes_added} incomes "
            f"and {report.accounts_added} accounts; skipped {report.skipped}.",
            kind=NotificationKind.IMPORT,
            severity=NotificationSeverity.SUCCESS if not report.skipped else NotificationSeverity.WARNING,
        )
        self._audit(AuditEventBuilder.import_committed(
            {
                "expenses": report.expenses_added,
                "incomes": report.incomes_added,
                "accounts": report.accounts_added,
            },
            report.skipped,
            cmd.correlation_id,
        ))
        if not report.total_added:
            return CommandResult(
                command=cmd.name,
                status=CommandStatus.NOOP,
                correlation_id=cmd.correlation_id,
                message="Nothing in the batch could be committed",
                report=report,
            )
        return self._applied(cmd, *report.created_ids, report=report)

    def _restore_snapshot(self, cmd: RestoreSnapshot) -> CommandResult:
        counts = self._store.restore(cmd.payload)
        self._audit(AuditEventBuilder.snapshot_restored(cmd.source, counts, cmd.correlation_id))
        return self._applied(cmd, message=f"Restored from {cmd.source}")

    def _purge_mock_data(self, cmd: PurgeMockData) -> CommandResult:
        removed = []
        for kind in _MOCK_KINDS:
            removed += self._store.remove_where(kind, lambda e: e.is_mock)
        if not removed:
            return self._noop(cmd, "No demo data to remove")
        self._notify("Demo Data Cleared", f"{len(removed)} demo records removed.")
        return self._applied(cmd, *(e.id for e in removed))

    def _purge_all(self, cmd: PurgeAll) -> CommandResult:
        removed = 0
        for kind in EntityKind:
            removed += len(self._store.remove_where(kind, lambda e: True))
        self._audit(AuditEventBuilder.entry_deleted("all", "*", cmd.correlation_id))
        return self._applied(cmd, message=f"{removed} records removed")

    def _mark_notifications_read(self, cmd: MarkNotificationsRead) -> CommandResult:
        wanted = set(cmd.notification_ids) if cmd.notification_ids is not None else None
        for notification in self._store.list(EntityKind.NOTIFICATIONS):
            if notification.read or (wanted is not None and notification.id not in wanted):
                continue
            self._store.add_notification(notification.model_copy(update={"read": True}))
        return self._applied(cmd)

    def _clear_notifications(self, cmd: ClearNotifications) -> CommandResult:
        self._store.remove_where(EntityKind.NOTIFICATIONS, lambda n: True)
        return self._applied(cmd)
