"""
Account Balance Mutator

Account.value changes only here. Call sites describe WHAT happened as a
money event; the mutator turns it into signed deltas:

    Asset:     inflow +amount    outflow -amount
    Liability: inflow -amount    outflow +amount   (value = amount owed)

An event naming an account that doesn't exist changes nothing for that
leg. Every leg of one event is computed before any is written, and the
writes happen inside one store transaction, so a transfer moves both
accounts or neither.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from vaultledger.audit import AuditLogger
from vaultledger.models.audit import AuditEventBuilder
from vaultledger.models.ledger import Account, EntityKind, Expense, Income, Polarity
from vaultledger.ledger.store import LedgerStore


class Flow(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


# =============================================================================
# MONEY EVENTS
# =============================================================================

class MoneyEvent(BaseModel):
    """Base for events that move money in or out of accounts."""

    amount: int = Field(..., ge=0)

    def legs(self) -> list[tuple[Optional[str], Flow]]:
        raise NotImplementedError

    def inverse(self) -> "MoneyEvent":
        raise NotImplementedError


class ExpenseCreated(MoneyEvent):
    source_account_id: Optional[str] = None

    def legs(self):
        return [(self.source_account_id, Flow.OUTFLOW)]

    def inverse(self):
        return ExpenseDeleted(amount=self.amount, source_account_id=self.source_account_id)


class ExpenseDeleted(MoneyEvent):
    source_account_id: Optional[str] = None

    def legs(self):
        return [(self.source_account_id, Flow.INFLOW)]

    def inverse(self):
        return ExpenseCreated(amount=self.amount, source_account_id=self.source_account_id)


class IncomeCreated(MoneyEvent):
    target_account_id: Optional[str] = None

    def legs(self):
        return [(self.target_account_id, Flow.INFLOW)]

    def inverse(self):
        return IncomeDeleted(amount=self.amount, target_account_id=self.target_account_id)


class IncomeDeleted(MoneyEvent):
    target_account_id: Optional[str] = None

    def legs(self):
        return [(self.target_account_id, Flow.OUTFLOW)]

    def inverse(self):
        return IncomeCreated(amount=self.amount, target_account_id=self.target_account_id)


class TransferCreated(MoneyEvent):
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None

    def legs(self):
        return [
            (self.from_account_id, Flow.OUTFLOW),
            (self.to_account_id, Flow.INFLOW),
        ]

    def inverse(self):
        return TransferDeleted(
            amount=self.amount,
            from_account_id=self.from_account_id,
            to_account_id=self.to_account_id,
        )


class TransferDeleted(MoneyEvent):
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None

    def legs(self):
        return [
            (self.from_account_id, Flow.INFLOW),
            (self.to_account_id, Flow.OUTFLOW),
        ]

    def inverse(self):
        return TransferCreated(
            amount=self.amount,
            from_account_id=self.from_account_id,
            to_account_id=self.to_account_id,
        )


def expense_event(expense: Expense, deleted: bool = False) -> MoneyEvent:
    """The event an expense's creation (or deletion) represents."""
    if expense.is_transfer:
        created = TransferCreated(
            amount=expense.amount,
            from_account_id=expense.source_account_id,
            to_account_id=expense.transfer_target_id,
        )
    else:
        created = ExpenseCreated(
            amount=expense.amount,
            source_account_id=expense.source_account_id,
        )
    return created.inverse() if deleted else created


def income_event(income: Income, deleted: bool = False) -> MoneyEvent:
    created = IncomeCreated(amount=income.amount, target_account_id=income.target_account_id)
    return created.inverse() if deleted else created


class BalanceChange(BaseModel):
    """One account value before and after an event."""

    account_id: str
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


# =============================================================================
# MUTATOR
# =============================================================================

class BalanceMutator:
    """Applies money events to the accounts held by a store."""

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger

    @staticmethod
    def signed_delta(polarity: Polarity, flow: Flow, amount: int) -> int:
        """Signed change to an account's value for one leg."""
        if polarity == Polarity.LIABILITY:
            return amount if flow == Flow.OUTFLOW else -amount
        return amount if flow == Flow.INFLOW else -amount

    def apply(
        self,
        event: MoneyEvent,
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceChange]:
        """
        Apply every leg of an event.

        Unbound legs are skipped. Returns one BalanceChange per account
        actually touched.
        """
        return self.apply_all([event], correlation_id=correlation_id)

    def replace(
        self,
        old: MoneyEvent,
        new: MoneyEvent,
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceChange]:
        """Reverse `old` and apply `new` as one change (used for edits)."""
        return self.apply_all([old.inverse(), new], correlation_id=correlation_id)

    def set_balance(
        self,
        account_id: str,
        value: int,
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceChange]:
        """
        Reconcile an account to a known real-world value.

        Raises:
            UnboundReferenceError: if the account doesn't exist
        """
        account: Account = self._store.require(EntityKind.ACCOUNTS, account_id)
        return self._write(
            {account_id: (account, value)},
            cause="reconciled",
            correlation_id=correlation_id,
        )

    def apply_all(
        self,
        events: list[MoneyEvent],
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceChange]:
        # Compute every new value first, accumulating per account
        pending: dict[str, tuple[Account, int]] = {}
        for event in events:
            for account_id, flow in event.legs():
                if not account_id:
                    continue
                if account_id in pending:
                    account, value = pending[account_id]
                else:
                    account = self._store.get(EntityKind.ACCOUNTS, account_id)
                    if account is None:
                        continue
                    value = account.value
                value += self.signed_delta(account.polarity, flow, event.amount)
                pending[account_id] = (account, value)

        cause = ",".join(type(e).__name__ for e in events)
        return self._write(pending, cause=cause, correlation_id=correlation_id)

    def _write(
        self,
        pending: dict[str, tuple[Account, int]],
        cause: str,
        correlation_id: Optional[UUID],
    ) -> list[BalanceChange]:
        changes = []
        with self._store.transaction():
            for account_id, (account, value) in pending.items():
                if value == account.value:
                    continue
                self._store.upsert(
                    EntityKind.ACCOUNTS,
                    account.model_copy(update={"value": value}),
                )
                changes.append(BalanceChange(
                    account_id=account_id,
                    before=account.value,
                    after=value,
                ))

        if self._audit_logger:
            for change in changes:
                self._audit_logger.log(AuditEventBuilder.balance_adjusted(
                    account_id=change.account_id,
                    before=change.before,
                    after=change.after,
                    cause=cause,
                    correlation_id=correlation_id,
                ))
        return changes
