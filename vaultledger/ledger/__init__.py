"""
Ledger Engine Package

The store, the single-writer dispatcher and the engines it drives:
balance mutation, categorization propagation, rules, recurring
obligations, import reconciliation and budget aggregation.
"""

from vaultledger.ledger.errors import (
    LedgerError,
    RestoreParseError,
    UnboundReferenceError,
    ValidationError,
)
from vaultledger.ledger.migrations import CURRENT_SCHEMA_VERSION, migrate
from vaultledger.ledger.store import LedgerStore
from vaultledger.ledger.balances import (
    BalanceChange,
    BalanceMutator,
    Flow,
    MoneyEvent,
    expense_event,
    income_event,
)
from vaultledger.ledger.propagation import CategorizationPropagator
from vaultledger.ledger.rules import RuleEngine
from vaultledger.ledger.scheduler import RecurringScheduler, RollForwardResult, next_due_date
from vaultledger.ledger.aggregator import BudgetAggregator
from vaultledger.ledger.reconciler import ImportReconciler
from vaultledger.ledger.commands import CommandResult, CommandStatus
from vaultledger.ledger.dispatcher import LedgerDispatcher

__all__ = [
    # Errors
    "LedgerError",
    "RestoreParseError",
    "UnboundReferenceError",
    "ValidationError",
    # Store
    "CURRENT_SCHEMA_VERSION",
    "LedgerStore",
    "migrate",
    # Engines
    "BalanceChange",
    "BalanceMutator",
    "BudgetAggregator",
    "CategorizationPropagator",
    "Flow",
    "ImportReconciler",
    "MoneyEvent",
    "RecurringScheduler",
    "RollForwardResult",
    "RuleEngine",
    "expense_event",
    "income_event",
    "next_due_date",
    # Dispatch
    "CommandResult",
    "CommandStatus",
    "LedgerDispatcher",
]
