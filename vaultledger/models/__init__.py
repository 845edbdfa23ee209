"""
Data Models Package

This package contains all Pydantic models used by Vault Ledger.
Every record the ledger stores, and every figure it derives, conforms
to one of these schemas.
"""

from vaultledger.models.ledger import (
    BILL_PAYMENT_SUBCATEGORY,
    DEFAULT_SUBCATEGORY,
    ENTITY_MODELS,
    SENTINEL_MERCHANTS,
    TRANSFER_SUBCATEGORY,
    Account,
    Bill,
    BudgetItem,
    BudgetRule,
    Category,
    EntityKind,
    EntryType,
    Expense,
    Frequency,
    Income,
    IncomeType,
    IssueType,
    LedgerModel,
    Notification,
    NotificationKind,
    NotificationSeverity,
    Obligation,
    ObligationState,
    Polarity,
    RecurringItem,
    Snapshot,
    UserSettings,
    ValidationIssue,
    ValidationResult,
    WealthCategory,
    new_id,
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
from vaultledger.models.imports import (
    ImportCandidate,
    ImportReport,
    StagedEntry,
)
from vaultledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BILL_PAYMENT_SUBCATEGORY",
    "DEFAULT_SUBCATEGORY",
    "ENTITY_MODELS",
    "SENTINEL_MERCHANTS",
    "TRANSFER_SUBCATEGORY",
    "Account",
    "Bill",
    "BudgetItem",
    "BudgetRule",
    "Category",
    "EntityKind",
    "EntryType",
    "Expense",
    "Frequency",
    "Income",
    "IncomeType",
    "IssueType",
    "LedgerModel",
    "Notification",
    "NotificationKind",
    "NotificationSeverity",
    "Obligation",
    "ObligationState",
    "Polarity",
    "RecurringItem",
    "Snapshot",
    "UserSettings",
    "ValidationIssue",
    "ValidationResult",
    "WealthCategory",
    "new_id",
    "round_amount",
    # Metrics
    "INFINITE_RUNWAY",
    "BudgetItemUsage",
    "BudgetMetrics",
    "BudgetPlan",
    "CategoryBreakdown",
    "CategoryPlan",
    "CreditUtilization",
    "MerchantSpend",
    "TrendPoint",
    "WealthStats",
    # Bulk ingestion
    "ImportCandidate",
    "ImportReport",
    "StagedEntry",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
