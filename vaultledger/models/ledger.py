"""
Core Ledger Models for Vault Ledger

These models define the strict schemas for every record the ledger keeps.
They are designed to:
1. Enforce type safety at runtime
2. Round money to whole currency units in exactly one place
3. Serialize to the snapshot document (camelCase keys) and back
4. Tolerate the legacy spellings older snapshots carry

Amounts are integers. Anything arriving as a float, Decimal or numeric
string is rounded half-up to a whole unit on the way in.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


# Reserved sub-categories and merchants
TRANSFER_SUBCATEGORY = "Transfer"
BILL_PAYMENT_SUBCATEGORY = "Bill Payment"
DEFAULT_SUBCATEGORY = "General"
SENTINEL_MERCHANTS = frozenset({"General", "Transfer", "Unknown"})


def new_id() -> str:
    """Generate an opaque entity id."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_amount(value: Any) -> int:
    """
    Round a money value to a whole currency unit (half-up).

    Accepts ints, floats, Decimals and numeric strings (commas allowed).
    Raises ValueError for anything that is not a number.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be a number, not a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        quantized = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a valid amount: {value!r}") from None
    if not quantized.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    return int(quantized)


def coerce_date(value: Any) -> Any:
    """Accept ISO datetimes where a date is expected by keeping the date part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[4:5] == "-":
        return value[:10]
    return value


Amount = Annotated[int, BeforeValidator(round_amount)]
EntryDate = Annotated[date, BeforeValidator(coerce_date)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Category(str, Enum):
    """
    Budget buckets an expense can land in.

    UNCATEGORIZED is the reserved "not yet decided" state; it never has a
    cap of its own.
    """
    NEEDS = "Needs"
    WANTS = "Wants"
    SAVINGS = "Savings"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def budgeted(cls) -> tuple["Category", ...]:
        """Categories that carry a share of the income split."""
        return (cls.NEEDS, cls.WANTS, cls.SAVINGS)


class IncomeType(str, Enum):
    """Source of an income entry."""
    SALARY = "Salary"
    FREELANCE = "Freelance"
    INVESTMENT = "Investment"
    GIFT = "Gift"
    OTHER = "Other"


class Polarity(str, Enum):
    """
    Whether an account holds value or represents an obligation.

    Older snapshots spell ASSET as "Investment"; it is accepted on input.
    """
    ASSET = "Asset"
    LIABILITY = "Liability"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Polarity"]:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("investment", "asset"):
                return cls.ASSET
            if lowered == "liability":
                return cls.LIABILITY
        return None


class WealthCategory(str, Enum):
    """Kind of account."""
    SAVINGS = "Savings"
    PENSION = "Pension"
    GOLD = "Gold"
    INVESTMENT = "Investment"
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    PERSONAL_LOAN = "Personal Loan"
    HOME_LOAN = "Home Loan"
    OVERDRAFT = "Overdraft"
    GOLD_LOAN = "Gold Loan"
    OTHER = "Other"

    @classmethod
    def _missing_(cls, value: object) -> Optional["WealthCategory"]:
        # "CreditCard", "credit card" and "credit_card" all mean CREDIT_CARD
        if isinstance(value, str):
            key = value.replace(" ", "").replace("_", "").lower()
            for member in cls:
                if member.value.replace(" ", "").lower() == key:
                    return member
        return None

    @property
    def is_liquid(self) -> bool:
        return self in (WealthCategory.SAVINGS, WealthCategory.CASH)


class Frequency(str, Enum):
    """Repeat cadence of an obligation."""
    NONE = "None"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class ObligationState(str, Enum):
    """
    Lifecycle of a scheduled obligation.

    SCHEDULED: due in the future (recurring templates are always here)
    DUE:       due today or overdue, not yet paid
    SETTLED:   paid
    """
    SCHEDULED = "Scheduled"
    DUE = "Due"
    SETTLED = "Settled"


class NotificationKind(str, Enum):
    """What a notification is about."""
    ACTIVITY = "Activity"
    BILL = "Bill"
    SYNC = "Sync"
    SUGGESTION = "Suggestion"
    IMPORT = "Import"
    BUDGET = "Budget"


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class EntryType(str, Enum):
    """Entity a bulk-ingestion candidate should become."""
    EXPENSE = "Expense"
    INCOME = "Income"
    ACCOUNT = "Account"


class EntityKind(str, Enum):
    """
    Collections owned by the ledger store.

    Values double as the snapshot document keys.
    """
    EXPENSES = "expenses"
    INCOMES = "incomes"
    ACCOUNTS = "wealthItems"
    BILLS = "bills"
    BUDGET_ITEMS = "budgetItems"
    NOTIFICATIONS = "notifications"
    RULES = "rules"
    RECURRING_ITEMS = "recurringItems"


# =============================================================================
# BASE
# =============================================================================

class LedgerModel(BaseModel):
    """Shared configuration: camelCase aliases, names accepted too."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict:
        """Serialize with snapshot keys."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class Expense(LedgerModel):
    """
    Money leaving the household.

    A transfer is an Expense with sub_category "Transfer": the record
    names the source account, and transfer_target_id keeps the
    destination so deleting it can reverse both legs.
    """

    id: str = Field(default_factory=new_id)
    amount: Amount = Field(..., ge=0, description="Whole currency units")
    date: EntryDate
    category: Category = Category.UNCATEGORIZED
    sub_category: str = DEFAULT_SUBCATEGORY
    merchant: str = ""
    note: str = ""
    payment_method: Optional[str] = None
    frequency: Frequency = Frequency.NONE

    # Account binding
    source_account_id: Optional[str] = None
    transfer_target_id: Optional[str] = None

    # Provenance
    is_confirmed: bool = True
    is_ai_upgraded: bool = Field(default=False, alias="isAIUpgraded")
    rule_id: Optional[str] = None
    bill_id: Optional[str] = None
    is_mock: bool = False

    @property
    def is_transfer(self) -> bool:
        return self.sub_category == TRANSFER_SUBCATEGORY

    @property
    def is_bill_payment(self) -> bool:
        return self.sub_category == BILL_PAYMENT_SUBCATEGORY

    @property
    def label(self) -> str:
        """Merchant, falling back to the note."""
        return self.merchant or self.note


class Income(LedgerModel):
    """Money arriving, optionally into an account."""

    id: str = Field(default_factory=new_id)
    amount: Amount = Field(..., ge=0)
    date: EntryDate
    income_type: IncomeType = Field(default=IncomeType.OTHER, alias="type")
    note: str = ""
    payment_method: Optional[str] = None
    target_account_id: Optional[str] = None
    is_mock: bool = False


class Account(LedgerModel):
    """
    A balance-bearing wealth item.

    `value` is signed and may only be changed through the balance mutator.
    For liabilities it is the amount owed.
    """

    id: str = Field(default_factory=new_id)
    polarity: Polarity = Field(default=Polarity.ASSET, alias="type")
    category: WealthCategory = WealthCategory.OTHER
    group: str = ""
    name: str = Field(..., min_length=1)
    alias: str = ""
    value: Amount = 0
    credit_limit: Optional[Amount] = None
    date: Optional[EntryDate] = None
    is_mock: bool = False

    @property
    def is_liability(self) -> bool:
        return self.polarity == Polarity.LIABILITY

    @property
    def display_name(self) -> str:
        return self.alias or self.name


class BudgetItem(LedgerModel):
    """A planned monthly amount for one category/sub-category pair."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    amount: Amount = Field(default=0, ge=0)
    category: Category = Category.NEEDS
    sub_category: str = DEFAULT_SUBCATEGORY
    is_mock: bool = False


class BudgetRule(LedgerModel):
    """Keyword → category mapping applied during bulk flows."""

    id: str = Field(default_factory=new_id)
    keyword: str = Field(..., min_length=1)
    category: Category
    sub_category: str = DEFAULT_SUBCATEGORY


# =============================================================================
# OBLIGATIONS
# =============================================================================

class Obligation(LedgerModel):
    """
    Shared shape of anything that falls due on a date.

    RecurringItem is the template (always SCHEDULED); Bill is one dated
    occurrence moving SCHEDULED → DUE → SETTLED.
    """

    id: str = Field(default_factory=new_id)
    amount: Amount = Field(default=0, ge=0)
    category: Category = Category.NEEDS
    merchant: str = ""
    note: str = ""
    frequency: Frequency = Frequency.NONE
    is_mock: bool = False


class Bill(Obligation):
    """One dated obligation."""

    due_date: EntryDate
    is_paid: bool = False
    recurring_id: Optional[str] = None

    def state_on(self, today: date) -> ObligationState:
        if self.is_paid:
            return ObligationState.SETTLED
        if self.due_date <= today:
            return ObligationState.DUE
        return ObligationState.SCHEDULED


class RecurringItem(Obligation):
    """Template that materializes bills on its schedule."""

    sub_category: str = DEFAULT_SUBCATEGORY
    next_due_date: EntryDate

    @field_validator("frequency")
    @classmethod
    def must_repeat(cls, v: Frequency) -> Frequency:
        if v == Frequency.NONE:
            raise ValueError("A recurring item needs a repeating frequency")
        return v


# =============================================================================
# NOTIFICATIONS & SETTINGS
# =============================================================================

class Notification(LedgerModel):
    """A user-visible notice; the store keeps a bounded, newest-first list."""

    id: str = Field(default_factory=new_id)
    kind: NotificationKind = Field(default=NotificationKind.ACTIVITY, alias="type")
    title: str
    message: str = ""
    severity: NotificationSeverity = NotificationSeverity.INFO
    timestamp: datetime = Field(default_factory=utc_now)
    read: bool = False


class UserSettings(LedgerModel):
    """
    Per-ledger preferences plus the revision bookkeeping used by sync.

    Unknown keys (theme, display preferences) are kept as-is so a restore
    followed by a save never loses them.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    monthly_income: Amount = Field(default=0, ge=0)
    split: dict[str, int] = Field(
        default_factory=lambda: {"Needs": 50, "Wants": 30, "Savings": 20}
    )
    currency: str = "INR"
    is_cloud_sync_enabled: bool = False
    last_synced: Optional[datetime] = None
    revision: int = Field(default=0, ge=0)
    synced_revision: int = Field(default=0, ge=0)

    @field_validator("split")
    @classmethod
    def validate_split(cls, v: dict[str, int]) -> dict[str, int]:
        for key, pct in v.items():
            if pct < 0 or pct > 100:
                raise ValueError(f"Split for {key} must be between 0 and 100")
        return v

    def split_for(self, category: Category) -> int:
        return int(self.split.get(category.value, 0))

    @property
    def has_unsynced_changes(self) -> bool:
        return self.revision != self.synced_revision


class Snapshot(LedgerModel):
    """
    The whole ledger as one document.

    Same shape for local durable storage, cloud backup and file export.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    schema_version: int = 0
    settings: UserSettings = Field(default_factory=UserSettings)
    expenses: list[Expense] = Field(default_factory=list)
    incomes: list[Income] = Field(default_factory=list)
    wealth_items: list[Account] = Field(default_factory=list)
    bills: list[Bill] = Field(default_factory=list)
    budget_items: list[BudgetItem] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    rules: list[BudgetRule] = Field(default_factory=list)
    recurring_items: list[RecurringItem] = Field(default_factory=list)
    user: Optional[dict[str, Any]] = None
    timestamp: Optional[datetime] = None


ENTITY_MODELS: dict[EntityKind, type[LedgerModel]] = {
    EntityKind.EXPENSES: Expense,
    EntityKind.INCOMES: Income,
    EntityKind.ACCOUNTS: Account,
    EntityKind.BILLS: Bill,
    EntityKind.BUDGET_ITEMS: BudgetItem,
    EntityKind.NOTIFICATIONS: Notification,
    EntityKind.RULES: BudgetRule,
    EntityKind.RECURRING_ITEMS: RecurringItem,
}


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class IssueType(str, Enum):
    """Typed reason attached to every validation issue."""
    MISSING = "missing"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    INVALID_VALUE = "invalid_value"
    UNKNOWN_REFERENCE = "unknown_reference"
    SAME_ACCOUNT = "same_account"
    RESERVED_VALUE = "reserved_value"
    SUSPICIOUS_VALUE = "suspicious_value"
    FUTURE_DATE = "future_date"
    POTENTIAL_DUPLICATE = "potential_duplicate"


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: IssueType = Field(
        ...,
        description="Typed reason for the issue"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required fields, amount > 0, references)
    Stage 2: Semantic validation (suspicious values, future dates)
    """

    subject: str = Field(
        ...,
        description="What was validated (e.g. 'expense', 'transfer')"
    )
    validated_at: datetime = Field(default_factory=utc_now)
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
