"""
Bulk Ingestion Models

A parser (text/SMS, AI, spreadsheet) hands the ledger loosely typed
candidates. Nothing here is trusted until the reconciler has typed it.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vaultledger.models.ledger import Category, DEFAULT_SUBCATEGORY, ValidationIssue


class ImportCandidate(BaseModel):
    """
    One loosely typed record from a parser.

    Only amount, date and entry_type are expected; everything else is
    type-specific and optional. Unknown keys are kept.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    amount: Any = None
    date: Any = None
    entry_type: Optional[str] = None

    # Expense / Income
    merchant: Optional[str] = None
    note: Optional[str] = None
    raw_content: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    income_type: Optional[str] = None
    payment_method: Optional[str] = None
    target_account_id: Optional[str] = None

    # Account
    name: Optional[str] = None
    value: Any = None
    wealth_type: Optional[str] = None
    wealth_category: Optional[str] = None

    @property
    def label(self) -> str:
        return (self.merchant or self.note or self.raw_content or "").strip()


class StagedEntry(BaseModel):
    """
    A candidate annotated by the reconciler.

    The reconciler never drops anything: duplicates and malformed rows are
    flagged here and the caller decides what to commit.
    """

    index: int = Field(..., ge=0, description="Position in the submitted batch")
    candidate: ImportCandidate
    signature: Optional[tuple[int, str, str]] = Field(
        default=None,
        description="(amount, normalized label, ISO date); None when malformed"
    )
    is_duplicate: bool = False
    matched_rule_id: Optional[str] = None
    category: Category = Category.UNCATEGORIZED
    sub_category: str = DEFAULT_SUBCATEGORY
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_malformed(self) -> bool:
        return any(i.severity == "error" for i in self.issues)


class ImportReport(BaseModel):
    """Outcome of committing a staged batch."""

    expenses_added: int = 0
    incomes_added: int = 0
    accounts_added: int = 0
    skipped: int = 0
    skipped_issues: dict[int, list[ValidationIssue]] = Field(
        default_factory=dict,
        description="Batch index → reasons it was skipped"
    )
    created_ids: list[str] = Field(default_factory=list)

    @property
    def total_added(self) -> int:
        return self.expenses_added + self.incomes_added + self.accounts_added
