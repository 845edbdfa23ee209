"""
Duplicate & Import Reconciler

Turns loosely typed candidates into ledger entities in two steps:

1. stage()  - annotate every candidate: signature, duplicate flag, matched
              rule, malformed-field issues. Nothing is dropped.
2. build_entity() - type one staged entry into an Expense, Income or
              Account with a fresh id, or raise ValidationError.

The dispatcher's CommitImport runs build_entity per entry, so one bad row
is skipped and counted while the rest of the batch commits.

Signature = (rounded amount, merchant-or-note lowercased and trimmed,
ISO date). Two entries sharing one, inside the batch or against the
existing ledger, are both flagged.
"""

from collections import Counter
from datetime import date
from typing import Any, Iterable, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from vaultledger.ledger.errors import ValidationError
from vaultledger.ledger.rules import RuleEngine
from vaultledger.models.imports import ImportCandidate, StagedEntry
from vaultledger.models.ledger import (
    Account,
    BudgetRule,
    EntryDate,
    EntryType,
    Expense,
    Income,
    IncomeType,
    IssueType,
    Polarity,
    ValidationIssue,
    WealthCategory,
    round_amount,
)


Signature = tuple[int, str, str]

_DATE_ADAPTER = TypeAdapter(EntryDate)


def parse_amount(value: Any) -> Optional[int]:
    """Rounded amount, or None if missing or not a number."""
    if value is None or value == "":
        return None
    try:
        return round_amount(value)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    try:
        return _DATE_ADAPTER.validate_python(value)
    except SchemaError:
        return None


def parse_entry_type(value: Optional[str]) -> Optional[EntryType]:
    """Missing means Expense; an unknown string is None."""
    if not value:
        return EntryType.EXPENSE
    for member in EntryType:
        if member.value.lower() == value.strip().lower():
            return member
    return None


def signature_of(amount: int, label: Optional[str], on: date) -> Signature:
    return (amount, (label or "").strip().lower(), on.isoformat())


class ImportReconciler:
    """Stages and types bulk candidates."""

    def __init__(self, rule_engine: Optional[RuleEngine] = None):
        self._rules = rule_engine or RuleEngine()

    @staticmethod
    def signature(entry: Union[Expense, Income]) -> Signature:
        label = entry.label if isinstance(entry, Expense) else entry.note
        return signature_of(entry.amount, label, entry.date)

    def _issues_for(self, candidate: ImportCandidate) -> tuple[list[ValidationIssue], Optional[EntryType]]:
        issues = []
        entry_type = parse_entry_type(candidate.entry_type)
        if entry_type is None:
            issues.append(ValidationIssue(
                field="entryType",
                issue_type=IssueType.INVALID_VALUE,
                message=f"Unknown entry type: {candidate.entry_type!r}",
            ))
            return issues, None

        if entry_type == EntryType.ACCOUNT:
            if not (candidate.name or candidate.merchant):
                issues.append(ValidationIssue(
                    field="name",
                    issue_type=IssueType.MISSING,
                    message="Account name is required",
                ))
            raw_value = candidate.value if candidate.value is not None else candidate.amount
            if parse_amount(raw_value) is None:
                issues.append(ValidationIssue(
                    field="value",
                    issue_type=IssueType.MISSING,
                    message="Account value is missing or not a number",
                ))
            return issues, entry_type

        amount = parse_amount(candidate.amount)
        if amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type=IssueType.MISSING,
                message="Amount is missing or not a number",
            ))
        elif amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type=IssueType.NON_POSITIVE_AMOUNT,
                message="Amount must be greater than zero",
            ))
        if parse_date(candidate.date) is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type=IssueType.MISSING,
                message="Date is missing or not a valid date",
            ))
        return issues, entry_type

    def stage(
        self,
        candidates: Iterable[Union[ImportCandidate, dict]],
        existing: Iterable[Union[Expense, Income]] = (),
        rules: Iterable[BudgetRule] = (),
    ) -> list[StagedEntry]:
        """
        Annotate a batch.

        Args:
            candidates: Parser output (models or raw dicts)
            existing: Ledger entries to check duplicates against
            rules: Rules in creation order

        Returns:
            One StagedEntry per candidate, same order
        """
        rules = list(rules)
        staged = []
        for index, raw in enumerate(candidates):
            candidate, schema_issues = _coerce_candidate(raw)
            if schema_issues:
                staged.append(StagedEntry(index=index, candidate=candidate, issues=schema_issues))
                continue

            issues, entry_type = self._issues_for(candidate)
            entry = StagedEntry(index=index, candidate=candidate, issues=issues)

            if entry_type in (EntryType.EXPENSE, EntryType.INCOME) and not entry.is_malformed:
                entry.signature = signature_of(
                    parse_amount(candidate.amount),
                    candidate.label,
                    parse_date(candidate.date),
                )

            if entry_type == EntryType.EXPENSE:
                rule = self._rules.match(candidate.label, rules)
                if rule is not None:
                    entry.matched_rule_id = rule.id
                    entry.category = rule.category
                    entry.sub_category = rule.sub_category

            staged.append(entry)

        ledger_signatures = {self.signature(e) for e in existing}
        batch_counts = Counter(e.signature for e in staged if e.signature is not None)
        for entry in staged:
            if entry.signature is None:
                continue
            entry.is_duplicate = (
                batch_counts[entry.signature] > 1 or entry.signature in ledger_signatures
            )
        return staged

    def build_entity(self, entry: StagedEntry) -> Union[Expense, Income, Account]:
        """
        Type one staged entry into a ledger entity with a fresh id.

        Raises:
            ValidationError: if the candidate is malformed
        """
        issues, entry_type = self._issues_for(entry.candidate)
        if issues:
            raise ValidationError(issues)

        c = entry.candidate
        try:
            if entry_type == EntryType.ACCOUNT:
                return Account(
                    name=c.name or c.merchant,
                    alias=c.name or c.merchant,
                    polarity=_enum_or(Polarity, c.wealth_type, Polarity.ASSET),
                    category=_enum_or(WealthCategory, c.wealth_category, WealthCategory.OTHER),
                    value=parse_amount(c.value if c.value is not None else c.amount),
                    date=parse_date(c.date),
                )
            if entry_type == EntryType.INCOME:
                return Income(
                    amount=parse_amount(c.amount),
                    date=parse_date(c.date),
                    income_type=_enum_or(IncomeType, c.income_type, IncomeType.OTHER),
                    note=c.merchant or c.note or "",
                    payment_method=c.payment_method,
                    target_account_id=c.target_account_id,
                )
            return Expense(
                amount=parse_amount(c.amount),
                date=parse_date(c.date),
                category=entry.category,
                sub_category=entry.sub_category,
                merchant=c.merchant or "",
                note=c.note or c.raw_content or "",
                payment_method=c.payment_method,
                source_account_id=c.target_account_id,
                is_confirmed=entry.matched_rule_id is not None,
                rule_id=entry.matched_rule_id,
            )
        except SchemaError as e:
            raise ValidationError(_schema_issues(e)) from e


def _enum_or(enum_cls, value: Optional[str], default):
    if not value:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _schema_issues(error: SchemaError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(p) for p in err["loc"]) or "candidate",
            issue_type=IssueType.INVALID_VALUE,
            message=err["msg"],
        )
        for err in error.errors()
    ]


def _coerce_candidate(raw: Any) -> tuple[ImportCandidate, list[ValidationIssue]]:
    """
    Type one parser record.

    A record that doesn't fit the candidate shape at all (wrong field
    types, not an object) comes back as an empty candidate holding the
    raw text, plus the reasons, so the rest of the batch still stages.
    """
    if isinstance(raw, ImportCandidate):
        return raw, []
    try:
        return ImportCandidate.model_validate(raw), []
    except SchemaError as e:
        return ImportCandidate(raw_content=str(raw)[:200]), _schema_issues(e)
