"""
Two-Stage Entry Validation

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (amount, date, names)
- Amount strictly positive after rounding
- Account references (unknown accounts are a warning for single-leg
  entries and an error for transfers, which must move two real accounts)

STAGE 2 - SEMANTIC VALIDATION:
- Suspiciously large amounts
- Dates too far in the future

Stage 2 is skipped when stage 1 finds an error.

IMPORTANT: Validation NEVER silently fixes issues. Rounding an amount to
a whole unit is the one normalization, and it happens in the models
before validation runs.
"""

from datetime import date, timedelta
from typing import Callable, Iterable, Optional

from vaultledger.config import AppSettings, get_settings
from vaultledger.models.ledger import (
    Category,
    IssueType,
    ValidationIssue,
    ValidationResult,
)


class EntryValidator:
    """
    Validates ledger entries before the dispatcher writes them.

    The clock is injectable so future-date checks are testable.
    """

    def __init__(
        self,
        app_settings: Optional[AppSettings] = None,
        clock: Callable[[], date] = date.today,
    ):
        self._settings = app_settings or get_settings().app
        self._clock = clock

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_amount(amount: Optional[int], field: str = "amount") -> list[ValidationIssue]:
        if amount is None:
            return [ValidationIssue(
                field=field,
                issue_type=IssueType.MISSING,
                message="Amount is required",
            )]
        if amount <= 0:
            return [ValidationIssue(
                field=field,
                issue_type=IssueType.NON_POSITIVE_AMOUNT,
                message="Amount must be greater than zero after rounding",
                suggested_fix="Enter a whole amount of at least 1",
            )]
        return []

    @staticmethod
    def _check_date(entry_date: Optional[date], field: str = "date") -> list[ValidationIssue]:
        if entry_date is None:
            return [ValidationIssue(
                field=field,
                issue_type=IssueType.MISSING,
                message="Date is required",
            )]
        return []

    @staticmethod
    def _check_account(
        account_id: Optional[str],
        known_accounts: set[str],
        field: str,
        required: bool,
    ) -> list[ValidationIssue]:
        if not account_id:
            if required:
                return [ValidationIssue(
                    field=field,
                    issue_type=IssueType.MISSING,
                    message="An account is required",
                )]
            return []
        if account_id not in known_accounts:
            return [ValidationIssue(
                field=field,
                issue_type=IssueType.UNKNOWN_REFERENCE,
                message=f"Account {account_id} does not exist",
                severity="error" if required else "warning",
                suggested_fix=None if required else "The entry will not move any balance",
            )]
        return []

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    def _validate_semantic(
        self,
        amount: Optional[int],
        entry_date: Optional[date],
    ) -> list[ValidationIssue]:
        issues = []

        if amount is not None and amount > self._settings.max_entry_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type=IssueType.SUSPICIOUS_VALUE,
                message=f"Amount ({amount:,}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        max_future = self._clock() + timedelta(days=self._settings.future_date_tolerance_days)
        if entry_date is not None and entry_date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type=IssueType.FUTURE_DATE,
                message=f"Date ({entry_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        return issues

    def _result(
        self,
        subject: str,
        schema_issues: list[ValidationIssue],
        amount: Optional[int],
        entry_date: Optional[date],
    ) -> ValidationResult:
        schema_valid = not any(i.severity == "error" for i in schema_issues)
        issues = list(schema_issues)
        semantic_valid = False
        if schema_valid:
            semantic_issues = self._validate_semantic(amount, entry_date)
            issues.extend(semantic_issues)
            semantic_valid = not any(i.severity == "error" for i in semantic_issues)
        return ValidationResult(
            subject=subject,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=issues,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def validate_entry(
        self,
        subject: str,
        amount: Optional[int],
        entry_date: Optional[date],
        account_id: Optional[str] = None,
        known_accounts: Iterable[str] = (),
        account_field: str = "sourceAccountId",
    ) -> ValidationResult:
        """Validate an expense, income or bill payment."""
        issues = self._check_amount(amount) + self._check_date(entry_date)
        issues += self._check_account(account_id, set(known_accounts), account_field, required=False)
        return self._result(subject, issues, amount, entry_date)

    def validate_transfer(
        self,
        amount: Optional[int],
        entry_date: Optional[date],
        from_account_id: Optional[str],
        to_account_id: Optional[str],
        known_accounts: Iterable[str],
    ) -> ValidationResult:
        known = set(known_accounts)
        issues = self._check_amount(amount) + self._check_date(entry_date)
        issues += self._check_account(from_account_id, known, "fromAccountId", required=True)
        issues += self._check_account(to_account_id, known, "toAccountId", required=True)
        if from_account_id and from_account_id == to_account_id:
            issues.append(ValidationIssue(
                field="toAccountId",
                issue_type=IssueType.SAME_ACCOUNT,
                message="Cannot transfer to the same account",
            ))
        return self._result("transfer", issues, amount, entry_date)

    def validate_bill(
        self,
        merchant: Optional[str],
        amount: Optional[int],
        due_date: Optional[date],
    ) -> ValidationResult:
        issues = self._check_amount(amount) + self._check_date(due_date, field="dueDate")
        if not merchant:
            issues.append(ValidationIssue(
                field="merchant",
                issue_type=IssueType.MISSING,
                message="Bill merchant is required",
            ))
        # Bills are scheduled ahead, so no future-date warning
        schema_valid = not any(i.severity == "error" for i in issues)
        return ValidationResult(
            subject="bill",
            schema_valid=schema_valid,
            semantic_valid=schema_valid,
            issues=issues,
        )

    def validate_name(self, subject: str, field: str, value: Optional[str]) -> ValidationResult:
        """Account names, rule keywords and similar required labels."""
        issues = []
        if not value or not value.strip():
            issues.append(ValidationIssue(
                field=field,
                issue_type=IssueType.MISSING,
                message=f"{field} is required",
            ))
        return ValidationResult(
            subject=subject,
            schema_valid=not issues,
            semantic_valid=not issues,
            issues=issues,
        )

    def validate_split(self, split: dict[str, int]) -> ValidationResult:
        issues = []
        missing = [c.value for c in Category.budgeted() if c.value not in split]
        if missing:
            issues.append(ValidationIssue(
                field="split",
                issue_type=IssueType.MISSING,
                message=f"Split is missing {', '.join(missing)}",
            ))
        elif sum(split[c.value] for c in Category.budgeted()) != 100:
            issues.append(ValidationIssue(
                field="split",
                issue_type=IssueType.INVALID_VALUE,
                message="Needs, Wants and Savings must add up to 100",
            ))
        return ValidationResult(
            subject="settings",
            schema_valid=not issues,
            semantic_valid=not issues,
            issues=issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """One short paragraph describing the result for display."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        for issue in result.issues:
            if issue.severity == "error":
                lines.append(f"Error: {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"  Hint: {issue.suggested_fix}")
        for warning in result.warnings:
            lines.append(f"Check: {warning}")
        return "\n".join(lines)
