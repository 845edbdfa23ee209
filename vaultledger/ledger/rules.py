"""
Rule Matching Engine

Keyword rules map free text to a category. They are applied only in
controlled bulk flows (import staging, batch refine), never to entries
typed in one at a time.
"""

from typing import Iterable, Optional

from vaultledger.models.ledger import (
    BILL_PAYMENT_SUBCATEGORY,
    TRANSFER_SUBCATEGORY,
    BudgetRule,
    Category,
    Expense,
)


class RuleEngine:
    """First-match keyword lookup over rules in creation order."""

    @staticmethod
    def match(text: Optional[str], rules: Iterable[BudgetRule]) -> Optional[BudgetRule]:
        """Return the first rule whose keyword occurs in text (case-insensitive)."""
        if not text:
            return None
        haystack = text.lower()
        for rule in rules:
            keyword = rule.keyword.strip().lower()
            if keyword and keyword in haystack:
                return rule
        return None

    @staticmethod
    def apply(expense: Expense, rule: BudgetRule) -> Expense:
        """Categorize an expense by rule, stamping the rule id for provenance."""
        return expense.model_copy(update={
            "category": rule.category,
            "sub_category": rule.sub_category,
            "rule_id": rule.id,
            "is_confirmed": True,
        })

    @staticmethod
    def needs_refinement(expense: Expense) -> bool:
        """Uncategorized or unconfirmed, and not a transfer or bill payment."""
        if expense.sub_category in (TRANSFER_SUBCATEGORY, BILL_PAYMENT_SUBCATEGORY):
            return False
        return expense.category == Category.UNCATEGORIZED or not expense.is_confirmed

    def refine(
        self,
        expenses: Iterable[Expense],
        rules: list[BudgetRule],
    ) -> list[Expense]:
        """
        Apply rules to every expense that still needs a category.

        Returns:
            The updated copies of the expenses a rule matched
        """
        refined = []
        for expense in expenses:
            if not self.needs_refinement(expense):
                continue
            rule = self.match(f"{expense.merchant} {expense.note}", rules)
            if rule is not None:
                refined.append(self.apply(expense, rule))
        return refined
