"""
Categorization Propagator

One manual correction retroactively cleans every other expense from the
same merchant, on the assumption that one merchant maps to one category.

Only entries already in the store are touched; matching is exact and
case-sensitive; sentinel merchants ("General", "Transfer", "Unknown") and
the reserved Transfer / Bill Payment entries are never rewritten.
"""

from typing import Optional

from vaultledger.ledger.store import LedgerStore
from vaultledger.models.ledger import (
    BILL_PAYMENT_SUBCATEGORY,
    SENTINEL_MERCHANTS,
    TRANSFER_SUBCATEGORY,
    Category,
    EntityKind,
    Expense,
)


_RESERVED_SUBCATEGORIES = frozenset({TRANSFER_SUBCATEGORY, BILL_PAYMENT_SUBCATEGORY})


class CategorizationPropagator:
    def __init__(self, store: LedgerStore):
        self._store = store

    @staticmethod
    def is_propagatable(merchant: Optional[str]) -> bool:
        return bool(merchant) and merchant not in SENTINEL_MERCHANTS

    def propagate(
        self,
        edited_id: str,
        category: Category,
        sub_category: Optional[str],
        merchant: Optional[str],
    ) -> list[str]:
        """
        Copy a correction onto every other expense with the same merchant.

        A None sub_category leaves each entry's sub-category as it is.
        Entries already carrying the correction are left alone, so
        applying the same correction twice changes nothing the second
        time.

        Returns:
            Ids of the expenses that changed
        """
        if not self.is_propagatable(merchant):
            return []

        changed = []
        expense: Expense
        for expense in self._store.list(EntityKind.EXPENSES):
            if expense.id == edited_id or expense.merchant != merchant:
                continue
            if expense.sub_category in _RESERVED_SUBCATEGORIES:
                continue

            update = {
                "category": category,
                "sub_category": sub_category if sub_category is not None else expense.sub_category,
                "is_confirmed": True,
                "is_ai_upgraded": True,
            }
            if all(getattr(expense, field) == value for field, value in update.items()):
                continue

            self._store.upsert(EntityKind.EXPENSES, expense.model_copy(update=update))
            changed.append(expense.id)

        return changed
