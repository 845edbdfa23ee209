"""
Ledger error taxonomy.

None of these escape the dispatcher: ValidationError becomes a rejected
CommandResult, UnboundReferenceError a no-op, RestoreParseError a
rejected restore with local state untouched.
"""

from typing import Optional

from vaultledger.models.ledger import EntityKind, ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """An entry was rejected; `issues` carries the typed reasons."""

    def __init__(self, issues: list[ValidationIssue], message: Optional[str] = None):
        self.issues = issues
        super().__init__(message or "; ".join(i.message for i in issues) or "Invalid entry")


class UnboundReferenceError(LedgerError):
    """A command referenced an entity that no longer exists."""

    def __init__(self, kind: EntityKind, entity_id: Optional[str]):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"No {kind.value} entry with id {entity_id!r}")


class RestoreParseError(LedgerError):
    """A snapshot could not be parsed; nothing was replaced."""
    pass
