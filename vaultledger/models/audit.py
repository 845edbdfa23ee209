"""
Audit Models for Vault Ledger

Every mutation the dispatcher commits or rejects, and every call to an
external collaborator, produces an AuditEvent. Together they let a
balance be traced back to the commands that moved it.

Audit events are append-only; nothing modifies or deletes them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""

    # Ledger entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    COMMAND_REJECTED = "command_rejected"
    COMMAND_NOOP = "command_noop"

    # Balances
    BALANCE_ADJUSTED = "balance_adjusted"
    TRANSFER_RECORDED = "transfer_recorded"
    ACCOUNT_PURGED = "account_purged"

    # Categorization
    CATEGORY_PROPAGATED = "category_propagated"
    RULES_APPLIED = "rules_applied"
    SUGGESTION_APPLIED = "suggestion_applied"
    SUGGESTION_DISCARDED = "suggestion_discarded"

    # Obligations
    BILL_SETTLED = "bill_settled"
    OBLIGATIONS_ROLLED_FORWARD = "obligations_rolled_forward"

    # Bulk ingestion
    IMPORT_COMMITTED = "import_committed"

    # Snapshots
    SNAPSHOT_SAVED = "snapshot_saved"
    SNAPSHOT_RESTORED = "snapshot_restored"
    SNAPSHOT_RESTORE_FAILED = "snapshot_restore_failed"

    # Cloud sync
    SYNC_COMPLETED = "sync_completed"
    SYNC_CONFLICT = "sync_conflict"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Collection of the entity (e.g. 'expenses', 'wealthItems')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Opaque id of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by every event one command or flow produced"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_created("expenses", expense.id, ...)
        event = AuditEventBuilder.transfer_recorded(expense.id, 5000, a, b)
    """

    @staticmethod
    def entry_created(
        entity_type: str,
        entity_id: str,
        summary: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_CREATED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Created {summary}",
            is_user_action=True,
        )

    @staticmethod
    def entry_updated(
        entity_type: str,
        entity_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_UPDATED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Updated {entity_type} entry",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def entry_deleted(
        entity_type: str,
        entity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Deleted {entity_type} entry",
            is_user_action=True,
        )

    @staticmethod
    def command_rejected(
        command: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_REJECTED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{command} rejected with {len(issues)} issues",
            details={"command": command, "issues": issues},
        )

    @staticmethod
    def command_noop(
        command: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_NOOP,
            correlation_id=correlation_id,
            description=f"{command} had no effect",
            details={"command": command, "reason": reason},
        )

    @staticmethod
    def balance_adjusted(
        account_id: str,
        before: int,
        after: int,
        cause: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            entity_type="wealthItems",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance {before} -> {after} ({cause})",
            details={"before": before, "after": after, "delta": after - before, "cause": cause},
        )

    @staticmethod
    def transfer_recorded(
        expense_id: str,
        amount: int,
        from_account_id: str,
        to_account_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_RECORDED,
            entity_type="expenses",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Transfer of {amount} recorded",
            details={"from": from_account_id, "to": to_account_id, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def account_purged(
        account_id: str,
        name: str,
        expenses_removed: int,
        incomes_removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_PURGED,
            severity=AuditSeverity.WARNING,
            entity_type="wealthItems",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account '{name}' deleted with its linked entries",
            details={
                "expenses_removed": expenses_removed,
                "incomes_removed": incomes_removed,
            },
            is_user_action=True,
        )

    @staticmethod
    def category_propagated(
        source_id: str,
        merchant: str,
        updated_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_PROPAGATED,
            entity_type="expenses",
            entity_id=source_id,
            correlation_id=correlation_id,
            description=f"Correction for '{merchant}' applied to {len(updated_ids)} entries",
            details={"merchant": merchant, "updated_ids": updated_ids},
        )

    @staticmethod
    def rules_applied(
        matched: int,
        scanned: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULES_APPLIED,
            correlation_id=correlation_id,
            description=f"Rules matched {matched} of {scanned} entries",
            details={"matched": matched, "scanned": scanned},
        )

    @staticmethod
    def suggestion_applied(
        expense_id: str,
        category: str,
        sub_category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUGGESTION_APPLIED,
            entity_type="expenses",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Suggested category {category}/{sub_category} applied",
            details={"category": category, "sub_category": sub_category},
        )

    @staticmethod
    def suggestion_discarded(
        expense_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUGGESTION_DISCARDED,
            entity_type="expenses",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Suggestion discarded",
            details={"reason": reason},
        )

    @staticmethod
    def bill_settled(
        bill_id: str,
        merchant: str,
        amount: int,
        expense_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_SETTLED,
            entity_type="bills",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill settled: {merchant} - {amount}",
            details={"expense_id": expense_id, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def obligations_rolled_forward(
        bills_created: int,
        bills_due: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATIONS_ROLLED_FORWARD,
            correlation_id=correlation_id,
            description=f"Roll-forward created {bills_created} bills, {bills_due} due",
            details={"bills_created": bills_created, "bills_due": bills_due},
        )

    @staticmethod
    def import_committed(
        added: dict[str, int],
        skipped: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMMITTED,
            correlation_id=correlation_id,
            description=f"Batch committed: {sum(added.values())} added, {skipped} skipped",
            details={"added": added, "skipped": skipped},
            is_user_action=True,
        )

    @staticmethod
    def snapshot_saved(
        target: str,
        revision: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_SAVED,
            severity=AuditSeverity.DEBUG,
            correlation_id=correlation_id,
            description=f"Snapshot saved to {target}",
            details={"target": target, "revision": revision},
        )

    @staticmethod
    def snapshot_restored(
        source: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_RESTORED,
            correlation_id=correlation_id,
            description=f"Ledger restored from {source}",
            details={"source": source, "counts": counts},
            is_user_action=True,
        )

    @staticmethod
    def snapshot_restore_failed(
        source: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_RESTORE_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Restore from {source} failed; local state kept",
            error_message=error_message,
            details={"source": source},
        )

    @staticmethod
    def sync_completed(
        synced_at: datetime,
        revision: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            correlation_id=correlation_id,
            description="Ledger uploaded to cloud",
            details={"synced_at": synced_at.isoformat(), "revision": revision},
        )

    @staticmethod
    def sync_conflict(
        local_revision: int,
        synced_revision: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_CONFLICT,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description="Cloud restore refused: local changes not yet synced",
            details={"local_revision": local_revision, "synced_revision": synced_revision},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
