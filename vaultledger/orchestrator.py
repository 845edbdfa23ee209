"""
Main Orchestrator for Vault Ledger

This module ties the ledger engine to its collaborators and defines the
end-to-end flows for:
1. Cloud sync (snapshot → upload → lastSynced) and restore
2. AI category suggestions (expense → agent → ApplySuggestion)
3. Text import (text → agent → stage → review → CommitImport)
4. Local backup (autosave, load, file export / import)

The orchestrator enforces the boundaries:
- Every write goes through the dispatcher; flows never touch entities
- Every collaborator call is time-bounded; a timeout is just a failure
- Collaborator failures become notices and audit events, never exceptions
- A cloud restore never silently overwrites unsynced local edits

Flows are async because the collaborators are. The dispatcher itself is
synchronous: whatever a flow awaits, the ledger stays consistent.
"""

import asyncio
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, NamedTuple, Optional, TypeVar

import structlog
from pydantic import BaseModel

from vaultledger.agents import (
    CategorySuggestion,
    CategorySuggestionAgent,
    CategorySuggestionProvider,
    SuggestionProviderError,
    TransactionTextAgent,
    TransactionTextParser,
)
from vaultledger.audit import AuditLogger, create_correlation_id
from vaultledger.config import AppSettings, get_settings
from vaultledger.ledger import BudgetAggregator, LedgerDispatcher, LedgerStore
from vaultledger.ledger.commands import (
    ApplySuggestion,
    CommandResult,
    CommandStatus,
    CommitImport,
    RestoreSnapshot,
    RollForward,
)
from vaultledger.models.audit import AuditEventBuilder
from vaultledger.models.imports import ImportCandidate, StagedEntry
from vaultledger.models.ledger import (
    EntityKind,
    Expense,
    Notification,
    NotificationKind,
    NotificationSeverity,
)
from vaultledger.services.cloud import CloudTransportInterface, GoogleDriveTransport, TransportError
from vaultledger.services.storage import (
    JSONFileSnapshotStorage,
    JSONLinesAuditStorage,
    SnapshotStorageInterface,
    StorageError,
    export_snapshot,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _Flow:
    """Shared plumbing: timeouts, notices and audit for collaborator calls."""

    def __init__(
        self,
        dispatcher: LedgerDispatcher,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._dispatcher = dispatcher
        self._store = dispatcher.store
        self._audit_logger = audit_logger
        self._settings = app_settings or get_settings().app

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._settings.collaborator_timeout_seconds)

    def _notify(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        severity: NotificationSeverity,
    ) -> None:
        self._store.add_notification(Notification(
            kind=kind,
            title=title,
            message=message,
            severity=severity,
        ))

    def _service_failed(self, service: str, error: BaseException, correlation_id) -> str:
        message = "timed out" if isinstance(error, asyncio.TimeoutError) else str(error)
        logger.warning("collaborator_failed", service=service, error=message)
        if self._audit_logger:
            self._audit_logger.log_external_service_error(
                service=service,
                error_message=message,
                correlation_id=correlation_id,
            )
        return message


# =============================================================================
# CLOUD SYNC
# =============================================================================

class SyncResult(BaseModel):
    """Outcome of one sync or restore attempt."""

    success: bool
    message: str
    synced_at: Optional[datetime] = None
    conflict: bool = False


class SyncFlow(_Flow):
    """
    Uploads and restores the snapshot through a cloud transport.

    Upload failure leaves lastSynced unchanged. Restore is refused while
    local edits are unsynced (revision != syncedRevision) unless forced.
    """

    def __init__(
        self,
        dispatcher: LedgerDispatcher,
        transport: CloudTransportInterface,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
        on_change: Optional[Callable[[LedgerStore], None]] = None,
    ):
        super().__init__(dispatcher, audit_logger, app_settings)
        self._transport = transport
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change:
            self._on_change(self._store)

    async def sync_to_cloud(self, access_token: str) -> SyncResult:
        correlation_id = create_correlation_id()
        document = self._store.to_document()
        revision = self._store.revision

        try:
            synced_at = await self._bounded(self._transport.upload(access_token, document))
        except (TransportError, asyncio.TimeoutError) as e:
            message = self._service_failed("cloud_upload", e, correlation_id)
            self._notify(
                NotificationKind.SYNC,
                "Cloud Sync Failed",
                f"Your vault was not uploaded ({message}). Local data is safe; try again later.",
                NotificationSeverity.ERROR,
            )
            return SyncResult(success=False, message=message)

        # Only the revision that was uploaded counts as synced
        self._store.mark_synced(synced_at, revision=revision)
        self._notify(
            NotificationKind.SYNC,
            "Vault Synchronized",
            "Your ledger is backed up to the cloud.",
            NotificationSeverity.SUCCESS,
        )
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.sync_completed(synced_at, revision, correlation_id))
        self._changed()
        return SyncResult(success=True, message="Synchronized", synced_at=synced_at)

    def _restore_conflict(self, correlation_id: str) -> SyncResult:
        settings = self._store.settings
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.sync_conflict(
                settings.revision, settings.synced_revision, correlation_id,
            ))
        self._notify(
            NotificationKind.SYNC,
            "Restore Needs Confirmation",
            "This device has changes that are not in the cloud yet. "
            "Sync first, or restore anyway to discard them.",
            NotificationSeverity.WARNING,
        )
        return SyncResult(success=False, message="Local changes not synced", conflict=True)

    async def restore_from_cloud(self, access_token: str, force: bool = False) -> SyncResult:
        correlation_id = create_correlation_id()
        if self._store.settings.has_unsynced_changes and not force:
            return self._restore_conflict(correlation_id)

        revision = self._store.revision
        try:
            document = await self._bounded(self._transport.download(access_token))
        except (TransportError, asyncio.TimeoutError) as e:
            message = self._service_failed("cloud_download", e, correlation_id)
            self._notify(
                NotificationKind.SYNC,
                "Cloud Restore Failed",
                f"Could not fetch your vault ({message}). Nothing was changed.",
                NotificationSeverity.ERROR,
            )
            return SyncResult(success=False, message=message)

        if document is None:
            self._notify(
                NotificationKind.SYNC,
                "No Cloud Backup",
                "No snapshot was found in the cloud yet.",
                NotificationSeverity.INFO,
            )
            return SyncResult(success=False, message="No cloud snapshot")

        # Edits committed while the download was in flight
        if self._store.revision != revision and not force:
            return self._restore_conflict(correlation_id)

        result = self._dispatcher.dispatch(RestoreSnapshot(
            payload=document,
            source="cloud",
            correlation_id=correlation_id,
        ))
        if not result.ok:
            self._notify(
                NotificationKind.SYNC,
                "Cloud Restore Failed",
                f"The cloud snapshot could not be read ({result.message}). Nothing was changed.",
                NotificationSeverity.ERROR,
            )
            return SyncResult(success=False, message=result.message)

        synced_at = datetime.now(timezone.utc)
        self._store.mark_synced(synced_at)
        self._notify(
            NotificationKind.SYNC,
            "Vault Restored",
            "Your ledger was restored from the cloud.",
            NotificationSeverity.SUCCESS,
        )
        self._changed()
        return SyncResult(success=True, message="Restored", synced_at=synced_at)


# =============================================================================
# AI SUGGESTIONS
# =============================================================================

class SuggestionFlow(_Flow):
    """
    Asks the AI for a category and applies it if the expense still exists.

    Any failure (error, timeout, garbage) means "no suggestion": the
    expense is left as it was and the user gets a quiet notice.
    """

    def __init__(
        self,
        dispatcher: LedgerDispatcher,
        agent: CategorySuggestionProvider,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        super().__init__(dispatcher, audit_logger, app_settings)
        self._agent = agent

    async def request_suggestion(self, expense_id: str, correlation_id=None) -> Optional[CategorySuggestion]:
        """
        Fetch a suggestion without applying it.

        None when unavailable, and for transfers and bill payments, whose
        sub-category is fixed.
        """
        expense: Optional[Expense] = self._store.get(EntityKind.EXPENSES, expense_id)
        if expense is None or expense.is_transfer or expense.is_bill_payment:
            return None

        try:
            return await self._bounded(
                self._agent.suggest_category(expense, self._store.settings.currency)
            )
        except (SuggestionProviderError, asyncio.TimeoutError) as e:
            message = self._service_failed("category_suggestion", e, correlation_id)
            self._notify(
                NotificationKind.SUGGESTION,
                "Suggestion Unavailable",
                f"No category suggestion for {expense.label or 'this entry'} ({message}).",
                NotificationSeverity.WARNING,
            )
            return None

    async def suggest_and_apply(self, expense_id: str, propagate: bool = True) -> Optional[CommandResult]:
        """
        Request a suggestion and dispatch ApplySuggestion.

        Returns:
            The dispatch result, or None if no suggestion was produced.
            A NOOP result means the expense was deleted while waiting.
        """
        correlation_id = create_correlation_id()
        suggestion = await self.request_suggestion(expense_id, correlation_id)
        if suggestion is None:
            return None

        result = self._dispatcher.dispatch(ApplySuggestion(
            expense_id=expense_id,
            category=suggestion.category,
            sub_category=suggestion.sub_category,
            propagate=propagate,
            correlation_id=correlation_id,
        ))
        if result.status == CommandStatus.NOOP and self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.suggestion_discarded(
                expense_id, result.message, correlation_id,
            ))
        return result


# =============================================================================
# TEXT IMPORT
# =============================================================================

class ImportFlow(_Flow):
    """
    Text → candidates → staged entries → commit.

    Staging is the review step: duplicates and malformed rows are flagged,
    nothing is written until commit().
    """

    def __init__(
        self,
        dispatcher: LedgerDispatcher,
        parser: Optional[TransactionTextParser] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        super().__init__(dispatcher, audit_logger, app_settings)
        self._parser = parser

    def stage(self, candidates: list[Any]) -> list[StagedEntry]:
        """Stage candidates against the current ledger and rules."""
        existing = self._store.list(EntityKind.EXPENSES) + self._store.list(EntityKind.INCOMES)
        return self._dispatcher.reconciler.stage(
            candidates,
            existing=existing,
            rules=self._store.list(EntityKind.RULES),
        )

    async def parse_text(self, text: str) -> list[StagedEntry]:
        """Run the text parser and stage its output; [] when it fails."""
        if self._parser is None:
            return []
        correlation_id = create_correlation_id()
        try:
            candidates: list[ImportCandidate] = await self._bounded(
                self._parser.parse_text(text, self._store.settings.currency)
            )
        except (SuggestionProviderError, asyncio.TimeoutError) as e:
            message = self._service_failed("text_parser", e, correlation_id)
            self._notify(
                NotificationKind.IMPORT,
                "Text Not Recognized",
                f"Could not read transactions from the text ({message}).",
                NotificationSeverity.WARNING,
            )
            return []
        return self.stage(candidates)

    def commit(self, staged: list[StagedEntry], include_duplicates: bool = False) -> CommandResult:
        """Commit a reviewed batch; duplicates are left out unless included."""
        entries = [e for e in staged if include_duplicates or not e.is_duplicate]
        return self._dispatcher.dispatch(CommitImport(entries=entries))


# =============================================================================
# LOCAL BACKUP
# =============================================================================

class BackupFlow(_Flow):
    """Local durable snapshot plus file export / import."""

    def __init__(
        self,
        dispatcher: LedgerDispatcher,
        storage: SnapshotStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        super().__init__(dispatcher, audit_logger, app_settings)
        self._storage = storage

    def autosave(self, store: LedgerStore) -> bool:
        """
        Persist the ledger; wired as the dispatcher's on_commit hook.

        A failed save is reported, never raised: the in-memory ledger
        stays authoritative and the next commit tries again.
        """
        try:
            self._storage.save(store.to_document())
        except StorageError as e:
            logger.error("autosave_failed", target=self._storage.describe(), error=str(e))
            if self._audit_logger:
                self._audit_logger.log_error("StorageError", str(e))
            self._notify(
                NotificationKind.ACTIVITY,
                "Local Save Failed",
                "Recent changes could not be written to disk.",
                NotificationSeverity.ERROR,
            )
            return False

        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.snapshot_saved(
                self._storage.describe(), store.revision,
            ))
        return True

    def load_local(self) -> Optional[CommandResult]:
        """Restore the last autosaved snapshot, if there is one."""
        try:
            document = self._storage.load()
        except StorageError as e:
            logger.error("local_load_failed", source=self._storage.describe(), error=str(e))
            if self._audit_logger:
                self._audit_logger.log_error(type(e).__name__, str(e))
            self._notify(
                NotificationKind.ACTIVITY,
                "Local Data Unreadable",
                "The saved ledger could not be read; starting from an empty vault.",
                NotificationSeverity.ERROR,
            )
            return None

        if document is None:
            return None
        return self._dispatcher.dispatch(RestoreSnapshot(payload=document, source="local"))

    def export(self, directory: Optional[Path] = None, on_date: Optional[date] = None) -> Path:
        """
        Write vault_snapshot_YYYY-MM-DD.json.

        Raises:
            StorageError: if the file could not be written
        """
        path = export_snapshot(
            self._store.to_document(),
            directory or self._settings.data_dir,
            prefix=self._settings.export_file_prefix,
            on_date=on_date,
        )
        logger.info("snapshot_exported", path=str(path))
        return path

    def import_file(self, path: Path) -> CommandResult:
        """
        Replace the ledger with an exported file.

        An unreadable or unparseable file is a REJECTED result; the current
        ledger is kept.
        """
        command = RestoreSnapshot(payload=None, source=str(path))
        try:
            command.payload = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("import_file_unreadable", path=str(path), error=str(e))
            return CommandResult(
                command=command.name,
                status=CommandStatus.REJECTED,
                correlation_id=command.correlation_id,
                message=f"Could not read {path}: {e}",
            )
        return self._dispatcher.dispatch(command)


# =============================================================================
# FACTORY
# =============================================================================

class AppComponents(NamedTuple):
    store: LedgerStore
    dispatcher: LedgerDispatcher
    aggregator: BudgetAggregator
    backup: BackupFlow
    sync: Optional[SyncFlow]
    suggestions: Optional[SuggestionFlow]
    imports: ImportFlow
    audit_logger: AuditLogger


def create_app_components(
    use_ai: bool = True,
    use_cloud: bool = True,
    app_settings: Optional[AppSettings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Loads the local snapshot (if any) and rolls recurring obligations
    forward to today before returning.

    Args:
        use_ai: Create the Gemini agents (needs GEMINI_API_KEY)
        use_cloud: Create the Google Drive sync flow

    Returns:
        AppComponents with every flow wired to one store and dispatcher
    """
    settings = app_settings or get_settings().app

    audit_logger = AuditLogger(JSONLinesAuditStorage(settings.audit_path))
    store = LedgerStore(app_settings=settings)
    storage = JSONFileSnapshotStorage(settings.snapshot_path)

    dispatcher = LedgerDispatcher(store, audit_logger=audit_logger, app_settings=settings)
    backup = BackupFlow(dispatcher, storage, audit_logger, settings)

    suggestion_agent = None
    text_agent = None
    if use_ai:
        try:
            suggestion_agent = CategorySuggestionAgent()
            text_agent = TransactionTextAgent()
        except ValueError as e:
            # Gemini not configured - continue without AI
            logger.warning("ai_not_configured", error=str(e))

    sync = None
    if use_cloud:
        sync = SyncFlow(dispatcher, GoogleDriveTransport(), audit_logger, settings, on_change=backup.autosave)

    backup.load_local()
    # Autosave only once the initial load is done
    dispatcher.on_commit = backup.autosave
    dispatcher.dispatch(RollForward())

    return AppComponents(
        store=store,
        dispatcher=dispatcher,
        aggregator=BudgetAggregator(store, settings),
        backup=backup,
        sync=sync,
        suggestions=SuggestionFlow(dispatcher, suggestion_agent, audit_logger, settings) if suggestion_agent else None,
        imports=ImportFlow(dispatcher, text_agent, audit_logger, settings),
        audit_logger=audit_logger,
    )
