"""
Integration tests for the orchestrator flows.

Collaborators are in-memory fakes (see conftest); async flows are driven
with asyncio.run.
"""

import asyncio
import json
from datetime import date, datetime, timedelta

import pytest
from conftest import FakeSuggestionAgent, FakeTextParser, FakeTransport, MemoryAuditStorage

from vaultledger.agents import SuggestionProviderError, TransactionTextParser
from vaultledger.audit import AuditLogger
from vaultledger.ledger import LedgerDispatcher, LedgerStore
from vaultledger.ledger.commands import AddExpense, CommandStatus, DeleteExpense, Transfer
from vaultledger.models.audit import AuditEventType
from vaultledger.models.ledger import Category, EntityKind, Frequency
from vaultledger.orchestrator import (
    BackupFlow,
    ImportFlow,
    SuggestionFlow,
    SyncFlow,
    create_app_components,
)
from vaultledger.services.cloud import TransportError
from vaultledger.services.storage import JSONFileSnapshotStorage, StorageError


TODAY = date(2024, 5, 15)


def _titles(store: LedgerStore) -> list[str]:
    return [n.title for n in store.list(EntityKind.NOTIFICATIONS)]


@pytest.fixture
def audit_storage() -> MemoryAuditStorage:
    return MemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


# =============================================================================
# CLOUD SYNC
# =============================================================================

class TestSync:
    @pytest.fixture
    def transport(self) -> FakeTransport:
        return FakeTransport()

    @pytest.fixture
    def sync(self, store, transport, audit_logger, app_settings) -> SyncFlow:
        audited = LedgerDispatcher(store, audit_logger=audit_logger, app_settings=app_settings, clock=lambda: TODAY)
        return SyncFlow(audited, transport, audit_logger, app_settings)

    def test_upload_marks_synced(self, sync, store, transport, add_expense):
        """Test a successful upload records lastSynced and clears unsynced changes."""
        add_expense(250)
        result = asyncio.run(sync.sync_to_cloud("token"))

        assert result.success
        assert transport.document["expenses"][0]["amount"] == 250
        assert store.settings.last_synced == datetime(2024, 5, 15, 12, 0, 0)
        assert not store.settings.has_unsynced_changes
        assert _titles(store)[0] == "Vault Synchronized"

    def test_upload_failure_keeps_last_synced(self, sync, store, transport, audit_storage, add_expense):
        """Test a failed upload leaves lastSynced untouched and raises a notice."""
        add_expense(250)
        transport.fail_with = TransportError("offline")
        result = asyncio.run(sync.sync_to_cloud("token"))

        assert not result.success
        assert store.settings.last_synced is None
        assert store.settings.has_unsynced_changes
        assert _titles(store)[0] == "Cloud Sync Failed"
        assert audit_storage.events[-1].event_type == AuditEventType.EXTERNAL_SERVICE_ERROR

    def test_upload_timeout(self, sync, store, transport):
        """Test a hung transport is cut off by the collaborator timeout."""
        transport.delay = 2
        result = asyncio.run(sync.sync_to_cloud("token"))
        assert not result.success
        assert result.message == "timed out"
        assert store.settings.last_synced is None

    def test_edit_during_upload_stays_unsynced(self, sync, store, transport, dispatcher):
        """Test an edit committed while the upload is in flight is not marked synced."""
        transport.delay = 0.1

        async def scenario():
            async def edit():
                await asyncio.sleep(0.01)
                dispatcher.dispatch(AddExpense(amount=10, date=TODAY))
            return await asyncio.gather(sync.sync_to_cloud("token"), edit())

        result, _ = asyncio.run(scenario())
        assert result.success
        assert transport.document["expenses"] == []
        assert store.settings.has_unsynced_changes

    def test_restore_refused_with_unsynced_edits(self, sync, store, transport, app_settings, add_expense):
        """Test restore won't overwrite local edits unless forced."""
        transport.document = LedgerStore(app_settings=app_settings).to_document()
        local = add_expense(999)

        refused = asyncio.run(sync.restore_from_cloud("token"))
        assert refused.conflict
        assert store.exists(EntityKind.EXPENSES, local)
        assert _titles(store)[0] == "Restore Needs Confirmation"

        forced = asyncio.run(sync.restore_from_cloud("token", force=True))
        assert forced.success
        assert store.list(EntityKind.EXPENSES) == []
        assert not store.settings.has_unsynced_changes

    def test_edit_during_download_refuses_restore(self, sync, store, transport, dispatcher, app_settings):
        """Test an edit committed while the download is in flight is not overwritten."""
        transport.document = LedgerStore(app_settings=app_settings).to_document()
        transport.delay = 0.1
        added = {}

        async def scenario():
            async def edit():
                await asyncio.sleep(0.01)
                added["id"] = dispatcher.dispatch(AddExpense(amount=10, date=TODAY)).entity_id
            return await asyncio.gather(sync.restore_from_cloud("token"), edit())

        result, _ = asyncio.run(scenario())
        assert not result.success
        assert result.conflict
        assert store.exists(EntityKind.EXPENSES, added["id"])
        assert _titles(store)[0] == "Restore Needs Confirmation"

    def test_restore_replaces_synced_ledger(self, sync, store, transport, app_settings):
        """Test a clean device takes the cloud copy."""
        remote = LedgerStore(app_settings=app_settings)
        LedgerDispatcher(remote, app_settings=app_settings).dispatch(
            AddExpense(amount=75, date=TODAY, merchant="Cloud")
        )
        transport.document = remote.to_document()

        result = asyncio.run(sync.restore_from_cloud("token"))

        assert result.success
        assert store.list(EntityKind.EXPENSES)[0].merchant == "Cloud"
        assert not store.settings.has_unsynced_changes

    def test_restore_nothing_in_cloud(self, sync, store):
        """Test a missing cloud file is reported, not treated as empty."""
        result = asyncio.run(sync.restore_from_cloud("token"))
        assert not result.success
        assert _titles(store)[0] == "No Cloud Backup"

    def test_restore_corrupt_cloud_document(self, sync, store, transport, audit_storage):
        """Test an unparseable cloud snapshot keeps the local ledger."""
        transport.document = {"expenses": "not a list"}
        result = asyncio.run(sync.restore_from_cloud("token"))
        assert not result.success
        assert _titles(store)[0] == "Cloud Restore Failed"
        assert any(e.event_type == AuditEventType.SNAPSHOT_RESTORE_FAILED for e in audit_storage.events)

    def test_download_failure(self, sync, store, transport):
        transport.fail_with = TransportError("401 Unauthorized")
        result = asyncio.run(sync.restore_from_cloud("token"))
        assert not result.success
        assert "401" in result.message


# =============================================================================
# AI SUGGESTIONS
# =============================================================================

class TestSuggestions:
    @pytest.fixture
    def agent(self) -> FakeSuggestionAgent:
        return FakeSuggestionAgent()

    @pytest.fixture
    def suggestions(self, dispatcher, agent, audit_logger, app_settings) -> SuggestionFlow:
        return SuggestionFlow(dispatcher, agent, audit_logger, app_settings)

    def test_applies_suggestion(self, suggestions, store, add_expense):
        """Test an applied suggestion confirms the entry and marks it AI-upgraded."""
        expense_id = add_expense(640, merchant="Reliance Fresh", is_confirmed=False)
        result = asyncio.run(suggestions.suggest_and_apply(expense_id))

        assert result.ok
        expense = store.get(EntityKind.EXPENSES, expense_id)
        assert expense.category == Category.NEEDS
        assert expense.sub_category == "Groceries"
        assert expense.is_ai_upgraded
        assert expense.is_confirmed

    def test_deleted_while_waiting(self, suggestions, agent, dispatcher, store, audit_storage, add_expense):
        """Test a suggestion for an expense deleted mid-flight is discarded."""
        expense_id = add_expense(640, merchant="Reliance Fresh")
        agent.while_waiting = lambda: dispatcher.dispatch(DeleteExpense(expense_id=expense_id))

        result = asyncio.run(suggestions.suggest_and_apply(expense_id))

        assert result.status == CommandStatus.NOOP
        assert store.list(EntityKind.EXPENSES) == []
        assert audit_storage.events[-1].event_type == AuditEventType.SUGGESTION_DISCARDED

    def test_failure_falls_back(self, suggestions, agent, store, add_expense):
        """Test a failing agent leaves the expense alone and raises a quiet notice."""
        expense_id = add_expense(640, merchant="Reliance Fresh", is_confirmed=False)
        agent.fail = True
        before = store.get(EntityKind.EXPENSES, expense_id)

        assert asyncio.run(suggestions.suggest_and_apply(expense_id)) is None
        assert store.get(EntityKind.EXPENSES, expense_id) == before
        assert _titles(store)[0] == "Suggestion Unavailable"

    def test_timeout_falls_back(self, suggestions, agent, add_expense):
        """Test a slow agent counts as no suggestion."""
        expense_id = add_expense(640)
        agent.delay = 2
        assert asyncio.run(suggestions.request_suggestion(expense_id)) is None

    def test_transfer_not_suggested(self, suggestions, agent, dispatcher, store, add_account):
        """Test transfers are never sent for a suggestion and keep both legs intact."""
        a = add_account("A", 20_000)
        b = add_account("B", 1_000)
        transfer_id = dispatcher.dispatch(
            Transfer(amount=5_000, from_account_id=a, to_account_id=b, date=TODAY)
        ).entity_id
        agent.fail = True

        assert asyncio.run(suggestions.suggest_and_apply(transfer_id)) is None
        assert store.get(EntityKind.EXPENSES, transfer_id).is_transfer
        assert "Suggestion Unavailable" not in _titles(store)

    def test_unknown_expense(self, suggestions):
        assert asyncio.run(suggestions.suggest_and_apply("gone")) is None


# =============================================================================
# TEXT IMPORT
# =============================================================================

class _BrokenParser(TransactionTextParser):
    async def parse_text(self, text: str, currency: str = "INR"):
        raise SuggestionProviderError("model unavailable")


class TestImportFlow:
    def test_parse_stage_commit(self, dispatcher, store, add_expense, app_settings):
        """Test parsed text is staged against the ledger and duplicates are held back."""
        add_expense(500, merchant="Starbucks", on=date(2024, 5, 1))
        parser = FakeTextParser([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
            {"amount": 120, "merchant": "Metro", "date": "2024-05-02"},
        ])
        flow = ImportFlow(dispatcher, parser, app_settings=app_settings)

        staged = asyncio.run(flow.parse_text("..."))
        assert [s.is_duplicate for s in staged] == [True, False]

        result = flow.commit(staged)
        assert result.report.expenses_added == 1
        assert len(store.list(EntityKind.EXPENSES)) == 2

    def test_include_duplicates(self, dispatcher, store, app_settings):
        """Test the reviewer can choose to keep flagged duplicates."""
        flow = ImportFlow(dispatcher, app_settings=app_settings)
        staged = flow.stage([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
        ])
        flow.commit(staged, include_duplicates=True)
        assert len(store.list(EntityKind.EXPENSES)) == 2

    def test_wrong_typed_row_keeps_batch(self, dispatcher, store, app_settings):
        """Test one badly typed row is flagged while the valid row stages and commits."""
        flow = ImportFlow(dispatcher, app_settings=app_settings)
        staged = flow.stage([
            {"amount": 500, "merchant": "Starbucks", "date": "2024-05-01"},
            {"amount": 300, "date": "2024-05-02", "merchant": 12345, "entryType": "Expense"},
        ])
        assert [s.is_malformed for s in staged] == [False, True]

        result = flow.commit(staged)
        assert result.report.expenses_added == 1
        assert [e.merchant for e in store.list(EntityKind.EXPENSES)] == ["Starbucks"]

    def test_parser_failure(self, dispatcher, store, app_settings):
        """Test an unreadable text yields nothing and a notice."""
        flow = ImportFlow(dispatcher, _BrokenParser(), app_settings=app_settings)
        assert asyncio.run(flow.parse_text("garbage")) == []
        assert _titles(store)[0] == "Text Not Recognized"


# =============================================================================
# LOCAL BACKUP
# =============================================================================

class _FailingStorage(JSONFileSnapshotStorage):
    def save(self, document):
        raise StorageError("disk full")


class TestBackup:
    @pytest.fixture
    def storage(self, app_settings) -> JSONFileSnapshotStorage:
        return JSONFileSnapshotStorage(app_settings.snapshot_path)

    def test_autosave_and_reload(self, dispatcher, store, storage, app_settings):
        """Test every applied command is persisted and a fresh store reloads it."""
        backup = BackupFlow(dispatcher, storage, app_settings=app_settings)
        dispatcher.on_commit = backup.autosave
        dispatcher.dispatch(AddExpense(amount=321, date=TODAY, merchant="Cafe"))

        fresh = LedgerStore(app_settings=app_settings)
        fresh_backup = BackupFlow(LedgerDispatcher(fresh, app_settings=app_settings), storage, app_settings=app_settings)
        assert fresh_backup.load_local().ok
        assert fresh.list(EntityKind.EXPENSES)[0].merchant == "Cafe"
        assert fresh.revision == store.revision

    def test_autosave_failure_reported(self, dispatcher, store, app_settings):
        """Test a failed save is a notice, not an exception."""
        backup = BackupFlow(dispatcher, _FailingStorage(app_settings.snapshot_path), app_settings=app_settings)
        assert backup.autosave(store) is False
        assert _titles(store)[0] == "Local Save Failed"

    def test_corrupt_local_file(self, dispatcher, store, storage, app_settings):
        """Test an unreadable local snapshot starts an empty vault with a notice."""
        app_settings.snapshot_path.parent.mkdir(parents=True)
        app_settings.snapshot_path.write_text("{oops", encoding="utf-8")
        backup = BackupFlow(dispatcher, storage, app_settings=app_settings)
        assert backup.load_local() is None
        assert _titles(store)[0] == "Local Data Unreadable"

    def test_export_and_import(self, dispatcher, store, storage, app_settings, tmp_path, add_expense):
        """Test an exported file restores the ledger it came from."""
        backup = BackupFlow(dispatcher, storage, app_settings=app_settings)
        add_expense(111, merchant="Exported")
        path = backup.export(tmp_path / "exports", on_date=TODAY)
        assert path.name == "vault_snapshot_2024-05-15.json"

        add_expense(222, merchant="Later")
        assert backup.import_file(path).ok
        assert [e.merchant for e in store.list(EntityKind.EXPENSES)] == ["Exported"]

    def test_import_bad_file(self, dispatcher, store, storage, app_settings, tmp_path, add_expense):
        """Test a bad or missing file is rejected and the ledger kept."""
        backup = BackupFlow(dispatcher, storage, app_settings=app_settings)
        kept = add_expense(5)
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"expenses": [{"amount": "x"}]}), encoding="utf-8")

        assert backup.import_file(bad).status == CommandStatus.REJECTED
        assert backup.import_file(tmp_path / "missing.json").status == CommandStatus.REJECTED
        assert store.exists(EntityKind.EXPENSES, kept)


class TestFactory:
    def test_components_wired(self, app_settings):
        """Test the factory wires autosave and audit to the data directory."""
        components = create_app_components(use_ai=False, use_cloud=False, app_settings=app_settings)
        assert components.sync is None
        assert components.suggestions is None

        components.dispatcher.dispatch(AddExpense(amount=50, date=date.today()))
        assert app_settings.snapshot_path.exists()
        assert app_settings.audit_path.exists()

        reloaded = create_app_components(use_ai=False, use_cloud=False, app_settings=app_settings)
        assert len(reloaded.store.list(EntityKind.EXPENSES)) == 1

    def test_startup_roll_forward_is_saved(self, app_settings):
        """Test bills materialized while starting up are written to disk."""
        components = create_app_components(use_ai=False, use_cloud=False, app_settings=app_settings)
        components.dispatcher.dispatch(AddExpense(
            amount=649,
            date=date.today() - timedelta(days=70),
            merchant="Netflix",
            frequency=Frequency.MONTHLY,
        ))
        assert components.store.list(EntityKind.BILLS) == []

        create_app_components(use_ai=False, use_cloud=False, app_settings=app_settings)
        saved = json.loads(app_settings.snapshot_path.read_text(encoding="utf-8"))
        assert [b["merchant"] for b in saved["bills"]][:1] == ["Netflix"]
