"""
Ledger Store

The single owner of every ledger collection. Consumers receive a store
instance; nothing else holds entity state.

Entities are treated as values: updates replace the stored model
(model_copy / model_validate) rather than mutating it, which is what lets
transaction() roll back by restoring the previous dict contents.

Revision counter:
- Each committed mutation (or each transaction that wrote anything)
  increments settings.revision.
- Notifications and sync bookkeeping do not count as mutations.
- restore() adopts the snapshot's own revision; a restore is not an edit.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, Union

import structlog
from pydantic import ValidationError as SchemaError

from vaultledger.config import AppSettings, get_settings
from vaultledger.ledger.errors import RestoreParseError, UnboundReferenceError
from vaultledger.ledger.migrations import CURRENT_SCHEMA_VERSION, migrate
from vaultledger.models.ledger import (
    ENTITY_MODELS,
    EntityKind,
    LedgerModel,
    Notification,
    Snapshot,
    UserSettings,
)


logger = structlog.get_logger(__name__)


class LedgerStore:
    """
    Authoritative in-memory ledger.

    Collections preserve creation order. upsert() of an existing id
    replaces the entity in place (order unchanged).
    """

    def __init__(
        self,
        settings: Optional[UserSettings] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._app = app_settings or get_settings().app
        self._collections: dict[EntityKind, dict[str, LedgerModel]] = {
            kind: {} for kind in EntityKind
        }
        self._settings = settings or self.default_settings()
        self._user: Optional[dict[str, Any]] = None
        self._in_transaction = False
        self._dirty = False

    # -------------------------------------------------------------------------
    # Settings & revision
    # -------------------------------------------------------------------------

    def default_settings(self) -> UserSettings:
        return UserSettings(
            monthly_income=self._app.default_monthly_income,
            split=self._app.default_split,
            currency=self._app.default_currency,
        )

    @property
    def settings(self) -> UserSettings:
        return self._settings

    @property
    def revision(self) -> int:
        return self._settings.revision

    @property
    def user(self) -> Optional[dict[str, Any]]:
        return self._user

    def update_settings(self, **changes: Any) -> UserSettings:
        """
        Replace selected settings fields (by field name).

        Raises:
            pydantic.ValidationError: if the result is not valid settings
        """
        data = self._settings.model_dump()
        data.update(changes)
        self._settings = UserSettings.model_validate(data)
        self._touch()
        return self._settings

    def mark_synced(self, synced_at: datetime, revision: Optional[int] = None) -> None:
        """
        Record that a revision (the current one by default) now exists in
        the cloud. Edits committed while an upload was in flight stay
        unsynced.
        """
        self._settings = self._settings.model_copy(update={
            "last_synced": synced_at,
            "synced_revision": self._settings.revision if revision is None else revision,
        })

    def _touch(self) -> None:
        if self._in_transaction:
            self._dirty = True
        else:
            self._bump_revision()

    def _bump_revision(self) -> None:
        self._settings = self._settings.model_copy(
            update={"revision": self._settings.revision + 1}
        )

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def get(self, kind: EntityKind, entity_id: Optional[str]) -> Optional[LedgerModel]:
        if not entity_id:
            return None
        return self._collections[kind].get(entity_id)

    def require(self, kind: EntityKind, entity_id: Optional[str]) -> LedgerModel:
        """
        Get an entity or raise.

        Raises:
            UnboundReferenceError: if no entity has that id
        """
        entity = self.get(kind, entity_id)
        if entity is None:
            raise UnboundReferenceError(kind, entity_id)
        return entity

    def exists(self, kind: EntityKind, entity_id: Optional[str]) -> bool:
        return self.get(kind, entity_id) is not None

    def upsert(self, kind: EntityKind, entity: LedgerModel) -> LedgerModel:
        expected = ENTITY_MODELS[kind]
        if not isinstance(entity, expected):
            raise TypeError(
                f"{kind.value} holds {expected.__name__}, got {type(entity).__name__}"
            )
        self._collections[kind][entity.id] = entity
        if kind != EntityKind.NOTIFICATIONS:
            self._touch()
        return entity

    def remove(self, kind: EntityKind, entity_id: str) -> Optional[LedgerModel]:
        removed = self._collections[kind].pop(entity_id, None)
        if removed is not None and kind != EntityKind.NOTIFICATIONS:
            self._touch()
        return removed

    def remove_where(
        self,
        kind: EntityKind,
        predicate: Callable[[Any], bool],
    ) -> list[LedgerModel]:
        """Remove every entity matching predicate; returns what was removed."""
        collection = self._collections[kind]
        removed = [e for e in collection.values() if predicate(e)]
        for entity in removed:
            del collection[entity.id]
        if removed and kind != EntityKind.NOTIFICATIONS:
            self._touch()
        return removed

    def counts(self) -> dict[str, int]:
        return {kind.value: len(items) for kind, items in self._collections.items()}

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def add_notification(self, notification: Notification) -> Notification:
        """
        Add a notification at the front of the list.

        An existing id is replaced where it stands. The list is capped at
        the configured limit, dropping the oldest.
        """
        notifications = self._collections[EntityKind.NOTIFICATIONS]
        if notification.id in notifications:
            notifications[notification.id] = notification
            return notification

        merged = {notification.id: notification}
        for key, existing in notifications.items():
            if len(merged) >= self._app.notification_limit:
                break
            merged[key] = existing
        self._collections[EntityKind.NOTIFICATIONS] = merged
        return notification

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["LedgerStore"]:
        """
        Group writes so they commit together or not at all.

        If the block raises, every collection and the settings are put
        back exactly as they were. Nested transactions join the outer one.
        """
        if self._in_transaction:
            yield self
            return

        backup = {kind: dict(items) for kind, items in self._collections.items()}
        settings_backup = self._settings
        user_backup = self._user
        self._in_transaction = True
        self._dirty = False
        try:
            yield self
        except BaseException:
            self._collections = backup
            self._settings = settings_backup
            self._user = user_backup
            raise
        else:
            if self._dirty:
                self._bump_revision()
        finally:
            self._in_transaction = False
            self._dirty = False

    # -------------------------------------------------------------------------
    # Snapshot / restore
    # -------------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Capture the whole ledger as a Snapshot model."""
        return Snapshot(
            schema_version=CURRENT_SCHEMA_VERSION,
            settings=self._settings,
            expenses=self.list(EntityKind.EXPENSES),
            incomes=self.list(EntityKind.INCOMES),
            wealth_items=self.list(EntityKind.ACCOUNTS),
            bills=self.list(EntityKind.BILLS),
            budget_items=self.list(EntityKind.BUDGET_ITEMS),
            notifications=self.list(EntityKind.NOTIFICATIONS),
            rules=self.list(EntityKind.RULES),
            recurring_items=self.list(EntityKind.RECURRING_ITEMS),
            user=self._user,
            timestamp=datetime.now(timezone.utc),
        )

    def to_document(self) -> dict:
        """Snapshot as a JSON-ready dict with camelCase keys."""
        return self.snapshot().to_document()

    def restore(self, raw: Union[str, bytes, dict, Snapshot]) -> dict[str, int]:
        """
        Replace the whole ledger with a snapshot.

        Accepts a JSON string/bytes, a raw dict, or a Snapshot. Missing
        keys default independently (empty collections, default settings);
        missing per-record ids and isConfirmed flags are backfilled.

        Returns:
            Record counts per collection after the restore

        Raises:
            RestoreParseError: if anything fails to parse. The current
                ledger is left exactly as it was.
        """
        try:
            if isinstance(raw, Snapshot):
                payload = raw.to_document()
            elif isinstance(raw, (str, bytes)):
                payload = json.loads(raw)
            else:
                payload = raw
            document = migrate(payload)
            snapshot = Snapshot.model_validate(document)
        except (SchemaError, ValueError, TypeError) as e:
            logger.warning("snapshot_restore_rejected", error=str(e))
            raise RestoreParseError(f"Snapshot could not be parsed: {e}") from e

        settings = snapshot.settings if "settings" in document else self.default_settings()
        collections = {
            EntityKind.EXPENSES: snapshot.expenses,
            EntityKind.INCOMES: snapshot.incomes,
            EntityKind.ACCOUNTS: snapshot.wealth_items,
            EntityKind.BILLS: snapshot.bills,
            EntityKind.BUDGET_ITEMS: snapshot.budget_items,
            EntityKind.NOTIFICATIONS: snapshot.notifications[: self._app.notification_limit],
            EntityKind.RULES: snapshot.rules,
            EntityKind.RECURRING_ITEMS: snapshot.recurring_items,
        }

        # Everything parsed; swap in one step
        self._collections = {
            kind: {entity.id: entity for entity in entities}
            for kind, entities in collections.items()
        }
        self._settings = settings
        self._user = snapshot.user

        counts = self.counts()
        logger.info("snapshot_restored", **counts)
        return counts

    # Kept last: the method name shadows the builtin inside the class body
    def list(self, kind: EntityKind) -> "list[Any]":
        """Entities of one kind, in creation order."""
        return [*self._collections[kind].values()]
