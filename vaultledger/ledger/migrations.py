"""
Snapshot schema versions.

Every snapshot passes through migrate() exactly once on its way into the
store; after that, every record is at CURRENT_SCHEMA_VERSION and read
sites never default fields themselves.

Version history:
    0 - unversioned documents (ids and isConfirmed may be missing,
        credit limits stored under "limit")
    1 - every record has an id, expenses carry isConfirmed,
        accounts use "creditLimit"
"""

from typing import Any, Callable

from vaultledger.models.ledger import EntityKind, new_id


CURRENT_SCHEMA_VERSION = 1


def _records(payload: dict, key: str) -> list[dict]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list, got {type(value).__name__}")
    for record in value:
        if not isinstance(record, dict):
            raise ValueError(f"'{key}' entries must be objects")
    return value


def _v0_to_v1(payload: dict) -> dict:
    migrated = dict(payload)

    for kind in EntityKind:
        if kind.value not in payload:
            continue
        records = []
        for record in _records(payload, kind.value):
            record = dict(record)
            if not record.get("id"):
                record["id"] = new_id()
            records.append(record)
        migrated[kind.value] = records

    for record in migrated.get(EntityKind.EXPENSES.value, []):
        if record.get("isConfirmed") is None:
            record["isConfirmed"] = True

    for record in migrated.get(EntityKind.ACCOUNTS.value, []):
        if "limit" in record and "creditLimit" not in record:
            record["creditLimit"] = record.pop("limit")

    migrated["schemaVersion"] = 1
    return migrated


MIGRATIONS: dict[int, Callable[[dict], dict]] = {
    0: _v0_to_v1,
}


def detect_version(payload: dict[str, Any]) -> int:
    version = payload.get("schemaVersion", 0)
    if not isinstance(version, int) or isinstance(version, bool) or version < 0:
        raise ValueError(f"Invalid schemaVersion: {version!r}")
    return version


def migrate(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Upgrade a raw snapshot document to CURRENT_SCHEMA_VERSION.

    Returns a new dict; the input is not modified.

    Raises:
        ValueError: malformed structure or a version newer than this code
    """
    if not isinstance(payload, dict):
        raise ValueError("Snapshot must be a JSON object")

    version = detect_version(payload)
    if version > CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"Snapshot schema {version} is newer than supported ({CURRENT_SCHEMA_VERSION})"
        )

    document = dict(payload)
    while version < CURRENT_SCHEMA_VERSION:
        document = MIGRATIONS[version](document)
        version = detect_version(document)
    return document
