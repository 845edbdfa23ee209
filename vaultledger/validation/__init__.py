"""Entry validation package."""

from vaultledger.validation.validator import EntryValidator

__all__ = ["EntryValidator"]
