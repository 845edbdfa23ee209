"""
Shared fixtures for Vault Ledger tests.

No real API calls: the cloud transport and AI agents are in-memory fakes,
and local files live under pytest's tmp_path.
"""

import asyncio
from datetime import date, datetime
from typing import Any, Optional

import pytest

from vaultledger.agents import (
    CategorySuggestion,
    CategorySuggestionProvider,
    SuggestionProviderError,
    TransactionTextParser,
)
from vaultledger.config import AppSettings
from vaultledger.ledger import LedgerDispatcher, LedgerStore
from vaultledger.ledger.commands import AddAccount, AddExpense
from vaultledger.models.audit import AuditEvent
from vaultledger.models.imports import ImportCandidate
from vaultledger.models.ledger import Category, Expense, Polarity, WealthCategory
from vaultledger.services.cloud import CloudTransportInterface, TransportError
from vaultledger.services.storage import AuditStorageInterface


TODAY = date(2024, 5, 15)


# =============================================================================
# FAKES
# =============================================================================

class FakeTransport(CloudTransportInterface):
    """In-memory cloud: one stored document, optional failure or delay."""

    def __init__(self, document: Optional[dict] = None):
        self.document = document
        self.fail_with: Optional[Exception] = None
        self.delay: float = 0
        self.uploads = 0

    async def upload(self, access_token: str, document: dict[str, Any]) -> datetime:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        self.document = document
        self.uploads += 1
        return datetime(2024, 5, 15, 12, 0, 0)

    async def download(self, access_token: str) -> Optional[dict[str, Any]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        return self.document


class FakeSuggestionAgent(CategorySuggestionProvider):
    """Returns a fixed suggestion; can fail, or run a hook while 'thinking'."""

    def __init__(self, suggestion: Optional[CategorySuggestion] = None):
        self.suggestion = suggestion or CategorySuggestion(
            category=Category.NEEDS, sub_category="Groceries", confidence=0.9,
        )
        self.fail = False
        self.delay: float = 0
        self.while_waiting = None

    async def suggest_category(self, expense: Expense, currency: str = "INR") -> CategorySuggestion:
        if self.while_waiting:
            self.while_waiting()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise SuggestionProviderError("model unavailable")
        return self.suggestion


class FakeTextParser(TransactionTextParser):
    def __init__(self, candidates: list[dict]):
        self.candidates = candidates

    async def parse_text(self, text: str, currency: str = "INR") -> list[ImportCandidate]:
        return [ImportCandidate.model_validate(c) for c in self.candidates]


class MemoryAuditStorage(AuditStorageInterface):
    def __init__(self):
        self.events: list[AuditEvent] = []

    def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self.events))[:limit]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def app_settings(tmp_path) -> AppSettings:
    return AppSettings(
        data_dir=tmp_path / "vault",
        collaborator_timeout_seconds=0.5,
        notification_limit=10,
    )


@pytest.fixture
def store(app_settings) -> LedgerStore:
    return LedgerStore(app_settings=app_settings)


@pytest.fixture
def dispatcher(store, app_settings) -> LedgerDispatcher:
    return LedgerDispatcher(store, app_settings=app_settings, clock=lambda: TODAY)


@pytest.fixture
def add_account(dispatcher):
    """Create an account through the dispatcher and return its id."""

    def _add(name: str, value: int = 0, polarity: Polarity = Polarity.ASSET, **kwargs) -> str:
        kwargs.setdefault(
            "category",
            WealthCategory.CREDIT_CARD if polarity == Polarity.LIABILITY else WealthCategory.SAVINGS,
        )
        result = dispatcher.dispatch(AddAccount(name=name, value=value, polarity=polarity, **kwargs))
        assert result.ok, result.message
        return result.entity_id

    return _add


@pytest.fixture
def add_expense(dispatcher):
    """Create an expense through the dispatcher and return its id."""

    def _add(amount: int, merchant: str = "Store", on: date = TODAY, **kwargs) -> str:
        result = dispatcher.dispatch(AddExpense(amount=amount, merchant=merchant, date=on, **kwargs))
        assert result.ok, result.message
        return result.entity_id

    return _add
