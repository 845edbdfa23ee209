"""AI agents package."""

from vaultledger.agents.ai_agents import (
    CategorySuggestion,
    CategorySuggestionAgent,
    CategorySuggestionProvider,
    SuggestionProviderError,
    TransactionTextAgent,
    TransactionTextParser,
)

__all__ = [
    "CategorySuggestion",
    "CategorySuggestionAgent",
    "CategorySuggestionProvider",
    "SuggestionProviderError",
    "TransactionTextAgent",
    "TransactionTextParser",
]
