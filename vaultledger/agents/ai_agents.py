"""
AI Agents for Vault Ledger

CRITICAL BOUNDARIES:

1. CATEGORY SUGGESTION AGENT:
   - CAN: Suggest a category / sub-category for an existing expense
   - CANNOT: Write to the ledger. A suggestion only takes effect when the
     caller dispatches ApplySuggestion, and that is a no-op if the expense
     was deleted in the meantime.

2. TRANSACTION TEXT AGENT:
   - CAN: Turn pasted SMS / statement text into loosely typed candidates
   - CANNOT: Create entries. Candidates go through the import reconciler
     (typing, duplicate flags, rules) like any other batch.
   - CANNOT: Invent amounts or dates that are not in the text

The LLM is a TRANSLATOR, not an ORACLE. Everything it returns is advisory
and validated downstream.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field, ValidationError

from vaultledger.config import GeminiSettings, get_settings
from vaultledger.models.imports import ImportCandidate
from vaultledger.models.ledger import DEFAULT_SUBCATEGORY, Category, Expense


logger = structlog.get_logger(__name__)


class SuggestionProviderError(Exception):
    """The AI provider failed or returned something unusable."""
    pass


class CategorySuggestion(BaseModel):
    """AI's suggestion for an expense's category."""

    category: Category
    sub_category: str = DEFAULT_SUBCATEGORY
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    insight: str = ""


# =============================================================================
# INTERFACES
# =============================================================================

class CategorySuggestionProvider(ABC):
    """Anything that can suggest a category for an expense."""

    @abstractmethod
    async def suggest_category(self, expense: Expense, currency: str = "INR") -> CategorySuggestion:
        """
        Raises:
            SuggestionProviderError: if no usable suggestion was produced
        """
        pass


class TransactionTextParser(ABC):
    """Anything that turns free-form text into import candidates."""

    @abstractmethod
    async def parse_text(self, text: str, currency: str = "INR") -> list[ImportCandidate]:
        """
        Raises:
            SuggestionProviderError: if the text could not be parsed
        """
        pass


# =============================================================================
# GEMINI
# =============================================================================

def _extract_json(text: str, opening: str = "{", closing: str = "}") -> Any:
    """Pull the outermost JSON object (or array) out of a model response."""
    start = text.find(opening)
    end = text.rfind(closing) + 1
    if start < 0 or end <= start:
        raise SuggestionProviderError("Response contained no JSON")
    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise SuggestionProviderError(f"Response JSON is invalid: {e}") from e


class _GeminiAgent:
    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def _generate(self, prompt: str) -> str:
        try:
            response = await self._model.generate_content_async(prompt)
            return response.text.strip()
        except Exception as e:
            # The SDK raises a wide range of transport and API errors
            logger.warning("gemini_call_failed", error=str(e))
            raise SuggestionProviderError(f"Gemini call failed: {e}") from e


class CategorySuggestionAgent(_GeminiAgent, CategorySuggestionProvider):
    """
    Suggests a Needs / Wants / Savings bucket for one expense.

    Returns a suggestion the user (or the suggestion flow) can apply or
    ignore. Never retries; the flow treats a failure as "no suggestion".
    """

    async def suggest_category(self, expense: Expense, currency: str = "INR") -> CategorySuggestion:
        categories = [c.value for c in Category.budgeted()]
        prompt = f"""You are auditing one transaction for a personal budgeting app.

Transaction:
- Merchant: {expense.merchant or "unknown"}
- Note: {expense.note or "none"}
- Amount: {expense.amount} {currency}
- Current category: {expense.category.value} / {expense.sub_category}

Classify it into exactly one of: {', '.join(categories)}.
Also give a short sub-category (e.g. Groceries, Dining, Rent, Investments).

Respond with ONLY a JSON object in this exact format:
{{"category": "Needs", "subCategory": "Groceries", "confidence": 0.8, "insight": "brief reason"}}"""

        data = _extract_json(await self._generate(prompt))
        try:
            return CategorySuggestion(
                category=data.get("category"),
                sub_category=data.get("subCategory") or DEFAULT_SUBCATEGORY,
                confidence=float(data.get("confidence", 0.5)),
                insight=data.get("insight", ""),
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise SuggestionProviderError(f"Unusable suggestion: {data!r}") from e


class TransactionTextAgent(_GeminiAgent, TransactionTextParser):
    """
    Parses bank SMS, statement lines or pasted notes into candidates.

    Each transaction in the text becomes one ImportCandidate; anything the
    model cannot read is left empty for the reconciler to flag.
    """

    async def parse_text(self, text: str, currency: str = "INR") -> list[ImportCandidate]:
        if not text or not text.strip():
            return []

        prompt = f"""You are extracting transactions from text for a personal ledger.
Amounts are in {currency}.

Text:
\"\"\"{text[:4000]}\"\"\"

Return a JSON array. Each element:
{{"amount": 450, "date": "YYYY-MM-DD", "entryType": "Expense" or "Income",
  "merchant": "who was paid or who paid", "note": "short note",
  "category": "Needs" | "Wants" | "Savings" | "Uncategorized",
  "subCategory": "short label"}}

Rules:
- Only include transactions that are actually in the text
- Leave a field out if the text doesn't say it; never guess amounts or dates
- Respond with ONLY the JSON array, no explanation."""

        data = _extract_json(await self._generate(prompt), "[", "]")
        if not isinstance(data, list):
            raise SuggestionProviderError("Expected a JSON array of transactions")

        candidates = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                candidates.append(ImportCandidate.model_validate({**item, "rawContent": text[:200]}))
            except ValidationError as e:
                logger.warning("text_candidate_skipped", errors=e.error_count())
        logger.info("text_parsed", candidates=len(candidates))
        return candidates
