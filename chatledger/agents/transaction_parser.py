"""
Transaction Parser

Turns one chat message into zero or more TransactionCandidates.

CRITICAL BOUNDARIES:
- The parser never writes anything; it only proposes
- The parser does not retry. A timeout, an API error or output that
  isn't the agreed JSON all become ParseFailure, and the caller shows
  the user a retry prompt
- Model output is validated with pydantic; nothing the model says is
  trusted without passing the schema

The small-amount guard is applied here, after validation, so a model
that forgets to flag "coffee 25" still produces an amount choice.
"""

import json
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from chatledger.agents.prompts import PARSE_SYSTEM_PROMPT, PARSE_USER_TEMPLATE
from chatledger.config import LedgerSettings, get_settings
from chatledger.models.ledger import (
    ParsedMessage,
    TransactionCandidate,
    TransactionType,
)
from chatledger.services.llm import LanguageModelError, LanguageModelInterface


logger = structlog.get_logger(__name__)


class ParseFailure(Exception):
    """The model's answer was missing, late or malformed."""
    pass


class _RawTransaction(BaseModel):
    """Model output item before "other" entries are split off."""

    type: str
    amount: Optional[Any] = None
    category: Optional[str] = None
    bucket: Optional[str] = None
    description: Optional[str] = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    needsConfirmation: bool = False
    suggestedAmount: Optional[Any] = None


class _RawParse(BaseModel):
    message: str = ""
    transactions: list[_RawTransaction] = Field(default_factory=list)


def _extract_json(text: str) -> dict:
    """Find the JSON object in the model's text (it may wrap it in prose or fences)."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ParseFailure("No JSON object in model output")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Invalid JSON from model: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure("Model output is not a JSON object")
    return data


class TransactionParser:
    """
    LLM-backed transaction extraction.

    Usage:
        parser = TransactionParser(model)
        parsed = await parser.parse("lunch 35rb", ["Needs", "Wants", "Savings"])
    """

    def __init__(
        self,
        model: LanguageModelInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._model = model
        self._settings = settings or get_settings().ledger

    async def parse(self, message: str, bucket_names: list[str]) -> ParsedMessage:
        """
        Raises:
            ParseFailure: If the model failed or its output doesn't validate
        """
        prompt = PARSE_USER_TEMPLATE.format(
            bucket_names=", ".join(bucket_names) if bucket_names else "(none yet)",
            message=message,
        )
        try:
            text = await self._model.generate_json(PARSE_SYSTEM_PROMPT, prompt)
        except LanguageModelError as e:
            logger.warning("parse_model_failed", error=str(e))
            raise ParseFailure(str(e)) from e

        try:
            raw = _RawParse.model_validate(_extract_json(text))
        except ValidationError as e:
            raise ParseFailure(f"Model output doesn't match the parsing contract: {e}") from e

        candidates: list[TransactionCandidate] = []
        for item in raw.transactions:
            if item.type == "other":
                continue
            candidates.append(self._candidate(item))

        logger.info(
            "message_parsed",
            candidates=len(candidates),
            dropped=len(raw.transactions) - len(candidates),
        )
        return ParsedMessage(reply=raw.message, candidates=candidates)

    def _candidate(self, item: _RawTransaction) -> TransactionCandidate:
        try:
            TransactionType(item.type)
            candidate = TransactionCandidate(
                type=item.type,
                amount=item.amount,
                category=item.category,
                bucket=item.bucket or None,
                description=item.description or "",
                confidence=item.confidence,
                needs_confirmation=item.needsConfirmation,
                suggested_amount=item.suggestedAmount,
            )
        except (ValueError, ValidationError) as e:
            raise ParseFailure(f"Invalid transaction from model: {e}") from e

        if candidate.amount <= 0:
            raise ParseFailure(f"Model produced a non-positive amount: {candidate.amount}")

        return self._apply_small_amount_guard(candidate)

    def _apply_small_amount_guard(self, candidate: TransactionCandidate) -> TransactionCandidate:
        """Flag expenses below the threshold as unit-ambiguous."""
        if candidate.type != TransactionType.EXPENSE:
            return candidate
        if candidate.amount >= self._settings.small_amount_threshold:
            return candidate

        suggested = candidate.suggested_amount
        if suggested is None or suggested <= candidate.amount:
            suggested = candidate.amount * Decimal(self._settings.small_amount_multiplier)
        return candidate.model_copy(update={
            "needs_confirmation": True,
            "suggested_amount": suggested,
        })
