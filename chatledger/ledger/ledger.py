"""
Ledger

Writes and deletes transactions. All writes go through
LedgerStorageInterface.save_transactions, which resolves categories
once per distinct name and writes the whole batch in one database
transaction.

DESIGN DECISION: Validation happens before the first write, for the
whole batch. A batch with one bad item writes nothing; there is never a
partially applied batch to clean up.
"""

from collections.abc import Sequence
from typing import Optional
from uuid import UUID

import structlog

from chatledger.audit import AuditLogger
from chatledger.config import LedgerSettings, get_settings
from chatledger.models.ledger import (
    Period,
    Target,
    Transaction,
    TransactionCandidate,
    TransactionDraft,
    TransactionType,
)
from chatledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class LedgerError(Exception):
    """Base exception for ledger writes."""
    pass


class InvalidAmount(LedgerError, ValueError):
    """An amount was zero or negative."""

    def __init__(self, message: str, index: int = 0):
        super().__init__(message)
        self.index = index


class LowToolConfidence(LedgerError):
    """A tool-driven write was below the minimum confidence."""

    def __init__(self, message: str, index: int = 0, confirmation_message: Optional[str] = None):
        super().__init__(message)
        self.index = index
        self.confirmation_message = confirmation_message


def _to_draft(
    candidate: TransactionCandidate,
    raw_message: Optional[str],
    index: int = 0,
) -> TransactionDraft:
    if candidate.amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {candidate.amount}", index=index)
    return TransactionDraft(
        transaction_id=getattr(candidate, "transaction_id", None),
        type=candidate.type,
        amount=candidate.amount,
        category=candidate.category,
        bucket=candidate.bucket,
        description=candidate.description,
        confidence=candidate.confidence,
        raw_message=raw_message,
    )


class Ledger:
    """
    Transaction commit and delete.

    Usage:
        ledger = Ledger(storage)
        ids = await ledger.commit_many(target, period, candidates, raw_message)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger

    async def commit(
        self,
        target: Target,
        period: Period,
        candidate: TransactionCandidate,
        raw_message: Optional[str],
    ) -> UUID:
        """Write one candidate; returns its transaction id."""
        ids = await self.commit_many(target, period, [candidate], raw_message)
        return ids[0]

    async def commit_many(
        self,
        target: Target,
        period: Period,
        candidates: Sequence[TransactionCandidate],
        raw_message: Optional[str],
        source: str = "parser",
    ) -> list[UUID]:
        """
        Write all candidates atomically.

        Raises:
            InvalidAmount: If any amount is not positive (nothing written)
            StorageError: If the write fails (nothing written)
        """
        drafts = [_to_draft(c, raw_message, i) for i, c in enumerate(candidates)]
        ids = await self._storage.save_transactions(target, period.id, drafts)

        logger.info(
            "transactions_committed",
            target_id=str(target.target_id),
            period_id=str(period.id),
            count=len(ids),
            source=source,
        )
        if self._audit:
            await self._audit.log_committed(target.target_id, period.id, ids, source)
        return ids

    async def bulk_upsert(
        self,
        target: Target,
        period: Period,
        candidates: Sequence[TransactionCandidate],
        raw_message: Optional[str] = None,
    ) -> list[UUID]:
        """
        Create or update (when an item carries transaction_id) a batch
        requested through the tool contract.

        Every item is checked before anything is written.

        Raises:
            LowToolConfidence: If any item is below the tool threshold
            InvalidAmount: If any amount is not positive
        """
        threshold = self._settings.tool_min_confidence
        for index, candidate in enumerate(candidates):
            if candidate.confidence < threshold:
                raise LowToolConfidence(
                    f"Item {index} confidence {candidate.confidence:.2f} is below {threshold:.2f}",
                    index=index,
                    confirmation_message=getattr(candidate, "confirmation_message", None),
                )
            if candidate.amount <= 0:
                raise InvalidAmount(f"Item {index} amount must be positive", index=index)

        return await self.commit_many(target, period, candidates, raw_message, source="tool")

    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        return await self._storage.get_transaction(transaction_id)

    async def delete(self, transaction_id: UUID, target: Optional[Target] = None) -> bool:
        """
        Delete a transaction.

        With target given, a transaction belonging to someone else is
        treated as missing.

        Returns:
            False if there was nothing to delete
        """
        if target is not None:
            existing = await self._storage.get_transaction(transaction_id)
            if existing is None or existing.target_id != target.target_id:
                return False
        deleted = await self._storage.delete_transaction(transaction_id)
        if deleted:
            logger.info("transaction_deleted", transaction_id=str(transaction_id))
        return deleted

    async def history(
        self,
        target: Target,
        period: Period,
        limit: int = 10,
        bucket: Optional[str] = None,
        type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """Most recent transactions of the period, newest first."""
        return await self._storage.list_transactions(target, period.id, limit=limit, bucket=bucket, type=type)
