"""
Undo Log

Remembers the ids written by the most recent commit of a target so the
user can take it back with one command. The ids live in the session
state next to the pending batch; a newer commit replaces them.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from chatledger.audit import AuditLogger
from chatledger.ledger.ledger import Ledger
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.conversation import SessionState
from chatledger.models.ledger import Target


logger = structlog.get_logger(__name__)


class UndoStatus(str, Enum):
    FULL = "full"          # every id deleted
    PARTIAL = "partial"    # some ids were already gone
    FAILED = "failed"      # none of the ids existed any more
    NOTHING = "nothing"    # log was empty


class UndoResult(BaseModel):
    status: UndoStatus
    deleted: list[UUID] = Field(default_factory=list)
    missing: list[UUID] = Field(default_factory=list)


class UndoLog:
    """
    Single-shot rollback of the latest commit.

    Usage:
        undo_log.record(state, ids)
        result = await undo_log.undo(state, target)
    """

    def __init__(self, ledger: Ledger, audit_logger: Optional[AuditLogger] = None):
        self._ledger = ledger
        self._audit = audit_logger

    def record(self, state: SessionState, transaction_ids: list[UUID]) -> None:
        """Replace the log with the ids of the latest commit."""
        state.undo_ids = list(transaction_ids)

    async def undo(self, state: SessionState, target: Target) -> UndoResult:
        """
        Delete every logged id.

        The log is cleared once every id has been tried, so a second undo
        can't hit rows that are already gone. If storage fails midway the
        exception propagates and the log is left as it was.
        """
        if not state.undo_ids:
            return UndoResult(status=UndoStatus.NOTHING)

        deleted: list[UUID] = []
        missing: list[UUID] = []
        for transaction_id in state.undo_ids:
            if await self._ledger.delete(transaction_id, target):
                deleted.append(transaction_id)
            else:
                missing.append(transaction_id)
                logger.warning(
                    "undo_transaction_missing",
                    target_id=str(target.target_id),
                    transaction_id=str(transaction_id),
                )

        if not missing:
            status = UndoStatus.FULL
        elif deleted:
            status = UndoStatus.PARTIAL
        else:
            status = UndoStatus.FAILED

        state.undo_ids = []
        if self._audit:
            await self._audit.log(AuditEventBuilder.undo_completed(
                target.target_id, status.value, deleted, missing
            ))
        return UndoResult(status=status, deleted=deleted, missing=missing)
