"""
Confirmation Gate

Decides what happens to parsed candidates:

    one candidate, unit-ambiguous         -> ask which amount (AMOUNT_CHOICE)
    one candidate, confidence >= 0.9      -> commit
    one candidate, confidence <  0.9      -> hold, ask confirm/reject
    several, any < 0.9 or ambiguous       -> hold the whole batch
    several, all >= 0.9                   -> commit all

A held batch goes into the single pending slot of the target's session,
replacing whatever was there. Confirm commits the batch and clears the
slot; reject clears it; both report "nothing pending" when the slot is
empty or the button belongs to a batch that has since been replaced.

The caller must hold the target's message lock around every call; the
slot read/clear/write here is not otherwise protected.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from chatledger.audit import AuditLogger
from chatledger.config import LedgerSettings, get_settings
from chatledger.ledger.ledger import Ledger
from chatledger.ledger.undo import UndoLog
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.conversation import (
    PendingKind,
    PendingTransactionBatch,
    SessionState,
)
from chatledger.models.ledger import Period, Target, TransactionCandidate


logger = structlog.get_logger(__name__)


class GateDecision(str, Enum):
    COMMITTED = "committed"
    PENDING = "pending"
    AMOUNT_CHOICE = "amount_choice"
    REJECTED = "rejected"
    NOTHING_PENDING = "nothing_pending"
    NO_CANDIDATES = "no_candidates"


class GateOutcome(BaseModel):
    decision: GateDecision
    candidates: list[TransactionCandidate] = Field(default_factory=list)
    transaction_ids: list[UUID] = Field(default_factory=list)
    batch: Optional[PendingTransactionBatch] = None
    superseded: Optional[UUID] = Field(
        default=None,
        description="Batch replaced by this one"
    )


class ConfirmationGate:
    """
    Auto-commit or hold parsed candidates.

    Usage:
        gate = ConfirmationGate(ledger, undo_log)
        outcome = await gate.submit(target, period, state, candidates, raw_message)
        outcome = await gate.confirm(target, state, batch_id)
    """

    def __init__(
        self,
        ledger: Ledger,
        undo_log: UndoLog,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._undo = undo_log
        self._settings = settings or get_settings().ledger
        self._audit = audit_logger

    @staticmethod
    def is_ambiguous(candidate: TransactionCandidate) -> bool:
        return candidate.needs_confirmation and candidate.suggested_amount is not None

    async def submit(
        self,
        target: Target,
        period: Period,
        state: SessionState,
        candidates: list[TransactionCandidate],
        raw_message: str,
    ) -> GateOutcome:
        """Route freshly parsed candidates."""
        if not candidates:
            return GateOutcome(decision=GateDecision.NO_CANDIDATES)

        threshold = self._settings.auto_commit_confidence

        if len(candidates) == 1:
            candidate = candidates[0]
            if self.is_ambiguous(candidate):
                return await self._hold(
                    target, period, state, candidates, raw_message,
                    kind=PendingKind.AMOUNT_CHOICE,
                    choices=[candidate.amount, candidate.suggested_amount],
                )
            if candidate.confidence >= threshold:
                return await self._commit(target, period, state, candidates, raw_message)
            return await self._hold(target, period, state, candidates, raw_message)

        if any(c.confidence < threshold or self.is_ambiguous(c) for c in candidates):
            return await self._hold(target, period, state, candidates, raw_message)
        return await self._commit(target, period, state, candidates, raw_message)

    async def confirm(
        self,
        target: Target,
        state: SessionState,
        batch_id: Optional[UUID] = None,
    ) -> GateOutcome:
        """
        Commit the pending batch.

        The slot is cleared only after the write succeeded; a failed
        write leaves the batch pending so the user can try again.
        """
        batch = self._current(state, batch_id)
        if batch is None:
            return GateOutcome(decision=GateDecision.NOTHING_PENDING)

        outcome = await self._commit(
            target, batch.period, state, batch.candidates, batch.raw_message
        )
        state.pending = None
        if self._audit:
            await self._audit.log(AuditEventBuilder.pending_confirmed(
                target.target_id, batch.batch_id, outcome.transaction_ids
            ))
        return outcome.model_copy(update={"batch": batch})

    async def reject(
        self,
        target: Target,
        state: SessionState,
        batch_id: Optional[UUID] = None,
    ) -> GateOutcome:
        """Discard the pending batch."""
        batch = self._current(state, batch_id)
        if batch is None:
            return GateOutcome(decision=GateDecision.NOTHING_PENDING)

        state.pending = None
        logger.info("pending_rejected", target_id=str(target.target_id), batch_id=str(batch.batch_id))
        if self._audit:
            await self._audit.log(AuditEventBuilder.pending_rejected(target.target_id, batch.batch_id))
        return GateOutcome(decision=GateDecision.REJECTED, candidates=batch.candidates, batch=batch)

    async def choose_amount(
        self,
        target: Target,
        state: SessionState,
        batch_id: UUID,
        amount: Decimal,
    ) -> GateOutcome:
        """Commit an amount-choice batch with the amount the user picked."""
        batch = self._current(state, batch_id)
        if batch is None or batch.kind != PendingKind.AMOUNT_CHOICE or amount not in batch.amount_choices:
            return GateOutcome(decision=GateDecision.NOTHING_PENDING)

        chosen = batch.candidates[0].model_copy(update={
            "amount": amount,
            "needs_confirmation": False,
            "suggested_amount": None,
        })
        outcome = await self._commit(target, batch.period, state, [chosen], batch.raw_message)
        state.pending = None
        if self._audit:
            await self._audit.log(AuditEventBuilder.pending_confirmed(
                target.target_id, batch.batch_id, outcome.transaction_ids
            ))
        return outcome.model_copy(update={"batch": batch})

    @staticmethod
    def _current(state: SessionState, batch_id: Optional[UUID]) -> Optional[PendingTransactionBatch]:
        batch = state.pending
        if batch is None:
            return None
        if batch_id is not None and batch.batch_id != batch_id:
            return None
        return batch

    async def _commit(
        self,
        target: Target,
        period: Period,
        state: SessionState,
        candidates: list[TransactionCandidate],
        raw_message: str,
    ) -> GateOutcome:
        ids = await self._ledger.commit_many(target, period, candidates, raw_message)
        self._undo.record(state, ids)
        return GateOutcome(decision=GateDecision.COMMITTED, candidates=candidates, transaction_ids=ids)

    async def _hold(
        self,
        target: Target,
        period: Period,
        state: SessionState,
        candidates: list[TransactionCandidate],
        raw_message: str,
        kind: PendingKind = PendingKind.CONFIRM,
        choices: Optional[list[Decimal]] = None,
    ) -> GateOutcome:
        superseded = state.pending.batch_id if state.pending else None
        batch = PendingTransactionBatch(
            kind=kind,
            candidates=candidates,
            raw_message=raw_message,
            period=period,
            amount_choices=choices or [],
        )
        state.pending = batch

        logger.info(
            "pending_created",
            target_id=str(target.target_id),
            batch_id=str(batch.batch_id),
            kind=kind.value,
            size=len(candidates),
            superseded=str(superseded) if superseded else None,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.pending_created(
                target.target_id, period.id, batch.batch_id, kind.value, len(candidates), superseded
            ))
            if superseded:
                await self._audit.log(AuditEventBuilder.pending_superseded(
                    target.target_id, superseded, batch.batch_id
                ))
        decision = GateDecision.AMOUNT_CHOICE if kind == PendingKind.AMOUNT_CHOICE else GateDecision.PENDING
        return GateOutcome(decision=decision, candidates=candidates, batch=batch, superseded=superseded)
