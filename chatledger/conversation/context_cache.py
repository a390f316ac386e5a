"""
Conversation Context Cache

Per-target rolling window of dialogue turns in the expiring store, plus
a standing summary in the database.

    append  -> push; over the window limit, fold everything into the
               summary and keep the last few turns
    sweep   -> a window close to expiry is folded and removed
    clear   -> fold, then remove

DESIGN DECISION: A turn leaves the window only after a summary covering
it has been saved. When the model can't summarize, the raw turns stay in
the window (with a fresh TTL) until a later fold succeeds. Nothing is
ever dropped unsummarized.

All mutation of one target's window happens under that target's lock,
so the sweeper and live appends never interleave.
"""

import json
from typing import Optional
from uuid import UUID

import structlog
from pydantic import TypeAdapter, ValidationError

from chatledger.agents.summarizer import ContextSummarizer, SummaryFailure
from chatledger.audit import AuditLogger
from chatledger.concurrency import KeyedLocks
from chatledger.config import ConversationSettings, get_settings
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.conversation import DialogueTurn, TurnRole
from chatledger.services.cache import ExpiringStoreInterface
from chatledger.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)

CONTEXT_KEY_PREFIX = "target:context:"

_turns_adapter = TypeAdapter(list[DialogueTurn])


def retained_tail(turns: list[DialogueTurn], keep_last: int) -> list[DialogueTurn]:
    """
    Last keep_last turns, minus leading tool turns whose call was folded.

    A tool result is only meaningful next to the assistant turn that
    asked for it.
    """
    tail = turns[-keep_last:] if keep_last else []
    while tail and tail[0].role == TurnRole.TOOL:
        tail = tail[1:]
    return tail


class ConversationContextCache:
    """
    Rolling dialogue window with summarization-based eviction.

    Usage:
        cache = ConversationContextCache(store, storage, summarizer)
        await cache.append(target_id, DialogueTurn.user("lunch 35rb"))
        turns = await cache.read(target_id)
    """

    def __init__(
        self,
        store: ExpiringStoreInterface,
        storage: LedgerStorageInterface,
        summarizer: ContextSummarizer,
        settings: Optional[ConversationSettings] = None,
        locks: Optional[KeyedLocks] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._storage = storage
        self._summarizer = summarizer
        self._settings = settings or get_settings().conversation
        self._locks = locks or KeyedLocks()
        self._audit = audit_logger

    @staticmethod
    def key_for(target_id: UUID) -> str:
        return f"{CONTEXT_KEY_PREFIX}{target_id}"

    @staticmethod
    def target_from_key(key: str) -> Optional[UUID]:
        if not key.startswith(CONTEXT_KEY_PREFIX):
            return None
        try:
            return UUID(key[len(CONTEXT_KEY_PREFIX):])
        except ValueError:
            return None

    async def keys(self) -> list[str]:
        return await self._store.keys(CONTEXT_KEY_PREFIX)

    # =========================================================================
    # READS
    # =========================================================================

    async def read(self, target_id: UUID) -> list[DialogueTurn]:
        return await self._load(target_id)

    async def summary(self, target_id: UUID) -> str:
        return await self._storage.get_context_summary(target_id)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def append(self, target_id: UUID, turn: DialogueTurn) -> list[DialogueTurn]:
        """
        Push one turn, folding when the window overflows.

        Returns:
            The window as stored after the append
        """
        async with self._locks.hold(str(target_id)):
            turns = await self._load(target_id)
            turns.append(turn)

            if len(turns) > self._settings.window_limit:
                if await self._fold(target_id, turns, trigger="window"):
                    turns = retained_tail(turns, self._settings.keep_last)

            await self._save(target_id, turns)
            return turns

    async def extend(self, target_id: UUID, turns: list[DialogueTurn]) -> list[DialogueTurn]:
        """Append several turns in order (an assistant call and its tool results)."""
        window: list[DialogueTurn] = []
        for turn in turns:
            window = await self.append(target_id, turn)
        return window

    async def clear(self, target_id: UUID) -> bool:
        """
        Fold the window into the summary, then remove it.

        Returns:
            False if the fold failed and the window was kept
        """
        async with self._locks.hold(str(target_id)):
            turns = await self._load(target_id)
            if turns and not await self._fold(target_id, turns, trigger="clear"):
                await self._save(target_id, turns)
                return False
            await self._store.delete(self.key_for(target_id))
            return True

    async def fold_if_expiring(self, target_id: UUID, low_water_seconds: int) -> bool:
        """
        Fold and remove the window if its TTL is below low_water_seconds.

        The TTL is read under the target's lock, so a window refreshed by
        a concurrent append is left alone.

        Returns:
            True if the window was folded
        """
        key = self.key_for(target_id)
        async with self._locks.hold(str(target_id)):
            remaining = await self._store.ttl(key)
            if remaining is None or remaining >= low_water_seconds:
                return False

            turns = await self._load(target_id)
            if not turns:
                await self._store.delete(key)
                return False

            if not await self._fold(target_id, turns, trigger="expiry"):
                await self._save(target_id, turns)
                return False

            await self._store.delete(key)
            return True

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _fold(self, target_id: UUID, turns: list[DialogueTurn], trigger: str) -> bool:
        try:
            previous = await self._storage.get_context_summary(target_id)
            summary = await self._summarizer.summarize(previous, turns)
            await self._storage.save_context_summary(target_id, summary)
        except (SummaryFailure, StorageError) as e:
            logger.warning(
                "context_fold_failed",
                target_id=str(target_id),
                turns=len(turns),
                trigger=trigger,
                error=str(e),
            )
            if self._audit:
                await self._audit.log(AuditEventBuilder.context_fold_failed(target_id, str(e), len(turns)))
            return False

        kept = len(retained_tail(turns, self._settings.keep_last)) if trigger == "window" else 0
        logger.info(
            "context_folded",
            target_id=str(target_id),
            folded=len(turns),
            kept=kept,
            trigger=trigger,
        )
        if self._audit:
            await self._audit.log(AuditEventBuilder.context_folded(target_id, len(turns), kept, trigger))
        return True

    async def _load(self, target_id: UUID) -> list[DialogueTurn]:
        raw = await self._store.get(self.key_for(target_id))
        if not raw:
            return []
        try:
            return _turns_adapter.validate_json(raw)
        except ValidationError as e:
            logger.error("context_corrupt", target_id=str(target_id), error=str(e))
            return []

    async def _save(self, target_id: UUID, turns: list[DialogueTurn]) -> None:
        payload = json.dumps([t.model_dump(mode="json") for t in turns])
        await self._store.set(self.key_for(target_id), payload, ttl_seconds=self._settings.ttl_seconds)
