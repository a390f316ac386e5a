"""
Session Store

Per-target SessionState (pending batch, undo ids, onboarding progress)
as one JSON document in the expiring store. Loaded at the start of a
message and saved at the end, both under the message lock.
"""

from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from chatledger.config import ConversationSettings, get_settings
from chatledger.models.conversation import SessionState
from chatledger.services.cache import ExpiringStoreInterface


logger = structlog.get_logger(__name__)

SESSION_KEY_PREFIX = "target:session:"


class SessionStore:

    def __init__(
        self,
        store: ExpiringStoreInterface,
        settings: Optional[ConversationSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().conversation

    @staticmethod
    def key_for(target_id: UUID) -> str:
        return f"{SESSION_KEY_PREFIX}{target_id}"

    async def load(self, target_id: UUID) -> SessionState:
        raw = await self._store.get(self.key_for(target_id))
        if not raw:
            return SessionState()
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError as e:
            # A state we can't read is treated as empty rather than blocking the chat
            logger.error("session_corrupt", target_id=str(target_id), error=str(e))
            return SessionState()

    async def save(self, target_id: UUID, state: SessionState) -> None:
        await self._store.set(
            self.key_for(target_id),
            state.model_dump_json(),
            ttl_seconds=self._settings.session_ttl_seconds,
        )

    async def clear(self, target_id: UUID) -> None:
        await self._store.delete(self.key_for(target_id))
