"""
Shared fixtures for Chat Ledger tests.

Test strategy:
1. Persistence runs on SQLAlchemy with in-memory SQLite
2. The expiring store, language model and chat transport are in-memory
   doubles defined here
3. No network calls
"""

import json
import math
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import pytest

from chatledger.audit import AuditLogger
from chatledger.budget import BudgetEngine
from chatledger.config import ConversationSettings, LedgerSettings
from chatledger.ledger import ConfirmationGate, Ledger, UndoLog
from chatledger.models.conversation import DialogueTurn, ToolCall
from chatledger.models.ledger import Period, Target, UserTier
from chatledger.periods import PeriodResolver
from chatledger.services.cache import ExpiringStoreInterface
from chatledger.services.llm import LanguageModelInterface, ModelReply
from chatledger.services.storage import SqlLedgerStorage, build_engine
from chatledger.transport import ChatTransportInterface, Choice


# =============================================================================
# TEST DOUBLES
# =============================================================================

class InMemoryExpiringStore(ExpiringStoreInterface):
    """Expiring store on a dict with a manual clock."""

    def __init__(self):
        self.now = 0.0
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _live(self, key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self.now:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self.now + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def keys(self, prefix: str) -> list[str]:
        return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return math.ceil(entry[1] - self.now)


class FakeLanguageModel(LanguageModelInterface):
    """
    Scripted model.

    Queue replies per call shape; an Exception instance in a queue is
    raised instead of returned. Empty queues fall back to defaults.
    """

    def __init__(self):
        self.json_replies: list[Any] = []
        self.text_replies: list[Any] = []
        self.chat_replies: list[Any] = []
        self.json_prompts: list[str] = []
        self.text_prompts: list[str] = []
        self.chat_calls: list[tuple[str, list[DialogueTurn]]] = []

    @staticmethod
    def _next(queue: list[Any], default: Any) -> Any:
        value = queue.pop(0) if queue else default
        if isinstance(value, Exception):
            raise value
        return value

    def queue_parse(self, transactions: list[dict], message: str = "ok") -> None:
        self.json_replies.append(json.dumps({"message": message, "transactions": transactions}))

    async def generate_json(self, system_prompt: str, prompt: str) -> str:
        self.json_prompts.append(prompt)
        return self._next(self.json_replies, json.dumps({"message": "", "transactions": []}))

    async def generate_text(self, prompt: str) -> str:
        self.text_prompts.append(prompt)
        return self._next(self.text_replies, "User logs daily spending.")

    async def chat(
        self,
        system_prompt: str,
        turns: list[DialogueTurn],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        self.chat_calls.append((system_prompt, list(turns)))
        return self._next(self.chat_replies, ModelReply(text="Noted."))


class RecordingTransport(ChatTransportInterface):
    """Records every outbound message."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.edits: list[dict[str, Any]] = []
        self._next_id = 100

    async def send_message(self, chat_id: int, text: str) -> int:
        return self._record(chat_id, text, [])

    async def send_choices(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        return self._record(chat_id, text, choices)

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        choices: Optional[list[Choice]] = None,
    ) -> None:
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text, "choices": choices})

    def _record(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        self._next_id += 1
        self.sent.append({"chat_id": chat_id, "message_id": self._next_id, "text": text, "choices": choices})
        return self._next_id

    @property
    def last_text(self) -> str:
        return self.sent[-1]["text"] if self.sent else ""


def expense(amount, confidence=0.95, bucket="Wants", category="Food", description="lunch", **extra) -> dict:
    """Parser-contract transaction item."""
    item = {
        "type": "expense",
        "amount": amount,
        "category": category,
        "bucket": bucket,
        "description": description,
        "confidence": confidence,
    }
    item.update(extra)
    return item


def tool_call(tool_name: str, /, **arguments) -> ToolCall:
    return ToolCall(name=tool_name, arguments=arguments)


# =============================================================================
# FIXTURES
# =============================================================================

TODAY = date(2025, 3, 10)


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def conversation_settings():
    return ConversationSettings()


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def storage():
    storage = SqlLedgerStorage(build_engine("sqlite://"))
    storage.create_schema()
    return storage


@pytest.fixture
def store():
    return InMemoryExpiringStore()


@pytest.fixture
def model():
    return FakeLanguageModel()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def budget_engine(storage, ledger_settings, audit_logger):
    return BudgetEngine(storage, ledger_settings, audit_logger)


@pytest.fixture
def period_resolver(storage, budget_engine, audit_logger):
    return PeriodResolver(storage, budget_engine, audit_logger, today=lambda: TODAY)


@pytest.fixture
def ledger(storage, ledger_settings, audit_logger):
    return Ledger(storage, ledger_settings, audit_logger)


@pytest.fixture
def undo_log(ledger, audit_logger):
    return UndoLog(ledger, audit_logger)


@pytest.fixture
def gate(ledger, undo_log, ledger_settings, audit_logger):
    return ConfirmationGate(ledger, undo_log, ledger_settings, audit_logger)


@pytest.fixture
def register_user(storage):
    """Async factory: registered user -> private-chat Target."""

    async def _register(
        external_id: int = 1001,
        tier: UserTier = UserTier.STANDARD,
        income_day: int = 1,
    ) -> Target:
        user = await storage.create_user(external_id=external_id, display_name="Test", tier=tier)
        target = Target(is_group=False, target_id=user.id, user_id=user.id, income_day=1)
        if income_day != 1:
            await storage.set_income_day(target, income_day)
            target = target.model_copy(update={"income_day": income_day})
        return target

    return _register


@pytest.fixture
def setup_period(period_resolver, budget_engine):
    """Async factory: current period with a 50/30/20 budget for target."""

    async def _setup(target: Target, income: Decimal = Decimal("5000000")) -> Period:
        period = await period_resolver.resolve(target)
        await budget_engine.allocate(period, income, 50, 30, 20)
        return period

    return _setup
