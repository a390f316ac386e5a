"""
Main Orchestrator for Chat Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Messages (identity -> period -> context -> parse -> gate -> reply)
2. Choices (confirm / reject / amount / onboarding buttons)
3. Commands (/start, /summary, /undo, /cancel, /join_family, /help)

DESIGN DECISION: The orchestrator enforces the boundaries:
- One message per chat at a time; the pending slot is only touched
  under the chat's lock
- Nothing below the confidence gate is written without a confirmation
- Every failure reaches the user as a short reply, never as silence

This is the "glue" that keeps the pipeline consistent even when the
language model or the database misbehaves.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from chatledger import replies
from chatledger.agents import (
    ContextSummarizer,
    ConversationAgent,
    ParseFailure,
    TransactionParser,
)
from chatledger.audit import AuditLogger, create_correlation_id
from chatledger.budget import BudgetEngine
from chatledger.concurrency import KeyedLocks
from chatledger.config import Settings, get_settings
from chatledger.conversation import (
    ContextSweeper,
    ConversationContextCache,
    OnboardingFlow,
    OnboardingReply,
    SessionStore,
)
from chatledger.ledger import (
    ConfirmationGate,
    GateDecision,
    GateOutcome,
    Ledger,
    UndoLog,
)
from chatledger.models.audit import AuditEventBuilder
from chatledger.models.conversation import DialogueTurn, SessionState
from chatledger.models.ledger import ChatIdentity, Period, Target
from chatledger.periods import NoActivePeriod, PeriodResolver
from chatledger.replies import ChoiceAction
from chatledger.services.cache import CacheError, ExpiringStoreInterface, RedisExpiringStore
from chatledger.services.llm import LanguageModelError, LanguageModelInterface, create_language_model
from chatledger.services.storage import LedgerStorageInterface, SqlLedgerStorage, StorageError
from chatledger.targets import GroupNotFound, NotAMember, NotRegistered, TargetResolver
from chatledger.tools import ToolDispatcher
from chatledger.transport import ChatTransportInterface, Choice, InboundChoice, InboundMessage


logger = structlog.get_logger(__name__)

# /start payload of a private-chat join link: "join_<group_id>"
JOIN_START_PREFIX = "join_"


class Command(str, Enum):
    START = "start"
    SUMMARY = "summary"
    UNDO = "undo"
    CANCEL = "cancel"
    JOIN_FAMILY = "join_family"
    HELP = "help"


def parse_command(text: str) -> Optional[Command]:
    """'/summary' or '/summary@SomeBot extra' -> Command.SUMMARY."""
    if not text.startswith("/"):
        return None
    head = text[1:].split(maxsplit=1)[0] if len(text) > 1 else ""
    name = head.split("@", 1)[0].lower()
    try:
        return Command(name)
    except ValueError:
        return None


def command_argument(text: str) -> Optional[str]:
    """'/start join_abc' -> 'join_abc'; None without an argument."""
    parts = text.split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else None


class LedgerServices:
    """
    The constructed service graph.

    Built once at startup by create_app_components; flows share it.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        store: ExpiringStoreInterface,
        model: LanguageModelInterface,
        transport: ChatTransportInterface,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self.storage = storage
        self.store = store
        self.model = model
        self.transport = transport
        self.audit = audit_logger or AuditLogger()

        self.message_locks = KeyedLocks()
        # Separate registry: the cache takes its own per-target lock while
        # the chat lock is already held
        self.context_locks = KeyedLocks()

        self.targets = TargetResolver(storage, settings.ledger)
        self.budget = BudgetEngine(storage, settings.ledger, self.audit)
        self.periods = PeriodResolver(storage, self.budget, self.audit)
        self.ledger = Ledger(storage, settings.ledger, self.audit)
        self.undo_log = UndoLog(self.ledger, self.audit)
        self.gate = ConfirmationGate(self.ledger, self.undo_log, settings.ledger, self.audit)
        self.parser = TransactionParser(model, settings.ledger)
        self.summarizer = ContextSummarizer(model, settings.conversation)
        self.context_cache = ConversationContextCache(
            store, storage, self.summarizer, settings.conversation, self.context_locks, self.audit
        )
        self.sessions = SessionStore(store, settings.conversation)
        self.onboarding = OnboardingFlow(self.periods, self.budget)
        self.dispatcher = ToolDispatcher(
            self.ledger, self.undo_log, self.budget, self.periods, settings.ledger, self.audit
        )
        self.agent = ConversationAgent(model, self.context_cache, self.dispatcher, self.budget)


class _Flow:
    """Shared plumbing: locking, target resolution, error replies."""

    def __init__(self, services: LedgerServices):
        self._s = services

    async def _send(self, chat_id: int, text: str, choices: Optional[list[Choice]] = None) -> int:
        if choices:
            return await self._s.transport.send_choices(chat_id, text, choices)
        return await self._s.transport.send_message(chat_id, text)

    async def _send_onboarding(self, chat_id: int, reply: OnboardingReply) -> None:
        if reply.text:
            await self._send(chat_id, reply.text, reply.choices)

    async def _resolve(self, identity: ChatIdentity) -> Optional[Target]:
        """Target for the sender, or None after telling them why not."""
        try:
            return await self._s.targets.resolve(identity)
        except NotRegistered as e:
            text = replies.GROUP_NOT_REGISTERED_TEXT if e.subject == "group" else replies.NOT_REGISTERED_TEXT
            await self._send(identity.chat_id, text)
        except NotAMember:
            await self._send(identity.chat_id, replies.NOT_A_MEMBER_TEXT)
        return None

    async def _persistence_failed(
        self,
        chat_id: int,
        target: Optional[Target],
        period: Optional[Period],
        raw_input: str,
        error: Exception,
    ) -> None:
        logger.error(
            "persistence_failed",
            target_id=str(target.target_id) if target else None,
            period_id=str(period.id) if period else None,
            raw_input=raw_input,
            error=str(error),
        )
        await self._s.audit.log_persistence_failed(
            target.target_id if target else None,
            period.id if period else None,
            raw_input,
            str(error),
        )
        await self._send(chat_id, replies.GENERIC_ERROR_TEXT)

    async def _committed_reply(self, target: Target, period: Period, outcome: GateOutcome) -> str:
        # The rows are already saved; a failed summary only shortens the reply
        try:
            summary = await self._s.budget.summarize(target, period)
        except StorageError as e:
            logger.warning("commit_summary_failed", target_id=str(target.target_id), error=str(e))
            summary = None
        return replies.committed_text(outcome.candidates, summary)

    async def _join(self, chat_id: int, identity: ChatIdentity, raw_group_id: Optional[str]) -> None:
        try:
            group_id = UUID(raw_group_id or "")
        except ValueError:
            await self._send(chat_id, replies.GROUP_NOT_FOUND_TEXT)
            return

        try:
            group, joined = await self._s.targets.join_group(identity, group_id)
        except NotRegistered:
            await self._send(chat_id, replies.NOT_REGISTERED_TEXT)
        except GroupNotFound:
            await self._send(chat_id, replies.GROUP_NOT_FOUND_TEXT)
        except StorageError as e:
            await self._persistence_failed(chat_id, None, None, f"join {raw_group_id}", e)
        else:
            await self._send(chat_id, replies.joined_text(group, joined))


class MessageFlow(_Flow):
    """
    Orchestrates one inbound text message.

    Flow:
    1. Resolve target (private user or group)
    2. Commands and onboarding short-circuit the rest
    3. Resolve the active period (roll over if it ended)
    4. Append the user turn to the context window
    5. Parse with bucket names as grounding
    6. Gate: commit, hold for confirmation, or ask for the amount
    7. No transactions: hand the message to the conversation agent
    """

    def __init__(self, services: LedgerServices):
        super().__init__(services)
        self._commands: dict[Command, Callable[[InboundMessage], Awaitable[None]]] = {
            Command.START: self._cmd_start,
            Command.SUMMARY: self._cmd_summary,
            Command.UNDO: self._cmd_undo,
            Command.CANCEL: self._cmd_cancel,
            Command.JOIN_FAMILY: self._cmd_join_family,
            Command.HELP: self._cmd_help,
        }

    async def handle(self, message: InboundMessage) -> None:
        with structlog.contextvars.bound_contextvars(
            correlation_id=str(create_correlation_id()),
            chat_id=message.chat_id,
        ):
            async with self._s.message_locks.hold(f"chat:{message.chat_id}"):
                try:
                    command = parse_command(message.text)
                    if command is not None:
                        await self._commands[command](message)
                    else:
                        await self._handle_text(message)
                except CacheError as e:
                    logger.error("session_store_failed", error=str(e))
                    await self._send(message.chat_id, replies.GENERIC_ERROR_TEXT)

    async def _handle_text(self, message: InboundMessage) -> None:
        target = await self._resolve(message.identity)
        if target is None:
            return

        state = await self._s.sessions.load(target.target_id)
        try:
            if self._s.onboarding.is_active(state):
                reply = await self._s.onboarding.handle_text(target, state, message.text)
                await self._send_onboarding(message.chat_id, reply)
            else:
                await self._handle_transaction_text(message, target, state)
        except StorageError as e:
            await self._persistence_failed(message.chat_id, target, None, message.text, e)
        await self._s.sessions.save(target.target_id, state)

    async def _handle_transaction_text(self, message: InboundMessage, target: Target, state: SessionState) -> None:
        try:
            period = await self._s.periods.active_period(target)
        except NoActivePeriod:
            await self._send(message.chat_id, replies.NO_PERIOD_TEXT)
            return

        await self._s.context_cache.append(target.target_id, DialogueTurn.user(message.text))
        bucket_names = await self._s.budget.bucket_names(period)

        try:
            parsed = await self._s.parser.parse(message.text, bucket_names)
        except ParseFailure as e:
            await self._parse_failed(message, target, e)
            return

        await self._s.audit.log(AuditEventBuilder.transactions_parsed(
            target.target_id, len(parsed.candidates), message.text
        ))

        if not parsed.candidates:
            reply = await self._s.agent.respond(target, period, state)
            await self._send(message.chat_id, reply.text)
            return

        previous = state.pending
        try:
            outcome = await self._s.gate.submit(target, period, state, parsed.candidates, message.text)
        except StorageError as e:
            await self._persistence_failed(message.chat_id, target, period, message.text, e)
            return

        if outcome.superseded and previous and previous.message_id is not None:
            await self._s.transport.edit_message(message.chat_id, previous.message_id, replies.superseded_text())

        text = await self._reply_for(message.chat_id, target, period, state, outcome)
        await self._s.context_cache.append(target.target_id, DialogueTurn.assistant(text))

    async def _reply_for(
        self,
        chat_id: int,
        target: Target,
        period: Period,
        state: SessionState,
        outcome: GateOutcome,
    ) -> str:
        if outcome.decision == GateDecision.COMMITTED:
            text = await self._committed_reply(target, period, outcome)
            await self._send(chat_id, text)
            return text

        batch = outcome.batch
        if outcome.decision == GateDecision.AMOUNT_CHOICE:
            text = replies.amount_choice_text(batch)
            choices = replies.amount_choices(batch)
        else:
            text = replies.pending_text(batch)
            choices = replies.confirm_choices(batch)

        message_id = await self._send(chat_id, text, choices)
        if state.pending is not None and state.pending.batch_id == batch.batch_id:
            state.pending.message_id = message_id
        return text

    async def _parse_failed(self, message: InboundMessage, target: Target, error: ParseFailure) -> None:
        logger.warning("parse_failed", target_id=str(target.target_id), error=str(error))
        await self._s.audit.log(AuditEventBuilder.parse_failed(target.target_id, message.text, str(error)))
        if isinstance(error.__cause__, LanguageModelError):
            await self._s.audit.log_external_service_error("language_model", str(error.__cause__))
        await self._send(message.chat_id, replies.parse_failure_text())

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def _cmd_start(self, message: InboundMessage) -> None:
        identity = message.identity
        if not identity.is_group_chat:
            try:
                await self._s.targets.register(identity)
            except StorageError as e:
                await self._persistence_failed(message.chat_id, None, None, message.text, e)
                return

            argument = command_argument(message.text)
            if argument and argument.startswith(JOIN_START_PREFIX):
                await self._join(message.chat_id, identity, argument[len(JOIN_START_PREFIX):])
                return

        target = await self._resolve(identity)
        if target is None:
            return

        state = await self._s.sessions.load(target.target_id)
        await self._send_onboarding(message.chat_id, self._s.onboarding.start(state))
        await self._s.sessions.save(target.target_id, state)

    async def _cmd_summary(self, message: InboundMessage) -> None:
        target = await self._resolve(message.identity)
        if target is None:
            return
        try:
            period = await self._s.periods.active_period(target)
            summary = await self._s.budget.summarize(target, period)
        except NoActivePeriod:
            await self._send(message.chat_id, replies.NO_PERIOD_TEXT)
            return
        except StorageError as e:
            await self._persistence_failed(message.chat_id, target, None, message.text, e)
            return
        await self._send(message.chat_id, replies.summary_text(summary))

    async def _cmd_undo(self, message: InboundMessage) -> None:
        target = await self._resolve(message.identity)
        if target is None:
            return

        state = await self._s.sessions.load(target.target_id)
        try:
            result = await self._s.undo_log.undo(state, target)
        except StorageError as e:
            await self._persistence_failed(message.chat_id, target, None, message.text, e)
            return
        await self._s.sessions.save(target.target_id, state)
        await self._send(message.chat_id, replies.undo_text(result))

    async def _cmd_cancel(self, message: InboundMessage) -> None:
        target = await self._resolve(message.identity)
        if target is None:
            return

        state = await self._s.sessions.load(target.target_id)
        cancelled = []
        pending = state.pending
        if pending is not None:
            await self._s.gate.reject(target, state)
            if pending.message_id is not None:
                await self._s.transport.edit_message(message.chat_id, pending.message_id, replies.rejected_text())
            cancelled.append("pending transactions")
        if self._s.onboarding.cancel(state):
            cancelled.append("setup")
        await self._s.sessions.save(target.target_id, state)

        try:
            await self._s.context_cache.clear(target.target_id)
        except StorageError as e:
            logger.warning("context_clear_failed", target_id=str(target.target_id), error=str(e))

        if cancelled:
            await self._send(message.chat_id, f"Cancelled {' and '.join(cancelled)}.")
        else:
            await self._send(message.chat_id, replies.NOTHING_PENDING_TEXT)

    async def _cmd_join_family(self, message: InboundMessage) -> None:
        if not message.is_group_chat:
            await self._send(message.chat_id, replies.JOIN_IN_GROUP_TEXT)
            return
        try:
            group = await self._s.storage.get_group_by_chat_id(message.chat_id)
        except StorageError as e:
            await self._persistence_failed(message.chat_id, None, None, message.text, e)
            return
        if group is None:
            await self._send(message.chat_id, replies.GROUP_NOT_REGISTERED_TEXT)
            return
        await self._send(message.chat_id, replies.join_invite_text(group), replies.join_choices(group))

    async def _cmd_help(self, message: InboundMessage) -> None:
        await self._send(message.chat_id, replies.HELP_TEXT)


class ChoiceFlow(_Flow):
    """
    Orchestrates a button press.

    Confirm and amount choices commit the pending batch; reject drops it.
    A button from a batch that was replaced or already handled answers
    "nothing pending" and changes nothing.
    """

    async def handle(self, choice: InboundChoice) -> None:
        decoded = replies.decode_choice(choice.data)
        if decoded is None:
            logger.warning("unknown_choice", data=choice.data)
            return

        with structlog.contextvars.bound_contextvars(
            correlation_id=str(create_correlation_id()),
            chat_id=choice.chat_id,
        ):
            async with self._s.message_locks.hold(f"chat:{choice.chat_id}"):
                try:
                    await self._handle(choice, decoded)
                except CacheError as e:
                    logger.error("session_store_failed", error=str(e))
                    await self._send(choice.chat_id, replies.GENERIC_ERROR_TEXT)

    async def _handle(self, choice: InboundChoice, decoded: replies.DecodedChoice) -> None:
        # The presser of a join button is not a member yet
        if decoded.action == ChoiceAction.JOIN:
            await self._join(choice.chat_id, choice.identity, decoded.value)
            return

        target = await self._resolve(choice.identity)
        if target is None:
            return

        state = await self._s.sessions.load(target.target_id)
        if decoded.action == ChoiceAction.ONBOARDING:
            try:
                reply = await self._s.onboarding.handle_choice(target, state, decoded.value or "")
            except StorageError as e:
                await self._persistence_failed(choice.chat_id, target, None, choice.data, e)
            else:
                await self._send_onboarding(choice.chat_id, reply)
            await self._s.sessions.save(target.target_id, state)
            return

        batch = state.pending
        try:
            if decoded.action == ChoiceAction.CONFIRM:
                outcome = await self._s.gate.confirm(target, state, decoded.batch_id)
            elif decoded.action == ChoiceAction.AMOUNT:
                amount = replies.parse_choice_amount(decoded.value)
                if amount is None:
                    outcome = GateOutcome(decision=GateDecision.NOTHING_PENDING)
                else:
                    outcome = await self._s.gate.choose_amount(target, state, decoded.batch_id, amount)
            else:
                outcome = await self._s.gate.reject(target, state, decoded.batch_id)
        except StorageError as e:
            period = batch.period if batch else None
            raw = batch.raw_message if batch else choice.data
            await self._persistence_failed(choice.chat_id, target, period, raw, e)
            await self._s.sessions.save(target.target_id, state)
            return

        # The slot is cleared before anyone is told
        await self._s.sessions.save(target.target_id, state)

        if outcome.decision == GateDecision.NOTHING_PENDING:
            text = replies.NOTHING_PENDING_TEXT
        elif outcome.decision == GateDecision.REJECTED:
            text = replies.rejected_text()
        else:
            text = await self._committed_reply(target, outcome.batch.period, outcome)

        if choice.message_id is not None:
            await self._s.transport.edit_message(choice.chat_id, choice.message_id, text)
        else:
            await self._send(choice.chat_id, text)

        if outcome.decision != GateDecision.NOTHING_PENDING:
            await self._s.context_cache.append(target.target_id, DialogueTurn.assistant(text))


class ChatLedgerApp:
    """
    Running application: flows plus the background sweeper.

    Usage:
        app = create_app_components(transport)
        await app.start()
        await app.messages.handle(inbound)
        await app.stop()
    """

    def __init__(self, services: LedgerServices, sweeper: Optional[ContextSweeper] = None):
        self.services = services
        self.messages = MessageFlow(services)
        self.choices = ChoiceFlow(services)
        self.sweeper = sweeper or ContextSweeper(services.context_cache, services.settings.conversation)

    async def start(self) -> None:
        create_schema = getattr(self.services.storage, "create_schema", None)
        if create_schema is not None:
            create_schema()
        self.sweeper.start()
        logger.info("app_started", environment=self.services.settings.app.app_environment)

    async def stop(self) -> None:
        self.sweeper.stop()
        close = getattr(self.services.store, "close", None)
        if close is not None:
            await close()
        logger.info("app_stopped")


def create_app_components(
    transport: ChatTransportInterface,
    settings: Optional[Settings] = None,
    storage: Optional[LedgerStorageInterface] = None,
    store: Optional[ExpiringStoreInterface] = None,
    model: Optional[LanguageModelInterface] = None,
) -> ChatLedgerApp:
    """
    Factory function to create all application components.

    Args:
        transport: Chat client adapter
        storage, store, model: Overrides for tests; built from settings
            when omitted

    Returns:
        ChatLedgerApp (call start() inside the event loop)
    """
    settings = settings or get_settings()
    services = LedgerServices(
        storage=storage or SqlLedgerStorage(),
        store=store or RedisExpiringStore(),
        model=model or create_language_model(settings.gemini),
        transport=transport,
        settings=settings,
    )
    return ChatLedgerApp(services)
