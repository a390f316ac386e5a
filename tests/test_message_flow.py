"""
End-to-end tests for MessageFlow and ChoiceFlow.

The service graph is the real one; only the expiring store, the model
and the chat transport are doubles.
"""

import asyncio

import pytest

from conftest import FakeLanguageModel, expense

from chatledger import replies
from chatledger.config import Settings
from chatledger.models.audit import AuditEventType
from chatledger.models.ledger import MemberRole, UserTier
from chatledger.orchestrator import ChatLedgerApp, Command, LedgerServices, command_argument, parse_command
from chatledger.services.storage import StorageError
from chatledger.transport import InboundChoice, InboundMessage


CHAT_ID = 555
USER_ID = 1001


@pytest.fixture
def app(storage, store, model, transport, audit_logger):
    services = LedgerServices(storage, store, model, transport, Settings(), audit_logger)
    return ChatLedgerApp(services)


def text(body: str, chat_id: int = CHAT_ID, user_id: int = USER_ID, group: bool = False) -> InboundMessage:
    return InboundMessage(
        chat_id=chat_id,
        is_group_chat=group,
        user_external_id=user_id,
        display_name="Test",
        text=body,
    )


def press(data: str, message_id: int) -> InboundChoice:
    return InboundChoice(chat_id=CHAT_ID, user_external_id=USER_ID, data=data, message_id=message_id)


async def onboard(app, transport):
    await app.messages.handle(text("/start"))
    await app.messages.handle(text("8jt"))
    await app.messages.handle(text("25"))
    split = transport.sent[-1]
    recommended = next(c for c in split["choices"] if c.data.endswith("recommended"))
    await app.choices.handle(press(recommended.data, split["message_id"]))


async def current_transactions(app):
    services = app.services
    target = await services.targets.resolve(text("").identity)
    period = await services.periods.active_period(target)
    return await services.storage.list_transactions(target, period.id)


class TestParseCommand:
    """Tests for command recognition."""

    def test_plain_command(self):
        """Test that a known command is recognized."""
        assert parse_command("/summary") == Command.SUMMARY

    def test_bot_suffix_and_arguments(self):
        """Test that @botname and trailing words are ignored."""
        assert parse_command("/undo@LedgerBot now") == Command.UNDO

    def test_not_a_command(self):
        """Test that ordinary text and unknown commands give None."""
        assert parse_command("lunch 35rb") is None
        assert parse_command("/transfer") is None
        assert parse_command("/") is None

    def test_join_family_and_start_argument(self):
        """Test that /join_family is known and /start keeps its payload."""
        assert parse_command("/join_family") == Command.JOIN_FAMILY
        assert command_argument("/start join_abc") == "join_abc"
        assert command_argument("/start") is None


class TestRegistration:
    """Tests for /start and unknown senders."""

    @pytest.mark.asyncio
    async def test_unregistered_sender(self, app, transport):
        """Test that an unknown sender is told to /start."""
        await app.messages.handle(text("lunch 35rb"))
        assert transport.last_text == replies.NOT_REGISTERED_TEXT

    @pytest.mark.asyncio
    async def test_unregistered_group(self, app, transport):
        """Test that a standard-tier user can't use an unknown group."""
        await app.messages.handle(text("/start"))
        await app.messages.handle(text("lunch 35rb", chat_id=-900, group=True))
        assert transport.last_text == replies.GROUP_NOT_REGISTERED_TEXT

    @pytest.mark.asyncio
    async def test_onboarding_completes(self, app, transport):
        """Test that /start walks through setup to an active period."""
        await onboard(app, transport)
        assert transport.last_text.startswith("All set.")

    @pytest.mark.asyncio
    async def test_text_without_period(self, app, transport):
        """Test that a cancelled setup leaves the user without a period."""
        await app.messages.handle(text("/start"))
        await app.messages.handle(text("/cancel"))
        await app.messages.handle(text("lunch 35rb"))
        assert transport.last_text == replies.NO_PERIOD_TEXT


class TestTransactionMessages:
    """Tests for parsed messages reaching the ledger."""

    @pytest.mark.asyncio
    async def test_confident_expense_saved(self, app, transport, model):
        """Test that a confident parse is saved and acknowledged."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb")])

        await app.messages.handle(text("lunch 35rb"))

        assert transport.last_text.startswith("Saved:")
        assert "Wants:" in transport.last_text
        assert len(await current_transactions(app)) == 1

    @pytest.mark.asyncio
    async def test_pending_then_confirm(self, app, transport, model):
        """Test that a low-confidence parse waits for the Save button."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb", confidence=0.6)])

        await app.messages.handle(text("lunch maybe 35rb"))
        prompt = transport.sent[-1]
        assert prompt["text"].startswith("Please check")
        assert await current_transactions(app) == []

        save = prompt["choices"][0]
        await app.choices.handle(press(save.data, prompt["message_id"]))

        assert transport.edits[-1]["text"].startswith("Saved:")
        assert len(await current_transactions(app)) == 1

        await app.choices.handle(press(save.data, prompt["message_id"]))
        assert transport.edits[-1]["text"] == replies.NOTHING_PENDING_TEXT
        assert len(await current_transactions(app)) == 1

    @pytest.mark.asyncio
    async def test_amount_choice(self, app, transport, model):
        """Test that picking the suggested amount saves it."""
        await onboard(app, transport)
        model.queue_parse([expense(25, description="coffee")])

        await app.messages.handle(text("coffee 25"))
        prompt = transport.sent[-1]
        suggested = next(c for c in prompt["choices"] if c.label == "25,000")
        await app.choices.handle(press(suggested.data, prompt["message_id"]))

        [saved] = await current_transactions(app)
        assert saved.amount == 25000

    @pytest.mark.asyncio
    async def test_newer_batch_edits_older_prompt(self, app, transport, model):
        """Test that a replaced prompt is edited to say so."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb", confidence=0.6)])
        model.queue_parse([expense("40rb", confidence=0.6)])

        await app.messages.handle(text("lunch?"))
        first_id = transport.sent[-1]["message_id"]
        await app.messages.handle(text("dinner?"))

        assert {"chat_id": CHAT_ID, "message_id": first_id, "text": replies.superseded_text(), "choices": None} in transport.edits

    @pytest.mark.asyncio
    async def test_parse_failure(self, app, transport, model, audit_logger):
        """Test that unreadable model output asks the user to rephrase."""
        await onboard(app, transport)
        model.json_replies.append("not json at all")

        await app.messages.handle(text("lunch 35rb"))

        assert transport.last_text == replies.parse_failure_text()
        assert any(e.event_type == AuditEventType.PARSE_FAILED for e in audit_logger.history)

    @pytest.mark.asyncio
    async def test_small_talk_goes_to_agent(self, app, transport, model):
        """Test that a message without transactions is answered conversationally."""
        await onboard(app, transport)

        await app.messages.handle(text("how am I doing?"))

        assert transport.last_text == "Noted."
        assert len(model.chat_calls) == 1


class TestCommands:
    """Tests for /undo, /cancel, /summary and /help."""

    @pytest.mark.asyncio
    async def test_undo_last_commit(self, app, transport, model):
        """Test that /undo removes what the last message saved."""
        await onboard(app, transport)
        model.queue_parse([expense("22k"), expense("18rb")])
        await app.messages.handle(text("grab 22k, coffee 18rb"))

        await app.messages.handle(text("/undo"))

        assert transport.last_text == "Undone: 2 transaction(s) removed."
        assert await current_transactions(app) == []

        await app.messages.handle(text("/undo"))
        assert transport.last_text == "Nothing to undo."

    @pytest.mark.asyncio
    async def test_cancel_discards_pending(self, app, transport, model):
        """Test that /cancel drops the batch and edits its prompt."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb", confidence=0.6)])
        await app.messages.handle(text("lunch?"))
        prompt_id = transport.sent[-1]["message_id"]

        await app.messages.handle(text("/cancel"))

        assert transport.edits[-1]["message_id"] == prompt_id
        assert transport.edits[-1]["text"] == replies.rejected_text()
        assert transport.last_text == "Cancelled pending transactions."
        assert await current_transactions(app) == []

    @pytest.mark.asyncio
    async def test_cancel_with_nothing(self, app, transport):
        """Test that /cancel with nothing to drop says so."""
        await onboard(app, transport)
        await app.messages.handle(text("/cancel"))
        assert transport.last_text == replies.NOTHING_PENDING_TEXT

    @pytest.mark.asyncio
    async def test_summary(self, app, transport, model):
        """Test that /summary lists the buckets with spending."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb")])
        await app.messages.handle(text("lunch 35rb"))

        await app.messages.handle(text("/summary"))

        assert "Income: 8,000,000" in transport.last_text
        assert "Wants: 35,000" in transport.last_text

    @pytest.mark.asyncio
    async def test_help(self, app, transport):
        """Test that /help works without registration."""
        await app.messages.handle(text("/help"))
        assert transport.last_text == replies.HELP_TEXT


class TestChoices:
    """Tests for malformed and foreign choice payloads."""

    @pytest.mark.asyncio
    async def test_unknown_payload_ignored(self, app, transport):
        """Test that data we didn't produce is dropped silently."""
        await app.choices.handle(press("something:else", 1))
        assert transport.sent == []
        assert transport.edits == []


class TestCommitReplies:
    """Tests for the reply after a successful commit."""

    @pytest.mark.asyncio
    async def test_summary_failure_still_reports_saved(self, app, transport, model, monkeypatch):
        """Test that a failed budget summary doesn't hide a saved transaction."""
        await onboard(app, transport)
        model.queue_parse([expense("35rb")])

        async def unavailable(target, period):
            raise StorageError("database unavailable")

        monkeypatch.setattr(app.services.budget, "summarize", unavailable)
        await app.messages.handle(text("lunch 35rb"))

        assert transport.last_text.startswith("Saved:")
        assert "Wants:" not in transport.last_text
        assert transport.last_text != replies.GENERIC_ERROR_TEXT
        assert len(await current_transactions(app)) == 1


GROUP_CHAT_ID = -900
OWNER_ID = 2001
MEMBER_ID = 2002


def group_press(data: str, message_id: int, user_id: int) -> InboundChoice:
    return InboundChoice(
        chat_id=GROUP_CHAT_ID,
        is_group_chat=True,
        user_external_id=user_id,
        data=data,
        message_id=message_id,
    )


class TestFamilyJoin:
    """Tests for /join_family and join links."""

    async def _family_group(self, app, storage):
        await storage.create_user(external_id=OWNER_ID, display_name="Owner", tier=UserTier.FAMILY)
        await app.messages.handle(text("/start", chat_id=GROUP_CHAT_ID, user_id=OWNER_ID, group=True))
        return await storage.get_group_by_chat_id(GROUP_CHAT_ID)

    @pytest.mark.asyncio
    async def test_join_button_adds_member(self, app, transport, storage):
        """Test that a registered non-member joins by pressing Join in the group."""
        group = await self._family_group(app, storage)
        await app.messages.handle(text("/start", chat_id=MEMBER_ID, user_id=MEMBER_ID))
        await app.messages.handle(text("lunch 35rb", chat_id=GROUP_CHAT_ID, user_id=MEMBER_ID, group=True))
        assert transport.last_text == replies.NOT_A_MEMBER_TEXT

        await app.messages.handle(text("/join_family", chat_id=GROUP_CHAT_ID, user_id=MEMBER_ID, group=True))
        invite = transport.sent[-1]
        assert invite["text"] == replies.join_invite_text(group)
        [join] = invite["choices"]

        await app.choices.handle(group_press(join.data, invite["message_id"], MEMBER_ID))

        assert transport.last_text == replies.joined_text(group, True)
        member = await storage.get_user_by_external_id(MEMBER_ID)
        assert await storage.get_member_role(group.id, member.id) == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_start_join_link_registers_and_joins(self, app, transport, storage):
        """Test that /start join_<id> in a private chat registers a new user into the group."""
        group = await self._family_group(app, storage)

        await app.messages.handle(text(f"/start join_{group.id}", chat_id=MEMBER_ID, user_id=MEMBER_ID))

        assert transport.last_text == replies.joined_text(group, True)
        member = await storage.get_user_by_external_id(MEMBER_ID)
        assert await storage.get_member_role(group.id, member.id) == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_owner_join_reports_already_member(self, app, transport, storage):
        """Test that the owner pressing Join changes nothing."""
        group = await self._family_group(app, storage)
        await app.messages.handle(text("/join_family", chat_id=GROUP_CHAT_ID, user_id=OWNER_ID, group=True))
        invite = transport.sent[-1]

        await app.choices.handle(group_press(invite["choices"][0].data, invite["message_id"], OWNER_ID))

        assert transport.last_text == replies.joined_text(group, False)

    @pytest.mark.asyncio
    async def test_join_family_in_private_chat(self, app, transport):
        """Test that /join_family outside a group explains where to send it."""
        await app.messages.handle(text("/join_family"))
        assert transport.last_text == replies.JOIN_IN_GROUP_TEXT

    @pytest.mark.asyncio
    async def test_join_family_in_unregistered_group(self, app, transport):
        """Test that an unknown group has nothing to join."""
        await app.messages.handle(text("/join_family", chat_id=GROUP_CHAT_ID, user_id=MEMBER_ID, group=True))
        assert transport.last_text == replies.GROUP_NOT_REGISTERED_TEXT

    @pytest.mark.asyncio
    async def test_bad_join_link(self, app, transport):
        """Test that a malformed group id is reported, not raised."""
        await app.messages.handle(text("/start join_nonsense", chat_id=MEMBER_ID, user_id=MEMBER_ID))
        assert transport.last_text == replies.GROUP_NOT_FOUND_TEXT


class HoldingModel(FakeLanguageModel):
    """Parse calls wait for release while holding is set; counts overlap."""

    def __init__(self):
        super().__init__()
        self.holding = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def generate_json(self, system_prompt: str, prompt: str) -> str:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.holding:
                self.entered.set()
                await self.release.wait()
            return await super().generate_json(system_prompt, prompt)
        finally:
            self.active -= 1


class TestChatSerialization:
    """Tests for one-message-at-a-time handling per chat."""

    @pytest.mark.asyncio
    async def test_same_chat_messages_run_in_turn(self, storage, store, transport, audit_logger):
        """Test that a second message waits until the first is fully handled."""
        model = HoldingModel()
        app = ChatLedgerApp(LedgerServices(storage, store, model, transport, Settings(), audit_logger))
        await onboard(app, transport)
        model.queue_parse([expense("35rb", description="lunch")])
        model.queue_parse([expense("40rb", description="dinner")])
        model.holding = True

        first = asyncio.create_task(app.messages.handle(text("lunch 35rb")))
        await model.entered.wait()
        second = asyncio.create_task(app.messages.handle(text("dinner 40rb")))
        for _ in range(10):
            await asyncio.sleep(0)
        assert model.calls == 1
        assert not second.done()

        model.release.set()
        await asyncio.gather(first, second)

        assert model.calls == 2
        assert model.max_active == 1
        assert len(await current_transactions(app)) == 2
