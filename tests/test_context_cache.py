"""Tests for the rolling context window and its sweeper."""

import asyncio

import pytest
from uuid import uuid4

from conftest import FakeLanguageModel

from chatledger.agents import ContextSummarizer
from chatledger.config import ConversationSettings
from chatledger.conversation import ContextSweeper, ConversationContextCache, retained_tail
from chatledger.models.audit import AuditEventType
from chatledger.models.conversation import DialogueTurn, ToolCall, TurnRole
from chatledger.services.llm import LanguageModelError, StubLanguageModel


@pytest.fixture
def context_cache(store, storage, model, conversation_settings, audit_logger):
    summarizer = ContextSummarizer(model, conversation_settings)
    return ConversationContextCache(
        store, storage, summarizer, conversation_settings, audit_logger=audit_logger
    )


class BlockingSummaryModel(FakeLanguageModel):
    """Summaries wait until release is set."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate_text(self, prompt: str) -> str:
        self.started.set()
        await self.release.wait()
        return await super().generate_text(prompt)


def tool_turn(call_id="c1"):
    return DialogueTurn(role=TurnRole.TOOL, content="{}", tool_call_id=call_id, name="getBudgetStatus")


class TestWindow:
    """Tests for append and fold."""

    @pytest.mark.asyncio
    async def test_append_below_limit(self, context_cache, model):
        """Test that turns accumulate without summarizing."""
        target_id = uuid4()
        for i in range(20):
            await context_cache.append(target_id, DialogueTurn.user(f"message {i}"))

        assert len(await context_cache.read(target_id)) == 20
        assert model.text_prompts == []

    @pytest.mark.asyncio
    async def test_overflow_folds_and_keeps_tail(self, context_cache, model, storage):
        """Test that the 21st turn folds the window down to the last 5."""
        target_id = uuid4()
        model.text_replies.append("User seems to log meals daily.")
        for i in range(21):
            await context_cache.append(target_id, DialogueTurn.user(f"message {i}"))

        turns = await context_cache.read(target_id)
        assert [t.content for t in turns] == [f"message {i}" for i in range(16, 21)]
        assert await storage.get_context_summary(target_id) == "User seems to log meals daily."
        assert len(model.text_prompts) == 1

    @pytest.mark.asyncio
    async def test_ttl_reset_on_write(self, context_cache, store, conversation_settings):
        """Test that every write restores the full TTL."""
        target_id = uuid4()
        await context_cache.append(target_id, DialogueTurn.user("one"))
        store.advance(3000)
        await context_cache.append(target_id, DialogueTurn.user("two"))

        ttl = await store.ttl(ConversationContextCache.key_for(target_id))
        assert ttl == conversation_settings.ttl_seconds

    @pytest.mark.asyncio
    async def test_failed_summary_keeps_every_turn(self, context_cache, model, storage, audit_logger):
        """Test that no turn is dropped when the model can't summarize."""
        target_id = uuid4()
        model.text_replies.append(LanguageModelError("timeout"))
        for i in range(21):
            await context_cache.append(target_id, DialogueTurn.user(f"message {i}"))

        assert len(await context_cache.read(target_id)) == 21
        assert await storage.get_context_summary(target_id) == ""
        assert any(e.event_type == AuditEventType.CONTEXT_FOLD_FAILED for e in audit_logger.history)

    @pytest.mark.asyncio
    async def test_summary_builds_on_previous(self, context_cache, model, storage):
        """Test that the previous summary is passed back to the model."""
        target_id = uuid4()
        await storage.save_context_summary(target_id, "Earlier notes.")
        for i in range(21):
            await context_cache.append(target_id, DialogueTurn.user(f"message {i}"))

        assert "Earlier notes." in model.text_prompts[0]

    @pytest.mark.asyncio
    async def test_clear_folds_then_removes(self, context_cache, store, storage):
        """Test that clear summarizes and deletes the window."""
        target_id = uuid4()
        await context_cache.append(target_id, DialogueTurn.user("lunch 35rb"))

        assert await context_cache.clear(target_id) is True
        assert await context_cache.read(target_id) == []
        assert await storage.get_context_summary(target_id) == "User logs daily spending."

    @pytest.mark.asyncio
    async def test_clear_keeps_window_on_failure(self, context_cache, model):
        """Test that a failed fold leaves the window in place."""
        target_id = uuid4()
        await context_cache.append(target_id, DialogueTurn.user("lunch 35rb"))
        model.text_replies.append(LanguageModelError("down"))

        assert await context_cache.clear(target_id) is False
        assert len(await context_cache.read(target_id)) == 1


class TestRetainedTail:
    """Tests for trimming the kept tail."""

    def test_leading_tool_turns_dropped(self):
        """Test that tool results orphaned by the fold are not kept."""
        call = ToolCall(id="c1", name="getBudgetStatus")
        turns = [
            DialogueTurn.user("status?"),
            DialogueTurn.assistant("", tool_calls=[call]),
            tool_turn(),
            tool_turn(),
            DialogueTurn.assistant("Here it is."),
            DialogueTurn.user("thanks"),
        ]

        tail = retained_tail(turns, 4)

        assert [t.role for t in tail] == [TurnRole.ASSISTANT, TurnRole.USER]

    def test_tail_keeps_call_with_results(self):
        """Test that an assistant call inside the tail keeps its results."""
        call = ToolCall(id="c1", name="getBudgetStatus")
        turns = [DialogueTurn.user("status?"), DialogueTurn.assistant("", tool_calls=[call]), tool_turn()]

        assert len(retained_tail(turns, 2)) == 2


class TestSweeper:
    """Tests for ContextSweeper.sweep_once."""

    @pytest.mark.asyncio
    async def test_folds_only_expiring_windows(self, context_cache, store, storage, conversation_settings):
        """Test that a low-TTL window is folded and a fresh one is left."""
        old_target, fresh_target = uuid4(), uuid4()
        await context_cache.append(old_target, DialogueTurn.user("old"))
        store.advance(conversation_settings.ttl_seconds - 60)
        await context_cache.append(fresh_target, DialogueTurn.user("fresh"))

        sweeper = ContextSweeper(context_cache, conversation_settings)
        folded = await sweeper.sweep_once()

        assert folded == 1
        assert await context_cache.read(old_target) == []
        assert await storage.get_context_summary(old_target) != ""
        assert len(await context_cache.read(fresh_target)) == 1

    @pytest.mark.asyncio
    async def test_failed_fold_keeps_expiring_window(self, context_cache, store, model, conversation_settings):
        """Test that a window whose fold fails survives with a fresh TTL."""
        target_id = uuid4()
        await context_cache.append(target_id, DialogueTurn.user("old"))
        store.advance(conversation_settings.ttl_seconds - 60)
        model.text_replies.append(LanguageModelError("down"))

        folded = await ContextSweeper(context_cache, conversation_settings).sweep_once()

        assert folded == 0
        assert len(await context_cache.read(target_id)) == 1
        assert await store.ttl(ConversationContextCache.key_for(target_id)) == conversation_settings.ttl_seconds

    @pytest.mark.asyncio
    async def test_ignores_foreign_keys(self, context_cache, store):
        """Test that keys not naming a target are skipped."""
        await store.set("target:context:not-a-uuid", "[]", ttl_seconds=10)
        folded = await ContextSweeper(context_cache, ConversationSettings()).sweep_once()
        assert folded == 0

    @pytest.mark.asyncio
    async def test_append_waits_for_expiry_fold(self, store, storage, conversation_settings):
        """Test that a turn appended while the sweeper folds is kept after the fold."""
        model = BlockingSummaryModel()
        cache = ConversationContextCache(
            store, storage, ContextSummarizer(model, conversation_settings), conversation_settings
        )
        target_id = uuid4()
        await cache.append(target_id, DialogueTurn.user("old"))
        store.advance(conversation_settings.ttl_seconds - 60)

        fold = asyncio.create_task(
            cache.fold_if_expiring(target_id, conversation_settings.sweep_low_water_seconds)
        )
        await model.started.wait()
        append = asyncio.create_task(cache.append(target_id, DialogueTurn.user("new")))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not append.done()

        model.release.set()
        assert await fold is True
        await append

        assert [t.content for t in await cache.read(target_id)] == ["new"]
        assert await storage.get_context_summary(target_id) == "User logs daily spending."
        assert await store.ttl(ConversationContextCache.key_for(target_id)) == conversation_settings.ttl_seconds


class TestDevelopmentSummaries:
    """Tests for folding with the development stub model."""

    @pytest.mark.asyncio
    async def test_folds_accumulate(self, store, storage, conversation_settings):
        """Test that a second fold keeps what the first one summarized."""
        summarizer = ContextSummarizer(StubLanguageModel(), conversation_settings)
        cache = ConversationContextCache(store, storage, summarizer, conversation_settings)
        target_id = uuid4()

        await cache.append(target_id, DialogueTurn.user("I get paid on the 25th"))
        await cache.clear(target_id)
        await cache.append(target_id, DialogueTurn.user("coffee every morning"))
        await cache.clear(target_id)

        summary = await storage.get_context_summary(target_id)
        assert "I get paid on the 25th" in summary
        assert "coffee every morning" in summary
        assert summary.index("25th") < summary.index("coffee")

    @pytest.mark.asyncio
    async def test_summary_trimmed_from_oldest_end(self):
        """Test that an overlong summary drops the oldest text."""
        model = StubLanguageModel(max_summary_chars=40)
        prompt = (
            "Previous summary:\n" + "a" * 100 + "\n\n"
            "New conversation turns:\nuser: latest words\n\n"
            "Write the updated summary:\n"
        )

        summary = await model.generate_text(prompt)

        assert len(summary) <= 40
        assert summary.endswith("user: latest words")
