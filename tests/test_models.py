"""
Tests for Chat Ledger models

Test strategy:
1. Unit tests for the pydantic models and their validators
2. Serialization shapes that cross a process boundary (session JSON,
   tool results, audit log dicts)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from chatledger.audit import AuditLogger
from chatledger.models.audit import (
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from chatledger.models.conversation import (
    DialogueTurn,
    OnboardingState,
    OnboardingStep,
    PendingTransactionBatch,
    SessionState,
    TurnRole,
)
from chatledger.models.ledger import (
    BucketSummary,
    BudgetSummary,
    Period,
    TransactionCandidate,
    TransactionType,
)
from chatledger.models.tools import (
    DeleteBucketArgs,
    ToolResult,
    UpsertBucketArgs,
    UpsertTransactionArgs,
)


def make_period() -> Period:
    return Period(
        target_id=uuid4(),
        name="March 2025",
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 31),
    )


class TestLedgerModels:
    """Tests for transaction and budget models."""

    def test_candidate_coerces_amount_phrase(self):
        """Test that amount phrases become Decimals."""
        candidate = TransactionCandidate(type="expense", amount="35rb", confidence=0.9)
        assert candidate.amount == Decimal("35000")
        assert candidate.type == TransactionType.EXPENSE

    def test_candidate_accepts_camel_case(self):
        """Test that the model's camelCase keys populate the fields."""
        candidate = TransactionCandidate.model_validate({
            "type": "expense",
            "amount": 25,
            "confidence": 0.8,
            "needsConfirmation": True,
            "suggestedAmount": "25rb",
        })
        assert candidate.needs_confirmation is True
        assert candidate.suggested_amount == Decimal("25000")

    def test_candidate_defaults_category(self):
        """Test that a missing category becomes Other."""
        candidate = TransactionCandidate(type="income", amount=1000, category=None, confidence=1.0)
        assert candidate.category == "Other"

    def test_candidate_rejects_bad_confidence(self):
        """Test that confidence must be within 0..1."""
        with pytest.raises(ValidationError):
            TransactionCandidate(type="expense", amount=1000, confidence=1.5)

    def test_candidate_rejects_unknown_type(self):
        """Test that only the four transaction types are accepted."""
        with pytest.raises(ValidationError):
            TransactionCandidate(type="other", amount=1000, confidence=0.9)

    def test_period_contains(self):
        """Test that both bounds are inclusive."""
        period = make_period()
        assert period.contains(date(2025, 3, 1))
        assert period.contains(date(2025, 3, 31))
        assert not period.contains(date(2025, 4, 1))

    def test_summary_bucket_lookup_ignores_case(self):
        """Test that bucket lookup is case-insensitive."""
        summary = BudgetSummary(
            period_name="March 2025",
            income=Decimal("100"),
            buckets=[BucketSummary(name="Wants", allocated=Decimal("30"), spent=Decimal("40"), remaining=Decimal("-10"))],
        )
        assert summary.bucket("wants").is_over
        assert summary.bucket("Travel") is None


class TestConversationModels:
    """Tests for dialogue turns and session state."""

    def test_turn_helpers(self):
        """Test the user/assistant constructors."""
        assert DialogueTurn.user("hi").role == TurnRole.USER
        assert DialogueTurn.assistant("hello").tool_calls == []

    def test_pending_batch_needs_candidates(self):
        """Test that an empty batch is invalid."""
        with pytest.raises(ValidationError):
            PendingTransactionBatch(candidates=[], raw_message="", period=make_period())

    def test_session_state_json_round_trip(self):
        """Test that session state survives the expiring store."""
        candidate = TransactionCandidate(type="expense", amount=25, confidence=0.95)
        state = SessionState(
            pending=PendingTransactionBatch(
                candidates=[candidate],
                raw_message="coffee 25",
                period=make_period(),
                amount_choices=[Decimal("25"), Decimal("25000")],
            ),
            undo_ids=[uuid4()],
            onboarding=OnboardingState(step=OnboardingStep.AWAIT_INCOME_DATE, income=Decimal("8000000")),
        )

        restored = SessionState.model_validate_json(state.model_dump_json())

        assert restored == state
        assert restored.pending.amount_choices[1] == Decimal("25000")


class TestToolModels:
    """Tests for tool argument validation."""

    def test_upsert_transaction_aliases(self):
        """Test that transactionId and confirmationMessage are read."""
        tid = uuid4()
        args = UpsertTransactionArgs.model_validate({
            "input": [{
                "type": "expense",
                "amount": "50rb",
                "confidence": 0.9,
                "transactionId": str(tid),
                "confirmationMessage": "ok?",
            }]
        })
        assert args.input[0].transaction_id == tid
        assert args.input[0].confirmation_message == "ok?"

    def test_upsert_transaction_requires_items(self):
        """Test that an empty batch is rejected."""
        with pytest.raises(ValidationError):
            UpsertTransactionArgs.model_validate({"input": []})

    def test_upsert_bucket_rejects_negative(self):
        """Test that bucket amounts can't be negative."""
        with pytest.raises(ValidationError):
            UpsertBucketArgs.model_validate({"name": "Travel", "amount": -1})

    def test_delete_bucket_requires_destination(self):
        """Test that moveBucket is mandatory."""
        with pytest.raises(ValidationError):
            DeleteBucketArgs.model_validate({"name": "Wants", "confidence": 0.9})

    def test_tool_result_content_omits_nulls(self):
        """Test that the content sent to the model has no null fields."""
        content = ToolResult.fail("nope").to_content()
        assert content == '{"success":false,"error":"nope"}'


class TestAuditModels:
    """Tests for audit events."""

    def test_persistence_failed_keeps_raw_input(self):
        """Test that a failed write records what to replay."""
        target_id, period_id = uuid4(), uuid4()
        event = AuditEventBuilder.persistence_failed(target_id, period_id, "lunch 35rb", "disk full")

        assert event.event_type == AuditEventType.PERSISTENCE_FAILED
        assert event.severity == AuditSeverity.ERROR
        assert event.details["raw_input"] == "lunch 35rb"

    def test_undo_severity(self):
        """Test that a partial undo is logged as a warning."""
        event = AuditEventBuilder.undo_completed(uuid4(), "partial", [uuid4()], [uuid4()])
        assert event.severity == AuditSeverity.WARNING

    def test_to_log_dict(self):
        """Test that the log dict is plain strings and primitives."""
        target_id = uuid4()
        log = AuditEventBuilder.tool_executed(target_id, "getBudgetStatus", True, None).to_log_dict()

        assert log["event_type"] == "tool_executed"
        assert log["target_id"] == str(target_id)
        assert log["details"] == {"tool": "getBudgetStatus"}


class TestAuditLogger:
    """Tests for the in-memory side of the audit logger."""

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        """Test that only the newest events are kept."""
        audit = AuditLogger(history_size=3)
        tools = [f"tool{i}" for i in range(10)]
        for name in tools:
            await audit.log(AuditEventBuilder.tool_executed(uuid4(), name, True, None))

        kept = [e.details["tool"] for e in audit.history]
        assert kept == ["tool7", "tool8", "tool9"]
