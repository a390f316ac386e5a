"""Tests for TransactionParser."""

import pytest
from decimal import Decimal

from conftest import expense

from chatledger.agents import ParseFailure, TransactionParser
from chatledger.models.ledger import TransactionType
from chatledger.services.llm import LanguageModelError


BUCKETS = ["Needs", "Wants", "Savings"]


@pytest.fixture
def parser(model, ledger_settings):
    return TransactionParser(model, ledger_settings)


class TestParse:
    """Tests for successful parses."""

    @pytest.mark.asyncio
    async def test_single_expense(self, parser, model):
        """Test that one item becomes one candidate with coerced amount."""
        model.queue_parse([expense("35rb")], message="Lunch noted")

        parsed = await parser.parse("lunch 35rb", BUCKETS)

        assert parsed.reply == "Lunch noted"
        [candidate] = parsed.candidates
        assert candidate.type == TransactionType.EXPENSE
        assert candidate.amount == Decimal("35000")
        assert candidate.needs_confirmation is False

    @pytest.mark.asyncio
    async def test_several_items(self, parser, model):
        """Test that a message with two spends yields two candidates."""
        model.queue_parse([expense(22000, description="grab"), expense(18000, description="coffee")])

        parsed = await parser.parse("grab 22k, coffee 18rb", BUCKETS)

        assert [c.description for c in parsed.candidates] == ["grab", "coffee"]

    @pytest.mark.asyncio
    async def test_other_items_dropped(self, parser, model):
        """Test that type other is not turned into a candidate."""
        model.queue_parse([{"type": "other", "confidence": 0.9}], message="Sure, ask away")

        parsed = await parser.parse("can I afford a trip?", BUCKETS)

        assert parsed.candidates == []
        assert parsed.reply == "Sure, ask away"

    @pytest.mark.asyncio
    async def test_json_wrapped_in_fences(self, parser, model):
        """Test that prose or code fences around the JSON are tolerated."""
        model.json_replies.append(
            '```json\n{"message": "ok", "transactions": [{"type": "income", "amount": "8jt", '
            '"category": "Salary", "confidence": 0.97}]}\n```'
        )

        parsed = await parser.parse("salary 8jt", BUCKETS)

        assert parsed.candidates[0].amount == Decimal("8000000")

    @pytest.mark.asyncio
    async def test_bucket_names_in_prompt(self, parser, model):
        """Test that the available buckets are shown to the model."""
        await parser.parse("hello", BUCKETS)
        assert "Needs, Wants, Savings" in model.json_prompts[0]


class TestSmallAmountGuard:
    """Tests for unit-ambiguous amounts."""

    @pytest.mark.asyncio
    async def test_small_expense_flagged(self, parser, model):
        """Test that an unflagged tiny expense still gets a suggestion."""
        model.queue_parse([expense(25, description="coffee")])

        [candidate] = (await parser.parse("coffee 25", BUCKETS)).candidates

        assert candidate.needs_confirmation is True
        assert candidate.suggested_amount == Decimal("25000")

    @pytest.mark.asyncio
    async def test_model_suggestion_kept(self, parser, model):
        """Test that a larger suggestion from the model is used as is."""
        model.queue_parse([expense(25, needsConfirmation=True, suggestedAmount=25000)])

        [candidate] = (await parser.parse("coffee 25", BUCKETS)).candidates

        assert candidate.suggested_amount == Decimal("25000")

    @pytest.mark.asyncio
    async def test_small_income_not_flagged(self, parser, model):
        """Test that the guard only applies to expenses."""
        model.queue_parse([{"type": "income", "amount": 500, "category": "Gift", "confidence": 0.95}])

        [candidate] = (await parser.parse("got 500", BUCKETS)).candidates

        assert candidate.needs_confirmation is False


class TestParseFailures:
    """Tests for everything that becomes ParseFailure."""

    @pytest.mark.asyncio
    async def test_not_json(self, parser, model):
        """Test that prose without JSON fails."""
        model.json_replies.append("I am not sure what you mean")
        with pytest.raises(ParseFailure):
            await parser.parse("lunch", BUCKETS)

    @pytest.mark.asyncio
    async def test_broken_json(self, parser, model):
        """Test that truncated JSON fails."""
        model.json_replies.append('{"message": "ok", "transactions": [')
        with pytest.raises(ParseFailure):
            await parser.parse("lunch", BUCKETS)

    @pytest.mark.asyncio
    async def test_unknown_type(self, parser, model):
        """Test that a type outside the contract fails."""
        model.queue_parse([{"type": "refund", "amount": 1000, "confidence": 0.9}])
        with pytest.raises(ParseFailure):
            await parser.parse("refund", BUCKETS)

    @pytest.mark.asyncio
    async def test_zero_amount(self, parser, model):
        """Test that a non-positive amount fails."""
        model.queue_parse([expense(0)])
        with pytest.raises(ParseFailure):
            await parser.parse("lunch 0", BUCKETS)

    @pytest.mark.asyncio
    async def test_model_error(self, parser, model):
        """Test that a model timeout surfaces as ParseFailure."""
        model.json_replies.append(LanguageModelError("deadline exceeded"))
        with pytest.raises(ParseFailure):
            await parser.parse("lunch 35rb", BUCKETS)
