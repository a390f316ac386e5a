"""
Conversation Agent

Answers messages that carry no transaction: questions, plans, requests
to change buckets or periods. The model sees the standing summary, the
live window and the tool declarations; the tool calls it makes run
through the ToolDispatcher and their results go back into the window as
tool turns.

Flow per message:
    chat(window) -> [tool calls -> dispatch -> tool turns] -> chat again
    ... until the model answers in text or MAX_TOOL_ROUNDS is reached

A model failure never surfaces as an exception: the user gets a short
fallback answer and the window keeps whatever was already recorded.
"""

from datetime import date
from typing import TYPE_CHECKING, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from chatledger.agents.prompts import CONVERSATION_SYSTEM_PROMPT
from chatledger.amounts import format_amount
from chatledger.budget import BudgetEngine
from chatledger.models.conversation import DialogueTurn, SessionState, TurnRole
from chatledger.models.ledger import Budget, Period, Target
from chatledger.models.tools import ToolResult
from chatledger.services.llm import LanguageModelError, LanguageModelInterface
from chatledger.tools import ToolContext, ToolDispatcher, tool_declarations

if TYPE_CHECKING:
    from chatledger.conversation.context_cache import ConversationContextCache


logger = structlog.get_logger(__name__)

MAX_TOOL_ROUNDS = 3

FALLBACK_REPLY = "I can't think straight right now. Try again in a bit, or use /summary and /help."


class AgentReply(BaseModel):
    text: str
    tool_results: list[ToolResult] = Field(default_factory=list)
    period: Period = Field(..., description="Active period after the tools ran")


def _bucket_lines(budget: Optional[Budget]) -> str:
    if budget is None or not budget.buckets:
        return "(no buckets)"
    return "\n".join(
        f"- {b.name} [{b.category.value if b.category else 'none'}]: {format_amount(b.amount)}"
        for b in budget.buckets
    )


class ConversationAgent:
    """
    Tool-calling conversational replies.

    Usage:
        agent = ConversationAgent(model, context_cache, dispatcher, budget_engine)
        reply = await agent.respond(target, period, state)
    """

    def __init__(
        self,
        model: LanguageModelInterface,
        context_cache: "ConversationContextCache",
        dispatcher: ToolDispatcher,
        budget_engine: BudgetEngine,
        today: Callable[[], date] = date.today,
    ):
        self._model = model
        self._cache = context_cache
        self._dispatcher = dispatcher
        self._budget = budget_engine
        self._today = today

    async def respond(self, target: Target, period: Period, state: SessionState) -> AgentReply:
        """
        Answer the latest user turn already in the window.

        The final assistant text is appended to the window before returning.
        """
        context = ToolContext(target=target, period=period, state=state)
        results: list[ToolResult] = []

        for _ in range(MAX_TOOL_ROUNDS):
            system_prompt = await self._system_prompt(target, context.period)
            turns = await self._cache.read(target.target_id)
            try:
                reply = await self._model.chat(system_prompt, turns, tool_declarations())
            except LanguageModelError as e:
                logger.warning("conversation_model_failed", target_id=str(target.target_id), error=str(e))
                return AgentReply(text=self._fallback(results), tool_results=results, period=context.period)

            if not reply.tool_calls:
                text = reply.text or self._fallback(results)
                await self._cache.append(target.target_id, DialogueTurn.assistant(text))
                return AgentReply(text=text, tool_results=results, period=context.period)

            new_turns = [DialogueTurn.assistant(reply.text, reply.tool_calls)]
            for call in reply.tool_calls:
                result = await self._dispatcher.dispatch(call, context)
                results.append(result)
                new_turns.append(DialogueTurn(
                    role=TurnRole.TOOL,
                    content=result.to_content(),
                    tool_call_id=call.id,
                    name=call.name,
                ))
            await self._cache.extend(target.target_id, new_turns)

        logger.warning("tool_rounds_exhausted", target_id=str(target.target_id), rounds=MAX_TOOL_ROUNDS)
        text = self._fallback(results)
        await self._cache.append(target.target_id, DialogueTurn.assistant(text))
        return AgentReply(text=text, tool_results=results, period=context.period)

    async def _system_prompt(self, target: Target, period: Period) -> str:
        budget = await self._budget.get_budget(period)
        summary = await self._cache.summary(target.target_id)
        return CONVERSATION_SYSTEM_PROMPT.format(
            today=self._today().isoformat(),
            period_name=period.name,
            period_start=period.start_date.isoformat(),
            period_end=period.end_date.isoformat(),
            income=format_amount(budget.estimated_income) if budget else "not set",
            buckets=_bucket_lines(budget),
            summary=summary or "(nothing yet)",
        )

    @staticmethod
    def _fallback(results: list[ToolResult]) -> str:
        """Report what the tools did when the model can't phrase it."""
        if not results:
            return FALLBACK_REPLY
        lines = [r.message if r.success else f"Failed: {r.error}" for r in results]
        return "\n".join(line for line in lines if line)
