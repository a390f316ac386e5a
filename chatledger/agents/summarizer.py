"""
Context Summarizer

Folds dialogue turns into the standing summary of a target. The
summary is what survives once turns leave the live window, so it is
bounded in length and written in general terms (habits, intent) rather
than figures the ledger already holds.
"""

from typing import Optional

from chatledger.agents.prompts import SUMMARY_PROMPT_TEMPLATE
from chatledger.config import ConversationSettings, get_settings
from chatledger.models.conversation import DialogueTurn, TurnRole
from chatledger.services.llm import LanguageModelError, LanguageModelInterface


class SummaryFailure(Exception):
    """The summary could not be produced; the caller keeps the raw turns."""
    pass


def render_turns(turns: list[DialogueTurn]) -> str:
    lines = []
    for turn in turns:
        if turn.role == TurnRole.TOOL:
            lines.append(f"[tool {turn.name or ''}] {turn.content}")
        elif turn.content:
            lines.append(f"{turn.role.value}: {turn.content}")
    return "\n".join(lines)


class ContextSummarizer:

    def __init__(
        self,
        model: LanguageModelInterface,
        settings: Optional[ConversationSettings] = None,
    ):
        self._model = model
        self._settings = settings or get_settings().conversation

    async def summarize(self, previous_summary: str, turns: list[DialogueTurn]) -> str:
        """
        New summary covering previous_summary plus turns.

        Raises:
            SummaryFailure: If the model failed or answered with nothing
        """
        prompt = SUMMARY_PROMPT_TEMPLATE.format(
            previous_summary=previous_summary or "(none)",
            turns=render_turns(turns),
        )
        try:
            summary = (await self._model.generate_text(prompt)).strip()
        except LanguageModelError as e:
            raise SummaryFailure(str(e)) from e

        if not summary:
            raise SummaryFailure("Model returned an empty summary")

        limit = self._settings.max_summary_chars
        if len(summary) > limit:
            cut = summary[:limit]
            # Prefer ending on a sentence boundary
            boundary = cut.rfind(". ")
            summary = cut[: boundary + 1] if boundary > limit // 2 else cut
        return summary
