"""
Development Stub Model

Used when no Gemini API key is configured. Parsing finds nothing and
chat answers with a fixed notice. Summaries are the previous summary
followed by the folded turns, trimmed from the oldest end, so folding
still bounds the window without losing what came before.
"""

import json
from typing import Any

from chatledger.models.conversation import DialogueTurn
from chatledger.services.llm.interface import LanguageModelInterface, ModelReply


DEV_MODE_REPLY = "AI is in development mode (no API key configured)."


def _section(prompt: str, start: str, end: str) -> str:
    """Text of prompt between two headings, or "" if either is missing."""
    head = prompt.find(start)
    if head < 0:
        return ""
    head += len(start)
    tail = prompt.find(end, head)
    return prompt[head:tail if tail >= 0 else len(prompt)].strip()


class StubLanguageModel(LanguageModelInterface):

    def __init__(self, max_summary_chars: int = 1000):
        self._max_summary_chars = max_summary_chars

    async def generate_json(self, system_prompt: str, prompt: str) -> str:
        return json.dumps({"message": DEV_MODE_REPLY, "transactions": []})

    async def generate_text(self, prompt: str) -> str:
        previous = _section(prompt, "Previous summary:", "New conversation turns:")
        turns = _section(prompt, "New conversation turns:", "Write the updated summary:")

        parts = [previous] if previous and previous != "(none)" else []
        parts.extend(line.strip() for line in turns.splitlines() if line.strip())
        summary = " ".join(parts)

        if len(summary) > self._max_summary_chars:
            summary = summary[-self._max_summary_chars:].lstrip()
        return summary or "No conversation yet."

    async def chat(
        self,
        system_prompt: str,
        turns: list[DialogueTurn],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        return ModelReply(text=DEV_MODE_REPLY)
