"""
Language Model Interface

Three call shapes cover everything the core asks of a model:
- generate_json: one structured answer to one prompt (transaction parsing).
  Single attempt; the caller decides what a failure means.
- generate_text: free text (context summaries). Retried.
- chat: a conversation plus tool declarations, answered with text and/or
  tool calls (the conversational agent). Retried.

Every failure surfaces as LanguageModelError so callers can degrade
instead of crashing the message pipeline.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from chatledger.models.conversation import DialogueTurn, ToolCall


class ModelReply(BaseModel):
    """A chat answer: free text, tool calls, or both."""

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class LanguageModelInterface(ABC):

    @abstractmethod
    async def generate_json(self, system_prompt: str, prompt: str) -> str:
        """
        Ask for a JSON document.

        Returns:
            The raw model text (the caller extracts and validates JSON)

        Raises:
            LanguageModelError: On timeout or API failure
        """
        pass

    @abstractmethod
    async def generate_text(self, prompt: str) -> str:
        pass

    @abstractmethod
    async def chat(
        self,
        system_prompt: str,
        turns: list[DialogueTurn],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        pass


class LanguageModelError(Exception):
    """The model call failed or returned nothing usable."""
    pass


class LanguageModelUnavailable(LanguageModelError):
    """Timeout, quota or transport failure; worth retrying."""
    pass
