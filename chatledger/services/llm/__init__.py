"""Language model services package."""

from chatledger.services.llm.interface import (
    LanguageModelError,
    LanguageModelInterface,
    LanguageModelUnavailable,
    ModelReply,
)
from chatledger.services.llm.gemini_client import GeminiLanguageModel, create_language_model
from chatledger.services.llm.stub import DEV_MODE_REPLY, StubLanguageModel

__all__ = [
    "DEV_MODE_REPLY",
    "GeminiLanguageModel",
    "LanguageModelError",
    "LanguageModelInterface",
    "LanguageModelUnavailable",
    "ModelReply",
    "StubLanguageModel",
    "create_language_model",
]
