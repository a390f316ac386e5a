"""
Gemini Language Model Client

LanguageModelInterface on google-generativeai.

DESIGN DECISION: Every call is wrapped in asyncio.wait_for with the
configured timeout. A slow model must never hold a target's message
lock indefinitely; a timeout becomes LanguageModelUnavailable and the
caller falls back.
"""

import asyncio
import json
from typing import Any, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from chatledger.config import GeminiSettings, get_settings
from chatledger.models.conversation import DialogueTurn, ToolCall, TurnRole
from chatledger.services.llm.interface import (
    LanguageModelError,
    LanguageModelInterface,
    LanguageModelUnavailable,
    ModelReply,
)
from chatledger.services.llm.stub import StubLanguageModel


logger = structlog.get_logger(__name__)


def _to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Uppercase JSON-schema type names the way the Gemini API expects."""
    converted: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties":
            converted[key] = {name: _to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items":
            converted[key] = _to_gemini_schema(value)
        else:
            converted[key] = value
    return converted


def _plain(value: Any) -> Any:
    """Convert proto map/list composites from function_call.args to plain Python."""
    if isinstance(value, (str, bytes, int, float, bool)) or value is None:
        return value
    if hasattr(value, "items"):
        return {k: _plain(v) for k, v in value.items()}
    if hasattr(value, "__iter__"):
        return [_plain(v) for v in value]
    return value


def _turn_to_content(turn: DialogueTurn) -> Optional[dict[str, Any]]:
    if turn.role == TurnRole.USER:
        return {"role": "user", "parts": [turn.content]}

    if turn.role == TurnRole.ASSISTANT:
        parts: list[Any] = []
        if turn.content:
            parts.append(turn.content)
        for call in turn.tool_calls:
            parts.append({"function_call": {"name": call.name, "args": call.arguments}})
        return {"role": "model", "parts": parts} if parts else None

    try:
        response = json.loads(turn.content)
    except json.JSONDecodeError:
        response = {"content": turn.content}
    return {
        "role": "user",
        "parts": [{"function_response": {"name": turn.name or "tool", "response": response}}],
    }


class GeminiLanguageModel(LanguageModelInterface):
    """
    Gemini-backed model.

    Usage:
        model = GeminiLanguageModel()
        text = await model.generate_json(system_prompt, prompt)
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)

    def _model(
        self,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> genai.GenerativeModel:
        generation_config: dict[str, Any] = {
            "temperature": self._settings.temperature,
            "max_output_tokens": self._settings.max_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        gemini_tools = None
        if tools:
            gemini_tools = [{
                "function_declarations": [
                    {**tool, "parameters": _to_gemini_schema(tool["parameters"])}
                    for tool in tools
                ]
            }]

        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system_prompt or None,
            generation_config=generation_config,
            tools=gemini_tools,
        )

    async def _generate(self, model: genai.GenerativeModel, contents: Any):
        try:
            return await asyncio.wait_for(
                model.generate_content_async(contents),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise LanguageModelUnavailable(
                f"Gemini did not answer within {self._settings.timeout_seconds}s"
            ) from e
        except google_exceptions.GoogleAPIError as e:
            raise LanguageModelUnavailable(f"Gemini API error: {e}") from e

    async def _with_retry(self, call):
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(LanguageModelUnavailable),
            stop=stop_after_attempt(self._settings.max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        ):
            with attempt:
                return await call()

    @staticmethod
    def _text(response) -> str:
        try:
            return response.text.strip()
        except ValueError as e:
            # Raised when the candidate was blocked or has no text part
            raise LanguageModelError(f"Gemini returned no text: {e}") from e

    async def generate_json(self, system_prompt: str, prompt: str) -> str:
        model = self._model(system_prompt=system_prompt, json_mode=True)
        response = await self._generate(model, prompt)
        return self._text(response)

    async def generate_text(self, prompt: str) -> str:
        model = self._model()

        async def call() -> str:
            return self._text(await self._generate(model, prompt))

        return await self._with_retry(call)

    async def chat(
        self,
        system_prompt: str,
        turns: list[DialogueTurn],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        model = self._model(system_prompt=system_prompt, tools=tools)
        contents = [c for c in (_turn_to_content(t) for t in turns) if c]

        async def call():
            return await self._generate(model, contents)

        response = await self._with_retry(call)
        if not response.candidates:
            raise LanguageModelError("Gemini returned no candidates")

        texts: list[str] = []
        calls: list[ToolCall] = []
        for part in response.candidates[0].content.parts:
            function_call = getattr(part, "function_call", None)
            if function_call and function_call.name:
                calls.append(ToolCall(name=function_call.name, arguments=_plain(function_call.args) or {}))
            elif getattr(part, "text", ""):
                texts.append(part.text)

        logger.debug("gemini_chat_reply", tool_calls=[c.name for c in calls], text_parts=len(texts))
        return ModelReply(text="".join(texts).strip(), tool_calls=calls)


def create_language_model(settings: Optional[GeminiSettings] = None) -> LanguageModelInterface:
    """Gemini when an API key is configured, the development stub otherwise."""
    settings = settings or get_settings().gemini
    if settings.is_development:
        logger.warning("language_model_stub_mode", reason="GEMINI_API_KEY not set")
        return StubLanguageModel()
    return GeminiLanguageModel(settings)
