"""
Streaming chat/function-calling client for the generative language model.

The dialogue engine only sees the ``ChatSession`` protocol: stream a user
message, inject out-of-band instructions ahead of the next message, and
report a function result. ``GeminiLanguageModel`` implements it on top of
the google-genai SDK (Vertex AI backend).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol

from google import genai
from google.genai import types

from voice_gateway.config import ModelConfig

logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
    """A function invocation requested by the model."""
    name: str
    args: Any = None
    call_id: Optional[str] = None


@dataclass
class ModelChunk:
    """One increment of a streamed model response."""
    text: str = ""
    function_calls: list[FunctionCall] = field(default_factory=list)
    thought_signature: Optional[bytes] = None
    response_id: Optional[str] = None


@dataclass(frozen=True)
class ToolDeclaration:
    """Name, description, and JSON-schema parameters surfaced to the model."""
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ChatSession(Protocol):
    def inject(self, instruction: str) -> None: ...

    def stream(self, text: str) -> AsyncIterator[ModelChunk]: ...

    async def send_function_response(
        self,
        name: str,
        response: dict[str, Any],
        call_id: Optional[str] = None,
        thought_signature: Optional[bytes] = None,
    ) -> str: ...


class LanguageModel(Protocol):
    def start_chat(
        self, system_instruction: str, declarations: list[ToolDeclaration]
    ) -> ChatSession: ...


class GeminiChatSession:
    """Chat wrapper that queues injected instructions for the next send."""

    def __init__(self, chat: Any) -> None:
        self._chat = chat
        self._pending: list[str] = []

    def inject(self, instruction: str) -> None:
        self._pending.append(instruction)

    def _build_message(self, text: str) -> Any:
        texts = self._pending + ([text] if text else [])
        self._pending = []
        if not texts:
            # The API rejects empty content; a blank prompt asks for a greeting/continuation.
            return " "
        return [types.Part.from_text(text=t) for t in texts]

    async def stream(self, text: str) -> AsyncIterator[ModelChunk]:
        response = await self._chat.send_message_stream(self._build_message(text))
        async for chunk in response:
            yield _to_model_chunk(chunk)

    async def send_function_response(
        self,
        name: str,
        response: dict[str, Any],
        call_id: Optional[str] = None,
        thought_signature: Optional[bytes] = None,
    ) -> str:
        """Report a tool result and drain the model's reply without surfacing it."""
        part = types.Part.from_function_response(name=name, response=response)
        if call_id and part.function_response is not None:
            part.function_response.id = call_id
        if thought_signature:
            part.thought_signature = thought_signature
        drained: list[str] = []
        stream = await self._chat.send_message_stream([part])
        async for chunk in stream:
            drained.append(_to_model_chunk(chunk).text)
        return "".join(drained)


class GeminiLanguageModel:
    """Vertex AI Gemini backend for ``LanguageModel``."""

    def __init__(self, config: ModelConfig, client: Optional[genai.Client] = None) -> None:
        self._config = config
        self._client = client or genai.Client(
            vertexai=True,
            project=config.project_id,
            location=config.location,
            http_options=types.HttpOptions(timeout=int(config.llm_timeout_sec * 1000)),
        )

    def start_chat(
        self, system_instruction: str, declarations: list[ToolDeclaration]
    ) -> GeminiChatSession:
        tools = None
        if declarations:
            tools = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=d.name,
                            description=d.description,
                            parameters_json_schema=d.parameters,
                        )
                        for d in declarations
                    ]
                )
            ]
        chat = self._client.aio.chats.create(
            model=self._config.llm_model,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=self._config.llm_temperature,
                tools=tools,
                automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            ),
        )
        logger.debug("Chat started with %d tool(s)", len(declarations))
        return GeminiChatSession(chat)


def _to_model_chunk(chunk: Any) -> ModelChunk:
    candidates = getattr(chunk, "candidates", None) or []
    content = candidates[0].content if candidates else None
    parts = (content.parts if content is not None else None) or []

    text = "".join(p.text for p in parts if p.text and not p.thought)
    calls = [
        FunctionCall(
            name=p.function_call.name,
            args=p.function_call.args or {},
            call_id=p.function_call.id,
        )
        for p in parts
        if p.function_call is not None
    ]
    signature = next((p.thought_signature for p in parts if p.thought_signature), None)
    return ModelChunk(
        text=text,
        function_calls=calls,
        thought_signature=signature,
        response_id=getattr(chunk, "response_id", None),
    )
