"""Shared test fixtures, fakes, and helpers."""

import json
from collections import deque
from typing import Any, Optional

import pytest

from voice_gateway.config import AppConfig, SecurityConfig, StoreConfig, WebhookConfig
from voice_gateway.server.bootstrap import GatewayServices
from voice_gateway.server.connection import ConnectionHandler
from voice_gateway.services.llm import FunctionCall, ModelChunk
from voice_gateway.services.store import InMemoryDocumentStore

HOOK_SECRET = "hook-secret"
SUPERVISOR_SECRET = "supervisor-secret"
DEFAULT_REPLY = "Okay."

TEST_CONFIG = AppConfig(
    security=SecurityConfig(
        booking_webhook_secret=HOOK_SECRET,
        supervisor_secret=SUPERVISOR_SECRET,
        app_check_enforced=False,
    ),
    webhooks=WebhookConfig(
        supervision_url="https://review.test/turn",
        transcript_report_url="https://review.test/end",
        timeout_sec=5.0,
    ),
    store=StoreConfig(backend="memory"),
)

KNOWLEDGE = [
    {"title": "Precios", "content": "La limpieza dental cuesta 60 euros."},
    {"title": "Horario", "content": "Abrimos de lunes a viernes de 9 a 18."},
    {"title": "Limpieza dental", "content": "Incluye revision y pulido."},
]

BOT_DOCS: dict[str, dict[str, Any]] = {
    "bot-sales": {
        "Variable1": "Ana, the receptionist of Clinica Sonrisa",
        "Variable2": "Help patients book cleanings and answer questions about the clinic.",
        "Variable5": "Hola, soy Ana.",
        "language": "es",
        "tools": [
            "schedule_appointment",
            "navigate_to_section",
            "search_knowledge_base",
            "execute_order",
        ],
        "calendarUrl": "https://cal.test/sonrisa/limpieza",
        "supervisionEnabled": True,
        "orderWebhookUrl": "https://automation.test/orders",
        "knowledge": KNOWLEDGE,
        "sections": ["pricing", "contact"],
    },
    "bot-plain": {
        "Variable1": "Max",
        "language": "en",
        "tools": [],
    },
}


# --------------------------------------------------------------------------- #
# Model doubles
# --------------------------------------------------------------------------- #

def say(text: str, response_id: Optional[str] = None) -> list[ModelChunk]:
    """A model turn that only streams text."""
    return [ModelChunk(text=text, response_id=response_id)]


def call(
    name: str,
    args: Any = None,
    call_id: Optional[str] = None,
    response_id: Optional[str] = None,
) -> ModelChunk:
    """A chunk carrying one function call."""
    return ModelChunk(
        function_calls=[FunctionCall(name=name, args=args or {}, call_id=call_id)],
        response_id=response_id,
    )


class ScriptedChat:
    """ChatSession double that replays scripted model turns in order.

    Each ``stream`` call consumes one scripted turn (a list of chunks).
    When the script runs out the model answers ``DEFAULT_REPLY``.
    """

    def __init__(self, *turns: list[ModelChunk]) -> None:
        self.turns: deque[list[ModelChunk]] = deque(turns)
        self.messages: list[list[str]] = []
        self.injected: list[str] = []
        self.function_responses: list[dict[str, Any]] = []
        self.fail_with: Optional[BaseException] = None
        self._pending: list[str] = []

    def script(self, *turns: list[ModelChunk]) -> None:
        self.turns.extend(turns)

    def inject(self, instruction: str) -> None:
        self._pending.append(instruction)
        self.injected.append(instruction)

    async def stream(self, text: str):
        sent = self._pending + ([text] if text else [])
        self._pending = []
        self.messages.append(sent)
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc
        chunks = self.turns.popleft() if self.turns else say(DEFAULT_REPLY)
        for chunk in chunks:
            yield chunk

    async def send_function_response(
        self,
        name: str,
        response: dict[str, Any],
        call_id: Optional[str] = None,
        thought_signature: Optional[bytes] = None,
    ) -> str:
        self.function_responses.append(
            {
                "name": name,
                "response": response,
                "call_id": call_id,
                "thought_signature": thought_signature,
            }
        )
        return ""


class FakeModel:
    def __init__(self, chat: ScriptedChat) -> None:
        self.chat = chat
        self.system_instruction: Optional[str] = None
        self.declarations: list = []

    def start_chat(self, system_instruction, declarations):
        self.system_instruction = system_instruction
        self.declarations = list(declarations)
        return self.chat


# --------------------------------------------------------------------------- #
# I/O doubles
# --------------------------------------------------------------------------- #

class RecordingTransport:
    """Collects every message sent to the client."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == message_type]

    def clear(self) -> None:
        self.messages.clear()


class FakeWebhooks:
    """Records outbound POSTs instead of sending them."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None) -> None:
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.reports: list[dict[str, Any]] = []
        self.response = response if response is not None else {"ok": True}
        self.error = error

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        self.posts.append((url, payload))
        if self.error is not None:
            raise self.error
        return self.response

    def fire_and_forget(self, url: Optional[str], payload: dict[str, Any], label: str) -> None:
        if url:
            self.reports.append({"url": url, "payload": payload, "label": label})

    def labelled(self, label: str) -> list[dict[str, Any]]:
        return [r for r in self.reports if r["label"] == label]

    async def aclose(self) -> None:
        pass


class FakeTranscriber:
    def __init__(self, on_transcript) -> None:
        self.on_transcript = on_transcript
        self.languages: list[str] = []
        self.chunks: list[bytes] = []
        self.stopped = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def start(self, language_code: str) -> None:
        self.languages.append(language_code)
        self._active = True

    def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    async def stop(self) -> None:
        self._active = False
        self.stopped += 1

    async def emit(self, text: str, is_final: bool = True) -> None:
        await self.on_transcript(text, is_final)


class TranscriberFactory:
    def __init__(self) -> None:
        self.created: list[FakeTranscriber] = []

    def __call__(self, on_transcript) -> FakeTranscriber:
        transcriber = FakeTranscriber(on_transcript)
        self.created.append(transcriber)
        return transcriber

    @property
    def last(self) -> FakeTranscriber:
        return self.created[-1]


# --------------------------------------------------------------------------- #
# Fixtures
# --------------------------------------------------------------------------- #

@pytest.fixture
def chat():
    return ScriptedChat()


@pytest.fixture
def webhooks():
    return FakeWebhooks()


@pytest.fixture
def store():
    return InMemoryDocumentStore({TEST_CONFIG.store.bots_collection: BOT_DOCS})


@pytest.fixture
def services(chat, webhooks, store):
    return GatewayServices(
        config=TEST_CONFIG,
        store=store,
        model=FakeModel(chat),
        webhooks=webhooks,
        transcriber_factory=TranscriberFactory(),
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def handler(transport, services):
    return ConnectionHandler(transport, services)


def start_message(bot_id: str = "bot-sales", **extra: Any) -> str:
    return json.dumps(
        {
            "type": "start_conversation",
            "botId": bot_id,
            "interactingUserId": "user-42",
            "userName": "Lucia",
            "userEmail": "lucia@example.com",
            **extra,
        }
    )


def text_message(text: str) -> str:
    return json.dumps(
        {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        }
    )


async def start_conversation(handler: ConnectionHandler, bot_id: str = "bot-sales") -> str:
    """Run the handshake (including the greeting turn) and return the conversation id."""
    await handler.handle_text(start_message(bot_id))
    await handler.wait_idle()
    return handler.session.conversation_id


async def send_text(handler: ConnectionHandler, text: str) -> None:
    await handler.handle_text(text_message(text))
    await handler.wait_idle()
