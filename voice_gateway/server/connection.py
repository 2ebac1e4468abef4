"""
Per-WebSocket connection handler.

Owns the ``Session`` for one browser client, builds the engine, tool
executor, pause coordinator, and correction handler once the handshake
succeeds, and routes every inbound message to them. Turn work is spawned
as tasks so audio frames keep flowing while the model responds; the
session's turn lock keeps those turns strictly sequential.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Optional

from pydantic import ValidationError

from voice_gateway.conversation.client_channel import ClientChannel, Transport
from voice_gateway.conversation.connection_registry import SessionHooks
from voice_gateway.conversation.dialogue_engine import DialogueEngine
from voice_gateway.conversation.pause_coordinator import PauseCoordinator
from voice_gateway.conversation.supervision import CorrectionHandler, SupervisionChannel
from voice_gateway.conversation.transcript_store import TranscriptStore
from voice_gateway.logging_context import get_conversation_logger, set_conversation_id
from voice_gateway.prompts.system_prompts import build_system_prompt
from voice_gateway.schemas.messages import (
    AudioStart,
    ConversationItemCreate,
    StartConversation,
    UserActionCompleted,
)
from voice_gateway.schemas.session_schema import BotConfig, Session, Speaker
from voice_gateway.server.bootstrap import GatewayServices
from voice_gateway.services.auth import TokenVerificationError
from voice_gateway.services.transcription import TranscriptionSession
from voice_gateway.tools.executor import ToolExecutor
from voice_gateway.tools.idempotency import IdempotencyGuard
from voice_gateway.utils import speech_language_code

logger = get_conversation_logger(__name__)

READY_MESSAGE = "Backend connected and ready."
NOT_STARTED_MESSAGE = "Conversation has not started."
INVALID_MESSAGE = "Invalid message."
START_FAILED_MESSAGE = "Could not start the conversation."


class BotNotFoundError(LookupError):
    """Raised when ``start_conversation`` names a bot that does not exist."""


class ConnectionHandler:
    """Routes one client's messages into its session."""

    def __init__(self, transport: Transport, services: GatewayServices) -> None:
        self.services = services
        self.client = ClientChannel(transport)
        self.session = Session(language_code=services.config.speech.default_language)
        self.engine: Optional[DialogueEngine] = None
        self.pause: Optional[PauseCoordinator] = None
        self.corrections: Optional[CorrectionHandler] = None
        self._hooks: Optional[SessionHooks] = None
        self._transcriber: Optional[TranscriptionSession] = None
        self._tasks: set[asyncio.Task] = set()

        cfg = services.config
        self.transcripts = TranscriptStore(services.store, cfg.store.conversations_collection)
        self.supervision = SupervisionChannel(
            services.webhooks,
            cfg.webhooks.supervision_url,
            cfg.webhooks.transcript_report_url,
        )

    # ------------------------------------------------------------------ #
    # Inbound frames
    # ------------------------------------------------------------------ #

    def handle_binary(self, chunk: bytes) -> None:
        if self._transcriber is not None and self._transcriber.active:
            self._transcriber.write(chunk)

    async def handle_text(self, raw: str) -> None:
        if raw.strip() in ("stop", '"stop"'):
            await self._stop_audio()
            return
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Malformed client message")
            await self.client.error(INVALID_MESSAGE)
            return
        if not isinstance(message, dict):
            await self.client.error(INVALID_MESSAGE)
            return

        message_type = message.get("type")
        try:
            if message_type == "start_conversation":
                await self._start_conversation(message)
            elif message_type == "audio.start":
                await self._start_audio(AudioStart.model_validate(message).language_code)
            elif message_type == "audio.stop":
                await self._stop_audio()
            elif message_type == "conversation.item.create":
                await self._on_text_input(ConversationItemCreate.model_validate(message))
            elif message_type == "user_action_pending":
                if self.pause is not None:
                    self.pause.pause("client reported external action")
            elif message_type == "user_action_completed":
                if self.pause is not None:
                    details = UserActionCompleted.model_validate(message).event_details()
                    self._spawn(self.pause.on_client_completed(details))
            else:
                logger.debug("Ignoring unknown message type %r", message_type)
        except ValidationError:
            logger.warning("Invalid '%s' message", message_type)
            await self.client.error(INVALID_MESSAGE)

    # ------------------------------------------------------------------ #
    # Handshake
    # ------------------------------------------------------------------ #

    async def _start_conversation(self, message: dict[str, Any]) -> None:
        if self.engine is not None:
            await self.client.error("Conversation already started.")
            return
        try:
            request = StartConversation.model_validate(message)
            if self.services.verifier is not None:
                await self.services.verifier.verify(request.app_check_token or "")
            bot = await self._load_bot(request.bot_id)
        except ValidationError:
            await self.client.error(INVALID_MESSAGE)
            return
        except TokenVerificationError:
            await self.client.error("Client verification failed.")
            return
        except BotNotFoundError:
            await self.client.error("Bot not found.")
            return
        except Exception:
            logger.exception("Handshake failed")
            await self.client.error(START_FAILED_MESSAGE)
            return

        session = self.session
        session.bot = bot
        session.user_id = request.interacting_user_id
        session.user_name = request.user_name
        session.user_email = request.user_email
        session.language_code = speech_language_code(
            bot.language, self.services.config.speech.default_language
        )
        if session.conversation_id is None:
            session.conversation_id = uuid.uuid4().hex
        set_conversation_id(session.conversation_id)

        try:
            await self.transcripts.create(session)
        except Exception:
            logger.exception("Could not create conversation document")
            await self.client.error(START_FAILED_MESSAGE)
            return

        self._build_runtime(bot)
        self._hooks = SessionHooks(
            apply_correction=self.corrections.apply,
            resume_with_booking=self.pause.resume_with_booking,
        )
        self.services.registry.register(session.conversation_id, self._hooks)
        logger.info("Conversation %s started with bot %s", session.conversation_id, bot.bot_id)

        await self._start_audio(None)
        await self.client.send("info", message=READY_MESSAGE, conversationId=session.conversation_id)
        await self.engine.handle_input("")

    async def _load_bot(self, bot_id: str) -> BotConfig:
        doc = await self.services.store.get(self.services.config.store.bots_collection, bot_id)
        if doc is None:
            raise BotNotFoundError(bot_id)
        return BotConfig.model_validate({**doc, "bot_id": bot_id})

    def _build_runtime(self, bot: BotConfig) -> None:
        services, session, cfg = self.services, self.session, self.services.config
        tools = services.tools.subset(bot.tools)
        chat = services.model.start_chat(
            build_system_prompt(bot, session.user_name or ""), tools.declarations()
        )
        self.engine = DialogueEngine(
            session, chat, self.client, self.transcripts, self.supervision,
            model_timeout_sec=cfg.model.llm_timeout_sec,
        )
        self.pause = PauseCoordinator(
            session, self.engine, self.client, chat, services.store,
            cfg.store.pending_bookings_collection, cfg.dedupe,
        )
        self.engine.bind_executor(
            ToolExecutor(
                session=session,
                engine=self.engine,
                chat=chat,
                client=self.client,
                registry=tools,
                pause=self.pause,
                store=services.store,
                webhooks=services.webhooks,
                guard=IdempotencyGuard(services.store, cfg.store.tool_executions_collection),
                transcripts=self.transcripts,
                supervision=self.supervision,
            )
        )
        self.corrections = CorrectionHandler(session, self.engine, chat, self.transcripts)

    # ------------------------------------------------------------------ #
    # Input paths
    # ------------------------------------------------------------------ #

    async def _on_text_input(self, item: ConversationItemCreate) -> None:
        text = item.input_text()
        if text is None:
            return
        if self.engine is None:
            await self.client.error(NOT_STARTED_MESSAGE)
            return
        self._spawn(self.engine.handle_input(text, Speaker.USER_TEXT))

    async def _on_transcript(self, text: str, is_final: bool) -> None:
        await self.client.send("transcript", text=text, isFinal=is_final)
        if not is_final or self.engine is None:
            return
        final = text.strip()
        if not final or final == self.session.last_final_transcript:
            return
        self.session.last_final_transcript = final
        self._spawn(self.engine.handle_input(final, Speaker.USER_VOICE))

    async def _start_audio(self, language_code: Optional[str]) -> None:
        if self.engine is None:
            await self.client.error(NOT_STARTED_MESSAGE)
            return
        if language_code:
            self.session.language_code = language_code
        if self._transcriber is None:
            self._transcriber = self.services.transcriber_factory(self._on_transcript)
        await self._transcriber.start(self.session.language_code)

    async def _stop_audio(self) -> None:
        if self._transcriber is not None:
            await self._transcriber.stop()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Turn task failed", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until every spawned turn has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self.client.close()
        try:
            await self._stop_audio()
        except Exception:
            logger.exception("Speech stream did not stop cleanly")
        finally:
            for task in list(self._tasks):
                task.cancel()
            conversation_id = self.session.conversation_id
            if conversation_id:
                self.services.registry.remove(conversation_id, self._hooks)
                self.supervision.report_conversation_end(self.session)
                logger.info("Conversation %s closed", conversation_id)
