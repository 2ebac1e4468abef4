"""
Dialogue engine: drives one conversation's turns against the language model.

A turn streams the model's reply to the client as it arrives. If the model
asks for a function call, the call is held until the stream ends; the text
streamed so far is committed first so the user sees the preamble, and only
then does the tool executor take over the rest of the turn. Turns with no
function call end with one supervised ``assistant_final``.

Usage:
    engine = DialogueEngine(session, chat, client, transcripts, supervision)
    engine.bind_executor(executor)
    await engine.handle_input("What are your opening hours?", Speaker.USER_TEXT)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from voice_gateway.conversation.client_channel import ClientChannel
from voice_gateway.conversation.supervision import SupervisionChannel
from voice_gateway.conversation.transcript_store import TranscriptStore
from voice_gateway.conversation.turn_accumulator import TurnAccumulator
from voice_gateway.logging_context import get_conversation_logger
from voice_gateway.schemas.session_schema import Session, Speaker
from voice_gateway.services.llm import ChatSession

if TYPE_CHECKING:
    from voice_gateway.tools.executor import ToolExecutor

logger = get_conversation_logger(__name__)

MODEL_ERROR_MESSAGE = "The assistant could not respond. Please try again."
DEFAULT_MODEL_TIMEOUT_SEC = 30.0


class DialogueEngine:
    """Turn-by-turn model orchestration for one session."""

    def __init__(
        self,
        session: Session,
        chat: ChatSession,
        client: ClientChannel,
        transcripts: TranscriptStore,
        supervision: SupervisionChannel,
        model_timeout_sec: float = DEFAULT_MODEL_TIMEOUT_SEC,
    ) -> None:
        self.session = session
        self.chat = chat
        self._client = client
        self._transcripts = transcripts
        self._supervision = supervision
        self._timeout = model_timeout_sec
        self._executor: Optional["ToolExecutor"] = None

    def bind_executor(self, executor: "ToolExecutor") -> None:
        self._executor = executor

    async def handle_input(self, text: str, speaker: Optional[Speaker] = None) -> None:
        """Entry point for client input; waits for any turn already running."""
        async with self.session.turn_lock:
            await self.run_turn(text, speaker)

    async def run_turn(self, text: str, speaker: Optional[Speaker] = None) -> None:
        """Run one turn. Callers must already hold the session's turn lock.

        ``speaker`` records ``text`` in the transcript as user input; pass
        None for greetings, injected instructions, and follow-ups.
        """
        session = self.session
        if session.paused:
            logger.debug("Session paused; dropping input")
            return

        if speaker is not None and text.strip():
            session.append_turn(speaker, text.strip())
            await self._transcripts.persist(session)

        accumulator = TurnAccumulator()
        try:
            async with asyncio.timeout(self._timeout):
                async for chunk in self.chat.stream(text):
                    delta = accumulator.feed(chunk)
                    if delta:
                        await self._client.send("assistant_delta", delta=delta)
        except Exception:
            logger.exception("Model call failed")
            await self._client.error(MODEL_ERROR_MESSAGE)
            return

        if accumulator.thought_signature is not None:
            session.thought_signature = accumulator.thought_signature

        call = accumulator.function_call
        if call is not None and self._executor is not None:
            if accumulator.has_text:
                await self.commit_final(accumulator.text, supervised=False)
            await self._executor.dispatch(
                call,
                response_id=accumulator.response_id,
                had_text=accumulator.has_text,
            )
            return

        if call is not None:
            logger.warning("Function call '%s' requested but no tools are bound", call.name)
        if accumulator.has_text:
            await self.commit_final(accumulator.text, supervised=True)

    async def commit_final(self, text: str, supervised: bool = True) -> None:
        """Send, record, and persist an assistant utterance; optionally report it."""
        text = text.strip()
        if not text:
            return
        await self._client.send("assistant_final", text=text)
        self.session.append_turn(Speaker.ASSISTANT, text)
        await self._transcripts.persist(self.session)
        if supervised:
            self._supervision.report_turn(self.session, {"type": "assistant", "text": text})
