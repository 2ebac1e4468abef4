"""
Supervision & correction channel.

Outbound, each committed assistant turn of a supervised bot is posted to
the reviewer endpoint in the background. Inbound, a reviewer's correction
is written into the transcript and turned into an instruction that the
live model acts on in its next turn. Turns produced while a correction is
being applied are not reported back, so a correction never reviews itself.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from voice_gateway.prompts.prompt_templates import build_correction_prompt
from voice_gateway.schemas.session_schema import Session, Speaker
from voice_gateway.services.webhooks import WebhookPoster

if TYPE_CHECKING:
    from voice_gateway.conversation.dialogue_engine import DialogueEngine
    from voice_gateway.conversation.transcript_store import TranscriptStore
    from voice_gateway.services.llm import ChatSession

logger = logging.getLogger(__name__)


def _session_payload(session: Session) -> dict[str, Any]:
    return {
        "conversationId": session.conversation_id,
        "botId": session.bot_id,
        "userId": session.user_id,
        "transcript": session.render_transcript(),
        "turns": [turn.model_dump(mode="json") for turn in session.transcript],
    }


class SupervisionChannel:
    """Best-effort reporting of turns and finished conversations."""

    def __init__(
        self,
        webhooks: WebhookPoster,
        supervision_url: Optional[str],
        transcript_report_url: Optional[str] = None,
    ) -> None:
        self._webhooks = webhooks
        self._supervision_url = supervision_url
        self._transcript_report_url = transcript_report_url

    def report_turn(self, session: Session, turn: dict[str, Any]) -> bool:
        """Queue a review of the latest turn. Returns True if a report was sent."""
        if not session.supervised or not self._supervision_url:
            return False
        if session.mid_correction:
            logger.debug("Skipping supervision report for corrective turn")
            return False
        payload = _session_payload(session)
        payload["turn"] = turn
        self._webhooks.fire_and_forget(self._supervision_url, payload, "supervision report")
        return True

    def report_conversation_end(self, session: Session) -> None:
        if not session.conversation_id:
            return
        self._webhooks.fire_and_forget(
            self._transcript_report_url, _session_payload(session), "transcript report"
        )


def last_turn_used_tool(session: Session) -> bool:
    """True if a tool ran after the most recent user input."""
    for turn in reversed(session.transcript):
        if turn.speaker == Speaker.TOOL_EXECUTION:
            return True
        if turn.speaker in (Speaker.USER_VOICE, Speaker.USER_TEXT):
            return False
    return False


class CorrectionHandler:
    """Applies a reviewer's correction to one live session."""

    def __init__(
        self,
        session: Session,
        engine: "DialogueEngine",
        chat: "ChatSession",
        transcripts: "TranscriptStore",
    ) -> None:
        self._session = session
        self._engine = engine
        self._chat = chat
        self._transcripts = transcripts

    async def apply(self, correction: str) -> None:
        session = self._session
        async with session.turn_lock:
            tool_misfire = last_turn_used_tool(session)
            await self._transcripts.append_supervisor_turn(session, correction)
            logger.info(
                "Applying correction to %s (tool misfire: %s)",
                session.conversation_id, tool_misfire,
            )
            session.mid_correction = True
            try:
                self._chat.inject(build_correction_prompt(correction, tool_misfire))
                await self._engine.run_turn("")
            finally:
                session.mid_correction = False
