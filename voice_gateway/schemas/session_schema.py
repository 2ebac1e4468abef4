"""Bot configuration, transcript turns, and per-connection session state."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Speaker(str, Enum):
    USER_VOICE = "user_voice"
    USER_TEXT = "user_text"
    ASSISTANT = "assistant"
    SUPERVISOR = "supervisor"
    TOOL_EXECUTION = "tool_execution"


SPEAKER_LABELS: dict[Speaker, str] = {
    Speaker.USER_VOICE: "User (voice)",
    Speaker.USER_TEXT: "User (text)",
    Speaker.ASSISTANT: "Assistant",
    Speaker.SUPERVISOR: "Supervisor",
    Speaker.TOOL_EXECUTION: "Tool",
}


class TurnRecord(BaseModel):
    """A single committed entry in a conversation transcript."""

    speaker: Speaker
    text: str
    timestamp: float = Field(default_factory=time.time)

    def render(self) -> str:
        return f"{SPEAKER_LABELS[self.speaker]}: {self.text}"


class BotConfig(BaseModel):
    """Bot/persona document as stored in the bots collection.

    Field aliases match the stored document keys so a raw snapshot can be
    validated directly.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bot_id: str = ""
    persona: str = Field(default="", alias="Variable1")
    instructions: str = Field(default="", alias="Variable2")
    first_sentence: str = Field(default="", alias="Variable5")
    language: str = "es"
    tools: list[str] = Field(default_factory=list)
    calendar_url: Optional[str] = Field(default=None, alias="calendarUrl")
    supervision_enabled: bool = Field(default=False, alias="supervisionEnabled")
    order_webhook_url: Optional[str] = Field(default=None, alias="orderWebhookUrl")
    knowledge: list[dict[str, Any]] = Field(default_factory=list)
    sections: list[str] = Field(default_factory=list)


@dataclass
class Session:
    """
    Per-connection conversation state.

    Owned by the connection handler and passed explicitly to the engine,
    tool executor, pause coordinator, and supervision channel. Nothing
    outside one connection touches it except through the registry hooks.
    """
    conversation_id: Optional[str] = None
    bot: Optional[BotConfig] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    language_code: str = "es-ES"
    transcript: list[TurnRecord] = field(default_factory=list)
    paused: bool = False
    mid_correction: bool = False
    turn_tool_keys: set[str] = field(default_factory=set)
    last_final_transcript: Optional[str] = None
    thought_signature: Optional[bytes] = None
    announced_bookings: list[Any] = field(default_factory=list)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def bot_id(self) -> Optional[str]:
        return self.bot.bot_id if self.bot else None

    @property
    def supervised(self) -> bool:
        return bool(self.bot and self.bot.supervision_enabled)

    def append_turn(self, speaker: Speaker, text: str) -> TurnRecord:
        record = TurnRecord(speaker=speaker, text=text)
        self.transcript.append(record)
        return record

    def render_transcript(self) -> str:
        return "\n".join(turn.render() for turn in self.transcript)

    def last_speaker(self) -> Optional[Speaker]:
        return self.transcript[-1].speaker if self.transcript else None
