"""
Pause/resume coordinator for human-driven flows outside the chat.

While the booking widget is open the session is paused and the engine
drops all input. Two producers can end the pause: the scheduling
webhook (routed here through the connection registry) and the client's
own ``user_action_completed`` message. Both go through ``try_resume``,
the single state transition, so the user hears exactly one confirmation
whichever arrives first. The webhook has priority: a client completion
that finds the session already active is ignored.

States:
    active --pause()--> paused --try_resume()--> active
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from voice_gateway.config import DedupeConfig
from voice_gateway.prompts.prompt_templates import (
    build_booking_abandoned_prompt,
    build_booking_confirmed_prompt,
)
from voice_gateway.schemas.booking_schema import BookingEvent
from voice_gateway.schemas.session_schema import Session
from voice_gateway.services.llm import ChatSession
from voice_gateway.services.store import DocumentStore
from voice_gateway.utils import parse_iso_datetime

if TYPE_CHECKING:
    from voice_gateway.conversation.client_channel import ClientChannel
    from voice_gateway.conversation.dialogue_engine import DialogueEngine

logger = logging.getLogger(__name__)


class ResumeOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass
class AnnouncedBooking:
    """A booking the user has already been told about."""
    booking_id: Optional[str]
    start: Optional[datetime]
    announced_at: float


class PauseCoordinator:
    """Owns the paused flag and booking dedupe for one session."""

    def __init__(
        self,
        session: Session,
        engine: "DialogueEngine",
        client: "ClientChannel",
        chat: ChatSession,
        store: DocumentStore,
        pending_collection: str,
        dedupe: DedupeConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._engine = engine
        self._client = client
        self._chat = chat
        self._store = store
        self._pending_collection = pending_collection
        self._dedupe = dedupe
        self._clock = clock

    @property
    def paused(self) -> bool:
        return self._session.paused

    def pause(self, reason: str) -> None:
        if not self._session.paused:
            logger.info("Session %s paused: %s", self._session.conversation_id, reason)
        self._session.paused = True

    def is_duplicate(self, event: BookingEvent) -> bool:
        """Match against announced bookings by id, else by start time proximity."""
        start = parse_iso_datetime(event.start_time)
        now = self._clock()
        for announced in self._session.announced_bookings:
            if event.booking_id and announced.booking_id:
                if event.booking_id == announced.booking_id:
                    return True
                continue
            if start is None or announced.start is None:
                continue
            try:
                gap = abs((start - announced.start).total_seconds())
            except TypeError:
                # naive vs aware timestamps
                continue
            recent = now - announced.announced_at <= self._dedupe.booking_announce_window_sec
            if gap <= self._dedupe.booking_start_window_sec and recent:
                return True
        return False

    def try_resume(self, event: Optional[BookingEvent] = None) -> ResumeOutcome:
        """Clear the pause unless this resume has already been applied.

        With an event, dedupe is by booking identity; without one (the user
        abandoned the flow) only the paused flag decides.
        """
        session = self._session
        if event is not None:
            if self.is_duplicate(event):
                return ResumeOutcome.DUPLICATE
            session.announced_bookings.append(
                AnnouncedBooking(
                    booking_id=event.booking_id,
                    start=parse_iso_datetime(event.start_time),
                    announced_at=self._clock(),
                )
            )
        elif not session.paused:
            return ResumeOutcome.DUPLICATE
        session.paused = False
        return ResumeOutcome.APPLIED

    async def resume_with_booking(self, event: BookingEvent) -> ResumeOutcome:
        """Webhook path: announce a completed booking to the live session."""
        async with self._session.turn_lock:
            outcome = self.try_resume(event)
            if outcome == ResumeOutcome.DUPLICATE:
                logger.info("Duplicate booking event %s ignored", event.booking_id)
                return outcome
            await self._client.send("booking_completed", details=event.to_client())
            self._chat.inject(build_booking_confirmed_prompt(event))
            await self._engine.run_turn("")
            return outcome

    async def on_client_completed(self, details: Optional[dict[str, Any]]) -> ResumeOutcome:
        """Client path: fallback when the webhook has not resumed the session yet."""
        async with self._session.turn_lock:
            if not self._session.paused:
                logger.debug("Client completion ignored; session already resumed")
                return ResumeOutcome.DUPLICATE

            event = BookingEvent.from_client(details) if details else None
            if event is None or not (event.booking_id or event.start_time):
                event = await self.take_pending_booking()

            if event is not None and (event.booking_id or event.start_time):
                outcome = self.try_resume(event)
                if outcome == ResumeOutcome.DUPLICATE:
                    self._session.paused = False
                    return outcome
                self._chat.inject(build_booking_confirmed_prompt(event))
            else:
                outcome = self.try_resume(None)
                self._chat.inject(build_booking_abandoned_prompt())

            await self._engine.run_turn("")
            return outcome

    async def take_pending_booking(self) -> Optional[BookingEvent]:
        """Consume a booking the webhook staged while no live session was registered."""
        conversation_id = self._session.conversation_id
        if not conversation_id:
            return None
        try:
            doc = await self._store.get(self._pending_collection, conversation_id)
            if doc is None:
                return None
            await self._store.delete(self._pending_collection, conversation_id)
        except Exception:
            logger.warning("Could not read pending booking for %s", conversation_id, exc_info=True)
            return None
        return BookingEvent.model_validate(doc.get("event") or {})
