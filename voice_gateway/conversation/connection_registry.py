"""
Connection registry: the bridge from stateless HTTP handlers to live sessions.

Maps a conversation id to the two capabilities a live session exposes to
the outside: applying a supervisor correction and resuming with booking
data. Webhook and correction endpoints look sessions up here; everything
else about a session stays private to its connection handler.

Usage:
    registry = ConnectionRegistry()
    registry.register("conv-1", SessionHooks(apply_correction=..., resume_with_booking=...))
    hooks = registry.get("conv-1")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from voice_gateway.conversation.pause_coordinator import ResumeOutcome
    from voice_gateway.schemas.booking_schema import BookingEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHooks:
    """Capabilities one live session exposes to out-of-band requests."""
    apply_correction: Callable[[str], Awaitable[None]]
    resume_with_booking: Callable[["BookingEvent"], Awaitable["ResumeOutcome"]]


class ConnectionRegistry:
    """Thread-safe conversation id -> SessionHooks directory."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionHooks] = {}
        self._lock = threading.Lock()

    def register(self, conversation_id: str, hooks: SessionHooks) -> None:
        with self._lock:
            replaced = conversation_id in self._entries
            self._entries[conversation_id] = hooks
        if replaced:
            logger.warning("Replaced live session hooks for %s", conversation_id)
        else:
            logger.debug("Registered session %s", conversation_id)

    def get(self, conversation_id: str) -> Optional[SessionHooks]:
        with self._lock:
            return self._entries.get(conversation_id)

    def remove(self, conversation_id: str, hooks: Optional[SessionHooks] = None) -> bool:
        """Remove an entry. When ``hooks`` is given, only remove if it is still current."""
        with self._lock:
            current = self._entries.get(conversation_id)
            if current is None or (hooks is not None and current is not hooks):
                return False
            del self._entries[conversation_id]
        logger.debug("Removed session %s", conversation_id)
        return True

    def conversation_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            return conversation_id in self._entries
