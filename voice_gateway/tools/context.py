"""Per-invocation context handed to tool handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from voice_gateway.services.llm import FunctionCall

if TYPE_CHECKING:
    from voice_gateway.conversation.client_channel import ClientChannel
    from voice_gateway.conversation.pause_coordinator import PauseCoordinator
    from voice_gateway.schemas.session_schema import Session
    from voice_gateway.services.store import DocumentStore
    from voice_gateway.services.webhooks import WebhookPoster


@dataclass
class ToolContext:
    """Session collaborators a handler may use for its side effect."""
    session: "Session"
    client: "ClientChannel"
    store: "DocumentStore"
    webhooks: "WebhookPoster"
    pause: "PauseCoordinator"
    call: FunctionCall
    response_id: Optional[str] = None
    idempotency_key: Optional[str] = None
