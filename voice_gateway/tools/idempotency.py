"""
Duplicate suppression for tools that call external systems.

Before an external call, the executor claims a key derived from the
conversation, bot, model response, and function call identifiers. The
claim is a transactional create-if-absent against the document store, so
a replayed call finds the key and short-circuits with the stored result.
"""

import logging
import time
from typing import Any, Optional

from voice_gateway.schemas.session_schema import Session
from voice_gateway.services.llm import FunctionCall
from voice_gateway.services.store import DocumentStore
from voice_gateway.tools.registry import ToolResult
from voice_gateway.utils import canonical_json, parse_tool_args, stable_hash

logger = logging.getLogger(__name__)


def idempotency_key(session: Session, response_id: Optional[str], call: FunctionCall) -> str:
    """Derive the dedupe key for one external side effect.

    Falls back to the canonical arguments when the model omits a call id.
    """
    call_part = call.call_id or f"{call.name}:{canonical_json(parse_tool_args(call.args))}"
    return stable_hash(session.conversation_id, session.bot_id, response_id, call_part)


class IdempotencyGuard:
    """Claims and records external executions in the store."""

    def __init__(self, store: DocumentStore, collection: str) -> None:
        self._store = store
        self._collection = collection

    async def claim(self, key: str, tool_name: str) -> Optional[ToolResult]:
        """Claim ``key`` for execution.

        Returns None when the caller should proceed, or a duplicate-suppressed
        result when the key was already claimed. A failed guard write does
        not block the action.
        """
        try:
            created = await self._store.create_if_absent(
                self._collection,
                key,
                {"toolName": tool_name, "status": "pending", "createdAt": time.time()},
            )
        except Exception:
            logger.warning("Idempotency guard write failed for %s; proceeding", tool_name,
                           exc_info=True)
            return None

        if created:
            return None

        logger.info("Duplicate %s execution suppressed (key=%s)", tool_name, key[:12])
        previous = await self._previous_payload(key)
        return ToolResult.success(duplicate=True, message="duplicate suppressed", **previous)

    async def record(self, key: str, result: ToolResult) -> None:
        try:
            await self._store.set(
                self._collection,
                key,
                {"status": result.status.value, "result": result.payload},
                merge=True,
            )
        except Exception:
            logger.warning("Failed to record tool result for key %s", key[:12], exc_info=True)

    async def _previous_payload(self, key: str) -> dict[str, Any]:
        try:
            doc = await self._store.get(self._collection, key)
        except Exception:
            logger.warning("Failed to read prior tool result for key %s", key[:12], exc_info=True)
            return {}
        result = (doc or {}).get("result") or {}
        return {k: v for k, v in result.items() if k not in ("duplicate", "message")}
