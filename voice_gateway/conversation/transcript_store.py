"""
Transcript persistence against the conversations collection.

The stored document holds the rendered transcript as one string; every
commit overwrites it whole. Supervisor corrections arrive from outside
the connection and are appended inside a store transaction instead.
"""

import logging
import time
from typing import Any, Optional

from voice_gateway.schemas.session_schema import Session, Speaker, TurnRecord
from voice_gateway.services.store import DocumentStore

logger = logging.getLogger(__name__)


class TranscriptStore:
    def __init__(self, store: DocumentStore, collection: str) -> None:
        self._store = store
        self._collection = collection

    async def create(self, session: Session) -> None:
        """Write the initial conversation document. Raises on store failure."""
        await self._store.set(
            self._collection,
            session.conversation_id,
            {
                "botId": session.bot_id,
                "userId": session.user_id,
                "userName": session.user_name,
                "userEmail": session.user_email,
                "transcript": "",
                "turnCount": 0,
                "createdAt": time.time(),
                "updatedAt": time.time(),
            },
        )

    async def persist(self, session: Session) -> None:
        """Overwrite the stored transcript with the session's current one."""
        if not session.conversation_id:
            return
        try:
            await self._store.set(
                self._collection,
                session.conversation_id,
                {
                    "transcript": session.render_transcript(),
                    "turnCount": len(session.transcript),
                    "updatedAt": time.time(),
                },
                merge=True,
            )
        except Exception:
            logger.warning("Transcript persist failed for %s", session.conversation_id,
                           exc_info=True)

    async def append_supervisor_turn(self, session: Session, text: str) -> TurnRecord:
        """Append a supervisor line transactionally, then mirror it locally."""
        record = TurnRecord(speaker=Speaker.SUPERVISOR, text=text)

        def _append(doc: Optional[dict[str, Any]]) -> dict[str, Any]:
            doc = doc or {}
            existing = doc.get("transcript") or ""
            doc["transcript"] = f"{existing}\n{record.render()}" if existing else record.render()
            doc["turnCount"] = int(doc.get("turnCount") or 0) + 1
            doc["updatedAt"] = time.time()
            return doc

        await self._store.transact(self._collection, session.conversation_id, _append)
        session.transcript.append(record)
        return record
