from __future__ import annotations

from typing import Any, Iterable, List, Optional

from pymongo import ReturnDocument

from .db import db
from .utils import now_ts


class EventStore:
    """Ordered per-session event log that clients poll over HTTP."""

    counters_collection = db.session_event_counters
    events_collection = db.session_events

    async def _next_seq(self, session_id: str) -> int:
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": session_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter_doc["seq"])

    async def append(self, session_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a session and return its sequence number."""

        seq = await self._next_seq(session_id)
        await self.events_collection.insert_one(
            {
                "session_id": session_id,
                "seq": seq,
                "type": payload.get("type"),
                "timestamp": now_ts(),
                "payload": payload,
            }
        )
        return seq

    async def list(
        self,
        session_id: str,
        after: int | None = None,
        limit: int = 200,
        types: Optional[Iterable[str]] = None,
    ) -> List[dict[str, Any]]:
        """Return events for a session that occur after the given sequence."""

        query: dict[str, Any] = {"session_id": session_id}
        if after is not None:
            query["seq"] = {"$gt": after}
        if types:
            query["type"] = {"$in": list(types)}

        cursor = self.events_collection.find(query).sort("seq", 1).limit(limit)

        return [
            {
                "seq": doc["seq"],
                "timestamp": doc.get("timestamp"),
                "payload": doc.get("payload", {}),
            }
            async for doc in cursor
        ]

    async def reset(self, session_id: str, reason: str = "reset") -> None:
        """Clear stored events for a session and emit a reset marker.

        The counter is kept so sequence numbers keep increasing and long-polling
        clients know to discard any state derived from the previous round.
        """

        await self.events_collection.delete_many({"session_id": session_id})
        await self.append(session_id, {"type": "session_reset", "reason": reason})


event_store = EventStore()
