from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol, Sequence, Set

from .db import db
from .models import LeaderboardEntry
from .utils import drain, spawn

logger = logging.getLogger(__name__)


class Leaderboard(Protocol):
    def add_results(self, entries: Sequence[LeaderboardEntry]) -> None: ...


class CollectionLeaderboard:
    """Cross-round scores merged by player id into a document collection."""

    def __init__(self, collection=None):
        self.collection = collection if collection is not None else db.leaderboard
        self._pending: Set[asyncio.Task] = set()

    def add_results(self, entries: Sequence[LeaderboardEntry]) -> None:
        spawn(self.merge(list(entries)), self._pending, "leaderboard merge")

    async def merge(self, entries: Sequence[LeaderboardEntry]) -> None:
        for entry in entries:
            await self.collection.update_one(
                {"id": entry.id},
                {"$set": {"username": entry.username}, "$inc": {"score": entry.score, "rounds": 1}},
                upsert=True,
            )
        logger.info("Merged %d results into the leaderboard", len(entries))

    async def top(self, limit: int = 10) -> List[LeaderboardEntry]:
        cursor = self.collection.find({}).sort("score", -1).limit(limit)
        return [LeaderboardEntry(id=d["id"], username=d["username"], score=d["score"]) async for d in cursor]

    async def drain(self) -> None:
        await drain(self._pending)
