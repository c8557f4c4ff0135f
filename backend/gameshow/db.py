"""In-memory document store exposing the slice of the async Mongo API the game uses.

Only what the event log and the leaderboard call is supported: ``$set`` and
``$inc`` updates (with upsert), equality/``$gt``/``$in`` filters, and
``find(...).sort(...).limit(...)`` consumed with ``async for``.
"""
from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

Document = Dict[str, Any]

_QUERY_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": lambda actual, bound: actual is not None and actual > bound,
    "$in": lambda actual, options: actual in options,
}


def matches(doc: Document, query: Document) -> bool:
    for key, expected in query.items():
        actual = doc.get(key)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op not in _QUERY_OPERATORS:
                    raise ValueError(f"Unsupported query operator: {op}")
                if not _QUERY_OPERATORS[op](actual, operand):
                    return False
        elif actual != expected:
            return False
    return True


def apply_update(doc: Document, update: Document) -> Document:
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$inc":
            for key, step in fields.items():
                doc[key] = doc.get(key, 0) + step
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


class Cursor:
    def __init__(self, docs: List[Document]):
        self._docs = docs
        self._sort: Optional[Tuple[str, int]] = None
        self._limit: Optional[int] = None

    def sort(self, key: str, direction: int) -> "Cursor":
        self._sort = (key, direction)
        return self

    def limit(self, limit: int) -> "Cursor":
        self._limit = limit
        return self

    async def __aiter__(self):
        docs = self._docs
        if self._sort is not None:
            key, direction = self._sort
            # stable: equal keys keep insertion order
            docs = sorted(docs, key=lambda d: d.get(key), reverse=direction < 0)
        for doc in docs[: self._limit]:
            yield doc


class Collection:
    def __init__(self):
        self._docs: List[Document] = []
        self._lock = asyncio.Lock()

    def find(self, query: Optional[Document] = None) -> Cursor:
        # snapshot now; in-memory reads never suspend
        return Cursor([copy.deepcopy(d) for d in self._docs if matches(d, query or {})])

    async def insert_one(self, document: Document) -> None:
        async with self._lock:
            self._docs.append(copy.deepcopy(document))

    async def delete_many(self, query: Document) -> None:
        async with self._lock:
            self._docs = [d for d in self._docs if not matches(d, query)]

    async def update_one(self, query: Document, update: Document, upsert: bool = False) -> None:
        async with self._lock:
            self._modify(query, update, upsert)

    async def find_one_and_update(
        self,
        query: Document,
        update: Document,
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Document]:
        async with self._lock:
            before, after = self._modify(query, update, upsert)
        chosen = after if return_document == ReturnDocument.AFTER else before
        return copy.deepcopy(chosen)

    def _modify(self, query: Document, update: Document, upsert: bool) -> Tuple[Optional[Document], Optional[Document]]:
        for idx, doc in enumerate(self._docs):
            if matches(doc, query):
                self._docs[idx] = apply_update(copy.deepcopy(doc), update)
                return doc, self._docs[idx]
        if not upsert:
            return None, None
        created = apply_update(copy.deepcopy(query), update)
        self._docs.append(created)
        return None, created


class Database:
    def __init__(self):
        self.leaderboard = Collection()
        self.session_event_counters = Collection()
        self.session_events = Collection()


db: Any = Database()
