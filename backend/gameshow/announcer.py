from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Protocol, Set

from .events import EventStore, event_store
from .utils import drain, spawn

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


class Announcer(Protocol):
    def display_question(self, payload: Payload) -> None: ...

    def display_answer(self, payload: Payload) -> None: ...

    def display_results(self, payload: Payload) -> None: ...

    def display_message(self, text: str) -> None: ...


class AudioPlayer(Protocol):
    def connect(self) -> None: ...

    def play(self, uri: str) -> None: ...


class EventAnnouncer:
    """Publishes display requests to the session event log.

    Each call returns immediately; the append runs as a background task.
    """

    def __init__(self, session_id: str, store: EventStore = event_store):
        self.session_id = session_id
        self._store = store
        self._pending: Set[asyncio.Task] = set()

    def _publish(self, payload: Payload) -> None:
        spawn(self._store.append(self.session_id, payload), self._pending, f"publish {payload['type']}")

    def display_question(self, payload: Payload) -> None:
        self._publish({"type": "question", **payload})

    def display_answer(self, payload: Payload) -> None:
        self._publish({"type": "answer", **payload})

    def display_results(self, payload: Payload) -> None:
        self._publish({"type": "results", **payload})

    def display_message(self, text: str) -> None:
        self._publish({"type": "message", "text": text})

    async def drain(self) -> None:
        await drain(self._pending)


class EventAudioPlayer:
    """Asks browser clients to play media through the event log."""

    def __init__(self, session_id: str, store: EventStore = event_store):
        self.session_id = session_id
        self._store = store
        self._pending: Set[asyncio.Task] = set()

    def connect(self) -> None:
        spawn(self._store.append(self.session_id, {"type": "audio_ready"}), self._pending, "audio connect")

    def play(self, uri: str) -> None:
        logger.info("Session %s: playing %s", self.session_id, uri)
        spawn(
            self._store.append(self.session_id, {"type": "play_audio", "uri": uri}),
            self._pending,
            f"play {uri}",
        )

    async def drain(self) -> None:
        await drain(self._pending)
