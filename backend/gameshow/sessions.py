from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional

from .announcer import Announcer, AudioPlayer
from .config import Settings
from .controller import RoundController
from .leaderboard import Leaderboard
from .models import Question
from .roster import Roster
from .timers import Scheduler

logger = logging.getLogger(__name__)


class SessionRegistry:
    """One round controller per channel; controllers never share state."""

    def __init__(
        self,
        settings: Settings,
        *,
        roster: Roster,
        leaderboard: Leaderboard,
        scheduler: Scheduler,
        announcer_factory: Callable[[str], Announcer],
        audio_factory: Optional[Callable[[str], AudioPlayer]] = None,
        question_source: Optional[Callable[[], List[Question]]] = None,
    ):
        self.settings = settings
        self._roster = roster
        self._leaderboard = leaderboard
        self._scheduler = scheduler
        self._announcer_factory = announcer_factory
        self._audio_factory = audio_factory
        self._question_source = question_source
        self._sessions: Dict[str, RoundController] = {}

    def get(self, session_id: str) -> Optional[RoundController]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> RoundController:
        controller = self._sessions.get(session_id)
        if controller is None:
            controller = self._create(session_id)
            self._sessions[session_id] = controller
        return controller

    def discard(self, session_id: str) -> None:
        controller = self._sessions.pop(session_id, None)
        if controller is not None:
            controller.clear()

    def __iter__(self) -> Iterator[RoundController]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def _create(self, session_id: str) -> RoundController:
        s = self.settings
        questions = self._question_source() if self._question_source else []
        logger.info("Creating session %s with %d questions", session_id, len(questions))
        return RoundController(
            session_id,
            roster=self._roster,
            announcer=self._announcer_factory(session_id),
            leaderboard=self._leaderboard,
            scheduler=self._scheduler,
            audio=self._audio_factory(session_id) if self._audio_factory else None,
            questions=questions,
            admin_ids=s.admin_ids,
            countdown_seconds=s.COUNTDOWN_SECONDS,
            question_seconds=s.QUESTION_SECONDS,
            audio_question_seconds=s.AUDIO_QUESTION_SECONDS,
            reveal_seconds=s.REVEAL_SECONDS,
            shuffle=s.SHUFFLE_QUESTIONS,
            test_audio_uri=s.TEST_AUDIO_URI,
        )
