from __future__ import annotations

import logging
import random
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .announcer import Announcer, AudioPlayer
from .errors import NoPlayersError, NoQuestionsError, RoundInProgressError, RoundNotStartedError
from .leaderboard import Leaderboard
from .models import (
    QUESTION_KIND_LABELS,
    BuzzState,
    LeaderboardEntry,
    Player,
    Question,
    QuestionKind,
    RoundState,
    Session,
)
from .roster import Roster, eligible
from .timers import ResponseTimer, Scheduler, TimerHandle
from .utils import now_ts, sort_leaderboard

logger = logging.getLogger(__name__)


COUNTDOWN_SECONDS = 3
QUESTION_SECONDS = 20.0
AUDIO_QUESTION_SECONDS = 40.0
REVEAL_SECONDS = 5.0

# States in which a round is under way and the roster is frozen
RUNNING_STATES = (
    RoundState.COUNTDOWN,
    RoundState.QUESTION_OPEN,
    RoundState.QUESTION_LOCKED,
    RoundState.ANSWER_REVEALED,
)


def answer_matches(question: Question, text: str) -> bool:
    """Case-insensitive match of a typed answer against a question."""
    text = text.strip()
    if not text:
        return False

    expected = question.correct_answer
    if question.kind == QuestionKind.MULTIPLE_CHOICE:
        choice = question.correct_choice()
        if choice is not None:
            if text.casefold() == choice.label.casefold():
                return True
            expected = choice.value

    if question.pattern:
        return re.search(question.pattern, text, re.IGNORECASE) is not None
    return expected.casefold() in text.casefold()


class RoundController:
    """Runs one game session: registration, countdown, questions, buzzer and results.

    Every method runs to completion synchronously. Timers come from the injected
    scheduler; display, roster, audio and leaderboard work goes to collaborators
    whose failures are logged without interrupting the round.
    """

    def __init__(
        self,
        session_id: str,
        *,
        roster: Roster,
        announcer: Announcer,
        leaderboard: Leaderboard,
        scheduler: Scheduler,
        audio: Optional[AudioPlayer] = None,
        questions: Iterable[Question] = (),
        admin_ids: Iterable[str] = (),
        countdown_seconds: int = COUNTDOWN_SECONDS,
        question_seconds: float = QUESTION_SECONDS,
        audio_question_seconds: float = AUDIO_QUESTION_SECONDS,
        reveal_seconds: float = REVEAL_SECONDS,
        shuffle: bool = False,
        test_audio_uri: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = Session(id=session_id, questions=list(questions))
        self._roster = roster
        self._announcer = announcer
        self._leaderboard = leaderboard
        self._scheduler = scheduler
        self._audio = audio
        self._admin_ids = list(admin_ids)
        self._countdown_seconds = countdown_seconds
        self._question_seconds = question_seconds
        self._audio_question_seconds = audio_question_seconds
        self._reveal_seconds = reveal_seconds
        self._shuffle = shuffle
        self._test_audio_uri = test_audio_uri
        self._rng = rng or random.Random()

        self._response_timer = ResponseTimer(scheduler, self._on_response_timeout)
        self._countdown_handle: Optional[TimerHandle] = None
        self._reveal_handle: Optional[TimerHandle] = None

    # ----------------------------------------------------------------- state

    @property
    def state(self) -> RoundState:
        return self.session.state

    @property
    def running(self) -> bool:
        return self.session.state in RUNNING_STATES

    def remaining_time(self) -> float:
        return self._response_timer.remaining()

    def ensure_running(self) -> None:
        if not self.running:
            raise RoundNotStartedError()

    def set_questions(self, questions: Sequence[Question]) -> None:
        if self.running:
            raise RoundInProgressError()
        self.session.questions = list(questions)
        self.session.active_question_index = 0

    # ----------------------------------------------------------- admin flow

    def _snapshot_players(self) -> List[Player]:
        players: List[Player] = []
        seen = set()
        for member in eligible(self._roster.list_eligible_members(self.session.id), self._admin_ids):
            if member.id in seen:
                continue
            seen.add(member.id)
            players.append(Player(id=member.id, display_name=member.display_name))
        return players

    def register(self) -> List[Player]:
        if self.running:
            raise RoundInProgressError()

        players = self._snapshot_players()
        self.session.players = players
        self.session.state = RoundState.REGISTERING
        for p in players:
            self._announce("display_message", f"{p.display_name} registered")
        logger.info("Session %s: %d players registered", self.session.id, len(players))
        return players

    def start(self) -> None:
        s = self.session
        if self.running:
            raise RoundInProgressError()
        if not s.questions:
            raise NoQuestionsError()

        if s.state == RoundState.REGISTERING and s.players:
            players = s.players
        else:
            players = self._snapshot_players()
        if not players:
            raise NoPlayersError()

        self._cancel_timers()
        for p in players:
            p.score = 0
        s.players = players
        s.state = RoundState.REGISTERING
        if self._shuffle:
            self._rng.shuffle(s.questions)
        s.active_question_index = 0
        s.buzz = BuzzState()
        s.started_at = datetime.now(timezone.utc)

        logger.info(
            "Session %s: round starting with %d players and %d questions",
            s.id, len(players), len(s.questions),
        )
        self._announce("display_message", "The round is about to start!")
        self.countdown(self._countdown_seconds)

    def countdown(self, seconds: int) -> None:
        self.session.state = RoundState.COUNTDOWN
        self.session.countdown_remaining = int(seconds)
        self._tick_countdown()

    def _tick_countdown(self) -> None:
        self._countdown_handle = None
        if self.session.state != RoundState.COUNTDOWN:
            return

        remaining = self.session.countdown_remaining
        if remaining <= 0:
            self.open_question()
            return

        self._announce("display_message", f"The round starts in {remaining}!")
        self.session.countdown_remaining = remaining - 1
        self._countdown_handle = self._scheduler.call_later(1.0, self._tick_countdown)

    def clear(self) -> None:
        self._cancel_timers()
        self.session = Session(id=self.session.id, questions=self.session.questions)
        logger.info("Session %s cleared", self.session.id)
        self._announce("display_message", "The game has been cleared")

    def join_voice(self) -> None:
        if self._audio is None:
            logger.warning("Session %s: no audio player configured", self.session.id)
            return
        try:
            self._audio.connect()
        except Exception:
            logger.exception("Session %s: audio connect failed", self.session.id)

    def play_test_audio(self) -> None:
        if not self._test_audio_uri:
            logger.warning("Session %s: no test audio configured", self.session.id)
            return
        self._play(self._test_audio_uri)

    # ------------------------------------------------------------- questions

    def open_question(self) -> bool:
        s = self.session
        if s.state not in (RoundState.COUNTDOWN, RoundState.ANSWER_REVEALED):
            return False

        q = s.active_question
        if q is None:
            self.end()
            return False

        self._cancel_timers()
        s.buzz = BuzzState()
        s.state = RoundState.QUESTION_OPEN

        duration = self._audio_question_seconds if q.kind == QuestionKind.AUDIO else self._question_seconds
        self._response_timer.start(duration)
        s.question_deadline_ts = now_ts() + duration

        logger.info("Session %s: question %d/%d open", s.id, s.active_question_index + 1, len(s.questions))
        self._announce("display_question", self._question_payload(q, duration))
        if q.kind == QuestionKind.AUDIO and q.media:
            self._play(q.media)
        return True

    def submit_answer(self, player_id: str, text: str) -> bool:
        s = self.session
        if s.state != RoundState.QUESTION_OPEN:
            logger.debug("Session %s: answer from %s outside the response window", s.id, player_id)
            return False

        player = s.player(player_id)
        q = s.active_question
        if player is None or q is None:
            return False
        if not answer_matches(q, text):
            return False

        self._award(player, q.points)
        self.end_question(winner_id=player.id)
        return True

    def buzz(self, player_id: str) -> bool:
        s = self.session
        if s.state != RoundState.QUESTION_OPEN or s.player(player_id) is None:
            return False
        if s.buzz.locked_by is not None or player_id in s.buzz.already_buzzed:
            logger.debug("Session %s: buzz from %s rejected", s.id, player_id)
            return False
        if self._response_timer.remaining() <= 0:
            return False

        s.buzz.locked_by = player_id
        s.buzz.already_buzzed.add(player_id)
        self._response_timer.pause()
        s.question_deadline_ts = None
        s.state = RoundState.QUESTION_LOCKED

        self._announce("display_message", f"{s.player(player_id).display_name} buzzed!")
        return True

    def resolve_buzz(self, correct: bool) -> bool:
        s = self.session
        if s.state != RoundState.QUESTION_LOCKED or s.buzz.locked_by is None:
            return False

        holder = s.player(s.buzz.locked_by)
        if correct:
            self._award(holder, s.active_question.points)
            self.end_question(winner_id=holder.id)
            return True

        s.buzz.locked_by = None
        self._announce("display_message", f"Wrong answer from {holder.display_name}")
        if all(p.id in s.buzz.already_buzzed for p in s.players):
            self.end_question()
            return True

        s.state = RoundState.QUESTION_OPEN
        s.question_deadline_ts = now_ts() + self._response_timer.remaining()
        self._response_timer.resume()
        return True

    def end_question(self, winner_id: Optional[str] = None) -> bool:
        s = self.session
        if s.state not in (RoundState.QUESTION_OPEN, RoundState.QUESTION_LOCKED):
            return False

        # timer and acceptance close together
        self._cancel_timers()
        s.state = RoundState.ANSWER_REVEALED
        s.buzz.locked_by = None
        s.question_deadline_ts = None

        q = s.active_question
        winner = s.player(winner_id) if winner_id else None
        self._announce(
            "display_answer",
            {
                "question_id": q.id,
                "question_index": s.active_question_index,
                "correct_answer": q.correct_answer,
                "winner_id": winner.id if winner else None,
                "winner_name": winner.display_name if winner else None,
                "awarded": q.points if winner else 0,
                "scores": [p.model_dump() for p in s.players],
            },
        )
        self._reveal_handle = self._scheduler.call_later(self._reveal_seconds, self._on_reveal_elapsed)
        return True

    def next_question(self) -> bool:
        s = self.session
        if s.state not in (RoundState.QUESTION_OPEN, RoundState.QUESTION_LOCKED, RoundState.ANSWER_REVEALED):
            return False

        self._cancel_timers()
        if s.active_question_index + 1 < len(s.questions):
            s.active_question_index += 1
            s.buzz = BuzzState()
            # a skipped question closes without a reveal
            s.state = RoundState.ANSWER_REVEALED
            return self.open_question()

        self.end()
        return True

    def end(self) -> List[LeaderboardEntry]:
        s = self.session
        if s.state not in RUNNING_STATES:
            return []

        self._cancel_timers()
        s.state = RoundState.ROUND_END
        s.question_deadline_ts = None

        ranking = sort_leaderboard([p.model_dump() for p in s.players])
        logger.info("Session %s: round over", s.id)
        self._announce("display_results", {"leaderboard": ranking})

        entries = [LeaderboardEntry(id=p.id, username=p.display_name, score=p.score) for p in s.players]
        try:
            self._leaderboard.add_results(entries)
        except Exception:
            logger.exception("Session %s: leaderboard update failed", s.id)
        return entries

    # -------------------------------------------------------------- internals

    def _on_response_timeout(self) -> None:
        if self.session.state != RoundState.QUESTION_OPEN:
            return
        self._announce("display_message", "Time's up!")
        self.end_question()

    def _on_reveal_elapsed(self) -> None:
        self._reveal_handle = None
        self.next_question()

    def _cancel_timers(self) -> None:
        self._response_timer.cancel()
        for handle in (self._countdown_handle, self._reveal_handle):
            if handle is not None:
                handle.cancel()
        self._countdown_handle = None
        self._reveal_handle = None

    def _award(self, player: Player, points: int) -> None:
        if points > 0:
            player.score += points
            logger.info("Session %s: %s +%d (%d)", self.session.id, player.id, points, player.score)

    def _question_payload(self, q: Question, duration: float) -> Dict[str, Any]:
        return {
            "question_id": q.id,
            "question_index": self.session.active_question_index,
            "total_questions": len(self.session.questions),
            "kind": q.kind.value,
            "kind_label": QUESTION_KIND_LABELS[q.kind],
            "prompt": q.prompt,
            "hint": q.hint,
            "choices": [c.model_dump() for c in q.choices],
            "points": q.points,
            "media": q.media,
            "duration": duration,
        }

    def _announce(self, method: str, *args: Any) -> None:
        try:
            getattr(self._announcer, method)(*args)
        except Exception:
            logger.exception("Session %s: announcer %s failed", self.session.id, method)

    def _play(self, uri: str) -> None:
        if self._audio is None:
            return
        try:
            self._audio.play(uri)
        except Exception:
            logger.exception("Session %s: playback of %s failed", self.session.id, uri)
