from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class QuestionKind(str, Enum):
    FREE_TEXT = "free_text"
    MULTIPLE_CHOICE = "multiple_choice"
    AUDIO = "audio"


# Headings shown above a question when it is displayed
QUESTION_KIND_LABELS = {
    QuestionKind.FREE_TEXT: "Free answer",
    QuestionKind.MULTIPLE_CHOICE: "Multiple choice",
    QuestionKind.AUDIO: "Blind test",
}


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str


class Question(BaseModel):
    # legacy question files use label/type/response
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    kind: QuestionKind = Field(
        default=QuestionKind.FREE_TEXT, validation_alias=AliasChoices("kind", "type")
    )
    prompt: str = Field(validation_alias=AliasChoices("prompt", "label"))
    hint: Optional[str] = None
    choices: List[Choice] = Field(default_factory=list)
    correct_answer: str = Field(validation_alias=AliasChoices("correct_answer", "response"))
    pattern: Optional[str] = None
    points: int = Field(default=1, ge=0)
    media: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value) if isinstance(value, int) else value

    @field_validator("prompt", "correct_answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid answer pattern: {exc}") from exc
        return value

    @model_validator(mode="after")
    def _check_kind(self) -> "Question":
        if self.kind == QuestionKind.MULTIPLE_CHOICE:
            if len(self.choices) < 2:
                raise ValueError("a multiple choice question needs at least two choices")
            accepted = {c.value.casefold() for c in self.choices} | {c.label.casefold() for c in self.choices}
            if self.correct_answer.casefold() not in accepted:
                raise ValueError("correct_answer must be one of the choices")
        if self.kind == QuestionKind.AUDIO and not self.media:
            raise ValueError("an audio question needs a media URI")
        return self

    def correct_choice(self) -> Optional[Choice]:
        wanted = self.correct_answer.casefold()
        for choice in self.choices:
            if wanted in (choice.value.casefold(), choice.label.casefold()):
                return choice
        return None


class Member(BaseModel):
    id: str
    display_name: str
    is_bot: bool = False


class Player(BaseModel):
    id: str
    display_name: str
    score: int = Field(default=0, ge=0)


class BuzzState(BaseModel):
    locked_by: Optional[str] = None
    already_buzzed: Set[str] = Field(default_factory=set)


class LeaderboardEntry(BaseModel):
    id: str
    username: str
    score: int = 0


# IDLE -> REGISTERING -> COUNTDOWN -> QUESTION_OPEN <-> QUESTION_LOCKED -> ANSWER_REVEALED
#   -> QUESTION_OPEN (next question) | ROUND_END
class RoundState(str, Enum):
    IDLE = "idle"
    REGISTERING = "registering"
    COUNTDOWN = "countdown"
    QUESTION_OPEN = "question_open"
    QUESTION_LOCKED = "question_locked"
    ANSWER_REVEALED = "answer_revealed"
    ROUND_END = "round_end"


class Session(BaseModel):
    id: str
    state: RoundState = RoundState.IDLE
    players: List[Player] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)
    active_question_index: int = 0
    buzz: BuzzState = Field(default_factory=BuzzState)
    countdown_remaining: int = 0
    question_deadline_ts: Optional[float] = None
    started_at: Optional[datetime] = None

    @property
    def active_question(self) -> Optional[Question]:
        if 0 <= self.active_question_index < len(self.questions):
            return self.questions[self.active_question_index]
        return None

    def player(self, player_id: str) -> Optional[Player]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None
