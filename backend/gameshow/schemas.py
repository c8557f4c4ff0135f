from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional
from .models import Player, Question, RoundState


class CreateSessionIn(BaseModel):
    session_id: str


class JoinIn(BaseModel):
    session_id: str
    username: str


class AdminUpsertQuestionsIn(BaseModel):
    session_id: str
    questions: List[Question]


class CommandIn(BaseModel):
    session_id: str
    command: str


class SessionIn(BaseModel):
    session_id: str


class ResolveBuzzIn(BaseModel):
    session_id: str
    correct: bool


class AnswerIn(BaseModel):
    session_id: str
    player_id: str
    text: str


class BuzzIn(BaseModel):
    session_id: str
    player_id: str


class PublicSessionOut(BaseModel):
    id: str
    state: RoundState
    players: List[Player]
    active_question_idx: int
    total_questions: int
    buzz_locked_by: Optional[str] = None
    question_deadline_ts: Optional[float] = None
    started_at: Optional[datetime] = None
