import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from .announcer import EventAnnouncer, EventAudioPlayer
from .commands import dispatch
from .config import configure_logging, settings
from .controller import RoundController
from .events import event_store
from .leaderboard import CollectionLeaderboard
from .models import Question
from .questions import ensure_unique_ids, load_questions
from .roster import LobbyRoster
from .schemas import (
    AdminUpsertQuestionsIn,
    AnswerIn,
    BuzzIn,
    CommandIn,
    CreateSessionIn,
    JoinIn,
    PublicSessionOut,
    ResolveBuzzIn,
    SessionIn,
)
from .sessions import SessionRegistry
from .storage import upload_question_media as store_question_media
from .timers import AsyncioScheduler

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@lru_cache
def default_questions() -> List[Question]:
    return load_questions(settings.QUESTIONS_FILE, shuffle=False)


lobby = LobbyRoster(max_players=settings.MAX_LOBBY_PLAYERS, admin_ids=settings.admin_ids)
leaderboard = CollectionLeaderboard()
registry = SessionRegistry(
    settings,
    roster=lobby,
    leaderboard=leaderboard,
    scheduler=AsyncioScheduler(),
    announcer_factory=EventAnnouncer,
    audio_factory=EventAudioPlayer,
    question_source=lambda: list(default_questions()),
)

app = FastAPI(title="Game Show API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _public(c: RoundController) -> PublicSessionOut:
    s = c.session
    return PublicSessionOut(
        id=s.id,
        state=s.state,
        players=s.players,
        active_question_idx=s.active_question_index,
        total_questions=len(s.questions),
        buzz_locked_by=s.buzz.locked_by,
        question_deadline_ts=s.question_deadline_ts,
        started_at=s.started_at,
    )


def _existing(session_id: str) -> RoundController:
    c = registry.get(session_id)
    if c is None:
        raise HTTPException(404, "Session not found")
    return c


def _get_or_create(session_id: str) -> RoundController:
    try:
        return registry.get_or_create(session_id)
    except ValueError as exc:
        # broken default question bank
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/api/session/{session_id}/events")
async def list_events(
    session_id: str,
    after: int | None = None,
    limit: int = 200,
    types: Optional[List[str]] = Query(default=None),
):
    events = await event_store.list(session_id, after=after, limit=limit, types=types)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.post("/api/session", response_model=PublicSessionOut)
async def create_or_get_session(payload: CreateSessionIn):
    is_new = registry.get(payload.session_id) is None
    c = _get_or_create(payload.session_id)
    if is_new:
        await event_store.reset(c.session.id, reason="created")
    return _public(c)


@app.get("/api/session/{session_id}", response_model=PublicSessionOut)
async def get_session(session_id: str):
    return _public(_existing(session_id))


@app.post("/api/join")
async def join(payload: JoinIn):
    c = _get_or_create(payload.session_id)
    if c.running:
        raise HTTPException(status_code=400, detail="A round is already running")
    try:
        member = lobby.join(payload.session_id, payload.username)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await event_store.append(
        payload.session_id,
        {"type": "lobby_update", "members": [m.model_dump() for m in lobby.members(payload.session_id)]},
    )
    return {"player": member.model_dump()}


@app.post("/api/answer")
async def answer(payload: AnswerIn):
    c = _existing(payload.session_id)
    return {"accepted": c.submit_answer(payload.player_id, payload.text)}


@app.post("/api/buzz")
async def buzz(payload: BuzzIn):
    c = _existing(payload.session_id)
    return {"accepted": c.buzz(payload.player_id)}


@app.get("/api/leaderboard")
async def get_leaderboard(limit: int = 10):
    return {"leaderboard": [e.model_dump() for e in await leaderboard.top(limit)]}


@app.get("/api/admin/verify")
async def verify(_: None = Depends(require_admin)):
    return {"ok": True}


@app.post("/api/admin/questions")
async def upsert_questions(payload: AdminUpsertQuestionsIn, _: None = Depends(require_admin)):
    c = _get_or_create(payload.session_id)
    try:
        ensure_unique_ids(payload.questions)
        c.set_questions(payload.questions)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": True, "count": len(payload.questions)}


@app.post("/api/admin/question-media")
async def upload_question_media(
    session_id: str = Form(...),
    question_id: str = Form(...),
    file: UploadFile = File(...),
    _: None = Depends(require_admin),
):
    if not settings.AZURE_STORAGE_CONNECTION_STRING:
        raise HTTPException(status_code=500, detail="Media storage is not configured")

    data = await file.read()
    try:
        url = await store_question_media(session_id, question_id, file.filename, data, file.content_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Media upload for %s/%s failed", session_id, question_id)
        raise HTTPException(status_code=500, detail="Failed to upload media") from exc

    return {"url": url}


@app.post("/api/admin/command")
async def command(payload: CommandIn, _: None = Depends(require_admin)):
    c = _get_or_create(payload.session_id)
    try:
        handled = dispatch(c, payload.command)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": handled, "state": c.state}


@app.post("/api/admin/resolve-buzz")
async def resolve_buzz(payload: ResolveBuzzIn, _: None = Depends(require_admin)):
    c = _existing(payload.session_id)
    try:
        c.ensure_running()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": c.resolve_buzz(payload.correct), "state": c.state}


@app.post("/api/admin/next")
async def next_question(payload: SessionIn, _: None = Depends(require_admin)):
    c = _existing(payload.session_id)
    try:
        c.ensure_running()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ok": c.next_question(), "state": c.state}


@app.post("/api/admin/reset")
async def reset(payload: SessionIn, _: None = Depends(require_admin)):
    c = _get_or_create(payload.session_id)
    c.clear()
    lobby.clear(payload.session_id)

    # Reset the event log so clients drop derived state.
    await event_store.reset(payload.session_id)
    return {"ok": True}
