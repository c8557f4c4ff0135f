from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, List, Optional

from pydantic import TypeAdapter, ValidationError

from .errors import QuestionBankError
from .models import Question

logger = logging.getLogger(__name__)

_bank_adapter = TypeAdapter(List[Question])


def parse_questions(raw: Any) -> List[Question]:
    """Validate a decoded question bank.

    Accepts either a list of questions or ``{"questions": [...]}``. Every
    problem is reported here so that a broken bank never surfaces mid-round.
    """
    if isinstance(raw, dict) and "questions" in raw:
        raw = raw["questions"]

    try:
        questions = _bank_adapter.validate_python(raw)
    except ValidationError as exc:
        raise QuestionBankError(f"Invalid question bank: {exc}") from exc

    ensure_unique_ids(questions)
    return questions


def ensure_unique_ids(questions: List[Question]) -> None:
    seen = set()
    for q in questions:
        if q.id in seen:
            raise QuestionBankError(f"Duplicate question id: {q.id}")
        seen.add(q.id)


def load_questions(path: str | Path, shuffle: bool = False, rng: Optional[random.Random] = None) -> List[Question]:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise QuestionBankError(f"Question bank not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise QuestionBankError(f"Question bank {path} is not valid JSON: {exc}") from exc

    questions = parse_questions(raw)
    if shuffle:
        (rng or random).shuffle(questions)

    logger.info("Loaded %d questions from %s", len(questions), path)
    return questions
