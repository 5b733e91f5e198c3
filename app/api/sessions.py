"""
Viewfinder: Quiz Session API

Serves the active quiz and records a client's answers as a matching
session.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.matching import MatchingSession
from app.models.survey import SurveyQuestion
from app.schemas.session import QuestionOut, SessionCreate, SessionResponse
from app.services.embedding_store import EmbeddingStore
from app.services.session_service import SessionService

logger = structlog.get_logger("viewfinder.api.sessions")

router = APIRouter()

_session_service: SessionService | None = None


def _get_session_service() -> SessionService:
    global _session_service
    if _session_service is None:
        _session_service = SessionService()
    return _session_service


@router.get(
    "/questions",
    response_model=list[QuestionOut],
    summary="List the active quiz questions",
)
async def list_questions(
    db: AsyncSession = Depends(get_db),
) -> list[QuestionOut]:
    questions = await EmbeddingStore().load_active_questions(db)
    return [_question_out(q) for q in questions]


def _question_out(question: SurveyQuestion) -> QuestionOut:
    out = QuestionOut.model_validate(question)
    active_choices = {c.id for c in question.choices if c.is_active}
    active_images = {i.id for i in question.images if i.is_active}
    out.choices = [c for c in out.choices if c.id in active_choices]
    out.images = [i for i in out.images if i.id in active_images]
    return out


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit quiz answers",
)
async def create_session(
    payload: SessionCreate,
    db: AsyncSession = Depends(get_db),
) -> MatchingSession:
    """Validate and store a client's answers.

    Selections may reference options by id or key; they are stored as keys.
    Free-text answers are embedded immediately.
    """
    session = await _get_session_service().create_session(payload.responses, db)
    logger.info("session_created", session_id=str(session.id))
    return session
