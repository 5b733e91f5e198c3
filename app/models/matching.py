"""
Viewfinder: MatchingSession (quiz attempt) and MatchingResult models.

Result rows are insert-only.  Every computation writes a fresh ``run_id`` so
the ranking a client saw at decision time stays auditable.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class MatchingSession(Base):
    __tablename__ = "matching_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_token: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    responses: Mapped[dict] = mapped_column(
        JSONB, nullable=False, comment="question_key -> choice id/key, list, or text"
    )
    text_embeddings: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="question_key -> vector for free-text answers"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    results: Mapped[list["MatchingResult"]] = relationship(
        "MatchingResult", back_populates="session", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<MatchingSession {self.id} completed={self.completed_at is not None}>"


class MatchingResult(Base):
    __tablename__ = "matching_results"
    __table_args__ = (
        Index("ix_matching_results_session_run", "session_id", "run_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("matching_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    run_id: Mapped[uuid.UUID] = mapped_column(PgUUID(as_uuid=True), nullable=False)
    photographer_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("photographers.id", ondelete="CASCADE"),
        nullable=False,
    )
    style_emotion_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    communication_psychology_score: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    purpose_story_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    companion_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_score: Mapped[float] = mapped_column(Float, nullable=False)
    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    session: Mapped["MatchingSession"] = relationship(
        "MatchingSession", back_populates="results"
    )
    photographer: Mapped["Photographer"] = relationship(
        "Photographer", lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"<MatchingResult session={self.session_id} rank={self.rank_position} "
            f"total={self.total_score:.2f}>"
        )
