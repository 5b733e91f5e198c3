"""
Viewfinder: Survey models (questions, text choices, image choices).

Choices and images are embeddable content units.  Their vector lives on the
row itself together with ``embedding_generated_at``; both are reset to NULL
whenever the source label/description/image changes.
"""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.config import get_settings
from app.database import Base

_EMBEDDING_DIM = get_settings().EMBEDDING_DIM


class SurveyQuestion(Base):
    __tablename__ = "survey_questions"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_key: Mapped[str] = mapped_column(
        String, unique=True, nullable=False
    )
    question_order: Mapped[int] = mapped_column(Integer, nullable=False)
    question_title: Mapped[str] = mapped_column(Text, nullable=False)
    question_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    question_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="single_choice / multiple_choice / image_choice / textarea",
    )
    weight_category: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        comment="style_emotion / communication_psychology / purpose_story / companion",
    )
    base_weight: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, server_default="0"
    )
    is_hard_filter: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    choices: Mapped[list["SurveyChoice"]] = relationship(
        "SurveyChoice",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="SurveyChoice.choice_order",
    )
    images: Mapped[list["SurveyImage"]] = relationship(
        "SurveyImage",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="SurveyImage.image_order",
    )

    def __repr__(self) -> str:
        return (
            f"<SurveyQuestion {self.question_key!r} "
            f"type={self.question_type!r} category={self.weight_category!r}>"
        )


class SurveyChoice(Base):
    __tablename__ = "survey_choices"
    __table_args__ = (
        UniqueConstraint("question_id", "choice_key", name="uq_choice_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("survey_questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    choice_key: Mapped[str] = mapped_column(String, nullable=False)
    choice_label: Mapped[str] = mapped_column(Text, nullable=False)
    choice_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    choice_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    choice_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    question: Mapped["SurveyQuestion"] = relationship(
        "SurveyQuestion", back_populates="choices"
    )

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding model: label plus optional description."""
        parts = [self.choice_label or ""]
        if self.choice_description:
            parts.append(self.choice_description)
        return "\n".join(p.strip() for p in parts if p and p.strip())

    def __repr__(self) -> str:
        return f"<SurveyChoice {self.choice_key!r} q={self.question_id}>"


class SurveyImage(Base):
    __tablename__ = "survey_images"
    __table_args__ = (
        UniqueConstraint("question_id", "image_key", name="uq_image_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("survey_questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    image_key: Mapped[str] = mapped_column(String, nullable=False)
    image_label: Mapped[str] = mapped_column(Text, nullable=False)
    image_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str] = mapped_column(
        Text, nullable=False, comment="http(s) URL or gs:// URI"
    )
    image_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    image_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )
    embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    question: Mapped["SurveyQuestion"] = relationship(
        "SurveyQuestion", back_populates="images"
    )

    def __repr__(self) -> str:
        return f"<SurveyImage {self.image_key!r} q={self.question_id}>"
