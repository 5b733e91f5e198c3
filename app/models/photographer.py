"""
Viewfinder: Photographer and four-dimension PhotographerProfile models.

Each of the four profile descriptions is an independent content unit with its
own embedding column and ``*_embedding_generated_at`` stamp, so editing one
description invalidates only that dimension.
"""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.config import get_settings
from app.database import Base

_EMBEDDING_DIM = get_settings().EMBEDDING_DIM

# Matching dimensions in weight order.
DIMENSIONS: tuple[str, ...] = (
    "style_emotion",
    "communication_psychology",
    "purpose_story",
    "companion",
)


class Photographer(Base):
    __tablename__ = "photographers"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="pending",
        server_default="pending",
        comment="pending / approved / rejected",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    profile: Mapped["PhotographerProfile"] = relationship(
        "PhotographerProfile",
        back_populates="photographer",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Photographer {self.name!r} status={self.approval_status!r}>"


class PhotographerProfile(Base):
    __tablename__ = "photographer_profiles"

    photographer_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("photographers.id", ondelete="CASCADE"),
        primary_key=True,
    )

    # ── Dimension descriptions ─────────────────────────────────────
    style_emotion_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    communication_psychology_description: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    purpose_story_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    companion_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Dimension embeddings ───────────────────────────────────────
    style_emotion_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )
    communication_psychology_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )
    purpose_story_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )
    companion_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(_EMBEDDING_DIM), nullable=True
    )

    # ── Per-dimension staleness stamps ─────────────────────────────
    style_emotion_embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    communication_psychology_embedding_generated_at: Mapped[datetime | None] = (
        mapped_column(DateTime(timezone=True), nullable=True)
    )
    purpose_story_embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    companion_embedding_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Hard-filter attributes ─────────────────────────────────────
    service_regions: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default="{}"
    )
    price_min: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    price_max: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    companion_types: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list, server_default="{}"
    )
    profile_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    photographer: Mapped["Photographer"] = relationship(
        "Photographer", back_populates="profile"
    )

    # ── Dimension accessors ────────────────────────────────────────

    def description_for(self, dimension: str) -> str | None:
        return getattr(self, f"{dimension}_description")

    def embedding_for(self, dimension: str):
        return getattr(self, f"{dimension}_embedding")

    def generated_at_for(self, dimension: str) -> datetime | None:
        return getattr(self, f"{dimension}_embedding_generated_at")

    def has_current_embedding(self, dimension: str) -> bool:
        return (
            self.embedding_for(dimension) is not None
            and self.generated_at_for(dimension) is not None
        )

    def refresh_completion(self) -> bool:
        """Recompute ``profile_completed``: all four descriptions non-empty."""
        self.profile_completed = all(
            (self.description_for(d) or "").strip() for d in DIMENSIONS
        )
        return self.profile_completed

    def __repr__(self) -> str:
        return (
            f"<PhotographerProfile photographer={self.photographer_id} "
            f"completed={self.profile_completed}>"
        )
