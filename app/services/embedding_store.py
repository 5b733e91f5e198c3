"""
Viewfinder: Embedding Store

Repository over the three kinds of embeddable content unit:

  * ``choice``            a survey choice (``survey_choices.choice_embedding``)
  * ``image``             a survey image (``survey_images.image_embedding``)
  * ``profile_dimension`` one of a photographer's four descriptions
                          (``photographer_profiles.<dimension>_embedding``)

Every unit carries an ``embedding_generated_at`` stamp.  A NULL stamp or a
NULL vector means the unit is pending and must never be scored.  The store
has no in-process cache: every read goes to the database so the staleness
flag written by editors is always the one matching sees.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import numpy as np
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.embedding_job import EmbeddingJob
from app.models.photographer import DIMENSIONS, Photographer, PhotographerProfile
from app.models.survey import SurveyChoice, SurveyImage, SurveyQuestion

logger = structlog.get_logger("viewfinder.embedding_store")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

UNIT_KINDS: tuple[str, ...] = ("choice", "image", "profile_dimension")

JOB_TYPE_FOR_KIND: dict[str, str] = {
    "choice": "choice_embedding",
    "image": "image_embedding",
    "profile_dimension": "profile_dimension_embedding",
}

KIND_FOR_JOB_TYPE: dict[str, str] = {v: k for k, v in JOB_TYPE_FOR_KIND.items()}


# ──────────────────────────────────────────────────────────────────────────────
# Value types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ContentUnit:
    """Address of one embeddable piece of content."""

    kind: str
    target_id: uuid.UUID
    dimension: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in UNIT_KINDS:
            raise ValueError(f"Unknown content unit kind: {self.kind!r}")
        if self.kind == "profile_dimension" and self.dimension not in DIMENSIONS:
            raise ValueError(f"Unknown profile dimension: {self.dimension!r}")

    @property
    def job_type(self) -> str:
        return JOB_TYPE_FOR_KIND[self.kind]

    def __str__(self) -> str:
        if self.dimension:
            return f"{self.kind}:{self.target_id}:{self.dimension}"
        return f"{self.kind}:{self.target_id}"


@dataclass(frozen=True)
class EmbeddingSource:
    """The content that an embedding is generated from."""

    unit: ContentUnit
    text: str
    image_url: str | None = None

    @property
    def is_image(self) -> bool:
        return self.image_url is not None

    @property
    def fingerprint(self) -> str:
        payload = f"{self.text}\x00{self.image_url or ''}".encode("utf-8")
        return hashlib.sha256(payload).hexdigest()


# ──────────────────────────────────────────────────────────────────────────────
# Row helpers (pure; operate on already-loaded ORM rows)
# ──────────────────────────────────────────────────────────────────────────────

def embedding_attr(unit: ContentUnit) -> str:
    if unit.kind == "choice":
        return "choice_embedding"
    if unit.kind == "image":
        return "image_embedding"
    return f"{unit.dimension}_embedding"


def stamp_attr(unit: ContentUnit) -> str:
    if unit.kind == "profile_dimension":
        return f"{unit.dimension}_embedding_generated_at"
    return "embedding_generated_at"


def source_from_row(unit: ContentUnit, row: Any) -> EmbeddingSource:
    """Build the embedding source for ``unit`` from its loaded row.

    Raises
    ------
    LookupError
        If the row holds no embeddable content.
    """
    if unit.kind == "choice":
        text = row.embedding_text
        if not text:
            raise LookupError(f"No text found for {unit}")
        return EmbeddingSource(unit=unit, text=text)

    if unit.kind == "image":
        if not row.image_url:
            raise LookupError(f"No image reference found for {unit}")
        context = "\n".join(
            p.strip() for p in (row.image_label, row.image_description) if p and p.strip()
        )
        return EmbeddingSource(unit=unit, text=context, image_url=row.image_url)

    text = (row.description_for(unit.dimension) or "").strip()
    if not text:
        raise LookupError(f"No description found for {unit}")
    return EmbeddingSource(unit=unit, text=text)


def current_embedding(unit: ContentUnit, row: Any) -> np.ndarray | None:
    """Return the row's vector for ``unit`` if it is present and current."""
    vector = getattr(row, embedding_attr(unit))
    if vector is None or getattr(row, stamp_attr(unit)) is None:
        return None
    return np.asarray(vector, dtype=np.float64)


def apply_embedding(
    row: Any,
    unit: ContentUnit,
    vector: list[float],
    generated_at: datetime | None = None,
) -> None:
    setattr(row, embedding_attr(unit), list(vector))
    setattr(row, stamp_attr(unit), generated_at or datetime.now(timezone.utc))


def apply_invalidation(row: Any, unit: ContentUnit) -> None:
    setattr(row, embedding_attr(unit), None)
    setattr(row, stamp_attr(unit), None)


# ──────────────────────────────────────────────────────────────────────────────
# Repository
# ──────────────────────────────────────────────────────────────────────────────

class EmbeddingStore:
    """Transactional read / write / invalidate access to unit embeddings.

    Every method takes the caller's ``db_session``; the caller owns the
    transaction boundary.
    """

    # ── Row access ────────────────────────────────────────────────────────

    async def _load_row(
        self,
        unit: ContentUnit,
        db_session: AsyncSession,
        for_update: bool = False,
    ) -> Any:
        if unit.kind == "choice":
            stmt = select(SurveyChoice).where(SurveyChoice.id == unit.target_id)
        elif unit.kind == "image":
            stmt = select(SurveyImage).where(SurveyImage.id == unit.target_id)
        else:
            stmt = select(PhotographerProfile).where(
                PhotographerProfile.photographer_id == unit.target_id
            )
        if for_update:
            stmt = stmt.with_for_update()

        row = (await db_session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise LookupError(f"Content unit {unit} not found")
        return row

    # ── Contract ──────────────────────────────────────────────────────────

    async def get_embedding(
        self,
        unit: ContentUnit,
        db_session: AsyncSession,
    ) -> np.ndarray | None:
        """Return the current vector for ``unit`` or ``None`` if pending."""
        row = await self._load_row(unit, db_session)
        return current_embedding(unit, row)

    async def set_embedding(
        self,
        unit: ContentUnit,
        vector: list[float],
        db_session: AsyncSession,
        expected_fingerprint: str | None = None,
    ) -> bool:
        """Persist ``vector`` for ``unit`` and stamp ``embedding_generated_at``.

        When ``expected_fingerprint`` is given the row is locked and the
        write only happens if the unit's source content still matches what
        was embedded.  Returns ``False`` when the write was skipped because
        the content changed mid-flight.
        """
        row = await self._load_row(unit, db_session, for_update=True)

        if expected_fingerprint is not None:
            try:
                current = source_from_row(unit, row).fingerprint
            except LookupError:
                current = None
            if current != expected_fingerprint:
                logger.info("embedding_write_skipped_source_changed", unit=str(unit))
                return False

        apply_embedding(row, unit, vector)
        await db_session.flush()
        logger.debug("embedding_written", unit=str(unit), dims=len(vector))
        return True

    async def invalidate(self, unit: ContentUnit, db_session: AsyncSession) -> None:
        """Null the vector and stamp of ``unit``."""
        row = await self._load_row(unit, db_session, for_update=True)
        apply_invalidation(row, unit)
        await db_session.flush()
        logger.info("embedding_invalidated", unit=str(unit))

    async def load_source(
        self,
        unit: ContentUnit,
        db_session: AsyncSession,
    ) -> EmbeddingSource:
        row = await self._load_row(unit, db_session)
        return source_from_row(unit, row)

    async def load_sources_for_job(
        self,
        job: EmbeddingJob,
        db_session: AsyncSession,
    ) -> list[EmbeddingSource]:
        """Resolve a queued job to the sources it has to embed.

        A profile job without a dimension expands to every dimension that
        currently has a description.

        Raises
        ------
        LookupError
            If the target is gone or there is nothing to embed.
        """
        kind = KIND_FOR_JOB_TYPE.get(job.job_type)
        if kind is None:
            raise LookupError(f"Unknown job type {job.job_type!r}")

        if kind != "profile_dimension":
            unit = ContentUnit(kind=kind, target_id=job.target_id)
            return [await self.load_source(unit, db_session)]

        if job.dimension is not None:
            unit = ContentUnit(kind=kind, target_id=job.target_id, dimension=job.dimension)
            return [await self.load_source(unit, db_session)]

        probe = ContentUnit(kind=kind, target_id=job.target_id, dimension=DIMENSIONS[0])
        row = await self._load_row(probe, db_session)
        sources: list[EmbeddingSource] = []
        for dimension in DIMENSIONS:
            unit = ContentUnit(kind=kind, target_id=job.target_id, dimension=dimension)
            try:
                sources.append(source_from_row(unit, row))
            except LookupError:
                continue
        if not sources:
            raise LookupError(f"No descriptions found for photographer {job.target_id}")
        return sources

    # ── Snapshot readers (matching) ───────────────────────────────────────

    async def load_active_questions(
        self,
        db_session: AsyncSession,
    ) -> list[SurveyQuestion]:
        """Active questions with their choices and images eagerly loaded."""
        stmt = (
            select(SurveyQuestion)
            .where(SurveyQuestion.is_active.is_(True))
            .options(
                selectinload(SurveyQuestion.choices),
                selectinload(SurveyQuestion.images),
            )
            .order_by(SurveyQuestion.question_order)
        )
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def load_completed_profiles(
        self,
        db_session: AsyncSession,
        candidate_ids: list[uuid.UUID] | None = None,
        filters: Any | None = None,
    ) -> list[PhotographerProfile]:
        """Approved, completed profiles, optionally narrowed.

        ``filters`` is a ``MatchingFilters``; empty fields are ignored.
        Embedding currency is not checked here so callers can count the
        profiles that are still waiting for vectors.
        """
        stmt = (
            select(PhotographerProfile)
            .join(Photographer, Photographer.id == PhotographerProfile.photographer_id)
            .where(
                PhotographerProfile.profile_completed.is_(True),
                Photographer.approval_status == "approved",
            )
        )
        if candidate_ids is not None:
            stmt = stmt.where(PhotographerProfile.photographer_id.in_(candidate_ids))

        if filters is not None:
            if filters.regions:
                stmt = stmt.where(PhotographerProfile.service_regions.contains(filters.regions))
            if filters.price_min is not None:
                stmt = stmt.where(PhotographerProfile.price_max >= filters.price_min)
            if filters.price_max is not None:
                stmt = stmt.where(PhotographerProfile.price_min <= filters.price_max)
            if filters.companion_types:
                stmt = stmt.where(
                    PhotographerProfile.companion_types.contains(filters.companion_types)
                )

        stmt = stmt.order_by(PhotographerProfile.photographer_id)
        result = await db_session.execute(stmt)
        return list(result.scalars().all())
