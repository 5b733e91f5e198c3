"""
Viewfinder: Response Vectorizer

Collapses a session's quiz answers into one vector per matching dimension.

For each answered question whose ``weight_category`` names a dimension:

* selection questions contribute the mean of the selected options'
  embeddings (a single selection contributes its embedding unchanged);
* free-text questions contribute the embedding computed for the answer
  when the session was created.

A dimension's vector is the mean of its question vectors.  A dimension with
no contributing question is undefined (``None``) and is left out of scoring
rather than treated as a zero vector.  Selected options whose embedding is
still pending are skipped and reported in ``excluded_units``; free-text
answers whose embedding call failed are reported in ``pending_text_answers``.

Everything here is pure: callers take a snapshot of questions and
embeddings first, so one vectorization never mixes two embedding
generations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import numpy as np
import structlog

from app.models.photographer import DIMENSIONS
from app.services.embedding_store import ContentUnit, current_embedding

logger = structlog.get_logger("viewfinder.vectorizer")

SELECTION_TYPES = ("single_choice", "multiple_choice", "image_choice")
TEXT_TYPES = ("textarea", "text")


# ──────────────────────────────────────────────────────────────────────────────
# Snapshot types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OptionSnapshot:
    unit: ContentUnit
    key: str
    embedding: Optional[np.ndarray]


@dataclass
class QuestionSnapshot:
    question_key: str
    question_type: str
    weight_category: Optional[str]
    options: dict[str, OptionSnapshot] = field(default_factory=dict)
    is_hard_filter: bool = False

    def resolve(self, answer: Any) -> Optional[OptionSnapshot]:
        """Look an answer up by option id or option key."""
        return self.options.get(str(answer))


@dataclass
class VectorizationResult:
    vectors: dict[str, Optional[np.ndarray]]
    question_counts: dict[str, int]
    excluded_units: list[ContentUnit] = field(default_factory=list)
    unknown_answers: list[str] = field(default_factory=list)
    pending_text_answers: list[str] = field(default_factory=list)

    @property
    def pending_count(self) -> int:
        """Selected units and free-text answers still waiting for a vector."""
        return len(self.excluded_units) + len(self.pending_text_answers)

    @property
    def usable_dimensions(self) -> list[str]:
        return [d for d in DIMENSIONS if self.vectors.get(d) is not None]

    @property
    def missing_dimensions(self) -> list[str]:
        return [d for d in DIMENSIONS if self.vectors.get(d) is None]


def build_question_snapshots(questions: Iterable[Any]) -> list[QuestionSnapshot]:
    """Snapshot loaded ``SurveyQuestion`` rows (choices and images included).

    Options are indexed under both their id and their key so that either
    form of answer resolves.
    """
    snapshots: list[QuestionSnapshot] = []
    for question in questions:
        options: dict[str, OptionSnapshot] = {}

        for choice in question.choices or []:
            unit = ContentUnit(kind="choice", target_id=choice.id)
            option = OptionSnapshot(
                unit=unit,
                key=choice.choice_key,
                embedding=current_embedding(unit, choice),
            )
            options[str(choice.id)] = option
            options[choice.choice_key] = option

        for image in question.images or []:
            unit = ContentUnit(kind="image", target_id=image.id)
            option = OptionSnapshot(
                unit=unit,
                key=image.image_key,
                embedding=current_embedding(unit, image),
            )
            options[str(image.id)] = option
            options[image.image_key] = option

        snapshots.append(
            QuestionSnapshot(
                question_key=question.question_key,
                question_type=question.question_type,
                weight_category=question.weight_category,
                options=options,
                is_hard_filter=bool(question.is_hard_filter),
            )
        )
    return snapshots


def _is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple)):
        return len(answer) == 0
    return False


def _mean(vectors: list[np.ndarray]) -> np.ndarray:
    return np.mean(np.vstack(vectors), axis=0)


class ResponseVectorizer:
    def vectorize(
        self,
        questions: list[QuestionSnapshot],
        responses: dict[str, Any],
        text_embeddings: Optional[dict[str, list[float]]] = None,
    ) -> VectorizationResult:
        text_embeddings = text_embeddings or {}
        per_dimension: dict[str, list[np.ndarray]] = {d: [] for d in DIMENSIONS}
        excluded: list[ContentUnit] = []
        unknown: list[str] = []
        pending_text: list[str] = []

        for question in questions:
            dimension = question.weight_category
            if dimension not in per_dimension:
                continue

            answer = responses.get(question.question_key)
            if _is_blank(answer):
                continue

            if question.question_type in TEXT_TYPES:
                vector = text_embeddings.get(question.question_key)
                if vector is None:
                    logger.debug(
                        "text_answer_without_embedding",
                        question_key=question.question_key,
                    )
                    pending_text.append(question.question_key)
                    continue
                per_dimension[dimension].append(np.asarray(vector, dtype=np.float64))
                continue

            selections = answer if isinstance(answer, (list, tuple)) else [answer]
            selected: list[np.ndarray] = []
            for selection in selections:
                option = question.resolve(selection)
                if option is None:
                    unknown.append(f"{question.question_key}:{selection}")
                    continue
                if option.embedding is None:
                    excluded.append(option.unit)
                    continue
                selected.append(option.embedding)

            if selected:
                per_dimension[dimension].append(_mean(selected))

        vectors = {
            d: (_mean(per_dimension[d]) if per_dimension[d] else None)
            for d in DIMENSIONS
        }
        counts = {d: len(per_dimension[d]) for d in DIMENSIONS}

        if unknown:
            logger.warning("unknown_answers_ignored", answers=unknown)

        return VectorizationResult(
            vectors=vectors,
            question_counts=counts,
            excluded_units=excluded,
            unknown_answers=unknown,
            pending_text_answers=pending_text,
        )
