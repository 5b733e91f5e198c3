"""
Viewfinder: domain error taxonomy.

Every error a caller can act on derives from ``ViewfinderError`` and carries
an HTTP status, a stable machine-readable ``code`` and a ``details`` dict.
``app.main`` registers an exception handler that renders them as JSON.
"""

from __future__ import annotations

from typing import Any


class ViewfinderError(Exception):
    """Base application error."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(ViewfinderError, LookupError):
    status_code = 404
    code = "not_found"


class InvalidResponsesError(ViewfinderError, ValueError):
    """Quiz responses reference unknown questions or options."""

    status_code = 422
    code = "invalid_responses"


class NoUsableSignal(ViewfinderError):
    """A session has no dimension vector that can be compared.

    ``pending_units`` counts the selected content units and free-text
    answers still waiting for an embedding.  When it is non-zero the session is expected to become
    matchable once the embedding queue drains, so the error is reported as
    ``embeddings_pending`` rather than ``insufficient_signal``.
    """

    def __init__(
        self,
        missing_dimensions: list[str],
        pending_units: int = 0,
        session_id: str | None = None,
    ) -> None:
        self.missing_dimensions = list(missing_dimensions)
        self.pending_units = pending_units
        if pending_units:
            self.status_code = 409
            self.code = "embeddings_pending"
            message = (
                "Quiz answers are still being processed. "
                "Try again shortly."
            )
        else:
            self.status_code = 422
            self.code = "insufficient_signal"
            message = "Not enough quiz answers to compute matches."
        super().__init__(
            message,
            details={
                "session_id": session_id,
                "missing_dimensions": self.missing_dimensions,
                "pending_units": pending_units,
            },
        )


class EmbeddingGenerationFailed(ViewfinderError):
    """One content unit could not be embedded.

    Recorded on the job row; never propagated out of a batch run.
    """

    status_code = 502
    code = "embedding_generation_failed"

    def __init__(self, unit: str, reason: str) -> None:
        self.unit = unit
        self.reason = reason
        super().__init__(f"Embedding failed for {unit}: {reason}", {"unit": unit})
