"""Initial schema: pgvector extension and all 8 Viewfinder tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIM = 768

DIMENSIONS = (
    "style_emotion",
    "communication_psychology",
    "purpose_story",
    "companion",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ── 1. survey_questions ─────────────────────────────────────────
    op.create_table(
        "survey_questions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("question_key", sa.String, unique=True, nullable=False),
        sa.Column("question_order", sa.Integer, nullable=False),
        sa.Column("question_title", sa.Text, nullable=False),
        sa.Column("question_description", sa.Text, nullable=True),
        sa.Column(
            "question_type",
            sa.String,
            nullable=False,
            comment="single_choice / multiple_choice / image_choice / textarea",
        ),
        sa.Column("weight_category", sa.String, nullable=True),
        sa.Column("base_weight", sa.Float, server_default="0", nullable=False),
        sa.Column("is_hard_filter", sa.Boolean, server_default="false", nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        *_timestamps(),
    )

    # ── 2. survey_choices ───────────────────────────────────────────
    op.create_table(
        "survey_choices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("choice_key", sa.String, nullable=False),
        sa.Column("choice_label", sa.Text, nullable=False),
        sa.Column("choice_description", sa.Text, nullable=True),
        sa.Column("choice_order", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("choice_embedding", Vector(EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_generated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("question_id", "choice_key", name="uq_choice_key"),
    )

    # ── 3. survey_images ────────────────────────────────────────────
    op.create_table(
        "survey_images",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("survey_questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("image_key", sa.String, nullable=False),
        sa.Column("image_label", sa.Text, nullable=False),
        sa.Column("image_description", sa.Text, nullable=True),
        sa.Column(
            "image_url",
            sa.Text,
            nullable=False,
            comment="gs://bucket/path or http(s) URL",
        ),
        sa.Column("image_order", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("image_embedding", Vector(EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_generated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("question_id", "image_key", name="uq_image_key"),
    )

    # ── 4. photographers ────────────────────────────────────────────
    op.create_table(
        "photographers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String, nullable=False),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column(
            "approval_status",
            sa.String,
            server_default="pending",
            nullable=False,
            comment="pending / approved / rejected",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 5. photographer_profiles ────────────────────────────────────
    dimension_columns: list[sa.Column] = []
    for dimension in DIMENSIONS:
        dimension_columns.append(sa.Column(f"{dimension}_description", sa.Text, nullable=True))
    for dimension in DIMENSIONS:
        dimension_columns.append(
            sa.Column(f"{dimension}_embedding", Vector(EMBEDDING_DIM), nullable=True)
        )
    for dimension in DIMENSIONS:
        dimension_columns.append(
            sa.Column(
                f"{dimension}_embedding_generated_at",
                sa.DateTime(timezone=True),
                nullable=True,
            )
        )

    op.create_table(
        "photographer_profiles",
        sa.Column(
            "photographer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("photographers.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        *dimension_columns,
        sa.Column(
            "service_regions",
            postgresql.ARRAY(sa.String),
            server_default="{}",
            nullable=False,
        ),
        sa.Column("price_min", sa.Integer, server_default="0", nullable=False),
        sa.Column("price_max", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "companion_types",
            postgresql.ARRAY(sa.String),
            server_default="{}",
            nullable=False,
        ),
        sa.Column("profile_completed", sa.Boolean, server_default="false", nullable=False),
        *_timestamps(),
    )

    # ── 6. embedding_jobs ───────────────────────────────────────────
    op.create_table(
        "embedding_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_type",
            sa.String,
            nullable=False,
            comment="choice_embedding / image_embedding / profile_dimension_embedding",
        ),
        sa.Column("target_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dimension", sa.String, nullable=True),
        sa.Column("status", sa.String, server_default="pending", nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_embedding_jobs_status_created",
        "embedding_jobs",
        ["status", "created_at"],
    )
    op.create_index(
        "ix_embedding_jobs_target",
        "embedding_jobs",
        ["job_type", "target_id"],
    )

    # ── 7. matching_sessions ────────────────────────────────────────
    op.create_table(
        "matching_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_token", sa.String, unique=True, index=True, nullable=False),
        sa.Column("responses", postgresql.JSONB, nullable=False),
        sa.Column("text_embeddings", postgresql.JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 8. matching_results ─────────────────────────────────────────
    op.create_table(
        "matching_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("matching_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "photographer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("photographers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *[sa.Column(f"{d}_score", sa.Float, nullable=True) for d in DIMENSIONS],
        sa.Column("total_score", sa.Float, nullable=False),
        sa.Column("rank_position", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_matching_results_session_run",
        "matching_results",
        ["session_id", "run_id"],
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_matching_results_session_run", table_name="matching_results")
    op.drop_table("matching_results")
    op.drop_table("matching_sessions")

    op.drop_index("ix_embedding_jobs_target", table_name="embedding_jobs")
    op.drop_index("ix_embedding_jobs_status_created", table_name="embedding_jobs")
    op.drop_table("embedding_jobs")

    op.drop_table("photographer_profiles")
    op.drop_table("photographers")
    op.drop_table("survey_images")
    op.drop_table("survey_choices")
    op.drop_table("survey_questions")
