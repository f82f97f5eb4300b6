"""Initial schema: matches and scenario_responses.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("founder_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("founder_profile_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("builder_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("builder_profile_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("opening_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("interest_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "status",
            sa.String(16),
            nullable=False,
            comment="ACTIVE / IN_TRIAL / COMPLETED / HIRED / ENDED",
        ),
        sa.Column(
            "status_history",
            postgresql.JSONB,
            nullable=False,
            server_default="[]",
            comment="Append-only list of {status, changed_at, changed_by, reason}",
        ),
        sa.Column("compatibility_score", sa.Integer, nullable=False),
        sa.Column("compatibility_breakdown", postgresql.JSONB, nullable=True),
        sa.Column(
            "compatibility_weights",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="Weights applied at creation",
        ),
        sa.Column("scenario_compatibility", sa.Integer, nullable=True),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "conversation_started", sa.Boolean, nullable=False, server_default="false"
        ),
        sa.Column("message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("had_trial", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("trial_outcome", sa.String(16), nullable=True),
        sa.Column("outcome", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("outcome_reason", sa.String(500), nullable=True),
        sa.Column("outcome_recorded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("founder_feedback", postgresql.JSONB, nullable=True),
        sa.Column("builder_feedback", postgresql.JSONB, nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("first_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_featured", sa.Boolean, nullable=False, server_default="false"),
        sa.Column(
            "is_successful_hire", sa.Boolean, nullable=False, server_default="false"
        ),
        sa.Column("can_share_story", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("annotations", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.UniqueConstraint(
            "builder_id", "opening_id", name="uq_match_builder_opening"
        ),
    )
    op.create_index("ix_matches_opening_id", "matches", ["opening_id"])
    op.create_index("ix_matches_founder_status", "matches", ["founder_id", "status"])
    op.create_index("ix_matches_builder_status", "matches", ["builder_id", "status"])
    op.create_index(
        "ix_matches_status_last_activity", "matches", ["status", "last_activity_at"]
    )

    # ── 2. scenario_responses ───────────────────────────────────────
    op.create_table(
        "scenario_responses",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        *[
            sa.Column(f"scenario{i}", sa.String(1), nullable=True)
            for i in range(1, 7)
        ],
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("retake_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_retake_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_time_seconds", sa.Integer, nullable=True),
        sa.Column("scenario_version", sa.Integer, nullable=False, server_default="1"),
        *[
            sa.CheckConstraint(
                f"scenario{i} IN ('A', 'B', 'C', 'D')", name=f"ck_scenario{i}_option"
            )
            for i in range(1, 7)
        ],
    )


def downgrade() -> None:
    op.drop_table("scenario_responses")

    op.drop_index("ix_matches_status_last_activity", table_name="matches")
    op.drop_index("ix_matches_builder_status", table_name="matches")
    op.drop_index("ix_matches_founder_status", table_name="matches")
    op.drop_index("ix_matches_opening_id", table_name="matches")
    op.drop_table("matches")
