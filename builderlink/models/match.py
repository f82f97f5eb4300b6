"""
BuilderLink: Match model.

Embedded records (status history, breakdown, feedback, annotations) are
stored as JSON documents on the row so that a lifecycle transition is a
single-row UPDATE.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from builderlink.database import Base, JSONType, UTCDateTime


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("builder_id", "opening_id", name="uq_match_builder_opening"),
        Index("ix_matches_founder_status", "founder_id", "status"),
        Index("ix_matches_builder_status", "builder_id", "status"),
        Index("ix_matches_status_last_activity", "status", "last_activity_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    founder_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    founder_profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    builder_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    builder_profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    opening_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    interest_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="ACTIVE / IN_TRIAL / COMPLETED / HIRED / ENDED"
    )
    status_history: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    compatibility_score: Mapped[int] = mapped_column(Integer, nullable=False)
    compatibility_breakdown: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    compatibility_weights: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict, comment="Weights applied at creation"
    )
    scenario_compatibility: Mapped[int | None] = mapped_column(Integer, nullable=True)

    conversation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    conversation_started: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    trial_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    had_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trial_outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)

    outcome: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    outcome_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    outcome_recorded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    founder_feedback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    builder_feedback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    matched_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    first_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    trial_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_successful_hire: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_share_story: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    annotations: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return (
            f"<Match {self.id} builder={self.builder_id} "
            f"opening={self.opening_id} status={self.status} v{self.version}>"
        )
