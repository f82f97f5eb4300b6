"""
BuilderLink: Scenario response model (latest answer set per user).
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from builderlink.database import Base, UTCDateTime

_ANSWER_CHECK = "IN ('A', 'B', 'C', 'D')"


class ScenarioResponse(Base):
    __tablename__ = "scenario_responses"
    __table_args__ = tuple(
        CheckConstraint(f"scenario{i} {_ANSWER_CHECK}", name=f"ck_scenario{i}_option")
        for i in range(1, 7)
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    scenario1: Mapped[str | None] = mapped_column(String(1), nullable=True)
    scenario2: Mapped[str | None] = mapped_column(String(1), nullable=True)
    scenario3: Mapped[str | None] = mapped_column(String(1), nullable=True)
    scenario4: Mapped[str | None] = mapped_column(String(1), nullable=True)
    scenario5: Mapped[str | None] = mapped_column(String(1), nullable=True)
    scenario6: Mapped[str | None] = mapped_column(String(1), nullable=True)

    completed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    retake_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retake_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completion_time_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scenario_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<ScenarioResponse user={self.user_id} retakes={self.retake_count}>"
