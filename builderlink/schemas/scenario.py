"""
BuilderLink: Scenario assessment schemas.

A scenario response set is six ordinal answers (A-D) to the fixed working-style
questionnaire.  Only the latest set per user is kept.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ScenarioOption(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"

    @property
    def ordinal(self) -> int:
        return "ABCD".index(self.value)


class ScenarioMatchClass(str, Enum):
    EXACT = "exact"
    ADJACENT = "adjacent"
    OPPOSITE = "opposite"


SCENARIO_FIELDS: tuple[str, ...] = (
    "scenario1",
    "scenario2",
    "scenario3",
    "scenario4",
    "scenario5",
    "scenario6",
)


class ScenarioAnswers(BaseModel):
    """One user's answers.  Fields stay ``None`` until answered."""

    model_config = ConfigDict(frozen=True)

    scenario1: Optional[ScenarioOption] = None
    scenario2: Optional[ScenarioOption] = None
    scenario3: Optional[ScenarioOption] = None
    scenario4: Optional[ScenarioOption] = None
    scenario5: Optional[ScenarioOption] = None
    scenario6: Optional[ScenarioOption] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) is not None for name in SCENARIO_FIELDS)

    def as_list(self) -> list[Optional[ScenarioOption]]:
        return [getattr(self, name) for name in SCENARIO_FIELDS]


class ScenarioResponseRecord(BaseModel):
    """Stored scenario response set plus assessment metadata."""

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    answers: ScenarioAnswers
    completed_at: datetime
    retake_count: int = 0
    last_retake_at: Optional[datetime] = None
    completion_time_seconds: Optional[int] = None
    scenario_version: int = 1

    @property
    def is_complete(self) -> bool:
        return self.answers.is_complete

    def can_retake(self, now: datetime, cooldown_days: int = 30) -> bool:
        last = self.last_retake_at or self.completed_at
        return last < now - timedelta(days=cooldown_days)

    def days_until_retake(self, now: datetime, cooldown_days: int = 30) -> int:
        if self.can_retake(now, cooldown_days):
            return 0
        last = self.last_retake_at or self.completed_at
        remaining = (last + timedelta(days=cooldown_days)) - now
        # ceil to whole days
        days = remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)
        return max(0, days)


class ScenarioPairBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    user1: ScenarioOption
    user2: ScenarioOption
    score: int
    match: ScenarioMatchClass


class ScenarioCompatibilityResult(BaseModel):
    """Result of comparing two answer sets.

    ``score`` is ``None`` when either side has not completed the assessment;
    that is "not yet assessed", not a score of zero.
    """

    model_config = ConfigDict(frozen=True)

    score: Optional[int] = None
    raw_score: Optional[int] = None
    max_score: int = 60
    breakdown: Optional[dict[str, ScenarioPairBreakdown]] = None
    reason: Optional[str] = None

    @property
    def is_assessed(self) -> bool:
        return self.score is not None


# ── API payloads ─────────────────────────────────────────────────────────────

class ScenarioSubmit(BaseModel):
    responses: dict[str, str]  # {"scenario1": "A", ...}
    completion_time_seconds: Optional[int] = Field(default=None, ge=0)


class ScenarioResponseOut(BaseModel):
    user_id: uuid.UUID
    answers: ScenarioAnswers
    completed_at: datetime
    retake_count: int
    can_retake: bool
    days_until_retake: int
    scenario_version: int
