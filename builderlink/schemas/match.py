"""
BuilderLink: Match snapshot, lifecycle events and API payloads.

``MatchState`` is an immutable snapshot.  Every lifecycle change produces a
new snapshot through ``builderlink.services.lifecycle.apply``; nothing in the
code base mutates a snapshot in place.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from builderlink.schemas.compatibility import (
    BuilderTerms,
    CompatibilityBreakdown,
    CompatibilityResult,
    FounderTerms,
    MatchQuality,
    OpeningTerms,
)


class MatchStatus(str, Enum):
    ACTIVE = "ACTIVE"
    IN_TRIAL = "IN_TRIAL"
    COMPLETED = "COMPLETED"
    HIRED = "HIRED"
    ENDED = "ENDED"


class MatchOutcome(str, Enum):
    PENDING = "PENDING"
    HIRED = "HIRED"
    TRIAL_SUCCESS = "TRIAL_SUCCESS"
    TRIAL_FAILED = "TRIAL_FAILED"
    DECLINED_FOUNDER = "DECLINED_FOUNDER"
    DECLINED_BUILDER = "DECLINED_BUILDER"
    INACTIVE = "INACTIVE"
    POSITION_FILLED = "POSITION_FILLED"
    OTHER = "OTHER"


class TrialOutcome(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    UNSUCCESSFUL = "UNSUCCESSFUL"
    CANCELLED = "CANCELLED"


class InterestParty(str, Enum):
    FOUNDER = "FOUNDER"
    BUILDER = "BUILDER"


class FeedbackSide(str, Enum):
    FOUNDER = "founder"
    BUILDER = "builder"


ACTIVE_STATUSES: frozenset[MatchStatus] = frozenset(
    {MatchStatus.ACTIVE, MatchStatus.IN_TRIAL}
)
CLOSING_STATUSES: frozenset[MatchStatus] = frozenset(
    {MatchStatus.COMPLETED, MatchStatus.HIRED, MatchStatus.ENDED}
)
END_OUTCOMES: frozenset[MatchOutcome] = frozenset(
    {
        MatchOutcome.DECLINED_FOUNDER,
        MatchOutcome.DECLINED_BUILDER,
        MatchOutcome.INACTIVE,
        MatchOutcome.POSITION_FILLED,
        MatchOutcome.OTHER,
    }
)
TERMINAL_TRIAL_OUTCOMES: frozenset[TrialOutcome] = frozenset(
    {TrialOutcome.SUCCESS, TrialOutcome.UNSUCCESSFUL, TrialOutcome.CANCELLED}
)


# ── Embedded records ─────────────────────────────────────────────────────────

class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: MatchStatus
    changed_at: datetime
    changed_by: Optional[uuid.UUID] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class Feedback(BaseModel):
    """One party's retrospective feedback.  ``submitted_at`` is stamped by
    the engine; any client-supplied value is overwritten."""

    model_config = ConfigDict(frozen=True)

    rating: Optional[int] = Field(default=None, ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    reliability: Optional[int] = Field(default=None, ge=1, le=5)
    skill_match: Optional[int] = Field(default=None, ge=1, le=5)
    would_recommend: Optional[bool] = None
    public_feedback: Optional[str] = Field(default=None, max_length=500)
    private_feedback: Optional[str] = Field(default=None, max_length=500)
    submitted_at: Optional[datetime] = None


class MatchAnnotations(BaseModel):
    """Closed set of optional annotations carried on a match."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Optional[Literal["mutual_interest", "admin"]] = None
    quality: Optional[MatchQuality] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class InterestRecord(BaseModel):
    """One side's expression of interest, as handed over by the interest
    service once it has detected mutuality."""

    model_config = ConfigDict(frozen=True)

    interest_id: uuid.UUID
    initiated_by: InterestParty
    founder_id: uuid.UUID
    founder_profile_id: uuid.UUID
    builder_id: uuid.UUID
    builder_profile_id: uuid.UUID
    opening_id: uuid.UUID
    is_mutual: bool = True


# ── Match snapshot ───────────────────────────────────────────────────────────

class MatchState(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    version: int = 1

    # references (non-owning)
    founder_id: uuid.UUID
    founder_profile_id: uuid.UUID
    builder_id: uuid.UUID
    builder_profile_id: uuid.UUID
    opening_id: uuid.UUID
    interest_id: Optional[uuid.UUID] = None

    # status
    status: MatchStatus = MatchStatus.ACTIVE
    status_history: tuple[StatusHistoryEntry, ...] = ()

    # compatibility snapshot
    compatibility_score: int = Field(ge=0, le=100)
    compatibility_breakdown: Optional[CompatibilityBreakdown] = None
    compatibility_weights: dict[str, float] = {}
    scenario_compatibility: Optional[int] = Field(default=None, ge=0, le=100)

    # conversation
    conversation_id: Optional[uuid.UUID] = None
    conversation_started: bool = False
    message_count: int = 0
    last_message_at: Optional[datetime] = None

    # trial
    trial_id: Optional[uuid.UUID] = None
    had_trial: bool = False
    trial_outcome: Optional[TrialOutcome] = None

    # outcome
    outcome: MatchOutcome = MatchOutcome.PENDING
    outcome_reason: Optional[str] = Field(default=None, max_length=500)
    outcome_recorded_at: Optional[datetime] = None

    # feedback
    founder_feedback: Optional[Feedback] = None
    builder_feedback: Optional[Feedback] = None

    # timestamps
    matched_at: datetime
    first_message_at: Optional[datetime] = None
    trial_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_activity_at: datetime

    # flags
    is_featured: bool = False
    is_successful_hire: bool = False
    can_share_story: bool = False

    annotations: MatchAnnotations = MatchAnnotations()

    # ── Derived facts ────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_in_trial(self) -> bool:
        return self.status == MatchStatus.IN_TRIAL

    @property
    def is_completed(self) -> bool:
        return self.status in (MatchStatus.COMPLETED, MatchStatus.HIRED)

    @property
    def is_ended(self) -> bool:
        return self.status == MatchStatus.ENDED

    @property
    def has_both_feedback(self) -> bool:
        return bool(
            self.founder_feedback is not None
            and self.founder_feedback.submitted_at is not None
            and self.builder_feedback is not None
            and self.builder_feedback.submitted_at is not None
        )

    @property
    def average_rating(self) -> Optional[float]:
        ratings = [
            fb.rating
            for fb in (self.founder_feedback, self.builder_feedback)
            if fb is not None and fb.rating is not None
        ]
        if not ratings:
            return None
        return sum(ratings) / len(ratings)

    @property
    def participants(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.founder_id, self.builder_id)

    def days_since_match(self, now: datetime) -> int:
        return (now - self.matched_at).days

    def days_since_activity(self, now: datetime) -> int:
        return (now - self.last_activity_at).days

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        if user_id == self.founder_id:
            return self.builder_id
        if user_id == self.builder_id:
            return self.founder_id
        raise ValueError(f"{user_id} is not a participant in match {self.id}")

    # ── Role views ───────────────────────────────────────────────────────

    SHARED_VIEW_FIELDS: ClassVar[tuple[str, ...]] = (
        "id",
        "opening_id",
        "status",
        "compatibility_score",
        "compatibility_breakdown",
        "scenario_compatibility",
        "conversation_started",
        "message_count",
        "last_message_at",
        "had_trial",
        "trial_outcome",
        "outcome",
        "matched_at",
    )

    def _view(self, extra: tuple[str, ...], now: datetime) -> dict[str, Any]:
        data = self.model_dump(mode="json", include=set(self.SHARED_VIEW_FIELDS + extra))
        data["days_since_match"] = self.days_since_match(now)
        data["days_since_activity"] = self.days_since_activity(now)
        data["is_active"] = self.is_active
        data["is_in_trial"] = self.is_in_trial
        return data

    def founder_view(self, now: datetime) -> dict[str, Any]:
        """Match as shown to the founder: the builder side plus founder feedback."""
        return self._view(("builder_id", "builder_profile_id", "founder_feedback"), now)

    def builder_view(self, now: datetime) -> dict[str, Any]:
        """Match as shown to the builder: the founder side plus builder feedback."""
        return self._view(("founder_id", "founder_profile_id", "builder_feedback"), now)


# ── Lifecycle events ─────────────────────────────────────────────────────────
#
# Outcome tokens are carried as plain strings and validated by the lifecycle,
# so that an unknown token surfaces as InvalidArgumentError rather than a
# schema error.

class LifecycleEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ClassVar[str] = "event"

    actor: Optional[uuid.UUID] = None


class LinkConversation(LifecycleEvent):
    name: ClassVar[str] = "link_conversation"

    conversation_id: uuid.UUID


class UpdateMessageCount(LifecycleEvent):
    name: ClassVar[str] = "update_message_count"

    count: int


class StartTrial(LifecycleEvent):
    name: ClassVar[str] = "start_trial"

    trial_id: uuid.UUID
    reason: Optional[str] = None


class CompleteTrial(LifecycleEvent):
    name: ClassVar[str] = "complete_trial"

    outcome: str
    reason: Optional[str] = None


class MarkHired(LifecycleEvent):
    name: ClassVar[str] = "mark_hired"

    reason: Optional[str] = None


class EndMatch(LifecycleEvent):
    name: ClassVar[str] = "end_match"

    outcome: str
    reason: Optional[str] = None


class SubmitFeedback(LifecycleEvent):
    name: ClassVar[str] = "submit_feedback"

    side: FeedbackSide
    feedback: Feedback


class RecordActivity(LifecycleEvent):
    name: ClassVar[str] = "record_activity"


class SetStoryFlags(LifecycleEvent):
    name: ClassVar[str] = "set_story_flags"

    is_featured: Optional[bool] = None
    can_share_story: Optional[bool] = None


# ── API payloads ─────────────────────────────────────────────────────────────

class MatchCreateRequest(BaseModel):
    """Create a match from a mutual interest pair with a precomputed score."""

    interest_a: InterestRecord
    interest_b: InterestRecord
    compatibility: CompatibilityResult
    scenario_compatibility: Optional[int] = Field(default=None, ge=0, le=100)


class MatchScoreAndCreateRequest(BaseModel):
    """Create a match, computing the score from profile terms."""

    interest_a: InterestRecord
    interest_b: InterestRecord
    opening: OpeningTerms
    founder: FounderTerms
    builder: BuilderTerms


class ConversationLinkRequest(BaseModel):
    conversation_id: uuid.UUID
    actor: Optional[uuid.UUID] = None


class MessageCountRequest(BaseModel):
    count: int


class TrialStartRequest(BaseModel):
    trial_id: uuid.UUID
    actor: Optional[uuid.UUID] = None


class TrialCompleteRequest(BaseModel):
    outcome: str
    reason: Optional[str] = None
    actor: Optional[uuid.UUID] = None


class HireRequest(BaseModel):
    reason: Optional[str] = None
    actor: Optional[uuid.UUID] = None


class EndRequest(BaseModel):
    outcome: str
    reason: Optional[str] = None
    actor: Optional[uuid.UUID] = None


class StoryFlagsRequest(BaseModel):
    is_featured: Optional[bool] = None
    can_share_story: Optional[bool] = None
