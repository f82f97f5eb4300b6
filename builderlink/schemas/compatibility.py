"""
BuilderLink: Compatibility scoring schemas.

The profile "terms" models are the narrow projections of founder, opening and
builder profiles that the sub-score functions read.  The profiles themselves
are owned elsewhere.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StartupStage(str, Enum):
    IDEA = "IDEA"
    MVP_PROGRESS = "MVP_PROGRESS"
    MVP_LIVE = "MVP_LIVE"
    EARLY_REVENUE = "EARLY_REVENUE"


class RiskAppetite(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CompensationType(str, Enum):
    EQUITY_ONLY = "EQUITY_ONLY"
    EQUITY_STIPEND = "EQUITY_STIPEND"
    INTERNSHIP = "INTERNSHIP"
    PAID_ONLY = "PAID_ONLY"


class RemotePreference(str, Enum):
    ONSITE = "ONSITE"
    REMOTE = "REMOTE"
    HYBRID = "HYBRID"


class MatchQuality(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    WEAK = "WEAK"


class Dimension(str, Enum):
    COMPENSATION = "compensation"
    COMMITMENT = "commitment"
    STAGE = "stage"
    SKILLS = "skills"
    SCENARIO = "scenario"
    GEOGRAPHY = "geography"


# ── Profile projections ──────────────────────────────────────────────────────

class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: Optional[str] = None
    country: Optional[str] = None


class Range(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float = 0.0
    max: float = 0.0


class OpeningTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    opening_id: uuid.UUID
    role_type: str
    equity_range: Range = Range()
    cash_range: Range = Range()
    hours_per_week: float = Field(gt=0)
    skills_required: list[str] = []
    remote_preference: RemotePreference = RemotePreference.REMOTE


class FounderTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    founder_id: uuid.UUID
    founder_profile_id: uuid.UUID
    startup_stage: StartupStage
    location: Location = Location()


class BuilderTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    builder_id: uuid.UUID
    builder_profile_id: uuid.UUID
    compensation_openness: list[CompensationType]
    hours_per_week: float = Field(ge=0)
    risk_appetite: RiskAppetite
    roles_interested: list[str] = []
    skills: list[str] = []
    remote_preference: RemotePreference = RemotePreference.REMOTE
    location: Location = Location()


# ── Scorer output ────────────────────────────────────────────────────────────

class CompatibilityBreakdown(BaseModel):
    """Per-dimension sub-scores in [0, 100].  ``scenario`` is ``None`` when
    either party has not completed the scenario assessment."""

    model_config = ConfigDict(frozen=True)

    compensation: float = Field(ge=0, le=100)
    commitment: float = Field(ge=0, le=100)
    stage: float = Field(ge=0, le=100)
    skills: float = Field(ge=0, le=100)
    scenario: Optional[float] = Field(default=None, ge=0, le=100)
    geography: float = Field(ge=0, le=100)


class CompatibilityResult(BaseModel):
    """Point-in-time compatibility snapshot, stored verbatim on a match."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    passes: bool = True
    reason: Optional[str] = None
    quality: MatchQuality = MatchQuality.WEAK
    breakdown: Optional[CompatibilityBreakdown] = None
    weights_applied: dict[str, float] = {}
    weighted: dict[str, float] = {}
    scenario_redistributed: bool = False


class RankedCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    builder_id: uuid.UUID
    builder_profile_id: uuid.UUID
    opening_id: uuid.UUID
    compatibility: CompatibilityResult
