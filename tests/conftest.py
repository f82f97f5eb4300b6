"""Shared pytest fixtures for BuilderLink tests."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from tenacity import wait_none

from builderlink.repositories.memory import (
    InMemoryMatchRepository,
    InMemoryScenarioResponseStore,
)
from builderlink.schemas.compatibility import (
    BuilderTerms,
    CompatibilityBreakdown,
    CompatibilityResult,
    CompensationType,
    FounderTerms,
    Location,
    MatchQuality,
    OpeningTerms,
    Range,
    RemotePreference,
    RiskAppetite,
    StartupStage,
)
from builderlink.schemas.match import InterestParty, InterestRecord
from builderlink.services.compatibility_service import CompatibilityService
from builderlink.services.scenario_service import ScenarioService
from builderlink.services.match_service import MatchService
from builderlink.utils.events import RecordingEventPublisher

DEFAULT_WEIGHTS = {
    "compensation": 0.30,
    "commitment": 0.20,
    "stage": 0.15,
    "skills": 0.15,
    "scenario": 0.10,
    "geography": 0.10,
}


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def founder_id():
    return uuid.uuid4()


@pytest.fixture
def builder_id():
    return uuid.uuid4()


@pytest.fixture
def opening_id():
    return uuid.uuid4()


@pytest.fixture
def make_interests():
    """Factory for a (founder-initiated, builder-initiated) interest pair."""

    def _make(founder_id=None, builder_id=None, opening_id=None):
        founder_id = founder_id or uuid.uuid4()
        builder_id = builder_id or uuid.uuid4()
        opening_id = opening_id or uuid.uuid4()
        common = dict(
            founder_id=founder_id,
            founder_profile_id=uuid.uuid5(uuid.NAMESPACE_OID, f"fp-{founder_id}"),
            builder_id=builder_id,
            builder_profile_id=uuid.uuid5(uuid.NAMESPACE_OID, f"bp-{builder_id}"),
            opening_id=opening_id,
        )
        return (
            InterestRecord(interest_id=uuid.uuid4(), initiated_by=InterestParty.FOUNDER, **common),
            InterestRecord(interest_id=uuid.uuid4(), initiated_by=InterestParty.BUILDER, **common),
        )

    return _make


@pytest.fixture
def interest_pair(make_interests, founder_id, builder_id, opening_id):
    return make_interests(founder_id, builder_id, opening_id)


@pytest.fixture
def compatibility():
    """A passing compatibility snapshot scoring 82 (GOOD)."""
    return CompatibilityResult(
        score=82,
        passes=True,
        quality=MatchQuality.GOOD,
        breakdown=CompatibilityBreakdown(
            compensation=100, commitment=80, stage=60, skills=67, scenario=75, geography=75
        ),
        weights_applied=dict(DEFAULT_WEIGHTS),
    )


@pytest.fixture
def make_compatibility():
    def _make(score: int) -> CompatibilityResult:
        return CompatibilityResult(score=score, passes=True)

    return _make


# ── Profile terms ────────────────────────────────────────────────────────────

@pytest.fixture
def opening_terms(opening_id):
    return OpeningTerms(
        opening_id=opening_id,
        role_type="CTO",
        equity_range=Range(min=2, max=5),
        cash_range=Range(min=0, max=0),
        hours_per_week=40,
        skills_required=["Python", "React"],
        remote_preference=RemotePreference.REMOTE,
    )


@pytest.fixture
def founder_terms(founder_id):
    return FounderTerms(
        founder_id=founder_id,
        founder_profile_id=uuid.uuid5(uuid.NAMESPACE_OID, f"fp-{founder_id}"),
        startup_stage=StartupStage.MVP_PROGRESS,
        location=Location(city="Bengaluru", country="India"),
    )


@pytest.fixture
def builder_terms(builder_id):
    return BuilderTerms(
        builder_id=builder_id,
        builder_profile_id=uuid.uuid5(uuid.NAMESPACE_OID, f"bp-{builder_id}"),
        compensation_openness=[CompensationType.EQUITY_ONLY],
        hours_per_week=40,
        risk_appetite=RiskAppetite.HIGH,
        roles_interested=["CTO"],
        skills=["python", "react native"],
        remote_preference=RemotePreference.REMOTE,
        location=Location(city="Pune", country="India"),
    )


# ── Services ─────────────────────────────────────────────────────────────────

@pytest.fixture
def repository():
    return InMemoryMatchRepository()


@pytest.fixture
def scenario_store():
    return InMemoryScenarioResponseStore()


@pytest.fixture
def scenario_service(scenario_store, clock):
    return ScenarioService(store=scenario_store, clock=clock)


@pytest.fixture
def compatibility_service():
    return CompatibilityService(weights=DEFAULT_WEIGHTS, min_score=60, candidate_limit=50)


@pytest.fixture
def publisher():
    return RecordingEventPublisher()


@pytest.fixture
def match_service(repository, scenario_service, compatibility_service, publisher, clock):
    return MatchService(
        repository,
        scenario_service=scenario_service,
        compatibility_service=compatibility_service,
        publisher=publisher,
        clock=clock,
        retry_attempts=3,
        retry_wait=wait_none(),
    )
