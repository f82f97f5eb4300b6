"""Unit tests for MatchService: orchestration, concurrency and reporting."""
import asyncio
import uuid

import pytest
import pytest_asyncio
from tenacity import wait_none

from builderlink.errors import (
    ConcurrentModificationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
    TransientStorageError,
)
from builderlink.repositories.base import MatchQuery
from builderlink.repositories.memory import InMemoryMatchRepository
from builderlink.schemas.compatibility import CompatibilityResult, CompensationType
from builderlink.schemas.match import Feedback, MatchOutcome, MatchStatus
from builderlink.services.match_service import MatchService
from builderlink.utils import events
from builderlink.utils.locks import KeyedLockManager


class FlakyRepository(InMemoryMatchRepository):
    """Fails the first ``failures`` saves with the given error."""

    def __init__(self, failures: int, error=ConcurrentModificationError) -> None:
        super().__init__()
        self.failures = failures
        self.error = error
        self.save_calls = 0

    async def save(self, match, expected_version):
        self.save_calls += 1
        if self.save_calls <= self.failures:
            raise self.error("simulated storage failure")
        return await super().save(match, expected_version)


class ExplodingPublisher:
    async def publish(self, event_name, match, **extra):
        raise RuntimeError("broker down")


def _service(repository, clock, **kwargs):
    return MatchService(
        repository, clock=clock, retry_attempts=3, retry_wait=wait_none(), **kwargs
    )


@pytest_asyncio.fixture
async def created(match_service, interest_pair, compatibility):
    return await match_service.create_from_interests(
        *interest_pair, compatibility, scenario_score=75
    )


def _scenario_letters(letters):
    return {f"scenario{i}": letter for i, letter in enumerate(letters, start=1)}


class TestCreate:
    """Match creation from mutual interest."""

    @pytest.mark.asyncio
    async def test_create_persists_and_publishes(
        self, match_service, repository, publisher, interest_pair, compatibility
    ):
        state = await match_service.create_from_interests(*interest_pair, compatibility)
        assert await repository.find_by_id(state.id) == state
        assert await repository.find_by_key(state.builder_id, state.opening_id) == state
        assert publisher.names == [events.MATCH_CREATED]
        assert publisher.events[0]["match_id"] == str(state.id)

    @pytest.mark.asyncio
    async def test_duplicate_pair_conflicts(
        self, match_service, publisher, interest_pair, compatibility
    ):
        await match_service.create_from_interests(*interest_pair, compatibility)
        with pytest.raises(ConflictError):
            await match_service.create_from_interests(*interest_pair, compatibility)
        assert publisher.names == [events.MATCH_CREATED]

    @pytest.mark.asyncio
    async def test_concurrent_creates_yield_one_match(
        self, match_service, repository, interest_pair, compatibility
    ):
        results = await asyncio.gather(
            *(match_service.create_from_interests(*interest_pair, compatibility) for _ in range(5)),
            return_exceptions=True,
        )
        created = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 4
        assert len(await repository.find(MatchQuery())) == 1

    @pytest.mark.asyncio
    async def test_failing_compatibility_not_persisted(
        self, match_service, repository, interest_pair
    ):
        failed = CompatibilityResult(score=0, passes=False, reason="Role mismatch")
        with pytest.raises(PreconditionFailedError):
            await match_service.create_from_interests(*interest_pair, failed)
        assert await repository.find(MatchQuery()) == []


class TestScoreAndCreate:
    """Scoring from profile terms, then creating."""

    @pytest.mark.asyncio
    async def test_with_scenario_responses(
        self, match_service, scenario_service, interest_pair,
        opening_terms, founder_terms, builder_terms,
    ):
        await scenario_service.submit_responses(founder_terms.founder_id, _scenario_letters("ABCDAB"))
        await scenario_service.submit_responses(builder_terms.builder_id, _scenario_letters("ACCABD"))

        state = await match_service.score_and_create(
            *interest_pair, opening_terms, founder_terms, builder_terms
        )
        # five dimensions at 100, scenario at 50
        assert state.scenario_compatibility == 50
        assert state.compatibility_breakdown.scenario == 50
        assert state.compatibility_score == 95

    @pytest.mark.asyncio
    async def test_without_scenario_responses(
        self, match_service, interest_pair, opening_terms, founder_terms, builder_terms
    ):
        state = await match_service.score_and_create(
            *interest_pair, opening_terms, founder_terms, builder_terms
        )
        assert state.scenario_compatibility is None
        assert state.compatibility_weights["scenario"] == 0.0
        assert state.compatibility_score == 100

    @pytest.mark.asyncio
    async def test_hard_filter_failure(
        self, match_service, repository, interest_pair, opening_terms, founder_terms, builder_terms
    ):
        paid_only = builder_terms.model_copy(
            update={"compensation_openness": [CompensationType.PAID_ONLY]}
        )
        with pytest.raises(PreconditionFailedError):
            await match_service.score_and_create(
                *interest_pair, opening_terms, founder_terms, paid_only
            )
        assert await repository.find(MatchQuery()) == []

    @pytest.mark.asyncio
    async def test_terms_must_belong_to_pair(
        self, match_service, interest_pair, opening_terms, founder_terms, builder_terms
    ):
        stranger = builder_terms.model_copy(update={"builder_id": uuid.uuid4()})
        with pytest.raises(InvalidArgumentError):
            await match_service.score_and_create(
                *interest_pair, opening_terms, founder_terms, stranger
            )


class TestLifecycleOperations:
    """Lock → load → apply → save, then publish."""

    @pytest.mark.asyncio
    async def test_unknown_match(self, match_service):
        with pytest.raises(NotFoundError):
            await match_service.start_trial(uuid.uuid4(), uuid.uuid4())
        with pytest.raises(NotFoundError):
            await match_service.get(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_full_trial_to_hire(self, match_service, publisher, created, clock):
        clock.advance(days=1)
        await match_service.link_conversation(created.id, uuid.uuid4())
        await match_service.update_message_count(created.id, 20)
        clock.advance(days=3)
        await match_service.start_trial(created.id, uuid.uuid4())
        clock.advance(days=14)
        completed = await match_service.complete_trial(created.id, "SUCCESS")
        assert completed.status == MatchStatus.COMPLETED
        hired = await match_service.mark_hired(created.id, reason="Offer accepted")

        assert hired.status == MatchStatus.HIRED
        assert hired.version == created.version + 5
        assert (await match_service.get(created.id)) == hired
        assert publisher.names == [
            events.MATCH_CREATED,
            events.CONVERSATION_STARTED,
            events.TRIAL_STARTED,
            events.TRIAL_COMPLETED,
            events.MATCH_HIRED,
        ]
        assert publisher.events[3]["trial_outcome"] == "SUCCESS"

    @pytest.mark.asyncio
    async def test_conversation_started_published_once(self, match_service, publisher, created):
        conversation_id = uuid.uuid4()
        await match_service.link_conversation(created.id, conversation_id)
        await match_service.link_conversation(created.id, conversation_id)
        assert publisher.names.count(events.CONVERSATION_STARTED) == 1

    @pytest.mark.asyncio
    async def test_rejected_transition_leaves_match_unchanged(self, match_service, publisher, created):
        with pytest.raises(PreconditionFailedError):
            await match_service.complete_trial(created.id, "SUCCESS")
        with pytest.raises(InvalidArgumentError):
            await match_service.end_match(created.id, "HIRED")
        assert (await match_service.get(created.id)) == created
        assert publisher.names == [events.MATCH_CREATED]

    @pytest.mark.asyncio
    async def test_end_match(self, match_service, publisher, created):
        ended = await match_service.end_match(created.id, "DECLINED_FOUNDER", reason="Went another way")
        assert ended.outcome == MatchOutcome.DECLINED_FOUNDER
        assert publisher.names[-1] == events.MATCH_ENDED

    @pytest.mark.asyncio
    async def test_feedback_from_both_sides(self, match_service, publisher, created):
        await match_service.submit_founder_feedback(created.id, Feedback(rating=5))
        state = await match_service.submit_builder_feedback(created.id, Feedback(rating=4))
        assert state.has_both_feedback
        feedback_events = [e for e in publisher.events if e["event"] == events.FEEDBACK_SUBMITTED]
        assert [(e["side"], e["both_submitted"]) for e in feedback_events] == [
            ("founder", False), ("builder", True)
        ]

    @pytest.mark.asyncio
    async def test_views(self, match_service, created):
        founder_view = await match_service.founder_view(created.id)
        builder_view = await match_service.builder_view(created.id)
        assert founder_view["builder_id"] == str(created.builder_id)
        assert "founder_id" not in founder_view
        assert builder_view["founder_id"] == str(created.founder_id)
        assert "builder_feedback" in builder_view
        assert founder_view["days_since_match"] == 0
        assert founder_view["days_since_activity"] == 0
        assert founder_view["is_active"]
        assert not founder_view["is_in_trial"]

    @pytest.mark.asyncio
    async def test_view_for_participant(self, match_service, created, clock):
        await match_service.start_trial(created.id, uuid.uuid4())
        clock.advance(days=2)

        founder = await match_service.view_for(created.id, created.founder_id)
        assert founder["counterpart_id"] == str(created.builder_id)
        assert "founder_feedback" in founder
        assert founder["is_in_trial"]
        assert founder["days_since_activity"] == 2

        builder = await match_service.view_for(created.id, created.builder_id)
        assert builder["counterpart_id"] == str(created.founder_id)
        assert "builder_feedback" in builder

        with pytest.raises(NotFoundError):
            await match_service.view_for(created.id, uuid.uuid4())


class TestConcurrency:
    """Serialisation per match, optimistic versions and retries."""

    @pytest.mark.asyncio
    async def test_concurrent_trial_completions_linearise(self, match_service, created):
        await match_service.start_trial(created.id, uuid.uuid4())
        results = await asyncio.gather(
            match_service.complete_trial(created.id, "SUCCESS"),
            match_service.complete_trial(created.id, "UNSUCCESSFUL"),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], PreconditionFailedError)
        stored = await match_service.get(created.id)
        assert stored == successes[0]
        assert len(stored.status_history) == 3

    @pytest.mark.asyncio
    async def test_concurrent_feedback_keeps_both(self, match_service, created):
        await asyncio.gather(
            match_service.submit_founder_feedback(created.id, Feedback(rating=5)),
            match_service.submit_builder_feedback(created.id, Feedback(rating=3)),
        )
        stored = await match_service.get(created.id)
        assert stored.has_both_feedback
        assert stored.version == created.version + 2

    @pytest.mark.asyncio
    async def test_locks_released(self, repository, clock, interest_pair, compatibility):
        locks = KeyedLockManager()
        service = _service(repository, clock, lock_manager=locks)
        state = await service.create_from_interests(*interest_pair, compatibility)
        await service.mark_hired(state.id)
        assert len(locks) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [ConcurrentModificationError, TransientStorageError])
    async def test_retryable_errors_retried(self, clock, interest_pair, compatibility, error):
        repository = FlakyRepository(failures=1, error=error)
        service = _service(repository, clock)
        state = await service.create_from_interests(*interest_pair, compatibility)
        hired = await service.mark_hired(state.id)
        assert repository.save_calls == 2
        assert hired.version == state.version + 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, clock, interest_pair, compatibility):
        repository = FlakyRepository(failures=10)
        service = _service(repository, clock)
        state = await service.create_from_interests(*interest_pair, compatibility)
        with pytest.raises(ConcurrentModificationError):
            await service.mark_hired(state.id)
        assert repository.save_calls == 3
        assert (await repository.find_by_id(state.id)) == state

    @pytest.mark.asyncio
    async def test_domain_errors_not_retried(self, clock, interest_pair, compatibility):
        repository = FlakyRepository(failures=0)
        service = _service(repository, clock)
        state = await service.create_from_interests(*interest_pair, compatibility)
        with pytest.raises(InvalidArgumentError):
            await service.end_match(state.id, "NOPE")
        assert repository.save_calls == 0

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_undo_transition(
        self, repository, clock, interest_pair, compatibility
    ):
        service = _service(repository, clock, publisher=ExplodingPublisher())
        state = await service.create_from_interests(*interest_pair, compatibility)
        hired = await service.mark_hired(state.id)
        assert (await repository.find_by_id(state.id)) == hired


class TestReporting:
    """Listing and aggregation helpers."""

    async def _seed(self, service, make_interests, compatibility, founder_id, opening_id, n):
        states = []
        for _ in range(n):
            pair = make_interests(founder_id=founder_id, opening_id=opening_id)
            states.append(await service.create_from_interests(*pair, compatibility))
        return states

    @pytest.mark.asyncio
    async def test_lists_and_counts(
        self, match_service, make_interests, compatibility, founder_id, opening_id
    ):
        a, b, c = await self._seed(
            match_service, make_interests, compatibility, founder_id, opening_id, 3
        )
        await match_service.start_trial(b.id, uuid.uuid4())
        await match_service.end_match(c.id, "INACTIVE")

        assert {m.id for m in await match_service.list_for_founder(founder_id)} == {a.id, b.id, c.id}
        in_trial = await match_service.list_for_founder(founder_id, MatchStatus.IN_TRIAL)
        assert [m.id for m in in_trial] == [b.id]
        assert [m.id for m in await match_service.list_for_builder(a.builder_id)] == [a.id]
        assert {m.id for m in await match_service.list_active_for_user(founder_id)} == {a.id, b.id}

        counts = await match_service.count_by_status(founder_id, "founder")
        assert counts == {"ACTIVE": 1, "IN_TRIAL": 1, "COMPLETED": 0, "HIRED": 0, "ENDED": 1}
        builder_counts = await match_service.count_by_status(c.builder_id, "builder")
        assert builder_counts["ENDED"] == 1
        assert sum(builder_counts.values()) == 1

    @pytest.mark.asyncio
    async def test_count_by_status_rejects_unknown_role(self, match_service, founder_id):
        with pytest.raises(InvalidArgumentError):
            await match_service.count_by_status(founder_id, "investor")

    @pytest.mark.asyncio
    async def test_opening_and_platform_stats(
        self, match_service, make_interests, make_compatibility, founder_id, opening_id
    ):
        scores = [70, 80, 91]
        states = []
        for score in scores:
            pair = make_interests(founder_id=founder_id, opening_id=opening_id)
            states.append(
                await match_service.create_from_interests(*pair, make_compatibility(score))
            )
        await match_service.start_trial(states[2].id, uuid.uuid4())
        await match_service.mark_hired(states[2].id)

        stats = await match_service.opening_stats(opening_id)
        assert stats["total"] == 3
        assert stats["avg_compatibility"] == 80.33
        assert stats["by_status"] == {"ACTIVE": 2, "HIRED": 1}

        platform = await match_service.platform_stats()
        assert platform["overall"] == {
            "total": 3, "avg_compatibility": 80.33, "successful_hires": 1, "with_trial": 1
        }
        assert platform["by_outcome"] == {"HIRED": 1}

        empty = await match_service.opening_stats(uuid.uuid4())
        assert empty["total"] == 0
        assert empty["avg_compatibility"] is None

    @pytest.mark.asyncio
    async def test_success_stories(
        self, match_service, make_interests, compatibility, founder_id, opening_id, clock
    ):
        states = await self._seed(
            match_service, make_interests, compatibility, founder_id, opening_id, 3
        )
        for state in states:
            clock.advance(days=1)
            await match_service.mark_hired(state.id)
        for state in states[:2]:
            await match_service.set_story_flags(state.id, is_featured=True, can_share_story=True)

        stories = await match_service.success_stories()
        assert [m.id for m in stories] == [states[1].id, states[0].id]
        assert len(await match_service.success_stories(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_inactive_matches(
        self, match_service, make_interests, compatibility, founder_id, opening_id, clock
    ):
        stale, fresh, closed = await self._seed(
            match_service, make_interests, compatibility, founder_id, opening_id, 3
        )
        await match_service.end_match(closed.id, "OTHER")
        clock.advance(days=5)
        await match_service.record_activity(fresh.id)
        clock.advance(days=3)

        assert [m.id for m in await match_service.inactive_matches()] == [stale.id]
        assert await match_service.inactive_matches(days=30) == []
        with pytest.raises(InvalidArgumentError):
            await match_service.inactive_matches(days=-1)
