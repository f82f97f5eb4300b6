"""
BuilderLink: Match orchestration.

Every lifecycle operation runs the same pipeline:

  1. hold the per-match lock
  2. load the current snapshot           (NotFoundError if absent)
  3. apply the event                     (pure, see ``lifecycle.apply``)
  4. save with the loaded version        (optimistic concurrency)
  5. publish the lifecycle event         (best effort)

Steps 2-4 sit inside a tenacity ``AsyncRetrying`` loop that retries only
``ConcurrentModificationError`` and ``TransientStorageError``; each retry
re-reads the match and re-applies the event.  Domain errors propagate on the
first attempt.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from builderlink.config import get_settings
from builderlink.errors import (
    ConcurrentModificationError,
    InvalidArgumentError,
    MatchEngineError,
    NotFoundError,
    TransientStorageError,
)
from builderlink.repositories.base import MatchQuery, MatchRepository
from builderlink.schemas.compatibility import (
    BuilderTerms,
    CompatibilityResult,
    FounderTerms,
    OpeningTerms,
)
from builderlink.schemas.match import (
    ACTIVE_STATUSES,
    CompleteTrial,
    EndMatch,
    Feedback,
    FeedbackSide,
    InterestRecord,
    LifecycleEvent,
    LinkConversation,
    MarkHired,
    MatchState,
    MatchStatus,
    RecordActivity,
    SetStoryFlags,
    StartTrial,
    SubmitFeedback,
    UpdateMessageCount,
)
from builderlink.services import lifecycle
from builderlink.services.compatibility_service import CompatibilityService
from builderlink.services.scenario_service import ScenarioService
from builderlink.utils import events
from builderlink.utils.events import LoggingEventPublisher, MatchEventPublisher
from builderlink.utils.locks import KeyedLockManager

logger = structlog.get_logger("builderlink.match_service")

_RETRYABLE = (ConcurrentModificationError, TransientStorageError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchService:
    """Create matches and drive them through their lifecycle.

    Dependencies are injected at construction so that the service can be
    tested with in-memory stores and swapped in FastAPI's dependency graph.
    """

    def __init__(
        self,
        repository: MatchRepository,
        scenario_service: ScenarioService | None = None,
        compatibility_service: CompatibilityService | None = None,
        lock_manager: Any | None = None,
        publisher: MatchEventPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
        retry_attempts: int | None = None,
        retry_wait: Any | None = None,
    ) -> None:
        settings = get_settings()
        self.repository = repository
        self.scenario_service = scenario_service
        self.compatibility_service = compatibility_service or CompatibilityService()
        self.locks = lock_manager or KeyedLockManager()
        self.publisher = publisher or LoggingEventPublisher()
        self.clock = clock
        self.retry_attempts = retry_attempts or settings.STORAGE_RETRY_ATTEMPTS
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.05, min=0.05, max=1)
        self.inactive_days = settings.INACTIVE_MATCH_DAYS

    # ── Creation ─────────────────────────────────────────────────────────

    async def create_from_interests(
        self,
        interest_a: InterestRecord,
        interest_b: InterestRecord,
        compatibility: CompatibilityResult,
        scenario_score: Optional[int] = None,
    ) -> MatchState:
        """Create an ACTIVE match from a mutual interest pair.

        Raises
        ------
        InvalidArgumentError
            If the interests are not one founder-side and one builder-side
            record for the same founder, builder and opening.
        PreconditionFailedError
            If ``compatibility`` did not pass the hard filters.
        ConflictError
            If a match already exists for the (builder, opening) pair.
        """
        state = lifecycle.new_match(
            interest_a,
            interest_b,
            compatibility,
            now=self.clock(),
            scenario_score=scenario_score,
        )
        log = logger.bind(
            match_id=str(state.id),
            builder_id=str(state.builder_id),
            opening_id=str(state.opening_id),
        )

        try:
            async with self.locks.hold(f"{state.builder_id}:{state.opening_id}"):
                async for attempt in self._retrying():
                    with attempt:
                        await self.repository.create(state)
        except MatchEngineError as exc:
            log.warning("match_create_rejected", error=exc.message, error_type=type(exc).__name__)
            raise

        log.info(
            "match_created",
            compatibility_score=state.compatibility_score,
            scenario_compatibility=state.scenario_compatibility,
        )
        await self._publish(events.MATCH_CREATED, state)
        return state

    async def score_and_create(
        self,
        interest_a: InterestRecord,
        interest_b: InterestRecord,
        opening: OpeningTerms,
        founder: FounderTerms,
        builder: BuilderTerms,
    ) -> MatchState:
        """Score the pair from profile terms, then create the match.

        The scenario sub-score comes from the stored scenario responses when
        a scenario service is configured; otherwise it is treated as not
        assessed and its weight is redistributed.
        """
        founder_side, builder_side = lifecycle.validate_interest_pair(interest_a, interest_b)
        if (
            opening.opening_id != builder_side.opening_id
            or founder.founder_id != founder_side.founder_id
            or builder.builder_id != builder_side.builder_id
        ):
            raise InvalidArgumentError("Profile terms do not belong to the interest pair")

        scenario_score: Optional[int] = None
        if self.scenario_service is not None and self.scenario_service.store is not None:
            scenario = await self.scenario_service.compare_users(
                founder.founder_id, builder.builder_id
            )
            scenario_score = scenario.score

        result = self.compatibility_service.evaluate(opening, founder, builder, scenario_score)
        return await self.create_from_interests(
            interest_a, interest_b, result, scenario_score=scenario_score
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, match_id: uuid.UUID) -> MatchState:
        state = await self.repository.find_by_id(match_id)
        if state is None:
            raise NotFoundError("Match not found", match_id=str(match_id))
        return state

    async def founder_view(self, match_id: uuid.UUID) -> dict[str, Any]:
        return (await self.get(match_id)).founder_view(self.clock())

    async def builder_view(self, match_id: uuid.UUID) -> dict[str, Any]:
        return (await self.get(match_id)).builder_view(self.clock())

    async def view_for(self, match_id: uuid.UUID, user_id: uuid.UUID) -> dict[str, Any]:
        """Role view for one participant, with the other side as ``counterpart_id``.

        A user outside the match gets ``NotFoundError``, so match ids do not
        leak to non-participants.
        """
        state = await self.get(match_id)
        if not state.is_participant(user_id):
            raise NotFoundError("Match not found", match_id=str(match_id))
        now = self.clock()
        view = state.founder_view(now) if user_id == state.founder_id else state.builder_view(now)
        view["counterpart_id"] = str(state.other_participant(user_id))
        return view

    # ── Lifecycle operations ─────────────────────────────────────────────

    async def link_conversation(
        self,
        match_id: uuid.UUID,
        conversation_id: uuid.UUID,
        actor: Optional[uuid.UUID] = None,
    ) -> MatchState:
        before, after = await self._transition(
            match_id, LinkConversation(conversation_id=conversation_id, actor=actor)
        )
        if not before.conversation_started:
            await self._publish(
                events.CONVERSATION_STARTED, after, conversation_id=str(conversation_id)
            )
        return after

    async def update_message_count(self, match_id: uuid.UUID, count: int) -> MatchState:
        _, after = await self._transition(match_id, UpdateMessageCount(count=count))
        return after

    async def start_trial(
        self,
        match_id: uuid.UUID,
        trial_id: uuid.UUID,
        actor: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> MatchState:
        _, after = await self._transition(
            match_id, StartTrial(trial_id=trial_id, actor=actor, reason=reason)
        )
        await self._publish(events.TRIAL_STARTED, after, trial_id=str(trial_id))
        return after

    async def complete_trial(
        self,
        match_id: uuid.UUID,
        outcome: str,
        reason: Optional[str] = None,
        actor: Optional[uuid.UUID] = None,
    ) -> MatchState:
        _, after = await self._transition(
            match_id, CompleteTrial(outcome=outcome, reason=reason, actor=actor)
        )
        await self._publish(
            events.TRIAL_COMPLETED, after, trial_outcome=after.trial_outcome.value
        )
        return after

    async def mark_hired(
        self,
        match_id: uuid.UUID,
        reason: Optional[str] = None,
        actor: Optional[uuid.UUID] = None,
    ) -> MatchState:
        _, after = await self._transition(match_id, MarkHired(reason=reason, actor=actor))
        await self._publish(events.MATCH_HIRED, after)
        return after

    async def end_match(
        self,
        match_id: uuid.UUID,
        outcome: str,
        reason: Optional[str] = None,
        actor: Optional[uuid.UUID] = None,
    ) -> MatchState:
        _, after = await self._transition(
            match_id, EndMatch(outcome=outcome, reason=reason, actor=actor)
        )
        await self._publish(events.MATCH_ENDED, after)
        return after

    async def submit_founder_feedback(
        self, match_id: uuid.UUID, feedback: Feedback, actor: Optional[uuid.UUID] = None
    ) -> MatchState:
        return await self._submit_feedback(match_id, FeedbackSide.FOUNDER, feedback, actor)

    async def submit_builder_feedback(
        self, match_id: uuid.UUID, feedback: Feedback, actor: Optional[uuid.UUID] = None
    ) -> MatchState:
        return await self._submit_feedback(match_id, FeedbackSide.BUILDER, feedback, actor)

    async def record_activity(self, match_id: uuid.UUID) -> MatchState:
        _, after = await self._transition(match_id, RecordActivity())
        return after

    async def set_story_flags(
        self,
        match_id: uuid.UUID,
        is_featured: Optional[bool] = None,
        can_share_story: Optional[bool] = None,
    ) -> MatchState:
        _, after = await self._transition(
            match_id,
            SetStoryFlags(is_featured=is_featured, can_share_story=can_share_story),
        )
        return after

    async def _submit_feedback(
        self,
        match_id: uuid.UUID,
        side: FeedbackSide,
        feedback: Feedback,
        actor: Optional[uuid.UUID],
    ) -> MatchState:
        _, after = await self._transition(
            match_id, SubmitFeedback(side=side, feedback=feedback, actor=actor)
        )
        await self._publish(
            events.FEEDBACK_SUBMITTED,
            after,
            side=side.value,
            both_submitted=after.has_both_feedback,
        )
        return after

    # ── Reporting ────────────────────────────────────────────────────────

    async def list_for_founder(
        self, founder_id: uuid.UUID, status: Optional[MatchStatus] = None
    ) -> list[MatchState]:
        return await self.repository.find(
            MatchQuery(founder_id=founder_id, statuses=_one_status(status))
        )

    async def list_for_builder(
        self, builder_id: uuid.UUID, status: Optional[MatchStatus] = None
    ) -> list[MatchState]:
        return await self.repository.find(
            MatchQuery(builder_id=builder_id, statuses=_one_status(status))
        )

    async def list_active_for_user(self, user_id: uuid.UUID) -> list[MatchState]:
        return await self.repository.find(
            MatchQuery(participant_id=user_id, statuses=ACTIVE_STATUSES)
        )

    async def count_by_status(self, user_id: uuid.UUID, role: str) -> dict[str, int]:
        """Per-status counts for one user, with every status present."""
        if role == FeedbackSide.FOUNDER.value:
            query = MatchQuery(founder_id=user_id)
        elif role == FeedbackSide.BUILDER.value:
            query = MatchQuery(builder_id=user_id)
        else:
            raise InvalidArgumentError("Role must be 'founder' or 'builder'", role=role)
        counts = await self.repository.count_by_status(query)
        return {s.value: counts.get(s.value, 0) for s in MatchStatus}

    async def opening_stats(self, opening_id: uuid.UUID) -> dict[str, Any]:
        query = MatchQuery(opening_id=opening_id)
        summary = await self.repository.summarize(query)
        by_status = await self.repository.count_by_status(query)
        return {
            "opening_id": str(opening_id),
            "total": summary.total,
            "by_status": by_status,
            "avg_compatibility": _round_avg(summary.avg_compatibility),
        }

    async def platform_stats(self) -> dict[str, Any]:
        everything = MatchQuery()
        summary = await self.repository.summarize(everything)
        return {
            "by_status": await self.repository.count_by_status(everything),
            "by_outcome": await self.repository.count_by_outcome(
                everything, exclude_pending=True
            ),
            "overall": {
                "total": summary.total,
                "avg_compatibility": _round_avg(summary.avg_compatibility),
                "successful_hires": summary.successful_hires,
                "with_trial": summary.with_trial,
            },
        }

    async def success_stories(self, limit: int = 10) -> list[MatchState]:
        return await self.repository.find(
            MatchQuery(
                is_successful_hire=True,
                can_share_story=True,
                is_featured=True,
                order_by="completed_at",
                limit=limit,
            )
        )

    async def inactive_matches(self, days: Optional[int] = None) -> list[MatchState]:
        days = self.inactive_days if days is None else days
        if days < 0:
            raise InvalidArgumentError("days cannot be negative", days=days)
        cutoff = self.clock() - timedelta(days=days)
        return await self.repository.find(
            MatchQuery(statuses=ACTIVE_STATUSES, inactive_before=cutoff)
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(_RETRYABLE),
            stop=stop_after_attempt(self.retry_attempts),
            wait=self.retry_wait,
            before_sleep=_log_retry,
            reraise=True,
        )

    async def _transition(
        self, match_id: uuid.UUID, event: LifecycleEvent
    ) -> tuple[MatchState, MatchState]:
        """Run one event through lock → load → apply → save.

        Returns the snapshot the event was applied to and the saved result.
        """
        log = logger.bind(match_id=str(match_id), event_name=event.name)
        try:
            async with self.locks.hold(str(match_id)):
                async for attempt in self._retrying():
                    with attempt:
                        before = await self.get(match_id)
                        transition = lifecycle.apply(before, event, self.clock())
                        await self.repository.save(
                            transition.state, expected_version=before.version
                        )
        except MatchEngineError as exc:
            log.warning(
                "match_transition_rejected",
                error=exc.message,
                error_type=type(exc).__name__,
            )
            raise

        after = transition.state
        log.info(
            "match_transition_applied",
            status=after.status.value,
            status_changed=transition.status_changed,
            version=after.version,
        )
        return before, after

    async def _publish(self, event_name: str, match: MatchState, **extra: Any) -> None:
        try:
            await self.publisher.publish(event_name, match, **extra)
        except Exception:
            logger.exception(
                "match_event_publish_failed",
                event_name=event_name,
                match_id=str(match.id),
            )


def _one_status(status: Optional[MatchStatus]) -> Optional[frozenset[MatchStatus]]:
    return frozenset({status}) if status is not None else None


def _round_avg(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "storage_retry",
        attempt_number=retry_state.attempt_number,
        error_type=type(exc).__name__ if exc else None,
    )
