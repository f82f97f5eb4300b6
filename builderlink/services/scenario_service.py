"""
BuilderLink: Scenario-based working-style compatibility.

Each of the six scenarios is scored independently on the ordinal scale A-D:

  exact     (same answer)              -> 10 points
  adjacent  (ordinal distance of 1)    ->  5 points
  opposite  (ordinal distance of 2+)   ->  0 points

The raw total (max 60) is normalised to 0-100 with ``round(total / 60 * 100)``.
A missing or incomplete answer set yields a "not assessed" result whose score
is ``None``, which is distinct from a computed score of 0.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from builderlink.config import get_settings
from builderlink.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    TransientStorageError,
)
from builderlink.repositories.base import ScenarioResponseStore
from builderlink.schemas.scenario import (
    SCENARIO_FIELDS,
    ScenarioAnswers,
    ScenarioCompatibilityResult,
    ScenarioMatchClass,
    ScenarioOption,
    ScenarioPairBreakdown,
    ScenarioResponseRecord,
)
from builderlink.utils.locks import KeyedLockManager

logger = structlog.get_logger("builderlink.scenario_service")


# ── Scenario catalogue ───────────────────────────────────────────────────────

SCENARIOS: dict[str, dict] = {
    "scenario1": {
        "id": "crisis_response",
        "title": "The 2 AM Crisis",
        "context": "Critical bug discovered. Investor demo in 7 hours.",
        "options": {
            "A": "Pull all-nighter, fix immediately",
            "B": "Assess severity, sleep if not critical, fix with clear head",
            "C": "Wake team immediately, all hands on deck",
            "D": "Push the demo, never present broken product",
        },
    },
    "scenario2": {
        "id": "conflict_resolution",
        "title": "The Co-founder Disagreement",
        "context": "Fundamental product direction disagreement for 2 weeks.",
        "options": {
            "A": "Expertise-based authority: expert decides",
            "B": "Data-driven: run experiments, let data decide",
            "C": "External arbitration: bring in advisor",
            "D": "Disagree and commit: one person decides, both align",
        },
    },
    "scenario3": {
        "id": "people_management",
        "title": "The Underperforming Teammate",
        "context": "First hire at 40% expected output after 6 weeks.",
        "options": {
            "A": "Direct conversation, 2-week improvement window, then decide",
            "B": "Part ways quickly: can't carry passengers early stage",
            "C": "Role adjustment: maybe wrong seat, not wrong bus",
            "D": "More patience: 6 weeks isn't enough to judge",
        },
    },
    "scenario4": {
        "id": "financial_decisions",
        "title": "The Runway Crunch",
        "context": "3 months runway, revenue not growing fast enough.",
        "options": {
            "A": "Cut costs aggressively to extend runway",
            "B": "Double down on growth, burn to hit numbers",
            "C": "Start fundraising immediately",
            "D": "Revenue shortcuts: consulting, services, anything",
        },
    },
    "scenario5": {
        "id": "competitive_response",
        "title": "The Competitor Launch",
        "context": "Well-funded competitor ships feature you've built for 3 months.",
        "options": {
            "A": "Ship now: second is fine if better",
            "B": "Pivot: find angle they're not covering",
            "C": "Ignore: focus on users, not competitors",
            "D": "Study them: learn from their launch before shipping",
        },
    },
    "scenario6": {
        "id": "negotiation_style",
        "title": "The Equity Negotiation",
        "context": "Talented person wants 5%, you think they deserve 2%.",
        "options": {
            "A": "Meet middle: relationship over negotiation",
            "B": "Hold firm: explain reasoning, take it or leave it",
            "C": "Milestone-based: 2% now, path to 4% on performance",
            "D": "Understand first: ask them to justify before countering",
        },
    },
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "scenario_upsert_retry",
        attempt_number=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


class ScenarioService:
    """Score working-style alignment from two scenario answer sets and keep
    each user's latest answer set in the injected store."""

    EXACT_POINTS: int = 10
    ADJACENT_POINTS: int = 5
    OPPOSITE_POINTS: int = 0
    MAX_SCORE: int = EXACT_POINTS * len(SCENARIO_FIELDS)  # 60

    def __init__(
        self,
        store: ScenarioResponseStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lock_manager: Any | None = None,
        retry_attempts: int | None = None,
        retry_wait: Any | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.locks = lock_manager or KeyedLockManager()
        self.retry_attempts = retry_attempts or get_settings().STORAGE_RETRY_ATTEMPTS
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.05, min=0.05, max=1)

    # ── Pure scoring ─────────────────────────────────────────────────────

    def classify_pair(
        self, answer_a: ScenarioOption, answer_b: ScenarioOption
    ) -> tuple[int, ScenarioMatchClass]:
        """Points and match class for one scenario."""
        distance = abs(answer_a.ordinal - answer_b.ordinal)
        if distance == 0:
            return self.EXACT_POINTS, ScenarioMatchClass.EXACT
        if distance == 1:
            return self.ADJACENT_POINTS, ScenarioMatchClass.ADJACENT
        return self.OPPOSITE_POINTS, ScenarioMatchClass.OPPOSITE

    def calculate_compatibility(
        self,
        answers_a: ScenarioAnswers | None,
        answers_b: ScenarioAnswers | None,
    ) -> ScenarioCompatibilityResult:
        """Compare two answer sets.

        Returns a result with ``score=None`` when either set is missing or
        incomplete.  Otherwise ``score`` is the normalised 0-100 integer and
        ``breakdown`` maps each scenario field to both answers, the points
        awarded and the match class.
        """
        if answers_a is None or answers_b is None:
            return ScenarioCompatibilityResult(
                reason="One or both users have not completed scenario assessment",
            )
        if not (answers_a.is_complete and answers_b.is_complete):
            return ScenarioCompatibilityResult(
                reason="One or both scenario assessments are incomplete",
            )

        total = 0
        breakdown: dict[str, ScenarioPairBreakdown] = {}
        for name in SCENARIO_FIELDS:
            a = getattr(answers_a, name)
            b = getattr(answers_b, name)
            points, match_class = self.classify_pair(a, b)
            total += points
            breakdown[name] = ScenarioPairBreakdown(
                user1=a, user2=b, score=points, match=match_class
            )

        # total is a multiple of 5, so total * 100 / 60 never lands on .5
        normalised = round(total / self.MAX_SCORE * 100)

        logger.debug(
            "scenario_compatibility_calculated",
            raw_score=total,
            score=normalised,
        )
        return ScenarioCompatibilityResult(
            score=normalised,
            raw_score=total,
            max_score=self.MAX_SCORE,
            breakdown=breakdown,
        )

    # ── Store-backed operations ──────────────────────────────────────────

    async def compare_users(
        self, user_a_id: uuid.UUID, user_b_id: uuid.UUID
    ) -> ScenarioCompatibilityResult:
        """Look up both users' latest answers and compare them."""
        store = self._require_store()
        record_a = await store.get_by_user(user_a_id)
        record_b = await store.get_by_user(user_b_id)
        return self.calculate_compatibility(
            record_a.answers if record_a is not None else None,
            record_b.answers if record_b is not None else None,
        )

    async def get_responses(self, user_id: uuid.UUID) -> ScenarioResponseRecord:
        record = await self._require_store().get_by_user(user_id)
        if record is None:
            raise NotFoundError("Scenario responses not found", user_id=str(user_id))
        return record

    async def submit_responses(
        self,
        user_id: uuid.UUID,
        responses: Mapping[str, str],
        completion_time_seconds: Optional[int] = None,
    ) -> ScenarioResponseRecord:
        """Validate and upsert a full answer set.

        Answers are upper-cased first.  Every scenario must be present and be
        one of A-D, otherwise ``InvalidArgumentError`` is raised and nothing
        is stored.
        """
        answers = self.parse_answers(responses)
        store = self._require_store()
        now = self.clock()

        # one writer per user: every concurrent retake is counted
        async with self.locks.hold(f"scenario:{user_id}"):
            async for attempt in self._retrying():
                with attempt:
                    existing = await store.get_by_user(user_id)
                    if existing is None:
                        record = ScenarioResponseRecord(
                            user_id=user_id,
                            answers=answers,
                            completed_at=now,
                            completion_time_seconds=completion_time_seconds,
                        )
                    else:
                        record = existing.model_copy(
                            update={
                                "answers": answers,
                                "completed_at": now,
                                "retake_count": existing.retake_count + 1,
                                "last_retake_at": now,
                                "completion_time_seconds": completion_time_seconds,
                            }
                        )
                    stored = await store.upsert(record)

        logger.info(
            "scenario_responses_saved",
            user_id=str(user_id),
            retake_count=stored.retake_count,
        )
        return stored

    def parse_answers(self, responses: Mapping[str, str]) -> ScenarioAnswers:
        values: dict[str, ScenarioOption] = {}
        for name in SCENARIO_FIELDS:
            raw = responses.get(name)
            if not raw:
                raise InvalidArgumentError(f"{name} response is required", scenario=name)
            try:
                values[name] = ScenarioOption(str(raw).strip().upper())
            except ValueError:
                raise InvalidArgumentError(
                    f"{name} must be A, B, C, or D", scenario=name, value=raw
                ) from None
        return ScenarioAnswers(**values)

    @staticmethod
    def catalogue() -> dict[str, dict]:
        return SCENARIOS

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type((ConflictError, TransientStorageError)),
            stop=stop_after_attempt(self.retry_attempts),
            wait=self.retry_wait,
            before_sleep=_log_retry,
            reraise=True,
        )

    def _require_store(self) -> ScenarioResponseStore:
        if self.store is None:
            raise RuntimeError("ScenarioService was constructed without a store")
        return self.store
