"""
BuilderLink: Match lifecycle as a pure transition function.

``apply(state, event, now)`` never mutates ``state``.  It returns a
``Transition`` holding the next snapshot and the status-history entry that
was appended, if any.  Persisting the snapshot is the caller's job.

Status graph::

    ACTIVE ──start_trial──▶ IN_TRIAL ──complete_trial(SUCCESS)──────▶ COMPLETED
      ▲                        │      ──complete_trial(UNSUCCESSFUL)─▶ ENDED
      └──complete_trial(CANCELLED)
    any ──mark_hired──▶ HIRED
    any ──end_match───▶ ENDED

Conversation, message-count, feedback, activity and story-flag events keep
the current status.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError

from builderlink.errors import InvalidArgumentError, PreconditionFailedError
from builderlink.schemas.compatibility import CompatibilityResult
from builderlink.schemas.match import (
    CLOSING_STATUSES,
    END_OUTCOMES,
    TERMINAL_TRIAL_OUTCOMES,
    CompleteTrial,
    EndMatch,
    FeedbackSide,
    InterestParty,
    InterestRecord,
    LifecycleEvent,
    LinkConversation,
    MarkHired,
    MatchAnnotations,
    MatchOutcome,
    MatchState,
    MatchStatus,
    RecordActivity,
    SetStoryFlags,
    StartTrial,
    StatusHistoryEntry,
    SubmitFeedback,
    TrialOutcome,
    UpdateMessageCount,
)


@dataclass(frozen=True)
class Transition:
    state: MatchState
    history_entry: Optional[StatusHistoryEntry] = None

    @property
    def status_changed(self) -> bool:
        return self.history_entry is not None


# ── Match creation ───────────────────────────────────────────────────────────

def validate_interest_pair(
    interest_a: InterestRecord, interest_b: InterestRecord
) -> tuple[InterestRecord, InterestRecord]:
    """Return ``(founder_interest, builder_interest)`` or raise
    ``InvalidArgumentError`` if the two records are not a mutual pair."""
    by_party = {interest_a.initiated_by: interest_a, interest_b.initiated_by: interest_b}
    if set(by_party) != {InterestParty.FOUNDER, InterestParty.BUILDER}:
        raise InvalidArgumentError(
            "Interests must be one founder-initiated and one builder-initiated record"
        )
    founder_side = by_party[InterestParty.FOUNDER]
    builder_side = by_party[InterestParty.BUILDER]
    for attr in ("founder_id", "builder_id", "opening_id"):
        if getattr(founder_side, attr) != getattr(builder_side, attr):
            raise InvalidArgumentError(
                f"Interests disagree on {attr}",
                founder_interest=str(founder_side.interest_id),
                builder_interest=str(builder_side.interest_id),
            )
    return founder_side, builder_side


def new_match(
    interest_a: InterestRecord,
    interest_b: InterestRecord,
    compatibility: CompatibilityResult,
    now: datetime,
    scenario_score: Optional[int] = None,
    match_id: Optional[uuid.UUID] = None,
    source: str = "mutual_interest",
) -> MatchState:
    """Build the initial ACTIVE snapshot for a mutual interest pair.

    The compatibility result is copied onto the match as-is and is never
    recomputed afterwards.  ``scenario_score`` defaults to the breakdown's
    scenario sub-score; an explicit value must agree with it.
    """
    founder_side, builder_side = validate_interest_pair(interest_a, interest_b)
    if not compatibility.passes:
        raise PreconditionFailedError(
            "Compatibility hard filters failed", reason=compatibility.reason
        )
    scenario_score = _reconcile_scenario_score(compatibility, scenario_score)

    return MatchState(
        id=match_id or uuid.uuid4(),
        founder_id=founder_side.founder_id,
        founder_profile_id=founder_side.founder_profile_id,
        builder_id=builder_side.builder_id,
        builder_profile_id=builder_side.builder_profile_id,
        opening_id=builder_side.opening_id,
        interest_id=builder_side.interest_id,
        status=MatchStatus.ACTIVE,
        status_history=(
            StatusHistoryEntry(
                status=MatchStatus.ACTIVE, changed_at=now, reason="Mutual interest"
            ),
        ),
        compatibility_score=compatibility.score,
        compatibility_breakdown=compatibility.breakdown,
        compatibility_weights=compatibility.weights_applied,
        scenario_compatibility=scenario_score,
        matched_at=now,
        last_activity_at=now,
        annotations=MatchAnnotations(source=source, quality=compatibility.quality),
    )


def _reconcile_scenario_score(
    compatibility: CompatibilityResult, scenario_score: Optional[int]
) -> Optional[int]:
    if compatibility.breakdown is None:
        return scenario_score
    scored = compatibility.breakdown.scenario
    if scenario_score is None:
        return round(scored) if scored is not None else None
    if scored is None or scenario_score != round(scored):
        raise InvalidArgumentError(
            "Scenario compatibility disagrees with the compatibility breakdown",
            scenario_compatibility=scenario_score,
            breakdown_scenario=scored,
        )
    return scenario_score


# ── Token parsing ────────────────────────────────────────────────────────────

def _parse_trial_outcome(token: str) -> TrialOutcome:
    try:
        outcome = TrialOutcome(token)
    except ValueError:
        outcome = None
    if outcome not in TERMINAL_TRIAL_OUTCOMES:
        raise InvalidArgumentError(
            "Trial outcome must be SUCCESS, UNSUCCESSFUL or CANCELLED", outcome=token
        )
    return outcome


def _parse_end_outcome(token: str) -> MatchOutcome:
    try:
        outcome = MatchOutcome(token)
    except ValueError:
        outcome = None
    if outcome not in END_OUTCOMES:
        raise InvalidArgumentError(
            "End outcome must be one of "
            + ", ".join(sorted(o.value for o in END_OUTCOMES)),
            outcome=token,
        )
    return outcome


# ── Event handlers ───────────────────────────────────────────────────────────
#
# Each handler returns the field updates for its event.  Status, history,
# completed_at, last_activity_at and version are handled centrally in apply().

def _link_conversation(state: MatchState, event: LinkConversation, now: datetime) -> dict:
    updates: dict[str, Any] = {
        "conversation_id": event.conversation_id,
        "conversation_started": True,
    }
    if state.first_message_at is None:
        updates["first_message_at"] = now
    return updates


def _update_message_count(
    state: MatchState, event: UpdateMessageCount, now: datetime
) -> dict:
    if event.count < 0:
        raise InvalidArgumentError("Message count cannot be negative", count=event.count)
    return {"message_count": event.count, "last_message_at": now}


def _start_trial(state: MatchState, event: StartTrial, now: datetime) -> dict:
    return {
        "status": MatchStatus.IN_TRIAL,
        "trial_id": event.trial_id,
        "had_trial": True,
        "trial_outcome": TrialOutcome.PENDING,
        "trial_started_at": now,
    }


def _complete_trial(state: MatchState, event: CompleteTrial, now: datetime) -> dict:
    outcome = _parse_trial_outcome(event.outcome)
    if outcome == TrialOutcome.SUCCESS:
        return {
            "status": MatchStatus.COMPLETED,
            "trial_outcome": outcome,
            "outcome": MatchOutcome.TRIAL_SUCCESS,
            "outcome_recorded_at": now,
        }
    if outcome == TrialOutcome.UNSUCCESSFUL:
        return {
            "status": MatchStatus.ENDED,
            "trial_outcome": outcome,
            "outcome": MatchOutcome.TRIAL_FAILED,
            "outcome_recorded_at": now,
        }
    # cancelled trial: back to an open match
    return {
        "status": MatchStatus.ACTIVE,
        "trial_outcome": outcome,
        "outcome": MatchOutcome.PENDING,
    }


def _mark_hired(state: MatchState, event: MarkHired, now: datetime) -> dict:
    updates: dict[str, Any] = {
        "status": MatchStatus.HIRED,
        "outcome": MatchOutcome.HIRED,
        "is_successful_hire": True,
        "outcome_recorded_at": now,
    }
    if event.reason:
        updates["outcome_reason"] = event.reason
    return updates


def _end_match(state: MatchState, event: EndMatch, now: datetime) -> dict:
    updates: dict[str, Any] = {
        "status": MatchStatus.ENDED,
        "outcome": _parse_end_outcome(event.outcome),
        "outcome_recorded_at": now,
    }
    if event.reason:
        updates["outcome_reason"] = event.reason
    return updates


def _submit_feedback(state: MatchState, event: SubmitFeedback, now: datetime) -> dict:
    stamped = event.feedback.model_copy(update={"submitted_at": now})
    field = "founder_feedback" if event.side == FeedbackSide.FOUNDER else "builder_feedback"
    return {field: stamped}


def _record_activity(state: MatchState, event: RecordActivity, now: datetime) -> dict:
    return {}


def _set_story_flags(state: MatchState, event: SetStoryFlags, now: datetime) -> dict:
    updates: dict[str, Any] = {}
    if event.is_featured is not None:
        updates["is_featured"] = event.is_featured
    if event.can_share_story is not None:
        updates["can_share_story"] = event.can_share_story
    return updates


_ANY_STATUS: frozenset[MatchStatus] = frozenset(MatchStatus)


@dataclass(frozen=True)
class _Rule:
    handler: Callable[[MatchState, Any, datetime], dict]
    allowed_from: frozenset[MatchStatus]


TRANSITIONS: dict[type[LifecycleEvent], _Rule] = {
    LinkConversation: _Rule(_link_conversation, _ANY_STATUS),
    UpdateMessageCount: _Rule(_update_message_count, _ANY_STATUS),
    StartTrial: _Rule(_start_trial, frozenset({MatchStatus.ACTIVE})),
    CompleteTrial: _Rule(_complete_trial, frozenset({MatchStatus.IN_TRIAL})),
    MarkHired: _Rule(_mark_hired, _ANY_STATUS),
    EndMatch: _Rule(_end_match, _ANY_STATUS),
    SubmitFeedback: _Rule(_submit_feedback, _ANY_STATUS),
    RecordActivity: _Rule(_record_activity, _ANY_STATUS),
    SetStoryFlags: _Rule(_set_story_flags, _ANY_STATUS),
}


def apply(state: MatchState, event: LifecycleEvent, now: datetime) -> Transition:
    """Apply one lifecycle event to a match snapshot.

    Raises
    ------
    PreconditionFailedError
        If the event is not allowed from the match's current status.
    InvalidArgumentError
        If the event carries an illegal outcome token or value.
    """
    rule = TRANSITIONS.get(type(event))
    if rule is None:
        raise InvalidArgumentError(f"Unknown lifecycle event {type(event).__name__}")
    if state.status not in rule.allowed_from:
        raise PreconditionFailedError(
            f"Cannot {event.name} from status {state.status.value}",
            match_id=str(state.id),
            status=state.status.value,
        )

    updates = rule.handler(state, event, now)
    new_status: MatchStatus = updates.get("status", state.status)

    try:
        return _commit(state, event, updates, new_status, now)
    except ValidationError as exc:
        raise InvalidArgumentError(
            f"Invalid {event.name} payload", errors=exc.errors(include_url=False)
        ) from None


def _commit(
    state: MatchState,
    event: LifecycleEvent,
    updates: dict,
    new_status: MatchStatus,
    now: datetime,
) -> Transition:
    history_entry: Optional[StatusHistoryEntry] = None
    if new_status != state.status:
        history_entry = StatusHistoryEntry(
            status=new_status,
            changed_at=now,
            changed_by=event.actor,
            reason=getattr(event, "reason", None),
        )
        updates["status_history"] = state.status_history + (history_entry,)
        if new_status in CLOSING_STATUSES and state.completed_at is None:
            updates["completed_at"] = now

    updates["last_activity_at"] = now
    updates["version"] = state.version + 1

    # model_copy skips validation, so re-validate the merged snapshot
    next_state = MatchState.model_validate(
        {**state.model_dump(), **updates}
    )
    return Transition(state=next_state, history_entry=history_entry)
