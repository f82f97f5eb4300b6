"""
BuilderLink: Matches API

Thin HTTP wrappers over ``MatchService``.  All rules live in the service and
the lifecycle; domain errors are turned into responses by the exception
handlers registered in ``builderlink.main``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from builderlink.api.dependencies import get_match_service
from builderlink.schemas.match import (
    ConversationLinkRequest,
    EndRequest,
    Feedback,
    HireRequest,
    MatchCreateRequest,
    MatchScoreAndCreateRequest,
    MatchState,
    MatchStatus,
    MessageCountRequest,
    StoryFlagsRequest,
    TrialCompleteRequest,
    TrialStartRequest,
)
from builderlink.services.match_service import MatchService

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=MatchState,
    status_code=status.HTTP_201_CREATED,
    summary="Create a match from a mutual interest pair",
)
async def create_match(
    body: MatchCreateRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.create_from_interests(
        body.interest_a,
        body.interest_b,
        body.compatibility,
        scenario_score=body.scenario_compatibility,
    )


@router.post(
    "/score",
    response_model=MatchState,
    status_code=status.HTTP_201_CREATED,
    summary="Score a mutual interest pair from profile terms and create the match",
)
async def score_and_create_match(
    body: MatchScoreAndCreateRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.score_and_create(
        body.interest_a, body.interest_b, body.opening, body.founder, body.builder
    )


# ──────────────────────────────────────────────────────────────────────────────
# Listings & stats (declared before /{match_id} so the literals win)
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/stats", summary="Platform-wide match statistics")
async def platform_stats(service: MatchService = Depends(get_match_service)) -> dict:
    return await service.platform_stats()


@router.get("/success-stories", response_model=list[MatchState])
async def success_stories(
    limit: int = Query(10, ge=1, le=100),
    service: MatchService = Depends(get_match_service),
) -> list[MatchState]:
    return await service.success_stories(limit=limit)


@router.get("/inactive", response_model=list[MatchState])
async def inactive_matches(
    days: Optional[int] = Query(None, ge=0),
    service: MatchService = Depends(get_match_service),
) -> list[MatchState]:
    return await service.inactive_matches(days=days)


@router.get("/founder/{founder_id}", response_model=list[MatchState])
async def list_for_founder(
    founder_id: uuid.UUID,
    status_filter: Optional[MatchStatus] = Query(None, alias="status"),
    service: MatchService = Depends(get_match_service),
) -> list[MatchState]:
    return await service.list_for_founder(founder_id, status=status_filter)


@router.get("/builder/{builder_id}", response_model=list[MatchState])
async def list_for_builder(
    builder_id: uuid.UUID,
    status_filter: Optional[MatchStatus] = Query(None, alias="status"),
    service: MatchService = Depends(get_match_service),
) -> list[MatchState]:
    return await service.list_for_builder(builder_id, status=status_filter)


@router.get("/user/{user_id}/active", response_model=list[MatchState])
async def list_active_for_user(
    user_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> list[MatchState]:
    return await service.list_active_for_user(user_id)


@router.get("/user/{user_id}/counts")
async def count_by_status(
    user_id: uuid.UUID,
    role: str = Query(...),
    service: MatchService = Depends(get_match_service),
) -> dict[str, int]:
    return await service.count_by_status(user_id, role)


@router.get("/openings/{opening_id}/stats")
async def opening_stats(
    opening_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> dict:
    return await service.opening_stats(opening_id)


# ──────────────────────────────────────────────────────────────────────────────
# Single match
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{match_id}", response_model=MatchState)
async def get_match(
    match_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.get(match_id)


@router.get("/{match_id}/founder-view")
async def founder_view(
    match_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> dict:
    return await service.founder_view(match_id)


@router.get("/{match_id}/builder-view")
async def builder_view(
    match_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> dict:
    return await service.builder_view(match_id)


@router.get("/{match_id}/view/{user_id}")
async def participant_view(
    match_id: uuid.UUID,
    user_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> dict:
    return await service.view_for(match_id, user_id)


# ──────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/{match_id}/conversation", response_model=MatchState)
async def link_conversation(
    match_id: uuid.UUID,
    body: ConversationLinkRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.link_conversation(match_id, body.conversation_id, actor=body.actor)


@router.put("/{match_id}/messages", response_model=MatchState)
async def update_message_count(
    match_id: uuid.UUID,
    body: MessageCountRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.update_message_count(match_id, body.count)


@router.post("/{match_id}/trial", response_model=MatchState)
async def start_trial(
    match_id: uuid.UUID,
    body: TrialStartRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.start_trial(match_id, body.trial_id, actor=body.actor)


@router.post("/{match_id}/trial/complete", response_model=MatchState)
async def complete_trial(
    match_id: uuid.UUID,
    body: TrialCompleteRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.complete_trial(
        match_id, body.outcome, reason=body.reason, actor=body.actor
    )


@router.post("/{match_id}/hire", response_model=MatchState)
async def mark_hired(
    match_id: uuid.UUID,
    body: HireRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.mark_hired(match_id, reason=body.reason, actor=body.actor)


@router.post("/{match_id}/end", response_model=MatchState)
async def end_match(
    match_id: uuid.UUID,
    body: EndRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.end_match(
        match_id, body.outcome, reason=body.reason, actor=body.actor
    )


@router.post("/{match_id}/feedback/founder", response_model=MatchState)
async def submit_founder_feedback(
    match_id: uuid.UUID,
    body: Feedback,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.submit_founder_feedback(match_id, body)


@router.post("/{match_id}/feedback/builder", response_model=MatchState)
async def submit_builder_feedback(
    match_id: uuid.UUID,
    body: Feedback,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.submit_builder_feedback(match_id, body)


@router.post("/{match_id}/activity", response_model=MatchState)
async def record_activity(
    match_id: uuid.UUID,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.record_activity(match_id)


@router.patch("/{match_id}/story", response_model=MatchState)
async def set_story_flags(
    match_id: uuid.UUID,
    body: StoryFlagsRequest,
    service: MatchService = Depends(get_match_service),
) -> MatchState:
    return await service.set_story_flags(
        match_id, is_featured=body.is_featured, can_share_story=body.can_share_story
    )
