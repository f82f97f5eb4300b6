"""
BuilderLink: Scenario assessment API

Endpoints for the scenario catalogue, submitting and reading a user's answer
set, and comparing two users' working styles.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status

from builderlink.api.dependencies import get_scenario_service
from builderlink.config import get_settings
from builderlink.schemas.scenario import (
    ScenarioCompatibilityResult,
    ScenarioResponseOut,
    ScenarioResponseRecord,
    ScenarioSubmit,
)
from builderlink.services.scenario_service import ScenarioService

logger = structlog.get_logger("builderlink.api.scenarios")

router = APIRouter()


def _to_out(record: ScenarioResponseRecord, service: ScenarioService) -> ScenarioResponseOut:
    now = service.clock()
    cooldown = get_settings().SCENARIO_RETAKE_DAYS
    return ScenarioResponseOut(
        user_id=record.user_id,
        answers=record.answers,
        completed_at=record.completed_at,
        retake_count=record.retake_count,
        can_retake=record.can_retake(now, cooldown),
        days_until_retake=record.days_until_retake(now, cooldown),
        scenario_version=record.scenario_version,
    )


@router.get("", summary="List the six assessment scenarios")
async def list_scenarios() -> dict:
    return {"scenarios": ScenarioService.catalogue()}


@router.get(
    "/compatibility/{user_a_id}/{user_b_id}",
    response_model=ScenarioCompatibilityResult,
    summary="Working-style compatibility between two users",
)
async def scenario_compatibility(
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
    service: ScenarioService = Depends(get_scenario_service),
) -> ScenarioCompatibilityResult:
    """Score is ``null`` when either user has not completed the assessment."""
    return await service.compare_users(user_a_id, user_b_id)


@router.put(
    "/{user_id}",
    response_model=ScenarioResponseOut,
    status_code=status.HTTP_200_OK,
    summary="Submit or retake the scenario assessment",
)
async def submit_scenarios(
    user_id: uuid.UUID,
    body: ScenarioSubmit,
    service: ScenarioService = Depends(get_scenario_service),
) -> ScenarioResponseOut:
    record = await service.submit_responses(
        user_id, body.responses, completion_time_seconds=body.completion_time_seconds
    )
    logger.info("scenarios_submitted", user_id=str(user_id), retake_count=record.retake_count)
    return _to_out(record, service)


@router.get(
    "/{user_id}",
    response_model=ScenarioResponseOut,
    summary="Get a user's latest scenario answers",
)
async def get_scenarios(
    user_id: uuid.UUID,
    service: ScenarioService = Depends(get_scenario_service),
) -> ScenarioResponseOut:
    return _to_out(await service.get_responses(user_id), service)
