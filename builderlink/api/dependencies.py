"""
BuilderLink: FastAPI dependencies.

Services live on ``app.state`` (built by the lifespan, or injected by
``create_app`` in tests) and are handed to endpoints through these getters.
"""

from fastapi import Request

from builderlink.services.match_service import MatchService
from builderlink.services.scenario_service import ScenarioService


def get_match_service(request: Request) -> MatchService:
    return request.app.state.match_service


def get_scenario_service(request: Request) -> ScenarioService:
    return request.app.state.scenario_service
