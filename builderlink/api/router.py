"""
BuilderLink: Main API Router

Aggregates all sub-routers under a single prefix so that ``builderlink.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from builderlink.api import matching, scenarios

router = APIRouter()

router.include_router(scenarios.router, prefix="/scenarios", tags=["Scenarios"])
router.include_router(matching.router, prefix="/matches", tags=["Matches"])
