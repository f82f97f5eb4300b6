"""
BuilderLink: ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from builderlink.models.match import Match
from builderlink.models.scenario import ScenarioResponse

__all__ = [
    "Match",
    "ScenarioResponse",
]
