"""
BuilderLink: Storage contracts for matches and scenario responses.

Both an in-memory and a SQLAlchemy implementation satisfy these protocols.
Implementations must enforce (builder, opening) uniqueness atomically and must
reject a ``save`` whose expected version no longer matches the stored one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from builderlink.schemas.match import MatchOutcome, MatchState, MatchStatus
from builderlink.schemas.scenario import ScenarioResponseRecord


@dataclass(frozen=True)
class MatchQuery:
    """Filter for match listing and aggregation.  Unset fields do not filter."""

    founder_id: Optional[uuid.UUID] = None
    builder_id: Optional[uuid.UUID] = None
    participant_id: Optional[uuid.UUID] = None
    opening_id: Optional[uuid.UUID] = None
    statuses: Optional[frozenset[MatchStatus]] = None
    is_successful_hire: Optional[bool] = None
    is_featured: Optional[bool] = None
    can_share_story: Optional[bool] = None
    inactive_before: Optional[datetime] = None
    order_by: str = "last_activity_at"  # last_activity_at / completed_at
    limit: Optional[int] = None

    def matches(self, state: MatchState) -> bool:
        if self.founder_id is not None and state.founder_id != self.founder_id:
            return False
        if self.builder_id is not None and state.builder_id != self.builder_id:
            return False
        if self.participant_id is not None and not state.is_participant(self.participant_id):
            return False
        if self.opening_id is not None and state.opening_id != self.opening_id:
            return False
        if self.statuses is not None and state.status not in self.statuses:
            return False
        if self.is_successful_hire is not None and state.is_successful_hire != self.is_successful_hire:
            return False
        if self.is_featured is not None and state.is_featured != self.is_featured:
            return False
        if self.can_share_story is not None and state.can_share_story != self.can_share_story:
            return False
        if self.inactive_before is not None and not state.last_activity_at < self.inactive_before:
            return False
        return True


@dataclass(frozen=True)
class MatchSummary:
    total: int = 0
    avg_compatibility: Optional[float] = None
    successful_hires: int = 0
    with_trial: int = 0


class MatchRepository(Protocol):
    async def find_by_id(self, match_id: uuid.UUID) -> Optional[MatchState]: ...

    async def find_by_key(
        self, builder_id: uuid.UUID, opening_id: uuid.UUID
    ) -> Optional[MatchState]: ...

    async def create(self, match: MatchState) -> MatchState:
        """Insert a new match.  Raises ``ConflictError`` on a duplicate
        (builder, opening) pair."""
        ...

    async def save(self, match: MatchState, expected_version: int) -> MatchState:
        """Replace the stored match in one atomic write.  Raises
        ``ConcurrentModificationError`` when the stored version is not
        ``expected_version`` and ``NotFoundError`` when the match is gone."""
        ...

    async def find(self, query: MatchQuery) -> list[MatchState]: ...

    async def count_by_status(self, query: MatchQuery) -> dict[str, int]: ...

    async def count_by_outcome(
        self, query: MatchQuery, exclude_pending: bool = True
    ) -> dict[str, int]: ...

    async def summarize(self, query: MatchQuery) -> MatchSummary: ...


class ScenarioResponseStore(Protocol):
    async def get_by_user(self, user_id: uuid.UUID) -> Optional[ScenarioResponseRecord]: ...

    async def upsert(self, record: ScenarioResponseRecord) -> ScenarioResponseRecord: ...


# Outcome keys reported by count_by_outcome when exclude_pending is set.
NON_PENDING_OUTCOMES: frozenset[MatchOutcome] = frozenset(
    o for o in MatchOutcome if o != MatchOutcome.PENDING
)
