"""
BuilderLink: In-process storage backends.

Used by the test suite and by ``STORAGE_BACKEND=memory`` for local runs.
Snapshots are immutable, so storing them by reference is safe; every write
swaps a whole snapshot under the store lock.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from builderlink.errors import ConcurrentModificationError, ConflictError, NotFoundError
from builderlink.repositories.base import MatchQuery, MatchSummary
from builderlink.schemas.match import MatchOutcome, MatchState
from builderlink.schemas.scenario import ScenarioResponseRecord


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryMatchRepository:
    def __init__(self) -> None:
        self._by_id: dict[uuid.UUID, MatchState] = {}
        self._by_key: dict[tuple[uuid.UUID, uuid.UUID], uuid.UUID] = {}
        self._lock = asyncio.Lock()

    async def find_by_id(self, match_id: uuid.UUID) -> Optional[MatchState]:
        return self._by_id.get(match_id)

    async def find_by_key(
        self, builder_id: uuid.UUID, opening_id: uuid.UUID
    ) -> Optional[MatchState]:
        match_id = self._by_key.get((builder_id, opening_id))
        return self._by_id.get(match_id) if match_id is not None else None

    async def create(self, match: MatchState) -> MatchState:
        key = (match.builder_id, match.opening_id)
        async with self._lock:
            if key in self._by_key:
                raise ConflictError(
                    "Match already exists for this builder and opening",
                    builder_id=str(match.builder_id),
                    opening_id=str(match.opening_id),
                )
            self._by_key[key] = match.id
            self._by_id[match.id] = match
        return match

    async def save(self, match: MatchState, expected_version: int) -> MatchState:
        async with self._lock:
            current = self._by_id.get(match.id)
            if current is None:
                raise NotFoundError("Match not found", match_id=str(match.id))
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    "Match was modified concurrently",
                    match_id=str(match.id),
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            self._by_id[match.id] = match
        return match

    async def find(self, query: MatchQuery) -> list[MatchState]:
        results = [m for m in self._by_id.values() if query.matches(m)]
        if query.order_by == "completed_at":
            results.sort(key=lambda m: m.completed_at or _EPOCH, reverse=True)
        else:
            results.sort(key=lambda m: m.last_activity_at, reverse=True)
        if query.limit is not None:
            results = results[: query.limit]
        return results

    async def count_by_status(self, query: MatchQuery) -> dict[str, int]:
        counts = Counter(m.status.value for m in self._by_id.values() if query.matches(m))
        return dict(counts)

    async def count_by_outcome(
        self, query: MatchQuery, exclude_pending: bool = True
    ) -> dict[str, int]:
        counts = Counter(
            m.outcome.value
            for m in self._by_id.values()
            if query.matches(m)
            and not (exclude_pending and m.outcome == MatchOutcome.PENDING)
        )
        return dict(counts)

    async def summarize(self, query: MatchQuery) -> MatchSummary:
        selected = [m for m in self._by_id.values() if query.matches(m)]
        if not selected:
            return MatchSummary()
        return MatchSummary(
            total=len(selected),
            avg_compatibility=sum(m.compatibility_score for m in selected) / len(selected),
            successful_hires=sum(1 for m in selected if m.is_successful_hire),
            with_trial=sum(1 for m in selected if m.had_trial),
        )


class InMemoryScenarioResponseStore:
    def __init__(self) -> None:
        self._by_user: dict[uuid.UUID, ScenarioResponseRecord] = {}

    async def get_by_user(self, user_id: uuid.UUID) -> Optional[ScenarioResponseRecord]:
        return self._by_user.get(user_id)

    async def upsert(self, record: ScenarioResponseRecord) -> ScenarioResponseRecord:
        self._by_user[record.user_id] = record
        return record
