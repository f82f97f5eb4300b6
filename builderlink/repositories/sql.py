"""
BuilderLink: SQLAlchemy-backed storage.

Each repository call is its own unit of work: a session is opened from the
injected ``async_sessionmaker``, the statement(s) run inside ``begin()``, and
the transaction commits or rolls back as a whole.

``save`` is a single ``UPDATE ... WHERE id = :id AND version = :expected``.
A zero row count means either the match is gone or another writer got there
first; both leave the stored row untouched.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import structlog
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from builderlink.errors import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    TransientStorageError,
)
from builderlink.models.match import Match
from builderlink.models.scenario import ScenarioResponse
from builderlink.repositories.base import MatchQuery, MatchSummary
from builderlink.schemas.match import MatchOutcome, MatchState
from builderlink.schemas.scenario import (
    SCENARIO_FIELDS,
    ScenarioAnswers,
    ScenarioResponseRecord,
)

logger = structlog.get_logger("builderlink.sql_repository")

_JSON_FIELDS: set[str] = {
    "status_history",
    "compatibility_breakdown",
    "compatibility_weights",
    "founder_feedback",
    "builder_feedback",
    "annotations",
}
_ENUM_FIELDS: tuple[str, ...] = ("status", "trial_outcome", "outcome")


def _to_values(state: MatchState) -> dict[str, Any]:
    values = state.model_dump(exclude=_JSON_FIELDS)
    values.update(state.model_dump(mode="json", include=_JSON_FIELDS))
    for name in _ENUM_FIELDS:
        if values[name] is not None:
            values[name] = values[name].value
    return values


def _to_state(row: Match) -> MatchState:
    return MatchState.model_validate(
        {name: getattr(row, name) for name in MatchState.model_fields}
    )


class _SessionScope:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except OperationalError as exc:
            logger.warning("storage_operational_error", error=str(exc.orig))
            raise TransientStorageError("Storage temporarily unavailable") from exc


class SqlMatchRepository(_SessionScope):
    async def find_by_id(self, match_id: uuid.UUID) -> Optional[MatchState]:
        async with self._transaction() as session:
            row = await session.get(Match, match_id)
            return _to_state(row) if row is not None else None

    async def find_by_key(
        self, builder_id: uuid.UUID, opening_id: uuid.UUID
    ) -> Optional[MatchState]:
        stmt = select(Match).where(
            Match.builder_id == builder_id,
            Match.opening_id == opening_id,
        )
        async with self._transaction() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_state(row) if row is not None else None

    async def create(self, match: MatchState) -> MatchState:
        try:
            async with self._transaction() as session:
                session.add(Match(**_to_values(match)))
        except IntegrityError as exc:
            raise ConflictError(
                "Match already exists for this builder and opening",
                builder_id=str(match.builder_id),
                opening_id=str(match.opening_id),
            ) from exc
        return match

    async def save(self, match: MatchState, expected_version: int) -> MatchState:
        values = _to_values(match)
        values.pop("id")
        stmt = (
            update(Match)
            .where(Match.id == match.id, Match.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            if result.rowcount == 1:
                return match
            current = await session.scalar(
                select(Match.version).where(Match.id == match.id)
            )

        if current is None:
            raise NotFoundError("Match not found", match_id=str(match.id))
        raise ConcurrentModificationError(
            "Match was modified concurrently",
            match_id=str(match.id),
            expected_version=expected_version,
            actual_version=current,
        )

    # ── Queries ──────────────────────────────────────────────────────────

    @staticmethod
    def _filters(query: MatchQuery) -> list:
        clauses = []
        if query.founder_id is not None:
            clauses.append(Match.founder_id == query.founder_id)
        if query.builder_id is not None:
            clauses.append(Match.builder_id == query.builder_id)
        if query.participant_id is not None:
            clauses.append(
                or_(
                    Match.founder_id == query.participant_id,
                    Match.builder_id == query.participant_id,
                )
            )
        if query.opening_id is not None:
            clauses.append(Match.opening_id == query.opening_id)
        if query.statuses is not None:
            clauses.append(Match.status.in_([s.value for s in query.statuses]))
        if query.is_successful_hire is not None:
            clauses.append(Match.is_successful_hire.is_(query.is_successful_hire))
        if query.is_featured is not None:
            clauses.append(Match.is_featured.is_(query.is_featured))
        if query.can_share_story is not None:
            clauses.append(Match.can_share_story.is_(query.can_share_story))
        if query.inactive_before is not None:
            clauses.append(Match.last_activity_at < query.inactive_before)
        return clauses

    async def find(self, query: MatchQuery) -> list[MatchState]:
        stmt = select(Match).where(*self._filters(query))
        if query.order_by == "completed_at":
            stmt = stmt.order_by(Match.completed_at.desc().nulls_last())
        else:
            stmt = stmt.order_by(Match.last_activity_at.desc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_state(row) for row in rows]

    async def count_by_status(self, query: MatchQuery) -> dict[str, int]:
        stmt = (
            select(Match.status, func.count())
            .where(*self._filters(query))
            .group_by(Match.status)
        )
        async with self._transaction() as session:
            return {status: count for status, count in (await session.execute(stmt)).all()}

    async def count_by_outcome(
        self, query: MatchQuery, exclude_pending: bool = True
    ) -> dict[str, int]:
        stmt = select(Match.outcome, func.count()).where(*self._filters(query))
        if exclude_pending:
            stmt = stmt.where(Match.outcome != MatchOutcome.PENDING.value)
        stmt = stmt.group_by(Match.outcome)
        async with self._transaction() as session:
            return {outcome: count for outcome, count in (await session.execute(stmt)).all()}

    async def summarize(self, query: MatchQuery) -> MatchSummary:
        stmt = select(
            func.count(),
            func.avg(Match.compatibility_score),
            func.coalesce(func.sum(case((Match.is_successful_hire, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Match.had_trial, 1), else_=0)), 0),
        ).where(*self._filters(query))
        async with self._transaction() as session:
            total, avg, hires, trials = (await session.execute(stmt)).one()
        return MatchSummary(
            total=total,
            avg_compatibility=float(avg) if avg is not None else None,
            successful_hires=int(hires),
            with_trial=int(trials),
        )


class SqlScenarioResponseStore(_SessionScope):
    async def get_by_user(self, user_id: uuid.UUID) -> Optional[ScenarioResponseRecord]:
        async with self._transaction() as session:
            row = await session.get(ScenarioResponse, user_id)
            if row is None:
                return None
            return ScenarioResponseRecord(
                user_id=row.user_id,
                answers=ScenarioAnswers(
                    **{name: getattr(row, name) for name in SCENARIO_FIELDS}
                ),
                completed_at=row.completed_at,
                retake_count=row.retake_count,
                last_retake_at=row.last_retake_at,
                completion_time_seconds=row.completion_time_seconds,
                scenario_version=row.scenario_version,
            )

    async def upsert(self, record: ScenarioResponseRecord) -> ScenarioResponseRecord:
        """Insert or overwrite the user's row in a single statement.

        PostgreSQL and SQLite use ``INSERT ... ON CONFLICT (user_id) DO
        UPDATE``; other dialects fall back to ``merge``, whose duplicate-key
        race surfaces as ``ConflictError``.
        """
        values = {
            "user_id": record.user_id,
            "completed_at": record.completed_at,
            "retake_count": record.retake_count,
            "last_retake_at": record.last_retake_at,
            "completion_time_seconds": record.completion_time_seconds,
            "scenario_version": record.scenario_version,
        }
        for name, value in zip(SCENARIO_FIELDS, record.answers.as_list()):
            values[name] = value.value if value is not None else None

        try:
            async with self._transaction() as session:
                stmt = _on_conflict_upsert(session.get_bind().dialect.name, values)
                if stmt is not None:
                    await session.execute(stmt)
                else:
                    await session.merge(ScenarioResponse(**values))
        except IntegrityError as exc:
            raise ConflictError(
                "Scenario responses were written concurrently",
                user_id=str(record.user_id),
            ) from exc
        return record


def _on_conflict_upsert(dialect_name: str, values: dict[str, Any]):
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        return None
    stmt = insert(ScenarioResponse).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[ScenarioResponse.user_id],
        set_={name: stmt.excluded[name] for name in values if name != "user_id"},
    )
