"""
BuilderLink: Lifecycle event publishers.

A publisher is told about every persisted lifecycle change.  Delivery is
best effort: ``MatchService`` logs a failed publish and keeps the persisted
transition.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from builderlink.schemas.match import MatchState

logger = structlog.get_logger("builderlink.events")

MATCH_CREATED = "match.created"
CONVERSATION_STARTED = "conversation.started"
TRIAL_STARTED = "trial.started"
TRIAL_COMPLETED = "trial.completed"
MATCH_HIRED = "match.hired"
MATCH_ENDED = "match.ended"
FEEDBACK_SUBMITTED = "feedback.submitted"


def event_payload(event_name: str, match: MatchState, **extra: Any) -> dict[str, Any]:
    payload = {
        "event": event_name,
        "match_id": str(match.id),
        "founder_id": str(match.founder_id),
        "builder_id": str(match.builder_id),
        "opening_id": str(match.opening_id),
        "status": match.status.value,
        "outcome": match.outcome.value,
        "version": match.version,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    payload.update(extra)
    return payload


class MatchEventPublisher(Protocol):
    async def publish(self, event_name: str, match: MatchState, **extra: Any) -> None: ...


class LoggingEventPublisher:
    async def publish(self, event_name: str, match: MatchState, **extra: Any) -> None:
        payload = event_payload(event_name, match, **extra)
        payload["event_name"] = payload.pop("event")
        logger.info("match_event_published", **payload)


class RedisEventPublisher:
    """Publish JSON payloads on a Redis pub/sub channel."""

    def __init__(self, client, channel: str) -> None:
        self._client = client
        self._channel = channel

    async def publish(self, event_name: str, match: MatchState, **extra: Any) -> None:
        payload = event_payload(event_name, match, **extra)
        receivers = await self._client.publish(self._channel, json.dumps(payload))
        logger.debug(
            "match_event_published",
            event_name=event_name,
            match_id=payload["match_id"],
            channel=self._channel,
            receivers=receivers,
        )


class RecordingEventPublisher:
    """Keeps published events in memory.  Used by the test suite."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def publish(self, event_name: str, match: MatchState, **extra: Any) -> None:
        self.events.append(event_payload(event_name, match, **extra))

    @property
    def names(self) -> list[str]:
        return [e["event"] for e in self.events]
