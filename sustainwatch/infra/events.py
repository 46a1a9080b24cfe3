from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from sustainwatch.domain.models import EventEnvelope, EventRecord
from sustainwatch.infra.db import engine
from sustainwatch.infra.tenant import get_actor_id

EventHandler = Callable[[EventEnvelope], None]

ALL_EVENTS = "*"

logger = logging.getLogger(__name__)


class EventBus:
    """Persists domain events to the events table, then hands them to in-process subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, event: EventEnvelope) -> None:
        with Session(engine) as session:
            session.add(EventRecord(**event.model_dump()))
            session.commit()

        logger.debug("event %s published for tenant %s", event.event_type, event.tenant_id)
        for handler in [*self._subscribers.get(event.event_type, []), *self._subscribers.get(ALL_EVENTS, [])]:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        tenant_id: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            tenant_id=tenant_id,
            actor_id=actor_id or get_actor_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
