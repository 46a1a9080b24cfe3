from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from sustainwatch.domain.models import EventEnvelope, EventRecord
from sustainwatch.infra import events
from sustainwatch.infra.events import EventBus
from sustainwatch.infra.tenant import request_context


@pytest.fixture()
def event_engine(monkeypatch: pytest.MonkeyPatch) -> Engine:
    engine = create_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(events, "engine", engine)
    return engine


def test_event_bus_publish_and_subscribe(event_engine: Engine) -> None:
    bus = EventBus()
    seen: list[str] = []
    everything: list[str] = []

    event = EventEnvelope(
        event_type="alert.opened",
        tenant_id="tenant-a",
        payload={"site_id": "site-1", "indicator": "PUE"},
    )
    bus.subscribe("alert.opened", lambda item: seen.append(item.event_id))
    bus.subscribe("*", lambda item: everything.append(item.event_type))

    bus.publish(event)
    bus.publish(EventEnvelope(event_type="alert.cleared", tenant_id="tenant-a", payload={}))

    with Session(event_engine) as session:
        stored = session.exec(select(EventRecord).order_by(EventRecord.ts)).all()

    assert [row.event_type for row in stored] == ["alert.opened", "alert.cleared"]
    assert stored[0].event_id == event.event_id
    assert stored[0].payload["indicator"] == "PUE"
    assert seen == [event.event_id]
    assert everything == ["alert.opened", "alert.cleared"]


def test_publish_dict_takes_actor_from_request_context(event_engine: Engine) -> None:
    bus = EventBus()

    with request_context("tenant-a", "engineer-1"):
        implicit = bus.publish_dict("thresholds.replaced", "tenant-a", {"version": 1})
    explicit = bus.publish_dict("thresholds.replaced", "tenant-a", {"version": 2}, actor_id="ops-bot")
    anonymous = bus.publish_dict("alert.closed", "tenant-a", {})

    assert implicit.actor_id == "engineer-1"
    assert explicit.actor_id == "ops-bot"
    assert anonymous.actor_id is None
    with Session(event_engine) as session:
        stored = session.exec(select(EventRecord)).all()
    assert sorted(item.payload.get("version", 0) for item in stored) == [0, 1, 2]
