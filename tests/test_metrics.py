from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlmodel import Session, SQLModel, create_engine, select

from sustainwatch import main as app_main
from sustainwatch.domain.models import EventRecord, Indicator, MeasurementReading, MeasurementRecord
from sustainwatch.domain.permissions import DEFAULT_PERMISSION_NAMES
from sustainwatch.infra import audit, db, events, redis_state
from sustainwatch.infra.auth import create_access_token
from sustainwatch.services.alert_service import AlertService, ConflictError
from sustainwatch.services.framework_service import FrameworkService


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def ping(self) -> bool:
        return True


@pytest.fixture()
def metrics_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "metrics_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    fake_redis = FakeRedis()

    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    FrameworkService().seed_catalog()

    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(tenant_id: str = "tenant-a", permissions: list[str] | None = None) -> dict[str, str]:
    token = create_access_token(
        user_id=f"{tenant_id}-engineer",
        tenant_id=tenant_id,
        permissions=permissions if permissions is not None else DEFAULT_PERMISSION_NAMES,
    )
    return {"Authorization": f"Bearer {token}"}



def _create_site(client: TestClient, name: str, frameworks: list[str]) -> str:
    headers = _auth_header()
    response = client.post("/api/sites", json={"name": name, "country": "SG"}, headers=headers)
    assert response.status_code == 201
    site_id = response.json()["site_id"]
    assigned = client.put(
        f"/api/site-frameworks/{site_id}",
        json={
            "assignments": [
                {"framework_code": code, "is_active": True, "precedence": index}
                for index, code in enumerate(frameworks, start=1)
            ]
        },
        headers=headers,
    )
    assert assigned.status_code == 200
    return site_id


@pytest.mark.parametrize(
    "payload",
    [
        {"measurements": [{"indicator": "PUE", "value": 1.3}]},
        {"site_id": "   ", "measurements": [{"indicator": "PUE", "value": 1.3}]},
        {"site_id": "site", "measurements": []},
        {"site_id": "site", "measurements": [{"indicator": "PUE", "value": "1.3"}]},
        {"site_id": "site", "measurements": [{"indicator": "PUE", "value": True}]},
        {"site_id": "site", "measurements": [{"indicator": "PUE", "value": None}]},
        {"site_id": "site", "measurements": [{"indicator": "ERE", "value": 1.3}]},
        {"site_id": "site", "it_load_pct": 101, "measurements": [{"indicator": "PUE", "value": 1.3}]},
        {"site_id": "site", "measurements": [{"indicator": "PUE", "value": 1.3}, {"indicator": "PUE", "value": 1.4}]},
    ],
)
def test_malformed_measurements_are_rejected(metrics_client: TestClient, payload: dict[str, object]) -> None:
    response = metrics_client.post("/api/metrics", json=payload, headers=_auth_header())

    assert response.status_code == 422
    with Session(db.engine) as session:
        assert session.exec(select(MeasurementRecord)).all() == []


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
def test_non_finite_value_is_rejected(value: float) -> None:
    with pytest.raises(ValidationError):
        MeasurementReading(indicator=Indicator.PUE, value=value)


def test_unknown_site_is_not_found(metrics_client: TestClient) -> None:
    response = metrics_client.post(
        "/api/metrics",
        json={"site_id": "missing", "measurements": [{"indicator": "PUE", "value": 1.3}]},
        headers=_auth_header(),
    )

    assert response.status_code == 404


def test_ingest_fans_out_to_every_active_framework(metrics_client: TestClient) -> None:
    headers = _auth_header()
    site_id = _create_site(metrics_client, "SG-West-1", ["GMDC_SG_2024", "SLA_STRICT"])

    response = metrics_client.post(
        "/api/metrics",
        json={
            "site_id": site_id,
            "measured_at": "2026-10-01T08:00:00Z",
            "it_load_pct": 50,
            "measurements": [
                {"indicator": "PUE", "value": 1.34},
                {"indicator": "WUE", "value": 1.5},
            ],
        },
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ingested"] == 2
    outcomes = {
        (item["framework_code"], item["indicator"]): (item["severity"], item["action"])
        for item in body["transitions"]
    }
    assert outcomes == {
        ("GMDC_SG_2024", "PUE"): ("WARN", "OPENED"),
        ("GMDC_SG_2024", "WUE"): ("OK", "NOOP"),
        ("SLA_STRICT", "PUE"): ("WARN", "OPENED"),
        ("SLA_STRICT", "WUE"): ("OK", "NOOP"),
    }

    with Session(db.engine) as session:
        stored = session.exec(select(MeasurementRecord)).all()
        ingested = session.exec(select(EventRecord).where(EventRecord.event_type == "measurement.ingested")).all()
    assert len(stored) == 2
    assert {row.it_load_pct for row in stored} == {50}
    assert len(ingested) == 1


def test_site_without_frameworks_only_stores(metrics_client: TestClient) -> None:
    site_id = _create_site(metrics_client, "SG-East-1", [])

    response = metrics_client.post(
        "/api/metrics",
        json={"site_id": site_id, "measurements": [{"indicator": "PUE", "value": 2.0}]},
        headers=_auth_header(),
    )

    assert response.status_code == 200
    assert response.json()["transitions"] == []
    assert response.json()["ingested"] == 1


def test_latest_readings_keep_newest_per_indicator(metrics_client: TestClient) -> None:
    headers = _auth_header()
    site_id = _create_site(metrics_client, "SG-North-1", [])

    def _post(measured_at: str, readings: list[dict[str, object]]) -> None:
        response = metrics_client.post(
            "/api/metrics",
            json={"site_id": site_id, "measured_at": measured_at, "it_load_pct": 60, "measurements": readings},
            headers=headers,
        )
        assert response.status_code == 200

    _post("2026-10-01T08:00:00Z", [{"indicator": "PUE", "value": 1.3}, {"indicator": "CUE", "value": 0.5}])
    _post("2026-10-01T09:00:00Z", [{"indicator": "PUE", "value": 1.25}])
    _post("2026-10-01T07:00:00Z", [{"indicator": "CUE", "value": 0.9}])

    latest = metrics_client.get(f"/api/metrics/sites/{site_id}/latest", headers=headers)
    assert latest.status_code == 200
    readings = {item["indicator"]: item["value"] for item in latest.json()["readings"]}
    assert readings == {"PUE": 1.25, "CUE": 0.5}
    assert [item["indicator"] for item in latest.json()["readings"]] == ["PUE", "CUE"]

    missing = metrics_client.get("/api/metrics/sites/missing/latest", headers=headers)
    assert missing.status_code == 404


def test_retry_after_conflict_does_not_store_readings_twice(
    metrics_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    headers = _auth_header()
    site_id = _create_site(metrics_client, "SG-Tampines-1", ["GMDC_SG_2024"])
    payload = {
        "site_id": site_id,
        "measured_at": "2026-10-01T08:00:00Z",
        "it_load_pct": 50,
        "measurements": [{"indicator": "PUE", "value": 1.40}],
    }
    original_apply = AlertService.apply_evaluation
    contended = {"active": True}

    def _apply(self: AlertService, *args: object, **kwargs: object) -> object:
        if contended["active"]:
            raise ConflictError("alert was modified by another writer")
        return original_apply(self, *args, **kwargs)

    monkeypatch.setattr(AlertService, "apply_evaluation", _apply)

    assert metrics_client.post("/api/metrics", json=payload, headers=headers).status_code == 409
    assert metrics_client.post("/api/metrics", json=payload, headers=headers).status_code == 409

    contended["active"] = False
    retried = metrics_client.post("/api/metrics", json=payload, headers=headers)
    assert retried.status_code == 200
    assert retried.json()["ingested"] == 0
    assert [item["action"] for item in retried.json()["transitions"]] == ["OPENED"]

    with Session(db.engine) as session:
        stored = session.exec(select(MeasurementRecord)).all()
        ingested = session.exec(select(EventRecord).where(EventRecord.event_type == "measurement.ingested")).all()
    assert len(stored) == 1
    assert len(ingested) == 1
