"""Tests for REST API endpoints."""

from beacon.models.report import IncidentReport
from beacon.services.event_bus import event_bus
from beacon.services.session_store import SQLiteSessionStore

HEADERS = {"X-User-Id": "medic-1"}


async def _seed(db, *reports):
    store = SQLiteSessionStore(db)
    for report in reports:
        await store.upsert(report)
    return store


def _completed(report_id, *, mode="EMS", user_id="medic-1", timestamp="2024-05-01T10:00:00+00:00", **extra):
    return IncidentReport(
        id=report_id,
        mode=mode,
        status="completed",
        user_id=user_id,
        timestamp=timestamp,
        **extra,
    )


async def test_health(async_client):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_missing_identity_rejected(async_client):
    """Every report endpoint needs the caller's user id."""
    resp = await async_client.get("/api/reports")
    assert resp.status_code == 401


async def test_list_reports_empty(async_client):
    resp = await async_client.get("/api/reports", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == []


async def test_list_reports_newest_first_and_scoped(async_client, db):
    await _seed(
        db,
        _completed("old", summary="Fall at home", timestamp="2024-05-01T08:00:00+00:00"),
        _completed("new", summary="Chest pain", timestamp="2024-05-02T08:00:00+00:00"),
        _completed("fire", mode="FIRE"),
        _completed("theirs", user_id="medic-2"),
        IncidentReport(id="live", mode="EMS", user_id="medic-1"),
    )

    resp = await async_client.get("/api/reports", params={"mode": "EMS"}, headers=HEADERS)
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == ["new", "old"]

    resp = await async_client.get("/api/reports", params={"mode": "FIRE"}, headers=HEADERS)
    assert [r["id"] for r in resp.json()] == ["fire"]


async def test_search_reports(async_client, db):
    await _seed(
        db,
        _completed("a", summary="Fall at home", category="Trauma"),
        _completed("b", summary="Chest pain", category="Cardiac"),
    )
    resp = await async_client.get("/api/reports", params={"q": "cardiac"}, headers=HEADERS)
    assert [r["id"] for r in resp.json()] == ["b"]


async def test_invalid_mode(async_client):
    resp = await async_client.get("/api/reports", params={"mode": "POLICE"}, headers=HEADERS)
    assert resp.status_code == 422


async def test_get_report_with_mode_sections(async_client, db):
    await _seed(db, _completed("r1", patient_info={"name": "Unknown", "age": "60s"}))

    resp = await async_client.get("/api/reports/r1", headers=HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == "r1"
    assert data["patient_info"]["age"] == "60s"


async def test_get_report_of_other_user_not_found(async_client, db):
    await _seed(db, _completed("r1", user_id="medic-2"))
    resp = await async_client.get("/api/reports/r1", headers=HEADERS)
    assert resp.status_code == 404


async def test_delete_report(async_client, db):
    await _seed(db, _completed("r1"))
    queue = event_bus.subscribe("medic-1")
    try:
        resp = await async_client.delete("/api/reports/r1", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"deleted": "r1"}
        assert queue.get_nowait() == {"type": "report_deleted", "report_id": "r1"}
    finally:
        event_bus.unsubscribe("medic-1", queue)

    resp = await async_client.get("/api/reports/r1", headers=HEADERS)
    assert resp.status_code == 404


async def test_delete_missing_report(async_client):
    resp = await async_client.delete("/api/reports/nope", headers=HEADERS)
    assert resp.status_code == 404


async def test_move_action_item(async_client, db):
    await _seed(db, _completed("r1", action_items=["Follow up with PCP", "Restock"], actions_taken=["CPR"]))

    resp = await async_client.post(
        "/api/reports/r1/actions-taken", json={"item": "Restock"}, headers=HEADERS
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["action_items"] == ["Follow up with PCP"]
    assert data["actions_taken"] == ["CPR", "Restock"]
    assert data["status"] == "completed"


async def test_move_unknown_action_item(async_client, db):
    await _seed(db, _completed("r1", action_items=["Restock"]))
    resp = await async_client.post(
        "/api/reports/r1/actions-taken", json={"item": "Nope"}, headers=HEADERS
    )
    assert resp.status_code == 404


async def test_move_action_item_on_live_report(async_client, db):
    """Only finalized reports accept the after-the-fact move."""
    await _seed(db, IncidentReport(id="live", mode="EMS", user_id="medic-1", action_items=["Restock"]))
    resp = await async_client.post(
        "/api/reports/live/actions-taken", json={"item": "Restock"}, headers=HEADERS
    )
    assert resp.status_code == 409


async def test_active_session_consolidated(async_client, db):
    store = await _seed(
        db,
        IncidentReport(id="t1", mode="FIRE", user_id="medic-1", timestamp="2024-05-01T10:00:00+00:00"),
        IncidentReport(id="t2", mode="FIRE", user_id="medic-1", timestamp="2024-05-01T10:05:00+00:00"),
        _completed("done", mode="FIRE"),
    )

    resp = await async_client.get("/api/sessions/active", params={"mode": "FIRE"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["id"] == "t2"
    assert await store.get("t1") is None
    assert (await store.get("done")).status == "completed"


async def test_active_session_none(async_client):
    resp = await async_client.get("/api/sessions/active", params={"mode": "EMS"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() is None


async def test_discard_active_session(async_client, db):
    store = await _seed(db, IncidentReport(id="live", mode="EMS", user_id="medic-1"))

    resp = await async_client.delete("/api/sessions/active", params={"mode": "EMS"}, headers=HEADERS)
    assert resp.json() == {"deleted": "live"}
    assert await store.get("live") is None


async def test_templates_by_mode(async_client):
    resp = await async_client.get("/api/templates", params={"mode": "FIRE"})
    assert resp.status_code == 200
    titles = [t["title"] for t in resp.json()]
    assert titles == ["Structure Fire", "MVA / Extrication", "Wildland", "Hazmat"]

    resp = await async_client.get("/api/templates")
    assert len(resp.json()) == 8
