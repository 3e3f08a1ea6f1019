import inspect

import pytest
import pytest_asyncio
from fastapi.routing import APIRoute
from httpx import ASGITransport, AsyncClient

from techboard.api import create_app
from techboard.config import Settings
from techboard.database import InMemoryKeyValueStore, JsonFileKeyValueStore

ADMIN = {"X-Shop-Role": "admin"}
ADVISOR = {"X-Shop-Role": "advisor"}


@pytest_asyncio.fixture
async def client(clock):
    app = create_app(Settings(), store=InMemoryKeyValueStore(), now_fn=clock)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


async def _hire(client: AsyncClient, name: str, rating: str, **extra) -> dict:
    resp = await client.post(
        "/technicians",
        json={"name": name, "phone": "+15550100", "skillRating": rating, **extra},
        headers=ADMIN,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_create_technician_requires_manager(client: AsyncClient) -> None:
    body = {"name": "Ana Cruz", "phone": "+15550100", "skillRating": "A"}

    resp = await client.post("/technicians", json=body, headers=ADVISOR)
    assert resp.status_code == 403

    resp = await client.post("/technicians", json=body)
    assert resp.status_code == 403

    resp = await client.post("/technicians", json=body, headers=ADMIN)
    assert resp.status_code == 201
    assert resp.json()["skillRating"] == "A"
    assert resp.json()["isActive"] is True


@pytest.mark.asyncio
async def test_create_technician_validates_profile(client: AsyncClient):
    resp = await client.post(
        "/technicians", json={"name": "Ana", "skillRating": "A"}, headers=ADMIN
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_skill_rating_hidden_from_advisors(client: AsyncClient) -> None:
    tech = await _hire(client, "Ana Cruz", "A")

    listing = await client.get("/technicians", headers=ADVISOR)
    assert listing.status_code == 200
    assert [t["id"] for t in listing.json()] == [tech["id"]]
    assert "skillRating" not in listing.json()[0]

    single = await client.get(f"/technicians/{tech['id']}")
    assert "skillRating" not in single.json()

    recs = await client.get("/recommendations", params={"skill_level": "C"})
    assert recs.status_code == 200
    assert "skillRating" not in recs.json()[0]

    ranked = await client.get(
        "/recommendations/ranked", params={"skill_level": "C"}
    )
    assert "skillRating" not in ranked.json()[0]
    assert ranked.json()[0]["recommendationScore"] == 25

    forbidden = await client.get(
        "/technicians", params={"include_skill_rating": True}, headers=ADVISOR
    )
    assert forbidden.status_code == 403

    privileged = await client.get(
        "/technicians",
        params={"include_skill_rating": True, "active_only": True},
        headers=ADMIN,
    )
    assert privileged.json()[0]["skillRating"] == "A"


@pytest.mark.asyncio
async def test_get_unknown_technician(client: AsyncClient) -> None:
    resp = await client.get("/technicians/nope")
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"].lower()

    resp = await client.patch(
        "/technicians/nope", json={"name": "Ghost"}, headers=ADMIN
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_and_rating_endpoints(client: AsyncClient) -> None:
    tech = await _hire(client, "Ana Cruz", "C")

    resp = await client.patch(
        f"/technicians/{tech['id']}",
        json={"specialties": ["brakes"]},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["specialties"] == ["brakes"]

    bad = await client.put(
        f"/technicians/{tech['id']}/skill-rating",
        json={"skillRating": "S"},
        headers=ADMIN,
    )
    assert bad.status_code == 422

    good = await client.put(
        f"/technicians/{tech['id']}/skill-rating",
        json={"skillRating": "B"},
        headers=ADMIN,
    )
    assert good.json()["skillRating"] == "B"

    off = await client.put(
        f"/technicians/{tech['id']}/active",
        json={"isActive": False},
        headers=ADMIN,
    )
    assert off.json()["isActive"] is False
    assert "skillRating" not in off.json()

    active = await client.get("/technicians", params={"active_only": True})
    assert active.json() == []


@pytest.mark.asyncio
async def test_assignment_flow(client: AsyncClient, clock) -> None:
    a1 = await _hire(client, "Alex A", "A")
    await _hire(client, "Blair B", "B")

    resp = await client.post(
        "/assignments", json={"jobId": "vehicle-123", "skillLevelRequired": "B"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["technicianId"] == a1["id"]

    conflict = await client.post(
        f"/technicians/{a1['id']}/jobs/start", json={"jobId": "vehicle-456"}
    )
    assert conflict.status_code == 409

    active = await client.get(f"/technicians/{a1['id']}/active-job")
    assert active.json()["activeJob"]["jobId"] == "vehicle-123"

    clock.advance(hours=1, minutes=30)
    ended = await client.post(
        f"/technicians/{a1['id']}/jobs/end",
        json={"jobId": "vehicle-123", "description": "done"},
    )
    assert ended.status_code == 200
    assert ended.json()["hours"] == 1.5

    today = await client.get(f"/technicians/{a1['id']}/hours/today")
    assert today.json()["totalHours"] == 1.5

    week = await client.get(
        f"/technicians/{a1['id']}/hours",
        params={"start": "2026-03-02", "end": "2026-03-08"},
    )
    assert week.json()["totalHours"] == 1.5
    assert week.json()["dailyBreakdown"][0]["day"] == "2026-03-02"

    started = await client.post(
        f"/technicians/{a1['id']}/jobs/start", json={"jobId": "vehicle-456"}
    )
    assert started.status_code == 200


@pytest.mark.asyncio
async def test_end_job_without_open_job(client: AsyncClient) -> None:
    tech = await _hire(client, "Alex A", "A")
    resp = await client.post(
        f"/technicians/{tech['id']}/jobs/end", json={"jobId": "vehicle-1"}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_forced_assignment_errors(client: AsyncClient) -> None:
    c1 = await _hire(client, "Casey C", "C")

    resp = await client.post(
        "/assignments",
        json={
            "jobId": "vehicle-123",
            "skillLevelRequired": "B",
            "forceTechId": c1["id"],
        },
    )
    assert resp.status_code == 422
    assert "(B)" in resp.json()["detail"]

    resp = await client.post(
        "/assignments",
        json={"jobId": "v-1", "skillLevelRequired": "C", "forceTechId": "nope"},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_no_available_technician(client: AsyncClient) -> None:
    await _hire(client, "Blair B", "B")

    resp = await client.post(
        "/assignments", json={"jobId": "vehicle-1", "laborOperation": "diagnostic"}
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert resp.json()["recommendedTechs"] == []


@pytest.mark.asyncio
async def test_validate_and_batch(client: AsyncClient) -> None:
    b1 = await _hire(client, "Blair B", "B")
    b2 = await _hire(client, "Bo B", "B")

    check = await client.post(
        "/assignments/validate",
        json={"techId": b1["id"], "job": {"jobId": "v-1", "skillLevelRequired": "A"}},
    )
    assert check.json()["valid"] is False

    batch = await client.post(
        "/assignments/batch",
        json={
            "jobs": [
                {"jobId": "v-1", "skillLevelRequired": "B"},
                {"jobId": "v-2", "skillLevelRequired": "nope"},
                {"jobId": "v-3", "skillLevelRequired": "C"},
            ]
        },
    )
    assert batch.status_code == 200
    results = [item["result"] for item in batch.json()["results"]]
    assert results[0]["success"] is True
    assert "error" in results[1]
    assert {results[0]["technicianId"], results[2]["technicianId"]} == {
        b1["id"],
        b2["id"],
    }


@pytest.mark.asyncio
async def test_manager_reports(client: AsyncClient) -> None:
    a1 = await _hire(client, "Alex A", "A")

    resp = await client.get(
        "/reports/weekly-hours", params={"start": "2026-03-02", "end": "2026-03-08"}
    )
    assert resp.status_code == 403

    resp = await client.get(
        "/reports/weekly-hours",
        params={"start": "2026-03-02", "end": "2026-03-08"},
        headers={"X-Shop-Role": "Manager"},
    )
    assert resp.status_code == 200
    assert resp.json()[0]["techId"] == a1["id"]
    assert resp.json()[0]["skillRating"] == "A"

    board = await client.get("/availability", headers=ADMIN)
    assert board.json()[0]["isAvailable"] is True

    rules = await client.get("/assignment-rules")
    assert rules.json()["skillLevelRules"]["B"]["technicianRatings"] == [
        "A",
        "B",
    ]


@pytest.mark.asyncio
async def test_delete_technician(client: AsyncClient) -> None:
    tech = await _hire(client, "Alex A", "A")

    assert (await client.delete(f"/technicians/{tech['id']}")).status_code == 403
    resp = await client.delete(f"/technicians/{tech['id']}", headers=ADMIN)
    assert resp.status_code == 204
    resp = await client.delete(f"/technicians/{tech['id']}", headers=ADMIN)
    assert resp.status_code == 404


def test_settings_from_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("TECHBOARD_DEFAULT_SKILL_LEVEL", "C")
    monkeypatch.setenv("TECHBOARD_STORE_PATH", str(tmp_path / "board.json"))

    settings = Settings()
    app = create_app(settings)

    assert settings.default_skill_level == "C"
    assert isinstance(app.state.store, JsonFileKeyValueStore)
    assert app.state.engine.get_skill_level_for_operation("unknown") == "C"


@pytest.mark.asyncio
async def test_validate_without_job_id(client: AsyncClient) -> None:
    b1 = await _hire(client, "Blair B", "B", specialties=["brakes"])

    resp = await client.post(
        "/assignments/validate",
        json={
            "techId": b1["id"],
            "job": {"skillLevelRequired": "B", "specialty": "brakes"},
        },
    )
    assert resp.status_code == 200
    assert resp.json()["valid"] is True

    resp = await client.post(
        "/assignments/validate",
        json={"techId": b1["id"], "job": {"laborOperation": "diagnostic"}},
    )
    assert resp.json()["valid"] is False


@pytest.mark.asyncio
async def test_privileged_roles_match_any_case(clock) -> None:
    settings = Settings(privileged_roles=["Manager"])
    app = create_app(settings, store=InMemoryKeyValueStore(), now_fn=clock)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        for role in ("manager", "MANAGER", "Manager"):
            resp = await async_client.get(
                "/availability", headers={"X-Shop-Role": role}
            )
            assert resp.status_code == 200

        resp = await async_client.get("/availability", headers=ADMIN)
        assert resp.status_code == 403


@pytest.mark.asyncio
async def test_file_store_handlers_run_off_the_event_loop(
    tmp_path, clock
) -> None:
    store = JsonFileKeyValueStore(tmp_path / "board.json")
    app = create_app(Settings(), store=store, now_fn=clock)

    for route in app.routes:
        if isinstance(route, APIRoute) and route.path != "/health":
            assert not inspect.iscoroutinefunction(route.endpoint), route.path

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        tech = await _hire(async_client, "Alex A", "A")
        resp = await async_client.post(
            f"/technicians/{tech['id']}/jobs/start", json={"jobId": "v-1"}
        )
        assert resp.status_code == 200

    reopened = JsonFileKeyValueStore(tmp_path / "board.json")
    assert [t["id"] for t in reopened.load("technicians")] == [tech["id"]]
