from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from helpdesk_sla.infrastructure.database import get_session
from helpdesk_sla.main import app
from helpdesk_sla.sla.application import PolicyService
from helpdesk_sla.sla.domain import SLAConfig
from helpdesk_sla.sla.infrastructure import SQLAlchemyPolicyRepository, TicketModel
from helpdesk_sla.sla.interfaces import get_clock, get_config_provider

FRIDAY_AFTERNOON = datetime(2024, 1, 19, 16, 30, tzinfo=timezone.utc)


def _dt(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(FRIDAY_AFTERNOON)


@pytest.fixture
async def client(session_maker, config_provider, clock):
    async with session_maker() as session:
        await PolicyService(SQLAlchemyPolicyRepository(session)).seed_defaults(
            SLAConfig().seed_policies, FRIDAY_AFTERNOON
        )
        await session.commit()

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_config_provider] = lambda: config_provider
    app.dependency_overrides[get_clock] = clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _policy_id(client: AsyncClient, priority: str) -> str:
    response = await client.get("/sla/policies")
    return next(p["id"] for p in response.json() if p["priority"] == priority)


@pytest.mark.asyncio
async def test_ticket_sla_lifecycle(client: AsyncClient, clock: Clock) -> None:
    payload = {"id": "TCK-1", "priority": "high", "created_at": "2024-01-19T16:30:00Z"}

    response = await client.post("/sla/tickets", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["assigned"] is True
    assert _dt(body["record"]["response_deadline"]) == datetime(2024, 1, 22, 9, 30, tzinfo=timezone.utc)
    assert _dt(body["record"]["resolution_deadline"]) == datetime(2024, 1, 22, 16, 30, tzinfo=timezone.utc)
    assert body["record"]["status"] == "on_track"
    assert "X-Correlation-ID" in response.headers

    # Assigning again returns the same record.
    again = (await client.post("/sla/tickets", json=payload)).json()["record"]
    assert again["id"] == body["record"]["id"]
    assert again["policy_id"] == body["record"]["policy_id"]
    assert _dt(again["response_deadline"]) == _dt(body["record"]["response_deadline"])
    assert _dt(again["resolution_deadline"]) == _dt(body["record"]["resolution_deadline"])

    # Late first response.
    response = await client.post(
        "/sla/tickets/TCK-1/first-response", json={"at": "2024-01-22T10:00:00Z"}
    )
    assert response.status_code == 200
    record = response.json()
    assert record["response_breached"] is True
    assert record["status"] == "breached"
    assert record["escalated"] is True

    escalations = (await client.get("/sla/escalations")).json()
    assert escalations["count"] == 1
    event = escalations["escalations"][0]
    assert (event["ticket_id"], event["deadline_type"], event["new_status"]) == (
        "TCK-1", "response", "breached"
    )
    assert event["escalation_target"] is None

    ack = await client.post(f"/sla/escalations/{event['id']}/ack")
    assert ack.json()["notification_sent"] is True
    assert (await client.get("/sla/escalations")).json()["count"] == 0

    clock.now = datetime(2024, 1, 22, 12, 0, tzinfo=timezone.utc)
    resolved = (await client.post("/sla/tickets/TCK-1/resolve")).json()
    assert _dt(resolved["resolved_at"]) == clock.now
    assert resolved["status"] == "breached"
    assert resolved["resolution_breached"] is False

    stats = (await client.get("/sla/stats")).json()
    assert stats == {
        "total": 0,
        "onTrack": 0,
        "atRisk": 0,
        "breached": 0,
        "responseBreaches": 1,
        "resolutionBreaches": 0,
        "complianceRate": "0.0",
    }


@pytest.mark.asyncio
async def test_unknown_ticket_is_404(client: AsyncClient) -> None:
    response = await client.get("/sla/tickets/NOPE")
    assert response.status_code == 404
    assert response.json()["error_type"] == "ResourceNotFoundException"

    response = await client.post("/sla/tickets/NOPE/resolve")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stats_without_records(client: AsyncClient) -> None:
    stats = (await client.get("/sla/stats")).json()
    assert stats["total"] == 0
    assert stats["complianceRate"] == "100.0"


@pytest.mark.asyncio
async def test_policy_administration(client: AsyncClient) -> None:
    listed = (await client.get("/sla/policies")).json()
    assert [p["priority"] for p in listed] == ["low", "medium", "high", "critical"]

    duplicate = await client.post("/sla/policies", json={
        "name": "Another high",
        "priority": "high",
        "response_time_minutes": 15,
        "resolution_time_minutes": 60,
    })
    assert duplicate.status_code == 409
    assert duplicate.json()["error_type"] == "PolicyConflictException"

    critical_id = await _policy_id(client, "critical")
    invalid = await client.patch(
        f"/sla/policies/{critical_id}", json={"resolution_time_minutes": 10}
    )
    assert invalid.status_code == 422

    updated = await client.patch(f"/sla/policies/{critical_id}", json={"notify_before_minutes": 10})
    assert updated.status_code == 200
    assert updated.json()["notify_before_minutes"] == 10

    low_id = await _policy_id(client, "low")
    deactivated = await client.delete(f"/sla/policies/{low_id}")
    assert deactivated.json()["is_active"] is False

    response = await client.post("/sla/tickets", json={
        "id": "TCK-LOW", "priority": "low", "created_at": "2024-01-19T16:30:00Z"
    })
    assert response.status_code == 200
    assert response.json()["assigned"] is False
    assert (await client.get("/sla/tickets/TCK-LOW")).status_code == 404

    created = await client.post("/sla/policies", json={
        "name": "Low v2",
        "priority": "low",
        "response_time_minutes": 600,
        "resolution_time_minutes": 3000,
    })
    assert created.status_code == 201
    assert created.json()["is_active"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("field", [
    "name",
    "priority",
    "response_time_minutes",
    "resolution_time_minutes",
    "business_hours_only",
    "is_active",
    "notify_before_minutes",
    "escalation_enabled",
])
async def test_policy_update_rejects_null(client: AsyncClient, field: str) -> None:
    critical_id = await _policy_id(client, "critical")

    response = await client.patch(f"/sla/policies/{critical_id}", json={field: None})

    assert response.status_code == 422
    policy = next(
        p for p in (await client.get("/sla/policies")).json() if p["id"] == critical_id
    )
    assert policy[field] is not None


@pytest.mark.asyncio
async def test_policy_update_clears_optional_fields(client: AsyncClient) -> None:
    critical_id = await _policy_id(client, "critical")
    set_target = await client.patch(
        f"/sla/policies/{critical_id}",
        json={"escalation_target": "#support", "description": "Pager duty"},
    )
    assert set_target.json()["escalation_target"] == "#support"

    cleared = await client.patch(
        f"/sla/policies/{critical_id}",
        json={"escalation_target": None, "description": None},
    )

    assert cleared.status_code == 200
    assert cleared.json()["escalation_target"] is None
    assert cleared.json()["description"] is None


@pytest.mark.asyncio
async def test_reconcile_backfills_helpdesk_tickets(
    client: AsyncClient, session_maker, clock: Clock
) -> None:
    created_at = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    async with session_maker() as session:
        session.add_all([
            TicketModel(id="T-1", priority="high", status="open", created_at=created_at),
            TicketModel(
                id="T-2",
                priority="critical",
                status="closed",
                created_at=created_at,
                first_response_at=datetime(2024, 1, 15, 10, 5, tzinfo=timezone.utc),
                closed_at=datetime(2024, 1, 15, 11, 0, tzinfo=timezone.utc),
            ),
            TicketModel(id="T-3", priority="low", status="open", created_at=created_at),
        ])
        await session.commit()

    clock.now = datetime(2024, 1, 15, 10, 10, tzinfo=timezone.utc)
    response = await client.post("/sla/reconcile", params={"batch_size": 1})
    assert response.status_code == 200
    assert response.json() == {
        "created": 3, "evaluated": 0, "skipped": 0, "unchanged": 2, "conflicts": 0
    }

    closed = (await client.get("/sla/tickets/T-2")).json()
    assert closed["status"] == "on_track"
    assert _dt(closed["resolved_at"]) == datetime(2024, 1, 15, 11, 0, tzinfo=timezone.utc)

    second = (await client.post("/sla/reconcile")).json()
    assert second["created"] == 0


@pytest.mark.asyncio
async def test_health_reports_state(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] in ("healthy", "degraded")
