from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from salescrm.platform.security.context import ActingUser

from support import Actors, audit_rows


def _seed_activity(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.rep)
    assert client.post("/api/accounts", json={"name": "Audit Co"}).status_code == 201
    assert client.get("/api/accounts/3").status_code == 403

    act_as(actors.lead)
    assert client.post("/api/accounts/9/approve").status_code == 200


def test_super_admin_reads_the_trail_newest_first(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    _seed_activity(client, act_as, actors)
    act_as(actors.admin)

    response = client.get("/api/auditlogs")

    assert response.status_code == 200
    rows = response.json()
    assert [(row["actor_user_id"], row["action"], row["outcome"]) for row in rows] == [
        (20, "approve", "allowed"),
        (7, "read", "denied"),
        (7, "create", "allowed"),
    ]
    assert rows[0]["before"]["status"] == "Pending Approval"
    assert rows[1]["entity_type"] == "crm.account"
    assert rows[1]["entity_id"] == "3"


def test_audit_filters(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    _seed_activity(client, act_as, actors)
    act_as(actors.admin)

    by_user = client.get("/api/auditlogs", params={"userId": 7}).json()
    assert {row["action"] for row in by_user} == {"create", "read"}

    by_action = client.get("/api/auditlogs", params={"action": "approve"}).json()
    assert [row["entity_id"] for row in by_action] == ["9"]

    by_type = client.get("/api/auditlogs", params={"entityType": "crm.lead"}).json()
    assert by_type == []

    denied = client.get("/api/auditlogs", params={"outcome": "denied"}).json()
    assert len(denied) == 1

    assert client.get("/api/auditlogs", params={"dateTo": "2000-01-01T00:00:00Z"}).json() == []
    assert client.get("/api/auditlogs", params={"dateFrom": "2999-01-01T00:00:00Z"}).json() == []
    assert len(client.get("/api/auditlogs", params={"dateFrom": "2000-01-01T00:00:00Z", "limit": 2}).json()) == 2


def test_single_audit_entry(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    _seed_activity(client, act_as, actors)
    act_as(actors.admin)

    newest = client.get("/api/auditlogs", params={"limit": 1}).json()[0]
    fetched = client.get(f"/api/auditlogs/{newest['id']}")

    assert fetched.status_code == 200
    assert fetched.json() == newest
    missing = client.get("/api/auditlogs/999999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "crm_audit_get_failed"


def test_trail_is_reserved_to_super_admins(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead)

    response = client.get("/api/auditlogs")

    assert response.status_code == 403
    assert response.json()["code"] == "crm_audit_list_failed"
    (denial,) = audit_rows(seeded, outcome="denied")
    assert denial.entity_type == "crm.audit"
    assert denial.action == "read"


def test_denials_survive_the_failed_request(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.rep)

    assert client.delete("/api/accounts/1").status_code == 403
    seeded.rollback()

    (denial,) = audit_rows(seeded, outcome="denied")
    assert denial.action == "delete"
    assert denial.entity_id == "1"
