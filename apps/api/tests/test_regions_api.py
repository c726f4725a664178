from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from salescrm.platform.security.context import ActingUser

from support import Actors, audit_rows


def test_any_user_lists_regions(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.rep)

    response = client.get("/api/regions")

    assert response.status_code == 200
    assert [(row["id"], row["name"]) for row in response.json()] == [(5, "North"), (6, "South"), (8, "West")]
    assert client.get("/api/regions/6").json()["name"] == "South"
    assert client.get("/api/regions/999").status_code == 404


def test_only_super_admin_creates_regions(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead)
    denied = client.post("/api/regions", json={"name": "East"})
    assert denied.status_code == 403
    assert denied.json()["code"] == "crm_region_create_failed"
    (denial,) = audit_rows(seeded, outcome="denied")
    assert denial.entity_type == "crm.region"

    act_as(actors.admin)
    created = client.post("/api/regions", json={"name": "  East  "})
    assert created.status_code == 201
    assert created.json()["name"] == "East"
    assert audit_rows(seeded, entity_type="crm.region", action="create", outcome="allowed")


def test_region_names_are_unique(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.admin)

    duplicate = client.post("/api/regions", json={"name": "North"})
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "Region 'North' already exists"

    assert client.put("/api/regions/8", json={"name": "South"}).status_code == 409
    renamed = client.put("/api/regions/8", json={"name": "Far West"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Far West"
    assert client.put("/api/regions/8", json={"name": "Far West"}).status_code == 200


def test_region_in_use_cannot_be_deleted(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.admin)

    in_use = client.delete("/api/regions/6")
    assert in_use.status_code == 409
    assert in_use.json()["code"] == "crm_region_delete_failed"

    deleted = client.delete("/api/regions/8")
    assert deleted.status_code == 200
    assert deleted.json() == {"id": 8, "status": "deleted"}
    assert client.get("/api/regions/8").status_code == 404
    assert client.delete("/api/regions/8").status_code == 404


def test_regional_lead_cannot_edit_or_delete_regions(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead)

    assert client.put("/api/regions/5", json={"name": "Greater North"}).status_code == 403
    assert client.delete("/api/regions/8").status_code == 403
