from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from salescrm.platform.security.context import ActingUser

from support import Actors, audit_rows


def test_only_super_admin_changes_roles(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead)

    denied = client.patch("/api/users/7", json={"role": "Regional Lead"})
    assert denied.status_code == 403
    assert denied.json()["code"] == "crm_user_update_failed"
    (denial,) = audit_rows(seeded, outcome="denied")
    assert denial.action == "change_role"
    assert denial.actor_user_id == 20

    act_as(actors.admin)
    promoted = client.patch("/api/users/7", json={"role": "Regional Lead"})
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "Regional Lead"
    assert audit_rows(seeded, outcome="allowed", entity_type="crm.user")[-1].before["role"] == "Sales Rep"


def test_unchanged_role_is_accepted(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.rep)

    response = client.patch("/api/users/7", json={"name": "Rita R.", "role": "Sales Rep"})

    assert response.status_code == 200
    assert response.json()["name"] == "Rita R."


def test_region_change_reserved_to_super_admin(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.lead)
    assert client.patch("/api/users/7", json={"region_id": 6}).status_code == 403

    act_as(actors.admin)
    moved = client.patch("/api/users/7", json={"region_id": 6})
    assert moved.status_code == 200
    assert moved.json()["region_id"] == 6


def test_unknown_user(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.admin)

    response = client.patch("/api/users/999", json={"name": "Ghost"})

    assert response.status_code == 404
    assert response.json()["message"] == "User 999 not found"


def test_user_reads_own_effective_regions(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.lead_with_secondary_only)
    assert client.get("/api/users/22/regions").json() == {
        "user_id": 22,
        "role": "Regional Lead",
        "all_regions": False,
        "region_ids": [6],
    }

    act_as(actors.rep)
    assert client.get("/api/users/7/regions").json()["region_ids"] == [5]
    denied = client.get("/api/users/20/regions")
    assert denied.status_code == 403
    assert denied.json()["code"] == "crm_user_regions_get_failed"


def test_super_admin_reads_any_users_regions(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.admin)

    own = client.get("/api/users/1/regions").json()
    assert own["all_regions"] is True
    assert own["region_ids"] == [5, 6, 8]

    assert client.get("/api/users/21/regions").json()["region_ids"] == []
    assert client.get("/api/users/999/regions").status_code == 404


def test_assigned_regions_widen_a_regional_leads_scope(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead_without_regions)
    assert client.get("/api/leads").json() == []

    act_as(actors.admin)
    assigned = client.post("/api/users/21/regions", json={"region_ids": [8, 6, 6]})
    assert assigned.status_code == 200
    assert assigned.json()["region_ids"] == [6, 8]
    (entry,) = audit_rows(seeded, action="assign_regions")
    assert entry.before == {"region_ids": []}
    assert entry.after == {"region_ids": [6, 8]}

    act_as(actors.lead_without_regions)
    assert [row["id"] for row in client.get("/api/leads").json()] == [302, 304]


def test_assigning_regions_replaces_previous_assignments(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.admin)

    cleared = client.post("/api/users/22/regions", json={"region_ids": []})
    assert cleared.status_code == 200
    assert cleared.json()["region_ids"] == []

    moved = client.post("/api/users/20/regions", json={"region_ids": [8]})
    assert moved.json()["region_ids"] == [5, 8]


def test_region_assignment_rules(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.lead)
    assert client.post("/api/users/20/regions", json={"region_ids": [6]}).status_code == 403

    act_as(actors.admin)
    missing_region = client.post("/api/users/21/regions", json={"region_ids": [5, 999]})
    assert missing_region.status_code == 422
    assert missing_region.json()["details"]["field"] == "region_ids"
    assert client.post("/api/users/999/regions", json={"region_ids": [5]}).status_code == 404
    assert client.get("/api/users/21/regions").json()["region_ids"] == []
