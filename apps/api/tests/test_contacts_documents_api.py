from __future__ import annotations

from collections.abc import Callable

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from salescrm.crm.models import CRMContact
from salescrm.platform.security.context import ActingUser

from support import Actors, audit_rows


def test_contacts_follow_account_scope(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.lead)

    assert [row["id"] for row in client.get("/api/contacts").json()] == [201]
    assert client.get("/api/contacts/201").json()["name"] == "Carla Contact"

    forbidden = client.get("/api/contacts/202")
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "crm_contact_get_failed"

    act_as(actors.admin)
    assert [row["id"] for row in client.get("/api/contacts", params={"accountId": 10}).json()] == [202]


def test_documents_follow_related_record_scope(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.rep)

    assert [row["id"] for row in client.get("/api/documents").json()] == [501]
    assert client.get("/api/documents/501").status_code == 200
    assert client.get("/api/documents/502").status_code == 403
    assert client.get("/api/documents/999").status_code == 404

    act_as(actors.lead)
    rows = client.get("/api/documents", params={"relatedEntityType": "Opportunity"}).json()
    assert [row["id"] for row in rows] == [502]


def test_regional_lead_without_regions_sees_no_children(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead_without_regions)

    assert client.get("/api/contacts").json() == []
    assert client.get("/api/documents").json() == []
    assert client.get("/api/tasks").json() == []
    assert client.get("/api/contacts/201").status_code == 403


def test_sales_rep_adds_contact_to_own_account(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.rep)

    response = client.post("/api/contacts", json={"account_id": 1, "name": "  Nina New  ", "title": "CFO"})

    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Nina New"
    assert body["account_id"] == 1
    (entry,) = audit_rows(seeded, entity_type="crm.contact", action="create")
    assert entry.after["title"] == "CFO"


def test_contact_account_must_be_visible(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.rep)

    hidden = client.post("/api/contacts", json={"account_id": 3, "name": "Sneaky"})
    assert hidden.status_code == 422
    assert hidden.json()["code"] == "crm_contact_create_failed"
    assert hidden.json()["details"]["field"] == "account_id"
    assert "outside your scope" in hidden.json()["message"]

    missing = client.post("/api/contacts", json={"account_id": 999, "name": "Nobody"})
    assert missing.status_code == 422
    assert "does not exist" in missing.json()["message"]


def test_update_contact(client: TestClient, act_as: Callable[[ActingUser], None], actors: Actors) -> None:
    act_as(actors.rep)

    updated = client.put("/api/contacts/201", json={"title": "VP Sales", "phone": "555-0100"})
    assert updated.status_code == 200
    assert updated.json()["title"] == "VP Sales"
    assert updated.json()["name"] == "Carla Contact"

    moved_away = client.put("/api/contacts/201", json={"account_id": 3})
    assert moved_away.status_code == 422
    assert moved_away.json()["details"]["field"] == "account_id"

    moved = client.put("/api/contacts/201", json={"account_id": 2})
    assert moved.status_code == 200
    assert moved.json()["account_id"] == 2

    assert client.put("/api/contacts/202", json={"title": "CEO"}).status_code == 403


def test_delete_contact(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.lead)
    assert client.delete("/api/contacts/202").status_code == 403

    deleted = client.delete("/api/contacts/201")
    assert deleted.status_code == 200
    assert deleted.json() == {"id": 201, "status": "deleted"}
    assert seeded.get(CRMContact, 201) is None
    assert client.delete("/api/contacts/201").status_code == 404
