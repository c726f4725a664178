from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from salescrm.context import resolve_correlation_id, valid_correlation_id
from salescrm.platform.security.context import ActingUser

from support import Actors, audit_rows


def test_correlation_id_is_echoed(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "corr-echo-1"})

    assert response.status_code == 200
    assert response.headers["x-correlation-id"] == "corr-echo-1"


def test_correlation_id_is_generated_when_absent(client: TestClient) -> None:
    response = client.get("/health")

    assert len(response.headers["x-correlation-id"]) == 32


@pytest.mark.parametrize("supplied", ["has spaces", "x" * 129, "semi;colon", "<script>"])
def test_malformed_correlation_id_is_replaced(client: TestClient, supplied: str) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": supplied})

    returned = response.headers["x-correlation-id"]
    assert returned != supplied
    assert valid_correlation_id(returned) == returned


def test_correlation_id_rules() -> None:
    assert valid_correlation_id(" req-1:a.b_c ") == "req-1:a.b_c"
    assert valid_correlation_id("") is None
    assert valid_correlation_id(None) is None
    assert resolve_correlation_id("kept-1") == "kept-1"
    assert resolve_correlation_id("not ok") != resolve_correlation_id("not ok")


def test_correlation_id_reaches_audit_and_error_envelope(
    client: TestClient,
    seeded: Session,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
) -> None:
    act_as(actors.rep)

    created = client.post("/api/accounts", json={"name": "Traced Co"}, headers={"X-Correlation-Id": "corr-audit-1"})
    assert created.status_code == 201

    denied = client.get("/api/accounts/3", headers={"X-Correlation-Id": "corr-audit-2"})
    assert denied.status_code == 403
    assert denied.json()["correlation_id"] == "corr-audit-2"
    assert denied.headers["x-correlation-id"] == "corr-audit-2"

    (created_row,) = audit_rows(seeded, correlation_id="corr-audit-1")
    (denied_row,) = audit_rows(seeded, correlation_id="corr-audit-2")
    assert created_row.action == "create"
    assert denied_row.outcome == "denied"
