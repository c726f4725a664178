from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from salescrm.core.config import get_settings


@pytest.fixture(autouse=True)
def jwt_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _token(claims: dict[str, object], secret: str = "test-secret") -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def _bearer(claims: dict[str, object], secret: str = "test-secret") -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(claims, secret)}"}


def test_bearer_token_resolves_acting_user(client: TestClient) -> None:
    response = client.get("/api/accounts", headers=_bearer({"sub": "7", "role": "Sales Rep"}))

    assert response.status_code == 200
    assert [row["id"] for row in response.json()] == [1, 2]


def test_name_is_loaded_when_token_has_none(client: TestClient) -> None:
    response = client.get("/api/dashboard", headers=_bearer({"sub": "20", "role": "Regional Lead"}))

    assert response.status_code == 200
    assert response.json()["scope"]["userName"] == "Lena Lead"
    assert response.json()["scope"]["role"] == "Regional Lead"


def test_missing_token_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/accounts")

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "unauthorized"
    assert body["message"] == "missing bearer token"
    assert body["correlation_id"] == response.headers["x-correlation-id"]


def test_bad_signature_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/accounts", headers=_bearer({"sub": "7", "role": "Sales Rep"}, secret="other"))

    assert response.status_code == 401


def test_non_numeric_subject_is_unauthorized(client: TestClient) -> None:
    response = client.get("/api/accounts", headers=_bearer({"sub": "rita", "role": "Sales Rep"}))

    assert response.status_code == 401


def test_unknown_role_is_forbidden(client: TestClient) -> None:
    response = client.get("/api/accounts", headers={**_bearer({"sub": "7", "role": "Intern"}), "X-Correlation-Id": "role-corr-1"})

    assert response.status_code == 403
    assert response.json() == {
        "code": "forbidden",
        "message": "Unknown role: Intern",
        "details": "Unknown role: Intern",
        "correlation_id": "role-corr-1",
    }


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
