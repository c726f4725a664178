from __future__ import annotations

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from salescrm.crm.enums import Role
from salescrm.otel import actor_span, attach_memory_exporter
from salescrm.platform.security.context import ActingUser

from support import Actors


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = attach_memory_exporter()
    exporter.clear()
    return exporter


def test_request_span_contains_correlation_id(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
    span_exporter: InMemorySpanExporter,
) -> None:
    act_as(actors.rep)

    response = client.get("/api/accounts", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_dashboard_span_carries_role_and_deal_count(
    client: TestClient,
    act_as: Callable[[ActingUser], None],
    actors: Actors,
    span_exporter: InMemorySpanExporter,
) -> None:
    act_as(actors.lead)

    response = client.get("/api/dashboard", headers={"X-Correlation-Id": "otel-dash-1"})
    assert response.status_code == 200

    dashboard_spans = [span for span in span_exporter.get_finished_spans() if span.name == "crm.dashboard.build"]
    assert dashboard_spans
    assert any(
        span.attributes.get("crm.role") == "Regional Lead"
        and span.attributes.get("crm.user_id") == 20
        and span.attributes.get("crm.open_deals") == 2
        and span.attributes.get("correlation_id") == "otel-dash-1"
        for span in dashboard_spans
    )


def test_actor_span_tags_the_caller_and_skips_empty_attributes(span_exporter: InMemorySpanExporter) -> None:
    actor = ActingUser(user_id=7, role=Role.SALES_REP, correlation_id="span-corr-1")
    tracer = trace.get_tracer("salescrm.tests")

    with actor_span(tracer, "crm.test.op", actor, account_id=1, region_id=None):
        pass

    (span,) = [span for span in span_exporter.get_finished_spans() if span.name == "crm.test.op"]
    assert span.attributes["crm.role"] == "Sales Rep"
    assert span.attributes["crm.user_id"] == 7
    assert span.attributes["correlation_id"] == "span-corr-1"
    assert span.attributes["crm.account_id"] == 1
    assert "crm.region_id" not in span.attributes


def test_malformed_correlation_header_is_not_copied_to_spans(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "not valid"})

    assert response.status_code == 200
    assert all(span.attributes.get("correlation_id") != "not valid" for span in span_exporter.get_finished_spans())
