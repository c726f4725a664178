from __future__ import annotations

import logging

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from salescrm.crm.enums import Role
from salescrm.crm.models import CRMUserRegion
from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.regions import ALL_REGIONS, NO_REGIONS, RegionScope, effective_regions

from support import Actors, acting


def test_super_admin_gets_all_regions(seeded: Session, actors: Actors) -> None:
    scope = effective_regions(seeded, actors.admin)

    assert scope == ALL_REGIONS
    assert scope.contains(999)
    assert not scope.is_empty


def test_sales_rep_gets_primary_region_only(seeded: Session, actors: Actors) -> None:
    assert effective_regions(seeded, actors.rep) == RegionScope(region_ids=frozenset({5}))


def test_regional_lead_unions_primary_and_secondary(seeded: Session, actors: Actors) -> None:
    seeded.add(CRMUserRegion(user_id=20, region_id=8))
    seeded.commit()

    scope = effective_regions(seeded, actors.lead)

    assert scope.region_ids == frozenset({5, 8})
    assert scope.contains(8)
    assert not scope.contains(6)


def test_regional_lead_with_secondary_only(seeded: Session, actors: Actors) -> None:
    assert effective_regions(seeded, actors.lead_with_secondary_only).region_ids == frozenset({6})


def test_regional_lead_without_regions_is_empty(seeded: Session, actors: Actors) -> None:
    scope = effective_regions(seeded, actors.lead_without_regions)

    assert scope.is_empty
    assert not scope.contains(5)
    assert not scope.contains(None)


def test_missing_user_yields_empty_scope(seeded: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="salescrm.security")

    scope = effective_regions(seeded, acting(999, Role.REGIONAL_LEAD))

    assert scope == NO_REGIONS
    assert any(record.getMessage() == "scope.regions.user_missing" for record in caplog.records)


def test_resolution_is_cached_per_actor(seeded: Session) -> None:
    actor = ActingUser(user_id=20, role=Role.REGIONAL_LEAD)
    first = effective_regions(seeded, actor)

    seeded.add(CRMUserRegion(user_id=20, region_id=6))
    seeded.commit()

    assert effective_regions(seeded, actor) is first
    assert effective_regions(seeded, ActingUser(user_id=20, role=Role.REGIONAL_LEAD)).region_ids == frozenset({5, 6})


def test_store_failure_yields_empty_scope(
    seeded: Session,
    actors: Actors,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="salescrm.security")

    def broken_execute(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise OperationalError("SELECT crm_user", {}, Exception("connection lost"))

    monkeypatch.setattr(seeded, "execute", broken_execute)

    assert effective_regions(seeded, actors.lead) == NO_REGIONS
    assert any(record.getMessage() == "scope.regions.lookup_failed" for record in caplog.records)
