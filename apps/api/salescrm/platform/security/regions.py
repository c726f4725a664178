from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salescrm.crm.models import CRMUser, CRMUserRegion
from salescrm.platform.security.context import ActingUser


logger = logging.getLogger("salescrm.security")

_CACHE_KEY = "effective_regions"


@dataclass(frozen=True, slots=True)
class RegionScope:
    all_regions: bool = False
    region_ids: frozenset[int] = frozenset()

    def contains(self, region_id: int | None) -> bool:
        if self.all_regions:
            return True
        return region_id is not None and region_id in self.region_ids

    @property
    def is_empty(self) -> bool:
        return not self.all_regions and not self.region_ids


ALL_REGIONS = RegionScope(all_regions=True)
NO_REGIONS = RegionScope()


def effective_regions(session: Session, actor: ActingUser) -> RegionScope:
    """Regions the actor may act within.

    Super Admins get the ``all_regions`` sentinel. Regional Leads get their
    primary region plus every secondary assignment, and nothing at all when
    both are missing. Sales Reps get their primary region for display only.
    A missing user row or a failed read yields the empty scope.
    """

    cached = actor._cache.get(_CACHE_KEY)
    if isinstance(cached, RegionScope):
        return cached

    scope = _resolve(session, actor)
    actor._cache[_CACHE_KEY] = scope
    return scope


def _resolve(session: Session, actor: ActingUser) -> RegionScope:
    if actor.is_super_admin:
        return ALL_REGIONS

    try:
        row = session.execute(select(CRMUser.id, CRMUser.region_id).where(CRMUser.id == actor.user_id)).first()
        if row is None:
            logger.warning(
                "scope.regions.user_missing",
                extra={"user_id": actor.user_id, "role": actor.role.value},
            )
            return NO_REGIONS

        region_ids: set[int] = set()
        if row.region_id is not None:
            region_ids.add(row.region_id)

        if actor.is_regional_lead:
            secondary = session.scalars(
                select(CRMUserRegion.region_id).where(CRMUserRegion.user_id == actor.user_id)
            ).all()
            region_ids.update(secondary)
    except SQLAlchemyError as exc:
        logger.warning(
            "scope.regions.lookup_failed",
            extra={"user_id": actor.user_id, "role": actor.role.value, "error": str(exc)},
        )
        return NO_REGIONS

    return RegionScope(region_ids=frozenset(region_ids))
