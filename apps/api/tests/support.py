from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from salescrm.crm.enums import Role
from salescrm.models.audit import AuditLog
from salescrm.platform.security.context import ActingUser


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@dataclass
class Actors:
    rep: ActingUser
    other_rep: ActingUser
    lead: ActingUser
    lead_without_regions: ActingUser
    lead_with_secondary_only: ActingUser
    admin: ActingUser


def acting(user_id: int, role: Role, name: str | None = None) -> ActingUser:
    return ActingUser(user_id=user_id, role=role, name=name, correlation_id="corr-test")


def ids(rows: list) -> set[int]:
    return {row.id for row in rows}


def audit_rows(session: Session, **filters: object) -> list[AuditLog]:
    """Persisted audit rows, oldest first."""

    return list(session.scalars(select(AuditLog).filter_by(**filters).order_by(AuditLog.id)).all())
