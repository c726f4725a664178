from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from salescrm.context import get_correlation_id
from salescrm.models.audit import AuditLog


def write_audit_log(
    db: Session,
    *,
    actor_user_id: int | None,
    actor_role: str | None,
    entity_type: str,
    entity_id: int | str | None,
    action: str,
    outcome: str = "allowed",
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    correlation_id: str | None = None,
    commit: bool = False,
) -> AuditLog:
    """Add an audit row to the session.

    Mutations leave ``commit`` off so the row lands in the same transaction as
    the change it describes. Denials commit straight away because the request
    that triggered them never reaches its own commit.
    """

    event = AuditLog(
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        action=action,
        outcome=outcome,
        before=before,
        after=after,
        correlation_id=correlation_id or get_correlation_id(),
    )
    db.add(event)
    if commit:
        db.commit()
    return event


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def list_audit_logs(db: Session, filters: dict[str, Any], limit: int = 100) -> list[AuditLog]:
    stmt = select(AuditLog)
    for field_name in ("actor_user_id", "action", "entity_type", "entity_id", "outcome", "correlation_id"):
        value = filters.get(field_name)
        if value is not None:
            stmt = stmt.where(getattr(AuditLog, field_name) == (str(value) if field_name == "entity_id" else value))
    if filters.get("date_from") is not None:
        stmt = stmt.where(AuditLog.created_at >= _as_utc(filters["date_from"]))
    if filters.get("date_to") is not None:
        stmt = stmt.where(AuditLog.created_at <= _as_utc(filters["date_to"]))
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def get_audit_log(db: Session, audit_id: int) -> AuditLog | None:
    return db.get(AuditLog, audit_id)
