from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy import ColumnElement, Select, and_, false, or_, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salescrm.crm.enums import EntityKind, RelatedEntityKind, Role
from salescrm.crm.models import CRMAccount, CRMContact, CRMDocument, CRMLead, CRMOpportunity, CRMTask, CRMUser
from salescrm.metrics import observe_scope_denial, observe_store_failure
from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.errors import ForbiddenError, NotFoundError, StoreUnavailableError
from salescrm.platform.security.regions import RegionScope, effective_regions
from salescrm.services.audit import write_audit_log


logger = logging.getLogger("salescrm.security")

PredicateBuilder = Callable[[Session, ActingUser], ColumnElement[bool]]


class AccessDecision(StrEnum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


MODELS: dict[EntityKind, Any] = {
    EntityKind.ACCOUNT: CRMAccount,
    EntityKind.LEAD: CRMLead,
    EntityKind.OPPORTUNITY: CRMOpportunity,
    EntityKind.CONTACT: CRMContact,
    EntityKind.TASK: CRMTask,
    EntityKind.DOCUMENT: CRMDocument,
}


@dataclass(frozen=True, slots=True)
class RelatedEntityRef:
    """Reference from a task or document to the lead, account or opportunity it belongs to."""

    kind: RelatedEntityKind
    entity_id: int

    @classmethod
    def parse(cls, tag: str, entity_id: int) -> RelatedEntityRef:
        normalized = tag.strip().lower()
        for kind in RelatedEntityKind:
            if kind.value.lower() == normalized:
                return cls(kind=kind, entity_id=entity_id)
        raise ValueError(f"Unsupported related entity type '{tag}'")

    @property
    def entity_kind(self) -> EntityKind:
        return related_entity_kind(self.kind)


_RELATED_KINDS: dict[RelatedEntityKind, EntityKind] = {
    RelatedEntityKind.LEAD: EntityKind.LEAD,
    RelatedEntityKind.ACCOUNT: EntityKind.ACCOUNT,
    RelatedEntityKind.OPPORTUNITY: EntityKind.OPPORTUNITY,
}


def related_entity_kind(kind: RelatedEntityKind) -> EntityKind:
    return _RELATED_KINDS[kind]


def _region_in(column: Any, regions: RegionScope) -> ColumnElement[bool]:
    if regions.all_regions:
        return true()
    if not regions.region_ids:
        return false()
    return column.in_(sorted(regions.region_ids))


def _allow_all(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return true()


def _account_owned(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return CRMAccount.sales_rep_id == actor.user_id


def _account_in_regions(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return _region_in(CRMAccount.region_id, effective_regions(session, actor))


def _lead_owned(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return CRMLead.owner_id == actor.user_id


def _owners_in_regions(regions: RegionScope) -> ColumnElement[bool]:
    if regions.is_empty:
        return false()
    return CRMLead.owner_id.in_(select(CRMUser.id).where(_region_in(CRMUser.region_id, regions)))


def _lead_owner_in_regions(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return _owners_in_regions(effective_regions(session, actor))


def _lead_point_in_regions(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    # a lead's own region wins; unassigned leads fall back to the owner's region
    regions = effective_regions(session, actor)
    if regions.is_empty:
        return false()
    return or_(
        and_(CRMLead.region_id.is_not(None), _region_in(CRMLead.region_id, regions)),
        and_(CRMLead.region_id.is_(None), _owners_in_regions(regions)),
    )


def _through_account(column: Any, account_rule: PredicateBuilder) -> PredicateBuilder:
    def build(session: Session, actor: ActingUser) -> ColumnElement[bool]:
        return column.in_(select(CRMAccount.id).where(account_rule(session, actor)))

    return build


def _related_clause(model: Any, session: Session, actor: ActingUser) -> ColumnElement[bool]:
    clauses: list[ColumnElement[bool]] = []
    for related_kind in RelatedEntityKind:
        entity_kind = related_entity_kind(related_kind)
        target = MODELS[entity_kind]
        clauses.append(
            and_(
                model.related_entity_type == related_kind.value,
                model.related_entity_id.in_(select(target.id).where(list_filter(session, actor, entity_kind))),
            )
        )
    return or_(*clauses)


def _task_related_or_assigned(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return or_(_related_clause(CRMTask, session, actor), CRMTask.assigned_to_id == actor.user_id)


def _document_related(session: Session, actor: ActingUser) -> ColumnElement[bool]:
    return _related_clause(CRMDocument, session, actor)


_LIST_RULES: dict[EntityKind, dict[Role, PredicateBuilder]] = {
    EntityKind.ACCOUNT: {
        Role.SALES_REP: _account_owned,
        Role.REGIONAL_LEAD: _account_in_regions,
        Role.SUPER_ADMIN: _allow_all,
    },
    EntityKind.LEAD: {
        Role.SALES_REP: _lead_owned,
        Role.REGIONAL_LEAD: _lead_owner_in_regions,
        Role.SUPER_ADMIN: _allow_all,
    },
    EntityKind.OPPORTUNITY: {
        Role.SALES_REP: _through_account(CRMOpportunity.account_id, _account_owned),
        Role.REGIONAL_LEAD: _through_account(CRMOpportunity.account_id, _account_in_regions),
        Role.SUPER_ADMIN: _allow_all,
    },
    EntityKind.CONTACT: {
        Role.SALES_REP: _through_account(CRMContact.account_id, _account_owned),
        Role.REGIONAL_LEAD: _through_account(CRMContact.account_id, _account_in_regions),
        Role.SUPER_ADMIN: _allow_all,
    },
    EntityKind.TASK: {
        Role.SALES_REP: _task_related_or_assigned,
        Role.REGIONAL_LEAD: _task_related_or_assigned,
        Role.SUPER_ADMIN: _allow_all,
    },
    EntityKind.DOCUMENT: {
        Role.SALES_REP: _document_related,
        Role.REGIONAL_LEAD: _document_related,
        Role.SUPER_ADMIN: _allow_all,
    },
}

# single-record checks that differ from the listing rule
_POINT_RULES: dict[tuple[EntityKind, Role], PredicateBuilder] = {
    (EntityKind.LEAD, Role.REGIONAL_LEAD): _lead_point_in_regions,
}


def list_filter(session: Session, actor: ActingUser, kind: EntityKind) -> ColumnElement[bool]:
    """Predicate restricting ``kind`` rows to those the actor may see."""

    rules = _LIST_RULES.get(kind)
    builder = rules.get(actor.role) if rules is not None else None
    if builder is None:
        return false()
    return builder(session, actor)


def point_filter(session: Session, actor: ActingUser, kind: EntityKind) -> ColumnElement[bool]:
    builder = _POINT_RULES.get((kind, actor.role))
    if builder is None:
        return list_filter(session, actor, kind)
    return builder(session, actor)


def apply(query: Select[Any], session: Session, actor: ActingUser, kind: EntityKind) -> Select[Any]:
    return query.where(list_filter(session, actor, kind))


def can_access(session: Session, actor: ActingUser, kind: EntityKind, entity_id: int) -> AccessDecision:
    model = MODELS[kind]
    try:
        if session.scalar(select(model.id).where(model.id == entity_id)) is None:
            return AccessDecision.NOT_FOUND
        visible = session.scalar(select(model.id).where(model.id == entity_id, point_filter(session, actor, kind)))
    except SQLAlchemyError as exc:
        observe_store_failure(kind.value)
        logger.error(
            "scope.check.store_failed",
            extra={"user_id": actor.user_id, "entity_kind": kind.value, "entity_id": entity_id, "error": str(exc)},
        )
        raise StoreUnavailableError(kind.value) from exc

    return AccessDecision.ALLOW if visible is not None else AccessDecision.FORBIDDEN


def ensure_access(
    session: Session,
    actor: ActingUser,
    kind: EntityKind,
    entity_id: int,
    *,
    action: str = "read",
) -> None:
    decision = can_access(session, actor, kind, entity_id)
    if decision == AccessDecision.ALLOW:
        return

    record_denial(session, actor, kind, entity_id, decision, action=action)
    if decision == AccessDecision.NOT_FOUND:
        raise NotFoundError(kind.value, entity_id)
    raise ForbiddenError(kind.value, entity_id)


def record_denial(
    session: Session,
    actor: ActingUser,
    kind: EntityKind | str,
    entity_id: int | None,
    decision: AccessDecision,
    *,
    action: str,
) -> None:
    entity_kind = str(kind)
    observe_scope_denial(entity_kind, decision.value)
    logger.info(
        "scope.denied",
        extra={
            "user_id": actor.user_id,
            "role": actor.role.value,
            "entity_kind": entity_kind,
            "entity_id": entity_id,
            "decision": decision.value,
            "action": action,
        },
    )
    write_audit_log(
        session,
        actor_user_id=actor.user_id,
        actor_role=actor.role.value,
        entity_type=f"crm.{entity_kind}",
        entity_id=entity_id,
        action=action,
        outcome="denied",
        after={"decision": decision.value},
        correlation_id=actor.correlation_id,
        commit=True,
    )
