from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from salescrm.core.config import Settings, get_settings
from salescrm.crm.enums import TERMINAL_STAGES, AccountStatus, EntityKind
from salescrm.crm.models import CRMLead, CRMOpportunity, CRMRegion, CRMUser
from salescrm.metrics import observe_scope_validation_failure
from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.errors import ForbiddenError, NotFoundError, ScopeValidationError
from salescrm.platform.security.regions import effective_regions
from salescrm.platform.security.scope import AccessDecision, RelatedEntityRef, can_access, ensure_access, record_denial
from salescrm.services.audit import write_audit_log


logger = logging.getLogger("salescrm.security")


class ResourceAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    MOVE_STAGE = "move_stage"
    WIN = "win"
    LOSE = "lose"
    CHANGE_ROLE = "change_role"
    CONVERT = "convert"
    COMPLETE = "complete"
    ASSIGN_REGIONS = "assign_regions"
    READ = "read"


def _reject_field(actor: ActingUser, kind: EntityKind | str, field: str, message: str) -> ScopeValidationError:
    entity_kind = str(kind)
    observe_scope_validation_failure(entity_kind, field)
    logger.info(
        "scope.validation_failed",
        extra={"user_id": actor.user_id, "role": actor.role.value, "entity_kind": entity_kind, "error": message},
    )
    return ScopeValidationError(entity_kind, field, message)


def _primary_region_id(session: Session, actor: ActingUser) -> int | None:
    return session.scalar(select(CRMUser.region_id).where(CRMUser.id == actor.user_id))


def validate_region_choice(session: Session, actor: ActingUser, kind: EntityKind, region_id: int | None) -> None:
    """Regional Leads may only place records inside their own effective regions."""

    if not actor.is_regional_lead:
        return
    if region_id is None:
        raise _reject_field(actor, kind, "region_id", "region_id is required")
    if not effective_regions(session, actor).contains(region_id):
        raise _reject_field(actor, kind, "region_id", f"Region {region_id} is outside your assigned regions")


def prepare_account_create(session: Session, actor: ActingUser, values: dict[str, Any]) -> dict[str, Any]:
    prepared = dict(values)
    if actor.is_sales_rep:
        prepared["status"] = AccountStatus.PENDING_APPROVAL.value
        prepared["sales_rep_id"] = actor.user_id
        if prepared.get("region_id") is None:
            prepared["region_id"] = _primary_region_id(session, actor)
        return prepared

    validate_region_choice(session, actor, EntityKind.ACCOUNT, prepared.get("region_id"))
    if not prepared.get("status"):
        prepared["status"] = AccountStatus.PROSPECT.value
    return prepared


def prepare_lead_create(session: Session, actor: ActingUser, values: dict[str, Any]) -> dict[str, Any]:
    prepared = dict(values)
    if actor.is_super_admin:
        return prepared

    if actor.is_sales_rep:
        prepared["owner_id"] = actor.user_id
        prepared["region_id"] = _primary_region_id(session, actor)
        return prepared

    if prepared.get("region_id") is None:
        primary = _primary_region_id(session, actor)
        if primary is None:
            raise _reject_field(
                actor,
                EntityKind.LEAD,
                "region_id",
                "region_id is required because you have no primary region",
            )
        prepared["region_id"] = primary
    validate_region_choice(session, actor, EntityKind.LEAD, prepared["region_id"])
    if prepared.get("owner_id") is None:
        prepared["owner_id"] = actor.user_id
    return prepared


def ensure_account_manage(session: Session, actor: ActingUser, account_id: int, action: ResourceAction) -> None:
    """Approve, reject, update and delete are reserved to Super Admins and Regional Leads in region."""

    if actor.is_sales_rep:
        decision = can_access(session, actor, EntityKind.ACCOUNT, account_id)
        if decision == AccessDecision.NOT_FOUND:
            record_denial(session, actor, EntityKind.ACCOUNT, account_id, decision, action=action.value)
            raise NotFoundError(EntityKind.ACCOUNT.value, account_id)
        record_denial(session, actor, EntityKind.ACCOUNT, account_id, AccessDecision.FORBIDDEN, action=action.value)
        raise ForbiddenError(
            EntityKind.ACCOUNT.value,
            account_id,
            f"Sales Reps may not {action.value.replace('_', ' ')} accounts",
        )
    ensure_access(session, actor, EntityKind.ACCOUNT, account_id, action=action.value)


def ensure_role_change(session: Session, actor: ActingUser, user_id: int, current_role: str, new_role: str) -> None:
    if current_role == new_role:
        return
    if not actor.is_super_admin:
        write_audit_log(
            session,
            actor_user_id=actor.user_id,
            actor_role=actor.role.value,
            entity_type="crm.user",
            entity_id=user_id,
            action=ResourceAction.CHANGE_ROLE.value,
            outcome="denied",
            after={"role": new_role},
            correlation_id=actor.correlation_id,
            commit=True,
        )
        raise ForbiddenError("user", user_id, "Only Super Admin may change a user's role")


def ensure_super_admin(
    session: Session,
    actor: ActingUser,
    entity_kind: EntityKind | str,
    entity_id: int | None,
    action: ResourceAction,
) -> None:
    """Administrative operations with no regional variant."""

    if actor.is_super_admin:
        return
    record_denial(session, actor, entity_kind, entity_id, AccessDecision.FORBIDDEN, action=action.value)
    raise ForbiddenError(
        str(entity_kind),
        entity_id,
        f"Only Super Admin may {action.value.replace('_', ' ')} {entity_kind} records",
    )


def ensure_region_exists(
    session: Session,
    actor: ActingUser,
    kind: EntityKind | str,
    region_id: int,
    field: str = "region_id",
) -> None:
    if session.get(CRMRegion, region_id) is None:
        raise _reject_field(actor, kind, field, f"Region {region_id} does not exist")


def ensure_lead_update(session: Session, actor: ActingUser, lead: CRMLead, changes: dict[str, Any]) -> None:
    """Scope checks for editing a lead the actor can already see.

    Sales Reps keep the lead on themselves and in their own region. Regional
    Leads may move it only between their effective regions.
    """

    ensure_access(session, actor, EntityKind.LEAD, lead.id, action=ResourceAction.UPDATE.value)

    new_owner = changes.get("owner_id", lead.owner_id)
    new_region = changes.get("region_id", lead.region_id)
    if actor.is_sales_rep:
        if new_owner != actor.user_id:
            raise _reject_field(actor, EntityKind.LEAD, "owner_id", "Sales Reps may not reassign lead ownership")
        if new_region != lead.region_id:
            raise _reject_field(actor, EntityKind.LEAD, "region_id", "Sales Reps may not move leads between regions")
        return

    if new_region is not None and new_region != lead.region_id:
        validate_region_choice(session, actor, EntityKind.LEAD, new_region)
        ensure_region_exists(session, actor, EntityKind.LEAD, new_region)


def ensure_user_regions_visible(session: Session, actor: ActingUser, user_id: int) -> None:
    """A user's effective regions are readable by that user and by Super Admins."""

    if actor.is_super_admin or actor.user_id == user_id:
        return
    record_denial(session, actor, "user", user_id, AccessDecision.FORBIDDEN, action=ResourceAction.READ.value)
    raise ForbiddenError("user", user_id, "Only the user or a Super Admin may view these regions")


def ensure_opportunity_mutation(
    session: Session,
    actor: ActingUser,
    opportunity: CRMOpportunity,
    action: ResourceAction,
    changes: dict[str, Any] | None = None,
    *,
    settings: Settings | None = None,
) -> None:
    """Gate opportunity writes by the configured checks.

    Each check is switched independently: the scope check, the restriction on
    Sales Reps reassigning the owner, and the lock on closed deals.
    """

    settings = settings or get_settings()
    if settings.opportunity_mutation_scope_check:
        ensure_access(session, actor, EntityKind.OPPORTUNITY, opportunity.id, action=action.value)

    if settings.opportunity_closed_lock and opportunity.stage in TERMINAL_STAGES:
        record_denial(session, actor, EntityKind.OPPORTUNITY, opportunity.id, AccessDecision.FORBIDDEN, action=action.value)
        raise ForbiddenError(
            EntityKind.OPPORTUNITY.value,
            opportunity.id,
            f"Opportunity {opportunity.id} is closed and can no longer be modified",
        )

    if settings.opportunity_owner_change_restricted and actor.is_sales_rep and changes:
        new_owner = changes.get("owner_id")
        if new_owner is not None and new_owner != opportunity.owner_id:
            raise _reject_field(
                actor,
                EntityKind.OPPORTUNITY,
                "owner_id",
                "Sales Reps may not reassign opportunity ownership",
            )


def ensure_related_entity(
    session: Session,
    actor: ActingUser,
    kind: EntityKind,
    ref: RelatedEntityRef,
    *,
    field: str = "related_entity_id",
) -> None:
    """New records may only be attached to records the actor can see."""

    decision = can_access(session, actor, ref.entity_kind, ref.entity_id)
    if decision == AccessDecision.NOT_FOUND:
        raise _reject_field(
            actor,
            kind,
            field,
            f"{ref.kind.value} {ref.entity_id} does not exist",
        )
    if decision == AccessDecision.FORBIDDEN:
        raise _reject_field(
            actor,
            kind,
            field,
            f"{ref.kind.value} {ref.entity_id} is outside your scope",
        )
