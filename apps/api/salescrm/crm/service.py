from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from salescrm.crm.enums import (
    AccountStatus,
    EntityKind,
    LeadStatus,
    OpportunityStage,
    RelatedEntityKind,
    parse_role,
)
from salescrm.crm.models import (
    CRMAccount,
    CRMContact,
    CRMLead,
    CRMOpportunity,
    CRMRegion,
    CRMTask,
    CRMUser,
    CRMUserRegion,
)
from salescrm.crm.repositories import (
    AccountRepository,
    ContactRepository,
    DocumentRepository,
    LeadRepository,
    OpportunityRepository,
    TaskRepository,
)
from salescrm.crm.schemas import (
    AccountCreate,
    AccountRead,
    AccountUpdate,
    AuditLogRead,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DocumentRead,
    LeadConvertRead,
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
    RegionCreate,
    RegionRead,
    RegionUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    UserRead,
    UserRegionsAssign,
    UserRegionsRead,
    UserUpdate,
)
from salescrm.platform.security.context import ActingUser
from salescrm.platform.security.errors import (
    ForbiddenError,
    NotFoundError,
    ScopeValidationError,
    StoreUnavailableError,
)
from salescrm.platform.security.policies import (
    ResourceAction,
    ensure_account_manage,
    ensure_lead_update,
    ensure_opportunity_mutation,
    ensure_region_exists,
    ensure_related_entity,
    ensure_role_change,
    ensure_super_admin,
    ensure_user_regions_visible,
    prepare_account_create,
    prepare_lead_create,
    validate_region_choice,
)
from salescrm.platform.security.regions import effective_regions
from salescrm.platform.security.scope import RelatedEntityRef, ensure_access
from salescrm.services.audit import get_audit_log, list_audit_logs, write_audit_log


TASK_COMPLETED = "Completed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def domain_errors(session: Session | None = None) -> Iterator[None]:
    """Translate scope and store failures into HTTP errors for the API layer."""

    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ScopeValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.field, "message": str(exc)},
        ) from exc
    except StoreUnavailableError as exc:
        if session is not None:
            session.rollback()
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        if session is not None:
            session.rollback()
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Entity store unavailable") from exc


def _snapshot(instance: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    snapshot: dict[str, Any] = {}
    for field_name in fields:
        value = getattr(instance, field_name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        snapshot[field_name] = value
    return snapshot


def _record_mutation(
    session: Session,
    actor: ActingUser,
    entity_type: str,
    entity_id: int,
    action: ResourceAction,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> None:
    write_audit_log(
        session,
        actor_user_id=actor.user_id,
        actor_role=actor.role.value,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action.value,
        before=before,
        after=after,
        correlation_id=actor.correlation_id,
    )


class AccountService:
    entity_type = "crm.account"
    audit_fields = ("name", "region_id", "sales_rep_id", "industry", "status")

    def __init__(self) -> None:
        self.repository = AccountRepository()

    def list_accounts(self, session: Session, actor: ActingUser, filters: dict[str, Any]) -> list[AccountRead]:
        with domain_errors():
            rows = self.repository.list_for(session, actor, filters)
        return [AccountRead.model_validate(row) for row in rows]

    def get_account(self, session: Session, actor: ActingUser, account_id: int) -> AccountRead:
        with domain_errors():
            account = self.repository.get_for(session, actor, account_id)
        return AccountRead.model_validate(account)

    def create_account(self, session: Session, actor: ActingUser, dto: AccountCreate) -> AccountRead:
        with domain_errors(session):
            values = prepare_account_create(session, actor, dto.model_dump())
            if values.get("region_id") is None:
                raise ScopeValidationError(EntityKind.ACCOUNT.value, "region_id", "region_id is required")

            account = CRMAccount(
                name=values["name"].strip(),
                region_id=values["region_id"],
                sales_rep_id=values.get("sales_rep_id"),
                industry=values.get("industry"),
                status=str(values["status"]),
            )
            session.add(account)
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                account.id,
                ResourceAction.CREATE,
                None,
                _snapshot(account, self.audit_fields),
            )
            session.commit()
            session.refresh(account)
        return AccountRead.model_validate(account)

    def update_account(self, session: Session, actor: ActingUser, account_id: int, dto: AccountUpdate) -> AccountRead:
        changes = dto.model_dump(exclude_unset=True)
        with domain_errors(session):
            ensure_account_manage(session, actor, account_id, ResourceAction.UPDATE)
            account = self.repository.get_by_id(session, account_id)
            if "region_id" in changes and changes["region_id"] != account.region_id:
                validate_region_choice(session, actor, EntityKind.ACCOUNT, changes["region_id"])

            before = _snapshot(account, self.audit_fields)
            for field_name, value in changes.items():
                if value is None and field_name in {"name", "region_id", "status"}:
                    continue
                setattr(account, field_name, str(value) if field_name == "status" else value)
            account.updated_at = utcnow()
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                account.id,
                ResourceAction.UPDATE,
                before,
                _snapshot(account, self.audit_fields),
            )
            session.commit()
            session.refresh(account)
        return AccountRead.model_validate(account)

    def approve_account(self, session: Session, actor: ActingUser, account_id: int) -> AccountRead:
        with domain_errors(session):
            ensure_account_manage(session, actor, account_id, ResourceAction.APPROVE)
            account = self.repository.get_by_id(session, account_id)
            if account.status != AccountStatus.PENDING_APPROVAL.value:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Account is not pending approval")

            before = _snapshot(account, self.audit_fields)
            account.status = AccountStatus.ACTIVE.value
            account.updated_at = utcnow()
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                account.id,
                ResourceAction.APPROVE,
                before,
                _snapshot(account, self.audit_fields),
            )
            session.commit()
            session.refresh(account)
        return AccountRead.model_validate(account)

    def reject_account(self, session: Session, actor: ActingUser, account_id: int, reason: str | None) -> dict[str, Any]:
        return self._remove(session, actor, account_id, ResourceAction.REJECT, reason=reason)

    def delete_account(self, session: Session, actor: ActingUser, account_id: int) -> dict[str, Any]:
        return self._remove(session, actor, account_id, ResourceAction.DELETE)

    def _remove(
        self,
        session: Session,
        actor: ActingUser,
        account_id: int,
        action: ResourceAction,
        *,
        reason: str | None = None,
    ) -> dict[str, Any]:
        with domain_errors(session):
            ensure_account_manage(session, actor, account_id, action)
            account = self.repository.get_by_id(session, account_id)
            before = _snapshot(account, self.audit_fields)
            session.delete(account)
            _record_mutation(
                session,
                actor,
                self.entity_type,
                account_id,
                action,
                before,
                {"reason": reason} if reason else None,
            )
            session.commit()
        return {"id": account_id, "status": "rejected" if action == ResourceAction.REJECT else "deleted"}


class LeadService:
    entity_type = "crm.lead"
    audit_fields = ("name", "status", "owner_id", "region_id", "converted_at")

    def __init__(self) -> None:
        self.repository = LeadRepository()

    def list_leads(self, session: Session, actor: ActingUser, filters: dict[str, Any]) -> list[LeadRead]:
        with domain_errors():
            rows = self.repository.list_for(session, actor, filters)
        return [LeadRead.model_validate(row) for row in rows]

    def get_lead(self, session: Session, actor: ActingUser, lead_id: int) -> LeadRead:
        with domain_errors():
            lead = self.repository.get_for(session, actor, lead_id)
        return LeadRead.model_validate(lead)

    def create_lead(self, session: Session, actor: ActingUser, dto: LeadCreate) -> LeadRead:
        with domain_errors(session):
            values = prepare_lead_create(session, actor, dto.model_dump())
            lead = CRMLead(
                name=values["name"].strip(),
                company=values.get("company"),
                email=values.get("email"),
                phone=values.get("phone"),
                status=str(values["status"]),
                owner_id=values.get("owner_id"),
                region_id=values.get("region_id"),
                source=values.get("source"),
                notes=values.get("notes"),
            )
            session.add(lead)
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                lead.id,
                ResourceAction.CREATE,
                None,
                _snapshot(lead, self.audit_fields),
            )
            session.commit()
            session.refresh(lead)
        return LeadRead.model_validate(lead)

    def update_lead(self, session: Session, actor: ActingUser, lead_id: int, dto: LeadUpdate) -> LeadRead:
        changes = dto.model_dump(exclude_unset=True)
        with domain_errors(session):
            lead = self._load(session, lead_id)
            ensure_lead_update(session, actor, lead, changes)
            before = _snapshot(lead, self.audit_fields)
            for field_name, value in changes.items():
                if value is None and field_name in {"name", "status"}:
                    continue
                setattr(lead, field_name, str(value) if field_name == "status" else value)
            lead.updated_at = utcnow()
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                lead.id,
                ResourceAction.UPDATE,
                before,
                _snapshot(lead, self.audit_fields),
            )
            session.commit()
            session.refresh(lead)
        return LeadRead.model_validate(lead)

    def convert_lead(
        self,
        session: Session,
        actor: ActingUser,
        lead_id: int,
        dto: LeadConvertRequest,
    ) -> LeadConvertRead:
        with domain_errors(session):
            ensure_super_admin(session, actor, EntityKind.LEAD, lead_id, ResourceAction.CONVERT)
            lead = self._load(session, lead_id)
            if lead.status == LeadStatus.CONVERTED.value:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Lead is already converted")
            ensure_region_exists(session, actor, EntityKind.ACCOUNT, dto.region_id)

            before = _snapshot(lead, self.audit_fields)
            account = CRMAccount(
                name=dto.account_name.strip(),
                region_id=dto.region_id,
                sales_rep_id=dto.sales_rep_id,
                industry=dto.industry,
                status=AccountStatus.PROSPECT.value,
            )
            session.add(account)
            lead.status = LeadStatus.CONVERTED.value
            lead.converted_at = utcnow()
            lead.updated_at = utcnow()
            session.flush()
            account_id = account.id
            _record_mutation(
                session,
                actor,
                AccountService.entity_type,
                account_id,
                ResourceAction.CREATE,
                None,
                _snapshot(account, AccountService.audit_fields),
            )
            _record_mutation(
                session,
                actor,
                self.entity_type,
                lead_id,
                ResourceAction.CONVERT,
                before,
                {**_snapshot(lead, self.audit_fields), "account_id": account_id},
            )
            session.commit()
        return LeadConvertRead(lead_id=lead_id, account_id=account_id, status=LeadStatus.CONVERTED.value)

    def delete_lead(self, session: Session, actor: ActingUser, lead_id: int) -> dict[str, Any]:
        with domain_errors(session):
            ensure_super_admin(session, actor, EntityKind.LEAD, lead_id, ResourceAction.DELETE)
            lead = self._load(session, lead_id)
            before = _snapshot(lead, self.audit_fields)
            session.delete(lead)
            _record_mutation(session, actor, self.entity_type, lead_id, ResourceAction.DELETE, before, None)
            session.commit()
        return {"id": lead_id, "status": "deleted"}

    def _load(self, session: Session, lead_id: int) -> CRMLead:
        lead = self.repository.get_by_id(session, lead_id)
        if lead is None:
            raise NotFoundError(EntityKind.LEAD.value, lead_id)
        return lead


def _opportunity_read(opportunity: CRMOpportunity) -> OpportunityRead:
    account = opportunity.account
    return OpportunityRead.model_validate(
        {
            "id": opportunity.id,
            "name": opportunity.name,
            "account_id": opportunity.account_id,
            "stage": opportunity.stage,
            "amount": opportunity.amount,
            "close_date": opportunity.close_date,
            "owner_id": opportunity.owner_id,
            "won_at": opportunity.won_at,
            "lost_at": opportunity.lost_at,
            "lost_reason": opportunity.lost_reason,
            "region_id": account.region_id if account is not None else None,
            "account_name": account.name if account is not None else None,
            "created_at": opportunity.created_at,
            "updated_at": opportunity.updated_at,
        }
    )


class OpportunityService:
    entity_type = "crm.opportunity"
    audit_fields = ("name", "stage", "amount", "owner_id", "close_date", "won_at", "lost_at", "lost_reason")

    def __init__(self) -> None:
        self.repository = OpportunityRepository()

    def list_opportunities(
        self,
        session: Session,
        actor: ActingUser,
        filters: dict[str, Any],
    ) -> list[OpportunityRead]:
        with domain_errors():
            rows = self.repository.list_for(
                session,
                actor,
                filters,
                options=(selectinload(CRMOpportunity.account),),
            )
        return [_opportunity_read(row) for row in rows]

    def get_opportunity(self, session: Session, actor: ActingUser, opportunity_id: int) -> OpportunityRead:
        with domain_errors():
            opportunity = self.repository.get_for(session, actor, opportunity_id)
        return _opportunity_read(opportunity)

    def create_opportunity(self, session: Session, actor: ActingUser, dto: OpportunityCreate) -> OpportunityRead:
        with domain_errors(session):
            ensure_related_entity(
                session,
                actor,
                EntityKind.OPPORTUNITY,
                RelatedEntityRef(kind=RelatedEntityKind.ACCOUNT, entity_id=dto.account_id),
            )
            opportunity = CRMOpportunity(
                name=dto.name.strip(),
                account_id=dto.account_id,
                stage=dto.stage.value,
                amount=dto.amount,
                close_date=dto.close_date,
                owner_id=dto.owner_id if dto.owner_id is not None else actor.user_id,
            )
            self._stamp_terminal(opportunity, dto.stage)
            session.add(opportunity)
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                opportunity.id,
                ResourceAction.CREATE,
                None,
                _snapshot(opportunity, self.audit_fields),
            )
            session.commit()
            session.refresh(opportunity)
        return _opportunity_read(opportunity)

    def update_opportunity(
        self,
        session: Session,
        actor: ActingUser,
        opportunity_id: int,
        dto: OpportunityUpdate,
    ) -> OpportunityRead:
        changes = {key: value for key, value in dto.model_dump(exclude_unset=True).items() if value is not None}
        with domain_errors(session):
            opportunity = self._load(session, opportunity_id)
            ensure_opportunity_mutation(session, actor, opportunity, ResourceAction.UPDATE, changes)
            before = _snapshot(opportunity, self.audit_fields)
            stage = changes.pop("stage", None)
            for field_name, value in changes.items():
                setattr(opportunity, field_name, value)
            if stage is not None:
                opportunity.stage = stage.value
                self._stamp_terminal(opportunity, stage)
            opportunity.updated_at = utcnow()
            return self._commit(session, actor, opportunity, ResourceAction.UPDATE, before)

    def move_stage(
        self,
        session: Session,
        actor: ActingUser,
        opportunity_id: int,
        new_stage: OpportunityStage,
    ) -> OpportunityRead:
        with domain_errors(session):
            opportunity = self._load(session, opportunity_id)
            ensure_opportunity_mutation(session, actor, opportunity, ResourceAction.MOVE_STAGE)
            before = _snapshot(opportunity, self.audit_fields)
            opportunity.stage = new_stage.value
            self._stamp_terminal(opportunity, new_stage)
            opportunity.updated_at = utcnow()
            return self._commit(session, actor, opportunity, ResourceAction.MOVE_STAGE, before)

    def win(self, session: Session, actor: ActingUser, opportunity_id: int) -> OpportunityRead:
        with domain_errors(session):
            opportunity = self._load(session, opportunity_id)
            ensure_opportunity_mutation(session, actor, opportunity, ResourceAction.WIN)
            before = _snapshot(opportunity, self.audit_fields)
            opportunity.stage = OpportunityStage.CLOSED_WON.value
            opportunity.won_at = utcnow()
            opportunity.updated_at = utcnow()
            return self._commit(session, actor, opportunity, ResourceAction.WIN, before)

    def lose(self, session: Session, actor: ActingUser, opportunity_id: int, reason: str | None) -> OpportunityRead:
        with domain_errors(session):
            opportunity = self._load(session, opportunity_id)
            ensure_opportunity_mutation(session, actor, opportunity, ResourceAction.LOSE)
            before = _snapshot(opportunity, self.audit_fields)
            opportunity.stage = OpportunityStage.CLOSED_LOST.value
            opportunity.lost_at = utcnow()
            opportunity.lost_reason = reason
            opportunity.updated_at = utcnow()
            return self._commit(session, actor, opportunity, ResourceAction.LOSE, before)

    def delete_opportunity(self, session: Session, actor: ActingUser, opportunity_id: int) -> dict[str, Any]:
        with domain_errors(session):
            opportunity = self._load(session, opportunity_id)
            ensure_opportunity_mutation(session, actor, opportunity, ResourceAction.DELETE)
            before = _snapshot(opportunity, self.audit_fields)
            session.delete(opportunity)
            _record_mutation(session, actor, self.entity_type, opportunity_id, ResourceAction.DELETE, before, None)
            session.commit()
        return {"id": opportunity_id, "status": "deleted"}

    def _load(self, session: Session, opportunity_id: int) -> CRMOpportunity:
        opportunity = self.repository.get_by_id(session, opportunity_id)
        if opportunity is None:
            raise NotFoundError(EntityKind.OPPORTUNITY.value, opportunity_id)
        return opportunity

    @staticmethod
    def _stamp_terminal(opportunity: CRMOpportunity, stage: OpportunityStage) -> None:
        # terminal timestamps are set once and never cleared
        if stage == OpportunityStage.CLOSED_WON and opportunity.won_at is None:
            opportunity.won_at = utcnow()
        if stage == OpportunityStage.CLOSED_LOST and opportunity.lost_at is None:
            opportunity.lost_at = utcnow()

    def _commit(
        self,
        session: Session,
        actor: ActingUser,
        opportunity: CRMOpportunity,
        action: ResourceAction,
        before: dict[str, Any],
    ) -> OpportunityRead:
        session.flush()
        after = _snapshot(opportunity, self.audit_fields)
        _record_mutation(session, actor, self.entity_type, opportunity.id, action, before, after)
        session.commit()
        session.refresh(opportunity)
        return _opportunity_read(opportunity)


class ContactService:
    entity_type = "crm.contact"
    audit_fields = ("account_id", "name", "email", "phone", "title")

    def __init__(self) -> None:
        self.repository = ContactRepository()

    def list_contacts(self, session: Session, actor: ActingUser, filters: dict[str, Any]) -> list[ContactRead]:
        with domain_errors():
            rows = self.repository.list_for(session, actor, filters)
        return [ContactRead.model_validate(row) for row in rows]

    def get_contact(self, session: Session, actor: ActingUser, contact_id: int) -> ContactRead:
        with domain_errors():
            contact = self.repository.get_for(session, actor, contact_id)
        return ContactRead.model_validate(contact)

    def create_contact(self, session: Session, actor: ActingUser, dto: ContactCreate) -> ContactRead:
        with domain_errors(session):
            self._ensure_account(session, actor, dto.account_id)
            contact = CRMContact(
                account_id=dto.account_id,
                name=dto.name.strip(),
                email=dto.email,
                phone=dto.phone,
                title=dto.title,
            )
            session.add(contact)
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                contact.id,
                ResourceAction.CREATE,
                None,
                _snapshot(contact, self.audit_fields),
            )
            session.commit()
            session.refresh(contact)
        return ContactRead.model_validate(contact)

    def update_contact(self, session: Session, actor: ActingUser, contact_id: int, dto: ContactUpdate) -> ContactRead:
        changes = {key: value for key, value in dto.model_dump(exclude_unset=True).items() if value is not None}
        with domain_errors(session):
            contact = self.repository.get_for(session, actor, contact_id, action=ResourceAction.UPDATE.value)
            if "account_id" in changes and changes["account_id"] != contact.account_id:
                self._ensure_account(session, actor, changes["account_id"])
            before = _snapshot(contact, self.audit_fields)
            for field_name, value in changes.items():
                setattr(contact, field_name, value.strip() if field_name == "name" else value)
            contact.updated_at = utcnow()
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                contact.id,
                ResourceAction.UPDATE,
                before,
                _snapshot(contact, self.audit_fields),
            )
            session.commit()
            session.refresh(contact)
        return ContactRead.model_validate(contact)

    def delete_contact(self, session: Session, actor: ActingUser, contact_id: int) -> dict[str, Any]:
        with domain_errors(session):
            contact = self.repository.get_for(session, actor, contact_id, action=ResourceAction.DELETE.value)
            before = _snapshot(contact, self.audit_fields)
            session.delete(contact)
            _record_mutation(session, actor, self.entity_type, contact_id, ResourceAction.DELETE, before, None)
            session.commit()
        return {"id": contact_id, "status": "deleted"}

    @staticmethod
    def _ensure_account(session: Session, actor: ActingUser, account_id: int) -> None:
        ensure_related_entity(
            session,
            actor,
            EntityKind.CONTACT,
            RelatedEntityRef(kind=RelatedEntityKind.ACCOUNT, entity_id=account_id),
            field="account_id",
        )


class TaskService:
    entity_type = "crm.task"
    audit_fields = ("subject", "status", "due_date", "assigned_to_id", "completed_at")

    def __init__(self) -> None:
        self.repository = TaskRepository()

    def list_tasks(self, session: Session, actor: ActingUser, filters: dict[str, Any]) -> list[TaskRead]:
        with domain_errors():
            rows = self.repository.list_for(session, actor, filters)
        return [TaskRead.model_validate(row) for row in rows]

    def get_task(self, session: Session, actor: ActingUser, task_id: int) -> TaskRead:
        with domain_errors():
            task = self.repository.get_for(session, actor, task_id)
        return TaskRead.model_validate(task)

    def create_task(self, session: Session, actor: ActingUser, dto: TaskCreate) -> TaskRead:
        ref = RelatedEntityRef(kind=dto.related_entity_type, entity_id=dto.related_entity_id)
        with domain_errors(session):
            ensure_related_entity(session, actor, EntityKind.TASK, ref)
            task = CRMTask(
                subject=dto.subject.strip(),
                due_date=dto.due_date,
                type=dto.type,
                status=dto.status,
                related_entity_type=ref.kind.value,
                related_entity_id=ref.entity_id,
                created_by_id=actor.user_id,
                assigned_to_id=dto.assigned_to_id if dto.assigned_to_id is not None else actor.user_id,
                notes=dto.notes,
            )
            session.add(task)
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                task.id,
                ResourceAction.CREATE,
                None,
                {"related": f"{ref.kind.value}:{ref.entity_id}", "assigned_to_id": task.assigned_to_id},
            )
            session.commit()
            session.refresh(task)
        return TaskRead.model_validate(task)

    def update_task(self, session: Session, actor: ActingUser, task_id: int, dto: TaskUpdate) -> TaskRead:
        changes = {key: value for key, value in dto.model_dump(exclude_unset=True).items() if value is not None}
        with domain_errors(session):
            task = self.repository.get_for(session, actor, task_id, action=ResourceAction.UPDATE.value)
            before = _snapshot(task, self.audit_fields)
            for field_name, value in changes.items():
                setattr(task, field_name, value.strip() if field_name == "subject" else value)
            if changes.get("status") == TASK_COMPLETED and task.completed_at is None:
                task.completed_at = utcnow()
            task.updated_at = utcnow()
            return self._commit(session, actor, task, ResourceAction.UPDATE, before)

    def complete_task(self, session: Session, actor: ActingUser, task_id: int) -> TaskRead:
        with domain_errors(session):
            task = self.repository.get_for(session, actor, task_id, action=ResourceAction.COMPLETE.value)
            before = _snapshot(task, self.audit_fields)
            task.status = TASK_COMPLETED
            # completing twice keeps the first timestamp
            if task.completed_at is None:
                task.completed_at = utcnow()
            task.updated_at = utcnow()
            return self._commit(session, actor, task, ResourceAction.COMPLETE, before)

    def delete_task(self, session: Session, actor: ActingUser, task_id: int) -> dict[str, Any]:
        with domain_errors(session):
            task = self.repository.get_for(session, actor, task_id, action=ResourceAction.DELETE.value)
            before = _snapshot(task, self.audit_fields)
            session.delete(task)
            _record_mutation(session, actor, self.entity_type, task_id, ResourceAction.DELETE, before, None)
            session.commit()
        return {"id": task_id, "status": "deleted"}

    def _commit(
        self,
        session: Session,
        actor: ActingUser,
        task: CRMTask,
        action: ResourceAction,
        before: dict[str, Any],
    ) -> TaskRead:
        session.flush()
        _record_mutation(session, actor, self.entity_type, task.id, action, before, _snapshot(task, self.audit_fields))
        session.commit()
        session.refresh(task)
        return TaskRead.model_validate(task)


class DocumentService:
    def __init__(self) -> None:
        self.repository = DocumentRepository()

    def list_documents(self, session: Session, actor: ActingUser, filters: dict[str, Any]) -> list[DocumentRead]:
        with domain_errors():
            rows = self.repository.list_for(session, actor, filters)
        return [DocumentRead.model_validate(row) for row in rows]

    def get_document(self, session: Session, actor: ActingUser, document_id: int) -> DocumentRead:
        with domain_errors():
            document = self.repository.get_for(session, actor, document_id)
        return DocumentRead.model_validate(document)


class AccountChildrenService:
    """Records hanging off one account, visible once the account itself is."""

    def __init__(self) -> None:
        self.contacts = ContactRepository()
        self.opportunities = OpportunityRepository()
        self.tasks = TaskRepository()
        self.documents = DocumentRepository()

    def list_contacts(self, session: Session, actor: ActingUser, account_id: int) -> list[ContactRead]:
        with domain_errors():
            ensure_access(session, actor, EntityKind.ACCOUNT, account_id)
            rows = self.contacts.list_for(session, actor, {"account_id": account_id})
        return [ContactRead.model_validate(row) for row in rows]

    def list_opportunities(self, session: Session, actor: ActingUser, account_id: int) -> list[OpportunityRead]:
        with domain_errors():
            ensure_access(session, actor, EntityKind.ACCOUNT, account_id)
            rows = self.opportunities.list_for(
                session,
                actor,
                {"account_id": account_id},
                options=(selectinload(CRMOpportunity.account),),
            )
        return [_opportunity_read(row) for row in rows]

    def list_tasks(self, session: Session, actor: ActingUser, account_id: int) -> list[TaskRead]:
        filters = {"related_entity_type": RelatedEntityKind.ACCOUNT.value, "related_entity_id": account_id}
        with domain_errors():
            ensure_access(session, actor, EntityKind.ACCOUNT, account_id)
            rows = self.tasks.list_for(session, actor, filters)
        return [TaskRead.model_validate(row) for row in rows]

    def list_documents(self, session: Session, actor: ActingUser, account_id: int) -> list[DocumentRead]:
        filters = {"related_entity_type": RelatedEntityKind.ACCOUNT.value, "related_entity_id": account_id}
        with domain_errors():
            ensure_access(session, actor, EntityKind.ACCOUNT, account_id)
            rows = self.documents.list_for(session, actor, filters)
        return [DocumentRead.model_validate(row) for row in rows]


class UserService:
    entity_type = "crm.user"

    def update_user(self, session: Session, actor: ActingUser, user_id: int, dto: UserUpdate) -> UserRead:
        changes = dto.model_dump(exclude_unset=True)
        with domain_errors(session):
            user = session.get(CRMUser, user_id)
            if user is None:
                raise NotFoundError("user", user_id)

            new_role = changes.get("role")
            if new_role is not None:
                ensure_role_change(session, actor, user_id, user.role, str(new_role))
            if "region_id" in changes and changes["region_id"] != user.region_id and not actor.is_super_admin:
                raise ForbiddenError("user", user_id, "Only Super Admin may change a user's region")

            before = _snapshot(user, ("name", "role", "region_id"))
            if changes.get("name"):
                user.name = changes["name"]
            if new_role is not None:
                user.role = str(new_role)
            if "region_id" in changes:
                user.region_id = changes["region_id"]
            user.updated_at = utcnow()
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                user_id,
                ResourceAction.UPDATE,
                before,
                _snapshot(user, ("name", "role", "region_id")),
            )
            session.commit()
            session.refresh(user)
        return UserRead.model_validate(user)

    def get_user_regions(self, session: Session, actor: ActingUser, user_id: int) -> UserRegionsRead:
        with domain_errors():
            ensure_user_regions_visible(session, actor, user_id)
            user = session.get(CRMUser, user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            return self._regions_read(session, user)

    def assign_regions(
        self,
        session: Session,
        actor: ActingUser,
        user_id: int,
        dto: UserRegionsAssign,
    ) -> UserRegionsRead:
        region_ids = sorted(set(dto.region_ids))
        with domain_errors(session):
            ensure_super_admin(session, actor, "user", user_id, ResourceAction.ASSIGN_REGIONS)
            user = session.get(CRMUser, user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            for region_id in region_ids:
                ensure_region_exists(session, actor, "user", region_id, field="region_ids")

            before = {"region_ids": self._secondary_ids(session, user_id)}
            session.execute(delete(CRMUserRegion).where(CRMUserRegion.user_id == user_id))
            session.flush()
            for region_id in region_ids:
                session.add(CRMUserRegion(user_id=user_id, region_id=region_id))
            session.flush()
            _record_mutation(
                session,
                actor,
                self.entity_type,
                user_id,
                ResourceAction.ASSIGN_REGIONS,
                before,
                {"region_ids": region_ids},
            )
            session.commit()
            return self._regions_read(session, user)

    @staticmethod
    def _secondary_ids(session: Session, user_id: int) -> list[int]:
        rows = session.scalars(select(CRMUserRegion.region_id).where(CRMUserRegion.user_id == user_id))
        return sorted(rows.all())

    @staticmethod
    def _regions_read(session: Session, user: CRMUser) -> UserRegionsRead:
        role = parse_role(user.role)
        if role is None:
            return UserRegionsRead(user_id=user.id, role=user.role, all_regions=False, region_ids=[])
        scope = effective_regions(session, ActingUser(user_id=user.id, role=role))
        if scope.all_regions:
            region_ids = sorted(session.scalars(select(CRMRegion.id)).all())
        else:
            region_ids = sorted(scope.region_ids)
        return UserRegionsRead(user_id=user.id, role=role.value, all_regions=scope.all_regions, region_ids=region_ids)


class RegionService:
    """Reference data every signed-in user can read and only Super Admins may edit."""

    entity_type = "crm.region"

    def list_regions(self, session: Session, actor: ActingUser) -> list[RegionRead]:
        with domain_errors():
            rows = session.scalars(select(CRMRegion).order_by(CRMRegion.id)).all()
        return [RegionRead.model_validate(row) for row in rows]

    def get_region(self, session: Session, actor: ActingUser, region_id: int) -> RegionRead:
        with domain_errors():
            return RegionRead.model_validate(self._load(session, region_id))

    def create_region(self, session: Session, actor: ActingUser, dto: RegionCreate) -> RegionRead:
        name = dto.name.strip()
        with domain_errors(session):
            ensure_super_admin(session, actor, "region", None, ResourceAction.CREATE)
            self._ensure_unique(session, name)
            region = CRMRegion(name=name)
            session.add(region)
            session.flush()
            _record_mutation(session, actor, self.entity_type, region.id, ResourceAction.CREATE, None, {"name": name})
            session.commit()
            session.refresh(region)
        return RegionRead.model_validate(region)

    def update_region(self, session: Session, actor: ActingUser, region_id: int, dto: RegionUpdate) -> RegionRead:
        name = dto.name.strip()
        with domain_errors(session):
            ensure_super_admin(session, actor, "region", region_id, ResourceAction.UPDATE)
            region = self._load(session, region_id)
            if name != region.name:
                self._ensure_unique(session, name)
            before = {"name": region.name}
            region.name = name
            region.updated_at = utcnow()
            session.flush()
            _record_mutation(session, actor, self.entity_type, region_id, ResourceAction.UPDATE, before, {"name": name})
            session.commit()
            session.refresh(region)
        return RegionRead.model_validate(region)

    def delete_region(self, session: Session, actor: ActingUser, region_id: int) -> dict[str, Any]:
        with domain_errors(session):
            ensure_super_admin(session, actor, "region", region_id, ResourceAction.DELETE)
            region = self._load(session, region_id)
            if self._in_use(session, region_id):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Region {region_id} is still referenced by users, accounts or leads",
                )
            before = {"name": region.name}
            session.delete(region)
            _record_mutation(session, actor, self.entity_type, region_id, ResourceAction.DELETE, before, None)
            session.commit()
        return {"id": region_id, "status": "deleted"}

    @staticmethod
    def _load(session: Session, region_id: int) -> CRMRegion:
        region = session.get(CRMRegion, region_id)
        if region is None:
            raise NotFoundError("region", region_id)
        return region

    @staticmethod
    def _ensure_unique(session: Session, name: str) -> None:
        if session.scalar(select(CRMRegion.id).where(CRMRegion.name == name)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Region '{name}' already exists")

    @staticmethod
    def _in_use(session: Session, region_id: int) -> bool:
        for column in (CRMUser.region_id, CRMUserRegion.region_id, CRMAccount.region_id, CRMLead.region_id):
            if session.scalar(select(column).where(column == region_id).limit(1)) is not None:
                return True
        return False


class AuditLogService:
    def list_logs(self, session: Session, actor: ActingUser, filters: dict[str, Any], limit: int) -> list[AuditLogRead]:
        with domain_errors():
            ensure_super_admin(session, actor, "audit", None, ResourceAction.READ)
            rows = list_audit_logs(session, filters, limit=limit)
        return [AuditLogRead.model_validate(row) for row in rows]

    def get_log(self, session: Session, actor: ActingUser, audit_id: int) -> AuditLogRead:
        with domain_errors():
            ensure_super_admin(session, actor, "audit", audit_id, ResourceAction.READ)
            row = get_audit_log(session, audit_id)
            if row is None:
                raise NotFoundError("audit", audit_id)
        return AuditLogRead.model_validate(row)
