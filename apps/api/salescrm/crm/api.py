from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from salescrm.context import get_correlation_id
from salescrm.core.auth import AuthUser, get_current_user as get_auth_user
from salescrm.core.database import get_db
from salescrm.crm.enums import parse_role
from salescrm.crm.models import CRMUser
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
    OpportunityLoseRequest,
    OpportunityMoveStageRequest,
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
from salescrm.crm.service import (
    AccountChildrenService,
    AccountService,
    AuditLogService,
    ContactService,
    DocumentService,
    LeadService,
    OpportunityService,
    RegionService,
    TaskService,
    UserService,
)
from salescrm.platform.security.context import ActingUser

router = APIRouter(prefix="/api/accounts", tags=["crm.accounts"])
leads_router = APIRouter(prefix="/api/leads", tags=["crm.leads"])
opportunities_router = APIRouter(prefix="/api/opportunities", tags=["crm.opportunities"])
contacts_router = APIRouter(prefix="/api/contacts", tags=["crm.contacts"])
tasks_router = APIRouter(prefix="/api/tasks", tags=["crm.tasks"])
documents_router = APIRouter(prefix="/api/documents", tags=["crm.documents"])
users_router = APIRouter(prefix="/api/users", tags=["crm.users"])
regions_router = APIRouter(prefix="/api/regions", tags=["crm.regions"])
audit_router = APIRouter(prefix="/api/auditlogs", tags=["crm.audit"])
service = AccountService()
account_children_service = AccountChildrenService()
lead_service = LeadService()
opportunity_service = OpportunityService()
contact_service = ContactService()
task_service = TaskService()
document_service = DocumentService()
user_service = UserService()
region_service = RegionService()
audit_service = AuditLogService()

_STATUS_CODES = {
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
}


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def _failure(request: Request, exc: StarletteHTTPException, code: str) -> JSONResponse:
    message = exc.detail.get("message", str(exc.detail)) if isinstance(exc.detail, dict) else str(exc.detail)
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
        details=exc.detail,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Errors raised before a handler runs, such as auth failures, still use the error envelope."""

    response = _failure(request, exc, _STATUS_CODES.get(exc.status_code, "http_error"))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def get_current_user(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> ActingUser:
    role = parse_role(auth_user.role)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {auth_user.role}")

    name = auth_user.name
    if name is None:
        name = db.scalar(select(CRMUser.name).where(CRMUser.id == auth_user.sub))

    return ActingUser(
        user_id=auth_user.sub,
        role=role,
        name=name,
        correlation_id=get_correlation_id() or getattr(request.state, "correlation_id", None),
    )


@router.get("", response_model=list[AccountRead])
def list_accounts(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    region_id: int | None = Query(default=None, alias="regionId"),
    sales_rep_id: int | None = Query(default=None, alias="salesRepId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[AccountRead] | JSONResponse:
    try:
        return service.list_accounts(
            db,
            user,
            filters={"status": status_filter, "region_id": region_id, "sales_rep_id": sales_rep_id},
        )
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_list_failed")


@router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    dto: AccountCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> AccountRead | JSONResponse:
    try:
        return service.create_account(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_create_failed")


@router.get("/{account_id}", response_model=AccountRead)
def get_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> AccountRead | JSONResponse:
    try:
        return service.get_account(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_get_failed")


@router.put("/{account_id}", response_model=AccountRead)
def update_account(
    request: Request,
    account_id: int,
    dto: AccountUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> AccountRead | JSONResponse:
    try:
        return service.update_account(db, user, account_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_update_failed")


@router.delete("/{account_id}", response_model=None)
def delete_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return service.delete_account(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_delete_failed")


@router.post("/{account_id}/approve", response_model=AccountRead)
def approve_account(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> AccountRead | JSONResponse:
    try:
        return service.approve_account(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_approve_failed")


@router.post("/{account_id}/reject", response_model=None)
def reject_account(
    request: Request,
    account_id: int,
    reason: str | None = Body(default=None, embed=True),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return service.reject_account(db, user, account_id, reason)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_reject_failed")


@router.get("/{account_id}/contacts", response_model=list[ContactRead])
def list_account_contacts(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[ContactRead] | JSONResponse:
    try:
        return account_children_service.list_contacts(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_contacts_failed")


@router.get("/{account_id}/opportunities", response_model=list[OpportunityRead])
def list_account_opportunities(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return account_children_service.list_opportunities(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_opportunities_failed")


@router.get("/{account_id}/tasks", response_model=list[TaskRead])
def list_account_tasks(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[TaskRead] | JSONResponse:
    try:
        return account_children_service.list_tasks(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_tasks_failed")


@router.get("/{account_id}/documents", response_model=list[DocumentRead])
def list_account_documents(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[DocumentRead] | JSONResponse:
    try:
        return account_children_service.list_documents(db, user, account_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_account_documents_failed")


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    region_id: int | None = Query(default=None, alias="regionId"),
    owner_id: int | None = Query(default=None, alias="ownerId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_leads(
            db,
            user,
            filters={"status": status_filter, "region_id": region_id, "owner_id": owner_id},
        )
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_list_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_create_failed")


@leads_router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_get_failed")


@opportunities_router.get("", response_model=list[OpportunityRead])
def list_opportunities(
    request: Request,
    stage: str | None = Query(default=None),
    account_id: int | None = Query(default=None, alias="accountId"),
    owner_id: int | None = Query(default=None, alias="ownerId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[OpportunityRead] | JSONResponse:
    try:
        return opportunity_service.list_opportunities(
            db,
            user,
            filters={"stage": stage, "account_id": account_id, "owner_id": owner_id},
        )
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_list_failed")


@opportunities_router.post("", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    dto: OpportunityCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.create_opportunity(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_create_failed")


@opportunities_router.get("/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.get_opportunity(db, user, opportunity_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_get_failed")


@opportunities_router.put("/{opportunity_id}", response_model=OpportunityRead)
def update_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.update_opportunity(db, user, opportunity_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_update_failed")


@opportunities_router.post("/{opportunity_id}/move-stage", response_model=OpportunityRead)
def move_opportunity_stage(
    request: Request,
    opportunity_id: int,
    dto: OpportunityMoveStageRequest,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.move_stage(db, user, opportunity_id, dto.new_stage)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_move_stage_failed")


@opportunities_router.post("/{opportunity_id}/win", response_model=OpportunityRead)
def win_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.win(db, user, opportunity_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_win_failed")


@opportunities_router.post("/{opportunity_id}/lose", response_model=OpportunityRead)
def lose_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityLoseRequest,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.lose(db, user, opportunity_id, dto.reason)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_lose_failed")


@opportunities_router.delete("/{opportunity_id}", response_model=None)
def delete_opportunity(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return opportunity_service.delete_opportunity(db, user, opportunity_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_opportunity_delete_failed")


@contacts_router.get("", response_model=list[ContactRead])
def list_contacts(
    request: Request,
    account_id: int | None = Query(default=None, alias="accountId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[ContactRead] | JSONResponse:
    try:
        return contact_service.list_contacts(db, user, filters={"account_id": account_id})
    except HTTPException as exc:
        return _failure(request, exc, "crm_contact_list_failed")


@contacts_router.get("/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get_contact(db, user, contact_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_contact_get_failed")


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    related_entity_type: str | None = Query(default=None, alias="relatedEntityType"),
    related_entity_id: int | None = Query(default=None, alias="relatedEntityId"),
    assigned_to_id: int | None = Query(default=None, alias="assignedToId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[TaskRead] | JSONResponse:
    try:
        return task_service.list_tasks(
            db,
            user,
            filters={
                "status": status_filter,
                "related_entity_type": related_entity_type,
                "related_entity_id": related_entity_id,
                "assigned_to_id": assigned_to_id,
            },
        )
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_list_failed")


@tasks_router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        return task_service.create_task(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_create_failed")


@tasks_router.get("/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        return task_service.get_task(db, user, task_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_get_failed")


@documents_router.get("", response_model=list[DocumentRead])
def list_documents(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    related_entity_type: str | None = Query(default=None, alias="relatedEntityType"),
    related_entity_id: int | None = Query(default=None, alias="relatedEntityId"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[DocumentRead] | JSONResponse:
    try:
        return document_service.list_documents(
            db,
            user,
            filters={
                "status": status_filter,
                "related_entity_type": related_entity_type,
                "related_entity_id": related_entity_id,
            },
        )
    except HTTPException as exc:
        return _failure(request, exc, "crm_document_list_failed")


@documents_router.get("/{document_id}", response_model=DocumentRead)
def get_document(
    request: Request,
    document_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> DocumentRead | JSONResponse:
    try:
        return document_service.get_document(db, user, document_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_document_get_failed")


@users_router.patch("/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: int,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_user(db, user, user_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_user_update_failed")


@leads_router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: int,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_update_failed")


@leads_router.post("/{lead_id}/convert", response_model=LeadConvertRead)
def convert_lead(
    request: Request,
    lead_id: int,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> LeadConvertRead | JSONResponse:
    try:
        return lead_service.convert_lead(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_convert_failed")


@leads_router.delete("/{lead_id}", response_model=None)
def delete_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return lead_service.delete_lead(db, user, lead_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_lead_delete_failed")


@contacts_router.post("", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_contact(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_contact_create_failed")


@contacts_router.put("/{contact_id}", response_model=ContactRead)
def update_contact(
    request: Request,
    contact_id: int,
    dto: ContactUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update_contact(db, user, contact_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_contact_update_failed")


@contacts_router.delete("/{contact_id}", response_model=None)
def delete_contact(
    request: Request,
    contact_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return contact_service.delete_contact(db, user, contact_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_contact_delete_failed")


@tasks_router.put("/{task_id}", response_model=TaskRead)
def update_task(
    request: Request,
    task_id: int,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        return task_service.update_task(db, user, task_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_update_failed")


@tasks_router.post("/{task_id}/complete", response_model=TaskRead)
def complete_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        return task_service.complete_task(db, user, task_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_complete_failed")


@tasks_router.delete("/{task_id}", response_model=None)
def delete_task(
    request: Request,
    task_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return task_service.delete_task(db, user, task_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_task_delete_failed")


@users_router.get("/{user_id}/regions", response_model=UserRegionsRead)
def get_user_regions(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> UserRegionsRead | JSONResponse:
    try:
        return user_service.get_user_regions(db, user, user_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_user_regions_get_failed")


@users_router.post("/{user_id}/regions", response_model=UserRegionsRead)
def assign_user_regions(
    request: Request,
    user_id: int,
    dto: UserRegionsAssign,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> UserRegionsRead | JSONResponse:
    try:
        return user_service.assign_regions(db, user, user_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_user_regions_assign_failed")


@regions_router.get("", response_model=list[RegionRead])
def list_regions(
    request: Request,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[RegionRead] | JSONResponse:
    try:
        return region_service.list_regions(db, user)
    except HTTPException as exc:
        return _failure(request, exc, "crm_region_list_failed")


@regions_router.post("", response_model=RegionRead, status_code=status.HTTP_201_CREATED)
def create_region(
    request: Request,
    dto: RegionCreate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> RegionRead | JSONResponse:
    try:
        return region_service.create_region(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_region_create_failed")


@regions_router.get("/{region_id}", response_model=RegionRead)
def get_region(
    request: Request,
    region_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> RegionRead | JSONResponse:
    try:
        return region_service.get_region(db, user, region_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_region_get_failed")


@regions_router.put("/{region_id}", response_model=RegionRead)
def update_region(
    request: Request,
    region_id: int,
    dto: RegionUpdate,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> RegionRead | JSONResponse:
    try:
        return region_service.update_region(db, user, region_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "crm_region_update_failed")


@regions_router.delete("/{region_id}", response_model=None)
def delete_region(
    request: Request,
    region_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        return region_service.delete_region(db, user, region_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_region_delete_failed")


@audit_router.get("", response_model=list[AuditLogRead])
def list_audit_logs(
    request: Request,
    user_id: int | None = Query(default=None, alias="userId"),
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None, alias="entityType"),
    entity_id: str | None = Query(default=None, alias="entityId"),
    outcome: str | None = Query(default=None),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> list[AuditLogRead] | JSONResponse:
    filters = {
        "actor_user_id": user_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "outcome": outcome,
        "date_from": date_from,
        "date_to": date_to,
    }
    try:
        return audit_service.list_logs(db, user, filters, limit)
    except HTTPException as exc:
        return _failure(request, exc, "crm_audit_list_failed")


@audit_router.get("/{audit_id}", response_model=AuditLogRead)
def get_audit_log(
    request: Request,
    audit_id: int,
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> AuditLogRead | JSONResponse:
    try:
        return audit_service.get_log(db, user, audit_id)
    except HTTPException as exc:
        return _failure(request, exc, "crm_audit_get_failed")
