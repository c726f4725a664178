from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from salescrm.crm.enums import AccountStatus, LeadStatus, OpportunityStage, RelatedEntityKind, Role


class AccountCreate(BaseModel):
    name: str = Field(min_length=1)
    region_id: int | None = None
    sales_rep_id: int | None = None
    industry: str | None = None
    status: AccountStatus | None = None


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    region_id: int | None = None
    sales_rep_id: int | None = None
    industry: str | None = None
    status: AccountStatus | None = None


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    region_id: int
    sales_rep_id: int | None
    industry: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class ContactCreate(BaseModel):
    account_id: int
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    title: str | None = None


class ContactUpdate(BaseModel):
    account_id: int | None = None
    name: str | None = Field(default=None, min_length=1)
    email: str | None = None
    phone: str | None = None
    title: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    name: str
    email: str | None
    phone: str | None
    title: str | None
    created_at: datetime
    updated_at: datetime


class LeadCreate(BaseModel):
    name: str = Field(min_length=1)
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    status: LeadStatus = LeadStatus.NEW
    owner_id: int | None = None
    region_id: int | None = None
    source: str | None = None
    notes: str | None = None


class LeadUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    status: LeadStatus | None = None
    owner_id: int | None = None
    region_id: int | None = None
    source: str | None = None
    notes: str | None = None


class LeadConvertRequest(BaseModel):
    account_name: str = Field(min_length=1)
    region_id: int
    sales_rep_id: int | None = None
    industry: str | None = None


class LeadConvertRead(BaseModel):
    lead_id: int
    account_id: int
    status: str


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    company: str | None
    email: str | None
    phone: str | None
    status: str
    owner_id: int | None
    region_id: int | None
    source: str | None
    notes: str | None
    converted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OpportunityCreate(BaseModel):
    name: str = Field(min_length=1)
    account_id: int
    stage: OpportunityStage = OpportunityStage.PROSPECTING
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    close_date: datetime
    owner_id: int | None = None


class OpportunityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    stage: OpportunityStage | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    close_date: datetime | None = None
    owner_id: int | None = None


class OpportunityMoveStageRequest(BaseModel):
    new_stage: OpportunityStage


class OpportunityLoseRequest(BaseModel):
    reason: str | None = None


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    account_id: int
    stage: str
    amount: Decimal
    close_date: datetime
    owner_id: int | None
    won_at: datetime | None
    lost_at: datetime | None
    lost_reason: str | None
    region_id: int | None = None
    account_name: str | None = None
    created_at: datetime
    updated_at: datetime


class TaskCreate(BaseModel):
    subject: str = Field(min_length=1)
    due_date: datetime
    type: str = "Other"
    status: str = "Pending"
    related_entity_type: RelatedEntityKind
    related_entity_id: int
    assigned_to_id: int | None = None
    notes: str | None = None


class TaskUpdate(BaseModel):
    subject: str | None = Field(default=None, min_length=1)
    due_date: datetime | None = None
    status: str | None = None
    assigned_to_id: int | None = None
    notes: str | None = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: str
    due_date: datetime
    type: str
    status: str
    related_entity_type: str
    related_entity_id: int
    created_by_id: int | None
    assigned_to_id: int | None
    completed_at: datetime | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    status: str
    uploaded_by_id: int | None
    related_entity_type: str
    related_entity_id: int
    file_size: int | None
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    role: Role | None = None
    region_id: int | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    region_id: int | None
    is_active: bool


class RegionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class RegionUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class RegionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime
    updated_at: datetime


class UserRegionsAssign(BaseModel):
    region_ids: list[int]


class UserRegionsRead(BaseModel):
    user_id: int
    role: str
    all_regions: bool
    region_ids: list[int]


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_user_id: int | None
    actor_role: str | None
    action: str
    outcome: str
    entity_type: str
    entity_id: str | None
    before: dict | None
    after: dict | None
    correlation_id: str | None
    created_at: datetime
