from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salescrm.core.database import Base
from salescrm.crm.enums import AccountStatus, LeadStatus, OpportunityStage, Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class CRMRegion(TimestampMixin, Base):
    __tablename__ = "crm_region"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)


class CRMUser(TimestampMixin, Base):
    __tablename__ = "crm_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=Role.SALES_REP.value)
    region_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("crm_region.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    region: Mapped[CRMRegion | None] = relationship("CRMRegion", foreign_keys=[region_id])
    secondary_regions: Mapped[list[CRMUserRegion]] = relationship(
        "CRMUserRegion",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CRMUserRegion(Base):
    __tablename__ = "crm_user_region"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_user.id", ondelete="CASCADE"), nullable=False)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_region.id", ondelete="RESTRICT"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[CRMUser] = relationship("CRMUser", back_populates="secondary_regions")
    region: Mapped[CRMRegion] = relationship("CRMRegion")

    __table_args__ = (UniqueConstraint("user_id", "region_id", name="uq_crm_user_region_pair"),)


class CRMAccount(TimestampMixin, Base):
    __tablename__ = "crm_account"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_region.id", ondelete="RESTRICT"), nullable=False)
    sales_rep_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    industry: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AccountStatus.PROSPECT.value)

    region: Mapped[CRMRegion] = relationship("CRMRegion")
    sales_rep: Mapped[CRMUser | None] = relationship("CRMUser")
    contacts: Mapped[list[CRMContact]] = relationship("CRMContact", back_populates="account", cascade="all, delete-orphan")
    opportunities: Mapped[list[CRMOpportunity]] = relationship(
        "CRMOpportunity",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_crm_account_region_id", "region_id"),
        Index("ix_crm_account_sales_rep_id", "sales_rep_id"),
    )


class CRMContact(TimestampMixin, Base):
    __tablename__ = "crm_contact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_account.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)

    account: Mapped[CRMAccount] = relationship("CRMAccount", back_populates="contacts")


class CRMLead(TimestampMixin, Base):
    __tablename__ = "crm_lead"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=LeadStatus.NEW.value)
    owner_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("crm_user.id", ondelete="SET NULL"), nullable=True)
    region_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_region.id", ondelete="SET NULL"),
        nullable=True,
    )
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner: Mapped[CRMUser | None] = relationship("CRMUser")
    region: Mapped[CRMRegion | None] = relationship("CRMRegion")


class CRMOpportunity(TimestampMixin, Base):
    __tablename__ = "crm_opportunity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("crm_account.id", ondelete="CASCADE"), nullable=False)
    stage: Mapped[str] = mapped_column(String(32), nullable=False, default=OpportunityStage.PROSPECTING.value)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    owner_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("crm_user.id", ondelete="SET NULL"), nullable=True)
    close_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    won_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lost_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lost_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    account: Mapped[CRMAccount] = relationship("CRMAccount", back_populates="opportunities")
    owner: Mapped[CRMUser | None] = relationship("CRMUser")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_crm_opportunity_amount_non_negative"),
        Index("ix_crm_opportunity_account_id", "account_id"),
        Index("ix_crm_opportunity_stage", "stage"),
    )


class CRMTask(TimestampMixin, Base):
    __tablename__ = "crm_task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="Other")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Pending")
    related_entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    related_entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("crm_user.id", ondelete="SET NULL"), nullable=True)
    assigned_to_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_crm_task_related", "related_entity_type", "related_entity_id"),)


class CRMDocument(TimestampMixin, Base):
    __tablename__ = "crm_document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="Proposal")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Draft")
    uploaded_by_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("crm_user.id", ondelete="SET NULL"),
        nullable=True,
    )
    related_entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    related_entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_crm_document_related", "related_entity_type", "related_entity_id"),)
