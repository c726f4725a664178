from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from salescrm.core.config import Settings, get_settings
from salescrm.crm.models import CRMAccount, CRMOpportunity, CRMUser
from salescrm.crm.repositories import OpportunityRepository
from salescrm.crm.service import domain_errors
from salescrm.metrics import observe_dashboard_build
from salescrm.otel import actor_span
from salescrm.platform.security.context import ActingUser
from salescrm.reporting.pipeline.aggregator import (
    InvalidWindowError,
    OpportunitySnapshot,
    ReportWindow,
    build_pipeline_report,
)
from salescrm.reporting.pipeline.schemas import DashboardRead


logger = logging.getLogger("salescrm.dashboard")
tracer = trace.get_tracer("salescrm.dashboard")


def to_snapshot(opportunity: CRMOpportunity) -> OpportunitySnapshot:
    account = opportunity.account
    region = account.region if account is not None else None
    return OpportunitySnapshot(
        id=opportunity.id,
        name=opportunity.name,
        stage=opportunity.stage,
        amount=Decimal(opportunity.amount),
        close_date=opportunity.close_date,
        created_at=opportunity.created_at,
        updated_at=opportunity.updated_at,
        won_at=opportunity.won_at,
        lost_at=opportunity.lost_at,
        account_name=account.name if account is not None else None,
        region_name=region.name if region is not None else None,
        owner_name=opportunity.owner.name if opportunity.owner is not None else None,
    )


@dataclass(slots=True)
class DashboardService:
    repository: OpportunityRepository = field(default_factory=OpportunityRepository)

    def build_dashboard(
        self,
        session: Session,
        actor: ActingUser,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        pipeline_type: str | None = None,
        now: datetime | None = None,
        settings: Settings | None = None,
    ) -> DashboardRead:
        settings = settings or get_settings()
        now = now or datetime.now(timezone.utc)
        try:
            window = ReportWindow.from_dates(
                date_from,
                date_to,
                now=now,
                default_days=settings.dashboard_default_window_days,
            )
        except InvalidWindowError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

        started = time.perf_counter()
        with actor_span(tracer, "crm.dashboard.build", actor) as span:
            with domain_errors():
                scope = self._scope(session, actor)
                opportunities = self.repository.list_for(
                    session,
                    actor,
                    options=(
                        selectinload(CRMOpportunity.account).selectinload(CRMAccount.region),
                        selectinload(CRMOpportunity.owner),
                    ),
                )
            report = build_pipeline_report(
                [to_snapshot(item) for item in opportunities],
                role=actor.role,
                window=window,
                now=now,
                stalled_after_days=settings.stalled_deal_days,
                stalled_limit=settings.stalled_deals_limit,
            )
            span.set_attribute("crm.open_deals", report["kpis"]["open_deals_count"])

        observe_dashboard_build(actor.role.value, time.perf_counter() - started)
        logger.info(
            "dashboard.built",
            extra={
                "user_id": actor.user_id,
                "role": actor.role.value,
                "open_deals": report["kpis"]["open_deals_count"],
                "stalled_deals": report["kpis"]["stalled_deals_count"],
                "pipeline_type": pipeline_type,
            },
        )
        return DashboardRead.model_validate({"scope": scope, **report})

    def _scope(self, session: Session, actor: ActingUser) -> dict[str, Any]:
        scope: dict[str, Any] = {
            "role": actor.role.value,
            "user_id": actor.user_id,
            "user_name": actor.name,
            "region_id": None,
            "region_name": None,
        }
        user = session.scalar(
            select(CRMUser)
            .where(CRMUser.id == actor.user_id)
            .options(selectinload(CRMUser.region), selectinload(CRMUser.secondary_regions))
        )
        if user is None:
            return scope

        scope["user_name"] = user.name
        if user.region is not None:
            scope["region_id"] = user.region_id
            scope["region_name"] = user.region.name
        elif actor.is_regional_lead and user.secondary_regions:
            first = min(user.secondary_regions, key=lambda item: item.id)
            scope["region_name"] = first.region.name
        return scope


dashboard_service = DashboardService()
