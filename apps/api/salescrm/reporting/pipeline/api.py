from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from salescrm.core.database import get_db
from salescrm.crm.api import error_response, get_current_user
from salescrm.platform.security.context import ActingUser
from salescrm.reporting.pipeline.schemas import DashboardRead
from salescrm.reporting.pipeline.service import dashboard_service


router = APIRouter(prefix="/api/dashboard", tags=["reports", "dashboard"])


@router.get("", response_model=DashboardRead)
def get_dashboard(
    request: Request,
    date_from: date | None = Query(default=None, alias="dateFrom"),
    date_to: date | None = Query(default=None, alias="dateTo"),
    pipeline_type: str | None = Query(default="Open", alias="pipelineType"),
    db: Session = Depends(get_db),
    user: ActingUser = Depends(get_current_user),
) -> DashboardRead | JSONResponse:
    try:
        return dashboard_service.build_dashboard(
            db,
            user,
            date_from=date_from,
            date_to=date_to,
            pipeline_type=pipeline_type,
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_dashboard_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
