from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from salescrm.core.config import get_settings
from salescrm.crm.api import (
    audit_router,
    contacts_router,
    documents_router,
    leads_router,
    opportunities_router,
    regions_router,
    router as crm_accounts_router,
    tasks_router,
    users_router,
)
from salescrm.metrics import generate_metrics_payload, metrics_content_type
from salescrm.reporting.pipeline.api import router as dashboard_router

router = APIRouter()
router.include_router(dashboard_router)
router.include_router(crm_accounts_router)
router.include_router(leads_router)
router.include_router(opportunities_router)
router.include_router(contacts_router)
router.include_router(tasks_router)
router.include_router(documents_router)
router.include_router(users_router)
router.include_router(regions_router)
router.include_router(audit_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
