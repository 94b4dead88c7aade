from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from tiffin.business.billing import router as billing_router
from tiffin.business.calendar import router as calendar_router
from tiffin.business.credit import router as credit_router
from tiffin.business.payments import router as payments_router
from tiffin.business.refunds import router as refunds_router
from tiffin.core.config import get_settings
from tiffin.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(calendar_router)
router.include_router(billing_router)
router.include_router(payments_router)
router.include_router(credit_router)
router.include_router(refunds_router)


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
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
