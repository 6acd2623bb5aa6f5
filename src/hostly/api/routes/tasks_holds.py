"""Worker routes for hold task handling.

POST /tasks/holds/sweep runs one Hold Expirer tick on demand, so an
external scheduler (cron, Cloud Scheduler) can drive reclamation when the
in-process scheduler is disabled.
"""

import hmac

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from hostly.api.dependencies import get_service, get_settings
from hostly.config import Settings
from hostly.observability.logging import get_logger, log_fields
from hostly.services.reservation_service import ReservationService

router = APIRouter(prefix="/tasks/holds", tags=["tasks"])

logger = get_logger(__name__)

TASK_SECRET_HEADER = "X-Internal-Task-Secret"


def _verify_task_secret(settings: Settings, provided: str | None) -> bool:
    """Check the shared task secret (open when none is configured)."""
    if not settings.internal_task_secret:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided, settings.internal_task_secret)


@router.post("/sweep")
def handle_sweep(
    x_internal_task_secret: str | None = Header(default=None, alias=TASK_SECRET_HEADER),
    service: ReservationService = Depends(get_service),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Reclaim every hold whose deadline has passed.

    Returns 200 with counts; per-booking failures are reported, not raised,
    and will be retried on the next sweep.
    """
    if not _verify_task_secret(settings, x_internal_task_secret):
        logger.warning("task auth failed")
        return JSONResponse(status_code=401, content={"ok": False, "error": "unauthorized"})

    result = service.sweep_expired_holds()
    logger.info("sweep task completed", extra=log_fields(**result.to_dict()))
    return JSONResponse(status_code=200, content={"ok": True, **result.to_dict()})
