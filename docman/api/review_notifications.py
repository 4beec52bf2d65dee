from datetime import datetime, timedelta, timezone

from fastapi import APIRouter

from docman.config import settings
from docman.schemas.review import DispatchReportRead, DispatchRunRequest
from docman.services import review_notification as notification_service

router = APIRouter(prefix="/reviews/notifications", tags=["review-notifications"])


@router.post("/run", response_model=DispatchReportRead)
def run_review_notifications(payload: DispatchRunRequest | None = None):
    payload = payload or DispatchRunRequest()
    now = payload.now or datetime.now(timezone.utc)
    horizon = (
        timedelta(hours=payload.horizon_hours) if payload.horizon_hours else None
    )
    report = notification_service.run_due_notifications(
        now,
        horizon,
        config=notification_service.DispatchConfig.from_settings(settings),
    )
    return report.as_dict()
