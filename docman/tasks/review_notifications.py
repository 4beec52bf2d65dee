import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone

from docman.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="docman.tasks.review_notifications.send_due_review_notifications",
    ignore_result=True,
)
def send_due_review_notifications(
    now: str | None = None, horizon_hours: float | None = None
) -> dict:
    """Periodic task that notifies stakeholders and owners of reviews coming due.

    ``now`` is an ISO-8601 timestamp and defaults to the current time. A
    store outage is logged and re-raised so the worker records the failure.
    """
    from docman.config import settings
    from docman.db import SessionLocal
    from docman.services.review_notification import (
        DispatchConfig,
        InAppNotificationSender,
        run_due_notifications,
        sql_document_store,
    )

    config = DispatchConfig.from_settings(settings)
    run_at = _parse_now(now)
    horizon = timedelta(hours=horizon_hours) if horizon_hours else None
    try:
        report = run_due_notifications(
            run_at,
            horizon,
            config=config,
            store_factory=lambda: sql_document_store(SessionLocal),
            sender=InAppNotificationSender(SessionLocal),
        )
    except Exception:
        logger.exception("Review notification task failed")
        raise
    return report.as_dict()


def _parse_now(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _recompute_due_dates() -> int:
    from docman.db import SessionLocal
    from docman.services.review_document import review_documents

    db = SessionLocal()
    try:
        return review_documents.recompute_due_dates(db)
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Send review-due notifications for documents entering their review window."
    )
    parser.add_argument(
        "--now",
        help="ISO-8601 timestamp to run as (default: current UTC time).",
    )
    parser.add_argument(
        "--horizon-hours",
        type=float,
        help="Look-ahead window in hours (default: REVIEW_NOTIFY_HORIZON_HOURS).",
    )
    parser.add_argument(
        "--recompute",
        action="store_true",
        help="Recompute next review dates from each document's policy before sending.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    from docman.errors import StoreUnavailableError
    from docman.logging import configure_logging

    configure_logging()
    args = build_parser().parse_args(argv)
    if args.horizon_hours is not None and args.horizon_hours <= 0:
        print("--horizon-hours must be positive", file=sys.stderr)
        return 2
    try:
        now = _parse_now(args.now)
    except ValueError:
        print(f"Invalid --now timestamp: {args.now}", file=sys.stderr)
        return 2

    if args.recompute:
        changed = _recompute_due_dates()
        print(f"Recomputed next review dates for {changed} documents", file=sys.stderr)

    try:
        report = send_due_review_notifications(now.isoformat(), args.horizon_hours)
    except StoreUnavailableError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
