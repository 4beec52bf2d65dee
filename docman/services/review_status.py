import enum
from datetime import datetime, timedelta

from sqlalchemy import and_, or_

from docman.models.review import Document
from docman.services.common import ensure_utc

DEFAULT_DUE_SOON_WINDOW = timedelta(days=7)


class ReviewStatus(enum.Enum):
    completed = "completed"
    unscheduled = "unscheduled"
    overdue = "overdue"
    due_soon = "due_soon"
    current = "current"


def is_overdue(due_date: datetime | None, review_completed: bool, now: datetime) -> bool:
    """A review is overdue once its due instant has arrived and the cycle is open.

    Due exactly at ``now`` counts as overdue.
    """
    if review_completed:
        return False
    if due_date is None:
        return False
    return ensure_utc(due_date) <= ensure_utc(now)


def classify_review_status(
    due_date: datetime | None,
    review_completed: bool,
    now: datetime,
    due_soon_window: timedelta = DEFAULT_DUE_SOON_WINDOW,
) -> ReviewStatus:
    if review_completed:
        return ReviewStatus.completed
    if due_date is None:
        return ReviewStatus.unscheduled
    if is_overdue(due_date, review_completed, now):
        return ReviewStatus.overdue
    if ensure_utc(due_date) <= ensure_utc(now) + due_soon_window:
        return ReviewStatus.due_soon
    return ReviewStatus.current


def review_status_filter(
    status: ReviewStatus | str,
    now: datetime,
    due_soon_window: timedelta = DEFAULT_DUE_SOON_WINDOW,
):
    """SQL criterion selecting documents that ``classify_review_status`` would
    put in ``status``, so list queries and in-memory checks agree."""
    status = ReviewStatus(status)
    now = ensure_utc(now)
    open_cycle = or_(
        Document.review_completed.is_(False), Document.review_completed.is_(None)
    )
    if status is ReviewStatus.completed:
        return Document.review_completed.is_(True)
    if status is ReviewStatus.unscheduled:
        return and_(open_cycle, Document.next_review_due_on.is_(None))
    if status is ReviewStatus.overdue:
        return and_(open_cycle, Document.next_review_due_on <= now)
    if status is ReviewStatus.due_soon:
        return and_(
            open_cycle,
            Document.next_review_due_on > now,
            Document.next_review_due_on <= now + due_soon_window,
        )
    return and_(open_cycle, Document.next_review_due_on > now + due_soon_window)
