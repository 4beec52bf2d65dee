"""Review due-date arithmetic.

Everything here is a pure function of its arguments: no clock reads, no
configuration, no database access. Month arithmetic uses
``dateutil.relativedelta``, which clamps to the last day of the target month
when the source day does not exist there (2024-01-31 + 1 month is
2024-02-29, 2024-02-29 + 1 year is 2025-02-28). Both calculators share that
rule through ``_add_months``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from docman.models.review import ReviewInterval, ReviewPeriod
from docman.services.common import ensure_utc

logger = logging.getLogger(__name__)

_INTERVAL_MONTHS = {
    ReviewInterval.monthly: 1,
    ReviewInterval.quarterly: 3,
    ReviewInterval.semiannually: 6,
    ReviewInterval.annually: 12,
}

_PERIOD_DAYS = {
    ReviewPeriod.one_week: 7,
    ReviewPeriod.two_weeks: 14,
    ReviewPeriod.three_weeks: 21,
}


@dataclass(frozen=True)
class ReviewPolicy:
    """Plain snapshot of the policy fields, for callers without an ORM row."""

    opens_for_review: datetime | None = None
    review_interval: ReviewInterval | str | None = None
    review_interval_days: int | None = None
    review_period: ReviewPeriod | str | None = None
    last_reviewed_on: datetime | None = None


def parse_interval(value) -> ReviewInterval | None:
    if value is None or isinstance(value, ReviewInterval):
        return value
    try:
        return ReviewInterval(value)
    except ValueError:
        return None


def parse_period(value) -> ReviewPeriod | None:
    if value is None or isinstance(value, ReviewPeriod):
        return value
    try:
        return ReviewPeriod(value)
    except ValueError:
        return None


def _add_months(value: datetime, months: int) -> datetime:
    return value + relativedelta(months=months)


def next_from_interval(base_date, interval, custom_days=None) -> datetime | None:
    """Due date one recurrence ``interval`` after ``base_date``.

    Returns None for a missing base, an unknown interval, or a custom
    interval without a positive day count.
    """
    if base_date is None:
        return None
    resolved = parse_interval(interval)
    if resolved is None:
        return None
    base = ensure_utc(base_date)
    if resolved is ReviewInterval.custom:
        if isinstance(custom_days, bool) or not isinstance(custom_days, int):
            return None
        if custom_days <= 0:
            return None
        return base + timedelta(days=custom_days)
    return _add_months(base, _INTERVAL_MONTHS[resolved])


def due_from_period(opens_for_review, period) -> datetime | None:
    """First due date: the review window ``period`` after ``opens_for_review``."""
    if opens_for_review is None:
        return None
    resolved = parse_period(period)
    if resolved is None:
        return None
    opens = ensure_utc(opens_for_review)
    if resolved is ReviewPeriod.one_month:
        return _add_months(opens, 1)
    return opens + timedelta(days=_PERIOD_DAYS[resolved])


def compute_next_due(policy) -> datetime | None:
    last_reviewed_on = getattr(policy, "last_reviewed_on", None)
    review_interval = getattr(policy, "review_interval", None)
    if last_reviewed_on is not None and review_interval is not None:
        return next_from_interval(
            last_reviewed_on,
            review_interval,
            getattr(policy, "review_interval_days", None),
        )

    opens_for_review = getattr(policy, "opens_for_review", None)
    review_period = getattr(policy, "review_period", None)
    if opens_for_review is not None and review_period is not None:
        return due_from_period(opens_for_review, review_period)
    return None


def apply_next_due(document) -> datetime | None:
    """Recompute ``next_review_due_on`` on ``document`` in place."""
    next_due = compute_next_due(document)
    if next_due != document.next_review_due_on:
        logger.debug(
            "Next review for document %s moved from %s to %s",
            getattr(document, "id", None),
            document.next_review_due_on,
            next_due,
        )
    document.next_review_due_on = next_due
    return next_due
