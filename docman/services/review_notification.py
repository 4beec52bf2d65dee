"""Review-due notification batch.

``run_due_notifications`` finds open documents whose next review falls inside
the dispatch window, collapses each document's stakeholders and owners into
one recipient set, and sends one notice per ``(document, recipient)`` pair.

The document store and the sender are collaborators behind small protocols so
the batch can run against the SQL store (``sql_document_store``) in
production and against fakes in tests. Before anything is sent every pair is
claimed in the ``review_notification_dispatches`` ledger; a pair that is
already claimed was handled by an earlier or overlapping run and is skipped.
"""

import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from contextlib import AbstractContextManager, contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from prometheus_client import Counter
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from docman.errors import StoreUnavailableError
from docman.models.review import Document, Notification, ReviewNotificationDispatch
from docman.services.common import coerce_uuid, ensure_utc

logger = logging.getLogger(__name__)

REVIEW_NOTIFICATIONS_SENT = Counter(
    "docman_review_notifications_sent_total",
    "Review-due notifications delivered by the dispatcher",
)
REVIEW_NOTIFICATIONS_FAILED = Counter(
    "docman_review_notifications_failed_total",
    "Review-due notifications that could not be delivered",
    ["reason"],
)


# ---------------------------------------------------------------------------
# Configuration and report types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DispatchConfig:
    horizon: timedelta = timedelta(hours=24)
    truncate_to_day: bool = True
    max_workers: int = 4
    send_timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "DispatchConfig":
        return cls(
            horizon=timedelta(hours=settings.review_notify_horizon_hours),
            truncate_to_day=settings.review_notify_truncate_to_day,
            max_workers=max(1, settings.review_notify_max_workers),
            send_timeout_seconds=settings.review_notify_send_timeout_seconds,
        )


@dataclass(frozen=True)
class Recipient:
    id: uuid.UUID
    display_name: str = ""
    contact_address: str = ""


@dataclass(frozen=True)
class DueDocument:
    id: uuid.UUID
    title: str
    next_review_due_on: datetime
    recipients: tuple[Recipient, ...] = ()


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class DispatchFailure:
    document_id: uuid.UUID
    recipient_id: uuid.UUID
    error: str


@dataclass
class DispatchReport:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failures: list[DispatchFailure] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["failures"] = [
            {
                "document_id": str(f.document_id),
                "recipient_id": str(f.recipient_id),
                "error": f.error,
            }
            for f in self.failures
        ]
        return data


class DocumentStore(Protocol):
    def find_due(self, start: datetime, end: datetime) -> list[DueDocument]: ...

    def claim(self, document_id, recipient_id, due_on: datetime) -> bool: ...

    def release(self, document_id, recipient_id, due_on: datetime) -> None: ...


class NotificationSender(Protocol):
    def send(self, recipient_id, document_id) -> SendResult | bool | None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def review_window(
    now: datetime, horizon: timedelta, truncate_to_day: bool = True
) -> tuple[datetime, datetime]:
    """Inclusive ``[start, end]`` bounds for due dates picked up by a run.

    With ``truncate_to_day`` the upper bound is snapped back to midnight, so a
    24 hour horizon covers the rest of the current calendar day up to and
    including the next midnight. Review anchors are usually plain dates,
    which land exactly on midnight, hence the inclusive bound.
    """
    if horizon <= timedelta(0):
        raise ValueError("horizon must be positive")
    start = ensure_utc(now)
    end = start + horizon
    if truncate_to_day:
        truncated = end.replace(hour=0, minute=0, second=0, microsecond=0)
        if truncated > start:
            end = truncated
    return start, end


def dedupe_recipients(people: Iterable) -> tuple[Recipient, ...]:
    """Merge people into one recipient per id, keeping first-seen order."""
    recipients: dict[str, Recipient] = {}
    for person in people:
        if person is None:
            continue
        key = str(person.id)
        if key in recipients:
            continue
        recipients[key] = Recipient(
            id=person.id,
            display_name=getattr(person, "display_name", "") or "",
            contact_address=getattr(person, "contact_address", "") or "",
        )
    return tuple(recipients.values())


def _normalize_result(result) -> str | None:
    if result is None or result is True:
        return None
    if result is False:
        return "sender reported failure"
    if isinstance(result, SendResult):
        return None if result.ok else (result.error or "sender reported failure")
    return None


# ---------------------------------------------------------------------------
# SQL-backed collaborators
# ---------------------------------------------------------------------------


class SqlDocumentStore:
    def __init__(self, db: Session):
        self.db = db

    def find_due(self, start: datetime, end: datetime) -> list[DueDocument]:
        try:
            documents = (
                self.db.query(Document)
                .options(
                    selectinload(Document.stakeholders),
                    selectinload(Document.owners),
                )
                .filter(
                    Document.next_review_due_on >= start,
                    Document.next_review_due_on <= end,
                    Document.review_completed.is_(False),
                    Document.is_active.is_(True),
                )
                .order_by(Document.next_review_due_on.asc(), Document.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(
                "Document store query failed", details=str(exc)
            ) from exc
        return [
            DueDocument(
                id=doc.id,
                title=doc.title,
                next_review_due_on=doc.next_review_due_on,
                recipients=dedupe_recipients([*doc.stakeholders, *doc.owners]),
            )
            for doc in documents
        ]

    def claim(self, document_id, recipient_id, due_on: datetime) -> bool:
        self.db.add(
            ReviewNotificationDispatch(
                document_id=coerce_uuid(document_id),
                recipient_id=coerce_uuid(recipient_id),
                due_on=due_on,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailableError(
                "Could not record notification dispatch", details=str(exc)
            ) from exc
        return True

    def release(self, document_id, recipient_id, due_on: datetime) -> None:
        try:
            self.db.query(ReviewNotificationDispatch).filter(
                ReviewNotificationDispatch.document_id == coerce_uuid(document_id),
                ReviewNotificationDispatch.recipient_id == coerce_uuid(recipient_id),
                ReviewNotificationDispatch.due_on == due_on,
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailableError(
                "Could not release notification dispatch", details=str(exc)
            ) from exc


@contextmanager
def sql_document_store(session_factory: Callable[[], Session] | None = None) -> Iterator[SqlDocumentStore]:
    if session_factory is None:
        from docman.db import SessionLocal

        session_factory = SessionLocal
    db = session_factory()
    try:
        yield SqlDocumentStore(db)
    finally:
        db.close()


class InAppNotificationSender:
    """Delivers a review-due notice as an in-app ``Notification`` row."""

    event_type = "review.due"

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory

    def send(self, recipient_id, document_id) -> SendResult:
        session_factory = self._session_factory
        if session_factory is None:
            from docman.db import SessionLocal

            session_factory = SessionLocal
        db = session_factory()
        try:
            document = db.get(Document, coerce_uuid(document_id))
            if not document:
                return SendResult(ok=False, error="Document not found")
            db.add(
                Notification(
                    person_id=coerce_uuid(recipient_id),
                    title="Document Review Due",
                    body=f'The document "{document.title}" is due for review',
                    event_type=self.event_type,
                    entity_type="document",
                    entity_id=str(document.id),
                )
            )
            db.commit()
            return SendResult(ok=True)
        finally:
            db.close()


# ---------------------------------------------------------------------------
# Batch entry point
# ---------------------------------------------------------------------------


def _send_all(pairs, sender: NotificationSender, config: DispatchConfig):
    """Send every pair on a bounded pool.

    Yields ``(pair, error, reason)`` where ``reason`` is ``None`` on success,
    ``"timeout"`` for a send that started and overran its timeout,
    ``"not_started"`` for a queued send cancelled because every worker is
    held by a timed-out send, and ``"error"`` otherwise. Each send's timeout
    counts from the moment a worker picks it up, not from submission.
    """
    if not pairs:
        return
    workers = max(1, config.max_workers)
    timeout = config.send_timeout_seconds
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="review-notify")
    started: dict[int, float] = {}

    def _send(index, pair):
        started[index] = time.monotonic()
        return sender.send(pair[1].id, pair[0].id)

    try:
        futures = {
            executor.submit(_send, index, pair): (index, pair)
            for index, pair in enumerate(pairs)
        }
        pending = set(futures)
        hung = []
        while pending:
            running = [futures[f][0] for f in pending if futures[f][0] in started]
            if running:
                next_deadline = min(started[i] for i in running) + timeout
                wait_for = max(0.0, next_deadline - time.monotonic())
            else:
                wait_for = timeout
            done, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
            for future in done:
                pair = futures[future][1]
                try:
                    result = future.result()
                except Exception as exc:  # noqa: BLE001 - recorded per recipient
                    yield pair, f"{type(exc).__name__}: {exc}", "error"
                else:
                    error = _normalize_result(result)
                    yield pair, error, None if error is None else "error"

            now = time.monotonic()
            for future in list(pending):
                index, pair = futures[future]
                if index in started and now - started[index] >= timeout:
                    pending.discard(future)
                    hung.append(future)
                    yield pair, f"timed out after {timeout}s", "timeout"

            if len([f for f in hung if not f.done()]) >= workers:
                # No worker can free up; queued sends would never start.
                for future in list(pending):
                    if future.cancel():
                        pending.discard(future)
                        yield (
                            futures[future][1],
                            "not started: all workers held by timed-out sends",
                            "not_started",
                        )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def run_due_notifications(
    now: datetime,
    horizon: timedelta | None = None,
    *,
    config: DispatchConfig | None = None,
    store_factory: Callable[[], AbstractContextManager[DocumentStore]] | None = None,
    sender: NotificationSender | None = None,
) -> DispatchReport:
    config = config or DispatchConfig()
    horizon = config.horizon if horizon is None else horizon
    store_factory = store_factory or sql_document_store
    sender = sender or InAppNotificationSender()
    start, end = review_window(now, horizon, config.truncate_to_day)
    report = DispatchReport()

    logger.info("Checking for documents due for review between %s and %s", start, end)
    try:
        with store_factory() as store:
            documents = store.find_due(start, end)
            report.processed = len(documents)
            logger.info("Found %d documents due for review", len(documents))

            pairs = []
            for document in documents:
                for recipient in document.recipients:
                    if store.claim(document.id, recipient.id, document.next_review_due_on):
                        pairs.append((document, recipient))
                    else:
                        report.skipped += 1
                        logger.debug(
                            "Review notice for document %s already sent to %s",
                            document.id,
                            recipient.id,
                        )

            for (document, recipient), error, reason in _send_all(
                pairs, sender, config
            ):
                if error is None:
                    report.sent += 1
                    REVIEW_NOTIFICATIONS_SENT.inc()
                    logger.info(
                        "Sent review notification to user %s for document %s",
                        recipient.id,
                        document.id,
                    )
                    continue
                report.failures.append(
                    DispatchFailure(
                        document_id=document.id,
                        recipient_id=recipient.id,
                        error=error,
                    )
                )
                REVIEW_NOTIFICATIONS_FAILED.labels(reason=reason).inc()
                logger.warning(
                    "Error sending review notification to user %s for document %s: %s",
                    recipient.id,
                    document.id,
                    error,
                )
                # A send that started and timed out may still land; its claim stays.
                if reason != "timeout":
                    store.release(
                        document.id, recipient.id, document.next_review_due_on
                    )
    except StoreUnavailableError:
        logger.exception("Review notification run aborted: document store unavailable")
        raise

    logger.info(
        "Finished sending review notifications: %d processed, %d sent, %d skipped, %d failed",
        report.processed,
        report.sent,
        report.skipped,
        len(report.failures),
    )
    return report
