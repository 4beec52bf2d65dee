import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from docman.errors import (
    ConcurrencyConflictError,
    DuplicateAssigneeError,
    NotFoundError,
    ReviewCycleClosedError,
)
from docman.models.person import Person
from docman.models.review import AssigneeStatus, Document, Notification, ReviewAssignee
from docman.services.common import apply_pagination, coerce_uuid
from docman.services.response import ListResponseMixin
from docman.services.review_schedule import apply_next_due

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# In-memory tracker
# ---------------------------------------------------------------------------


@dataclass
class Assignee:
    assignee_id: uuid.UUID | str
    status: AssigneeStatus = AssigneeStatus.pending
    completed_at: datetime | None = None
    notes: str | None = None


@dataclass(frozen=True)
class AssignmentSummary:
    completed_count: int
    total_count: int
    percentage: int
    all_completed: bool

    def as_dict(self) -> dict:
        return asdict(self)


def _percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    # round half up without float error: floor(completed * 100 / total + 0.5)
    return (200 * completed + total) // (2 * total)


def summarize(assignees) -> AssignmentSummary:
    """Aggregate completion over anything with a ``status`` attribute."""
    items = list(assignees)
    total = len(items)
    completed = sum(1 for a in items if a.status == AssigneeStatus.completed)
    return AssignmentSummary(
        completed_count=completed,
        total_count=total,
        percentage=_percentage(completed, total),
        all_completed=total > 0 and completed == total,
    )


def _key(assignee_id) -> str:
    return str(assignee_id)


class AssignmentTracker:
    """Per-assignee completion state for one review cycle of one document.

    Assignees move ``pending -> completed`` only; completed is terminal for
    the cycle. A new cycle replaces the whole set.
    """

    def __init__(self, assignees=()):
        self._assignees: dict[str, Assignee] = {}
        for assignee in assignees:
            self._assignees[_key(assignee.assignee_id)] = assignee

    @property
    def assignees(self) -> list[Assignee]:
        return list(self._assignees.values())

    def __contains__(self, assignee_id) -> bool:
        return _key(assignee_id) in self._assignees

    def get(self, assignee_id) -> Assignee:
        try:
            return self._assignees[_key(assignee_id)]
        except KeyError:
            raise NotFoundError(f"Assignee {assignee_id} not found") from None

    def add_assignee(self, assignee_id) -> Assignee:
        if assignee_id in self:
            raise DuplicateAssigneeError(f"Assignee {assignee_id} already assigned")
        assignee = Assignee(assignee_id=assignee_id)
        self._assignees[_key(assignee_id)] = assignee
        return assignee

    def remove_assignee(self, assignee_id) -> Assignee:
        assignee = self.get(assignee_id)
        del self._assignees[_key(assignee_id)]
        return assignee

    def mark_completed(self, assignee_id, now: datetime, notes: str | None = None) -> bool:
        """Complete ``assignee_id``; returns False when it was already completed."""
        assignee = self.get(assignee_id)
        if assignee.status == AssigneeStatus.completed:
            return False
        assignee.status = AssigneeStatus.completed
        assignee.completed_at = now
        if notes is not None:
            assignee.notes = notes
        return True

    def summary(self) -> AssignmentSummary:
        return summarize(self._assignees.values())

    def reset_for_new_cycle(self, assignee_ids) -> list[Assignee]:
        fresh: dict[str, Assignee] = {}
        for assignee_id in assignee_ids:
            fresh.setdefault(_key(assignee_id), Assignee(assignee_id=assignee_id))
        self._assignees = fresh
        return self.assignees


# ---------------------------------------------------------------------------
# Persistent assignments
# ---------------------------------------------------------------------------


def _get_document(db: Session, document_id) -> Document:
    document = db.get(Document, coerce_uuid(document_id))
    if not document or not document.is_active:
        raise NotFoundError("Document not found")
    return document


def _ensure_people_exist(db: Session, person_ids) -> None:
    for person_id in person_ids:
        if not db.get(Person, coerce_uuid(person_id)):
            raise NotFoundError(f"Assignee {person_id} not found")


def current_rows(db: Session, document: Document) -> list[ReviewAssignee]:
    return (
        db.query(ReviewAssignee)
        .filter(
            ReviewAssignee.document_id == document.id,
            ReviewAssignee.cycle == document.review_cycle,
        )
        .order_by(ReviewAssignee.created_at.asc(), ReviewAssignee.id.asc())
        .all()
    )


def _tracker_for(rows) -> AssignmentTracker:
    return AssignmentTracker(
        Assignee(
            assignee_id=row.assignee_id,
            status=row.status,
            completed_at=row.completed_at,
            notes=row.notes,
        )
        for row in rows
    )


def _claim_version(db: Session, document: Document, expected_version: int | None) -> None:
    """Compare-and-swap ``assignment_version``; raises when another writer won."""
    current = document.assignment_version if expected_version is None else expected_version
    result = db.execute(
        update(Document)
        .where(
            Document.id == document.id,
            Document.assignment_version == current,
        )
        .values(assignment_version=current + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConcurrencyConflictError(
            "Review assignments were changed by another request",
            details={"expected_version": current},
        )


def _close_cycle(document: Document, completed_by, now: datetime) -> None:
    document.review_completed = True
    document.review_completed_by = coerce_uuid(completed_by) if completed_by else None
    document.review_completed_at = now
    document.last_reviewed_on = now
    apply_next_due(document)
    logger.info(
        "Review cycle %s of document %s completed; next review due %s",
        document.review_cycle,
        document.id,
        document.next_review_due_on,
    )


def notify_assigned(db: Session, document: Document, assignee_id) -> None:
    """Queue an in-app ``review.assigned`` notice in the caller's transaction."""
    body = f'You have been assigned to review the document "{document.title}"'
    if document.next_review_due_on:
        body += f" (due {document.next_review_due_on.date().isoformat()})"
    db.add(
        Notification(
            person_id=coerce_uuid(assignee_id),
            title=f"Document Review Assignment: {document.title}",
            body=body,
            event_type="review.assigned",
            entity_type="document",
            entity_id=str(document.id),
        )
    )


def assignment_state(db: Session, document: Document) -> dict:
    rows = current_rows(db, document)
    return {
        "document_id": document.id,
        "cycle": document.review_cycle,
        "version": document.assignment_version,
        "review_completed": bool(document.review_completed),
        "assignees": rows,
        "summary": summarize(rows).as_dict(),
    }


class ReviewAssignments(ListResponseMixin):
    @staticmethod
    def get(db: Session, document_id: str) -> dict:
        return assignment_state(db, _get_document(db, document_id))

    @staticmethod
    def add_assignee(
        db: Session,
        document_id: str,
        assignee_id: str,
        expected_version: int | None = None,
    ) -> dict:
        document = _get_document(db, document_id)
        if document.review_completed:
            raise ReviewCycleClosedError(
                "Review cycle is already completed; start a new cycle"
            )
        _ensure_people_exist(db, [assignee_id])
        tracker = _tracker_for(current_rows(db, document))
        tracker.add_assignee(coerce_uuid(assignee_id))

        _claim_version(db, document, expected_version)
        db.add(
            ReviewAssignee(
                document_id=document.id,
                assignee_id=coerce_uuid(assignee_id),
                cycle=document.review_cycle,
                status=AssigneeStatus.pending,
            )
        )
        notify_assigned(db, document, assignee_id)
        db.commit()
        db.refresh(document)
        logger.info("Assigned %s to review document %s", assignee_id, document.id)
        return assignment_state(db, document)

    @staticmethod
    def remove_assignee(
        db: Session,
        document_id: str,
        assignee_id: str,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> dict:
        document = _get_document(db, document_id)
        if document.review_completed:
            raise ReviewCycleClosedError(
                "Review cycle is already completed; start a new cycle"
            )
        rows = current_rows(db, document)
        tracker = _tracker_for(rows)
        tracker.remove_assignee(coerce_uuid(assignee_id))

        _claim_version(db, document, expected_version)
        for row in rows:
            if str(row.assignee_id) == str(coerce_uuid(assignee_id)):
                db.delete(row)
        # Dropping the last pending reviewer can finish the cycle.
        if tracker.summary().all_completed:
            _close_cycle(document, None, now or datetime.now(timezone.utc))
        db.commit()
        db.refresh(document)
        logger.info("Removed %s from review of document %s", assignee_id, document.id)
        return assignment_state(db, document)

    @staticmethod
    def mark_completed(
        db: Session,
        document_id: str,
        assignee_id: str,
        now: datetime | None = None,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> dict:
        document = _get_document(db, document_id)
        now = now or datetime.now(timezone.utc)
        rows = current_rows(db, document)
        tracker = _tracker_for(rows)
        if not tracker.mark_completed(coerce_uuid(assignee_id), now, notes):
            logger.debug(
                "Assignee %s already completed review of document %s",
                assignee_id,
                document.id,
            )
            return assignment_state(db, document)

        _claim_version(db, document, expected_version)
        for row in rows:
            if str(row.assignee_id) == str(coerce_uuid(assignee_id)):
                row.status = AssigneeStatus.completed
                row.completed_at = now
                if notes is not None:
                    row.notes = notes
        if tracker.summary().all_completed:
            _close_cycle(document, assignee_id, now)
        db.commit()
        db.refresh(document)
        logger.info("Assignee %s completed review of document %s", assignee_id, document.id)
        return assignment_state(db, document)

    @staticmethod
    def reset_for_new_cycle(
        db: Session,
        document_id: str,
        assignee_ids: list[str],
        expected_version: int | None = None,
    ) -> dict:
        document = _get_document(db, document_id)
        _ensure_people_exist(db, assignee_ids)
        tracker = AssignmentTracker()
        fresh = tracker.reset_for_new_cycle(coerce_uuid(a) for a in assignee_ids)

        _claim_version(db, document, expected_version)
        document.review_cycle = (document.review_cycle or 1) + 1
        document.review_completed = False
        document.review_completed_by = None
        document.review_completed_at = None
        apply_next_due(document)
        for assignee in fresh:
            db.add(
                ReviewAssignee(
                    document_id=document.id,
                    assignee_id=assignee.assignee_id,
                    cycle=document.review_cycle,
                    status=AssigneeStatus.pending,
                )
            )
            notify_assigned(db, document, assignee.assignee_id)
        db.commit()
        db.refresh(document)
        logger.info(
            "Started review cycle %s for document %s with %d assignees",
            document.review_cycle,
            document.id,
            len(fresh),
        )
        return assignment_state(db, document)

    @staticmethod
    def list(
        db: Session,
        person_id: str,
        status: AssigneeStatus | None,
        limit: int,
        offset: int,
    ) -> list[dict]:
        """Assignments held by ``person_id`` in each document's current cycle."""
        if not db.get(Person, coerce_uuid(person_id)):
            raise NotFoundError("Assignee not found")
        query = (
            db.query(ReviewAssignee, Document)
            .join(Document, Document.id == ReviewAssignee.document_id)
            .filter(
                ReviewAssignee.assignee_id == coerce_uuid(person_id),
                ReviewAssignee.cycle == Document.review_cycle,
                Document.is_active.is_(True),
            )
        )
        if status is not None:
            query = query.filter(ReviewAssignee.status == status)
        query = query.order_by(
            Document.next_review_due_on.is_(None),
            Document.next_review_due_on.asc(),
            ReviewAssignee.created_at.asc(),
        )
        return [
            {
                "document_id": document.id,
                "document_title": document.title,
                "next_review_due_on": document.next_review_due_on,
                "review_completed": bool(document.review_completed),
                "cycle": row.cycle,
                "status": row.status,
                "completed_at": row.completed_at,
                "notes": row.notes,
            }
            for row, document in apply_pagination(query, limit, offset).all()
        ]


review_assignments = ReviewAssignments()
