import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from sqlalchemy.orm import Session

from docman.config import settings
from docman.errors import NotFoundError
from docman.models.person import Person
from docman.models.review import (
    AssigneeStatus,
    Document,
    ReviewAssignee,
    ReviewInterval,
)
from docman.schemas.review import ReviewDocumentCreate, ReviewDocumentUpdate
from docman.services.common import apply_ordering, apply_pagination, coerce_uuid
from docman.services.response import ListResponseMixin
from docman.services.review_assignment import AssignmentTracker, notify_assigned
from docman.services.review_schedule import apply_next_due, compute_next_due
from docman.services.review_status import (
    ReviewStatus,
    classify_review_status,
    review_status_filter,
)

logger = logging.getLogger(__name__)


def _due_soon_window() -> timedelta:
    return timedelta(days=settings.review_due_soon_days)


def _validate_review_status(review_status: str) -> ReviewStatus:
    try:
        return ReviewStatus(review_status)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid review_status: {review_status}",
        )


def _validate_policy(document: Document) -> None:
    if (
        document.review_interval == ReviewInterval.custom
        and not document.review_interval_days
    ):
        raise HTTPException(
            status_code=400,
            detail="review_interval_days is required for a custom review interval",
        )


def _load_people(db: Session, person_ids, label: str) -> list[Person]:
    people: list[Person] = []
    seen: set[str] = set()
    for person_id in person_ids:
        if str(person_id) in seen:
            continue
        seen.add(str(person_id))
        person = db.get(Person, coerce_uuid(person_id))
        if not person:
            raise NotFoundError(f"{label} {person_id} not found")
        people.append(person)
    return people


class ReviewDocuments(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: ReviewDocumentCreate) -> Document:
        if not db.get(Person, coerce_uuid(payload.created_by)):
            raise NotFoundError("Creator not found")
        stakeholders = _load_people(db, payload.stakeholder_ids, "Stakeholder")
        owners = _load_people(db, payload.owner_ids, "Owner")
        assignees = AssignmentTracker().reset_for_new_cycle(payload.assignee_ids)
        _load_people(db, [a.assignee_id for a in assignees], "Assignee")

        data = payload.model_dump(
            exclude={"stakeholder_ids", "owner_ids", "assignee_ids"}
        )
        document = Document(**data)
        document.stakeholders = stakeholders
        document.owners = owners
        _validate_policy(document)
        apply_next_due(document)
        db.add(document)
        db.flush()

        for assignee in assignees:
            db.add(
                ReviewAssignee(
                    document_id=document.id,
                    assignee_id=coerce_uuid(assignee.assignee_id),
                    cycle=document.review_cycle or 1,
                    status=AssigneeStatus.pending,
                )
            )
            notify_assigned(db, document, assignee.assignee_id)
        db.commit()
        db.refresh(document)
        logger.info(
            "Created review document %s (next review due %s)",
            document.id,
            document.next_review_due_on,
        )
        return document

    @staticmethod
    def get(db: Session, document_id: str) -> Document:
        document = db.get(Document, coerce_uuid(document_id))
        if not document:
            raise NotFoundError("Document not found")
        return document

    @staticmethod
    def list(
        db: Session,
        review_status: str | None,
        review_completed: bool | None,
        is_active: bool | None,
        now: datetime | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Document]:
        now = now or datetime.now(timezone.utc)
        query = db.query(Document)
        if review_status is not None:
            query = query.filter(
                review_status_filter(
                    _validate_review_status(review_status), now, _due_soon_window()
                )
            )
        if review_completed is not None:
            query = query.filter(Document.review_completed == review_completed)
        if is_active is None:
            query = query.filter(Document.is_active.is_(True))
        else:
            query = query.filter(Document.is_active == is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "title": Document.title,
                "created_at": Document.created_at,
                "next_review_due_on": Document.next_review_due_on,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(
        db: Session, document_id: str, payload: ReviewDocumentUpdate
    ) -> Document:
        document = db.get(Document, coerce_uuid(document_id))
        if not document:
            raise NotFoundError("Document not found")
        data = payload.model_dump(exclude_unset=True)
        stakeholder_ids = data.pop("stakeholder_ids", None)
        owner_ids = data.pop("owner_ids", None)
        for key, value in data.items():
            setattr(document, key, value)
        if stakeholder_ids is not None:
            document.stakeholders = _load_people(db, stakeholder_ids, "Stakeholder")
        if owner_ids is not None:
            document.owners = _load_people(db, owner_ids, "Owner")
        _validate_policy(document)
        apply_next_due(document)
        db.commit()
        db.refresh(document)
        logger.info("Updated review document %s", document.id)
        return document

    @staticmethod
    def delete(db: Session, document_id: str) -> None:
        document = db.get(Document, coerce_uuid(document_id))
        if not document:
            raise NotFoundError("Document not found")
        document.is_active = False
        db.commit()
        logger.info("Soft-deleted review document %s", document_id)

    @staticmethod
    def status_counts(
        db: Session,
        now: datetime | None = None,
        due_soon_window: timedelta | None = None,
    ) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        due_soon_window = due_soon_window or _due_soon_window()
        counts = {status.value: 0 for status in ReviewStatus}
        rows = (
            db.query(Document.next_review_due_on, Document.review_completed)
            .filter(Document.is_active.is_(True))
            .all()
        )
        for next_due, completed in rows:
            status = classify_review_status(
                next_due, bool(completed), now, due_soon_window
            )
            counts[status.value] += 1
        return counts

    @staticmethod
    def recompute_due_dates(db: Session) -> int:
        """Rewrite any ``next_review_due_on`` that no longer matches its policy."""
        changed = 0
        for document in db.query(Document).filter(Document.is_active.is_(True)):
            if compute_next_due(document) != document.next_review_due_on:
                apply_next_due(document)
                changed += 1
        db.commit()
        logger.info("Recomputed next review dates for %d documents", changed)
        return changed


review_documents = ReviewDocuments()
