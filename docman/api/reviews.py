from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from docman.db import SessionLocal
from docman.models.review import AssigneeStatus
from docman.schemas.common import ListResponse
from docman.schemas.review import (
    AssigneeAddRequest,
    AssigneeAssignmentRead,
    AssigneeCompleteRequest,
    AssignmentResetRequest,
    AssignmentStateRead,
    ReviewDocumentCreate,
    ReviewDocumentRead,
    ReviewDocumentUpdate,
)
from docman.services import review_assignment as assignment_service
from docman.services import review_document as document_service

router = APIRouter(prefix="/reviews", tags=["reviews"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ------------------------------------------------------------------
# Review documents
# ------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=ReviewDocumentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_review_document(
    payload: ReviewDocumentCreate, db: Session = Depends(get_db)
):
    return document_service.review_documents.create(db, payload)


@router.get("/documents/stats", response_model=dict[str, int])
def review_status_counts(
    now: datetime | None = None, db: Session = Depends(get_db)
):
    return document_service.review_documents.status_counts(db, now)


@router.get("/documents/{document_id}", response_model=ReviewDocumentRead)
def get_review_document(document_id: str, db: Session = Depends(get_db)):
    return document_service.review_documents.get(db, document_id)


@router.get("/documents", response_model=ListResponse[ReviewDocumentRead])
def list_review_documents(
    review_status: str | None = None,
    review_completed: bool | None = None,
    is_active: bool | None = None,
    now: datetime | None = None,
    order_by: str = Query(default="next_review_due_on"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return document_service.review_documents.list_response(
        db,
        review_status,
        review_completed,
        is_active,
        now,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.patch("/documents/{document_id}", response_model=ReviewDocumentRead)
def update_review_document(
    document_id: str,
    payload: ReviewDocumentUpdate,
    db: Session = Depends(get_db),
):
    return document_service.review_documents.update(db, document_id, payload)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_review_document(document_id: str, db: Session = Depends(get_db)):
    document_service.review_documents.delete(db, document_id)


# ------------------------------------------------------------------
# Assignments
# ------------------------------------------------------------------


@router.get(
    "/documents/{document_id}/assignments",
    response_model=AssignmentStateRead,
)
def get_review_assignments(document_id: str, db: Session = Depends(get_db)):
    return assignment_service.review_assignments.get(db, document_id)


@router.post(
    "/documents/{document_id}/assignments",
    response_model=AssignmentStateRead,
    status_code=status.HTTP_201_CREATED,
)
def add_review_assignee(
    document_id: str,
    payload: AssigneeAddRequest,
    db: Session = Depends(get_db),
):
    return assignment_service.review_assignments.add_assignee(
        db, document_id, str(payload.assignee_id), payload.expected_version
    )


@router.post(
    "/documents/{document_id}/assignments/reset",
    response_model=AssignmentStateRead,
)
def reset_review_assignments(
    document_id: str,
    payload: AssignmentResetRequest,
    db: Session = Depends(get_db),
):
    return assignment_service.review_assignments.reset_for_new_cycle(
        db,
        document_id,
        [str(a) for a in payload.assignee_ids],
        payload.expected_version,
    )


@router.delete(
    "/documents/{document_id}/assignments/{assignee_id}",
    response_model=AssignmentStateRead,
)
def remove_review_assignee(
    document_id: str,
    assignee_id: str,
    expected_version: int | None = None,
    db: Session = Depends(get_db),
):
    return assignment_service.review_assignments.remove_assignee(
        db, document_id, assignee_id, expected_version
    )


@router.post(
    "/documents/{document_id}/assignments/{assignee_id}/complete",
    response_model=AssignmentStateRead,
)
def complete_review_assignment(
    document_id: str,
    assignee_id: str,
    payload: AssigneeCompleteRequest | None = None,
    db: Session = Depends(get_db),
):
    payload = payload or AssigneeCompleteRequest()
    return assignment_service.review_assignments.mark_completed(
        db,
        document_id,
        assignee_id,
        notes=payload.notes,
        expected_version=payload.expected_version,
    )


@router.get(
    "/assignees/{person_id}/assignments",
    response_model=ListResponse[AssigneeAssignmentRead],
)
def list_assignee_assignments(
    person_id: str,
    status: AssigneeStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return assignment_service.review_assignments.list_response(
        db, person_id, status, limit, offset
    )
