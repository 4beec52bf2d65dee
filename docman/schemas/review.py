from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from docman.models.review import AssigneeStatus, ReviewInterval, ReviewPeriod
from docman.services.review_status import is_overdue as _is_overdue

_DERIVED_FIELDS = ("next_review_due_on", "nextReviewDueOn")


def _reject_derived_fields(data: Any) -> Any:
    if isinstance(data, dict):
        present = [name for name in _DERIVED_FIELDS if name in data]
        if present:
            raise ValueError(
                "next_review_due_on is derived from the review policy and cannot be set"
            )
    return data


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


class PersonRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_name: str
    contact_address: str


# ---------------------------------------------------------------------------
# Review documents
# ---------------------------------------------------------------------------


class ReviewPolicyBase(BaseModel):
    opens_for_review: datetime | None = None
    review_interval: ReviewInterval | None = None
    review_interval_days: int | None = Field(default=None, gt=0)
    review_period: ReviewPeriod | None = None
    last_reviewed_on: datetime | None = None


class ReviewDocumentCreate(ReviewPolicyBase):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    created_by: UUID
    stakeholder_ids: list[UUID] = Field(default_factory=list)
    owner_ids: list[UUID] = Field(default_factory=list)
    assignee_ids: list[UUID] = Field(default_factory=list)
    metadata_: dict[str, Any] | None = Field(default=None, alias="metadata_")

    @model_validator(mode="before")
    @classmethod
    def reject_derived_fields(cls, data: Any) -> Any:
        return _reject_derived_fields(data)


class ReviewDocumentUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    opens_for_review: datetime | None = None
    review_interval: ReviewInterval | None = None
    review_interval_days: int | None = Field(default=None, gt=0)
    review_period: ReviewPeriod | None = None
    last_reviewed_on: datetime | None = None
    stakeholder_ids: list[UUID] | None = None
    owner_ids: list[UUID] | None = None
    is_active: bool | None = None
    metadata_: dict[str, Any] | None = Field(default=None, alias="metadata_")

    @model_validator(mode="before")
    @classmethod
    def reject_derived_fields(cls, data: Any) -> Any:
        return _reject_derived_fields(data)


class ReviewDocumentRead(ReviewPolicyBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None = None
    created_by: UUID
    next_review_due_on: datetime | None = None
    review_completed: bool
    review_completed_by: UUID | None = None
    review_completed_at: datetime | None = None
    review_cycle: int
    assignment_version: int
    stakeholders: list[PersonRef] = Field(default_factory=list)
    owners: list[PersonRef] = Field(default_factory=list)
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def is_overdue(self) -> bool:
        return _is_overdue(
            self.next_review_due_on,
            self.review_completed,
            datetime.now(timezone.utc),
        )


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


class AssigneeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignee_id: UUID
    cycle: int
    status: AssigneeStatus
    completed_at: datetime | None = None
    notes: str | None = None


class AssignmentSummaryRead(BaseModel):
    completed_count: int
    total_count: int
    percentage: int
    all_completed: bool


class AssignmentStateRead(BaseModel):
    document_id: UUID
    cycle: int
    version: int
    review_completed: bool
    assignees: list[AssigneeRead]
    summary: AssignmentSummaryRead


class AssigneeAssignmentRead(BaseModel):
    document_id: UUID
    document_title: str
    next_review_due_on: datetime | None = None
    review_completed: bool
    cycle: int
    status: AssigneeStatus
    completed_at: datetime | None = None
    notes: str | None = None


class AssigneeAddRequest(BaseModel):
    assignee_id: UUID
    expected_version: int | None = None


class AssigneeCompleteRequest(BaseModel):
    notes: str | None = None
    expected_version: int | None = None


class AssignmentResetRequest(BaseModel):
    assignee_ids: list[UUID]
    expected_version: int | None = None


# ---------------------------------------------------------------------------
# Notification dispatch
# ---------------------------------------------------------------------------


class DispatchRunRequest(BaseModel):
    now: datetime | None = None
    horizon_hours: float | None = Field(default=None, gt=0)


class DispatchFailureRead(BaseModel):
    document_id: UUID
    recipient_id: UUID
    error: str


class DispatchReportRead(BaseModel):
    processed: int
    sent: int
    skipped: int
    failures: list[DispatchFailureRead]
