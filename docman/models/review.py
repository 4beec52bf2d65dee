import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docman.db import Base
from docman.models.types import UTCDateTime


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ReviewInterval(enum.Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    semiannually = "semiannually"
    annually = "annually"
    custom = "custom"


class ReviewPeriod(enum.Enum):
    one_week = "1week"
    two_weeks = "2weeks"
    three_weeks = "3weeks"
    one_month = "1month"


class AssigneeStatus(enum.Enum):
    pending = "pending"
    completed = "completed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# Stakeholders / owners (notification recipients)
# ---------------------------------------------------------------------------


document_stakeholders = Table(
    "document_stakeholders",
    Base.metadata,
    Column(
        "document_id",
        UUID(as_uuid=True),
        ForeignKey("documents.id"),
        primary_key=True,
    ),
    Column("person_id", UUID(as_uuid=True), ForeignKey("people.id"), primary_key=True),
)

document_owners = Table(
    "document_owners",
    Base.metadata,
    Column(
        "document_id",
        UUID(as_uuid=True),
        ForeignKey("documents.id"),
        primary_key=True,
    ),
    Column("person_id", UUID(as_uuid=True), ForeignKey("people.id"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Documents (review policy lives on the document row)
# ---------------------------------------------------------------------------


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_created_by", "created_by"),
        Index("ix_documents_next_review_due_on", "next_review_due_on"),
        Index("ix_documents_review_completed", "review_completed"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )

    # Review policy
    opens_for_review: Mapped[datetime | None] = mapped_column(UTCDateTime)
    review_interval: Mapped[ReviewInterval | None] = mapped_column(
        Enum(ReviewInterval, values_callable=_enum_values)
    )
    review_interval_days: Mapped[int | None] = mapped_column(Integer)
    review_period: Mapped[ReviewPeriod | None] = mapped_column(
        Enum(ReviewPeriod, values_callable=_enum_values)
    )
    last_reviewed_on: Mapped[datetime | None] = mapped_column(UTCDateTime)
    # Derived from the fields above; written only by services.review_schedule
    next_review_due_on: Mapped[datetime | None] = mapped_column(UTCDateTime)
    review_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    review_completed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id")
    )
    review_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Assignment bookkeeping
    review_cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    assignment_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    creator = relationship("Person", foreign_keys=[created_by])
    completed_by_person = relationship("Person", foreign_keys=[review_completed_by])
    stakeholders = relationship(
        "Person", secondary=document_stakeholders, order_by="Person.email"
    )
    owners = relationship("Person", secondary=document_owners, order_by="Person.email")
    review_assignees = relationship(
        "ReviewAssignee",
        back_populates="document",
        order_by="ReviewAssignee.created_at",
    )


# ---------------------------------------------------------------------------
# Review assignees (one row per assignee per review cycle)
# ---------------------------------------------------------------------------


class ReviewAssignee(Base):
    __tablename__ = "review_assignees"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "cycle",
            "assignee_id",
            name="uq_review_assignees_doc_cycle_assignee",
        ),
        Index("ix_review_assignees_document_cycle", "document_id", "cycle"),
        Index("ix_review_assignees_assignee_id", "assignee_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    assignee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[AssigneeStatus] = mapped_column(
        Enum(AssigneeStatus), default=AssigneeStatus.pending
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )

    document = relationship("Document", back_populates="review_assignees")
    assignee = relationship("Person", foreign_keys=[assignee_id])


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_person_id", "person_id"),
        Index("ix_notifications_is_read", "is_read"),
        Index("ix_notifications_event_type", "event_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )

    person = relationship("Person", foreign_keys=[person_id])


class ReviewNotificationDispatch(Base):
    """Ledger row claimed before a review-due notice is sent.

    The unique key makes overlapping dispatcher runs send at most one notice
    per recipient for a given document due date.
    """

    __tablename__ = "review_notification_dispatches"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "recipient_id",
            "due_on",
            name="uq_review_notification_dispatches_doc_recipient_due",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("documents.id"), nullable=False
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("people.id"), nullable=False
    )
    due_on: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )
