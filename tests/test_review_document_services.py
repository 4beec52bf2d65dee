import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from docman.errors import NotFoundError
from docman.models.person import Person
from docman.models.review import (
    Document,
    Notification,
    ReviewAssignee,
    ReviewInterval,
    ReviewPeriod,
)
from docman.schemas.review import ReviewDocumentCreate, ReviewDocumentUpdate
from docman.services.review_document import ReviewDocuments

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _make_person(db_session):
    p = Person(
        first_name="Doc",
        last_name="Owner",
        email=f"doc-{uuid.uuid4().hex[:8]}@test.com",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


def _create(db_session, person, **kwargs):
    payload = ReviewDocumentCreate(
        title=kwargs.pop("title", f"doc_{uuid.uuid4().hex[:8]}"),
        created_by=person.id,
        **kwargs,
    )
    return ReviewDocuments.create(db_session, payload)


class TestReviewDocumentCreate:
    def test_derives_due_date_from_period(self, db_session, person) -> None:
        doc = _create(
            db_session,
            person,
            opens_for_review=datetime(2024, 1, 1, tzinfo=timezone.utc),
            review_period=ReviewPeriod.one_week,
        )
        assert doc.next_review_due_on == datetime(2024, 1, 8, tzinfo=timezone.utc)
        assert doc.review_completed is False
        assert doc.review_cycle == 1
        assert doc.assignment_version == 1

    def test_without_policy_has_no_due_date(self, db_session, person) -> None:
        doc = _create(db_session, person)
        assert doc.next_review_due_on is None

    def test_links_people_and_assignees(self, db_session, person) -> None:
        stakeholder = _make_person(db_session)
        owner = _make_person(db_session)
        reviewer = _make_person(db_session)
        doc = _create(
            db_session,
            person,
            stakeholder_ids=[stakeholder.id, stakeholder.id],
            owner_ids=[owner.id],
            assignee_ids=[reviewer.id, reviewer.id],
        )
        assert [p.id for p in doc.stakeholders] == [stakeholder.id]
        assert [p.id for p in doc.owners] == [owner.id]
        rows = (
            db_session.query(ReviewAssignee)
            .filter(ReviewAssignee.document_id == doc.id)
            .all()
        )
        assert [(r.assignee_id, r.cycle) for r in rows] == [(reviewer.id, 1)]

    def test_notifies_initial_assignees(self, db_session, person) -> None:
        reviewer = _make_person(db_session)
        doc = _create(db_session, person, assignee_ids=[reviewer.id, reviewer.id])
        notification = db_session.query(Notification).one()
        assert notification.person_id == reviewer.id
        assert notification.event_type == "review.assigned"
        assert notification.entity_id == str(doc.id)

    def test_unknown_creator_raises(self, db_session) -> None:
        payload = ReviewDocumentCreate(title="orphan", created_by=uuid.uuid4())
        with pytest.raises(NotFoundError):
            ReviewDocuments.create(db_session, payload)

    def test_unknown_stakeholder_raises(self, db_session, person) -> None:
        with pytest.raises(NotFoundError):
            _create(db_session, person, stakeholder_ids=[uuid.uuid4()])

    def test_custom_interval_requires_days(self, db_session, person) -> None:
        with pytest.raises(HTTPException) as exc:
            _create(db_session, person, review_interval=ReviewInterval.custom)
        assert exc.value.status_code == 400

    @pytest.mark.parametrize("field", ["next_review_due_on", "nextReviewDueOn"])
    def test_rejects_derived_field(self, person, field) -> None:
        with pytest.raises(ValidationError):
            ReviewDocumentCreate.model_validate(
                {
                    "title": "sneaky",
                    "created_by": str(person.id),
                    field: "2030-01-01T00:00:00Z",
                }
            )


class TestReviewDocumentUpdate:
    def test_anchor_change_recomputes_due_date(self, db_session, person) -> None:
        doc = _create(
            db_session,
            person,
            opens_for_review=datetime(2024, 1, 1, tzinfo=timezone.utc),
            review_period=ReviewPeriod.one_week,
        )
        updated = ReviewDocuments.update(
            db_session,
            str(doc.id),
            ReviewDocumentUpdate(review_period=ReviewPeriod.one_month),
        )
        assert updated.next_review_due_on == datetime(2024, 2, 1, tzinfo=timezone.utc)

        updated = ReviewDocuments.update(
            db_session,
            str(doc.id),
            ReviewDocumentUpdate(
                last_reviewed_on=datetime(2024, 3, 31, tzinfo=timezone.utc),
                review_interval=ReviewInterval.monthly,
            ),
        )
        assert updated.next_review_due_on == datetime(2024, 4, 30, tzinfo=timezone.utc)

    def test_clearing_anchor_clears_due_date(self, db_session, person) -> None:
        doc = _create(
            db_session,
            person,
            opens_for_review=datetime(2024, 1, 1, tzinfo=timezone.utc),
            review_period=ReviewPeriod.one_week,
        )
        updated = ReviewDocuments.update(
            db_session, str(doc.id), ReviewDocumentUpdate(opens_for_review=None)
        )
        assert updated.next_review_due_on is None

    def test_replaces_owners(self, db_session, person) -> None:
        doc = _create(db_session, person, owner_ids=[person.id])
        other = _make_person(db_session)
        updated = ReviewDocuments.update(
            db_session, str(doc.id), ReviewDocumentUpdate(owner_ids=[other.id])
        )
        assert [p.id for p in updated.owners] == [other.id]

    def test_rejects_derived_field(self) -> None:
        with pytest.raises(ValidationError):
            ReviewDocumentUpdate.model_validate(
                {"next_review_due_on": "2030-01-01T00:00:00Z"}
            )

    def test_missing_document_raises(self, db_session) -> None:
        with pytest.raises(NotFoundError):
            ReviewDocuments.update(
                db_session, str(uuid.uuid4()), ReviewDocumentUpdate(title="x")
            )


class TestReviewDocumentListAndStats:
    def _make_doc(self, db_session, person, due, completed=False, is_active=True):
        doc = Document(
            title=f"list_{uuid.uuid4().hex[:8]}",
            created_by=person.id,
            next_review_due_on=due,
            review_completed=completed,
            is_active=is_active,
        )
        db_session.add(doc)
        db_session.commit()
        db_session.refresh(doc)
        return doc

    def test_list_by_review_status(self, db_session, person) -> None:
        overdue = self._make_doc(db_session, person, NOW - timedelta(days=1))
        self._make_doc(db_session, person, NOW + timedelta(days=30))
        items = ReviewDocuments.list(
            db_session, "overdue", None, None, NOW, "next_review_due_on", "asc", 50, 0
        )
        assert [d.id for d in items] == [overdue.id]

    def test_list_invalid_status(self, db_session) -> None:
        with pytest.raises(HTTPException) as exc:
            ReviewDocuments.list(
                db_session, "late", None, None, NOW, "created_at", "asc", 50, 0
            )
        assert exc.value.status_code == 400

    def test_list_excludes_inactive_by_default(self, db_session, person) -> None:
        self._make_doc(db_session, person, None, is_active=False)
        active = self._make_doc(db_session, person, None)
        items = ReviewDocuments.list(
            db_session, None, None, None, NOW, "created_at", "asc", 50, 0
        )
        assert [d.id for d in items] == [active.id]

    def test_list_response_envelope(self, db_session, person) -> None:
        self._make_doc(db_session, person, None)
        self._make_doc(db_session, person, None)
        result = ReviewDocuments.list_response(
            db_session, None, None, None, NOW, "created_at", "asc", 1, 0
        )
        assert result["count"] == 1
        assert result["limit"] == 1
        assert result["offset"] == 0

    def test_status_counts(self, db_session, person) -> None:
        self._make_doc(db_session, person, NOW - timedelta(days=1))
        self._make_doc(db_session, person, NOW - timedelta(days=2))
        self._make_doc(db_session, person, NOW + timedelta(days=2))
        self._make_doc(db_session, person, NOW + timedelta(days=60))
        self._make_doc(db_session, person, NOW - timedelta(days=1), completed=True)
        self._make_doc(db_session, person, None)
        self._make_doc(db_session, person, NOW - timedelta(days=1), is_active=False)
        assert ReviewDocuments.status_counts(db_session, NOW) == {
            "completed": 1,
            "unscheduled": 1,
            "overdue": 2,
            "due_soon": 1,
            "current": 1,
        }

    def test_delete_is_soft(self, db_session, person) -> None:
        doc = self._make_doc(db_session, person, None)
        ReviewDocuments.delete(db_session, str(doc.id))
        db_session.refresh(doc)
        assert doc.is_active is False

    def test_recompute_fixes_stale_due_dates(self, db_session, person) -> None:
        stale = Document(
            title="stale",
            created_by=person.id,
            opens_for_review=datetime(2024, 1, 1, tzinfo=timezone.utc),
            review_period=ReviewPeriod.two_weeks,
            next_review_due_on=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )
        fresh = Document(
            title="fresh",
            created_by=person.id,
            opens_for_review=datetime(2024, 1, 1, tzinfo=timezone.utc),
            review_period=ReviewPeriod.one_week,
            next_review_due_on=datetime(2024, 1, 8, tzinfo=timezone.utc),
        )
        db_session.add_all([stale, fresh])
        db_session.commit()

        assert ReviewDocuments.recompute_due_dates(db_session) == 1
        db_session.refresh(stale)
        assert stale.next_review_due_on == datetime(2024, 1, 15, tzinfo=timezone.utc)
