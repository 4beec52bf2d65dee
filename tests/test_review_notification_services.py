import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from docman.config import Settings
from docman.errors import StoreUnavailableError
from docman.models.person import Person
from docman.models.review import Document, Notification, ReviewNotificationDispatch
from docman.services.review_notification import (
    DispatchConfig,
    InAppNotificationSender,
    SendResult,
    SqlDocumentStore,
    dedupe_recipients,
    review_window,
    run_due_notifications,
    sql_document_store,
)

NOW = datetime(2024, 6, 1, 15, 30, tzinfo=timezone.utc)
TOMORROW = datetime(2024, 6, 2, tzinfo=timezone.utc)


def _make_person(db_session, prefix="notify"):
    p = Person(
        first_name="Notify",
        last_name=prefix.title(),
        email=f"{prefix}-{uuid.uuid4().hex[:8]}@test.com",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


def _make_document(
    db_session, person, due, stakeholders=(), owners=(), completed=False
):
    doc = Document(
        title=f"due_{uuid.uuid4().hex[:8]}",
        created_by=person.id,
        next_review_due_on=due,
        review_completed=completed,
    )
    doc.stakeholders = list(stakeholders)
    doc.owners = list(owners)
    db_session.add(doc)
    db_session.commit()
    db_session.refresh(doc)
    return doc


class RecordingSender:
    def __init__(self, fail_for=(), raise_for=()):
        self.calls = []
        self._lock = threading.Lock()
        self._fail_for = {str(i) for i in fail_for}
        self._raise_for = {str(i) for i in raise_for}

    def send(self, recipient_id, document_id):
        with self._lock:
            self.calls.append((document_id, recipient_id))
        if str(recipient_id) in self._raise_for:
            raise ConnectionError("mail relay refused connection")
        if str(recipient_id) in self._fail_for:
            return SendResult(ok=False, error="mailbox full")
        return SendResult(ok=True)


def _store_for(db_session):
    @contextmanager
    def factory():
        yield SqlDocumentStore(db_session)

    return factory


SERIAL = DispatchConfig(max_workers=1, send_timeout_seconds=5)


class TestReviewWindow:
    def test_truncates_to_next_midnight(self) -> None:
        start, end = review_window(NOW, timedelta(hours=24))
        assert start == NOW
        assert end == TOMORROW

    def test_untruncated(self) -> None:
        _, end = review_window(NOW, timedelta(hours=24), truncate_to_day=False)
        assert end == NOW + timedelta(hours=24)

    def test_short_horizon_not_truncated_behind_now(self) -> None:
        _, end = review_window(NOW, timedelta(hours=1))
        assert end == NOW + timedelta(hours=1)

    def test_rejects_non_positive_horizon(self) -> None:
        with pytest.raises(ValueError):
            review_window(NOW, timedelta(0))


class TestDedupeRecipients:
    def test_dedupes_by_identity_not_reference(self, db_session) -> None:
        person = _make_person(db_session)
        copy = MagicMock(id=uuid.UUID(str(person.id)))
        recipients = dedupe_recipients([person, copy])
        assert [r.id for r in recipients] == [person.id]
        assert recipients[0].contact_address == person.email

    def test_keeps_first_seen_order(self) -> None:
        a = MagicMock(id=uuid.uuid4(), display_name="A", contact_address="a@x")
        b = MagicMock(id=uuid.uuid4(), display_name="B", contact_address="b@x")
        assert [r.id for r in dedupe_recipients([b, a, b])] == [b.id, a.id]


class TestRunDueNotifications:
    def test_shared_recipient_sent_once_per_document(self, db_session, person) -> None:
        shared = _make_person(db_session, "shared")
        alice = _make_person(db_session, "alice")
        bob = _make_person(db_session, "bob")
        carol = _make_person(db_session, "carol")
        # Each document lists three recipient entries; ``shared`` appears in
        # both roles on the first one.
        first = _make_document(
            db_session, person, TOMORROW, stakeholders=[shared, alice], owners=[shared]
        )
        second = _make_document(
            db_session, person, NOW + timedelta(hours=2), stakeholders=[bob, carol], owners=[shared]
        )
        sender = RecordingSender()

        report = run_due_notifications(
            NOW,
            config=DispatchConfig(max_workers=4),
            store_factory=_store_for(db_session),
            sender=sender,
        )

        assert report.processed == 2
        assert report.sent == 5
        assert report.failures == []
        assert sorted((str(d), str(r)) for d, r in sender.calls) == sorted(
            [
                (str(first.id), str(shared.id)),
                (str(first.id), str(alice.id)),
                (str(second.id), str(bob.id)),
                (str(second.id), str(carol.id)),
                (str(second.id), str(shared.id)),
            ]
        )

    def test_window_bounds(self, db_session, person) -> None:
        reader = _make_person(db_session)
        _make_document(db_session, person, NOW - timedelta(seconds=1), owners=[reader])
        at_now = _make_document(db_session, person, NOW, owners=[reader])
        at_midnight = _make_document(db_session, person, TOMORROW, owners=[reader])
        _make_document(
            db_session, person, TOMORROW + timedelta(seconds=1), owners=[reader]
        )
        _make_document(db_session, person, NOW + timedelta(hours=1), owners=[reader], completed=True)
        sender = RecordingSender()

        report = run_due_notifications(
            NOW, store_factory=_store_for(db_session), sender=sender, config=SERIAL
        )

        assert report.processed == 2
        assert {d for d, _ in sender.calls} == {at_now.id, at_midnight.id}

    def test_failures_recorded_without_aborting(self, db_session, person) -> None:
        ok = _make_person(db_session, "ok")
        full = _make_person(db_session, "full")
        down = _make_person(db_session, "down")
        doc = _make_document(db_session, person, TOMORROW, stakeholders=[ok, full, down])
        sender = RecordingSender(fail_for=[full.id], raise_for=[down.id])

        report = run_due_notifications(
            NOW, store_factory=_store_for(db_session), sender=sender, config=SERIAL
        )

        assert report.sent == 1
        errors = {str(f.recipient_id): f.error for f in report.failures}
        assert errors[str(full.id)] == "mailbox full"
        assert "mail relay refused connection" in errors[str(down.id)]
        assert all(f.document_id == doc.id for f in report.failures)
        # Failed pairs are released so the next run retries them.
        claimed = {
            row.recipient_id for row in db_session.query(ReviewNotificationDispatch).all()
        }
        assert claimed == {ok.id}

    def test_second_run_skips_already_notified(self, db_session, person) -> None:
        reader = _make_person(db_session)
        _make_document(db_session, person, TOMORROW, owners=[reader])
        first = run_due_notifications(
            NOW, store_factory=_store_for(db_session), sender=RecordingSender(), config=SERIAL
        )
        sender = RecordingSender()
        second = run_due_notifications(
            NOW + timedelta(hours=1),
            store_factory=_store_for(db_session),
            sender=sender,
            config=SERIAL,
        )
        assert first.sent == 1
        assert second.sent == 0
        assert second.skipped == 1
        assert sender.calls == []

    def test_new_due_date_is_notified_again(self, db_session, person) -> None:
        reader = _make_person(db_session)
        doc = _make_document(db_session, person, TOMORROW, owners=[reader])
        run_due_notifications(
            NOW, store_factory=_store_for(db_session), sender=RecordingSender(), config=SERIAL
        )
        doc.next_review_due_on = TOMORROW + timedelta(days=30)
        db_session.commit()

        report = run_due_notifications(
            TOMORROW + timedelta(days=29, hours=12),
            store_factory=_store_for(db_session),
            sender=RecordingSender(),
            config=SERIAL,
        )
        assert report.sent == 1

    def test_slow_send_times_out_without_stalling_batch(self, db_session, person) -> None:
        slow = _make_person(db_session, "slow")
        fast = _make_person(db_session, "fast")
        _make_document(db_session, person, TOMORROW, stakeholders=[slow, fast])
        slow_id = slow.id
        release = threading.Event()
        calls = []

        class SlowSender:
            def send(self, recipient_id, document_id):
                calls.append(recipient_id)
                if recipient_id == slow_id:
                    release.wait(5)
                return True

        try:
            report = run_due_notifications(
                NOW,
                store_factory=_store_for(db_session),
                sender=SlowSender(),
                config=DispatchConfig(max_workers=2, send_timeout_seconds=0.2),
            )
        finally:
            release.set()

        assert report.sent == 1
        assert [f.recipient_id for f in report.failures] == [slow_id]
        assert "timed out" in report.failures[0].error

    def test_queued_send_behind_hung_worker_is_released(self, db_session, person) -> None:
        first_reader = _make_person(db_session, "first")
        second_reader = _make_person(db_session, "second")
        _make_document(
            db_session, person, TOMORROW, stakeholders=[first_reader, second_reader]
        )
        ids = {first_reader.id, second_reader.id}
        release = threading.Event()
        calls = []

        class HangingSender:
            def send(self, recipient_id, document_id):
                calls.append(recipient_id)
                # The first send to start never finishes inside the timeout.
                if len(calls) == 1:
                    release.wait(5)
                return True

        try:
            first = run_due_notifications(
                NOW,
                store_factory=_store_for(db_session),
                sender=HangingSender(),
                config=DispatchConfig(max_workers=1, send_timeout_seconds=0.2),
            )
            retry_sender = RecordingSender()
            second = run_due_notifications(
                NOW + timedelta(minutes=5),
                store_factory=_store_for(db_session),
                sender=retry_sender,
                config=SERIAL,
            )
        finally:
            release.set()

        assert len(calls) == 1
        slow_id = calls[0]
        (queued_id,) = ids - {slow_id}
        assert first.sent == 0
        errors = {f.recipient_id: f.error for f in first.failures}
        assert "timed out" in errors[slow_id]
        assert "not started" in errors[queued_id]
        # The started send keeps its claim; the queued one was retried.
        assert second.skipped == 1
        assert second.sent == 1
        assert [r for _, r in retry_sender.calls] == [queued_id]

    def test_no_due_documents(self, db_session) -> None:
        sender = RecordingSender()
        report = run_due_notifications(
            NOW, store_factory=_store_for(db_session), sender=sender, config=SERIAL
        )
        assert report.as_dict() == {
            "processed": 0,
            "sent": 0,
            "skipped": 0,
            "failures": [],
        }

    def test_store_outage_aborts_and_closes_session(self) -> None:
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with pytest.raises(StoreUnavailableError):
            run_due_notifications(
                NOW,
                store_factory=lambda: sql_document_store(lambda: session),
                sender=RecordingSender(),
            )

        session.close.assert_called_once()

    def test_session_closed_after_successful_run(self, db_session) -> None:
        with patch.object(db_session, "close") as close:
            run_due_notifications(
                NOW,
                store_factory=lambda: sql_document_store(lambda: db_session),
                sender=RecordingSender(),
                config=SERIAL,
            )
        close.assert_called_once()


class TestInAppNotificationSender:
    def test_creates_notification(self, db_session, person) -> None:
        doc = _make_document(db_session, person, TOMORROW)
        sender = InAppNotificationSender(lambda: db_session)

        with patch.object(db_session, "close"):
            result = sender.send(person.id, doc.id)

        assert result.ok is True
        notification = db_session.query(Notification).one()
        assert notification.person_id == person.id
        assert notification.title == "Document Review Due"
        assert notification.body == f'The document "{doc.title}" is due for review'
        assert notification.event_type == "review.due"
        assert notification.entity_id == str(doc.id)

    def test_missing_document_fails(self, db_session, person) -> None:
        sender = InAppNotificationSender(lambda: db_session)
        with patch.object(db_session, "close"):
            result = sender.send(person.id, uuid.uuid4())
        assert result.ok is False
        assert db_session.query(Notification).count() == 0


class TestDispatchConfig:
    def test_from_settings(self) -> None:
        settings = Settings(
            database_url="sqlite://",
            review_notify_horizon_hours=48,
            review_notify_truncate_to_day=False,
            review_notify_max_workers=0,
            review_notify_send_timeout_seconds=2.5,
        )
        config = DispatchConfig.from_settings(settings)
        assert config.horizon == timedelta(hours=48)
        assert config.truncate_to_day is False
        assert config.max_workers == 1
        assert config.send_timeout_seconds == 2.5
