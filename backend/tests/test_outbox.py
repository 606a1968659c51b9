"""
Tests for the Outbox Pattern implementation.

Tests verify:
- Outbox service for writing events atomically
- Recipient de-duplication for notification events
- Notification dispatcher (inbox rows, email fan-out, realtime pushes)
- Outbox processor status transitions and retries
"""

import json
from datetime import datetime, timezone

import pytest
from unittest.mock import patch, MagicMock, AsyncMock

from sqlalchemy import select

from rest_api.models import Notification, OutboxEvent, OutboxStatus
from rest_api.services.events.email_client import EmailClient
from rest_api.services.events.notification_dispatcher import (
    UnknownEventTypeError,
    dispatch_outbox_event,
)
from rest_api.services.events.outbox_processor import (
    CLAIM_TIMEOUT,
    MAX_RETRIES,
    OutboxProcessor,
    _claim_batch,
)
from rest_api.services.events.outbox_service import (
    recipient_from_user,
    write_email_event,
    write_notification_event,
    write_outbox_event,
)
from shared.infrastructure.events import (
    CAMP_CONCLUDED,
    EMAIL_SEND,
    MESSAGE_RECEIVED,
    REGISTRATION_CONFIRMED,
)

from conftest import TestingSessionLocal


def _unconfigured_email_client():
    return EmailClient(api_url="", api_key="")


class TestOutboxService:
    """Tests for outbox_service.py functions."""

    def test_write_outbox_event_creates_pending_event(self):
        """write_outbox_event should create an OutboxEvent with PENDING status."""
        mock_db = MagicMock()

        write_outbox_event(
            db=mock_db,
            tenant_id=1,
            event_type="test.event",
            aggregate_type="camp",
            aggregate_id=123,
            payload={"key": "value"},
        )

        mock_db.add.assert_called_once()
        added_event = mock_db.add.call_args[0][0]

        assert added_event.tenant_id == 1
        assert added_event.event_type == "test.event"
        assert added_event.aggregate_type == "camp"
        assert added_event.aggregate_id == 123
        assert added_event.status == OutboxStatus.PENDING
        assert json.loads(added_event.payload) == {"key": "value"}

    def test_write_outbox_event_does_not_commit(self):
        """The caller owns the transaction."""
        mock_db = MagicMock()
        write_outbox_event(mock_db, 1, "test.event", "camp", 1, {})
        mock_db.commit.assert_not_called()
        mock_db.flush.assert_not_called()

    def test_notification_event_dedupes_recipients(self):
        """The same user listed twice is notified once."""
        mock_db = MagicMock()
        recipients = [
            {"user_id": 7, "email": "a@test.com", "name": "A"},
            {"user_id": 7, "email": "a@test.com", "name": "A"},
            {"user_id": 8, "email": "b@test.com", "name": "B"},
        ]

        event = write_notification_event(
            mock_db,
            tenant_id=1,
            event_type=REGISTRATION_CONFIRMED,
            aggregate_type="registration",
            aggregate_id=5,
            recipients=recipients,
            data={"camp_name": "Summer"},
            actor_user_id=99,
        )

        payload = json.loads(event.payload)
        assert [r["user_id"] for r in payload["recipients"]] == [7, 8]
        assert payload["data"] == {"camp_name": "Summer"}
        assert payload["actor_user_id"] == 99

    def test_notification_event_without_recipients_writes_nothing(self):
        mock_db = MagicMock()
        event = write_notification_event(
            mock_db, 1, CAMP_CONCLUDED, "camp", 1, recipients=[]
        )
        assert event is None
        mock_db.add.assert_not_called()

    def test_write_email_event_payload(self):
        mock_db = MagicMock()
        event = write_email_event(
            mock_db, 1, user_id=3, to="p@test.com", subject="Hi", text="Body",
            source_event_type=REGISTRATION_CONFIRMED,
        )
        assert event.event_type == EMAIL_SEND
        assert event.aggregate_type == "user"
        assert event.aggregate_id == 3
        assert json.loads(event.payload)["source_event_type"] == REGISTRATION_CONFIRMED

    def test_recipient_from_user_falls_back_to_email(self):
        user = MagicMock(id=4, email="x@test.com", full_name="")
        assert recipient_from_user(user) == {"user_id": 4, "email": "x@test.com", "name": "x@test.com"}


class TestNotificationDispatcher:
    """dispatch_outbox_event against a real session."""

    @pytest.mark.asyncio
    async def test_dispatch_creates_inbox_rows_and_email_events(
        self, db_session, seed_tenant, seed_parent_user, seed_director_user
    ):
        event = write_notification_event(
            db_session,
            tenant_id=seed_tenant.id,
            event_type=REGISTRATION_CONFIRMED,
            aggregate_type="registration",
            aggregate_id=1,
            recipients=[recipient_from_user(seed_parent_user), recipient_from_user(seed_director_user)],
            data={
                "camp_name": "Summer",
                "athlete_names": ["Sam Rivera"],
                "total_paid_cents": 30000,
                "confirmation_number": "EA-ABCDEFGH",
            },
        )
        db_session.commit()

        with patch(
            "rest_api.services.events.notification_dispatcher.publish_event",
            new_callable=AsyncMock,
        ) as mock_publish:
            delivered = await dispatch_outbox_event(
                db_session, event, AsyncMock(), _unconfigured_email_client()
            )
        db_session.commit()

        assert delivered == 2
        assert mock_publish.await_count == 2

        notifications = db_session.execute(select(Notification)).scalars().all()
        assert {n.user_id for n in notifications} == {seed_parent_user.id, seed_director_user.id}
        assert notifications[0].title == "Registration confirmed: Summer"
        assert "$300.00" in notifications[0].body

        emails = db_session.execute(
            select(OutboxEvent).where(OutboxEvent.event_type == EMAIL_SEND)
        ).scalars().all()
        assert len(emails) == 2

    @pytest.mark.asyncio
    async def test_messages_do_not_fan_out_to_email(
        self, db_session, seed_tenant, seed_parent_user
    ):
        event = write_notification_event(
            db_session, seed_tenant.id, MESSAGE_RECEIVED, "message", 1,
            recipients=[recipient_from_user(seed_parent_user)],
            data={"sender_name": "Coach", "preview": "See you tomorrow"},
        )
        db_session.commit()

        await dispatch_outbox_event(db_session, event, None, _unconfigured_email_client())
        db_session.commit()

        emails = db_session.execute(
            select(OutboxEvent).where(OutboxEvent.event_type == EMAIL_SEND)
        ).scalars().all()
        assert emails == []
        notification = db_session.scalar(select(Notification))
        assert notification.title == "New message from Coach"

    @pytest.mark.asyncio
    async def test_realtime_failure_does_not_fail_delivery(
        self, db_session, seed_tenant, seed_parent_user
    ):
        event = write_notification_event(
            db_session, seed_tenant.id, CAMP_CONCLUDED, "camp", 1,
            recipients=[recipient_from_user(seed_parent_user)],
            data={"camp_name": "Summer"},
        )
        db_session.commit()

        with patch(
            "rest_api.services.events.notification_dispatcher.publish_event",
            new_callable=AsyncMock,
            side_effect=ConnectionError("redis down"),
        ):
            delivered = await dispatch_outbox_event(
                db_session, event, AsyncMock(), _unconfigured_email_client()
            )
        assert delivered == 1

    @pytest.mark.asyncio
    async def test_email_send_event_uses_email_client(self):
        event = MagicMock(
            event_type=EMAIL_SEND,
            payload=json.dumps({"to": "p@test.com", "subject": "S", "text": "T"}),
        )
        email_client = MagicMock()
        email_client.send = AsyncMock(return_value=True)

        delivered = await dispatch_outbox_event(MagicMock(), event, None, email_client)

        assert delivered == 1
        email_client.send.assert_awaited_once_with("p@test.com", "S", "T")

    @pytest.mark.asyncio
    async def test_unknown_event_type_raises(self):
        event = MagicMock(event_type="nope", payload=json.dumps({"recipients": []}))
        with pytest.raises(UnknownEventTypeError):
            await dispatch_outbox_event(MagicMock(), event, None, _unconfigured_email_client())


class TestOutboxProcessor:
    """Tests for outbox_processor.py."""

    def _mock_event(self, retry_count=0):
        mock_event = MagicMock()
        mock_event.id = 1
        mock_event.tenant_id = 1
        mock_event.event_type = CAMP_CONCLUDED
        mock_event.aggregate_type = "camp"
        mock_event.aggregate_id = 123
        mock_event.payload = json.dumps({"recipients": [], "data": {}})
        mock_event.status = OutboxStatus.PENDING
        mock_event.retry_count = retry_count
        return mock_event

    def _mock_session(self, events):
        mock_db = MagicMock()
        mock_execute = MagicMock()
        mock_execute.scalars.return_value.all.return_value = events
        mock_db.execute.return_value = mock_execute
        return mock_db

    @pytest.mark.asyncio
    async def test_processor_marks_event_as_published(self):
        """Processor should mark events as PUBLISHED after successful delivery."""
        mock_event = self._mock_event()

        with patch('rest_api.services.events.outbox_processor.SessionLocal') as mock_session_local, \
             patch('rest_api.services.events.outbox_processor.get_redis_client', new_callable=AsyncMock), \
             patch('rest_api.services.events.outbox_processor.dispatch_outbox_event', new_callable=AsyncMock) as mock_dispatch:
            mock_session_local.return_value = self._mock_session([mock_event])

            processed = await OutboxProcessor(poll_interval=0.01)._process_batch()

        assert processed == 1
        mock_dispatch.assert_awaited_once()
        assert mock_event.status == OutboxStatus.PUBLISHED
        assert mock_event.processed_at is not None

    @pytest.mark.asyncio
    async def test_processor_retries_failed_events(self):
        """A failed delivery goes back to PENDING with retry_count + 1."""
        mock_event = self._mock_event()

        with patch('rest_api.services.events.outbox_processor.SessionLocal') as mock_session_local, \
             patch('rest_api.services.events.outbox_processor.get_redis_client', new_callable=AsyncMock), \
             patch(
                 'rest_api.services.events.outbox_processor.dispatch_outbox_event',
                 new_callable=AsyncMock,
                 side_effect=RuntimeError("provider down"),
             ):
            mock_session_local.return_value = self._mock_session([mock_event])

            processed = await OutboxProcessor(poll_interval=0.01)._process_batch()

        assert processed == 0
        assert mock_event.status == OutboxStatus.PENDING
        assert mock_event.retry_count == 1
        assert mock_event.last_error == "provider down"

    @pytest.mark.asyncio
    async def test_processor_marks_failed_after_max_retries(self):
        mock_event = self._mock_event(retry_count=MAX_RETRIES - 1)

        with patch('rest_api.services.events.outbox_processor.SessionLocal') as mock_session_local, \
             patch('rest_api.services.events.outbox_processor.get_redis_client', new_callable=AsyncMock), \
             patch(
                 'rest_api.services.events.outbox_processor.dispatch_outbox_event',
                 new_callable=AsyncMock,
                 side_effect=RuntimeError("provider down"),
             ):
            mock_session_local.return_value = self._mock_session([mock_event])
            await OutboxProcessor(poll_interval=0.01)._process_batch()

        assert mock_event.status == OutboxStatus.FAILED
        assert mock_event.retry_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_processor_returns_zero_when_idle(self):
        with patch('rest_api.services.events.outbox_processor.SessionLocal') as mock_session_local:
            mock_db = self._mock_session([])
            mock_session_local.return_value = mock_db

            processed = await OutboxProcessor(poll_interval=0.01)._process_batch()

        assert processed == 0
        mock_db.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_processor_runs_without_redis(self):
        """Redis being down only skips realtime pushes."""
        mock_event = self._mock_event()

        with patch('rest_api.services.events.outbox_processor.SessionLocal') as mock_session_local, \
             patch(
                 'rest_api.services.events.outbox_processor.get_redis_client',
                 new_callable=AsyncMock,
                 side_effect=ConnectionError("no redis"),
             ), \
             patch('rest_api.services.events.outbox_processor.dispatch_outbox_event', new_callable=AsyncMock) as mock_dispatch:
            mock_session_local.return_value = self._mock_session([mock_event])
            processed = await OutboxProcessor(poll_interval=0.01)._process_batch()

        assert processed == 1
        assert mock_dispatch.await_args[0][2] is None


class TestOutboxClaims:
    """Claim bookkeeping against a real session."""

    def _queue(self, db, **fields):
        event = write_outbox_event(
            db, tenant_id=1, event_type=CAMP_CONCLUDED, aggregate_type="camp",
            aggregate_id=7, payload={"recipients": [], "data": {}},
        )
        for name, value in fields.items():
            setattr(event, name, value)
        db.commit()
        return event

    def _session_with_failing_commit(self, failing_call):
        session = TestingSessionLocal()
        real_commit = session.commit
        calls = {"n": 0}

        def commit():
            calls["n"] += 1
            if calls["n"] == failing_call:
                raise RuntimeError("connection lost")
            real_commit()

        session.commit = commit
        return session

    @pytest.mark.asyncio
    async def test_failed_batch_commit_releases_claims(self, db_session):
        event = self._queue(db_session)
        # First commit claims the batch, second one records delivery
        sessions = iter([self._session_with_failing_commit(2)])

        def session_factory():
            return next(sessions, None) or TestingSessionLocal()

        with patch('rest_api.services.events.outbox_processor.SessionLocal', side_effect=session_factory), \
             patch('rest_api.services.events.outbox_processor.get_redis_client', new_callable=AsyncMock), \
             patch('rest_api.services.events.outbox_processor.dispatch_outbox_event', new_callable=AsyncMock):
            assert await OutboxProcessor(poll_interval=0.01)._process_batch() == 0

            db_session.expire_all()
            assert event.status == OutboxStatus.PENDING
            assert event.retry_count == 1
            assert event.last_error == "connection lost"

            assert await OutboxProcessor(poll_interval=0.01)._process_batch() == 1

        db_session.expire_all()
        assert event.status == OutboxStatus.PUBLISHED

    def test_stale_claims_are_taken_over(self, db_session):
        now = datetime.now(timezone.utc)
        stale = self._queue(db_session, status=OutboxStatus.PROCESSING, claimed_at=now - CLAIM_TIMEOUT * 2)
        self._queue(db_session, status=OutboxStatus.PROCESSING, claimed_at=now)
        pending = self._queue(db_session)

        claimed = _claim_batch(db_session)

        assert {e.id for e in claimed} == {stale.id, pending.id}
        assert all(e.status == OutboxStatus.PROCESSING for e in claimed)
        assert all(e.claimed_at is not None for e in claimed)


class TestOutboxEventModel:
    """Tests for OutboxEvent model."""

    def test_outbox_status_enum_values(self):
        assert OutboxStatus.PENDING.value == "PENDING"
        assert OutboxStatus.PROCESSING.value == "PROCESSING"
        assert OutboxStatus.PUBLISHED.value == "PUBLISHED"
        assert OutboxStatus.FAILED.value == "FAILED"

    def test_outbox_event_repr(self):
        event = OutboxEvent(
            id=1,
            tenant_id=1,
            event_type=CAMP_CONCLUDED,
            aggregate_type="camp",
            aggregate_id=100,
            payload="{}",
            status=OutboxStatus.PENDING,
        )
        assert CAMP_CONCLUDED in repr(event)
        assert "PENDING" in repr(event)
