"""
Background delivery of outbox events.

Business transactions only insert OutboxEvent rows. This loop claims PENDING
rows in batches, marks them PROCESSING so a second worker cannot pick them
up, and hands each one to the notification dispatcher (in-app notification,
realtime push, email). A failed delivery goes back to PENDING until
MAX_RETRIES is reached, then stays FAILED for inspection. If the batch
itself cannot be committed, every claimed row counts one failed attempt and
is released; rows left PROCESSING by a crashed worker are claimed again
after CLAIM_TIMEOUT.

Runs inside the API process (started from the lifespan) or as its own
worker with `process_pending_events_once` on a schedule.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from rest_api.models import OutboxEvent, OutboxStatus
from rest_api.services.events.email_client import get_email_client
from rest_api.services.events.notification_dispatcher import dispatch_outbox_event
from shared.infrastructure.db import SessionLocal
from shared.infrastructure.events import get_redis_client
from shared.config.logging import outbox_logger as logger
from shared.config.settings import settings

MAX_RETRIES = 5
BATCH_SIZE = 50
# A PROCESSING row claimed longer ago than this belongs to a dead worker
CLAIM_TIMEOUT = timedelta(minutes=5)


def _claim_batch(db: Session) -> list[OutboxEvent]:
    now = datetime.now(timezone.utc)
    events = db.execute(
        select(OutboxEvent)
        .where(or_(
            OutboxEvent.status == OutboxStatus.PENDING,
            and_(
                OutboxEvent.status == OutboxStatus.PROCESSING,
                OutboxEvent.claimed_at < now - CLAIM_TIMEOUT,
            ),
        ))
        .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .limit(BATCH_SIZE)
        .with_for_update(skip_locked=True)
    ).scalars().all()
    if events:
        db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id.in_([e.id for e in events]))
            .values(status=OutboxStatus.PROCESSING, claimed_at=now)
        )
        db.commit()
    return list(events)


def _record_failure(event: OutboxEvent, error: Exception) -> None:
    event.retry_count += 1
    event.last_error = str(error)
    if event.retry_count >= MAX_RETRIES:
        event.status = OutboxStatus.FAILED
        logger.error(
            "Outbox event gave up",
            event_id=event.id,
            event_type=event.event_type,
            retries=event.retry_count,
            error=str(error),
        )
    else:
        event.status = OutboxStatus.PENDING
        logger.warning(
            "Outbox event delivery failed",
            event_id=event.id,
            event_type=event.event_type,
            retry_count=event.retry_count,
            error=str(error),
        )


def _release_claims(event_ids: list[int], error: Exception) -> None:
    """Count a failed batch against each claimed event and make it claimable again."""
    db = SessionLocal()
    try:
        events = db.execute(
            select(OutboxEvent).where(
                OutboxEvent.id.in_(event_ids),
                OutboxEvent.status == OutboxStatus.PROCESSING,
            )
        ).scalars().all()
        for event in events:
            _record_failure(event, error)
        db.commit()
    except Exception as e:
        db.rollback()
        # The claim timeout takes over from here
        logger.error("Could not release outbox claims", event_ids=event_ids, error=str(e))
    finally:
        db.close()


async def _optional_redis():
    # Without Redis only the realtime push is skipped
    try:
        return await get_redis_client()
    except Exception as e:
        logger.warning("Redis unavailable, realtime pushes skipped", error=str(e))
        return None


class OutboxProcessor:
    """Polling loop around `_process_batch`; sleeps only when a batch was empty."""

    def __init__(self, poll_interval: float | None = None):
        if poll_interval is None:
            poll_interval = settings.outbox_poll_interval_seconds
        self._poll_interval = poll_interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.warning("Outbox processor already running")
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Outbox processor started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Outbox processor stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                delivered = await self._process_batch()
            except Exception as e:
                logger.error("Outbox loop error", error=str(e))
                delivered = 0
            if delivered == 0:
                await asyncio.sleep(self._poll_interval)

    async def _process_batch(self) -> int:
        """Deliver one batch. Returns how many events were published."""
        db = SessionLocal()
        claimed_ids: list[int] = []
        try:
            events = _claim_batch(db)
            if not events:
                return 0
            claimed_ids = [event.id for event in events]

            redis_client = await _optional_redis()
            email_client = get_email_client()
            delivered = 0
            for event in events:
                try:
                    await dispatch_outbox_event(db, event, redis_client, email_client)
                except Exception as e:
                    _record_failure(event, e)
                    continue
                event.status = OutboxStatus.PUBLISHED
                event.processed_at = datetime.now(timezone.utc)
                delivered += 1

            db.commit()
            logger.info("Outbox batch processed", total=len(events), delivered=delivered)
            return delivered
        except Exception as e:
            db.rollback()
            logger.error("Outbox batch failed", error=str(e), claimed=len(claimed_ids))
            if claimed_ids:
                _release_claims(claimed_ids, e)
            return 0
        finally:
            db.close()


_processor: OutboxProcessor | None = None


def get_outbox_processor() -> OutboxProcessor:
    global _processor
    if _processor is None:
        _processor = OutboxProcessor()
    return _processor


async def start_outbox_processor() -> None:
    await get_outbox_processor().start()


async def stop_outbox_processor() -> None:
    await get_outbox_processor().stop()


async def process_pending_events_once() -> int:
    """Run a single batch, for schedulers and tests."""
    return await get_outbox_processor()._process_batch()
