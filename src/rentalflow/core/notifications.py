"""Lifecycle notifications: type mapping, delivery log, and a retrying consumer.

The orchestrator publishes a LifecycleEvent after its transaction commits.
Publishing writes a QUEUED log row and enqueues a job; a worker thread
delivers it through a NotificationSender, retrying with exponential backoff.
Delivery failures are logged and recorded, never raised to the publisher.
Failed and stranded rows can be redelivered later from the log table.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol
from uuid import UUID

import structlog
from sqlalchemy import func, select

from rentalflow.config import NotificationSettings, get_settings
from rentalflow.core.models import NotificationStatus, OrderStatus
from rentalflow.db.database import Database, get_db
from rentalflow.db.schemas import NotificationLog

logger = structlog.get_logger()

S = OrderStatus

NOTIFICATION_TYPES: dict[tuple[OrderStatus, OrderStatus], str] = {
    (S.DRAFT, S.SUBMITTED): "ORDER_SUBMITTED",
    (S.PRICING_REVIEW, S.QUOTED): "QUOTE_SENT",
    (S.PRICING_REVIEW, S.PENDING_APPROVAL): "A2_ADJUSTED_PRICING",
    (S.PENDING_APPROVAL, S.QUOTED): "QUOTE_SENT",
    (S.QUOTED, S.CONFIRMED): "QUOTE_APPROVED",
    (S.QUOTED, S.DECLINED): "QUOTE_DECLINED",
    (S.CONFIRMED, S.IN_PREPARATION): "ORDER_CONFIRMED",
    (S.IN_PREPARATION, S.READY_FOR_DELIVERY): "READY_FOR_DELIVERY",
    (S.READY_FOR_DELIVERY, S.IN_TRANSIT): "IN_TRANSIT",
    (S.IN_TRANSIT, S.DELIVERED): "DELIVERED",
    (S.AWAITING_RETURN, S.CLOSED): "ORDER_CLOSED",
}

ORDER_CANCELLED = "ORDER_CANCELLED"


def notification_type_for(from_status: OrderStatus, to_status: OrderStatus) -> str | None:
    """Notification sent for a transition, or None when it sends nothing."""
    if to_status == S.CANCELLED:
        return ORDER_CANCELLED
    return NOTIFICATION_TYPES.get((from_status, to_status))


@dataclass(frozen=True)
class LifecycleEvent:
    """A committed status transition."""

    order_id: UUID
    from_status: OrderStatus
    to_status: OrderStatus
    actor_id: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def notification_type(self) -> str | None:
        return notification_type_for(self.from_status, self.to_status)


@dataclass
class SendResult:
    """Outcome of one delivery attempt."""

    success: bool
    error: str | None = None


class NotificationSender(Protocol):
    """Delivery channel for notifications (email, webhook, ...)."""

    def send(self, notification_type: str, order_id: UUID) -> SendResult: ...


class LoggingNotificationSender:
    """Sender that only logs; used until a real channel is wired in."""

    def send(self, notification_type: str, order_id: UUID) -> SendResult:
        logger.info("notification_sent", notification_type=notification_type, order_id=str(order_id))
        return SendResult(success=True)


@dataclass(frozen=True)
class _Job:
    log_id: UUID
    notification_type: str
    order_id: UUID


_STOP = object()


class NotificationDispatcher:
    """Producer/consumer queue delivering lifecycle notifications.

    The queue lives in memory, so the log table is the durable record.
    Rows left QUEUED or RETRYING by a lost queue are found again by
    pending() once they go stale and are requeued when the worker starts.
    """

    def __init__(
        self,
        db: Database | None = None,
        sender: NotificationSender | None = None,
        settings: NotificationSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize dispatcher.

        Args:
            db: Database client. If None, uses global instance.
            sender: Delivery channel. If None, notifications are only logged.
            settings: Retry settings. If None, uses NotificationSettings.
            sleep: Backoff sleep, replaceable in tests.
        """
        self.db = db or get_db()
        self.sender = sender or LoggingNotificationSender()
        self._settings = settings or get_settings().notifications
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # Log ids queued or being delivered by this dispatcher
        self._in_flight: set[UUID] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def publish(self, event: LifecycleEvent) -> NotificationLog | None:
        """Queue the notification for a committed transition, if it has one."""
        notification_type = event.notification_type
        if notification_type is None:
            return None

        try:
            with self.db.session() as session:
                entry = NotificationLog(
                    order_id=event.order_id,
                    notification_type=notification_type,
                    status=NotificationStatus.QUEUED.value,
                )
                session.add(entry)
        except Exception as e:
            logger.error(
                "notification_enqueue_failed",
                order_id=str(event.order_id),
                notification_type=notification_type,
                error=str(e),
            )
            return None

        self._enqueue(_Job(entry.log_id, notification_type, event.order_id))
        logger.debug(
            "notification_queued",
            order_id=str(event.order_id),
            notification_type=notification_type,
            log_id=str(entry.log_id),
        )
        return entry

    def start(self) -> None:
        """Requeue stranded notifications and start the consumer thread."""
        if self.is_running:
            return
        recovered = self.requeue_pending()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="notification-dispatcher", daemon=True
        )
        self._thread.start()
        logger.info("notification_worker_started", recovered=recovered)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the consumer thread, then deliver whatever it left queued."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        drained = self.drain()
        logger.info("notification_worker_stopped", drained=drained)

    def drain(self) -> int:
        """Deliver every queued job on the calling thread.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return processed
            if job is _STOP:
                continue
            self._deliver(job)
            processed += 1

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            if job is _STOP:
                break
            try:
                self._deliver(job)
            except Exception:
                logger.exception("notification_worker_error", log_id=str(job.log_id))

    def _enqueue(self, job: _Job) -> None:
        with self._in_flight_lock:
            self._in_flight.add(job.log_id)
        self._queue.put(job)

    def _claim(self, entries: list[NotificationLog]) -> list[_Job]:
        """Mark log rows as in flight, skipping any another path already holds."""
        jobs = []
        with self._in_flight_lock:
            for entry in entries:
                if entry.log_id in self._in_flight:
                    continue
                self._in_flight.add(entry.log_id)
                jobs.append(_Job(entry.log_id, entry.notification_type, entry.order_id))
        return jobs

    def _backoff(self, attempt: int) -> float:
        delay = self._settings.backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self._settings.backoff_max_seconds)

    def _deliver(self, job: _Job) -> bool:
        try:
            return self._attempt_delivery(job)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(job.log_id)

    def _attempt_delivery(self, job: _Job) -> bool:
        """Attempt delivery up to max_attempts times, recording each attempt."""
        max_attempts = max(1, self._settings.max_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                result = self.sender.send(job.notification_type, job.order_id)
            except Exception as e:
                result = SendResult(success=False, error=str(e) or type(e).__name__)

            if result.success:
                self._record_attempt(job.log_id, NotificationStatus.SENT, None)
                logger.info(
                    "notification_delivered",
                    order_id=str(job.order_id),
                    notification_type=job.notification_type,
                    attempts=attempt,
                )
                return True

            final = attempt == max_attempts
            status = NotificationStatus.FAILED if final else NotificationStatus.RETRYING
            self._record_attempt(job.log_id, status, result.error)
            logger.warning(
                "notification_failed",
                order_id=str(job.order_id),
                notification_type=job.notification_type,
                attempt=attempt,
                max_attempts=max_attempts,
                error=result.error,
            )
            if not final:
                self._sleep(self._backoff(attempt))
        return False

    def _record_attempt(
        self, log_id: UUID, status: NotificationStatus, error: str | None
    ) -> None:
        now = datetime.now(timezone.utc)
        with self.db.session() as session:
            entry = session.get(NotificationLog, log_id)
            if entry is None:
                logger.warning("notification_log_missing", log_id=str(log_id))
                return
            entry.attempts += 1
            entry.status = status.value
            entry.last_attempt_ts = now
            entry.error_message = error
            if status == NotificationStatus.SENT:
                entry.sent_ts = now

    def failed(self, limit: int = 50) -> list[NotificationLog]:
        """Notifications that exhausted their attempts, oldest first."""
        with self.db.session() as session:
            stmt = (
                select(NotificationLog)
                .where(NotificationLog.status == NotificationStatus.FAILED.value)
                .order_by(NotificationLog.created_ts)
                .limit(limit)
            )
            return list(session.scalars(stmt))

    def pending(self, limit: int = 50) -> list[NotificationLog]:
        """Stale QUEUED or RETRYING notifications no local job is holding.

        A row is stale once neither its creation nor its last attempt is
        within stale_after_seconds.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(
            seconds=self._settings.stale_after_seconds
        )
        touched = func.coalesce(NotificationLog.last_attempt_ts, NotificationLog.created_ts)
        with self._in_flight_lock:
            in_flight = list(self._in_flight)
        with self.db.session() as session:
            stmt = (
                select(NotificationLog)
                .where(
                    NotificationLog.status.in_(
                        [NotificationStatus.QUEUED.value, NotificationStatus.RETRYING.value]
                    ),
                    touched <= cutoff,
                )
                .order_by(NotificationLog.created_ts)
                .limit(limit)
            )
            if in_flight:
                stmt = stmt.where(NotificationLog.log_id.not_in(in_flight))
            return list(session.scalars(stmt))

    def undelivered(self, limit: int = 50) -> list[NotificationLog]:
        """Stranded and failed notifications, stranded first."""
        entries = self.pending(limit)
        if len(entries) < limit:
            entries += self.failed(limit - len(entries))
        return entries

    def requeue_pending(self, limit: int = 500) -> int:
        """Put stranded notifications back on the queue.

        Returns:
            Number of notifications requeued
        """
        jobs = self._claim(self.pending(limit))
        for job in jobs:
            self._queue.put(job)
        if jobs:
            logger.info("notification_pending_requeued", count=len(jobs))
        return len(jobs)

    def retry_undelivered(self, limit: int = 50) -> int:
        """Redeliver stranded and failed notifications synchronously.

        Returns:
            Number of notifications delivered on this pass
        """
        delivered = 0
        for job in self._claim(self.undelivered(limit)):
            if self._deliver(job):
                delivered += 1
        logger.info("notification_retry_completed", delivered=delivered)
        return delivered
