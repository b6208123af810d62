"""Lifecycle orchestrator: validated status changes and their side effects."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from rentalflow.core.access import UPDATE_LOCK, load_order
from rentalflow.core.availability import as_utc
from rentalflow.core.exceptions import (
    RentalFlowError,
    ScanNotPermittedError,
    ValidationError,
    WrongScanPhaseError,
)
from rentalflow.core.history import StatusHistoryRecorder
from rentalflow.core.models import (
    COMMITTED_STATUSES,
    SCAN_PHASES,
    Actor,
    OrderStatus,
    ScanType,
)
from rentalflow.core.notifications import LifecycleEvent, NotificationDispatcher
from rentalflow.core.reservations import ReservationManager
from rentalflow.core.scanning import ScanLedger
from rentalflow.core.transitions import can_scan, check_transition
from rentalflow.db.database import Database, get_db
from rentalflow.db.schemas import Order, StatusHistoryEntry

logger = structlog.get_logger()

# Status an order moves to when a scan phase is completed
PHASE_COMPLETION: dict[ScanType, OrderStatus] = {
    ScanType.OUTBOUND: OrderStatus.READY_FOR_DELIVERY,
    ScanType.INBOUND: OrderStatus.CLOSED,
}


class LifecycleOrchestrator:
    """Runs every order status change as one transaction."""

    def __init__(
        self,
        db: Database | None = None,
        dispatcher: NotificationDispatcher | None = None,
        reservations: ReservationManager | None = None,
        ledger: ScanLedger | None = None,
        history: StatusHistoryRecorder | None = None,
    ):
        """Initialize orchestrator.

        Args:
            db: Database client. If None, uses global instance.
            dispatcher: Notification queue fed after commit. If None,
                transitions publish nothing.
            reservations: Booking manager. If None, a default one is built.
            ledger: Scan ledger used for completeness checks.
            history: Status history recorder.
        """
        self.db = db or get_db()
        self.dispatcher = dispatcher
        self.reservations = reservations or ReservationManager()
        self.ledger = ledger or ScanLedger(self.reservations.calculator)
        self.history = history or StatusHistoryRecorder()

    def progress_status(
        self,
        order_id: UUID,
        requested_status: OrderStatus,
        actor: Actor,
        note: str | None = None,
    ) -> Order:
        """Move an order to a new status.

        Args:
            order_id: Order to progress
            requested_status: Target status
            actor: Caller requesting the change
            note: Optional note stored in the status history

        Returns:
            The updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            CompanyScopeError: If the order belongs to another company
            InvalidTransitionError: If the change is not an edge of the graph
            TransitionNotPermittedError: If the actor's role lacks the edge
            InsufficientAvailabilityError: If confirming cannot book every item
            IncompleteScanError: If a scan phase is closed early
        """
        with self.db.session() as session:
            order = load_order(session, order_id, actor, lock=UPDATE_LOCK)
            current = OrderStatus(order.status)
            self._transition(session, order, current, requested_status, actor, note)

        self._publish(LifecycleEvent(order.order_id, current, requested_status, actor.id))
        return order

    def complete_scan_phase(
        self,
        order_id: UUID,
        actor: Actor,
        scan_type: ScanType | None = None,
        note: str | None = None,
    ) -> Order:
        """Close the order's current scan phase.

        Outbound completion moves IN_PREPARATION to READY_FOR_DELIVERY;
        inbound completion releases bookings and moves AWAITING_RETURN to
        CLOSED. When scan_type is omitted it is taken from the order status.

        Raises:
            ScanNotPermittedError: If the actor's role cannot scan
            WrongScanPhaseError: If the order is not in the phase's status
            IncompleteScanError: If any item is short of its quantity
        """
        if not can_scan(actor.role):
            raise ScanNotPermittedError(actor.role.value)

        with self.db.session() as session:
            order = load_order(session, order_id, actor, lock=UPDATE_LOCK)
            current = OrderStatus(order.status)
            scan_type = scan_type or _phase_of(current)
            if scan_type is None:
                raise ValidationError(
                    f"Order {order_id} is not in a scan phase. Current status: {current.value}"
                )
            if current != SCAN_PHASES[scan_type]:
                raise WrongScanPhaseError(
                    scan_type.value, SCAN_PHASES[scan_type].value, current.value
                )
            requested = PHASE_COMPLETION[scan_type]
            self._transition(session, order, current, requested, actor, note)

        logger.info(
            "scan_phase_completed",
            order_id=str(order_id),
            scan_type=scan_type.value,
            status=requested.value,
        )
        self._publish(LifecycleEvent(order.order_id, current, requested, actor.id))
        return order

    def _transition(
        self,
        session: Session,
        order: Order,
        current: OrderStatus,
        requested: OrderStatus,
        actor: Actor,
        note: str | None,
    ) -> StatusHistoryEntry:
        check_transition(current, requested, actor.role)

        if current == OrderStatus.IN_PREPARATION and requested == OrderStatus.READY_FOR_DELIVERY:
            self.ledger.require_complete(session, order, ScanType.OUTBOUND)
        if requested == OrderStatus.CLOSED:
            self.ledger.require_complete(session, order, ScanType.INBOUND)

        order.status = requested.value
        session.flush()

        entering = requested in COMMITTED_STATUSES and current not in COMMITTED_STATUSES
        leaving = current in COMMITTED_STATUSES and requested not in COMMITTED_STATUSES
        if entering:
            self.reservations.reserve(session, order)
        elif leaving:
            self.reservations.release(session, order.order_id)

        entry = self.history.append(session, order.order_id, current, requested, actor, note)
        logger.info(
            "status_progressed",
            order_id=str(order.order_id),
            from_status=current.value,
            status=requested.value,
            actor=actor.id,
            role=actor.role.value,
        )
        return entry

    def _publish(self, event: LifecycleEvent) -> None:
        if self.dispatcher is not None:
            self.dispatcher.publish(event)

    def get_status_history(self, order_id: UUID, actor: Actor) -> list[StatusHistoryEntry]:
        """Status history of an order, oldest first."""
        with self.db.session() as session:
            load_order(session, order_id, actor)
            return self.history.list_for_order(session, order_id)

    def advance_event_windows(self, now: datetime | None = None) -> list[tuple[UUID, OrderStatus]]:
        """Move orders along as their event windows open and close.

        DELIVERED orders whose event has started go IN_USE, then IN_USE
        orders whose event has ended go to AWAITING_RETURN. Each order is
        its own transaction; a rejected order is logged and skipped.

        Returns:
            (order_id, new status) for every order moved
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        actor = Actor.system()
        moved: list[tuple[UUID, OrderStatus]] = []

        passes = [
            (OrderStatus.DELIVERED, Order.event_start, OrderStatus.IN_USE),
            (OrderStatus.IN_USE, Order.event_end, OrderStatus.AWAITING_RETURN),
        ]
        for from_status, boundary, to_status in passes:
            with self.db.session() as session:
                order_ids = list(
                    session.scalars(
                        select(Order.order_id)
                        .where(Order.status == from_status.value)
                        .where(boundary.is_not(None))
                        .where(boundary <= now)
                        .order_by(boundary)
                    )
                )
            for order_id in order_ids:
                try:
                    self.progress_status(order_id, to_status, actor, note="Event window reached")
                except RentalFlowError as e:
                    logger.error(
                        "event_window_advance_failed",
                        order_id=str(order_id),
                        status=to_status.value,
                        error=str(e),
                    )
                    continue
                moved.append((order_id, to_status))

        logger.info("event_windows_advanced", moved=len(moved))
        return moved


def _phase_of(status: OrderStatus) -> ScanType | None:
    for scan_type, phase_status in SCAN_PHASES.items():
        if phase_status == status:
            return scan_type
    return None
