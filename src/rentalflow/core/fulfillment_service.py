"""Fulfillment service: the operations exposed to the API and CLI."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog

from rentalflow.core.access import check_scope, load_order
from rentalflow.core.availability import (
    Availability,
    AvailabilityCalculator,
    DateRange,
    ShortItem,
)
from rentalflow.core.exceptions import AssetNotFoundError, InvalidDateRangeError
from rentalflow.core.history import StatusHistoryRecorder
from rentalflow.core.lifecycle import LifecycleOrchestrator
from rentalflow.core.models import Actor, Condition, DiscrepancyReason, OrderStatus, ScanType
from rentalflow.core.notifications import NotificationDispatcher, NotificationSender
from rentalflow.core.reservations import ReservationManager
from rentalflow.core.scanning import ScanLedger, ScanProgress, ScanResult
from rentalflow.db.database import Database, get_db
from rentalflow.db.schemas import Asset, Order, ScanEvent, StatusHistoryEntry

logger = structlog.get_logger()


class FulfillmentService:
    """Business logic for order fulfillment."""

    def __init__(
        self,
        db: Database | None = None,
        sender: NotificationSender | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        """Initialize fulfillment service.

        Args:
            db: Database client. If None, uses global instance.
            sender: Notification channel for the default dispatcher.
            dispatcher: Notification dispatcher. If None, one is built on db.
        """
        self.db = db or get_db()
        self.dispatcher = dispatcher or NotificationDispatcher(self.db, sender=sender)
        self.calculator = AvailabilityCalculator()
        self.ledger = ScanLedger(self.calculator)
        self.orchestrator = LifecycleOrchestrator(
            db=self.db,
            dispatcher=self.dispatcher,
            reservations=ReservationManager(self.calculator),
            ledger=self.ledger,
            history=StatusHistoryRecorder(),
        )

    def progress_order_status(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        actor: Actor,
        note: str | None = None,
    ) -> Order:
        """Move an order to a new status with all side effects."""
        return self.orchestrator.progress_status(order_id, new_status, actor, note)

    def record_scan(
        self,
        order_id: UUID,
        qr_code: str,
        scan_type: ScanType,
        actor: Actor,
        quantity: int | None = None,
        condition: Condition | None = None,
        notes: str | None = None,
        photos: list[str] | None = None,
        discrepancy_reason: DiscrepancyReason | None = None,
        refurb_days_estimate: int | None = None,
    ) -> ScanResult:
        """Record an outbound or inbound scan and return updated progress."""
        with self.db.session() as session:
            return self.ledger.record_scan(
                session,
                order_id,
                qr_code,
                scan_type,
                actor,
                quantity=quantity,
                condition=condition,
                notes=notes,
                photos=photos,
                discrepancy_reason=discrepancy_reason,
                refurb_days_estimate=refurb_days_estimate,
            )

    def complete_scan_phase(
        self,
        order_id: UUID,
        actor: Actor,
        scan_type: ScanType | None = None,
        note: str | None = None,
    ) -> Order:
        """Close the current scan phase once every item is scanned."""
        return self.orchestrator.complete_scan_phase(order_id, actor, scan_type, note)

    def get_scan_progress(self, order_id: UUID, scan_type: ScanType, actor: Actor) -> ScanProgress:
        with self.db.session() as session:
            return self.ledger.get_progress(session, order_id, scan_type, actor)

    def get_availability(
        self,
        asset_id: UUID,
        actor: Actor | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Availability:
        """Availability of an asset, optionally scoped to a date window.

        Raises:
            InvalidDateRangeError: If only one bound is given or end < start
            AssetNotFoundError: If the asset does not exist
            CompanyScopeError: If the asset belongs to another company
        """
        window = DateRange.parse(start, end)
        with self.db.session() as session:
            asset = session.get(Asset, asset_id)
            if asset is None:
                raise AssetNotFoundError(asset_id)
            if actor is not None:
                check_scope(actor, asset.company_id)
            return self.calculator.calculate(session, asset, window)

    def check_availability(
        self,
        items: list[tuple[UUID, int]],
        event_start: datetime | None,
        event_end: datetime | None,
        actor: Actor | None = None,
    ) -> list[ShortItem]:
        """Check whether a cart of assets can be covered for an event.

        Raises:
            InvalidDateRangeError: If a bound is missing or end < start
            CompanyScopeError: If a requested asset belongs to another company
        """
        window = DateRange.parse(event_start, event_end)
        if window is None:
            raise InvalidDateRangeError("Event start and end are required")
        with self.db.session() as session:
            if actor is not None:
                for asset_id, _ in items:
                    asset = session.get(Asset, asset_id)
                    if asset is not None:
                        check_scope(actor, asset.company_id)
            return self.calculator.check_items(session, items, window.start, window.end)

    def get_order_status_history(self, order_id: UUID, actor: Actor) -> list[StatusHistoryEntry]:
        return self.orchestrator.get_status_history(order_id, actor)

    def get_order_scan_events(
        self, order_id: UUID, actor: Actor, scan_type: ScanType | None = None
    ) -> list[ScanEvent]:
        """Scan events recorded against an order, newest first."""
        with self.db.session() as session:
            load_order(session, order_id, actor)
            return self.ledger.order_scan_events(session, order_id, scan_type)

    def get_asset_scan_history(
        self, asset_id: UUID, actor: Actor, limit: int = 100
    ) -> tuple[Asset, list[ScanEvent]]:
        """Scan events of an asset across orders, newest first."""
        with self.db.session() as session:
            asset = session.get(Asset, asset_id)
            if asset is None:
                raise AssetNotFoundError(asset_id)
            check_scope(actor, asset.company_id)
            return asset, self.ledger.asset_scan_history(session, asset_id, limit)

    def advance_event_windows(self, now: datetime | None = None) -> list[tuple[UUID, OrderStatus]]:
        return self.orchestrator.advance_event_windows(now)

    def retry_undelivered_notifications(self, limit: int = 50) -> int:
        return self.dispatcher.retry_undelivered(limit)


# Global service instance
_service: FulfillmentService | None = None


def get_service() -> FulfillmentService:
    """Get the global fulfillment service instance."""
    global _service
    if _service is None:
        _service = FulfillmentService()
    return _service
