"""Availability derived from bookings, the scan ledger, and asset condition.

Every caller goes through AvailabilityCalculator so there is exactly one
formula:

    available = max(0, total - booked - out - maintenance)

where ``booked`` sums bookings of orders in the committed range, ``out`` is
the net OUTBOUND minus INBOUND across all orders, and ``maintenance`` is the
whole total for a RED asset.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from rentalflow.config import LifecycleSettings, get_settings
from rentalflow.core.exceptions import (
    AssetNotFoundError,
    InvalidDateRangeError,
    ValidationError,
)
from rentalflow.core.models import COMMITTED_STATUSES, AssetStatus, Condition, ScanType
from rentalflow.db.schemas import Asset, AssetBooking, Order, ScanEvent

logger = structlog.get_logger()

_COMMITTED_VALUES = sorted(status.value for status in COMMITTED_STATUSES)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class DateRange:
    """Closed interval used to scope booking overlap."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidDateRangeError("Date range bounds must be timezone-aware")
        if self.end < self.start:
            raise InvalidDateRangeError(
                f"Date range end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )

    @classmethod
    def parse(cls, start: datetime | None, end: datetime | None) -> "DateRange | None":
        """Build a range from optional query bounds; both or neither must be set."""
        if start is None and end is None:
            return None
        if start is None or end is None:
            raise InvalidDateRangeError("Both start and end are required for a date range")
        return cls(as_utc(start), as_utc(end))


@dataclass(frozen=True)
class Availability:
    """Quantities of one asset at a point in time."""

    asset_id: UUID
    total: int
    booked: int
    out: int
    maintenance: int

    @property
    def available(self) -> int:
        return max(0, self.total - self.booked - self.out - self.maintenance)

    def to_dict(self) -> dict:
        return {
            "asset_id": str(self.asset_id),
            "total": self.total,
            "available": self.available,
            "booked": self.booked,
            "out": self.out,
            "maintenance": self.maintenance,
        }


@dataclass(frozen=True)
class ShortItem:
    """A requested item the pool cannot cover."""

    asset_id: UUID
    asset_name: str | None
    requested: int
    available: int


class AvailabilityCalculator:
    """Computes availability from the booking table and scan ledger."""

    def __init__(self, settings: LifecycleSettings | None = None):
        self._settings = settings or get_settings().lifecycle

    def booked_quantity(
        self, session: Session, asset_id: UUID, window: DateRange | None = None
    ) -> int:
        """Sum bookings for the asset held by orders in the committed range.

        With a window, only bookings whose blocked window overlaps it are
        counted. Bookings without a blocked window always count.
        """
        stmt = (
            select(func.coalesce(func.sum(AssetBooking.quantity), 0))
            .join(Order, Order.order_id == AssetBooking.order_id)
            .where(AssetBooking.asset_id == asset_id)
            .where(Order.status.in_(_COMMITTED_VALUES))
        )
        if window is not None:
            stmt = stmt.where(
                or_(
                    AssetBooking.blocked_from.is_(None),
                    AssetBooking.blocked_until.is_(None),
                    and_(
                        AssetBooking.blocked_from <= window.end,
                        AssetBooking.blocked_until >= window.start,
                    ),
                )
            )
        return int(session.scalar(stmt))

    def out_quantity(self, session: Session, asset_id: UUID) -> int:
        """Net units dispatched and not yet returned, across all orders."""
        signed = case(
            (ScanEvent.scan_type == ScanType.OUTBOUND.value, ScanEvent.quantity),
            else_=-ScanEvent.quantity,
        )
        stmt = select(func.coalesce(func.sum(signed), 0)).where(ScanEvent.asset_id == asset_id)
        return max(0, int(session.scalar(stmt)))

    @staticmethod
    def maintenance_quantity(asset: Asset) -> int:
        # A RED asset is wholly unavailable, whatever its tracking method
        if asset.condition == Condition.RED.value:
            return asset.total_quantity
        return 0

    def calculate(
        self, session: Session, asset: Asset, window: DateRange | None = None
    ) -> Availability:
        """Compute availability for a loaded asset."""
        return Availability(
            asset_id=asset.asset_id,
            total=asset.total_quantity,
            booked=self.booked_quantity(session, asset.asset_id, window),
            out=self.out_quantity(session, asset.asset_id),
            maintenance=self.maintenance_quantity(asset),
        )

    def for_asset_id(
        self, session: Session, asset_id: UUID, window: DateRange | None = None
    ) -> Availability:
        """Compute availability for an asset by id.

        Raises:
            AssetNotFoundError: If the asset does not exist
        """
        asset = session.get(Asset, asset_id)
        if asset is None:
            raise AssetNotFoundError(asset_id)
        return self.calculate(session, asset, window)

    def blocked_period(
        self, order: Order, asset: Asset
    ) -> tuple[datetime | None, datetime | None]:
        """Widen the order's event window by the prep and return buffers."""
        return self.blocked_window(asset, order.event_start, order.event_end)

    def blocked_window(
        self, asset: Asset, event_start: datetime | None, event_end: datetime | None
    ) -> tuple[datetime | None, datetime | None]:
        """Widen an event window by the prep and return buffers.

        Assets awaiting refurbishment are blocked for their estimate on top
        of the preparation buffer.
        """
        if event_start is None or event_end is None:
            return None, None
        lead_days = self._settings.prep_buffer_days + (asset.refurb_days_estimate or 0)
        blocked_from = as_utc(event_start) - timedelta(days=lead_days)
        blocked_until = as_utc(event_end) + timedelta(days=self._settings.return_buffer_days)
        return blocked_from, blocked_until

    def check_items(
        self,
        session: Session,
        items: Iterable[tuple[UUID, int]],
        event_start: datetime,
        event_end: datetime,
    ) -> list[ShortItem]:
        """Items of a prospective order that cannot be covered for its event.

        Each asset is checked over its own blocked window, so the buffers and
        any refurbishment estimate apply as they would on confirmation.
        Repeated assets are summed; unknown assets have nothing available.

        Returns:
            Short items in request order, empty when everything fits
        """
        event = DateRange(as_utc(event_start), as_utc(event_end))
        requested: dict[UUID, int] = {}
        for asset_id, quantity in items:
            if quantity < 1:
                raise ValidationError(f"Requested quantity must be at least 1, got {quantity}")
            requested[asset_id] = requested.get(asset_id, 0) + quantity

        short = []
        for asset_id, quantity in requested.items():
            asset = session.get(Asset, asset_id)
            if asset is None:
                short.append(ShortItem(asset_id, None, quantity, 0))
                continue
            blocked_from, blocked_until = self.blocked_window(asset, event.start, event.end)
            available = self.calculate(
                session, asset, DateRange(blocked_from, blocked_until)
            ).available
            if available < quantity:
                short.append(ShortItem(asset_id, asset.name, quantity, available))

        logger.debug(
            "availability_checked",
            items=len(requested),
            short=len(short),
            event_start=event.start.isoformat(),
        )
        return short

    def refresh_status(self, session: Session, asset: Asset) -> AssetStatus:
        """Recompute the asset's display status from its availability."""
        session.flush()
        availability = self.calculate(session, asset)
        if availability.maintenance:
            status = AssetStatus.IN_MAINTENANCE
        elif availability.out:
            status = AssetStatus.OUT
        elif availability.booked:
            status = AssetStatus.BOOKED
        else:
            status = AssetStatus.AVAILABLE

        if asset.status != status.value:
            logger.debug(
                "asset_status_projected",
                asset_id=str(asset.asset_id),
                previous=asset.status,
                status=status.value,
            )
            asset.status = status.value
        return status
