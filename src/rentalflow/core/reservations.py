"""Booking side effects of entering and leaving the committed range."""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from rentalflow.core.availability import AvailabilityCalculator
from rentalflow.core.exceptions import AssetNotFoundError, InsufficientAvailabilityError
from rentalflow.db.database import lock_assets
from rentalflow.db.schemas import AssetBooking, Order

logger = structlog.get_logger()


class ReservationManager:
    """Creates and removes asset bookings for an order."""

    def __init__(self, calculator: AvailabilityCalculator | None = None):
        self.calculator = calculator or AvailabilityCalculator()

    def reserve(self, session: Session, order: Order) -> list[AssetBooking]:
        """Book every item of the order, or nothing.

        Asset rows are locked before availability is read, so two orders
        competing for the same pool cannot both see the same free units.
        Must run inside the caller's transaction.

        Args:
            session: Active session; the caller commits
            order: Order whose items are booked

        Returns:
            The bookings inserted, one per item

        Raises:
            AssetNotFoundError: If an item references a missing asset
            InsufficientAvailabilityError: If any item exceeds availability
        """
        # Items of the same asset are checked against their combined quantity
        required: dict[UUID, int] = {}
        for item in order.items:
            required[item.asset_id] = required.get(item.asset_id, 0) + item.quantity

        assets = lock_assets(session, required)

        for asset_id, quantity in sorted(required.items()):
            asset = assets.get(asset_id)
            if asset is None:
                raise AssetNotFoundError(asset_id)
            available = self.calculator.calculate(session, asset).available
            if quantity > available:
                logger.warning(
                    "reservation_rejected",
                    order_id=str(order.order_id),
                    asset_id=str(asset_id),
                    requested=quantity,
                    available=available,
                )
                raise InsufficientAvailabilityError(asset_id, quantity, available)

        bookings = []
        for asset_id, quantity in sorted(required.items()):
            asset = assets[asset_id]
            blocked_from, blocked_until = self.calculator.blocked_period(order, asset)
            booking = AssetBooking(
                order_id=order.order_id,
                asset_id=asset_id,
                quantity=quantity,
                blocked_from=blocked_from,
                blocked_until=blocked_until,
            )
            session.add(booking)
            bookings.append(booking)

        session.flush()
        for asset in assets.values():
            self.calculator.refresh_status(session, asset)

        logger.info(
            "bookings_created",
            order_id=str(order.order_id),
            bookings=len(bookings),
            units=sum(required.values()),
        )
        return bookings

    def release(self, session: Session, order_id: UUID) -> int:
        """Delete every booking held by an order.

        Returns:
            Number of bookings deleted
        """
        asset_ids = list(
            session.scalars(select(AssetBooking.asset_id).where(AssetBooking.order_id == order_id))
        )
        if not asset_ids:
            return 0

        assets = lock_assets(session, asset_ids)
        result = session.execute(delete(AssetBooking).where(AssetBooking.order_id == order_id))
        for asset in assets.values():
            self.calculator.refresh_status(session, asset)

        logger.info("bookings_released", order_id=str(order_id), bookings=result.rowcount)
        return result.rowcount

    def bookings_for_order(self, session: Session, order_id: UUID) -> list[AssetBooking]:
        stmt = (
            select(AssetBooking)
            .where(AssetBooking.order_id == order_id)
            .order_by(AssetBooking.asset_id)
        )
        return list(session.scalars(stmt))
