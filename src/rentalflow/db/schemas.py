"""SQLAlchemy ORM models for RentalFlow."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _in_list(column: str, values: list[str]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


ORDER_STATUSES = [
    "DRAFT", "SUBMITTED", "PRICING_REVIEW", "PENDING_APPROVAL", "QUOTED",
    "DECLINED", "CONFIRMED", "AWAITING_FABRICATION", "IN_PREPARATION",
    "READY_FOR_DELIVERY", "IN_TRANSIT", "DELIVERED", "IN_USE",
    "AWAITING_RETURN", "RETURN_IN_TRANSIT", "CLOSED", "CANCELLED",
]
CONDITIONS = ["GREEN", "ORANGE", "RED"]


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


class Asset(Base):
    """Physical inventory item, tracked individually or as a batch."""

    __tablename__ = "assets"

    asset_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    qr_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    tracking_method: Mapped[str] = mapped_column(Text, nullable=False)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    condition: Mapped[str] = mapped_column(Text, nullable=False, default="GREEN")
    status: Mapped[str] = mapped_column(Text, nullable=False, default="AVAILABLE")
    refurb_days_estimate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_scanned_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_scanned_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    __table_args__ = (
        CheckConstraint("tracking_method IN ('INDIVIDUAL', 'BATCH')", name="ck_tracking_method"),
        CheckConstraint(_in_list("condition", CONDITIONS), name="ck_asset_condition"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'BOOKED', 'OUT', 'IN_MAINTENANCE')",
            name="ck_asset_status",
        ),
        CheckConstraint("total_quantity >= 0", name="ck_total_quantity"),
        Index("idx_assets_company", "company_id"),
    )


class Order(Base):
    """Event rental order progressing through the fulfillment lifecycle."""

    __tablename__ = "orders"

    order_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_ref: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="DRAFT")
    financial_status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING_QUOTE")
    event_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    event_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    venue_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    venue_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    items: Mapped[list[OrderItem]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.created_ts"
    )

    __table_args__ = (
        CheckConstraint(_in_list("status", ORDER_STATUSES), name="ck_order_status"),
        Index("idx_orders_company_status", "company_id", "status"),
    )


class OrderItem(Base):
    """Asset line on an order, snapshotted at submission time."""

    __tablename__ = "order_items"

    item_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    asset_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("assets.asset_id"), nullable=False)
    asset_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_volume: Mapped[Decimal] = mapped_column(Numeric(10, 3), default=Decimal("0"))
    unit_weight: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    created_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    order: Mapped[Order] = relationship(back_populates="items")
    asset: Mapped[Asset] = relationship()

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_item_quantity"),
        UniqueConstraint("order_id", "asset_id", name="uq_order_items_order_asset"),
    )


class AssetBooking(Base):
    """Quantity of an asset committed to an order in the committed range."""

    __tablename__ = "asset_bookings"

    booking_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    asset_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("assets.asset_id", ondelete="CASCADE"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    blocked_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    blocked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_quantity"),
        UniqueConstraint("order_id", "asset_id", name="uq_asset_bookings_order_asset"),
        Index("idx_asset_bookings_asset", "asset_id"),
    )


class ScanEvent(Base):
    """Append-only record of an outbound or inbound scan."""

    __tablename__ = "scan_events"

    event_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    order_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("orders.order_id"), nullable=False)
    asset_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("assets.asset_id"), nullable=False)
    scan_type: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    condition: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    photos: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    discrepancy_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    scanned_by: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        CheckConstraint("scan_type IN ('OUTBOUND', 'INBOUND')", name="ck_scan_type"),
        CheckConstraint("quantity > 0", name="ck_scan_quantity_positive"),
        CheckConstraint(_in_list("condition", CONDITIONS), name="ck_scan_condition"),
        CheckConstraint(
            "discrepancy_reason IS NULL OR discrepancy_reason IN ('BROKEN', 'LOST', 'OTHER')",
            name="ck_discrepancy_reason",
        ),
        Index("idx_scan_events_order_type", "order_id", "scan_type"),
        Index("idx_scan_events_asset_ts", "asset_id", "event_ts"),
    )


class StatusHistoryEntry(Base):
    """Append-only audit entry for one realized status transition."""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("orders.order_id"), nullable=False)
    from_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[str] = mapped_column(Text, nullable=False)
    event_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        CheckConstraint(_in_list("status", ORDER_STATUSES), name="ck_history_status"),
        Index("idx_order_status_history_order_ts", "order_id", "event_ts"),
    )


class AssetConditionHistory(Base):
    """Append-only log of asset condition changes."""

    __tablename__ = "asset_condition_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("assets.asset_id", ondelete="CASCADE"), nullable=False
    )
    condition: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    photos: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    updated_by: Mapped[str] = mapped_column(Text, nullable=False)
    event_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        CheckConstraint(_in_list("condition", CONDITIONS), name="ck_history_condition"),
        Index("idx_asset_condition_history_asset_ts", "asset_id", "event_ts"),
    )


class NotificationLog(Base):
    """Delivery attempts for a lifecycle notification."""

    __tablename__ = "notification_logs"

    log_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    notification_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="QUEUED")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sent_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        CheckConstraint(
            "status IN ('QUEUED', 'SENT', 'FAILED', 'RETRYING')", name="ck_notification_status"
        ),
        Index("idx_notification_logs_status", "status"),
        Index("idx_notification_logs_order_type", "order_id", "notification_type"),
    )


class AppendOnlyViolation(RuntimeError):
    """Raised when a ledger row is about to be updated or deleted."""

    pass


APPEND_ONLY_MODELS = (ScanEvent, StatusHistoryEntry, AssetConditionHistory)


@event.listens_for(Session, "before_flush")
def _guard_append_only(session: Session, flush_context, instances) -> None:
    for obj in list(session.dirty) + list(session.deleted):
        if isinstance(obj, APPEND_ONLY_MODELS) and (
            obj in session.deleted or session.is_modified(obj)
        ):
            raise AppendOnlyViolation(f"{type(obj).__name__} rows are append-only")
