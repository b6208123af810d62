"""Pytest configuration and fixtures for RentalFlow tests."""

import time
from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from rentalflow.config import LifecycleSettings, NotificationSettings
from rentalflow.core.fulfillment_service import FulfillmentService
from rentalflow.core.models import Actor, OrderStatus, Role, ScanType
from rentalflow.core.notifications import NotificationDispatcher, SendResult
from rentalflow.core.qr_codes import generate_qr_code
from rentalflow.db.database import Database
from rentalflow.db.schemas import Asset, AssetBooking, Order, OrderItem, ScanEvent

COMPANY = "acme"
OTHER_COMPANY = "globex"

EVENT_START = datetime(2026, 6, 10, 9, 0, tzinfo=timezone.utc)
EVENT_END = datetime(2026, 6, 12, 18, 0, tzinfo=timezone.utc)


class RecordingSender:
    """Notification sender that records calls and fails on demand."""

    def __init__(self):
        self.sent: list[tuple[str, UUID]] = []
        self.attempts = 0
        self.fail_times = 0
        self.raise_error = False
        self.delay = 0.0

    def send(self, notification_type: str, order_id: UUID) -> SendResult:
        self.attempts += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            if self.raise_error:
                raise ConnectionError("smtp unreachable")
            return SendResult(success=False, error="mailbox unavailable")
        self.sent.append((notification_type, order_id))
        return SendResult(success=True)


@pytest.fixture(scope="function")
def db(tmp_path):
    """Provide a clean file-backed SQLite database for each test function.

    A file rather than :memory: so that concurrent threads share one
    database through separate connections.
    """
    database = Database(url=f"sqlite:///{tmp_path / 'rentalflow.db'}", echo=False)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def lifecycle_settings():
    return LifecycleSettings(prep_buffer_days=5, return_buffer_days=3)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def dispatcher(db, sender, sleeps):
    """Dispatcher with no worker thread; tests drain it explicitly."""
    settings = NotificationSettings(
        worker_enabled=False,
        max_attempts=3,
        backoff_seconds=1.0,
        backoff_max_seconds=1.5,
        stale_after_seconds=0.0,
    )
    return NotificationDispatcher(db, sender=sender, settings=settings, sleep=sleeps.append)


@pytest.fixture
def service(db, dispatcher):
    return FulfillmentService(db=db, dispatcher=dispatcher)


@pytest.fixture
def admin():
    return Actor(id="admin@a2.test", role=Role.ADMIN, company_scope=frozenset({"*"}))


@pytest.fixture
def staff():
    return Actor(id="staff@a2.test", role=Role.FULFILLMENT_STAFF, company_scope=frozenset({"*"}))


@pytest.fixture
def client_actor():
    return Actor(id="client@acme.test", role=Role.CLIENT, company_scope=frozenset({COMPANY}))


@pytest.fixture
def outsider():
    return Actor(id="client@globex.test", role=Role.CLIENT, company_scope=frozenset({OTHER_COMPANY}))


@pytest.fixture
def make_asset(db):
    """Factory creating assets."""

    def _make_asset(
        total_quantity: int = 1,
        tracking_method: str = "INDIVIDUAL",
        condition: str = "GREEN",
        name: str = "Chiavari Chair",
        company_id: str = COMPANY,
        qr_code: str | None = None,
        refurb_days_estimate: int | None = None,
    ) -> Asset:
        with db.session() as session:
            asset = Asset(
                asset_id=uuid4(),
                company_id=company_id,
                name=name,
                qr_code=qr_code or f"{generate_qr_code(company_id)}-{uuid4().hex[:6]}",
                tracking_method=tracking_method,
                total_quantity=total_quantity,
                condition=condition,
                refurb_days_estimate=refurb_days_estimate,
            )
            session.add(asset)
        return asset

    return _make_asset


@pytest.fixture
def make_order(db):
    """Factory creating orders with items in a given status."""

    def _make_order(
        items: list[tuple[Asset, int]],
        status: OrderStatus = OrderStatus.QUOTED,
        company_id: str = COMPANY,
        event_start: datetime | None = EVENT_START,
        event_end: datetime | None = EVENT_END,
    ) -> Order:
        with db.session() as session:
            order = Order(
                order_id=uuid4(),
                order_ref=f"ORD-{uuid4().hex[:8].upper()}",
                company_id=company_id,
                status=status.value,
                event_start=event_start,
                event_end=event_end,
                venue_name="Harbour Pavilion",
                venue_city="Dubai",
            )
            for asset, quantity in items:
                order.items.append(
                    OrderItem(asset_id=asset.asset_id, asset_name=asset.name, quantity=quantity)
                )
            session.add(order)
        return order

    return _make_order


@pytest.fixture
def add_booking(db):
    """Insert a booking directly, bypassing the reservation manager."""

    def _add_booking(order: Order, asset: Asset, quantity: int, **window) -> None:
        with db.session() as session:
            session.add(
                AssetBooking(
                    order_id=order.order_id, asset_id=asset.asset_id, quantity=quantity, **window
                )
            )

    return _add_booking


@pytest.fixture
def add_scan(db):
    """Insert a scan event directly, bypassing the ledger's checks."""

    def _add_scan(order: Order, asset: Asset, scan_type: ScanType, quantity: int) -> None:
        with db.session() as session:
            session.add(
                ScanEvent(
                    order_id=order.order_id,
                    asset_id=asset.asset_id,
                    scan_type=scan_type.value,
                    quantity=quantity,
                    condition="GREEN",
                    scanned_by="seed",
                )
            )

    return _add_scan


@pytest.fixture
def order_status(db):
    """Read an order's persisted status."""

    def _order_status(order_id: UUID) -> str:
        with db.session() as session:
            return session.get(Order, order_id).status

    return _order_status


@pytest.fixture
def booking_count(db):
    """Count bookings, optionally for one order."""

    def _booking_count(order_id: UUID | None = None) -> int:
        with db.session() as session:
            stmt = select(func.count()).select_from(AssetBooking)
            if order_id is not None:
                stmt = stmt.where(AssetBooking.order_id == order_id)
            return session.scalar(stmt)

    return _booking_count
