"""Domain models for RentalFlow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment status of an order."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PRICING_REVIEW = "PRICING_REVIEW"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    QUOTED = "QUOTED"
    DECLINED = "DECLINED"
    CONFIRMED = "CONFIRMED"
    AWAITING_FABRICATION = "AWAITING_FABRICATION"
    IN_PREPARATION = "IN_PREPARATION"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    IN_USE = "IN_USE"
    AWAITING_RETURN = "AWAITING_RETURN"
    RETURN_IN_TRANSIT = "RETURN_IN_TRANSIT"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class FinancialStatus(str, Enum):
    """Billing status of an order, progressed by the invoicing flows."""

    PENDING_QUOTE = "PENDING_QUOTE"
    QUOTE_SENT = "QUOTE_SENT"
    QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
    PENDING_INVOICE = "PENDING_INVOICE"
    INVOICED = "INVOICED"
    PAID = "PAID"


class TrackingMethod(str, Enum):
    """How the physical units of an asset are scanned."""

    INDIVIDUAL = "INDIVIDUAL"
    BATCH = "BATCH"


class Condition(str, Enum):
    """Physical condition of an asset."""

    GREEN = "GREEN"
    ORANGE = "ORANGE"
    RED = "RED"


class AssetStatus(str, Enum):
    """Display status of an asset, projected from availability."""

    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"
    OUT = "OUT"
    IN_MAINTENANCE = "IN_MAINTENANCE"


class ScanType(str, Enum):
    """Direction of a scan event."""

    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"


class DiscrepancyReason(str, Enum):
    """Reason recorded when a returned unit is not in the expected state."""

    BROKEN = "BROKEN"
    LOST = "LOST"
    OTHER = "OTHER"


class NotificationStatus(str, Enum):
    """Delivery status of a notification log entry."""

    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


class Role(str, Enum):
    """Role of the actor performing an operation."""

    CLIENT = "CLIENT"
    FULFILLMENT_STAFF = "FULFILLMENT_STAFF"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


# Statuses during which an order holds asset bookings
COMMITTED_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.AWAITING_FABRICATION,
        OrderStatus.IN_PREPARATION,
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.IN_USE,
        OrderStatus.RETURN_IN_TRANSIT,
        OrderStatus.AWAITING_RETURN,
    }
)

# Order status in which each scan direction is accepted
SCAN_PHASES: dict[ScanType, OrderStatus] = {
    ScanType.OUTBOUND: OrderStatus.IN_PREPARATION,
    ScanType.INBOUND: OrderStatus.AWAITING_RETURN,
}

WILDCARD_COMPANY = "*"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as supplied by the auth provider."""

    id: str
    role: Role
    company_scope: frozenset[str] = field(default_factory=frozenset)

    def can_access(self, company_id: str) -> bool:
        """Check if the actor may act on records owned by a company."""
        return WILDCARD_COMPANY in self.company_scope or company_id in self.company_scope

    @classmethod
    def system(cls) -> "Actor":
        """Actor used for automated transitions."""
        return cls(
            id="system",
            role=Role.SYSTEM,
            company_scope=frozenset({WILDCARD_COMPANY}),
        )
