"""Pydantic request/response schemas for the RentalFlow API."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from rentalflow.core.models import (
    AssetStatus,
    Condition,
    DiscrepancyReason,
    FinancialStatus,
    OrderStatus,
    Role,
    ScanType,
)


class ScanDirection(str, Enum):
    """Scan direction as it appears in URL paths."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"

    @property
    def scan_type(self) -> ScanType:
        return ScanType[self.name]


# Request models


class StatusUpdateRequest(BaseModel):
    """Request body for an order status change."""

    new_status: OrderStatus = Field(..., description="Target order status")
    note: str | None = Field(None, max_length=2000, description="Note kept in the status history")


class ScanRequest(BaseModel):
    """Request body for outbound/inbound scan endpoints."""

    qr_code: str = Field(..., description="Raw QR code payload from the scanner")
    quantity: int | None = Field(None, description="Units scanned; required for batch assets")
    condition: Condition | None = Field(None, description="Condition observed; required inbound")
    notes: str | None = None
    photos: list[str] = Field(default_factory=list, description="Photo URLs")
    discrepancy_reason: DiscrepancyReason | None = None
    refurb_days_estimate: int | None = Field(None, ge=0)


class CompleteScanRequest(BaseModel):
    """Optional body for closing a scan phase."""

    note: str | None = None


# Response models


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    database: str


class CurrentUserResponse(BaseModel):
    """Response for current actor info."""

    id: str | None
    role: Role | None
    companies: list[str]
    is_authenticated: bool


class OrderResponse(BaseModel):
    """Response for an order after a lifecycle change."""

    order_id: UUID
    order_ref: str
    company_id: str
    status: OrderStatus
    financial_status: FinancialStatus
    event_start: datetime | None
    event_end: datetime | None
    updated_ts: datetime
    # Filled from the calling actor's role
    is_terminal: bool = False
    allowed_next: list[OrderStatus] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class StatusHistoryEntryResponse(BaseModel):
    """One status history entry."""

    id: int
    from_status: OrderStatus | None
    status: OrderStatus
    notes: str | None
    updated_by: str
    event_ts: datetime

    model_config = {"from_attributes": True}


class StatusHistoryResponse(BaseModel):
    """Status history of an order, oldest first."""

    order_id: UUID
    history: list[StatusHistoryEntryResponse]


class ScanEventResponse(BaseModel):
    """Response for a scan event."""

    event_id: UUID
    event_ts: datetime
    order_id: UUID
    asset_id: UUID
    scan_type: ScanType
    quantity: int
    condition: Condition
    notes: str | None
    photos: list[str]
    discrepancy_reason: DiscrepancyReason | None
    scanned_by: str

    model_config = {"from_attributes": True}


class ScanEventListResponse(BaseModel):
    """Scan events, newest first."""

    events: list[ScanEventResponse]
    total: int


class AssetScanProgressResponse(BaseModel):
    """Scan progress of one order item."""

    asset_id: UUID
    asset_name: str
    tracking_method: str
    required_quantity: int
    scanned_quantity: int
    remaining_quantity: int
    is_complete: bool


class ScanProgressResponse(BaseModel):
    """Aggregated scan progress of an order."""

    order_id: UUID
    scan_type: ScanType
    total_items: int
    items_scanned: int
    percent_complete: int
    can_complete: bool
    assets: list[AssetScanProgressResponse]


class ScanResultResponse(BaseModel):
    """Response for a recorded scan."""

    event: ScanEventResponse
    asset_status: AssetStatus
    asset_condition: Condition
    progress: ScanProgressResponse


class AvailabilityResponse(BaseModel):
    """Availability breakdown of an asset."""

    asset_id: UUID
    total: int
    available: int
    booked: int
    out: int
    maintenance: int
    start: datetime | None = None
    end: datetime | None = None


class AssetScanHistoryResponse(BaseModel):
    """Scan history of an asset across orders."""

    asset_id: UUID
    asset_name: str
    qr_code: str
    events: list[ScanEventResponse]


class CartItem(BaseModel):
    """One asset and quantity in a prospective order."""

    asset_id: UUID
    quantity: int = Field(..., ge=1)


class AvailabilityCheckRequest(BaseModel):
    """Request body for checking a cart against an event window."""

    items: list[CartItem] = Field(..., min_length=1)
    event_start: datetime
    event_end: datetime


class ShortItemResponse(BaseModel):
    """A requested item the pool cannot cover."""

    asset_id: UUID
    asset_name: str | None = None
    requested: int
    available: int


class AvailabilityCheckResponse(BaseModel):
    """Result of a cart availability check."""

    all_available: bool
    unavailable_items: list[ShortItemResponse]
