"""FastAPI application for RentalFlow."""

from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from rentalflow import __version__
from rentalflow.api.schemas import (
    AssetScanHistoryResponse,
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    AvailabilityResponse,
    CompleteScanRequest,
    CurrentUserResponse,
    HealthResponse,
    OrderResponse,
    ScanDirection,
    ScanEventListResponse,
    ScanEventResponse,
    ScanProgressResponse,
    ScanRequest,
    ScanResultResponse,
    ShortItemResponse,
    StatusHistoryEntryResponse,
    StatusHistoryResponse,
    StatusUpdateRequest,
)
from rentalflow.api.user import get_current_user
from rentalflow.config import configure_logging, get_settings
from rentalflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RentalFlowError,
    ValidationError,
)
from rentalflow.core.fulfillment_service import FulfillmentService, get_service
from rentalflow.core.models import Actor, OrderStatus
from rentalflow.core.transitions import allowed_next_statuses, is_terminal

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the notification consumer for the lifetime of the app."""
    configure_logging()
    service = get_service()
    if get_settings().notifications.worker_enabled:
        service.dispatcher.start()
    yield
    service.dispatcher.stop()


app = FastAPI(
    title="RentalFlow API",
    description="Order lifecycle, asset reservations and scan ledger for event rentals",
    version=__version__,
    lifespan=lifespan,
)

# CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Hide database failures behind a generic 500."""
    logger.error("database_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _http_error(error: RentalFlowError) -> HTTPException:
    """Map a core error to the HTTP status of its category."""
    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, AuthorizationError):
        status_code = 403
    elif isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, ConflictError):
        status_code = 409
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=str(error))


def require_actor(request: Request) -> Actor:
    """Resolve the calling actor or reject the request with 401."""
    actor = get_current_user(request).to_actor()
    if actor is None:
        raise HTTPException(status_code=401, detail="Actor identity and role are required")
    return actor


@app.get("/api/health", response_model=HealthResponse)
def health(service: FulfillmentService = Depends(get_service)) -> HealthResponse:
    """Health check endpoint with database connectivity status."""
    db_status = "connected" if service.db.health_check() else "disconnected"
    return HealthResponse(status="ok", version=__version__, database=db_status)


@app.get("/api/me", response_model=CurrentUserResponse)
async def get_me(request: Request) -> CurrentUserResponse:
    """Get current actor information.

    Behind the auth proxy the actor comes from X-Forwarded-* / X-Actor-*
    headers. In development, falls back to USER_* environment variables.
    """
    user = get_current_user(request)
    return CurrentUserResponse(
        id=user.id,
        role=user.role,
        companies=sorted(user.companies),
        is_authenticated=user.is_authenticated,
    )


@app.post("/api/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: UUID,
    body: StatusUpdateRequest,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> OrderResponse:
    """Progress an order to a new status.

    Confirming books every item, leaving the committed range releases
    bookings, and closing a scan phase requires complete scanning.
    """
    try:
        order = service.progress_order_status(order_id, body.new_status, actor, body.note)
    except RentalFlowError as e:
        raise _http_error(e) from e
    status = OrderStatus(order.status)
    return OrderResponse.model_validate(order).model_copy(
        update={
            "is_terminal": is_terminal(status),
            "allowed_next": allowed_next_statuses(status, actor.role),
        }
    )


@app.get("/api/orders/{order_id}/status-history", response_model=StatusHistoryResponse)
def get_status_history(
    order_id: UUID,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> StatusHistoryResponse:
    """Get the status history of an order, oldest first."""
    try:
        entries = service.get_order_status_history(order_id, actor)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return StatusHistoryResponse(
        order_id=order_id,
        history=[StatusHistoryEntryResponse.model_validate(entry) for entry in entries],
    )


@app.get("/api/orders/{order_id}/scan-events", response_model=ScanEventListResponse)
def get_order_scan_events(
    order_id: UUID,
    direction: ScanDirection | None = None,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> ScanEventListResponse:
    """Get scan events recorded against an order, newest first."""
    scan_type = direction.scan_type if direction else None
    try:
        events = service.get_order_scan_events(order_id, actor, scan_type)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return ScanEventListResponse(
        events=[ScanEventResponse.model_validate(event) for event in events],
        total=len(events),
    )


@app.post("/api/scanning/{direction}/{order_id}/scan", response_model=ScanResultResponse)
def scan_asset(
    direction: ScanDirection,
    order_id: UUID,
    body: ScanRequest,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> ScanResultResponse:
    """Record an outbound or inbound scan.

    Outbound scans are accepted while the order is IN_PREPARATION and
    inbound scans while it is AWAITING_RETURN.
    """
    try:
        result = service.record_scan(
            order_id=order_id,
            qr_code=body.qr_code,
            scan_type=direction.scan_type,
            actor=actor,
            quantity=body.quantity,
            condition=body.condition,
            notes=body.notes,
            photos=body.photos,
            discrepancy_reason=body.discrepancy_reason,
            refurb_days_estimate=body.refurb_days_estimate,
        )
    except RentalFlowError as e:
        raise _http_error(e) from e

    return ScanResultResponse(
        event=ScanEventResponse.model_validate(result.event),
        asset_status=result.asset.status,
        asset_condition=result.asset.condition,
        progress=ScanProgressResponse(**result.progress.to_dict()),
    )


@app.get("/api/scanning/{direction}/{order_id}/progress", response_model=ScanProgressResponse)
def get_scan_progress(
    direction: ScanDirection,
    order_id: UUID,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> ScanProgressResponse:
    """Get scan progress of an order without recording a scan."""
    try:
        progress = service.get_scan_progress(order_id, direction.scan_type, actor)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return ScanProgressResponse(**progress.to_dict())


@app.post("/api/scanning/{direction}/{order_id}/complete", response_model=OrderResponse)
def complete_scan_phase(
    direction: ScanDirection,
    order_id: UUID,
    body: CompleteScanRequest | None = None,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> OrderResponse:
    """Close a scan phase once every item has been scanned.

    Outbound completion moves the order to READY_FOR_DELIVERY; inbound
    completion releases its bookings and closes it.
    """
    try:
        note = body.note if body else None
        order = service.complete_scan_phase(order_id, actor, direction.scan_type, note)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return OrderResponse.model_validate(order)


@app.get("/api/assets/{asset_id}/availability", response_model=AvailabilityResponse)
def get_asset_availability(
    asset_id: UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> AvailabilityResponse:
    """Get available, booked, out and maintenance quantities of an asset.

    With start and end, only bookings whose blocked window overlaps the
    requested window count as booked.
    """
    try:
        availability = service.get_availability(asset_id, actor, start, end)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return AvailabilityResponse(**availability.to_dict(), start=start, end=end)


@app.post("/api/assets/check-availability", response_model=AvailabilityCheckResponse)
def check_cart_availability(
    request: AvailabilityCheckRequest,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> AvailabilityCheckResponse:
    """Check whether every item of a cart can be covered for an event."""
    items = [(item.asset_id, item.quantity) for item in request.items]
    try:
        short = service.check_availability(items, request.event_start, request.event_end, actor)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return AvailabilityCheckResponse(
        all_available=not short,
        unavailable_items=[
            ShortItemResponse(
                asset_id=item.asset_id,
                asset_name=item.asset_name,
                requested=item.requested,
                available=item.available,
            )
            for item in short
        ],
    )


@app.get("/api/assets/{asset_id}/scan-history", response_model=AssetScanHistoryResponse)
def get_asset_scan_history(
    asset_id: UUID,
    limit: int = 100,
    actor: Actor = Depends(require_actor),
    service: FulfillmentService = Depends(get_service),
) -> AssetScanHistoryResponse:
    """Get scan events of an asset across all orders, newest first."""
    try:
        asset, events = service.get_asset_scan_history(asset_id, actor, limit)
    except RentalFlowError as e:
        raise _http_error(e) from e
    return AssetScanHistoryResponse(
        asset_id=asset.asset_id,
        asset_name=asset.name,
        qr_code=asset.qr_code,
        events=[ScanEventResponse.model_validate(event) for event in events],
    )
