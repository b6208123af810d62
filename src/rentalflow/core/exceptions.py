"""Exception types raised by the RentalFlow core.

Exception hierarchy:
    RentalFlowError
    ├── ValidationError
    │   ├── InvalidTransitionError
    │   ├── WrongScanPhaseError
    │   ├── OverScanError
    │   ├── InvalidScanQuantityError
    │   ├── MissingConditionError
    │   ├── AssetNotInOrderError
    │   ├── QrCodeError
    │   └── InvalidDateRangeError
    ├── AuthorizationError
    │   ├── TransitionNotPermittedError
    │   ├── ScanNotPermittedError
    │   └── CompanyScopeError
    ├── NotFoundError
    │   ├── OrderNotFoundError
    │   └── AssetNotFoundError
    └── ConflictError
        ├── InsufficientAvailabilityError
        └── IncompleteScanError
"""

from __future__ import annotations

from uuid import UUID


class RentalFlowError(Exception):
    """Base exception for all core errors."""

    pass


class ValidationError(RentalFlowError):
    """Raised when a request is malformed or illegal in the current state."""

    pass


class AuthorizationError(RentalFlowError):
    """Raised when the actor may not perform the requested operation."""

    pass


class NotFoundError(RentalFlowError):
    """Raised when a referenced record does not exist."""

    pass


class ConflictError(RentalFlowError):
    """Raised when a business rule rejects an otherwise valid request."""

    pass


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not an edge of the lifecycle graph."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid state transition from {from_status} to {to_status}")


class TransitionNotPermittedError(AuthorizationError):
    """Raised when the actor's role may not exercise a transition."""

    def __init__(self, role: str, from_status: str, to_status: str):
        self.role = role
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Role {role} does not have permission to transition "
            f"from {from_status} to {to_status}"
        )


class ScanNotPermittedError(AuthorizationError):
    """Raised when the actor's role may not record scans."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Role {role} does not have permission to scan assets")


class CompanyScopeError(AuthorizationError):
    """Raised when a record belongs to a company outside the actor's scope."""

    def __init__(self, actor_id: str, company_id: str):
        self.actor_id = actor_id
        self.company_id = company_id
        super().__init__(f"Actor {actor_id} does not have access to company {company_id}")


class OrderNotFoundError(NotFoundError):
    """Raised when an order cannot be found."""

    def __init__(self, order_id: UUID | str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class AssetNotFoundError(NotFoundError):
    """Raised when an asset cannot be found by id or QR code."""

    def __init__(self, reference: UUID | str):
        self.reference = reference
        super().__init__(f"Asset not found: {reference}")


class WrongScanPhaseError(ValidationError):
    """Raised when a scan does not match the order's current phase."""

    def __init__(self, scan_type: str, required_status: str, current_status: str):
        self.scan_type = scan_type
        self.required_status = required_status
        self.current_status = current_status
        super().__init__(
            f"{scan_type} scans require order status {required_status}. "
            f"Current status: {current_status}"
        )


class OverScanError(ValidationError):
    """Raised when a scan would exceed the item's required quantity."""

    def __init__(self, asset_id: UUID, requested: int, already_scanned: int, required: int):
        self.asset_id = asset_id
        self.requested = requested
        self.already_scanned = already_scanned
        self.required = required
        super().__init__(
            f"Cannot scan {requested} unit(s) of asset {asset_id}. "
            f"Already scanned: {already_scanned}, Required: {required}"
        )


class InvalidScanQuantityError(ValidationError):
    """Raised when a scan quantity is missing or not allowed for the asset."""

    pass


class MissingConditionError(ValidationError):
    """Raised when an inbound scan does not report the asset condition."""

    def __init__(self):
        super().__init__("Condition is required for inbound scans")


class AssetNotInOrderError(ValidationError):
    """Raised when a scanned asset is not one of the order's items."""

    def __init__(self, asset_id: UUID, order_id: UUID):
        self.asset_id = asset_id
        self.order_id = order_id
        super().__init__(f"Asset {asset_id} is not in order {order_id}")


class QrCodeError(ValidationError):
    """Raised when a QR code payload cannot be used."""

    pass


class InvalidDateRangeError(ValidationError):
    """Raised when an availability window is malformed."""

    pass


class InsufficientAvailabilityError(ConflictError):
    """Raised when an asset cannot cover a requested booking."""

    def __init__(self, asset_id: UUID, requested: int, available: int):
        self.asset_id = asset_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient availability for asset {asset_id}. "
            f"Available: {available}, Requested: {requested}"
        )


class IncompleteScanError(ConflictError):
    """Raised when a phase is closed before every item has been scanned."""

    def __init__(self, scan_type: str, outstanding: dict[UUID, tuple[int, int]]):
        self.scan_type = scan_type
        # asset_id -> (scanned, required)
        self.outstanding = outstanding
        details = ", ".join(
            f"{asset_id}: {scanned}/{required}"
            for asset_id, (scanned, required) in outstanding.items()
        )
        super().__init__(f"{scan_type} scanning is not complete ({details})")
