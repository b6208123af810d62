"""Scan ledger: outbound and inbound scan recording with completeness tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rentalflow.core.access import SHARE_LOCK, load_order
from rentalflow.core.availability import AvailabilityCalculator
from rentalflow.core.exceptions import (
    AssetNotFoundError,
    AssetNotInOrderError,
    IncompleteScanError,
    InvalidScanQuantityError,
    MissingConditionError,
    OverScanError,
    ScanNotPermittedError,
    ValidationError,
    WrongScanPhaseError,
)
from rentalflow.core.models import (
    SCAN_PHASES,
    Actor,
    Condition,
    DiscrepancyReason,
    ScanType,
    TrackingMethod,
)
from rentalflow.core.qr_codes import normalize_qr_code
from rentalflow.core.transitions import can_scan
from rentalflow.db.database import lock_assets
from rentalflow.db.schemas import Asset, AssetConditionHistory, Order, ScanEvent

logger = structlog.get_logger()


@dataclass
class AssetScanProgress:
    """Scan progress of one order item."""

    asset_id: UUID
    asset_name: str
    tracking_method: str
    required: int
    scanned: int

    @property
    def remaining(self) -> int:
        return max(0, self.required - self.scanned)

    @property
    def is_complete(self) -> bool:
        return self.scanned >= self.required

    def to_dict(self) -> dict:
        return {
            "asset_id": str(self.asset_id),
            "asset_name": self.asset_name,
            "tracking_method": self.tracking_method,
            "required_quantity": self.required,
            "scanned_quantity": self.scanned,
            "remaining_quantity": self.remaining,
            "is_complete": self.is_complete,
        }


@dataclass
class ScanProgress:
    """Aggregated scan progress of an order in one direction."""

    order_id: UUID
    scan_type: ScanType
    items: list[AssetScanProgress] = field(default_factory=list)

    @property
    def total_required(self) -> int:
        return sum(item.required for item in self.items)

    @property
    def total_scanned(self) -> int:
        return sum(item.scanned for item in self.items)

    @property
    def percent_complete(self) -> int:
        if self.total_required == 0:
            return 0
        return round(self.total_scanned / self.total_required * 100)

    @property
    def can_complete(self) -> bool:
        return all(item.is_complete for item in self.items)

    def outstanding(self) -> dict[UUID, tuple[int, int]]:
        """Items still short of their required quantity: asset_id -> (scanned, required)."""
        return {
            item.asset_id: (item.scanned, item.required)
            for item in self.items
            if not item.is_complete
        }

    def to_dict(self) -> dict:
        return {
            "order_id": str(self.order_id),
            "scan_type": self.scan_type.value,
            "total_items": self.total_required,
            "items_scanned": self.total_scanned,
            "percent_complete": self.percent_complete,
            "can_complete": self.can_complete,
            "assets": [item.to_dict() for item in self.items],
        }


@dataclass
class ScanResult:
    """Outcome of a recorded scan."""

    event: ScanEvent
    asset: Asset
    progress: ScanProgress


class ScanLedger:
    """Records scan events and derives completeness from them."""

    def __init__(self, calculator: AvailabilityCalculator | None = None):
        self.calculator = calculator or AvailabilityCalculator()

    def record_scan(
        self,
        session: Session,
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
        """Validate and append one scan event.

        The order row is share-locked so the phase cannot change under the
        scan, and the asset row is locked so the over-scan check and the
        insert serialize with other scans of the same asset.

        Raises:
            ScanNotPermittedError: If the actor's role cannot scan
            QrCodeError: If the QR payload is malformed
            OrderNotFoundError: If the order does not exist
            CompanyScopeError: If the order belongs to another company
            WrongScanPhaseError: If the order is not in this direction's phase
            AssetNotFoundError: If no asset carries the QR code
            AssetNotInOrderError: If the asset is not one of the order's items
            InvalidScanQuantityError: If the quantity does not suit the asset
            MissingConditionError: If an inbound scan has no condition
            OverScanError: If the scan would exceed the required quantity
        """
        if not can_scan(actor.role):
            raise ScanNotPermittedError(actor.role.value)

        code = normalize_qr_code(qr_code)
        order = load_order(session, order_id, actor, lock=SHARE_LOCK)
        self._check_phase(order, scan_type)

        asset_id = session.scalar(select(Asset.asset_id).where(Asset.qr_code == code))
        if asset_id is None:
            raise AssetNotFoundError(code)
        asset = lock_assets(session, [asset_id])[asset_id]

        item = next((item for item in order.items if item.asset_id == asset.asset_id), None)
        if item is None:
            raise AssetNotInOrderError(asset.asset_id, order.order_id)

        quantity = self._resolve_quantity(asset, quantity)

        if condition is None:
            if scan_type == ScanType.INBOUND:
                raise MissingConditionError()
            condition = Condition(asset.condition)

        if refurb_days_estimate is not None and refurb_days_estimate < 0:
            raise ValidationError("Refurbishment estimate cannot be negative")

        already_scanned = self.scanned_quantities(session, order.order_id, scan_type).get(
            asset.asset_id, 0
        )
        if already_scanned + quantity > item.quantity:
            logger.warning(
                "over_scan_rejected",
                order_id=str(order.order_id),
                asset_id=str(asset.asset_id),
                scan_type=scan_type.value,
                requested=quantity,
                already_scanned=already_scanned,
                required=item.quantity,
            )
            raise OverScanError(asset.asset_id, quantity, already_scanned, item.quantity)

        now = datetime.now(timezone.utc)
        event = ScanEvent(
            event_ts=now,
            order_id=order.order_id,
            asset_id=asset.asset_id,
            scan_type=scan_type.value,
            quantity=quantity,
            condition=condition.value,
            notes=notes,
            photos=list(photos or []),
            discrepancy_reason=discrepancy_reason.value if discrepancy_reason else None,
            scanned_by=actor.id,
        )
        session.add(event)
        asset.last_scanned_ts = now
        asset.last_scanned_by = actor.id

        if scan_type == ScanType.INBOUND:
            self._record_condition(session, asset, condition, actor, notes, photos, refurb_days_estimate)

        session.flush()
        self.calculator.refresh_status(session, asset)
        progress = self.progress(session, order, scan_type)

        logger.info(
            "scan_recorded",
            order_id=str(order.order_id),
            asset_id=str(asset.asset_id),
            scan_type=scan_type.value,
            quantity=quantity,
            condition=condition.value,
            percent_complete=progress.percent_complete,
        )
        return ScanResult(event=event, asset=asset, progress=progress)

    @staticmethod
    def _check_phase(order: Order, scan_type: ScanType) -> None:
        required_status = SCAN_PHASES[scan_type]
        if order.status != required_status.value:
            raise WrongScanPhaseError(scan_type.value, required_status.value, order.status)

    @staticmethod
    def _resolve_quantity(asset: Asset, quantity: int | None) -> int:
        if asset.tracking_method == TrackingMethod.BATCH.value:
            if quantity is None:
                raise InvalidScanQuantityError("Quantity is required for batch-tracked assets")
            if quantity <= 0:
                raise InvalidScanQuantityError(f"Quantity must be positive, got: {quantity}")
            return quantity

        if quantity is None:
            return 1
        if quantity != 1:
            raise InvalidScanQuantityError(
                f"Individually tracked assets are scanned one unit at a time, got: {quantity}"
            )
        return 1

    @staticmethod
    def _record_condition(
        session: Session,
        asset: Asset,
        condition: Condition,
        actor: Actor,
        notes: str | None,
        photos: list[str] | None,
        refurb_days_estimate: int | None,
    ) -> None:
        if asset.condition != condition.value:
            session.add(
                AssetConditionHistory(
                    asset_id=asset.asset_id,
                    condition=condition.value,
                    notes=notes,
                    photos=list(photos or []),
                    updated_by=actor.id,
                )
            )
            logger.info(
                "asset_condition_changed",
                asset_id=str(asset.asset_id),
                previous=asset.condition,
                condition=condition.value,
            )
            asset.condition = condition.value

        if condition == Condition.GREEN:
            asset.refurb_days_estimate = None
        elif refurb_days_estimate is not None:
            asset.refurb_days_estimate = refurb_days_estimate

    def scanned_quantities(
        self, session: Session, order_id: UUID, scan_type: ScanType
    ) -> dict[UUID, int]:
        """Sum scanned units per asset for an order and direction."""
        stmt = (
            select(ScanEvent.asset_id, func.sum(ScanEvent.quantity))
            .where(ScanEvent.order_id == order_id)
            .where(ScanEvent.scan_type == scan_type.value)
            .group_by(ScanEvent.asset_id)
        )
        return {asset_id: int(total) for asset_id, total in session.execute(stmt)}

    def progress(self, session: Session, order: Order, scan_type: ScanType) -> ScanProgress:
        """Aggregate scan progress for a loaded order."""
        scanned = self.scanned_quantities(session, order.order_id, scan_type)
        items = [
            AssetScanProgress(
                asset_id=item.asset_id,
                asset_name=item.asset_name,
                tracking_method=item.asset.tracking_method,
                required=item.quantity,
                scanned=scanned.get(item.asset_id, 0),
            )
            for item in order.items
        ]
        return ScanProgress(order_id=order.order_id, scan_type=scan_type, items=items)

    def get_progress(
        self, session: Session, order_id: UUID, scan_type: ScanType, actor: Actor
    ) -> ScanProgress:
        """Read scan progress without recording anything."""
        order = load_order(session, order_id, actor)
        return self.progress(session, order, scan_type)

    def require_complete(self, session: Session, order: Order, scan_type: ScanType) -> ScanProgress:
        """Raise IncompleteScanError unless every item is fully scanned."""
        progress = self.progress(session, order, scan_type)
        if not progress.can_complete:
            raise IncompleteScanError(scan_type.value, progress.outstanding())
        return progress

    def order_scan_events(
        self, session: Session, order_id: UUID, scan_type: ScanType | None = None
    ) -> list[ScanEvent]:
        """Scan events of an order, newest first."""
        stmt = select(ScanEvent).where(ScanEvent.order_id == order_id)
        if scan_type is not None:
            stmt = stmt.where(ScanEvent.scan_type == scan_type.value)
        stmt = stmt.order_by(ScanEvent.event_ts.desc())
        return list(session.scalars(stmt))

    def asset_scan_history(
        self, session: Session, asset_id: UUID, limit: int = 100
    ) -> list[ScanEvent]:
        """Scan events of an asset across all orders, newest first."""
        stmt = (
            select(ScanEvent)
            .where(ScanEvent.asset_id == asset_id)
            .order_by(ScanEvent.event_ts.desc())
            .limit(limit)
        )
        return list(session.scalars(stmt))
