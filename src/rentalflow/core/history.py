"""Append-only audit trail of order status transitions."""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from rentalflow.core.models import Actor, OrderStatus
from rentalflow.db.schemas import StatusHistoryEntry

logger = structlog.get_logger()


class StatusHistoryRecorder:
    """Writes and reads status history entries."""

    def append(
        self,
        session: Session,
        order_id: UUID,
        from_status: OrderStatus | None,
        status: OrderStatus,
        actor: Actor,
        note: str | None = None,
    ) -> StatusHistoryEntry:
        """Append one entry for a realized transition."""
        entry = StatusHistoryEntry(
            order_id=order_id,
            from_status=from_status.value if from_status is not None else None,
            status=status.value,
            notes=note,
            updated_by=actor.id,
        )
        session.add(entry)
        session.flush()
        logger.debug(
            "status_history_appended",
            order_id=str(order_id),
            from_status=entry.from_status,
            status=entry.status,
        )
        return entry

    def list_for_order(self, session: Session, order_id: UUID) -> list[StatusHistoryEntry]:
        """Entries for an order, oldest first, ties broken by insertion order."""
        stmt = (
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.order_id == order_id)
            .order_by(StatusHistoryEntry.event_ts, StatusHistoryEntry.id)
        )
        return list(session.scalars(stmt))
