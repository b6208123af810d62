"""Order lookup with company-scope enforcement."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from rentalflow.core.exceptions import CompanyScopeError, OrderNotFoundError
from rentalflow.core.models import Actor
from rentalflow.db.schemas import Order

NO_LOCK = None
SHARE_LOCK = {"read": True}
UPDATE_LOCK = True


def check_scope(actor: Actor, company_id: str) -> None:
    """Raise CompanyScopeError unless the actor may act for the company."""
    if not actor.can_access(company_id):
        raise CompanyScopeError(actor.id, company_id)


def load_order(
    session: Session, order_id: UUID, actor: Actor, lock: bool | dict | None = NO_LOCK
) -> Order:
    """Load an order the actor is allowed to see.

    Args:
        session: Active session
        order_id: Order to load
        actor: Caller whose company scope is checked
        lock: SHARE_LOCK or UPDATE_LOCK to hold the row until commit

    Raises:
        OrderNotFoundError: If the order does not exist
        CompanyScopeError: If the order belongs to another company
    """
    if lock is None:
        order = session.get(Order, order_id)
    else:
        order = session.get(Order, order_id, with_for_update=lock, populate_existing=True)
    if order is None:
        raise OrderNotFoundError(order_id)
    check_scope(actor, order.company_id)
    return order
