"""Order status transition graph and role capability table.

Everything in this module is pure: no database access and no logging, so
the tables can be exercised directly from parametrized tests.
"""

from __future__ import annotations

from typing import assert_never

from rentalflow.core.exceptions import InvalidTransitionError, TransitionNotPermittedError
from rentalflow.core.models import OrderStatus, Role

S = OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.SUBMITTED: frozenset({S.PRICING_REVIEW, S.CANCELLED}),
    S.PRICING_REVIEW: frozenset({S.QUOTED, S.PENDING_APPROVAL, S.CANCELLED}),
    S.PENDING_APPROVAL: frozenset({S.QUOTED, S.CANCELLED}),
    S.QUOTED: frozenset({S.CONFIRMED, S.DECLINED, S.CANCELLED}),
    S.DECLINED: frozenset(),
    S.CONFIRMED: frozenset({S.IN_PREPARATION, S.AWAITING_FABRICATION, S.CANCELLED}),
    S.AWAITING_FABRICATION: frozenset({S.IN_PREPARATION, S.CANCELLED}),
    S.IN_PREPARATION: frozenset({S.READY_FOR_DELIVERY}),
    S.READY_FOR_DELIVERY: frozenset({S.IN_TRANSIT}),
    S.IN_TRANSIT: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.IN_USE}),
    S.IN_USE: frozenset({S.AWAITING_RETURN, S.RETURN_IN_TRANSIT}),
    S.RETURN_IN_TRANSIT: frozenset({S.AWAITING_RETURN}),
    S.AWAITING_RETURN: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
    S.CANCELLED: frozenset(),
}

_CLIENT_EDGES = frozenset({(S.QUOTED, S.CONFIRMED), (S.QUOTED, S.DECLINED)})

_STAFF_EDGES = frozenset(
    {
        (S.CONFIRMED, S.IN_PREPARATION),
        (S.IN_PREPARATION, S.READY_FOR_DELIVERY),
        (S.READY_FOR_DELIVERY, S.IN_TRANSIT),
        (S.IN_TRANSIT, S.DELIVERED),
        (S.AWAITING_RETURN, S.CLOSED),
    }
)

_SYSTEM_EDGES = frozenset({(S.DELIVERED, S.IN_USE), (S.IN_USE, S.AWAITING_RETURN)})


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """Check if a status change is an edge of the lifecycle graph."""
    return requested in TRANSITIONS[current]


def role_permits(role: Role, current: OrderStatus, requested: OrderStatus) -> bool:
    """Check the role capability table, ignoring the graph."""
    edge = (current, requested)
    match role:
        case Role.ADMIN:
            return True
        case Role.CLIENT:
            return edge in _CLIENT_EDGES
        case Role.FULFILLMENT_STAFF:
            return edge in _STAFF_EDGES
        case Role.SYSTEM:
            return edge in _SYSTEM_EDGES
        case _:
            assert_never(role)


def is_allowed(current: OrderStatus, requested: OrderStatus, role: Role) -> bool:
    """Decide whether a role may move an order from one status to another."""
    return is_valid_transition(current, requested) and role_permits(role, current, requested)


def check_transition(current: OrderStatus, requested: OrderStatus, role: Role) -> None:
    """Validate a transition, raising the matching error when it is rejected.

    Raises:
        InvalidTransitionError: If the change is not an edge of the graph
        TransitionNotPermittedError: If the edge exists but the role lacks it
    """
    if not is_valid_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)
    if not role_permits(role, current, requested):
        raise TransitionNotPermittedError(role.value, current.value, requested.value)


def allowed_next_statuses(current: OrderStatus, role: Role) -> list[OrderStatus]:
    """List the statuses a role may move an order to, in declaration order."""
    return [status for status in OrderStatus if is_allowed(current, status, role)]


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[status]


def can_scan(role: Role) -> bool:
    """Check if a role may record scans and complete scan phases."""
    match role:
        case Role.FULFILLMENT_STAFF | Role.ADMIN:
            return True
        case Role.CLIENT | Role.SYSTEM:
            return False
        case _:
            assert_never(role)
