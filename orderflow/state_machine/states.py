"""
Order lifecycle: allowed edges, milestone columns and who may drive each edge
"""
from orderflow.db.models.order import OrderStatus
from orderflow.db.models.user import UserRole

TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.REJECTED,
    OrderStatus.CANCELLED,
})

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_CONFIRMATION: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.REJECTED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.ASSIGNED_RIDER, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED_RIDER: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.IN_TRANSIT}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Order column stamped when the status is entered
MILESTONE_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.ASSIGNED_RIDER: "assigned_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.IN_TRANSIT: "in_transit_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.REJECTED: "rejected_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# Edges a non-staff role may drive; staff may drive any allowed edge
ROLE_TRANSITIONS: dict[UserRole, frozenset[tuple[OrderStatus, OrderStatus]]] = {
    UserRole.RESTAURANT: frozenset({
        (OrderStatus.PENDING_CONFIRMATION, OrderStatus.CONFIRMED),
        (OrderStatus.PENDING_CONFIRMATION, OrderStatus.REJECTED),
        (OrderStatus.CONFIRMED, OrderStatus.PREPARING),
        (OrderStatus.PREPARING, OrderStatus.READY),
    }),
    UserRole.RIDER: frozenset({
        (OrderStatus.ASSIGNED_RIDER, OrderStatus.PICKED_UP),
        (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT),
        (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED),
    }),
    UserRole.CUSTOMER: frozenset({
        (OrderStatus.PENDING_CONFIRMATION, OrderStatus.CANCELLED),
    }),
}


def allowed_targets(current: OrderStatus) -> frozenset[OrderStatus]:
    return ORDER_TRANSITIONS.get(current, frozenset())


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in allowed_targets(current)


def role_may_transition(role: UserRole, current: OrderStatus, target: OrderStatus) -> bool:
    if role in (UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT):
        return True
    return (current, target) in ROLE_TRANSITIONS.get(role, frozenset())
