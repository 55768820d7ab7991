"""
Tests for the order lifecycle graph and role permissions
"""
import itertools

import pytest

from orderflow.db.models.order import OrderStatus
from orderflow.db.models.user import UserRole
from orderflow.state_machine import (
    MILESTONE_TIMESTAMPS,
    TERMINAL_STATUSES,
    allowed_targets,
    is_valid_transition,
    role_may_transition,
)

S = OrderStatus

EXPECTED_EDGES = {
    (S.PENDING_CONFIRMATION, S.CONFIRMED),
    (S.PENDING_CONFIRMATION, S.REJECTED),
    (S.PENDING_CONFIRMATION, S.CANCELLED),
    (S.CONFIRMED, S.PREPARING),
    (S.CONFIRMED, S.CANCELLED),
    (S.PREPARING, S.READY),
    (S.PREPARING, S.CANCELLED),
    (S.READY, S.ASSIGNED_RIDER),
    (S.READY, S.CANCELLED),
    (S.ASSIGNED_RIDER, S.PICKED_UP),
    (S.ASSIGNED_RIDER, S.CANCELLED),
    (S.PICKED_UP, S.IN_TRANSIT),
    (S.IN_TRANSIT, S.DELIVERED),
}


class TestTransitions:

    @pytest.mark.unit
    @pytest.mark.parametrize("current,target", list(itertools.product(OrderStatus, OrderStatus)))
    def test_every_pair(self, current, target):
        assert is_valid_transition(current, target) is ((current, target) in EXPECTED_EDGES)

    @pytest.mark.unit
    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, status):
        assert allowed_targets(status) == frozenset()

    @pytest.mark.unit
    def test_no_cancellation_once_picked_up(self):
        assert not is_valid_transition(S.PICKED_UP, S.CANCELLED)
        assert not is_valid_transition(S.IN_TRANSIT, S.CANCELLED)

    @pytest.mark.unit
    def test_every_reachable_status_has_a_milestone_column(self):
        targets = {target for _, target in EXPECTED_EDGES}
        assert targets == set(MILESTONE_TIMESTAMPS)


class TestRolePermissions:

    @pytest.mark.unit
    @pytest.mark.parametrize("role", [UserRole.OWNER, UserRole.CITY_ADMIN, UserRole.AGENT])
    def test_staff_may_drive_every_edge(self, role):
        assert all(role_may_transition(role, c, t) for c, t in EXPECTED_EDGES)

    @pytest.mark.unit
    def test_restaurant_edges(self):
        assert role_may_transition(UserRole.RESTAURANT, S.PENDING_CONFIRMATION, S.CONFIRMED)
        assert role_may_transition(UserRole.RESTAURANT, S.PENDING_CONFIRMATION, S.REJECTED)
        assert role_may_transition(UserRole.RESTAURANT, S.PREPARING, S.READY)
        assert not role_may_transition(UserRole.RESTAURANT, S.READY, S.ASSIGNED_RIDER)
        assert not role_may_transition(UserRole.RESTAURANT, S.IN_TRANSIT, S.DELIVERED)

    @pytest.mark.unit
    def test_rider_edges(self):
        assert role_may_transition(UserRole.RIDER, S.ASSIGNED_RIDER, S.PICKED_UP)
        assert role_may_transition(UserRole.RIDER, S.IN_TRANSIT, S.DELIVERED)
        assert not role_may_transition(UserRole.RIDER, S.PENDING_CONFIRMATION, S.CONFIRMED)
        assert not role_may_transition(UserRole.RIDER, S.ASSIGNED_RIDER, S.CANCELLED)

    @pytest.mark.unit
    def test_customer_may_only_cancel_before_confirmation(self):
        assert role_may_transition(UserRole.CUSTOMER, S.PENDING_CONFIRMATION, S.CANCELLED)
        assert not role_may_transition(UserRole.CUSTOMER, S.CONFIRMED, S.CANCELLED)
