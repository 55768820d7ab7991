"""
Order lifecycle state machine
"""
from orderflow.state_machine.states import (
    MILESTONE_TIMESTAMPS,
    ORDER_TRANSITIONS,
    ROLE_TRANSITIONS,
    TERMINAL_STATUSES,
    allowed_targets,
    is_valid_transition,
    role_may_transition,
)

__all__ = [
    "MILESTONE_TIMESTAMPS",
    "ORDER_TRANSITIONS",
    "ROLE_TRANSITIONS",
    "TERMINAL_STATUSES",
    "allowed_targets",
    "is_valid_transition",
    "role_may_transition",
]
