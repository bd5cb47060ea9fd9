"""Simple finite state machine utility for enforcing allowed status transitions.

Used by the request lifecycle and the dispatcher task lifecycle:

    REQUEST_FSM = TransitionValidator({
        RequestStatus.PENDING: {RequestStatus.IN_PROGRESS},
        RequestStatus.IN_PROGRESS: {RequestStatus.COMPLETED},
        RequestStatus.COMPLETED: set(),
    })
    REQUEST_FSM.assert_can_transition(current_status, target_status)

Raises InvalidTransitionError if the transition is not in the graph.
"""

from enum import Enum
from typing import Dict, Set

from fieldservice.core.exceptions import InvalidTransitionError


def _label(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class TransitionValidator:
    def __init__(self, graph: Dict[Enum, Set[Enum]], field_name: str = "status"):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current, target) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current, target) -> bool:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(_label(current), _label(target))
        return True

    def is_terminal(self, state) -> bool:
        return not self.graph.get(state)


__all__ = ["TransitionValidator"]
