"""Actor-gated trip lifecycle.

Each event is allowed from a fixed set of states and by exactly one role.
Because no two roles share a transition, the table itself is what keeps the
passenger and the driver from stepping on each other; conflicting writes that
still race are settled by the store (last write wins).
"""
from typing import Dict, FrozenSet, Optional, Tuple

from models import Role, TripEvent, TripState
from exceptions import InvalidTransition


# event -> (allowed source states, allowed actor, target state)
# None as a source state stands for "no trip yet".
TRANSITIONS: Dict[TripEvent, Tuple[FrozenSet[Optional[TripState]], Role, TripState]] = {
    TripEvent.REQUEST: (frozenset({None}), Role.RIDER, TripState.REQUESTED),
    TripEvent.ACCEPT: (frozenset({TripState.REQUESTED}), Role.DRIVER, TripState.ACCEPTED),
    TripEvent.REJECT: (frozenset({TripState.REQUESTED}), Role.DRIVER, TripState.REJECTED),
    TripEvent.DRIVER_CANCEL: (
        frozenset({TripState.REQUESTED, TripState.ACCEPTED}), Role.DRIVER, TripState.DRIVER_CANCELLED,
    ),
    TripEvent.PASSENGER_CANCEL: (
        frozenset({TripState.REQUESTED, TripState.ACCEPTED}), Role.RIDER, TripState.PASSENGER_CANCELLED,
    ),
}

TERMINAL_STATES = frozenset({
    TripState.REJECTED,
    TripState.DRIVER_CANCELLED,
    TripState.PASSENGER_CANCELLED,
})

# which side produced each terminal state; the other side deletes the record
_CANCELLED_BY = {
    TripState.REJECTED: Role.DRIVER,
    TripState.DRIVER_CANCELLED: Role.DRIVER,
    TripState.PASSENGER_CANCELLED: Role.RIDER,
}


def transition(state: Optional[TripState], event: TripEvent, role: Role) -> TripState:
    """Return the state reached by applying ``event`` as ``role``.

    Raises InvalidTransition for any (state, event, role) triple not in the
    table. Nothing is mutated, so a rejected event leaves the trip as it was.
    """
    try:
        sources, actor, target = TRANSITIONS[TripEvent(event)]
    except (KeyError, ValueError):
        raise InvalidTransition(state, event, role)
    if Role(role) != actor or state not in sources:
        raise InvalidTransition(state, event, role)
    return target


def is_terminal(state: Optional[TripState]) -> bool:
    return state in TERMINAL_STATES


def cancelling_role(state: TripState) -> Optional[Role]:
    return _CANCELLED_BY.get(state)


def allowed_events(state: Optional[TripState], role: Role):
    return [e for e, (sources, actor, _) in TRANSITIONS.items() if actor == role and state in sources]
