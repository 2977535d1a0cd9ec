"""
Worker lifecycle state machine.

A worker moves strictly forward through:

    FORKED -> ONLINE -> READY -> LISTENING -> STOPPING -> STOPPED
           -> DISCONNECTED -> EXITED

Each arrow is the only legal forward edge. The single exception is the
involuntary edge `* -> EXITED`, taken when the operating system reports that
the process is gone no matter where it was in its lifecycle.

READY is split from LISTENING so the supervisor can hold a fresh worker
just short of serving traffic; a replacement is only committed once the new
worker has independently reached LISTENING.
"""

from enum import IntEnum

from .exceptions import IllegalTransition


class WorkerState(IntEnum):
    """Lifecycle states, ordered from creation to termination."""

    FORKED = 0
    ONLINE = 1
    READY = 2
    LISTENING = 3
    STOPPING = 4
    STOPPED = 5
    DISCONNECTED = 6
    EXITED = 7

    def __str__(self) -> str:
        return self.name.lower()


# States counted by Registry.pool_size()
SERVING_STATES = frozenset({WorkerState.READY, WorkerState.LISTENING})

# States of a worker that has not started serving yet
STARTING_STATES = frozenset({WorkerState.FORKED, WorkerState.ONLINE, WorkerState.READY})

# States a worker passes through on its way out
DRAINING_STATES = frozenset(
    {WorkerState.STOPPING, WorkerState.STOPPED, WorkerState.DISCONNECTED}
)


def next_state(state: WorkerState) -> WorkerState | None:
    """The single forward successor of a state, None for EXITED."""
    if state is WorkerState.EXITED:
        return None
    return WorkerState(state + 1)


def can_transition(current: WorkerState, target: WorkerState) -> bool:
    """
    Check whether current -> target is an edge of the transition graph.

    Args:
        current: State the worker is in
        target: State the worker would move to

    Returns:
        True for the forward edge and for the involuntary edge to EXITED
        (except from EXITED itself)
    """
    if current is WorkerState.EXITED:
        return False
    if target is WorkerState.EXITED:
        return True
    return next_state(current) is target


def check_transition(current: WorkerState, target: WorkerState) -> None:
    """
    Raise unless current -> target is legal.

    Raises:
        IllegalTransition: If the edge is not in the graph
    """
    if not can_transition(current, target):
        raise IllegalTransition(
            f"illegal transition {current} -> {target}",
            current=str(current),
            target=str(target),
        )


def is_terminal(state: WorkerState) -> bool:
    return state is WorkerState.EXITED


def is_valid_path(states: list[WorkerState]) -> bool:
    """True if consecutive states follow legal edges."""
    return all(can_transition(a, b) for a, b in zip(states, states[1:]))
