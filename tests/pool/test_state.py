"""
Tests for the worker lifecycle state machine.
"""

import pytest

from hotpool.exceptions import IllegalTransition
from hotpool.state import (
    SERVING_STATES,
    WorkerState,
    can_transition,
    check_transition,
    is_terminal,
    is_valid_path,
    next_state,
)

ORDER = list(WorkerState)


@pytest.mark.unit
class TestTransitions:
    """Test the transition graph."""

    def test_forward_chain(self):
        """Test each state has exactly the next one as forward successor."""
        for current, following in zip(ORDER, ORDER[1:]):
            assert next_state(current) is following
        assert next_state(WorkerState.EXITED) is None

    @pytest.mark.parametrize("state", ORDER[:-1])
    def test_involuntary_exit_from_anywhere(self, state):
        """Test every live state may jump to EXITED."""
        assert can_transition(state, WorkerState.EXITED)

    def test_no_skipping(self):
        """Test forward edges cannot skip a state."""
        assert not can_transition(WorkerState.FORKED, WorkerState.READY)
        assert not can_transition(WorkerState.READY, WorkerState.STOPPING)

    def test_no_going_back(self):
        """Test states never move backwards."""
        assert not can_transition(WorkerState.LISTENING, WorkerState.READY)
        assert not can_transition(WorkerState.STOPPED, WorkerState.LISTENING)

    def test_exited_is_terminal(self):
        """Test EXITED has no outgoing edges."""
        assert is_terminal(WorkerState.EXITED)
        for state in ORDER:
            assert not can_transition(WorkerState.EXITED, state)

    def test_check_transition_raises(self):
        """Test illegal edges raise IllegalTransition with context."""
        with pytest.raises(IllegalTransition) as exc_info:
            check_transition(WorkerState.FORKED, WorkerState.LISTENING)

        assert exc_info.value.context == {"current": "forked", "target": "listening"}

    def test_valid_paths(self):
        """Test full and crash paths are valid, skipping paths are not."""
        assert is_valid_path(ORDER)
        assert is_valid_path([WorkerState.FORKED, WorkerState.ONLINE, WorkerState.EXITED])
        assert not is_valid_path([WorkerState.FORKED, WorkerState.LISTENING])

    def test_serving_states(self):
        """Test the pool counts READY and LISTENING workers."""
        assert SERVING_STATES == {WorkerState.READY, WorkerState.LISTENING}

    def test_str(self):
        """Test states render lower-case."""
        assert str(WorkerState.DISCONNECTED) == "disconnected"
