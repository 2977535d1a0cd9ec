"""Property-based tests for the supervisor under arbitrary event sequences."""

import signal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from hotpool.events import (
    ProcessExited,
    RestartRequested,
    ShutdownRequested,
    SignalReceived,
    ThresholdChanged,
)
from hotpool.state import WorkerState, is_valid_path
from tests.helpers.simulation import (
    DIES_AT_START,
    HANGS_BEFORE_LISTENING,
    HEALTHY,
    IGNORES_STOP,
    MB,
    Simulation,
)

# Each action is a tuple whose first element names what happens next
ACTIONS = st.one_of(
    st.tuples(st.just("advance"), st.sampled_from([0.5, 1.0, 5.0, 10.0, 31.0])),
    st.tuples(st.just("exit"), st.integers(0, 20), st.sampled_from([0, 1, -signal.SIGKILL])),
    st.tuples(st.just("sample"), st.integers(0, 20), st.integers(1, 1024)),
    st.tuples(st.just("restart"), st.one_of(st.none(), st.integers(0, 20))),
    st.tuples(st.just("limit"), st.sampled_from([None, 64 * MB, 512 * MB])),
    st.tuples(
        st.just("script"),
        st.sampled_from([HEALTHY, HANGS_BEFORE_LISTENING, IGNORES_STOP, DIES_AT_START]),
    ),
    st.tuples(st.just("signal"), st.sampled_from([signal.SIGHUP, signal.SIGUSR1])),
)


def pick(sim: Simulation, index: int) -> int | None:
    ids = sim.registry.ids()
    if not ids:
        return None
    return ids[index % len(ids)]


def apply(sim: Simulation, action: tuple) -> None:
    kind = action[0]
    if kind == "advance":
        sim.advance(action[1])
    elif kind == "exit":
        worker_id = pick(sim, action[1])
        if worker_id is not None:
            sim.exit(worker_id, action[2])
    elif kind == "sample":
        worker_id = pick(sim, action[1])
        if worker_id is not None:
            sim.rss[worker_id] = action[2] * MB
            sim.sample(worker_id, action[2] * MB)
    elif kind == "restart":
        worker_id = None if action[1] is None else pick(sim, action[1])
        sim.feed(RestartRequested(worker_id))
    elif kind == "limit":
        sim.feed(ThresholdChanged(action[1]))
    elif kind == "script":
        sim.then(action[1])
    elif kind == "signal":
        sim.feed(SignalReceived(action[1]))


def run_scenario(size: int, actions: list[tuple]) -> Simulation:
    sim = Simulation(size=size, memory_limit="256MB")
    sim.start()
    for action in actions:
        apply(sim, action)
        assert sum(1 for r in sim.registry if r.candidate) <= 1
    return sim


@pytest.mark.property
@pytest.mark.unit
class TestPoolProperties:
    """Invariants that hold for any interleaving of pool events."""

    @given(size=st.integers(1, 4), actions=st.lists(ACTIONS, max_size=40))
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_pool_never_exceeds_target_plus_one(self, size, actions):
        """At most one replacement is ever serving on top of the target."""
        sim = run_scenario(size, actions)

        assert max(sim.pool_sizes) <= size + 1

    @given(size=st.integers(1, 3), actions=st.lists(ACTIONS, max_size=40))
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_histories_follow_the_state_graph(self, size, actions):
        """Every worker's recorded states are connected by legal edges."""
        sim = run_scenario(size, actions)
        sim.feed(ShutdownRequested())
        sim.settle(rounds=70)

        for record in sim.records.values():
            assert record.history[0] is WorkerState.FORKED
            assert is_valid_path(record.history)

    @given(size=st.integers(1, 3), actions=st.lists(ACTIONS, max_size=40))
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_pool_recovers_to_target(self, size, actions):
        """Once disturbances stop, exactly the target number of workers listen."""
        sim = run_scenario(size, actions)
        sim.behaviours.clear()
        sim.feed(ThresholdChanged(None))
        sim.settle(rounds=90)

        assert len(sim.listening_ids()) == size
        assert sim.registry.pool_size() == size

    @given(size=st.integers(1, 3), actions=st.lists(ACTIONS, max_size=40))
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_shutdown_closes_every_channel_once(self, size, actions):
        """After shutdown every worker has exited and its channel was closed exactly once."""
        sim = run_scenario(size, actions)
        sim.feed(ShutdownRequested())
        sim.settle(rounds=70)

        assert sim.supervisor.finished
        for worker_id, record in sim.records.items():
            assert record.state is WorkerState.EXITED
            assert sim.channels[worker_id].close_calls == 1

    @given(size=st.integers(1, 3), actions=st.lists(ACTIONS, max_size=30))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_late_exit_reports_are_ignored(self, size, actions):
        """A second exit report for a removed worker changes nothing."""
        sim = run_scenario(size, actions)
        exited = [wid for wid, r in sim.records.items() if r.state is WorkerState.EXITED]
        before = sim.registry.ids()

        for worker_id in exited:
            assert sim.supervisor.handle(ProcessExited(worker_id, 0)) == []

        assert sim.registry.ids() == before
