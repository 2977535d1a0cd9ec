"""
Tests for pool hooks, counters and alerts.
"""

import pytest

from hotpool.observability import ALERT_EVENTS, HookContext, HookEvent, PoolHooks


@pytest.fixture
def hooks():
    return PoolHooks(max_alerts=3)


@pytest.mark.unit
class TestPoolHooks:
    """Test hook registration and triggering."""

    def test_register_and_trigger(self, hooks):
        """Test a registered callback receives the context."""
        received: list[HookContext] = []
        hooks.register(HookEvent.CRASH, received.append)

        hooks.trigger(HookEvent.CRASH, 4, exit_code=-11)

        assert len(received) == 1
        assert received[0].worker_id == 4
        assert received[0].data == {"exit_code": -11}

    def test_decorator(self, hooks):
        """Test on() registers and returns the function."""
        calls = []

        @hooks.on(HookEvent.SHUTDOWN)
        def on_shutdown(ctx):
            calls.append(ctx.data["reason"])

        hooks.trigger(HookEvent.SHUTDOWN, reason="SIGTERM")

        assert calls == ["SIGTERM"]
        assert callable(on_shutdown)

    def test_global_hook(self, hooks):
        """Test global hooks see every event."""
        events = []
        hooks.register_global(lambda ctx: events.append(ctx.event))

        hooks.trigger(HookEvent.WORKER_SPAWNED, 1)
        hooks.trigger(HookEvent.WORKER_EXITED, 1)

        assert events == [HookEvent.WORKER_SPAWNED, HookEvent.WORKER_EXITED]

    def test_unregister(self, hooks):
        """Test unregistered callbacks stop firing."""
        calls = []
        callback = calls.append
        hooks.register(HookEvent.CRASH, callback)

        assert hooks.unregister(HookEvent.CRASH, callback) is True
        assert hooks.unregister(HookEvent.CRASH, callback) is False
        hooks.trigger(HookEvent.CRASH, 1)
        assert calls == []

    def test_failing_hook_does_not_interrupt(self, hooks, capsys):
        """Test an exception in one hook is reported and later hooks still run."""
        calls = []

        def broken(ctx):
            raise RuntimeError("hook bug")

        hooks.register(HookEvent.CRASH, broken)
        hooks.register(HookEvent.CRASH, calls.append)

        hooks.trigger(HookEvent.CRASH, 1)

        assert len(calls) == 1
        assert "hook bug" in capsys.readouterr().err
        assert hooks.stats.crashes == 1


@pytest.mark.unit
class TestCountersAndAlerts:
    """Test stats and the alert log."""

    def test_counters(self, hooks):
        """Test events increment their counters."""
        hooks.trigger(HookEvent.WORKER_SPAWNED, 1)
        hooks.trigger(HookEvent.WORKER_SPAWNED, 2)
        hooks.trigger(HookEvent.FORCED_TERMINATION, 1)

        stats = hooks.stats.as_dict()
        assert stats["spawned"] == 2
        assert stats["forced_terminations"] == 1
        assert stats["crashes"] == 0

    def test_only_degraded_events_are_alerts(self, hooks):
        """Test lifecycle events are not recorded as alerts."""
        hooks.trigger(HookEvent.WORKER_LISTENING, 1)
        hooks.trigger(HookEvent.RETRY_EXHAUSTED, 1, kind="handover")

        alerts = hooks.alerts()
        assert [a.event for a in alerts] == [HookEvent.RETRY_EXHAUSTED]
        assert alerts[0].data == {"kind": "handover"}

    def test_alert_log_bounded(self, hooks):
        """Test only the most recent alerts are kept."""
        for worker_id in range(5):
            hooks.trigger(HookEvent.CRASH, worker_id)

        assert [a.worker_id for a in hooks.alerts()] == [2, 3, 4]
        assert hooks.stats.crashes == 5

    def test_alert_events(self):
        """Test the degraded event set."""
        assert HookEvent.PROTOCOL_VIOLATION in ALERT_EVENTS
        assert HookEvent.HANDOVER_COMPLETED not in ALERT_EVENTS
