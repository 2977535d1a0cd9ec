"""
Tests for the replacement policy and backoff.
"""

import pytest

from hotpool.config import ReplacementConfig, RetryConfig
from hotpool.policy import Backoff, HandoverPhase, ReplacementPolicy
from hotpool.registry import WorkerRecord
from hotpool.state import WorkerState

MB = 1024**2


def listening(worker_id: int = 1, created_at: float = 0.0, rss: int | None = None) -> WorkerRecord:
    return WorkerRecord(
        id=worker_id, created_at=created_at, state=WorkerState.LISTENING, resource_usage=rss
    )


@pytest.fixture
def policy():
    return ReplacementPolicy(ReplacementConfig(memory_limit=512 * MB, max_age=3600))


# =============================================================================
# Test Backoff
# =============================================================================


@pytest.mark.unit
class TestBackoff:
    """Test bounded exponential backoff."""

    def test_exponential_growth(self):
        """Test delays double from the initial delay."""
        backoff = Backoff(RetryConfig(initial_delay=1.0, max_delay=60.0, multiplier=2.0))

        assert [backoff.delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        """Test delays never exceed max_delay."""
        backoff = Backoff(RetryConfig(initial_delay=1.0, max_delay=5.0))

        assert backoff.delay(10) == 5.0
        assert backoff.delay(5000) == 5.0

    def test_attempt_zero_uses_initial(self):
        """Test attempts below one use the initial delay."""
        assert Backoff(RetryConfig(initial_delay=0.5)).delay(0) == 0.5

    def test_exhausted(self):
        """Test exhaustion at max_retries."""
        backoff = Backoff(RetryConfig(max_retries=3))

        assert not backoff.exhausted(2)
        assert backoff.exhausted(3)
        assert backoff.max_retries == 3


# =============================================================================
# Test Replacement Triggers
# =============================================================================


@pytest.mark.unit
class TestReplacementReason:
    """Test threshold checks."""

    def test_under_thresholds(self, policy):
        """Test a young, small worker is kept."""
        assert policy.replacement_reason(listening(rss=100 * MB), now=10.0) is None

    def test_memory(self, policy):
        """Test RSS above the limit triggers replacement."""
        assert policy.replacement_reason(listening(rss=600 * MB), now=10.0) == "memory"

    def test_memory_at_limit_kept(self, policy):
        """Test RSS equal to the limit does not trigger."""
        assert policy.replacement_reason(listening(rss=512 * MB), now=10.0) is None

    def test_max_age(self, policy):
        """Test workers older than max_age are replaced."""
        assert policy.replacement_reason(listening(created_at=0.0), now=3601.0) == "max_age"

    def test_unsampled_worker(self, policy):
        """Test a worker without a sample is only judged by age."""
        assert policy.replacement_reason(listening(rss=None), now=1.0) is None

    def test_only_listening_workers(self, policy):
        """Test starting or stopping workers never qualify."""
        record = listening(rss=600 * MB)
        record.state = WorkerState.STOPPING

        assert policy.replacement_reason(record, now=10.0) is None

    def test_flagged_workers_skipped(self, policy):
        """Test retiring and candidate workers are not replaced."""
        retiring = listening(rss=600 * MB)
        retiring.retiring = True
        candidate = listening(worker_id=2, rss=600 * MB)
        candidate.candidate = True

        assert policy.replacement_reason(retiring, now=10.0) is None
        assert policy.replacement_reason(candidate, now=10.0) is None

    def test_pending_handover_skipped(self, policy):
        """Test a worker already queued is not requested again."""
        policy.request(1, "memory", 0.0)

        assert policy.replacement_reason(listening(rss=600 * MB), now=10.0) is None

    def test_set_memory_limit(self, policy):
        """Test the limit can be changed and disabled."""
        policy.set_memory_limit(None)

        assert policy.memory_limit is None
        assert policy.replacement_reason(listening(rss=10**12), now=10.0) is None


# =============================================================================
# Test Handover Queue
# =============================================================================


@pytest.mark.unit
class TestHandoverQueue:
    """Test handover bookkeeping."""

    def test_request_once(self, policy):
        """Test a second request for the same worker returns None."""
        first = policy.request(1, "memory", 0.0)

        assert first is not None
        assert first.phase is HandoverPhase.QUEUED
        assert policy.request(1, "operator", 1.0) is None
        assert len(policy) == 1
        assert 1 in policy

    def test_one_active_at_a_time(self, policy):
        """Test next_queued waits for the active handover."""
        first = policy.request(1, "memory", 0.0)
        policy.request(2, "memory", 0.0)

        assert policy.next_queued() is first
        first.phase = HandoverPhase.SPAWNING
        first.candidate_id = 5

        assert policy.active is first
        assert policy.next_queued() is None
        assert policy.by_candidate(5) is first

    def test_fifo_after_discard(self, policy):
        """Test the next request starts once the active one is gone."""
        first = policy.request(1, "memory", 0.0)
        second = policy.request(2, "max_age", 0.0)
        first.phase = HandoverPhase.BACKOFF

        assert policy.discard(1) is first
        assert policy.next_queued() is second
        assert [h.retiring_id for h in policy.pending()] == [2]

    def test_clear(self, policy):
        """Test clear returns every dropped handover."""
        policy.request(1, "memory", 0.0)
        policy.request(2, "memory", 0.0)

        dropped = policy.clear()

        assert [h.retiring_id for h in dropped] == [1, 2]
        assert len(policy) == 0
        assert policy.get(1) is None
