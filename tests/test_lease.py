"""Unit tests for the sync lease."""
import pytest

from processor.errors import ConflictError
from sync.lease import SyncLeaseManager


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def leases(lease_store, clock):
    return SyncLeaseManager(lease_store, lease_seconds=300, clock=clock)


class TestSyncLeaseManager:
    """Test cases for SyncLeaseManager."""

    def test_second_acquire_within_lease_conflicts(self, leases, clock):
        leases.acquire(session_id='session-1')
        clock.now += 100

        with pytest.raises(ConflictError) as exc_info:
            leases.acquire()

        assert exc_info.value.status_code == 409
        assert exc_info.value.details['runningSessionId'] == 'session-1'

    def test_acquire_after_expiry_succeeds(self, leases, clock):
        """Test that an abandoned run stops blocking after five minutes."""
        first = leases.acquire()
        clock.now += 301

        second = leases.acquire()

        assert second.owner_token != first.owner_token

    def test_renew_extends_lease(self, leases, clock):
        lease = leases.acquire()
        clock.now += 250
        leases.renew(lease)
        clock.now += 100

        with pytest.raises(ConflictError):
            leases.acquire()

    def test_renew_after_takeover_fails(self, leases, clock):
        stale = leases.acquire()
        clock.now += 301
        leases.acquire()

        with pytest.raises(ConflictError):
            leases.renew(stale)

    def test_release_frees_lease(self, leases):
        lease = leases.acquire()

        assert leases.release(lease) is True
        leases.acquire()

    def test_release_by_non_owner(self, leases, clock):
        stale = leases.acquire()
        clock.now += 301
        leases.acquire()

        assert leases.release(stale) is False
        with pytest.raises(ConflictError):
            leases.acquire()

    def test_expiry_compares_fractional_seconds(self, lease_store):
        clock = FakeClock(now=1_700_000_000.2)
        leases = SyncLeaseManager(lease_store, lease_seconds=300, clock=clock)
        first = leases.acquire()
        clock.now = 1_700_000_300.8

        second = leases.acquire()

        assert second.owner_token != first.owner_token

    def test_lease_still_live_within_the_last_second(self, lease_store):
        clock = FakeClock(now=1_700_000_000.9)
        leases = SyncLeaseManager(lease_store, lease_seconds=300, clock=clock)
        leases.acquire(session_id='session-1')
        clock.now = 1_700_000_300.5

        with pytest.raises(ConflictError) as exc_info:
            leases.acquire()

        assert exc_info.value.details['leaseExpiresAt'] == pytest.approx(1_700_000_300.9)
