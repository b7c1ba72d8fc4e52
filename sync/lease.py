"""Leaseable "sync running" record.

Only one all-listings run may hold the lease at a time. The holder owns a
random token and must renew the lease before it expires; once expired, any
caller may claim it.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from processor.errors import ConflictError
from storage.session_store import LeaseStore

logger = logging.getLogger(__name__)

ALL_LISTINGS_LEASE = 'sync-all-listings'


@dataclass
class SyncLease:
    lease_name: str
    owner_token: str
    expires_at: float
    session_id: Optional[str] = None


class SyncLeaseManager:
    """Acquire, renew and release the sync lease."""

    def __init__(self, store: LeaseStore, lease_seconds: int = 300,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the lease manager.

        Args:
            store: Lease table access
            lease_seconds: Lifetime of a lease before it must be renewed
            clock: Returns the current time in epoch seconds
        """
        self.store = store
        self.lease_seconds = lease_seconds
        self.clock = clock

    def acquire(self, lease_name: str = ALL_LISTINGS_LEASE,
                session_id: Optional[str] = None) -> SyncLease:
        """
        Claim the lease.

        Raises:
            ConflictError: If another live lease exists
        """
        now = self.clock()
        lease = SyncLease(
            lease_name=lease_name,
            owner_token=uuid.uuid4().hex,
            expires_at=now + self.lease_seconds,
            session_id=session_id
        )
        self.store.put_if_free(lease_name, lease.owner_token, session_id, lease.expires_at, now)
        logger.info(f"Acquired lease {lease_name} until {int(lease.expires_at)}")
        return lease

    def renew(self, lease: SyncLease, session_id: Optional[str] = None) -> SyncLease:
        """
        Extend a held lease.

        Raises:
            ConflictError: If the lease is no longer held by this owner
        """
        lease.expires_at = self.clock() + self.lease_seconds
        if session_id:
            lease.session_id = session_id
        try:
            self.store.extend(lease.lease_name, lease.owner_token, lease.expires_at,
                              session_id=session_id)
        except ConflictError as e:
            raise ConflictError(f"Lease {lease.lease_name} was lost") from e
        logger.debug(f"Renewed lease {lease.lease_name} until {int(lease.expires_at)}")
        return lease

    def release(self, lease: SyncLease) -> bool:
        released = self.store.delete_if_owner(lease.lease_name, lease.owner_token)
        if not released:
            logger.warning(f"Lease {lease.lease_name} was no longer held at release")
        return released
