"""Orchestration of single-listing and all-listings sync runs."""
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from processor.errors import (
    ConflictError, NotFoundError, PersistenceError, SyncError, ValidationError
)
from processor.models import Listing, ListingSyncResult, SyncStats
from processor.reconciler import BookingReconciler
from storage.listing_store import ListingStore
from sync.lease import SyncLease, SyncLeaseManager
from sync.session_logger import SyncSessionLogger, final_status

logger = logging.getLogger(__name__)


class CalendarSyncOrchestrator:
    """Runs reconciliations and records them as sync sessions."""

    def __init__(self, listing_store: ListingStore, reconciler: BookingReconciler,
                 session_logger: SyncSessionLogger, lease_manager: SyncLeaseManager,
                 batch_size: int = 5):
        """
        Initialize the orchestrator.

        Args:
            listing_store: Source of listings
            reconciler: Per-listing reconciliation
            session_logger: Session bookkeeping
            lease_manager: Guard against overlapping all-listings runs
            batch_size: Listings processed concurrently per batch
        """
        self.listing_store = listing_store
        self.reconciler = reconciler
        self.session_logger = session_logger
        self.lease_manager = lease_manager
        self.batch_size = max(1, batch_size)

    async def sync_all_listings(self, triggered_by: str = 'manual') -> Dict[str, Any]:
        """
        Reconcile every syncable listing in concurrent batches.

        Listings within a batch run concurrently; batches run one after
        another. Progress is written to the session after every batch.

        Args:
            triggered_by: 'manual' or 'automatic'

        Returns:
            Summary of the run, including per-listing results

        Raises:
            NotFoundError: If there are no listings to sync
            ConflictError: If another all-listings run holds the lease
        """
        listings = self.listing_store.get_syncable_listings()
        if not listings:
            raise NotFoundError('No listings to sync')

        lease = self.lease_manager.acquire()
        session = None
        start_time = time.time()

        try:
            session = self.session_logger.create_session(
                sync_type='all',
                triggered_by=triggered_by,
                total_listings=len(listings),
                metadata={'batch_size': self.batch_size}
            )
            session_id = session.session_id
            self.session_logger.start_session(session_id)
            self.lease_manager.renew(lease, session_id=session_id)

            stats = SyncStats()
            results: List[ListingSyncResult] = []
            batches = 0
            lease_held = True

            for offset in range(0, len(listings), self.batch_size):
                batch = listings[offset:offset + self.batch_size]
                batches += 1
                logger.info(
                    f"Processing batch {batches} ({len(batch)} listings)",
                    extra={'session_id': session_id}
                )

                batch_results = await asyncio.gather(*(
                    asyncio.to_thread(self._run_listing, listing, session_id)
                    for listing in batch
                ))

                for result in batch_results:
                    stats.merge(result.to_stats())
                results.extend(batch_results)

                self.session_logger.update_progress(session_id, len(results), stats)
                if lease_held:
                    lease_held = self._renew_lease(lease, session_id)

            failed = [r for r in results if not r.succeeded]
            status = final_status(len(results) - len(failed), len(failed))
            error_message = None
            if failed:
                error_message = '; '.join(
                    f"{r.listing_name}: {r.error_message}" for r in failed
                )

            self.session_logger.complete_session(
                session_id, status=status, stats=stats, error_message=error_message
            )

            duration = time.time() - start_time
            logger.info(
                f"All-listings sync finished with status {status}",
                extra={
                    'session_id': session_id,
                    'listings': len(results),
                    'failed': len(failed),
                    'duration_seconds': round(duration, 2)
                }
            )

            return {
                'sessionId': session_id,
                'status': status,
                'totalListings': len(listings),
                'successful': len(results) - len(failed),
                'failed': len(failed),
                'batches': batches,
                'stats': stats.to_dict(),
                'results': [r.to_dict() for r in results],
                'durationSeconds': round(duration, 2)
            }

        except Exception as e:
            if session is not None:
                self.session_logger.handle_error(session.session_id, e)
            raise

        finally:
            self.lease_manager.release(lease)

    def _renew_lease(self, lease: SyncLease, session_id: str) -> bool:
        """Extend the run's lease; a lost lease does not stop the run."""
        try:
            self.lease_manager.renew(lease)
        except ConflictError as e:
            logger.warning(
                f"{e.message}; continuing run without renewing",
                extra={'session_id': session_id}
            )
            return False
        return True

    def sync_listing(self, listing_id: str, session_id: Optional[str] = None,
                     sync_type: str = 'single', triggered_by: str = 'manual') -> Dict[str, Any]:
        """
        Reconcile one listing.

        With a session_id the counters are added to that externally managed
        session; otherwise the run gets its own session.

        Args:
            listing_id: Listing to sync
            session_id: Existing session to contribute to
            sync_type: Type recorded on a new session
            triggered_by: Trigger recorded on a new session

        Returns:
            Dict with the session id and the listing result

        Raises:
            NotFoundError: If the listing (or given session) does not exist
            ValidationError: If the listing is maintained manually
        """
        listing = self.listing_store.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        if listing.is_manual:
            raise ValidationError(f"Listing {listing.name} is maintained manually")

        if session_id:
            self.session_logger.get_session(session_id)
            result = self._run_listing(listing, session_id)
            session = self.session_logger.increment_stats(session_id, result.to_stats())
            return {
                'sessionId': session_id,
                'status': session.status,
                'result': result.to_dict()
            }

        session = self.session_logger.create_session(
            sync_type=sync_type,
            triggered_by=triggered_by,
            total_listings=1,
            target_listing_id=listing.listing_id,
            target_listing_name=listing.name
        )
        self.session_logger.start_session(session.session_id)

        result = self._run_listing(listing, session.session_id)
        status = final_status(int(result.succeeded), int(not result.succeeded))
        session = self.session_logger.complete_session(
            session.session_id,
            status=status,
            stats=result.to_stats(),
            error_message=result.error_message
        )
        return {
            'sessionId': session.session_id,
            'status': session.status,
            'result': result.to_dict()
        }

    def _run_listing(self, listing: Listing, session_id: str) -> ListingSyncResult:
        """Reconcile one listing, converting failures into an error result."""
        try:
            result = self.reconciler.reconcile_listing(listing)
        except SyncError as e:
            logger.error(
                f"Sync failed for listing {listing.name}: {e.message}",
                extra={'session_id': session_id, 'listing_id': listing.listing_id}
            )
            result = self._failed_result(listing, e.message)
        except Exception as e:
            logger.error(
                f"Unexpected error syncing listing {listing.name}: {e}",
                extra={'session_id': session_id, 'listing_id': listing.listing_id},
                exc_info=True
            )
            result = self._failed_result(listing, str(e))

        try:
            self.session_logger.save_log_entries(session_id, result.log_entries)
        except PersistenceError as e:
            logger.warning(f"Could not save log entries for {listing.name}: {e}")

        return result

    @staticmethod
    def _failed_result(listing: Listing, message: str) -> ListingSyncResult:
        return ListingSyncResult(
            listing_id=listing.listing_id,
            listing_name=listing.name,
            errors=1,
            status='error',
            error_message=message
        )
