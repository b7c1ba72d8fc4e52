"""Reconciliation of iCal feed entries against stored booking events."""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from fetcher.ical_feed import ICalFeedFetcher
from notify.slack_notifier import SlackNotifier
from processor.errors import NotFoundError, PersistenceError
from processor.matching import RankedMatcher, stays_overlap
from processor.models import (
    CHECKOUT_OPEN, CHECKOUT_SAME_DAY, BookingEvent, FeedEntry, ListingSyncResult,
    Listing, LogOperation, SyncLogEntry
)
from storage.assignment_store import AssignmentStore
from storage.dynamodb_manager import utc_now_iso
from storage.event_store import BookingEventStore
from storage.listing_store import ListingStore

logger = logging.getLogger(__name__)

ADD = 'add'
UPDATE = 'update'
REPLACE = 'replace'
CANCEL = 'cancel'
UNCHANGED = 'unchanged'
SKIP = 'skip'
PRESERVE = 'preserve'

WRITE_ACTIONS = (ADD, UPDATE, REPLACE, CANCEL)


@dataclass
class PlannedChange:
    """One reconciliation decision for a listing."""
    action: str
    reasoning: str
    entry: Optional[FeedEntry] = None
    booking: Optional[BookingEvent] = None
    checkout_type: Optional[str] = None
    strategy: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def is_write(self) -> bool:
        return self.action in WRITE_ACTIONS

    @property
    def dates_changed(self) -> bool:
        if self.entry is None or self.booking is None:
            return False
        return (self.entry.checkin_date.isoformat() != self.booking.checkin_date[:10] or
                self.entry.checkout_date.isoformat() != self.booking.checkout_date[:10])


def compute_checkout_types(entries: Sequence[FeedEntry]) -> Dict[int, str]:
    """
    Determine the checkout type of each entry.

    An entry is a same-day checkout when another stay checks in on its
    checkout date.

    Returns:
        Mapping of entry position to checkout type
    """
    checkins: Dict[date, List[FeedEntry]] = {}
    for entry in entries:
        checkins.setdefault(entry.checkin_date, []).append(entry)

    types = {}
    for index, entry in enumerate(entries):
        arrivals = checkins.get(entry.checkout_date, [])
        same_day = any(
            other is not entry and other.checkout_date != entry.checkout_date
            for other in arrivals
        )
        types[index] = CHECKOUT_SAME_DAY if same_day else CHECKOUT_OPEN
    return types


class BookingReconciler:
    """Makes the stored bookings of a listing match its iCal feeds."""

    def __init__(self, fetcher: ICalFeedFetcher, event_store: BookingEventStore,
                 listing_store: ListingStore, assignment_store: Optional[AssignmentStore] = None,
                 notifier: Optional[SlackNotifier] = None,
                 matcher: Optional[RankedMatcher] = None,
                 ignored_titles: Iterable[str] = ('Airbnb (Not available)',),
                 default_checkout_time: str = '10:00:00',
                 today: Callable[[], date] = date.today):
        self.fetcher = fetcher
        self.event_store = event_store
        self.listing_store = listing_store
        self.assignment_store = assignment_store
        self.notifier = notifier
        self.matcher = matcher or RankedMatcher()
        self.ignored_titles = {t.lower() for t in ignored_titles}
        self.default_checkout_time = default_checkout_time
        self.today = today

    def reconcile_listing(self, listing: Listing) -> ListingSyncResult:
        """
        Fetch the feeds of a listing and apply the resulting changes.

        Args:
            listing: Listing to reconcile

        Returns:
            ListingSyncResult with counters and per-event log entries

        Raises:
            NotFoundError: If the listing has no active feeds
            FetchError: If a feed cannot be retrieved
            ParseError: If a feed is not an iCal calendar
        """
        feeds = [f for f in self.listing_store.get_feeds_for_listing(listing.listing_id)
                 if f.is_active]
        if not feeds:
            raise NotFoundError(f"No active iCal feeds for listing {listing.name}")

        entries: List[FeedEntry] = []
        for feed in feeds:
            fetched = list(self.fetcher.fetch_entries(feed.url, feed_id=feed.feed_id))
            logger.info(f"Fetched {len(fetched)} entries from feed {feed.feed_id} ({listing.name})")
            entries.extend(fetched)

        result = ListingSyncResult(
            listing_id=listing.listing_id,
            listing_name=listing.name,
            feeds_processed=len(feeds)
        )

        stored = self.event_store.get_active_events(listing.listing_id)
        changes = self.plan(listing, entries, stored)
        result.events = sum(1 for c in changes if c.entry is not None)

        self.apply(listing, changes, result)

        synced_at = utc_now_iso()
        for feed in feeds:
            try:
                self.listing_store.mark_feed_synced(feed.feed_id, synced_at)
            except PersistenceError as e:
                logger.warning(f"Could not record sync time of feed {feed.feed_id}: {e}")
                result.errors += 1

        logger.info(
            f"Reconciled {listing.name}: {result.added} added, {result.updated} updated, "
            f"{result.replaced} replaced, {result.deactivated} deactivated, "
            f"{result.unchanged} unchanged, {result.errors} errors"
        )
        return result

    def plan(self, listing: Listing, entries: Sequence[FeedEntry],
             stored: Sequence[BookingEvent]) -> List[PlannedChange]:
        """
        Decide what to do with every feed entry and stored booking.

        Performs no I/O.

        Args:
            listing: Listing being reconciled
            entries: Entries fetched from all of the listing's feeds
            stored: Active bookings of the listing

        Returns:
            List of PlannedChange, one per relevant entry or booking
        """
        entries = self._relevant_entries(entries)
        checkout_types = compute_checkout_types(entries)
        type_by_entry = {id(e): checkout_types[i] for i, e in enumerate(entries)}

        result = self.matcher.match(entries, stored)
        changes: List[PlannedChange] = []
        # stays that remain active after this run
        kept: List[tuple] = []

        for match in result.matches:
            entry, booking = match.entry, match.booking
            checkout_type = type_by_entry[id(entry)]
            change = PlannedChange(
                action=UNCHANGED,
                reasoning='Feed entry matches stored booking',
                entry=entry,
                booking=booking,
                checkout_type=checkout_type,
                strategy=match.strategy,
                confidence=match.confidence
            )
            if change.dates_changed:
                change.action = REPLACE
                change.reasoning = (
                    f"Dates changed from {booking.checkin_date} - {booking.checkout_date} "
                    f"to {entry.checkin_date} - {entry.checkout_date}"
                )
            elif entry.uid != booking.event_id:
                change.action = REPLACE
                change.reasoning = f"Feed reissued event id {booking.event_id} as {entry.uid}"
            elif checkout_type != booking.checkout_type:
                change.action = UPDATE
                change.reasoning = (
                    f"Checkout type changed from {booking.checkout_type} to {checkout_type}"
                )
            changes.append(change)
            kept.append((entry.checkin_date, entry.checkout_date))

        today = self.today()
        for booking in result.unmatched_bookings:
            checkout = date.fromisoformat(booking.checkout_date[:10])
            if not entries:
                changes.append(PlannedChange(
                    action=PRESERVE,
                    reasoning='Feeds returned no entries; cancellation skipped',
                    booking=booking
                ))
            elif checkout < today:
                changes.append(PlannedChange(
                    action=PRESERVE,
                    reasoning='Past booking no longer listed in feed; kept as history',
                    booking=booking
                ))
            else:
                changes.append(PlannedChange(
                    action=CANCEL,
                    reasoning=f"Event {booking.event_id} no longer present in feed",
                    booking=booking
                ))
                continue
            kept.append((date.fromisoformat(booking.checkin_date[:10]), checkout))

        for entry in result.unmatched_entries:
            duplicate = any(
                stays_overlap(entry.checkin_date, entry.checkout_date, checkin, checkout)
                for checkin, checkout in kept
            )
            if duplicate:
                changes.append(PlannedChange(
                    action=SKIP,
                    reasoning='Overlaps a booking that is already stored',
                    entry=entry,
                    checkout_type=type_by_entry[id(entry)]
                ))
                continue

            changes.append(PlannedChange(
                action=ADD,
                reasoning='New booking found in feed',
                entry=entry,
                checkout_type=type_by_entry[id(entry)]
            ))
            kept.append((entry.checkin_date, entry.checkout_date))

        return changes

    def apply(self, listing: Listing, changes: Sequence[PlannedChange],
              result: ListingSyncResult) -> ListingSyncResult:
        """
        Write planned changes, counting each failed write as an error.

        Args:
            listing: Listing being reconciled
            changes: Output of plan()
            result: Result object updated in place

        Returns:
            The updated result
        """
        for change in changes:
            try:
                self._apply_change(listing, change, result)
            except PersistenceError as e:
                result.errors += 1
                logger.error(f"Failed to {change.action} booking for {listing.name}: {e}")
                result.log_entries.append(self._log_entry(
                    listing, change, LogOperation.ERROR, reasoning=f"Write failed: {e.message}"
                ))
        return result

    def _apply_change(self, listing: Listing, change: PlannedChange,
                      result: ListingSyncResult) -> None:
        entry, booking = change.entry, change.booking

        if change.action == ADD:
            self.event_store.insert_booking(BookingEvent(
                booking_id='',
                version=1,
                event_id=entry.uid,
                listing_id=listing.listing_id,
                listing_name=listing.name,
                checkin_date=entry.checkin_date.isoformat(),
                checkout_date=entry.checkout_date.isoformat(),
                checkout_type=change.checkout_type,
                checkout_time=self.default_checkout_time,
                title=entry.title,
                feed_id=entry.feed_id
            ))
            result.added += 1
            operation = LogOperation.ADDITION

        elif change.action == REPLACE:
            current = self.event_store.write_next_version(
                booking,
                event_id=entry.uid,
                checkin_date=entry.checkin_date.isoformat(),
                checkout_date=entry.checkout_date.isoformat(),
                checkout_type=change.checkout_type,
                listing_name=listing.name,
                title=entry.title,
                feed_id=entry.feed_id
            )
            result.replaced += 1
            operation = LogOperation.DATE_CHANGE
            if change.dates_changed and self.notifier:
                self.notifier.notify_modification(booking, current)

        elif change.action == UPDATE:
            self.event_store.write_next_version(booking, checkout_type=change.checkout_type)
            result.updated += 1
            operation = LogOperation.CHECKOUT_TYPE_CHANGE

        elif change.action == CANCEL:
            self.event_store.cancel(booking)
            result.deactivated += 1
            operation = LogOperation.CANCELLATION
            if self.assignment_store:
                self._deactivate_assignments(booking, result)
            if self.notifier:
                self.notifier.notify_cancellation(booking)

        else:
            result.unchanged += 1
            operation = LogOperation.UNCHANGED

        result.log_entries.append(self._log_entry(listing, change, operation))

    def _deactivate_assignments(self, booking: BookingEvent, result: ListingSyncResult) -> None:
        # booking stays cancelled even when this fails
        try:
            removed = self.assignment_store.deactivate_for_booking(booking.booking_id)
        except PersistenceError as e:
            result.errors += 1
            logger.error(
                f"Failed to deactivate cleaner assignments of booking {booking.booking_id}: {e}"
            )
            return
        if removed:
            logger.info(
                f"Deactivated {removed} cleaner assignments of booking {booking.booking_id}"
            )

    @staticmethod
    def _log_entry(listing: Listing, change: PlannedChange, operation: str,
                   reasoning: Optional[str] = None) -> SyncLogEntry:
        details = {'action': change.action}
        if change.entry is not None:
            details.update({
                'uid': change.entry.uid,
                'title': change.entry.title,
                'checkin_date': change.entry.checkin_date.isoformat(),
                'checkout_date': change.entry.checkout_date.isoformat(),
                'checkout_type': change.checkout_type
            })
        if change.booking is not None:
            details['stored'] = {
                'booking_id': change.booking.booking_id,
                'version': change.booking.version,
                'event_id': change.booking.event_id,
                'checkin_date': change.booking.checkin_date,
                'checkout_date': change.booking.checkout_date,
                'checkout_type': change.booking.checkout_type
            }

        metadata = {}
        if change.strategy:
            metadata = {'match_strategy': change.strategy, 'confidence': change.confidence}

        event_id = change.entry.uid if change.entry else change.booking.event_id
        return SyncLogEntry(
            operation=operation,
            event_id=event_id,
            listing_name=listing.name,
            event_details=details,
            reasoning=reasoning or change.reasoning,
            metadata=metadata,
            timestamp=utc_now_iso()
        )

    def _relevant_entries(self, entries: Sequence[FeedEntry]) -> List[FeedEntry]:
        relevant = []
        seen_uids = set()
        for entry in entries:
            if entry.title.strip().lower() in self.ignored_titles:
                logger.debug(f"Ignoring blocked entry {entry.uid} ({entry.title})")
                continue
            if entry.uid in seen_uids:
                logger.debug(f"Ignoring repeated entry {entry.uid}")
                continue
            if entry.checkout_date <= entry.checkin_date:
                logger.warning(f"Ignoring entry {entry.uid} with empty stay")
                continue
            seen_uids.add(entry.uid)
            relevant.append(entry)
        return relevant
