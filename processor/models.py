"""Data models for calendar synchronization."""
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Optional


CHECKOUT_SAME_DAY = 'same_day'
CHECKOUT_OPEN = 'open'

BOOKING_ACTIVE = 'active'
BOOKING_CANCELLED = 'cancelled'


class SessionStatus:
    """Lifecycle states of a sync session."""
    CREATED = 'created'
    RUNNING = 'running'
    COMPLETED = 'completed'
    PARTIAL = 'partial'
    ERROR = 'error'

    FINAL = (COMPLETED, PARTIAL, ERROR)


class LogOperation:
    """Categories of per-event decisions recorded during a sync."""
    UNCHANGED = 'event_unchanged'
    CANCELLATION = 'event_cancellations'
    DATE_CHANGE = 'event_date_changes'
    CHECKOUT_TYPE_CHANGE = 'event_checkout_type_changes'
    ADDITION = 'event_additions'
    ERROR = 'event_errors'


@dataclass
class FeedEntry:
    """Calendar entry parsed from an iCal feed."""
    uid: str
    title: str
    start: datetime
    end: datetime
    feed_id: Optional[str] = None

    @property
    def checkin_date(self) -> date:
        return self.start.date()

    @property
    def checkout_date(self) -> date:
        return self.end.date()


@dataclass
class Listing:
    """Rental unit whose calendar is synchronized."""
    listing_id: str
    name: str
    external_id: Optional[str] = None
    hours: float = 2.0

    @property
    def is_manual(self) -> bool:
        """Manual listings are maintained by hand and never synced."""
        return bool(self.external_id) and self.external_id.startswith('manual-')


@dataclass
class IcalFeed:
    """External iCal feed attached to a listing."""
    feed_id: str
    listing_id: str
    url: str
    name: str = ''
    is_active: bool = True
    last_synced: Optional[str] = None


@dataclass
class BookingEvent:
    """One version of a booking entity."""
    booking_id: str
    version: int
    event_id: str
    listing_id: str
    checkin_date: str
    checkout_date: str
    checkout_type: str
    checkout_time: str = '10:00:00'
    state: str = BOOKING_ACTIVE
    listing_name: str = ''
    title: str = ''
    feed_id: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''

    @property
    def is_active(self) -> bool:
        return self.state == BOOKING_ACTIVE

    @property
    def version_key(self) -> str:
        return f"{self.booking_id}#{self.version:08d}"


@dataclass
class SyncStats:
    """Aggregate counters of a sync run."""
    total_events_processed: int = 0
    total_feeds_processed: int = 0
    total_added: int = 0
    total_updated: int = 0
    total_deactivated: int = 0
    total_replaced: int = 0
    total_unchanged: int = 0
    total_errors: int = 0

    def merge(self, other: 'SyncStats') -> None:
        """Add another set of counters into this one."""
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'SyncStats':
        return cls(**{f.name: int(data.get(f.name) or 0) for f in fields(cls)})


@dataclass
class SyncLogEntry:
    """Detailed record of a single reconciliation decision."""
    operation: str
    event_id: str
    listing_name: str
    event_details: Dict[str, Any]
    reasoning: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ''


@dataclass
class ListingSyncResult:
    """Outcome of reconciling one listing."""
    listing_id: str
    listing_name: str
    feeds_processed: int = 0
    events: int = 0
    added: int = 0
    updated: int = 0
    deactivated: int = 0
    replaced: int = 0
    unchanged: int = 0
    errors: int = 0
    status: str = 'success'
    error_message: Optional[str] = None
    log_entries: List[SyncLogEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    @property
    def write_count(self) -> int:
        return self.added + self.updated + self.deactivated + self.replaced

    def to_stats(self) -> SyncStats:
        return SyncStats(
            total_events_processed=self.events,
            total_feeds_processed=self.feeds_processed,
            total_added=self.added,
            total_updated=self.updated,
            total_deactivated=self.deactivated,
            total_replaced=self.replaced,
            total_unchanged=self.unchanged,
            total_errors=self.errors
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'listingId': self.listing_id,
            'listingName': self.listing_name,
            'feedsProcessed': self.feeds_processed,
            'events': self.events,
            'added': self.added,
            'updated': self.updated,
            'deactivated': self.deactivated,
            'replaced': self.replaced,
            'unchanged': self.unchanged,
            'errors': self.errors,
            'status': self.status,
            'errorMessage': self.error_message
        }


@dataclass
class SyncSession:
    """Persistent record of a reconciliation run."""
    session_id: str
    sync_type: str
    status: str
    triggered_by: str = 'manual'
    target_listing_id: Optional[str] = None
    target_listing_name: Optional[str] = None
    total_listings: int = 0
    completed_listings: int = 0
    stats: SyncStats = field(default_factory=SyncStats)
    created_at: str = ''
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.session_id,
            'sync_type': self.sync_type,
            'status': self.status,
            'triggered_by': self.triggered_by,
            'target_listing_id': self.target_listing_id,
            'target_listing_name': self.target_listing_name,
            'total_listings': self.total_listings,
            'completed_listings': self.completed_listings,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'duration_seconds': self.duration_seconds,
            'error_message': self.error_message,
            'metadata': self.metadata
        }
        data.update(self.stats.to_dict())
        return data


@dataclass
class CleanerAssignment:
    """Link between a booking and the cleaner who turns the unit over."""
    assignment_id: str
    cleaner_id: str
    booking_id: str
    hours: float = 2.0
    is_active: bool = True
    status: str = 'assigned'
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_minutes: Optional[int] = None
    created_at: str = ''
    updated_at: str = ''
