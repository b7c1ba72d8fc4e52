"""Wiring of the sync components for one invocation."""
from dataclasses import dataclass

from config.settings import AppConfig
from fetcher.ical_feed import ICalFeedFetcher
from notify.slack_notifier import SlackNotifier
from processor.reconciler import BookingReconciler
from storage import schema
from storage.assignment_store import AssignmentStore
from storage.dynamodb_manager import ThreadLocalResource
from storage.event_store import BookingEventStore
from storage.listing_store import ListingStore
from storage.session_store import LeaseStore, LogEntryStore, SessionStore
from sync.lease import SyncLeaseManager
from sync.orchestrator import CalendarSyncOrchestrator
from sync.session_logger import SyncSessionLogger


@dataclass
class Services:
    config: AppConfig
    fetcher: ICalFeedFetcher
    listing_store: ListingStore
    event_store: BookingEventStore
    assignment_store: AssignmentStore
    session_logger: SyncSessionLogger
    lease_manager: SyncLeaseManager
    orchestrator: CalendarSyncOrchestrator


def build_services(config: AppConfig, dynamodb=None) -> Services:
    """
    Instantiate every component against the configured tables.

    Args:
        config: Application config
        dynamodb: Optional ThreadLocalResource (one is created if omitted)

    Returns:
        Services bundle
    """
    dynamodb = dynamodb or ThreadLocalResource()

    fetcher = ICalFeedFetcher(timeout=config.timeout_seconds, max_retries=config.max_retries)
    listing_store = ListingStore(
        config.table_name(schema.LISTINGS),
        config.table_name(schema.ICAL_FEEDS),
        dynamodb=dynamodb
    )
    event_store = BookingEventStore(config.table_name(schema.BOOKING_EVENTS), dynamodb=dynamodb)
    assignment_store = AssignmentStore(
        config.table_name(schema.CLEANER_ASSIGNMENTS), event_store, dynamodb=dynamodb
    )
    session_logger = SyncSessionLogger(
        SessionStore(config.table_name(schema.SYNC_SESSIONS), dynamodb=dynamodb),
        LogEntryStore(config.table_name(schema.SYNC_LOG_ENTRIES), dynamodb=dynamodb)
    )
    lease_manager = SyncLeaseManager(
        LeaseStore(config.table_name(schema.SYNC_LEASES), dynamodb=dynamodb),
        lease_seconds=config.lease_seconds
    )

    reconciler = BookingReconciler(
        fetcher=fetcher,
        event_store=event_store,
        listing_store=listing_store,
        assignment_store=assignment_store,
        notifier=SlackNotifier(config.slack_webhook_url),
        ignored_titles=config.ignored_titles,
        default_checkout_time=config.default_checkout_time
    )
    orchestrator = CalendarSyncOrchestrator(
        listing_store=listing_store,
        reconciler=reconciler,
        session_logger=session_logger,
        lease_manager=lease_manager,
        batch_size=config.batch_size
    )

    return Services(
        config=config,
        fetcher=fetcher,
        listing_store=listing_store,
        event_store=event_store,
        assignment_store=assignment_store,
        session_logger=session_logger,
        lease_manager=lease_manager,
        orchestrator=orchestrator
    )
