"""HTTP handlers for sync runs, sessions and feed previews."""
import asyncio
import logging
from collections import Counter
from typing import Any, Dict

from api.router import ApiRequest, Router, parse_date
from api.services import Services
from fetcher.ical_feed import detect_calendar_name, filter_by_window, parse_feed
from processor.errors import UnauthorizedError, ValidationError
from processor.models import SessionStatus, SyncStats
from storage.session_store import paginate
from sync.session_logger import final_status

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _stats_from_result(result: Dict[str, Any]) -> SyncStats:
    """Counters reported by a client for one listing."""
    def count(key):
        try:
            return int(result.get(key) or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Result field {key} must be a number")

    return SyncStats(
        total_events_processed=count('events'),
        total_feeds_processed=count('feedsProcessed'),
        total_added=count('added'),
        total_updated=count('updated'),
        total_deactivated=count('deactivated'),
        total_replaced=count('replaced'),
        total_unchanged=count('unchanged'),
        total_errors=count('errors')
    )


class SyncRoutes:
    """Endpoints that start, track and inspect sync runs."""

    def __init__(self, services: Services):
        self.services = services

    def register(self, router: Router) -> None:
        router.add('POST', '/api/sync-all-listings', self.sync_all_listings)
        router.add('GET', '/api/cron/sync-ical-feeds', self.cron_sync)
        router.add('POST', '/api/sync-listing', self.sync_listing)
        router.add('POST', '/api/fetch-ical', self.fetch_ical)
        router.add('POST', '/api/sync-session', self.create_session)
        router.add('POST', '/api/sync-session/complete', self.complete_session)
        router.add('GET', '/api/sync-logs', self.list_sync_logs)
        router.add('GET', '/api/sync-logs/{sessionId}', self.get_sync_log)

    def sync_all_listings(self, request: ApiRequest) -> Dict[str, Any]:
        triggered_by = 'automatic' if request.body.get('source') == 'cron' else 'manual'
        return self.run_all_listings(triggered_by)

    def run_all_listings(self, triggered_by: str) -> Dict[str, Any]:
        """
        Run an all-listings sync to completion.

        Individual listing failures are reported in the summary; the
        response is only unsuccessful when every listing failed.
        """
        summary = asyncio.run(
            self.services.orchestrator.sync_all_listings(triggered_by=triggered_by)
        )
        response = {
            'success': summary['successful'] > 0,
            'message': (
                f"Synced {summary['successful']} of {summary['totalListings']} listings"
            )
        }
        response.update(summary)
        return response

    def cron_sync(self, request: ApiRequest) -> Dict[str, Any]:
        if request.query.get('cron') != 'true':
            raise UnauthorizedError('Unauthorized')
        if not self.services.config.auto_sync:
            logger.info('Automatic sync disabled; skipping scheduled run')
            return {'skipped': True, 'message': 'Automatic sync is disabled'}
        return self.run_all_listings('automatic')

    def sync_listing(self, request: ApiRequest) -> Dict[str, Any]:
        listing_id, = request.require('listingId')
        outcome = self.services.orchestrator.sync_listing(
            listing_id,
            session_id=request.body.get('sessionId'),
            sync_type=request.body.get('syncType') or 'single'
        )
        response = {'success': outcome['result']['status'] == 'success'}
        if not response['success']:
            response['error'] = outcome['result']['errorMessage']
        response.update(outcome)
        return response

    def fetch_ical(self, request: ApiRequest) -> Dict[str, Any]:
        """Fetch a feed and return its entries without storing anything."""
        url, = request.require('url')
        start_date = parse_date(request.body.get('startDate'), 'startDate')
        end_date = parse_date(request.body.get('endDate'), 'endDate')
        if start_date and end_date and end_date < start_date:
            raise ValidationError('endDate must not be before startDate')

        ical_text = self.services.fetcher.fetch_text(url)
        entries = filter_by_window(parse_feed(ical_text), start_date, end_date)
        events = [
            {
                'uid': e.uid,
                'summary': e.title,
                'start': e.start.isoformat(),
                'end': e.end.isoformat(),
                'checkin_date': e.checkin_date.isoformat(),
                'checkout_date': e.checkout_date.isoformat()
            }
            for e in entries
        ]
        return {
            'events': events,
            'count': len(events),
            'calendarName': detect_calendar_name(ical_text)
        }

    def create_session(self, request: ApiRequest) -> Dict[str, Any]:
        body = request.body
        sync_type = body.get('syncType') or 'single'
        if sync_type not in ('single', 'all'):
            raise ValidationError("syncType must be 'single' or 'all'")
        try:
            total_listings = int(body.get('totalListings') or 1)
        except (TypeError, ValueError):
            raise ValidationError('totalListings must be a number')

        session_logger = self.services.session_logger
        session = session_logger.create_session(
            sync_type=sync_type,
            triggered_by=body.get('triggeredBy') or 'manual',
            total_listings=total_listings,
            target_listing_id=body.get('listingId'),
            target_listing_name=body.get('listingName')
        )
        session = session_logger.start_session(session.session_id)
        return {'sessionId': session.session_id, 'session': session.to_dict()}

    def complete_session(self, request: ApiRequest) -> Dict[str, Any]:
        session_id, = request.require('sessionId')
        results = request.body.get('results') or []
        if not isinstance(results, list):
            raise ValidationError('results must be a list')

        stats = SyncStats()
        failed = 0
        for result in results:
            if not isinstance(result, dict):
                raise ValidationError('Each result must be an object')
            stats.merge(_stats_from_result(result))
            if result.get('status', 'success') != 'success':
                failed += 1

        status = final_status(len(results) - failed, failed) if results else SessionStatus.COMPLETED
        error_message = f"{failed} of {len(results)} listings failed" if failed else None

        session = self.services.session_logger.complete_session(
            session_id,
            status=status,
            stats=stats if results else None,
            error_message=error_message
        )
        return {
            'sessionId': session.session_id,
            'status': session.status,
            'stats': session.stats.to_dict()
        }

    def list_sync_logs(self, request: ApiRequest) -> Dict[str, Any]:
        page = request.query_int('page', 1)
        limit = min(request.query_int('limit', 20), MAX_PAGE_SIZE)
        sessions = self.services.session_logger.list_sessions(
            status=request.query.get('status'),
            sync_type=request.query.get('syncType')
        )
        page_items, pagination = paginate(sessions, page, limit)
        return {
            'sessions': [s.to_dict() for s in page_items],
            'pagination': pagination
        }

    def get_sync_log(self, request: ApiRequest) -> Dict[str, Any]:
        session_id = request.path_params['sessionId']
        session_logger = self.services.session_logger

        session = session_logger.get_session(session_id)
        entries = session_logger.get_log_entries(session_id)
        counts = Counter(e.operation for e in entries)

        operation = request.query.get('operation')
        if operation:
            entries = [e for e in entries if e.operation == operation]

        page_items, pagination = paginate(
            entries,
            request.query_int('page', 1),
            min(request.query_int('limit', 50), MAX_PAGE_SIZE)
        )
        return {
            'session': session.to_dict(),
            'logs': [
                {
                    'operation': e.operation,
                    'event_id': e.event_id,
                    'listing_name': e.listing_name,
                    'event_details': e.event_details,
                    'reasoning': e.reasoning,
                    'metadata': e.metadata,
                    'timestamp': e.timestamp
                }
                for e in page_items
            ],
            'operationCounts': dict(counts),
            'pagination': pagination
        }
