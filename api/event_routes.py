"""HTTP handlers for reading stored bookings."""
import logging
from typing import Any, Dict, List

from api.router import ApiRequest, Router, parse_date
from api.services import Services
from processor.errors import NotFoundError, ValidationError
from processor.models import BookingEvent
from storage.event_store import booking_to_dict

logger = logging.getLogger(__name__)


class EventRoutes:
    """Endpoints for active bookings and booking version history."""

    def __init__(self, services: Services):
        self.event_store = services.event_store
        self.listing_store = services.listing_store

    def register(self, router: Router) -> None:
        router.add('GET', '/api/events', self.list_events)
        router.add('GET', '/api/events/{bookingId}/history', self.get_history)

    def list_events(self, request: ApiRequest) -> Dict[str, Any]:
        """
        Active bookings, optionally for one listing and within a date window.

        A booking is in the window when it checks in on or after startDate
        and checks out on or before endDate.
        """
        start_date = parse_date(request.query.get('startDate'), 'startDate')
        end_date = parse_date(request.query.get('endDate'), 'endDate')
        if start_date and end_date and end_date < start_date:
            raise ValidationError('endDate must not be before startDate')

        listing_id = request.query.get('listingId')
        if listing_id:
            listing_ids = [self.listing_store.require_listing(listing_id).listing_id]
        else:
            listing_ids = [listing.listing_id for listing in self.listing_store.get_listings()]

        events: List[BookingEvent] = []
        for current_id in listing_ids:
            events.extend(self.event_store.get_active_events(current_id))

        if start_date:
            events = [e for e in events if e.checkin_date[:10] >= start_date.isoformat()]
        if end_date:
            events = [e for e in events if e.checkout_date[:10] <= end_date.isoformat()]
        events.sort(key=lambda e: (e.checkin_date, e.listing_id, e.booking_id))

        return {'events': [booking_to_dict(e) for e in events], 'count': len(events)}

    def get_history(self, request: ApiRequest) -> Dict[str, Any]:
        booking_id = request.path_params['bookingId']
        versions = self.event_store.get_history(booking_id)
        if not versions:
            raise NotFoundError(f"Booking {booking_id} not found")
        return {
            'bookingId': booking_id,
            'current': booking_to_dict(versions[-1]),
            'versions': [booking_to_dict(v) for v in versions]
        }
