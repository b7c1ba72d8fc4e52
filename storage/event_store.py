"""Versioned booking event storage.

Every change to a booking is written as a new version of the same
``booking_id``; earlier versions are kept as history. The active version of
a booking is the highest version, provided its state is ``active``.
"""
import logging
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.errors import PersistenceError
from processor.models import BOOKING_ACTIVE, BOOKING_CANCELLED, BookingEvent
from storage.dynamodb_manager import (
    DynamoDBManager, is_conditional_failure, utc_now_iso
)
from storage.schema import BOOKING_INDEX

logger = logging.getLogger(__name__)


class BookingEventStore(DynamoDBManager):
    """Store for versioned booking events."""

    def get_versions(self, listing_id: str) -> List[BookingEvent]:
        """Return every stored version for a listing."""
        items = self.query_all(KeyConditionExpression=Key('listing_id').eq(listing_id))
        return [e for e in (self._item_to_event(i) for i in items) if e]

    def get_active_events(self, listing_id: str) -> List[BookingEvent]:
        """
        Resolve the active bookings of a listing.

        Args:
            listing_id: Listing to load

        Returns:
            Latest version of each booking whose state is active, ordered by check-in
        """
        latest: Dict[str, BookingEvent] = {}
        for event in self.get_versions(listing_id):
            current = latest.get(event.booking_id)
            if current is None or event.version > current.version:
                latest[event.booking_id] = event

        active = [e for e in latest.values() if e.is_active]
        active.sort(key=lambda e: (e.checkin_date, e.event_id))
        return active

    def get_history(self, booking_id: str) -> List[BookingEvent]:
        """Return all versions of a booking, oldest first."""
        items = self.query_all(
            IndexName=BOOKING_INDEX,
            KeyConditionExpression=Key('booking_id').eq(booking_id)
        )
        events = [e for e in (self._item_to_event(i) for i in items) if e]
        events.sort(key=lambda e: e.version)
        return events

    def get_current(self, booking_id: str) -> Optional[BookingEvent]:
        """Return the latest version of a booking, or None."""
        try:
            response = self.table.query(
                IndexName=BOOKING_INDEX,
                KeyConditionExpression=Key('booking_id').eq(booking_id),
                ScanIndexForward=False,
                Limit=1
            )
        except ClientError as e:
            raise self._fail('query', e) from e

        items = response.get('Items', [])
        return self._item_to_event(items[0]) if items else None

    def insert_booking(self, event: BookingEvent) -> BookingEvent:
        """
        Create a new booking entity at version 1.

        Args:
            event: Booking data; booking_id and timestamps are filled in when empty

        Returns:
            The stored BookingEvent
        """
        now = utc_now_iso()
        event = replace(
            event,
            booking_id=event.booking_id or str(uuid.uuid4()),
            version=1,
            state=BOOKING_ACTIVE,
            created_at=event.created_at or now,
            updated_at=now
        )
        self._put_version(event)
        logger.info(
            f"Inserted booking {event.booking_id} (event {event.event_id}) "
            f"{event.checkin_date} -> {event.checkout_date}"
        )
        return event

    def write_next_version(self, current: BookingEvent, **changes) -> BookingEvent:
        """
        Supersede the current version of a booking with a new one.

        Args:
            current: Version being superseded
            **changes: Field values for the new version

        Returns:
            The stored new version

        Raises:
            PersistenceError: If the version already exists (concurrent writer)
                or the write fails
        """
        event = replace(
            current,
            version=current.version + 1,
            updated_at=utc_now_iso(),
            **changes
        )
        self._put_version(event)
        logger.info(
            f"Wrote version {event.version} of booking {event.booking_id} "
            f"(state={event.state})"
        )
        return event

    def cancel(self, current: BookingEvent) -> BookingEvent:
        """Write a cancelled version of a booking."""
        return self.write_next_version(current, state=BOOKING_CANCELLED)

    def _put_version(self, event: BookingEvent) -> None:
        try:
            self.table.put_item(
                Item=self._event_to_item(event),
                ConditionExpression='attribute_not_exists(version_key)'
            )
        except ClientError as e:
            if is_conditional_failure(e):
                raise PersistenceError(
                    f"Version {event.version} of booking {event.booking_id} already exists"
                ) from e
            raise self._fail('put_item', e) from e

    def _item_to_event(self, item: dict) -> Optional[BookingEvent]:
        """
        Convert DynamoDB item to BookingEvent object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            BookingEvent object or None if conversion fails
        """
        try:
            return BookingEvent(
                booking_id=item['booking_id'],
                version=int(item['version']),
                event_id=item['event_id'],
                listing_id=item['listing_id'],
                checkin_date=item['checkin_date'],
                checkout_date=item['checkout_date'],
                checkout_type=item['checkout_type'],
                checkout_time=item.get('checkout_time', '10:00:00'),
                state=item.get('state', BOOKING_ACTIVE),
                listing_name=item.get('listing_name', ''),
                title=item.get('title', ''),
                feed_id=item.get('feed_id'),
                created_at=item.get('created_at', ''),
                updated_at=item.get('updated_at', '')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to BookingEvent: {e}")
            return None

    def _event_to_item(self, event: BookingEvent) -> dict:
        item = {
            'listing_id': event.listing_id,
            'version_key': event.version_key,
            'booking_id': event.booking_id,
            'version': event.version,
            'event_id': event.event_id,
            'checkin_date': event.checkin_date,
            'checkout_date': event.checkout_date,
            'checkout_type': event.checkout_type,
            'checkout_time': event.checkout_time,
            'state': event.state,
            'listing_name': event.listing_name,
            'title': event.title,
            'created_at': event.created_at,
            'updated_at': event.updated_at
        }

        # Add optional fields if present
        if event.feed_id:
            item['feed_id'] = event.feed_id

        return item


def booking_to_dict(event: BookingEvent) -> dict:
    """JSON-ready representation of a booking version."""
    return {
        'booking_id': event.booking_id,
        'version': event.version,
        'event_id': event.event_id,
        'listing_id': event.listing_id,
        'listing_name': event.listing_name,
        'checkin_date': event.checkin_date,
        'checkout_date': event.checkout_date,
        'checkout_type': event.checkout_type,
        'checkout_time': event.checkout_time,
        'state': event.state,
        'is_active': event.is_active,
        'title': event.title,
        'feed_id': event.feed_id,
        'created_at': event.created_at,
        'updated_at': event.updated_at
    }
