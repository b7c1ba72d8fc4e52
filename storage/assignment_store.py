"""Cleaner assignment storage.

Assignments are never deleted; removing one clears its ``is_active`` flag.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from boto3.dynamodb.conditions import Attr

from processor.errors import ConflictError, NotFoundError, ValidationError
from processor.models import CleanerAssignment
from storage.dynamodb_manager import DynamoDBManager, from_dynamodb, utc_now_iso
from storage.event_store import BookingEventStore

logger = logging.getLogger(__name__)

STATUS_ASSIGNED = 'assigned'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'


class AssignmentStore(DynamoDBManager):
    """Store for cleaner assignments."""

    def __init__(self, table_name: str, event_store: BookingEventStore, dynamodb=None):
        super().__init__(table_name, dynamodb=dynamodb or event_store.dynamodb)
        self.event_store = event_store

    def create(self, cleaner_id: str, booking_id: str, hours: float = 2.0) -> CleanerAssignment:
        """
        Assign a cleaner to an active booking.

        Args:
            cleaner_id: Cleaner being assigned
            booking_id: Booking entity the job belongs to
            hours: Expected job length

        Returns:
            The created CleanerAssignment

        Raises:
            NotFoundError: If the booking does not exist or is no longer active
        """
        booking = self.event_store.get_current(booking_id)
        if booking is None or not booking.is_active:
            raise NotFoundError(f"Active booking {booking_id} not found")

        now = utc_now_iso()
        assignment = CleanerAssignment(
            assignment_id=str(uuid.uuid4()),
            cleaner_id=cleaner_id,
            booking_id=booking_id,
            hours=float(hours),
            created_at=now,
            updated_at=now
        )
        self.put_item(self._assignment_to_item(assignment))
        logger.info(f"Assigned cleaner {cleaner_id} to booking {booking_id}")
        return assignment

    def get(self, assignment_id: str) -> CleanerAssignment:
        item = self.get_item({'assignment_id': assignment_id})
        if not item:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return self._item_to_assignment(item)

    def list(self, cleaner_id: Optional[str] = None, booking_id: Optional[str] = None,
             include_inactive: bool = False) -> List[CleanerAssignment]:
        """Return assignments matching the given filters, oldest first."""
        condition = None
        for attr, value in (('cleaner_id', cleaner_id), ('booking_id', booking_id)):
            if value:
                clause = Attr(attr).eq(value)
                condition = clause if condition is None else condition & clause
        if not include_inactive:
            clause = Attr('is_active').eq(True)
            condition = clause if condition is None else condition & clause

        items = self.scan_all(FilterExpression=condition) if condition is not None else self.scan_all()
        assignments = [self._item_to_assignment(i) for i in items]
        assignments.sort(key=lambda a: (a.created_at, a.assignment_id))
        return assignments

    def update(self, assignment_id: str, cleaner_id: Optional[str] = None,
               hours: Optional[float] = None) -> CleanerAssignment:
        """Change the cleaner or the hours of an assignment."""
        changes = {}
        if cleaner_id:
            changes['cleaner_id'] = cleaner_id
        if hours is not None:
            changes['hours'] = float(hours)
        if not changes:
            raise ValidationError('Nothing to update')

        changes['updated_at'] = utc_now_iso()
        return self._update_existing(assignment_id, changes)

    def deactivate(self, assignment_id: str) -> CleanerAssignment:
        """Soft-delete an assignment."""
        assignment = self._update_existing(
            assignment_id, {'is_active': False, 'updated_at': utc_now_iso()}
        )
        logger.info(f"Deactivated assignment {assignment_id}")
        return assignment

    def deactivate_for_booking(self, booking_id: str) -> int:
        """
        Deactivate every active assignment of a cancelled booking.

        Returns:
            Number of assignments deactivated
        """
        count = 0
        for assignment in self.list(booking_id=booking_id):
            self.deactivate(assignment.assignment_id)
            count += 1
        return count

    def start_job(self, assignment_id: str, cleaner_id: Optional[str] = None) -> CleanerAssignment:
        """
        Mark an assignment as in progress.

        Raises:
            NotFoundError: If the assignment does not exist
            ValidationError: If it belongs to another cleaner, is inactive or already completed
        """
        assignment = self._get_for_cleaner(assignment_id, cleaner_id)
        if assignment.status == STATUS_COMPLETED:
            raise ValidationError('Job already completed')

        now = utc_now_iso()
        return self._update_existing(assignment_id, {
            'status': STATUS_IN_PROGRESS,
            'started_at': now,
            'updated_at': now
        })

    def complete_job(self, assignment_id: str, cleaner_id: Optional[str] = None,
                     completed_at: Optional[str] = None) -> CleanerAssignment:
        """
        Mark an assignment as completed and record how long it took.

        Args:
            assignment_id: Assignment being completed
            cleaner_id: Cleaner reporting the completion (checked when given)
            completed_at: Completion timestamp (defaults to now)

        Returns:
            The updated CleanerAssignment

        Raises:
            ValidationError: If the job was not started or completed_at is not a timestamp
        """
        assignment = self._get_for_cleaner(assignment_id, cleaner_id)
        if assignment.status != STATUS_IN_PROGRESS or not assignment.started_at:
            raise ValidationError('Job has not been started')

        completed = parse_timestamp(completed_at or utc_now_iso())
        elapsed = completed - parse_timestamp(assignment.started_at)
        duration_minutes = max(0, round(elapsed.total_seconds() / 60))

        return self._update_existing(assignment_id, {
            'status': STATUS_COMPLETED,
            'completed_at': completed.isoformat(),
            'duration_minutes': duration_minutes,
            'updated_at': utc_now_iso()
        })

    def _get_for_cleaner(self, assignment_id: str, cleaner_id: Optional[str]) -> CleanerAssignment:
        assignment = self.get(assignment_id)
        if not assignment.is_active:
            raise ValidationError('Assignment is no longer active')
        if cleaner_id and assignment.cleaner_id != cleaner_id:
            raise ValidationError('Assignment belongs to another cleaner')
        return assignment

    def _update_existing(self, assignment_id: str, changes: dict) -> CleanerAssignment:
        try:
            item = self.update_item(
                {'assignment_id': assignment_id},
                set_fields=changes,
                condition='attribute_exists(assignment_id)'
            )
        except ConflictError as e:
            raise NotFoundError(f"Assignment {assignment_id} not found") from e
        return self._item_to_assignment(item)

    @staticmethod
    def _assignment_to_item(assignment: CleanerAssignment) -> dict:
        item = {
            'assignment_id': assignment.assignment_id,
            'cleaner_id': assignment.cleaner_id,
            'booking_id': assignment.booking_id,
            'hours': assignment.hours,
            'is_active': assignment.is_active,
            'status': assignment.status,
            'created_at': assignment.created_at,
            'updated_at': assignment.updated_at
        }
        for name in ('started_at', 'completed_at', 'duration_minutes'):
            value = getattr(assignment, name)
            if value is not None:
                item[name] = value
        return item

    @staticmethod
    def _item_to_assignment(item: dict) -> CleanerAssignment:
        item = from_dynamodb(item)
        return CleanerAssignment(
            assignment_id=item['assignment_id'],
            cleaner_id=item['cleaner_id'],
            booking_id=item['booking_id'],
            hours=float(item.get('hours', 2.0)),
            is_active=bool(item.get('is_active', True)),
            status=item.get('status', STATUS_ASSIGNED),
            started_at=item.get('started_at'),
            completed_at=item.get('completed_at'),
            duration_minutes=item.get('duration_minutes'),
            created_at=item.get('created_at', ''),
            updated_at=item.get('updated_at', '')
        )


def assignment_to_dict(assignment: CleanerAssignment) -> dict:
    return {
        'id': assignment.assignment_id,
        'cleaner_id': assignment.cleaner_id,
        'booking_id': assignment.booking_id,
        'hours': assignment.hours,
        'is_active': assignment.is_active,
        'status': assignment.status,
        'started_at': assignment.started_at,
        'completed_at': assignment.completed_at,
        'duration_minutes': assignment.duration_minutes,
        'created_at': assignment.created_at,
        'updated_at': assignment.updated_at
    }


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp, accepting a trailing Z.

    Timestamps without an offset are taken as UTC.

    Raises:
        ValidationError: If the value is not an ISO 8601 timestamp
    """
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
