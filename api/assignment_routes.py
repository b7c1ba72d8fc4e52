"""HTTP handlers for cleaner assignments and job tracking."""
import logging
from typing import Any, Dict, Optional

from api.router import ApiRequest, Router, parse_hours
from api.services import Services
from processor.errors import ValidationError
from storage.assignment_store import assignment_to_dict, parse_timestamp

logger = logging.getLogger(__name__)


def _timestamp(value: Optional[str]) -> Optional[str]:
    """Normalize a client timestamp to ISO 8601 with a UTC offset."""
    if not value:
        return None
    return parse_timestamp(value).isoformat()


class AssignmentRoutes:
    """Endpoints for assigning cleaners and recording job progress."""

    def __init__(self, services: Services):
        self.store = services.assignment_store

    def register(self, router: Router) -> None:
        router.add('GET', '/api/cleaner-assignments', self.list_assignments)
        router.add('POST', '/api/cleaner-assignments', self.create_assignment)
        router.add('PATCH', '/api/cleaner-assignments', self.update_assignment)
        router.add('DELETE', '/api/cleaner-assignments', self.delete_assignment)
        router.add('POST', '/api/job-start', self.start_job)
        router.add('POST', '/api/job-completion', self.complete_job)

    def list_assignments(self, request: ApiRequest) -> Dict[str, Any]:
        assignments = self.store.list(
            cleaner_id=request.query.get('cleanerId'),
            booking_id=request.query.get('bookingId'),
            include_inactive=request.query.get('includeInactive') == 'true'
        )
        return {'assignments': [assignment_to_dict(a) for a in assignments]}

    def create_assignment(self, request: ApiRequest):
        cleaner_id, booking_id = request.require('cleanerId', 'bookingId')
        hours = parse_hours(request.body.get('hours'))
        assignment = self.store.create(
            cleaner_id, booking_id, hours=hours if hours is not None else 2.0
        )
        return 201, {'assignment': assignment_to_dict(assignment)}

    def update_assignment(self, request: ApiRequest) -> Dict[str, Any]:
        assignment_id, = request.require('id')
        assignment = self.store.update(
            assignment_id,
            cleaner_id=request.body.get('cleanerId'),
            hours=parse_hours(request.body.get('hours'))
        )
        return {'assignment': assignment_to_dict(assignment)}

    def delete_assignment(self, request: ApiRequest) -> Dict[str, Any]:
        assignment_id = request.query.get('id') or request.body.get('id')
        if not assignment_id:
            raise ValidationError('Missing required fields: id')
        assignment = self.store.deactivate(assignment_id)
        return {'assignment': assignment_to_dict(assignment)}

    def start_job(self, request: ApiRequest) -> Dict[str, Any]:
        assignment_id, = request.require('assignmentId')
        assignment = self.store.start_job(assignment_id, cleaner_id=request.body.get('cleanerId'))
        logger.info(f"Job started for assignment {assignment_id}")
        return {'assignment': assignment_to_dict(assignment)}

    def complete_job(self, request: ApiRequest) -> Dict[str, Any]:
        assignment_id, = request.require('assignmentId')
        assignment = self.store.complete_job(
            assignment_id,
            cleaner_id=request.body.get('cleanerId'),
            completed_at=_timestamp(request.body.get('completedAt'))
        )
        logger.info(
            f"Job completed for assignment {assignment_id} "
            f"in {assignment.duration_minutes} minutes"
        )
        return {'assignment': assignment_to_dict(assignment)}
