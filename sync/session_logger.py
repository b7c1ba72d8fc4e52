"""Sync session lifecycle and progress tracking.

A session moves ``created -> running -> completed | partial | error``.
Every transition is a conditional write on the current status, so a
session that was already finalized cannot be moved again.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from processor.errors import ConflictError, NotFoundError
from processor.models import SessionStatus, SyncLogEntry, SyncSession, SyncStats
from storage.dynamodb_manager import utc_now_iso
from storage.session_store import LogEntryStore, SessionStore, item_to_session

logger = logging.getLogger(__name__)


def final_status(successful: int, failed: int) -> str:
    """Status of a finished run given per-listing outcomes."""
    if failed == 0:
        return SessionStatus.COMPLETED
    if successful == 0:
        return SessionStatus.ERROR
    return SessionStatus.PARTIAL


class SyncSessionLogger:
    """Records the progress and outcome of sync runs."""

    def __init__(self, sessions: SessionStore, log_entries: LogEntryStore):
        self.sessions = sessions
        self.log_entries = log_entries

    def create_session(self, sync_type: str = 'single', triggered_by: str = 'manual',
                       total_listings: int = 1, target_listing_id: Optional[str] = None,
                       target_listing_name: Optional[str] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> SyncSession:
        """
        Create a new session in the ``created`` state.

        Args:
            sync_type: 'single' or 'all'
            triggered_by: 'manual' or 'automatic'
            total_listings: Number of listings the run will process
            target_listing_id: Listing of a single-listing run
            target_listing_name: Display name of that listing
            metadata: Free-form details stored with the session

        Returns:
            The new SyncSession
        """
        session = SyncSession(
            session_id=str(uuid.uuid4()),
            sync_type=sync_type,
            status=SessionStatus.CREATED,
            triggered_by=triggered_by,
            target_listing_id=target_listing_id,
            target_listing_name=target_listing_name,
            total_listings=total_listings,
            created_at=utc_now_iso(),
            metadata=metadata or {}
        )
        self.sessions.put_session(session)
        logger.info(
            f"Created {sync_type} sync session {session.session_id}",
            extra={'session_id': session.session_id, 'triggered_by': triggered_by}
        )
        return session

    def start_session(self, session_id: str) -> SyncSession:
        """Move a session from ``created`` to ``running``."""
        item = self._transition(
            session_id,
            {'status': SessionStatus.RUNNING, 'started_at': utc_now_iso()},
            allowed_from=(SessionStatus.CREATED,)
        )
        return item_to_session(item)

    def update_progress(self, session_id: str, completed_listings: int,
                        stats: SyncStats) -> SyncSession:
        """
        Overwrite the live progress of a running session.

        Args:
            session_id: Session being updated
            completed_listings: Listings processed so far
            stats: Counters accumulated so far

        Returns:
            The updated SyncSession
        """
        fields = {'completed_listings': completed_listings}
        fields.update(stats.to_dict())
        item = self._transition(session_id, fields, allowed_from=(SessionStatus.RUNNING,))
        logger.info(
            f"Session {session_id} progress: {completed_listings} listings completed"
        )
        return item_to_session(item)

    def increment_stats(self, session_id: str, stats: SyncStats,
                        completed_listings: int = 1) -> SyncSession:
        """Atomically add counters to a session run by another caller."""
        add_fields: Dict[str, Any] = {'completed_listings': completed_listings}
        add_fields.update(stats.to_dict())
        try:
            item = self.sessions.update_item(
                {'session_id': session_id},
                add_fields=add_fields,
                condition='attribute_exists(session_id)'
            )
        except ConflictError as e:
            raise NotFoundError(f"Sync session {session_id} not found") from e
        return item_to_session(item)

    def complete_session(self, session_id: str, status: str = SessionStatus.COMPLETED,
                         stats: Optional[SyncStats] = None,
                         error_message: Optional[str] = None) -> SyncSession:
        """
        Finalize a running session.

        Args:
            session_id: Session to finalize
            status: completed, partial or error
            stats: Final counters (the stored counters are kept when omitted)
            error_message: Summary of what went wrong, if anything

        Returns:
            The finalized SyncSession
        """
        if status not in SessionStatus.FINAL:
            raise ConflictError(f"Invalid final status: {status}")

        session = self.get_session(session_id)
        completed_at = utc_now_iso()
        fields: Dict[str, Any] = {
            'status': status,
            'completed_at': completed_at,
            'duration_seconds': _duration_seconds(session.started_at or session.created_at,
                                                  completed_at)
        }
        if stats is not None:
            fields.update(stats.to_dict())
        if error_message:
            fields['error_message'] = error_message

        item = self._transition(session_id, fields, allowed_from=(SessionStatus.RUNNING,))
        logger.info(
            f"Session {session_id} finished with status {status}",
            extra={'session_id': session_id, 'duration_seconds': fields['duration_seconds']}
        )
        return item_to_session(item)

    def handle_error(self, session_id: str, error: Exception) -> Optional[SyncSession]:
        """
        Mark a session as failed after an unexpected error.

        Returns:
            The failed session, or None if it had already been finalized
        """
        logger.error(f"Sync session {session_id} failed: {error}")
        try:
            session = self.get_session(session_id)
            completed_at = utc_now_iso()
            item = self._transition(
                session_id,
                {
                    'status': SessionStatus.ERROR,
                    'error_message': str(error),
                    'completed_at': completed_at,
                    'duration_seconds': _duration_seconds(
                        session.started_at or session.created_at, completed_at
                    )
                },
                allowed_from=(SessionStatus.CREATED, SessionStatus.RUNNING)
            )
        except ConflictError:
            logger.warning(f"Session {session_id} already finalized; error not recorded")
            return None
        return item_to_session(item)

    def save_log_entries(self, session_id: str, entries: List[SyncLogEntry]) -> int:
        if not entries:
            return 0
        saved = self.log_entries.save_entries(session_id, entries)
        if saved < len(entries):
            logger.warning(
                f"Only {saved}/{len(entries)} log entries saved for session {session_id}"
            )
        return saved

    def get_session(self, session_id: str) -> SyncSession:
        session = self.sessions.load(session_id)
        if session is None:
            raise NotFoundError(f"Sync session {session_id} not found")
        return session

    def get_log_entries(self, session_id: str,
                        operation: Optional[str] = None) -> List[SyncLogEntry]:
        return self.log_entries.get_entries(session_id, operation=operation)

    def list_sessions(self, status: Optional[str] = None,
                      sync_type: Optional[str] = None) -> List[SyncSession]:
        return self.sessions.scan_sessions(status=status, sync_type=sync_type)

    def _transition(self, session_id: str, fields: Dict[str, Any], allowed_from) -> Dict:
        placeholders = {f":from{i}": status for i, status in enumerate(allowed_from)}
        condition = ' OR '.join(f"#status = {p}" for p in placeholders)
        try:
            return self.sessions.update_item(
                {'session_id': session_id},
                set_fields=fields,
                condition=f"attribute_exists(session_id) AND ({condition})",
                condition_values=placeholders
            )
        except ConflictError as e:
            current = self.sessions.load(session_id)
            if current is None:
                raise NotFoundError(f"Sync session {session_id} not found") from e
            raise ConflictError(
                f"Session {session_id} is {current.status}; "
                f"expected {' or '.join(allowed_from)}",
                {'sessionId': session_id, 'status': current.status}
            ) from e


def _duration_seconds(started_at: str, completed_at: str) -> int:
    elapsed = datetime.fromisoformat(completed_at) - datetime.fromisoformat(started_at)
    return max(0, int(round(elapsed.total_seconds())))
