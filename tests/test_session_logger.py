"""Unit tests for SyncSessionLogger."""
import pytest

from processor.errors import ConflictError, NotFoundError
from processor.models import LogOperation, SessionStatus, SyncLogEntry, SyncStats
from sync.session_logger import final_status


class TestFinalStatus:
    """Test cases for final status selection."""

    def test_all_succeeded(self):
        assert final_status(5, 0) == SessionStatus.COMPLETED

    def test_some_failed(self):
        assert final_status(4, 1) == SessionStatus.PARTIAL

    def test_all_failed(self):
        assert final_status(0, 3) == SessionStatus.ERROR


class TestSyncSessionLogger:
    """Test cases for the session state machine."""

    def test_lifecycle(self, session_logger):
        """Test created -> running -> completed with counters and duration."""
        session = session_logger.create_session(sync_type='all', total_listings=7)
        assert session.status == SessionStatus.CREATED

        running = session_logger.start_session(session.session_id)
        assert running.status == SessionStatus.RUNNING
        assert running.started_at

        progress = session_logger.update_progress(
            session.session_id, 5, SyncStats(total_added=3, total_unchanged=10)
        )
        assert progress.completed_listings == 5
        assert progress.stats.total_added == 3

        done = session_logger.complete_session(
            session.session_id, status=SessionStatus.COMPLETED,
            stats=SyncStats(total_added=4, total_unchanged=12)
        )
        assert done.status == SessionStatus.COMPLETED
        assert done.stats.total_added == 4
        assert done.duration_seconds is not None
        assert done.completed_at

    def test_cannot_start_twice(self, session_logger):
        session = session_logger.create_session()
        session_logger.start_session(session.session_id)

        with pytest.raises(ConflictError):
            session_logger.start_session(session.session_id)

    def test_cannot_complete_finished_session(self, session_logger):
        session = session_logger.create_session()
        session_logger.start_session(session.session_id)
        session_logger.complete_session(session.session_id)

        with pytest.raises(ConflictError) as exc_info:
            session_logger.complete_session(session.session_id, status=SessionStatus.ERROR)

        assert exc_info.value.details['status'] == SessionStatus.COMPLETED

    def test_cannot_complete_unstarted_session(self, session_logger):
        session = session_logger.create_session()

        with pytest.raises(ConflictError):
            session_logger.complete_session(session.session_id)

    def test_unknown_session(self, session_logger):
        with pytest.raises(NotFoundError):
            session_logger.start_session('missing')
        with pytest.raises(NotFoundError):
            session_logger.get_session('missing')

    def test_increment_stats_accumulates(self, session_logger):
        """Test ADD-based counters from several single-listing runs."""
        session = session_logger.create_session(sync_type='all', total_listings=2)
        session_logger.start_session(session.session_id)

        session_logger.increment_stats(session.session_id, SyncStats(total_added=2))
        updated = session_logger.increment_stats(
            session.session_id, SyncStats(total_added=1, total_errors=1)
        )

        assert updated.completed_listings == 2
        assert updated.stats.total_added == 3
        assert updated.stats.total_errors == 1

    def test_handle_error_marks_session_failed(self, session_logger):
        session = session_logger.create_session()
        session_logger.start_session(session.session_id)

        failed = session_logger.handle_error(session.session_id, RuntimeError('boom'))

        assert failed.status == SessionStatus.ERROR
        assert failed.error_message == 'boom'

    def test_handle_error_after_completion_is_ignored(self, session_logger):
        session = session_logger.create_session()
        session_logger.start_session(session.session_id)
        session_logger.complete_session(session.session_id)

        assert session_logger.handle_error(session.session_id, RuntimeError('late')) is None
        assert session_logger.get_session(session.session_id).status == SessionStatus.COMPLETED

    def test_log_entries_round_trip(self, session_logger):
        session = session_logger.create_session()
        entries = [
            SyncLogEntry(
                operation=LogOperation.ADDITION,
                event_id=f'uid-{i}',
                listing_name='Beach House',
                event_details={'checkin_date': '2024-03-10', 'nights': 5},
                reasoning='New booking found in feed'
            )
            for i in range(3)
        ]

        assert session_logger.save_log_entries(session.session_id, entries) == 3

        loaded = session_logger.get_log_entries(session.session_id)
        assert [e.event_id for e in loaded] == ['uid-0', 'uid-1', 'uid-2']
        assert loaded[0].event_details['nights'] == 5
        assert session_logger.get_log_entries(
            session.session_id, operation=LogOperation.CANCELLATION
        ) == []

    def test_list_sessions_filters(self, session_logger):
        first = session_logger.create_session(sync_type='single')
        session_logger.create_session(sync_type='all')

        singles = session_logger.list_sessions(sync_type='single')

        assert [s.session_id for s in singles] == [first.session_id]
        assert len(session_logger.list_sessions()) == 2
