"""Storage for sync sessions, their log entries and the sync lease."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.errors import ConflictError
from processor.models import SyncLogEntry, SyncSession, SyncStats
from storage.dynamodb_manager import (
    DynamoDBManager, from_dynamodb, is_conditional_failure, to_dynamodb, utc_now_iso
)

logger = logging.getLogger(__name__)


class SessionStore(DynamoDBManager):
    """Sync session records."""

    def put_session(self, session: SyncSession) -> None:
        self.put_item(session_to_item(session), ConditionExpression='attribute_not_exists(session_id)')

    def load(self, session_id: str) -> Optional[SyncSession]:
        item = self.get_item({'session_id': session_id})
        return item_to_session(item) if item else None

    def scan_sessions(self, status: Optional[str] = None,
                      sync_type: Optional[str] = None) -> List[SyncSession]:
        """Return sessions, newest first, optionally filtered."""
        condition = None
        for attr, value in (('status', status), ('sync_type', sync_type)):
            if value:
                clause = Attr(attr).eq(value)
                condition = clause if condition is None else condition & clause

        items = self.scan_all(FilterExpression=condition) if condition is not None else self.scan_all()
        sessions = [item_to_session(i) for i in items]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions


class LogEntryStore(DynamoDBManager):
    """Per-event decision records, keyed by session."""

    def save_entries(self, session_id: str, entries: List[SyncLogEntry]) -> int:
        """
        Persist log entries for a session.

        Args:
            session_id: Owning session
            entries: Entries to write

        Returns:
            Count of successfully written entries
        """
        items = []
        for seq, entry in enumerate(entries):
            timestamp = entry.timestamp or utc_now_iso()
            items.append({
                'session_id': session_id,
                'entry_key': f"{timestamp}#{seq:06d}#{uuid.uuid4().hex[:8]}",
                'operation': entry.operation,
                'event_id': entry.event_id,
                'listing_name': entry.listing_name,
                'event_details': entry.event_details,
                'reasoning': entry.reasoning,
                'metadata': entry.metadata,
                'timestamp': timestamp
            })
        return self.batch_write_items(items)

    def get_entries(self, session_id: str, operation: Optional[str] = None) -> List[SyncLogEntry]:
        """Return log entries of a session in write order."""
        kwargs: Dict[str, Any] = {'KeyConditionExpression': Key('session_id').eq(session_id)}
        if operation:
            kwargs['FilterExpression'] = Attr('operation').eq(operation)

        entries = []
        for item in self.query_all(**kwargs):
            item = from_dynamodb(item)
            entries.append(SyncLogEntry(
                operation=item['operation'],
                event_id=item.get('event_id', ''),
                listing_name=item.get('listing_name', ''),
                event_details=item.get('event_details', {}),
                reasoning=item.get('reasoning', ''),
                metadata=item.get('metadata', {}),
                timestamp=item.get('timestamp', '')
            ))
        return entries


class LeaseStore(DynamoDBManager):
    """Conditional primitives over lease records."""

    def put_if_free(self, lease_name: str, owner_token: str, session_id: Optional[str],
                    expires_at: float, now: float) -> None:
        """
        Claim a lease when it does not exist or has expired.

        Raises:
            ConflictError: If a live lease is held by another owner
        """
        try:
            self.table.put_item(
                Item={
                    'lease_name': lease_name,
                    'owner_token': owner_token,
                    'session_id': session_id or '',
                    'expires_at': to_dynamodb(float(expires_at)),
                    'acquired_at': utc_now_iso()
                },
                ConditionExpression='attribute_not_exists(lease_name) OR expires_at < :now',
                ExpressionAttributeValues={':now': to_dynamodb(float(now))}
            )
        except ClientError as e:
            if is_conditional_failure(e):
                holder = self.get_item({'lease_name': lease_name}) or {}
                raise ConflictError(
                    'A sync is already running',
                    {
                        'runningSessionId': holder.get('session_id') or None,
                        'leaseExpiresAt': from_dynamodb(holder.get('expires_at'))
                    }
                ) from e
            raise self._fail('put_item', e) from e

    def extend(self, lease_name: str, owner_token: str, expires_at: float,
               session_id: Optional[str] = None) -> None:
        """Push the expiry forward; only the owner may do so."""
        set_fields: Dict[str, Any] = {'expires_at': float(expires_at)}
        if session_id:
            set_fields['session_id'] = session_id
        self.update_item(
            {'lease_name': lease_name},
            set_fields=set_fields,
            condition='owner_token = :owner',
            condition_values={':owner': owner_token}
        )

    def delete_if_owner(self, lease_name: str, owner_token: str) -> bool:
        """Remove a lease held by the given owner. Returns False if not held."""
        try:
            self.table.delete_item(
                Key={'lease_name': lease_name},
                ConditionExpression='owner_token = :owner',
                ExpressionAttributeValues={':owner': owner_token}
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise self._fail('delete_item', e) from e
        return True


def session_to_item(session: SyncSession) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        'session_id': session.session_id,
        'sync_type': session.sync_type,
        'status': session.status,
        'triggered_by': session.triggered_by,
        'total_listings': session.total_listings,
        'completed_listings': session.completed_listings,
        'created_at': session.created_at,
        'metadata': session.metadata
    }
    item.update(session.stats.to_dict())
    for name in ('target_listing_id', 'target_listing_name', 'started_at',
                 'completed_at', 'duration_seconds', 'error_message'):
        value = getattr(session, name)
        if value is not None:
            item[name] = value
    return item


def item_to_session(item: Dict[str, Any]) -> SyncSession:
    item = from_dynamodb(item)
    return SyncSession(
        session_id=item['session_id'],
        sync_type=item.get('sync_type', 'single'),
        status=item['status'],
        triggered_by=item.get('triggered_by', 'manual'),
        target_listing_id=item.get('target_listing_id'),
        target_listing_name=item.get('target_listing_name'),
        total_listings=int(item.get('total_listings', 0)),
        completed_listings=int(item.get('completed_listings', 0)),
        stats=SyncStats.from_mapping(item),
        created_at=item.get('created_at', ''),
        started_at=item.get('started_at'),
        completed_at=item.get('completed_at'),
        duration_seconds=item.get('duration_seconds'),
        error_message=item.get('error_message'),
        metadata=item.get('metadata') or {}
    )


def paginate(items: List[Any], page: int, limit: int) -> Tuple[List[Any], Dict[str, int]]:
    """Slice a list into a page and describe the pagination."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = len(items)
    start = (page - 1) * limit
    pages = (total + limit - 1) // limit
    return items[start:start + limit], {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': pages
    }
