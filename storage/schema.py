"""DynamoDB table definitions used for provisioning and tests."""
import logging
from typing import Dict, List

from config.settings import AppConfig

logger = logging.getLogger(__name__)


LISTINGS = 'listings'
ICAL_FEEDS = 'ical-feeds'
BOOKING_EVENTS = 'booking-events'
SYNC_SESSIONS = 'sync-sessions'
SYNC_LOG_ENTRIES = 'sync-log-entries'
SYNC_LEASES = 'sync-leases'
CLEANER_ASSIGNMENTS = 'cleaner-assignments'

BOOKING_INDEX = 'booking-index'


def _string_key(name: str) -> Dict:
    return {
        'KeySchema': [{'AttributeName': name, 'KeyType': 'HASH'}],
        'AttributeDefinitions': [{'AttributeName': name, 'AttributeType': 'S'}],
    }


TABLE_DEFINITIONS: Dict[str, Dict] = {
    LISTINGS: _string_key('listing_id'),
    ICAL_FEEDS: _string_key('feed_id'),
    BOOKING_EVENTS: {
        'KeySchema': [
            {'AttributeName': 'listing_id', 'KeyType': 'HASH'},
            {'AttributeName': 'version_key', 'KeyType': 'RANGE'}
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'listing_id', 'AttributeType': 'S'},
            {'AttributeName': 'version_key', 'AttributeType': 'S'},
            {'AttributeName': 'booking_id', 'AttributeType': 'S'},
            {'AttributeName': 'version', 'AttributeType': 'N'}
        ],
        'GlobalSecondaryIndexes': [
            {
                'IndexName': BOOKING_INDEX,
                'KeySchema': [
                    {'AttributeName': 'booking_id', 'KeyType': 'HASH'},
                    {'AttributeName': 'version', 'KeyType': 'RANGE'}
                ],
                'Projection': {'ProjectionType': 'ALL'}
            }
        ],
    },
    SYNC_SESSIONS: _string_key('session_id'),
    SYNC_LOG_ENTRIES: {
        'KeySchema': [
            {'AttributeName': 'session_id', 'KeyType': 'HASH'},
            {'AttributeName': 'entry_key', 'KeyType': 'RANGE'}
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'session_id', 'AttributeType': 'S'},
            {'AttributeName': 'entry_key', 'AttributeType': 'S'}
        ],
    },
    SYNC_LEASES: _string_key('lease_name'),
    CLEANER_ASSIGNMENTS: _string_key('assignment_id'),
}


def create_tables(dynamodb, config: AppConfig) -> List[str]:
    """
    Create every table of the service with on-demand billing.

    Args:
        dynamodb: boto3 DynamoDB resource
        config: Application config (provides the table prefix)

    Returns:
        Names of the created tables
    """
    created = []
    for suffix, definition in TABLE_DEFINITIONS.items():
        name = config.table_name(suffix)
        dynamodb.create_table(
            TableName=name,
            BillingMode='PAY_PER_REQUEST',
            **definition
        )
        logger.info(f"Created table {name}")
        created.append(name)
    return created
