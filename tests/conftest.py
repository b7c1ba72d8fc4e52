"""Shared fixtures: mocked DynamoDB tables and iCal feed builders."""
import os
from unittest.mock import patch

import pytest
from moto import mock_aws

from config.settings import AppConfig
from storage import schema
from storage.assignment_store import AssignmentStore
from storage.dynamodb_manager import ThreadLocalResource
from storage.event_store import BookingEventStore
from storage.listing_store import ListingStore
from storage.schema import create_tables
from storage.session_store import LeaseStore, LogEntryStore, SessionStore
from sync.session_logger import SyncSessionLogger


@pytest.fixture
def aws_env():
    """Fake credentials so boto3 never touches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def config():
    return AppConfig(table_prefix='test-sync')


@pytest.fixture
def dynamodb(aws_env, config):
    """Per-thread DynamoDB resources with every table of the service created."""
    with mock_aws():
        resources = ThreadLocalResource(region_name='us-east-1')
        create_tables(resources.get(), config)
        yield resources


@pytest.fixture
def event_store(dynamodb, config):
    return BookingEventStore(config.table_name(schema.BOOKING_EVENTS), dynamodb=dynamodb)


@pytest.fixture
def listing_store(dynamodb, config):
    return ListingStore(
        config.table_name(schema.LISTINGS),
        config.table_name(schema.ICAL_FEEDS),
        dynamodb=dynamodb
    )


@pytest.fixture
def assignment_store(dynamodb, config, event_store):
    return AssignmentStore(
        config.table_name(schema.CLEANER_ASSIGNMENTS), event_store, dynamodb=dynamodb
    )


@pytest.fixture
def session_logger(dynamodb, config):
    return SyncSessionLogger(
        SessionStore(config.table_name(schema.SYNC_SESSIONS), dynamodb=dynamodb),
        LogEntryStore(config.table_name(schema.SYNC_LOG_ENTRIES), dynamodb=dynamodb)
    )


@pytest.fixture
def lease_store(dynamodb, config):
    return LeaseStore(config.table_name(schema.SYNC_LEASES), dynamodb=dynamodb)


def _vevent(uid, start, end, summary='Reserved'):
    lines = ['BEGIN:VEVENT']
    if uid:
        lines.append(f'UID:{uid}')
    if start:
        lines.append(f'DTSTART;VALUE=DATE:{start}')
    if end:
        lines.append(f'DTEND;VALUE=DATE:{end}')
    if summary:
        lines.append(f'SUMMARY:{summary}')
    lines.append('END:VEVENT')
    return lines


@pytest.fixture
def ical_feed():
    """
    Build an iCal document.

    Each event is a tuple ``(uid, start, end[, summary])`` with dates as
    ``YYYYMMDD``; pass None to leave a property out.
    """
    def build(*events, calendar_name=None):
        lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', 'PRODID:-//Test//Bookings//EN']
        if calendar_name:
            lines.append(f'X-WR-CALNAME:{calendar_name}')
        for event in events:
            lines.extend(_vevent(*event))
        lines.append('END:VCALENDAR')
        return '\r\n'.join(lines) + '\r\n'

    return build
