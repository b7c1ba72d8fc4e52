"""Unit tests for DynamoDB manager."""
import threading
from decimal import Decimal
from unittest.mock import Mock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from processor.errors import ConflictError, PersistenceError
from storage.dynamodb_manager import (
    DynamoDBManager, ThreadLocalResource, from_dynamodb, to_dynamodb
)


@pytest.fixture
def dynamodb_table(aws_env):
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName='test-items',
            KeySchema=[
                {'AttributeName': 'item_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'item_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb


@pytest.fixture
def dynamodb_manager(dynamodb_table):
    """Create DynamoDBManager instance with mock table."""
    return DynamoDBManager('test-items', dynamodb=dynamodb_table)


def test_to_dynamodb_converts_floats():
    """Test floats are converted to Decimal recursively."""
    converted = to_dynamodb({'hours': 2.5, 'nested': {'rate': 1.25}, 'values': [0.5]})

    assert converted == {
        'hours': Decimal('2.5'),
        'nested': {'rate': Decimal('1.25')},
        'values': [Decimal('0.5')]
    }


def test_from_dynamodb_converts_decimals():
    """Test Decimals come back as int or float."""
    converted = from_dynamodb({'count': Decimal('3'), 'hours': Decimal('2.5')})

    assert converted == {'count': 3, 'hours': 2.5}
    assert isinstance(converted['count'], int)


def test_scan_all_empty_table(dynamodb_manager):
    """Test scan_all returns empty list for empty table."""
    assert dynamodb_manager.scan_all() == []


def test_put_and_get_item(dynamodb_manager):
    """Test an item round trip including a float attribute."""
    dynamodb_manager.put_item({'item_id': 'a', 'hours': 1.5})

    item = dynamodb_manager.get_item({'item_id': 'a'})

    assert item['hours'] == Decimal('1.5')
    assert dynamodb_manager.get_item({'item_id': 'missing'}) is None


def test_batch_write_items_large_batch(dynamodb_manager):
    """Test batch_write_items with more than 25 items (batch limit)."""
    items = [{'item_id': f'item-{i}', 'value': i} for i in range(30)]

    count = dynamodb_manager.batch_write_items(items)

    assert count == 30
    assert len(dynamodb_manager.scan_all()) == 30


def test_batch_write_items_empty(dynamodb_manager):
    assert dynamodb_manager.batch_write_items([]) == 0


def test_update_item_set_and_add(dynamodb_manager):
    """Test SET and ADD in one update, including a reserved attribute name."""
    dynamodb_manager.put_item({'item_id': 'a', 'status': 'created', 'count': 1})

    updated = dynamodb_manager.update_item(
        {'item_id': 'a'},
        set_fields={'status': 'running'},
        add_fields={'count': 2}
    )

    assert updated['status'] == 'running'
    assert updated['count'] == 3


def test_update_item_condition_failure(dynamodb_manager):
    """Test that a failed condition raises ConflictError."""
    dynamodb_manager.put_item({'item_id': 'a', 'status': 'completed'})

    with pytest.raises(ConflictError):
        dynamodb_manager.update_item(
            {'item_id': 'a'},
            set_fields={'status': 'running'},
            condition='#status = :expected',
            condition_values={':expected': 'created'}
        )

    assert dynamodb_manager.get_item({'item_id': 'a'})['status'] == 'completed'


def test_client_errors_become_persistence_errors(dynamodb_manager):
    """Test that DynamoDB failures surface as PersistenceError."""
    dynamodb_manager.table = Mock()
    dynamodb_manager.table.scan.side_effect = ClientError(
        {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'Slow down'}},
        'Scan'
    )

    with pytest.raises(PersistenceError) as exc_info:
        dynamodb_manager.scan_all()

    assert 'test-items' in exc_info.value.message


def test_thread_local_resource_per_thread(aws_env):
    """Test that each thread gets its own resource and reuses it."""
    resources = ThreadLocalResource(region_name='us-east-1')
    seen = []

    def grab():
        seen.append(resources.get())
        seen.append(resources.get())

    worker = threading.Thread(target=grab)
    worker.start()
    worker.join()

    main = resources.get()
    assert seen[0] is seen[1]
    assert seen[0] is not main
    assert resources.get() is main


def test_manager_tables_are_bound_per_thread(dynamodb_table):
    """Test that concurrent writers each use their own table handle."""
    manager = DynamoDBManager('test-items', dynamodb=ThreadLocalResource(region_name='us-east-1'))
    tables = []

    def write(item_id):
        tables.append(manager.table)
        manager.put_item({'item_id': item_id})

    workers = [threading.Thread(target=write, args=(f'item-{i}',)) for i in range(4)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len({id(t) for t in tables}) == 4
    assert sorted(i['item_id'] for i in manager.scan_all()) == [f'item-{i}' for i in range(4)]
