"""Shared DynamoDB table access for the sync stores."""
import logging
import re
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def to_dynamodb(value: Any) -> Any:
    """Convert floats (recursively) to Decimal, as DynamoDB requires."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamodb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamodb(v) for v in value]
    return value


def from_dynamodb(value: Any) -> Any:
    """Convert Decimals (recursively) back to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamodb(v) for v in value]
    return value


def is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


def _condition_names(condition: str) -> Dict[str, str]:
    """Names referenced as ``#name`` inside a condition expression."""
    return {token: token[1:] for token in re.findall(r'#[A-Za-z_]+', condition)}


class ThreadLocalResource:
    """
    Hands out one boto3 DynamoDB resource per thread.

    boto3 resources are not thread-safe; each thread builds its own from a
    fresh session.
    """

    def __init__(self, **resource_kwargs):
        """
        Args:
            **resource_kwargs: Passed to ``Session.resource`` (e.g. region_name)
        """
        self.resource_kwargs = resource_kwargs
        self._local = threading.local()

    def get(self):
        resource = getattr(self._local, 'resource', None)
        if resource is None:
            session = boto3.session.Session()
            resource = session.resource('dynamodb', **self.resource_kwargs)
            self._local.resource = resource
        return resource


class DynamoDBManager:
    """Base class wrapping a single DynamoDB table."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional ThreadLocalResource (or a boto3 DynamoDB resource
                used only from one thread) to share between stores
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or ThreadLocalResource()
        self._tables = threading.local()
        self._table_override = None
        logger.debug(f"Initialized {type(self).__name__} for table: {table_name}")

    @property
    def table(self):
        """Table handle bound to the calling thread's resource."""
        if self._table_override is not None:
            return self._table_override
        table = getattr(self._tables, 'table', None)
        if table is None:
            resource = self.dynamodb
            if isinstance(resource, ThreadLocalResource):
                resource = resource.get()
            table = self._tables.table = resource.Table(self.table_name)
        return table

    @table.setter
    def table(self, value):
        self._table_override = value

    def _fail(self, action: str, error: ClientError) -> PersistenceError:
        message = f"Error during {action} on {self.table_name}: {error}"
        logger.error(message)
        return PersistenceError(message)

    def scan_all(self, **kwargs) -> List[Dict[str, Any]]:
        """
        Scan the whole table, following pagination.

        Args:
            **kwargs: Extra Scan parameters (e.g. FilterExpression)

        Returns:
            List of raw items
        """
        try:
            response = self.table.scan(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs
                )
                items.extend(response.get('Items', []))

            return items
        except ClientError as e:
            raise self._fail('scan', e) from e

    def query_all(self, **kwargs) -> List[Dict[str, Any]]:
        """
        Run a Query and follow pagination.

        Args:
            **kwargs: Query parameters (KeyConditionExpression, IndexName, ...)

        Returns:
            List of raw items
        """
        try:
            response = self.table.query(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs
                )
                items.extend(response.get('Items', []))

            return items
        except ClientError as e:
            raise self._fail('query', e) from e

    def get_item(self, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.get_item(Key=key)
        except ClientError as e:
            raise self._fail('get_item', e) from e
        return response.get('Item')

    def put_item(self, item: Dict[str, Any], **kwargs) -> None:
        try:
            self.table.put_item(Item=to_dynamodb(item), **kwargs)
        except ClientError as e:
            raise self._fail('put_item', e) from e

    def delete_item(self, key: Dict[str, Any]) -> bool:
        """Delete an item. Returns False if it did not exist."""
        try:
            response = self.table.delete_item(Key=key, ReturnValues='ALL_OLD')
        except ClientError as e:
            raise self._fail('delete_item', e) from e
        return 'Attributes' in response

    def update_item(self, key: Dict[str, Any], set_fields: Optional[Dict[str, Any]] = None,
                    add_fields: Optional[Dict[str, Any]] = None,
                    condition: Optional[str] = None,
                    condition_values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Apply SET/ADD updates to one item.

        Attribute names are always aliased, so reserved words such as
        ``status`` are safe to use.

        Args:
            key: Primary key of the item
            set_fields: Attributes to overwrite
            add_fields: Numeric attributes to increment atomically
            condition: Optional ConditionExpression
            condition_values: Placeholder values used by the condition

        Returns:
            The item after the update

        Raises:
            ConflictError: If the condition does not hold
            PersistenceError: On any other DynamoDB failure
        """
        names: Dict[str, str] = {}
        values: Dict[str, Any] = dict(condition_values or {})
        clauses = []

        for action, updates in (('SET', set_fields), ('ADD', add_fields)):
            parts = []
            for i, (attr, value) in enumerate((updates or {}).items()):
                token = f"{action.lower()}{i}"
                names[f"#{token}"] = attr
                values[f":{token}"] = to_dynamodb(value)
                parts.append(
                    f"#{token} = :{token}" if action == 'SET' else f"#{token} :{token}"
                )
            if parts:
                clauses.append(f"{action} " + ', '.join(parts))

        kwargs: Dict[str, Any] = {
            'Key': key,
            'UpdateExpression': ' '.join(clauses),
            'ExpressionAttributeNames': names,
            'ExpressionAttributeValues': values,
            'ReturnValues': 'ALL_NEW'
        }
        if condition:
            kwargs['ConditionExpression'] = condition
            names.update(_condition_names(condition))

        try:
            response = self.table.update_item(**kwargs)
        except ClientError as e:
            if is_conditional_failure(e):
                raise ConflictError(
                    f"Conditional update rejected on {self.table_name}", {'key': key}
                ) from e
            raise self._fail('update_item', e) from e
        return response.get('Attributes', {})

    def batch_write_items(self, items: Iterable[Dict[str, Any]]) -> int:
        """
        Write items in batches of 25.

        Args:
            items: Items to write

        Returns:
            Count of successfully written items
        """
        items = list(items)
        if not items:
            return 0

        success_count = 0

        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=to_dynamodb(item))
                success_count += len(batch)

            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1} to {self.table_name}: {e}"
                )
                # Continue processing remaining batches
                continue

        return success_count
