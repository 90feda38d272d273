"""
DynamoDB data store used by every service.

Wraps the boto3 table resource behind a small object so services can be
constructed with an injected store. Read failures and write failures are
raised as PersistenceError; conditional-check failures are raised as
ConflictError / DuplicateError so callers can tell a lost race from an outage.
"""
import boto3
from decimal import Decimal
from typing import List, Dict, Any, Iterable, Optional
from boto3.dynamodb.conditions import Key, Attr
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .errors import PersistenceError, ConflictError, DuplicateError
from .logging import logger

# DynamoDB hard limit on items per TransactWriteItems call
MAX_TRANSACT_ITEMS = 100

_serializer = TypeSerializer()


def to_dynamo(value: Any) -> Any:
    """Recursively convert floats to Decimal; DynamoDB rejects float values."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _build_filter(filters: Optional[Dict[str, Any]]):
    """AND together equality conditions on plain attributes."""
    expression = None
    for name, value in (filters or {}).items():
        condition = Attr(name).eq(value)
        expression = condition if expression is None else expression & condition
    return expression


def _build_update(
    updates: Optional[Dict[str, Any]],
    increments: Optional[Dict[str, Any]],
    condition: Optional[Dict[str, Any]],
    missing_ok: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """
    Build UpdateExpression parts with placeholder names for every attribute.
    Condition attributes named in missing_ok also pass when absent.
    """
    missing_ok = set(missing_ok or ())
    names = {}
    values = {}
    set_parts = []
    add_parts = []

    for i, (name, value) in enumerate((updates or {}).items()):
        names[f'#s{i}'] = name
        values[f':s{i}'] = to_dynamo(value)
        set_parts.append(f'#s{i} = :s{i}')

    for i, (name, value) in enumerate((increments or {}).items()):
        names[f'#a{i}'] = name
        values[f':a{i}'] = to_dynamo(value)
        add_parts.append(f'#a{i} :a{i}')

    expression = []
    if set_parts:
        expression.append('SET ' + ', '.join(set_parts))
    if add_parts:
        expression.append('ADD ' + ', '.join(add_parts))

    params = {
        'UpdateExpression': ' '.join(expression),
        'ExpressionAttributeNames': names,
        'ExpressionAttributeValues': values,
    }

    if condition:
        condition_parts = []
        for i, (name, value) in enumerate(condition.items()):
            names[f'#c{i}'] = name
            values[f':c{i}'] = to_dynamo(value)
            if name in missing_ok:
                condition_parts.append(f'(attribute_not_exists(#c{i}) OR #c{i} = :c{i})')
            else:
                condition_parts.append(f'#c{i} = :c{i}')
        params['ConditionExpression'] = ' AND '.join(condition_parts)

    return params


class DynamoStore:
    """Thin DynamoDB access layer shared by the services."""

    def __init__(self, region_name: str = None, resource=None):
        self._region_name = region_name or config.AWS_REGION
        self._resource = resource

    @property
    def resource(self):
        if self._resource is None:
            self._resource = boto3.resource('dynamodb', region_name=self._region_name)
        return self._resource

    def table(self, table_name: str):
        return self.resource.Table(table_name)

    def get_item(self, table_name: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Get a single item from DynamoDB."""
        try:
            response = self.table(table_name).get_item(Key=key)
            return response.get('Item')
        except ClientError as e:
            logger.error(f"Error getting item from {table_name}: {e}")
            raise PersistenceError(f"Could not read from {table_name}") from e

    def put_item(
        self,
        table_name: str,
        item: Dict[str, Any],
        unique_attribute: Optional[str] = None
    ) -> None:
        """
        Put an item. With unique_attribute the put only succeeds if no item
        with the same key exists.

        Raises:
            DuplicateError: the conditional put found an existing item
            PersistenceError: any other write failure
        """
        params = {'Item': to_dynamo(item)}
        if unique_attribute:
            params['ConditionExpression'] = Attr(unique_attribute).not_exists()
        try:
            self.table(table_name).put_item(**params)
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise DuplicateError(f"{unique_attribute}={item.get(unique_attribute)} already exists") from e
            logger.error(f"Error writing to {table_name}: {e}")
            raise PersistenceError(f"Could not write to {table_name}") from e

    def query(
        self,
        table_name: str,
        key_name: str,
        key_value: Any,
        index_name: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        scan_forward: bool = True
    ) -> List[Dict[str, Any]]:
        """
        Query a table or index by partition key.

        Args:
            table_name: Name of the DynamoDB table
            key_name: Partition key attribute
            key_value: Partition key value
            index_name: Optional GSI name
            filters: Equality filters applied after the key condition
            limit: Max items to return (all pages are read when omitted)
            scan_forward: True for ascending, False for descending

        Returns:
            List of items matching the query
        """
        query_params = {
            'KeyConditionExpression': Key(key_name).eq(key_value),
            'ScanIndexForward': scan_forward
        }
        if index_name:
            query_params['IndexName'] = index_name
        filter_expression = _build_filter(filters)
        if filter_expression is not None:
            query_params['FilterExpression'] = filter_expression
        if limit:
            query_params['Limit'] = limit

        items = []
        try:
            table = self.table(table_name)
            while True:
                response = table.query(**query_params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key or (limit and len(items) >= limit):
                    break
                query_params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Error querying {table_name}: {e}")
            raise PersistenceError(f"Could not query {table_name}") from e

        return items[:limit] if limit else items

    def scan(self, table_name: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Scan a whole table with optional equality filters."""
        scan_params = {}
        filter_expression = _build_filter(filters)
        if filter_expression is not None:
            scan_params['FilterExpression'] = filter_expression

        items = []
        try:
            table = self.table(table_name)
            while True:
                response = table.scan(**scan_params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                scan_params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Error scanning {table_name}: {e}")
            raise PersistenceError(f"Could not scan {table_name}") from e
        return items

    def update_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        updates: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, Any]] = None,
        condition: Optional[Dict[str, Any]] = None,
        missing_ok: Optional[Iterable[str]] = None
    ) -> None:
        """
        Update an item: SET for updates, ADD for increments, optional
        equality condition on current attribute values. Attributes listed in
        missing_ok satisfy the condition when the item does not have them.

        Raises:
            ConflictError: the condition did not hold
            PersistenceError: any other write failure
        """
        params = {'Key': key}
        params.update(_build_update(updates, increments, condition, missing_ok))
        try:
            self.table(table_name).update_item(**params)
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise ConflictError(f"Condition failed updating {key} in {table_name}") from e
            logger.error(f"Error updating item in {table_name}: {e}")
            raise PersistenceError(f"Could not update {table_name}") from e

    def transact_update(
        self,
        table_name: str,
        keys: List[Dict[str, Any]],
        updates: Dict[str, Any],
        condition: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Apply the same update to several items in one all-or-nothing
        TransactWriteItems call.

        Raises:
            ConflictError: a condition failed on at least one item, nothing was written
            PersistenceError: any other failure
        """
        if not keys:
            return
        if len(keys) > MAX_TRANSACT_ITEMS:
            raise PersistenceError(f"At most {MAX_TRANSACT_ITEMS} items per transaction")

        params = _build_update(updates, None, condition)
        values = {k: _serializer.serialize(v) for k, v in params['ExpressionAttributeValues'].items()}

        transact_items = []
        for key in keys:
            update = {
                'TableName': table_name,
                'Key': {k: _serializer.serialize(v) for k, v in key.items()},
                'UpdateExpression': params['UpdateExpression'],
                'ExpressionAttributeNames': params['ExpressionAttributeNames'],
                'ExpressionAttributeValues': values,
            }
            if 'ConditionExpression' in params:
                update['ConditionExpression'] = params['ConditionExpression']
            transact_items.append({'Update': update})

        try:
            self.resource.meta.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) == 'TransactionCanceledException':
                raise ConflictError(f"Transaction on {table_name} was cancelled") from e
            logger.error(f"Error in transaction on {table_name}: {e}")
            raise PersistenceError(f"Could not update {table_name}") from e
