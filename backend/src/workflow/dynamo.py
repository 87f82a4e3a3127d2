"""
DynamoDB utility functions shared by the workflow stores.
"""
import boto3
from typing import List, Dict, Any, Optional
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .logging import logger

dynamodb = boto3.resource('dynamodb', region_name=config.AWS_REGION)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def table(table_name: str):
    """Return a boto3 Table resource for the given name."""
    return dynamodb.Table(table_name)


def is_condition_failure(error: ClientError) -> bool:
    """True if a ClientError was caused by a failed ConditionExpression."""
    code = error.response.get('Error', {}).get('Code')
    if code == 'ConditionalCheckFailedException':
        return True
    if code == 'TransactionCanceledException':
        # Cancellation reasons correspond to the TransactItems list order
        reasons = error.response.get('CancellationReasons') or []
        if not reasons:
            return True
        return any(r.get('Code') == 'ConditionalCheckFailed' for r in reasons)
    return False


def query_all(dynamo_table, **query_params) -> List[Dict[str, Any]]:
    """
    Query a table or index following LastEvaluatedKey until exhausted.

    Args:
        dynamo_table: boto3 Table resource
        **query_params: Arguments forwarded to Table.query

    Returns:
        All items matching the query
    """
    items = []
    while True:
        response = dynamo_table.query(**query_params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        query_params['ExclusiveStartKey'] = last_key


def scan_limited(dynamo_table, max_items: int, **scan_params) -> List[Dict[str, Any]]:
    """
    Scan a table, stopping once max_items matching items are collected.

    Scan's own Limit bounds evaluated items rather than matches, so the
    bound is applied here across pages.
    """
    items = []
    while len(items) < max_items:
        response = dynamo_table.scan(**scan_params)
        items.extend(response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            break
        scan_params['ExclusiveStartKey'] = last_key
    return items[:max_items]


def batch_get(table_name: str, key_name: str, key_values: List[str],
              consistent_read: bool = False) -> List[Dict[str, Any]]:
    """
    Fetch many items by primary key (max 100 keys per BatchGetItem call).

    Unprocessed keys are retried until DynamoDB returns them all.
    """
    items = []
    unique_values = list(dict.fromkeys(v for v in key_values if v))

    for i in range(0, len(unique_values), 100):
        request = {
            table_name: {
                'Keys': [{key_name: value} for value in unique_values[i:i + 100]],
                'ConsistentRead': consistent_read,
            }
        }
        while request:
            response = dynamodb.batch_get_item(RequestItems=request)
            items.extend(response.get('Responses', {}).get(table_name, []))
            request = response.get('UnprocessedKeys') or None

    return items


def get_item(dynamo_table, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Get a single item with a strongly consistent read."""
    response = dynamo_table.get_item(Key=key, ConsistentRead=True)
    return response.get('Item')


def transact_write(transact_items: List[Dict[str, Any]]) -> bool:
    """
    Execute a DynamoDB transaction.

    Returns:
        True on success, False if any ConditionExpression rejected the write.
        Other client errors propagate.
    """
    try:
        dynamodb.meta.client.transact_write_items(TransactItems=transact_items)
        return True
    except ClientError as e:
        if is_condition_failure(e):
            logger.info(f"Transaction rejected by condition: {e.response.get('CancellationReasons')}")
            return False
        raise


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Python item into low-level AttributeValues for transactions."""
    return {k: _serializer.serialize(v) for k, v in item.items() if v is not None}


def deserialize_image(image: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a DynamoDB Stream image (low-level AttributeValues) into Python values."""
    return {k: _deserializer.deserialize(v) for k, v in (image or {}).items()}
