"""Document-store connector backed by a DynamoDB table."""

import logging
from decimal import Decimal
from functools import reduce
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling.exceptions import FetchError, WriteError
from ..models.sync_models import ConnectorQuery, SystemType
from .base import Connector

logger = logging.getLogger(__name__)


def to_dynamodb(value: Any) -> Any:
    """Convert floats (recursively) to Decimal, which DynamoDB requires."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamodb(v) for v in value]
    return value


def from_dynamodb(value: Any) -> Any:
    """Convert Decimals returned by DynamoDB back to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamodb(v) for v in value]
    return value


class DynamoDBDocumentConnector(Connector):
    """Reads and writes document-store records as items of one DynamoDB table."""

    system = SystemType.DOCSTORE

    def __init__(self, table_name: str, key_attribute: str = "id", region: str = "us-east-1"):
        """
        Args:
            table_name: DynamoDB table holding the documents
            key_attribute: Partition key attribute of the table
            region: AWS region for DynamoDB table
        """
        self.table_name = table_name
        self.key_attribute = key_attribute
        self.region = region
        self._dynamodb = None
        self._table = None

    def _get_table(self):
        """Get DynamoDB table resource with lazy initialization."""
        if self._table is None:
            if self._dynamodb is None:
                self._dynamodb = boto3.resource('dynamodb', region_name=self.region)
            self._table = self._dynamodb.Table(self.table_name)
        return self._table

    @staticmethod
    def _error_code(error: ClientError) -> str:
        return error.response.get('Error', {}).get('Code', 'Unknown')

    def fetch_all(self, query: Optional[ConnectorQuery] = None) -> List[Dict[str, Any]]:
        scan_kwargs: Dict[str, Any] = {}
        if query is not None:
            if query.filter:
                scan_kwargs['FilterExpression'] = reduce(
                    lambda expr, cond: expr & cond,
                    [Attr(name).eq(to_dynamodb(value)) for name, value in query.filter.items()]
                )
            if query.fields:
                names = {f"#p{i}": name for i, name in enumerate(query.fields)}
                scan_kwargs['ProjectionExpression'] = ', '.join(names)
                scan_kwargs['ExpressionAttributeNames'] = names
            if query.page_size:
                scan_kwargs['Limit'] = query.page_size

        records = []
        try:
            table = self._get_table()
            while True:
                response = table.scan(**scan_kwargs)
                records.extend(from_dynamodb(item) for item in response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                scan_kwargs['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Failed to scan {self.table_name}: {self._error_code(e)}")
            raise FetchError(f"Failed to scan {self.table_name}: {e}", system=self.system.value, cause=e) from e
        except BotoCoreError as e:
            raise FetchError(f"Failed to scan {self.table_name}: {e}", system=self.system.value, cause=e) from e

        logger.debug(f"Fetched {len(records)} documents from {self.table_name}")
        return records

    def fetch_by_id(self, key: Any) -> Optional[Dict[str, Any]]:
        try:
            response = self._get_table().get_item(Key={self.key_attribute: key})
        except ClientError as e:
            raise FetchError(f"Failed to read document {key!r}: {e}", system=self.system.value, cause=e) from e
        except BotoCoreError as e:
            raise FetchError(f"Failed to read document {key!r}: {e}", system=self.system.value, cause=e) from e

        if 'Item' not in response:
            return None
        return from_dynamodb(response['Item'])

    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if record.get(self.key_attribute) is None:
            raise WriteError(f"Document has no '{self.key_attribute}' key", system=self.system.value)

        try:
            self._get_table().put_item(
                Item=to_dynamodb(record),
                ConditionExpression='attribute_not_exists(#k)',
                ExpressionAttributeNames={'#k': self.key_attribute}
            )
        except ClientError as e:
            if self._error_code(e) == 'ConditionalCheckFailedException':
                raise WriteError(
                    f"Document {record[self.key_attribute]!r} already exists",
                    system=self.system.value, status_code=409, cause=e
                ) from e
            raise WriteError(f"Failed to create document: {e}", system=self.system.value, cause=e) from e
        except BotoCoreError as e:
            raise WriteError(f"Failed to create document: {e}", system=self.system.value, cause=e) from e

        logger.debug(f"Created document {record[self.key_attribute]!r} in {self.table_name}")
        return dict(record)

    def update(self, key: Any, partial_record: Dict[str, Any]) -> Dict[str, Any]:
        fields = {name: value for name, value in partial_record.items() if name != self.key_attribute}
        if not fields:
            existing = self.fetch_by_id(key)
            if existing is None:
                raise WriteError(f"Document {key!r} does not exist", system=self.system.value, status_code=404)
            return existing

        names = {'#k': self.key_attribute}
        values = {}
        assignments = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":v{i}"] = to_dynamodb(value)
            assignments.append(f"#f{i} = :v{i}")

        try:
            response = self._get_table().update_item(
                Key={self.key_attribute: key},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(#k)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if self._error_code(e) == 'ConditionalCheckFailedException':
                raise WriteError(
                    f"Document {key!r} does not exist",
                    system=self.system.value, status_code=404, cause=e
                ) from e
            raise WriteError(f"Failed to update document {key!r}: {e}", system=self.system.value, cause=e) from e
        except BotoCoreError as e:
            raise WriteError(f"Failed to update document {key!r}: {e}", system=self.system.value, cause=e) from e

        return from_dynamodb(response.get('Attributes', {}))

    def check_connection(self) -> bool:
        try:
            self._get_table().load()
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Document store table {self.table_name} is unreachable: {e}")
            return False
