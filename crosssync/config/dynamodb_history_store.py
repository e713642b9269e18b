"""DynamoDB-based run history for sync results."""

import json
import logging
from datetime import timedelta
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.sync_models import SyncResult
from .stores import HistoryStore

logger = logging.getLogger(__name__)


class DynamoDBHistoryStore(HistoryStore):
    """DynamoDB-backed history of terminated runs with TTL retention."""

    def __init__(self,
                 table_name: str = "crosssync-history",
                 region: str = "us-east-1",
                 retention_days: int = 90):
        """Initialize DynamoDB history store.

        Args:
            table_name: Name of the DynamoDB table keyed by ``run_id``
            region: AWS region for DynamoDB table
            retention_days: Items expire through DynamoDB TTL after this many days
        """
        self.table_name = table_name
        self.region = region
        self.retention_days = retention_days
        self._dynamodb = None
        self._table = None

    def _get_table(self):
        """Get DynamoDB table resource with lazy initialization."""
        if self._table is None:
            if self._dynamodb is None:
                self._dynamodb = boto3.resource('dynamodb', region_name=self.region)
            self._table = self._dynamodb.Table(self.table_name)
        return self._table

    def _scan_all(self, **scan_kwargs) -> List[Dict[str, Any]]:
        table = self._get_table()
        items = []
        while True:
            response = table.scan(**scan_kwargs)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            scan_kwargs['ExclusiveStartKey'] = last_key

    def append(self, result: SyncResult, capacity: int) -> None:
        """Store a result and delete the oldest items beyond ``capacity``.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        ttl_timestamp = int((result.end_time + timedelta(days=self.retention_days)).timestamp())
        item = {
            'run_id': result.id,
            'configuration_id': result.configuration_id,
            'status': result.status.value,
            'end_time': result.end_time.isoformat(),
            'result_data': json.dumps(result.to_dict(), default=str),
            'ttl': ttl_timestamp
        }

        try:
            table = self._get_table()
            table.put_item(Item=item)

            keys = self._scan_all(
                ProjectionExpression='run_id, end_time'
            )
            if len(keys) <= capacity:
                return

            keys.sort(key=lambda k: k['end_time'], reverse=True)
            expired = keys[capacity:]
            with table.batch_writer() as batch:
                for key in expired:
                    batch.delete_item(Key={'run_id': key['run_id']})
            logger.info(f"Trimmed {len(expired)} results beyond history capacity {capacity}")

        except ClientError as e:
            logger.error(f"Failed to append sync result {result.id}: {e}")
            raise
        except BotoCoreError as e:
            raise RuntimeError(f"Failed to append sync result {result.id}: {e}")

    def list(self, limit: int) -> List[SyncResult]:
        """Return up to ``limit`` results, newest first."""
        if limit <= 0:
            return []
        try:
            items = self._scan_all()
        except ClientError as e:
            logger.error(f"Failed to query sync history: {e}")
            raise
        except BotoCoreError as e:
            raise RuntimeError(f"Failed to query sync history: {e}")

        items.sort(key=lambda i: i['end_time'], reverse=True)
        return [SyncResult.from_dict(json.loads(item['result_data'])) for item in items[:limit]]
