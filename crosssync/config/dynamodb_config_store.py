"""DynamoDB-backed storage for sync configurations."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling.exceptions import ConfigurationError
from ..models.sync_models import SyncConfiguration
from .stores import ConfigurationStore

logger = logging.getLogger(__name__)


class DynamoDBConfigurationStore(ConfigurationStore):
    """Stores each SyncConfiguration as one item keyed by ``config_id``.

    Custom-function mappings are persisted by name only; callables must be
    registered with the FieldMapper that executes the run.
    """

    def __init__(self, table_name: str = "crosssync-configurations", region: str = "us-east-1"):
        """Initialize DynamoDB configuration store.

        Args:
            table_name: Name of the DynamoDB table for configuration storage
            region: AWS region for DynamoDB table
        """
        self.table_name = table_name
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

    def _deserialize(self, item: Dict[str, Any]) -> SyncConfiguration:
        try:
            return SyncConfiguration.from_dict(json.loads(item['config_data']))
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid configuration data in storage for {item.get('config_id')}: {e}")

    def get(self, config_id: str) -> Optional[SyncConfiguration]:
        """Read one configuration.

        Returns:
            SyncConfiguration or None if not found

        Raises:
            ClientError: If DynamoDB operation fails
            ConfigurationError: If stored configuration is invalid
        """
        try:
            response = self._get_table().get_item(Key={'config_id': config_id})
        except ClientError as e:
            logger.error(f"Failed to read configuration {config_id}: {e}")
            raise
        except BotoCoreError as e:
            raise RuntimeError(f"Failed to read configuration {config_id}: {e}")

        if 'Item' not in response:
            return None
        return self._deserialize(response['Item'])

    def list(self) -> List[SyncConfiguration]:
        """Read all configurations, following scan pagination."""
        configs = []
        scan_kwargs: Dict[str, Any] = {}
        try:
            table = self._get_table()
            while True:
                response = table.scan(**scan_kwargs)
                for item in response.get('Items', []):
                    configs.append(self._deserialize(item))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                scan_kwargs['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Failed to list configurations: {e}")
            raise
        except BotoCoreError as e:
            raise RuntimeError(f"Failed to list configurations: {e}")

        logger.debug(f"Loaded {len(configs)} configurations from {self.table_name}")
        return configs

    def put(self, config: SyncConfiguration) -> None:
        """Write a configuration, bumping its stored version.

        Raises:
            ClientError: If DynamoDB operation fails
        """
        try:
            self._get_table().update_item(
                Key={'config_id': config.id},
                UpdateExpression=(
                    'SET config_data = :config, updated_at = :updated, '
                    'version = if_not_exists(version, :zero) + :inc'
                ),
                ExpressionAttributeValues={
                    ':config': json.dumps(config.to_dict(), default=str),
                    ':updated': datetime.now(timezone.utc).isoformat(),
                    ':zero': 0,
                    ':inc': 1
                }
            )
        except ClientError as e:
            logger.error(f"Failed to store configuration {config.id}: {e}")
            raise
        except BotoCoreError as e:
            raise RuntimeError(f"Failed to store configuration {config.id}: {e}")
