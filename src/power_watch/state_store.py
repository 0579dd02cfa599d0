"""
DynamoDB storage for subscriber records.
One item per subscriber, partition key "pk" = subscriber id. A short-lived read
cache fronts the table; every write invalidates it.
"""

import copy
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config

from power_watch.log import log_error, log_event
from power_watch.models import SubscriberRecord
from power_watch.ttl_cache import TTLCache


class SubscriberStore:
    """DynamoDB-backed subscriber persistence."""

    PARTITION_KEY = "pk"
    ALL_KEY = ("__all__",)

    def __init__(
        self,
        table_name: str,
        cache_ttl: float = 15,
        timeout: float = 10,
        table: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize subscriber store.

        Args:
            table_name: DynamoDB table name
            cache_ttl: Read cache lifetime in seconds (0 disables it)
            timeout: Connect/read timeout for DynamoDB calls
            table: Optional preconfigured Table resource (tests)
            clock: Time source for the read cache
        """
        if table is None:
            config = Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 2, "mode": "standard"},
            )
            self.dynamodb = boto3.resource("dynamodb", config=config)
            table = self.dynamodb.Table(table_name)
        self.table = table
        self._cache: TTLCache[Any] = TTLCache(cache_ttl, clock=clock)

    def get(self, subscriber_id: str, fresh: bool = False) -> Optional[SubscriberRecord]:
        """
        Load one subscriber.

        Args:
            subscriber_id: Subscriber id
            fresh: Skip the read cache and use a strongly consistent read. Required
                for reads that decide a state transition, since other processes
                (Lambda containers) write the same item.

        Returns:
            SubscriberRecord, or None if the subscriber is unknown

        Raises:
            botocore.exceptions.ClientError / BotoCoreError on I/O failure
        """
        subscriber_id = str(subscriber_id)
        if not fresh:
            cached = self._cache.get(subscriber_id)
            if cached is not None:
                return copy.deepcopy(cached)

        try:
            response = self.table.get_item(Key={self.PARTITION_KEY: subscriber_id}, ConsistentRead=fresh)
        except Exception as e:
            log_error("store_get_failed", e, subscriber_id=subscriber_id)
            raise

        item = response.get("Item")
        if item is None:
            return None

        record = SubscriberRecord.from_item(subscriber_id, self._deserialize_item(item))
        self._cache.set(subscriber_id, record)
        return copy.deepcopy(record)

    def get_all(self) -> List[SubscriberRecord]:
        """Load every subscriber (paginated scan)."""
        cached = self._cache.get(self.ALL_KEY)
        if cached is not None:
            return copy.deepcopy(cached)

        records = []
        scan_kwargs: Dict[str, Any] = {}
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                for item in response.get("Items", []):
                    data = self._deserialize_item(item)
                    records.append(SubscriberRecord.from_item(item[self.PARTITION_KEY], data))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except Exception as e:
            log_error("store_scan_failed", e)
            raise

        self._cache.set(self.ALL_KEY, records)
        return copy.deepcopy(records)

    def upsert(self, subscriber_id: str, fields: Dict[str, Any]) -> None:
        """
        Create or update only the given attributes of a subscriber.

        Args:
            subscriber_id: Subscriber id
            fields: Attribute name -> new value
        """
        subscriber_id = str(subscriber_id)
        if not fields:
            return

        names = {}
        values = {}
        assignments = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":v{i}"] = self._serialize_value(value)
            assignments.append(f"#f{i} = :v{i}")

        self._invalidate(subscriber_id)
        try:
            self.table.update_item(
                Key={self.PARTITION_KEY: subscriber_id},
                UpdateExpression="SET " + ", ".join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except Exception as e:
            log_error("store_upsert_failed", e, subscriber_id=subscriber_id, fields=list(fields))
            raise
        finally:
            self._invalidate(subscriber_id)

        log_event("store_upserted", level="debug", subscriber_id=subscriber_id, fields=list(fields))

    def save(self, record: SubscriberRecord) -> None:
        """Persist a full record."""
        self.upsert(record.subscriber_id, record.to_item())

    def _invalidate(self, subscriber_id: str) -> None:
        self._cache.invalidate(subscriber_id)
        self._cache.invalidate(self.ALL_KEY)

    @staticmethod
    def _serialize_value(value: Any) -> Any:
        """Convert Python types to DynamoDB types."""
        if isinstance(value, bool) or value is None:
            return value
        if isinstance(value, float):
            return Decimal(str(value))
        if isinstance(value, dict):
            return {k: SubscriberStore._serialize_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [SubscriberStore._serialize_value(v) for v in value]
        return value

    @staticmethod
    def _deserialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
        """Convert DynamoDB types to Python types."""
        deserialized = {}
        for key, value in item.items():
            if key == SubscriberStore.PARTITION_KEY:
                continue
            elif isinstance(value, Decimal):
                deserialized[key] = int(value) if value % 1 == 0 else float(value)
            elif isinstance(value, dict):
                deserialized[key] = SubscriberStore._deserialize_item(value)
            else:
                deserialized[key] = value
        return deserialized
