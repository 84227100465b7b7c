"""
Redis State Management for the Order Bot

Optional mirror of the order pipeline tables (approvals, dispatches, polls).
Records are stored as JSON under "orderbot:<kind>:<key>" and expire after
7 days, so an order that nobody finishes does not linger forever.

Environment Variables:
- REDIS_URL: redis:// or rediss:// URL. When unset, persistence is disabled
  and the pipeline lives in process memory only.
"""

import os
import json
import logging
from datetime import datetime
from typing import Dict, Any
import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "orderbot"
RECORD_TTL = 604800  # 7 days

# Redis connection (initialized on first use)
_redis_client = None


def is_enabled() -> bool:
    return bool(os.environ.get("REDIS_URL"))


def get_redis_client():
    """Get or create Redis client instance."""
    global _redis_client

    if _redis_client is None:
        redis_url = os.environ.get("REDIS_URL")

        if not redis_url:
            logger.warning("REDIS_URL not set - persistence disabled")
            return None

        try:
            _redis_client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5
            )
            # Test connection
            _redis_client.ping()
            logger.info("✅ Redis connection established")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            _redis_client = None

    return _redis_client


def _key(kind: str, key: str) -> str:
    return f"{KEY_PREFIX}:{kind}:{key}"


def serialize_record(record_data: Dict[str, Any]) -> str:
    """
    Serialize a pipeline record to a JSON string.
    Converts datetime values to ISO format strings.
    """
    serializable = {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in record_data.items()
    }
    return json.dumps(serializable, ensure_ascii=False)


def deserialize_record(json_str: str) -> Dict[str, Any]:
    """Inverse of serialize_record; created_at comes back as a datetime."""
    record_data = json.loads(json_str)
    created_at = record_data.get("created_at")
    if isinstance(created_at, str):
        try:
            record_data["created_at"] = datetime.fromisoformat(created_at)
        except ValueError:
            logger.warning(f"Unreadable created_at {created_at!r} - left as string")
    return record_data


def redis_save_record(kind: str, key: str, record_data: Dict[str, Any]) -> bool:
    """
    Save a single pipeline record.

    Args:
        kind: Table name (approval, dispatch, poll)
        key: Message id or poll id
        record_data: Record as a plain dict

    Returns:
        True if saved successfully, False otherwise
    """
    client = get_redis_client()
    if not client:
        return False

    try:
        client.set(_key(kind, key), serialize_record(record_data), ex=RECORD_TTL)
        return True
    except redis.RedisError as e:
        logger.error(f"Failed to save {kind} record {key} to Redis: {e}")
        return False


def redis_delete_record(kind: str, key: str) -> bool:
    client = get_redis_client()
    if not client:
        return False

    try:
        client.delete(_key(kind, key))
        return True
    except redis.RedisError as e:
        logger.error(f"Failed to delete {kind} record {key} from Redis: {e}")
        return False


def redis_load_records(kind: str) -> Dict[str, Dict[str, Any]]:
    """
    Get all records of one table.

    Returns:
        Dictionary mapping key -> record data
    """
    client = get_redis_client()
    if not client:
        return {}

    prefix = _key(kind, "")
    records = {}
    try:
        for redis_key in client.scan_iter(match=f"{prefix}*"):
            data = client.get(redis_key)
            if data:
                records[redis_key[len(prefix):]] = deserialize_record(data)
    except redis.RedisError as e:
        logger.error(f"Failed to load {kind} records from Redis: {e}")
        return {}

    return records
