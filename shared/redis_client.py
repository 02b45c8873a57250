"""
Redis client singleton for pub/sub messaging.

The API publishes operator and transcript commands on the command channel;
the agent worker consumes them and publishes consumer notifications
(state updates, countdown ticks, action resolutions) on the event channel.
"""

import json
import logging
from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from fastapi import HTTPException
from redis import ConnectionError as RedisConnectionError

from shared.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance with production-ready configuration.

    This function creates a singleton Redis client with:
    - Connection pooling (max 20 connections for api and agent)
    - Automatic retry on timeout for transient failures
    - Health check pings every 30 seconds

    Returns:
        Redis async client configured with connection pool and retry logic
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )

        logger.info(
            f"Redis client initialized: {settings.REDIS_URL} "
            f"(max_connections=20, retry_on_timeout=True, health_check_interval=30s)"
        )
        return client

    except RedisConnectionError as e:
        logger.error(f"Redis connection failed: {e}", exc_info=True)
        raise

    except Exception as e:
        logger.error(f"Unexpected error creating Redis client: {e}", exc_info=True)
        raise


async def publish_to_channel(channel: str, message: dict[str, Any]) -> None:
    """
    Publish a message to a Redis pub/sub channel.

    Args:
        channel: Channel name
        message: Message dict to publish (will be JSON-serialized)

    Raises:
        HTTPException: 503 if Redis connection fails
    """
    client = get_redis_client()

    try:
        json_message = json.dumps(message, default=str)
        await client.publish(channel, json_message)
        logger.debug(f"Message published to channel '{channel}': {json_message[:100]}")

    except RedisConnectionError as e:
        logger.error(f"Redis connection error while publishing to '{channel}': {e}")
        raise HTTPException(
            status_code=503, detail="Service temporarily unavailable (Redis connection failed)"
        ) from e

    except Exception as e:
        logger.error(f"Unexpected error publishing to Redis channel '{channel}': {e}")
        raise HTTPException(
            status_code=503, detail="Service temporarily unavailable"
        ) from e


async def subscribe_to_channel(channel: str) -> AsyncIterator[dict[str, Any]]:
    """
    Yield decoded JSON messages published on a channel.

    Messages that are not valid JSON objects are logged and skipped.
    """
    client = get_redis_client()
    pubsub = client.pubsub()
    await pubsub.subscribe(channel)
    logger.info(f"Subscribed to channel '{channel}'")

    try:
        async for raw in pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                payload = json.loads(raw["data"])
            except (TypeError, json.JSONDecodeError) as e:
                logger.warning(f"Discarding malformed message on '{channel}': {e}")
                continue
            if not isinstance(payload, dict):
                logger.warning(f"Discarding non-object message on '{channel}'")
                continue
            yield payload
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()


async def close_redis_client() -> None:
    """
    Close Redis connection gracefully.

    Note:
        Should be called during application shutdown.
    """
    try:
        client = get_redis_client()
        await client.close()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")
