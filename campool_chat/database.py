"""
Campool Chat Database Module

MongoDB and Redis connection management.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from campool_chat.config import settings


logger = logging.getLogger(__name__)


# =============================================================================
# MongoDB Connection
# =============================================================================

class MongoDB:
    """MongoDB connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None


mongo = MongoDB()


async def init_mongodb():
    """Initialize MongoDB connection and create chat indexes."""
    mongo.client = AsyncIOMotorClient(
        settings.mongodb_uri,
        tz_aware=True,
        serverSelectionTimeoutMS=int(settings.store_timeout_seconds * 1000),
    )
    mongo.db = mongo.client[settings.mongodb_database]

    # History pages and read receipts walk a room in (created_at, _id) order
    await mongo.db.chat_messages.create_index(
        [("ride_id", 1), ("created_at", 1), ("_id", 1)]
    )
    # Inbox lookup of rooms a user has written in
    await mongo.db.chat_messages.create_index("sender_id")

    logger.info(f"MongoDB ready: database={settings.mongodb_database}")


async def close_mongodb():
    """Close MongoDB connection."""
    if mongo.client:
        mongo.client.close()
        mongo.client = None
        mongo.db = None


def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    if mongo.db is None:
        raise RuntimeError("Database not initialized")
    return mongo.db


# =============================================================================
# Redis Connection
# =============================================================================

class RedisClient:
    """Redis connection manager."""

    client: Optional[redis.Redis] = None


redis_client = RedisClient()


async def init_redis():
    """Initialize Redis connection."""
    redis_client.client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        socket_keepalive=True
    )


async def close_redis():
    """Close Redis connection."""
    if redis_client.client:
        await redis_client.client.close()
        redis_client.client = None


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if redis_client.client is None:
        raise RuntimeError("Redis not initialized")
    return redis_client.client


# =============================================================================
# Combined Initialization
# =============================================================================

async def init_db():
    """Initialize all database connections."""
    await init_mongodb()
    if settings.chat_pubsub_backend == "redis":
        await init_redis()


async def close_db():
    """Close all database connections."""
    await close_mongodb()
    await close_redis()
