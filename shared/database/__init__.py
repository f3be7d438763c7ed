"""
Database Module
===============

Async clients for the data stores used by the screening service.

Clients:
- PostgreSQL (asyncpg + SQLAlchemy): regulation corpus
- Redis (redis.asyncio): shared screening cache
- Kafka (aiokafka): screening event publishing

Usage:
    from shared.database import postgres_session, RedisClient

    async with postgres_session() as session:
        result = await session.execute(text("SELECT 1"))
"""

from shared.database.kafka import KafkaClient
from shared.database.postgres import PostgresClient, postgres_session
from shared.database.redis import RedisClient


__all__ = [
    # PostgreSQL
    "PostgresClient",
    "postgres_session",
    # Redis
    "RedisClient",
    # Kafka
    "KafkaClient",
]
