"""
Kafka Client
============

Async Kafka producer for screening events.

Every event is wrapped in a small envelope so consumers can route on
`event_type` without parsing the payload:

    {"event_type": "...", "source": "...", "emitted_at": "...", "data": {...}}

Version: 0.1.0
"""

import json
import time
from datetime import UTC, datetime
from typing import Any

from aiokafka import AIOKafkaProducer

from shared.config import settings
from shared.logging import get_logger

logger = get_logger(__name__)


def build_envelope(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Wrap an event payload with its type, source and emission time."""
    return {
        "event_type": event_type,
        "source": settings.kafka.client_id,
        "emitted_at": datetime.now(UTC).isoformat(),
        "data": data,
    }


class KafkaClient:
    """
    Async Kafka producer wrapper.

    The producer is started lazily on first publish, so a service that
    never emits events never opens a broker connection.
    """

    _producer: AIOKafkaProducer | None = None

    @classmethod
    async def get_producer(cls) -> AIOKafkaProducer:
        """Get or start the shared producer."""
        if cls._producer is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=settings.kafka.bootstrap_servers,
                security_protocol=settings.kafka.security_protocol,
                client_id=settings.kafka.client_id,
                key_serializer=lambda k: k.encode("utf-8") if isinstance(k, str) else k,
                value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
                linger_ms=settings.kafka.linger_ms,
                acks=1,
            )
            await producer.start()
            cls._producer = producer
            logger.info(
                "kafka_producer_started",
                bootstrap_servers=settings.kafka.bootstrap_servers,
                client_id=settings.kafka.client_id,
            )
        return cls._producer

    @classmethod
    async def close(cls) -> None:
        """Flush and stop the producer."""
        if cls._producer is not None:
            await cls._producer.stop()
            cls._producer = None
            logger.info("kafka_producer_stopped")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """Broker reachability as seen by the producer."""
        try:
            start = time.perf_counter()
            producer = await cls.get_producer()
            metadata = await producer.client.fetch_all_metadata()
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2),
                "brokers": len(metadata.brokers()),
            }
        except Exception as e:
            logger.error("kafka_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }

    @classmethod
    async def publish(
        cls,
        topic: str,
        event_type: str,
        data: dict[str, Any],
        key: str | None = None,
    ) -> None:
        """
        Publish one enveloped event and wait for the broker ack.

        Args:
            topic: Topic name
            event_type: Routing name of the event, e.g. "screening.updated"
            data: JSON-serializable payload
            key: Partition key; events for one organization share a key so
                they stay ordered
        """
        producer = await cls.get_producer()
        await producer.send_and_wait(topic, value=build_envelope(event_type, data), key=key)

        logger.debug("kafka_event_published", topic=topic, event_type=event_type, key=key)
