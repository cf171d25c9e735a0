from aiokafka import AIOKafkaProducer
import json
import logging
from . import config

logger = logging.getLogger(__name__)

producer = None


async def get_kafka_producer():
    global producer
    if producer is None:
        logger.info(f"Initializing Kafka producer: {config.KAFKA_BOOTSTRAP_SERVERS}")
        producer = AIOKafkaProducer(
            bootstrap_servers=config.KAFKA_BOOTSTRAP_SERVERS,
            # Decimal amounts and datetimes go out as strings
            value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
            key_serializer=lambda k: k.encode('utf-8') if k is not None else None,
            acks='all'
        )
        await producer.start()
    return producer


async def stop_kafka_producer():
    global producer
    if producer:
        logger.info("Stopping Kafka producer...")
        await producer.stop()
        producer = None


async def send_message(topic: str, message: dict, key: str | None = None):
    """
    Publishes a message, keyed so every update for one order lands on the same
    partition in order. Disabled or failing Kafka is logged, never raised.
    """
    if not config.KAFKA_ENABLED:
        logger.debug(f"Kafka disabled, dropping message for topic '{topic}'")
        return
    try:
        p = await get_kafka_producer()
        await p.send_and_wait(topic, value=message, key=key)
        logger.debug(f"Message sent to Kafka topic '{topic}' (key={key}): {message}")
    except Exception as e:
        logger.error(f"Failed to send message to Kafka topic '{topic}': {e}")
