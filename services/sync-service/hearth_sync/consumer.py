"""Kafka consumer of server state events."""

import logging
from typing import Awaitable, Callable, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from pydantic import ValidationError
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from hearth_common import BrokerUnavailableError, ServerStateEvent, all_topics

from .config import Settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[ServerStateEvent], Awaitable[None]]


class EventConsumer:
    """
    Consumes state events from every category topic.

    Offsets are committed manually after the handler accepted an event.
    """

    def __init__(self, settings: Settings):
        """
        Initialize event consumer.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.topics = all_topics(settings.kafka_topic_prefix)

    async def start(self) -> None:
        """
        Connect and subscribe.

        Raises:
            BrokerUnavailableError: If the broker is unreachable after retries
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.kafka_connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    consumer = AIOKafkaConsumer(
                        *self.topics,
                        bootstrap_servers=self.settings.kafka_bootstrap_servers,
                        group_id=self.settings.kafka_consumer_group,
                        enable_auto_commit=False,
                        auto_offset_reset="latest",
                    )
                    try:
                        await consumer.start()
                    except (KafkaError, OSError):
                        await consumer.stop()
                        raise
        except (KafkaError, OSError) as e:
            raise BrokerUnavailableError(
                f"Kafka at {self.settings.kafka_bootstrap_servers} unavailable: {e}"
            ) from e

        self.consumer = consumer
        logger.info(f"✓ Kafka consumer subscribed to {len(self.topics)} topics")

    async def run(self, handler: EventHandler) -> None:
        """
        Feed events to ``handler`` until the consumer stops.

        Malformed messages are logged and skipped.

        Raises:
            KafkaError: If consumption fails
        """
        if self.consumer is None:
            raise BrokerUnavailableError("Consumer not started")

        async for message in self.consumer:
            try:
                event = ServerStateEvent.from_wire(message.value)
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed event at {message.topic}:{message.offset}: {e}"
                )
            else:
                logger.debug(f"Received {event.type.value} for {event.key}")
                await handler(event)
            await self.consumer.commit()

    async def stop(self) -> None:
        """Unsubscribe and close the consumer."""
        if self.consumer is None:
            return

        consumer, self.consumer = self.consumer, None
        try:
            consumer.unsubscribe()
            await consumer.stop()
        except (KafkaError, OSError) as e:
            logger.warning(f"Error stopping Kafka consumer: {e}")
        logger.info("Kafka consumer stopped")
