"""Publishing of server state events to Kafka."""

import asyncio
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from hearth_common import BrokerUnavailableError, ServerStateEvent, all_topics

from . import metrics
from .config import Settings

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes server state events to category-scoped Kafka topics.

    Delivery is at-least-once while the broker is reachable and best-effort
    otherwise: a failed publish is logged and reported as False, never
    raised. While the broker is unavailable the publisher reconnects in the
    background at most once per ``kafka_reconnect_interval_seconds``.
    """

    def __init__(self, settings: Settings):
        """
        Initialize event publisher.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.producer: Optional[AIOKafkaProducer] = None
        self._available = False
        self._closed = False
        self._pending: set[asyncio.Task] = set()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._last_attempt: Optional[float] = None

    @property
    def available(self) -> bool:
        """Whether the broker connection is up."""
        return self._available

    async def start(self) -> None:
        """
        Connect to the broker and ensure topics exist.

        An unreachable broker is logged and leaves the publisher degraded;
        it does not fail startup.
        """
        try:
            await self._connect()
        except BrokerUnavailableError as e:
            logger.error(f"{e}; events will be dropped until the broker is reachable")

    async def _connect(self) -> None:
        self._last_attempt = asyncio.get_running_loop().time()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.kafka_connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    producer = AIOKafkaProducer(
                        bootstrap_servers=self.settings.kafka_bootstrap_servers,
                        acks="all",
                        key_serializer=lambda k: k.encode("utf-8"),
                    )
                    try:
                        await producer.start()
                    except (KafkaError, OSError):
                        await producer.stop()
                        raise
        except (KafkaError, OSError) as e:
            raise BrokerUnavailableError(
                f"Kafka at {self.settings.kafka_bootstrap_servers} unavailable: {e}"
            ) from e

        self.producer = producer
        self._available = True
        logger.info("Kafka producer started successfully")

        await self._ensure_topics()

    async def _ensure_topics(self) -> None:
        """Create missing topics with bounded retention."""
        retention_ms = self.settings.event_retention_hours * 3600 * 1000
        retention_bytes = (
            self.settings.event_retention_max_messages * self.settings.event_average_size_bytes
        )
        configs = {
            "retention.ms": str(retention_ms),
            "retention.bytes": str(retention_bytes),
        }

        admin = AIOKafkaAdminClient(bootstrap_servers=self.settings.kafka_bootstrap_servers)
        try:
            await admin.start()
            existing = set(await admin.list_topics())
            missing = [
                NewTopic(
                    name=topic,
                    num_partitions=self.settings.kafka_topic_partitions,
                    replication_factor=self.settings.kafka_topic_replication_factor,
                    topic_configs=configs,
                )
                for topic in all_topics(self.settings.kafka_topic_prefix)
                if topic not in existing
            ]
            if missing:
                await admin.create_topics(missing)
                logger.info(f"Created topics: {', '.join(t.name for t in missing)}")
        except TopicAlreadyExistsError:
            pass
        except (KafkaError, OSError) as e:
            # Topics may still be auto-created by the broker
            logger.warning(f"Could not ensure event topics: {e}")
        finally:
            await admin.close()

    def emit(self, event: ServerStateEvent) -> asyncio.Task:
        """
        Publish an event without waiting for it.

        Args:
            event: Event to publish

        Returns:
            The tracked publish task
        """
        task = asyncio.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def publish(self, event: ServerStateEvent) -> bool:
        """
        Publish an event to ``<category>.<event_type>`` keyed by server id.

        Args:
            event: Event to publish

        Returns:
            True if the broker acknowledged the event, False otherwise
        """
        topic = event.topic(self.settings.kafka_topic_prefix)

        if not self._available or not self.producer:
            logger.warning(f"Kafka not available, skipping {event.type.value} for {event.key}")
            metrics.events_published_total.labels(result="unavailable").inc()
            self._maybe_reconnect()
            return False

        try:
            await asyncio.wait_for(
                self.producer.send_and_wait(topic, value=event.to_wire(), key=event.server_id),
                timeout=self.settings.kafka_publish_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Timed out publishing {event.type.value} for {event.key} to {topic}"
            )
            metrics.events_published_total.labels(result="timeout").inc()
            return False
        except Exception as e:
            logger.error(f"Failed to publish {event.type.value} for {event.key}: {e}")
            metrics.events_published_total.labels(result="error").inc()
            if isinstance(e, KafkaError):
                self._available = False
            return False

        logger.debug(f"Published {event.type.value} for {event.key} to {topic}")
        metrics.events_published_total.labels(result="success").inc()
        return True

    def _maybe_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        now = asyncio.get_running_loop().time()
        interval = self.settings.kafka_reconnect_interval_seconds
        if self._last_attempt is not None and now - self._last_attempt < interval:
            return

        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        if self.producer is not None:
            old, self.producer = self.producer, None
            try:
                await old.stop()
            except (KafkaError, OSError) as e:
                logger.debug(f"Error stopping stale producer: {e}")

        try:
            await self._connect()
            logger.info("Reconnected to Kafka")
        except BrokerUnavailableError as e:
            logger.warning(f"Reconnect failed: {e}")

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """
        Flush pending publishes and close the producer.

        Args:
            grace_seconds: Time allowed for in-flight publishes
        """
        self._closed = True

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)

        if self._pending:
            done, pending = await asyncio.wait(set(self._pending), timeout=grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Dropped {len(pending)} unsent events at shutdown")
                await asyncio.gather(*pending, return_exceptions=True)

        if self.producer:
            try:
                await self.producer.stop()
            except (KafkaError, OSError) as e:
                logger.warning(f"Error stopping Kafka producer: {e}")
            self.producer = None
            self._available = False
            logger.info("Kafka producer stopped")
