"""
Shared broker connection with per-queue subscriptions.

Queues are Kafka topics. One AIOKafkaConsumer carries every tenant
subscription: binding a queue creates (or attaches to) its topic through the
admin client, then re-subscribes the consumer to the union of bound queues.
A single dispatch loop fetches records and starts one handler task per
record, in arrival order, without waiting for earlier handlers to finish.

Queue option mapping:
    durable=False     topic created with bounded retention (transient_retention_ms)
    durable=True      topic created with broker default retention
    exclusive=False   all service instances share one consumer group
    auto_delete=False topics are never deleted by this service
``exclusive=True`` and ``auto_delete=True`` have no Kafka equivalent and are
rejected.
"""

import asyncio
import contextvars
import logging
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass

from aiokafka import AIOKafkaConsumer
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError, for_code

from config.config import RuntimeConfig
from core.errors.exceptions import ConnectionError, SubscriptionError
from core.logging import MessageLogContext
from queue_to_db.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)

MessageCallback = Callable[[PipelineMessage], Awaitable[None]]

FETCH_TIMEOUT_MS = 1000
ERROR_BACKOFF_SECONDS = 1.0


@dataclass(frozen=True)
class QueueOptions:
    durable: bool = False
    exclusive: bool = False
    auto_delete: bool = False


TRANSIENT_SHARED_QUEUE = QueueOptions(durable=False, exclusive=False, auto_delete=False)


def build_security_config(config: RuntimeConfig) -> dict:
    """Build Kafka security settings.

    Returns an empty dict for PLAINTEXT connections. SASL mechanisms
    authenticate with the configured queue user and password.
    """
    if config.security_protocol == "PLAINTEXT":
        return {}

    security_config = {"security_protocol": config.security_protocol}

    if "SSL" in config.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if config.security_protocol.startswith("SASL"):
        security_config["sasl_mechanism"] = config.sasl_mechanism
        security_config["sasl_plain_username"] = config.queue_user
        security_config["sasl_plain_password"] = config.queue_password

    return security_config


class QueueSubscription:
    """Handle for one active queue binding.

    Owned by exactly one tenant pipeline for the lifetime of the process.
    """

    def __init__(self, queue_name: str, options: QueueOptions, callback: MessageCallback):
        self.queue_name = queue_name
        self.options = options
        self._callback = callback
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    def deactivate(self) -> None:
        self._active = False

    async def deliver(self, message: PipelineMessage) -> None:
        """Invoke the callback for one message; callback errors are logged, never raised."""
        if not self._active:
            return

        with MessageLogContext(
            queue=message.queue,
            partition=message.partition,
            offset=message.offset,
        ):
            try:
                await self._callback(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Message handler raised, message dropped", exc_info=True)

    def __repr__(self) -> str:
        return f"QueueSubscription(queue_name={self.queue_name!r}, active={self._active})"


class BrokerConnection:
    """The single broker connection shared by every tenant pipeline."""

    def __init__(
        self,
        config: RuntimeConfig,
        client_id: str = "queue-to-db",
        consumer: AIOKafkaConsumer | None = None,
        admin: AIOKafkaAdminClient | None = None,
    ):
        self.config = config
        self.client_id = client_id
        self._consumer = consumer
        self._admin = admin
        self._subscriptions: dict[str, QueueSubscription] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._dispatch_task: asyncio.Task | None = None
        self._running = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def subscriptions(self) -> dict[str, QueueSubscription]:
        return dict(self._subscriptions)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _admin_config(self) -> dict:
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": f"{self.client_id}-admin",
        }
        cfg.update(build_security_config(self.config))
        return cfg

    def _consumer_config(self) -> dict:
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.config.consumer_group,
            "client_id": self.client_id,
            "enable_auto_commit": True,
            "auto_offset_reset": "latest",
        }
        cfg.update(build_security_config(self.config))
        return cfg

    async def connect(self) -> None:
        """
        Start the admin client and the shared consumer.

        Raises:
            ConnectionError: the broker is unreachable or refused the login
        """
        if self._connected:
            logger.warning("Broker already connected, ignoring duplicate connect call")
            return

        logger.info(f"Establishing connection to broker at {self.config.bootstrap_servers} ...")
        admin_started = False
        try:
            if self._admin is None:
                self._admin = AIOKafkaAdminClient(**self._admin_config())
            await self._admin.start()
            admin_started = True

            if self._consumer is None:
                self._consumer = AIOKafkaConsumer(**self._consumer_config())
            await self._consumer.start()
        except (KafkaError, OSError) as e:
            if admin_started:
                try:
                    await self._admin.close()
                except (KafkaError, OSError):
                    logger.warning("Error closing broker admin client", exc_info=True)
            raise ConnectionError(
                "Broker connection could not be established",
                cause=e,
                context={"bootstrap_servers": self.config.bootstrap_servers},
            ) from e

        self._connected = True
        self._running = True
        logger.info(
            "Broker connection: OK",
            extra={
                "bootstrap_servers": self.config.bootstrap_servers,
                "consumer_group": self.config.consumer_group,
            },
        )

    async def queue(
        self,
        queue_name: str,
        options: QueueOptions,
        callback: MessageCallback,
    ) -> QueueSubscription:
        """
        Open or attach to a queue and route its messages to callback.

        Returns once the broker has confirmed the topic exists and the
        consumer subscription includes it.

        Raises:
            SubscriptionError: unsupported options, duplicate binding or broker rejection
        """
        if not self._connected:
            raise SubscriptionError(f"Cannot bind {queue_name}: broker not connected")
        if options.exclusive or options.auto_delete:
            raise SubscriptionError(
                f"Cannot bind {queue_name}: exclusive and auto-delete queues are not supported",
                context={"queue_options": asdict(options)},
            )
        if queue_name in self._subscriptions:
            raise SubscriptionError(f"Queue {queue_name} is already bound")

        await self._ensure_topic(queue_name, options)

        subscription = QueueSubscription(queue_name, options, callback)
        self._subscriptions[queue_name] = subscription
        try:
            self._consumer.subscribe(topics=sorted(self._subscriptions))
        except (KafkaError, ValueError) as e:
            del self._subscriptions[queue_name]
            raise SubscriptionError(f"Consumer could not subscribe to {queue_name}", cause=e) from e

        self._ensure_dispatching()
        logger.debug(
            "Queue bound",
            extra={
                "queue_options": asdict(options),
                "subscribed_queues": sorted(self._subscriptions),
            },
        )
        return subscription

    async def _ensure_topic(self, queue_name: str, options: QueueOptions) -> None:
        topic_configs = {}
        if not options.durable:
            topic_configs["retention.ms"] = str(self.config.transient_retention_ms)

        topic = NewTopic(
            name=queue_name,
            num_partitions=1,
            replication_factor=1,
            topic_configs=topic_configs,
        )
        try:
            response = await self._admin.create_topics([topic])
        except TopicAlreadyExistsError:
            logger.debug(f"Queue {queue_name} already exists, attaching")
            return
        except (KafkaError, OSError) as e:
            raise SubscriptionError(f"Broker rejected queue {queue_name}", cause=e) from e

        for topic_error in getattr(response, "topic_errors", None) or []:
            error_code = topic_error[1]
            if error_code == 0:
                continue
            if error_code == TopicAlreadyExistsError.errno:
                logger.debug(f"Queue {queue_name} already exists, attaching")
                continue
            error = for_code(error_code)()
            raise SubscriptionError(f"Broker rejected queue {queue_name}", cause=error)

    def _ensure_dispatching(self) -> None:
        if self._dispatch_task is None or self._dispatch_task.done():
            # Empty context: delivery tasks must not inherit the binding tenant's log context
            self._dispatch_task = asyncio.create_task(
                self._dispatch_loop(), name="broker-dispatch", context=contextvars.Context()
            )

    async def _dispatch_loop(self) -> None:
        logger.info("Starting message dispatch loop")
        while self._running:
            try:
                batches = await self._consumer.getmany(timeout_ms=FETCH_TIMEOUT_MS)
            except asyncio.CancelledError:
                logger.info("Dispatch loop cancelled")
                raise
            except Exception:
                logger.error("Error fetching messages", exc_info=True)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
                continue

            for records in batches.values():
                for record in records:
                    self._dispatch(record)

    def _dispatch(self, record) -> None:
        subscription = self._subscriptions.get(record.topic)
        if subscription is None:
            logger.warning(
                "Received message for unbound queue, dropping",
                extra={"message_queue": record.topic, "message_offset": record.offset},
            )
            return

        task = asyncio.create_task(
            subscription.deliver(from_consumer_record(record)),
            name=f"deliver-{record.topic}-{record.partition}-{record.offset}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def close(self, grace_seconds: float = 10.0) -> None:
        """Stop dispatching, drain in-flight handlers for up to grace_seconds, disconnect."""
        self._running = False

        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None

        if self._in_flight:
            logger.info("Draining in-flight messages", extra={"in_flight": len(self._in_flight)})
            _, pending = await asyncio.wait(set(self._in_flight), timeout=grace_seconds)
            if pending:
                logger.warning(
                    "Could not drain in-flight messages in time, cancelling",
                    extra={"in_flight": len(pending), "timeout_seconds": grace_seconds},
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        for subscription in self._subscriptions.values():
            subscription.deactivate()

        try:
            if self._consumer is not None:
                await self._consumer.stop()
            if self._admin is not None:
                await self._admin.close()
        except (KafkaError, OSError):
            logger.error("Error closing broker connection", exc_info=True)
        finally:
            self._connected = False

        logger.info("Broker connection closed")
