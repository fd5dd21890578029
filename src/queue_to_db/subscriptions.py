"""Binds tenant queues to their message handlers."""

import logging

from core.errors.exceptions import SubscriptionError
from queue_to_db.broker import (
    TRANSIENT_SHARED_QUEUE,
    BrokerConnection,
    MessageCallback,
    QueueSubscription,
)
from queue_to_db.models import TenantRecord

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """Subscribes each tenant to its own queue on the shared broker connection."""

    def __init__(self, broker: BrokerConnection):
        self._broker = broker

    async def subscribe(self, tenant: TenantRecord, on_message: MessageCallback) -> QueueSubscription:
        """
        Open or attach to tenant.queue_name and route its messages to on_message.

        The queue is non-durable, non-exclusive and never auto-deleted. Resolves
        once the broker has confirmed the binding; there is no retry.

        Raises:
            SubscriptionError: carrying the tenant code name and the cause
        """
        try:
            subscription = await self._broker.queue(
                tenant.queue_name,
                TRANSIENT_SHARED_QUEUE,
                on_message,
            )
        except SubscriptionError as e:
            raise SubscriptionError(
                f"Could not subscribe tenant {tenant.code_name} to {tenant.queue_name}",
                tenant=tenant.code_name,
                cause=e,
                context={"queue": tenant.queue_name},
            ) from e

        logger.info(f"Subscription of {tenant.code_name} to {tenant.queue_name}: OK")
        return subscription
