import logging
from unittest.mock import AsyncMock, Mock

import pytest

from core.errors.exceptions import SubscriptionError
from queue_to_db.broker import QueueOptions
from queue_to_db.subscriptions import SubscriptionManager


class TestSubscribe:
    async def test_binds_tenant_queue(self, fake_broker, tenant):
        handler = AsyncMock()

        subscription = await SubscriptionManager(fake_broker).subscribe(tenant, handler)

        assert subscription.queue_name == "acme_events"
        assert fake_broker.bound["acme_events"] is subscription

    async def test_uses_transient_shared_options(self, tenant):
        broker = Mock()
        broker.queue = AsyncMock()
        handler = AsyncMock()

        await SubscriptionManager(broker).subscribe(tenant, handler)

        broker.queue.assert_awaited_once_with(
            "acme_events",
            QueueOptions(durable=False, exclusive=False, auto_delete=False),
            handler,
        )

    async def test_delivers_to_handler(self, fake_broker, tenant):
        handler = AsyncMock()
        await SubscriptionManager(fake_broker).subscribe(tenant, handler)

        await fake_broker.publish("acme_events", b'{"x": 1}', offset=5)

        message = handler.await_args.args[0]
        assert message.value == b'{"x": 1}'
        assert message.offset == 5

    async def test_rejection_carries_tenant(self, tenant, broker_factory):
        broker = broker_factory(reject=("acme_events",))
        with pytest.raises(SubscriptionError) as exc_info:
            await SubscriptionManager(broker).subscribe(tenant, AsyncMock())

        err = exc_info.value
        assert err.tenant == "acme"
        assert err.context["queue"] == "acme_events"
        assert isinstance(err.cause, SubscriptionError)

    async def test_no_retry(self, tenant):
        broker = Mock()
        broker.queue = AsyncMock(side_effect=SubscriptionError("rejected"))
        with pytest.raises(SubscriptionError):
            await SubscriptionManager(broker).subscribe(tenant, AsyncMock())
        assert broker.queue.await_count == 1

    async def test_logs_success(self, fake_broker, tenant, caplog):
        with caplog.at_level(logging.INFO, logger="queue_to_db.subscriptions"):
            await SubscriptionManager(fake_broker).subscribe(tenant, AsyncMock())
        assert caplog.records[-1].getMessage() == "Subscription of acme to acme_events: OK"
