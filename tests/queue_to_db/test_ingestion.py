"""
Tests for IngestionHandler.

Covers:
- parse_event: valid, missing field, wrong type, malformed JSON, empty body
- Valid message persisted into the tenant schema
- Invalid message rejected without touching storage
- Persistence failure logged and contained
- Per-tenant metrics
"""

import logging
from unittest.mock import AsyncMock, Mock

import pytest
from prometheus_client import REGISTRY

from core.errors.exceptions import PersistenceError, ValidationError
from core.logging import get_log_context
from queue_to_db.ingestion import IngestionHandler, parse_event
from queue_to_db.models import TenantRecord
from queue_to_db.types import PipelineMessage

VALID = b'{"application_id": 1, "device_id": 2, "mac_address": "AA:BB:CC:DD:EE:FF"}'
MISSING_DEVICE = b'{"application_id": 1, "mac_address": "AA:BB:CC:DD:EE:FF"}'


def _message(value, offset=0):
    return PipelineMessage(queue="acme_events", partition=0, offset=offset, timestamp=0, value=value)


def _sample(name, tenant):
    return REGISTRY.get_sample_value(name, {"tenant": tenant}) or 0.0


@pytest.fixture
async def provisioned(storage, tenant):
    await storage.ensure_schema(tenant.db_schema_name, "iot")
    return storage


class TestParseEvent:
    def test_valid(self):
        assert parse_event(VALID).device_id == 2

    def test_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(MISSING_DEVICE)
        assert exc_info.value.context["errors"][0]["loc"] == ("device_id",)

    def test_string_integer_rejected(self):
        with pytest.raises(ValidationError):
            parse_event(b'{"application_id": "1", "device_id": 2, "mac_address": "m"}')

    def test_integer_overflow_rejected_before_storage(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(b'{"application_id": 99999999999, "device_id": 2, "mac_address": "m"}')
        assert exc_info.value.context["errors"][0]["loc"] == ("application_id",)

    def test_malformed_json(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(b'{"application_id": 1,')
        assert exc_info.value.context["errors"][0]["type"] == "json_invalid"

    def test_empty_body(self):
        with pytest.raises(ValidationError, match="no body"):
            parse_event(None)

    def test_payload_not_echoed_in_error_context(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_event(b'{"application_id": "secret", "device_id": 2, "mac_address": "m"}')
        assert "secret" not in str(exc_info.value.context)


class TestIngestionHandler:
    async def test_valid_message_persisted(self, provisioned, fake_db, tenant):
        handler = IngestionHandler(tenant, provisioned)

        await handler(_message(VALID))

        assert fake_db.events["acme_db"] == [(1, 2, "AA:BB:CC:DD:EE:FF")]

    async def test_missing_device_id_never_reaches_storage(self, tenant, caplog):
        storage = Mock()
        storage.insert_event = AsyncMock()
        handler = IngestionHandler(tenant, storage)

        with caplog.at_level(logging.WARNING, logger="queue_to_db.ingestion"):
            await handler(_message(MISSING_DEVICE))

        storage.insert_event.assert_not_awaited()
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "acme_db.event_data" in record.getMessage()
        assert record.payload == MISSING_DEVICE.decode()
        assert record.error_type == "ValidationError"

    async def test_persistence_failure_is_contained(self, storage, fake_db, tenant, caplog):
        # Schema never provisioned: the insert fails with an undefined table
        handler = IngestionHandler(tenant, storage)

        with caplog.at_level(logging.ERROR, logger="queue_to_db.ingestion"):
            await handler(_message(VALID))

        record = caplog.records[-1]
        assert record.getMessage() == "Unable to save data in acme_db.event_data"
        assert "does not exist" in record.error_message
        assert record.payload == VALID.decode()

    async def test_failure_does_not_affect_next_message(self, tenant):
        storage = Mock()
        storage.insert_event = AsyncMock(side_effect=[PersistenceError("disk full"), None])
        handler = IngestionHandler(tenant, storage)

        await handler(_message(VALID, offset=1))
        await handler(_message(VALID, offset=2))

        assert storage.insert_event.await_count == 2

    async def test_sets_tenant_log_context(self, tenant):
        storage = Mock()
        storage.insert_event = AsyncMock()
        seen = {}

        async def capture(schema, event):
            seen.update(get_log_context())

        storage.insert_event.side_effect = capture
        await IngestionHandler(tenant, storage)(_message(VALID))

        assert seen["tenant"] == "acme"
        assert seen["db_schema"] == "acme_db"
        assert seen["phase"] == "ingest"


class TestIngestionMetrics:
    async def test_counts_outcomes(self, storage, fake_db):
        tenant = TenantRecord("metrics_tenant", "metrics_events", "metrics_db")
        await storage.ensure_schema("metrics_db", "iot")
        handler = IngestionHandler(tenant, storage)
        before = {
            name: _sample(name, "metrics_tenant")
            for name in (
                "queue_to_db_messages_received_total",
                "queue_to_db_messages_persisted_total",
                "queue_to_db_messages_rejected_total",
                "queue_to_db_messages_failed_total",
            )
        }

        await handler(_message(VALID))
        await handler(_message(MISSING_DEVICE))
        storage.insert_event = AsyncMock(side_effect=PersistenceError("rejected"))
        await handler(_message(VALID))

        def delta(name):
            return _sample(name, "metrics_tenant") - before[name]

        assert delta("queue_to_db_messages_received_total") == 3
        assert delta("queue_to_db_messages_persisted_total") == 1
        assert delta("queue_to_db_messages_rejected_total") == 1
        assert delta("queue_to_db_messages_failed_total") == 1
        assert _sample("queue_to_db_message_processing_duration_seconds_count", "metrics_tenant") >= 2
