"""
Per-tenant message handler.

Each message is decoded, validated and inserted on its own. Invalid messages
and database rejections are logged and dropped: delivery is at-most-once,
with no requeue and no dead letter queue. Nothing raised here reaches the
broker.
"""

import logging
import time

import pydantic

from core.errors.exceptions import PersistenceError, ValidationError
from core.logging import TenantLogContext, format_payload, log_exception
from queue_to_db import metrics
from queue_to_db.models import EventRecord, TenantRecord
from queue_to_db.storage import StorageGateway
from queue_to_db.types import PipelineMessage

logger = logging.getLogger(__name__)


def parse_event(payload: bytes | str | None) -> EventRecord:
    """
    Decode and validate one message body.

    Raises:
        ValidationError: the body is not JSON or does not match EventRecord
    """
    if payload is None:
        raise ValidationError("Message has no body")
    try:
        return EventRecord.model_validate_json(payload)
    except pydantic.ValidationError as e:
        # Malformed JSON surfaces as a json_invalid error, same path as a bad field
        raise ValidationError(
            f"Invalid event: {e.error_count()} validation error(s)",
            cause=e,
            context={"errors": e.errors(include_url=False, include_input=False)},
        ) from e


class IngestionHandler:
    """Callback registered for one tenant's queue."""

    def __init__(self, tenant: TenantRecord, storage: StorageGateway):
        self.tenant = tenant
        self._storage = storage

    async def __call__(self, message: PipelineMessage) -> None:
        code_name = self.tenant.code_name
        schema = self.tenant.db_schema_name
        start = time.perf_counter()
        metrics.record_received(code_name)

        with TenantLogContext(self.tenant, phase="ingest"):
            try:
                event = parse_event(message.value)
            except ValidationError as e:
                metrics.record_rejected(code_name)
                log_exception(
                    logger,
                    e,
                    f"Unable to save data in {schema}.event_data, message rejected",
                    level=logging.WARNING,
                    include_traceback=False,
                    payload=format_payload(message.value),
                )
                return

            try:
                await self._storage.insert_event(schema, event)
            except PersistenceError as e:
                metrics.record_failed(code_name, time.perf_counter() - start)
                log_exception(
                    logger,
                    e,
                    f"Unable to save data in {schema}.event_data",
                    include_traceback=False,
                    payload=format_payload(message.value),
                )
                return

            duration = time.perf_counter() - start
            metrics.record_persisted(code_name, duration)
            logger.debug(
                "Event persisted",
                extra={"duration_ms": round(duration * 1000, 2)},
            )
