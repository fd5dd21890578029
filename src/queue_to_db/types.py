"""Transport-agnostic message types."""

from dataclasses import dataclass

__all__ = [
    "PipelineMessage",
    "from_consumer_record",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Message received from a tenant queue."""

    queue: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if getattr(record, "headers", None):
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        queue=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
