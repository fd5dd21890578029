"""
Tenant and event models.

TenantRecord is a read-only snapshot of one row of the tenant registry.
EventRecord is the validated shape of one inbound queue message.
"""

from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

MAC_ADDRESS_MAX_LENGTH = 512

# Range of the PostgreSQL integer columns in event_data
INTEGER_MIN = -(2**31)
INTEGER_MAX = 2**31 - 1

REGISTRY_COLUMNS = ("code_name", "queue_name", "db_schema_name")


@dataclass(frozen=True)
class TenantRecord:
    """One micro-service registered in the database.

    Attributes:
        code_name: Human-readable identifier
        queue_name: Broker destination, unique per tenant
        db_schema_name: Storage namespace, unique per tenant
    """

    code_name: str
    queue_name: str
    db_schema_name: str

    def __post_init__(self) -> None:
        for name in REGISTRY_COLUMNS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string, got {value!r}")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TenantRecord":
        """Build a record from a registry row, ignoring extra columns."""
        missing = [name for name in REGISTRY_COLUMNS if name not in row]
        if missing:
            raise ValueError(f"registry row is missing column(s): {', '.join(missing)}")
        return cls(**{name: row[name] for name in REGISTRY_COLUMNS})


class EventRecord(BaseModel):
    """Schema for one device event message.

    Strict typing: ``"1"``, ``1.0`` and ``true`` are not integers. Extra
    keys in the payload are ignored.

    Example:
        >>> EventRecord.model_validate_json(
        ...     b'{"application_id": 1, "device_id": 2, "mac_address": "AA:BB:CC:DD:EE:FF"}'
        ... )
        EventRecord(application_id=1, device_id=2, mac_address='AA:BB:CC:DD:EE:FF')
    """

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    application_id: int = Field(
        ..., description="Application identifier", ge=INTEGER_MIN, le=INTEGER_MAX
    )
    device_id: int = Field(..., description="Device identifier", ge=INTEGER_MIN, le=INTEGER_MAX)
    mac_address: str = Field(
        ...,
        description="Device MAC address",
        max_length=MAC_ADDRESS_MAX_LENGTH,
    )

    def as_row(self) -> tuple[int, int, str]:
        """Values in event_data column order."""
        return (self.application_id, self.device_id, self.mac_address)
