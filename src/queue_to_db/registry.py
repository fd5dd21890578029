"""Tenant registry loader."""

import logging

from core.errors.exceptions import QueryError, RegistryLoadError
from queue_to_db.models import TenantRecord
from queue_to_db.storage import StorageGateway, normalize_identifier

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_TABLE = "micro_service"


class TenantRegistry:
    """Reads the full tenant list from the registry table.

    The load is all-or-nothing: one malformed row means the registry is in a
    broken state, so nothing is returned.
    """

    def __init__(self, storage: StorageGateway, table: str = DEFAULT_REGISTRY_TABLE):
        self._storage = storage
        self._table = table

    @property
    def table(self) -> str:
        return self._table

    async def load_tenants(self) -> list[TenantRecord]:
        """
        Fetch and validate every tenant record.

        Raises:
            RegistryLoadError: the fetch failed or a row is malformed
        """
        try:
            rows = await self._storage.fetch_all(self._table)
        except QueryError as e:
            raise RegistryLoadError(
                f"Failed to query tenants from {self._table}",
                cause=e,
                context={"entity": self._table},
            ) from e

        tenants = []
        for index, row in enumerate(rows):
            try:
                tenant = TenantRecord.from_row(row)
                normalize_identifier(tenant.db_schema_name)
            except (TypeError, ValueError) as e:
                raise RegistryLoadError(
                    f"Malformed tenant record at row {index} of {self._table}",
                    cause=e,
                    context={"entity": self._table, "row_index": index},
                ) from e
            tenants.append(tenant)

        self._check_unique(tenants)

        logger.info(
            "Loaded tenant registry",
            extra={"entity": self._table, "tenant_count": len(tenants)},
        )
        return tenants

    def _check_unique(self, tenants: list[TenantRecord]) -> None:
        """Queue and schema names must each belong to exactly one tenant.

        Schema names are compared as PostgreSQL folds them, so ``Shared`` and
        ``shared`` collide.
        """
        for attribute in ("queue_name", "db_schema_name"):
            seen: dict[str, str] = {}
            for tenant in tenants:
                value = getattr(tenant, attribute)
                if attribute == "db_schema_name":
                    value = normalize_identifier(value)
                if value in seen:
                    raise RegistryLoadError(
                        f"Tenants {seen[value]!r} and {tenant.code_name!r} share {attribute} {value!r}",
                        context={"entity": self._table},
                    )
                seen[value] = tenant.code_name
