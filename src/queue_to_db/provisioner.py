"""Per-tenant storage provisioning."""

import logging

from core.errors.exceptions import ProvisioningError
from queue_to_db.models import TenantRecord
from queue_to_db.storage import StorageGateway

logger = logging.getLogger(__name__)


class Provisioner:
    """Ensures a tenant's schema and event table exist.

    Safe to call any number of times for the same tenant, e.g. on every
    process restart.
    """

    def __init__(self, storage: StorageGateway):
        self._storage = storage

    async def provision(self, tenant: TenantRecord, owner_user: str) -> None:
        """
        Raises:
            ProvisioningError: carrying the tenant code name and the cause
        """
        try:
            await self._storage.ensure_schema(tenant.db_schema_name, owner_user)
        except ProvisioningError as e:
            raise ProvisioningError(
                f"Could not provision storage for tenant {tenant.code_name}",
                tenant=tenant.code_name,
                cause=e,
                context={"db_schema": tenant.db_schema_name},
            ) from e

        logger.info(f"Schema of {tenant.code_name}: OK")
