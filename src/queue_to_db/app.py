"""
Application context: owns the shared connections and the tenant pipelines.

Startup fans out over the registry: every tenant is provisioned and then
subscribed, concurrently with the other tenants. A tenant whose provisioning
fails is never subscribed. What happens to the rest depends on
``tenant_failure_policy``:

    abort    the first tenant failure fails the whole startup and cancels
             the pipelines still starting
    isolate  failures are recorded per tenant; startup fails only when no
             tenant reached the subscribed stage
"""

import asyncio
import logging
from dataclasses import dataclass, field

from config.config import RuntimeConfig
from core.errors.exceptions import PipelineError, TenantError
from core.logging import LogContext, TenantLogContext, log_exception, log_phase
from queue_to_db import metrics
from queue_to_db.broker import BrokerConnection, QueueSubscription
from queue_to_db.ingestion import IngestionHandler
from queue_to_db.models import TenantRecord
from queue_to_db.provisioner import Provisioner
from queue_to_db.registry import TenantRegistry
from queue_to_db.storage import StorageGateway
from queue_to_db.subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)


@dataclass
class TenantOutcome:
    """Startup result for one tenant pipeline."""

    tenant: TenantRecord
    stage: str = "pending"
    subscription: QueueSubscription | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.stage == "subscribed"


@dataclass
class StartupReport:
    outcomes: list[TenantOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[TenantOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[TenantOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    def state_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for outcome in self.outcomes:
            state = "failed" if outcome.error is not None else outcome.stage
            counts[state] = counts.get(state, 0) + 1
        return counts


class Application:
    """
    Wires registry, provisioner, subscriptions and ingestion together.

    Constructed once per process from an already connected storage gateway
    and broker connection, then passed to whatever needs it.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        storage: StorageGateway,
        broker: BrokerConnection,
    ):
        self.config = config
        self.storage = storage
        self.broker = broker
        self.registry = TenantRegistry(storage, table=config.registry_table)
        self.provisioner = Provisioner(storage)
        self.subscriptions = SubscriptionManager(broker)
        self.report = StartupReport()
        self.phase = "pending"
        self._closed = False

    @property
    def owner_user(self) -> str:
        """Role that owns every tenant schema."""
        return self.config.db_user

    async def init(self) -> StartupReport:
        """
        Load the registry, then provision and subscribe every tenant.

        Raises:
            RegistryLoadError: the registry could not be read
            TenantError: a tenant failed under the abort policy, or every
                tenant failed under the isolate policy
        """
        self.phase = "registry"
        with log_phase(logger, "registry"):
            tenants = await self.registry.load_tenants()

        if not tenants:
            logger.warning("Tenant registry is empty, no pipelines to start")
            metrics.update_tenant_states({})
            return self.report

        self.report.outcomes = [TenantOutcome(tenant) for tenant in tenants]

        self.phase = "startup"
        with log_phase(
            logger,
            "startup",
            tenant_count=len(tenants),
            failure_policy=self.config.tenant_failure_policy,
        ):
            await self._start_pipelines()

        self.phase = "ready"
        metrics.update_tenant_states(self.report.state_counts())
        self._log_summary()

        if not self.report.succeeded:
            first = self.report.failed[0].error
            raise TenantError(
                "No tenant pipeline could be started",
                cause=first,
                context={"failed_tenants": [o.tenant.code_name for o in self.report.failed]},
            )
        return self.report

    async def _start_pipelines(self) -> None:
        """Run every tenant pipeline as its own task.

        The first exception to escape a pipeline (a TenantError under the
        abort policy, or anything that is not a tenant outcome) cancels the
        pipelines still running. They are awaited before the exception is
        re-raised, so none keeps provisioning or subscribing afterwards.
        """
        tasks = [
            asyncio.create_task(self._start_pipeline(outcome))
            for outcome in self.report.outcomes
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if pending:
            cancelled = [
                outcome.tenant.code_name
                for outcome, task in zip(self.report.outcomes, tasks)
                if task in pending
            ]
            logger.warning("Cancelled pipelines still starting", extra={"cancelled_tenants": cancelled})
        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _start_pipeline(self, outcome: TenantOutcome) -> None:
        tenant = outcome.tenant
        with TenantLogContext(tenant):
            try:
                with LogContext(phase="provision"):
                    await self.provisioner.provision(tenant, self.owner_user)
                outcome.stage = "provisioned"

                with LogContext(phase="subscribe"):
                    handler = IngestionHandler(tenant, self.storage)
                    outcome.subscription = await self.subscriptions.subscribe(tenant, handler)
                outcome.stage = "subscribed"
            except TenantError as e:
                outcome.error = e
                log_exception(
                    logger,
                    e,
                    f"Pipeline of {tenant.code_name} failed (stage reached: {outcome.stage})",
                    include_traceback=False,
                )
                if self.config.tenant_failure_policy == "abort":
                    raise

    def _log_summary(self) -> None:
        failed = [o.tenant.code_name for o in self.report.failed]
        logger.info(
            "Tenant pipelines started",
            extra={
                "tenant_count": len(self.report.outcomes),
                "tenants_ok": len(self.report.succeeded),
                "tenants_failed": len(failed),
                "failed_tenants": failed,
                "failure_policy": self.config.tenant_failure_policy,
            },
        )

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """Drain in-flight messages, then close the broker and the database connection."""
        if self._closed:
            return
        self._closed = True
        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds

        with log_phase(logger, "shutdown"):
            try:
                await self.broker.close(grace_seconds=grace)
            finally:
                metrics.update_connection_status("broker", False)
                await self.storage.close()
                metrics.update_connection_status("database", False)
