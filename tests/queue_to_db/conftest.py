"""
Fixtures for queue_to_db tests.

FakeDatabase stands in for a psycopg AsyncConnection. It renders every
composed statement with ``as_string()`` and keeps enough state (schemas,
event tables, inserted rows) to check idempotence and routing.

FakeBroker stands in for BrokerConnection at the subscription boundary.
"""

import re
from collections import defaultdict

import psycopg
import pytest

from core.errors.exceptions import SubscriptionError
from queue_to_db.broker import QueueSubscription
from queue_to_db.models import TenantRecord
from queue_to_db.storage import StorageGateway
from queue_to_db.types import PipelineMessage

_SELECT = re.compile(r'SELECT \* FROM "(\w+)"')
_CREATE_SCHEMA = re.compile(r'CREATE SCHEMA IF NOT EXISTS "(\w+)" AUTHORIZATION "(\w+)"')
_CREATE_TABLE = re.compile(r'CREATE TABLE IF NOT EXISTS "(\w+)"\."event_data"')
_INSERT = re.compile(r'INSERT INTO "(\w+)"\."event_data"')


class FakeCursor:
    def __init__(self, db: "FakeDatabase"):
        self._db = db
        self._rows = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query, params=None):
        text = query.as_string() if hasattr(query, "as_string") else str(query)
        self._db.executed.append((text, params))
        self._rows = self._db.apply(text, params)

    async def fetchall(self):
        return list(self._rows)


class FakeDatabase:
    def __init__(self, tables: dict[str, list[dict]] | None = None):
        self.tables = tables or {}
        self.schemas: dict[str, str] = {}
        self.event_tables: set[str] = set()
        self.events: dict[str, list[tuple]] = defaultdict(list)
        self.executed: list[tuple[str, object]] = []
        self.failures: dict[str, Exception] = {}
        self.closed = False

    def fail_on(self, needle: str, error: Exception | None = None) -> None:
        """Raise error from any statement whose text contains needle."""
        self.failures[needle] = error or psycopg.errors.InsufficientPrivilege("permission denied")

    def cursor(self, row_factory=None):
        return FakeCursor(self)

    async def close(self):
        self.closed = True

    def apply(self, text: str, params):
        for needle, error in self.failures.items():
            if needle in text:
                raise error

        if match := _SELECT.search(text):
            name = match.group(1)
            if name not in self.tables:
                raise psycopg.errors.UndefinedTable(f'relation "{name}" does not exist')
            return self.tables[name]

        if match := _CREATE_SCHEMA.search(text):
            self.schemas.setdefault(match.group(1), match.group(2))
            return []

        if match := _CREATE_TABLE.search(text):
            schema = match.group(1)
            if schema not in self.schemas:
                raise psycopg.errors.InvalidSchemaName(f'schema "{schema}" does not exist')
            self.event_tables.add(schema)
            return []

        if match := _INSERT.search(text):
            schema = match.group(1)
            if schema not in self.event_tables:
                raise psycopg.errors.UndefinedTable(f'relation "{schema}.event_data" does not exist')
            self.events[schema].append(tuple(params))
            return []

        raise AssertionError(f"unexpected statement: {text}")

    def statements(self, prefix: str) -> list[str]:
        return [text for text, _ in self.executed if text.strip().startswith(prefix)]


class FakeBroker:
    def __init__(self, reject: tuple[str, ...] = ()):
        self.reject = set(reject)
        self.bound: dict[str, QueueSubscription] = {}
        self.closed = False
        self.grace_seconds = None
        self.bind_attempts: list[str] = []

    @property
    def subscriptions(self):
        return dict(self.bound)

    @property
    def is_connected(self):
        return not self.closed

    async def queue(self, queue_name, options, callback):
        self.bind_attempts.append(queue_name)
        if queue_name in self.reject:
            raise SubscriptionError(f"Broker rejected queue {queue_name}")
        subscription = QueueSubscription(queue_name, options, callback)
        self.bound[queue_name] = subscription
        return subscription

    async def publish(self, queue_name: str, body: bytes, offset: int = 0) -> None:
        message = PipelineMessage(queue=queue_name, partition=0, offset=offset, timestamp=0, value=body)
        await self.bound[queue_name].deliver(message)

    async def close(self, grace_seconds: float = 10.0) -> None:
        self.closed = True
        self.grace_seconds = grace_seconds
        for subscription in self.bound.values():
            subscription.deactivate()


def registry_row(code_name: str, /, **overrides) -> dict:
    row = {
        "id": 1,
        "code_name": code_name,
        "queue_name": f"{code_name}_events",
        "db_schema_name": f"{code_name}_db",
    }
    row.update(overrides)
    return row


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def storage(fake_db):
    return StorageGateway(fake_db)


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
def tenant():
    return TenantRecord(code_name="acme", queue_name="acme_events", db_schema_name="acme_db")


@pytest.fixture
def make_registry_row():
    return registry_row


@pytest.fixture
def broker_factory():
    return FakeBroker
