"""
Storage gateway over the single shared PostgreSQL connection.

All statements run in autocommit mode; there are no transactions spanning
calls and no retries. psycopg serializes concurrent use of one
AsyncConnection, so every tenant pipeline can share the gateway.

Identifiers (registry table, tenant schemas, owner role) are never
interpolated as text: they are checked against IDENTIFIER_PATTERN and
emitted with psycopg.sql.Identifier. Event values travel as bound
parameters only.
"""

import logging
import time
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from config.config import IDENTIFIER_PATTERN, RuntimeConfig
from core.errors.exceptions import (
    ConnectionError,
    PersistenceError,
    ProvisioningError,
    QueryError,
)
from queue_to_db.models import MAC_ADDRESS_MAX_LENGTH, EventRecord

logger = logging.getLogger(__name__)

EVENT_TABLE = "event_data"

_FIND_ALL = sql.SQL("SELECT * FROM {entity}")

_CREATE_SCHEMA = sql.SQL("CREATE SCHEMA IF NOT EXISTS {schema} AUTHORIZATION {owner}")

_CREATE_EVENT_TABLE = sql.SQL(
    """
    CREATE TABLE IF NOT EXISTS {schema}.{table}
    (
        id SERIAL NOT NULL PRIMARY KEY,
        application_id integer,
        device_id integer,
        mac_address character varying({mac_length}) COLLATE pg_catalog."default"
    )
    """
)

_INSERT_EVENT = sql.SQL(
    "INSERT INTO {schema}.{table} (application_id, device_id, mac_address) VALUES (%s, %s, %s)"
)


def normalize_identifier(name: Any) -> str:
    """
    Validate a SQL identifier and fold it to lower case.

    Folding matches how PostgreSQL treats the same name unquoted, so a
    registry value of ``Tenant_A`` maps to the schema ``tenant_a``.

    Raises:
        ValueError: name is not a plain identifier
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"invalid SQL identifier: {name!r}")
    return name.lower()


class StorageGateway:
    """Parameterized queries against the relational store."""

    def __init__(self, connection: psycopg.AsyncConnection):
        if connection is None:
            raise ValueError("connection is required")
        self._connection = connection

    @property
    def connection(self) -> psycopg.AsyncConnection:
        return self._connection

    async def fetch_all(self, entity_name: str) -> list[dict[str, Any]]:
        """
        Return every row of a table as a list of column -> value dicts.

        entity_name must be a trusted, fixed table name.

        Raises:
            QueryError: the name is not an identifier or the query failed
        """
        try:
            entity = normalize_identifier(entity_name)
        except ValueError as e:
            raise QueryError(str(e), cause=e, context={"entity": entity_name}) from e

        query = _FIND_ALL.format(entity=sql.Identifier(entity))
        try:
            async with self._connection.cursor(row_factory=dict_row) as cursor:
                await cursor.execute(query)
                rows = await cursor.fetchall()
        except psycopg.Error as e:
            raise QueryError(
                f"Failed to query all rows of {entity}",
                cause=e,
                context={"entity": entity},
            ) from e

        logger.debug("Fetched rows", extra={"entity": entity, "rows": len(rows)})
        return list(rows)

    async def ensure_schema(self, schema_name: str, owner_user: str) -> None:
        """
        Create the tenant schema and its event table if they do not exist.

        The schema statement runs first, then the table statement. A failure
        in either is raised as one ProvisioningError, so a schema created
        just before a failed table statement is not reported separately.

        Raises:
            ProvisioningError: invalid identifiers or a failed statement
        """
        if not isinstance(owner_user, str) or not IDENTIFIER_PATTERN.match(owner_user):
            raise ProvisioningError(f"invalid owner role: {owner_user!r}")
        try:
            schema = normalize_identifier(schema_name)
        except ValueError as e:
            raise ProvisioningError(str(e), cause=e, context={"db_schema": schema_name}) from e

        statements = (
            _CREATE_SCHEMA.format(
                schema=sql.Identifier(schema),
                owner=sql.Identifier(owner_user),
            ),
            _CREATE_EVENT_TABLE.format(
                schema=sql.Identifier(schema),
                table=sql.Identifier(EVENT_TABLE),
                mac_length=sql.Literal(MAC_ADDRESS_MAX_LENGTH),
            ),
        )

        start = time.perf_counter()
        try:
            async with self._connection.cursor() as cursor:
                for statement in statements:
                    await cursor.execute(statement)
        except psycopg.Error as e:
            raise ProvisioningError(
                f"Failed to create schema {schema} or its {EVENT_TABLE} table",
                cause=e,
                context={"db_schema": schema, "owner": owner_user},
            ) from e

        logger.debug(
            "Schema and event table ensured",
            extra={
                "owner": owner_user,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

    async def insert_event(self, schema_name: str, event: EventRecord) -> None:
        """
        Insert one row into <schema_name>.event_data.

        Raises:
            PersistenceError: invalid schema name or any database rejection
        """
        try:
            schema = normalize_identifier(schema_name)
        except ValueError as e:
            raise PersistenceError(str(e), cause=e, context={"db_schema": schema_name}) from e

        statement = _INSERT_EVENT.format(
            schema=sql.Identifier(schema),
            table=sql.Identifier(EVENT_TABLE),
        )
        try:
            async with self._connection.cursor() as cursor:
                await cursor.execute(statement, event.as_row())
        except psycopg.Error as e:
            raise PersistenceError(
                f"Failed to insert event into {schema}.{EVENT_TABLE}",
                cause=e,
                context={"db_schema": schema},
            ) from e

    async def close(self) -> None:
        if self._connection.closed:
            return
        await self._connection.close()
        logger.info("Closed database connection")


async def connect_database(config: RuntimeConfig) -> StorageGateway:
    """
    Open the shared database connection.

    ``config.db_schema`` names the database the registry lives in.

    Raises:
        ConnectionError: the database is unreachable or refused the login
    """
    logger.info("Establishing connection to database at %s:%s ...", config.db_host, config.db_port)
    try:
        connection = await psycopg.AsyncConnection.connect(
            host=config.db_host,
            port=config.db_port,
            user=config.db_user,
            password=config.db_password,
            dbname=config.db_schema,
            autocommit=True,
            application_name="queue-to-db",
        )
    except psycopg.Error as e:
        raise ConnectionError(
            "Database connection could not be established",
            cause=e,
            context={"host": config.db_host, "port": config.db_port},
        ) from e

    logger.info("Database connection: OK")
    return StorageGateway(connection)
