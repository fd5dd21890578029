"""
queue-to-db: per-tenant queue ingestion into PostgreSQL.

A registry table lists the tenants. For each one the service ensures a
dedicated schema with an ``event_data`` table, subscribes to the tenant's
queue and inserts every valid event it receives.

Architecture:
    queue_to_db/
    ├── storage.py        # Shared PostgreSQL connection and parameterized SQL
    ├── registry.py       # Tenant registry loader
    ├── provisioner.py    # Idempotent schema and table creation
    ├── broker.py         # Shared Kafka connection, one consumer for all queues
    ├── subscriptions.py  # Per-tenant queue binding
    ├── ingestion.py      # Validate and persist one message
    ├── app.py            # Application context and startup fan-out
    └── __main__.py       # CLI entry point
"""

__version__ = "1.0.0"
