"""Configuration loading for queue-to-db.

Main Functions
--------------

    - load_config(): Resolve RuntimeConfig from environment, CLI values and YAML
    - add_config_arguments(): Register the connection flags on an argparse parser

Usage Examples
--------------

    >>> from config import load_config
    >>> config = load_config()
    >>> config.bootstrap_servers
    'kafka.local:9092'

Configuration Priority
----------------------

1. Environment variables (IOT_QUICKSTART_DB_HOST, IOT_QUICKSTART_QUEUE_PORT, ...)
2. Command line arguments (--db-host/-h, --queue-port/-P, ...)
3. YAML file (queue_to_db: section, ${VAR} expansion supported)

Validation
----------

    $ python -m config --json
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    IDENTIFIER_PATTERN,
    RuntimeConfig,
    add_config_arguments,
    cli_values_from_args,
    load_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "IDENTIFIER_PATTERN",
    "RuntimeConfig",
    "add_config_arguments",
    "cli_values_from_args",
    "load_config",
]
