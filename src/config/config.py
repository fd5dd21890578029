"""Runtime configuration for queue-to-db.

Values are resolved from three sources, highest precedence first:

1. Environment variables (``IOT_QUICKSTART_DB_HOST``, ``IOT_QUICKSTART_QUEUE_PORT``, ...)
2. Command line arguments (``--db-host``/``-h``, ``--queue-port``/``-P``, ...)
3. An optional YAML file with a ``queue_to_db:`` section

Environment variables ARE supported inside the YAML file using ${VAR_NAME}
and ${VAR_NAME:-default} syntax.
"""

import argparse
import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from core.errors.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "IOT_QUICKSTART_"

# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

REQUIRED_STRING_FIELDS = (
    "db_host",
    "db_user",
    "db_password",
    "db_schema",
    "queue_host",
    "queue_user",
    "queue_password",
)
PORT_FIELDS = ("db_port", "queue_port")
SECRET_FIELDS = frozenset({"db_password", "queue_password"})

TENANT_FAILURE_POLICIES = ("abort", "isolate")
SECURITY_PROTOCOLS = ("PLAINTEXT", "SASL_PLAINTEXT", "SASL_SSL", "SSL")
SASL_MECHANISMS = ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512")

# Unquoted SQL identifier, max 63 bytes (PostgreSQL NAMEDATALEN - 1)
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

# CLI contract: (field, long flag, short alias)
CLI_OPTIONS = (
    ("db_host", "--db-host", "-h"),
    ("db_port", "--db-port", "-p"),
    ("db_user", "--db-user", "-u"),
    ("db_password", "--db-password", "-k"),
    ("db_schema", "--db-schema", "-s"),
    ("queue_host", "--queue-host", "-H"),
    ("queue_port", "--queue-port", "-P"),
    ("queue_user", "--queue-user", "-U"),
    ("queue_password", "--queue-password", "-K"),
)


@dataclass(frozen=True)
class RuntimeConfig:
    """All configuration only known at runtime.

    The nine connection settings are mandatory; everything else has a
    default. Construction validates every field and raises
    ConfigValidationError naming the first offending one.
    """

    # =========================================================================
    # DATABASE
    # =========================================================================
    db_host: str
    db_port: int
    db_user: str
    db_password: str
    db_schema: str

    # =========================================================================
    # BROKER
    # =========================================================================
    queue_host: str
    queue_port: int
    queue_user: str
    queue_password: str
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    consumer_group: str = "queue-to-db"
    transient_retention_ms: int = 24 * 60 * 60 * 1000

    # =========================================================================
    # ORCHESTRATION
    # =========================================================================
    registry_table: str = "micro_service"
    tenant_failure_policy: str = "abort"
    startup_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 10.0

    def __post_init__(self) -> None:
        self.validate()

    @property
    def bootstrap_servers(self) -> str:
        return f"{self.queue_host}:{self.queue_port}"

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        for name in REQUIRED_STRING_FIELDS + ("consumer_group",):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigValidationError(
                    f"{name} must be a non-empty string, got {value!r}"
                    if name not in SECRET_FIELDS
                    else f"{name} must be a non-empty string",
                    field=name,
                )

        for name in PORT_FIELDS:
            self._validate_port(name, getattr(self, name))

        self._validate_enum("tenant_failure_policy", TENANT_FAILURE_POLICIES)
        self._validate_enum("security_protocol", SECURITY_PROTOCOLS)
        self._validate_enum("sasl_mechanism", SASL_MECHANISMS)

        if not isinstance(self.registry_table, str) or not IDENTIFIER_PATTERN.match(self.registry_table):
            raise ConfigValidationError(
                f"registry_table must be a plain SQL identifier, got {self.registry_table!r}",
                field="registry_table",
            )

        self._validate_positive("startup_timeout_seconds", inclusive=False)
        self._validate_positive("shutdown_grace_seconds", inclusive=True)
        self._validate_positive("transient_retention_ms", inclusive=False)

    @staticmethod
    def _validate_port(name: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigValidationError(f"{name} must be an integer, got {value!r}", field=name)
        if not 1 <= value <= 65535:
            raise ConfigValidationError(f"{name} must be between 1 and 65535, got {value}", field=name)

    def _validate_enum(self, name: str, valid_values: tuple) -> None:
        value = getattr(self, name)
        if value not in valid_values:
            raise ConfigValidationError(
                f"{name} must be one of {list(valid_values)}, got {value!r}", field=name
            )

    def _validate_positive(self, name: str, inclusive: bool) -> None:
        value = getattr(self, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigValidationError(f"{name} must be a number, got {value!r}", field=name)
        if value < 0 or (value == 0 and not inclusive):
            bound = ">= 0" if inclusive else "> 0"
            raise ConfigValidationError(f"{name} must be {bound}, got {value}", field=name)

    def to_safe_dict(self) -> Dict[str, Any]:
        """Return the configuration as a dict with secrets redacted, for logging."""
        data = asdict(self)
        for name in SECRET_FIELDS:
            data[name] = "***"
        return data


_FIELD_TYPES = {f.name: f.type for f in fields(RuntimeConfig)}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any, environ: Mapping[str, str]) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value, environ) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, environ) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return environ.get(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _coerce(name: str, value: Any) -> Any:
    """Convert string values from env/CLI/YAML into the field's declared type."""
    expected = _FIELD_TYPES[name]
    if not isinstance(value, str) or expected == "str" or expected is str:
        return value

    text = value.strip()
    try:
        if expected in (int, "int"):
            return int(text, 10)
        if expected in (float, "float"):
            return float(text)
    except ValueError as e:
        raise ConfigValidationError(
            f"{name} must be numeric, got {value!r}", field=name, cause=e
        ) from e
    return value


def _from_environment(environ: Mapping[str, str]) -> Dict[str, Any]:
    values = {}
    for name in _FIELD_TYPES:
        env_name = f"{ENV_PREFIX}{name.upper()}"
        if environ.get(env_name) not in (None, ""):
            values[name] = environ[env_name]
    return values


def load_config(
    config_path: Optional[Path] = None,
    cli_values: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RuntimeConfig:
    """Resolve the runtime configuration from environment, CLI values and YAML.

    Environment variables take precedence; a setting missing from the
    environment falls back to the command line, then to the YAML file.

    Raises:
        ConfigValidationError: a required value is missing or malformed
    """
    environ = os.environ if environ is None else environ

    yaml_values: Dict[str, Any] = {}
    path = config_path or DEFAULT_CONFIG_FILE
    if config_path is not None and not config_path.exists():
        raise ConfigValidationError(f"Configuration file not found: {config_path}")
    if path.exists():
        logger.info(f"Loading configuration from file: {path}")
        yaml_data = _expand_env_vars(load_yaml(path), environ)
        if not isinstance(yaml_data, dict):
            raise ConfigValidationError(f"Expected a mapping at the top level of {path}")
        yaml_values = yaml_data.get("queue_to_db") or {}
        if not isinstance(yaml_values, dict):
            raise ConfigValidationError(f"Expected a mapping under queue_to_db: in {path}")
        unknown = set(yaml_values) - set(_FIELD_TYPES)
        if unknown:
            raise ConfigValidationError(f"Unknown settings in {path}: {sorted(unknown)}")

    merged: Dict[str, Any] = {}
    merged.update(yaml_values)
    merged.update({k: v for k, v in (cli_values or {}).items() if v is not None})
    merged.update(_from_environment(environ))

    missing = [
        name for name in REQUIRED_STRING_FIELDS + PORT_FIELDS if merged.get(name) in (None, "")
    ]
    if missing:
        env_names = ", ".join(f"{ENV_PREFIX}{name.upper()}" for name in missing)
        raise ConfigValidationError(
            f"Missing required configuration: {', '.join(missing)} (set {env_names})",
            field=missing[0],
        )

    values = {name: _coerce(name, value) for name, value in merged.items()}
    config = RuntimeConfig(**values)

    logger.debug("Configuration loaded", extra={"config": config.to_safe_dict()})
    return config


def add_config_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the connection flags and --config on a parser.

    The parser must be created with add_help=False since -h is the
    database host alias; --help is registered here instead.
    """
    parser.add_argument("--help", action="help", help="Show this help message and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to a YAML config file (default: {DEFAULT_CONFIG_FILE} if present)",
    )
    group = parser.add_argument_group("connection settings")
    for name, flag, alias in CLI_OPTIONS:
        group.add_argument(
            flag,
            alias,
            dest=name,
            default=None,
            help=f"Overridden by {ENV_PREFIX}{name.upper()}",
        )


def cli_values_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {name: getattr(args, name, None) for name, _, _ in CLI_OPTIONS}


def _cli_main(argv: Optional[list] = None) -> int:
    """CLI entry point for config validation."""
    parser = argparse.ArgumentParser(
        prog="python -m config",
        description="queue-to-db configuration tool",
        add_help=False,
    )
    add_config_arguments(parser)
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config, cli_values=cli_values_from_args(args))
    except ConfigValidationError as e:
        if args.json:
            print(json.dumps({"valid": False, "error": str(e), "field": e.field}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"valid": True, "config": config.to_safe_dict()}, indent=2))
    else:
        print("✓ Configuration validation passed")
        print(yaml.dump(config.to_safe_dict(), default_flow_style=False, sort_keys=False))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
