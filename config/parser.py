"""
Configuration parser for the Static Route Agent.

Identity, table selection and protected subnets come from the process
environment. Operational tuning (controller endpoint, reconciliation
interval, retry policy) comes from an optional YAML file.
"""

import ipaddress
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml


DEFAULT_ROUTE_TABLE = 254
PROTECTED_SUBNET_MARKER = "PROTECTED_SUBNET_"

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def parse_target_table(value: str) -> int:
    """
    Parse a TARGET_TABLE value.

    Raises:
        ConfigurationError: If the value is not an integer in [0, 254]
    """
    try:
        table = int(value.strip())
    except ValueError:
        raise ConfigurationError(f"Unable to parse custom table 'TARGET_TABLE={value}'")
    if table < 0 or table > 254:
        raise ConfigurationError(f"Target table must be between 0 and 254 'TARGET_TABLE={value}'")
    return table


def collect_protected_subnets(environ: Mapping[str, str]) -> List[Network]:
    """
    Collect protected subnets from every *PROTECTED_SUBNET_* variable.

    Each variable holds a comma-separated CIDR list. Variables are read in
    name order so the resulting order is stable.

    Raises:
        ConfigurationError: If any entry is not a valid CIDR
    """
    subnets = []
    for name in sorted(environ):
        if PROTECTED_SUBNET_MARKER not in name:
            continue
        for entry in environ[name].split(','):
            entry = entry.strip()
            if not entry:
                continue
            if '/' not in entry:
                raise ConfigurationError(
                    f"Invalid protected subnet in {name}: '{entry}' is not in CIDR notation"
                )
            try:
                subnets.append(ipaddress.ip_network(entry, strict=False))
            except ValueError as e:
                raise ConfigurationError(f"Invalid protected subnet in {name}: {e}")
    return subnets


class AgentConfig:
    """Agent configuration parser and validator."""

    # dotted path -> (accepted types, lower bound, upper bound, lower inclusive)
    BOUNDED_FIELDS = {
        'controller.timeout': ((int, float), 0, 300, False),
        'engine.reconcile_interval': ((int, float), 1, 3600, True),
        'engine.command_timeout': ((int, float), 0, 60, False),
        'engine.retry_attempts': (int, 1, 10, True),
        'watch.interval': ((int, float), 0, 3600, False),
        'watch.requeue_after': ((int, float), 0, 3600, True),
        'watch.workers': (int, 1, 64, True),
    }

    def __init__(
        self,
        hostname: str,
        table: int = DEFAULT_ROUTE_TABLE,
        protected_subnets: Optional[List[Network]] = None,
        config_dict: Optional[Dict[str, Any]] = None
    ):
        if not hostname:
            raise ConfigurationError("Missing environment variable: NODE_HOSTNAME")
        self.hostname = hostname
        self.table = table
        self.protected_subnets: Tuple[Network, ...] = tuple(protected_subnets or ())
        self._config = config_dict or {}
        self._validate()

    def _validate(self):
        """Validate optional tuning fields: types and bounds."""
        if not isinstance(self._config, dict):
            raise ConfigurationError("Configuration must be a mapping")

        for field_path, (expected_type, low, high, low_inclusive) in self.BOUNDED_FIELDS.items():
            value = self._get_nested_value(field_path)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, expected_type):
                raise ConfigurationError(
                    f"Field {field_path} has incorrect type. "
                    f"Expected {expected_type}, got {type(value)}"
                )
            too_low = value < low if low_inclusive else value <= low
            if too_low or value > high:
                raise ConfigurationError(f"Field {field_path}={value} out of range")

        url = self._get_nested_value('controller.url')
        if url is not None and not isinstance(url, str):
            raise ConfigurationError("Field controller.url must be a string")

        backoff = self._get_nested_value('engine.retry_backoff')
        if backoff is not None:
            if not isinstance(backoff, list) or not backoff:
                raise ConfigurationError("Field engine.retry_backoff must be a non-empty list")
            for delay in backoff:
                if isinstance(delay, bool) or not isinstance(delay, (int, float)) \
                        or delay <= 0 or delay > 60:
                    raise ConfigurationError(f"Invalid backoff delay: {delay}")

    def _get_nested_value(self, field_path: str) -> Any:
        """Get value from nested dictionary using dot notation."""
        keys = field_path.split('.')
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return None
        return value

    def _get(self, field_path: str, default: Any) -> Any:
        value = self._get_nested_value(field_path)
        return default if value is None else value

    @property
    def controller_url(self) -> str:
        return self._get('controller.url', 'http://127.0.0.1:8000')

    @property
    def controller_timeout(self) -> float:
        return self._get('controller.timeout', 5)

    @property
    def reconcile_interval(self) -> float:
        return self._get('engine.reconcile_interval', 30)

    @property
    def command_timeout(self) -> float:
        return self._get('engine.command_timeout', 5)

    @property
    def retry_attempts(self) -> int:
        return self._get('engine.retry_attempts', 3)

    @property
    def retry_backoff(self) -> List[float]:
        return self._get('engine.retry_backoff', [1, 2, 4])

    @property
    def watch_interval(self) -> float:
        return self._get('watch.interval', 5)

    @property
    def requeue_after(self) -> float:
        return self._get('watch.requeue_after', 10)

    @property
    def watch_workers(self) -> int:
        return self._get('watch.workers', 4)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[str] = None
    ) -> 'AgentConfig':
        """
        Build configuration from the environment and an optional YAML file.

        Args:
            environ: Environment mapping (default: os.environ)
            config_path: YAML tuning file; falls back to $AGENT_CONFIG

        Raises:
            ConfigurationError: On any missing or invalid setting
        """
        environ = os.environ if environ is None else environ

        hostname = environ.get('NODE_HOSTNAME', '').strip()
        if not hostname:
            raise ConfigurationError("Missing environment variable: NODE_HOSTNAME")

        table = DEFAULT_ROUTE_TABLE
        if environ.get('TARGET_TABLE'):
            table = parse_target_table(environ['TARGET_TABLE'])

        protected = collect_protected_subnets(environ)

        config_path = config_path or environ.get('AGENT_CONFIG')
        config_dict = load_yaml(config_path) if config_path else {}

        return cls(hostname, table=table, protected_subnets=protected, config_dict=config_dict)


def load_yaml(config_path: str) -> Dict[str, Any]:
    """Load a YAML mapping from ``config_path``."""
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML: {e}")

    if config_dict is None:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(config_dict, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    return config_dict


class ControllerConfig:
    """Controller (intent source) configuration parser and validator."""

    REQUIRED_FIELDS = {
        'server.listen_address': str,
        'server.port': int,
    }

    def __init__(self, config_dict: Dict[str, Any]):
        self._config = config_dict
        self._validate()

    def _validate(self):
        """Validate that all required fields are present and have correct types."""
        for field_path, expected_type in self.REQUIRED_FIELDS.items():
            value = self._get_nested_value(field_path)
            if value is None:
                raise ConfigurationError(f"Missing required field: {field_path}")

            if not isinstance(value, expected_type):
                raise ConfigurationError(
                    f"Field {field_path} has incorrect type. "
                    f"Expected {expected_type}, got {type(value)}"
                )

    def _get_nested_value(self, field_path: str) -> Any:
        """Get value from nested dictionary using dot notation."""
        keys = field_path.split('.')
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return None
        return value

    @property
    def listen_address(self) -> str:
        return self._config['server']['listen_address']

    @property
    def port(self) -> int:
        return self._config['server']['port']

    @classmethod
    def from_file(cls, config_path: str) -> 'ControllerConfig':
        """Load configuration from YAML file."""
        return cls(load_yaml(config_path))
