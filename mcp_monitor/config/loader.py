"""
Configuration management and loading.

Handles monitor settings, defaults and YAML config files.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


@dataclass(frozen=True)
class MonitoringSettings:
    """Whether and how often calls are recorded."""
    enabled: bool = True
    sample_rate: float = 1.0
    percentile_window: int = 100
    charge_failed_calls: bool = True

    def __post_init__(self):
        """Validate sampling and window values."""
        if not 0.0 <= self.sample_rate <= 1.0:
            raise ValueError("sample_rate must be between 0 and 1")
        if self.percentile_window <= 0:
            raise ValueError("percentile_window must be > 0")


@dataclass(frozen=True)
class AlertSettings:
    """Thresholds used for alert detection."""
    latency_threshold_ms: float = 5000.0
    error_rate_threshold: float = 0.05
    daily_cost_limit_usd: Optional[float] = 10.0

    def __post_init__(self):
        """Validate alert thresholds."""
        if self.latency_threshold_ms <= 0:
            raise ValueError("latency_threshold_ms must be > 0")
        if not 0.0 <= self.error_rate_threshold <= 1.0:
            raise ValueError("error_rate_threshold must be between 0 and 1")
        if self.daily_cost_limit_usd is not None and self.daily_cost_limit_usd <= 0:
            raise ValueError("daily_cost_limit_usd must be > 0")


@dataclass(frozen=True)
class StorageSettings:
    """Where logs live and how long they are kept."""
    path: str = "./mcp-monitor.db"
    retention_days: int = 90
    type: str = "sqlite"

    def __post_init__(self):
        """Validate storage values."""
        if self.type != "sqlite":
            raise ValueError(f"Unsupported storage type: {self.type}")
        if not self.path:
            raise ValueError("storage path cannot be empty")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be > 0")


@dataclass(frozen=True)
class ServerConfig:
    """A server to register when the monitor initializes."""
    name: str
    enabled: bool = True
    cost_per_call: Optional[float] = None
    url: Optional[str] = None
    category: Optional[str] = None
    version: Optional[str] = None

    def __post_init__(self):
        """Validate server entry."""
        if not self.name or not self.name.strip():
            raise ValueError("server name cannot be empty")
        if self.cost_per_call is not None and self.cost_per_call < 0:
            raise ValueError(f"cost_per_call for {self.name} cannot be negative")


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    servers: Tuple[ServerConfig, ...] = ()

    @classmethod
    def default(cls) -> "MonitorConfig":
        """Configuration used when no file is given."""
        return cls()


_SECTION_KEYS = {
    'monitoring': {'enabled', 'sample_rate', 'percentile_window', 'charge_failed_calls'},
    'alerts': {'latency_threshold_ms', 'error_rate_threshold', 'daily_cost_limit_usd'},
    'storage': {'type', 'path', 'retention_days'},
}

_SERVER_KEYS = {'name', 'enabled', 'cost_per_call', 'url', 'category', 'version'}


def load_monitor_config(path: str, base: Optional[MonitorConfig] = None) -> MonitorConfig:
    """Load and validate monitor configuration from a YAML file.

    Values in the file are laid over ``base`` (the defaults unless given)
    one field at a time; anything the file omits keeps its base value.
    Unknown keys are rejected so that typos do not silently fall back to
    defaults.

    Args:
        path: Path to YAML configuration file
        base: Configuration to overlay onto

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    return parse_monitor_config(raw_config, base)


def parse_monitor_config(raw_config: Dict[str, Any], base: Optional[MonitorConfig] = None) -> MonitorConfig:
    """Validate an already-parsed configuration mapping and overlay it on ``base``."""
    config = base or MonitorConfig.default()

    allowed_top_keys = set(_SECTION_KEYS) | {'servers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    monitoring = _overlay_section(config.monitoring, raw_config, 'monitoring', {
        'enabled': _as_bool,
        'sample_rate': _as_float,
        'percentile_window': _as_int,
        'charge_failed_calls': _as_bool,
    })
    alerts = _overlay_section(config.alerts, raw_config, 'alerts', {
        'latency_threshold_ms': _as_float,
        'error_rate_threshold': _as_float,
        'daily_cost_limit_usd': _as_optional_float,
    })
    storage = _overlay_section(config.storage, raw_config, 'storage', {
        'type': _as_str,
        'path': _as_str,
        'retention_days': _as_int,
    })

    servers = config.servers
    if 'servers' in raw_config:
        servers_data = raw_config['servers'] or []
        if not isinstance(servers_data, list):
            raise ValueError("'servers' must be a list")
        servers = tuple(
            _parse_server_config(entry, f"servers[{i}]")
            for i, entry in enumerate(servers_data)
        )
        names = [s.name for s in servers]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate server names: {duplicates}")

    return MonitorConfig(
        monitoring=monitoring,
        alerts=alerts,
        storage=storage,
        servers=servers
    )


def _overlay_section(current, raw_config: Dict[str, Any], section: str, converters: Dict) -> Any:
    """Replace the fields of ``current`` that the file sets for ``section``."""
    if section not in raw_config or raw_config[section] is None:
        return current

    data = raw_config[section]
    if not isinstance(data, dict):
        raise ValueError(f"'{section}' must be a dictionary")

    unknown_keys = set(data.keys()) - _SECTION_KEYS[section]
    if unknown_keys:
        raise ValueError(f"Unknown {section} keys: {unknown_keys}")

    updates = {
        key: converters[key](value, f"{section}.{key}")
        for key, value in data.items()
    }
    return replace(current, **updates)


def _parse_server_config(data: Any, path: str) -> ServerConfig:
    """Parse and validate one server entry.

    Args:
        data: Server configuration data
        path: Path for error messages

    Returns:
        Validated ServerConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    unknown_keys = set(data.keys()) - _SERVER_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    if 'name' not in data:
        raise ValueError(f"Missing required 'name' in {path}")

    return ServerConfig(
        name=_as_str(data['name'], f"{path}.name"),
        enabled=_as_bool(data.get('enabled', True), f"{path}.enabled"),
        cost_per_call=_as_optional_float(data.get('cost_per_call'), f"{path}.cost_per_call"),
        url=_as_optional_str(data.get('url'), f"{path}.url"),
        category=_as_optional_str(data.get('category'), f"{path}.category"),
        version=_as_optional_str(data.get('version'), f"{path}.version"),
    )


def _as_bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"'{path}' must be true or false")
    return value


def _as_float(value: Any, path: str) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _as_optional_float(value: Any, path: str) -> Optional[float]:
    return None if value is None else _as_float(value, path)


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _as_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    return value


def _as_optional_str(value: Any, path: str) -> Optional[str]:
    return None if value is None else _as_str(value, path)
