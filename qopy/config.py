"""
Configuration Management

Handles loading discovery configuration from environment variables and
config files.

A DiscoveryConfig is an immutable snapshot: the discovery service reads it,
never writes it. Use dataclasses.replace() to derive a modified copy.
"""

import json
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .errors import InvalidConfigError


DEFAULT_SERVICE_TYPE = "_qopyapp._tcp.local."
DEFAULT_SERVICE_NAME = "qopyapp-device"

ENV_PREFIX = "QOPY_"

# _name._tcp.local. / _name._udp.local.
_SERVICE_TYPE_RE = re.compile(r'^_[A-Za-z0-9][A-Za-z0-9-]*\._(tcp|udp)\.local\.$')


@dataclass(frozen=True)
class DiscoveryConfig:
    """
    Peer discovery configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (QOPY_*)
    2. Config file (config.json)
    3. Default values
    """
    # Service identity
    service_type: str = DEFAULT_SERVICE_TYPE
    service_name: str = DEFAULT_SERVICE_NAME
    port: int = 8080
    properties: Mapping[str, str] = field(default_factory=dict)  # read-only view after init

    # Timeouts (seconds)
    discovery_timeout: float = 10.0
    announce_interval: float = 30.0  # accepted but not acted on
    resolve_timeout: float = 3.0

    # Advertised address (None = derive)
    hostname: Optional[str] = None
    ip_address: Optional[str] = None

    # Event bus buffer per subscriber
    event_capacity: int = 100

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        try:
            properties = MappingProxyType(dict(self.properties))
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"properties must be a mapping: {e}") from e
        object.__setattr__(self, 'properties', properties)

        if not self.service_name:
            raise InvalidConfigError("service_name must not be empty")
        if not _SERVICE_TYPE_RE.match(self.service_type):
            raise InvalidConfigError(
                f"Invalid service type: {self.service_type!r} "
                f"(expected _name._tcp.local. or _name._udp.local.)"
            )
        if not 1 <= self.port <= 65535:
            raise InvalidConfigError(f"Port out of range: {self.port}")
        for name in ('discovery_timeout', 'announce_interval', 'resolve_timeout'):
            if getattr(self, name) < 0:
                raise InvalidConfigError(f"{name} must not be negative")
        if self.event_capacity < 1:
            raise InvalidConfigError("event_capacity must be at least 1")

    @property
    def server_hostname(self) -> str:
        """mDNS host name advertised in the SRV record."""
        return self.hostname or f"{self.service_name}.local."

    @classmethod
    def from_env(cls, base: Optional['DiscoveryConfig'] = None) -> 'DiscoveryConfig':
        """
        Load configuration from environment variables.

        Args:
            base: Values used for variables that are not set (defaults if None)
        """
        load_dotenv()

        config = base or cls()
        overrides: Dict[str, Any] = {}

        for name, convert in _FIELD_TYPES.items():
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is None or raw == '':
                continue
            overrides[name] = _convert(name, raw, convert)

        return replace(config, **overrides) if overrides else config

    @classmethod
    def from_file(cls, path: Path) -> 'DiscoveryConfig':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        try:
            return cls(**data)
        except TypeError as e:
            raise InvalidConfigError(str(e)) from e

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'service_type': self.service_type,
            'service_name': self.service_name,
            'port': self.port,
            'properties': dict(self.properties),
            'discovery_timeout': self.discovery_timeout,
            'announce_interval': self.announce_interval,
            'resolve_timeout': self.resolve_timeout,
            'hostname': self.hostname,
            'ip_address': self.ip_address,
            'event_capacity': self.event_capacity,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def parse_properties(raw: str) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into a property dict."""
    properties = {}
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition('=')
        if not sep or not key.strip():
            raise InvalidConfigError(f"Invalid property {item!r} (use key=value)")
        properties[key.strip()] = value.strip()
    return properties


_FIELD_TYPES = {
    'service_type': str,
    'service_name': str,
    'port': int,
    'properties': parse_properties,
    'discovery_timeout': float,
    'announce_interval': float,
    'resolve_timeout': float,
    'hostname': str,
    'ip_address': str,
    'event_capacity': int,
    'log_level': str,
}


def _convert(name: str, raw: str, convert):
    try:
        return convert(raw)
    except ValueError as e:
        if isinstance(e, InvalidConfigError):
            raise
        raise InvalidConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from e


def load_config(config_path: Optional[Path] = None) -> DiscoveryConfig:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = DiscoveryConfig()

    if config_path and Path(config_path).exists():
        config = DiscoveryConfig.from_file(config_path)

    return DiscoveryConfig.from_env(base=config)


# Example config file template
EXAMPLE_CONFIG = """
{
  "service_type": "_qopyapp._tcp.local.",
  "service_name": "living-room-laptop",
  "port": 8080,
  "properties": {"version": "1.0.0", "device_type": "desktop"},
  "discovery_timeout": 10.0,
  "announce_interval": 30.0,
  "log_level": "INFO"
}
"""
