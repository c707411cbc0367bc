"""
pactmock Configuration

Settings for mock server behaviour, loadable from a dict, a YAML file or the
environment.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml


LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')

ENV_PREFIX = 'PACTMOCK_'


@dataclass
class MockServerConfig:
    """Configuration for mock server behavior."""

    # Server options
    host: str = "127.0.0.1"
    port: int = 0  # 0 = let the OS pick a free port
    log_level: str = "info"
    access_log: bool = False

    # Responses for requests that match no interaction
    mismatch_status: int = 500

    # Answer CORS pre-flight OPTIONS requests the contract does not declare
    cors_preflight: bool = False

    # Lifecycle timeouts (seconds)
    startup_timeout: float = 5.0
    shutdown_timeout: float = 3.0  # graceful drain before connections are forced closed

    # TLS (PEM files); serves HTTPS when a certificate is given
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None

    def __post_init__(self):
        self.log_level = str(self.log_level).lower()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{self.log_level}', expected one of {', '.join(LOG_LEVELS)}")
        if not 100 <= int(self.mismatch_status) <= 599:
            raise ValueError(f"mismatch_status {self.mismatch_status} is not a valid HTTP status")
        if self.startup_timeout <= 0 or self.shutdown_timeout < 0:
            raise ValueError("Timeouts must be positive")
        if self.ssl_keyfile and not self.ssl_certfile:
            raise ValueError("ssl_keyfile requires ssl_certfile")

    @property
    def tls(self) -> bool:
        return bool(self.ssl_certfile)

    @property
    def bind_address(self) -> str:
        if ':' in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'MockServerConfig':
        """Create config from dictionary, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = key.replace('-', '_')
            if name in known:
                values[name] = _coerce(value, known[name].type)
        return cls(**values)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'MockServerConfig':
        """Load config from YAML file (top level or under a 'mock_server' key)."""
        return cls.from_dict(_yaml_values(yaml_path))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'MockServerConfig':
        """
        Create config from PACTMOCK_* environment variables.

        Example:
            PACTMOCK_LOG_LEVEL=debug PACTMOCK_CORS_PREFLIGHT=true
        """
        return cls.from_dict(_env_values(environ))

    @classmethod
    def load(
        cls,
        yaml_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None
    ) -> 'MockServerConfig':
        """
        Combine environment and YAML settings.

        Settings in the YAML file take precedence over PACTMOCK_* variables;
        anything the file leaves out falls back to the environment.
        """
        data = _env_values(environ)
        if yaml_path:
            data.update(_yaml_values(yaml_path))
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(value: Any, annotation: Any) -> Any:
    """Convert YAML/env strings to the field's type."""
    type_name = annotation if isinstance(annotation, str) else getattr(annotation, '__name__', '')
    if type_name == 'bool':
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 'yes', 'on')
        return bool(value)
    if type_name == 'int':
        return int(value)
    if type_name == 'float':
        return float(value)
    if type_name == 'str':
        return str(value)
    return value


def _yaml_values(yaml_path: str) -> Dict[str, Any]:
    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {yaml_path}, got {type(data).__name__}")

    section = data.get('mock_server', data) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Expected a mapping under mock_server in {yaml_path}")
    return {str(key).replace('-', '_'): value for key, value in section.items()}


def _env_values(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(ENV_PREFIX)
    }
