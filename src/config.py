"""Harness configuration management.

Configuration is loaded from a single YAML file:
- $INFRATEST_CONFIG: explicit path (must exist)
- infratest.yaml in the repository base directory (optional)

Missing keys fall back to built-in defaults. A few settings can be
overridden per run through environment variables:
- INFRATEST_BINARY: provisioning engine executable (tofu, terraform)
- INFRATEST_STATE_ROOT: where per-invocation state directories live
- INFRATEST_EXAMPLES_DIR: root of the example configurations

The merge order is: defaults → YAML file → environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


KNOWN_KEYS = {'binary', 'state_root', 'examples_dir', 'timeouts', 'retry', 'http'}


@dataclass
class Timeouts:
    """Per-command engine timeouts in seconds."""
    init: int = 300
    plan: int = 600
    apply: int = 1800
    destroy: int = 1800
    output: int = 60


@dataclass
class HarnessConfig:
    """Settings shared by every test case in a session.

    Read-only after loading; test cases never mutate it, so one instance
    can be handed to concurrently running lifecycles.
    """
    binary: str = 'tofu'
    state_root: Path = field(default_factory=lambda: get_base_dir() / '.states')
    examples_dir: Path = field(default_factory=lambda: get_base_dir() / 'examples')
    timeouts: Timeouts = field(default_factory=Timeouts)

    # HTTP validation defaults (the ALB warm-up budget)
    retry_max_attempts: int = 10
    retry_interval: float = 10.0
    http_timeout: float = 10.0
    http_verify_tls: bool = True

    config_file: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.state_root, str):
            self.state_root = Path(self.state_root)
        if isinstance(self.examples_dir, str):
            self.examples_dir = Path(self.examples_dir)

    def example_dir(self, name: str) -> Path:
        """Path of a named example configuration (e.g. 'alb')."""
        return self.examples_dir / name


def get_base_dir() -> Path:
    """Get the repository directory."""
    return Path(__file__).parent.parent  # src/ -> repo/


def get_config_file() -> Optional[Path]:
    """Discover the harness config file.

    Resolution order:
    1. $INFRATEST_CONFIG environment variable
    2. infratest.yaml in the repository base directory
    """
    if env_path := os.environ.get('INFRATEST_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"INFRATEST_CONFIG={env_path} does not exist")

    default = get_base_dir() / 'infratest.yaml'
    if default.exists():
        return default
    return None


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _section(data: dict, key: str, path: Path) -> dict:
    """Return a nested mapping section, empty if absent."""
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}: '{key}' must be a mapping")
    return value


def _number(section: dict, key: str, default, path: Path, kind=int):
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{path}: '{key}' must be a number, got {value!r}")
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{path}: '{key}' must be a whole number, got {value!r}")
    if value < 0:
        raise ConfigError(f"{path}: '{key}' must not be negative")
    return kind(value)


def _string(data: dict, key: str, path: Path) -> Optional[str]:
    """Return a non-empty string value, None if absent."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{path}: '{key}' must be a non-empty string, got {value!r}")
    return value


def load_config(path: Optional[Path] = None) -> HarnessConfig:
    """Load harness configuration.

    Args:
        path: Explicit config file; discovered via get_config_file() if None

    Returns:
        HarnessConfig with defaults, file values and env overrides applied
    """
    if path is None:
        path = get_config_file()
    elif not Path(path).exists():
        raise ConfigError(f"Config file not found: {path}")

    config = HarnessConfig()

    if path is not None:
        path = Path(path)
        data = _parse_yaml(path)

        unknown = set(data) - KNOWN_KEYS
        if unknown:
            raise ConfigError(f"{path}: unknown keys: {', '.join(sorted(unknown))}")

        if binary := _string(data, 'binary', path):
            config.binary = binary

        # Relative paths resolve against the config file's directory
        if state_root := _string(data, 'state_root', path):
            config.state_root = path.parent / state_root
        if examples_dir := _string(data, 'examples_dir', path):
            config.examples_dir = path.parent / examples_dir

        timeouts = _section(data, 'timeouts', path)
        defaults = Timeouts()
        config.timeouts = Timeouts(
            init=_number(timeouts, 'init', defaults.init, path),
            plan=_number(timeouts, 'plan', defaults.plan, path),
            apply=_number(timeouts, 'apply', defaults.apply, path),
            destroy=_number(timeouts, 'destroy', defaults.destroy, path),
            output=_number(timeouts, 'output', defaults.output, path),
        )

        retry = _section(data, 'retry', path)
        config.retry_max_attempts = _number(retry, 'max_attempts', config.retry_max_attempts, path)
        if config.retry_max_attempts < 1:
            raise ConfigError(f"{path}: 'max_attempts' must be at least 1")
        config.retry_interval = _number(retry, 'interval', config.retry_interval, path, kind=float)

        http = _section(data, 'http', path)
        config.http_timeout = _number(http, 'timeout', config.http_timeout, path, kind=float)
        verify_tls = http.get('verify_tls', config.http_verify_tls)
        if not isinstance(verify_tls, bool):
            raise ConfigError(f"{path}: 'verify_tls' must be true or false, got {verify_tls!r}")
        config.http_verify_tls = verify_tls

        config.config_file = path

    # Environment overrides (highest priority)
    if binary := os.environ.get('INFRATEST_BINARY'):
        config.binary = binary
    if state_root := os.environ.get('INFRATEST_STATE_ROOT'):
        config.state_root = Path(state_root)
    if examples_dir := os.environ.get('INFRATEST_EXAMPLES_DIR'):
        config.examples_dir = Path(examples_dir)

    return config
