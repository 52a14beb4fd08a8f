"""Configuration loading for clawcondos."""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_FILE = ".clawcondos.yaml"
DEFAULT_STORE_FILE = ".clawcondos.json"


@dataclass
class StoreConfig:
    path: str = DEFAULT_STORE_FILE


@dataclass
class CascadeConfig:
    delay_seconds: float = 0.5          # Between a completion and the kickoff it triggers
    retry_backoff_seconds: float = 2.0  # Added per retry already spent


@dataclass
class GoalDefaults:
    max_retries: int = 1
    autonomy_mode: str = "full"


@dataclass
class GatewayConfig:
    url: str = "ws://127.0.0.1:18789"
    timeout_seconds: float = 10.0
    token: Optional[str] = None
    spawner: str = "gateway"  # gateway or mock


@dataclass
class ServerConfig:
    host: str = "localhost"
    port: int = 3001


@dataclass
class ClawCondosConfig:
    store: StoreConfig = field(default_factory=StoreConfig)
    cascade: CascadeConfig = field(default_factory=CascadeConfig)
    goals: GoalDefaults = field(default_factory=GoalDefaults)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "ClawCondosConfig":
        sections = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

        kwargs = {}
        for name, section in data.items():
            if section is None:
                continue
            if not isinstance(section, dict):
                raise ConfigError(f"Config section '{name}' must be a mapping")
            section_type = sections[name].default_factory
            try:
                kwargs[name] = section_type(**section)
            except TypeError as e:
                raise ConfigError(f"Bad keys in config section '{name}': {e}") from e
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return asdict(self)


def find_config_file(start: Path = None) -> Optional[Path]:
    """Find the config file in the start directory or its parents."""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / DEFAULT_CONFIG_FILE
        if candidate.exists():
            return candidate
        if current == current.parent:
            return None
        current = current.parent


def apply_env_overrides(config: ClawCondosConfig) -> ClawCondosConfig:
    if os.environ.get("CLAWCONDOS_STORE"):
        config.store.path = os.environ["CLAWCONDOS_STORE"]
    if os.environ.get("CLAWCONDOS_GATEWAY_URL"):
        config.gateway.url = os.environ["CLAWCONDOS_GATEWAY_URL"]
    if os.environ.get("CLAWCONDOS_GATEWAY_TOKEN"):
        config.gateway.token = os.environ["CLAWCONDOS_GATEWAY_TOKEN"]
    if os.environ.get("CLAWCONDOS_CASCADE_DELAY"):
        try:
            config.cascade.delay_seconds = float(os.environ["CLAWCONDOS_CASCADE_DELAY"])
        except ValueError as e:
            raise ConfigError(f"CLAWCONDOS_CASCADE_DELAY must be a number: {e}") from e
    return config


def load_config(path: Optional[Path] = None) -> ClawCondosConfig:
    """
    Load config from an explicit path, or from .clawcondos.yaml found
    upward from the cwd, then apply environment overrides. A relative store
    path is resolved against the config file's directory.
    """
    config_file = Path(path) if path else find_config_file()
    if config_file is None:
        return apply_env_overrides(ClawCondosConfig())

    try:
        data = yaml.safe_load(config_file.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    config = ClawCondosConfig.from_dict(data)
    store_path = Path(config.store.path)
    if not store_path.is_absolute():
        config.store.path = str(config_file.parent / store_path)
    return apply_env_overrides(config)
