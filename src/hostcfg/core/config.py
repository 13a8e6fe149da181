"""Configuration management using Pydantic.

Provides:
- Typed models for the declarative firewall configuration
- YAML file loading with defaults
- Environment variable overrides (config path, forced steps)
- Configuration initialization and display
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hostcfg.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/hostcfg/config.yaml")


class TableConfig(BaseModel):
    """An optional nat/mangle table block appended after the filter table."""

    enabled: bool = False
    append: list[str] = Field(default_factory=list)


class FamilyConfig(BaseModel):
    """Per address family step configuration (iptables or ip6tables)."""

    enabled: bool = True
    append: list[str] = Field(default_factory=list)
    nat: TableConfig = Field(default_factory=TableConfig)
    mangle: TableConfig = Field(default_factory=TableConfig)

    # Overrides for the platform-detected install target
    rules_path: Optional[Path] = None
    reload_command: Optional[list[str]] = None

    @field_validator("reload_command")
    @classmethod
    def validate_reload_command(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is not None and not v:
            raise ValueError("reload_command must not be empty")
        return v


class FirewallConfig(BaseModel):
    """Firewall policy shared by the iptables and ip6tables steps.

    ``accept`` and ``drop`` are flat lists of alternating source and port
    entries. A source starting with ``#`` is a comment and takes no port.
    """

    enabled: bool = False
    dhcp_server: bool = False
    accept: list[str] = Field(default_factory=list)
    drop: list[str] = Field(default_factory=list)
    iptables: FamilyConfig = Field(default_factory=FamilyConfig)
    ip6tables: FamilyConfig = Field(default_factory=FamilyConfig)

    @field_validator("accept", "drop", mode="before")
    @classmethod
    def coerce_entries(cls, v: object) -> object:
        # Unquoted YAML ports ("- 80") load as integers
        if isinstance(v, list):
            return [str(item) if isinstance(item, int) and not isinstance(item, bool) else item for item in v]
        return v

    def family(self, step: str) -> FamilyConfig:
        """Get the per-family section for a step name."""
        if step == "iptables":
            return self.iptables
        if step == "ip6tables":
            return self.ip6tables
        raise ConfigurationError(f"Unknown firewall step: {step}")


class HostConfig(BaseModel):
    """Root configuration model for a single host.

    This is the main configuration loaded from /etc/hostcfg/config.yaml.
    """

    hostname: Optional[str] = None

    # Symbolic network/group name -> addresses
    networks: dict[str, list[str]] = Field(default_factory=dict)

    firewall: FirewallConfig = Field(default_factory=FirewallConfig)

    @field_validator("networks")
    @classmethod
    def validate_networks(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for name in v:
            if not name:
                raise ValueError("Network names must not be empty")
        return v

    @classmethod
    def load(cls, path: Path) -> "HostConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: hostcfg config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "HostConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class AgentSettings(BaseSettings):
    """Settings read from HOSTCFG_* environment variables.

    ``HOSTCFG_FORCE`` is a comma-separated list of dangerous steps to apply,
    or ``all``.
    """

    model_config = SettingsConfigDict(env_prefix="HOSTCFG_", extra="ignore")

    config: Optional[Path] = None
    force: str = ""

    @property
    def forced_steps(self) -> set[str]:
        return {s.strip() for s in self.force.split(",") if s.strip()}


class AppConfig:
    """Application configuration combining the config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[HostConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config if config is not None else HostConfig.load_or_default(self.config_path)

    @property
    def config(self) -> HostConfig:
        """Get the host configuration."""
        return self._config

    @property
    def firewall(self) -> FirewallConfig:
        """Shortcut to firewall config."""
        return self._config.firewall

    @property
    def networks(self) -> dict[str, list[str]]:
        """Shortcut to the network name map."""
        return self._config.networks


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# hostcfg configuration
# Single configuration file per host

# hostname: web-01

# Symbolic names used in firewall lists. Names starting with an uppercase
# letter are groups; unresolved uppercase names are skipped with a warning.
networks:
  Office:
    - 10.1.0.0/16
    - 2001:db8:1::/48
  home:
    - 10.0.0.5

firewall:
  enabled: false   # set to true to manage iptables/ip6tables
  dhcp_server: false

  # Alternating source / port entries. Ports accept ":udp" or ":tcp"
  # suffixes and a trailing "# comment". "any" matches every source or port.
  accept:
    - "# administration"
    - home
    - "22 # ssh"
    - any
    - "443 # https"
  drop: []

  iptables:
    enabled: true
    append: []
    nat:
      enabled: false
      append: []
    mangle:
      enabled: false
      append: []

  ip6tables:
    enabled: true
    append: []
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
