"""Configuration parser for the nimbus shell.

Parses and validates config.yaml. A missing file yields the defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from nimbus.output.markup import is_valid_style

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NIMBUS_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "nimbus" / "config.yaml"


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded."""
    pass


class ThemeConfig(BaseModel):
    """Console colours."""
    prompt_color: str = "cyan"
    error_color: str = "red"
    warning_color: str = "yellow"
    dim_color: str = "grey"

    @field_validator('prompt_color', 'error_color', 'warning_color', 'dim_color')
    @classmethod
    def validate_style(cls, v: str) -> str:
        """Ensure the colour is a known console style."""
        v = v.strip().lower()
        if not is_valid_style(v):
            raise ValueError(f"Unknown color or style '{v}'")
        return v


class OutputConfig(BaseModel):
    """Output settings."""
    color: bool = True
    chunk_size: int = Field(default=64 * 1024, gt=0)


class AzureConfig(BaseModel):
    """Azure CLI settings used by the query command."""
    cli_path: str = "az"
    subscription: Optional[str] = None


class Config(BaseModel):
    """Top-level configuration."""
    aliases: Dict[str, str] = Field(default_factory=dict)
    theme: ThemeConfig = Field(default_factory=ThemeConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    azure: AzureConfig = Field(default_factory=AzureConfig)

    @field_validator('aliases', mode='before')
    @classmethod
    def aliases_to_strings(cls, v: Any) -> Dict[str, str]:
        """Accept null and coerce YAML scalars (numbers, booleans) to strings."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("aliases must be a mapping of name to expansion")
        aliases = {}
        for name, expansion in v.items():
            name = str(name).strip()
            if not name or any(c.isspace() or c == '|' for c in name):
                raise ValueError(f"Invalid alias name '{name}'")
            aliases[name] = str(expansion).strip()
        return aliases


class ConfigParser:
    """Parse and validate shell configuration."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize parser with config file path.

        Args:
            config_path: Path to config.yaml (default: $NIMBUS_CONFIG or
                ~/.config/nimbus/config.yaml)
        """
        self.config_path = Path(config_path) if config_path else default_config_path()
        self.config: Optional[Config] = None
        self._raw_config: Optional[Dict[str, Any]] = None

    def parse(self) -> Config:
        """Parse and validate configuration.

        Returns:
            Validated configuration object

        Raises:
            ConfigError: If the YAML is invalid or fails validation
        """
        if not self.config_path.exists():
            logger.debug(f"No configuration at {self.config_path}, using defaults")
            self._raw_config = {}
            self.config = Config()
            return self.config

        try:
            with open(self.config_path) as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(self._raw_config, dict):
            raise ConfigError(f"Configuration in {self.config_path} must be a mapping")

        try:
            self.config = Config(**self._raw_config)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {self.config_path}:\n{e}") from e

        logger.debug(f"Loaded configuration from {self.config_path} ({len(self.config.aliases)} aliases)")
        return self.config

    def get_aliases(self) -> Dict[str, str]:
        """Get alias definitions.

        Returns:
            Dictionary mapping alias names to expansions
        """
        if not self.config:
            raise ValueError("Configuration not parsed. Call parse() first.")
        return dict(self.config.aliases)

    def to_yaml(self) -> str:
        """Dump the effective configuration as YAML."""
        if not self.config:
            raise ValueError("Configuration not parsed. Call parse() first.")
        return yaml.safe_dump(self.config.model_dump(), sort_keys=False)


def default_config_path() -> Path:
    """Resolve the configuration path from the environment or the default."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


def load_config(config_path: Optional[Union[str, Path]] = None) -> ConfigParser:
    """Load and parse a configuration file.

    Args:
        config_path: Path to config.yaml

    Returns:
        Parsed configuration

    Example:
        >>> parser = load_config("config.yaml")
        >>> aliases = parser.get_aliases()
    """
    parser = ConfigParser(config_path)
    parser.parse()
    return parser


SAMPLE_CONFIG = """# nimbus shell configuration

# aliases expand the first word of a command line.
# {0}, {1}, ... are replaced by arguments; extra arguments are appended.
aliases:
  accounts: query account list
  groups: query group list --query "[].name"
  top: "{0} | head -n 5"

theme:
  prompt_color: cyan
  error_color: red
  warning_color: yellow
  dim_color: grey

output:
  color: true
  # bytes moved per read between piped processes
  chunk_size: 65536

azure:
  cli_path: az
  # subscription: 00000000-0000-0000-0000-000000000000
"""


def generate_sample_config(output_path: Path) -> None:
    """Write a sample configuration file.

    Args:
        output_path: Path to write the sample config
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(SAMPLE_CONFIG)
    logger.info(f"Sample configuration written to {output_path}")
