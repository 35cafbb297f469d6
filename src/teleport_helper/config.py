"""Configuration for the Teleport helper."""

import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = Path.home() / ".config" / "th" / "config.yml"


def _default_aws_accounts() -> Dict[str, str]:
    return {
        "dev": "yl-development",
        "sandbox": "yl-sandbox",
        "staging": "yl-staging",
        "usstaging": "yl-usstaging",
        "admin": "yl-admin",
        "prod": "yl-production",
        "usprod": "yl-usproduction",
        "corepgblue": "yl-corepgblue",
        "corepggreen": "yl-corepggreen",
        "corepg": "yl-coreplayground",
    }


class TeleportConfig(BaseModel):
    """Teleport connection settings."""

    proxy: str = Field(default="youlend.teleport.sh:443", description="Teleport proxy address")
    auth_type: str = Field(default="ad", description="Teleport auth connector")
    timeout_seconds: int = Field(default=15, gt=0, description="How long to wait for tsh login")


class Config(BaseModel):
    """Account mappings loaded from the YAML config file."""

    aws: Dict[str, str] = Field(default_factory=_default_aws_accounts)
    teleport: TeleportConfig = Field(default_factory=TeleportConfig)

    def get_aws_account(self, env: str) -> Optional[str]:
        """Get AWS account name for environment."""
        return self.aws.get(env)

    def list_aws_envs(self) -> List[str]:
        return sorted(self.aws)


class Settings(BaseSettings):
    """Runtime settings overridable with ``TH_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="TH_", extra="ignore")

    tsh_path: str = "tsh"
    temp_dir: Path = Path("/tmp")
    poll_interval: float = Field(default=0.5, gt=0)
    poll_attempts: int = Field(default=20, gt=0)
    process_backend: Literal["ps", "psutil"] = "ps"


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """Load configuration, falling back to built-in defaults.

    Args:
        config_path: Path to a YAML config file (defaults to ~/.config/th/config.yml)

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file exists but cannot be parsed or validated
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        if config_path:
            raise ConfigError(f"Config file not found: {path}")
        logger.debug(f"No config file at {path}, using defaults")
        return Config()

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config file {path}: {e}") from e

    try:
        return Config.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e


CONFIG_TEMPLATE = """# th configuration
aws:
  dev: yl-development
  staging: yl-staging
  prod: yl-production
  usprod: yl-usproduction
  admin: yl-admin

teleport:
  proxy: youlend.teleport.sh:443
  auth_type: ad
  timeout_seconds: 15

# Runtime overrides come from the environment:
#   TH_TSH_PATH, TH_TEMP_DIR, TH_POLL_INTERVAL, TH_POLL_ATTEMPTS,
#   TH_PROCESS_BACKEND (ps | psutil)
"""
