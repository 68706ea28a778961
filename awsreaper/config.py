"""
Reaper configuration.

Configuration is a YAML (or JSON) file validated into pydantic models. A few
settings can be overridden from the environment so secrets stay out of the
file.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Dict, List, Optional

import yaml
from pydantic import BaseModel, BeforeValidator, Field, ValidationError, field_validator

from .durations import coerce_duration
from .errors import ConfigError
from .filters import Filter
from .reapable import ResourceKind
from .state import StateDurations

Duration = Annotated[timedelta, BeforeValidator(coerce_duration)]


class ResourceTypeConfig(BaseModel):
    """Per-kind switch and filter groups."""
    enabled: bool = False
    filter_groups: Dict[str, Dict[str, Filter]] = Field(default_factory=dict)


class StatesConfig(BaseModel):
    first: Duration = timedelta(days=3)
    second: Duration = timedelta(days=2)
    third: Duration = timedelta(days=1)

    def durations(self) -> StateDurations:
        return StateDurations(first=self.first, second=self.second, third=self.third)


class HTTPConfig(BaseModel):
    token_secret: str = ""
    api_url: str = "http://localhost:9000"
    listen_host: str = "0.0.0.0"
    listen_port: int = 9000
    action_param: str = "action"
    token_param: str = "token"


class NotificationsConfig(BaseModel):
    webhook_url: str = ""
    webhook_timeout: float = 10.0
    # write changed states back to the state tag
    tagger: bool = True
    # terminate/stop resources that reach FINAL
    reaper: bool = True


class Config(BaseModel):
    """Top-level reaper configuration."""
    regions: List[str] = Field(default_factory=lambda: ["us-east-1"])
    whitelist_tag: str = "REAPER_SPARE_ME"
    state_tag: str = "REAPER"
    schedule_tag: str = "REAPER_SCHEDULE"
    owner_tag: str = "Owner"
    default_owner: str = ""
    default_email_host: str = ""
    event_tag: str = "reaper"
    dry_run: bool = True
    mode: str = "terminate"
    interval: Duration = timedelta(hours=6)
    state_file: str = ""
    load_from_state_file: bool = False
    prices_url: str = ""
    prices_interval: Duration = timedelta(days=7)
    log_level: str = "INFO"
    log_extras: bool = False

    states: StatesConfig = Field(default_factory=StatesConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    instances: ResourceTypeConfig = Field(default_factory=ResourceTypeConfig)
    autoscaling_groups: ResourceTypeConfig = Field(default_factory=ResourceTypeConfig)
    security_groups: ResourceTypeConfig = Field(default_factory=ResourceTypeConfig)
    volumes: ResourceTypeConfig = Field(default_factory=ResourceTypeConfig)
    cloudformations: ResourceTypeConfig = Field(default_factory=ResourceTypeConfig)

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in ("terminate", "stop"):
            raise ValueError("mode must be 'terminate' or 'stop'")
        return value

    @field_validator("interval", "prices_interval")
    @classmethod
    def _check_positive(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        return value

    def for_kind(self, kind: ResourceKind) -> ResourceTypeConfig:
        """Per-kind settings."""
        if kind is ResourceKind.INSTANCE:
            return self.instances
        if kind is ResourceKind.AUTOSCALING_GROUP:
            return self.autoscaling_groups
        if kind is ResourceKind.SECURITY_GROUP:
            return self.security_groups
        if kind is ResourceKind.VOLUME:
            return self.volumes
        if kind is ResourceKind.CLOUDFORMATION:
            return self.cloudformations
        raise ValueError(f"Unknown resource kind: {kind}")

    def durations(self) -> StateDurations:
        return self.states.durations()


def _env_overrides(data: Dict) -> Dict:
    secret = os.environ.get("REAPER_TOKEN_SECRET")
    if secret:
        data.setdefault("http", {})["token_secret"] = secret

    dry_run = os.environ.get("REAPER_DRY_RUN")
    if dry_run is not None:
        data["dry_run"] = dry_run.strip().lower() in ("1", "true", "yes")

    return data


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from a YAML or JSON file.

    Args:
        path: Config file path; defaults to $REAPER_CONFIG

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = path or os.environ.get("REAPER_CONFIG")
    data: Dict = {}

    if path:
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigError(f"Config file {path} not found")
        try:
            with open(config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, IOError) as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

    try:
        return Config.model_validate(_env_overrides(data))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
