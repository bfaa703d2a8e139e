"""Configuration loading for clawpen.

Reads the declarative service file (``clawpen.yaml``).  Pydantic models
validate the schema and carry the defaults of every option; unset options
use them.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "clawpen.yaml"

_MEMORY_RE = re.compile(r"^\d+[KMGT]?$")
_CPU_QUOTA_RE = re.compile(r"^\d+%$")


def _normalize_state_dir(v: str) -> str:
    if not v.startswith("/"):
        raise ValueError(f"state_dir must be an absolute path, got {v!r}")
    return v.rstrip("/") or "/"


# ── Config Models ────────────────────────────────────────────────────────────


class GatewayConfig(BaseModel):
    # Range is checked by the policy validator so every defect is reported together.
    port: int = 3000
    host: str = "127.0.0.1"
    require_pairing: bool = False
    allow_public_bind: bool = False


class ChannelsConfig(BaseModel):
    cli: bool = True


class TelegramConfig(BaseModel):
    enable: bool = False
    bot_token_file: str | None = None  # e.g. /run/agenix/zeroclaw-telegram-token
    allowed_users: list[str] = Field(default_factory=list)  # user IDs or @usernames
    mention_only: bool = False


class AutonomyConfig(BaseModel):
    level: Literal["readonly", "supervised", "full"] = "supervised"
    workspace_only: bool = True
    block_high_risk_commands: bool = True
    extra_allowed_commands: list[str] = Field(default_factory=list)
    extra_forbidden_paths: list[str] = Field(default_factory=list)
    max_actions_per_hour: int = 20
    max_cost_per_day_cents: int = 500


class ResourcesConfig(BaseModel):
    """Ceilings enforced by the host's cgroup accounting."""

    memory_max: str = "1G"
    cpu_quota: str = "100%"
    tasks_max: int = 256

    @field_validator("memory_max")
    @classmethod
    def _validate_memory_max(cls, v: str) -> str:
        if not _MEMORY_RE.match(v):
            raise ValueError(f"memory_max must look like 512M or 2G, got {v!r}")
        return v

    @field_validator("cpu_quota")
    @classmethod
    def _validate_cpu_quota(cls, v: str) -> str:
        if not _CPU_QUOTA_RE.match(v):
            raise ValueError(f"cpu_quota must be a percentage like 150%, got {v!r}")
        return v

    @field_validator("tasks_max")
    @classmethod
    def _validate_tasks_max(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"tasks_max must be positive, got {v}")
        return v


class RestartConfig(BaseModel):
    delay_seconds: float = 5.0
    max_restarts: int | None = None  # None: restart forever

    @field_validator("delay_seconds")
    @classmethod
    def _validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delay_seconds must not be negative")
        return v


class ServiceConfig(BaseModel):
    """Top-level declarative configuration of one sandboxed agent service."""

    user: str = "zeroclaw"
    group: str = "zeroclaw"
    state_dir: str = "/var/lib/zeroclaw"
    binary: str = "zeroclaw"
    args: list[str] = Field(default_factory=lambda: ["daemon"])

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key_file: str | None = None  # e.g. /run/agenix/zeroclaw-api-key

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    autonomy: AutonomyConfig = Field(default_factory=AutonomyConfig)
    tool_packages: list[str] = Field(default_factory=list)
    resources: ResourcesConfig = Field(default_factory=ResourcesConfig)
    restart: RestartConfig = Field(default_factory=RestartConfig)

    @field_validator("state_dir")
    @classmethod
    def _validate_state_dir(cls, v: str) -> str:
        return _normalize_state_dir(v)

    @property
    def workspace_dir(self) -> str:
        return f"{self.state_dir}/workspace"

    @property
    def runtime_dir(self) -> str:
        return f"{self.state_dir}/.zeroclaw"


# ── Config Loader ────────────────────────────────────────────────────────────


def load_config(config_path: Path) -> ServiceConfig:
    """Load the service configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        pydantic.ValidationError: If the schema check fails.
        ValueError: If the top level is not a mapping.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"clawpen config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(
            f"{config_path}: top level must be a mapping, got {type(raw).__name__}"
        )
    config = ServiceConfig(**raw)

    # Environment overrides for deployment
    state_dir = os.environ.get("CLAWPEN_STATE_DIR")
    if state_dir:
        config.state_dir = _normalize_state_dir(state_dir)

    api_key_file = os.environ.get("CLAWPEN_API_KEY_FILE")
    if api_key_file:
        config.api_key_file = api_key_file

    token_file = os.environ.get("CLAWPEN_TELEGRAM_TOKEN_FILE")
    if token_file:
        config.telegram.bot_token_file = token_file

    binary = os.environ.get("CLAWPEN_BINARY")
    if binary:
        config.binary = binary

    logger.info(
        "Loaded clawpen config: provider=%s model=%s state_dir=%s",
        config.provider,
        config.model,
        config.state_dir,
    )
    return config
