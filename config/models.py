"""Pydantic configuration models for the browser computer-use agent."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError, ConfigurationError
from prompts import DEVELOPER_PROMPT


# Load .env file if present
load_dotenv()


class AgentConfig(BaseModel):
    """Model endpoint and orchestration loop configuration."""

    model: str = Field(
        default="computer-use-preview",
        description="Model name to use for the Responses API",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the model endpoint",
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Override for the model endpoint base URL",
    )
    request_timeout: float = Field(
        default=120.0,
        gt=0,
        le=600,
        description="Per-request timeout in seconds for model calls",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for model calls that fail to connect",
    )
    reasoning_stall_cap: Optional[int] = Field(
        default=None,
        ge=1,
        description="Reasoning-only replies tolerated in a row (None = unbounded)",
    )
    max_warmup_steps: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Upper bound on the first-turn navigation warm-up loop",
    )
    max_actions_per_turn: Optional[int] = Field(
        default=100,
        ge=1,
        description="Actions executed between two user turns before aborting",
    )
    auto_execute: bool = Field(
        default=True,
        description="Execute model actions automatically instead of returning them to the caller",
    )
    developer_prompt: str = Field(
        default=DEVELOPER_PROMPT,
        description="Developer message sent as the first item of every run",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/") if v else v

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load values from environment variables if not explicitly set."""
        if not isinstance(data, dict):
            return data
        env_mapping = {
            "api_key": "OPENAI_API_KEY",
            "base_url": "OPENAI_BASE_URL",
            "model": "CUA_MODEL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class BrowserConfig(BaseModel):
    """Remote browser actuation configuration."""

    viewport_width: int = Field(
        default=1024,
        ge=320,
        le=3840,
        description="Remote browser viewport width",
    )
    viewport_height: int = Field(
        default=768,
        ge=240,
        le=2160,
        description="Remote browser viewport height",
    )
    region: str = Field(
        default="us-west-2",
        description="Region of the remote browser provider",
    )
    connect_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed to attach to a remote session",
    )
    action_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for a single browser action",
    )
    navigation_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed for a navigation",
    )
    settle_delay: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Pause after a mutating action before capturing state",
    )
    wait_duration: float = Field(
        default=1.0,
        ge=0,
        le=30,
        description="Duration of the model's wait action in seconds",
    )

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load the provider region from the environment if not explicitly set."""
        if not isinstance(data, dict):
            return data
        if data.get("region") is None:
            env_value = os.getenv("CUA_BROWSER_REGION")
            if env_value:
                data["region"] = env_value
        return data


class CuaConfig(BaseModel):
    """Root configuration model combining all config sections."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @classmethod
    def from_flat_dict(cls, data: dict[str, Any]) -> "CuaConfig":
        """Create config from a flat dictionary."""
        agent_keys = set(AgentConfig.model_fields)
        browser_keys = set(BrowserConfig.model_fields)

        nested: dict[str, Any] = {"agent": {}, "browser": {}}
        for key, value in data.items():
            if key in agent_keys:
                nested["agent"][key] = value
            elif key in browser_keys:
                nested["browser"][key] = value
            elif key == "verbose":
                nested["verbose"] = value

        return cls.model_validate(nested)


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> CuaConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    explicit = config_path is not None
    if config_path is None:
        config_path = Path("config.json")

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                if config_path.suffix in {".yaml", ".yml"}:
                    config_data = yaml.safe_load(f) or {}
                else:
                    config_data = json.load(f)
            except (ValueError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Could not parse {config_path}: {e}") from e
    elif explicit:
        raise ConfigFileNotFoundError(str(config_path))

    is_flat = not any(key in config_data for key in ("agent", "browser"))

    if is_flat:
        config = CuaConfig.from_flat_dict(config_data)
    else:
        config = CuaConfig.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = CuaConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "model": ("agent", "model"),
        "base_url": ("agent", "base_url"),
        "reasoning_stall_cap": ("agent", "reasoning_stall_cap"),
        "manual": ("agent", "auto_execute"),  # inverted
        "viewport_width": ("browser", "viewport_width"),
        "viewport_height": ("browser", "viewport_height"),
        "verbose": ("verbose", None),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "manual":
            config_dict["agent"]["auto_execute"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
