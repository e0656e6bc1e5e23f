"""Configuration module for the browser computer-use agent."""
from config.models import (
    AgentConfig,
    BrowserConfig,
    CuaConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "BrowserConfig",
    "CuaConfig",
    "load_config",
]
