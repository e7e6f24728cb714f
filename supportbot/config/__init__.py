"""
Support bot configuration management.

Provides centralized configuration loading from TOML files with environment variable overrides.

Usage:
    from supportbot.config import get_config

    config = get_config()
    window = config.admission.rate_window
    probe_url = config.probe.url
"""
from .loader import load_config, get_config, require_api_key, ConfigError
from .models import SupportBotConfig

__all__ = ["load_config", "get_config", "require_api_key", "ConfigError", "SupportBotConfig"]
