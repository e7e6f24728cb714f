"""
Configuration loader with TOML file parsing and environment variable overrides.
"""
import os
import logging
from pathlib import Path
from typing import Optional, Any, Dict

# Try Python 3.11+ tomllib first, fallback to tomli for older versions
try:
    import tomllib
except ModuleNotFoundError:
    try:
        import tomli as tomllib
    except ImportError:
        raise ImportError(
            "Neither tomllib (Python 3.11+) nor tomli package found. "
            "Install tomli: pip install tomli"
        )

from .models import SupportBotConfig

logger = logging.getLogger(__name__)

_config: Optional[SupportBotConfig] = None

CONFIG_PATHS = [
    Path("supportbot.toml"),
    Path("/etc/supportbot/supportbot.toml"),
    Path.home() / ".config" / "supportbot" / "supportbot.toml",
]


class ConfigError(Exception):
    """Raised when configuration is missing something the service cannot run without."""
    pass


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load TOML file and return parsed dict."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _apply_env_overrides(config: SupportBotConfig) -> SupportBotConfig:
    """
    Override config with environment variables.
    Format: SUPPORTBOT_SECTION_KEY
    Example: SUPPORTBOT_MQTT_PASSWORD overrides config.mqtt.password

    GEMINI_API_KEY, PORT and PING_URL are honoured as well since hosting
    platforms set them without a prefix.
    """
    env_map = {
        # Bare platform variables
        "GEMINI_API_KEY": lambda v: setattr(config.generator, "api_key", v),
        "PORT": lambda v: setattr(config.http, "port", int(v)),
        "PING_URL": lambda v: setattr(config.probe, "url", v),

        # MQTT overrides
        "SUPPORTBOT_MQTT_BROKER": lambda v: setattr(config.mqtt, "broker", v),
        "SUPPORTBOT_MQTT_PORT": lambda v: setattr(config.mqtt, "port", int(v)),
        "SUPPORTBOT_MQTT_USERNAME": lambda v: setattr(config.mqtt, "username", v),
        "SUPPORTBOT_MQTT_PASSWORD": lambda v: setattr(config.mqtt, "password", v),

        # Logging overrides
        "SUPPORTBOT_LOGGING_LEVEL": lambda v: setattr(config.logging, "level", v.upper()),
        "SUPPORTBOT_LOGGING_JSON": lambda v: setattr(config.logging, "json", _parse_bool(v)),

        # HTTP overrides
        "SUPPORTBOT_HTTP_HOST": lambda v: setattr(config.http, "host", v),
        "SUPPORTBOT_HTTP_PORT": lambda v: setattr(config.http, "port", int(v)),

        # Generator overrides
        "SUPPORTBOT_GENERATOR_API_KEY": lambda v: setattr(config.generator, "api_key", v),
        "SUPPORTBOT_GENERATOR_MODEL": lambda v: setattr(config.generator, "model", v),
        "SUPPORTBOT_GENERATOR_TIMEOUT": lambda v: setattr(config.generator, "timeout", float(v)),
        "SUPPORTBOT_GENERATOR_MAX_RETRIES": lambda v: setattr(config.generator, "max_retries", int(v)),
        "SUPPORTBOT_GENERATOR_HISTORY_RETENTION": lambda v: setattr(config.generator, "history_retention", float(v)),

        # Admission overrides
        "SUPPORTBOT_ADMISSION_QUEUE_CAPACITY": lambda v: setattr(config.admission, "queue_capacity", int(v)),
        "SUPPORTBOT_ADMISSION_RATE_WINDOW": lambda v: setattr(config.admission, "rate_window", float(v)),
        "SUPPORTBOT_ADMISSION_RATE_MAX_MESSAGES": lambda v: setattr(config.admission, "rate_max_messages", int(v)),
        "SUPPORTBOT_ADMISSION_REPEAT_THRESHOLD": lambda v: setattr(config.admission, "repeat_threshold", int(v)),
        "SUPPORTBOT_ADMISSION_REPEAT_COOLDOWN": lambda v: setattr(config.admission, "repeat_cooldown", float(v)),
        "SUPPORTBOT_ADMISSION_SPAM_COOLDOWN": lambda v: setattr(config.admission, "spam_cooldown", float(v)),
        "SUPPORTBOT_ADMISSION_PAUSE_DURATION": lambda v: setattr(config.admission, "pause_duration", float(v)),

        # Gateway overrides
        "SUPPORTBOT_GATEWAY_CLIENT_ID": lambda v: setattr(config.gateway, "client_id", v),
        "SUPPORTBOT_GATEWAY_AUTH_DIR": lambda v: setattr(config.gateway, "auth_dir", v),

        # Supervisor overrides
        "SUPPORTBOT_SUPERVISOR_MAX_RECONNECT_ATTEMPTS": lambda v: setattr(config.supervisor, "max_reconnect_attempts", int(v)),
        "SUPPORTBOT_SUPERVISOR_HEALTH_INTERVAL": lambda v: setattr(config.supervisor, "health_interval", float(v)),
        "SUPPORTBOT_SUPERVISOR_MAX_SILENCE": lambda v: setattr(config.supervisor, "max_silence", float(v)),

        # Probe overrides
        "SUPPORTBOT_PROBE_URL": lambda v: setattr(config.probe, "url", v),
        "SUPPORTBOT_PROBE_INTERVAL": lambda v: setattr(config.probe, "interval", float(v)),
        "SUPPORTBOT_PROBE_DEPLOYMENT_TIMEOUT": lambda v: setattr(config.probe, "deployment_timeout", float(v)),
    }

    for env_var, setter in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                setter(value)
                logger.debug(f"Config override from env: {env_var}")
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to apply env override {env_var}={value}: {e}")

    return config


def _toml_to_config(data: Dict[str, Any]) -> SupportBotConfig:
    """Convert TOML dict to SupportBotConfig dataclass."""
    config = SupportBotConfig()

    section_map = {
        "mqtt": config.mqtt,
        "logging": config.logging,
        "http": config.http,
        "admission": config.admission,
        "generator": config.generator,
        "knowledge": config.knowledge,
        "gateway": config.gateway,
        "supervisor": config.supervisor,
        "probe": config.probe,
    }

    for section_name, section_obj in section_map.items():
        if section_name in data:
            for k, v in data[section_name].items():
                if hasattr(section_obj, k):
                    setattr(section_obj, k, v)
                else:
                    logger.warning(f"Unknown config key [{section_name}] {k}")

    return config


def load_config(config_path: Optional[Path] = None) -> SupportBotConfig:
    """
    Load configuration from TOML file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file. If None, searches default paths.

    Returns:
        SupportBotConfig instance with loaded configuration.
    """
    global _config

    if config_path:
        paths = [config_path]
    else:
        paths = CONFIG_PATHS

    data = {}
    for path in paths:
        if path.exists():
            try:
                data = _load_toml(path)
                logger.info(f"Loaded config from {path}")
                break
            except Exception as e:
                logger.error(f"Failed to load config from {path}: {e}")
                continue
    else:
        logger.warning("No config file found, using defaults")

    config = _toml_to_config(data)
    config = _apply_env_overrides(config)
    _config = config
    return config


def get_config() -> SupportBotConfig:
    """
    Get cached config or load if not yet loaded.

    Returns:
        SupportBotConfig instance.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def require_api_key(config: SupportBotConfig) -> str:
    """Return the generator credential or fail startup."""
    key = config.generator.api_key.strip()
    if not key:
        raise ConfigError("GEMINI_API_KEY is not set")
    return key
