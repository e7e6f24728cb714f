"""
Configuration dataclass models for the support bot.
"""
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class MQTTConfig:
    """MQTT broker shared with the messaging gateway sidecar."""
    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""  # loaded from env


@dataclass
class LoggingConfig:
    """Log level and output format shared by every component."""
    level: str = "INFO"
    json: bool = False


@dataclass
class HttpConfig:
    """Health/admin HTTP server."""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class AdmissionConfig:
    """Message admission pipeline limits."""
    queue_capacity: int = 100
    rate_window: float = 60.0
    rate_max_messages: int = 10
    repeat_threshold: int = 4
    repeat_cooldown: float = 120.0  # 2 minutes
    spam_cooldown: float = 180.0  # 3 minutes
    pause_duration: float = 3600.0  # 1 hour
    dedupe_capacity: int = 1000
    janitor_interval: Optional[float] = None  # defaults to rate_window


@dataclass
class GeneratorConfig:
    """Generative Language API settings."""
    api_key: str = ""  # loaded from env
    host: str = "https://generativelanguage.googleapis.com"
    model: str = "gemini-1.5-flash"
    timeout: float = 60.0
    max_retries: int = 3
    history_chars: int = 1000
    history_retention: float = 3600.0  # 1 hour idle


@dataclass
class KnowledgeConfig:
    """Dataset files used to ground generated answers."""
    directory: str = "data"
    catalogue_file: str = "Laptops1.txt"
    company_file: str = "info_empresa.txt"


@dataclass
class GatewayConfig:
    """Browser-automation messaging gateway."""
    client_id: str = "electronics-js-bot"
    auth_dir: str = ".wwebjs_auth/session-electronics-js-bot"
    ready_timeout: float = 120.0
    destroy_timeout: float = 30.0


@dataclass
class SupervisorConfig:
    """Connection supervisor and health monitor."""
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 5.0
    reconnect_growth: float = 2.0
    reconnect_max_delay: float = 300.0
    reconnect_jitter: float = 1.0
    clear_credentials_after: int = 3
    restart_pause: float = 5.0
    health_interval: float = 300.0
    max_silence: float = 3600.0
    error_log_size: int = 50
    gc_interval: float = 1800.0


@dataclass
class ProbeConfig:
    """Keep-alive liveness probe."""
    url: str = "http://localhost:3000/health"
    interval: float = 600.0
    timeout: float = 5.0
    max_failures: int = 5
    backoff_base: float = 30.0
    backoff_max: float = 300.0
    deployment_status: int = 502
    deployment_timeout: float = 900.0  # 15 minutes


@dataclass
class SupportBotConfig:
    """Root configuration object containing all subsystem configs."""
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
