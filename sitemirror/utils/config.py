"""
Configuration management for the mirror crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from urllib.parse import urlsplit
from dataclasses import dataclass, field, fields


class ConfigError(ValueError):
    """Raised for configuration that makes a crawl impossible to start."""
    pass


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    start_location: str
    max_depth: int = 0
    worker_count: int = 4
    url_match: str = ""
    refresh_html: bool = False
    refresh_images: bool = False
    user_agent: str = "sitemirror/1.0"
    request_timeout: int = 30
    max_content_size: int = 50 * 1024 * 1024
    queue_check_interval: float = 0.5
    basic_auth_user: str = ""
    basic_auth_password: str = ""


@dataclass
class StorageConfig:
    """Configuration for the on-disk mirror."""
    save_root_directory: str = "mirror"
    mailto_log_file: str = "mailto.txt"


@dataclass
class CheckpointConfig:
    """Configuration for crawl checkpoints."""
    interval_ms: int = 0
    backend: str = "file"
    path: str = "spider.checkpoint.json"
    resume: bool = False


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    checkpoint_key: str = "sitemirror:checkpoint"


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/sitemirror.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False
    stats_interval: float = 30.0


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    storage: StorageConfig = field(default_factory=StorageConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section '{name}': {', '.join(sorted(unknown))}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid section '{name}': {e}") from e


def parse_config(config_data: Dict[str, Any]) -> Config:
    """Build a Config from already-parsed YAML data."""
    if not isinstance(config_data, dict) or 'crawler' not in config_data:
        raise ConfigError("Configuration must contain a 'crawler' section")

    return Config(
        crawler=_section(CrawlerConfig, config_data['crawler'], 'crawler'),
        storage=_section(StorageConfig, config_data.get('storage'), 'storage'),
        checkpoint=_section(CheckpointConfig, config_data.get('checkpoint'), 'checkpoint'),
        redis=_section(RedisConfig, config_data.get('redis'), 'redis'),
        logging=_section(LoggingConfig, config_data.get('logging'), 'logging'),
        monitoring=_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring')
    )


def validate_config(config: Config):
    """Validate configuration values."""
    crawler = config.crawler

    # Validate seed URL
    parts = urlsplit(crawler.start_location or '')
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise ConfigError(f"start_location must be an absolute http(s) URL: {crawler.start_location!r}")

    # Validate numeric values
    if crawler.max_depth < 0:
        raise ConfigError("max_depth must be non-negative (0 means unlimited)")

    if crawler.worker_count < 1:
        raise ConfigError("worker_count must be at least 1")

    if crawler.request_timeout <= 0:
        raise ConfigError("request_timeout must be positive")

    if crawler.queue_check_interval <= 0:
        raise ConfigError("queue_check_interval must be positive")

    if config.checkpoint.interval_ms < 0:
        raise ConfigError("checkpoint interval_ms must be non-negative (0 disables)")

    if config.checkpoint.backend not in ('file', 'redis'):
        raise ConfigError("Checkpoint backend must be 'file' or 'redis'")

    if not config.storage.save_root_directory:
        raise ConfigError("save_root_directory must be set")

    root = Path(config.storage.save_root_directory)
    if root.exists() and not root.is_dir():
        raise ConfigError(f"save_root_directory is not a directory: {root}")

    logging.getLogger(__name__).debug("Configuration validation passed")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            try:
                config_data = yaml.safe_load(file)
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {self.config_path}: {e}") from e

        self._config = parse_config(config_data)
        validate_config(self._config)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
