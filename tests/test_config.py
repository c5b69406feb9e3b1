"""Tests for sitemirror.utils.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from sitemirror.utils.config import (
    Config, ConfigError, ConfigManager, CrawlerConfig, load_config, parse_config, validate_config
)

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config.yaml"


def write_yaml(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    def test_minimal(self, tmp_path):
        path = write_yaml(tmp_path, "crawler:\n  start_location: http://example.com/\n")
        config = load_config(str(path))
        assert config.crawler.start_location == "http://example.com/"
        assert config.crawler.max_depth == 0
        assert config.crawler.worker_count == 4
        assert config.crawler.url_match == ""
        assert config.storage.save_root_directory == "mirror"
        assert config.checkpoint.interval_ms == 0
        assert config.checkpoint.backend == "file"

    def test_example_config_is_valid(self):
        config = load_config(str(EXAMPLE_CONFIG))
        assert config.crawler.max_depth == 3
        assert config.checkpoint.interval_ms == 60000

    def test_all_sections(self, tmp_path):
        path = write_yaml(tmp_path, """
crawler:
  start_location: https://example.com/docs/
  max_depth: 2
  worker_count: 8
  url_match: /docs/
  refresh_html: true
storage:
  save_root_directory: out
checkpoint:
  interval_ms: 500
  backend: redis
redis:
  host: cache
  checkpoint_key: mirror:ckpt
logging:
  level: DEBUG
monitoring:
  metrics_enabled: true
""")
        config = load_config(str(path))
        assert config.crawler.worker_count == 8
        assert config.crawler.url_match == "/docs/"
        assert config.crawler.refresh_html is True
        assert config.crawler.refresh_images is False
        assert config.checkpoint.backend == "redis"
        assert config.redis.host == "cache"
        assert config.redis.checkpoint_key == "mirror:ckpt"
        assert config.logging.level == "DEBUG"
        assert config.monitoring.metrics_enabled is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = write_yaml(tmp_path, "crawler: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_manager_config_property(self, tmp_path):
        path = write_yaml(tmp_path, "crawler:\n  start_location: http://example.com/\n")
        manager = ConfigManager(str(path))
        with pytest.raises(ValueError):
            manager.config
        manager.load_config()
        assert manager.config.crawler.start_location == "http://example.com/"


class TestParseConfig:
    def test_crawler_section_required(self):
        with pytest.raises(ConfigError):
            parse_config({"storage": {}})

    def test_empty_document(self):
        with pytest.raises(ConfigError):
            parse_config(None)

    def test_missing_start_location(self):
        with pytest.raises(ConfigError):
            parse_config({"crawler": {"max_depth": 2}})

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="max_dpeth"):
            parse_config({"crawler": {"start_location": "http://x/", "max_dpeth": 2}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            parse_config({"crawler": {"start_location": "http://x/"}, "storage": ["mirror"]})


def valid_config(tmp_path, **crawler_options):
    crawler_options.setdefault("start_location", "http://example.com/")
    config = Config(crawler=CrawlerConfig(**crawler_options))
    config.storage.save_root_directory = str(tmp_path / "mirror")
    return config


class TestValidateConfig:
    def test_valid(self, tmp_path):
        validate_config(valid_config(tmp_path))

    @pytest.mark.parametrize("seed", ["", "example.com", "ftp://example.com/", "/relative", "http://"])
    def test_bad_seed(self, tmp_path, seed):
        with pytest.raises(ConfigError):
            validate_config(valid_config(tmp_path, start_location=seed))

    @pytest.mark.parametrize("options", [
        {"max_depth": -1},
        {"worker_count": 0},
        {"request_timeout": 0},
        {"queue_check_interval": 0},
    ])
    def test_bad_crawler_values(self, tmp_path, options):
        with pytest.raises(ConfigError):
            validate_config(valid_config(tmp_path, **options))

    def test_negative_checkpoint_interval(self, tmp_path):
        config = valid_config(tmp_path)
        config.checkpoint.interval_ms = -1
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_unknown_backend(self, tmp_path):
        config = valid_config(tmp_path)
        config.checkpoint.backend = "sqlite"
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_mirror_root_is_a_file(self, tmp_path):
        config = valid_config(tmp_path)
        Path(config.storage.save_root_directory).write_text("x")
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)
