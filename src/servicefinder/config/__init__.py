"""Configuration models, YAML parsing and logging setup."""

from .config_schema import DEFAULT_SERVICE_TYPE, AppConfig, FinderConfig

__all__ = ["AppConfig", "DEFAULT_SERVICE_TYPE", "FinderConfig"]
