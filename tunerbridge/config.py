"""
Configuration management for TunerBridge.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

# Global configuration instance
_config: Optional["TunerBridgeConfig"] = None


class ServerConfig(BaseModel):
    """Server configuration."""
    host: str = "0.0.0.0"
    port: int = 8181
    log_level: str = "INFO"
    base_url: str = "http://localhost:8181"
    friendly_name: str = "TunerBridge"
    device_id: str = "12345678"
    device_auth: str = "tunerbridge"


class CloudConfig(BaseModel):
    """Cloud account configuration."""
    host: str = "https://lighthousetv.ewscloud.com"
    email: Optional[str] = None
    password: Optional[str] = None
    auto_profile: bool = False
    profile: Optional[str] = None  # Profile name override
    device: Optional[str] = None  # Device server id override
    user_agent: str = "Tablo-FAST/2.0.0 (Mobile; iPhone; iOS 16.6)"
    request_timeout: float = 30.0


class DeviceConfig(BaseModel):
    """Local DVR device request settings."""
    user_agent: str = "Tablo-FAST/1.7.0 (Mobile; iPhone; iOS 18.4)"
    hash_key: str = ""  # HMAC key used to sign device requests
    auth_key: str = ""  # Public key id sent in the Authorization header
    request_timeout: float = 30.0


class FFmpegConfig(BaseModel):
    """FFmpeg configuration."""
    path: str = "ffmpeg"
    log_level: str = "error"  # FFmpeg log level: quiet, panic, fatal, error, warning, info, verbose, debug
    read_size: int = 65536  # 64KB


class GuideConfig(BaseModel):
    """Guide synchronization configuration."""
    days: int = 2
    refresh_interval: int = 3600
    refresh_on_start: bool = True
    include_internet_channels: bool = False
    create_xml: bool = True
    extra_xmltv_path: Optional[str] = None  # Externally produced XMLTV fragment to merge


class StorageConfig(BaseModel):
    """Persistent file locations (relative paths resolve under data_dir)."""
    data_dir: str = "data"
    cache_dir: str = "tempGuide"
    session_file: str = "creds.bin"
    key_file: str = "creds.key"
    lineup_file: str = "lineup.json"
    guide_file: str = "guide.xml"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/tunerbridge.log"
    max_size: str = "10MB"
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class TunerBridgeConfig(BaseModel):
    """Main TunerBridge configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    cloud: CloudConfig = Field(default_factory=CloudConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    guide: GuideConfig = Field(default_factory=GuideConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> TunerBridgeConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in project root.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        # Look for config.yaml in current directory or project root
        possible_paths = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = TunerBridgeConfig(**config_data)
    return _config


def get_config() -> TunerBridgeConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> TunerBridgeConfig:
    """
    Reload configuration from disk.

    Returns:
        Freshly loaded configuration.
    """
    global _config
    _config = None
    return load_config()


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    # Map of environment variables to config paths
    env_map = {
        "TUNERBRIDGE_HOST": ("server", "host"),
        "TUNERBRIDGE_PORT": ("server", "port"),
        "TUNERBRIDGE_BASE_URL": ("server", "base_url"),
        "TUNERBRIDGE_NAME": ("server", "friendly_name"),
        "TUNERBRIDGE_DEVICE_ID": ("server", "device_id"),
        "TUNERBRIDGE_USER_NAME": ("cloud", "email"),
        "TUNERBRIDGE_USER_PASS": ("cloud", "password"),
        "TUNERBRIDGE_AUTO_PROFILE": ("cloud", "auto_profile"),
        "TUNERBRIDGE_TABLO_DEVICE": ("cloud", "device"),
        "TUNERBRIDGE_FFMPEG_PATH": ("ffmpeg", "path"),
        "TUNERBRIDGE_FFMPEG_LOG_LEVEL": ("ffmpeg", "log_level"),
        "TUNERBRIDGE_GUIDE_DAYS": ("guide", "days"),
        "TUNERBRIDGE_INCLUDE_OTT": ("guide", "include_internet_channels"),
        "TUNERBRIDGE_DATA_DIR": ("storage", "data_dir"),
        "TUNERBRIDGE_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            # Values stay strings; pydantic coerces them to the field types
            _set_nested(overrides, path, value)

    return overrides


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value

