"""Configuration for the agent WhatsApp session client."""

import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field, asdict
import json

from .logging import LogLevel
from .models import LaunchOptions

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

DEFAULT_LINUX_EXECUTABLE = "/usr/bin/chromium"


@dataclass
class ClientConfig:
    """Session client configuration."""

    # Bridge
    bridge_url: str = "http://localhost:3001"
    bridge_token: Optional[str] = None
    client_id: str = "agent-whatsapp"

    # Browser automation
    headless: bool = True
    browser_args: List[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    executable_path: Optional[str] = None

    # "development" renders pairing QR codes in the terminal
    environment: str = "production"
    address_suffix: str = "@c.us"

    # Delivery
    send_timeout_seconds: float = 30.0
    startup_timeout_seconds: float = 60.0
    max_retries: int = 3
    queue_retry_delay_seconds: float = 0.5
    bulk_delay_seconds: float = 1.0
    max_queue_size: int = 500
    reconnect_max_attempts: int = 10

    # Logging
    log_qr: bool = True
    log_level: LogLevel = LogLevel.INFO
    log_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        data = asdict(self)
        data["log_level"] = self.log_level.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Create config from dictionary."""
        data = dict(data)
        if "log_level" in data:
            data["log_level"] = LogLevel(data["log_level"])
        return cls(**data)


def build_launch_options(
    config: ClientConfig, platform: Optional[str] = None
) -> LaunchOptions:
    """
    Build browser launch options for the transport.

    Linux servers get an explicit executable path: the configured override,
    or the system Chromium.

    Args:
        config: Client configuration
        platform: Platform name (defaults to sys.platform)

    Returns:
        LaunchOptions for the bridge
    """
    platform = platform or sys.platform
    options = LaunchOptions(headless=config.headless, args=list(config.browser_args))
    if platform.startswith("linux"):
        options.executable_path = config.executable_path or DEFAULT_LINUX_EXECUTABLE
    elif config.executable_path:
        options.executable_path = config.executable_path
    return options


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manage client configuration."""

    _instance: Optional["ConfigManager"] = None
    _config: Optional[ClientConfig]

    def __new__(cls) -> "ConfigManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize config manager."""
        if self._initialized:
            return

        self._initialized = True
        # Built on first access so the environment is read then
        self._config = None
        self._config_file: Optional[Path] = None

    def load_config(self, config_file: str) -> None:
        """
        Load configuration from JSON file.

        Args:
            config_file: Path to config JSON file
        """
        config_path = Path(config_file).expanduser()

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")

        with open(config_path, "r") as f:
            data = json.load(f)

        self._config = ClientConfig.from_dict(data)
        self._config_file = config_path

    def save_config(self, config_file: Optional[str] = None) -> None:
        """
        Save configuration to JSON file.

        Args:
            config_file: Path to save config (uses loaded path if not provided)
        """
        if config_file:
            self._config_file = Path(config_file).expanduser()
        elif not self._config_file:
            raise ValueError("No config file path specified")

        self._config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_file, "w") as f:
            json.dump(self.get_config().to_dict(), f, indent=2)

    def load_config_from_env(self) -> None:
        """Load configuration from environment variables."""
        env = os.environ
        config = self.get_config()

        if "WHATSAPP_BRIDGE_URL" in env:
            config.bridge_url = env["WHATSAPP_BRIDGE_URL"]

        if "WHATSAPP_BRIDGE_TOKEN" in env:
            config.bridge_token = env["WHATSAPP_BRIDGE_TOKEN"]

        if "WHATSAPP_CLIENT_ID" in env:
            config.client_id = env["WHATSAPP_CLIENT_ID"]

        if "WHATSAPP_HEADLESS" in env:
            config.headless = _parse_bool(env["WHATSAPP_HEADLESS"])

        executable = env.get("WHATSAPP_EXECUTABLE_PATH") or env.get("PUPPETEER_EXECUTABLE_PATH")
        if executable:
            config.executable_path = executable

        if "WHATSAPP_ENV" in env:
            config.environment = env["WHATSAPP_ENV"]

        if "WHATSAPP_SEND_TIMEOUT_SECONDS" in env:
            config.send_timeout_seconds = float(env["WHATSAPP_SEND_TIMEOUT_SECONDS"])

        if "WHATSAPP_MAX_RETRIES" in env:
            config.max_retries = int(env["WHATSAPP_MAX_RETRIES"])

        if "WHATSAPP_LOG_LEVEL" in env:
            config.log_level = LogLevel(env["WHATSAPP_LOG_LEVEL"].upper())

        if "WHATSAPP_LOG_FILE" in env:
            config.log_file = env["WHATSAPP_LOG_FILE"]

    def get_config(self) -> ClientConfig:
        """Get current configuration, applying the environment on first access."""
        if self._config is None:
            self._config = ClientConfig()
            self.load_config_from_env()
        return self._config

    def update_config(self, **kwargs: Any) -> None:
        """
        Update specific configuration values.

        Args:
            **kwargs: Configuration keys and values to update

        Raises:
            ValueError: If a key is unknown
        """
        config = self.get_config()
        for key, value in kwargs.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                raise ValueError(f"Unknown configuration key: {key}")

    def get_value(self, key: str) -> Any:
        """
        Get a configuration value.

        Raises:
            KeyError: If key not found
        """
        config = self.get_config()
        if not hasattr(config, key):
            raise KeyError(f"Unknown configuration key: {key}")
        return getattr(config, key)

    def set_value(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Raises:
            KeyError: If key not found
        """
        config = self.get_config()
        if not hasattr(config, key):
            raise KeyError(f"Unknown configuration key: {key}")
        setattr(config, key, value)

    def reset_to_defaults(self) -> None:
        """Drop current values; the next access rebuilds defaults plus environment."""
        self._config = None


# Global config manager instance
_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    """Get global config manager instance."""
    return _config_manager


def get_config() -> ClientConfig:
    """Get current client configuration."""
    return _config_manager.get_config()


def load_config(config_file: str) -> None:
    """Load configuration from file."""
    _config_manager.load_config(config_file)


def save_config(config_file: Optional[str] = None) -> None:
    """Save configuration to file."""
    _config_manager.save_config(config_file)


def load_config_from_env() -> None:
    """Load configuration from environment variables."""
    _config_manager.load_config_from_env()


def update_config(**kwargs: Any) -> None:
    """Update configuration values."""
    _config_manager.update_config(**kwargs)


def get_config_value(key: str) -> Any:
    """Get a configuration value."""
    return _config_manager.get_value(key)


def set_config_value(key: str, value: Any) -> None:
    """Set a configuration value."""
    _config_manager.set_value(key, value)
