"""Configuration management for the DEMONICSKULL.COM site."""

from dataclasses import dataclass, field, fields
import os

from .throttle import ModemProfile


class ConfigError(ValueError):
    """Raised when a setting would break the site at request time."""


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    serverless: bool = False  # Hard response-time limits, read-only FS


@dataclass
class ModemConfig:
    """56k modem simulator configuration."""
    enabled: bool = True
    speed: str = "56k"              # Key from SPEED_TIERS
    interval_ms: int = 50           # Drip a chunk every 50ms
    latency_ms: int = 120           # Initial latency per request
    bypass_param: str = "turbo"     # ?turbo=1 skips throttling (for the webmaster)


@dataclass
class StorageConfig:
    """Guestbook entry and visitor counter storage."""
    backend: str = "file"           # file | redis
    data_dir: str = ""              # empty = package data directory
    redis_url: str = "redis://localhost:6379/0"
    entries_key: str = "guestbook:entries"
    counter_key: str = "counter:visitors"


@dataclass
class GuestbookConfig:
    """Guestbook paging and submission limits."""
    entries_per_page: int = 10
    max_name_length: int = 50
    max_message_length: int = 1000


@dataclass
class Config:
    """Main configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    modem: ModemConfig = field(default_factory=ModemConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    guestbook: GuestbookConfig = field(default_factory=GuestbookConfig)

    @property
    def modem_active(self) -> bool:
        """Modem mode is forced off on serverless hosts (they can't stream slowly)."""
        return (
            self.modem.enabled
            and not self.server.serverless
            and self.modem.speed != "none"
        )

    def validate(self) -> None:
        """Reject guestbook limits that would break paging or validation."""
        for name in ("entries_per_page", "max_name_length", "max_message_length"):
            value = getattr(self.guestbook, name)
            if value <= 0:
                raise ConfigError(f"guestbook.{name} must be positive, got {value}")

    def modem_profile(self) -> ModemProfile:
        """Build the pacing profile; raises ThrottleConfigError if unusable."""
        return ModemProfile.from_speed(
            self.modem.speed,
            interval_ms=self.modem.interval_ms,
            latency_ms=self.modem.latency_ms,
        )

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load config from a YAML file, then apply environment overrides.

        YAML structure mirrors the dataclass hierarchy:
            server:
              port: 3000
            modem:
              speed: "28.8k"
            ...
        """
        import yaml
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        # Map each top-level YAML section to its dataclass
        for field_info in fields(cls):
            section_data = data.get(field_info.name)
            if not section_data or not isinstance(section_data, dict):
                continue
            sub_obj = getattr(config, field_info.name)
            for key, value in section_data.items():
                if not hasattr(sub_obj, key):
                    print(f"[CONFIG] Unknown key {field_info.name}.{key}, ignoring")
                    continue
                # Coerce to the expected type
                expected = type(getattr(sub_obj, key))
                if expected is bool and not isinstance(value, bool):
                    value = _truthy(str(value))
                elif expected is int and not isinstance(value, int):
                    value = int(value)
                elif expected is str and not isinstance(value, str):
                    value = str(value)
                setattr(sub_obj, key, value)

        return config.apply_env()

    @classmethod
    def from_env(cls) -> "Config":
        """Load config from environment variables."""
        return cls().apply_env()

    def apply_env(self) -> "Config":
        """Override fields from environment variables; returns self."""
        # Server
        if host := os.getenv("HOST"):
            self.server.host = host
        if port := os.getenv("PORT"):
            self.server.port = int(port)
        if os.getenv("VERCEL"):
            self.server.serverless = True
        if serverless := os.getenv("SERVERLESS"):
            self.server.serverless = _truthy(serverless)

        # Modem
        if modem_mode := os.getenv("MODEM_MODE"):
            self.modem.enabled = modem_mode.lower() != "false"
        if speed := os.getenv("MODEM_SPEED"):
            self.modem.speed = speed
        if interval := os.getenv("MODEM_INTERVAL_MS"):
            self.modem.interval_ms = int(interval)
        if latency := os.getenv("MODEM_LATENCY_MS"):
            self.modem.latency_ms = int(latency)
        if bypass := os.getenv("MODEM_BYPASS_PARAM"):
            self.modem.bypass_param = bypass

        # Storage
        if backend := os.getenv("STORAGE_BACKEND"):
            self.storage.backend = backend
        if data_dir := os.getenv("DATA_DIR"):
            self.storage.data_dir = data_dir
        if redis_url := os.getenv("REDIS_URL"):
            self.storage.redis_url = redis_url

        # Guestbook
        if per_page := os.getenv("ENTRIES_PER_PAGE"):
            self.guestbook.entries_per_page = int(per_page)

        return self
