"""
Service configuration management.

This module handles loading and accessing configuration from multiple sources
with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/server.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. The ServerConfig
dataclass provides typed access to all settings.

Usage:
    from ticket_ledger.config import config

    print(config.server.port)
    print(config.ledger.batch_size)
    print(config.is_production)

Environment Variable Mapping:
    TICKET_HOST               -> server.host
    TICKET_PORT               -> server.port
    TICKET_PRODUCTION         -> security.production
    TICKET_PROXY_KEY          -> security.proxy_key
    TICKET_DB_PATH            -> database.path
    TICKET_LOG_LEVEL          -> logging.level
    TICKET_LOG_FORMAT         -> logging.format
    TICKET_RATE_LIMIT_ENABLED -> rate_limit.enabled
    TICKET_EMAIL_WEBHOOK_URL  -> notifications.email_webhook_url
    TICKET_CLAIM_URL_BASE     -> notifications.claim_url_base
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "server.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "server.example.ini"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class ServerSettings:
    """Network server configuration."""

    host: str = "0.0.0.0"  # nosec B104 - intentional for server binding
    port: int = 8000


@dataclass
class SecuritySettings:
    """Security-related configuration."""

    production: bool = False
    # Shared secret expected in the X-Proxy-Key header. Empty disables the check.
    proxy_key: str = ""
    docs_enabled: Literal["auto", "enabled", "disabled"] = "auto"


@dataclass
class DatabaseSettings:
    """Database configuration."""

    path: str = "data/tickets.db"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to database file."""
        p = Path(self.path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class RateLimitSettings:
    """Transfer throttling configuration."""

    enabled: bool = True
    transfers_per_window: int = 10
    transfer_window_seconds: int = 3600


@dataclass
class LedgerSettings:
    """Transaction and batch discipline for ledger operations."""

    max_transaction_attempts: int = 5
    retry_backoff_seconds: float = 0.05
    batch_size: int = 400
    transfer_ttl_hours: int = 72
    reconcile_event_limit: int = 50


@dataclass
class NotificationSettings:
    """Outbound notification configuration (best-effort side effects)."""

    email_enabled: bool = False
    email_webhook_url: str = ""
    email_from: str = "Tickets <support@example.com>"
    claim_url_base: str = "http://localhost:8000/claim-ticket"
    timeout_seconds: float = 5.0


@dataclass
class ServerConfig:
    """
    Complete service configuration.

    This is the main configuration object that aggregates all settings sections.
    Access via the module-level `config` singleton.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    @property
    def is_production(self) -> bool:
        """Convenience property for production mode check."""
        return self.security.production

    @property
    def docs_should_be_enabled(self) -> bool:
        """Determine if API docs should be enabled based on settings."""
        if self.security.docs_enabled == "enabled":
            return True
        if self.security.docs_enabled == "disabled":
            return False
        # "auto" - follow production setting
        return not self.is_production


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _load_from_ini(parser: configparser.ConfigParser, cfg: ServerConfig) -> None:
    """Load configuration from parsed INI file into ServerConfig."""
    # Server section
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    # Security section
    if parser.has_section("security"):
        if parser.has_option("security", "production"):
            cfg.security.production = _parse_bool(parser.get("security", "production"))
        if parser.has_option("security", "proxy_key"):
            cfg.security.proxy_key = parser.get("security", "proxy_key")
        if parser.has_option("security", "docs_enabled"):
            val = parser.get("security", "docs_enabled").lower()
            if val in ("auto", "enabled", "disabled"):
                cfg.security.docs_enabled = val  # type: ignore[assignment]

    # Database section
    if parser.has_section("database"):
        if parser.has_option("database", "path"):
            cfg.database.path = parser.get("database", "path")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]

    # Rate limit section
    if parser.has_section("rate_limit"):
        if parser.has_option("rate_limit", "enabled"):
            cfg.rate_limit.enabled = _parse_bool(parser.get("rate_limit", "enabled"))
        if parser.has_option("rate_limit", "transfers_per_window"):
            cfg.rate_limit.transfers_per_window = parser.getint(
                "rate_limit", "transfers_per_window"
            )
        if parser.has_option("rate_limit", "transfer_window_seconds"):
            cfg.rate_limit.transfer_window_seconds = parser.getint(
                "rate_limit", "transfer_window_seconds"
            )

    # Ledger section
    if parser.has_section("ledger"):
        if parser.has_option("ledger", "max_transaction_attempts"):
            cfg.ledger.max_transaction_attempts = parser.getint(
                "ledger", "max_transaction_attempts"
            )
        if parser.has_option("ledger", "retry_backoff_seconds"):
            cfg.ledger.retry_backoff_seconds = parser.getfloat("ledger", "retry_backoff_seconds")
        if parser.has_option("ledger", "batch_size"):
            cfg.ledger.batch_size = parser.getint("ledger", "batch_size")
        if parser.has_option("ledger", "transfer_ttl_hours"):
            cfg.ledger.transfer_ttl_hours = parser.getint("ledger", "transfer_ttl_hours")
        if parser.has_option("ledger", "reconcile_event_limit"):
            cfg.ledger.reconcile_event_limit = parser.getint("ledger", "reconcile_event_limit")

    # Notifications section
    if parser.has_section("notifications"):
        if parser.has_option("notifications", "email_enabled"):
            cfg.notifications.email_enabled = _parse_bool(
                parser.get("notifications", "email_enabled")
            )
        if parser.has_option("notifications", "email_webhook_url"):
            cfg.notifications.email_webhook_url = parser.get("notifications", "email_webhook_url")
        if parser.has_option("notifications", "email_from"):
            cfg.notifications.email_from = parser.get("notifications", "email_from")
        if parser.has_option("notifications", "claim_url_base"):
            cfg.notifications.claim_url_base = parser.get("notifications", "claim_url_base")
        if parser.has_option("notifications", "timeout_seconds"):
            cfg.notifications.timeout_seconds = parser.getfloat(
                "notifications", "timeout_seconds"
            )


def _apply_env_overrides(cfg: ServerConfig) -> None:
    """Apply environment variable overrides to configuration."""
    # Server settings
    if env_host := os.getenv("TICKET_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("TICKET_PORT"):
        cfg.server.port = int(env_port)

    # Security settings
    if env_production := os.getenv("TICKET_PRODUCTION"):
        cfg.security.production = _parse_bool(env_production)
    if env_proxy_key := os.getenv("TICKET_PROXY_KEY"):
        cfg.security.proxy_key = env_proxy_key

    # Database settings
    if env_db := os.getenv("TICKET_DB_PATH"):
        cfg.database.path = env_db

    # Logging settings
    if env_log := os.getenv("TICKET_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()
    if env_log_format := os.getenv("TICKET_LOG_FORMAT"):
        if env_log_format.lower() in ("simple", "detailed", "json"):
            cfg.logging.format = env_log_format.lower()  # type: ignore[assignment]

    # Rate limiting
    if env_rate := os.getenv("TICKET_RATE_LIMIT_ENABLED"):
        cfg.rate_limit.enabled = _parse_bool(env_rate)

    # Notifications
    if env_webhook := os.getenv("TICKET_EMAIL_WEBHOOK_URL"):
        cfg.notifications.email_webhook_url = env_webhook
        cfg.notifications.email_enabled = True
    if env_claim_url := os.getenv("TICKET_CLAIM_URL_BASE"):
        cfg.notifications.claim_url_base = env_claim_url


def load_config() -> ServerConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/server.ini
        3. config/server.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        ServerConfig: Fully populated configuration object.
    """
    cfg = ServerConfig()

    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        # Use example as fallback for development
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


def reload_config() -> "ServerConfig":
    """
    Reload configuration from disk and environment.

    This updates the module-level `config` singleton in place so modules that
    imported ``config`` directly observe the new values.

    Returns:
        ServerConfig: The reloaded configuration.
    """
    fresh = load_config()
    config.__dict__.update(fresh.__dict__)
    return config


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

config = load_config()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_config_status() -> dict:
    """
    Get configuration status for diagnostics.

    Returns a dictionary with configuration source information,
    useful for debugging and the health endpoint.
    """
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "production_mode": config.is_production,
        "proxy_key_required": bool(config.security.proxy_key),
        "docs_enabled": config.docs_should_be_enabled,
        "rate_limit_enabled": config.rate_limit.enabled,
    }


def print_config_summary() -> None:
    """Print a summary of current configuration to stdout."""
    status = get_config_status()
    print("\n" + "=" * 60)
    print("TICKET LEDGER CONFIGURATION")
    print("=" * 60)
    print(f"Config file: {status['config_file_path']}")
    print(f"File exists: {status['config_file_exists']}")
    if status["using_example"]:
        print("WARNING: Using example config (copy to server.ini for production)")
    print("-" * 60)
    print(f"Server:      {config.server.host}:{config.server.port}")
    print(f"Production:  {config.is_production}")
    print(f"Proxy key:   {'required' if status['proxy_key_required'] else 'not required'}")
    print(f"Database:    {config.database.absolute_path}")
    print(f"Log level:   {config.logging.level}")
    print(f"Batch size:  {config.ledger.batch_size}")
    print("=" * 60 + "\n")


# =============================================================================
# TEST HELPERS
# =============================================================================


class use_test_database:
    """
    Context manager for using a temporary test database.

    Usage:
        from ticket_ledger.config import use_test_database

        def test_something(tmp_path):
            with use_test_database(tmp_path / "test.db"):
                schema.init_database()

    Args:
        db_path: Path to the test database file
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.original_path: str | None = None

    def __enter__(self) -> Path:
        """Set up test database path."""
        self.original_path = config.database.path
        config.database.path = str(self.db_path)
        return self.db_path

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Restore original database path."""
        if self.original_path is not None:
            config.database.path = self.original_path
        return None
