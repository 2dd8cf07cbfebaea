"""
Bridge configuration management.

This module handles loading and accessing configuration from multiple sources
with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/bridge.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. The
BridgeConfig dataclass provides typed access to all settings.

Usage:
    from ledger_bridge.config import config

    print(config.cache.ttl_ms)
    print(config.ledger.rpc_url)

Environment Variable Mapping:
    BRIDGE_HOST                 -> server.host
    BRIDGE_PORT                 -> server.port
    BRIDGE_PRODUCTION           -> security.production
    BRIDGE_CORS_ORIGINS         -> security.cors_origins
    BRIDGE_ADMIN_TOKENS         -> admin.tokens ("role:token,role:token")
    BRIDGE_AUTH_MAX_SKEW_MS     -> auth.max_skew_ms
    BRIDGE_AUTH_NONCE_TTL_MS    -> auth.nonce_ttl_ms
    BRIDGE_REDIS_URL            -> store.redis_url
    BRIDGE_CACHE_TTL_MS         -> cache.ttl_ms
    BRIDGE_CACHE_MAX_AGE_MS     -> cache.max_age_ms
    BRIDGE_RESOLVER_BACKOFF_MS  -> resolver.backoff_ms ("1000,2000,4000,8000")
    BRIDGE_RESOLVER_MAX_WAIT_MS -> resolver.max_wait_ceiling_ms
    BRIDGE_SYNC_LOCK_TTL_MS     -> sync.lock_ttl_ms
    BRIDGE_RPC_URL              -> ledger.rpc_url
    BRIDGE_NETWORK              -> ledger.network
    BRIDGE_PACKAGE_ID           -> ledger.package_id
    BRIDGE_HUB_ID               -> ledger.hub_id
    BRIDGE_EVENT_LIMIT          -> ledger.event_limit
    BRIDGE_SPONSOR_PRIVATE_KEY  -> sponsor.private_key
    BRIDGE_SPONSOR_GAS_BUDGET   -> sponsor.gas_budget
    BRIDGE_DB_PATH              -> database.path
    BRIDGE_AUDIT_ENABLED        -> audit.enabled
    BRIDGE_AUDIT_PATH           -> audit.path
    BRIDGE_LOG_LEVEL            -> logging.level
    BRIDGE_LOG_FORMAT           -> logging.format
"""

import configparser
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "bridge.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "bridge.example.ini"

# Public fullnode endpoints used when no explicit rpc_url is configured.
FULLNODE_URLS = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}


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
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    docs_enabled: Literal["auto", "enabled", "disabled"] = "auto"


@dataclass
class AdminSettings:
    """Admin token configuration.

    ``tokens`` holds ``"role:token"`` entries. Roles are viewer, ops, finance
    and admin.
    """

    tokens: list[str] = field(default_factory=list)


@dataclass
class AuthSettings:
    """Signed-request protocol configuration."""

    max_skew_ms: int = 300_000
    nonce_ttl_ms: int = 600_000


@dataclass
class StoreSettings:
    """Key/value store configuration.

    An empty ``redis_url`` selects the in-process store, which is only
    correct for single-instance deployments.
    """

    redis_url: str = ""
    key_prefix: str = "ledger-bridge:"


@dataclass
class CacheSettings:
    """Ledger order snapshot cache configuration."""

    ttl_ms: int = 30_000
    max_age_ms: int = 300_000


@dataclass
class ResolverSettings:
    """Order resolver retry ladder configuration."""

    backoff_ms: list[int] = field(default_factory=lambda: [1000, 2000, 4000, 8000])
    default_max_wait_ms: int = 3000
    max_wait_ceiling_ms: int = 15_000


@dataclass
class SyncSettings:
    """Bulk ledger-to-local sync configuration."""

    lock_ttl_ms: int = 300_000


@dataclass
class LedgerSettings:
    """Ledger node and contract deployment configuration."""

    rpc_url: str = ""
    network: str = "testnet"
    package_id: str = ""
    hub_id: str = ""
    event_limit: int = 1000
    timeout_seconds: float = 10.0
    rpc_attempts: int = 3

    @property
    def resolved_rpc_url(self) -> str:
        """Explicit RPC URL, or the public fullnode for ``network``."""
        if self.rpc_url:
            return self.rpc_url
        return FULLNODE_URLS.get(self.network, FULLNODE_URLS["testnet"])


@dataclass
class SponsorSettings:
    """Fee sponsorship configuration."""

    private_key: str = ""
    gas_budget: str = "50000000"


@dataclass
class DatabaseSettings:
    """Database configuration."""

    path: str = "data/bridge.db"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to database file."""
        p = Path(self.path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class AuditSettings:
    """Audit trail configuration."""

    enabled: bool = True
    path: str = "data/audit"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to the audit directory."""
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
class BridgeConfig:
    """
    Complete bridge configuration.

    Aggregates all settings sections. Access via the module-level `config`
    singleton.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    admin: AdminSettings = field(default_factory=AdminSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    sponsor: SponsorSettings = field(default_factory=SponsorSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

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
        return not self.is_production


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated string to list, stripping whitespace."""
    if not value or value.strip() == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_int_list(value: str) -> list[int]:
    """Parse a comma-separated string of integers."""
    return [int(item) for item in _parse_list(value)]


def _load_from_ini(parser: configparser.ConfigParser, cfg: BridgeConfig) -> None:
    """Load configuration from parsed INI file into BridgeConfig."""
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    if parser.has_section("security"):
        if parser.has_option("security", "production"):
            cfg.security.production = _parse_bool(parser.get("security", "production"))
        if parser.has_option("security", "cors_origins"):
            cfg.security.cors_origins = _parse_list(parser.get("security", "cors_origins"))
        if parser.has_option("security", "docs_enabled"):
            val = parser.get("security", "docs_enabled").lower()
            if val in ("auto", "enabled", "disabled"):
                cfg.security.docs_enabled = val  # type: ignore[assignment]

    if parser.has_section("admin"):
        if parser.has_option("admin", "tokens"):
            cfg.admin.tokens = _parse_list(parser.get("admin", "tokens"))

    if parser.has_section("auth"):
        if parser.has_option("auth", "max_skew_ms"):
            cfg.auth.max_skew_ms = parser.getint("auth", "max_skew_ms")
        if parser.has_option("auth", "nonce_ttl_ms"):
            cfg.auth.nonce_ttl_ms = parser.getint("auth", "nonce_ttl_ms")

    if parser.has_section("store"):
        if parser.has_option("store", "redis_url"):
            cfg.store.redis_url = parser.get("store", "redis_url").strip()
        if parser.has_option("store", "key_prefix"):
            cfg.store.key_prefix = parser.get("store", "key_prefix")

    if parser.has_section("cache"):
        if parser.has_option("cache", "ttl_ms"):
            cfg.cache.ttl_ms = parser.getint("cache", "ttl_ms")
        if parser.has_option("cache", "max_age_ms"):
            cfg.cache.max_age_ms = parser.getint("cache", "max_age_ms")

    if parser.has_section("resolver"):
        if parser.has_option("resolver", "backoff_ms"):
            cfg.resolver.backoff_ms = _parse_int_list(parser.get("resolver", "backoff_ms"))
        if parser.has_option("resolver", "default_max_wait_ms"):
            cfg.resolver.default_max_wait_ms = parser.getint("resolver", "default_max_wait_ms")
        if parser.has_option("resolver", "max_wait_ceiling_ms"):
            cfg.resolver.max_wait_ceiling_ms = parser.getint("resolver", "max_wait_ceiling_ms")

    if parser.has_section("sync"):
        if parser.has_option("sync", "lock_ttl_ms"):
            cfg.sync.lock_ttl_ms = parser.getint("sync", "lock_ttl_ms")

    if parser.has_section("ledger"):
        for key in ("rpc_url", "network", "package_id", "hub_id"):
            if parser.has_option("ledger", key):
                setattr(cfg.ledger, key, parser.get("ledger", key).strip())
        if parser.has_option("ledger", "event_limit"):
            cfg.ledger.event_limit = parser.getint("ledger", "event_limit")
        if parser.has_option("ledger", "timeout_seconds"):
            cfg.ledger.timeout_seconds = parser.getfloat("ledger", "timeout_seconds")
        if parser.has_option("ledger", "rpc_attempts"):
            cfg.ledger.rpc_attempts = parser.getint("ledger", "rpc_attempts")

    if parser.has_section("sponsor"):
        if parser.has_option("sponsor", "private_key"):
            cfg.sponsor.private_key = parser.get("sponsor", "private_key").strip()
        if parser.has_option("sponsor", "gas_budget"):
            cfg.sponsor.gas_budget = parser.get("sponsor", "gas_budget").strip()

    if parser.has_section("database"):
        if parser.has_option("database", "path"):
            cfg.database.path = parser.get("database", "path")

    if parser.has_section("audit"):
        if parser.has_option("audit", "enabled"):
            cfg.audit.enabled = _parse_bool(parser.get("audit", "enabled"))
        if parser.has_option("audit", "path"):
            cfg.audit.path = parser.get("audit", "path")

    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: BridgeConfig) -> None:
    """Apply environment variable overrides to configuration."""
    if env_host := os.getenv("BRIDGE_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("BRIDGE_PORT"):
        cfg.server.port = int(env_port)

    if env_production := os.getenv("BRIDGE_PRODUCTION"):
        cfg.security.production = _parse_bool(env_production)
    if env_cors := os.getenv("BRIDGE_CORS_ORIGINS"):
        cfg.security.cors_origins = _parse_list(env_cors)

    if env_tokens := os.getenv("BRIDGE_ADMIN_TOKENS"):
        cfg.admin.tokens = _parse_list(env_tokens)

    if env_skew := os.getenv("BRIDGE_AUTH_MAX_SKEW_MS"):
        cfg.auth.max_skew_ms = int(env_skew)
    if env_nonce_ttl := os.getenv("BRIDGE_AUTH_NONCE_TTL_MS"):
        cfg.auth.nonce_ttl_ms = int(env_nonce_ttl)

    if env_redis := os.getenv("BRIDGE_REDIS_URL"):
        cfg.store.redis_url = env_redis.strip()

    if env_ttl := os.getenv("BRIDGE_CACHE_TTL_MS"):
        cfg.cache.ttl_ms = int(env_ttl)
    if env_max_age := os.getenv("BRIDGE_CACHE_MAX_AGE_MS"):
        cfg.cache.max_age_ms = int(env_max_age)

    if env_backoff := os.getenv("BRIDGE_RESOLVER_BACKOFF_MS"):
        cfg.resolver.backoff_ms = _parse_int_list(env_backoff)
    if env_ceiling := os.getenv("BRIDGE_RESOLVER_MAX_WAIT_MS"):
        cfg.resolver.max_wait_ceiling_ms = int(env_ceiling)
    if env_lock_ttl := os.getenv("BRIDGE_SYNC_LOCK_TTL_MS"):
        cfg.sync.lock_ttl_ms = int(env_lock_ttl)

    if env_rpc := os.getenv("BRIDGE_RPC_URL"):
        cfg.ledger.rpc_url = env_rpc.strip()
    if env_network := os.getenv("BRIDGE_NETWORK"):
        cfg.ledger.network = env_network.strip()
    if env_package := os.getenv("BRIDGE_PACKAGE_ID"):
        cfg.ledger.package_id = env_package.strip()
    if env_hub := os.getenv("BRIDGE_HUB_ID"):
        cfg.ledger.hub_id = env_hub.strip()
    if env_limit := os.getenv("BRIDGE_EVENT_LIMIT"):
        cfg.ledger.event_limit = int(env_limit)

    if env_key := os.getenv("BRIDGE_SPONSOR_PRIVATE_KEY"):
        cfg.sponsor.private_key = env_key.strip()
    if env_budget := os.getenv("BRIDGE_SPONSOR_GAS_BUDGET"):
        cfg.sponsor.gas_budget = env_budget.strip()

    if env_db := os.getenv("BRIDGE_DB_PATH"):
        cfg.database.path = env_db

    if env_audit := os.getenv("BRIDGE_AUDIT_ENABLED"):
        cfg.audit.enabled = _parse_bool(env_audit)
    if env_audit_path := os.getenv("BRIDGE_AUDIT_PATH"):
        cfg.audit.path = env_audit_path

    if env_log := os.getenv("BRIDGE_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()
    if env_log_format := os.getenv("BRIDGE_LOG_FORMAT"):
        val = env_log_format.lower()
        if val in ("simple", "detailed", "json"):
            cfg.logging.format = val  # type: ignore[assignment]


def load_config() -> BridgeConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/bridge.ini
        3. config/bridge.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        BridgeConfig: Fully populated configuration object.
    """
    cfg = BridgeConfig()

    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

config = load_config()


# =============================================================================
# LOGGING
# =============================================================================

_LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
}


class _JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(cfg: BridgeConfig | None = None) -> None:
    """Install a root stream handler using the configured level and format."""
    cfg = cfg or config
    handler = logging.StreamHandler(sys.stderr)
    if cfg.logging.format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_LOG_FORMATS[cfg.logging.format]))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(cfg.logging.level)


# =============================================================================
# TEST HELPERS
# =============================================================================


class use_test_database:
    """
    Context manager for using a temporary test database.

    Usage:
        from ledger_bridge.config import use_test_database

        def test_something(tmp_path):
            with use_test_database(tmp_path / "test.db"):
                init_database()
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.original_path: str | None = None

    def __enter__(self) -> Path:
        self.original_path = config.database.path
        config.database.path = str(self.db_path)
        return self.db_path

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.original_path is not None:
            config.database.path = self.original_path
        return None
