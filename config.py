"""
Configuration Module
====================
Order service settings, read from the environment (and an optional .env
file) and checked once at startup so a bad deployment refuses to boot.

Sections:
- database: SQLAlchemy URL and pool
- pricing: tax rate, free-shipping threshold, flat shipping fee
- orders: order number prefix/retries, page size cap
- server: bind address and log level
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any
from pathlib import Path
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# ============================================================================
# ENVIRONMENT LOADING
# ============================================================================

def load_environment(path: str = ".env"):
    """Merge a dotenv file into os.environ; existing variables win."""
    env_file = Path(path)
    if not env_file.is_file():
        logger.debug(f"No {path} file, reading process environment only")
        return

    load_dotenv(env_file)
    logger.info(f"Environment loaded from {path}")


load_environment()


class ConfigurationError(Exception):
    """A setting is missing, malformed or out of range."""
    pass


# ============================================================================
# TYPED GETTERS
# ============================================================================

def _get_optional_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Stripped string value; blank counts as unset."""
    raw = os.environ.get(key, "").strip()
    return raw or default


def _get_bool_env(key: str, default: bool = False) -> bool:
    raw = _get_optional_env(key)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _get_int_env(key: str, default: int) -> int:
    """
    Integer setting.

    Raises:
        ConfigurationError: Value present but not an integer
    """
    raw = _get_optional_env(key)
    if raw is None:
        return default

    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _get_decimal_env(key: str, default: str) -> Decimal:
    """
    Money or rate setting, kept as Decimal end to end.

    Raises:
        ConfigurationError: Value present but not a finite decimal
    """
    raw = _get_optional_env(key, default)

    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ConfigurationError(f"{key} must be a decimal number, got {raw!r}")

    if not value.is_finite():
        raise ConfigurationError(f"{key} must be finite, got {raw!r}")

    return value


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

class DatabaseConfig:
    """Relational database connection."""

    def __init__(self):
        self.url = _get_optional_env("DATABASE_URL", "sqlite:///./orders.db")

        if "://" not in self.url:
            raise ConfigurationError(
                f"DATABASE_URL must be a SQLAlchemy URL: {self.url}"
            )

        self.echo = _get_bool_env("DB_ECHO", False)
        self.pool_size = _get_int_env("DB_POOL_SIZE", 10)

        if self.pool_size < 1:
            raise ConfigurationError(
                f"DB_POOL_SIZE must be at least 1: {self.pool_size}"
            )


# ============================================================================
# PRICING CONFIGURATION
# ============================================================================

class PricingConfig:
    """Order pricing policy."""

    def __init__(self):
        self.tax_rate = _get_decimal_env("TAX_RATE", "0.10")
        self.free_shipping_threshold = _get_decimal_env(
            "FREE_SHIPPING_THRESHOLD",
            "99.00"
        )
        self.flat_shipping_fee = _get_decimal_env("FLAT_SHIPPING_FEE", "10.00")

        if not Decimal("0") <= self.tax_rate < Decimal("1"):
            raise ConfigurationError(
                f"TAX_RATE must be in [0, 1): {self.tax_rate}"
            )

        if self.free_shipping_threshold < 0:
            raise ConfigurationError(
                f"FREE_SHIPPING_THRESHOLD must be non-negative: "
                f"{self.free_shipping_threshold}"
            )

        if self.flat_shipping_fee < 0:
            raise ConfigurationError(
                f"FLAT_SHIPPING_FEE must be non-negative: {self.flat_shipping_fee}"
            )


# ============================================================================
# ORDER CONFIGURATION
# ============================================================================

class OrderConfig:
    """Order number and listing settings."""

    def __init__(self):
        self.number_prefix = _get_optional_env("ORDER_NUMBER_PREFIX", "ORD")
        self.number_max_attempts = _get_int_env("ORDER_NUMBER_MAX_ATTEMPTS", 5)
        self.max_page_size = _get_int_env("MAX_PAGE_SIZE", 100)

        if not self.number_prefix.isalnum():
            raise ConfigurationError(
                f"ORDER_NUMBER_PREFIX must be alphanumeric: {self.number_prefix}"
            )

        if not 1 <= self.number_max_attempts <= 20:
            raise ConfigurationError(
                f"ORDER_NUMBER_MAX_ATTEMPTS must be between 1 and 20: "
                f"{self.number_max_attempts}"
            )

        if self.max_page_size < 1:
            raise ConfigurationError(
                f"MAX_PAGE_SIZE must be at least 1: {self.max_page_size}"
            )


# ============================================================================
# SERVER CONFIGURATION
# ============================================================================

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ServerConfig:

    def __init__(self):
        self.host = _get_optional_env("HOST", "0.0.0.0")
        self.port = _get_int_env("PORT", 8000)
        self.log_level = _get_optional_env("LOG_LEVEL", "INFO").upper()

        if not 0 < self.port < 65536:
            raise ConfigurationError(f"PORT out of range: {self.port}")

        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}: {self.log_level}"
            )


# ============================================================================
# TOP-LEVEL CONFIGURATION
# ============================================================================

class Config:
    """
    All sections, built and validated together.

    Raises:
        ConfigurationError: First invalid setting encountered
    """

    def __init__(self):
        try:
            self.database = DatabaseConfig()
            self.pricing = PricingConfig()
            self.orders = OrderConfig()
            self.server = ServerConfig()
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise

        logger.debug("Configuration validated")

    def get_safe_summary(self) -> Dict[str, Any]:
        """Settings safe to log; database credentials are masked."""
        url = self.database.url
        if "@" in url:
            scheme, _, rest = url.partition("://")
            url = f"{scheme}://***@{rest.split('@', 1)[1]}"

        return {
            "database": {
                "url": url,
                "pool_size": self.database.pool_size,
            },
            "pricing": {
                "tax_rate": str(self.pricing.tax_rate),
                "free_shipping_threshold": str(self.pricing.free_shipping_threshold),
                "flat_shipping_fee": str(self.pricing.flat_shipping_fee),
            },
            "orders": {
                "number_prefix": self.orders.number_prefix,
                "number_max_attempts": self.orders.number_max_attempts,
                "max_page_size": self.orders.max_page_size,
            },
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "log_level": self.server.log_level,
            },
        }


_config: Optional[Config] = None


def get_config() -> Config:
    """Process-wide Config, built on first use."""
    global _config

    if _config is None:
        _config = Config()

    return _config


def reload_config() -> Config:
    """Re-read .env and the environment, replacing the cached Config."""
    global _config
    load_environment()
    _config = Config()
    logger.info("Configuration reloaded")
    return _config


def validate_configuration():
    """
    Build the config (if needed) and log what the service will run with.

    Raises:
        ConfigurationError: If any setting is invalid
    """
    summary = get_config().get_safe_summary()

    logger.info(
        f"Database: {summary['database']['url']} "
        f"(pool={summary['database']['pool_size']})"
    )
    logger.info(
        f"Pricing: tax={summary['pricing']['tax_rate']} "
        f"free_shipping_over={summary['pricing']['free_shipping_threshold']} "
        f"flat_shipping={summary['pricing']['flat_shipping_fee']}"
    )
    logger.info(
        f"Orders: prefix={summary['orders']['number_prefix']} "
        f"max_attempts={summary['orders']['number_max_attempts']} "
        f"max_page_size={summary['orders']['max_page_size']}"
    )
    logger.info(
        f"Server: {summary['server']['host']}:{summary['server']['port']} "
        f"log_level={summary['server']['log_level']}"
    )
