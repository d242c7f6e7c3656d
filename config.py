# phase-engine/config.py
"""
Configuration management for the phase engine.
Loads from .env, validates critical keys.
"""
import os
import json
import logging
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Set dynamic value
        Config.set(Config.PAYMENT_MODE, "manual")
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Phase rewards
    PHASE_FREE_PRODUCT_VALUE_CENTS = "PHASE_FREE_PRODUCT_VALUE_CENTS"
    PHASE_CREDIT_CENTS = "PHASE_CREDIT_CENTS"

    # Payouts
    PAYOUT_MIN_CENTS = "PAYOUT_MIN_CENTS"
    MAX_AUTO_PAYOUT_CENTS = "MAX_AUTO_PAYOUT_CENTS"
    PAYMENT_MODE = "PAYMENT_MODE"
    PAYOUT_CHECK_INTERVAL_MINUTES = "PAYOUT_CHECK_INTERVAL_MINUTES"

    # Payment rail
    PAYMENT_RAIL_URL = "PAYMENT_RAIL_URL"
    PAYMENT_RAIL_API_KEY = "PAYMENT_RAIL_API_KEY"
    PAYMENT_RAIL_TIMEOUT = "PAYMENT_RAIL_TIMEOUT"

    # Email - Mailgun
    MAILGUN_API_KEY = "MAILGUN_API_KEY"
    MAILGUN_DOMAIN = "MAILGUN_DOMAIN"
    MAILGUN_REGION = "MAILGUN_REGION"
    SECURE_EMAIL_DOMAINS = "SECURE_EMAIL_DOMAINS"

    # Email - SMTP
    SMTP_HOST = "SMTP_HOST"
    SMTP_PORT = "SMTP_PORT"
    SMTP_USERNAME = "SMTP_USERNAME"
    SMTP_PASSWORD = "SMTP_PASSWORD"
    SMTP_USE_TLS = "SMTP_USE_TLS"
    SMTP_FROM_EMAIL = "SMTP_FROM_EMAIL"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
        PAYMENT_RAIL_URL,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # DEFAULTS
    # ═══════════════════════════════════════════════════════════════════════

    DEFAULT_FREE_PRODUCT_VALUE_CENTS = {"1": 6500}
    DEFAULT_CREDIT_CENTS = {"2": 2000, "3": 5000}

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///phase_engine.db"
            )

            # Phase rewards (JSON: {"<tier>": cents})
            cls._config[cls.PHASE_FREE_PRODUCT_VALUE_CENTS] = cls._parse_tier_map(
                "PHASE_FREE_PRODUCT_VALUE_CENTS",
                cls.DEFAULT_FREE_PRODUCT_VALUE_CENTS
            )
            cls._config[cls.PHASE_CREDIT_CENTS] = cls._parse_tier_map(
                "PHASE_CREDIT_CENTS",
                cls.DEFAULT_CREDIT_CENTS
            )

            # Payouts
            cls._config[cls.PAYOUT_MIN_CENTS] = int(os.getenv("PAYOUT_MIN_CENTS", "900"))
            cls._config[cls.MAX_AUTO_PAYOUT_CENTS] = int(
                os.getenv("MAX_AUTO_PAYOUT_CENTS", "100000000")
            )
            cls._config[cls.PAYMENT_MODE] = os.getenv("PAYMENT_MODE", "automatic").lower()
            if cls._config[cls.PAYMENT_MODE] not in ("manual", "automatic"):
                raise ValueError(f"PAYMENT_MODE must be manual or automatic, got {cls._config[cls.PAYMENT_MODE]}")
            cls._config[cls.PAYOUT_CHECK_INTERVAL_MINUTES] = int(
                os.getenv("PAYOUT_CHECK_INTERVAL_MINUTES", "60")
            )

            # Payment rail
            cls._config[cls.PAYMENT_RAIL_URL] = os.getenv("PAYMENT_RAIL_URL")
            cls._config[cls.PAYMENT_RAIL_API_KEY] = os.getenv("PAYMENT_RAIL_API_KEY")
            cls._config[cls.PAYMENT_RAIL_TIMEOUT] = float(os.getenv("PAYMENT_RAIL_TIMEOUT", "30"))

            # Email - Mailgun
            cls._config[cls.MAILGUN_API_KEY] = os.getenv("MAILGUN_API_KEY")
            cls._config[cls.MAILGUN_DOMAIN] = os.getenv("MAILGUN_DOMAIN")
            cls._config[cls.MAILGUN_REGION] = os.getenv("MAILGUN_REGION", "eu")
            cls._config[cls.SECURE_EMAIL_DOMAINS] = os.getenv("SECURE_EMAIL_DOMAINS", "")

            # Email - SMTP
            cls._config[cls.SMTP_HOST] = os.getenv("SMTP_HOST")
            cls._config[cls.SMTP_PORT] = int(os.getenv("SMTP_PORT", "587"))
            cls._config[cls.SMTP_USERNAME] = os.getenv("SMTP_USERNAME")
            cls._config[cls.SMTP_PASSWORD] = os.getenv("SMTP_PASSWORD")
            cls._config[cls.SMTP_USE_TLS] = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
            cls._config[cls.SMTP_FROM_EMAIL] = os.getenv(
                "SMTP_FROM_EMAIL",
                "noreply@example.com"
            )

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @staticmethod
    def _parse_tier_map(env_key: str, default: Dict[str, int]) -> Dict[int, int]:
        """
        Parse a JSON object mapping tier numbers to cents.

        Args:
            env_key: Environment variable name
            default: Value used when the variable is unset

        Returns:
            Dict of tier -> cents
        """
        raw = os.getenv(env_key)
        data = default if not raw else json.loads(raw)
        return {int(tier): int(cents) for tier, cents in data.items()}

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()
