"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass


def _get_float_env(name: str, default: float) -> float:
    """Get a float value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set or unparsable.

    Returns:
        Float value from environment.
    """
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set or unparsable.

    Returns:
        Integer value from environment.
    """
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_optional_float_env(name: str) -> float | None:
    """Get an optional float; unset, empty or invalid values give None."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        WEBHOOK_TIMEOUT_SECONDS: Hard timeout for a single delivery attempt.
        WEBHOOK_MAX_RETRIES: Retries after the first attempt.
        WEBHOOK_BACKOFF_SECONDS: Length of one backoff time unit.
        WEBHOOK_MAX_BACKOFF_SECONDS: Optional cap on a single backoff wait.
        WEBHOOK_MAX_CONCURRENT_DELIVERIES: Max simultaneous in-flight requests.
        WEBHOOK_USER_AGENT: User-Agent header sent with every delivery.
        WEBHOOK_FAILURE_THRESHOLD: Consecutive failures before auto-disable.
        WEBHOOK_RESPONSE_EXCERPT_LENGTH: Max response characters kept in errors.
    """

    # Delivery
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_MAX_RETRIES: int = 3

    # Backoff (uncapped unless a maximum is configured)
    WEBHOOK_BACKOFF_SECONDS: float = 1.0
    WEBHOOK_MAX_BACKOFF_SECONDS: float | None = None

    # Fan-out
    WEBHOOK_MAX_CONCURRENT_DELIVERIES: int = 10

    # Wire
    WEBHOOK_USER_AGENT: str = "LogoMorph-Webhook/1.0"

    # Subscription health
    WEBHOOK_FAILURE_THRESHOLD: int = 5

    # Diagnostics
    WEBHOOK_RESPONSE_EXCERPT_LENGTH: int = 500

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            WEBHOOK_TIMEOUT_SECONDS=_get_float_env("WEBHOOK_TIMEOUT_SECONDS", 10.0),
            WEBHOOK_MAX_RETRIES=_get_int_env("WEBHOOK_MAX_RETRIES", 3),
            WEBHOOK_BACKOFF_SECONDS=_get_float_env("WEBHOOK_BACKOFF_SECONDS", 1.0),
            WEBHOOK_MAX_BACKOFF_SECONDS=_get_optional_float_env(
                "WEBHOOK_MAX_BACKOFF_SECONDS"
            ),
            WEBHOOK_MAX_CONCURRENT_DELIVERIES=_get_int_env(
                "WEBHOOK_MAX_CONCURRENT_DELIVERIES", 10
            ),
            WEBHOOK_USER_AGENT=os.getenv("WEBHOOK_USER_AGENT", "LogoMorph-Webhook/1.0"),
            WEBHOOK_FAILURE_THRESHOLD=_get_int_env("WEBHOOK_FAILURE_THRESHOLD", 5),
            WEBHOOK_RESPONSE_EXCERPT_LENGTH=_get_int_env(
                "WEBHOOK_RESPONSE_EXCERPT_LENGTH", 500
            ),
        )


# Global settings instance
settings = Settings.from_env()
