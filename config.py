"""
NEAR Explorer Backend Configuration
Environment-driven configuration for the explorer backend
"""

import os
from typing import Dict, Any


# Lockup contracts are deployed under a per-network factory account
DEFAULT_LOCKUP_SUFFIXES = {
    "mainnet": "lockup.near",
    "testnet": "lockup.m0",
}


class Config:
    """Base configuration"""

    # NEAR Node Configuration
    NEAR_RPC_URL = os.getenv("NEAR_RPC_URL", "http://localhost:3030")  # DEV ONLY default
    RPC_TIMEOUT = int(os.getenv("RPC_TIMEOUT", "10"))
    RPC_RETRY_COUNT = int(os.getenv("RPC_RETRY_COUNT", "3"))

    # NEAR Network Configuration
    NETWORK_NAME = os.getenv("NETWORK_NAME", "testnet")
    LOCKUP_ACCOUNT_ID_SUFFIX = os.getenv(
        "LOCKUP_ACCOUNT_ID_SUFFIX",
        DEFAULT_LOCKUP_SUFFIXES.get(NETWORK_NAME, "lockup.near"),
    )

    # Explorer Configuration
    EXPLORER_PORT = int(os.getenv("EXPLORER_PORT", "8080"))
    EXPLORER_HOST = os.getenv("EXPLORER_HOST", "0.0.0.0")
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"

    # CORS Configuration
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper() and not key.startswith("_")
        }

    @classmethod
    def validate(cls) -> None:
        """Validate configuration"""
        errors = []

        if not cls.NEAR_RPC_URL:
            errors.append("NEAR_RPC_URL is required")

        if not cls.NETWORK_NAME:
            errors.append("NETWORK_NAME is required")

        if not cls.LOCKUP_ACCOUNT_ID_SUFFIX:
            errors.append("LOCKUP_ACCOUNT_ID_SUFFIX is required")
        elif cls.LOCKUP_ACCOUNT_ID_SUFFIX.startswith("."):
            errors.append("LOCKUP_ACCOUNT_ID_SUFFIX must not start with '.'")

        if cls.RPC_TIMEOUT <= 0:
            errors.append("RPC_TIMEOUT must be positive")

        if cls.RPC_RETRY_COUNT < 0:
            errors.append("RPC_RETRY_COUNT must not be negative")

        if cls.EXPLORER_PORT < 1 or cls.EXPLORER_PORT > 65535:
            errors.append("EXPLORER_PORT must be between 1 and 65535")

        if errors:
            raise ValueError(f"Configuration validation failed: {', '.join(errors)}")


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    NETWORK_NAME = os.getenv("NETWORK_NAME", "mainnet")
    LOCKUP_ACCOUNT_ID_SUFFIX = os.getenv(
        "LOCKUP_ACCOUNT_ID_SUFFIX",
        DEFAULT_LOCKUP_SUFFIXES.get(NETWORK_NAME, "lockup.near"),
    )
    LOG_LEVEL = "WARNING"


class TestConfig(Config):
    """Test configuration"""

    NEAR_RPC_URL = "http://localhost:3030"
    NETWORK_NAME = "mainnet"
    LOCKUP_ACCOUNT_ID_SUFFIX = "lockup.near"
    RPC_TIMEOUT = 1
    RPC_RETRY_COUNT = 0


# Environment-based configuration selection
ENV_CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "test": TestConfig,
}


def get_config() -> Config:
    """Get configuration based on environment"""
    env = os.getenv("EXPLORER_ENV", "development")
    config_class = ENV_CONFIGS.get(env, DevelopmentConfig)
    config_class.validate()
    return config_class


# Export current configuration
config = get_config()
