"""
Yaci Explorer Core Configuration
Environment-driven configuration for the explorer data-access layer
"""

import os
from typing import Dict, Any


class Config:
    """Base configuration"""

    # Upstream services
    POSTGREST_URL = os.getenv("POSTGREST_URL", "http://localhost:3000")
    CHAIN_REST_ENDPOINT = os.getenv("CHAIN_REST_ENDPOINT", "")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Transport
    HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "15"))
    HTTP_POOL_SIZE = int(os.getenv("HTTP_POOL_SIZE", "20"))
    FANOUT_MAX_WORKERS = int(os.getenv("FANOUT_MAX_WORKERS", "8"))

    # Cache Configuration
    CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", "10"))
    CACHE_MAX_SIZE = int(os.getenv("CACHE_MAX_SIZE", "1000"))
    CACHE_KEY_PREFIX = os.getenv("CACHE_KEY_PREFIX", "yaci:")
    IBC_CACHE_KEY = "yaci_ibc_denom_cache"
    CHANNEL_CACHE_KEY = "yaci_ibc_channel_cache"

    # Pagination
    TX_PAGE_SIZE = int(os.getenv("TX_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Scan caps (upper bounds on client-side work)
    ADDRESS_MESSAGE_SCAN_CAP = int(os.getenv("ADDRESS_MESSAGE_SCAN_CAP", "5000"))
    MESSAGE_TYPE_HASH_CAP = int(os.getenv("MESSAGE_TYPE_HASH_CAP", "1000"))
    ANALYTICS_VOLUME_SCAN_CAP = int(os.getenv("ANALYTICS_VOLUME_SCAN_CAP", "10000"))
    ANALYTICS_MESSAGE_SAMPLE_LIMIT = int(
        os.getenv("ANALYTICS_MESSAGE_SAMPLE_LIMIT", "10000")
    )
    ANALYTICS_MESSAGE_TOPN = int(os.getenv("ANALYTICS_MESSAGE_TOPN", "10"))
    ANALYTICS_EVENT_SAMPLE_LIMIT = int(os.getenv("ANALYTICS_EVENT_SAMPLE_LIMIT", "10000"))
    ANALYTICS_EVENT_TOPN = int(os.getenv("ANALYTICS_EVENT_TOPN", "10"))
    ANALYTICS_FEE_SCAN_CAP = int(os.getenv("ANALYTICS_FEE_SCAN_CAP", "10000"))
    ANALYTICS_GAS_SCAN_CAP = int(os.getenv("ANALYTICS_GAS_SCAN_CAP", "1000"))
    ANALYTICS_SUCCESS_SCAN_CAP = int(os.getenv("ANALYTICS_SUCCESS_SCAN_CAP", "1000"))
    BLOCK_INTERVAL_LOOKBACK = int(os.getenv("BLOCK_INTERVAL_LOOKBACK", "100"))
    BLOCK_INTERVAL_MAX_SECONDS = float(os.getenv("BLOCK_INTERVAL_MAX_SECONDS", "100"))

    # API Configuration
    EXPLORER_PORT = int(os.getenv("EXPLORER_PORT", "8082"))
    EXPLORER_HOST = os.getenv("EXPLORER_HOST", "0.0.0.0")
    DEBUG = os.getenv("DEBUG", "false").lower() == "true"
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
            if key.isupper() and not callable(getattr(cls, key))
        }

    @classmethod
    def validate(cls) -> None:
        """Validate configuration"""
        errors = []

        if not cls.POSTGREST_URL:
            errors.append("POSTGREST_URL is required")

        if cls.CACHE_TTL_SECONDS < 0:
            errors.append("CACHE_TTL_SECONDS must not be negative")

        if cls.FANOUT_MAX_WORKERS < 1:
            errors.append("FANOUT_MAX_WORKERS must be at least 1")

        if cls.MAX_PAGE_SIZE < 1:
            errors.append("MAX_PAGE_SIZE must be at least 1")

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
    LOG_LEVEL = "WARNING"


class TestConfig(Config):
    """Test configuration"""

    POSTGREST_URL = "http://postgrest.test"
    CHAIN_REST_ENDPOINT = "http://node.test"
    REDIS_URL = "redis://localhost:6379/15"
    CACHE_TTL_SECONDS = 1
    FANOUT_MAX_WORKERS = 4


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
