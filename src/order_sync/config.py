"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Bitrix24 CRM (inbound webhook base, e.g. https://example.bitrix24.ru/rest/1/abc123)
    BITRIX_WEBHOOK_BASE: str = ""
    BITRIX_TIMEOUT: float = 30.0

    # Shopify Admin API
    SHOPIFY_SHOP_DOMAIN: str = ""  # e.g. my-shop.myshopify.com
    SHOPIFY_ADMIN_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_TIMEOUT: float = 15.0

    # Order tags that route a deal to the preorder pipeline (comma-delimited)
    PREORDER_TAGS: str = "pre-order,preorder-product-added"

    # Redis (webhook monitoring stream); empty disables the store
    REDIS_URL: str = "redis://localhost:6379/0"
    EVENT_STREAM_KEY: str = "webhooks:shopify:events"
    EVENT_STREAM_MAXLEN: int = 1000

    # Monitoring
    SENTRY_DSN: str = ""

    def get_preorder_tags(self) -> list[str]:
        """Return the configured preorder tags as a cleaned list."""
        return [tag.strip() for tag in self.PREORDER_TAGS.split(",") if tag.strip()]


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
