import json
import os
import base64
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # MongoDB Configuration
    # ==========================================================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "campool"

    # ==========================================================================
    # Redis Configuration (only needed for the redis fan-out backend)
    # ==========================================================================
    redis_url: str = "redis://localhost:6379/0"

    # "local" keeps fan-out in this process, "redis" shares it across processes
    chat_pubsub_backend: Literal["local", "redis"] = "local"

    # ==========================================================================
    # Identity Verification
    # ==========================================================================
    auth_provider: Literal["jwt", "firebase"] = "jwt"

    jwt_secret: str  # No default - must be configured
    jwt_algorithm: str = "HS256"

    firebase_service_account_json: Optional[str] = None
    firebase_service_account_path: Optional[str] = None

    identity_verify_timeout_seconds: float = 5.0

    # ==========================================================================
    # Chat Settings
    # ==========================================================================
    chat_max_message_length: int = 1000
    chat_default_page_size: int = 50
    chat_max_page_size: int = 100
    chat_inbox_limit: int = 50

    # Gate join/send/history/read on being the driver or an accepted passenger
    chat_restrict_to_participants: bool = False

    ws_outbound_queue_size: int = 256

    # ==========================================================================
    # Message Store Resilience
    # ==========================================================================
    store_timeout_seconds: float = 5.0
    store_max_retries: int = 2
    store_retry_delay_seconds: float = 0.2

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_per_minute: int = 120

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    api_base_url: str = "http://localhost:8000"
    cors_origins: str = "*"
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into list."""
        if self.cors_origins == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def firebase_credentials(self) -> Optional[dict]:
        """
        Get Firebase credentials as dict.

        Supports:
        1. File path (FIREBASE_SERVICE_ACCOUNT_PATH)
        2. JSON string (FIREBASE_SERVICE_ACCOUNT_JSON)
        3. Base64 encoded JSON string (FIREBASE_SERVICE_ACCOUNT_JSON)
        """
        if self.firebase_service_account_path:
            if os.path.exists(self.firebase_service_account_path):
                with open(self.firebase_service_account_path, "r") as f:
                    return json.load(f)

        if self.firebase_service_account_json:
            content = self.firebase_service_account_json.strip()

            if content.startswith("{"):
                return json.loads(content)

            decoded = base64.b64decode(content).decode("utf-8")
            return json.loads(decoded)

        return None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading env vars on every request.
    """
    return Settings()


# Convenience export
settings = get_settings()
