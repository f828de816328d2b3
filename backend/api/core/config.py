"""Application configuration using Pydantic Settings"""

import base64
import binascii
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "https://extension-files.twitch.tv,https://*.ext-twitch.tv"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch Extension (session credentials, receipts, PubSub)
    extension_client_id: str = Field(..., description="Twitch Extension Client ID")
    extension_secret: str = Field(..., description="Base64-encoded Extension shared secret")
    receipt_secret: str = Field(
        default="", description="Base64 secret for Bits receipts (defaults to extension_secret)"
    )
    extension_owner_user_id: str = Field(
        default="", description="Twitch user id that owns the Extension"
    )
    jwt_algorithm: str = Field(default="HS256", description="Pinned HMAC algorithm")

    # Twitch OAuth application (broadcaster delegation)
    client_id: str = Field(..., description="Twitch OAuth Client ID")
    client_secret: str = Field(..., description="Twitch OAuth Client Secret")
    oauth_redirect_url: str = Field(default="", description="Override for the OAuth callback URL")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    database_ssl: bool = Field(default=True, description="Require SSL for database connections")

    # Server URLs
    api_url: str = Field(default="http://localhost:8000", description="Public URL of this service")
    cors_origins_csv: str = Field(
        default=DEFAULT_CORS_ORIGINS, description="Comma-separated origins, '*' wildcards allowed"
    )

    # Engine tuning
    token_expiry_margin: int = Field(
        default=60, ge=0, description="Seconds subtracted from upstream token expiry"
    )
    upstream_timeout: float = Field(default=10.0, gt=0, description="Upstream HTTP timeout")
    subscription_cache_ttl: int = Field(
        default=60, ge=0, description="Seconds a positive subscription check is reused"
    )
    tip_amounts: list[int] = Field(
        default=[100, 500, 1000], description="Bits amounts offered as TIP_<n> products"
    )
    comment_unlock_sku: str = Field(default="COMMENT_500", description="Paid comment SKU")
    comment_max_length: int = Field(default=200, ge=1, le=2000)
    chat_announce_enabled: bool = Field(default=True, description="Announce tips in chat")
    pubsub_enabled: bool = Field(default=False, description="Forward events to Extension PubSub")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only shared-secret algorithms make sense for Extension tokens"""
        v_upper = v.upper()
        if v_upper not in ("HS256", "HS384", "HS512"):
            raise ValueError(f"Unsupported JWT algorithm: {v}")
        return v_upper

    @field_validator("extension_secret", "receipt_secret")
    @classmethod
    def validate_base64_secret(cls, v: str) -> str:
        if v:
            try:
                base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("Secret must be base64-encoded") from e
        return v

    @property
    def extension_secret_bytes(self) -> bytes:
        return base64.b64decode(self.extension_secret)

    @property
    def receipt_secret_bytes(self) -> bytes:
        """Receipt signing key; falls back to the Extension secret"""
        if self.receipt_secret:
            return base64.b64decode(self.receipt_secret)
        return self.extension_secret_bytes

    @property
    def redirect_uri(self) -> str:
        return self.oauth_redirect_url or f"{self.api_url}/auth/callback"

    @property
    def cors_origins(self) -> list[str]:
        """Exact origins (no wildcard)"""
        return [o for o in self._origin_list() if "*" not in o]

    @property
    def cors_origin_regex(self) -> str | None:
        """Regex covering the wildcard origins, e.g. https://*.ext-twitch.tv"""
        patterns = [
            o.replace(".", r"\.").replace("*", "[^/]+") for o in self._origin_list() if "*" in o
        ]
        if not patterns:
            return None
        return "^(" + "|".join(patterns) + ")$"

    def _origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins_csv.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
