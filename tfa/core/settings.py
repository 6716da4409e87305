"""Application settings loaded from environment variables."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

JWT_EXPIRES_IN_DEFAULT = 300
KEY_ROTATION_TTL_DEFAULT = 604_800
KEY_ROTATION_TRANSITION_DEFAULT = 86_400
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings for the SQL store backend."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "tfa"
    password: str = "tfa"
    database: str = "tfa"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT
    url: str = ""

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL unless one is given verbatim."""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class StoreSettings(BaseSettings):
    """Selects the key-value backend used for server keys and the replay ledger."""

    model_config = SettingsConfigDict(env_prefix="AUTH_STORE_")

    backend: Literal["none", "memory", "redis", "sql"] = "none"
    redis_url: str = "redis://localhost:6379/0"


class KeyRotationSettings(BaseSettings):
    """Server ECDH key rotation windows."""

    model_config = SettingsConfigDict(env_prefix="AUTH_KEY_ROTATION_")

    enabled: bool = False
    ttl_seconds: int = KEY_ROTATION_TTL_DEFAULT
    transition_seconds: int = KEY_ROTATION_TRANSITION_DEFAULT


class AuthSettings(BaseSettings):
    """Principal, token and trust settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    access_username: str = ""
    access_password: str = ""
    access_totp_secret: str = ""
    access_webauthn_secret: str = ""
    jwt_secret: str = ""
    jwt_expires_in: int = JWT_EXPIRES_IN_DEFAULT
    user_sub_salt: str = ""
    oauth_issuer: str = ""
    public_url: str = ""
    allowed_redirect_urls: str = ""
    environment: str = "development"
    enable_token_replay_protection: bool = False
    ecdh_server_private_key: str = ""
    ecdh_server_public_key: str = ""
    key_encryption_key: str = ""
    legacy_relative_redirects: bool = False
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        """Whether the broker runs with production trust rules."""
        return self.environment.lower() == "production"

    def get_allowed_redirect_list(self) -> list[str]:
        """Parse comma-separated redirect whitelist patterns."""
        if not self.allowed_redirect_urls:
            return []
        return [
            p.strip() for p in self.allowed_redirect_urls.split(",") if p.strip()
        ]
