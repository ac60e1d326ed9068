from pydantic_settings import BaseSettings, SettingsConfigDict

from repairdesk.core.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./repairs.db"
    secret_key: str = ""
    app_env: str = "development"  # "production" enables strict checks; "test" disables the sweeper
    # JWT: use RS256 when JWT_PRIVATE_KEY and JWT_PUBLIC_KEY are set; otherwise HS256 with SECRET_KEY
    jwt_algorithm: str = "HS256"
    jwt_private_key: str = ""  # PEM string for RS256 (multi-line in .env: use \n)
    jwt_public_key: str = ""    # PEM string for RS256
    # TTL strings: <integer><s|m|h|d>, anything else means 15 minutes
    jwt_access_expires_in: str = "15m"
    jwt_refresh_expires_in: str = "7d"
    bcrypt_rounds: int = 12
    cors_origins: str = "http://localhost:5173"
    enable_hsts: bool = False  # Set True in production behind HTTPS
    debug: bool = False

    rate_limit_enabled: bool = True
    default_rate_limit: str = "200/minute"
    login_rate_limit: str = "10/minute"

    # Background removal of expired/revoked refresh tokens
    token_cleanup_enabled: bool = True
    token_cleanup_interval_seconds: int = 3600

    @property
    def use_rs256(self) -> bool:
        """True if RSA keys are set and RS256 should be used."""
        return bool(self.jwt_private_key.strip() and self.jwt_public_key.strip())

    @property
    def sweeper_enabled(self) -> bool:
        return self.token_cleanup_enabled and self.app_env != "test"

    def validate_jwt_config(self) -> None:
        """Raise ConfigurationError if tokens cannot be signed, or RSA keys are half-configured."""
        has_private = bool(self.jwt_private_key.strip())
        has_public = bool(self.jwt_public_key.strip())
        if has_private and not has_public:
            raise ConfigurationError("JWT_PRIVATE_KEY is set but JWT_PUBLIC_KEY is missing")
        if has_public and not has_private:
            raise ConfigurationError("JWT_PUBLIC_KEY is set but JWT_PRIVATE_KEY is missing")
        if not self.use_rs256 and not self.secret_key.strip():
            raise ConfigurationError("SECRET_KEY must be set to sign access tokens")
        if self.app_env == "production" and not self.use_rs256 and len(self.secret_key) < 32:
            raise ConfigurationError("SECRET_KEY must be at least 32 characters in production")


settings = Settings()
