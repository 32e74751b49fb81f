"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with TASKGATE_ prefix.
Both services read the same Settings class; each only looks at the
fields it needs.

Learn: the signing key is process-wide state. It is fixed when Settings
is built and handed to the TokenCodec by the app factory, so tests (and
a future key rotation) can swap it without touching module globals.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings

DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """All app configuration. Set via TASKGATE_* env vars."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./taskgate.db"

    # Auth
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_minutes: int = 60  # 0 = tokens never expire
    bcrypt_rounds: int = 12

    # Inter-service verification
    identity_service_url: str = "http://localhost:3001"
    verify_timeout_seconds: float = 3.0
    verify_cache_seconds: float = 0.0  # 0 = no caching

    # Tasks
    max_description_length: int = 10_000

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    identity_port: int = 3001
    task_port: int = 3002

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
    ]

    model_config = {"env_prefix": "TASKGATE_", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Ensure sensitive defaults are changed in non-development environments."""
        if self.environment != "development" and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError(
                "TASKGATE_JWT_SECRET must be set to a secure value in "
                "non-development environments. Generate one with: "
                'python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if self.verify_timeout_seconds <= 0:
            raise ValueError("TASKGATE_VERIFY_TIMEOUT_SECONDS must be positive")
        return self

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET


# Singleton — the default for app factories and the CLI
settings = Settings()
