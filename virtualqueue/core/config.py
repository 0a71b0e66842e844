from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List
import json


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Virtual Queue API"
    API_VERSION: str = "0.1.0"
    DOCS_PATH: str = "/reference"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Key-value store (token denylist)
    REDIS_URL: str = "redis://localhost:6379/0"
    REVOCATION_KEY_PREFIX: str = "blacklist"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    # Fraction of the access token lifetime below which it is reissued
    ACCESS_TOKEN_ROTATION_THRESHOLD: float = 0.3
    SESSION_RETENTION_DAYS: int = 90

    # Rate limits (slowapi notation)
    SIGNIN_RATE_LIMIT: str = "10/minute"
    SIGNUP_RATE_LIMIT: str = "5/minute"
    REFRESH_RATE_LIMIT: str = "30/minute"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Error monitoring, production only
    SENTRY_DSN: str = ""

    # Celery (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # Bootstrap admin
    DEFAULT_ADMIN_EMAIL: str = "admin@virtualqueue.local"
    DEFAULT_ADMIN_PASSWORD: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    return json.loads(raw)
                except json.JSONDecodeError as exc:
                    raise ValueError("BACKEND_CORS_ORIGINS must be valid JSON or comma-separated origins") from exc
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        return value

    @field_validator("ACCESS_TOKEN_ROTATION_THRESHOLD")
    @classmethod
    def validate_rotation_threshold(cls, value: float) -> float:
        if not 0 <= value < 1:
            raise ValueError("ACCESS_TOKEN_ROTATION_THRESHOLD must be in [0, 1)")
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def access_token_expire_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_expire_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 86400

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
