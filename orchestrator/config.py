# orchestrator/config.py
"""
Orchestrator settings

Every field can be overridden by an environment variable of the same
name or from a .env file in the working directory.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Runtime configuration for the API, the Headscale client and the run history"""

    # === Application ===
    APP_NAME: str = "Headscale Orchestrator"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # === API ===
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"

    # Bearer credential for /api/v1; falls back to HEADSCALE_API_KEY
    API_TOKEN: Optional[str] = None

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Headscale ===
    HEADSCALE_URL: str = "https://headscale.tailnet.work"
    HEADSCALE_API_KEY: str = ""
    HEADSCALE_TIMEOUT: int = 30  # seconds
    CONTROL_PLANE_BACKEND: str = "headscale"  # headscale, memory

    # === Desired State ===
    DATA_PATH: str = "/app/data"
    USERS_FILE: str = "users.yaml"
    ROUTES_FILE: str = "routes.yaml"
    ACL_FILE: str = "acls.yaml"

    # === Auth Keys ===
    AUTH_KEY_DEFAULT_EXPIRATION_HOURS: int = 24

    # === Database (run history) ===
    DATABASE_URL: str = "sqlite:///./orchestrator.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    ENABLE_AUDIT_LOG: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        """uvicorn auto-reload is enabled in development"""
        return self.ENV.lower() == "development"

    @property
    def api_token(self) -> str:
        """Bearer token expected on API requests"""
        return self.API_TOKEN or self.HEADSCALE_API_KEY


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process"""
    return Settings()


settings = get_settings()
