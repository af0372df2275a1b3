"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "CRM Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automation.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker / result backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Execution engine
    AUTOMATION_STEP_LIMIT: int = 200
    AUTOMATION_EPISODE_TIMEOUT_SECONDS: float = 30.0

    # Action dispatch
    ACTION_TIMEOUT_SECONDS: float = 10.0
    ACTION_MAX_ATTEMPTS: int = 3
    ACTION_RETRY_BASE_DELAY: float = 1.0

    # Scheduler
    SCHEDULER_POLL_INTERVAL_SECONDS: int = 60
    SCHEDULER_BATCH_SIZE: int = 50
    SCHEDULER_IN_PROCESS: bool = False
    STALE_RUN_MINUTES: int = 5

    # External collaborators
    CRM_API_URL: str = ""
    CRM_API_KEY: str = ""
    EVOLUTION_API_URL: str = ""
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_DEFAULT_INSTANCE: str = ""
    WEBHOOK_SIGNING_SECRET: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    def validate_collaborators(self) -> None:
        """Validate that production deployments talk to real collaborators.

        Raises:
            RuntimeError: If production runs without a CRM API configured
        """
        if self.is_production and not self.CRM_API_URL:
            raise RuntimeError(
                "CRITICAL: CRM_API_URL environment variable must be set in production. "
                "The in-memory subject store is for development only."
            )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
