from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/save_flow"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Save flow
    SAVE_FLOW_AVG_TENURE_MONTHS: int = 12
    SAVE_FLOW_ANALYTICS_WINDOW_DAYS: int = 30
    SAVE_FLOW_EVENT_QUEUE_SIZE: int = 10000
    SLOW_QUERY_THRESHOLD_MS: int = 500

    @field_validator('SAVE_FLOW_AVG_TENURE_MONTHS', 'SAVE_FLOW_ANALYTICS_WINDOW_DAYS')
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of months/days")
        return v

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT in ("production", "staging")

    @property
    def sqlalchemy_echo(self) -> bool:
        """Echo SQL only in debug, never in production."""
        return self.DEBUG and not self.is_production

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
