from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application Configuration
    APP_NAME: str = "FXComp Trading Competition Platform"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Configuration - using SQLite for development
    DATABASE_URL: str = "sqlite:///./fxcomp.db"
    RUN_MIGRATIONS_ON_STARTUP: bool = False

    # Competition rules
    DEFAULT_STARTING_BALANCE: float = 1000.0

    # Outbound provider calls (seconds); matches the outer HTTP request budget
    SYNC_REQUEST_TIMEOUT_SECONDS: float = 25.0

    # Provider base URLs (per-integration endpoints live on the integration row)
    MYFXBOOK_API_BASE: str = "https://www.myfxbook.com/api"
    FOREX_FACTORY_BASE_URL: str = "https://www.forexfactory.com"
    # Serve seeded placeholder numbers when the Forex Factory scrape fails
    FOREX_FACTORY_ALLOW_FALLBACK: bool = True

    # Security Configuration
    SECRET_KEY: str = "your-secret-key-here-change-in-production"
    ENCRYPTION_KEY: Optional[str] = None

    # Comma separated list of allowed browser origins
    CORS_ORIGINS: str = "http://localhost:8080,http://127.0.0.1:8080"

    # Application Settings
    PORT: int = 8000
    HOST: str = "0.0.0.0"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",  # Ignore extra fields from .env file
    }

    @property
    def cors_origins(self) -> list:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


# Global settings instance
settings = Settings()


# Logging Configuration
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
        }
    },
    "handlers": {
        "default": {
            "level": settings.LOG_LEVEL,
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        }
    },
    "loggers": {
        # request lines carry provider query strings (MyFXBook password)
        "httpx": {"level": "WARNING"},
    },
    "root": {"level": settings.LOG_LEVEL, "handlers": ["default"]},
}

# Note: Use only `settings` for configuration access throughout the codebase.
