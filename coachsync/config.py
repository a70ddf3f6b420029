"""CoachSync process settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process settings for the CoachSync API, read from the environment or `.env`."""

    # --- App ---
    app_name: str = "CoachSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str = "postgresql://localhost:5432/coachsync"
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20

    # --- Reconciliation ---
    store_backend: str = "postgres"  # postgres | memory
    reconciliation_config_path: str | None = None  # defaults to the bundled YAML

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
