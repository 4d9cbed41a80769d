from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 5000
    DB_PATH: str = "data/lexiflow.db"
    LOG_LEVEL: str = "info"
    ENVIRONMENT: str = "production"

    FETCH_TIMEOUT_SECONDS: float = 10.0
    MAX_STAGE_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 1.0
    # Reject job transitions that are not in ALLOWED_TRANSITIONS.
    STRICT_TRANSITIONS: bool = False


settings = Settings()
