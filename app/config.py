from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    loki_enabled: bool = Field(default=True, alias="LOKI_ENABLED")
    loki_url: str = Field(default="http://loki:3100", alias="LOKI_URL")
    loki_app_label: str = Field(default="demo-app", alias="LOKI_APP_LABEL")
    loki_timeout_seconds: float = Field(default=5.0, alias="LOKI_TIMEOUT_SECONDS")
    loki_max_retries: int = Field(default=3, alias="LOKI_MAX_RETRIES")
    loki_backoff_seconds: float = Field(default=0.5, alias="LOKI_BACKOFF_SECONDS")
    loki_queue_size: int = Field(default=10000, alias="LOKI_QUEUE_SIZE")

    slow_min_delay_ms: int = Field(default=10, alias="SLOW_MIN_DELAY_MS")
    slow_max_delay_ms: int = Field(default=2510, alias="SLOW_MAX_DELAY_MS")
    slow_error_rate: float = Field(default=0.2, alias="SLOW_ERROR_RATE")

    @property
    def loki_labels(self) -> dict[str, str]:
        return {"app": self.loki_app_label}

    @property
    def public_url(self) -> str:
        return f"http://localhost:{self.port}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
