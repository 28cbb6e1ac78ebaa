from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    app_name: str = "RealChat Client"
    api_base_url: str = "http://localhost:5000"
    ws_path: str = "/ws"
    language: str = "en"

    reconnect_base_delay_ms: int = Field(default=1000, gt=0)
    reconnect_max_delay_ms: int = Field(default=30000, gt=0)
    reconnect_max_attempts: int = Field(default=5, ge=0)
    outgoing_queue_size: int = Field(default=200, gt=0)
    typing_idle_ms: int = Field(default=1000, gt=0)

    state_database_url: str = "sqlite:///./realchat_state.db"
    api_timeout_sec: float | None = None

    @field_validator("api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
