from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRMPro"
    log_level: str = "INFO"
    session_timeout_seconds: float = 5.0
    default_role: str = "employee"
    landing_module: str = "dashboard"
    login_path: str = "/login"
    unauthorized_path: str = "/unauthorized"
    outbox_max_attempts: int = 3
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_console_exporter: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
