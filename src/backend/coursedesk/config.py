from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[3]
ROOT_ENV_FILE = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./coursedesk.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    unique_number_prefix: int = 3531
    planned_window_size: int = 2
    medical_validity_months: int = 6
    course_length_days: int = 7
    default_citizenship: str = "българско"
    run_maintenance_on_startup: bool = True
    entitlement_rpc_url: str = ""
    entitlement_api_key: str = ""
    entitlement_access_token: str = ""
    entitlement_cache_path: str = "./entitlement-cache.json"
    entitlement_refresh_interval_seconds: int = 120
    entitlement_focus_throttle_seconds: int = 10

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV_FILE), ".env"),
        extra="ignore",
    )


settings = Settings()
