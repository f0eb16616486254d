"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/clubreferral"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (worker heartbeats, readiness check)
    redis_url: str = "redis://localhost:6379/0"

    # Wallet service (external collaborator that credits member wallets)
    wallet_api_url: str = "http://localhost:8080/api/wallets"
    wallet_api_key: str = ""
    wallet_timeout_seconds: float = 10.0

    # Referral codes
    referral_code_length: int = 6
    referral_code_max_attempts: int = 10

    # Reward distribution worker
    reward_worker_enabled: bool = True
    reward_batch_size: int = 100
    reward_poll_interval_seconds: int = 300

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
