"""Configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Shipping-Engine"
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    storage_backend: str = "memory"  # memory | sql
    database_url: str = "sqlite:///./shipping.db"

    # Zones/methods/rates
    seed_defaults: bool = True
    config_file: str = ""

    # Quotation
    recommended_max_days: int = 5
    cutoff_timezone: str = "UTC"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "SHIPPING_",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
