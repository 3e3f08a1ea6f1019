"""
Settings for the technician board, loaded from the environment.
"""
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from techboard.labor_guide import DEFAULT_SKILL_LEVELS


class Settings(BaseSettings):
    app_name: str = "techboard"
    log_level: str = "INFO"

    # None keeps everything in memory
    store_path: Path | None = None
    technicians_key: str = "technicians"
    tech_hours_key: str = "tech_hours"
    default_job_id_type: str = "vehicle"

    role_header: str = "X-Shop-Role"
    privileged_roles: list[str] = Field(
        default_factory=lambda: ["admin", "manager"]
    )

    labor_skill_levels: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_SKILL_LEVELS)
    )
    default_skill_level: str = "B"

    model_config = SettingsConfigDict(
        env_prefix="TECHBOARD_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
