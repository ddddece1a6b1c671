"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DPMETA_",
        case_sensitive=False,
        extra="ignore",
    )

    # Directories
    output_dir: Path = Field(Path("output"))

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")

    # Default MCMC schedule
    default_burn_in: int = Field(1000, ge=0)
    default_n_save: int = Field(1000, ge=1)
    default_thinning: int = Field(5, ge=1)
    default_display_interval: int = Field(500, ge=0)
    default_seed: Optional[int] = Field(None, ge=0, description="Seed used when none is given")

    # Sensitivity sweeps
    max_workers: int = Field(1, ge=1, le=64, description="Worker processes for independent chains")


# Instantiate global settings
settings = Settings()
