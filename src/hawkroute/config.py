"""Application configuration and settings management."""

from typing import Any, Literal

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="HAWKROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Hawker Route Optimizer API"
    api_prefix: str = "/api"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Distance model
    average_speed_kmh: float = Field(
        default=20.0,
        gt=0.0,
        description="Assumed average travel speed used to turn distance into an ETA estimate.",
    )
    service_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Dwell time spent at each buyer before moving on.",
    )

    # Route optimizer
    tie_epsilon_m: float = Field(
        default=1.0,
        ge=0.0,
        description="Candidates within this many meters of the nearest one are tied on distance.",
    )
    two_opt_max_iterations: int = Field(
        default=20_000,
        ge=0,
        description="Maximum number of 2-opt reversals evaluated per optimize call.",
    )
    two_opt_time_budget_s: float = Field(
        default=2.0,
        ge=0.0,
        description="Wall-clock budget for the 2-opt improvement phase.",
    )

    # Scheduler
    debounce_seconds: float = Field(default=3.0, ge=0.0)
    min_displacement_m: float = Field(
        default=25.0,
        ge=0.0,
        description="Hawker movement below this distance does not trigger re-optimization.",
    )
    watch_expirations: bool = True

    # Geospatial matching
    visibility_radius_m: float = Field(
        default=5_000.0,
        ge=0.0,
        description="Requests farther than this from the hawker are not considered.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


settings = Settings()
