from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load .env from the project root and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "VFR Window Planner"
    app_version: str = "0.1.0"
    debug: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000

    # Forecast provider
    forecast_base_url: str = Field(
        default="https://api.windy.com/api/point-forecast/v2",
        description="Point forecast endpoint used for full-horizon series.",
    )
    forecast_api_key: str | None = Field(default=None, description="API key sent with point forecast requests.")
    forecast_model: str = Field(default="gfs", description="Forecast model requested from the provider.")
    forecast_user_agent: str = Field(
        default="VfrWindowPlanner/0.1.0 (support@example.com)",
        description="User-Agent sent to the upstream forecast provider.",
    )
    forecast_request_timeout: float = Field(
        default=10.0,
        ge=1.0,
        description="Deadline in seconds for a full forecast fetch at one location.",
    )
    forecast_point_timeout: float = Field(
        default=15.0,
        ge=1.0,
        description="Deadline in seconds for a single-point fallback fetch.",
    )
    forecast_cache_ttl: int = Field(default=300, ge=0, description="Cache duration (seconds) for forecast series")
    forecast_cache_max_entries: int = Field(
        default=100,
        ge=1,
        description="Maximum number of locations held by one search's forecast cache.",
    )
    weather_cache_interval_minutes: int = Field(
        default=60,
        ge=1,
        description="Timestamp rounding applied to per-query weather cache keys.",
    )

    # Window search
    vfr_scan_interval_minutes: int = Field(default=60, ge=5, description="Coarse scan step between departure times.")
    vfr_refine_precision_minutes: int = Field(
        default=30,
        ge=1,
        description="Target precision of window boundaries after binary refinement.",
    )
    vfr_max_concurrent: int = Field(default=4, ge=1, le=32, description="Departure times evaluated per scan batch.")
    vfr_max_windows: int = Field(default=5, ge=1, description="Default number of windows returned by a search.")
    vfr_job_history_limit: int = Field(
        default=200,
        ge=1,
        description="Max number of in-memory search jobs retained for event stream snapshots.",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

settings = Settings()
