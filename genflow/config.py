"""Configuration loaded from environment (.env) and defaults."""

import math
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # genflow/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data directory: job documents (file store) and assets live below it
    genflow_data_dir: str = "./data"

    # Job store backend: "file" | "memory" | "postgres"
    genflow_job_store: str = "file"
    genflow_database_url: str | None = None

    # Asset store backend: "file" | "memory"
    genflow_asset_store: str = "file"
    # Public URL prefix for stored assets; file:// URIs are used when unset
    genflow_asset_base_url: str | None = None

    # Generation provider: "mock" | "http"
    genflow_provider: str = "mock"
    genflow_mock_latency_s: float = 0.2
    genflow_media_base_url: str = "https://fal.run"
    genflow_media_api_key: str | None = None
    genflow_media_models: dict[str, str] = Field(
        default_factory=lambda: {
            "icon": "fal-ai/gemini-25-flash-image",
            "screen": "fal-ai/gemini-25-flash-image/edit",
            "cover_image": "fal-ai/bytedance/seedream/v4/text-to-image",
            "cover_video": "fal-ai/minimax/hailuo-02/standard/image-to-video",
        }
    )
    genflow_download_attempts: int = 3

    # LLM used for concept text: openai | anthropic
    genflow_llm_provider: str = "openai"
    openai_api_key: str | None = None
    genflow_openai_model: str = "gpt-5.2"
    anthropic_api_key: str | None = None
    genflow_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Unit retry policy
    genflow_max_retries: int = Field(default=2, ge=0)
    genflow_retry_backoff_s: float = 1.0
    genflow_unit_timeout_s: float = 180.0

    # Concurrency bound per stage kind
    genflow_stage_concurrency: dict[str, int] = Field(
        default_factory=lambda: {
            "concept": 4,
            "concept_images": 4,
            "icon": 1,
            "screens": 3,
            "cover_image": 4,
            "cover_video": 1,
            "description": 1,
        }
    )
    # First screen is generated alone and used as style reference for the rest
    genflow_screens_style_anchor: bool = True

    # Time-based progress: expected duration per unit kind (seconds)
    genflow_target_durations: dict[str, float] = Field(
        default_factory=lambda: {
            "concept": 20.0,
            "icon": 40.0,
            "screen": 40.0,
            "cover_image": 40.0,
            "cover_video": 90.0,
            "description": 20.0,
        }
    )
    genflow_overdue_factor: float = 3.0
    genflow_heartbeat_interval_s: float = 2.0
    # Optional YAML file overriding the per-kind progress slices
    genflow_progress_table_path: str | None = None

    # A new job cancels any active job of the same owner and kind
    genflow_supersede_active_jobs: bool = True

    # Maintenance (stuck-job sweep and retention)
    genflow_stuck_job_age_s: int = 6 * 60
    genflow_retention_s: int = 24 * 60 * 60
    genflow_maintenance_interval_s: int = 5 * 60

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Server port
    port: int = 8000

    @property
    def data_dir(self) -> Path:
        """Get data directory as Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.genflow_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def assets_dir(self) -> Path:
        return self.data_dir / "assets"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def concurrency_for(self, stage: str) -> int:
        return max(1, int(self.genflow_stage_concurrency.get(stage, 1)))

    @property
    def unit_budget_s(self) -> float:
        """Longest one unit can run: every attempt timing out, plus the backoff between attempts."""
        retries = self.genflow_max_retries
        return self.genflow_unit_timeout_s * (retries + 1) + self.genflow_retry_backoff_s * retries * (retries + 1) / 2

    @property
    def stuck_job_age(self) -> int:
        """Seconds without an update before a job counts as stuck; never below one unit budget."""
        return max(self.genflow_stuck_job_age_s, math.ceil(self.unit_budget_s) + 60)

    def ensure_dirs(self) -> None:
        """Ensure all data directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.assets_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
