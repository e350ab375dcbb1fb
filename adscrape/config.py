import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly.
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)
# Optional local override (gitignored) used in dev to keep secrets outside tracked env examples.
load_dotenv(_project_root / ".env.local", override=True)


def _coerce_json(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30

    CLERK_JWT_ISSUER: str
    CLERK_JWKS_URL: str
    CLERK_AUDIENCE: list[str] = ["http://localhost:5173", "backend"]

    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    APIFY_API_TOKEN: str | None = None
    APIFY_API_URL: str = "https://api.apify.com/v2"
    APIFY_META_ACTOR_ID: str = "curious_coder~facebook-ads-library-scraper"
    APIFY_META_ACTIVE_STATUS: str = "all"
    APIFY_RESULTS_LIMIT: int = 100
    APIFY_TIMEOUT_SECONDS: float = 30.0

    # Fixed-interval polling: provider job latency is not bursty.
    SCRAPE_POLL_MAX_ATTEMPTS: int = 25
    SCRAPE_POLL_DELAY_SECONDS: float = 10.0
    SCRAPE_RESUME_ON_STARTUP: bool = False
    SCRAPE_RESUME_WINDOW_MINUTES: int = 60

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_ENDPOINT: str | None = None
    MEDIA_STORAGE_REGION: str = "auto"
    MEDIA_STORAGE_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_SECRET_KEY: str | None = None
    MEDIA_STORAGE_PREFIX: str = ""
    MEDIA_STORAGE_PUBLIC_BASE_URL: str | None = None
    MEDIA_STORAGE_USE_SSL: bool = True
    MEDIA_STORAGE_FORCE_PATH_STYLE: bool = False

    MEDIA_MIRROR_MAX_BYTES: int = 100 * 1024 * 1024
    # Large video files off the Meta CDN routinely need more than the usual 15s.
    MEDIA_MIRROR_TIMEOUT_SECONDS: float = 45.0
    MEDIA_MIRROR_DOWNLOAD_ATTEMPTS: int = 2
    MEDIA_MIRROR_BACKOFF_BASE_SECONDS: float = 1.0
    MEDIA_MIRROR_BACKOFF_MAX_SECONDS: float = 5.0
    MEDIA_MIRROR_MAX_CONCURRENCY: int = 3
    MEDIA_MIRROR_BATCH_PAUSE_SECONDS: float = 0.5
    MEDIA_MIRROR_BLOCK_PRIVATE_NETWORKS: bool = True

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("CLERK_AUDIENCE", mode="before")
    @classmethod
    def split_audience(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [aud.strip() for aud in value.split(",") if aud.strip()]
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = SettingsConfigDict(env_file=".env", env_json_loads=_coerce_json, extra="ignore")


settings = Settings()
