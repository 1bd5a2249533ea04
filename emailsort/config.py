import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_SITE_URL = "http://localhost:3000"
DEFAULT_OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly "
    "https://www.googleapis.com/auth/gmail.modify "
    "https://www.googleapis.com/auth/gmail.settings.basic "
    "https://www.googleapis.com/auth/gmail.labels "
    "email profile"
)


def _first_env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass
class Settings:
    api_url: str
    site_url: str
    supabase_url: str | None
    supabase_anon_key: str | None
    poisoned_token_sentinels: tuple[str, ...]
    refresh_interval_s: float
    collection_interval_s: float
    http_timeout_s: float
    oauth_scopes: str
    log_level: str = "INFO"


def get_settings() -> Settings:
    # Les variables VITE_* restent acceptées pour partager le .env du front
    return Settings(
        api_url=_first_env("EMAILSORT_API_URL", "VITE_API_URL", default=DEFAULT_API_URL),
        site_url=_first_env("EMAILSORT_SITE_URL", "VITE_SITE_URL", default=DEFAULT_SITE_URL),
        supabase_url=_first_env("SUPABASE_URL", "VITE_SUPABASE_URL"),
        supabase_anon_key=_first_env("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"),
        poisoned_token_sentinels=_split_csv(
            os.getenv("EMAILSORT_POISONED_TOKEN_SENTINELS", "present")
        ),
        refresh_interval_s=float(os.getenv("EMAILSORT_REFRESH_INTERVAL_S", "30")),
        collection_interval_s=float(os.getenv("EMAILSORT_COLLECTION_INTERVAL_S", "1800")),
        http_timeout_s=float(os.getenv("EMAILSORT_HTTP_TIMEOUT_S", "30")),
        oauth_scopes=os.getenv("EMAILSORT_OAUTH_SCOPES", DEFAULT_OAUTH_SCOPES),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def get_api_url(path: str, settings: Settings | None = None) -> str:
    base = (settings or get_settings()).api_url.rstrip("/")
    return f"{base}/{path.lstrip('/')}"
