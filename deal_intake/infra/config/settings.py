from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parents[3]

# Variables from the root .env; the process environment wins (override=False).
load_dotenv(BASE_DIR / ".env")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def __init__(self) -> None:
        self.env: str = os.getenv("ENV", "dev").lower()
        self.is_prod: bool = self.env in {"prod", "production"}
        self.is_dev: bool = not self.is_prod

        # Uploaded files are spooled here before submission
        self.uploads_root: Path = Path(os.getenv("UPLOADS_ROOT") or BASE_DIR / "assets" / "uploads")

        # Requirement catalog provider
        self.catalog_base_url: str = (os.getenv("CATALOG_BASE_URL") or "").rstrip("/")
        self.catalog_timeout_seconds: float = _env_float("CATALOG_TIMEOUT_SECONDS", 15.0)

        # Document service (submission / link / status / removal)
        self.documents_base_url: str = (os.getenv("DOCUMENTS_BASE_URL") or "").rstrip("/")
        self.documents_api_key: str | None = os.getenv("DOCUMENTS_API_KEY")
        self.documents_timeout_seconds: float = _env_float("DOCUMENTS_TIMEOUT_SECONDS", 30.0)

        # Recognition reconciliation
        self.ocr_disabled: bool = _env_bool("OCR_DISABLED", False)
        self.ocr_submit_batch_size: int = max(_env_int("OCR_SUBMIT_BATCH_SIZE", 3), 1)
        self.ocr_status_timeout_seconds: float = _env_float("OCR_STATUS_TIMEOUT_SECONDS", 3.0)
        self.ocr_poll_interval_seconds: float = _env_float("OCR_POLL_INTERVAL_SECONDS", 10.0)
        self.ocr_refresh_poll_delay_seconds: float = _env_float("OCR_REFRESH_POLL_DELAY_SECONDS", 2.0)
        self.ocr_checking_min_seconds: float = _env_float("OCR_CHECKING_MIN_SECONDS", 1.0)

        # Push channel
        self.redis_url: str | None = os.getenv("REDIS_URL")
        self.push_backend: str = (os.getenv("PUSH_BACKEND") or "redis").lower()
        self.push_channel_prefix: str = os.getenv("PUSH_CHANNEL_PREFIX", "ocr-events")
        self.push_reconnect_max_seconds: float = _env_float("PUSH_RECONNECT_MAX_SECONDS", 30.0)

        _cors_origins_env = os.getenv("CORS_ORIGINS")
        if _cors_origins_env:
            self.cors_origins: list[str] = [
                origin.strip()
                for origin in _cors_origins_env.split(",")
                if origin.strip()
            ]
        else:
            self.cors_origins = [
                "http://localhost:5173",
                "http://127.0.0.1:5173",
                "http://localhost:3000",
            ]
        # Credentials are never combined with a wildcard origin
        self.cors_allow_credentials: bool = "*" not in self.cors_origins

    @property
    def use_redis_push(self) -> bool:
        return self.push_backend == "redis" and bool(self.redis_url)


settings = Settings()
