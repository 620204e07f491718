"""
Centralised driver settings loaded from environment / .env file.

Every setting can be overridden with an ``AFMBRIDGE_`` prefixed environment
variable, e.g. ``AFMBRIDGE_BACKEND=rest``.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)

_DEFAULT_HOME = Path.home() / ".afmbridge"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AFMBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────
    backend: str = "memory"  # memory | rest
    backend_host: str = "https://secure.gooddata.com"
    backend_username: str = ""
    backend_password: str = ""
    backend_token: str = ""
    backend_timeout: float = 60.0
    poll_interval: float = 0.5
    poll_timeout: float = 300.0
    memory_model_path: str = ""

    # ── Catalog ──────────────────────────────────────────
    snapshot_dir: str = str(_DEFAULT_HOME)
    use_snapshots: bool = True
    catalog_workers: int = 2
    catalog_wait_timeout: float | None = None

    # ── Result cursor ────────────────────────────────────
    fetch_size: int = 1000

    # ── Audit log ────────────────────────────────────────
    query_log_enabled: bool = True
    query_log_url: str = f"sqlite:///{_DEFAULT_HOME / 'afmbridge.db'}"

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
