from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv


logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
MAX_UPLOAD_MB_DEFAULT = 10
CORS_ORIGINS_DEFAULT = ["http://localhost:3000", "http://127.0.0.1:3000"]


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DATA_DIR
    # IANA zone used to read the calendar date of timezone-aware cells; None means host-local.
    timezone: Optional[str] = None
    ingest_secret: Optional[str] = None
    max_upload_bytes: int = MAX_UPLOAD_MB_DEFAULT * 1024 * 1024
    cors_origins: List[str] = field(default_factory=lambda: list(CORS_ORIGINS_DEFAULT))


def _env_str(name: str) -> Optional[str]:
    value = (os.environ.get(name) or "").strip()
    return value or None


def valid_timezone(name: Optional[str]) -> Optional[str]:
    """Return `name` when it is a known IANA zone, else None (host-local)."""
    if not name:
        return None
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown timezone %r; dates will be read in host-local time", name)
        return None
    return name


def load_settings() -> Settings:
    data_dir = _env_str("REFERRALS_DATA_DIR")

    max_mb = _env_str("REFERRALS_MAX_UPLOAD_MB")
    try:
        max_upload_mb = float(max_mb) if max_mb else MAX_UPLOAD_MB_DEFAULT
    except ValueError:
        max_upload_mb = MAX_UPLOAD_MB_DEFAULT

    origins = _env_str("REFERRALS_CORS_ORIGINS")
    cors_origins = [o.strip() for o in origins.split(",") if o.strip()] if origins else list(CORS_ORIGINS_DEFAULT)

    return Settings(
        data_dir=Path(data_dir) if data_dir else DATA_DIR,
        timezone=valid_timezone(_env_str("REFERRALS_TIMEZONE")),
        ingest_secret=_env_str("INGEST_SECRET"),
        max_upload_bytes=int(max_upload_mb * 1024 * 1024),
        cors_origins=cors_origins,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # A .env file in the working directory fills variables the environment leaves unset.
    load_dotenv(find_dotenv(usecwd=True))
    return load_settings()
