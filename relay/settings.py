"""Runtime settings sourced from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

ENV_PREFIX = "FILERELAY_"

DEFAULT_BASE_DIR = Path("/tmp/filerelay")


@dataclass(frozen=True)
class Settings:
    """Externally supplied limits, directories and scheduling knobs."""

    upload_dir: Path = DEFAULT_BASE_DIR / "uploads"
    output_dir: Path = DEFAULT_BASE_DIR / "converted"
    max_file_size_bytes: int = 100 * 1024 * 1024
    max_files_per_request: int = 10
    max_workers: int = 4
    conversion_timeout: Optional[float] = 600.0
    retention_enabled: bool = True
    retention_max_age_hours: float = 6.0
    retention_interval_hours: float = 6.0
    port: int = 3000
    cors_origins: Tuple[str, ...] = ("*",)


def _env(name: str) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}")


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = _env(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _read_settings() -> Settings:
    defaults = Settings()
    upload_dir = _env("UPLOAD_DIR")
    output_dir = _env("OUTPUT_DIR")
    timeout = _env_float("CONVERSION_TIMEOUT", defaults.conversion_timeout or 0)
    return Settings(
        upload_dir=Path(upload_dir) if upload_dir else defaults.upload_dir,
        output_dir=Path(output_dir) if output_dir else defaults.output_dir,
        max_file_size_bytes=_env_int("MAX_FILE_SIZE_MB", 100) * 1024 * 1024,
        max_files_per_request=_env_int("MAX_FILES_PER_REQUEST", defaults.max_files_per_request),
        max_workers=max(1, _env_int("MAX_WORKERS", defaults.max_workers)),
        # 0 disables the limit
        conversion_timeout=timeout if timeout > 0 else None,
        retention_enabled=_env_bool("RETENTION_ENABLED", defaults.retention_enabled),
        retention_max_age_hours=_env_float("RETENTION_MAX_AGE_HOURS", defaults.retention_max_age_hours),
        retention_interval_hours=_env_float("RETENTION_INTERVAL_HOURS", defaults.retention_interval_hours),
        port=_env_int("PORT", defaults.port),
        cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return _read_settings()


__all__ = ["Settings", "get_settings"]
