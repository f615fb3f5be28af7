from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from guest_checkin.config.user_settings_store import DEFAULT_APP_DATA_DIR, UserSettingsStore

BASE_DIR = Path(__file__).resolve().parents[3]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH)

APP_NAME = os.getenv("APP_NAME", "Guest Check-in")
APP_DATA_DIR = Path(os.getenv("APP_DATA_DIR", str(DEFAULT_APP_DATA_DIR))).expanduser()
user_settings_store = UserSettingsStore(app_data_dir=APP_DATA_DIR)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    app_name: str = APP_NAME
    database_path: Path = Path(os.getenv("DATABASE_PATH", str(APP_DATA_DIR / "guests.db")))
    store_backend: str = os.getenv("STORE_BACKEND", user_settings_store.get("store_backend", "sqlite"))
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_key: str | None = os.getenv("SUPABASE_KEY")
    supabase_table: str = os.getenv("SUPABASE_TABLE", "guest_attendance")
    scan_throttle_seconds: float = _env_float("SCAN_THROTTLE_SECONDS", 1.0)
    admission_cooldown_seconds: float = _env_float("ADMISSION_COOLDOWN_SECONDS", 2.5)
    io_timeout_seconds: float = _env_float("IO_TIMEOUT_SECONDS", 10.0)
    camera_probe_limit: int = int(os.getenv("CAMERA_PROBE_LIMIT", "4"))
    attendance_page_size: int = int(
        os.getenv("ATTENDANCE_PAGE_SIZE", user_settings_store.get("attendance_page_size", 5))
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def describe(self) -> str:
        return (
            f"Settings(app_name={self.app_name}, "
            f"database_path={self.database_path}, "
            f"store_backend={self.store_backend}, "
            f"supabase_url={self.supabase_url}, "
            f"supabase_table={self.supabase_table}, "
            f"scan_throttle_seconds={self.scan_throttle_seconds}, "
            f"admission_cooldown_seconds={self.admission_cooldown_seconds}, "
            f"io_timeout_seconds={self.io_timeout_seconds}, "
            f"camera_probe_limit={self.camera_probe_limit}, "
            f"attendance_page_size={self.attendance_page_size})"
        )


settings = Settings()


def refresh_settings_from_store() -> Settings:
    """Rebuild the settings object from the environment and the user store."""

    global settings  # noqa: PLW0603 - module-level singleton

    user_settings_store.reload()
    settings = Settings(
        database_path=Path(os.getenv("DATABASE_PATH", str(APP_DATA_DIR / "guests.db"))),
        store_backend=os.getenv("STORE_BACKEND", user_settings_store.get("store_backend", "sqlite")),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        supabase_table=os.getenv("SUPABASE_TABLE", "guest_attendance"),
        scan_throttle_seconds=_env_float("SCAN_THROTTLE_SECONDS", 1.0),
        admission_cooldown_seconds=_env_float("ADMISSION_COOLDOWN_SECONDS", 2.5),
        io_timeout_seconds=_env_float("IO_TIMEOUT_SECONDS", 10.0),
        camera_probe_limit=int(os.getenv("CAMERA_PROBE_LIMIT", "4")),
        attendance_page_size=int(
            os.getenv("ATTENDANCE_PAGE_SIZE", user_settings_store.get("attendance_page_size", 5))
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    return settings
