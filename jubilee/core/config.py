# File: jubilee/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Tuple
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ---------------------------
    # Database
    # ---------------------------
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./jubilee.db")

    # ---------------------------
    # Project / Logging
    # ---------------------------
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Jubilee Event Check-in")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # ---------------------------
    # Event
    # ---------------------------
    EVENT_NAME: str = os.getenv("EVENT_NAME", "Đại hội Năm Thánh 2025")
    EVENT_TITLE: str = os.getenv("EVENT_TITLE", "ĐẠI HỘI NĂM THÁNH TOÀN QUỐC 2025")
    EVENT_LOCATION: str = os.getenv("EVENT_LOCATION", "Kamiozuki, Hanado, Kanagawa")
    DEFAULT_ATTENDANCE_DAY: str = os.getenv("DEFAULT_ATTENDANCE_DAY", "2025-09-15")

    # ---------------------------
    # Files / Assets
    # ---------------------------
    STATIC_DIR: str = os.getenv("STATIC_DIR", "jubilee/static")
    ASSETS_DIR: str = os.getenv("ASSETS_DIR", "jubilee/static/assets")
    AVATAR_DIR: str = os.getenv("AVATAR_DIR", "jubilee/static/avatars")
    FONT_PATH: Optional[str] = os.getenv("FONT_PATH")
    FONT_BOLD_PATH: Optional[str] = os.getenv("FONT_BOLD_PATH")
    ASSET_LOAD_TIMEOUT: float = float(os.getenv("ASSET_LOAD_TIMEOUT", "10"))

    # ---------------------------
    # Card generation
    # ---------------------------
    CARD_BATCH_SIZE: int = int(os.getenv("CARD_BATCH_SIZE", "12"))
    GENERATION_DELAY_MS: int = int(os.getenv("GENERATION_DELAY_MS", "100"))

    # ---------------------------
    # Check-in scanner
    # ---------------------------
    SCAN_DEDUPE_WINDOW_MS: int = int(os.getenv("SCAN_DEDUPE_WINDOW_MS", "3000"))
    SCAN_CALLBACK_THROTTLE_MS: int = int(os.getenv("SCAN_CALLBACK_THROTTLE_MS", "1000"))
    CHECK_IN_API_URL: str = os.getenv("CHECK_IN_API_URL", "http://127.0.0.1:8000")
    CHECK_IN_TIMEOUT: float = float(os.getenv("CHECK_IN_TIMEOUT", "10"))
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    SCANNER_USERNAME: str = os.getenv("SCANNER_USERNAME", "admin")
    SCANNER_PASSWORD: str = os.getenv("SCANNER_PASSWORD", "admin1")

    # ---------------------------
    # Staff accounts (demo credentials), "user:password:role" comma separated
    # ---------------------------
    STAFF_USERS: str = os.getenv("STAFF_USERS", "admin:admin1:super_admin")

    @property
    def staff_accounts(self) -> List[Tuple[str, str, str]]:
        accounts = []
        for entry in self.STAFF_USERS.split(","):
            parts = entry.strip().split(":")
            if len(parts) != 3:
                continue
            accounts.append((parts[0], parts[1], parts[2]))
        return accounts

    @property
    def scan_dedupe_window(self) -> float:
        return self.SCAN_DEDUPE_WINDOW_MS / 1000.0

    @property
    def scan_callback_throttle(self) -> float:
        return self.SCAN_CALLBACK_THROTTLE_MS / 1000.0

    @property
    def generation_delay(self) -> float:
        return self.GENERATION_DELAY_MS / 1000.0


settings = Settings()
