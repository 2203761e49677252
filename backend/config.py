from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # "memory" keeps everything in-process (local play, tests); "firestore" for deployments
    store_backend: str = "memory"
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    # CORS origins: set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""

    # Join codes: 6 characters drawn from an alphabet without 0/O/1/I look-alikes
    room_code_length: int = 6
    room_code_alphabet: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    room_code_attempts: int = 5

    min_players: int = 3
    default_undercover_count: int = 1
    default_mr_white_count: int = 0

    # Per-subscriber buffer for room change notifications
    notifier_queue_size: int = 32

    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def cors_origins(self) -> List[str]:
        if self.extra_origin:
            return [*self.allowed_origins, self.extra_origin]
        return list(self.allowed_origins)


settings = Settings()
