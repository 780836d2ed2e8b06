from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./devconnect.db"

    # JWT
    SECRET_KEY: str = "your-super-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Storage
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    UPLOAD_DIR: str = "uploads"
    BASE_URL: str = "http://localhost:8000"

    # CORS
    ALLOWED_ORIGINS: list = ["http://localhost:5173", "http://localhost:8080"]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Pusher (optional realtime fan-out)
    PUSHER_APP_ID: Optional[str] = None
    PUSHER_APP_KEY: Optional[str] = None
    PUSHER_APP_SECRET: Optional[str] = None
    PUSHER_APP_CLUSTER: Optional[str] = None

    # Chat behaviour
    TYPING_TIMEOUT_SECONDS: float = 3.0
    MESSAGE_GROUP_WINDOW_SECONDS: int = 5 * 60
    SCROLL_BOTTOM_THRESHOLD: int = 20
    SCROLL_BUTTON_THRESHOLD: int = 200
    PREVIEW_MAX_LENGTH: int = 30

    @property
    def pusher_enabled(self) -> bool:
        return all([
            self.PUSHER_APP_ID,
            self.PUSHER_APP_KEY,
            self.PUSHER_APP_SECRET,
            self.PUSHER_APP_CLUSTER,
        ])

    class Config:
        env_file = ".env"

settings = Settings()
