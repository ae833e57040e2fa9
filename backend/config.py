from __future__ import annotations

from typing import List, Optional

from pydantic_settings import BaseSettings
from dotenv import load_dotenv


load_dotenv()


class Settings(BaseSettings):
    DB_URL: str = "sqlite:///./ecoreports.db"
    JWT_SECRET: str = "change_me"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    ENVIRONMENT: str = "development"  # development | test | production
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Points policy (seeded into points_config, editable afterwards)
    POINTS_REPORT_WITHOUT_PHOTO: int = 10
    POINTS_REPORT_WITH_PHOTO: int = 15
    POINTS_REPORT_RESOLVED: int = 25
    LEVEL_POINTS_STEP: int = 100

    # Fire-and-forget side effects: "inline" (BackgroundTasks) or "rq"
    SIDE_EFFECT_BACKEND: str = "inline"
    SIDE_EFFECT_QUEUE: str = "side_effects"
    SIDE_EFFECT_MAX_RETRIES: int = 3
    REDIS_URL: str = "redis://redis:6379/0"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"  # memory | redis
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    AUTH_RATE_LIMIT_MAX_REQUESTS: int = 10
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    REPORTS_RATE_LIMIT_MAX_REQUESTS: int = 10
    REPORTS_RATE_LIMIT_WINDOW_SECONDS: int = 60
    NOTIFICATIONS_RATE_LIMIT_MAX_REQUESTS: int = 30
    NOTIFICATIONS_RATE_LIMIT_WINDOW_SECONDS: int = 60

    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Image hosting: "local" writes under UPLOAD_DIR, "cloudinary" uses the REST API
    IMAGE_HOST: str = "local"
    UPLOAD_DIR: str = "data/uploads"
    UPLOAD_BASE_URL: str = "/data/uploads"
    MAX_UPLOAD_SIZE_MB: int = 10
    ALLOWED_IMAGE_TYPES: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
    ]
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "ecoreports"
    CLOUDINARY_TIMEOUT_SECONDS: float = 20.0

    # Notifications
    NOTIFICATION_RETENTION_DAYS: int = 30
    RETENTION_SWEEP_ENABLED: bool = False
    RETENTION_SWEEP_INTERVAL_HOURS: int = 24

    # Report policy
    DESCRIPTION_MIN_LENGTH: int = 10
    DESCRIPTION_MAX_LENGTH: int = 500
    REJECTION_COMMENT_REQUIRED: bool = False
    REJECTION_COMMENT_MIN_LENGTH: int = 10

    class Config:
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in ("prod", "production")


settings = Settings()
