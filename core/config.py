from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "Tube Accounts API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Token settings (one signing key per token kind)
    ACCESS_TOKEN_SECRET: str
    REFRESH_TOKEN_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 10

    # Cookie settings
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "lax"

    # MongoDB
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "tube_accounts"

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5173",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7

    # Media hosting (Cloudinary)
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_UPLOAD_URL: str = "https://api.cloudinary.com/v1_1"
    MEDIA_UPLOAD_TIMEOUT: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True

# Create settings instance
settings = Settings()

# Validate required settings
if not settings.ACCESS_TOKEN_SECRET:
    raise ValueError("ACCESS_TOKEN_SECRET environment variable is required")

if not settings.REFRESH_TOKEN_SECRET:
    raise ValueError("REFRESH_TOKEN_SECRET environment variable is required")

if settings.ACCESS_TOKEN_SECRET == settings.REFRESH_TOKEN_SECRET:
    raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
