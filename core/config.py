"""
Application configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Collection server
    UPLOAD_URL: str = "https://collector.example.com/dataextraction"
    API_TOKEN: Optional[str] = None
    CLIENT_NAME: Optional[str] = None
    PROTOCOL_VERSION: int = 5
    REQUEST_TIMEOUT: float = 300.0

    # Source database
    SOURCE_DATABASE_URL: str = "sqlite:///extract.db"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Batching
    MAX_ROWS_PER_POST: int = 1000
    MAX_ROWS_PER_FILE_UPLOAD: int = 1000
    MAX_ATTEMPTS_TO_SEND: int = 1000
    MAX_ITERATIONS: int = 1000
    MAX_ERROR_ROWS: int = 10000

    # Run limits (0 disables the wall-clock limit)
    MAX_RUN_TIME_SECONDS: float = 0
    RUN_RETRIES: int = 3
    RETRY_INTERVAL_SECONDS: float = 60.0
    RETRY_MULTIPLIER: float = 2.0

    # Extraction
    DAYS_PER_CHUNK: int = 30
    QUARANTINE_SUFFIX: str = ".bad"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
