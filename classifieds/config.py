from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./classifieds.db"

    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 30

    # Allowed CORS origin for the web client.
    FRONTEND_URL: str = "http://localhost:3000"

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Echo SQL statements; off unless explicitly requested.
    SQL_ECHO: Optional[bool] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
