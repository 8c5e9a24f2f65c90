"""
Application settings

Values come from the environment (or a local .env file). DATABASE_URL and
DATABASE_NAME keep the names the deployment already uses.
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "blogify-development-secret-change-me-before-deploying"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Blogify API"

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "blogify"

    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 7

    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "https://blogify-rose-five.vercel.app",
    ]

    log_level: str = "INFO"
    port: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
