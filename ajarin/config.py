import logging
import os
from pathlib import Path

from dotenv import load_dotenv

root = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=root / ".env")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASS", "postgres")
    name = os.getenv("DB_NAME", "ajarin")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


class Settings:
    """Process configuration, read once from the environment.

    An instance is attached to ``app.state.settings``; handlers receive it
    through the ``get_settings`` dependency instead of reading globals.
    """

    def __init__(self, **overrides):
        self.database_url = _database_url()
        self.secret_key = os.getenv("JWT_SECRET_KEY", "SUPER_SECRET_JWT_KEY")
        self.algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
        self.client_url = os.getenv("CLIENT_URL", "http://localhost:5173")
        self.storage_url = os.getenv("STORAGE_URL", "http://localhost:8010")
        self.storage_api_key = os.getenv("STORAGE_API_KEY", "")
        self.storage_timeout_seconds = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))
        self.cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def get_cors_settings(settings: Settings):
    return {
        "allow_origins": settings.cors_origins,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
