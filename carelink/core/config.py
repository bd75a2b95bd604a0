import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    APP_NAME: str = "Carelink Realtime"
    ENV: str = os.getenv("ENV", "development")

    # Database
    DATABASE_URL_OVERRIDE: Optional[str] = os.getenv("DATABASE_URL")
    DB_USER: str = os.getenv("DB_USER", "root")
    DB_PASS: str = os.getenv("DB_PASS", "")
    DB_HOST: str = os.getenv("DB_HOST", "127.0.0.1")
    DB_PORT: str = os.getenv("DB_PORT", "3306")
    DB_NAME: str = os.getenv("DB_NAME", "carelink_app")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "mysql+mysqlconnector")

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"{self.DB_DRIVER}://{self.DB_USER}:{self.DB_PASS}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # CORS
    CORS_ORIGINS: List[str] = []

    # JWT (the hosted auth provider signs access tokens with this secret)
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "super-dev-secret-please-change-later")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_AUDIENCE: Optional[str] = os.getenv("JWT_AUDIENCE") or None
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))
    ACCESS_TOKEN_COOKIE: str = os.getenv("ACCESS_TOKEN_COOKIE", "sb-access-token")

    # Socket.IO
    SOCKETIO_PATH: str = os.getenv("SOCKETIO_PATH", "socket.io")
    SOCKET_PING_INTERVAL: int = int(os.getenv("SOCKET_PING_INTERVAL", "25"))
    SOCKET_PING_TIMEOUT: int = int(os.getenv("SOCKET_PING_TIMEOUT", "60"))

    # Chat limits
    DIRECT_MESSAGE_MAX_LENGTH: int = int(os.getenv("DIRECT_MESSAGE_MAX_LENGTH", "5000"))
    COMMUNITY_MESSAGE_MAX_LENGTH: int = int(os.getenv("COMMUNITY_MESSAGE_MAX_LENGTH", "2000"))
    COMMUNITY_HISTORY_DEFAULT_LIMIT: int = int(os.getenv("COMMUNITY_HISTORY_DEFAULT_LIMIT", "50"))
    COMMUNITY_HISTORY_MAX_LIMIT: int = int(os.getenv("COMMUNITY_HISTORY_MAX_LIMIT", "100"))

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

def _load_settings() -> "Settings":
    s = Settings()
    origins = os.getenv("FRONTEND_ORIGINS") or os.getenv("FRONTEND_URL")
    dev_defaults = [
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ]
    if origins:
        provided = [o.strip() for o in origins.split(",") if o.strip()]
        # Always include dev defaults to prevent missing headers in local testing
        s.CORS_ORIGINS = sorted(set(provided + dev_defaults))
    else:
        s.CORS_ORIGINS = dev_defaults
    return s

settings = _load_settings()
