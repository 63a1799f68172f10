import os
from datetime import timedelta
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from community_chat.utils.env_helper import (
    env_bool,
    env_float,
    env_list,
    env_none_or_str,
)

load_dotenv()


DEFAULT_ORIGINS = ["http://localhost:5173", "http://localhost:8080"]


class Settings(BaseModel):
    supabase_url: str | None = None
    supabase_key: str | None = None
    jwt_secret: str | None = None

    cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"
    log_json: bool = False

    # identical sender/content within this many seconds is one message
    dedup_window_seconds: float = Field(default=3.0, ge=0)
    avatar_bucket: str = "avatars"

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(seconds=self.dedup_window_seconds)

    @property
    def jwt_issuer(self) -> str | None:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/auth/v1"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=env_none_or_str("PUBLIC_SUPABASE_URL"),
            supabase_key=env_none_or_str("SECRET_API_KEY"),
            jwt_secret=env_none_or_str("SUPABASE_JWT_SECRET"),
            cors_origins=env_list("CORS_ORIGINS", DEFAULT_ORIGINS),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=env_bool("LOG_JSON", default=False),
            dedup_window_seconds=env_float("DEDUP_WINDOW_SECONDS", 3.0),
            avatar_bucket=os.getenv("AVATAR_BUCKET", "avatars"),
        )
