from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_URL: str = "http://localhost:3000"
    WS_URL: str = ""

    AUTH_TOKEN: str = ""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    PAGE_LIMIT: int = 20

    TYPING_IDLE_SECONDS: float = 3.0
    TYPING_EXPIRY_SECONDS: float = 3.0

    WS_HEARTBEAT_SECONDS: float = 20.0
    RECONNECT_BASE_DELAY: float = 0.5
    RECONNECT_MAX_DELAY: float = 30.0

    OUTBOX_MAX_ATTEMPTS: int = 5

    HTTP_TIMEOUT_SECONDS: float = 30.0

    @property
    def ws_url(self) -> str:
        if self.WS_URL:
            return self.WS_URL
        base = self.API_URL.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
