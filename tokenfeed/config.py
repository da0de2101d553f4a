from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    # Ledger adapter selection: "memory" or "web3"
    LEDGER_ADAPTER: Literal["memory", "web3"] = "memory"
    RPC_URL: AnyUrl | None = None
    TOKEN_ADDRESS: str | None = None
    TOKEN_DECIMALS: int = 18
    BACKFILL_FROM_BLOCK: int = 0
    POLL_INTERVAL_SECONDS: float = 2.0
    # Block timestamps are rendered with strftime in this zone
    TIMESTAMP_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    TIMESTAMP_TZ: str = "UTC"
    LIVE_QUEUE_SIZE: int = 1000
    WS_PING_INTERVAL: int = 30
    # Authentication
    API_KEYS: str = ""  # Comma-separated list of API keys
    REQUIRE_AUTH: bool = False

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
