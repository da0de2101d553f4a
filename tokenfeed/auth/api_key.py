"""API key authentication."""
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from typing import Optional
import structlog
from ..config import get_settings

log = structlog.get_logger()

API_KEY_HEADER = "X-TokenFeed-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


class APIKeyRegistry:
    """
    In-memory API key registry.

    Keys come from the comma-separated API_KEYS setting.
    """

    def __init__(self, raw_keys: str = ""):
        self._keys: set[str] = {k.strip() for k in raw_keys.split(",") if k.strip()}
        log.info("api_keys.loaded", count=len(self._keys))

    def validate(self, key: str) -> bool:
        return key in self._keys

    def add_key(self, key: str):
        self._keys.add(key)
        log.info("api_key.added")

    def remove_key(self, key: str) -> bool:
        if key in self._keys:
            self._keys.discard(key)
            log.info("api_key.removed")
            return True
        return False

    def count(self) -> int:
        return len(self._keys)


registry = APIKeyRegistry(get_settings().API_KEYS)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Dependency to verify the API key header when REQUIRE_AUTH is on.

    Returns:
        The validated key, or "anonymous" when auth is off or no keys exist

    Raises:
        HTTPException: If the key is missing (401) or unknown (403)
    """
    if not get_settings().REQUIRE_AUTH or registry.count() == 0:
        log.debug("auth.skipped")
        return "anonymous"

    if not api_key:
        log.warning("auth.failed", reason="missing_key")
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide {API_KEY_HEADER} header.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not registry.validate(api_key):
        log.warning("auth.failed", reason="invalid_key")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    log.debug("auth.success")
    return api_key
